from .constants import *  # noqa: F401,F403
from .logging_config import configure_logging, get_logger
from .settings import Settings, get_settings
from .utility_functions import (
    make_ack,
    make_connected,
    make_default,
    make_error,
    make_pong,
    now_ts,
    parse_topics,
    topic_partition_key,
    utc_now,
)
