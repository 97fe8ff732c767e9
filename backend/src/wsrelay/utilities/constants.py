from datetime import timedelta

# ------------ Config ------------
# WebSocket APIs stay open for at most two hours, so records outlive that with margin
MAX_CONNECTION_DURATION = timedelta(hours=2, minutes=15)
SORT_KEY_DATE_LAYOUT = "%Y%m%d%H%M%S"   # 20060102150405 style, second resolution
TOPIC_KEY_PREFIX = "topic/"

DEFAULT_BACKOFF_CEILING = 5             # bulk write retries, ~6.2s in total
BACKOFF_BASE_DELAY = 0.1                # seconds, multiplied by 2^attempt
DEFAULT_SAFETY_MARGIN = 5.0             # seconds left before the dispatcher deadline
DEFAULT_PAGE_SIZE = 100                 # records per query page
MAX_BATCH_WRITE_ITEMS = 25              # items a single bulk write accepts

CONNECTION_ID_ATTRIBUTE = "connectionId"
CONNECTION_QUEUE_SIZE = 50              # bounded per-connection outbound queue
# --------------------------------
