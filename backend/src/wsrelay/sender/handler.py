"""Queue adapter: turns a batch event into envelopes and a batch item failure response."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from ..schemas import BatchItemFailure, BatchResponse, QueueEvent
from ..utilities.logging_config import configure_logging, get_logger
from ..utilities.settings import Settings, get_settings
from .dispatcher import Dispatcher, MessageEnvelope
from .push import HttpPushChannel

logger = get_logger(__name__)


def build_dispatcher(settings: Settings) -> Dispatcher:
    channel = HttpPushChannel(settings.endpoint, timeout=settings.push_timeout)
    return Dispatcher(
        channel,
        safety_margin=settings.safety_margin,
        unaddressable_policy=settings.unaddressable_policy,
    )


def handle(
    event: Dict[str, Any],
    dispatcher: Dispatcher,
    deadline: Optional[datetime] = None,
    remaining_time_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Dispatch one queue batch and return ``{"batchItemFailures": [...]}``.

    The deadline is either given outright or derived from the invocation's
    remaining time; with neither, ids not delivered are still reported but
    there is no early exit.
    """
    parsed = QueueEvent.model_validate(event)
    if deadline is None:
        if remaining_time_ms is not None:
            deadline = dispatcher.now() + timedelta(milliseconds=remaining_time_ms)
        else:
            deadline = datetime.max.replace(tzinfo=timezone.utc)

    logger.info("received messages", count=len(parsed.records))
    envelopes = [MessageEnvelope.from_record(rec) for rec in parsed.records]
    failed = dispatcher.dispatch(envelopes, deadline)

    response = BatchResponse(batch_item_failures=[BatchItemFailure(item_identifier=mid) for mid in failed])
    return response.model_dump(by_alias=True)


_dispatcher: Optional[Dispatcher] = None


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Entrypoint for a queue-triggered function runtime.

    ``context`` only needs ``get_remaining_time_in_millis()``.
    """
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        configure_logging(settings.log_level, settings.log_json)
        logger.info("starting up", region=settings.region, endpoint=settings.endpoint)
        _dispatcher = build_dispatcher(settings)
    return handle(event, _dispatcher, remaining_time_ms=context.get_remaining_time_in_millis())
