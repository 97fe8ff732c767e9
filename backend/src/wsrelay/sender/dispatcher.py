from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from ..errors import DeliveryError
from ..schemas import QueueRecord
from ..utilities.constants import DEFAULT_SAFETY_MARGIN
from ..utilities.logging_config import get_logger
from ..utilities.utility_functions import utc_now
from .push import PushChannel

logger = get_logger(__name__)


class Outcome(str, Enum):
    DELIVERED = "delivered"
    NEEDS_REDELIVERY = "needs_redelivery"
    # unaddressable message dropped under the "drop" policy
    SKIPPED = "skipped"


class UnaddressablePolicy(str, Enum):
    REDELIVER = "redeliver"
    DROP = "drop"


@dataclass(frozen=True)
class MessageEnvelope:
    message_id: str
    destination_connection_id: Optional[str]
    payload: bytes

    @classmethod
    def from_record(cls, record: QueueRecord) -> "MessageEnvelope":
        return cls(
            message_id=record.message_id,
            destination_connection_id=record.destination(),
            payload=record.body.encode("utf-8"),
        )


@dataclass
class DispatchBatch:
    """Messages of one invocation plus their outcomes, all starting as needing redelivery."""

    messages: List[MessageEnvelope]
    outcomes: Dict[str, Outcome] = field(default_factory=dict)

    def __post_init__(self):
        for msg in self.messages:
            self.outcomes[msg.message_id] = Outcome.NEEDS_REDELIVERY

    def mark(self, message_id: str, outcome: Outcome) -> None:
        self.outcomes[message_id] = outcome

    def redelivery_report(self) -> List[str]:
        return [msg.message_id for msg in self.messages if self.outcomes[msg.message_id] == Outcome.NEEDS_REDELIVERY]


class Dispatcher:
    """Delivers one batch of messages sequentially against a deadline.

    Per-message failures never escape; they only leave the message marked
    for redelivery. Delivery is at-least-once: a message reported for
    redelivery may already have reached its connection.
    """

    def __init__(
        self,
        push_channel: PushChannel,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
        unaddressable_policy: UnaddressablePolicy = UnaddressablePolicy.REDELIVER,
        now: Callable[[], datetime] = utc_now,
    ):
        self.push_channel = push_channel
        self.safety_margin = timedelta(seconds=safety_margin)
        self.unaddressable_policy = UnaddressablePolicy(unaddressable_policy)
        self.now = now

    def dispatch(self, messages: Iterable[MessageEnvelope], deadline: datetime) -> List[str]:
        batch = DispatchBatch(list(messages))
        # Leave a few seconds at the end to report back.
        cutoff = deadline - self.safety_margin

        for index, msg in enumerate(batch.messages):
            if self.now() > cutoff:
                logger.warning(
                    "deadline reached, leaving remaining messages for redelivery",
                    remaining=len(batch.messages) - index,
                )
                break
            self._process(batch, msg)

        report = batch.redelivery_report()
        logger.info("batch dispatched", messages=len(batch.messages), redeliver=len(report))
        return report

    def _process(self, batch: DispatchBatch, msg: MessageEnvelope) -> None:
        connection_id = msg.destination_connection_id
        if not connection_id:
            logger.warning("skipping sending, no connection ID attribute found", message_id=msg.message_id,
                           policy=self.unaddressable_policy.value)
            if self.unaddressable_policy == UnaddressablePolicy.DROP:
                batch.mark(msg.message_id, Outcome.SKIPPED)
            return

        # TODO: resolve topic destinations through Store.query for broadcast messages
        try:
            self.push_channel.post_to_connection(connection_id, msg.payload)
        except DeliveryError as e:
            logger.warning(
                "failed to post to web socket connection, failing message",
                message_id=msg.message_id,
                connection_id=connection_id,
                gone=e.gone,
                error=str(e),
            )
            return
        except Exception:
            logger.exception("unexpected push failure, failing message", message_id=msg.message_id,
                             connection_id=connection_id)
            return
        batch.mark(msg.message_id, Outcome.DELIVERED)
