import time
from datetime import datetime
from typing import Callable, Iterator, List, Optional

from pydantic import ValidationError

from ..backoff import Backoff
from ..errors import DecodingError, EncodingError
from ..schemas import SubscriptionRecord
from ..utilities.constants import DEFAULT_BACKOFF_CEILING, DEFAULT_PAGE_SIZE
from ..utilities.logging_config import get_logger
from ..utilities.settings import Settings
from ..utilities.utility_functions import topic_partition_key, utc_now
from .store import Item, SubscriptionStore, build_store

logger = get_logger(__name__)


def encode_record(topic: str, connection_id: str, now: datetime) -> Item:
    try:
        return SubscriptionRecord.create(topic, connection_id, now).model_dump(by_alias=True)
    except (ValueError, TypeError) as exc:
        raise EncodingError(f"cannot encode record for topic {topic!r}, connection {connection_id!r}: {exc}") from exc


def decode_page(items: List[Item]) -> List[SubscriptionRecord]:
    try:
        return [SubscriptionRecord.model_validate(item) for item in items]
    except ValidationError as exc:
        raise DecodingError(f"cannot decode page of {len(items)} records: {exc}") from exc


class Store:
    """Topic to connection registry.

    Writes are blind upserts: subscribing twice leaves two rows that both
    expire on their own. Nothing is ever deleted explicitly.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        backoff_ceiling: int = DEFAULT_BACKOFF_CEILING,
        page_size: int = DEFAULT_PAGE_SIZE,
        now: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.backoff_ceiling = backoff_ceiling
        self.page_size = page_size
        self.now = now
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, store: Optional[SubscriptionStore] = None) -> "Store":
        return cls(
            store=store if store is not None else build_store(settings),
            backoff_ceiling=settings.backoff_ceiling,
            page_size=settings.page_size,
        )

    def put(self, connection_id: str, topic: str) -> None:
        item = encode_record(topic, connection_id, self.now())
        self.store.put_item(item)
        logger.info("subscribed", connection_id=connection_id, topic=topic)

    def batch_put(self, connection_id: str, topics: List[str]) -> None:
        if not topics:
            return
        now = self.now()
        pending = [encode_record(topic, connection_id, now) for topic in topics]

        # Retry up to backoff_ceiling times, over 6.2 seconds for the default of 5.
        bo = Backoff(self.backoff_ceiling, sleep=self.sleep)
        while True:
            pending = self.store.batch_write(pending)
            if not pending:
                break
            logger.warning(
                "bulk write returned unprocessed items",
                connection_id=connection_id,
                unprocessed=len(pending),
                attempt=bo.attempt,
            )
            bo.advance()
        logger.info("subscribed", connection_id=connection_id, topics=topics)

    def query(self, topic: str) -> Iterator[str]:
        """Yield the connection ids subscribed to ``topic``, page by page.

        Order follows storage pagination; rows past their ttl but not yet
        removed by the store may still appear.
        """
        partition_key = topic_partition_key(topic)
        start_after = None
        while True:
            items, start_after = self.store.query_page(partition_key, start_after, self.page_size)
            for record in decode_page(items):
                yield record.connection_id
            if start_after is None:
                return
