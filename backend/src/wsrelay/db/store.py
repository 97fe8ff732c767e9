"""Storage backends behind the subscription registry.

A backend only has to offer the three primitives the registry relies on:
a blind single-item upsert, a bulk write that may hand back an unprocessed
subset, and paginated reads of one partition ordered by sort key.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import redis

from ..errors import StoreUnavailable
from ..utilities.constants import MAX_BATCH_WRITE_ITEMS
from ..utilities.logging_config import get_logger
from ..utilities.settings import Settings

logger = get_logger(__name__)

Item = Dict[str, Any]


class SubscriptionStore(ABC):

    @abstractmethod
    def put_item(self, item: Item) -> None:
        ...

    @abstractmethod
    def batch_write(self, items: List[Item]) -> List[Item]:
        """Write ``items``; return the subset that was not applied."""

    @abstractmethod
    def query_page(self, partition_key: str, start_after: Optional[str], limit: int) -> Tuple[List[Item], Optional[str]]:
        """Return one page of a partition and the key to resume from, or None when done."""


class InMemorySubscriptionStore(SubscriptionStore):
    """Process-local store, sorted by sort key within each partition.

    ``max_batch_write`` caps how many items one bulk write applies; the rest
    come back unprocessed. Expired rows stay readable until ``purge_expired``.
    """

    def __init__(self, max_batch_write: int = MAX_BATCH_WRITE_ITEMS):
        self.max_batch_write = max_batch_write
        self.partitions: Dict[str, Dict[str, Item]] = {}
        self.lock = threading.Lock()

    def put_item(self, item: Item) -> None:
        with self.lock:
            self.partitions.setdefault(item["pk"], {})[item["sk"]] = dict(item)

    def batch_write(self, items: List[Item]) -> List[Item]:
        accepted, unprocessed = items[:self.max_batch_write], items[self.max_batch_write:]
        with self.lock:
            for item in accepted:
                self.partitions.setdefault(item["pk"], {})[item["sk"]] = dict(item)
        return list(unprocessed)

    def query_page(self, partition_key: str, start_after: Optional[str], limit: int) -> Tuple[List[Item], Optional[str]]:
        with self.lock:
            partition = self.partitions.get(partition_key, {})
            keys = sorted(k for k in partition if start_after is None or k > start_after)
            page = [dict(partition[k]) for k in keys[:limit]]
        last_key = keys[limit - 1] if len(keys) > limit else None
        return page, last_key

    def purge_expired(self, now: datetime) -> int:
        cutoff = int(now.timestamp())
        removed = 0
        with self.lock:
            for pk in list(self.partitions):
                partition = self.partitions[pk]
                for sk in [sk for sk, item in partition.items() if int(item["ttl"]) <= cutoff]:
                    del partition[sk]
                    removed += 1
                if not partition:
                    del self.partitions[pk]
        return removed


class RedisSubscriptionStore(SubscriptionStore):
    """Redis backed store.

    Each record is a hash ``<table>:<pk>:<sk>`` expiring at its ttl, indexed by
    a lexicographically ordered sorted set ``<table>:<pk>``. Index members whose
    hash has already expired are skipped on read and pruned from the index.
    """

    COMMANDS_PER_PUT = 5

    def __init__(self, client: redis.Redis, table_name: str):
        self.client = client
        self.table_name = table_name

    @classmethod
    def from_url(cls, url: str, table_name: str) -> "RedisSubscriptionStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), table_name)

    def _index_key(self, partition_key: str) -> str:
        return f"{self.table_name}:{partition_key}"

    def _item_key(self, partition_key: str, sort_key: str) -> str:
        return f"{self.table_name}:{partition_key}:{sort_key}"

    def _queue_put(self, pipe, item: Item) -> None:
        item_key = self._item_key(item["pk"], item["sk"])
        index_key = self._index_key(item["pk"])
        pipe.hset(item_key, mapping=item)
        pipe.expireat(item_key, int(item["ttl"]))
        pipe.zadd(index_key, {item["sk"]: 0})
        # NX gives a new index an expiry, GT then extends it to the latest record
        pipe.expireat(index_key, int(item["ttl"]), nx=True)
        pipe.expireat(index_key, int(item["ttl"]), gt=True)

    def put_item(self, item: Item) -> None:
        try:
            pipe = self.client.pipeline(transaction=True)
            self._queue_put(pipe, item)
            pipe.execute()
        except redis.RedisError as exc:
            raise StoreUnavailable(f"put failed: {exc}") from exc

    def batch_write(self, items: List[Item]) -> List[Item]:
        if not items:
            return []
        try:
            pipe = self.client.pipeline(transaction=False)
            for item in items:
                self._queue_put(pipe, item)
            results = pipe.execute(raise_on_error=False)
        except redis.RedisError as exc:
            raise StoreUnavailable(f"batch write failed: {exc}") from exc

        # COMMANDS_PER_PUT were queued per item; any failed command leaves that item unprocessed
        n = self.COMMANDS_PER_PUT
        unprocessed = []
        for i, item in enumerate(items):
            if any(isinstance(r, Exception) for r in results[i * n:(i + 1) * n]):
                unprocessed.append(item)
        if unprocessed:
            logger.warning("redis batch write partially failed", unprocessed=len(unprocessed), total=len(items))
        return unprocessed

    def query_page(self, partition_key: str, start_after: Optional[str], limit: int) -> Tuple[List[Item], Optional[str]]:
        low = "-" if start_after is None else f"({start_after}"
        try:
            members = self.client.zrangebylex(self._index_key(partition_key), low, "+", start=0, num=limit)
            if not members:
                return [], None
            pipe = self.client.pipeline(transaction=False)
            for sk in members:
                pipe.hgetall(self._item_key(partition_key, sk))
            hashes = pipe.execute()
        except redis.RedisError as exc:
            raise StoreUnavailable(f"query failed: {exc}") from exc

        page = [h for h in hashes if h]
        expired = [sk for sk, h in zip(members, hashes) if not h]
        if expired:
            # records already gone through their own expiry; drop them from the index
            try:
                self.client.zrem(self._index_key(partition_key), *expired)
            except redis.RedisError as exc:
                raise StoreUnavailable(f"index prune failed: {exc}") from exc
        last_key = members[-1] if len(members) == limit else None
        return page, last_key


def build_store(settings: Settings) -> SubscriptionStore:
    if settings.store_backend == "redis":
        return RedisSubscriptionStore.from_url(settings.redis_url, settings.table_name)
    return InMemorySubscriptionStore()
