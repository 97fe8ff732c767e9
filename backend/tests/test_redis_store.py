from unittest.mock import MagicMock

import fakeredis
import pytest
import redis

from wsrelay.db import InMemorySubscriptionStore, RedisSubscriptionStore, Store, build_store
from wsrelay.errors import StoreUnavailable
from wsrelay.utilities import Settings


def item(sk, connection_id="c1"):
    return {"pk": "topic/ab12", "sk": sk, "ttl": 1704112500, "t": "ab12", "id": connection_id}


@pytest.fixture
def client():
    client = MagicMock(spec=redis.Redis)
    client.pipeline.return_value = MagicMock()
    return client


@pytest.fixture
def store(client):
    return RedisSubscriptionStore(client, table_name="Subscriptions")


def test_put_item_writes_hash_and_index(store, client):
    store.put_item(item("20240101120000/c1"))

    pipe = client.pipeline.return_value
    pipe.hset.assert_called_once_with("Subscriptions:topic/ab12:20240101120000/c1", mapping=item("20240101120000/c1"))
    pipe.expireat.assert_any_call("Subscriptions:topic/ab12:20240101120000/c1", 1704112500)
    pipe.zadd.assert_called_once_with("Subscriptions:topic/ab12", {"20240101120000/c1": 0})
    pipe.execute.assert_called_once()


def test_batch_write_reports_failed_items(store, client):
    pipe = client.pipeline.return_value
    pipe.execute.return_value = [1, True, 1, True, True, redis.ResponseError("OOM"), True, 1, True, True]

    unprocessed = store.batch_write([item("a/c1"), item("b/c2", "c2")])

    assert unprocessed == [item("b/c2", "c2")]


def test_batch_write_nothing_to_do(store, client):
    assert store.batch_write([]) == []
    client.pipeline.assert_not_called()


def test_query_page_skips_expired_hashes(store, client):
    client.zrangebylex.return_value = ["a/c1", "b/c2"]
    client.pipeline.return_value.execute.return_value = [item("a/c1"), {}]

    page, last_key = store.query_page("topic/ab12", None, 2)

    client.zrangebylex.assert_called_once_with("Subscriptions:topic/ab12", "-", "+", start=0, num=2)
    assert page == [item("a/c1")]
    assert last_key == "b/c2"
    client.zrem.assert_called_once_with("Subscriptions:topic/ab12", "b/c2")


def test_query_page_resumes_after_key(store, client):
    client.zrangebylex.return_value = ["c/c3"]
    client.pipeline.return_value.execute.return_value = [item("c/c3", "c3")]

    page, last_key = store.query_page("topic/ab12", "b/c2", 2)

    client.zrangebylex.assert_called_once_with("Subscriptions:topic/ab12", "(b/c2", "+", start=0, num=2)
    assert last_key is None


def test_connection_errors_become_store_unavailable(store, client):
    client.pipeline.return_value.execute.side_effect = redis.ConnectionError("refused")
    client.zrangebylex.side_effect = redis.ConnectionError("refused")

    with pytest.raises(StoreUnavailable):
        store.put_item(item("a/c1"))
    with pytest.raises(StoreUnavailable):
        store.batch_write([item("a/c1")])
    with pytest.raises(StoreUnavailable):
        store.query_page("topic/ab12", None, 10)


def test_build_store_selects_backend():
    assert isinstance(build_store(Settings(store_backend="memory")), InMemorySubscriptionStore)
    # from_url does not connect until the first command
    assert isinstance(build_store(Settings(store_backend="redis")), RedisSubscriptionStore)


@pytest.fixture
def fake_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def fake_registry(fake_client, sleeper):
    return Store(RedisSubscriptionStore(fake_client, table_name="Subscriptions"), page_size=2, sleep=sleeper)


def test_topic_index_expires_with_its_records(fake_registry, fake_client):
    fake_registry.put("c1", "ab12")

    index_ttl = fake_client.ttl("Subscriptions:topic/ab12")
    [record_key] = fake_client.keys("Subscriptions:topic/ab12:*")
    assert index_ttl > 0
    assert index_ttl >= fake_client.ttl(record_key) - 1


def test_topic_index_expiry_follows_latest_record(fake_registry, fake_client):
    fake_registry.put("c1", "ab12")
    [record_key] = fake_client.keys("Subscriptions:topic/ab12:*")
    first_expiry = int(fake_client.hget(record_key, "ttl"))
    before = fake_client.ttl("Subscriptions:topic/ab12")

    fake_registry.store.put_item({"pk": "topic/ab12", "sk": "29990101000000/c2", "ttl": first_expiry + 600,
                                  "t": "ab12", "id": "c2"})

    assert fake_client.ttl("Subscriptions:topic/ab12") >= before + 590


def test_batch_put_and_query_against_redis(fake_registry):
    fake_registry.batch_put("C", ["t1", "t2", "t3"])
    for topic in ["t1", "t2", "t3"]:
        assert list(fake_registry.query(topic)) == ["C"]


def test_query_prunes_index_entries_of_expired_records(fake_registry, fake_client):
    for connection_id in ["c1", "c2", "c3"]:
        fake_registry.put(connection_id, "ab12")
    # a record whose hash already expired leaves only its index entry behind
    fake_client.zadd("Subscriptions:topic/ab12", {"00000000000000/stale": 0})

    assert sorted(fake_registry.query("ab12")) == ["c1", "c2", "c3"]
    assert fake_client.zscore("Subscriptions:topic/ab12", "00000000000000/stale") is None
    assert fake_client.zcard("Subscriptions:topic/ab12") == 3
