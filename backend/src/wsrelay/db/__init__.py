from .db import Store, decode_page, encode_record
from .store import InMemorySubscriptionStore, RedisSubscriptionStore, SubscriptionStore, build_store
