from datetime import datetime, timezone
from typing import List, Optional

from .constants import TOPIC_KEY_PREFIX


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_ts() -> str:
    return utc_now().isoformat()


def topic_partition_key(topic: str) -> str:
    return f"{TOPIC_KEY_PREFIX}{topic}"


def parse_topics(raw: Optional[str]) -> List[str]:
    """Split a comma separated ``topics`` query parameter, dropping blanks."""
    if not raw:
        return []
    return [t.strip() for t in raw.split(",") if t.strip()]


# Server -> client frames are built as dicts
def make_connected(connection_id: str, topics: List[str]):
    return {"type": "connected", "connection_id": connection_id, "topics": topics, "ts": now_ts()}

def make_ack(request_id: Optional[str], topics: Optional[List[str]] = None, status: str = "ok"):
    return {"type": "ack", "request_id": request_id, "topics": topics, "status": status, "ts": now_ts()}

def make_pong(request_id: Optional[str]):
    return {"type": "pong", "request_id": request_id, "ts": now_ts()}

def make_error(request_id: Optional[str], code: str, message: str):
    return {"type": "error", "request_id": request_id, "error": {"code": code, "message": message}, "ts": now_ts()}

def make_default():
    return {"ok": True}
