import json
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from .db import Store
from .errors import DecodingError, RelayError, StoreUnavailable
from .models import Connection, ConnectionManager
from .schemas import SubscribeFrame
from .utilities import (
    configure_logging,
    get_logger,
    get_settings,
    make_ack,
    make_connected,
    make_default,
    make_error,
    make_pong,
    parse_topics,
)

SETTINGS = get_settings()
configure_logging(SETTINGS.log_level, SETTINGS.log_json)
logger = get_logger(__name__)

# Global registry and live connections
REGISTRY = Store.from_settings(SETTINGS)
CONNECTIONS = ConnectionManager()

# Stats
START_TS = datetime.now(timezone.utc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("starting up", region=SETTINGS.region, endpoint=SETTINGS.endpoint, table=SETTINGS.table_name)
    yield
    closed = await CONNECTIONS.close_all()
    logger.info("shut down", closed_connections=len(closed))

app = FastAPI(title="WebSocket topic relay", lifespan=lifespan)


# -------------- Utilities --------------
async def subscribe(connection_id: str, topics: List[str]):
    # the registry is synchronous and may sleep between bulk write retries
    await run_in_threadpool(REGISTRY.batch_put, connection_id, topics)


# -------------- WebSocket handling --------------
@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket, topics: Optional[str] = None):
    await ws.accept()
    connection_id = uuid.uuid4().hex
    initial_topics = parse_topics(topics)

    # connect route
    try:
        await subscribe(connection_id, initial_topics)
    except RelayError as e:
        logger.error("connect subscription failed", connection_id=connection_id, error=str(e))
        await ws.send_text(json.dumps(make_error(None, "SUBSCRIBE_FAILED", str(e))))
        await ws.close(code=1011)
        return

    conn = Connection(connection_id, ws)
    await CONNECTIONS.add(conn)
    logger.info("connected", connection_id=connection_id, topics=initial_topics)
    conn.enqueue(make_connected(connection_id, initial_topics))

    try:
        while True:
            data = await ws.receive_text()
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                payload = None
            if not isinstance(payload, dict):
                # default route
                logger.info("received default request", connection_id=connection_id)
                conn.enqueue(make_default())
                continue

            typ = payload.get("type")
            request_id = payload.get("request_id")

            if typ == "ping":
                conn.enqueue(make_pong(request_id))
                continue

            if typ == "subscribe":
                try:
                    frame = SubscribeFrame.model_validate(payload)
                except ValidationError:
                    conn.enqueue(make_error(request_id, "BAD_REQUEST", "topics must be a list of strings"))
                    continue
                if not frame.topics:
                    conn.enqueue(make_error(request_id, "BAD_REQUEST", "topics required"))
                    continue
                try:
                    await subscribe(connection_id, frame.topics)
                except RelayError as e:
                    logger.error("subscription failed", connection_id=connection_id, error=str(e))
                    conn.enqueue(make_error(request_id, "SUBSCRIBE_FAILED", str(e)))
                    continue
                conn.enqueue(make_ack(request_id, frame.topics))
                continue

            # default route
            logger.info("received default request", connection_id=connection_id, type=typ)
            conn.enqueue(make_default())
    except WebSocketDisconnect:
        # subscriptions are left to expire; there is no delete path
        logger.info("disconnected", connection_id=connection_id)
    except Exception:
        # unexpected error; attempt to send internal error before closing
        logger.exception("websocket handler failed", connection_id=connection_id)
        try:
            await ws.send_text(json.dumps(make_error(None, "INTERNAL", "server error")))
            await ws.close(code=1011)
        except Exception:
            logger.warning("could not report internal error", connection_id=connection_id)
    finally:
        await CONNECTIONS.remove(connection_id)


# -------------- REST endpoints --------------
@app.post("/@connections/{connection_id}")
async def rest_post_to_connection(connection_id: str, request: Request):
    data = await request.body()
    if not await CONNECTIONS.push(connection_id, data):
        raise HTTPException(status_code=410, detail="gone")
    return {"status": "sent", "connection_id": connection_id}

@app.get("/topics/{topic:path}/connections")
async def rest_list_subscribers(topic: str):
    try:
        connection_ids = await run_in_threadpool(lambda: list(REGISTRY.query(topic)))
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except DecodingError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"topic": topic, "connections": connection_ids}

@app.get("/health")
async def rest_health():
    now = datetime.now(timezone.utc)
    uptime_sec = int((now - START_TS).total_seconds())
    return {
        "uptime_sec": uptime_sec,
        "connections": await CONNECTIONS.count(),
        "messages_pushed": CONNECTIONS.messages_pushed,
    }


def run():
    uvicorn.run(app, host=SETTINGS.host, port=SETTINGS.port)
