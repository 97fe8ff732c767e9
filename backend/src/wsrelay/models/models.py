import asyncio
import json
from typing import Dict, List, Optional, Union

from fastapi import WebSocket

from ..utilities.constants import CONNECTION_QUEUE_SIZE
from ..utilities.logging_config import get_logger
from ..utilities.utility_functions import make_error

logger = get_logger(__name__)

Frame = Union[bytes, dict]


# ------------ Live connections held by this gateway ------------
class Connection:
    ''' One accepted WebSocket and its outbound buffer.'''

    def __init__(self, connection_id: str, websocket: WebSocket):

        self.connection_id = connection_id
        self.websocket = websocket

        # pushes never wait for a slow client
        # frames accumulate up to CONNECTION_QUEUE_SIZE, then the oldest is dropped
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=CONNECTION_QUEUE_SIZE)

        # background task that pops from queue and writes to the socket
        self.sender_task: Optional[asyncio.Task] = None
        self.connected = True

    def start(self):
        self.sender_task = asyncio.create_task(self._sender_loop())

    async def _sender_loop(self):
        try:
            while self.connected:
                frame = await self.queue.get()
                try:
                    await self._send(frame)
                except Exception:
                    # (broken pipe / closed) -> stop
                    break
        except asyncio.CancelledError:
            pass
        finally:
            self.connected = False

    async def _send(self, frame: Frame):
        if isinstance(frame, dict):
            await self.websocket.send_text(json.dumps(frame))
            return
        try:
            await self.websocket.send_text(frame.decode("utf-8"))
        except UnicodeDecodeError:
            await self.websocket.send_bytes(frame)

    def enqueue(self, frame: Frame):
        if self.queue.full():
            # drop the two oldest frames to make room for the overflow notice and this frame
            for _ in range(2):
                try:
                    _ = self.queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
            logger.warning("connection queue overflow, oldest frames dropped", connection_id=self.connection_id)
            self.queue.put_nowait(make_error(None, "SLOW_CONSUMER", "queue overflow; oldest messages dropped"))
        self.queue.put_nowait(frame)

    # graceful cleanup
    async def stop(self):
        self.connected = False
        if self.sender_task:
            self.sender_task.cancel()
            try:
                await self.sender_task
            except asyncio.CancelledError:
                pass


class ConnectionManager:
    ''' Connection id -> live connection, for the push endpoint.'''

    def __init__(self):
        self.connections: Dict[str, Connection] = {}
        self.lock = asyncio.Lock()
        # stats
        self.messages_pushed = 0

    async def add(self, conn: Connection):
        async with self.lock:
            self.connections[conn.connection_id] = conn
        conn.start()

    async def remove(self, connection_id: str) -> Optional[Connection]:
        async with self.lock:
            conn = self.connections.pop(connection_id, None)
        if conn is not None:
            await conn.stop()
        return conn

    async def push(self, connection_id: str, data: bytes) -> bool:
        """Queue ``data`` for a live connection; False when it is not connected here."""
        async with self.lock:
            conn = self.connections.get(connection_id)
            if conn is None or not conn.connected:
                return False
            self.messages_pushed += 1
        conn.enqueue(data)
        return True

    async def count(self) -> int:
        async with self.lock:
            return len(self.connections)

    async def close_all(self) -> List[str]:
        async with self.lock:
            conns = list(self.connections.values())
            self.connections.clear()
        for conn in conns:
            await conn.stop()
        return [c.connection_id for c in conns]
