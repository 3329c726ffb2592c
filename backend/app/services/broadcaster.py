"""Room-scoped fan-out of project and task change notifications.

Each live connection owns an outbound queue drained by its own writer task,
so ``publish`` only enqueues and never waits on a slow subscriber. Messages
are tagged with the room they were published to; the writer drops any whose
room the connection has since left, so nothing is flushed after a leave or
disconnect. Delivery is best-effort and at-most-once.
"""
import asyncio
import contextlib
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from backend.app.schemas.events import RoomEvent

logger = logging.getLogger("task24.realtime")

Sender = Callable[[Dict[str, Any]], Awaitable[None]]

_CLOSE = object()


class Connection:
    def __init__(
        self,
        sender: Sender,
        user_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        max_queue: int = 256,
    ):
        self.id = connection_id or uuid.uuid4().hex
        self.user_id = user_id
        self.rooms: Set[str] = set()
        self.closed = False
        self._sender = sender
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)

    def enqueue(self, message: Dict[str, Any], room_id: Optional[str] = None) -> bool:
        """Queue ``message`` for delivery; False if closed or the queue is full."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait((room_id, message))
        except asyncio.QueueFull:
            logger.warning("Dropping %s for connection %s: outbound queue full", message.get("event"), self.id)
            return False
        return True

    async def run(self) -> None:
        """Writer loop; returns when the connection is closed or a send fails."""
        while True:
            item = await self._queue.get()
            try:
                if item is _CLOSE:
                    return
                room_id, message = item
                if room_id is not None and room_id not in self.rooms:
                    continue
                await self._sender(message)
            except Exception as e:
                logger.warning("Send to connection %s failed: %s", self.id, e)
                self.closed = True
                return
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        await self._queue.join()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.rooms.clear()
        # The sentinel must get through even when the queue is full
        while True:
            try:
                self._queue.put_nowait(_CLOSE)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self._queue.task_done()


async def stop_writer(writer: asyncio.Task) -> None:
    """Cancel a connection's writer task and collect its outcome."""
    writer.cancel()
    try:
        with contextlib.suppress(asyncio.CancelledError):
            await writer
    except Exception as e:
        logger.error("Writer task failed: %s", e)


class RoomBroadcaster:
    def __init__(self):
        self._rooms: Dict[str, Set[Connection]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._connections: Dict[str, Connection] = {}

    def _lock(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = self._locks[room_id] = asyncio.Lock()
        return lock

    def register(self, connection: Connection) -> Connection:
        self._connections[connection.id] = connection
        return connection

    def get_connection(self, connection_id: Optional[str]) -> Optional[Connection]:
        return self._connections.get(connection_id) if connection_id else None

    async def join(self, connection: Connection, room_id: str) -> None:
        if connection.closed:
            return
        async with self._lock(room_id):
            self._rooms.setdefault(room_id, set()).add(connection)
            connection.rooms.add(room_id)
        logger.debug("Connection %s joined %s", connection.id, room_id)

    async def leave(self, connection: Connection, room_id: str) -> None:
        async with self._lock(room_id):
            connection.rooms.discard(room_id)
            subscribers = self._rooms.get(room_id)
            if subscribers is None:
                return
            subscribers.discard(connection)
            if not subscribers:
                del self._rooms[room_id]
                self._locks.pop(room_id, None)
        logger.debug("Connection %s left %s", connection.id, room_id)

    def publish(self, origin: Optional[Connection], room_id: str, event: RoomEvent) -> int:
        """
        Enqueue ``event`` for every current subscriber of ``room_id`` except
        ``origin``. Returns the number of subscribers it was queued for.
        """
        message = event.to_message(room_id)
        delivered = 0
        for connection in list(self._rooms.get(room_id, ())):
            if connection is origin:
                continue
            try:
                if connection.enqueue(message, room_id):
                    delivered += 1
            except Exception as e:
                logger.warning("Failed to queue %s for connection %s: %s", event.name, connection.id, e)
        logger.debug("Published %s to %s (%d subscribers)", event.name, room_id, delivered)
        return delivered

    async def disconnect(self, connection: Connection) -> None:
        for room_id in list(connection.rooms):
            await self.leave(connection, room_id)
        self._connections.pop(connection.id, None)
        connection.close()

    def subscribers(self, room_id: str) -> List[str]:
        return sorted(c.id for c in self._rooms.get(room_id, ()))

    def rooms_of(self, connection: Connection) -> List[str]:
        return sorted(connection.rooms)

    def connection_count(self) -> int:
        return len(self._connections)
