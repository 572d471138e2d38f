import asyncio
import json
from typing import Protocol

from starlette.websockets import WebSocketState

from costpulse.core.cache import SnapshotCache
from costpulse.models import DashboardSnapshot, utcnow
from costpulse.observability.logger import get_logger

log = get_logger("websocket")


class Subscriber(Protocol):
    async def send_text(self, data: str) -> None: ...


def update_message(snapshot: DashboardSnapshot) -> dict:
    return {"type": "update", "data": snapshot.model_dump(mode="json"), "timestamp": utcnow().isoformat()}


def pong_message() -> dict:
    return {"type": "pong", "timestamp": utcnow().isoformat()}


def _is_live(connection: Subscriber) -> bool:
    state = getattr(connection, "client_state", WebSocketState.CONNECTED)
    return state == WebSocketState.CONNECTED


class BroadcastHub:
    """Fans each published snapshot out to the connected subscribers.

    Sends run concurrently with a per-subscriber timeout; a subscriber that
    fails, times out or is no longer connected is dropped without affecting
    the others.
    """

    def __init__(self, cache: SnapshotCache, send_timeout: float = 5.0):
        self.cache = cache
        self.send_timeout = send_timeout
        self.active_connections: list[Subscriber] = []

    @property
    def subscriber_count(self) -> int:
        return len(self.active_connections)

    async def subscribe(self, connection: Subscriber) -> Subscriber:
        """Register an (already accepted) connection and send it the current snapshot."""
        self.active_connections.append(connection)
        log.info("ws_connected", total=len(self.active_connections))

        current = self.cache.current()
        if current is not None:
            data = json.dumps(update_message(current), default=str)
            if not await self._send(connection, data):
                self.unsubscribe(connection)
        return connection

    def unsubscribe(self, connection: Subscriber):
        if connection in self.active_connections:
            self.active_connections.remove(connection)
            log.info("ws_disconnected", total=len(self.active_connections))

    async def publish(self, snapshot: DashboardSnapshot) -> int:
        return await self.broadcast(update_message(snapshot))

    async def broadcast(self, message: dict) -> int:
        """Send a message to every live subscriber. Returns the number of successful deliveries."""
        if not self.active_connections:
            return 0
        data = json.dumps(message, default=str)
        targets = list(self.active_connections)
        results = await asyncio.gather(*(self._send(conn, data) for conn in targets))
        for conn, delivered in zip(targets, results):
            if not delivered:
                self.unsubscribe(conn)
        delivered_count = sum(results)
        log.info("ws_broadcast", type=message.get("type"), delivered=delivered_count, dropped=len(targets) - delivered_count)
        return delivered_count

    async def _send(self, connection: Subscriber, data: str) -> bool:
        if not _is_live(connection):
            return False
        try:
            await asyncio.wait_for(connection.send_text(data), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            log.warning("ws_send_timeout", timeout=self.send_timeout)
            return False
        except Exception as e:
            log.warning("ws_send_failed", error=str(e))
            return False
