"""
broadcaster.py — Room-based push of live events to connected observers.

An observer is anything with ``async send_json(dict)``; in production it is
a Starlette WebSocket registered by api/v1/live.py.

    connect(obs)          → counted in runtime_state.active_observers
    join(obs, room)       → receives events broadcast to that room
    leave(obs, room)
    disconnect(obs)       → removed from every room, counter decremented

broadcast() sends to every observer joined to the room at that moment,
concurrently and independently; a failed send affects only that observer.
Each send is bounded by LIVE_SEND_TIMEOUT_SECONDS so a stalled socket cannot
hold up the caller (reading ingestion awaits the push).
There is no replay for late joiners.

Usage:
    broadcaster = get_broadcaster()
    await broadcaster.broadcast("alert", {...}, room=settings.LIVE_ALERT_ROOM)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Set

from backend.app.core import runtime_state
from backend.app.core.config import settings

logger = logging.getLogger(__name__)


class Observer(Protocol):
    async def send_json(self, data: Any) -> None: ...


class LiveEventBroadcaster:

    def __init__(self, send_timeout: Optional[float] = None) -> None:
        self.send_timeout = (
            settings.LIVE_SEND_TIMEOUT_SECONDS if send_timeout is None else send_timeout
        )
        self._observers: Set[Any] = set()
        self._rooms: Dict[str, Set[Any]] = {}

    # ── Connection lifecycle ──

    async def connect(self, observer: Observer) -> None:
        if observer in self._observers:
            return
        self._observers.add(observer)
        count = runtime_state.observer_connected()
        logger.info("Live observer connected (active=%d)", count)

    async def disconnect(self, observer: Observer) -> None:
        if observer not in self._observers:
            return
        self._observers.discard(observer)
        for room in list(self._rooms):
            members = self._rooms[room]
            members.discard(observer)
            if not members:
                del self._rooms[room]
        count = runtime_state.observer_disconnected()
        logger.info("Live observer disconnected (active=%d)", count)

    async def join(self, observer: Observer, room: str) -> None:
        if observer not in self._observers:
            await self.connect(observer)
        self._rooms.setdefault(room, set()).add(observer)
        logger.debug("Observer joined room %s", room, extra={"room": room})

    async def leave(self, observer: Observer, room: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(observer)
        if not members:
            del self._rooms[room]
        logger.debug("Observer left room %s", room, extra={"room": room})

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    def connection_count(self) -> int:
        return len(self._observers)

    # ── Fan-out ──

    async def broadcast(
        self,
        event_type: str,
        payload: Dict[str, Any],
        room: Optional[str] = None,
    ) -> int:
        """Send one event to the room's current members; returns successful sends."""
        room = room or settings.LIVE_ALERT_ROOM
        targets = list(self._rooms.get(room, ()))
        if not targets:
            return 0

        body = {
            "event": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **payload,
        }
        results = await asyncio.gather(*[
            _safe_send_json(obs, body, self.send_timeout) for obs in targets
        ])
        delivered = sum(1 for ok in results if ok)
        logger.debug(
            "Broadcast %s to room %s: %d/%d delivered",
            event_type, room, delivered, len(targets),
            extra={"room": room, "recipient_count": len(targets)},
        )
        return delivered

    async def close(self) -> None:
        for observer in list(self._observers):
            await self.disconnect(observer)


async def _safe_send_json(observer: Observer, body: Dict[str, Any], timeout: float) -> bool:
    """Send JSON to one observer, logging but not re-raising on failure."""
    try:
        await asyncio.wait_for(observer.send_json(body), timeout)
        return True
    except asyncio.TimeoutError:
        logger.warning("Live push timed out after %.1fs", timeout)
        return False
    except Exception as exc:
        logger.warning("Live push failed: %s", exc)
        return False


# ═══════════════════════════════════════════════════════════════════════════
# Module-level singleton
# ═══════════════════════════════════════════════════════════════════════════

_broadcaster: Optional[LiveEventBroadcaster] = None


def get_broadcaster() -> LiveEventBroadcaster:
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = LiveEventBroadcaster()
    return _broadcaster
