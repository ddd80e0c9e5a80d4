"""Process-wide runtime counters shared across modules."""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_lock = threading.Lock()
_total_requests = 0
_active_observers = 0
_last_data_update: Optional[datetime] = None


def record_request() -> None:
    global _total_requests
    with _lock:
        _total_requests += 1


def observer_connected() -> int:
    global _active_observers
    with _lock:
        _active_observers += 1
        return _active_observers


def observer_disconnected() -> int:
    global _active_observers
    with _lock:
        _active_observers = max(0, _active_observers - 1)
        return _active_observers


def active_observers() -> int:
    return _active_observers


def mark_data_update(when: Optional[datetime] = None) -> None:
    global _last_data_update
    with _lock:
        _last_data_update = when or datetime.now(timezone.utc)


def snapshot() -> Dict[str, Any]:
    """Read-only view for health endpoints."""
    with _lock:
        return {
            "total_requests": _total_requests,
            "active_observers": _active_observers,
            "last_data_update": (
                _last_data_update.isoformat() if _last_data_update else None
            ),
        }


def reset() -> None:
    global _total_requests, _active_observers, _last_data_update
    with _lock:
        _total_requests = 0
        _active_observers = 0
        _last_data_update = None
