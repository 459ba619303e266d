"""In-memory event feed and listener registry for the escrow ledger."""

from __future__ import annotations

from collections import defaultdict, deque
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from guess_escrow.ledger.models import LedgerEvent
from guess_escrow.utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[Optional[dict]], None]


class MemoryStore:
    """Volatile storage for the activity feed, plus event fan-out to listeners."""

    def __init__(self, *, feed_capacity: int = 100) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._feed_capacity = feed_capacity
        self._live_feed: deque[LedgerEvent] = deque(maxlen=feed_capacity)
        self._last_state: Optional[dict] = None

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Listener) -> None:
        with self._lock:
            self._listeners[event_type].append(callback)
        logger.debug("[MemoryStore] Added listener for event_type=%s", event_type)

    def remove_listener(self, event_type: str, callback: Listener) -> None:
        with self._lock:
            if callback in self._listeners.get(event_type, []):
                self._listeners[event_type].remove(callback)

    def _emit(self, event_type: str, payload: Optional[dict]) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event_type, []))
        for callback in listeners:
            try:
                callback(payload)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", event_type, exc)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def publish(self, event_type: str, message: str, details: Optional[Dict[str, Any]] = None) -> LedgerEvent:
        """Append an event to the live feed and notify ``live_feed`` and per-type listeners."""
        item = LedgerEvent(event_type=event_type, message=message, details=dict(details or {}))
        with self._lock:
            self._live_feed.append(item)
        logger.info("[MemoryStore] %s: %s", event_type, message)

        payload = self.serialize_event(item)
        self._emit(event_type, payload)
        self._emit("live_feed", payload)
        return item

    def set_ledger_state(self, state: dict) -> None:
        with self._lock:
            self._last_state = state
        self._emit("ledger_update", state)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_ledger_state(self) -> Optional[dict]:
        with self._lock:
            return self._last_state

    def get_live_feed(self, limit: Optional[int] = None) -> List[LedgerEvent]:
        with self._lock:
            items = list(self._live_feed)
        if limit is not None:
            return items[-limit:]
        return items

    def events_of(self, event_type: str) -> List[LedgerEvent]:
        return [item for item in self.get_live_feed() if item.event_type == event_type]

    @staticmethod
    def serialize_event(item: LedgerEvent) -> dict:
        return {
            "id": item.get_item_id(),
            "type": item.event_type,
            "message": item.message,
            "details": item.details,
            "timestamp": item.event_time,
        }

    def clear_all_data(self) -> None:
        with self._lock:
            self._live_feed.clear()
            self._last_state = None
        logger.debug("[MemoryStore] clear_all_data called")
