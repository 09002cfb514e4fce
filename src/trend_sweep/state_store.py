# ============================================================================
# In-memory state stores - alert states and subscribers for the process lifetime
# ============================================================================

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from .models import AlertState, SubscriberStatus

logger = logging.getLogger("trend_sweep.state_store")


class AlertStateStore:
    """
    Last known alignment state per symbol.

    Records are replaced whole, never patched, and never expire: the
    instrument universe is fixed for the life of the process. All writes come
    from the single event-loop thread, so no lock is needed.
    """

    def __init__(self):
        self._states: Dict[str, AlertState] = {}
        self._writes = 0

    def get(self, symbol: str) -> Optional[AlertState]:
        return self._states.get(symbol)

    def put(self, symbol: str, state: AlertState) -> None:
        self._states[symbol] = state
        self._writes += 1

    def __len__(self) -> int:
        return len(self._states)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "alert_states_cached": len(self._states),
            "writes": self._writes,
            "aligned": sum(1 for s in self._states.values() if s.aligned),
        }


class SubscriberStore:
    """Chat subscriptions; toggled by subscribers, stamped by the scheduler after deliveries."""

    def __init__(self, chat_ids: Iterable[str] = (), clock: Callable[[], float] = time.time):
        self._clock = clock
        self._subscribers: Dict[str, SubscriberStatus] = {}
        for chat_id in chat_ids:
            self.add(chat_id)

    def add(self, chat_id: str, active: bool = True) -> SubscriberStatus:
        chat_id = str(chat_id)
        status = self._subscribers.get(chat_id)
        if status is None:
            status = SubscriberStatus(chat_id=chat_id, active=active)
            self._subscribers[chat_id] = status
            logger.info(f"Subscriber registered | active={active}")
        return status

    def get(self, chat_id: str) -> Optional[SubscriberStatus]:
        return self._subscribers.get(str(chat_id))

    def toggle(self, chat_id: str) -> bool:
        chat_id = str(chat_id)
        status = self._subscribers.get(chat_id)
        if status is None:
            # first toggle from an unknown chat subscribes it
            self.add(chat_id, active=True)
            return True
        status.active = not status.active
        return status.active

    def active_chat_ids(self) -> List[str]:
        return [s.chat_id for s in self._subscribers.values() if s.active]

    def mark_alerted(self, chat_id: str, ts: Optional[float] = None) -> None:
        status = self._subscribers.get(str(chat_id))
        if status is not None:
            status.last_alert_at = self._clock() if ts is None else ts

    def __len__(self) -> int:
        return len(self._subscribers)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "subscribers": len(self._subscribers),
            "active": len(self.active_chat_ids()),
        }
