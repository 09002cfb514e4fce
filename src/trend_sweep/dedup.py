import logging
from dataclasses import dataclass
from typing import Optional

from .models import AlertState, InstrumentAnalysis
from .state_store import AlertStateStore

logger = logging.getLogger("trend_sweep.dedup")


@dataclass(frozen=True)
class AlertTransition:
    previous: Optional[AlertState]
    current: AlertState
    changed: bool

    @property
    def notify(self) -> bool:
        """Entering an aligned state, or leaving one that was known."""
        if not self.changed:
            return False
        return self.current.aligned or (self.previous is not None and self.previous.aligned)


class AlertDeduplicator:
    """Reports an instrument only when its (above_all_both, below_all_both) pair changes."""

    def __init__(self, store: AlertStateStore):
        self.store = store

    def observe(self, symbol: str, analysis: InstrumentAnalysis) -> AlertTransition:
        current = AlertState.from_summary(analysis.summary)
        previous = self.store.get(symbol)
        changed = previous is None or previous != current
        if changed:
            self.store.put(symbol, current)
            logger.debug(f"{symbol} state change | {previous} -> {current}")
        return AlertTransition(previous=previous, current=current, changed=changed)

    def should_alert(self, symbol: str, analysis: InstrumentAnalysis) -> bool:
        return self.observe(symbol, analysis).changed
