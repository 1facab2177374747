"""
In-process publish/subscribe for presentation events.

Events published by the settlement layer:
    balance_changed      {'player_id', 'balance', 'amount', 'category', 'entry_id'}
    round_phase_changed  {'round_number', 'phase', 'multiplier', ...}
    wager_settled        {'player_id', 'wager_id', 'game', 'status', 'payout', ...}
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)

BALANCE_CHANGED = 'balance_changed'
ROUND_PHASE_CHANGED = 'round_phase_changed'
WAGER_SETTLED = 'wager_settled'


class EventBus:
    def __init__(self):
        self._subscribers = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event: str, callback: Callable[[Dict[str, Any]], None]):
        with self._lock:
            self._subscribers[event].append(callback)
        return callback

    def unsubscribe(self, event: str, callback):
        with self._lock:
            if callback in self._subscribers.get(event, []):
                self._subscribers[event].remove(callback)

    def publish(self, event: str, payload: Dict[str, Any]):
        """Delivers to every subscriber. A failing subscriber is logged and skipped; the ledger state is already committed."""
        with self._lock:
            callbacks = list(self._subscribers.get(event, []))
        for callback in callbacks:
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Subscriber {getattr(callback, '__name__', callback)} failed on {event}: {e}", exc_info=True)
