"""
Explicit change notifications for advance balances.

Publishers call ``EventBus.publish``; subscribers get the event synchronously
and re-fetch whatever they need. Nothing here is global.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Literal, Optional, Tuple

logger = logging.getLogger(__name__)

BalanceAction = Literal["created", "updated", "deleted", "cancelled", "applied", "released"]


@dataclass(frozen=True)
class BalanceChanged:
    customer_id: str
    customer_kind: str
    action: BalanceAction
    receipt_id: Optional[str] = None
    billing_id: Optional[str] = None
    at: datetime = field(default_factory=datetime.utcnow)


Handler = Callable[[BalanceChanged], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: BalanceChanged) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                # a broken subscriber must not undo a committed change
                logger.exception("Balance event handler %r failed for %s", handler, event)


class BalanceCache:
    """Per-customer advance balance, filled on demand and dropped on change."""

    def __init__(self, loader: Callable[[str, str], int]) -> None:
        self._loader = loader
        self._values: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def get(self, customer_id: str, customer_kind: str) -> int:
        key = (customer_id, customer_kind)
        with self._lock:
            if key in self._values:
                return self._values[key]
        value = self._loader(customer_id, customer_kind)
        with self._lock:
            self._values[key] = value
        return value

    def invalidate(self, customer_id: str, customer_kind: Optional[str] = None) -> None:
        with self._lock:
            for key in [k for k in self._values if k[0] == customer_id and customer_kind in (None, k[1])]:
                del self._values[key]

    def on_event(self, event: BalanceChanged) -> None:
        self.invalidate(event.customer_id, event.customer_kind)
