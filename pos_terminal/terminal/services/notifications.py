# terminal/services/notifications.py

"""
NOTIFICATIONS + CACHE INVALIDATION

Purpose:
- Notifier: the till's toast surface. Services push, the UI drains.
- Signals telling collaborators that cached sales/inventory views are stale:
  - sale_submitted      (backend accepted a sale)
  - payment_confirmed   (async payment reached paid/completed)

Receivers here drop the cached unit inventory so the next catalog read
goes back to the backend.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from django.core.cache import cache
from django.dispatch import Signal, receiver
from django.utils import timezone

logger = logging.getLogger(__name__)

# kwargs: unit_id, sale
sale_submitted = Signal()
# kwargs: unit_id, reference, status
payment_confirmed = Signal()


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    message: str
    created_at: datetime = field(default_factory=timezone.now)


class Notifier:
    """
    Bounded, thread-safe queue (the poller pushes from its own thread).
    """

    def __init__(self, *, maxlen: int = 50):
        self._queue: deque[Notification] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def notify(self, level: NotificationLevel, message: str) -> Notification:
        note = Notification(level=NotificationLevel(level), message=str(message))
        with self._lock:
            self._queue.append(note)
        return note

    def success(self, message: str) -> Notification:
        return self.notify(NotificationLevel.SUCCESS, message)

    def info(self, message: str) -> Notification:
        return self.notify(NotificationLevel.INFO, message)

    def warning(self, message: str) -> Notification:
        return self.notify(NotificationLevel.WARNING, message)

    def error(self, message: str) -> Notification:
        return self.notify(NotificationLevel.ERROR, message)

    def pending(self) -> list[Notification]:
        with self._lock:
            return list(self._queue)

    def drain(self) -> list[Notification]:
        with self._lock:
            notes = list(self._queue)
            self._queue.clear()
        return notes


# =====================================================
# CACHE KEYS + RECEIVERS
# =====================================================


def inventory_cache_key(unit_id) -> str:
    return f"terminal:inventory:{unit_id}"


def invalidate_unit_inventory(unit_id) -> None:
    if unit_id in (None, ""):
        return
    cache.delete(inventory_cache_key(unit_id))
    logger.debug("Unit inventory cache invalidated", extra={"unit_id": unit_id})


@receiver(sale_submitted, dispatch_uid="terminal.invalidate_inventory_on_sale")
def _on_sale_submitted(sender, unit_id=None, **kwargs):
    invalidate_unit_inventory(unit_id)


@receiver(payment_confirmed, dispatch_uid="terminal.invalidate_inventory_on_payment")
def _on_payment_confirmed(sender, unit_id=None, **kwargs):
    invalidate_unit_inventory(unit_id)
