# terminal/services/terminal.py

"""
TERMINAL (ONE OPEN TILL SESSION)

Purpose:
- Compose session + client + cart + orchestrator + notifier for one operator.
- Product grid reads (unit inventory, cached) and server-side price snapshots
  when adding to the cart.
- Explicit teardown on logout.

TerminalRegistry:
- In-process map terminal_id -> Terminal. The Django session only stores the
  terminal_id; carts and pollers never leave memory.
- Tills idle past settings.TERMINAL_IDLE_SECONDS are closed and dropped.
"""

from __future__ import annotations

import logging
import threading
import uuid

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from terminal.services.backend_client import BackendError, RetailBackendClient
from terminal.services.cart import Cart, CartLine
from terminal.services.checkout_orchestrator import (
    CheckoutInProgressError,
    CheckoutOrchestrator,
    CheckoutPhase,
)
from terminal.services.invoice import InvoiceView, present_invoice
from terminal.services.notifications import Notifier, inventory_cache_key
from terminal.services.payloads import CatalogProduct, InventoryItem
from terminal.services.payment_poller import PollingPolicy
from terminal.services.session import PosSession

logger = logging.getLogger(__name__)


class ProductUnavailableError(Exception):
    pass


def _matches(item: InventoryItem, *, q: str, category: str) -> bool:
    product = item.product
    if not isinstance(product, CatalogProduct):
        # bare references cannot be searched or sold; hide them from the grid
        return False

    if category and category.lower() != "all" and product.category.lower() != category.lower():
        return False

    if q:
        needle = q.lower()
        return needle in product.name.lower() or needle in product.sku.lower()
    return True


class Terminal:
    def __init__(
        self,
        *,
        session: PosSession,
        client: RetailBackendClient,
        notifier: Notifier | None = None,
        policy: PollingPolicy | None = None,
    ):
        self.id = uuid.uuid4().hex
        self.session = session
        self.client = client
        self.notifier = notifier or Notifier()
        self.cart = Cart()
        self.orchestrator = CheckoutOrchestrator(
            session=session,
            client=client,
            cart=self.cart,
            notifier=self.notifier,
            policy=policy,
        )
        self.opened_at = timezone.now()
        self.last_seen = self.opened_at

    # -----------------------------
    # catalog
    # -----------------------------

    def _unit_inventory(self) -> list[InventoryItem]:
        key = inventory_cache_key(self.session.unit_id)
        items = cache.get(key)
        if items is None:
            items = self.client.list_unit_inventory(self.session.unit_id)
            cache.set(key, items, getattr(settings, "INVENTORY_CACHE_SECONDS", 60))
        return items

    def inventory(self, *, q: str = "", category: str = "") -> list[InventoryItem]:
        q = (q or "").strip()
        category = (category or "").strip()
        return [item for item in self._unit_inventory() if _matches(item, q=q, category=category)]

    def categories(self) -> list[str]:
        names = {
            item.product.category
            for item in self._unit_inventory()
            if isinstance(item.product, CatalogProduct) and item.product.category
        }
        return ["All", *sorted(names)]

    # -----------------------------
    # cart
    # -----------------------------

    def _guard_cart(self) -> None:
        # accepted sales clear the cart; edits made mid-flight would be lost
        if self.orchestrator.phase is CheckoutPhase.SUBMITTING:
            raise CheckoutInProgressError("A sale is being submitted; wait for it to finish.")

    def add_product(self, product_id) -> CartLine:
        """
        Price is snapshotted from the unit inventory, never taken from the UI.
        """
        self._guard_cart()
        wanted = str(product_id).strip()
        for item in self._unit_inventory():
            if item.product_id != wanted:
                continue
            product = item.product
            if not isinstance(product, CatalogProduct):
                raise ProductUnavailableError(f"Product {wanted} has no catalog details for this unit.")
            if product.unit_price <= 0:
                raise ProductUnavailableError(f"Product {product.name} has no selling price.")
            return self.cart.add_item(product)

        raise ProductUnavailableError(f"Product {wanted} is not stocked in this unit.")

    def update_quantity(self, product_id, delta: int) -> CartLine | None:
        self._guard_cart()
        return self.cart.update_quantity(product_id, delta)

    def remove_item(self, product_id) -> bool:
        self._guard_cart()
        return self.cart.remove_item(product_id)

    def clear_cart(self) -> None:
        self._guard_cart()
        self.cart.clear()

    # -----------------------------
    # invoice
    # -----------------------------

    def invoice(self) -> InvoiceView | None:
        orch = self.orchestrator
        checkout, settlement = orch.checkout, orch.settlement
        if checkout is None or settlement is None:
            return None
        return present_invoice(checkout=checkout, settlement=settlement, is_polling=orch.is_polling)

    # -----------------------------
    # teardown
    # -----------------------------

    def close(self) -> None:
        self.orchestrator.reset()
        try:
            self.client.logout()
        except BackendError as exc:
            # token may already be expired; the local session is gone either way
            logger.warning("Logout call failed", extra={"error": exc.message})

        logger.info(
            "POS session closed",
            extra={"terminal_id": self.id, "unit_id": self.session.unit_id},
        )


class TerminalRegistry:
    """
    Abandoned tills (browser closed, session expired) are closed once they
    have been idle for settings.TERMINAL_IDLE_SECONDS.
    """

    def __init__(self, *, idle_seconds: int | None = None):
        self._terminals: dict[str, Terminal] = {}
        self._lock = threading.Lock()
        self._idle_seconds = idle_seconds

    @property
    def idle_seconds(self) -> int:
        if self._idle_seconds is not None:
            return self._idle_seconds
        return int(getattr(settings, "TERMINAL_IDLE_SECONDS", 0) or 0)

    def _is_idle(self, terminal: Terminal, now) -> bool:
        limit = self.idle_seconds
        return limit > 0 and (now - terminal.last_seen).total_seconds() > limit

    @staticmethod
    def _close_idle(terminals: list[Terminal]) -> None:
        for terminal in terminals:
            logger.info(
                "Closing idle POS session",
                extra={"terminal_id": terminal.id, "unit_id": terminal.session.unit_id},
            )
            terminal.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._terminals)

    def register(self, terminal: Terminal) -> Terminal:
        self.evict_idle()
        with self._lock:
            self._terminals[terminal.id] = terminal
        return terminal

    def get(self, terminal_id) -> Terminal | None:
        if not terminal_id:
            return None
        now = timezone.now()
        with self._lock:
            terminal = self._terminals.get(str(terminal_id))
            if terminal is None:
                return None
            if self._is_idle(terminal, now):
                del self._terminals[terminal.id]
            else:
                terminal.last_seen = now
                return terminal

        self._close_idle([terminal])
        return None

    def pop(self, terminal_id) -> Terminal | None:
        if not terminal_id:
            return None
        with self._lock:
            return self._terminals.pop(str(terminal_id), None)

    def evict_idle(self) -> list[Terminal]:
        now = timezone.now()
        with self._lock:
            idle = [t for t in self._terminals.values() if self._is_idle(t, now)]
            for terminal in idle:
                del self._terminals[terminal.id]

        self._close_idle(idle)
        return idle

    def clear(self) -> None:
        with self._lock:
            terminals = list(self._terminals.values())
            self._terminals.clear()
        for terminal in terminals:
            terminal.orchestrator.reset()


registry = TerminalRegistry()
