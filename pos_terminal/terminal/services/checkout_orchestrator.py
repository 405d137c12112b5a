# terminal/services/checkout_orchestrator.py

"""
CHECKOUT ORCHESTRATOR (TILL SIDE)

Purpose:
- Turn the in-memory cart + chosen payment method into ONE create-sale call.
- Route the accepted sale to PAID (synchronous methods) or PENDING
  (virtual account / gateway checkout), handing PENDING sales to the poller.

States:
    IDLE -> AWAITING_PAYMENT_CHOICE -> SUBMITTING -> SUCCEEDED
                                                  -> FAILED -> AWAITING_PAYMENT_CHOICE
    SUCCEEDED carries a settlement sub-state: PENDING -> PAID | FAILED (poller)

Hard rules:
- An empty cart never reaches the network (user-guard, not an error).
- Single submission: while SUBMITTING, another submit() is refused.
- The cart is cleared only once the backend ACCEPTED the sale.
  On rejection the cart is untouched and the backend message is shown verbatim.
- At most one invoice/poller pair is open; dismiss it before the next sale.

Money is computed here only for display; the backend owns the real totals.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable

from django.utils import timezone

from terminal.services.backend_client import BackendError
from terminal.services.cart import Cart, CartLine
from terminal.services.money import format_naira, money
from terminal.services.notifications import Notifier, sale_submitted
from terminal.services.payloads import PaymentMethod, SaleResult
from terminal.services.payment_poller import PaymentPoller, PollerState, PollingPolicy
from terminal.services.session import PosSession

logger = logging.getLogger(__name__)


# ============================================================
# DOMAIN ERRORS
# ============================================================


class CheckoutError(Exception):
    """Base checkout exception"""


class InvalidCheckoutTransitionError(CheckoutError):
    pass


class CheckoutInProgressError(CheckoutError):
    pass


class InvalidPaymentMethodError(CheckoutError):
    pass


# ============================================================
# STATE DEFINITIONS
# ============================================================


class CheckoutPhase(str, Enum):
    IDLE = "idle"
    AWAITING_PAYMENT_CHOICE = "awaiting_payment_choice"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Settlement(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    CheckoutPhase.IDLE: {CheckoutPhase.AWAITING_PAYMENT_CHOICE},
    CheckoutPhase.AWAITING_PAYMENT_CHOICE: {CheckoutPhase.SUBMITTING, CheckoutPhase.IDLE},
    CheckoutPhase.SUBMITTING: {CheckoutPhase.SUCCEEDED, CheckoutPhase.FAILED},
    CheckoutPhase.FAILED: {CheckoutPhase.AWAITING_PAYMENT_CHOICE},
    CheckoutPhase.SUCCEEDED: {CheckoutPhase.IDLE},
}


def can_transition(*, from_phase: CheckoutPhase, to_phase: CheckoutPhase) -> bool:
    return to_phase in ALLOWED_TRANSITIONS.get(from_phase, set())


# ============================================================
# VALUE OBJECTS
# ============================================================


@dataclass(frozen=True)
class SaleRequestItem:
    product_id: str
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class SaleRequest:
    unit_id: str
    payment_method: PaymentMethod
    items: tuple[SaleRequestItem, ...]

    @classmethod
    def from_cart(cls, *, cart: Cart, unit_id: str, payment_method: PaymentMethod) -> "SaleRequest":
        return cls(
            unit_id=str(unit_id),
            payment_method=payment_method,
            items=tuple(
                SaleRequestItem(
                    product_id=line.product_id,
                    quantity=int(line.quantity),
                    unit_price=money(line.unit_price),
                )
                for line in cart.lines()
            ),
        )

    def to_payload(self) -> dict:
        # Backend validates numbers, not strings: prices go out as JSON numbers.
        return {
            "unit_id": self.unit_id,
            "payment_method": self.payment_method.value,
            "items": [
                {
                    "product_id": item.product_id,
                    "quantity": item.quantity,
                    "unit_price": float(item.unit_price),
                }
                for item in self.items
            ],
        }


@dataclass(frozen=True)
class CompletedCheckout:
    """Everything the invoice needs, frozen at the moment the sale was accepted."""

    sale: SaleResult
    payment_method: PaymentMethod
    lines: tuple[CartLine, ...]
    subtotal: Decimal
    submitted_at: datetime = field(default_factory=timezone.now)

    @property
    def total(self) -> Decimal:
        return self.subtotal


# ============================================================
# ORCHESTRATOR
# ============================================================


class CheckoutOrchestrator:
    def __init__(
        self,
        *,
        session: PosSession,
        client,
        cart: Cart,
        notifier: Notifier,
        policy: PollingPolicy | None = None,
        poller_factory: Callable[..., PaymentPoller] = PaymentPoller,
    ):
        self.session = session
        self.client = client
        self.cart = cart
        self.notifier = notifier
        self.policy = policy or PollingPolicy.from_settings()
        self.poller_factory = poller_factory

        self.phase = CheckoutPhase.IDLE
        self.settlement: Settlement | None = None
        self.payment_method = PaymentMethod.CASH
        self.last_error: str | None = None
        self.checkout: CompletedCheckout | None = None
        self.poller: PaymentPoller | None = None
        self.history: list[CheckoutPhase] = [CheckoutPhase.IDLE]

        self._lock = threading.RLock()

    # -----------------------------
    # transitions
    # -----------------------------

    def _transition(self, target: CheckoutPhase) -> None:
        if not can_transition(from_phase=self.phase, to_phase=target):
            raise InvalidCheckoutTransitionError(
                f"Checkout cannot transition from '{self.phase.value}' to '{target.value}'"
            )
        self.phase = target
        self.history.append(target)

    @property
    def invoice_open(self) -> bool:
        return self.phase is CheckoutPhase.SUCCEEDED and self.checkout is not None

    @property
    def is_polling(self) -> bool:
        return self.poller is not None and self.poller.is_active

    # -----------------------------
    # user actions
    # -----------------------------

    def initiate_checkout(self) -> bool:
        """Open the payment choice. Empty cart: silent no-op (returns False)."""
        with self._lock:
            if self.cart.is_empty:
                return False
            if self.phase is CheckoutPhase.AWAITING_PAYMENT_CHOICE:
                return True
            self._transition(CheckoutPhase.AWAITING_PAYMENT_CHOICE)
            return True

    def select_payment_method(self, method) -> PaymentMethod:
        try:
            selected = PaymentMethod.parse(method)
        except ValueError as exc:
            raise InvalidPaymentMethodError(str(exc)) from exc

        with self._lock:
            self.payment_method = selected
        return selected

    def cancel_checkout(self) -> None:
        with self._lock:
            if self.phase is CheckoutPhase.AWAITING_PAYMENT_CHOICE:
                self._transition(CheckoutPhase.IDLE)

    def submit(self) -> CompletedCheckout | None:
        """
        Create the sale. Returns the accepted checkout, or None when the
        user-guard tripped or the backend rejected the sale (see last_error).
        """
        with self._lock:
            if self.phase is CheckoutPhase.SUBMITTING:
                raise CheckoutInProgressError("A sale is already being submitted.")
            if self.invoice_open:
                raise InvalidCheckoutTransitionError("Close the current invoice before starting a new sale.")

            if self.cart.is_empty:
                logger.debug("Submit ignored: cart is empty")
                return None
            if not self.session.unit_id:
                logger.warning("Submit ignored: no unit on session")
                return None

            if self.phase is CheckoutPhase.IDLE:
                self._transition(CheckoutPhase.AWAITING_PAYMENT_CHOICE)

            method = self.payment_method
            request = SaleRequest.from_cart(cart=self.cart, unit_id=self.session.unit_id, payment_method=method)
            lines = self.cart.snapshot()
            subtotal = self.cart.total()

            self.last_error = None
            self._transition(CheckoutPhase.SUBMITTING)

        # Network call outside the lock: SUBMITTING is the in-flight guard.
        try:
            sale = self.client.create_sale(request)
        except BackendError as exc:
            return self._submission_failed(exc)
        except Exception as exc:
            # never leave the till stuck in SUBMITTING
            logger.exception("Sale submission crashed", extra={"unit_id": self.session.unit_id})
            self._submission_failed(BackendError(f"Sale could not be submitted: {exc}"))
            raise

        return self._submission_accepted(sale=sale, method=method, lines=lines, subtotal=subtotal)

    def _submission_failed(self, exc: BackendError) -> None:
        with self._lock:
            if self.phase is not CheckoutPhase.SUBMITTING:
                logger.warning("Sale rejection arrived after session reset", extra={"error": exc.message})
                return None
            self._transition(CheckoutPhase.FAILED)
            self.last_error = exc.message
            self._transition(CheckoutPhase.AWAITING_PAYMENT_CHOICE)

        logger.warning(
            "Sale rejected",
            extra={"unit_id": self.session.unit_id, "status_code": exc.status_code, "error": exc.message},
        )
        self.notifier.error(exc.message)
        return None

    def _submission_accepted(
        self,
        *,
        sale: SaleResult,
        method: PaymentMethod,
        lines: tuple[CartLine, ...],
        subtotal: Decimal,
    ) -> CompletedCheckout | None:
        checkout = CompletedCheckout(sale=sale, payment_method=method, lines=lines, subtotal=subtotal)

        with self._lock:
            if self.phase is not CheckoutPhase.SUBMITTING:
                # Session was torn down mid-flight; the sale exists on the backend only.
                logger.error(
                    "Sale accepted after session reset",
                    extra={"sale_id": sale.sale_id, "reference": sale.reference},
                )
                return None
            self._transition(CheckoutPhase.SUCCEEDED)
            self.checkout = checkout
            self.cart.clear()

            if sale.awaits_confirmation:
                self.settlement = Settlement.PENDING
                self.poller = self.poller_factory(
                    client=self.client,
                    sale=sale,
                    unit_id=self.session.unit_id,
                    notifier=self.notifier,
                    policy=self.policy,
                    on_final=self._on_poller_final,
                )
            else:
                self.settlement = Settlement.PAID
                self.poller = None
            poller = self.poller

        logger.info(
            "Sale accepted",
            extra={
                "unit_id": self.session.unit_id,
                "sale_id": sale.sale_id,
                "payment_method": method.value,
                "settlement": self.settlement.value,
            },
        )

        sale_submitted.send(sender=self.__class__, unit_id=self.session.unit_id, sale=sale)

        if poller is None:
            self.notifier.success(f"Payment of {format_naira(subtotal)} successful!")
        else:
            self.notifier.info(f"Sale {sale.reference} created. Waiting for payment confirmation.")
            if self.policy.autostart:
                poller.start()

        return checkout

    def _on_poller_final(self, poller: PaymentPoller, state: PollerState) -> None:
        with self._lock:
            if poller is not self.poller or self.settlement is not Settlement.PENDING:
                return
            if state is PollerState.SUCCEEDED:
                self.settlement = Settlement.PAID
            elif state is PollerState.FAILED:
                self.settlement = Settlement.FAILED

    # -----------------------------
    # invoice lifecycle
    # -----------------------------

    def dismiss_invoice(self) -> bool:
        """Close the invoice: stops polling first, then back to IDLE."""
        with self._lock:
            if not self.invoice_open:
                return False
            if self.poller is not None:
                self.poller.cancel()
            self.poller = None
            self.checkout = None
            self.settlement = None
            self._transition(CheckoutPhase.IDLE)
            return True

    def reset(self) -> None:
        """Session teardown: cancel polling, drop the cart, forget everything."""
        with self._lock:
            if self.poller is not None:
                self.poller.cancel()
            self.poller = None
            self.checkout = None
            self.settlement = None
            self.last_error = None
            self.cart.clear()
            self.phase = CheckoutPhase.IDLE
            self.history.append(CheckoutPhase.IDLE)

