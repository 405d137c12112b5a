# terminal/services/payment_poller.py

"""
PAYMENT CONFIRMATION POLLER

Purpose:
- For async payments (virtual account / gateway checkout), ask the backend
  for the sale's payment status until it is terminal, the poller is
  cancelled, or the attempt budget runs out.

Hard rules:
- At most ONE verify request in flight. Ticks are sequential: the next one is
  scheduled only after the previous response has been applied.
- paid/completed -> SUCCEEDED, exactly one success notification,
  payment_confirmed signal (stale caches).
- failed -> FAILED, one failure notification, never retried.
- pending -> keep going.
- Transport errors (and any other failed check) never count as payment
  failure; the next tick retries.
- After cancel() or a terminal state, nothing changes any more. A response
  that lands late (generation mismatch) is discarded, not applied.

Policy (interval / max attempts / backoff) is explicit configuration:
settings.PAYMENT_POLL.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from django.conf import settings

from terminal.services.backend_client import BackendError, BackendUnavailableError
from terminal.services.notifications import Notifier, payment_confirmed
from terminal.services.payloads import PaymentStatus, SaleResult

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self not in (PollerState.IDLE, PollerState.RUNNING)


@dataclass(frozen=True)
class PollingPolicy:
    interval_seconds: float = 5.0
    max_attempts: int | None = 120
    backoff_factor: float = 1.0
    max_interval_seconds: float = 60.0
    autostart: bool = True

    @classmethod
    def from_settings(cls) -> "PollingPolicy":
        cfg = getattr(settings, "PAYMENT_POLL", {}) or {}
        max_attempts = cfg.get("MAX_ATTEMPTS", cls.max_attempts)
        return cls(
            interval_seconds=float(cfg.get("INTERVAL_SECONDS", cls.interval_seconds)),
            max_attempts=int(max_attempts) if max_attempts else None,
            backoff_factor=float(cfg.get("BACKOFF_FACTOR", cls.backoff_factor)),
            max_interval_seconds=float(cfg.get("MAX_INTERVAL_SECONDS", cls.max_interval_seconds)),
            autostart=bool(cfg.get("AUTOSTART", cls.autostart)),
        )

    def delay_after(self, attempt: int) -> float:
        """Wait before the next tick, given how many ticks have run."""
        factor = max(1.0, self.backoff_factor) ** max(0, attempt - 1)
        return min(self.interval_seconds * factor, max(self.interval_seconds, self.max_interval_seconds))

    def exhausted(self, attempts: int) -> bool:
        return self.max_attempts is not None and attempts >= self.max_attempts


class PaymentPoller:
    def __init__(
        self,
        *,
        client,
        sale: SaleResult,
        unit_id: str,
        notifier: Notifier,
        policy: PollingPolicy | None = None,
        on_final: Callable[["PaymentPoller", PollerState], None] | None = None,
        on_status: Callable[["PaymentPoller", PaymentStatus], None] | None = None,
    ):
        self.client = client
        self.sale = sale
        self.unit_id = unit_id
        self.notifier = notifier
        self.policy = policy or PollingPolicy.from_settings()
        self.on_final = on_final
        self.on_status = on_status

        self.state = PollerState.IDLE
        self.status = PaymentStatus.PENDING
        self.attempts = 0
        self.last_error: str | None = None

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._generation = 0
        self._in_flight = False
        self._thread: threading.Thread | None = None

    @property
    def reference(self) -> str:
        return self.sale.reference

    @property
    def is_active(self) -> bool:
        return not self.state.is_final

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    # =====================================================
    # ONE TICK
    # =====================================================

    def tick(self) -> PaymentStatus | None:
        """
        Issue one verify call and apply it.

        Returns the applied status, or None when nothing was applied (poller
        inactive, a request already in flight, transport error, or the
        response arrived after cancellation).
        """
        with self._lock:
            if not self.is_active or self._in_flight:
                return None
            self._in_flight = True
            self.state = PollerState.RUNNING
            self.attempts += 1
            generation = self._generation
            attempt = self.attempts

        try:
            verification = self.client.verify_payment(self.reference)
        except BackendError as exc:
            self._record_error(generation=generation, attempt=attempt, exc=exc)
            return None
        except Exception as exc:
            logger.exception(
                "Payment check crashed; retrying next tick",
                extra={"reference": self.reference, "attempt": attempt},
            )
            self._record_error(generation=generation, attempt=attempt, exc=BackendUnavailableError(repr(exc)))
            return None

        with self._lock:
            self._in_flight = False
            if generation != self._generation or not self.is_active:
                logger.info(
                    "Discarding stale payment verification",
                    extra={"reference": self.reference, "attempt": attempt},
                )
                return None

            self.status = verification.status
            self.last_error = None
            final_state = None
            if verification.status.is_success:
                final_state = self.state = PollerState.SUCCEEDED
            elif verification.status is PaymentStatus.FAILED:
                final_state = self.state = PollerState.FAILED
            elif self.policy.exhausted(attempt):
                final_state = self.state = PollerState.EXPIRED

        logger.info(
            "Payment status checked",
            extra={"reference": self.reference, "attempt": attempt, "status": verification.status.value},
        )

        try:
            if self.on_status is not None:
                self.on_status(self, verification.status)
        finally:
            if final_state is not None:
                self._finish(final_state)
        return verification.status

    def _record_error(self, *, generation: int, attempt: int, exc: BackendError) -> None:
        with self._lock:
            self._in_flight = False
            if generation != self._generation or not self.is_active:
                return
            self.last_error = exc.message
            final_state = None
            if self.policy.exhausted(attempt):
                final_state = self.state = PollerState.EXPIRED

        if isinstance(exc, BackendUnavailableError):
            logger.warning(
                "Payment check failed in transport; retrying next tick",
                extra={"reference": self.reference, "attempt": attempt},
            )
        else:
            logger.error(
                "Payment check rejected by backend; retrying next tick",
                extra={"reference": self.reference, "attempt": attempt, "error": exc.message},
            )

        if final_state is not None:
            self._finish(final_state)

    def _expire_if_exhausted(self) -> None:
        with self._lock:
            if not self.is_active or not self.policy.exhausted(self.attempts):
                return
            self._in_flight = False
            self.state = PollerState.EXPIRED
        self._finish(PollerState.EXPIRED)

    def _finish(self, final_state: PollerState) -> None:
        self._stop.set()

        if final_state is PollerState.SUCCEEDED:
            self.notifier.success("Payment confirmed! Thank you.")
            payment_confirmed.send(
                sender=self.__class__,
                unit_id=self.unit_id,
                reference=self.reference,
                status=self.status,
            )
        elif final_state is PollerState.FAILED:
            self.notifier.error("Payment failed. Please try again.")
        elif final_state is PollerState.EXPIRED:
            self.notifier.warning(
                f"Payment for {self.reference} not confirmed after {self.attempts} checks. "
                "Verify it later from the invoice number."
            )

        logger.info(
            "Payment polling finished",
            extra={"reference": self.reference, "state": final_state.value, "attempts": self.attempts},
        )

        if self.on_final is not None:
            self.on_final(self, final_state)

    # =====================================================
    # LOOP + CANCELLATION
    # =====================================================

    def cancel(self) -> bool:
        """
        Stop immediately. Returns False when the poller had already finished.
        """
        with self._lock:
            if not self.is_active:
                return False
            self._generation += 1
            self.state = PollerState.CANCELLED
        self._stop.set()

        logger.info("Payment polling cancelled", extra={"reference": self.reference})
        return True

    def run(self) -> PollerState:
        """Blocking loop; returns the final state."""
        while self.is_active:
            try:
                self.tick()
            except Exception:
                # a status callback blew up; the loop keeps its schedule
                logger.exception("Payment poller tick failed", extra={"reference": self.reference})
                self._expire_if_exhausted()
            if not self.is_active:
                break
            if self._stop.wait(self.policy.delay_after(self.attempts)):
                break
        return self.state

    def start(self) -> threading.Thread:
        if self._thread is not None:
            return self._thread

        self._thread = threading.Thread(
            target=self.run,
            name=f"payment-poller-{self.reference}",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
