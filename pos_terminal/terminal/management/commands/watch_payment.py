# terminal/management/commands/watch_payment.py

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from terminal.services.backend_client import RetailBackendClient
from terminal.services.notifications import NotificationLevel, Notifier
from terminal.services.payloads import SaleResult
from terminal.services.payment_poller import PaymentPoller, PollerState, PollingPolicy
from terminal.services.session import PosSession


class Command(BaseCommand):
    help = "Poll the retail backend until a sale's payment is confirmed, fails, or expires."

    def add_arguments(self, parser):
        parser.add_argument("reference", help="Invoice number (or sale id) to verify")
        parser.add_argument(
            "--token",
            required=True,
            help="Bearer token of a logged-in operator",
        )
        parser.add_argument(
            "--unit",
            dest="unit_id",
            default="",
            help="Unit id (optional; only used to invalidate the cached inventory on success)",
        )
        parser.add_argument(
            "--interval",
            type=float,
            help="Seconds between checks (default: settings.PAYMENT_POLL)",
        )
        parser.add_argument(
            "--max-attempts",
            dest="max_attempts",
            type=int,
            help="Give up after this many checks (default: settings.PAYMENT_POLL)",
        )

    def _policy(self, options) -> PollingPolicy:
        base = PollingPolicy.from_settings()
        interval = options.get("interval")
        max_attempts = options.get("max_attempts")

        if interval is not None and interval < 0:
            raise CommandError("--interval must be >= 0")
        if max_attempts is not None and max_attempts < 1:
            raise CommandError("--max-attempts must be >= 1")

        return PollingPolicy(
            interval_seconds=base.interval_seconds if interval is None else interval,
            max_attempts=base.max_attempts if max_attempts is None else max_attempts,
            backoff_factor=base.backoff_factor,
            max_interval_seconds=base.max_interval_seconds,
            autostart=False,
        )

    def _print_status(self, poller, status):
        line = f"[{poller.attempts}] {poller.reference}: {status.value}"
        if status.is_success:
            self.stdout.write(self.style.SUCCESS(line))
        elif status.is_terminal:
            self.stdout.write(self.style.ERROR(line))
        else:
            self.stdout.write(line)

    def handle(self, *args, **options):
        reference = (options["reference"] or "").strip()
        token = (options["token"] or "").strip()
        if not reference:
            raise CommandError("reference is required")
        if not token:
            raise CommandError("--token is required")

        policy = self._policy(options)
        session = PosSession(access_token=token, unit_id=(options.get("unit_id") or "").strip())
        notifier = Notifier()

        poller = PaymentPoller(
            client=RetailBackendClient(session=session),
            sale=SaleResult(sale_id=reference),
            unit_id=session.unit_id,
            notifier=notifier,
            policy=policy,
            on_status=self._print_status,
        )

        self.stdout.write(self.style.MIGRATE_HEADING(f"Watching payment for {reference}"))

        try:
            state = poller.run()
        except KeyboardInterrupt:
            poller.cancel()
            state = poller.state

        for note in notifier.drain():
            if note.level is NotificationLevel.SUCCESS:
                self.stdout.write(self.style.SUCCESS(note.message))
            elif note.level is NotificationLevel.ERROR:
                self.stderr.write(self.style.ERROR(note.message))
            else:
                self.stdout.write(self.style.WARNING(note.message))

        if poller.last_error:
            self.stderr.write(f"Last error: {poller.last_error}")

        if state is PollerState.SUCCEEDED:
            return
        if state is PollerState.CANCELLED:
            raise CommandError("Cancelled.")
        raise CommandError(f"Payment not confirmed ({state.value}).")
