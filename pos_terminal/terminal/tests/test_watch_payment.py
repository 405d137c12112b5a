from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase

from terminal.tests.fakes import FakeBackendClient, verification


class WatchPaymentCommandTests(SimpleTestCase):
    def setUp(self):
        self.backend = FakeBackendClient()
        patcher = patch(
            "terminal.management.commands.watch_payment.RetailBackendClient",
            return_value=self.backend,
        )
        self.client_cls = patcher.start()
        self.addCleanup(patcher.stop)

    def _call(self, *args):
        out, err = StringIO(), StringIO()
        call_command("watch_payment", *args, stdout=out, stderr=err)
        return out.getvalue(), err.getvalue()

    def test_confirmed_payment(self):
        self.backend.verifications = [verification("pending"), verification("paid")]

        out, _ = self._call("INV-502", "--token", "tok", "--interval", "0")

        self.assertIn("[1] INV-502: pending", out)
        self.assertIn("[2] INV-502: paid", out)
        self.assertIn("Payment confirmed! Thank you.", out)
        self.assertEqual(self.backend.verify_calls, ["INV-502", "INV-502"])
        session = self.client_cls.call_args.kwargs["session"]
        self.assertEqual(session.access_token, "tok")

    def test_failed_payment_exits_non_zero(self):
        self.backend.verifications = [verification("failed")]

        with self.assertRaises(CommandError):
            self._call("INV-502", "--token", "tok", "--interval", "0")

    def test_expiry_exits_non_zero(self):
        with self.assertRaisesMessage(CommandError, "expired"):
            self._call("INV-502", "--token", "tok", "--interval", "0", "--max-attempts", "2")
        self.assertEqual(len(self.backend.verify_calls), 2)

    def test_invalid_max_attempts(self):
        with self.assertRaises(CommandError):
            self._call("INV-502", "--token", "tok", "--max-attempts", "0")
        self.assertEqual(self.backend.verify_calls, [])
