import http.client
from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase, override_settings

from terminal.services.backend_client import BackendError, BackendUnavailableError, RetailBackendClient
from terminal.services.notifications import NotificationLevel, Notifier, payment_confirmed
from terminal.services.payloads import PaymentStatus
from terminal.services.payment_poller import PaymentPoller, PollerState, PollingPolicy
from terminal.tests.fakes import FakeBackendClient, make_session, virtual_account_sale, verification


class PaymentPollerTests(SimpleTestCase):
    """
    GUARANTEES:
    - terminal statuses stop polling with exactly one notification
    - transport errors are retried, never reported as payment failure
    - nothing is applied after cancel()
    """

    def setUp(self):
        self.notifier = Notifier()
        self.on_final = MagicMock()
        self.policy = PollingPolicy(interval_seconds=0, max_attempts=5, autostart=False)

    def _poller(self, client, **kwargs):
        return PaymentPoller(
            client=client,
            sale=virtual_account_sale(),
            unit_id="7",
            notifier=self.notifier,
            policy=kwargs.pop("policy", self.policy),
            on_final=self.on_final,
            **kwargs,
        )

    def test_pending_then_paid(self):
        client = FakeBackendClient(verifications=[verification("pending"), verification("paid")])
        poller = self._poller(client)

        self.assertIs(poller.tick(), PaymentStatus.PENDING)
        self.assertIs(poller.state, PollerState.RUNNING)
        self.assertIs(poller.tick(), PaymentStatus.PAID)

        self.assertIs(poller.state, PollerState.SUCCEEDED)
        self.assertEqual(client.verify_calls, ["INV-502", "INV-502"])
        self.on_final.assert_called_once_with(poller, PollerState.SUCCEEDED)

        notes = self.notifier.drain()
        self.assertEqual([n.message for n in notes], ["Payment confirmed! Thank you."])
        self.assertIs(notes[0].level, NotificationLevel.SUCCESS)

    def test_no_requests_after_success(self):
        client = FakeBackendClient(verifications=[verification("completed")])
        poller = self._poller(client)

        poller.tick()
        self.assertIsNone(poller.tick())
        self.assertEqual(len(client.verify_calls), 1)

    def test_success_sends_payment_confirmed(self):
        received = []

        def handler(sender, **kwargs):
            received.append(kwargs)

        payment_confirmed.connect(handler)
        self.addCleanup(payment_confirmed.disconnect, handler)

        self._poller(FakeBackendClient(verifications=[verification("paid")])).tick()

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0]["reference"], "INV-502")
        self.assertEqual(received[0]["unit_id"], "7")

    def test_failed_is_terminal_and_never_retried(self):
        client = FakeBackendClient(verifications=[verification("failed")])
        poller = self._poller(client)

        self.assertIs(poller.tick(), PaymentStatus.FAILED)
        self.assertIsNone(poller.tick())

        self.assertIs(poller.state, PollerState.FAILED)
        self.assertEqual(len(client.verify_calls), 1)
        self.assertEqual(
            [n.message for n in self.notifier.drain()],
            ["Payment failed. Please try again."],
        )

    def test_transport_error_is_retried(self):
        client = FakeBackendClient(
            verifications=[BackendUnavailableError("Retail backend timed out after 25s"), verification("paid")]
        )
        poller = self._poller(client)

        self.assertIsNone(poller.tick())
        self.assertIs(poller.state, PollerState.RUNNING)
        self.assertEqual(poller.last_error, "Retail backend timed out after 25s")
        self.assertEqual(self.notifier.pending(), [])

        poller.tick()
        self.assertIs(poller.state, PollerState.SUCCEEDED)
        self.assertIsNone(poller.last_error)

    def test_backend_rejection_is_retried_too(self):
        client = FakeBackendClient(verifications=[BackendError("Sale not found", status_code=404), verification("paid")])
        poller = self._poller(client)

        poller.tick()
        self.assertTrue(poller.is_active)
        poller.tick()
        self.assertIs(poller.state, PollerState.SUCCEEDED)

    def test_connection_reset_is_retried(self):
        client = FakeBackendClient(
            verifications=[ConnectionResetError(104, "Connection reset by peer"), verification("paid")]
        )
        poller = self._poller(client)

        self.assertIsNone(poller.tick())
        self.assertIs(poller.state, PollerState.RUNNING)
        self.assertFalse(poller.in_flight)
        self.assertEqual(poller.attempts, 1)
        self.assertEqual(self.notifier.pending(), [])

        self.assertIs(poller.tick(), PaymentStatus.PAID)
        self.assertIs(poller.state, PollerState.SUCCEEDED)

    def test_dropped_connection_through_real_client_is_retried(self):
        client = RetailBackendClient(session=make_session(), base_url="http://backend.test/api", timeout=5)
        poller = self._poller(client)

        with patch("terminal.services.backend_client.urlopen") as urlopen:
            urlopen.side_effect = http.client.RemoteDisconnected("Remote end closed connection without response")
            self.assertIsNone(poller.tick())

        self.assertTrue(poller.is_active)
        self.assertIn("connection lost", poller.last_error)
        self.on_final.assert_not_called()

    def test_expires_after_max_attempts(self):
        client = FakeBackendClient(verifications=[verification("pending")])
        poller = self._poller(client, policy=PollingPolicy(interval_seconds=0, max_attempts=3, autostart=False))

        for _ in range(5):
            poller.tick()

        self.assertIs(poller.state, PollerState.EXPIRED)
        self.assertEqual(len(client.verify_calls), 3)
        notes = self.notifier.drain()
        self.assertEqual(len(notes), 1)
        self.assertIs(notes[0].level, NotificationLevel.WARNING)
        self.on_final.assert_called_once_with(poller, PollerState.EXPIRED)

    def test_cancel_stops_requests(self):
        client = FakeBackendClient()
        poller = self._poller(client)

        self.assertTrue(poller.cancel())
        self.assertIsNone(poller.tick())

        self.assertIs(poller.state, PollerState.CANCELLED)
        self.assertEqual(client.verify_calls, [])
        self.assertFalse(poller.cancel())

    def test_response_after_cancel_is_discarded(self):
        client = FakeBackendClient(verifications=[verification("paid")])
        poller = self._poller(client)
        original = client.verify_payment

        def verify_then_cancel(reference):
            result = original(reference)
            poller.cancel()
            return result

        client.verify_payment = verify_then_cancel

        self.assertIsNone(poller.tick())
        self.assertIs(poller.state, PollerState.CANCELLED)
        self.assertEqual(self.notifier.pending(), [])
        self.on_final.assert_not_called()

    def test_single_request_in_flight(self):
        client = FakeBackendClient(verifications=[verification("pending")])
        poller = self._poller(client)
        original = client.verify_payment
        nested = []

        def verify_and_tick_again(reference):
            self.assertTrue(poller.in_flight)
            nested.append(poller.tick())
            return original(reference)

        client.verify_payment = verify_and_tick_again

        poller.tick()

        self.assertEqual(nested, [None])
        self.assertEqual(len(client.verify_calls), 1)
        self.assertFalse(poller.in_flight)

    def test_run_loops_until_terminal(self):
        statuses = []
        client = FakeBackendClient(
            verifications=[verification("pending"), verification("pending"), verification("paid")]
        )
        poller = self._poller(client, on_status=lambda p, s: statuses.append(s))

        self.assertIs(poller.run(), PollerState.SUCCEEDED)
        self.assertEqual(poller.attempts, 3)
        self.assertEqual(statuses, [PaymentStatus.PENDING, PaymentStatus.PENDING, PaymentStatus.PAID])

    def test_run_survives_failing_status_callback(self):
        client = FakeBackendClient(verifications=[verification("pending")])

        def on_status(poller, status):
            raise RuntimeError("display gone")

        poller = self._poller(
            client,
            policy=PollingPolicy(interval_seconds=0, max_attempts=3, autostart=False),
            on_status=on_status,
        )

        self.assertIs(poller.run(), PollerState.EXPIRED)
        self.assertEqual(len(client.verify_calls), 3)
        self.on_final.assert_called_once_with(poller, PollerState.EXPIRED)

    def test_background_thread_keeps_polling_after_connection_reset(self):
        client = FakeBackendClient(
            verifications=[ConnectionResetError(104, "Connection reset by peer"), verification("paid")]
        )
        poller = self._poller(client)

        poller.start()
        poller.join(timeout=5)

        self.assertIs(poller.state, PollerState.SUCCEEDED)
        self.assertEqual(len(client.verify_calls), 2)

    def test_start_runs_in_background_thread(self):
        client = FakeBackendClient(verifications=[verification("pending"), verification("paid")])
        poller = self._poller(client)

        thread = poller.start()
        self.assertIs(poller.start(), thread)
        poller.join(timeout=5)

        self.assertFalse(thread.is_alive())
        self.assertIs(poller.state, PollerState.SUCCEEDED)


class PollingPolicyTests(SimpleTestCase):
    def test_backoff_is_capped(self):
        policy = PollingPolicy(interval_seconds=1, backoff_factor=2, max_interval_seconds=5)

        self.assertEqual(
            [policy.delay_after(n) for n in (1, 2, 3, 4, 5)],
            [1, 2, 4, 5, 5],
        )

    def test_constant_interval_by_default(self):
        policy = PollingPolicy()
        self.assertEqual(policy.delay_after(1), 5.0)
        self.assertEqual(policy.delay_after(50), 5.0)

    def test_unlimited_attempts(self):
        self.assertFalse(PollingPolicy(max_attempts=None).exhausted(10_000))

    @override_settings(
        PAYMENT_POLL={
            "INTERVAL_SECONDS": 2,
            "MAX_ATTEMPTS": 10,
            "BACKOFF_FACTOR": 1.5,
            "MAX_INTERVAL_SECONDS": 30,
            "AUTOSTART": False,
        }
    )
    def test_from_settings(self):
        policy = PollingPolicy.from_settings()

        self.assertEqual(policy.interval_seconds, 2.0)
        self.assertEqual(policy.max_attempts, 10)
        self.assertEqual(policy.backoff_factor, 1.5)
        self.assertFalse(policy.autostart)
