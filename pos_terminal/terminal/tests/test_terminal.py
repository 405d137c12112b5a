from datetime import timedelta
from decimal import Decimal

from django.core.cache import cache
from django.test import SimpleTestCase, override_settings
from django.utils import timezone

from terminal.services.backend_client import BackendError
from terminal.services.checkout_orchestrator import CheckoutInProgressError, CheckoutPhase
from terminal.services.payment_poller import PollerState, PollingPolicy
from terminal.services.terminal import ProductUnavailableError, Terminal, TerminalRegistry
from terminal.tests.fakes import FakeBackendClient, make_session, virtual_account_sale

MANUAL_POLLING = PollingPolicy(interval_seconds=0, max_attempts=5, autostart=False)


class TerminalTests(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.client = FakeBackendClient()
        self.terminal = Terminal(session=make_session(), client=self.client, policy=MANUAL_POLLING)

    # =====================================================
    # PRODUCT GRID
    # =====================================================

    def test_inventory_is_cached_per_unit(self):
        self.terminal.inventory()
        self.terminal.inventory(q="para")

        self.assertEqual(self.client.inventory_calls, 1)

    @override_settings(INVENTORY_CACHE_SECONDS=0)
    def test_zero_cache_lifetime_always_refetches(self):
        self.terminal.inventory()
        self.terminal.inventory()

        self.assertEqual(self.client.inventory_calls, 2)

    def test_grid_hides_bare_references(self):
        ids = [item.product_id for item in self.terminal.inventory()]
        self.assertEqual(ids, ["p1", "p2", "p3"])

    def test_search_by_name_or_sku(self):
        self.assertEqual([i.product_id for i in self.terminal.inventory(q="VITAMIN")], ["p2"])
        self.assertEqual([i.product_id for i in self.terminal.inventory(q="pcm-")], ["p1"])

    def test_filter_by_category(self):
        ids = [i.product_id for i in self.terminal.inventory(category="drugs")]
        self.assertEqual(ids, ["p1", "p3"])
        self.assertEqual(len(self.terminal.inventory(category="All")), 3)

    def test_categories(self):
        self.assertEqual(self.terminal.categories(), ["All", "Drugs", "Supplements"])

    # =====================================================
    # CART
    # =====================================================

    def test_add_product_snapshots_inventory_price(self):
        line = self.terminal.add_product("p2")

        self.assertEqual(line.unit_price, Decimal("250.50"))
        self.assertEqual(line.name, "Vitamin C")

    def test_reference_only_product_cannot_be_sold(self):
        with self.assertRaises(ProductUnavailableError):
            self.terminal.add_product("p9")

    def test_unpriced_product_cannot_be_sold(self):
        with self.assertRaises(ProductUnavailableError):
            self.terminal.add_product("p3")

    def test_unknown_product(self):
        with self.assertRaises(ProductUnavailableError):
            self.terminal.add_product("nope")
        self.assertTrue(self.terminal.cart.is_empty)

    def test_cart_is_locked_while_submitting(self):
        self.terminal.add_product("p1")
        self.terminal.orchestrator.phase = CheckoutPhase.SUBMITTING

        with self.assertRaises(CheckoutInProgressError):
            self.terminal.add_product("p1")
        with self.assertRaises(CheckoutInProgressError):
            self.terminal.clear_cart()

        self.assertEqual(self.terminal.cart.get("p1").quantity, 1)

    # =====================================================
    # INVOICE + TEARDOWN
    # =====================================================

    def test_no_invoice_before_sale(self):
        self.assertIsNone(self.terminal.invoice())

    def test_invoice_after_sale(self):
        self.client.sale = virtual_account_sale()
        self.terminal.add_product("p1")
        self.terminal.orchestrator.submit()

        invoice = self.terminal.invoice()

        self.assertTrue(invoice.is_pending)
        self.assertTrue(invoice.is_polling)
        self.assertEqual(invoice.total_display, "₦1,500")

    def test_close_cancels_polling_and_logs_out(self):
        self.client.sale = virtual_account_sale()
        self.terminal.add_product("p1")
        self.terminal.orchestrator.submit()
        poller = self.terminal.orchestrator.poller

        self.terminal.close()

        self.assertIs(poller.state, PollerState.CANCELLED)
        self.assertIsNone(self.terminal.invoice())
        self.assertEqual(self.client.logout_calls, 1)

    def test_close_survives_logout_failure(self):
        self.client.logout_error = BackendError("Token expired", status_code=401)
        self.terminal.add_product("p1")

        with self.assertLogs("terminal.services.terminal", level="WARNING"):
            self.terminal.close()

        self.assertTrue(self.terminal.cart.is_empty)


class TerminalRegistryTests(SimpleTestCase):
    def setUp(self):
        self.registry = TerminalRegistry()
        self.terminal = Terminal(session=make_session(), client=FakeBackendClient(), policy=MANUAL_POLLING)

    def test_register_get_pop(self):
        self.registry.register(self.terminal)

        self.assertEqual(len(self.registry), 1)
        self.assertIs(self.registry.get(self.terminal.id), self.terminal)
        self.assertIs(self.registry.pop(self.terminal.id), self.terminal)
        self.assertIsNone(self.registry.get(self.terminal.id))
        self.assertEqual(len(self.registry), 0)

    def test_missing_ids(self):
        self.assertIsNone(self.registry.get(None))
        self.assertIsNone(self.registry.pop(""))
        self.assertIsNone(self.registry.get("unknown"))

    def test_idle_terminal_is_closed_on_lookup(self):
        cache.clear()
        registry = TerminalRegistry(idle_seconds=60)
        registry.register(self.terminal)
        self.terminal.add_product("p1")
        self.terminal.last_seen = timezone.now() - timedelta(seconds=61)

        self.assertIsNone(registry.get(self.terminal.id))

        self.assertEqual(len(registry), 0)
        self.assertTrue(self.terminal.cart.is_empty)
        self.assertEqual(self.terminal.client.logout_calls, 1)

    def test_lookup_keeps_terminal_alive(self):
        registry = TerminalRegistry(idle_seconds=60)
        registry.register(self.terminal)
        stale = timezone.now() - timedelta(seconds=30)
        self.terminal.last_seen = stale

        self.assertIs(registry.get(self.terminal.id), self.terminal)
        self.assertGreater(self.terminal.last_seen, stale)

    def test_register_sweeps_abandoned_terminals(self):
        registry = TerminalRegistry(idle_seconds=60)
        registry.register(self.terminal)
        self.terminal.last_seen = timezone.now() - timedelta(hours=2)

        fresh = registry.register(
            Terminal(session=make_session(), client=FakeBackendClient(), policy=MANUAL_POLLING)
        )

        self.assertEqual(len(registry), 1)
        self.assertIs(registry.get(fresh.id), fresh)
        self.assertIsNone(registry.get(self.terminal.id))

    @override_settings(TERMINAL_IDLE_SECONDS=0)
    def test_zero_disables_eviction(self):
        registry = TerminalRegistry()
        registry.register(self.terminal)
        self.terminal.last_seen = timezone.now() - timedelta(days=3)

        self.assertIs(registry.get(self.terminal.id), self.terminal)
        self.assertEqual(registry.evict_idle(), [])
