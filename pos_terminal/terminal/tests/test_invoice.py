from decimal import Decimal

from django.test import SimpleTestCase, override_settings

from terminal.services.cart import Cart
from terminal.services.checkout_orchestrator import CompletedCheckout, Settlement
from terminal.services.invoice import present_invoice, render_print
from terminal.services.payloads import PaymentMethod, SaleResult
from terminal.tests.fakes import cash_sale, gateway_sale, make_product, virtual_account_sale


def _checkout(sale, method=PaymentMethod.CASH) -> CompletedCheckout:
    cart = Cart()
    cart.add_item(make_product("p1", "Paracetamol", "1500.00"))
    cart.add_item(make_product("p1", "Paracetamol", "1500.00"))
    return CompletedCheckout(
        sale=sale,
        payment_method=method,
        lines=cart.snapshot(),
        subtotal=cart.total(),
    )


class InvoicePresenterTests(SimpleTestCase):
    def test_cash_invoice(self):
        view = present_invoice(checkout=_checkout(cash_sale()), settlement=Settlement.PAID)

        self.assertEqual(view.order_number, "INV-501")
        self.assertEqual(view.headline, "Payment Successful")
        self.assertEqual(view.total, Decimal("3000.00"))
        self.assertEqual(view.tax, Decimal("0.00"))
        self.assertEqual(view.summary(), "Order INV-501, ₦3,000, Cash.")
        self.assertIsNone(view.virtual_account)
        self.assertFalse(view.is_pending)

    def test_pending_transfer_shows_account(self):
        view = present_invoice(
            checkout=_checkout(virtual_account_sale(), PaymentMethod.TRANSFER),
            settlement=Settlement.PENDING,
            is_polling=True,
        )

        self.assertEqual(view.headline, "Payment Pending")
        self.assertTrue(view.is_polling)
        self.assertEqual(view.virtual_account.account_number, "0123456789")

    def test_account_hidden_once_paid(self):
        view = present_invoice(
            checkout=_checkout(virtual_account_sale(), PaymentMethod.TRANSFER),
            settlement=Settlement.PAID,
            is_polling=True,
        )

        self.assertIsNone(view.virtual_account)
        self.assertFalse(view.is_polling)

    def test_pending_gateway_shows_checkout_url(self):
        view = present_invoice(
            checkout=_checkout(gateway_sale(), PaymentMethod.MONNIFY),
            settlement=Settlement.PENDING,
        )

        self.assertEqual(view.checkout_url, "https://checkout.example.com/pay/INV-503")
        self.assertEqual(view.payment_method_label, "Monnify")

    def test_failed_headline(self):
        view = present_invoice(checkout=_checkout(gateway_sale()), settlement=Settlement.FAILED)
        self.assertEqual(view.headline, "Payment Failed")

    def test_order_number_falls_back_to_sale_id(self):
        view = present_invoice(checkout=_checkout(SaleResult(sale_id="77")), settlement=Settlement.PAID)
        self.assertEqual(view.order_number, "77")


class InvoicePrintTests(SimpleTestCase):
    @override_settings(
        RECEIPT={
            "BUSINESS_NAME": "Corner Pharmacy",
            "ADDRESS": "1 Market Street, Ibadan",
            "PHONE": "+234 700 000 0000",
            "FOOTER": ["Thank you for your patronage!"],
        }
    )
    def test_receipt_contents(self):
        view = present_invoice(checkout=_checkout(cash_sale()), settlement=Settlement.PAID)

        html = render_print(view)

        self.assertIn("CORNER PHARMACY", html)
        self.assertIn("1 Market Street, Ibadan", html)
        self.assertIn("Order No: INV-501", html)
        self.assertIn("Paracetamol", html)
        self.assertIn("₦1,500", html)
        self.assertIn("Total: ₦3,000", html)
        self.assertIn("Thank you for your patronage!", html)
        self.assertNotIn("Transfer to Complete Payment", html)

    def test_pending_receipt_has_transfer_details(self):
        view = present_invoice(
            checkout=_checkout(virtual_account_sale(), PaymentMethod.TRANSFER),
            settlement=Settlement.PENDING,
        )

        html = render_print(view)

        self.assertIn("Transfer to Complete Payment", html)
        self.assertIn("Wema Bank", html)
        self.assertIn("0123456789", html)
