# terminal/services/invoice.py

"""
INVOICE PRESENTER

Pure projection of an accepted checkout (+ its current settlement) into what
the till shows and prints. Holds no state; closing the invoice is the
orchestrator's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from django.conf import settings
from django.template.loader import render_to_string
from django.utils import timezone

from terminal.services.checkout_orchestrator import CompletedCheckout, Settlement
from terminal.services.money import ZERO, format_naira, money
from terminal.services.payloads import VirtualAccount

TAX_RATE_LABEL = "0%"

_HEADLINES = {
    Settlement.PENDING: "Payment Pending",
    Settlement.PAID: "Payment Successful",
    Settlement.FAILED: "Payment Failed",
}


@dataclass(frozen=True)
class InvoiceLine:
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class InvoiceView:
    order_number: str
    sale_id: str
    invoice_number: str | None
    payment_method: str
    payment_method_label: str
    settlement: Settlement
    headline: str
    is_polling: bool
    lines: tuple[InvoiceLine, ...]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    virtual_account: VirtualAccount | None
    checkout_url: str | None
    issued_at: datetime

    @property
    def is_pending(self) -> bool:
        return self.settlement is Settlement.PENDING

    @property
    def total_display(self) -> str:
        return format_naira(self.total)

    def summary(self) -> str:
        return f"Order {self.order_number}, {self.total_display}, {self.payment_method_label}."


def present_invoice(
    *,
    checkout: CompletedCheckout,
    settlement: Settlement,
    is_polling: bool = False,
) -> InvoiceView:
    sale = checkout.sale
    lines = tuple(
        InvoiceLine(
            name=line.name,
            quantity=line.quantity,
            unit_price=money(line.unit_price),
            line_total=line.line_total,
        )
        for line in checkout.lines
    )
    subtotal = money(checkout.subtotal)
    tax = ZERO

    # Payment instructions only matter until the money lands.
    pending = settlement is Settlement.PENDING
    return InvoiceView(
        order_number=sale.invoice_number or sale.sale_id,
        sale_id=sale.sale_id,
        invoice_number=sale.invoice_number,
        payment_method=checkout.payment_method.value,
        payment_method_label=checkout.payment_method.label,
        settlement=settlement,
        headline=_HEADLINES[settlement],
        is_polling=is_polling and pending,
        lines=lines,
        subtotal=subtotal,
        tax=tax,
        total=money(subtotal + tax),
        virtual_account=sale.virtual_account if pending else None,
        checkout_url=sale.checkout_url if pending else None,
        issued_at=checkout.submitted_at,
    )


def render_print(view: InvoiceView) -> str:
    """Printable receipt (HTML), same content as the on-screen invoice."""
    receipt = getattr(settings, "RECEIPT", {}) or {}
    return render_to_string(
        "terminal/invoice_print.html",
        {
            "invoice": view,
            "business_name": receipt.get("BUSINESS_NAME", ""),
            "address": receipt.get("ADDRESS", ""),
            "phone": receipt.get("PHONE", ""),
            "footer": receipt.get("FOOTER", []),
            "issued_at": timezone.localtime(view.issued_at),
            "tax_label": TAX_RATE_LABEL,
            "subtotal_display": format_naira(view.subtotal),
            "tax_display": format_naira(view.tax),
            "total_display": view.total_display,
            "rows": [
                {
                    "name": line.name,
                    "quantity": line.quantity,
                    "unit_price": format_naira(line.unit_price),
                    "line_total": format_naira(line.line_total),
                }
                for line in view.lines
            ],
        },
    )
