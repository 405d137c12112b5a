"""
PATH: terminal/urls.py

TERMINAL URLS

Purpose:
- CSRF token, POS session (login/logout) + till health
- Product grid
- Cart item operations (keyed by product id)
- Checkout, invoice, notifications
"""

from django.urls import path

from terminal.views.api import (
    CsrfTokenView,
    TerminalSessionView,
    TerminalHealthView,
    InventoryView,
    CartView,
    AddCartItemView,
    CartItemView,
    ClearCartView,
    InitiateCheckoutView,
    SelectPaymentMethodView,
    SubmitCheckoutView,
    CancelCheckoutView,
    InvoiceView,
    PrintInvoiceView,
    CloseInvoiceView,
    NotificationsView,
)

app_name = "terminal"

urlpatterns = [
    path("csrf/", CsrfTokenView.as_view(), name="csrf"),
    path("session/", TerminalSessionView.as_view(), name="session"),
    path("health/", TerminalHealthView.as_view(), name="health"),

    path("inventory/", InventoryView.as_view(), name="inventory"),

    path("cart/", CartView.as_view(), name="cart"),
    path("cart/clear/", ClearCartView.as_view(), name="clear-cart"),
    path("cart/items/", AddCartItemView.as_view(), name="add-cart-item"),
    path("cart/items/<str:product_id>/", CartItemView.as_view(), name="cart-item"),

    path("checkout/", InitiateCheckoutView.as_view(), name="checkout"),
    path("checkout/payment-method/", SelectPaymentMethodView.as_view(), name="payment-method"),
    path("checkout/submit/", SubmitCheckoutView.as_view(), name="submit"),
    path("checkout/cancel/", CancelCheckoutView.as_view(), name="cancel-checkout"),

    path("invoice/", InvoiceView.as_view(), name="invoice"),
    path("invoice/print/", PrintInvoiceView.as_view(), name="print-invoice"),
    path("invoice/close/", CloseInvoiceView.as_view(), name="close-invoice"),

    path("notifications/", NotificationsView.as_view(), name="notifications"),
]
