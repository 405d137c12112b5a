# terminal/serializers.py

"""
TERMINAL SERIALIZERS

Input serializers validate what the till UI sends.
Output serializers render in-memory service objects (no models here).

Money goes out as 2dp strings, same as the rest of the API.
"""

from __future__ import annotations

from rest_framework import serializers

from terminal.services.money import format_naira
from terminal.services.payloads import CatalogProduct, PaymentMethod

MONEY = {"max_digits": 14, "decimal_places": 2}


# =====================================================
# INPUT
# =====================================================


class OpenSessionInputSerializer(serializers.Serializer):
    email = serializers.CharField()
    password = serializers.CharField(style={"input_type": "password"}, trim_whitespace=False)
    unit_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class InventoryQuerySerializer(serializers.Serializer):
    """
    For Swagger docs (GET query params).
    """

    q = serializers.CharField(required=False, allow_blank=True, default="")
    category = serializers.CharField(required=False, allow_blank=True, default="")


class AddCartItemInputSerializer(serializers.Serializer):
    product_id = serializers.CharField()


class UpdateCartItemInputSerializer(serializers.Serializer):
    # +1 / -1 from the quantity buttons; results below 1 are floored at 1
    delta = serializers.IntegerField()


class PaymentMethodInputSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=[m.value for m in PaymentMethod])


# =====================================================
# OUTPUT
# =====================================================


class OperatorSerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField()
    email = serializers.CharField()
    role = serializers.CharField()


class TerminalSessionSerializer(serializers.Serializer):
    terminal_id = serializers.CharField(source="id")
    unit_id = serializers.CharField(source="session.unit_id")
    operator = OperatorSerializer(source="session.user", allow_null=True)
    opened_at = serializers.DateTimeField()


class InventoryItemSerializer(serializers.Serializer):
    product_id = serializers.CharField()
    quantity = serializers.IntegerField()
    product = serializers.SerializerMethodField()

    def get_product(self, obj) -> dict:
        product = obj.product
        if not isinstance(product, CatalogProduct):
            return {"id": product.id, "kind": product.kind}
        return {
            "id": product.id,
            "kind": product.kind,
            "name": product.name,
            "sku": product.sku,
            "category": product.category,
            "brand": product.brand,
            "unit_price": f"{product.unit_price:.2f}",
        }


class CartLineSerializer(serializers.Serializer):
    product_id = serializers.CharField()
    name = serializers.CharField()
    unit_price = serializers.DecimalField(**MONEY)
    quantity = serializers.IntegerField()
    line_total = serializers.DecimalField(**MONEY)


class CartSerializer(serializers.Serializer):
    items = CartLineSerializer(source="lines", many=True)
    item_count = serializers.IntegerField()
    total = serializers.DecimalField(**MONEY)
    total_display = serializers.SerializerMethodField()

    def get_total_display(self, obj) -> str:
        return format_naira(obj.total())


class CheckoutStateSerializer(serializers.Serializer):
    phase = serializers.CharField(source="phase.value")
    payment_method = serializers.CharField(source="payment_method.value")
    last_error = serializers.CharField(allow_null=True)
    invoice_open = serializers.BooleanField()
    is_polling = serializers.BooleanField()


class VirtualAccountSerializer(serializers.Serializer):
    bank_name = serializers.CharField()
    account_number = serializers.CharField()
    account_name = serializers.CharField()
    amount = serializers.DecimalField(**MONEY)
    expires_on = serializers.DateTimeField(allow_null=True)


class InvoiceLineSerializer(serializers.Serializer):
    name = serializers.CharField()
    quantity = serializers.IntegerField()
    unit_price = serializers.DecimalField(**MONEY)
    line_total = serializers.DecimalField(**MONEY)


class InvoiceSerializer(serializers.Serializer):
    order_number = serializers.CharField()
    sale_id = serializers.CharField()
    invoice_number = serializers.CharField(allow_null=True)
    payment_method = serializers.CharField()
    payment_method_label = serializers.CharField()
    settlement = serializers.CharField(source="settlement.value")
    headline = serializers.CharField()
    is_pending = serializers.BooleanField()
    is_polling = serializers.BooleanField()
    items = InvoiceLineSerializer(source="lines", many=True)
    subtotal = serializers.DecimalField(**MONEY)
    tax = serializers.DecimalField(**MONEY)
    total = serializers.DecimalField(**MONEY)
    total_display = serializers.CharField()
    virtual_account = VirtualAccountSerializer(allow_null=True)
    checkout_url = serializers.CharField(allow_null=True)
    issued_at = serializers.DateTimeField()
    summary = serializers.CharField()


class NotificationSerializer(serializers.Serializer):
    level = serializers.CharField(source="level.value")
    message = serializers.CharField()
    created_at = serializers.DateTimeField()
