# terminal/services/payloads.py

"""
RETAIL BACKEND PAYLOADS (DATA-ACCESS BOUNDARY)

Purpose:
- Typed, immutable shapes for everything the retail backend returns.
- Loose backend shapes are resolved exactly once, here. Nothing downstream
  inspects raw dicts.

Rules:
- A catalog product is EITHER a CatalogProduct (full object) OR a
  ProductReference (bare id, e.g. when an endpoint did not embed the product).
- Ids are strings (the backend mixes ints and strings).
- Money is Decimal (2dp), never float.
- Keys are accepted in camelCase or snake_case (gateway payloads are camelCase).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from rest_framework import serializers

from terminal.services.money import ZERO, money


class PayloadError(Exception):
    """Backend returned a shape we cannot interpret."""


# =====================================================
# ENUMS
# =====================================================


class PaymentMethod(str, Enum):
    CASH = "cash"
    POS = "pos"
    TRANSFER = "transfer"
    MONNIFY = "monnify"

    @property
    def label(self) -> str:
        return _METHOD_LABELS[self]

    @classmethod
    def parse(cls, raw) -> "PaymentMethod":
        value = str(raw.value if isinstance(raw, PaymentMethod) else raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unsupported payment method: {raw!r}") from None


_METHOD_LABELS = {
    PaymentMethod.CASH: "Cash",
    PaymentMethod.POS: "POS",
    PaymentMethod.TRANSFER: "Transfer",
    PaymentMethod.MONNIFY: "Monnify",
}


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING

    @property
    def is_success(self) -> bool:
        return self in (PaymentStatus.PAID, PaymentStatus.COMPLETED)

    @classmethod
    def parse(cls, raw) -> "PaymentStatus":
        value = str(raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            raise PayloadError(f"Unknown payment_status: {raw!r}") from None


# =====================================================
# SHAPES
# =====================================================


@dataclass(frozen=True)
class CatalogProduct:
    id: str
    name: str
    unit_price: Decimal
    sku: str = ""
    category: str = ""
    brand: str = ""

    kind = "product"


@dataclass(frozen=True)
class ProductReference:
    id: str

    kind = "reference"


InventoryProduct = Union[CatalogProduct, ProductReference]


@dataclass(frozen=True)
class InventoryItem:
    product: InventoryProduct
    quantity: int

    @property
    def product_id(self) -> str:
        return self.product.id


@dataclass(frozen=True)
class VirtualAccount:
    bank_name: str
    account_number: str
    amount: Decimal
    account_name: str = ""
    expires_on: datetime | None = None


@dataclass(frozen=True)
class SaleResult:
    sale_id: str
    invoice_number: str | None = None
    checkout_url: str | None = None
    virtual_account: VirtualAccount | None = None
    payment_status: PaymentStatus | None = None

    @property
    def reference(self) -> str:
        """Key used for payment verification: invoice number, else sale id."""
        return self.invoice_number or self.sale_id

    @property
    def awaits_confirmation(self) -> bool:
        return self.virtual_account is not None or bool(self.checkout_url)


@dataclass(frozen=True)
class PaymentVerification:
    status: PaymentStatus
    sale: SaleResult | None = None


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    name: str
    email: str
    role: str = ""
    assigned_unit_id: str | None = None


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    user: AuthenticatedUser


# =====================================================
# TRANSPORT SERIALIZERS (validation only)
# =====================================================


class _ProductSerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField()
    sku = serializers.CharField(required=False, allow_blank=True, allow_null=True, default="")
    price = serializers.DecimalField(max_digits=None, decimal_places=None, required=False, allow_null=True)
    selling_price = serializers.DecimalField(
        max_digits=None, decimal_places=None, required=False, allow_null=True
    )
    category = serializers.CharField(required=False, allow_blank=True, allow_null=True, default="")
    brand = serializers.CharField(required=False, allow_blank=True, allow_null=True, default="")


class _InventoryItemSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(required=False, default=0)


class _VirtualAccountSerializer(serializers.Serializer):
    bank_name = serializers.CharField(required=False, allow_blank=True, default="")
    account_number = serializers.CharField()
    account_name = serializers.CharField(required=False, allow_blank=True, allow_null=True, default="")
    amount = serializers.DecimalField(max_digits=None, decimal_places=None, required=False, allow_null=True)
    expires_on = serializers.DateTimeField(required=False, allow_null=True)


class _SaleSerializer(serializers.Serializer):
    id = serializers.CharField()
    invoice_number = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    payment_status = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class _UserSerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField(required=False, allow_blank=True, default="")
    email = serializers.CharField(required=False, allow_blank=True, default="")
    role = serializers.CharField(required=False, allow_blank=True, allow_null=True, default="")
    assigned_unit_id = serializers.CharField(required=False, allow_blank=True, allow_null=True)


# =====================================================
# HELPERS
# =====================================================

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _snake_keys(raw: dict) -> dict:
    return {_CAMEL_BOUNDARY.sub("_", str(k)).lower(): v for k, v in raw.items()}


def _validated(serializer_cls, raw: dict, *, what: str) -> dict:
    s = serializer_cls(data=raw)
    if not s.is_valid():
        raise PayloadError(f"Invalid {what} payload: {s.errors}")
    return s.validated_data


def _text(value) -> str:
    return str(value or "").strip()


def _label(value) -> str:
    # category/brand arrive as a name or as a nested {"id", "name"} object
    if isinstance(value, dict):
        return _text(value.get("name"))
    return _text(value)


def _is_scalar_id(value) -> bool:
    return isinstance(value, (str, int)) and not isinstance(value, bool)


def unwrap_envelope(parsed: Any) -> Any:
    """
    Backend envelope is {status, message, data}. Return data when present,
    otherwise the body itself.
    """
    if isinstance(parsed, dict) and "data" in parsed:
        return parsed["data"]
    return parsed


# =====================================================
# PARSERS
# =====================================================


def parse_product(raw: Any) -> InventoryProduct:
    if _is_scalar_id(raw):
        ref = _text(raw)
        if not ref:
            raise PayloadError("Empty product reference")
        return ProductReference(id=ref)

    if not isinstance(raw, dict):
        raise PayloadError(f"Unexpected product shape: {type(raw).__name__}")

    raw = dict(raw)
    raw["category"] = _label(raw.get("category"))
    raw["brand"] = _label(raw.get("brand"))

    if not _text(raw.get("name")):
        if _is_scalar_id(raw.get("id")) and _text(raw.get("id")):
            return ProductReference(id=_text(raw["id"]))
        raise PayloadError("Product object has neither name nor id")

    data = _validated(_ProductSerializer, raw, what="product")
    price = data.get("price")
    if price is None:
        price = data.get("selling_price")

    return CatalogProduct(
        id=_text(data["id"]),
        name=_text(data["name"]),
        unit_price=money(price) if price is not None else ZERO,
        sku=_text(data.get("sku")),
        category=_text(data.get("category")),
        brand=_text(data.get("brand")),
    )


def parse_inventory(parsed: Any) -> list[InventoryItem]:
    body = unwrap_envelope(parsed)
    if isinstance(body, dict):
        # paginated or nested listings
        for key in ("data", "items", "results"):
            if isinstance(body.get(key), list):
                body = body[key]
                break

    if not isinstance(body, list):
        raise PayloadError("Inventory listing is not a list")

    items: list[InventoryItem] = []
    for idx, row in enumerate(body):
        if not isinstance(row, dict):
            raise PayloadError(f"Inventory row {idx} is not an object")

        product_raw = row.get("product")
        if product_raw is None:
            product_raw = row.get("product_id")
        if product_raw is None:
            raise PayloadError(f"Inventory row {idx} has no product")

        data = _validated(_InventoryItemSerializer, row, what=f"inventory row {idx}")
        items.append(
            InventoryItem(product=parse_product(product_raw), quantity=int(data["quantity"]))
        )
    return items


def parse_virtual_account(raw: Any) -> VirtualAccount | None:
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise PayloadError("account_details is not an object")

    data = _validated(_VirtualAccountSerializer, _snake_keys(raw), what="account_details")
    return VirtualAccount(
        bank_name=_text(data.get("bank_name")),
        account_number=_text(data["account_number"]),
        account_name=_text(data.get("account_name")),
        amount=money(data.get("amount")),
        expires_on=data.get("expires_on"),
    )


def parse_sale_result(parsed: Any) -> SaleResult:
    """
    Create-sale responses come as {sale, account_details} or as the bare sale.
    """
    body = unwrap_envelope(parsed)
    if not isinstance(body, dict):
        raise PayloadError("Sale response is not an object")

    sale_raw = body.get("sale") if isinstance(body.get("sale"), dict) else body
    data = _validated(_SaleSerializer, sale_raw, what="sale")

    payment_data = sale_raw.get("payment_data") or {}
    if not isinstance(payment_data, dict):
        payment_data = {}
    payment_data = _snake_keys(payment_data)

    account_raw = body.get("account_details") or sale_raw.get("account_details")

    # Sale records carry their own status vocabulary; only ours is kept.
    status_raw = _text(data.get("payment_status")).lower()
    payment_status = None
    if status_raw in {s.value for s in PaymentStatus}:
        payment_status = PaymentStatus(status_raw)

    return SaleResult(
        sale_id=_text(data["id"]),
        invoice_number=_text(data.get("invoice_number")) or None,
        checkout_url=_text(payment_data.get("checkout_url")) or None,
        virtual_account=parse_virtual_account(account_raw),
        payment_status=payment_status,
    )


def parse_payment_verification(parsed: Any) -> PaymentVerification:
    body = unwrap_envelope(parsed)
    if not isinstance(body, dict):
        raise PayloadError("Verification response is not an object")

    sale_raw = body.get("sale")
    return PaymentVerification(
        status=PaymentStatus.parse(body.get("payment_status")),
        sale=parse_sale_result(sale_raw) if isinstance(sale_raw, dict) else None,
    )


def parse_login(parsed: Any) -> LoginResult:
    body = unwrap_envelope(parsed)
    if not isinstance(body, dict):
        raise PayloadError("Login response is not an object")

    token = _text(body.get("access_token"))
    if not token:
        raise PayloadError("Login response has no access_token")

    user_raw = body.get("user")
    if not isinstance(user_raw, dict):
        raise PayloadError("Login response has no user")

    data = _validated(_UserSerializer, user_raw, what="user")
    return LoginResult(
        access_token=token,
        user=AuthenticatedUser(
            id=_text(data["id"]),
            name=_text(data.get("name")),
            email=_text(data.get("email")),
            role=_text(data.get("role")),
            assigned_unit_id=_text(data.get("assigned_unit_id")) or None,
        ),
    )
