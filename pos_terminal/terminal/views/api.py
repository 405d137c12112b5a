# terminal/views/api.py

"""
TERMINAL API VIEWS

Purpose:
- One till per browser session: open/close the POS session
- Product grid (unit inventory) and in-memory cart
- Checkout (payment choice, submit) through the checkout orchestrator
- Invoice view/print/close, toast notifications

Hard rules:
- Every endpoint except opening a session (and csrf/) needs an open terminal.
- Money is server-owned: unit prices come from the unit inventory, never the UI.
- Backend messages are passed through verbatim in the error envelope.
- Unsafe methods need the CSRF token from GET csrf/ (X-CSRFToken header).
"""

from __future__ import annotations

from django.http import HttpResponse
from django.middleware.csrf import get_token
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from terminal.serializers import (
    AddCartItemInputSerializer,
    CartSerializer,
    CheckoutStateSerializer,
    InventoryItemSerializer,
    InventoryQuerySerializer,
    InvoiceSerializer,
    NotificationSerializer,
    OpenSessionInputSerializer,
    PaymentMethodInputSerializer,
    TerminalSessionSerializer,
    UpdateCartItemInputSerializer,
)
from terminal.services.backend_client import BackendError, BackendUnavailableError
from terminal.services.checkout_orchestrator import (
    CheckoutInProgressError,
    InvalidCheckoutTransitionError,
    InvalidPaymentMethodError,
)
from terminal.services.invoice import render_print
from terminal.services.session import NoUnitAssignedError, open_session
from terminal.services.terminal import ProductUnavailableError, Terminal, registry
from terminal.views.permissions import SESSION_KEY, HasOpenTerminal, enforce_csrf, get_request_terminal


# =====================================================
# API ERROR NORMALIZATION
# =====================================================

def error_response(*, code: str, message: str, http_status: int):
    return Response(
        {"error": {"code": code, "message": message}},
        status=http_status,
    )


def backend_error_response(exc: BackendError):
    if isinstance(exc, BackendUnavailableError):
        return error_response(
            code="BACKEND_UNAVAILABLE",
            message=exc.message,
            http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return error_response(
        code="BACKEND_ERROR",
        message=exc.message,
        http_status=status.HTTP_502_BAD_GATEWAY,
    )


def _no_invoice():
    return error_response(
        code="NO_INVOICE",
        message="There is no open invoice.",
        http_status=status.HTTP_404_NOT_FOUND,
    )


def _in_progress(exc: CheckoutInProgressError):
    return error_response(
        code="CHECKOUT_IN_PROGRESS",
        message=str(exc),
        http_status=status.HTTP_409_CONFLICT,
    )


# =====================================================
# BASE
# =====================================================

class TerminalAPIView(APIView):
    permission_classes = [HasOpenTerminal]

    def initial(self, request, *args, **kwargs):
        enforce_csrf(request)
        super().initial(request, *args, **kwargs)

    @property
    def terminal(self) -> Terminal:
        return get_request_terminal(self.request)

    def checkout_payload(self) -> dict:
        terminal = self.terminal
        return {
            "checkout": CheckoutStateSerializer(terminal.orchestrator).data,
            "cart": CartSerializer(terminal.cart).data,
        }


# =====================================================
# SESSION
# =====================================================

class CsrfTokenView(APIView):
    """
    Hands the UI a CSRF token (and cookie) before it opens a session.
    """

    permission_classes = [AllowAny]

    @extend_schema(responses={200: dict})
    def get(self, request):
        return Response({"csrf_token": get_token(request)})


class TerminalSessionView(TerminalAPIView):
    """
    Open (login), inspect, or close (logout) the POS session for this browser.
    """

    serializer_class = TerminalSessionSerializer

    def get_permissions(self):
        if self.request.method == "POST":
            return [AllowAny()]
        return super().get_permissions()

    @extend_schema(
        request=OpenSessionInputSerializer,
        responses={201: TerminalSessionSerializer},
        description="Login against the retail backend and open a till for the operator's unit.",
        examples=[
            OpenApiExample(
                "Operator with assigned unit",
                value={"email": "cashier@example.com", "password": "secret"},
                request_only=True,
            ),
        ],
    )
    def post(self, request):
        serializer = OpenSessionInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            pos_session, client = open_session(
                email=serializer.validated_data["email"],
                password=serializer.validated_data["password"],
                unit_id=serializer.validated_data.get("unit_id"),
            )
        except NoUnitAssignedError as exc:
            return error_response(
                code="NO_UNIT_ASSIGNED",
                message=str(exc),
                http_status=status.HTTP_400_BAD_REQUEST,
            )
        except BackendUnavailableError as exc:
            return backend_error_response(exc)
        except BackendError as exc:
            if exc.status_code in (400, 401, 403):
                return error_response(
                    code="LOGIN_FAILED",
                    message=exc.message,
                    http_status=status.HTTP_401_UNAUTHORIZED,
                )
            return backend_error_response(exc)

        previous = registry.pop(request.session.get(SESSION_KEY))
        if previous is not None:
            previous.close()

        terminal = registry.register(Terminal(session=pos_session, client=client))
        request.session.cycle_key()
        request.session[SESSION_KEY] = terminal.id

        return Response(TerminalSessionSerializer(terminal).data, status=status.HTTP_201_CREATED)

    @extend_schema(responses={200: TerminalSessionSerializer})
    def get(self, request):
        return Response(TerminalSessionSerializer(self.terminal).data)

    @extend_schema(responses={204: None}, description="Logout: stop polling, drop the cart, close the till.")
    def delete(self, request):
        terminal = registry.pop(request.session.get(SESSION_KEY))
        if terminal is not None:
            terminal.close()
        request.session.flush()
        return Response(status=status.HTTP_204_NO_CONTENT)


class TerminalHealthView(TerminalAPIView):
    serializer_class = None

    @extend_schema(responses={200: dict}, description="Till health check")
    def get(self, request):
        terminal = self.terminal
        return Response(
            {
                "status": "ok",
                "module": "terminal",
                "unit_id": terminal.session.unit_id,
                "operator": terminal.session.operator_name,
                "phase": terminal.orchestrator.phase.value,
                "polling": terminal.orchestrator.is_polling,
            }
        )


# =====================================================
# PRODUCT GRID
# =====================================================

class InventoryView(TerminalAPIView):
    serializer_class = InventoryItemSerializer

    @extend_schema(
        parameters=[InventoryQuerySerializer],
        responses={200: dict},
        description="Unit inventory for the product grid (search by name/SKU, filter by category).",
    )
    def get(self, request):
        query = InventoryQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        try:
            items = self.terminal.inventory(
                q=query.validated_data["q"],
                category=query.validated_data["category"],
            )
            categories = self.terminal.categories()
        except BackendError as exc:
            return backend_error_response(exc)

        return Response(
            {
                "categories": categories,
                "count": len(items),
                "results": InventoryItemSerializer(items, many=True).data,
            }
        )


# =====================================================
# CART
# =====================================================

class CartView(TerminalAPIView):
    serializer_class = CartSerializer

    @extend_schema(responses={200: CartSerializer})
    def get(self, request):
        return Response(CartSerializer(self.terminal.cart).data)


class AddCartItemView(TerminalAPIView):
    """
    Add one unit of a product (increments the line if already in the cart).
    """

    serializer_class = CartSerializer

    @extend_schema(request=AddCartItemInputSerializer, responses={200: CartSerializer})
    def post(self, request):
        serializer = AddCartItemInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            self.terminal.add_product(serializer.validated_data["product_id"])
        except ProductUnavailableError as exc:
            return error_response(
                code="PRODUCT_UNAVAILABLE",
                message=str(exc),
                http_status=status.HTTP_400_BAD_REQUEST,
            )
        except CheckoutInProgressError as exc:
            return _in_progress(exc)
        except BackendError as exc:
            return backend_error_response(exc)

        return Response(CartSerializer(self.terminal.cart).data)


class CartItemView(TerminalAPIView):
    serializer_class = CartSerializer

    def _not_in_cart(self, product_id):
        return error_response(
            code="NOT_IN_CART",
            message=f"Product {product_id} is not in the cart.",
            http_status=status.HTTP_404_NOT_FOUND,
        )

    @extend_schema(request=UpdateCartItemInputSerializer, responses={200: CartSerializer})
    def patch(self, request, product_id):
        serializer = UpdateCartItemInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            line = self.terminal.update_quantity(product_id, serializer.validated_data["delta"])
        except CheckoutInProgressError as exc:
            return _in_progress(exc)
        if line is None:
            return self._not_in_cart(product_id)

        return Response(CartSerializer(self.terminal.cart).data)

    @extend_schema(responses={200: CartSerializer})
    def delete(self, request, product_id):
        try:
            removed = self.terminal.remove_item(product_id)
        except CheckoutInProgressError as exc:
            return _in_progress(exc)
        if not removed:
            return self._not_in_cart(product_id)

        return Response(CartSerializer(self.terminal.cart).data)


class ClearCartView(TerminalAPIView):
    serializer_class = CartSerializer

    @extend_schema(request=None, responses={200: CartSerializer})
    def post(self, request):
        try:
            self.terminal.clear_cart()
        except CheckoutInProgressError as exc:
            return _in_progress(exc)
        return Response(CartSerializer(self.terminal.cart).data)


# =====================================================
# CHECKOUT
# =====================================================

class InitiateCheckoutView(TerminalAPIView):
    serializer_class = CheckoutStateSerializer

    @extend_schema(
        request=None,
        responses={200: dict},
        description="Open the payment-method choice. Empty cart: nothing happens (opened=false).",
    )
    def post(self, request):
        try:
            opened = self.terminal.orchestrator.initiate_checkout()
        except InvalidCheckoutTransitionError as exc:
            return error_response(
                code="INVALID_CHECKOUT_STATE",
                message=str(exc),
                http_status=status.HTTP_409_CONFLICT,
            )
        return Response({"opened": opened, **self.checkout_payload()})


class SelectPaymentMethodView(TerminalAPIView):
    serializer_class = CheckoutStateSerializer

    @extend_schema(request=PaymentMethodInputSerializer, responses={200: dict})
    def post(self, request):
        serializer = PaymentMethodInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            self.terminal.orchestrator.select_payment_method(serializer.validated_data["payment_method"])
        except InvalidPaymentMethodError as exc:
            return error_response(
                code="INVALID_PAYMENT_METHOD",
                message=str(exc),
                http_status=status.HTTP_400_BAD_REQUEST,
            )
        return Response(self.checkout_payload())


class CancelCheckoutView(TerminalAPIView):
    serializer_class = CheckoutStateSerializer

    @extend_schema(request=None, responses={200: dict})
    def post(self, request):
        self.terminal.orchestrator.cancel_checkout()
        return Response(self.checkout_payload())


class SubmitCheckoutView(TerminalAPIView):
    """
    Create the sale on the retail backend.

    - Synchronous methods (cash/pos): invoice comes back settled.
    - Virtual account / gateway: invoice comes back pending and the poller
      confirms it in the background.
    """

    serializer_class = InvoiceSerializer

    @extend_schema(
        request=None,
        responses={201: dict},
        description="Submit the cart as one sale using the selected payment method.",
    )
    def post(self, request):
        terminal = self.terminal
        orch = terminal.orchestrator

        try:
            checkout = orch.submit()
        except CheckoutInProgressError as exc:
            return _in_progress(exc)
        except InvalidCheckoutTransitionError as exc:
            return error_response(
                code="INVOICE_OPEN",
                message=str(exc),
                http_status=status.HTTP_409_CONFLICT,
            )

        if checkout is None:
            if terminal.cart.is_empty:
                return error_response(
                    code="EMPTY_CART",
                    message="Cart is empty.",
                    http_status=status.HTTP_400_BAD_REQUEST,
                )
            if orch.last_error:
                return error_response(
                    code="SALE_REJECTED",
                    message=orch.last_error,
                    http_status=status.HTTP_400_BAD_REQUEST,
                )
            return error_response(
                code="CHECKOUT_FAILED",
                message="Sale was not created.",
                http_status=status.HTTP_409_CONFLICT,
            )

        invoice = terminal.invoice()
        return Response(
            {
                "checkout": CheckoutStateSerializer(orch).data,
                "invoice": InvoiceSerializer(invoice).data if invoice is not None else None,
            },
            status=status.HTTP_201_CREATED,
        )


# =====================================================
# INVOICE
# =====================================================

class InvoiceView(TerminalAPIView):
    serializer_class = InvoiceSerializer

    @extend_schema(responses={200: InvoiceSerializer})
    def get(self, request):
        invoice = self.terminal.invoice()
        if invoice is None:
            return _no_invoice()
        return Response(InvoiceSerializer(invoice).data)


class PrintInvoiceView(TerminalAPIView):
    serializer_class = None

    @extend_schema(responses={(200, "text/html"): OpenApiTypes.STR}, description="Printable receipt")
    def get(self, request):
        invoice = self.terminal.invoice()
        if invoice is None:
            return _no_invoice()
        return HttpResponse(render_print(invoice), content_type="text/html; charset=utf-8")


class CloseInvoiceView(TerminalAPIView):
    serializer_class = CheckoutStateSerializer

    @extend_schema(request=None, responses={200: dict}, description="Close the invoice (stops polling).")
    def post(self, request):
        if not self.terminal.orchestrator.dismiss_invoice():
            return _no_invoice()
        return Response(self.checkout_payload())


# =====================================================
# NOTIFICATIONS
# =====================================================

class NotificationsView(TerminalAPIView):
    serializer_class = NotificationSerializer

    @extend_schema(responses={200: NotificationSerializer(many=True)}, description="Drain pending toasts")
    def get(self, request):
        notes = self.terminal.notifier.drain()
        return Response(NotificationSerializer(notes, many=True).data)
