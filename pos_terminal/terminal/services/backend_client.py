# terminal/services/backend_client.py

"""
RETAIL BACKEND CLIENT

Purpose:
- The only place that speaks HTTP to the retail REST backend.
- Bearer token comes from the explicitly passed PosSession (no ambient state).
- Every response is turned into a typed payload (terminal.services.payloads).

Error contract:
- BackendError: backend answered but rejected the call, or answered garbage.
  `message` is the backend's own message, verbatim, so the till can show it.
- BackendUnavailableError: the backend could not be reached or dropped the
  connection (refused, DNS, timeout, reset, truncated response). Callers may retry.
"""

from __future__ import annotations

import http.client
import json
import logging
import socket
from typing import TYPE_CHECKING, Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from django.conf import settings

from terminal.services.payloads import (
    InventoryItem,
    LoginResult,
    PaymentVerification,
    PayloadError,
    SaleResult,
    parse_inventory,
    parse_login,
    parse_payment_verification,
    parse_sale_result,
)

if TYPE_CHECKING:
    from terminal.services.checkout_orchestrator import SaleRequest
    from terminal.services.session import PosSession

logger = logging.getLogger(__name__)

USER_AGENT = "pos-terminal/1.0 Python-urllib"


class BackendError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class BackendUnavailableError(BackendError):
    pass


def _safe_preview(text: str, limit: int = 300) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + " …(truncated)"


def _parse_json_or_text(raw: str) -> dict[str, Any]:
    raw = raw or ""
    try:
        return {"kind": "json", "json": json.loads(raw), "raw": raw}
    except ValueError:
        return {"kind": "text", "raw": raw}


def _error_message(body: Any) -> str | None:
    """
    Pull the human message out of an error body.

    Shapes seen: {"message": ...}, {"error": ...}, {"errors": {"field": ["msg"]}}.
    """
    if not isinstance(body, dict):
        return None

    for key in ("message", "error", "detail"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, dict) and isinstance(value.get("message"), str):
            return value["message"].strip()

    errors = body.get("errors")
    if isinstance(errors, dict):
        for value in errors.values():
            if isinstance(value, list) and value:
                return str(value[0])
            if value:
                return str(value)
    return None


class RetailBackendClient:
    """
    Thin JSON client for the retail backend.

    One instance per POS session; `with_session` binds a logged-in session.
    """

    def __init__(
        self,
        *,
        session: PosSession | None = None,
        base_url: str | None = None,
        timeout: int | None = None,
    ):
        cfg = getattr(settings, "RETAIL_API", {}) or {}
        self.session = session
        self.base_url = (base_url or cfg.get("BASE_URL") or "").rstrip("/")
        self.timeout = timeout or int(cfg.get("TIMEOUT") or 25)

        if not self.base_url:
            raise RuntimeError(
                "Retail backend is not configured. Expected settings.RETAIL_API['BASE_URL'] "
                "or env RETAIL_API_BASE_URL."
            )

    def with_session(self, session: PosSession) -> "RetailBackendClient":
        return RetailBackendClient(session=session, base_url=self.base_url, timeout=self.timeout)

    # =====================================================
    # TRANSPORT
    # =====================================================

    def _url(self, path: str, query: dict | None = None) -> str:
        url = f"{self.base_url}/{path.lstrip('/')}"
        if query:
            url = f"{url}?{urlencode(query)}"
        return url

    def _headers(self, *, authenticated: bool) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if authenticated:
            if self.session is None or not self.session.access_token:
                raise BackendError("No POS session: log in before calling the backend.")
            headers["Authorization"] = f"Bearer {self.session.access_token}"
        return headers

    def _request_json(
        self,
        method: str,
        path: str,
        *,
        body: dict | None = None,
        query: dict | None = None,
        authenticated: bool = True,
    ) -> Any:
        url = self._url(path, query)
        data = None
        if body is not None:
            data = json.dumps(body, ensure_ascii=False).encode("utf-8")

        req = Request(url, data=data, headers=self._headers(authenticated=authenticated), method=method)

        try:
            with urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
                parsed_any = _parse_json_or_text(raw)
        except HTTPError as e:
            raw = ""
            try:
                raw = e.read().decode("utf-8", errors="replace")
            except OSError:
                raw = ""
            parsed_any = _parse_json_or_text(raw)

            msg = None
            if parsed_any["kind"] == "json":
                msg = _error_message(parsed_any["json"])
            msg = msg or _safe_preview(parsed_any.get("raw") or "") or f"Backend rejected request ({e.code})"

            logger.warning(
                "Retail backend rejected request",
                extra={"method": method, "path": path, "status_code": e.code},
            )
            raise BackendError(msg, status_code=e.code, payload=parsed_any.get("json")) from e
        except (socket.timeout, TimeoutError) as e:
            logger.warning("Retail backend timed out", extra={"method": method, "path": path})
            raise BackendUnavailableError(f"Retail backend timed out after {self.timeout}s") from e
        except URLError as e:
            logger.warning("Retail backend unreachable", extra={"method": method, "path": path})
            raise BackendUnavailableError(f"Retail backend unreachable: {e.reason}") from e
        except (OSError, http.client.HTTPException) as e:
            # dropped connection, reset or truncated body after the request went out
            logger.warning("Retail backend connection lost", extra={"method": method, "path": path})
            raise BackendUnavailableError(f"Retail backend connection lost: {e!r}") from e

        if parsed_any["kind"] != "json":
            raise BackendError(
                f"Retail backend returned non-JSON: {_safe_preview(parsed_any.get('raw') or '')}"
            )

        parsed = parsed_any["json"]
        if isinstance(parsed, dict) and str(parsed.get("status") or "").lower() == "error":
            raise BackendError(_error_message(parsed) or "Retail backend reported an error", payload=parsed)

        return parsed

    @staticmethod
    def _parse(parser, parsed: Any):
        try:
            return parser(parsed)
        except PayloadError as exc:
            logger.error("Unreadable retail backend payload", extra={"error": str(exc)})
            raise BackendError(str(exc), payload=parsed) from exc

    # =====================================================
    # OPERATIONS
    # =====================================================

    def login(self, *, email: str, password: str) -> LoginResult:
        parsed = self._request_json(
            "POST",
            "/login",
            body={"email": str(email).strip(), "password": password},
            authenticated=False,
        )
        return self._parse(parse_login, parsed)

    def logout(self) -> None:
        self._request_json("POST", "/logout")

    def list_unit_inventory(self, unit_id: str) -> list[InventoryItem]:
        parsed = self._request_json("GET", "/inventory", query={"unit_id": unit_id})
        return self._parse(parse_inventory, parsed)

    def create_sale(self, sale_request: SaleRequest) -> SaleResult:
        parsed = self._request_json("POST", "/sales", body=sale_request.to_payload())
        return self._parse(parse_sale_result, parsed)

    def verify_payment(self, reference: str) -> PaymentVerification:
        ref = str(reference or "").strip()
        if not ref:
            raise BackendError("Payment reference is required")

        parsed = self._request_json("GET", f"/sales/{quote(ref, safe='')}/verify-payment")
        return self._parse(parse_payment_verification, parsed)
