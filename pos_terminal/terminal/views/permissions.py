# terminal/views/permissions.py

from __future__ import annotations

from rest_framework import exceptions
from rest_framework.authentication import CSRFCheck
from rest_framework.permissions import BasePermission

from terminal.services.terminal import Terminal, registry

SESSION_KEY = "terminal_id"


def get_request_terminal(request) -> Terminal | None:
    """
    Resolve the till bound to this browser session, or None.
    """
    cached = getattr(request, "_pos_terminal", None)
    if cached is not None:
        return cached

    terminal = registry.get(request.session.get(SESSION_KEY))
    if terminal is not None:
        request._pos_terminal = terminal
    return terminal


def enforce_csrf(request) -> None:
    """
    The session cookie is the till's only credential, so unsafe methods must
    carry the CSRF token (X-CSRFToken header) even without DRF authentication.
    """

    def dummy_get_response(request):
        return None

    check = CSRFCheck(dummy_get_response)
    check.process_request(request)
    reason = check.process_view(request, None, (), {})
    if reason:
        raise exceptions.PermissionDenied(f"CSRF Failed: {reason}")


class HasOpenTerminal(BasePermission):
    """
    Allows access only when the session has an open POS terminal
    (operator logged in against the retail backend, unit resolved).
    """

    message = "Open a POS session first."

    def has_permission(self, request, view):
        return get_request_terminal(request) is not None
