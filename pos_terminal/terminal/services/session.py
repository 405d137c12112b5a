# terminal/services/session.py

"""
POS SESSION (EXPLICIT CONTEXT)

Purpose:
- Carry the acting operator, their bearer token and the acting unit as ONE
  explicit object, passed to the backend client and the checkout orchestrator.
- No token or user is kept in module globals.

Lifecycle:
- open_session(): login against the retail backend, resolve the unit.
- Terminal.close(): explicit teardown (see terminal.services.terminal).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from terminal.services.backend_client import RetailBackendClient
from terminal.services.payloads import AuthenticatedUser

logger = logging.getLogger(__name__)


class SessionError(Exception):
    pass


class NoUnitAssignedError(SessionError):
    """User-guard: an operator without a unit cannot sell."""


@dataclass(frozen=True)
class PosSession:
    access_token: str
    unit_id: str
    user: AuthenticatedUser | None = None

    @property
    def operator_name(self) -> str:
        if self.user is None:
            return ""
        return self.user.name or self.user.email


def resolve_unit_id(*, user: AuthenticatedUser, requested_unit_id=None) -> str:
    """
    Priority:
    1) unit explicitly requested by the till
    2) unit assigned to the operator on the backend
    """
    unit_id = str(requested_unit_id or "").strip()
    if not unit_id:
        unit_id = str(user.assigned_unit_id or "").strip()

    if not unit_id:
        raise NoUnitAssignedError(
            f"Operator {user.email or user.id} has no unit assigned; pick a unit to open the till."
        )
    return unit_id


def open_session(
    *,
    email: str,
    password: str,
    unit_id=None,
    client: RetailBackendClient | None = None,
) -> tuple[PosSession, RetailBackendClient]:
    """
    Login and bind a client to the new session.

    Returns (session, session-bound client). BackendError propagates
    (bad credentials, backend down): there is no session to fall back to.
    """
    anonymous = client or RetailBackendClient()
    login = anonymous.login(email=email, password=password)

    session = PosSession(
        access_token=login.access_token,
        unit_id=resolve_unit_id(user=login.user, requested_unit_id=unit_id),
        user=login.user,
    )

    logger.info(
        "POS session opened",
        extra={"user_id": login.user.id, "unit_id": session.unit_id},
    )
    return session, anonymous.with_session(session)
