"""Explicit access to the signed-in user stored in the Flask session."""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from flask import session

from services.errors import SessionError


log = logging.getLogger(__name__)

SESSION_USER_KEY = "user"


def _session_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


class SessionGate:
    """Reads and writes the authenticated user on the current request's session."""

    def __init__(self, lifetime: timedelta | None = None):
        self.lifetime = lifetime

    def current_user(self) -> Optional[Dict[str, Any]]:
        user = session.get(SESSION_USER_KEY)
        if not isinstance(user, dict) or not user.get("username"):
            return None
        return user

    def sign_in(self, user: Dict[str, Any]) -> None:
        session.clear()
        session[SESSION_USER_KEY] = {key: _session_safe(value) for key, value in user.items()}
        session.permanent = self.lifetime is not None
        log.info("[session] %s signed in", user.get("username"))

    def sign_out(self) -> None:
        username = (self.current_user() or {}).get("username")
        try:
            session.clear()
        except Exception as exc:
            raise SessionError(f"could not clear session: {exc}") from exc
        if username:
            log.info("[session] %s signed out", username)
