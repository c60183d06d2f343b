from __future__ import annotations

import hmac
import logging
from typing import Any, Dict

from werkzeug.security import check_password_hash, generate_password_hash

from services.errors import AuthenticationFailure


log = logging.getLogger(__name__)

PASSWORD_COLUMN = "password"

# Prefixes written by werkzeug's generate_password_hash.
_HASH_PREFIXES = ("scrypt:", "pbkdf2:")


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def looks_hashed(stored: str) -> bool:
    return stored.startswith(_HASH_PREFIXES)


def _password_matches(stored: Any, password: str, *, allow_plaintext: bool) -> bool:
    if not isinstance(stored, str) or not stored:
        return False
    if looks_hashed(stored):
        return check_password_hash(stored, password)
    if not allow_plaintext:
        log.warning("[auth] stored password is not hashed; run `flask hash-password` to migrate it")
        return False
    log.warning("[auth] comparing a plaintext stored password (ALLOW_PLAINTEXT_PASSWORDS is on)")
    return hmac.compare_digest(stored.encode("utf-8"), password.encode("utf-8"))


def public_user(record: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a user row that is safe to keep in the session."""
    return {key: value for key, value in record.items() if key.lower() != PASSWORD_COLUMN}


def authenticate(
    data_source,
    username: str,
    password: str,
    *,
    allow_plaintext: bool = False,
) -> Dict[str, Any]:
    """
    Return the user record matching username/password (password column removed).

    Raises AuthenticationFailure for blank credentials, unknown users or a wrong
    password. DataSourceError from the lookup propagates unchanged.
    """
    # Usernames are matched exactly as submitted.
    if not username or not password:
        raise AuthenticationFailure("username and password are required")

    record = data_source.find_user(username)
    if record is None or record.get("username") != username:
        log.info("[auth] unknown user %r", username)
        raise AuthenticationFailure("invalid username or password")

    stored = next((v for k, v in record.items() if k.lower() == PASSWORD_COLUMN), None)
    if not _password_matches(stored, password, allow_plaintext=allow_plaintext):
        log.info("[auth] password mismatch for %r", username)
        raise AuthenticationFailure("invalid username or password")

    return public_user(record)
