"""Cookie-based session authentication.

Tokens are self-contained: ``<account_id>.<issued_at>.<signature>`` with the
account id base64url-encoded and the signature an HMAC-SHA256 over the first
two parts. Any process holding ``SECRET_KEY`` (this service's workers or the
login service in front of it) can mint and check them without shared state.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from functools import lru_cache
from typing import Any

import structlog
from fastapi import HTTPException, Request
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url

from keyward.config.settings import get_settings

logger = structlog.get_logger(__name__)

SESSION_COOKIE = "session"


class SessionAuth:
    """Signed session tokens carrying an account id."""

    def __init__(self, secret_key: str, max_age: int = 86400) -> None:
        self._secret = secret_key.encode()
        self._max_age = max_age

    def create_session(self, account_id: str) -> str:
        """Mint a signed token for ``account_id``."""
        payload = f"{bytes_to_base64url(account_id.encode())}.{int(time.time())}"
        logger.info("session_created", account_id=account_id)
        return f"{payload}.{self._sign(payload)}"

    def validate_session(self, token: str) -> dict[str, Any] | None:
        """Return session data for a valid, unexpired token."""
        if not token or token.count(".") != 2:
            return None

        payload, signature = token.rsplit(".", 1)
        if not hmac.compare_digest(signature, self._sign(payload)):
            return None

        encoded_account, issued_at = payload.split(".")
        try:
            account_id = base64url_to_bytes(encoded_account).decode()
            created_at = int(issued_at)
        except ValueError:
            return None
        if time.time() - created_at > self._max_age:
            return None
        return {"account_id": account_id, "created_at": created_at}

    def _sign(self, data: str) -> str:
        return hmac.new(self._secret, data.encode(), hashlib.sha256).hexdigest()


@lru_cache
def get_session_auth() -> SessionAuth:
    return SessionAuth(secret_key=get_settings().secret_key)


def require_account(request: Request) -> str:
    """FastAPI dependency: the account id bound to the session cookie, or 401."""
    session = get_session_auth().validate_session(request.cookies.get(SESSION_COOKIE, ""))
    if session is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return str(session["account_id"])
