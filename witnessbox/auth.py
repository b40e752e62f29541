"""Admin authentication: password login and expiring bearer tokens."""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from witnessbox.models import AdminToken
from witnessbox.rate_limiter import LoginThrottle
from witnessbox.violations import log_auth_violation


logger = logging.getLogger("witnessbox.auth")

TOKEN_TTL = timedelta(hours=24)


class InvalidCredentialsError(Exception):
    """Raised on a wrong admin password."""
    pass


class LoginThrottledError(Exception):
    """Raised when a client has made too many login attempts."""

    def __init__(self, client_id: str, retry_after: float):
        self.client_id = client_id
        self.retry_after = retry_after
        super().__init__(
            f"Too many login attempts from '{client_id}'. "
            f"Try again in {int(retry_after // 60) + 1} minutes."
        )


class AdminAuth:
    """Password login for the admin dashboard."""

    def __init__(
        self,
        store,
        password: str,
        throttle: Optional[LoginThrottle] = None,
        token_ttl: timedelta = TOKEN_TTL,
    ):
        if not password:
            raise ValueError("admin password must not be empty")
        self.store = store
        self._password = password.strip()
        self.throttle = throttle or LoginThrottle()
        self.token_ttl = token_ttl

    def login(self, password: Optional[str], client_id: str = "unknown") -> AdminToken:
        """
        Exchange the admin password for a bearer token.

        Raises:
            LoginThrottledError: Too many attempts from this client.
            InvalidCredentialsError: Wrong password.
        """
        if not self.throttle.allow(client_id):
            retry_after = self.throttle.retry_after(client_id)
            try:
                log_auth_violation(self.store, client_id, "Admin login throttled")
            except Exception:
                logger.exception("Failed to log auth violation for %s", client_id)
            raise LoginThrottledError(client_id, retry_after)

        candidate = (password or "").strip()
        if not candidate or not secrets.compare_digest(
            candidate.encode(), self._password.encode()
        ):
            logger.info("Admin login failed from %s", client_id)
            raise InvalidCredentialsError("Incorrect admin password")

        self.throttle.reset(client_id)
        now = datetime.now(timezone.utc)
        token = AdminToken(
            token=uuid.uuid4().hex,
            expires_at=now + self.token_ttl,
            created_at=now,
        )
        self.store.create_admin_token(token)
        logger.info("Admin login successful from %s", client_id)
        return token

    def verify(self, token: Optional[str]) -> bool:
        """True if the token exists and has not expired."""
        if not token:
            return False
        return self.store.get_admin_token(token) is not None

    def logout(self, token: str) -> bool:
        return self.store.delete_admin_token(token)

    def cleanup_expired(self) -> int:
        removed = self.store.cleanup_expired_tokens()
        if removed:
            logger.info("Removed %d expired admin tokens", removed)
        return removed
