"""In-memory Credential Store — bearer token holder with a login-redirect hook."""

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class InMemoryCredentialStore:
    """Holds the session token for the lifetime of one UI session."""

    def __init__(
        self,
        token: str | None = None,
        on_logout: Callable[[], None] | None = None,
    ):
        self._token = token
        self._on_logout = on_logout

    def get_token(self) -> str | None:
        return self._token

    def set_token(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None

    def redirect_to_login(self) -> None:
        """Hand control to the host UI's unauthenticated route."""
        logger.info("Session ended, redirecting to login")
        if self._on_logout is not None:
            self._on_logout()
