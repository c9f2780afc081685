"""
Authorization providers for the crpt SDK.

The document-creation endpoint expects an `Authorization: Bearer <token>`
header. Providers in this module supply that header to HTTP clients.

The main classes are:
- AuthProvider: Abstract base class for authorization providers.
- StaticTokenAuthProvider: Uses a token obtained beforehand (e.g., from the
  true API authentication flow or from CRPT_AUTH_TOKEN).

Example:
    >>> from crpt._auth import StaticTokenAuthProvider
    >>> auth = StaticTokenAuthProvider(token="eyJ...")
    >>> headers = auth.get_auth_headers()
    >>> # {"Authorization": "Bearer eyJ..."}
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, override

if TYPE_CHECKING:
    from crpt._config import AuthConfig


# =============================================================================
# Exceptions
# =============================================================================


class AuthenticationError(Exception):
    """
    Raised when an authorization provider cannot supply a token.

    Attributes:
        message: Description of the failure.
        cause: The underlying exception that caused the failure, if any.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


# =============================================================================
# Abstract Base Class
# =============================================================================


class AuthProvider(ABC):
    """
    Abstract base class for authorization providers.

    Implementations must be thread-safe: `get_auth_headers()` is called
    from the client's worker threads.

    Example:
        >>> class MyAuthProvider(AuthProvider):
        ...     def get_access_token(self) -> str:
        ...         return "my-token"
        ...
        >>> MyAuthProvider().get_auth_headers()
        {'Authorization': 'Bearer my-token'}
    """

    @abstractmethod
    def get_access_token(self) -> str:
        """
        Obtain a valid access token.

        Returns:
            Access token string (without "Bearer" prefix).

        Raises:
            AuthenticationError: If unable to obtain a valid token.
        """
        pass

    def get_auth_headers(self) -> dict[str, str]:
        """Return authorization headers for HTTP requests."""
        return {"Authorization": f"Bearer {self.get_access_token()}"}


# =============================================================================
# Implementations
# =============================================================================


class StaticTokenAuthProvider(AuthProvider):
    """
    Authorization provider backed by a fixed bearer token.

    The token is immutable once the provider is created, so no locking is needed.

    Args:
        token: Bearer token (without "Bearer" prefix).
    """

    def __init__(self, token: str):
        assert token is not None, "token cannot be None"
        self._token = token.strip()

    @override
    def get_access_token(self) -> str:
        if not self._token:
            raise AuthenticationError("Bearer token is empty.")
        return self._token


def create_auth_provider(auth_config: AuthConfig | None = None) -> AuthProvider | None:
    """
    Create an AuthProvider from configuration.

    Args:
        auth_config: Authorization configuration. If None, uses `CRPT.config.auth`.

    Returns:
        A StaticTokenAuthProvider if a token is configured, otherwise None
        (requests are then sent without an Authorization header).
    """
    if auth_config is None:
        from crpt._config import CRPT
        auth_config = CRPT.config.auth

    if not auth_config.has_token():
        return None

    assert auth_config.token is not None
    return StaticTokenAuthProvider(token=auth_config.token)
