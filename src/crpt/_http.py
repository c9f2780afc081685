"""
HTTP client abstraction for the crpt SDK.

The document-creation client talks to the network only through the
`HttpClient` interface, so the transport can be swapped (or mocked in tests)
without touching the rate gate.

Available implementations:
    - EnvironmentAwareHttpClient: Builds a RequestsHttpClient from `CRPT.config.auth`. Default.
    - RequestsHttpClient: Uses `requests` with an optional AuthProvider.

Example:
    >>> from crpt._http import EnvironmentAwareHttpClient
    >>> client = EnvironmentAwareHttpClient()
    >>> response = client.post("https://ismp.crpt.ru/api/v3/lk/documents/create", data={"signature": "..."})
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, override

import requests

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from crpt._auth import AuthProvider


# =============================================================================
# Abstract Base Class
# =============================================================================


class HttpClient(ABC):
    """
    Abstract base class for HTTP clients.

    Implementations must be thread-safe: `post()` is called concurrently
    from the client's worker threads.

    Example:
        >>> class MyHttpClient(HttpClient):
        ...     def post(self, url, data=None, headers=None, timeout=30):
        ...         return requests.post(url, json=data, headers=headers, timeout=timeout)
    """

    @abstractmethod
    def post(
        self,
        url: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        """
        Execute a POST request with JSON body.

        Args:
            url: The full URL to request.
            data: JSON-serializable data to send in the request body.
            headers: Additional headers to include (merged with auth headers).
            timeout: Request timeout in seconds.

        Returns:
            The HTTP response, whatever its status code.

        Raises:
            requests.RequestException: If the HTTP request fails at transport level.
        """
        pass

    def close(self) -> None:
        """Release any pooled connections. No-op by default."""
        pass


# =============================================================================
# Requests Implementation
# =============================================================================


class RequestsHttpClient(HttpClient):
    """
    HTTP client backed by a `requests.Session`.

    The body is sent with `json=`, so `requests` encodes it and sets
    `Content-Type: application/json`. When an AuthProvider is given, its
    headers are merged into every request.

    Example:
        >>> from crpt._auth import StaticTokenAuthProvider
        >>> client = RequestsHttpClient(auth_provider=StaticTokenAuthProvider("eyJ..."))

    Args:
        auth_provider: Optional provider for authorization headers.
        session: Optional session to reuse (e.g., with custom adapters).
    """

    def __init__(
        self,
        auth_provider: "AuthProvider | None" = None,
        session: requests.Session | None = None,
    ):
        from crpt._auth import AuthProvider

        assert auth_provider is None or isinstance(auth_provider, AuthProvider), \
            "auth_provider must be an AuthProvider instance"

        self._auth = auth_provider
        self._session = session or requests.Session()

    @override
    def post(
        self,
        url: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        """
        Execute a POST request with JSON body.

        Raises:
            AssertionError: If url is empty or timeout is invalid.
            requests.RequestException: If the HTTP request fails.
            AuthenticationError: If unable to obtain authorization token.
        """
        assert url, "URL cannot be empty."
        assert timeout is not None, "Timeout cannot be None."
        assert timeout > 0, "Timeout must be greater than 0."

        auth_headers = self._auth.get_auth_headers() if self._auth else {}
        merged_headers = {**auth_headers, **(headers or {})}

        return self._session.post(
            url,
            json=data,
            headers=merged_headers,
            timeout=timeout,
        )

    @override
    def close(self) -> None:
        self._session.close()


# =============================================================================
# Environment-Aware Implementation
# =============================================================================


class EnvironmentAwareHttpClient(HttpClient):
    """
    HTTP client that builds its delegate from the global configuration.

    The delegate is created lazily on the first request, allowing
    configuration via `CRPT.configure()` after import. Thread-safe using
    the double-checked locking pattern.

    Example:
        >>> from crpt import CRPT
        >>> CRPT.configure(auth={"token": "eyJ..."})
        >>> client = EnvironmentAwareHttpClient()
    """

    def __init__(self) -> None:
        self._delegate: HttpClient | None = None
        self._lock = threading.Lock()

    def _get_delegate(self) -> HttpClient:
        delegate = self._delegate
        if delegate is None:
            with self._lock:
                delegate = self._delegate
                if delegate is None:
                    delegate = self._delegate = self._create_delegate()
        return delegate

    def _create_delegate(self) -> HttpClient:
        from crpt._auth import create_auth_provider

        auth_provider = create_auth_provider()
        if auth_provider is None:
            logger.warning(
                f"{'HTTP-Client'[:26]:<26} | CRPT | "
                "⚠️ No bearer token configured (CRPT_AUTH_TOKEN). Requests will be sent without authorization."
            )
        return RequestsHttpClient(auth_provider=auth_provider)

    @override
    def post(
        self,
        url: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
    ) -> requests.Response:
        """Delegates to the configured HTTP client."""
        return self._get_delegate().post(url, data=data, headers=headers, timeout=timeout)

    @override
    def close(self) -> None:
        with self._lock:
            if self._delegate is not None:
                self._delegate.close()
                self._delegate = None
