"""
CRPT ("Chestny ZNAK") SDK for Python.

A thread-safe client for the CRPT document-creation API that keeps the
number of calls initiated per time window under a client-side limit.

Quick Start:
    >>> from crpt import CrptApi, Document, Description, TimeUnit
    >>> with CrptApi(TimeUnit.SECONDS, 5) as api:
    ...     doc = Document(description=Description(participant_inn="7700000000"), doc_id="42")
    ...     response = api.create_document(doc, signature="MIIG...").result()
    ...     print(response.status)

Global Configuration:
    >>> from crpt import CRPT
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> limit = CRPT.config.rate_limit.request_limit
    >>>
    >>> # Custom configuration
    >>> CRPT.configure(
    ...     auth={"token": "eyJ..."},
    ...     api={"request_timeout": 60},
    ...     rate_limit={"request_limit": 10, "time_window": 1.0},
    ... )

Main Classes:
    - CrptApi: Rate-limited client for the document-creation endpoint.
    - Document, Description, Product: Document payload.
    - SubmissionRequest: A document plus its signature.
    - SubmissionResponse: The outcome of a submission.
    - SubmissionStatus: Enum with submission outcomes.

Rate Limiting:
    - RateGate: Fixed-window permit gate with periodic replenishment.
    - Permit: One-shot handle for an acquired permit.
    - TimeUnit: Window length.
    - CancellationToken: Cooperative cancellation for blocked callers.
    - ClientSideRateLimitError and subclasses.

Configuration:
    - CRPT: Global SDK singleton for configuration.
    - CRPTConfig, AuthConfig, ApiConfig, RateLimitConfig.
    - ConfigEnvVarError, ConfigValidationError.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("crpt-sdk")

from crpt._auth import (
    AuthenticationError,
    AuthProvider,
    StaticTokenAuthProvider,
    create_auth_provider,
)
from crpt._client import CrptApi
from crpt._config import (
    CRPT,
    ApiConfig,
    AuthConfig,
    ConfigEntry,
    ConfigEnvVarError,
    ConfigValidationError,
    CRPTConfig,
    RateLimitConfig,
)
from crpt._event_listeners import FileLoggingListener, SubmissionEventListener
from crpt._http import EnvironmentAwareHttpClient, HttpClient, RequestsHttpClient
from crpt._models import (
    Description,
    Document,
    Product,
    SubmissionRequest,
    SubmissionResponse,
    SubmissionStatus,
)
from crpt._rate_limit import (
    AcquisitionCancelledError,
    CancellationToken,
    ClientSideRateLimitError,
    Permit,
    RateGate,
    RateGateClosedError,
    TimeUnit,
    TokenAcquisitionTimeoutError,
    UnbalancedReleaseError,
)

__all__ = [
    "__version__",
    # Client
    "CrptApi",
    "Document",
    "Description",
    "Product",
    "SubmissionRequest",
    "SubmissionResponse",
    "SubmissionStatus",
    # Event listeners
    "SubmissionEventListener",
    "FileLoggingListener",
    # Rate limiting
    "RateGate",
    "Permit",
    "TimeUnit",
    "CancellationToken",
    "ClientSideRateLimitError",
    "TokenAcquisitionTimeoutError",
    "AcquisitionCancelledError",
    "RateGateClosedError",
    "UnbalancedReleaseError",
    # Configuration
    "CRPT",
    "CRPTConfig",
    "ConfigEntry",
    "ConfigEnvVarError",
    "ConfigValidationError",
    "AuthConfig",
    "ApiConfig",
    "RateLimitConfig",
    # Authentication
    "AuthProvider",
    "StaticTokenAuthProvider",
    "AuthenticationError",
    "create_auth_provider",
    # HTTP Client
    "HttpClient",
    "RequestsHttpClient",
    "EnvironmentAwareHttpClient",
]
