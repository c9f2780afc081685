"""
Global configuration for the crpt SDK.

This module provides a simple configuration system following Convention over Configuration (CoC).
Users can optionally call CRPT.configure() at application startup to customize defaults.
If not called, sensible defaults are used.

Hierarchy of precedence (highest to lowest):
1. Arguments passed to client constructors
2. Values set via CRPT.configure()
3. Environment variables (CRPT_*) - when allow_env_override=True
4. Hardcoded defaults (in dataclass fields)

Example:
    >>> from crpt import CRPT
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> limit = CRPT.config.rate_limit.request_limit
    >>>
    >>> # Custom configuration
    >>> CRPT.configure(
    ...     auth={"token": "eyJ..."},
    ...     rate_limit={"request_limit": 5, "time_window": 1.0},
    ... )
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from functools import wraps
from typing import Any, Self

# Names of the configurable sections, in display order
_SECTIONS = ("auth", "api", "rate_limit")

# Strings accepted as "no limit" for max_wait_time
_UNLIMITED_VALUES = ("none", "null", "unlimited")


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        section: str | None = None,
    ):
        self.field = field
        self.value = value
        self.section = section
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


class EnvVars:
    """
    Utility class for reading environment variables with type conversion.

    Example:
        >>> EnvVars.get("CRPT_API_REQUEST_TIMEOUT", type_hint=int)
        30
        >>> EnvVars.get("UNDEFINED_VAR")
        None
    """

    @staticmethod
    def get(
        var_name: str,
        type_hint: Any = str,
        converter: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Read an environment variable with optional type conversion.

        Args:
            var_name: The environment variable name.
            type_hint: Type hint used to infer the converter (ignored if converter is provided).
            converter: Custom converter function (takes precedence over type_hint).

        Returns:
            The converted value, or None if env var is not set/empty.

        Raises:
            ConfigEnvVarError: If the value cannot be converted.
        """
        raw_value = os.environ.get(var_name)
        if not raw_value:  # None or empty string
            return None

        actual_converter = converter or EnvVars._infer_converter(type_hint)
        try:
            return actual_converter(raw_value)
        except (ValueError, TypeError) as e:
            raise ConfigEnvVarError(
                env_var=var_name,
                value=raw_value,
                expected_type=type_hint.__name__ if hasattr(type_hint, "__name__") else str(type_hint),
                cause=e,
            ) from e

    @staticmethod
    def _infer_converter(type_hint: Any) -> Callable[[str], Any]:
        """
        Infer converter function from type hint.

        Handles both actual types and string annotations (PEP 563).
        """
        type_str = str(type_hint)

        if type_hint is int or type_str == "int":
            return int
        if type_hint is float or type_str == "float":
            return float
        if type_hint is bool or type_str == "bool":
            return lambda v: v.lower() in ("true", "1", "yes")
        return str


def _to_optional_seconds(value: str) -> float | None:
    """Convert an env var value to seconds, mapping 'unlimited'/'none'/'null' to None."""
    if value.lower() in _UNLIMITED_VALUES:
        return None
    return float(value)


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Base class for immutable configuration dataclasses.

    Provides `.with_overrides()` method for creating new instances
    with partial field updates. Uses strict validation to catch
    typos and invalid field names early.

    Example:
        >>> config = ApiConfig()
        >>> custom = config.with_overrides({"request_timeout": 60})
        >>> custom.request_timeout
        60
    """

    def with_overrides(
        self,
        overrides: dict[str, Any],
        allow_none_fields: set[str] | None = None,
    ) -> Self:
        """
        Return a new instance with specified fields overridden.

        Args:
            overrides: Dict of field names to new values.
                       Only existing fields are allowed.
            allow_none_fields: Set of field names that accept None as a valid value.
                       By default, None values are filtered out.

        Returns:
            New instance with updated values.

        Raises:
            ValueError: If overrides contains unknown field names.
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        allow_none = allow_none_fields or set()
        filtered = {k: v for k, v in overrides.items() if v is not None or k in allow_none}
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Return new instance with environment variables applied.

        Reads env vars declared in field metadata and applies them as overrides.
        Fields with metadata={"nullable": True} keep a None produced by their converter.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        overrides: dict[str, Any] = {}
        nullable: set[str] = set()
        for f in fields(self):
            env_var = f.metadata.get("env")
            if not env_var or not os.environ.get(env_var):
                continue
            overrides[f.name] = EnvVars.get(
                var_name=env_var,
                type_hint=f.type,
                converter=f.metadata.get("converter"),
            )
            if f.metadata.get("nullable", False):
                nullable.add(f.name)
        return self.with_overrides(overrides, allow_none_fields=nullable)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class AuthConfig(OverridableConfig):
    """
    Authorization configuration for the CRPT API.

    Attributes:
        token: Bearer token sent in the Authorization header. When None,
            requests are sent without an Authorization header.
            Env var: CRPT_AUTH_TOKEN

    Example:
        >>> from crpt import CRPT
        >>> if CRPT.config.auth.has_token():
        ...     print("Token configured")
    """

    token: str | None = field(default=None, metadata={"env": "CRPT_AUTH_TOKEN"})

    def has_token(self) -> bool:
        """Check if a bearer token is set."""
        return bool(self.token)

    def validate(self) -> Self:
        """Validate auth configuration fields."""
        if self.token is not None and self.token.strip() == "":
            raise ConfigValidationError(
                "token", self.token,
                "Must not be empty string.", section="auth"
            )
        return self


@dataclass(frozen=True)
class ApiConfig(OverridableConfig):
    """
    Configuration for the document-creation endpoint and its dispatcher.

    Attributes:
        base_url: Base URL of the CRPT API.
            Env var: CRPT_API_BASE_URL

        create_document_path: Path of the document-creation endpoint.
            Env var: CRPT_API_CREATE_DOCUMENT_PATH

        request_timeout: HTTP request timeout in seconds.
            Env var: CRPT_API_REQUEST_TIMEOUT

        max_workers: Maximum number of concurrent in-flight HTTP calls.
            Env var: CRPT_API_MAX_WORKERS

    Example:
        >>> from crpt import CRPT
        >>> CRPT.config.api.create_document_url
        'https://ismp.crpt.ru/api/v3/lk/documents/create'
    """

    base_url: str = field(default="https://ismp.crpt.ru", metadata={"env": "CRPT_API_BASE_URL"})
    create_document_path: str = field(
        default="/api/v3/lk/documents/create",
        metadata={"env": "CRPT_API_CREATE_DOCUMENT_PATH"},
    )
    request_timeout: int = field(default=30, metadata={"env": "CRPT_API_REQUEST_TIMEOUT"})
    max_workers: int = field(default=8, metadata={"env": "CRPT_API_MAX_WORKERS"})

    @property
    def create_document_url(self) -> str:
        """Full URL of the document-creation endpoint."""
        return f"{self.base_url.rstrip('/')}/{self.create_document_path.lstrip('/')}"

    def validate(self) -> Self:
        """Validate API configuration fields."""
        if not (self.base_url.startswith("http://") or self.base_url.startswith("https://")):
            raise ConfigValidationError(
                "base_url", self.base_url,
                "Must start with 'http://' or 'https://'.", section="api"
            )
        if not self.create_document_path:
            raise ConfigValidationError(
                "create_document_path", self.create_document_path,
                "Must not be empty.", section="api"
            )
        if self.request_timeout <= 0:
            raise ConfigValidationError(
                "request_timeout", self.request_timeout,
                "Must be greater than 0.", section="api"
            )
        if self.max_workers <= 0:
            raise ConfigValidationError(
                "max_workers", self.max_workers,
                "Must be greater than 0.", section="api"
            )
        return self


@dataclass(frozen=True)
class RateLimitConfig(OverridableConfig):
    """
    Configuration for the client-side rate gate.

    At most `request_limit` document submissions may be initiated per
    `time_window` seconds. Callers beyond the limit block until the next
    window opens or a permit is released.

    Attributes:
        request_limit: Maximum submissions initiated per time window.
            Env var: CRPT_RATE_LIMIT_REQUEST_LIMIT

        time_window: Window length in seconds.
            Env var: CRPT_RATE_LIMIT_TIME_WINDOW

        max_wait_time: Maximum seconds to wait for a permit before raising
            TokenAcquisitionTimeoutError. None means wait indefinitely.
            Env var: CRPT_RATE_LIMIT_MAX_WAIT_TIME ("unlimited" for None)

    Example:
        >>> from crpt import CRPT
        >>> CRPT.configure(rate_limit={"request_limit": 100, "time_window": 60.0})
    """

    request_limit: int = field(default=10, metadata={"env": "CRPT_RATE_LIMIT_REQUEST_LIMIT"})
    time_window: float = field(default=1.0, metadata={"env": "CRPT_RATE_LIMIT_TIME_WINDOW"})
    max_wait_time: float | None = field(
        default=None,
        metadata={
            "env": "CRPT_RATE_LIMIT_MAX_WAIT_TIME",
            "converter": _to_optional_seconds,
            "nullable": True,
        },
    )

    def with_overrides(
        self,
        overrides: dict[str, Any],
        allow_none_fields: set[str] | None = None,
    ) -> Self:
        """
        Return a new instance with specified fields overridden.

        max_wait_time accepts None, a number, or "unlimited"/"none"/"null".
        """
        if not overrides:
            return self

        processed = dict(overrides)
        value = processed.get("max_wait_time")
        if isinstance(value, str) and value.lower() in _UNLIMITED_VALUES:
            processed["max_wait_time"] = None

        merged_allow_none = {"max_wait_time"} | (allow_none_fields or set())
        return super().with_overrides(processed, allow_none_fields=merged_allow_none)

    def validate(self) -> Self:
        """Validate rate limit configuration fields."""
        if self.request_limit <= 0:
            raise ConfigValidationError(
                "request_limit", self.request_limit,
                "Must be greater than 0.", section="rate_limit"
            )
        if self.time_window <= 0:
            raise ConfigValidationError(
                "time_window", self.time_window,
                "Must be greater than 0.", section="rate_limit"
            )
        if self.max_wait_time is not None and self.max_wait_time <= 0:
            raise ConfigValidationError(
                "max_wait_time", self.max_wait_time,
                "Must be greater than 0 (or None for unlimited).", section="rate_limit"
            )
        return self


@dataclass(frozen=True)
class ConfigEntry:
    """
    A configuration field with its resolved value and source.

    Attributes:
        name: The field name (e.g., "request_timeout").
        value: The resolved value.
        source: Where the value came from:
            - "default": Hardcoded default value
            - "env:VAR_NAME": Environment variable
            - "configure": Set via CRPT.configure()

    Example:
        >>> ConfigEntry("request_timeout", 60, "configure").formatted_value
        '60'
    """

    name: str
    value: Any
    source: str

    @property
    def formatted_value(self) -> str:
        """
        Return value formatted for display.

        Masks the bearer token (first and last 4 characters for long tokens)
        and truncates long strings.

        Examples:
            >>> ConfigEntry("token", "super-secret-token", "configure").formatted_value
            'supe********oken'
        """
        if self.name == "token" and self.value is not None:
            secret = str(self.value)
            if len(secret) >= 12:
                return f"{secret[:4]}********{secret[-4:]}"
            if len(secret) >= 3:
                visible = max(1, len(secret) // 3)
                return f"********{secret[-visible:]}"
            return "********"

        if self.value is None:
            return "None"

        str_value = str(self.value)
        max_length = 50
        if len(str_value) > max_length:
            return str_value[: max_length - 3] + "..."

        return str_value


@dataclass(frozen=True)
class CRPTConfigTracker:
    """
    Tracks the source of config field values.

    Attributes:
        sources: Dict tracking source of each field value.
            Structure: {"section": {"field": "source"}}
    """

    sources: dict[str, dict[str, str]] = field(default_factory=dict)

    @staticmethod
    def track_changes(
        source_type: str,
    ) -> Callable[[Callable[..., CRPTConfig]], Callable[..., CRPTConfig]]:
        """
        Decorator that records which fields the decorated method touched.

        Args:
            source_type: Source label for tracking ("env" or "configure").
        """

        def decorator(
            method: Callable[..., CRPTConfig],
        ) -> Callable[..., CRPTConfig]:
            @wraps(method)
            def wrapper(self: CRPTConfig, *args: Any, **kwargs: Any) -> CRPTConfig:
                new_config = method(self, *args, **kwargs)
                new_tracker = self._tracker.with_changes_tracked(
                    new_config, source_type, overrides=kwargs
                )
                return replace(new_config, _tracker=new_tracker)

            return wrapper

        return decorator

    def with_changes_tracked(
        self,
        new_config: CRPTConfig,
        source_type: str,
        overrides: dict[str, Any] | None = None,
    ) -> CRPTConfigTracker:
        """Return a new tracker with the fields touched by `source_type` recorded."""
        new_sources = {section: dict(flds) for section, flds in self.sources.items()}

        for section_name in _SECTIONS:
            section_sources = new_sources.setdefault(section_name, {})
            for f in fields(getattr(new_config, section_name)):
                if source_type == "env":
                    # Same rule as EnvVars.get: empty means unset
                    env_var = f.metadata.get("env")
                    if env_var and os.environ.get(env_var):
                        section_sources[f.name] = f"env:{env_var}"
                elif source_type == "configure" and overrides:
                    if f.name in (overrides.get(section_name) or {}):
                        section_sources[f.name] = source_type

        return CRPTConfigTracker(sources={k: v for k, v in new_sources.items() if v})


@dataclass(frozen=True)
class CRPTConfig:
    """
    Global configuration for the crpt SDK.

    Aggregates all configuration sections. Access via the global
    `CRPT.config` property.

    Attributes:
        auth: Authorization configuration.
        api: Endpoint and dispatcher configuration.
        rate_limit: Rate gate configuration.

    Example:
        >>> from crpt import CRPT
        >>> CRPT.config.rate_limit.request_limit
        10
    """

    auth: AuthConfig = field(default_factory=AuthConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    _tracker: CRPTConfigTracker = field(default_factory=CRPTConfigTracker, repr=False)

    @CRPTConfigTracker.track_changes("env")
    def with_env_vars(self) -> CRPTConfig:
        """Return a new config with CRPT_* environment variables applied on top."""
        return CRPTConfig(
            auth=self.auth.with_env_vars(),
            api=self.api.with_env_vars(),
            rate_limit=self.rate_limit.with_env_vars(),
        )

    @CRPTConfigTracker.track_changes("configure")
    def with_section_overrides(
        self,
        *,
        auth: dict[str, Any] | None = None,
        api: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
    ) -> CRPTConfig:
        """
        Return a new config with overrides applied to nested sections.

        Example:
            >>> CRPTConfig().with_section_overrides(api={"request_timeout": 60})
        """
        return CRPTConfig(
            auth=self.auth.with_overrides(auth or {}),
            api=self.api.with_overrides(api or {}),
            rate_limit=self.rate_limit.with_overrides(rate_limit or {}),
        )

    def explain_data(self) -> dict[str, list[ConfigEntry]]:
        """Return every config value with its source, grouped by section."""
        result: dict[str, list[ConfigEntry]] = {}
        for section_name in _SECTIONS:
            section_config = getattr(self, section_name)
            section_sources = self._tracker.sources.get(section_name, {})
            result[section_name] = [
                ConfigEntry(
                    name=f.name,
                    value=getattr(section_config, f.name),
                    source=section_sources.get(f.name, "default"),
                )
                for f in fields(section_config)
            ]
        return result


# =============================================================================
# Global Configuration Singleton
# =============================================================================


class _CRPT:
    """
    Singleton for SDK configuration.

    Use `CRPT.configure()` to customize settings and `CRPT.config`
    to access current configuration.

    Example:
        >>> from crpt import CRPT
        >>> CRPT.configure(rate_limit={"request_limit": 5})
        >>> print(CRPT.config.rate_limit.request_limit)
    """

    def __init__(self) -> None:
        self._config: CRPTConfig = CRPTConfig().with_env_vars()

    def configure(
        self,
        *,
        auth: dict[str, Any] | None = None,
        api: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> CRPTConfig:
        """
        Configure SDK settings.

        Call at application startup to customize defaults.

        Args:
            auth: Authorization overrides (token).
            api: Endpoint overrides (base_url, create_document_path, request_timeout, max_workers).
            rate_limit: Rate gate overrides (request_limit, time_window, max_wait_time).
            allow_env_override: If True (default), env vars are used as fallback
                for fields NOT provided. If False, ignores env vars entirely.

        Returns:
            The configured CRPTConfig instance.

        Raises:
            ValueError: If any dict contains unknown field names.
            ConfigValidationError: If any config value fails validation.
        """
        base = CRPTConfig()
        if allow_env_override:
            base = base.with_env_vars()

        self._config = base.with_section_overrides(
            auth=auth,
            api=api,
            rate_limit=rate_limit,
        )
        return self.validate()

    @property
    def config(self) -> CRPTConfig:
        """Access current configuration (read-only)."""
        return self._config

    def reset(self) -> CRPTConfig:
        """
        Reset configuration to defaults + env vars.

        Useful for testing to ensure clean state between tests.
        """
        self._config = CRPTConfig().with_env_vars()
        return self.validate()

    def validate(self) -> CRPTConfig:
        """
        Validate current configuration.

        Raises:
            ConfigValidationError: If any config value is invalid.
        """
        self._config.auth.validate()
        self._config.api.validate()
        self._config.rate_limit.validate()
        return self._config

    def explain(
        self,
        output: Callable[[str], None] = print,
    ) -> None:
        """
        Print current configuration with sources.

        Args:
            output: Callable to output each line. Defaults to print.
                    Can be used with logging: `CRPT.explain(logger.info)`
        """
        name_width = 25
        value_width = 50

        output("CRPT Configuration:")
        output("=" * (name_width + value_width + 16))
        for section_name, entries in self._config.explain_data().items():
            output(f"[{section_name}]")
            for entry in entries:
                dots = "." * (name_width - len(entry.name))
                value_padded = entry.formatted_value.ljust(value_width)
                marker = "✎" if entry.source != "default" else " "
                output(f"  {entry.name} {dots} {value_padded} {marker} {entry.source}")
        output("=" * (name_width + value_width + 16))

    def __repr__(self) -> str:
        return f"CRPT(config={self._config!r})"


# Global singleton instance - always reflects current configuration
CRPT: _CRPT = _CRPT()
CRPT.validate()  # Validate defaults + env vars on module load
