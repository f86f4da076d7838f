"""Configuration constants, types and option functions for the Pangea SDK."""

import logging
import platform
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Final, Mapping, Optional, Union

import httpx

from ._version import __version__
from .exceptions import PangeaConfigError


class Environment(str, Enum):
    """Deployment flavour used when building service URLs.

    PRODUCTION: ``https://{service}.{domain}``.

    LOCAL: ``https://{domain}``, for a gateway that serves every service
           from one host (local development and test rigs).
    """

    PRODUCTION = "production"
    LOCAL = "local"


# Default configuration values
DEFAULT_DOMAIN: Final[str] = "aws.us.pangea.cloud"
DEFAULT_HTTP_TIMEOUT: Final[float] = 30.0  # seconds, per HTTP attempt
DEFAULT_POLL_RESULT_TIMEOUT: Final[float] = 30.0  # seconds, whole polling loop
DEFAULT_MAX_RETRIES: Final[int] = 4
DEFAULT_RETRY_INITIAL_DELAY: Final[float] = 0.5
DEFAULT_RETRY_MAX_DELAY: Final[float] = 8.0
SERVICE_NAME_PLACEHOLDER: Final[str] = "{SERVICE_NAME}"

# SDK identification
SDK_NAME: Final[str] = "python"
SDK_USER_AGENT: Final[str] = "pangea-sdk"
LOGGER_NAME: Final[str] = "pangea"

Transport = Union[httpx.BaseTransport, httpx.AsyncBaseTransport]


@dataclass(frozen=True)
class RetryConfig:
    """Transport-level retry policy.

    Attributes:
        enabled: When False every call makes exactly one HTTP attempt.
        max_retries: Retries after the first attempt.
        initial_delay: Back-off base in seconds; doubles on each retry.
        max_delay: Cap for a single back-off before jitter is applied.
    """

    enabled: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_RETRY_INITIAL_DELAY
    max_delay: float = DEFAULT_RETRY_MAX_DELAY

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise PangeaConfigError("max_retries cannot be negative", {"max_retries": self.max_retries})
        if self.initial_delay < 0 or self.max_delay < 0:
            raise PangeaConfigError(
                "retry delays cannot be negative",
                {"initial_delay": self.initial_delay, "max_delay": self.max_delay},
            )


@dataclass(frozen=True)
class PangeaConfig:
    """Immutable client configuration.

    Build it directly or through :func:`new_config` with option functions::

        >>> config = new_config(with_token("pts_..."), with_domain("aws.us.pangea.cloud"))

    Every field is validated on construction; invalid combinations raise
    :class:`~pangea.exceptions.PangeaConfigError`.
    """

    token: Optional[str] = None
    domain: str = DEFAULT_DOMAIN
    base_url_template: Optional[str] = None
    insecure: bool = False
    environment: Environment = Environment.PRODUCTION
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    queued_retry_enabled: bool = True
    poll_result_timeout: float = DEFAULT_POLL_RESULT_TIMEOUT
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    additional_headers: Mapping[str, str] = field(default_factory=dict)
    custom_user_agent: Optional[str] = None
    config_id: Optional[str] = None
    transport: Optional[Transport] = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(LOGGER_NAME))

    def __post_init__(self) -> None:
        if isinstance(self.environment, str):
            try:
                object.__setattr__(self, "environment", Environment(self.environment))
            except ValueError:
                raise PangeaConfigError(f"Unknown environment: {self.environment!r}") from None
        if self.http_timeout <= 0:
            raise PangeaConfigError("http_timeout must be positive", {"http_timeout": self.http_timeout})
        if self.poll_result_timeout <= 0:
            raise PangeaConfigError(
                "poll_result_timeout must be positive",
                {"poll_result_timeout": self.poll_result_timeout},
            )
        if not self.domain:
            raise PangeaConfigError("domain cannot be empty")
        if self.base_url_template is not None:
            if SERVICE_NAME_PLACEHOLDER not in self.base_url_template:
                raise PangeaConfigError(
                    f"base_url_template must contain {SERVICE_NAME_PLACEHOLDER}",
                    {"base_url_template": self.base_url_template},
                )
            if self.domain != DEFAULT_DOMAIN:
                raise PangeaConfigError(
                    "domain and base_url_template are mutually exclusive",
                    {"domain": self.domain, "base_url_template": self.base_url_template},
                )
            if self.insecure:
                raise PangeaConfigError("insecure has no effect with base_url_template; set the scheme in the template")
        for name, value in self.additional_headers.items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise PangeaConfigError("additional headers must map strings to strings", {"header": name})
        object.__setattr__(self, "additional_headers", MappingProxyType(dict(self.additional_headers)))

    def with_options(self, *options: "ConfigOption") -> "PangeaConfig":
        """Return a copy of this config with ``options`` applied on top."""
        return _apply(dict(self.__dict__), options)


ConfigOption = Callable[[Dict[str, Any]], None]


def _apply(values: Dict[str, Any], options: "tuple[ConfigOption, ...]") -> PangeaConfig:
    for option in options:
        option(values)
    return PangeaConfig(**values)


def new_config(*options: ConfigOption) -> PangeaConfig:
    """Create a :class:`PangeaConfig` from option functions.

    Options are applied in order, so a later option overrides an earlier one.

    Raises:
        PangeaConfigError: If an option receives an invalid value or the
            resulting combination is inconsistent.
    """
    return _apply({}, options)


def with_token(token: str) -> ConfigOption:
    """Set the bearer token sent as ``Authorization: Bearer <token>``."""

    def option(values: Dict[str, Any]) -> None:
        if not token:
            raise PangeaConfigError("token cannot be empty")
        values["token"] = token

    return option


def with_domain(domain: str) -> ConfigOption:
    """Set the API domain. A value starting with ``http(s)://`` is used as a full base URL."""

    def option(values: Dict[str, Any]) -> None:
        if not domain:
            raise PangeaConfigError("domain cannot be empty")
        if values.get("base_url_template"):
            raise PangeaConfigError("domain and base_url_template are mutually exclusive")
        values["domain"] = domain

    return option


def with_base_url_template(template: str) -> ConfigOption:
    """Set a base URL template such as ``https://{SERVICE_NAME}.example.com``."""

    def option(values: Dict[str, Any]) -> None:
        if SERVICE_NAME_PLACEHOLDER not in template:
            raise PangeaConfigError(
                f"base_url_template must contain {SERVICE_NAME_PLACEHOLDER}", {"base_url_template": template}
            )
        if values.get("domain", DEFAULT_DOMAIN) != DEFAULT_DOMAIN:
            raise PangeaConfigError("domain and base_url_template are mutually exclusive")
        values["base_url_template"] = template

    return option


def with_insecure(insecure: bool = True) -> ConfigOption:
    """Use plain ``http://`` when building URLs from a domain."""

    def option(values: Dict[str, Any]) -> None:
        values["insecure"] = insecure

    return option


def with_environment(environment: Union[str, Environment]) -> ConfigOption:
    """Select the URL layout; ``"local"`` drops the service-name prefix."""

    def option(values: Dict[str, Any]) -> None:
        try:
            values["environment"] = Environment(environment)
        except ValueError:
            raise PangeaConfigError(f"Unknown environment: {environment!r}") from None

    return option


def with_http_timeout(seconds: float) -> ConfigOption:
    """Set the deadline for a single HTTP attempt."""

    def option(values: Dict[str, Any]) -> None:
        if seconds <= 0:
            raise PangeaConfigError("http_timeout must be positive", {"http_timeout": seconds})
        values["http_timeout"] = float(seconds)

    return option


def with_retries(max_retries: int) -> ConfigOption:
    """Enable transport retries with at most ``max_retries`` retries per call."""

    def option(values: Dict[str, Any]) -> None:
        if max_retries < 0:
            raise PangeaConfigError("max_retries cannot be negative", {"max_retries": max_retries})
        current = values.get("retry_config") or RetryConfig()
        values["retry_config"] = replace(current, enabled=True, max_retries=max_retries)

    return option


def with_retries_disabled() -> ConfigOption:
    """Make exactly one HTTP attempt per call."""

    def option(values: Dict[str, Any]) -> None:
        current = values.get("retry_config") or RetryConfig()
        values["retry_config"] = replace(current, enabled=False)

    return option


def with_retry_config(retry_config: RetryConfig) -> ConfigOption:
    """Replace the whole retry policy."""

    def option(values: Dict[str, Any]) -> None:
        if not isinstance(retry_config, RetryConfig):
            raise PangeaConfigError("retry_config must be a RetryConfig")
        values["retry_config"] = retry_config

    return option


def with_queued_retry_enabled(enabled: bool) -> ConfigOption:
    """Toggle in-line polling of HTTP 202 responses."""

    def option(values: Dict[str, Any]) -> None:
        values["queued_retry_enabled"] = enabled

    return option


def with_poll_result_timeout(seconds: float) -> ConfigOption:
    """Set the total time allowed for a 202 to resolve."""

    def option(values: Dict[str, Any]) -> None:
        if seconds <= 0:
            raise PangeaConfigError("poll_result_timeout must be positive", {"poll_result_timeout": seconds})
        values["poll_result_timeout"] = float(seconds)

    return option


def with_additional_headers(headers: Mapping[str, str]) -> ConfigOption:
    """Merge extra headers into every request. They never override SDK headers."""

    def option(values: Dict[str, Any]) -> None:
        merged = dict(values.get("additional_headers") or {})
        merged.update(headers)
        values["additional_headers"] = merged

    return option


def with_user_agent(suffix: str) -> ConfigOption:
    """Append ``suffix`` to the SDK user agent."""

    def option(values: Dict[str, Any]) -> None:
        values["custom_user_agent"] = suffix

    return option


def with_config_id(config_id: str) -> ConfigOption:
    """Set the service config id sent as ``X-Pangea-<Service>-Config-ID``."""

    def option(values: Dict[str, Any]) -> None:
        if not config_id:
            raise PangeaConfigError("config_id cannot be empty")
        values["config_id"] = config_id

    return option


def with_transport(transport: Transport) -> ConfigOption:
    """Use a custom httpx transport (proxies, test doubles)."""

    def option(values: Dict[str, Any]) -> None:
        if transport is None:
            raise PangeaConfigError("transport cannot be None")
        values["transport"] = transport

    return option


def with_logger(logger: logging.Logger) -> ConfigOption:
    """Log through ``logger`` instead of the ``"pangea"`` logger."""

    def option(values: Dict[str, Any]) -> None:
        if not isinstance(logger, logging.Logger):
            raise PangeaConfigError("logger must be a logging.Logger")
        values["logger"] = logger

    return option


def get_user_agent(config: PangeaConfig) -> str:
    """``pangea-sdk/<version>/python-<x.y.z>`` plus the configured suffix."""
    user_agent = f"{SDK_USER_AGENT}/{__version__}/{SDK_NAME}-{platform.python_version()}"
    if config.custom_user_agent:
        user_agent = f"{user_agent} {config.custom_user_agent}"
    return user_agent
