"""Tests for configuration, option functions and endpoint resolution."""

import dataclasses
import logging

import httpx
import pytest

from pangea import (
    DEFAULT_DOMAIN,
    Environment,
    PangeaConfig,
    PangeaConfigError,
    RetryConfig,
    base_url,
    get_user_agent,
    new_config,
    resolve_url,
    with_additional_headers,
    with_base_url_template,
    with_config_id,
    with_domain,
    with_environment,
    with_http_timeout,
    with_insecure,
    with_logger,
    with_poll_result_timeout,
    with_queued_retry_enabled,
    with_retries,
    with_retries_disabled,
    with_retry_config,
    with_token,
    with_transport,
    with_user_agent,
)


class TestNewConfig:
    """Test suite for new_config and option functions."""

    def test_defaults(self) -> None:
        """Test default values of an empty config."""
        config = new_config()
        assert config.token is None
        assert config.domain == DEFAULT_DOMAIN
        assert config.base_url_template is None
        assert config.insecure is False
        assert config.environment == Environment.PRODUCTION
        assert config.http_timeout == 30.0
        assert config.poll_result_timeout == 30.0
        assert config.queued_retry_enabled is True
        assert config.retry_config == RetryConfig()
        assert config.retry_config.max_retries == 4
        assert dict(config.additional_headers) == {}
        assert config.logger.name == "pangea"

    def test_options_are_applied_in_order(self) -> None:
        """Test that a later option overrides an earlier one."""
        config = new_config(with_http_timeout(10), with_http_timeout(5))
        assert config.http_timeout == 5.0

    def test_all_options(self) -> None:
        """Test every option function sets its field."""
        logger = logging.getLogger("pangea.test")
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        config = new_config(
            with_token("pts_test"),
            with_domain("dev.pangea.cloud"),
            with_insecure(),
            with_environment("local"),
            with_http_timeout(12),
            with_queued_retry_enabled(False),
            with_poll_result_timeout(60),
            with_retries(2),
            with_additional_headers({"X-Trace": "1"}),
            with_user_agent("my-app/1.0"),
            with_config_id("pci_123"),
            with_transport(transport),
            with_logger(logger),
        )
        assert config.token == "pts_test"
        assert config.domain == "dev.pangea.cloud"
        assert config.insecure is True
        assert config.environment == Environment.LOCAL
        assert config.http_timeout == 12.0
        assert config.queued_retry_enabled is False
        assert config.poll_result_timeout == 60.0
        assert config.retry_config.max_retries == 2
        assert config.additional_headers["X-Trace"] == "1"
        assert config.custom_user_agent == "my-app/1.0"
        assert config.config_id == "pci_123"
        assert config.transport is transport
        assert config.logger is logger

    def test_additional_headers_merge(self) -> None:
        """Test that repeated with_additional_headers merges headers."""
        config = new_config(with_additional_headers({"A": "1"}), with_additional_headers({"B": "2"}))
        assert dict(config.additional_headers) == {"A": "1", "B": "2"}

    def test_retries_disabled(self) -> None:
        """Test with_retries_disabled keeps the other retry settings."""
        config = new_config(with_retries(7), with_retries_disabled())
        assert config.retry_config.enabled is False
        assert config.retry_config.max_retries == 7

    def test_retry_config(self) -> None:
        """Test replacing the whole retry policy."""
        policy = RetryConfig(max_retries=1, initial_delay=0.1, max_delay=0.2)
        assert new_config(with_retry_config(policy)).retry_config is policy

    @pytest.mark.parametrize(
        "option",
        [
            lambda: with_token(""),
            lambda: with_domain(""),
            lambda: with_base_url_template("https://example.com"),
            lambda: with_environment("staging"),
            lambda: with_http_timeout(0),
            lambda: with_poll_result_timeout(-1),
            lambda: with_retries(-1),
            lambda: with_config_id(""),
            lambda: with_retry_config("nope"),
        ],
    )
    def test_invalid_option_raises(self, option) -> None:
        """Test that invalid option values raise PangeaConfigError."""
        with pytest.raises(PangeaConfigError):
            new_config(option())

    def test_domain_and_template_are_exclusive(self) -> None:
        """Test setting a custom domain together with a template."""
        with pytest.raises(PangeaConfigError):
            new_config(with_domain("dev.pangea.cloud"), with_base_url_template("https://{SERVICE_NAME}.x.io"))
        with pytest.raises(PangeaConfigError):
            new_config(with_base_url_template("https://{SERVICE_NAME}.x.io"), with_domain("dev.pangea.cloud"))

    def test_insecure_with_template_raises(self) -> None:
        """Test that insecure has no meaning with a template."""
        with pytest.raises(PangeaConfigError):
            PangeaConfig(base_url_template="http://{SERVICE_NAME}.x.io", insecure=True)

    def test_non_string_header_raises(self) -> None:
        """Test that header values must be strings."""
        with pytest.raises(PangeaConfigError):
            PangeaConfig(additional_headers={"X-Count": 1})

    def test_negative_retry_config_raises(self) -> None:
        """Test RetryConfig validation."""
        with pytest.raises(PangeaConfigError):
            RetryConfig(max_retries=-1)
        with pytest.raises(PangeaConfigError):
            RetryConfig(initial_delay=-0.5)


class TestPangeaConfigImmutability:
    """Test suite for config immutability."""

    def test_fields_cannot_be_assigned(self) -> None:
        """Test that the dataclass is frozen."""
        config = new_config(with_token("pts_test"))
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.token = "other"  # type: ignore[misc]

    def test_additional_headers_are_read_only(self) -> None:
        """Test that the headers mapping cannot be mutated after construction."""
        headers = {"A": "1"}
        config = PangeaConfig(additional_headers=headers)
        headers["B"] = "2"
        assert "B" not in config.additional_headers
        with pytest.raises(TypeError):
            config.additional_headers["C"] = "3"  # type: ignore[index]

    def test_with_options_returns_copy(self) -> None:
        """Test that with_options leaves the original untouched."""
        config = new_config(with_token("pts_a"))
        updated = config.with_options(with_token("pts_b"))
        assert config.token == "pts_a"
        assert updated.token == "pts_b"


class TestUserAgent:
    """Test suite for the SDK user agent."""

    def test_default_user_agent(self) -> None:
        """Test the user agent prefix."""
        assert get_user_agent(PangeaConfig()).startswith("pangea-sdk/1.0.0/python-")

    def test_custom_user_agent_suffix(self) -> None:
        """Test that a custom suffix is appended."""
        assert get_user_agent(new_config(with_user_agent("my-app/2.0"))).endswith(" my-app/2.0")


class TestEndpoint:
    """Test suite for service URL resolution."""

    def test_domain(self) -> None:
        """Test service-prefixed https URL."""
        config = PangeaConfig(domain="dev.pangea.cloud")
        assert resolve_url(config, "redact", "v1/redact") == "https://redact.dev.pangea.cloud/v1/redact"

    def test_insecure_domain(self) -> None:
        """Test that insecure selects http."""
        config = PangeaConfig(domain="dev.pangea.cloud", insecure=True)
        assert base_url(config, "audit") == "http://audit.dev.pangea.cloud"

    def test_template(self) -> None:
        """Test template substitution and trailing slash normalization."""
        config = new_config(with_base_url_template("https://{SERVICE_NAME}.proxy.example.com/"))
        assert resolve_url(config, "redact", "/v1/redact") == "https://redact.proxy.example.com/v1/redact"

    def test_local_environment(self) -> None:
        """Test that the local environment drops the service prefix."""
        config = new_config(with_domain("localhost:8000"), with_environment(Environment.LOCAL), with_insecure())
        assert resolve_url(config, "redact", "v1/redact") == "http://localhost:8000/v1/redact"

    def test_full_url_domain(self) -> None:
        """Test that a domain given as a URL is used as is."""
        config = new_config(with_domain("https://gateway.example.com/"))
        assert resolve_url(config, "file-scan", "v1/scan") == "https://gateway.example.com/v1/scan"

    def test_resolver_does_not_mutate_config(self) -> None:
        """Test that resolving leaves the config unchanged."""
        config = PangeaConfig(domain="dev.pangea.cloud")
        before = dict(config.__dict__)
        resolve_url(config, "redact", "v1/redact")
        assert config.__dict__ == before
