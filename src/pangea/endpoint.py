"""Service URL resolution."""

from .config import SERVICE_NAME_PLACEHOLDER, Environment, PangeaConfig


def base_url(config: PangeaConfig, service: str) -> str:
    """Return the base URL for ``service`` without a trailing slash.

    Resolution order:
        1. ``base_url_template`` with ``{SERVICE_NAME}`` substituted.
        2. A domain that is already a URL (``http://``/``https://``) as is.
        3. ``{scheme}://{domain}`` in the local environment.
        4. ``{scheme}://{service}.{domain}``.
    """
    if config.base_url_template:
        return config.base_url_template.replace(SERVICE_NAME_PLACEHOLDER, service).rstrip("/")

    domain = config.domain.rstrip("/")
    if domain.startswith(("http://", "https://")):
        return domain

    scheme = "http://" if config.insecure else "https://"
    if config.environment == Environment.LOCAL:
        return f"{scheme}{domain}"
    return f"{scheme}{service}.{domain}"


def resolve_url(config: PangeaConfig, service: str, path: str) -> str:
    """Join the service base URL and ``path`` with exactly one slash."""
    return f"{base_url(config, service)}/{path.lstrip('/')}"
