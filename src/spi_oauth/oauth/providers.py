"""Pre-configured service provider templates and the OAuth client factory.

Provides the capability sets of the supported providers (GitHub, GitLab,
Quay) and builds the authlib clients used for the authorization-code flow.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx
from authlib.integrations.httpx_client import AsyncOAuth2Client

from spi_oauth.oauth.config import (
    OAuthEndpoint,
    ProviderCapabilities,
    ProviderConfig,
    ProviderType,
)

DEFAULT_BASE_URLS = {
    ProviderType.GITHUB: "https://github.com",
    ProviderType.GITLAB: "https://gitlab.com",
    ProviderType.QUAY: "https://quay.io",
}


def github_capabilities(base_url: str | None = None) -> ProviderCapabilities:
    """GitHub (or GitHub Enterprise when base_url is given)."""
    base = (base_url or DEFAULT_BASE_URLS[ProviderType.GITHUB]).rstrip("/")
    return ProviderCapabilities(
        endpoint=OAuthEndpoint(
            authorize_url=f"{base}/login/oauth/authorize",
            token_url=f"{base}/login/oauth/access_token",
        ),
    )


def gitlab_capabilities(base_url: str | None = None) -> ProviderCapabilities:
    """GitLab.com or a self-managed GitLab instance."""
    base = (base_url or DEFAULT_BASE_URLS[ProviderType.GITLAB]).rstrip("/")
    return ProviderCapabilities(
        endpoint=OAuthEndpoint(
            authorize_url=f"{base}/oauth/authorize",
            token_url=f"{base}/oauth/token",
        ),
    )


def quay_capabilities(base_url: str | None = None) -> ProviderCapabilities:
    """Quay.io or a self-hosted Quay registry.

    Quay requires the scopes on the token request as well, unlike plain
    OAuth 2.0.
    """
    base = (base_url or DEFAULT_BASE_URLS[ProviderType.QUAY]).rstrip("/")
    return ProviderCapabilities(
        endpoint=OAuthEndpoint(
            authorize_url=f"{base}/oauth/authorize",
            token_url=f"{base}/oauth/access_token",
        ),
        supports_scope_on_exchange=True,
    )


_CAPABILITIES = {
    ProviderType.GITHUB: github_capabilities,
    ProviderType.GITLAB: gitlab_capabilities,
    ProviderType.QUAY: quay_capabilities,
}


def create_provider(
    provider_type: str | ProviderType,
    client_id: str,
    client_secret: str,
    base_url: str | None = None,
) -> ProviderConfig:
    """Factory to create provider config from type name.

    Args:
        provider_type: One of "github", "gitlab" or "quay" (case-insensitive)
        client_id: OAuth client ID
        client_secret: OAuth client secret
        base_url: Base URL of a self-hosted provider instance

    Returns:
        Configured ProviderConfig

    Raises:
        ValueError: If provider_type is unknown or credentials are missing
    """
    if not isinstance(provider_type, ProviderType):
        provider_type = ProviderType.parse(provider_type)

    return ProviderConfig(
        provider_type=provider_type,
        client_id=client_id,
        client_secret=client_secret,
        capabilities=_CAPABILITIES[provider_type](base_url),
        base_url=base_url,
    )


@dataclass(frozen=True)
class OAuthClientDescriptor:
    """Everything needed to talk OAuth to one provider for one flow."""

    client_id: str
    client_secret: str = field(repr=False)
    redirect_url: str
    endpoint: OAuthEndpoint
    scopes: tuple[str, ...] = ()


class OAuthClientFactory:
    """Builds OAuth clients for one provider from static configuration."""

    def __init__(
        self,
        provider: ProviderConfig,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the factory.

        Args:
            provider: The provider configuration
            base_url: Public base URL of this service, used for the redirect URL
            timeout: Timeout in seconds of requests to the provider
            transport: Optional httpx transport (tests replace the network with it)
        """
        if not base_url:
            raise ValueError("base_url is required to derive the OAuth redirect URL")
        self._provider = provider
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport

    @property
    def provider(self) -> ProviderConfig:
        return self._provider

    def redirect_url(self) -> str:
        """The callback URL handled by this service for the provider."""
        return (
            self._base_url.rstrip("/")
            + "/"
            + self._provider.provider_type.path_segment
            + self._provider.capabilities.redirect_url_suffix
        )

    def descriptor(self, scopes: Sequence[str] = ()) -> OAuthClientDescriptor:
        return OAuthClientDescriptor(
            client_id=self._provider.client_id,
            client_secret=self._provider.client_secret,
            redirect_url=self.redirect_url(),
            endpoint=self._provider.capabilities.endpoint,
            scopes=tuple(scopes),
        )

    def create_client(self, scopes: Sequence[str] = ()) -> AsyncOAuth2Client:
        """Create an authlib client; the caller is responsible for closing it."""
        desc = self.descriptor(scopes)
        client_kwargs: dict[str, Any] = {
            "client_id": desc.client_id,
            "client_secret": desc.client_secret,
            "redirect_uri": desc.redirect_url,
            "token_endpoint": desc.endpoint.token_url,
            "timeout": self._timeout,
        }
        if desc.scopes:
            client_kwargs["scope"] = " ".join(desc.scopes)
        if self._transport is not None:
            client_kwargs["transport"] = self._transport
        return AsyncOAuth2Client(**client_kwargs)
