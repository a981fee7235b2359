"""Service provider configuration types.

A provider is described by a capability set selected by its type tag:
the OAuth endpoint it uses and the quirks of its token exchange. The
per-deployment settings (client credentials, self-hosted base URL) come
from the service configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ProviderType(str, Enum):
    """Supported service provider types."""

    GITHUB = "GitHub"
    GITLAB = "GitLab"
    QUAY = "Quay"

    @classmethod
    def parse(cls, value: str) -> ProviderType:
        """Look up a provider type case-insensitively."""
        for member in cls:
            if member.value.lower() == value.lower():
                return member
        raise ValueError(
            f"Unknown provider type: {value}. "
            f"Supported: {', '.join(repr(m.value) for m in cls)}"
        )

    @property
    def path_segment(self) -> str:
        return self.value.lower()


@dataclass(frozen=True)
class OAuthEndpoint:
    authorize_url: str
    token_url: str


@dataclass(frozen=True)
class ProviderCapabilities:
    """What differs between providers in the authorization-code flow."""

    endpoint: OAuthEndpoint
    # Quay wants the scopes repeated on the token request, others ignore them
    supports_scope_on_exchange: bool = False
    redirect_url_suffix: str = "/callback"


@dataclass
class ProviderConfig:
    """OAuth configuration of one service provider."""

    provider_type: ProviderType
    client_id: str
    client_secret: str = field(repr=False)
    capabilities: ProviderCapabilities
    base_url: str | None = None

    def __post_init__(self):
        if not self.client_id or not self.client_secret:
            raise ValueError(
                f"ProviderConfig for {self.provider_type.value} requires client_id and client_secret"
            )
