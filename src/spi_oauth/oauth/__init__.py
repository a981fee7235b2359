"""OAuth authorization-code flow for SPIAccessToken objects.

The flow has two legs served by `OAuthController`:

    /{provider}/authenticate?state=<signed anonymous state>
        The caller's cluster identity is checked with a self-subject access
        review, the state is veiled in the caller's session and the user
        agent is sent to the provider.

    /{provider}/callback?state=<veiled state>&code=<code>
        The real state is recovered from the session, the caller is checked
        again, the code is exchanged and the token handed to TokenStorage.

Example usage:

    from spi_oauth.oauth import (
        InMemorySessionStore,
        SessionContext,
        StateVeil,
    )

    store = InMemorySessionStore(lifetime=900)
    session = SessionContext("session-id", store)
    veil = StateVeil()
    veiled = await veil.veil(session, state_string)
    assert await veil.unveil(session, veiled) == state_string
"""

from spi_oauth.oauth.access import AccessGate
from spi_oauth.oauth.authenticator import Authenticator
from spi_oauth.oauth.config import (
    OAuthEndpoint,
    ProviderCapabilities,
    ProviderConfig,
    ProviderType,
)
from spi_oauth.oauth.controller import ControllerDeps, OAuthController
from spi_oauth.oauth.errors import (
    AuthzCheckError,
    GenerationError,
    InvalidStateError,
    InvalidTokenDataError,
    K8sAuthRequiredError,
    MissingStateError,
    NoSessionError,
    OAuthServiceError,
    ProviderAuthorizationError,
    ProviderExchangeError,
    StateUnveilError,
    StorageError,
    UnauthorizedError,
    UnknownProviderError,
)
from spi_oauth.oauth.providers import (
    OAuthClientDescriptor,
    OAuthClientFactory,
    create_provider,
)
from spi_oauth.oauth.secure_random import generate_random_string
from spi_oauth.oauth.session import (
    InMemorySessionStore,
    Session,
    SessionContext,
    SessionStore,
)
from spi_oauth.oauth.state import (
    AnonymousState,
    ExchangeResult,
    ExchangeState,
    OAuthFinishResult,
    StateCodec,
    Token,
)
from spi_oauth.oauth.storage import InMemoryTokenStorage, TokenObjectRef, TokenStorage
from spi_oauth.oauth.upload import TokenUploader, parse_token_data
from spi_oauth.oauth.veil import StateVeil

__all__ = [
    # Flow
    "OAuthController",
    "ControllerDeps",
    "AccessGate",
    "Authenticator",
    "TokenUploader",
    "parse_token_data",
    # Providers
    "OAuthEndpoint",
    "ProviderCapabilities",
    "ProviderConfig",
    "ProviderType",
    "OAuthClientDescriptor",
    "OAuthClientFactory",
    "create_provider",
    # State
    "AnonymousState",
    "ExchangeResult",
    "ExchangeState",
    "OAuthFinishResult",
    "StateCodec",
    "StateVeil",
    "Token",
    "generate_random_string",
    # Session
    "InMemorySessionStore",
    "Session",
    "SessionContext",
    "SessionStore",
    # Storage
    "InMemoryTokenStorage",
    "TokenObjectRef",
    "TokenStorage",
    # Errors
    "AuthzCheckError",
    "GenerationError",
    "InvalidStateError",
    "InvalidTokenDataError",
    "K8sAuthRequiredError",
    "MissingStateError",
    "NoSessionError",
    "OAuthServiceError",
    "ProviderAuthorizationError",
    "ProviderExchangeError",
    "StateUnveilError",
    "StorageError",
    "UnauthorizedError",
    "UnknownProviderError",
]
