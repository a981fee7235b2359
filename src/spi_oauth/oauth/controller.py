"""OAuth flow controller for one service provider.

Handles the two legs of the authorization-code flow:

1. `/authenticate`: verify the operator-issued state, check that the caller
   may update the token, veil the state and send the user agent to the
   provider.
2. `/callback`: recover the real state from the session, check the caller
   again, exchange the code for a token and hand it to the token storage.

Failures are raised as `OAuthServiceError` subclasses; the HTTP layer turns
them into responses.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
import structlog
from aiohttp import web
from authlib.integrations.base_client import OAuthError

from spi_oauth.core.logging import audit_log, identity_fingerprint, time_track
from spi_oauth.kube import KubernetesApiError, KubernetesClient
from spi_oauth.oauth.access import AccessGate
from spi_oauth.oauth.authenticator import Authenticator
from spi_oauth.oauth.config import ProviderType
from spi_oauth.oauth.errors import (
    InvalidStateError,
    K8sAuthRequiredError,
    MissingStateError,
    NoSessionError,
    ProviderAuthorizationError,
    ProviderExchangeError,
    StateUnveilError,
    StorageError,
    UnauthorizedError,
)
from spi_oauth.oauth.providers import OAuthClientFactory
from spi_oauth.oauth.session import get_request_session
from spi_oauth.oauth.state import (
    AnonymousState,
    ExchangeResult,
    ExchangeState,
    OAuthFinishResult,
    StateCodec,
    Token,
)
from spi_oauth.oauth.storage import TokenObjectRef, TokenStorage
from spi_oauth.oauth.veil import StateVeil
from spi_oauth.server.templates import redirect_page

logger = structlog.get_logger()

SUCCESS_PATH = "callback_success"


def _origin(url: str) -> tuple[str, str]:
    parsed = urlparse(url)
    return parsed.scheme.lower(), parsed.netloc.lower()


@dataclass
class ControllerDeps:
    """Collaborators shared by the controllers of all providers."""

    codec: StateCodec
    authenticator: Authenticator
    access_gate: AccessGate
    kube: KubernetesClient
    token_storage: TokenStorage
    veil: StateVeil


class OAuthController:
    """Drives the OAuth flow for a single provider."""

    def __init__(
        self,
        clients: OAuthClientFactory,
        deps: ControllerDeps,
        base_url: str,
        trusted_origins: Sequence[str] = (),
    ):
        """Initialize the controller.

        Args:
            clients: Factory of OAuth clients for the provider
            deps: Shared collaborators
            base_url: Public URL of this service
            trusted_origins: Origins besides base_url that `redirect_after_login` may point to
        """
        self._clients = clients
        self._deps = deps
        self._base_url = base_url.rstrip("/")
        self._redirect_origins = {_origin(self._base_url)}
        self._redirect_origins.update(_origin(o) for o in trusted_origins if o != "*")

    @property
    def provider_type(self) -> ProviderType:
        return self._clients.provider.provider_type

    async def authenticate(self, request: web.Request) -> web.Response:
        """Start the flow and return a page redirecting to the provider."""
        with time_track(logger, "/authenticate"):
            state_string = request.query.get("state", "")
            state = self._deps.codec.decode(state_string)
            self._check_provider(state)

            k8s_token = await self._deps.authenticator.get_token(request)
            if not await self._check_identity_has_access(k8s_token, state):
                logger.debug("Access review denied the authenticate request")
                raise UnauthorizedError()

            audit_log(
                "OAuth authentication flow started",
                state.token_namespace,
                state.token_name,
                caller=identity_fingerprint(k8s_token),
                provider=state.service_provider_type.value,
                scopes=list(state.scopes),
            )

            veiled = await self._deps.veil.veil(get_request_session(request), state_string)

            async with self._clients.create_client(state.scopes) as client:
                url, _ = client.create_authorization_url(
                    self._clients.provider.capabilities.endpoint.authorize_url,
                    state=veiled,
                )
            logger.debug("Redirecting to service provider", provider=self.provider_type.value)
            return web.Response(
                text=redirect_page(url),
                content_type="text/html",
                headers={"Cache-Control": "no-store"},
            )

    async def callback(self, request: web.Request) -> web.Response:
        """Finish the flow, store the token and redirect to the success page."""
        with time_track(logger, "/callback"):
            exchange = await self._finish_oauth_exchange(request)
            if exchange.result is OAuthFinishResult.K8S_AUTH_REQUIRED:
                raise K8sAuthRequiredError()

            await self._sync_token_data(exchange)

            state = exchange.state.anonymous
            audit_log(
                "OAuth authentication completed successfully",
                state.token_namespace,
                state.token_name,
                caller=identity_fingerprint(exchange.caller_token),
                provider=state.service_provider_type.value,
                scopes=list(state.scopes),
            )
            raise web.HTTPFound(self._redirect_location(request))

    async def _finish_oauth_exchange(self, request: web.Request) -> ExchangeResult:
        """Recover the state, re-check the caller and exchange the code."""
        provider_error = request.query.get("error")
        if provider_error:
            logger.warning(
                "Service provider returned error",
                error=provider_error,
                description=request.query.get("error_description"),
            )
            code = "access_denied" if provider_error == "access_denied" else "authentication_failed"
            raise ProviderAuthorizationError(f"provider returned {code}", code=code)

        try:
            state_string = await self._deps.veil.unveil(
                get_request_session(request), request.query.get("state", "")
            )
        except MissingStateError as e:
            raise StateUnveilError("failed to unveil token state: no state") from e
        if not state_string:
            raise StateUnveilError("failed to unveil token state: unknown or expired")

        state = self._deps.codec.decode_into(state_string, ExchangeState)
        self._check_provider(state.anonymous)

        try:
            k8s_token = await self._deps.authenticator.get_token(request)
        except NoSessionError:
            return ExchangeResult(result=OAuthFinishResult.K8S_AUTH_REQUIRED, state=state)

        if not await self._check_identity_has_access(k8s_token, state.anonymous):
            logger.debug("Access review denied the callback request")
            raise UnauthorizedError()

        token = await self._exchange_code(request, state.anonymous)
        return ExchangeResult(
            result=OAuthFinishResult.AUTHENTICATED,
            state=state,
            token=token,
            caller_token=k8s_token,
        )

    async def _exchange_code(self, request: web.Request, state: AnonymousState) -> Token:
        code = request.query.get("code", "")
        if not code:
            raise ProviderAuthorizationError("callback has no authorization code")

        extra = {}
        if self._clients.provider.capabilities.supports_scope_on_exchange:
            scope = request.query.get("scope", "")
            if scope:
                extra["scope"] = scope

        try:
            async with self._clients.create_client(state.scopes) as client:
                raw_token = await client.fetch_token(code=code, **extra)
            return Token.from_oauth2(raw_token)
        except (OAuthError, httpx.HTTPError, ValueError, KeyError) as e:
            raise ProviderExchangeError(f"failed to finish the OAuth exchange: {e}") from e

    async def _sync_token_data(self, exchange: ExchangeResult) -> None:
        """Store the token for the SPIAccessToken named in the state."""
        state = exchange.state.anonymous
        try:
            obj = await self._deps.kube.get_access_token(
                exchange.caller_token, state.token_namespace, state.token_name
            )
        except KubernetesApiError as e:
            raise StorageError(
                f"failed to get the SPIAccessToken object {state.token_namespace}/{state.token_name}: {e}"
            ) from e

        owner = TokenObjectRef.from_object(obj)
        try:
            await self._deps.token_storage.store(owner, exchange.token, exchange.caller_token)
        except Exception as e:
            raise StorageError(f"failed to persist the token to storage: {type(e).__name__}") from e

    async def _check_identity_has_access(self, k8s_token: str, state: AnonymousState) -> bool:
        return await self._deps.access_gate.check_access(k8s_token, state.token_namespace)

    def _check_provider(self, state: AnonymousState) -> None:
        if state.service_provider_type is not self.provider_type:
            raise InvalidStateError(
                f"state is for {state.service_provider_type.value}, "
                f"not {self.provider_type.value}"
            )

    def _redirect_location(self, request: web.Request) -> str:
        default = f"{self._base_url}/{SUCCESS_PATH}"
        location = request.query.get("redirect_after_login", "")
        if not location:
            return default
        parsed = urlparse(location)
        if not parsed.scheme and not parsed.netloc and location.startswith("/") and not location.startswith("//"):
            return location
        if parsed.scheme in ("http", "https") and _origin(location) in self._redirect_origins:
            return location
        logger.warning("Redirect after login blocked", location=location[:100])
        return default
