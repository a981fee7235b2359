"""HTTP application of the OAuth service.

Routes:
    GET  /{provider}/authenticate - Start the OAuth flow
    GET  /{provider}/callback     - Finish the OAuth flow
    POST /token/{namespace}/{name} - Upload token data for an SPIAccessToken
    POST /login                   - Remember the caller's bearer token in the session
    GET  /logout                  - Forget the session
    GET  /callback_success        - Landing page after a completed flow
    GET  /callback_error          - Landing page after a failed flow
    GET  /health, /ready          - Liveness and readiness
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from urllib.parse import urlparse

import aiohttp_cors
import httpx
import structlog
from aiohttp import web

from spi_oauth.core.config import ServiceConfig
from spi_oauth.kube import KubernetesClient
from spi_oauth.oauth.access import AccessGate
from spi_oauth.oauth.authenticator import Authenticator
from spi_oauth.oauth.controller import ControllerDeps, OAuthController
from spi_oauth.oauth.errors import OAuthServiceError, UnknownProviderError
from spi_oauth.oauth.providers import OAuthClientFactory
from spi_oauth.oauth.session import (
    REQUEST_SESSION_KEY,
    InMemorySessionStore,
    SessionContext,
    SessionStore,
    new_session_id,
)
from spi_oauth.oauth.state import StateCodec
from spi_oauth.oauth.storage import InMemoryTokenStorage, TokenStorage
from spi_oauth.oauth.upload import TokenUploader
from spi_oauth.oauth.veil import StateVeil
from spi_oauth.server.templates import message_page, success_page

logger = structlog.get_logger()

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

ALLOWED_CORS_HEADERS = (
    "Accept",
    "Accept-Language",
    "Content-Language",
    "Content-Type",
    "Origin",
    "Authorization",
)


def _html_error(status: int, title: str, message: str) -> web.Response:
    return web.Response(
        text=message_page(title, message),
        status=status,
        content_type="text/html",
    )


@web.middleware
async def request_logging_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Log every request. Query strings are left out, they carry states and tokens."""
    start = time.perf_counter()
    status = 500
    try:
        response = await handler(request)
        status = response.status
        return response
    except web.HTTPException as exc:
        status = exc.status
        raise
    finally:
        logger.info(
            "HTTP request",
            method=request.method,
            path=request.path,
            status=status,
            elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
        )


def session_middleware(store: SessionStore, cookie_name: str, max_age: int, secure: bool):
    """Attach a SessionContext to each request and keep the session cookie.

    Only ids the store knows are accepted from the cookie; any other value is
    replaced by a fresh server-generated id.
    """

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        cookie_id = request.cookies.get(cookie_name)
        if cookie_id and await store.exists(cookie_id):
            session = SessionContext(cookie_id, store)
        else:
            session = SessionContext(new_session_id(), store)
        request[REQUEST_SESSION_KEY] = session

        def set_cookie(response: web.StreamResponse) -> None:
            if session.session_id != cookie_id:
                response.set_cookie(
                    cookie_name,
                    session.session_id,
                    max_age=max_age,
                    httponly=True,
                    secure=secure,
                    samesite="Lax",
                    path="/",
                )

        try:
            response = await handler(request)
        except web.HTTPException as exc:
            set_cookie(exc)
            raise
        set_cookie(response)
        return response

    return middleware


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Turn flow failures into HTML error pages without leaking their cause."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except OAuthServiceError as e:
        log = logger.error if e.status >= 500 else logger.warning
        log(
            "OAuth request failed",
            path=request.path,
            status=e.status,
            code=e.code,
            error=str(e),
            exc_info=e.status >= 500,
        )
        return _html_error(e.status, e.code, e.public_message)
    except Exception:
        logger.exception("Unhandled error", path=request.path)
        return _html_error(500, "internal_error", OAuthServiceError.public_message)


def setup_cors(app: web.Application, allowed_origins: list[str]) -> None:
    """Enable credentialed CORS on every route for the allowed origins."""
    if not allowed_origins:
        return
    options = aiohttp_cors.ResourceOptions(
        allow_credentials=True,
        allow_headers=ALLOWED_CORS_HEADERS,
        allow_methods=["GET", "POST"],
    )
    cors = aiohttp_cors.setup(app, defaults={origin: options for origin in allowed_origins})
    for route in list(app.router.routes()):
        cors.add(route)


class OAuthService:
    """Owns the controllers and collaborators behind the HTTP routes."""

    def __init__(
        self,
        controllers: dict[str, OAuthController],
        authenticator: Authenticator,
        uploader: TokenUploader,
        kube: KubernetesClient,
        session_store: SessionStore,
    ):
        self._controllers = controllers
        self._authenticator = authenticator
        self._uploader = uploader
        self._kube = kube
        self._session_store = session_store

    def register_routes(self, app: web.Application) -> None:
        """Register the service routes on an aiohttp application."""
        app.router.add_get("/health", self.handle_ok)
        app.router.add_get("/ready", self.handle_ok)
        app.router.add_get("/callback_success", self.handle_callback_success)
        app.router.add_get("/callback_error", self.handle_callback_error)
        app.router.add_post("/login", self.handle_login)
        app.router.add_get("/logout", self.handle_logout)
        app.router.add_post("/token/{namespace}/{name}", self.handle_upload)
        app.router.add_get("/{provider}/authenticate", self.handle_authenticate)
        app.router.add_get("/{provider}/callback", self.handle_callback)

    def _controller(self, request: web.Request) -> OAuthController:
        controller = self._controllers.get(request.match_info["provider"].lower())
        if controller is None:
            raise UnknownProviderError(f"no controller for {request.match_info['provider']}")
        return controller

    async def handle_ok(self, request: web.Request) -> web.Response:
        return web.Response(status=200)

    async def handle_callback_success(self, request: web.Request) -> web.Response:
        return web.Response(text=success_page(), content_type="text/html")

    async def handle_callback_error(self, request: web.Request) -> web.Response:
        return web.Response(
            text=message_page(
                request.query.get("error", ""),
                request.query.get("error_description", ""),
            ),
            content_type="text/html",
        )

    async def handle_login(self, request: web.Request) -> web.Response:
        await self._authenticator.login(request)
        return web.Response(status=204)

    async def handle_logout(self, request: web.Request) -> web.Response:
        await self._authenticator.logout(request)
        return web.Response(status=204)

    async def handle_upload(self, request: web.Request) -> web.Response:
        await self._uploader.upload(
            request,
            request.match_info["namespace"],
            request.match_info["name"],
        )
        return web.Response(status=204)

    async def handle_authenticate(self, request: web.Request) -> web.Response:
        return await self._controller(request).authenticate(request)

    async def handle_callback(self, request: web.Request) -> web.Response:
        return await self._controller(request).callback(request)

    async def on_startup(self, app: web.Application) -> None:
        if isinstance(self._session_store, InMemorySessionStore):
            await self._session_store.start()

    async def on_cleanup(self, app: web.Application) -> None:
        if isinstance(self._session_store, InMemorySessionStore):
            await self._session_store.stop()
        await self._kube.aclose()


SERVICE_KEY = web.AppKey("spi_oauth_service", OAuthService)


def create_app(
    config: ServiceConfig,
    session_store: SessionStore | None = None,
    token_storage: TokenStorage | None = None,
    kube_transport: httpx.AsyncBaseTransport | None = None,
    provider_transport: httpx.AsyncBaseTransport | None = None,
) -> web.Application:
    """Build the aiohttp application from configuration.

    Misconfigured providers fail here, at startup, rather than per request.

    Args:
        config: Service configuration
        session_store: Session storage, in-memory if None
        token_storage: Token storage, in-memory if None
        kube_transport: httpx transport for Kubernetes API calls (tests)
        provider_transport: httpx transport for provider calls (tests)
    """
    session_store = session_store or InMemorySessionStore(lifetime=config.session_lifetime)
    authenticator = Authenticator()
    kube = KubernetesClient(
        config.api_server,
        ca_path=config.api_server_ca_path,
        timeout=config.api_timeout,
        transport=kube_transport,
    )
    deps = ControllerDeps(
        codec=StateCodec(config.state_signing_secret, ttl=config.state_ttl),
        authenticator=authenticator,
        access_gate=AccessGate(kube),
        kube=kube,
        token_storage=token_storage or InMemoryTokenStorage(),
        veil=StateVeil(consume_on_unveil=config.consume_state_on_unveil),
    )

    controllers: dict[str, OAuthController] = {}
    for provider in config.provider_configs():
        clients = OAuthClientFactory(
            provider,
            config.base_url,
            timeout=config.provider_timeout,
            transport=provider_transport,
        )
        controllers[provider.provider_type.path_segment] = OAuthController(
            clients, deps, config.base_url, trusted_origins=config.allowed_origins
        )
        logger.info(
            "Service provider configured",
            provider=provider.provider_type.value,
            redirect_url=clients.redirect_url(),
        )

    uploader = TokenUploader(authenticator, deps.access_gate, kube, deps.token_storage)
    service = OAuthService(controllers, authenticator, uploader, kube, session_store)
    app = web.Application(
        middlewares=[
            request_logging_middleware,
            session_middleware(
                session_store,
                config.session_cookie_name,
                max_age=config.session_lifetime,
                secure=urlparse(config.base_url).scheme == "https",
            ),
            error_middleware,
        ]
    )
    app[SERVICE_KEY] = service
    service.register_routes(app)
    setup_cors(app, config.allowed_origins)
    app.on_startup.append(service.on_startup)
    app.on_cleanup.append(service.on_cleanup)
    return app
