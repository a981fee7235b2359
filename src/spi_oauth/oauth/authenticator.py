"""Extraction of the caller's cluster identity from a request.

The identity is a Kubernetes bearer token. It is looked up, in order, in
the `Authorization` header, the `k8s_token` query parameter and the token
remembered in the session by a previous `/login`.
"""

from __future__ import annotations

import structlog
from aiohttp import web

from spi_oauth.oauth.errors import NoSessionError
from spi_oauth.oauth.session import get_request_session

logger = structlog.get_logger()

SESSION_TOKEN_KEY = "k8s_token"
QUERY_TOKEN_PARAM = "k8s_token"


def bearer_from_header(request: web.Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


class Authenticator:
    """Finds the bearer token a request acts with."""

    async def get_token(self, request: web.Request) -> str:
        """Return the caller's bearer token.

        Raises:
            NoSessionError: If the request carries no identity
        """
        token = bearer_from_header(request)
        if token:
            return token

        token = request.query.get(QUERY_TOKEN_PARAM, "")
        if token:
            return token

        token = await get_request_session(request).get(SESSION_TOKEN_KEY)
        if token:
            return token

        raise NoSessionError("no active oauth session found")

    async def login(self, request: web.Request) -> None:
        """Remember the request's bearer token in its session.

        Raises:
            NoSessionError: If the request has no bearer token
        """
        token = bearer_from_header(request)
        if not token:
            raise NoSessionError("login requires a bearer token in the Authorization header")
        session = get_request_session(request)
        # the pre-login session id must never carry the token
        await session.renew()
        await session.put(SESSION_TOKEN_KEY, token)
        logger.debug("Bearer token remembered in session")

    async def logout(self, request: web.Request) -> None:
        if await get_request_session(request).destroy():
            logger.info("Session destroyed on logout")
