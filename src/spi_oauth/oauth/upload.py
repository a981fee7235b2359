"""Direct upload of token data for an SPIAccessToken.

Clients that already hold a provider token skip the OAuth flow and POST it
to `/token/{namespace}/{name}`. The upload acts with the caller's own
cluster identity, exactly like the callback of the flow does.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from aiohttp import web

from spi_oauth.core.logging import audit_log, identity_fingerprint, time_track
from spi_oauth.kube import KubernetesApiError, KubernetesClient
from spi_oauth.oauth.access import AccessGate
from spi_oauth.oauth.authenticator import Authenticator
from spi_oauth.oauth.errors import InvalidTokenDataError, StorageError, UnauthorizedError
from spi_oauth.oauth.state import Token
from spi_oauth.oauth.storage import TokenObjectRef, TokenStorage

logger = structlog.get_logger()


def parse_token_data(data: Any) -> Token:
    """Build a Token from uploaded JSON.

    `expiry` may be a unix timestamp or an RFC 3339 date.

    Raises:
        InvalidTokenDataError: If the data is not an object with a non-empty access_token
    """
    if not isinstance(data, dict):
        raise InvalidTokenDataError("token data must be a JSON object")

    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise InvalidTokenDataError("access token can't be omitted or empty")

    expiry = data.get("expiry") or 0
    try:
        if isinstance(expiry, str):
            expiry = int(datetime.fromisoformat(expiry.replace("Z", "+00:00")).timestamp())
        expiry = int(expiry)
    except (TypeError, ValueError) as e:
        raise InvalidTokenDataError(f"invalid expiry: {e}") from e

    return Token(
        access_token=access_token,
        token_type=str(data.get("token_type") or "Bearer"),
        refresh_token=str(data.get("refresh_token") or ""),
        expiry=expiry,
    )


class TokenUploader:
    """Stores caller-provided token data for an SPIAccessToken."""

    def __init__(
        self,
        authenticator: Authenticator,
        access_gate: AccessGate,
        kube: KubernetesClient,
        token_storage: TokenStorage,
    ):
        self._authenticator = authenticator
        self._access_gate = access_gate
        self._kube = kube
        self._token_storage = token_storage

    async def upload(self, request: web.Request, namespace: str, name: str) -> None:
        """Store the token in the request body for `namespace/name`.

        Raises:
            NoSessionError: If the request carries no identity
            UnauthorizedError: If the caller may not update the token
            InvalidTokenDataError: On a malformed body
            StorageError: If the object cannot be read or the token not stored
        """
        with time_track(logger, "/token"):
            k8s_token = await self._authenticator.get_token(request)

            try:
                data = await request.json()
            except ValueError as e:
                raise InvalidTokenDataError("failed to decode request body as token JSON") from e
            token = parse_token_data(data)

            if not await self._access_gate.check_access(k8s_token, namespace):
                logger.debug("Access review denied the token upload")
                raise UnauthorizedError()

            try:
                obj = await self._kube.get_access_token(k8s_token, namespace, name)
            except KubernetesApiError as e:
                raise StorageError(f"failed to get the SPIAccessToken object {namespace}/{name}: {e}") from e

            try:
                await self._token_storage.store(TokenObjectRef.from_object(obj), token, k8s_token)
            except Exception as e:
                raise StorageError(f"failed to upload the token: {type(e).__name__}") from e

            audit_log(
                "Token data uploaded",
                namespace,
                name,
                caller=identity_fingerprint(k8s_token),
            )
