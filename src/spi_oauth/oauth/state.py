"""OAuth state payloads and their signed encoding.

The anonymous state is produced by the operator and handed to the user
agent as the `state` query parameter of `/authenticate`. It is a signed
JWT (HS256) carrying the token object coordinates, the provider type and
the requested scopes. Decoding fails closed on any signature, format or
expiry problem.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from joserfc import jwt
from joserfc.errors import JoseError
from joserfc.jwk import OctKey

from spi_oauth.oauth.config import ProviderType
from spi_oauth.oauth.errors import InvalidStateError

_ALGORITHMS = ["HS256"]


@dataclass(frozen=True)
class AnonymousState:
    """Caller-originated description of the token object to fill."""

    token_name: str
    token_namespace: str
    service_provider_type: ProviderType
    scopes: tuple[str, ...] = ()
    issued_at: int = field(default_factory=lambda: int(time.time()))

    def to_claims(self) -> dict[str, Any]:
        return {
            "token_name": self.token_name,
            "token_namespace": self.token_namespace,
            "service_provider_type": self.service_provider_type.value,
            "scopes": list(self.scopes),
            "iat": self.issued_at,
        }

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> AnonymousState:
        try:
            scopes = claims.get("scopes") or []
            if not isinstance(scopes, list) or not all(isinstance(s, str) for s in scopes):
                raise ValueError("scopes must be a list of strings")
            name = claims["token_name"]
            namespace = claims["token_namespace"]
            if not isinstance(name, str) or not isinstance(namespace, str) or not name or not namespace:
                raise ValueError("token name and namespace must be non-empty strings")
            return cls(
                token_name=name,
                token_namespace=namespace,
                service_provider_type=ProviderType.parse(str(claims["service_provider_type"])),
                scopes=tuple(scopes),
                issued_at=int(claims.get("iat", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidStateError(f"malformed OAuth state: {e}") from e


@dataclass(frozen=True)
class ExchangeState:
    """The state recovered on callback; wraps the anonymous state it was veiled from."""

    anonymous: AnonymousState

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> ExchangeState:
        return cls(anonymous=AnonymousState.from_claims(claims))


@dataclass
class Token:
    """Token material obtained from a service provider."""

    access_token: str = field(repr=False)
    token_type: str = "Bearer"
    refresh_token: str = field(default="", repr=False)
    # unix timestamp, 0 when the provider did not say
    expiry: int = 0

    @classmethod
    def from_oauth2(cls, token: dict[str, Any]) -> Token:
        """Build from an authlib OAuth2Token (or any token response dict)."""
        expires_at = token.get("expires_at")
        if expires_at is None and token.get("expires_in"):
            expires_at = int(time.time()) + int(token["expires_in"])
        return cls(
            access_token=token["access_token"],
            token_type=token.get("token_type") or "Bearer",
            refresh_token=token.get("refresh_token") or "",
            expiry=int(expires_at or 0),
        )


class OAuthFinishResult(Enum):
    AUTHENTICATED = "authenticated"
    K8S_AUTH_REQUIRED = "k8s_auth_required"
    ERROR = "error"


@dataclass
class ExchangeResult:
    """Everything needed to store a token once the exchange has finished."""

    result: OAuthFinishResult
    state: ExchangeState | None = None
    token: Token | None = None
    caller_token: str = field(default="", repr=False)


_S = TypeVar("_S", AnonymousState, ExchangeState)


class StateCodec:
    """Signs and verifies OAuth state strings."""

    def __init__(self, signing_secret: bytes | str, ttl: int | None = None):
        """Initialize the codec.

        Args:
            signing_secret: HMAC key shared with the operator issuing states
            ttl: Lifetime in seconds written into encoded states, None for no expiry
        """
        if not signing_secret:
            raise ValueError("state signing secret must not be empty")
        key = signing_secret.encode() if isinstance(signing_secret, str) else signing_secret
        self._key = OctKey.import_key(key)
        self._ttl = ttl

    def encode(self, state: AnonymousState) -> str:
        claims = state.to_claims()
        if self._ttl:
            claims["exp"] = state.issued_at + self._ttl
        return jwt.encode({"alg": "HS256"}, claims, self._key, algorithms=_ALGORITHMS)

    def decode(self, state_string: str) -> AnonymousState:
        """Verify and decode an anonymous state.

        Raises:
            InvalidStateError: On any signature, format or expiry failure
        """
        return self.decode_into(state_string, AnonymousState)

    def decode_into(self, state_string: str, target: type[_S]) -> _S:
        """Verify `state_string` and build an instance of `target` from its claims."""
        if not state_string:
            raise InvalidStateError("empty OAuth state")
        try:
            token = jwt.decode(state_string, self._key, algorithms=_ALGORITHMS)
            jwt.JWTClaimsRegistry().validate(token.claims)
        except (JoseError, ValueError, TypeError) as e:
            raise InvalidStateError(f"failed to verify OAuth state: {e}") from e
        return target.from_claims(dict(token.claims))
