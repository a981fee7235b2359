"""Token storage collaborator.

Once a token has been obtained it is handed over to a storage backend,
keyed by the SPIAccessToken object it belongs to. Backends act with the
identity of the caller that completed the flow.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from spi_oauth.oauth.state import Token


@dataclass(frozen=True)
class TokenObjectRef:
    """Identity of an SPIAccessToken object."""

    name: str
    namespace: str
    uid: str = ""

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> TokenObjectRef:
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            uid=metadata.get("uid", ""),
        )


class TokenStorage(ABC):
    """Abstract token storage."""

    @abstractmethod
    async def store(self, owner: TokenObjectRef, token: Token, identity: str) -> None:
        """Persist `token` for `owner`, acting as `identity`.

        Implementations raise any exception on failure; the caller reports it
        without exposing token material.
        """


class InMemoryTokenStorage(TokenStorage):
    """Keeps tokens in process memory. Meant for development and tests."""

    def __init__(self):
        self._tokens: dict[TokenObjectRef, Token] = {}
        self._lock = asyncio.Lock()

    async def store(self, owner: TokenObjectRef, token: Token, identity: str) -> None:
        async with self._lock:
            self._tokens[owner] = token

    async def get(self, owner: TokenObjectRef) -> Token | None:
        async with self._lock:
            return self._tokens.get(owner)

    async def delete(self, owner: TokenObjectRef) -> bool:
        async with self._lock:
            return self._tokens.pop(owner, None) is not None
