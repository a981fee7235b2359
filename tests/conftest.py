"""Shared fixtures: stub Kubernetes API, stub providers and a configured app."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from urllib.parse import parse_qs

import httpx
import pytest

from spi_oauth.core.config import ServiceConfig
from spi_oauth.oauth.config import ProviderType
from spi_oauth.oauth.session import InMemorySessionStore
from spi_oauth.oauth.state import AnonymousState, StateCodec, Token
from spi_oauth.oauth.storage import TokenObjectRef, TokenStorage
from spi_oauth.server.app import create_app

SIGNING_SECRET = "test-signing-secret"
BASE_URL = "http://spi.test"


class FakeKubernetes:
    """Answers access reviews and SPIAccessToken lookups."""

    def __init__(self, allowed_tokens: set[str]):
        self.allowed_tokens = allowed_tokens
        self.requests: list[httpx.Request] = []
        self.fail_reviews = False

    def bearer_tokens(self) -> list[str]:
        return [r.headers.get("Authorization", "") for r in self.requests]

    def review_count(self) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith("selfsubjectaccessreviews"))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/selfsubjectaccessreviews"):
            if self.fail_reviews:
                return httpx.Response(503, json={"message": "unavailable"})
            review = json.loads(request.content)
            token = request.headers.get("Authorization", "").removeprefix("Bearer ")
            review["status"] = {"allowed": token in self.allowed_tokens}
            return httpx.Response(201, json=review)

        if "/spiaccesstokens/" in request.url.path:
            parts = request.url.path.split("/")
            namespace, name = parts[-3], parts[-1]
            return httpx.Response(
                200,
                json={
                    "apiVersion": "appstudio.redhat.com/v1beta1",
                    "kind": "SPIAccessToken",
                    "metadata": {"name": name, "namespace": namespace, "uid": f"uid-{name}"},
                },
            )
        return httpx.Response(404, json={"message": "not found"})


class FakeProviders:
    """Token endpoints of GitHub and Quay."""

    def __init__(self):
        self.token_requests: list[httpx.Request] = []
        self.reject = False

    def token_request_forms(self) -> list[dict[str, list[str]]]:
        return [parse_qs(r.content.decode()) for r in self.token_requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.token_requests.append(request)
        if self.reject:
            return httpx.Response(
                400,
                json={"error": "bad_verification_code", "error_description": "code expired"},
            )
        return httpx.Response(
            200,
            json={
                "access_token": "provider-access-token",
                "token_type": "bearer",
                "refresh_token": "provider-refresh-token",
                "expires_in": 3600,
            },
        )


class RecordingTokenStorage(TokenStorage):
    def __init__(self):
        self.calls: list[tuple[TokenObjectRef, Token, str]] = []
        self.fail = False

    async def store(self, owner: TokenObjectRef, token: Token, identity: str) -> None:
        if self.fail:
            raise RuntimeError(f"backend refused {token.access_token}")
        self.calls.append((owner, token, identity))


@dataclass
class Harness:
    kube: FakeKubernetes
    providers: FakeProviders
    storage: RecordingTokenStorage
    sessions: InMemorySessionStore
    codec: StateCodec = field(default_factory=lambda: StateCodec(SIGNING_SECRET, ttl=600))

    def make_state(
        self,
        name: str = "tok1",
        namespace: str = "ns1",
        provider: ProviderType = ProviderType.GITHUB,
        scopes: tuple[str, ...] = ("repo",),
    ) -> tuple[AnonymousState, str]:
        state = AnonymousState(
            token_name=name,
            token_namespace=namespace,
            service_provider_type=provider,
            scopes=scopes,
        )
        return state, self.codec.encode(state)


def make_config(**overrides) -> ServiceConfig:
    values = {
        "base_url": BASE_URL,
        "state_signing_secret": SIGNING_SECRET,
        "api_server": "https://kube.test",
        "service_providers": [
            {"type": "GitHub", "client_id": "gh-client", "client_secret": "gh-secret"},
            {"type": "Quay", "client_id": "quay-client", "client_secret": "quay-secret"},
        ],
    }
    values.update(overrides)
    return ServiceConfig(**values)


@pytest.fixture
def harness() -> Harness:
    return Harness(
        kube=FakeKubernetes(allowed_tokens={"alice"}),
        providers=FakeProviders(),
        storage=RecordingTokenStorage(),
        sessions=InMemorySessionStore(lifetime=900),
    )


@pytest.fixture
def app_factory(harness: Harness):
    def factory(**config_overrides):
        return create_app(
            make_config(**config_overrides),
            session_store=harness.sessions,
            token_storage=harness.storage,
            kube_transport=httpx.MockTransport(harness.kube.handler),
            provider_transport=httpx.MockTransport(harness.providers.handler),
        )

    return factory
