"""Tests for provider capabilities, the client factory and the access gate."""

from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from spi_oauth.kube import KubernetesClient
from spi_oauth.oauth.access import AccessGate
from spi_oauth.oauth.config import ProviderType
from spi_oauth.oauth.errors import AuthzCheckError
from spi_oauth.oauth.providers import OAuthClientFactory, create_provider
from spi_oauth.oauth.storage import InMemoryTokenStorage, TokenObjectRef
from spi_oauth.oauth.state import Token


class TestProviderType:
    """Tests for ProviderType."""

    @pytest.mark.parametrize("value", ["GitHub", "github", "GITHUB"])
    def test_parse_is_case_insensitive(self, value):
        assert ProviderType.parse(value) is ProviderType.GITHUB

    def test_parse_unknown(self):
        with pytest.raises(ValueError, match="Unknown provider type"):
            ProviderType.parse("bitbucket")

    def test_path_segment(self):
        assert ProviderType.QUAY.path_segment == "quay"


class TestCreateProvider:
    """Tests for create_provider."""

    def test_github_defaults(self):
        provider = create_provider("GitHub", "id", "secret")
        assert provider.capabilities.endpoint.authorize_url == "https://github.com/login/oauth/authorize"
        assert provider.capabilities.endpoint.token_url == "https://github.com/login/oauth/access_token"
        assert provider.capabilities.supports_scope_on_exchange is False

    def test_gitlab_self_hosted(self):
        provider = create_provider("gitlab", "id", "secret", base_url="https://gitlab.example.com/")
        assert provider.capabilities.endpoint.authorize_url == "https://gitlab.example.com/oauth/authorize"
        assert provider.capabilities.endpoint.token_url == "https://gitlab.example.com/oauth/token"

    def test_quay_forwards_scope(self):
        provider = create_provider(ProviderType.QUAY, "id", "secret")
        assert provider.capabilities.endpoint.token_url == "https://quay.io/oauth/access_token"
        assert provider.capabilities.supports_scope_on_exchange is True

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            create_provider("bitbucket", "id", "secret")

    def test_missing_credentials(self):
        with pytest.raises(ValueError, match="client_id and client_secret"):
            create_provider("GitHub", "id", "")

    def test_repr_hides_secret(self):
        assert "top-secret" not in repr(create_provider("GitHub", "id", "top-secret"))


class TestOAuthClientFactory:
    """Tests for OAuthClientFactory."""

    @pytest.mark.parametrize(
        ("provider_type", "expected"),
        [
            ("GitHub", "https://spi.example.com/github/callback"),
            ("GitLab", "https://spi.example.com/gitlab/callback"),
            ("Quay", "https://spi.example.com/quay/callback"),
        ],
    )
    def test_redirect_url(self, provider_type, expected):
        factory = OAuthClientFactory(create_provider(provider_type, "id", "secret"), "https://spi.example.com/")
        assert factory.redirect_url() == expected

    def test_base_url_required(self):
        with pytest.raises(ValueError):
            OAuthClientFactory(create_provider("GitHub", "id", "secret"), "")

    def test_descriptor(self):
        factory = OAuthClientFactory(create_provider("GitHub", "gh-id", "gh-secret"), "https://spi.example.com")
        desc = factory.descriptor(["repo", "user"])
        assert desc.client_id == "gh-id"
        assert desc.client_secret == "gh-secret"
        assert desc.redirect_url == "https://spi.example.com/github/callback"
        assert desc.scopes == ("repo", "user")
        assert "gh-secret" not in repr(desc)

    @pytest.mark.asyncio
    async def test_authorization_url(self):
        factory = OAuthClientFactory(create_provider("GitHub", "gh-id", "gh-secret"), "https://spi.example.com")
        async with factory.create_client(["repo", "user"]) as client:
            url, state = client.create_authorization_url(
                factory.provider.capabilities.endpoint.authorize_url, state="veiled"
            )
        query = parse_qs(urlparse(url).query)
        assert state == "veiled"
        assert url.startswith("https://github.com/login/oauth/authorize?")
        assert query["client_id"] == ["gh-id"]
        assert query["state"] == ["veiled"]
        assert query["scope"] == ["repo user"]
        assert "gh-secret" not in url


class TestAccessGate:
    """Tests for AccessGate."""

    @staticmethod
    def gate(handler) -> AccessGate:
        return AccessGate(KubernetesClient("https://kube.test", transport=httpx.MockTransport(handler)))

    @pytest.mark.asyncio
    async def test_review_uses_caller_token(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"status": {"allowed": True}})

        assert await self.gate(handler).check_access("caller-token", "ns1") is True

        assert len(seen) == 1
        assert seen[0].headers["Authorization"] == "Bearer caller-token"
        assert seen[0].url.path == "/apis/authorization.k8s.io/v1/selfsubjectaccessreviews"
        review = json.loads(seen[0].content)
        assert review["kind"] == "SelfSubjectAccessReview"
        assert review["spec"]["resourceAttributes"] == {
            "namespace": "ns1",
            "verb": "create",
            "group": "appstudio.redhat.com",
            "version": "v1beta1",
            "resource": "spiaccesstokendataupdates",
        }

    @pytest.mark.asyncio
    async def test_denied(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, json={"status": {"allowed": False, "reason": "no RBAC"}})

        assert await self.gate(handler).check_access("caller-token", "ns1") is False

    @pytest.mark.asyncio
    async def test_missing_status_is_denied(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, json={})

        assert await self.gate(handler).check_access("caller-token", "ns1") is False

    @pytest.mark.asyncio
    async def test_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "Unauthorized"})

        with pytest.raises(AuthzCheckError):
            await self.gate(handler).check_access("bad-token", "ns1")

    @pytest.mark.asyncio
    async def test_unreachable_api_server(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AuthzCheckError):
            await self.gate(handler).check_access("caller-token", "ns1")


class TestInMemoryTokenStorage:
    """Tests for InMemoryTokenStorage."""

    @pytest.mark.asyncio
    async def test_store_get_delete(self):
        storage = InMemoryTokenStorage()
        owner = TokenObjectRef(name="tok1", namespace="ns1")
        await storage.store(owner, Token(access_token="a"), "caller")
        assert (await storage.get(owner)).access_token == "a"
        assert await storage.delete(owner) is True
        assert await storage.get(owner) is None

    def test_ref_from_object(self):
        ref = TokenObjectRef.from_object({"metadata": {"name": "tok1", "namespace": "ns1", "uid": "u1"}})
        assert ref == TokenObjectRef(name="tok1", namespace="ns1", uid="u1")
