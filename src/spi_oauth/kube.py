"""Minimal Kubernetes API client acting on behalf of the caller.

Every request carries the bearer token of the user agent that triggered it,
never a credential of this service: the cluster decides what the caller may
see and do.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

logger = structlog.get_logger()

API_GROUP = "appstudio.redhat.com"
API_VERSION = "v1beta1"
ACCESS_TOKEN_RESOURCE = "spiaccesstokens"
TOKEN_DATA_UPDATE_RESOURCE = "spiaccesstokendataupdates"


class KubernetesApiError(Exception):
    """A Kubernetes API call failed or returned an unexpected status."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class KubernetesClient:
    """Async client for the few API calls the OAuth flow needs."""

    def __init__(
        self,
        api_server: str,
        ca_path: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            api_server: URL of the Kubernetes API server (or API proxy)
            ca_path: CA bundle used to verify the API server, system CAs if None
            timeout: Timeout in seconds of each API request
            transport: Optional httpx transport (tests replace the network with it)
        """
        client_kwargs: dict[str, Any] = {
            "base_url": api_server.rstrip("/"),
            "timeout": timeout,
            "verify": ca_path or True,
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        self._http = httpx.AsyncClient(**client_kwargs)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self, method: str, path: str, bearer_token: str, json: dict | None = None
    ) -> dict[str, Any]:
        try:
            response = await self._http.request(
                method,
                path,
                json=json,
                headers={"Authorization": f"Bearer {bearer_token}"},
            )
        except httpx.HTTPError as e:
            raise KubernetesApiError(f"request to {path} failed: {e}") from e

        if response.status_code >= 300:
            raise KubernetesApiError(
                f"{method} {path} returned {response.status_code}",
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise KubernetesApiError(f"{method} {path} returned invalid JSON") from e

    async def create_self_subject_access_review(
        self, bearer_token: str, resource_attributes: dict[str, str]
    ) -> dict[str, Any]:
        """Ask the cluster whether the token's identity may perform an action.

        Returns:
            The review's status object (contains `allowed`)
        """
        review = {
            "apiVersion": "authorization.k8s.io/v1",
            "kind": "SelfSubjectAccessReview",
            "spec": {"resourceAttributes": resource_attributes},
        }
        result = await self._request(
            "POST",
            "/apis/authorization.k8s.io/v1/selfsubjectaccessreviews",
            bearer_token,
            json=review,
        )
        status = result.get("status") or {}
        logger.debug("self subject review result", allowed=status.get("allowed"))
        return status

    async def get_access_token(self, bearer_token: str, namespace: str, name: str) -> dict[str, Any]:
        """Fetch an SPIAccessToken object."""
        return await self._request(
            "GET",
            f"/apis/{API_GROUP}/{API_VERSION}/namespaces/{namespace}/{ACCESS_TOKEN_RESOURCE}/{name}",
            bearer_token,
        )
