"""Authorization gate: may the caller update the token it asks for?"""

from __future__ import annotations

import structlog

from spi_oauth.kube import (
    API_GROUP,
    API_VERSION,
    TOKEN_DATA_UPDATE_RESOURCE,
    KubernetesApiError,
    KubernetesClient,
)
from spi_oauth.oauth.errors import AuthzCheckError

logger = structlog.get_logger()


class AccessGate:
    """Evaluates cluster RBAC for the caller's own identity.

    The decision is always made with the bearer token of the current
    request, through a self-subject access review. Nothing is cached.
    """

    def __init__(self, client: KubernetesClient):
        self._client = client

    async def check_access(
        self,
        bearer_token: str,
        namespace: str,
        resource: str = TOKEN_DATA_UPDATE_RESOURCE,
        verb: str = "create",
    ) -> bool:
        """Return whether the caller may `verb` `resource` in `namespace`.

        Raises:
            AuthzCheckError: If the review could not be performed
        """
        attributes = {
            "namespace": namespace,
            "verb": verb,
            "group": API_GROUP,
            "version": API_VERSION,
            "resource": resource,
        }
        try:
            status = await self._client.create_self_subject_access_review(bearer_token, attributes)
        except KubernetesApiError as e:
            logger.error(
                "The token is incorrect or the service is not configured properly "
                "and the API server setting points it to the incorrect Kubernetes API server",
                error=str(e),
            )
            raise AuthzCheckError(f"failed to create SelfSubjectAccessReview: {e}") from e

        return status.get("allowed") is True
