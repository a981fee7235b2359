"""Error taxonomy for the OAuth flow.

Every failure raised by the flow carries the HTTP status it maps to and a
generic public message. The underlying cause is logged server-side only;
the public message is the only text that reaches the client.
"""

from __future__ import annotations


class OAuthServiceError(Exception):
    """Base class for all failures of the OAuth flow."""

    status: int = 500
    code: str = "internal_error"
    public_message: str = "Internal error. Please try again."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)


class MissingStateError(OAuthServiceError):
    """The request carries no `state` parameter."""

    status = 400
    code = "missing_state"
    public_message = "Request has no `state` parameter."


class InvalidStateError(OAuthServiceError):
    """The state could not be decoded or its signature is invalid."""

    status = 400
    code = "invalid_state"
    public_message = "Failed to decode the OAuth state."


class StateUnveilError(OAuthServiceError):
    """The veiled state is unknown to the session (forged, replayed or expired)."""

    status = 400
    code = "invalid_state"
    public_message = "Invalid or expired authentication request."


class ProviderAuthorizationError(OAuthServiceError):
    """The service provider redirected back with an error instead of a code."""

    status = 400
    code = "authentication_failed"
    public_message = "The service provider did not authorize the request."

    def __init__(self, message: str | None = None, code: str | None = None):
        super().__init__(message)
        if code:
            self.code = code


class NoSessionError(OAuthServiceError):
    """No bearer token could be found for the request."""

    status = 401
    code = "no_session"
    public_message = (
        "No active session was found. Please use `/login` method to authorize your "
        "request and try again. Or provide the token as a `k8s_token` query parameter."
    )


class K8sAuthRequiredError(OAuthServiceError):
    """The callback arrived without a cluster identity."""

    status = 401
    code = "k8s_auth_required"
    public_message = "Could not authenticate to Kubernetes."


class UnauthorizedError(OAuthServiceError):
    """The cluster denied the caller the right to update the token."""

    status = 401
    code = "unauthorized"
    public_message = "Authenticating the request in Kubernetes unsuccessful."


class InvalidTokenDataError(OAuthServiceError):
    """An uploaded token is not valid token JSON."""

    status = 400
    code = "invalid_token_data"
    public_message = "Request body is not valid token JSON with a non-empty `access_token`."


class UnknownProviderError(OAuthServiceError):
    status = 404
    code = "unknown_provider"
    public_message = "Unknown service provider."


class AuthzCheckError(OAuthServiceError):
    """The access review could not be performed."""

    code = "authz_check_failed"
    public_message = "Failed to determine if the authenticated user has access."


class GenerationError(OAuthServiceError):
    """The secure random source is unavailable."""

    code = "generation_failed"
    public_message = "Failed to generate a new OAuth state."


class ProviderExchangeError(OAuthServiceError):
    """The authorization code could not be exchanged for a token."""

    code = "exchange_failed"
    public_message = "Error in service provider token exchange."


class StorageError(OAuthServiceError):
    """The token could not be persisted."""

    code = "storage_failed"
    public_message = "Failed to store token data to cluster."
