from .api_client import ApiRequest, CredentialedClient, STATE_CHANGING_METHODS
from .config import ClientConfig
from .errors import (
    AuthorizationError,
    BusinessFailure,
    ClientError,
    CredentialError,
    HttpError,
    NetworkError,
    ServerError,
    ValidationError,
    error_from_response,
)

__all__ = [
    "ApiRequest",
    "CredentialedClient",
    "STATE_CHANGING_METHODS",
    "ClientConfig",
    "AuthorizationError",
    "BusinessFailure",
    "ClientError",
    "CredentialError",
    "HttpError",
    "NetworkError",
    "ServerError",
    "ValidationError",
    "error_from_response",
]
