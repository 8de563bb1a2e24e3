"""Instagram Graph API integration."""

from igsync.services.instagram.client import (
    FETCH_ERRORS,
    AuthenticationError,
    FetchAttempt,
    FetchResult,
    GraphAPIError,
    GraphClient,
    GraphHost,
    PageResult,
    RateLimitError,
    TransientGraphError,
    plan_attempts,
)
from igsync.services.instagram.credentials import (
    CredentialError,
    DecryptionError,
    MissingSecretError,
    ResolvedCredential,
    TokenFamily,
    WrongTokenFamilyError,
    encrypt_token,
    resolve_credential,
)

__all__ = [
    "FETCH_ERRORS",
    "AuthenticationError",
    "CredentialError",
    "DecryptionError",
    "FetchAttempt",
    "FetchResult",
    "GraphAPIError",
    "GraphClient",
    "GraphHost",
    "MissingSecretError",
    "PageResult",
    "RateLimitError",
    "ResolvedCredential",
    "TokenFamily",
    "TransientGraphError",
    "WrongTokenFamilyError",
    "encrypt_token",
    "plan_attempts",
    "resolve_credential",
]
