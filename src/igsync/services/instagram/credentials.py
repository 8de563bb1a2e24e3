"""Access token storage format and token family detection.

Stored tokens come in three shapes:

* ``ENCRYPTED:<base64(nonce || ciphertext)>`` sealed with AES-256-GCM under the
  server secret,
* legacy base64 of a plain token,
* a plain token.

The token family decides which Graph host serves the account: Instagram-issued
tokens (``IG...``) go to graph.instagram.com, Facebook-issued tokens
(``EAA...``) to graph.facebook.com.
"""

import base64
import binascii
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "ENCRYPTED:"
NONCE_SIZE = 12
KEY_SIZE = 32
LEGACY_MIN_LENGTH = 20

TOKEN_PATTERN = re.compile(r"^(EAA|IG)")


class TokenFamily(str, Enum):
    """Issuer of an access token."""

    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    UNKNOWN = "unknown"


class CredentialError(Exception):
    """Base exception for credential resolution errors."""

    pass


class MissingSecretError(CredentialError):
    """An encrypted token was found but no server secret is configured."""

    pass


class DecryptionError(CredentialError):
    """The stored token could not be decrypted."""

    pass


class WrongTokenFamilyError(CredentialError):
    """The token was issued by a different provider than the caller expects."""

    def __init__(self, expected: TokenFamily, actual: TokenFamily):
        super().__init__(
            f"Expected a {expected.value} token but the account holds a {actual.value} token"
        )
        self.expected = expected
        self.actual = actual


@dataclass(frozen=True)
class ResolvedCredential:
    """A usable bearer token and where it came from."""

    token: str = field(repr=False)
    family: TokenFamily
    source: str

    @property
    def recognized(self) -> bool:
        return self.family is not TokenFamily.UNKNOWN

    def require_family(self, expected: Optional[TokenFamily]) -> None:
        """Raise if the caller demands a specific issuer and this is not it."""
        if expected is None or expected is TokenFamily.UNKNOWN:
            return
        if self.family is not expected:
            raise WrongTokenFamilyError(expected, self.family)


def derive_key(secret: str) -> bytes:
    """Turn the configured secret into a 32-byte AES key (zero-padded, truncated)."""
    return secret.encode("utf-8")[:KEY_SIZE].ljust(KEY_SIZE, b"0")


def classify_token(token: str) -> TokenFamily:
    """Detect the issuer from the token prefix."""
    if token.startswith("IG"):
        return TokenFamily.INSTAGRAM
    if token.startswith("EAA"):
        return TokenFamily.FACEBOOK
    return TokenFamily.UNKNOWN


def encrypt_token(plaintext: str, secret: str, nonce: Optional[bytes] = None) -> str:
    """Seal a token for storage.

    Args:
        plaintext: The raw access token
        secret: Server secret (ENCRYPTION_KEY)
        nonce: Fixed nonce, only for tests. A random one is generated otherwise.

    Returns:
        ``ENCRYPTED:`` followed by base64 of nonce and ciphertext
    """
    if not secret:
        raise MissingSecretError("ENCRYPTION_KEY is required to encrypt tokens")
    nonce = nonce or os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(derive_key(secret)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return ENCRYPTED_PREFIX + base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_token(stored: str, secret: Optional[str]) -> str:
    """Open an ``ENCRYPTED:`` token."""
    if not secret:
        raise MissingSecretError("Token is encrypted but ENCRYPTION_KEY is not configured")

    try:
        blob = base64.b64decode(stored[len(ENCRYPTED_PREFIX):], validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Encrypted token is not valid base64") from e

    if len(blob) <= NONCE_SIZE:
        raise DecryptionError("Encrypted token is truncated")

    nonce, ciphertext = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
    try:
        plaintext = AESGCM(derive_key(secret)).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise DecryptionError("Token decryption failed: wrong key or corrupted ciphertext") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted token is not valid text") from e


def _decode_legacy(stored: str) -> Optional[str]:
    """Return the decoded token when ``stored`` is base64 of a recognizable token."""
    try:
        decoded = base64.b64decode(stored, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None
    if TOKEN_PATTERN.match(decoded) and len(decoded) > LEGACY_MIN_LENGTH:
        return decoded
    return None


def resolve_credential(stored: str, secret: Optional[str] = None) -> ResolvedCredential:
    """Turn a stored token into a usable credential.

    Raises:
        MissingSecretError: Encrypted token without a configured secret
        DecryptionError: Corrupted ciphertext or wrong secret
    """
    stored = (stored or "").strip()
    if not stored:
        raise CredentialError("Account has no stored access token")

    if stored.startswith(ENCRYPTED_PREFIX):
        token = decrypt_token(stored, secret)
        return ResolvedCredential(token=token, family=classify_token(token), source="encrypted")

    if TOKEN_PATTERN.match(stored):
        return ResolvedCredential(token=stored, family=classify_token(stored), source="plain")

    legacy = _decode_legacy(stored)
    if legacy is not None:
        return ResolvedCredential(token=legacy, family=classify_token(legacy), source="legacy_base64")

    logger.warning("Stored token has an unrecognized format, using it as-is")
    return ResolvedCredential(token=stored, family=TokenFamily.UNKNOWN, source="unrecognized")
