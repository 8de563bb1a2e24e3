"""Tests for token storage and family detection."""

import base64

import pytest

from igsync.services.instagram.credentials import (
    ENCRYPTED_PREFIX,
    CredentialError,
    DecryptionError,
    MissingSecretError,
    TokenFamily,
    WrongTokenFamilyError,
    classify_token,
    decrypt_token,
    derive_key,
    encrypt_token,
    resolve_credential,
)

from tests.fakes import EAA_TOKEN, IG_TOKEN, TEST_SECRET

FIXED_NONCE = bytes(range(12))


class TestKeyDerivation:
    """Tests for derive_key."""

    def test_short_secret_is_zero_padded(self):
        """Test secrets shorter than 32 bytes are padded with ASCII zeros."""
        key = derive_key("abc")
        assert len(key) == 32
        assert key == b"abc" + b"0" * 29

    def test_long_secret_is_truncated(self):
        """Test secrets longer than 32 bytes are cut."""
        assert derive_key("x" * 40) == b"x" * 32


class TestEncryption:
    """Tests for encrypt_token/decrypt_token."""

    def test_round_trip_with_fixed_nonce(self):
        """Test a sealed token opens with the same secret."""
        sealed = encrypt_token(IG_TOKEN, TEST_SECRET, nonce=FIXED_NONCE)

        assert sealed.startswith(ENCRYPTED_PREFIX)
        blob = base64.b64decode(sealed[len(ENCRYPTED_PREFIX):])
        assert blob[:12] == FIXED_NONCE
        assert decrypt_token(sealed, TEST_SECRET) == IG_TOKEN

    def test_random_nonce_differs(self):
        """Test two encryptions of the same token differ."""
        assert encrypt_token(IG_TOKEN, TEST_SECRET) != encrypt_token(IG_TOKEN, TEST_SECRET)

    def test_corrupted_ciphertext(self):
        """Test a flipped ciphertext byte fails authentication."""
        sealed = encrypt_token(IG_TOKEN, TEST_SECRET, nonce=FIXED_NONCE)
        blob = bytearray(base64.b64decode(sealed[len(ENCRYPTED_PREFIX):]))
        blob[-1] ^= 0x01
        corrupted = ENCRYPTED_PREFIX + base64.b64encode(bytes(blob)).decode()

        with pytest.raises(DecryptionError):
            decrypt_token(corrupted, TEST_SECRET)

    def test_wrong_secret(self):
        """Test decryption with another secret fails."""
        sealed = encrypt_token(IG_TOKEN, TEST_SECRET)

        with pytest.raises(DecryptionError):
            decrypt_token(sealed, "another-secret")

    def test_invalid_base64(self):
        """Test garbage after the prefix is reported as a decryption failure."""
        with pytest.raises(DecryptionError):
            decrypt_token(ENCRYPTED_PREFIX + "not base64!!", TEST_SECRET)

    def test_truncated_blob(self):
        """Test a payload shorter than the nonce is rejected."""
        short = ENCRYPTED_PREFIX + base64.b64encode(b"123").decode()
        with pytest.raises(DecryptionError):
            decrypt_token(short, TEST_SECRET)

    def test_missing_secret(self):
        """Test encrypted tokens need a configured secret."""
        sealed = encrypt_token(IG_TOKEN, TEST_SECRET)

        with pytest.raises(MissingSecretError):
            decrypt_token(sealed, None)
        with pytest.raises(MissingSecretError):
            encrypt_token(IG_TOKEN, "")


class TestResolveCredential:
    """Tests for resolve_credential."""

    def test_encrypted(self):
        """Test encrypted tokens are decrypted and classified."""
        sealed = encrypt_token(EAA_TOKEN, TEST_SECRET)

        credential = resolve_credential(sealed, TEST_SECRET)

        assert credential.token == EAA_TOKEN
        assert credential.family is TokenFamily.FACEBOOK
        assert credential.source == "encrypted"

    def test_plain(self):
        """Test a raw token is used directly."""
        credential = resolve_credential(IG_TOKEN)

        assert credential.token == IG_TOKEN
        assert credential.family is TokenFamily.INSTAGRAM
        assert credential.source == "plain"

    def test_legacy_base64(self):
        """Test base64 of a recognizable token is decoded."""
        stored = base64.b64encode(EAA_TOKEN.encode()).decode()

        credential = resolve_credential(stored)

        assert credential.token == EAA_TOKEN
        assert credential.family is TokenFamily.FACEBOOK
        assert credential.source == "legacy_base64"

    def test_unrecognized_passes_through(self):
        """Test unknown formats are returned as-is."""
        credential = resolve_credential("opaque-token-value")

        assert credential.token == "opaque-token-value"
        assert credential.family is TokenFamily.UNKNOWN
        assert credential.recognized is False

    def test_empty_token(self):
        """Test an empty stored token is a credential error."""
        with pytest.raises(CredentialError):
            resolve_credential("   ")

    def test_token_hidden_from_repr(self):
        """Test the bearer token never appears in repr."""
        assert IG_TOKEN not in repr(resolve_credential(IG_TOKEN))


class TestTokenFamily:
    """Tests for family detection and enforcement."""

    def test_classify(self):
        """Test prefix based detection."""
        assert classify_token("IGQVJ...") is TokenFamily.INSTAGRAM
        assert classify_token("EAAB...") is TokenFamily.FACEBOOK
        assert classify_token("xyz") is TokenFamily.UNKNOWN

    def test_require_family(self):
        """Test the wrong issuer is rejected with both families attached."""
        credential = resolve_credential(EAA_TOKEN)

        credential.require_family(None)
        credential.require_family(TokenFamily.FACEBOOK)
        with pytest.raises(WrongTokenFamilyError) as exc_info:
            credential.require_family(TokenFamily.INSTAGRAM)

        assert exc_info.value.expected is TokenFamily.INSTAGRAM
        assert exc_info.value.actual is TokenFamily.FACEBOOK
