"""Tests for dashvault.crypto module."""

import hashlib
import json
import os

import pytest

from dashvault.crypto import (
    HASH_ROUNDS,
    IV_LENGTH,
    SALT_LENGTH,
    DashvaultError,
    DecryptionFailedError,
    MalformedEncodingError,
    _pbkdf2,
    decrypt,
    derive_key,
    encrypt,
    from_hex,
    generate_salt,
    inspect_artifact,
    to_hex,
    validate_salt,
)

# Known answers produced with WebCrypto using StatiCrypt's hashing scheme
SALT = "00112233445566778899aabbccddeeff"
PASSWORD = "correct-horse"
PASS1 = "e9b502a6132e927e8ad8e7694f65008e00fc187f8bfef2d25b9b50ce835f49f2"
PASS2 = "650f41177a63ca53e8b52691408ce7a13a42d6fbf9dd7224065c1acc87cc9780"
KEY = "f9496d377214dde911c1ba3ae11a0c575750e2efc7e97c7fd38701ee62404c76"
EMPTY_PASSWORD_KEY = "ea30de525b977c5a695eaffbbadcf7d609d29d70d245af2539b393853af8502a"
# '{"a":1}' encrypted under KEY with IV 000102...0f
ARTIFACT = "000102030405060708090a0b0c0d0e0f0dcd539c93d386e884f4d3f5e0219384"

OTHER_KEY = "11" * 32


class TestHexCodec:
    """Tests for to_hex/from_hex."""

    def test_to_hex_lowercase_zero_padded(self):
        """Test each byte becomes two lowercase digits."""
        assert to_hex(bytes([0, 1, 15, 16, 171, 255])) == "00010f10abff"

    def test_to_hex_empty(self):
        assert to_hex(b"") == ""

    def test_from_hex(self):
        assert from_hex("00010f10abff") == bytes([0, 1, 15, 16, 171, 255])

    def test_from_hex_accepts_uppercase(self):
        assert from_hex("ABFF") == b"\xab\xff"

    def test_odd_length_fails(self):
        with pytest.raises(MalformedEncodingError, match="odd length"):
            from_hex("abc")

    def test_non_hex_fails(self):
        with pytest.raises(MalformedEncodingError, match="non-hex"):
            from_hex("zz")

    def test_whitespace_rejected(self):
        """Test whitespace is not tolerated, unlike bytes.fromhex()."""
        with pytest.raises(MalformedEncodingError):
            from_hex("ab cd ")
        with pytest.raises(MalformedEncodingError):
            from_hex("abcdef0\n")


class TestDeriveKey:
    """Tests for the chained PBKDF2 derivation."""

    def test_known_answer(self):
        """Test derivation matches StatiCrypt's hashing bit for bit."""
        assert derive_key(PASSWORD, SALT) == KEY

    def test_intermediate_passes(self):
        """Test each pass feeds its hex output to the next as a string."""
        (it1, alg1), (it2, alg2), (it3, alg3) = HASH_ROUNDS
        assert _pbkdf2(PASSWORD, SALT, it1, alg1) == PASS1
        assert _pbkdf2(PASS1, SALT, it2, alg2) == PASS2
        assert _pbkdf2(PASS2, SALT, it3, alg3) == KEY

    def test_iteration_schedule(self):
        """Test the 1000 + 14000 + 585000 schedule."""
        assert [it for it, _ in HASH_ROUNDS] == [1000, 14000, 585000]
        assert sum(it for it, _ in HASH_ROUNDS) == 600000

    def test_matches_hashlib_chain(self):
        """Test against an independent PBKDF2 implementation."""
        salt = SALT.encode("utf-8")
        hashed = PASSWORD
        for iterations, name in ((1000, "sha1"), (14000, "sha256"), (585000, "sha256")):
            hashed = hashlib.pbkdf2_hmac(
                name, hashed.encode("utf-8"), salt, iterations, dklen=32
            ).hex()
        assert hashed == KEY

    def test_empty_password(self):
        """Test an empty password yields a well-defined key."""
        assert derive_key("", SALT) == EMPTY_PASSWORD_KEY

    def test_deterministic(self):
        assert derive_key(PASSWORD, SALT) == derive_key(PASSWORD, SALT)

    def test_password_changes_key(self):
        assert derive_key("correct-horsf", SALT) != KEY

    def test_salt_changes_key(self):
        assert derive_key(PASSWORD, "ffeeddccbbaa99887766554433221100") != KEY

    def test_salt_used_as_text(self):
        """Test the salt's hex text, not its decoded bytes, is the PBKDF2 salt."""
        decoded = hashlib.pbkdf2_hmac(
            "sha1", PASSWORD.encode("utf-8"), bytes.fromhex(SALT), 1000, dklen=32
        ).hex()
        assert decoded != PASS1

    def test_key_format(self):
        key = derive_key(PASSWORD, SALT)
        assert len(key) == 64
        assert key == key.lower()


class TestEncryptDecrypt:
    """Tests for encrypt/decrypt functions."""

    def test_decrypts_reference_artifact(self):
        """Test decrypting an artifact produced by the WebCrypto runtime."""
        assert decrypt(ARTIFACT, KEY) == '{"a":1}'

    def test_encrypt_matches_reference_with_fixed_iv(self, monkeypatch):
        """Test ciphertext layout equals the WebCrypto output for the same IV."""
        monkeypatch.setattr(os, "urandom", lambda n: bytes(range(n)))
        assert encrypt('{"a":1}', KEY) == ARTIFACT

    def test_basic_roundtrip(self):
        plaintext = '{"years": {"2024": {"jobs": 12}}}'
        assert decrypt(encrypt(plaintext, KEY), KEY) == plaintext

    def test_empty_string(self):
        assert decrypt(encrypt("", KEY), KEY) == ""

    def test_unicode_content(self):
        plaintext = '{"name": "Zoë", "note": "日本語 🔒"}'
        assert decrypt(encrypt(plaintext, KEY), KEY) == plaintext

    def test_large_content(self):
        plaintext = "x" * 100000
        assert decrypt(encrypt(plaintext, KEY), KEY) == plaintext

    def test_different_artifact_each_time(self):
        """Test identical inputs encrypt differently but both decrypt."""
        plaintext = '{"a":1}'
        first = encrypt(plaintext, KEY)
        second = encrypt(plaintext, KEY)

        assert first != second
        assert first[: IV_LENGTH * 2] != second[: IV_LENGTH * 2]
        assert decrypt(first, KEY) == plaintext
        assert decrypt(second, KEY) == plaintext

    def test_artifact_format(self):
        """Test the artifact is hex(iv) + hex(ciphertext) with padding."""
        artifact = encrypt("0123456789abcdef", KEY)
        # 16 bytes of IV + 16 bytes of data + one full padding block
        assert len(artifact) == (16 + 32) * 2
        assert artifact == artifact.lower()
        from_hex(artifact)

    def test_trailing_newline_ignored(self):
        assert decrypt(ARTIFACT + "\n", KEY) == '{"a":1}'

    def test_wrong_key_detected(self):
        """Test a wrong key fails at the cipher or at the JSON check."""
        try:
            recovered = decrypt(ARTIFACT, OTHER_KEY)
        except DecryptionFailedError:
            return
        with pytest.raises(ValueError):
            json.loads(recovered)

    def test_wrong_password_roundtrip(self):
        """Test a key derived from another password cannot recover the data."""
        artifact = encrypt('{"a":1}', KEY)
        try:
            recovered = decrypt(artifact, EMPTY_PASSWORD_KEY)
        except DecryptionFailedError:
            return
        assert recovered != '{"a":1}'

    def test_invalid_hex_fails(self):
        with pytest.raises(MalformedEncodingError):
            decrypt("not-valid-hex!!", KEY)

    def test_invalid_hex_after_iv_fails(self):
        with pytest.raises(MalformedEncodingError):
            decrypt(ARTIFACT[:32] + "zz" * 16, KEY)

    def test_shorter_than_iv_fails(self):
        with pytest.raises(MalformedEncodingError, match="too short"):
            decrypt("0123", KEY)

    def test_malformed_is_decryption_failure(self):
        """Test malformed input is also catchable as a decryption failure."""
        with pytest.raises(DecryptionFailedError):
            decrypt("0123", KEY)

    def test_iv_only_fails(self):
        with pytest.raises(DecryptionFailedError, match="empty ciphertext"):
            decrypt(ARTIFACT[:32], KEY)

    def test_truncated_block_fails(self):
        with pytest.raises(DecryptionFailedError):
            decrypt(ARTIFACT[:-2], KEY)

    def test_bad_key_length_fails(self):
        with pytest.raises(MalformedEncodingError, match="Key must be"):
            encrypt("test", "abcd")

    def test_errors_share_base_class(self):
        assert issubclass(DecryptionFailedError, DashvaultError)
        assert issubclass(MalformedEncodingError, DashvaultError)


class TestSaltHelpers:
    """Tests for salt generation and validation."""

    def test_generate_salt_format(self):
        salt = generate_salt()
        assert len(salt) == SALT_LENGTH * 2
        assert from_hex(salt)

    def test_generate_salt_random(self):
        assert generate_salt() != generate_salt()

    def test_validate_salt(self):
        assert validate_salt(SALT) == SALT

    def test_validate_salt_wrong_length(self):
        with pytest.raises(MalformedEncodingError, match="Salt must be"):
            validate_salt("abcd")


class TestInspectArtifact:
    """Tests for inspect_artifact."""

    def test_reports_layout(self):
        details = inspect_artifact(ARTIFACT)
        assert details["algorithm"] == "aes-256-cbc"
        assert details["iv_hex"] == "000102030405060708090a0b0c0d0e0f"
        assert details["ciphertext_length"] == 16
        assert details["block_count"] == 1
        assert details["block_aligned"] is True

    def test_unaligned(self):
        details = inspect_artifact(ARTIFACT[:-2])
        assert details["block_aligned"] is False

    def test_malformed(self):
        with pytest.raises(MalformedEncodingError):
            inspect_artifact("xyz")
