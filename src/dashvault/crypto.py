"""Core cryptographic functions for dashvault.

Provides AES-256-CBC encryption with a chained PBKDF2 key derivation,
byte-compatible with the StatiCrypt password-gate tool so that data
encrypted here can be decrypted by its WebCrypto runtime in the browser.

Artifact format: hex(iv) + hex(ciphertext). The first 32 hex characters
are the IV, the rest is ciphertext. There is no authentication tag, so a
corrupted artifact may decrypt to garbage; callers must validate the
recovered plaintext themselves.
"""

import os
import re
from typing import Any

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

# Cryptographic parameters (must match StatiCrypt's browser-side implementation)
ALGORITHM = "aes-256-cbc"
SALT_LENGTH = 16  # 128 bits
IV_LENGTH = 16  # 128 bits, one AES block
KEY_LENGTH = 32  # 256 bits
BLOCK_BITS = 128

# (iterations, hash) per pass. Each pass hashes the hex output of the previous one.
HASH_ROUNDS = (
    (1000, hashes.SHA1),
    (14000, hashes.SHA256),
    (585000, hashes.SHA256),
)

_HEX_RE = re.compile(r"[0-9a-fA-F]*")


class DashvaultError(Exception):
    """Base exception for dashvault errors."""

    pass


class DecryptionFailedError(DashvaultError):
    """Wrong password or corrupted artifact."""

    pass


class MalformedEncodingError(DecryptionFailedError):
    """Hex text that cannot be decoded."""

    pass


def to_hex(data: bytes) -> str:
    """Encode bytes as lowercase hex, two digits per byte."""
    return data.hex()


def from_hex(text: str) -> bytes:
    """Decode hex text to bytes.

    Stricter than bytes.fromhex(): whitespace is rejected.

    Raises:
        MalformedEncodingError: On odd length or non-hex characters.
    """
    if len(text) % 2 != 0:
        raise MalformedEncodingError(f"Invalid hex string: odd length ({len(text)})")
    if not _HEX_RE.fullmatch(text):
        raise MalformedEncodingError("Invalid hex string: non-hex characters")
    return bytes.fromhex(text)


def _pbkdf2(secret: str, salt: str, iterations: int, algorithm) -> str:
    """One PBKDF2 pass over UTF-8 strings, returning the key as hex."""
    kdf = PBKDF2HMAC(
        algorithm=algorithm(),
        length=KEY_LENGTH,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return to_hex(kdf.derive(secret.encode("utf-8")))


def derive_key(password: str, salt: str) -> str:
    """Derive the 256-bit StatiCrypt key from password and hex salt.

    The salt is used as its hex text, not decoded to bytes, and each
    pass takes the previous pass's hex output as its password. Changing
    either detail yields a different key without any error.

    Args:
        password: The operator password (may be empty).
        salt: Salt as persisted (32 hex characters).

    Returns:
        Hex-encoded derived key (64 characters).
    """
    hashed = password
    for iterations, algorithm in HASH_ROUNDS:
        hashed = _pbkdf2(hashed, salt, iterations, algorithm)
    return hashed


def _key_bytes(key: str) -> bytes:
    raw = from_hex(key)
    if len(raw) != KEY_LENGTH:
        raise MalformedEncodingError(
            f"Key must be {KEY_LENGTH} bytes ({KEY_LENGTH * 2} hex chars), "
            f"got {len(raw)} bytes"
        )
    return raw


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt plaintext with a derived key.

    A fresh random IV is generated for every call, so identical inputs
    never produce identical artifacts.

    Args:
        plaintext: The text to encrypt (can be empty).
        key: Hex-encoded key from derive_key().

    Returns:
        hex(iv) + hex(ciphertext).
    """
    iv = os.urandom(IV_LENGTH)

    padder = padding.PKCS7(BLOCK_BITS).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(_key_bytes(key)), modes.CBC(iv)).encryptor()
    ct = encryptor.update(padded) + encryptor.finalize()

    return to_hex(iv) + to_hex(ct)


def _split_artifact(artifact: str) -> tuple[bytes, bytes]:
    artifact = artifact.strip()
    iv_hex_length = IV_LENGTH * 2
    if len(artifact) < iv_hex_length:
        raise MalformedEncodingError(
            f"Artifact too short: {len(artifact)} hex chars, "
            f"need at least {iv_hex_length} for the IV"
        )
    iv = from_hex(artifact[:iv_hex_length])
    ct = from_hex(artifact[iv_hex_length:])
    return iv, ct


def decrypt(artifact: str, key: str) -> str:
    """Decrypt an artifact produced by encrypt() or by StatiCrypt.

    Args:
        artifact: hex(iv) + hex(ciphertext). Surrounding whitespace is ignored.
        key: Hex-encoded key from derive_key().

    Returns:
        The recovered plaintext.

    Raises:
        MalformedEncodingError: If the artifact is not valid hex or is
            shorter than one IV.
        DecryptionFailedError: If the key is wrong or the ciphertext is
            corrupted in a way the padding check detects.
    """
    iv, ct = _split_artifact(artifact)
    raw_key = _key_bytes(key)

    if not ct:
        raise DecryptionFailedError("Decryption failed: empty ciphertext")

    try:
        decryptor = Cipher(algorithms.AES(raw_key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ct) + decryptor.finalize()
        unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
        data = unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise DecryptionFailedError(
            f"Decryption failed: wrong password or corrupted data ({e})"
        ) from e

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionFailedError(
            "Decryption failed: wrong password or corrupted data (invalid UTF-8)"
        ) from e


def generate_salt() -> str:
    """Generate a random 16-byte salt, hex-encoded for config storage."""
    return to_hex(os.urandom(SALT_LENGTH))


def validate_salt(salt: str) -> str:
    """Check that a salt is 32 hex characters.

    Raises:
        MalformedEncodingError: If the salt is not valid hex or wrong length.
    """
    raw = from_hex(salt)
    if len(raw) != SALT_LENGTH:
        raise MalformedEncodingError(
            f"Salt must be {SALT_LENGTH} bytes ({SALT_LENGTH * 2} hex chars), "
            f"got {len(raw)} bytes"
        )
    return salt


def inspect_artifact(artifact: str) -> dict[str, Any]:
    """Inspect an artifact without decrypting.

    Args:
        artifact: hex(iv) + hex(ciphertext).

    Returns:
        Dict with: algorithm, iv_hex, ciphertext_length, block_count,
        block_aligned.

    Raises:
        MalformedEncodingError: If the artifact cannot be parsed.
    """
    iv, ct = _split_artifact(artifact)
    block_size = BLOCK_BITS // 8
    return {
        "algorithm": ALGORITHM,
        "iv_hex": to_hex(iv),
        "ciphertext_length": len(ct),
        "block_count": len(ct) // block_size,
        "block_aligned": len(ct) > 0 and len(ct) % block_size == 0,
    }
