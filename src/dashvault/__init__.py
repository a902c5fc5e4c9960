"""dashvault - Keep a static dashboard's data encrypted for StatiCrypt gates."""

__version__ = "1.0.0"

from .crypto import (
    DashvaultError,
    DecryptionFailedError,
    MalformedEncodingError,
    decrypt,
    derive_key,
    encrypt,
)
from .workflow import decrypt_data, encrypt_data, publish

__all__ = [
    "encrypt",
    "decrypt",
    "derive_key",
    "DashvaultError",
    "DecryptionFailedError",
    "MalformedEncodingError",
    "encrypt_data",
    "decrypt_data",
    "publish",
    "__version__",
]
