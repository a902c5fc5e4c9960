"""Encrypt and decrypt workflows for the dashboard data snapshot.

Lifecycle of the data file between updates:

    stats.json.enc --decrypt_data--> stats.json --(scraper)--> stats.json
    stats.json --encrypt_data/publish--> stats.json.enc (plaintext removed)

Each workflow reads the salt through a SaltStore passed in by the caller
(defaulting to the one named in the config), so tests can substitute a
fake store.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Callable

from .config import ENV_PASSWORD, DashvaultConfig, SaltStore
from .crypto import (
    DashvaultError,
    DecryptionFailedError,
    MalformedEncodingError,
    decrypt,
    derive_key,
    encrypt,
)
from .patch import patch_host_document, postprocess_gate_output
from .staticrypt import run_staticrypt

logger = logging.getLogger(__name__)

GateRunner = Callable[[DashvaultConfig, str, Path], Path]


class MissingCredentialError(DashvaultError):
    """No password was supplied."""

    pass


class MissingInputError(DashvaultError):
    """The file to encrypt does not exist."""

    pass


def _require_password(password: str | None) -> str:
    if not password:
        raise MissingCredentialError(
            f"{ENV_PASSWORD} environment variable is required "
            f"(add {ENV_PASSWORD}=your-password to your .env file)"
        )
    return password


def _read_text(
    path: Path, invalid_error: type[DashvaultError] = DashvaultError
) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise invalid_error(f"{path} is not valid UTF-8: {e}") from e
    except OSError as e:
        raise DashvaultError(f"Cannot read file {path}: {e}") from e


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise DashvaultError(f"Cannot write file {path}: {e}") from e


def _derive(password: str, salt: str) -> str:
    logger.info("Hashing password with PBKDF2 (600k iterations)...")
    return derive_key(password, salt)


def _encrypt_to_artifact(
    config: DashvaultConfig,
    password: str | None,
    salt_store: SaltStore | None,
) -> str:
    """Encrypt the data file to the artifact path. Returns the salt used."""
    password = _require_password(password)

    data_path = config.data_path
    if not data_path.is_file():
        raise MissingInputError(f"{data_path} not found. Run the scraper first.")

    store = salt_store if salt_store is not None else config.salt_store()
    salt = store.load_or_create()
    key = _derive(password, salt)

    logger.info("Encrypting %s", data_path.name)
    artifact = encrypt(_read_text(data_path), key)
    _write_text(config.encrypted_path, artifact)
    logger.info("Created %s", config.encrypted_path)
    return salt


def _remove_plaintext(config: DashvaultConfig) -> None:
    data_path = config.data_path
    if data_path.exists():
        try:
            data_path.unlink()
        except OSError as e:
            raise DashvaultError(f"Cannot remove {data_path}: {e}") from e
        logger.info(
            "Cleaned up %s (%s is source of truth)",
            data_path.name,
            config.encrypted_path.name,
        )


def encrypt_data(
    config: DashvaultConfig,
    password: str | None = None,
    salt_store: SaltStore | None = None,
) -> Path:
    """Encrypt the data file and delete the plaintext.

    The salt is created on first use and reused afterwards. The host
    document is left untouched.

    Args:
        config: Loaded configuration.
        password: Encryption password. Defaults to config.password.
        salt_store: Salt source. Defaults to config.salt_store().

    Returns:
        Path to the encrypted artifact.

    Raises:
        MissingCredentialError: If no password is available.
        MissingInputError: If the data file does not exist.
        DashvaultError: If any file operation fails.
    """
    if password is None:
        password = config.password
    _encrypt_to_artifact(config, password, salt_store)
    _remove_plaintext(config)
    return config.encrypted_path


def _prepare_host_document(config: DashvaultConfig) -> str:
    """Start from the pristine host document, keeping a backup of it."""
    index_path = config.index_path
    backup_path = config.backup_path

    try:
        if backup_path.is_file():
            shutil.copyfile(backup_path, index_path)
            logger.info("Restored %s from backup", index_path.name)
        elif index_path.is_file():
            shutil.copyfile(index_path, backup_path)
            logger.info("Created %s", backup_path.name)
        else:
            raise MissingInputError(f"{index_path} not found")
    except OSError as e:
        raise DashvaultError(f"Cannot back up {index_path}: {e}") from e

    return _read_text(index_path)


def _rollback_host_document(config: DashvaultConfig) -> None:
    output_dir = config.resolve(config.publish.output_dir)
    if output_dir.is_dir():
        shutil.rmtree(output_dir)
    if config.backup_path.is_file():
        shutil.copyfile(config.backup_path, config.index_path)
        logger.info("Restored %s after failed publish", config.index_path.name)


def publish(
    config: DashvaultConfig,
    password: str | None = None,
    salt_store: SaltStore | None = None,
    runner: GateRunner | None = None,
) -> Path:
    """Encrypt the data file and publish a password-gated host document.

    Steps after encryption:
    1. Restore index.html from its backup (or create the backup).
    2. Embed the salt and decrypt routine; replace loadData().
    3. Run StatiCrypt on the patched document.
    4. Brand the generated page and force credential persistence.
    5. Replace index.html with the result and delete the plaintext.

    If any step after encryption fails, index.html is restored from the
    backup and the plaintext data file is kept so the run can be
    repeated.

    Args:
        config: Loaded configuration.
        password: Encryption password. Defaults to config.password.
        salt_store: Salt source. Defaults to config.salt_store().
        runner: Callable producing the gated page; defaults to StatiCrypt.

    Returns:
        Path to the published host document.

    Raises:
        MissingCredentialError: If no password is available.
        MissingInputError: If the data file or host document is missing.
        ExternalToolFailedError: If StatiCrypt fails.
        PatchPointNotFoundError: If a patch marker is missing.
    """
    if runner is None:
        runner = run_staticrypt
    if password is None:
        password = config.password
    password = _require_password(password)
    if not config.index_path.is_file() and not config.backup_path.is_file():
        raise MissingInputError(f"{config.index_path} not found")

    salt = _encrypt_to_artifact(config, password, salt_store)
    index_path = config.index_path
    publish_config = config.publish

    try:
        html = _prepare_host_document(config)
        html = patch_host_document(html, salt, publish_config.data_url)
        _write_text(index_path, html)
        logger.info(
            "Modified %s with crypto engine and encrypted data loading",
            index_path.name,
        )

        logger.info("Running StatiCrypt to encrypt %s", index_path.name)
        generated_path = runner(config, password, index_path)

        gated = postprocess_gate_output(
            _read_text(generated_path),
            logo_src=publish_config.logo_src,
            logo_alt=publish_config.logo_alt,
        )
        _write_text(index_path, gated)
        shutil.rmtree(config.resolve(publish_config.output_dir), ignore_errors=True)
        logger.info("Added branding and modified password storage")
    except DashvaultError:
        _rollback_host_document(config)
        raise

    _remove_plaintext(config)
    return index_path


def _decrypt_artifact(
    config: DashvaultConfig,
    password: str,
    salt_store: SaltStore | None,
) -> str:
    """Decrypt the artifact and check the result is JSON."""
    store = salt_store if salt_store is not None else config.salt_store()
    salt = store.load()
    artifact = _read_text(config.encrypted_path, MalformedEncodingError)
    key = _derive(password, salt)

    logger.info("Decrypting %s", config.encrypted_path.name)
    plaintext = decrypt(artifact, key)

    # No authentication tag: parsing is the only integrity check.
    # JSON.parse in the browser rejects NaN and Infinity.
    try:
        json.loads(plaintext, parse_constant=_reject_constant)
    except ValueError as e:
        raise DecryptionFailedError(
            f"Decryption failed: result is not valid JSON ({e}). "
            f"Check that {ENV_PASSWORD} is correct."
        ) from e
    return plaintext


def decrypt_data(
    config: DashvaultConfig,
    password: str | None = None,
    salt_store: SaltStore | None = None,
) -> Path | None:
    """Decrypt the artifact back to the data file for the next update.

    Args:
        config: Loaded configuration.
        password: Decryption password. Defaults to config.password.
        salt_store: Salt source. Defaults to config.salt_store().

    Returns:
        Path to the written data file, or None if there was no artifact
        to decrypt (first run).

    Raises:
        MissingCredentialError: If no password is available.
        ConfigMissingError: If the salt file does not exist.
        DecryptionFailedError: If the password is wrong or the artifact
            is corrupted.
    """
    if password is None:
        password = config.password
    password = _require_password(password)

    if not config.encrypted_path.is_file():
        logger.info("No encrypted data file found (%s)", config.paths.encrypted)
        return None

    plaintext = _decrypt_artifact(config, password, salt_store)
    _write_text(config.data_path, plaintext)
    logger.info("Decrypted to %s", config.data_path)
    return config.data_path


def check_password(
    config: DashvaultConfig,
    password: str | None = None,
    salt_store: SaltStore | None = None,
) -> bool:
    """Check whether password decrypts the artifact, writing nothing.

    Returns:
        True if the artifact decrypts to valid JSON, False otherwise.

    Raises:
        MissingCredentialError: If no password is available.
        MissingInputError: If there is no artifact to check against.
        ConfigMissingError: If the salt file does not exist.
        MalformedEncodingError: If the artifact is corrupted, whatever
            the password.
    """
    if password is None:
        password = config.password
    password = _require_password(password)

    if not config.encrypted_path.is_file():
        raise MissingInputError(f"{config.encrypted_path} not found")

    try:
        _decrypt_artifact(config, password, salt_store)
    except MalformedEncodingError:
        raise
    except DecryptionFailedError:
        return False
    return True
