"""Command-line interface for dashvault."""

import logging
from pathlib import Path

import click
import yaml
from dotenv import find_dotenv, load_dotenv

from . import __version__
from .config import (
    CONFIG_FILENAME,
    ENV_PASSWORD,
    config_to_dict,
    create_default_config,
    find_config_file,
    load_config,
)
from .crypto import DashvaultError, inspect_artifact
from .workflow import check_password, decrypt_data, encrypt_data, publish


def _config_options(func):
    """Options shared by commands that operate on a project."""
    func = click.option(
        "--root",
        "root",
        type=click.Path(file_okay=False),
        help="Project root (default: directory of the config file, or cwd)",
    )(func)
    func = click.option(
        "-c",
        "--config",
        "config_path",
        type=click.Path(exists=True),
        help="Config file path",
    )(func)
    func = click.option(
        "-p", "--password", help=f"Password (default: ${ENV_PASSWORD} or .env)"
    )(func)
    return func


def _load(config_path: str | None, root: str | None, password: str | None):
    try:
        return load_config(
            config_path=Path(config_path) if config_path else None,
            start_path=Path(root) if root else None,
            password_override=password,
            root_override=Path(root) if root else None,
        )
    except DashvaultError as e:
        raise click.ClickException(str(e))


@click.group()
@click.version_option(version=__version__, prog_name="dashvault")
@click.option("-v", "--verbose", is_flag=True, help="Show progress messages")
def main(verbose):
    """Encrypt dashboard data for static hosting behind StatiCrypt.

    The data snapshot is stored as data/stats.json.enc, encrypted with a
    key derived exactly like StatiCrypt's, so the gated dashboard can
    decrypt it in the browser.

    \b
    Daily update:
      dashvault decrypt                   # stats.json.enc -> stats.json
      (run the scraper)
      dashvault encrypt                   # stats.json -> stats.json.enc
    \b
    Full publish (re-gates index.html):
      dashvault encrypt --publish
    """
    load_dotenv(find_dotenv(usecwd=True))
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(message)s")


@main.command()
@_config_options
@click.option(
    "--publish",
    "full_publish",
    is_flag=True,
    help="Also patch index.html and gate it with StatiCrypt",
)
def encrypt(password, config_path, root, full_publish):
    """Encrypt the data file and remove the plaintext.

    Creates .staticrypt.json with a random salt on first use. With
    --publish, also embeds the decrypt routine in index.html, gates it
    with StatiCrypt and keeps the pristine page as index.html.bak.

    \b
    Examples:
      dashvault encrypt
      dashvault encrypt --publish
      dashvault encrypt --root site/ -p "$SECRET"
    """
    config = _load(config_path, root, password)

    try:
        if full_publish:
            index_path = publish(config)
        else:
            encrypted_path = encrypt_data(config)
    except DashvaultError as e:
        raise click.ClickException(str(e))

    if full_publish:
        click.echo("Encryption complete!")
        click.echo(f"  - {_relative_path(index_path)} is now encrypted (password prompt)")
        click.echo(
            f"  - {_relative_path(config.encrypted_path)} contains encrypted data "
            "(source of truth)"
        )
        click.echo(
            f"  - Original page is backed up to {_relative_path(config.backup_path)}"
        )
    else:
        click.echo(f"Data encrypted to {_relative_path(encrypted_path)}")


@main.command()
@_config_options
def decrypt(password, config_path, root):
    """Decrypt the data file so the scraper can update it.

    Exits successfully without changes when no encrypted file exists yet.

    \b
    Examples:
      dashvault decrypt
      dashvault decrypt -c site/.dashvault.yaml
    """
    config = _load(config_path, root, password)

    try:
        data_path = decrypt_data(config)
    except DashvaultError as e:
        raise click.ClickException(str(e))

    if data_path is None:
        click.echo(
            f"No encrypted data file found ({config.paths.encrypted}). "
            "This is normal for initial setup."
        )
        return
    click.echo(f"Decrypted to {_relative_path(data_path)}")


@main.command()
@_config_options
def check(password, config_path, root):
    """Verify a password against the encrypted data file.

    Decrypts in memory and checks the result is JSON; nothing is written.

    Exit code 0 = password correct, 1 = incorrect.
    """
    config = _load(config_path, root, password)

    try:
        result = check_password(config)
    except DashvaultError as e:
        raise click.ClickException(str(e))

    if result:
        click.echo("Password correct")
        raise SystemExit(0)
    else:
        click.echo("Password incorrect")
        raise SystemExit(1)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False), required=False)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True),
    help="Config file path",
)
def info(path, config_path):
    """Show details of an encrypted data file (no password needed).

    Defaults to the configured encrypted data file.
    """
    if path is None:
        config = _load(config_path, None, None)
        file_path = config.encrypted_path
    else:
        file_path = Path(path)

    try:
        artifact = file_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise click.ClickException(f"{file_path} is not valid UTF-8: {e}")
    except OSError as e:
        raise click.ClickException(f"Cannot read {file_path}: {e}")

    try:
        details = inspect_artifact(artifact)
    except DashvaultError as e:
        raise click.ClickException(str(e))

    click.echo(f"File: {_relative_path(file_path)}")
    click.echo(f"  Algorithm: {details['algorithm']}")
    click.echo(f"  IV: {details['iv_hex']}")
    click.echo(
        f"  Ciphertext: {details['ciphertext_length']} bytes "
        f"({details['block_count']} blocks)"
    )
    if not details["block_aligned"]:
        click.echo("  Warning: ciphertext is not block-aligned (corrupted?)")


@main.group()
def config():
    """Manage dashvault configuration."""
    pass


@config.command("init")
@click.option(
    "-d",
    "--directory",
    type=click.Path(),
    default=".",
    help="Directory to create config in",
)
def config_init(directory):
    """Create a new .dashvault.yaml configuration file.

    The salt is not part of this file; it is created in .staticrypt.json
    on first encryption.
    """
    try:
        config_path = create_default_config(Path(directory))
        click.echo(f"Created: {config_path}")
        click.echo("\nNext steps:")
        click.echo(f"  1. Add {ENV_PASSWORD}=your-password to .env")
        click.echo("  2. Add .env to .gitignore")
        click.echo("  3. Run: dashvault encrypt --publish")
    except DashvaultError as e:
        raise click.ClickException(str(e))


@config.command("show")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True),
    help="Config file path",
)
def config_show(config_path):
    """Display current configuration.

    Shows merged configuration from file, environment, and defaults.
    Password is masked for security.
    """
    cfg = _load(config_path, None, None)
    data = config_to_dict(cfg)
    click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))


@config.command("where")
@click.option(
    "-d",
    "--directory",
    type=click.Path(exists=True),
    help="Directory to search from",
)
def config_where(directory):
    """Show which config file would be used.

    Searches up the directory tree for .dashvault.yaml.
    """
    start = Path(directory) if directory else Path.cwd()
    config_path = find_config_file(start)

    if config_path:
        click.echo(f"Config file: {config_path}")
    else:
        click.echo(f"No {CONFIG_FILENAME} found (searched from {start})")


def _relative_path(path: Path) -> str:
    """Get a relative path for display."""
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main()
