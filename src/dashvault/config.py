"""Configuration management for dashvault.

Two files are involved:

- ``.staticrypt.json`` holds the deployment salt. StatiCrypt reads the same
  file, so the gate page and the encrypted data share one salt. It is
  created once and never rewritten.
- ``.dashvault.yaml`` (optional) holds paths and publish settings. It is
  found by directory traversal and merged with environment variables
  and defaults.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .crypto import DashvaultError, generate_salt, validate_salt

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".dashvault.yaml"
SALT_FILENAME = ".staticrypt.json"
ENV_PASSWORD = "STATICRYPT_PASSWORD"
ENV_ROOT = "DASHVAULT_ROOT"


class ConfigMissingError(DashvaultError):
    """No salt config exists where one is required."""

    pass


class ConfigInvalidError(DashvaultError):
    """A config file exists but cannot be used."""

    pass


class SaltStore:
    """Persisted salt for one deployment.

    The salt must never change once created: every artifact encrypted
    for the deployment depends on it.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> str:
        """Return the persisted salt.

        Raises:
            ConfigMissingError: If the salt file does not exist.
            ConfigInvalidError: If it exists but holds no usable salt.
        """
        if not self.exists():
            raise ConfigMissingError(
                f"{self.path.name} not found at {self.path}. "
                "Cannot decrypt without the original salt."
            )
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigInvalidError(f"Invalid JSON in {self.path}: {e}") from e
        except OSError as e:
            raise ConfigInvalidError(f"Cannot read {self.path}: {e}") from e

        if not isinstance(data, dict) or "salt" not in data:
            raise ConfigInvalidError(f"No 'salt' field in {self.path}")
        try:
            return validate_salt(str(data["salt"]))
        except DashvaultError as e:
            raise ConfigInvalidError(f"Invalid salt in {self.path}: {e}") from e

    def load_or_create(self) -> str:
        """Return the persisted salt, creating it on first use."""
        if self.exists():
            salt = self.load()
            logger.info("Loaded salt from %s", self.path.name)
            return salt

        salt = generate_salt()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.path.write_text(json.dumps({"salt": salt}, indent=2), encoding="utf-8")
        except OSError as e:
            raise ConfigInvalidError(f"Cannot write {self.path}: {e}") from e
        logger.info("Generated new salt and saved to %s", self.path.name)
        return salt


@dataclass
class PathsConfig:
    """Artifact locations, relative to the project root."""

    data: str = "data/stats.json"
    encrypted: str = "data/stats.json.enc"
    salt_file: str = SALT_FILENAME
    index: str = "index.html"
    backup: str = "index.html.bak"


@dataclass
class TemplateConfig:
    """Password prompt customization passed to StatiCrypt."""

    title: str = ""
    instructions: str = "Enter your password to access the dashboard."
    color_primary: str = "#02245f"
    color_secondary: str = "#02245f"


@dataclass
class PublishConfig:
    """Settings for the full publish workflow."""

    command: str = "npx staticrypt"
    output_dir: str = "encrypted"
    remember_days: int = 30
    short: bool = True
    logo_src: str | None = "./images/lpfirst.webp"
    logo_alt: str = "LP First Capital"
    data_url: str = "./data/stats.json.enc"


@dataclass
class DashvaultConfig:
    """Complete dashvault configuration."""

    root: Path = field(default_factory=Path.cwd)
    password: str | None = None
    paths: PathsConfig = field(default_factory=PathsConfig)
    template: TemplateConfig = field(default_factory=TemplateConfig)
    publish: PublishConfig = field(default_factory=PublishConfig)
    config_path: Path | None = None  # Path where config was loaded from

    def resolve(self, relative: str) -> Path:
        """Resolve a configured path against the project root."""
        path = Path(relative)
        if path.is_absolute():
            return path
        return self.root / path

    @property
    def data_path(self) -> Path:
        return self.resolve(self.paths.data)

    @property
    def encrypted_path(self) -> Path:
        return self.resolve(self.paths.encrypted)

    @property
    def index_path(self) -> Path:
        return self.resolve(self.paths.index)

    @property
    def backup_path(self) -> Path:
        return self.resolve(self.paths.backup)

    def salt_store(self) -> SaltStore:
        return SaltStore(self.resolve(self.paths.salt_file))

    def validate(self) -> None:
        """Validate configuration.

        Raises:
            ConfigInvalidError: If configuration is invalid.
        """
        if self.publish.remember_days < 0:
            raise ConfigInvalidError("remember_days must be non-negative")
        if not self.publish.command.strip():
            raise ConfigInvalidError("publish.command cannot be empty")
        if not self.publish.output_dir.strip():
            raise ConfigInvalidError("publish.output_dir cannot be empty")


def find_config_file(start_path: Path | None = None) -> Path | None:
    """Find .dashvault.yaml by traversing up from start_path.

    Args:
        start_path: Directory to start searching from. Defaults to cwd.

    Returns:
        Path to config file if found, None otherwise.
    """
    if start_path is None:
        start_path = Path.cwd()
    else:
        start_path = Path(start_path).resolve()

    if start_path.is_file():
        start_path = start_path.parent

    current = start_path
    while True:
        config_path = current / CONFIG_FILENAME
        if config_path.is_file():
            return config_path

        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    config_path: Path | None = None,
    start_path: Path | None = None,
    password_override: str | None = None,
    root_override: Path | None = None,
) -> DashvaultConfig:
    """Load configuration from file, environment, and overrides.

    Priority (highest to lowest):
    1. Function arguments (password_override, root_override)
    2. Environment variables (STATICRYPT_PASSWORD, DASHVAULT_ROOT)
    3. Config file (.dashvault.yaml)
    4. Defaults

    The password never comes from the config file; a password key there
    is ignored.

    Without an explicit root, the project root is the directory holding
    the config file, or the start directory when there is none.

    Returns:
        Loaded and validated configuration.
    """
    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.is_file():
            raise ConfigInvalidError(f"Config file not found: {config_path}")
    else:
        config_path = find_config_file(start_path)

    if config_path is not None:
        config = _load_config_file(config_path)
        config.root = config_path.resolve().parent
    else:
        config = DashvaultConfig()
        if start_path is not None:
            config.root = Path(start_path).resolve()

    env_root = os.environ.get(ENV_ROOT)
    if env_root:
        config.root = Path(env_root).resolve()

    env_password = os.environ.get(ENV_PASSWORD)
    if env_password:
        config.password = env_password

    if root_override is not None:
        config.root = Path(root_override).resolve()
    if password_override is not None:
        config.password = password_override

    config.validate()
    return config


def _load_config_file(config_path: Path) -> DashvaultConfig:
    """Load configuration from a YAML file.

    Raises:
        ConfigInvalidError: If file cannot be read or parsed.
    """
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigInvalidError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigInvalidError(f"Cannot read config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigInvalidError(f"Config file {config_path} must be a mapping")

    config = DashvaultConfig(config_path=config_path)

    if "password" in data:
        logger.warning(
            "Ignoring password in %s; set %s instead", config_path, ENV_PASSWORD
        )

    if isinstance(data.get("paths"), dict):
        paths_data = data["paths"]
        defaults = config.paths
        config.paths = PathsConfig(
            data=str(paths_data.get("data", defaults.data)),
            encrypted=str(paths_data.get("encrypted", defaults.encrypted)),
            salt_file=str(paths_data.get("salt_file", defaults.salt_file)),
            index=str(paths_data.get("index", defaults.index)),
            backup=str(paths_data.get("backup", defaults.backup)),
        )

    if isinstance(data.get("template"), dict):
        template_data = data["template"]
        defaults = config.template
        config.template = TemplateConfig(
            title=str(template_data.get("title", defaults.title) or ""),
            instructions=str(
                template_data.get("instructions", defaults.instructions) or ""
            ),
            color_primary=str(
                template_data.get("color_primary", defaults.color_primary)
            ),
            color_secondary=str(
                template_data.get("color_secondary", defaults.color_secondary)
            ),
        )

    if isinstance(data.get("publish"), dict):
        publish_data = data["publish"]
        defaults = config.publish
        try:
            remember_days = int(
                publish_data.get("remember_days", defaults.remember_days)
            )
        except (TypeError, ValueError) as e:
            raise ConfigInvalidError(f"Invalid remember_days: {e}") from e
        logo_src = publish_data.get("logo_src", defaults.logo_src)
        config.publish = PublishConfig(
            command=str(publish_data.get("command", defaults.command)),
            output_dir=str(publish_data.get("output_dir", defaults.output_dir)),
            remember_days=remember_days,
            short=bool(publish_data.get("short", defaults.short)),
            logo_src=str(logo_src) if logo_src else None,
            logo_alt=str(publish_data.get("logo_alt", defaults.logo_alt)),
            data_url=str(publish_data.get("data_url", defaults.data_url)),
        )

    return config


def create_default_config(path: Path | None = None) -> Path:
    """Create a default .dashvault.yaml config file.

    Args:
        path: Directory to create config in. Defaults to cwd.

    Returns:
        Path to created config file.

    Raises:
        ConfigInvalidError: If file already exists or cannot be written.
    """
    if path is None:
        path = Path.cwd()
    else:
        path = Path(path)

    config_path = path / CONFIG_FILENAME

    if config_path.exists():
        raise ConfigInvalidError(f"Config file already exists: {config_path}")

    config_content = f'''# dashvault configuration
# The password is read from {ENV_PASSWORD} (environment or .env file).
# The salt lives in {SALT_FILENAME} and is created on first encryption.

# Artifact locations, relative to this file
paths:
  data: "data/stats.json"
  encrypted: "data/stats.json.enc"
  salt_file: "{SALT_FILENAME}"
  index: "index.html"
  backup: "index.html.bak"

# Password prompt passed to StatiCrypt
template:
  title: ""
  instructions: "Enter your password to access the dashboard."
  color_primary: "#02245f"
  color_secondary: "#02245f"

# Full publish mode (dashvault encrypt --publish)
publish:
  command: "npx staticrypt"
  output_dir: "encrypted"
  remember_days: 30
  short: true
  logo_src: "./images/lpfirst.webp"
  logo_alt: "LP First Capital"
  data_url: "./data/stats.json.enc"
'''

    try:
        config_path.write_text(config_content, encoding="utf-8")
    except OSError as e:
        raise ConfigInvalidError(f"Cannot write config file: {e}") from e

    return config_path


def config_to_dict(config: DashvaultConfig) -> dict[str, Any]:
    """Convert config to dictionary for display.

    Note: The password is masked. The salt is shown when present.
    """
    store = config.salt_store()
    salt = None
    if store.exists():
        try:
            salt = store.load()
        except ConfigInvalidError:
            salt = "<invalid>"

    return {
        "root": str(config.root),
        "password": "********" if config.password else None,
        "salt": salt,
        "paths": {
            "data": config.paths.data,
            "encrypted": config.paths.encrypted,
            "salt_file": config.paths.salt_file,
            "index": config.paths.index,
            "backup": config.paths.backup,
        },
        "template": {
            "title": config.template.title,
            "instructions": config.template.instructions,
            "color_primary": config.template.color_primary,
            "color_secondary": config.template.color_secondary,
        },
        "publish": {
            "command": config.publish.command,
            "output_dir": config.publish.output_dir,
            "remember_days": config.publish.remember_days,
            "short": config.publish.short,
            "logo_src": config.publish.logo_src,
            "logo_alt": config.publish.logo_alt,
            "data_url": config.publish.data_url,
        },
        "config_path": str(config.config_path) if config.config_path else None,
    }
