"""Invocation of the StatiCrypt command-line tool.

StatiCrypt reads its salt from .staticrypt.json in the working directory,
so it runs from the project root to share the deployment salt. The
password is handed over through StatiCrypt's own environment variable
rather than the command line.
"""

import logging
import os
import shlex
import subprocess
from pathlib import Path

from .config import ENV_PASSWORD, DashvaultConfig
from .crypto import DashvaultError

logger = logging.getLogger(__name__)


class ExternalToolFailedError(DashvaultError):
    """StatiCrypt could not be run or exited with an error."""

    pass


def build_command(config: DashvaultConfig, input_name: str) -> list[str]:
    """Build the StatiCrypt argument list for the configured template.

    Args:
        config: Loaded configuration.
        input_name: File to encrypt, relative to the project root.

    Returns:
        Argument list suitable for subprocess.run().
    """
    publish = config.publish
    template = config.template

    cmd = shlex.split(publish.command)
    cmd.append(input_name)
    if publish.short:
        cmd.append("--short")
    cmd.extend(["--remember", str(publish.remember_days)])
    cmd.extend(["-d", publish.output_dir])
    cmd.extend(["--template-title", template.title])
    cmd.extend(["--template-instructions", template.instructions])
    cmd.extend(["--template-color-primary", template.color_primary])
    cmd.extend(["--template-color-secondary", template.color_secondary])
    return cmd


def run_staticrypt(config: DashvaultConfig, password: str, input_path: Path) -> Path:
    """Run StatiCrypt on input_path and return the generated page.

    Args:
        config: Loaded configuration.
        password: Gate password, passed via the environment.
        input_path: Patched host document.

    Returns:
        Path to the generated page inside the output directory.

    Raises:
        ExternalToolFailedError: If StatiCrypt cannot be launched, fails,
            or produces no output file.
    """
    input_path = Path(input_path)
    try:
        input_name = str(input_path.resolve().relative_to(config.root.resolve()))
    except ValueError:
        input_name = str(input_path.resolve())

    cmd = build_command(config, input_name)
    env = dict(os.environ)
    env[ENV_PASSWORD] = password

    logger.info("Running %s", shlex.join(cmd))
    try:
        result = subprocess.run(cmd, cwd=config.root, env=env, check=False)
    except OSError as e:
        raise ExternalToolFailedError(f"Cannot run StatiCrypt ({cmd[0]}): {e}") from e

    if result.returncode != 0:
        raise ExternalToolFailedError(
            f"StatiCrypt encryption failed with exit code {result.returncode}"
        )

    output_path = config.resolve(config.publish.output_dir) / input_path.name
    if not output_path.is_file():
        raise ExternalToolFailedError(
            f"StatiCrypt produced no output at {output_path}"
        )
    return output_path
