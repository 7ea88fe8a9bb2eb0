"""
Preflight checks run before any network call.
"""

from __future__ import annotations

import logging
import os
from importlib import metadata
from pathlib import Path

from ..config import ToolkitConfig, AUTH_MODES

logger = logging.getLogger("m365_admin_toolkit.safety.preflight")

REQUIRED_DISTRIBUTIONS = ("httpx", "msal", "cryptography")


class SetupError(Exception):
    """Environment is not ready; carries a suggested remedy."""
    def __init__(self, message: str, remedy: str = ""):
        self.remedy = remedy
        super().__init__(message)


def check_distributions(names=REQUIRED_DISTRIBUTIONS) -> dict[str, str]:
    """Return {name: version} or raise SetupError listing what is missing."""
    versions = {}
    missing = []
    for name in names:
        try:
            versions[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            missing.append(name)
    if missing:
        raise SetupError(
            f"Required packages not installed: {', '.join(missing)}",
            remedy=f"pip install {' '.join(missing)}",
        )
    return versions


def check_output_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise SetupError(
            f"Cannot create output directory {path}: {e}",
            remedy="Choose another --output-dir",
        ) from e
    if not os.access(path, os.W_OK):
        raise SetupError(
            f"Output directory is not writable: {path}",
            remedy="Fix permissions or choose another --output-dir",
        )


def check_environment(config: ToolkitConfig) -> dict[str, str]:
    """Validate dependencies, output location and credential material."""
    versions = check_distributions()
    check_output_dir(config.output.output_dir)

    mode = config.auth.mode
    if mode not in AUTH_MODES:
        raise SetupError(
            f"Unknown auth mode: {mode}",
            remedy=f"Use one of: {', '.join(AUTH_MODES)}",
        )
    if mode == "certificate":
        cert = config.auth.certificate
        if cert is None:
            raise SetupError(
                "No certificate configuration found",
                remedy="Pass --tenant-id, --client-id and --cert-path, or use --config",
            )
        if not Path(cert.certificate_path).expanduser().is_file():
            raise SetupError(
                f"Certificate file not found: {cert.certificate_path}",
                remedy="Point --cert-path at the base64-encoded PFX file",
            )
    elif mode == "secret":
        if config.auth.secret is None or not config.auth.secret.client_secret:
            raise SetupError(
                "No client secret configured",
                remedy="Export M365_CLIENT_SECRET (never pass secrets on the command line)",
            )
    elif config.auth.delegated is None:
        raise SetupError(
            "No delegated auth configuration found",
            remedy="Pass --tenant-id and --client-id, or use --config",
        )

    logger.debug(f"Preflight OK: {versions}")
    return versions
