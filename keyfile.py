"""
PVault Key Files
================

Read and write key material as small text files::

    # PVault Key
    # Name: <name>
    # Created: <UTC ISO-8601 timestamp>
    <URL-safe Base64 of the 32-byte key>

Lines starting with ``#`` and blank lines are ignored when reading.  A key
line prefixed with ``hex:`` is decoded as hexadecimal instead.

Key files live in an OS-appropriate config directory by default and are
written with owner-only permissions.
"""

from __future__ import annotations

import logging
import os
import platform
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import pvault

logger = logging.getLogger(__name__)

KEY_FILE_NAME = "vault.key"
HEX_PREFIX = "hex:"


# ---------------------------------------------------------------------------
# Config directory
# ---------------------------------------------------------------------------

def config_dir(create: bool = True) -> Path:
    """Return the config directory for PVault (``$PVAULT_HOME`` wins)."""
    override = os.environ.get("PVAULT_HOME")
    if override:
        config = Path(override)
    else:
        if platform.system() == "Windows":
            base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        elif platform.system() == "Darwin":
            base = Path.home() / "Library" / "Application Support"
        else:
            base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
        config = base / "PVault"
    if create:
        config.mkdir(parents=True, exist_ok=True)
    return config


def default_key_path() -> Path:
    """Where ``pv keygen`` writes and other commands look by default."""
    return config_dir(create=False) / KEY_FILE_NAME


# ---------------------------------------------------------------------------
# Read / write
# ---------------------------------------------------------------------------

def format_key_file(key: bytes, name: str = "Vault Key", created: Optional[str] = None) -> str:
    """Render *key* in the key-file text format."""
    created = created or datetime.now(timezone.utc).isoformat()
    return (
        "# PVault Key\n"
        f"# Name: {name}\n"
        f"# Created: {created}\n"
        f"{pvault.key_to_base64(key)}\n"
    )


def write_key_file(
    path: Union[str, Path],
    key: bytes,
    *,
    name: str = "Vault Key",
    overwrite: bool = False,
) -> Path:
    """
    Persist *key* to *path* (mode 0600 on POSIX).

    Raises
    ------
    IOFailure
        If the file exists and *overwrite* is false, or writing fails.
    """
    path = Path(path)
    if path.exists() and not overwrite:
        raise pvault.IOFailure(f"{path} already exists.")
    text = format_key_file(key, name=name)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, "utf-8")
        if platform.system() != "Windows":
            os.chmod(path, 0o600)
    except OSError as exc:
        raise pvault.IOFailure(f"Cannot write key file {path}: {exc}") from exc
    logger.info("Wrote key file %s", path)
    return path


def parse_key_text(text: str) -> bytearray:
    """Decode the first non-comment line of a key file."""
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.lower().startswith(HEX_PREFIX):
            return pvault.key_from_hex(line[len(HEX_PREFIX):])
        return pvault.key_from_base64(line)
    raise pvault.InvalidKeyError("No symmetric key found in key file.")


def read_key_file(path: Union[str, Path]) -> bytearray:
    """
    Load key material from *path*.

    Returns a ``bytearray`` so the engine can zero it after use.
    """
    path = Path(path)
    try:
        text = path.read_text("utf-8")
    except OSError as exc:
        raise pvault.IOFailure(f"Cannot read key file {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise pvault.InvalidKeyError(f"{path} is not a text key file.") from exc
    return parse_key_text(text)
