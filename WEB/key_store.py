"""
PVault Web — Session-State Key Store
====================================

Manage 32-byte vault keys (K_CTR || K_MAC) entirely in
``st.session_state`` — nothing is persisted to disk or sent to the server
beyond the active session.
"""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import streamlit as st

# -- make project root importable so we can ``import pvault`` --------------
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import keyfile  # noqa: E402
import pvault  # noqa: E402


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class KeyEntry:
    """A single vault key stored in the session."""
    key_id: str
    name: str
    key_b64: str
    mode: str  # "system" | "custom"
    created: str
    description: str = ""

    def export_text(self) -> str:
        """Key-file text, readable by ``pv -k``."""
        key = pvault.key_from_base64(self.key_b64)
        try:
            return keyfile.format_key_file(key, name=self.name, created=self.created)
        finally:
            key[:] = bytes(len(key))


# ---------------------------------------------------------------------------
# Session-state initialisation
# ---------------------------------------------------------------------------

_STATE_KEY = "pvault_keys"


def _init_state() -> None:
    """Ensure the session-state dict exists."""
    if _STATE_KEY not in st.session_state:
        st.session_state[_STATE_KEY] = {}


def _store(entry: KeyEntry) -> KeyEntry:
    st.session_state[_STATE_KEY][entry.key_id] = entry
    return entry


# ---------------------------------------------------------------------------
# Key operations
# ---------------------------------------------------------------------------

def generate_system_key(name: str, description: str = "") -> KeyEntry:
    """Generate a random vault key and store it in the session."""
    _init_state()
    raw = pvault.generate_key()
    return _store(KeyEntry(
        key_id=uuid.uuid4().hex[:12],
        name=name.strip() or "Untitled Key",
        key_b64=pvault.key_to_base64(raw),
        mode="system",
        created=datetime.now(timezone.utc).isoformat(),
        description=description,
    ))


def import_custom_key(
    name: str,
    value: str,
    fmt: str = "base64",
    description: str = "",
) -> KeyEntry:
    """
    Import a user-supplied key.

    Parameters
    ----------
    value : str
        The key in Base64, Hex, or key-file text.
    fmt : str
        ``"base64"``, ``"hex"`` or ``"keyfile"``.
    """
    _init_state()
    if fmt == "hex":
        raw = pvault.key_from_hex(value)
    elif fmt == "keyfile":
        raw = keyfile.parse_key_text(value)
    else:
        raw = pvault.key_from_base64(value)

    try:
        key_b64 = pvault.key_to_base64(raw)
    finally:
        raw[:] = bytes(len(raw))
    return _store(KeyEntry(
        key_id=uuid.uuid4().hex[:12],
        name=name.strip() or "Imported Key",
        key_b64=key_b64,
        mode="custom",
        created=datetime.now(timezone.utc).isoformat(),
        description=description,
    ))


def list_keys() -> list[KeyEntry]:
    """Return all keys in the session (newest first)."""
    _init_state()
    keys = list(st.session_state[_STATE_KEY].values())
    keys.sort(key=lambda k: k.created, reverse=True)
    return keys


def get_key(key_id: str) -> Optional[KeyEntry]:
    """Look up a single key by ID."""
    _init_state()
    return st.session_state[_STATE_KEY].get(key_id)


def get_key_bytes(key_id: str) -> bytearray:
    """
    Return a fresh copy of the raw key for one operation.

    The engine zeroes the returned buffer when the operation ends.
    """
    entry = get_key(key_id)
    if entry is None:
        raise pvault.InvalidKeyError(f"Key '{key_id}' not found in session.")
    return pvault.key_from_base64(entry.key_b64)


def delete_key(key_id: str) -> bool:
    """Remove a key from the session. Returns True if it existed."""
    _init_state()
    return st.session_state[_STATE_KEY].pop(key_id, None) is not None


def rename_key(key_id: str, new_name: str) -> bool:
    """Rename a key. Returns True on success."""
    _init_state()
    entry = st.session_state[_STATE_KEY].get(key_id)
    if entry is None:
        return False
    entry.name = new_name.strip() or entry.name
    return True
