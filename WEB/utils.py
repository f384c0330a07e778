"""
PVault Web — Utility Helpers
============================

Shared helpers for file size formatting, output filename generation,
and digest display.
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Human-readable file size
# ---------------------------------------------------------------------------

def human_file_size(size_bytes: int) -> str:
    """Convert byte count to a human-readable string (e.g. '1.5 MB')."""
    if size_bytes < 0:
        return "0 B"
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(size_bytes) < 1024.0:
            if unit == "B":
                return f"{size_bytes} {unit}"
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0  # type: ignore[assignment]
    return f"{size_bytes:.1f} PB"


# ---------------------------------------------------------------------------
# Output filename helper
# ---------------------------------------------------------------------------

def safe_output_filename(original: str, encrypting: bool) -> str:
    """
    Derive an output filename for download.

    * Encrypting  → append ``.pv``
    * Decrypting  → strip ``.pv`` suffix if present, else prepend ``decrypted_``
    """
    if encrypting:
        return original + ".pv"
    if original.endswith(".pv") and len(original) > 3:
        return original[:-3]
    return "decrypted_" + original


# ---------------------------------------------------------------------------
# Digest display
# ---------------------------------------------------------------------------

def format_digest(digest: bytes, group: int = 4) -> str:
    """Uppercase hex split into *group*-byte words, e.g. ``A9993E36 4706816A …``."""
    hex_str = digest.hex().upper()
    step = group * 2
    return " ".join(hex_str[i : i + step] for i in range(0, len(hex_str), step))
