"""
PVault Web — File Tab
=====================

Encrypt / decrypt files with a stored vault key.

Uses temporary files and ``pvault.encrypt_file`` / ``pvault.decrypt_file``
so large uploads are streamed block by block.
"""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import streamlit as st

# -- project-root import ---------------------------------------------------
_root = str(Path(__file__).resolve().parent.parent.parent)
if _root not in sys.path:
    sys.path.insert(0, _root)

import pvault  # noqa: E402

from key_store import get_key_bytes, list_keys  # noqa: E402
from utils import human_file_size, safe_output_filename  # noqa: E402


# ---------------------------------------------------------------------------
# Public render function
# ---------------------------------------------------------------------------

def render() -> None:
    """Render the File encryption / decryption tab."""

    operation = st.radio(
        "Operation",
        ["Encrypt", "Decrypt"],
        horizontal=True,
        key="file_operation",
    )

    uploaded = st.file_uploader(
        "Choose a file" if operation == "Encrypt" else "Choose a .pv file",
        key="file_uploader",
    )

    if uploaded:
        st.caption(
            f"**{uploaded.name}**  —  {human_file_size(uploaded.size)}"
        )

    selected_key_id: str | None = None
    keys = list_keys()
    if not keys:
        st.info("No keys stored yet. Generate or import one in the **Keys** tab.")
    else:
        options = {k.key_id: f"{k.name}  ({k.mode})" for k in keys}
        selected_key_id = st.selectbox(
            "Select Key",
            options.keys(),
            format_func=lambda kid: options[kid],
            key="file_key",
        )

    st.markdown("---")
    btn_label = "🔒 Encrypt File" if operation == "Encrypt" else "🔓 Decrypt File"

    if st.button(btn_label, type="primary", use_container_width=True, key="file_action"):
        if not uploaded:
            st.error("Please upload a file first.")
            return
        if not selected_key_id:
            st.error("Please select a key first.")
            return

        try:
            result_bytes, out_name = _process_file(uploaded, operation, selected_key_id)
            st.success(
                f"{'Encryption' if operation == 'Encrypt' else 'Decryption'} "
                f"successful!  ({human_file_size(len(result_bytes))})"
            )
            st.download_button(
                f"📥 Download {out_name}",
                data=result_bytes,
                file_name=out_name,
                mime="application/octet-stream",
                key="file_download",
            )

        except pvault.AuthenticationFailure as e:
            st.error(f"Decryption failed: {e}")
        except pvault.InvalidKeyError as e:
            st.error(f"Invalid key: {e}")
        except pvault.VaultError as e:
            st.error(f"Error: {e}")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _process_file(uploaded, operation: str, key_id: str) -> tuple[bytes, str]:
    """
    Run the uploaded file through the engine.

    Returns (result_bytes, suggested_output_filename).
    """
    encrypting = operation == "Encrypt"
    out_name = safe_output_filename(uploaded.name, encrypting)

    suffix_in = Path(uploaded.name).suffix or ".bin"
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix_in) as tmp_in:
        tmp_in.write(uploaded.getvalue())
        tmp_in_path = tmp_in.name

    suffix_out = ".pv" if encrypting else ".dec"
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix_out) as tmp_out:
        tmp_out_path = tmp_out.name

    progress_bar = st.progress(0, text="Processing…")

    def progress_cb(done: int, total: int) -> None:
        if total > 0:
            pct = min(done / total, 1.0)
            progress_bar.progress(pct, text=f"Processing… {human_file_size(done)} / {human_file_size(total)}")

    try:
        key = get_key_bytes(key_id)
        if encrypting:
            pvault.encrypt_file(tmp_in_path, tmp_out_path, key, progress_callback=progress_cb)
        else:
            pvault.decrypt_file(tmp_in_path, tmp_out_path, key, progress_callback=progress_cb)

        progress_bar.progress(1.0, text="Done!")

        with open(tmp_out_path, "rb") as f:
            result = f.read()

        return result, out_name

    finally:
        for p in (tmp_in_path, tmp_out_path):
            try:
                os.unlink(p)
            except OSError:
                pass
