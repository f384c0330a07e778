"""
PVault Web — Text Tab
=====================

Encrypt / decrypt short text with a stored vault key.

Output is Base64-encoded for easy copy/paste sharing.
"""

from __future__ import annotations

import base64
import binascii
import io
import sys
from pathlib import Path

import streamlit as st

# -- project-root import ---------------------------------------------------
_root = str(Path(__file__).resolve().parent.parent.parent)
if _root not in sys.path:
    sys.path.insert(0, _root)

import pvault  # noqa: E402

from key_store import get_key_bytes, list_keys  # noqa: E402


# ---------------------------------------------------------------------------
# Public render function
# ---------------------------------------------------------------------------

def render() -> None:
    """Render the Text encryption / decryption tab."""

    operation = st.radio(
        "Operation",
        ["Encrypt", "Decrypt"],
        horizontal=True,
        key="text_operation",
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
            key="text_key",
        )

    st.markdown("---")

    if operation == "Encrypt":
        input_text = st.text_area(
            "Plaintext",
            height=200,
            placeholder="Enter text to encrypt…",
            key="text_input_encrypt",
        )
    else:
        input_text = st.text_area(
            "Record (Base64)",
            height=200,
            placeholder="Paste a Base64-encoded PVault record…",
            key="text_input_decrypt",
        )

    if input_text:
        n_chars = len(input_text)
        n_bytes = len(input_text.encode("utf-8"))
        st.caption(f"{n_chars:,} chars  |  {n_bytes:,} bytes")

    btn_label = "🔒 Encrypt" if operation == "Encrypt" else "🔓 Decrypt"
    if st.button(btn_label, type="primary", use_container_width=True, key="text_action"):
        if not input_text:
            st.error("Please enter some text first.")
            return
        if not selected_key_id:
            st.error("Please select a key first.")
            return

        try:
            if operation == "Encrypt":
                record = _do_encrypt(input_text, selected_key_id)
                st.success("Encryption successful!")
                st.text_area(
                    "Encrypted Output (Base64)",
                    value=base64.b64encode(record).decode("ascii"),
                    height=200,
                    key="text_output_display",
                )
                st.download_button(
                    "📥 Download as .pv file",
                    data=record,
                    file_name="encrypted.pv",
                    mime="application/octet-stream",
                    key="text_download_enc",
                )
            else:
                plaintext = _do_decrypt(input_text, selected_key_id)
                st.success("Decryption successful!")
                try:
                    st.text_area(
                        "Decrypted Output",
                        value=plaintext.decode("utf-8"),
                        height=200,
                        key="text_output_display",
                    )
                except UnicodeDecodeError:
                    st.warning("Decrypted data is not valid UTF-8 text. Showing as Base64.")
                    st.text_area(
                        "Decrypted Output (Base64)",
                        value=base64.b64encode(plaintext).decode("ascii"),
                        height=200,
                        key="text_output_display",
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

def _do_encrypt(plaintext_str: str, key_id: str) -> bytes:
    """Encrypt a string and return the raw record bytes."""
    sink = io.BytesIO()
    pvault.encrypt(get_key_bytes(key_id), io.BytesIO(plaintext_str.encode("utf-8")), sink)
    return sink.getvalue()


def _do_decrypt(record_b64: str, key_id: str) -> bytes:
    """Verify and decrypt a Base64 record, returning plaintext bytes."""
    try:
        data = base64.b64decode(record_b64.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise pvault.FormatError("Input is not valid Base64.") from exc
    sink = io.BytesIO()
    pvault.decrypt(get_key_bytes(key_id), io.BytesIO(data), sink)
    return sink.getvalue()
