"""
PVault Web — Digest Tab
=======================

SHA-1 and HMAC-SHA1 of typed text or an uploaded file.
"""

from __future__ import annotations

import sys
from pathlib import Path

import streamlit as st

# -- project-root import ---------------------------------------------------
_root = str(Path(__file__).resolve().parent.parent.parent)
if _root not in sys.path:
    sys.path.insert(0, _root)

import mdhash  # noqa: E402

from utils import format_digest, human_file_size  # noqa: E402


def render() -> None:
    """Render the Digest tab."""

    algorithm = st.radio(
        "Algorithm",
        ["SHA-1", "HMAC-SHA1"],
        horizontal=True,
        key="digest_algorithm",
    )
    source = st.radio(
        "Input",
        ["Text", "File"],
        horizontal=True,
        key="digest_source",
    )

    hmac_key = b""
    if algorithm == "HMAC-SHA1":
        key_fmt = st.radio("Key Format", ["Text", "Hex"], horizontal=True, key="digest_key_fmt")
        key_val = st.text_input("HMAC Key", type="password", key="digest_key")
        if key_fmt == "Hex":
            try:
                hmac_key = bytes.fromhex(key_val.strip())
            except ValueError:
                st.error("HMAC key is not valid hex.")
                return
        else:
            hmac_key = key_val.encode("utf-8")
        if len(hmac_key) > mdhash.BLOCK_SIZE:
            st.warning(f"Only the first {mdhash.BLOCK_SIZE} key bytes are used.")

    data: bytes | None = None
    if source == "Text":
        text = st.text_area("Message", height=160, key="digest_text")
        data = text.encode("utf-8")
    else:
        uploaded = st.file_uploader("Choose a file", key="digest_file")
        if uploaded:
            st.caption(f"**{uploaded.name}**  —  {human_file_size(uploaded.size)}")
            data = uploaded.getvalue()

    st.markdown("---")
    if st.button("#️⃣ Compute", type="primary", use_container_width=True, key="digest_action"):
        if data is None:
            st.error("Please upload a file first.")
            return
        if algorithm == "SHA-1":
            digest = mdhash.sha1(data)
        else:
            digest = mdhash.hmac_sha1(hmac_key, data)
        st.code(format_digest(digest), language=None)
        st.caption(digest.hex())
