"""
PVault Web — Keys Tab
=====================

Manage 32-byte vault keys:
  • Generate random system keys
  • Import custom keys (Base64 / Hex / key file)
  • View, export as a ``pv`` key file, rename, delete keys
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import streamlit as st

# -- project-root import ---------------------------------------------------
_root = str(Path(__file__).resolve().parent.parent.parent)
if _root not in sys.path:
    sys.path.insert(0, _root)

import pvault  # noqa: E402

from key_store import (  # noqa: E402
    delete_key,
    generate_system_key,
    import_custom_key,
    list_keys,
    rename_key,
)


# ---------------------------------------------------------------------------
# Public render function
# ---------------------------------------------------------------------------

def render() -> None:
    """Render the Keys management tab."""

    st.subheader("🔑 Vault Keys")
    st.caption(
        f"Each key holds {pvault.KEY_SIZE} bytes: a {pvault.SUBKEY_SIZE}-byte "
        "AES-CTR key followed by a separate AES-CBC-MAC key."
    )

    gen_col, imp_col = st.columns(2)

    with gen_col:
        with st.expander("Generate New Key", expanded=False):
            gen_name = st.text_input("Key Name", placeholder="e.g. My Vault Key", key="key_gen_name")
            if st.button("Generate", key="key_gen_btn", use_container_width=True):
                if not gen_name.strip():
                    st.error("Please enter a name for the key.")
                else:
                    entry = generate_system_key(gen_name)
                    st.success(f"Key **{entry.name}** generated!")
                    st.rerun()

    with imp_col:
        with st.expander("Import Existing Key", expanded=False):
            imp_name = st.text_input("Key Name", placeholder="e.g. Shared Key", key="key_imp_name")
            imp_fmt = st.radio("Format", ["Base64", "Hex", "Key File"], horizontal=True, key="key_imp_fmt")
            if imp_fmt == "Key File":
                upload = st.file_uploader("Key file", type=["key", "txt"], key="key_imp_file")
                imp_val = upload.getvalue().decode("utf-8", errors="replace") if upload else ""
            else:
                imp_val = st.text_input(
                    "Key Value",
                    placeholder="Paste your Base64 or Hex key…",
                    key="key_imp_val",
                )
            if st.button("Import", key="key_imp_btn", use_container_width=True):
                if not imp_val.strip():
                    st.error("Please enter a key value.")
                else:
                    try:
                        entry = import_custom_key(
                            imp_name or "Imported Key",
                            imp_val,
                            fmt=imp_fmt.lower().replace(" ", ""),
                        )
                        st.success(f"Key **{entry.name}** imported!")
                        st.rerun()
                    except pvault.InvalidKeyError as e:
                        st.error(f"Invalid key: {e}")

    st.markdown("---")
    keys = list_keys()
    if not keys:
        st.info("No keys yet. Generate or import one above.")
    else:
        st.caption(f"{len(keys)} key(s) stored in this session")
        for entry in keys:
            _render_key_card(entry)


# ---------------------------------------------------------------------------
# Card renderer
# ---------------------------------------------------------------------------

def _render_key_card(entry) -> None:
    """Render a single key card with actions."""
    with st.container(border=True):
        cols = st.columns([3, 2])
        with cols[0]:
            st.markdown(f"**{entry.name}**")
            st.caption(f"{entry.mode} key  •  {_format_time(entry.created)}")
        with cols[1]:
            st.code(entry.key_b64, language=None)

        action_cols = st.columns(3)
        with action_cols[0]:
            st.download_button(
                "📥 Export .key",
                data=entry.export_text(),
                file_name=f"{entry.name.replace(' ', '_')}.key",
                mime="text/plain",
                key=f"key_export_{entry.key_id}",
                use_container_width=True,
            )
        with action_cols[1]:
            new_name = st.text_input(
                "Rename",
                value=entry.name,
                key=f"key_rename_input_{entry.key_id}",
                label_visibility="collapsed",
            )
            if new_name != entry.name:
                rename_key(entry.key_id, new_name)
                st.rerun()
        with action_cols[2]:
            if st.button("🗑️ Delete", key=f"key_del_{entry.key_id}", use_container_width=True):
                delete_key(entry.key_id)
                st.rerun()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _format_time(iso_str: str) -> str:
    """Format an ISO timestamp for display."""
    try:
        dt = datetime.fromisoformat(iso_str)
        return dt.strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return iso_str
