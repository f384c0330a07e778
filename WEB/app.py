"""
PVault — Web Edition
====================

Streamlit application entry point.

Launch:
    cd pvault
    streamlit run WEB/app.py
"""

from __future__ import annotations

import sys
from pathlib import Path

# -- Ensure project root is importable ------------------------------------
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

# -- Ensure WEB/ directory is importable ----------------------------------
_web_root = str(Path(__file__).resolve().parent)
if _web_root not in sys.path:
    sys.path.insert(0, _web_root)

import streamlit as st  # noqa: E402

# ---------------------------------------------------------------------------
# Page config — must be the first Streamlit command
# ---------------------------------------------------------------------------

st.set_page_config(
    page_title="PVault",
    page_icon="🔐",
    layout="wide",
    initial_sidebar_state="collapsed",
)

st.markdown(
    """
    <style>
    .stButton > button[kind="primary"] {
        background-color: #e94560;
        border-color: #e94560;
    }
    .stButton > button[kind="primary"]:hover {
        background-color: #d63a54;
        border-color: #d63a54;
    }
    .stTabs [data-baseweb="tab-panel"] {
        padding-top: 1rem;
    }
    .pvault-header {
        text-align: center;
        padding: 1rem 0 0.5rem 0;
    }
    .pvault-header h1 {
        font-size: 2.2rem;
        margin-bottom: 0.2rem;
    }
    .pvault-header p {
        color: #a0a0b8;
        font-size: 0.95rem;
    }
    </style>
    """,
    unsafe_allow_html=True,
)

# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------

st.markdown(
    """
    <div class="pvault-header">
        <h1>🔐 PVault</h1>
        <p>AES-CTR + AES-CBC-MAC Personal Vault &amp; SHA-1 Toolkit — Web Edition</p>
    </div>
    """,
    unsafe_allow_html=True,
)

# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------

with st.sidebar:
    st.markdown("### About")
    st.markdown(
        "**PVault Web Edition** encrypts with AES-128 in CTR mode and "
        "authenticates the ciphertext with AES-CBC-MAC under a second, "
        "independent key."
    )
    st.markdown("---")
    st.markdown("#### Security Notice")
    st.markdown(
        "• Keys exist **only** in your browser session.  \n"
        "• Closing the tab destroys all keys.  \n"
        "• Records made here can be opened with the `pv` command line tool.  \n"
        "• A record is only decrypted after its tag verifies."
    )
    st.markdown("---")
    st.caption("PVault v0.6 — Web Edition")

# ---------------------------------------------------------------------------
# Tabs
# ---------------------------------------------------------------------------

from tabs.text_tab import render as render_text  # noqa: E402
from tabs.file_tab import render as render_file  # noqa: E402
from tabs.digest_tab import render as render_digest  # noqa: E402
from tabs.key_tab import render as render_keys   # noqa: E402

tab_text, tab_file, tab_digest, tab_keys = st.tabs(
    ["📝 Text", "📁 File", "#️⃣ Digest", "🔑 Keys"]
)

with tab_text:
    render_text()

with tab_file:
    render_file()

with tab_digest:
    render_digest()

with tab_keys:
    render_keys()
