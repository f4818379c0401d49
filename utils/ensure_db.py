"""
CASCADE - Ensure the local demo database exists (fresh local runs or Streamlit Cloud).
When it is missing, runs the synthetic data generator once so the app has a table to open.
"""

import logging
import os

import streamlit as st

from config.settings import load_settings, resolve_path
from state.models import Instance

logger = logging.getLogger(__name__)


def demo_instance(settings: dict = None) -> Instance:
    settings = settings or load_settings()
    local = settings["local_sql"]
    return Instance(local["demo_server"], local["demo_database"], local["demo_table"], is_remote=False)


@st.cache_resource
def ensure_data_ready():
    """Create <data_dir>/<demo_database>.duckdb if missing. Call once at app startup."""
    settings = load_settings()
    data_dir = resolve_path(settings["local_sql"]["data_dir"])
    db_path = os.path.join(data_dir, f"{settings['local_sql']['demo_database']}.duckdb")
    if os.path.exists(db_path):
        logger.info("Demo database already exists at %s", db_path)
        return db_path
    logger.warning("Demo database not found at %s, generating synthetic data", db_path)
    os.makedirs(data_dir, exist_ok=True)
    from generators.generate_synthetic_data import main
    main(data_dir, settings["local_sql"]["demo_database"])
    logger.info("Synthetic data generated at %s", db_path)
    return db_path
