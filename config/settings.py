"""
Load runtime settings from config/settings.yaml.
Missing file or missing keys fall back to DEFAULT_SETTINGS; a few keys can be overridden by environment.
"""

import copy
import logging
import os

import yaml

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

DEFAULT_SETTINGS = {
    "app": {"name": "CASCADE", "log_level": "INFO", "default_user": "demo_user"},
    "cache": {"path": "data/cache/cascade_cache.duckdb", "version": 2},
    "local_sql": {
        "data_dir": "data/local",
        "demo_server": "localhost",
        "demo_database": "Demo_Billing",
        "demo_table": "Billing_Waterfall",
    },
    "sql_server": {
        "driver": "ODBC Driver 18 for SQL Server",
        "port": 1433,
        "encrypt": True,
        "trust_server_certificate": True,
        "timeout": 30,
    },
    "api": {"base_url": "", "timeout": 30},
    "mappings": {"keywords": ["Procedure", "Provider", "Insurance", "Location"]},
}

ENV_OVERRIDES = {
    "CASCADE_CACHE_PATH": ("cache", "path"),
    "CASCADE_API_BASE_URL": ("api", "base_url"),
    "CASCADE_LOG_LEVEL": ("app", "log_level"),
    "CASCADE_LOCAL_DATA_DIR": ("local_sql", "data_dir"),
    "CASCADE_ODBC_DRIVER": ("sql_server", "driver"),
}


def _config_path():
    return os.path.join(os.path.dirname(__file__), "settings.yaml")


def _merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: str = None, environ=None) -> dict:
    """Return settings dict: defaults, then settings.yaml, then environment overrides."""
    path = path or _config_path()
    environ = os.environ if environ is None else environ
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    if os.path.exists(path):
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        settings = _merge(settings, data)
    for env_name, (section, key) in ENV_OVERRIDES.items():
        if environ.get(env_name):
            settings[section][key] = environ[env_name]
    return settings


def resolve_path(path: str) -> str:
    """Relative paths in settings are relative to the project root."""
    if os.path.isabs(path):
        return path
    return os.path.join(_BASE_DIR, path)


def get_keywords(settings: dict = None) -> list:
    settings = settings or load_settings()
    return list(settings["mappings"]["keywords"])


def configure_logging(settings: dict = None) -> None:
    """Configure root logging once; later calls only adjust the level."""
    settings = settings or load_settings()
    level = getattr(logging, str(settings["app"]["log_level"]).upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    root.setLevel(level)
