"""
Launch Gate Settings

Single point of access for endpoints, app identity, timings and browsing
policy. config/settings.json holds local overrides and is layered over
config/settings.defaults.json, so a key added to the defaults in a later
release is visible even when an older settings.json exists.

Usage:
    from config.settings_loader import get_timing, save_settings, load_settings

    delay = get_timing("organic_check_delay")

    load_settings()["timing"]["config_timeout"] = 15
    save_settings()
"""

import copy
import json
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
CONFIG_DIR = Path(__file__).parent
SETTINGS_FILE = CONFIG_DIR / "settings.json"
DEFAULTS_FILE = CONFIG_DIR / "settings.defaults.json"

# --- Settings Cache ---
_settings_cache = None

def _read_defaults() -> dict:
    if not DEFAULTS_FILE.exists():
        raise FileNotFoundError(f"Missing {DEFAULTS_FILE.name} in {CONFIG_DIR}")
    return json.loads(DEFAULTS_FILE.read_text())

def _layer(base: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _layer(merged[key], value)
        else:
            merged[key] = value
    return merged

def load_settings() -> dict:
    """Defaults overlaid with settings.json, cached after the first call."""
    global _settings_cache
    if _settings_cache is None:
        defaults = _read_defaults()
        if SETTINGS_FILE.exists():
            _settings_cache = _layer(defaults, json.loads(SETTINGS_FILE.read_text()))
        else:
            _settings_cache = defaults
            save_settings()  # First run: materialize settings.json for editing
    return _settings_cache

def save_settings() -> None:
    if _settings_cache is not None:
        SETTINGS_FILE.write_text(json.dumps(_settings_cache, indent=2))

def update_settings(overrides: dict) -> dict:
    """Layer `overrides` onto the current settings and persist them."""
    global _settings_cache
    _settings_cache = _layer(reload_settings(), overrides)
    save_settings()
    return _settings_cache

def reset_settings() -> dict:
    """Throw away local overrides."""
    global _settings_cache
    _settings_cache = _read_defaults()
    save_settings()
    return _settings_cache

def reload_settings() -> dict:
    """Force reload settings from disk (useful after external changes)."""
    global _settings_cache
    _settings_cache = None
    return load_settings()

# --- Convenience Accessors ---

def get_endpoint(name: str) -> str:
    """config_url, attribution_base_url or connectivity_probe_url."""
    return load_settings()["endpoints"][name]

def get_app_value(name: str) -> str:
    return load_settings()["app"].get(name, "")

def get_dev_key() -> str:
    """Attribution dev key. ATTRIBUTION_DEV_KEY (env or .env) wins over settings.json."""
    return os.getenv("ATTRIBUTION_DEV_KEY") or get_app_value("dev_key")

def get_timing(name: str) -> float:
    """Delays and timeouts in seconds; prompt_interval_days is in days."""
    return load_settings()["timing"][name]

def get_browsing_value(name: str):
    return load_settings()["browsing"][name]

def get_state_file() -> Path:
    """Persistent store location. Relative paths resolve from the project root."""
    path = Path(load_settings()["storage"]["state_file"])
    return path if path.is_absolute() else CONFIG_DIR.parent / path

# --- Initialize on import ---
settings = load_settings()
