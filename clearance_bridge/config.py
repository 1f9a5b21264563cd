"""
Configuration management for ClearanceBridge.
Handles loading configuration from defaults, config.json and the environment.
"""

import json
import os
from typing import Any, Dict, Optional

from . import constants


# Global state
_current_config_file: str = os.environ.get("CONFIG_FILE") or constants.CONFIG_FILE


def get_config_file() -> str:
    """Get the current config file path."""
    return _current_config_file


def set_config_file(path: str) -> None:
    """Set the config file path (useful for tests)."""
    global _current_config_file
    _current_config_file = path


def get_default_config() -> dict:
    """Get default configuration values."""
    return {
        "upstream": constants.DEFAULT_UPSTREAM,
        "user_agent": constants.DEFAULT_USER_AGENT,
        "accept_language": constants.DEFAULT_ACCEPT_LANGUAGE,
        "port": constants.PORT,
        "wait_ms": constants.DEFAULT_WAIT_MS,
        "debug_port": constants.DEFAULT_DEBUG_PORT,
        "executable_path": None,
        "extra_args": [],
        "seed_credential": "",
        "navigation_timeout_ms": constants.DEFAULT_NAVIGATION_TIMEOUT_MS,
        "pull_navigation_timeout_ms": constants.DEFAULT_PULL_NAVIGATION_TIMEOUT_MS,
        "upstream_timeout_ms": constants.DEFAULT_UPSTREAM_TIMEOUT_MS,
        "manual_poll_interval_ms": constants.DEFAULT_MANUAL_POLL_INTERVAL_MS,
        "manual_poll_max_ms": constants.DEFAULT_MANUAL_POLL_MAX_MS,
        "headless_engine": constants.ENGINE_CHROMIUM,
        "persist_credential": False,
    }


# env var -> (config key, parser). The first env var found wins for a key.
_ENV_OVERRIDES = (
    ("UPSTREAM", "upstream", "str"),
    ("UA", "user_agent", "str"),
    ("ACCEPT_LANGUAGE", "accept_language", "str"),
    ("PORT", "port", "int"),
    ("WAIT_MS", "wait_ms", "int"),
    ("DEBUG_PORT", "debug_port", "int"),
    ("BROWSER_EXECUTABLE_PATH", "executable_path", "str"),
    ("PUPPETEER_EXECUTABLE_PATH", "executable_path", "str"),
    ("CHROME_PATH", "executable_path", "str"),
    ("BROWSER_ARGS", "extra_args", "args"),
    ("PUPPETEER_ARGS", "extra_args", "args"),
    ("CF_COOKIE", "seed_credential", "str"),
    ("NAV_TIMEOUT_MS", "navigation_timeout_ms", "int"),
    ("PULL_TIMEOUT_MS", "pull_navigation_timeout_ms", "int"),
    ("UPSTREAM_TIMEOUT_MS", "upstream_timeout_ms", "int"),
    ("MANUAL_POLL_INTERVAL_MS", "manual_poll_interval_ms", "int"),
    ("MANUAL_POLL_MAX_MS", "manual_poll_max_ms", "int"),
    ("HEADLESS_ENGINE", "headless_engine", "str"),
    ("PERSIST_CREDENTIAL", "persist_credential", "bool"),
)


_UNPARSEABLE = object()


def _parse_env_value(raw: str, kind: str) -> Any:
    if kind == "int":
        try:
            return int(float(raw.strip()))
        except Exception:
            return _UNPARSEABLE
    if kind == "bool":
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if kind == "args":
        return [part for part in raw.split() if part]
    return raw.strip()


def _apply_env_overrides(config: dict, environ: Optional[Dict[str, str]] = None) -> None:
    env = os.environ if environ is None else environ
    seen_keys: set[str] = set()
    for env_name, key, kind in _ENV_OVERRIDES:
        if key in seen_keys:
            continue
        raw = env.get(env_name)
        if raw is None or raw == "":
            continue
        value = _parse_env_value(raw, kind)
        if value is _UNPARSEABLE:
            continue
        config[key] = value
        seen_keys.add(key)


def _apply_config_defaults(config: dict) -> None:
    """Apply default values to config dictionary."""
    for key, value in get_default_config().items():
        config.setdefault(key, value)

    # Normalize values that commonly arrive with the wrong shape from config.json
    upstream = str(config.get("upstream") or constants.DEFAULT_UPSTREAM).strip()
    config["upstream"] = upstream.rstrip("/")

    extra_args = config.get("extra_args")
    if isinstance(extra_args, str):
        config["extra_args"] = [part for part in extra_args.split() if part]
    elif not isinstance(extra_args, list):
        config["extra_args"] = []

    engine = str(config.get("headless_engine") or "").strip().lower()
    if engine not in constants.VALID_HEADLESS_ENGINES:
        engine = constants.ENGINE_CHROMIUM
    config["headless_engine"] = engine

    if not config.get("executable_path"):
        config["executable_path"] = None


def get_config(environ: Optional[Dict[str, str]] = None) -> dict:
    """
    Load configuration: defaults, then config.json, then environment variables.
    Returns a dictionary with all configuration values.
    """
    try:
        with open(_current_config_file, "r") as f:
            config = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        config = {}
    except Exception:
        config = {}
    if not isinstance(config, dict):
        config = {}

    _apply_env_overrides(config, environ)
    _apply_config_defaults(config)

    return config


def save_config(updates: dict) -> None:
    """
    Merge `updates` into config.json.

    Only the given keys are written, so environment-driven values are never frozen into the file.
    """
    try:
        try:
            with open(_current_config_file, "r") as f:
                on_disk = json.load(f)
        except Exception:
            on_disk = None
        if not isinstance(on_disk, dict):
            on_disk = {}
        on_disk.update(updates)

        tmp_path = f"{_current_config_file}.tmp"
        with open(tmp_path, "w") as f:
            json.dump(on_disk, f, indent=4)
        os.replace(tmp_path, _current_config_file)
    except Exception as e:
        print(f"Error saving config: {e}")


def persist_credential(header: str) -> None:
    """Store the captured credential header in config.json under `credential`."""
    save_config({"credential": header})
