"""Settings and signature tables.

The keyword/whitelist tables ship as ``data/signatures.json``. A user settings
file (``.settings.json`` in the working directory, or the path in
``KENIBOX_SETTINGS``) can override any table as well as the scan limits.
"""
import functools
import json
import logging
import os
from dataclasses import dataclass, field, fields, replace

from .errors import ConfigError

log = logging.getLogger(__name__)

SETTINGS_FILE = ".settings.json"
SIGNATURES_FILE = os.path.join(os.path.dirname(__file__), "data", "signatures.json")


@dataclass(frozen=True)
class Config:
    skip_directories: tuple = ()
    skip_roots: tuple = ()
    suspicious_extensions: tuple = ()
    cheat_domains: tuple = ()
    mod_keywords: tuple = ()
    mod_whitelist: tuple = ()
    cheat_process_keywords: tuple = ()
    analysis_process_keywords: tuple = ()
    library_keywords: tuple = ()
    module_allow_contains: tuple = ()
    module_allow_prefixes: tuple = ()
    system_library_dirs: dict = field(default_factory=dict)
    recording_apps: tuple = ()
    recording_false_positives: tuple = ()
    grabber_markers: tuple = ()
    watched_services: tuple = ()
    security_service_markers: dict = field(default_factory=dict)
    log_markers: tuple = ()
    ignored_history_prefixes: tuple = ()
    jar_max_depth: int = 15
    extension_max_depth: int = 10
    recent_days: int = 7
    history_lines: int = 50
    log_lines: int = 100
    usb_window_minutes: int = 30
    command_timeout: int = 60

    def with_overrides(self, **overrides):
        known = {f.name for f in fields(self)}
        clean = {}
        for key, value in overrides.items():
            if key not in known:
                log.debug("Ignoring unknown setting %r", key); continue
            clean[key] = tuple(value) if isinstance(value, list) else value
        return replace(self, **clean)


def _read_json(path):
    try:
        with open(path, "r", encoding="utf-8") as f: return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(path, f"Invalid JSON ({e.msg} at line {e.lineno})") from e


def load_signatures(path=SIGNATURES_FILE):
    return Config().with_overrides(**_read_json(path))


def settings_path():
    return os.environ.get("KENIBOX_SETTINGS") or SETTINGS_FILE


def load_settings(path=None):
    path = path or settings_path()
    if not os.path.exists(path): return {}
    data = _read_json(path)
    if not isinstance(data, dict): raise ConfigError(path, "Settings must be a JSON object")
    return data


def save_settings(data, path=None):
    path = path or settings_path()
    with open(path, "w", encoding="utf-8") as f: json.dump(data, f, indent=2)


def load_config(settings=None):
    """Signature tables with the user's settings applied on top."""
    config = load_signatures()
    if settings is None: settings = load_settings()
    return config.with_overrides(**settings) if settings else config


@functools.lru_cache(maxsize=1)
def default_config():
    return load_signatures()
