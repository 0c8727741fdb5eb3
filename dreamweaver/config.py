# -*- coding: utf-8 -*-
"""Configuration for DreamWeaver (JSON on disk + environment overrides).

Backend selection is resolved here once into a tagged value:
``RemoteBackend`` when a remote URL and key are both configured, otherwise
``LocalBackend``.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union
import json
import logging
import os

APP_NAME = "dreamweaver"

DEFAULT_CONFIG: Dict[str, object] = {
    "supabase_url": "",
    "supabase_key": "",
    "supabase_access_token": "",
    "local_db_path": "dreamweaver_local.sqlite3",
    "log_level": "INFO",
}

ENV_VARS: Dict[str, str] = {
    "supabase_url": "DREAMWEAVER_SUPABASE_URL",
    "supabase_key": "DREAMWEAVER_SUPABASE_KEY",
    "supabase_access_token": "DREAMWEAVER_ACCESS_TOKEN",
    "local_db_path": "DREAMWEAVER_DB",
    "log_level": "DREAMWEAVER_LOG_LEVEL",
}


# ---------------------------------------------------------------------
# Config file
# ---------------------------------------------------------------------

def _config_dir() -> Path:
    """Return the config directory path for this platform."""
    if os.name == "nt":
        base = os.environ.get("APPDATA", os.path.expanduser("~\\AppData\\Roaming"))
        return Path(base) / APP_NAME
    base = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(base) / APP_NAME

def _config_path() -> Path:
    return _config_dir() / "config.json"

def load_config() -> Dict[str, object]:
    """Load the merged configuration (defaults + file)."""
    path = _config_path()
    merged = json.loads(json.dumps(DEFAULT_CONFIG))
    if not path.exists():
        return merged
    with path.open("r", encoding="utf-8") as f:
        merged.update(json.load(f))
    return merged

def save_config(cfg: Dict[str, object]) -> None:
    """Persist *cfg* to the JSON config file."""
    _config_dir().mkdir(parents=True, exist_ok=True)
    with _config_path().open("w", encoding="utf-8") as f:
        json.dump(cfg, f, indent=2)


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class RemoteBackend:
    url: str
    api_key: str
    access_token: Optional[str] = None


@dataclass(frozen=True)
class LocalBackend:
    path: str


Backend = Union[RemoteBackend, LocalBackend]


@dataclass(frozen=True)
class Settings:
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_access_token: str = ""
    local_db_path: str = "dreamweaver_local.sqlite3"
    log_level: str = "INFO"

    @property
    def remote_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def backend(self) -> Backend:
        if self.remote_configured:
            return RemoteBackend(
                url=self.supabase_url,
                api_key=self.supabase_key,
                access_token=self.supabase_access_token or None,
            )
        return LocalBackend(path=self.local_db_path)


def load_settings(environ: Optional[Dict[str, str]] = None) -> Settings:
    """Defaults, then the JSON config file, then environment variables."""
    env = os.environ if environ is None else environ
    cfg = load_config()
    for name, var in ENV_VARS.items():
        if env.get(var):
            cfg[name] = env[var]
    return Settings(**{name: str(cfg.get(name) or DEFAULT_CONFIG[name]) for name in DEFAULT_CONFIG})


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
