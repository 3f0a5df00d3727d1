"""
Layered configuration loader for photoindex.

Layered config: system config.yaml + per-user user-settings.yaml + env vars.
User settings take precedence over system defaults; env vars override both. The loader is only the
source; components receive an immutable IndexSettings built from it.
"""

import os
import logging
import platform
from pathlib import Path
from typing import Any, Iterable, List, Optional

import yaml

from photoindex.utils.settings import IndexSettings, normalize_language

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).parent.parent.parent
_CONFIG_PATH = _PROJECT_ROOT / "config.yaml"

# env key → config.yaml dotted path
_ENV_OVERRIDES = {
    "PHOTOINDEX_DB_PATH": "index.database_path",
    "PHOTOINDEX_LANGUAGE": "index.language",
}


def _resolve_user_settings_path() -> Optional[Path]:
    """Resolve user-settings.yaml path from env var or platform default."""
    env_path = os.environ.get("PHOTOINDEX_USER_SETTINGS_PATH")
    if env_path:
        return Path(env_path)

    system = platform.system()
    if system == "Darwin":
        base = Path.home() / "Library" / "Application Support" / "PhotoIndex"
    elif system == "Windows":
        base = Path(os.environ.get("APPDATA", str(Path.home()))) / "PhotoIndex"
    else:
        xdg = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))
        base = Path(xdg) / "PhotoIndex"

    return base / "user-settings.yaml"


def expand_path(value) -> Path:
    """Expand ~ and environment variables, return an absolute path."""
    return Path(os.path.expandvars(os.path.expanduser(str(value)))).absolute()


class AppConfig:
    """Layered configuration: user-settings.yaml overrides config.yaml."""

    def __init__(self, path: Path = _CONFIG_PATH,
                 user_settings_path: Optional[Path] = None):
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                self._data: dict = yaml.safe_load(f) or {}
            logger.info(f"Loaded system config from {path}")
        else:
            self._data = {}
            logger.debug(f"config.yaml not found at {path}, using defaults")

        self._user_data: dict = {}
        self._env_data: dict = {}
        self._user_settings_path = user_settings_path or _resolve_user_settings_path()
        self._load_user_settings()

        self._apply_env_overrides()

    # ── public API ──────────────────────────────────────

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """
        Retrieve a value by dotted path.
        Env overrides win, then user settings, then system config.

        Example:
            cfg.get("index.language")         -> "English"
            cfg.get("index.batch_size", 500)  -> 500
        """
        for layer in (self._env_data, self._user_data, self._data):
            val = self._get_from_dict(layer, dotted_key)
            if val is not None:
                return val
        return default

    def section(self, key: str) -> dict:
        """Return a top-level section as a dict, with user and env overrides merged."""
        merged = {}
        for layer in (self._data, self._user_data, self._env_data):
            value = layer.get(key)
            if isinstance(value, dict):
                merged.update(value)
        return merged

    def set_user_value(self, dotted_key: str, value: Any) -> None:
        """Set a user-level value and persist user-settings.yaml."""
        self._set_dotted(self._user_data, dotted_key, value)
        self.save_user_settings()

    def save_user_settings(self) -> None:
        if not self._user_settings_path:
            raise RuntimeError("No user settings path configured")
        self._user_settings_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._user_settings_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self._user_data, f, allow_unicode=True, sort_keys=True)
        logger.info(f"Saved user settings to {self._user_settings_path}")

    @property
    def user_settings_path(self) -> Optional[Path]:
        return self._user_settings_path

    def to_settings(self, **overrides) -> IndexSettings:
        """Build the immutable IndexSettings passed into every entry point."""
        values = {k: v for k, v in self.section("index").items() if v is not None}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return IndexSettings(**values)

    # ── internals ───────────────────────────────────────

    def _load_user_settings(self):
        """Load user-settings.yaml if it exists."""
        if self._user_settings_path and self._user_settings_path.exists():
            try:
                with open(self._user_settings_path, "r", encoding="utf-8") as f:
                    self._user_data = yaml.safe_load(f) or {}
                logger.info(f"Loaded user settings from {self._user_settings_path}")
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load user settings: {e}")
                self._user_data = {}
        else:
            self._user_data = {}

    @staticmethod
    def _get_from_dict(data: dict, dotted_key: str) -> Any:
        """Traverse nested dict by dotted key. Returns None if not found."""
        node = data
        for p in dotted_key.split("."):
            if not isinstance(node, dict):
                return None
            node = node.get(p)
            if node is None:
                return None
        return node

    def _apply_env_overrides(self):
        for env_key, dotted_path in _ENV_OVERRIDES.items():
            val = os.environ.get(env_key)
            if val is not None:
                self._set_dotted(self._env_data, dotted_path, val)
                logger.debug(f"env override: {env_key} -> {dotted_path}")

    @staticmethod
    def _set_dotted(data: dict, dotted_key: str, value: Any):
        parts = dotted_key.split(".")
        node = data
        for p in parts[:-1]:
            node = node.setdefault(p, {})
        node[parts[-1]] = value


# ── persistent preference helpers ──────────────────────

def get_image_directories(cfg: AppConfig) -> List[str]:
    return list(cfg.get("index.image_directories", []) or [])


def add_image_directories(cfg: AppConfig, directories: Iterable[str]) -> List[str]:
    """
    Append directories to the configured image roots.

    Paths are expanded to absolute form and de-duplicated case-insensitively
    against what is already configured. Returns the final list.
    """
    final = get_image_directories(cfg)
    known = {d.lower() for d in final}
    added = 0
    for directory in directories:
        expanded = str(expand_path(directory))
        if expanded.lower() in known:
            logger.debug(f"Directory already configured: {expanded}")
            continue
        final.append(expanded)
        known.add(expanded.lower())
        added += 1

    cfg.set_user_value("index.image_directories", final)
    logger.info(f"Added {added} directories to image directories configuration. "
                f"Total directories: {len(final)}")
    return final


def get_meta_language(cfg: AppConfig) -> str:
    return normalize_language(cfg.get("index.language", "English"))


def set_meta_language(cfg: AppConfig, language: str) -> str:
    canonical = normalize_language(language)
    cfg.set_user_value("index.language", canonical)
    return canonical


def set_index_path(cfg: AppConfig, database_path: str) -> Path:
    """Persist the database file location, creating its parent directory."""
    path = expand_path(database_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    cfg.set_user_value("index.database_path", str(path))
    return path
