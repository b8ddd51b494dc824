"""YAML loader and watch-list persistence for the settings file.

``load_app_config`` consumes one YAML file, validates it via models.py and
returns typed objects. ``SettingsStore`` additionally writes watch-list edits
coming from the control plane (``addCoin``/``removeCoin``) back into the same
file. Only ``markets.watch_symbols`` changes value, but the whole file is
rewritten with ``yaml.safe_dump``: other keys keep their values and order,
comments are lost.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml
from pydantic import ValidationError

from coin_watchdog.core.errors import ConfigurationError

from .models import AppConfig

LOGGER = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = Path("config") / "settings.yml"
CONFIG_PATH_ENV = "COIN_WATCHDOG_CONFIG"


def _read_yaml(path: Path) -> Mapping:
    """Read a YAML file and return a mapping (empty dict if file is blank)."""

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as fp:
        try:
            data = yaml.safe_load(fp) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Malformed YAML in {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ValueError(f"YAML root must be a mapping in {path}")
    return data


def resolve_config_path(default: Path | str = _DEFAULT_CONFIG_PATH) -> Path:
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return Path(default)


def load_app_config(path: Path | str = _DEFAULT_CONFIG_PATH) -> AppConfig:
    """Load settings.yml (exchange, credentials, watch-list, backoff, telemetry).

    Validation failures are re-raised as :class:`ConfigurationError` so the
    runtime can keep its last good configuration instead of crashing.
    """

    config_path = Path(path)
    data = _read_yaml(config_path)
    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings in {config_path}: {exc}") from exc


class SettingsStore:
    """File-backed settings with watch-list write-back."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> AppConfig:
        return load_app_config(self.path)

    def watch_symbols(self) -> List[str]:
        return self.load().watch_symbols

    def add_watch_symbol(self, symbol: str) -> List[str]:
        symbols = self.watch_symbols()
        if symbol in symbols:
            return symbols
        return self.save_watch_symbols([*symbols, symbol])

    def remove_watch_symbol(self, symbol: str) -> List[str]:
        symbols = [entry for entry in self.watch_symbols() if entry != symbol]
        return self.save_watch_symbols(symbols)

    def save_watch_symbols(self, symbols: List[str]) -> List[str]:
        raw: Dict[str, Any] = dict(_read_yaml(self.path))
        markets = dict(raw.get("markets") or {})
        markets["watch_symbols"] = list(symbols)
        raw["markets"] = markets
        try:
            with self.path.open("w", encoding="utf-8") as fp:
                yaml.safe_dump(raw, fp, sort_keys=False, allow_unicode=True)
        except OSError as exc:  # pragma: no cover - filesystem errors are rare
            raise ConfigurationError(f"Failed to write {self.path}: {exc}") from exc
        LOGGER.info("Watch-list saved", extra={"symbols": list(symbols)})
        return list(symbols)


__all__ = ["SettingsStore", "load_app_config", "resolve_config_path", "CONFIG_PATH_ENV"]
