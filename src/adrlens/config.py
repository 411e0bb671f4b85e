from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, fields, replace
from datetime import date, datetime, time
from pathlib import Path
from typing import Mapping, TypeAlias
import tomllib

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "adrlens.toml"
CONFIG_SECTION = "adrlens"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]

_ENV_OVERRIDES: dict[str, str] = {
    "ADRLENS_EXECUTABLE": "executable",
    "ADRLENS_ADR_DIRECTORY": "adr_directory",
}
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
# Setting names used by editor clients that differ from the field names.
_SETTING_ALIASES: dict[str, str] = {
    "path": "executable",
    "cli_path": "executable",
    "adr_dir": "adr_directory",
    "enable_ml_features": "ml_enabled",
    "template": "template_format",
    "auto_detect_drift": "auto_rescan",
    "show_inline_warnings": "inline_diagnostics",
    "status_bar_enabled": "status_indicator",
    "max_diagnostics": "max_diagnostics_per_file",
    "lsp_max_diagnostics": "max_diagnostics_per_file",
    "adr_template": "template_format",
    "drift_watch_mode": "auto_rescan",
    "ui_show_status_bar": "status_indicator",
    "show_status_bar": "status_indicator",
}


@dataclass(frozen=True)
class AdrLensConfig:
    executable: str = "adrscan"
    adr_directory: str = "docs/adr"
    document_suffixes: tuple[str, ...] = (".adr.md", ".md")
    ml_enabled: bool = True
    confidence_threshold: float = 0.7
    template_format: str = "madr"
    auto_rescan: bool = True
    inline_diagnostics: bool = True
    status_indicator: bool = True
    max_diagnostics_per_file: int = 100
    managed_debounce_ms: int = 1000
    workspace_debounce_ms: int = 5000

    @classmethod
    def from_table(cls, table: Mapping[str, object]) -> AdrLensConfig:
        """Build a config from a settings table, ignoring unknown or ill-typed keys."""
        config = cls()
        updates: dict[str, object] = {}
        for raw_key, value in table.items():
            name = _field_name(str(raw_key))
            if name is None or value is None:
                continue
            coerced = _coerce(name, value, getattr(config, name))
            if coerced is None:
                logger.warning("ignoring invalid value for %s: %r", raw_key, value)
                continue
            updates[name] = coerced
        return replace(config, **updates)

    def with_overrides(self, table: Mapping[str, object]) -> AdrLensConfig:
        merged = merge_payload(dict(table), self.as_table())
        return AdrLensConfig.from_table(merged)

    def as_table(self) -> TomlTable:
        table: TomlTable = {}
        for item in fields(self):
            value = getattr(self, item.name)
            table[item.name] = list(value) if isinstance(value, tuple) else value
        return table


_FIELD_NAMES = {item.name for item in fields(AdrLensConfig)}


def _field_name(raw_key: str) -> str | None:
    key = raw_key.removeprefix(f"{CONFIG_SECTION}.")
    key = _CAMEL_RE.sub("_", key).lower().replace("-", "_").replace(".", "_")
    key = _SETTING_ALIASES.get(key, key)
    return key if key in _FIELD_NAMES else None


def _coerce(name: str, value: object, default: object) -> object | None:
    if isinstance(default, bool):
        return _as_bool(value)
    if isinstance(default, int):
        if isinstance(value, bool):
            return None
        try:
            number = int(value)
        except (TypeError, ValueError):
            return None
        return number if number >= 0 else None
    if isinstance(default, float):
        if isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        if name == "confidence_threshold":
            number = min(1.0, max(0.0, number))
        return number
    if isinstance(default, tuple):
        items = tuple(_normalize_name_list(value))
        return items or None
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        logger.warning("cannot read %s: %s", path, exc)
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        logger.warning("invalid TOML in %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def adrlens_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get(CONFIG_SECTION, {})
    return section if isinstance(section, dict) else {}


def env_overrides(environ: Mapping[str, str] | None = None) -> TomlTable:
    source = os.environ if environ is None else environ
    table: TomlTable = {}
    for env_key, name in _ENV_OVERRIDES.items():
        text = source.get(env_key, "").strip()
        if text:
            table[name] = text
    return table


def resolve_config(
    root: Path | None = None,
    *,
    settings: Mapping[str, object] | None = None,
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AdrLensConfig:
    """Defaults, then ``adrlens.toml``, then editor settings, then environment."""
    config = AdrLensConfig.from_table(adrlens_defaults(root, config_path))
    if settings:
        config = config.with_overrides(_flatten_settings(settings))
    overrides = env_overrides(environ)
    if overrides:
        config = config.with_overrides(overrides)
    return config


def _flatten_settings(settings: Mapping[str, object], prefix: str = "") -> dict[str, object]:
    # Editors send either {"adrlens": {...}} or dotted/nested groups such as
    # {"ml": {"enabled": true}}; nested groups collapse to "<group>_<key>".
    flat: dict[str, object] = {}
    for key, value in settings.items():
        name = str(key)
        if not prefix and name == CONFIG_SECTION and isinstance(value, Mapping):
            flat.update(_flatten_settings(value))
            continue
        full = f"{prefix}_{name}" if prefix else name
        if isinstance(value, Mapping):
            flat.update(_flatten_settings(value, full))
            continue
        flat[full] = value
    return flat


def _normalize_name_list(value: object) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def merge_payload(payload: Mapping[str, object], defaults: Mapping[str, object]) -> dict[str, object]:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged
