"""Global configuration for the iftar planner."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "database_url": "",
    "app_host": "0.0.0.0",
    "app_port": 3002,
    "cors_allow_origins": "*",
    "bot_token": "",
    "mini_app_url": "http://localhost:5173",
    "admin_telegram_ids": "",
    "ramadan_start": "2026-02-17",
    "default_city": "astana",
    "prayer_times_url": "https://api.aladhan.com/v1/calendar",
    "prayer_times_method": 3,
    "prayer_cache_ttl_hours": 24,
    "prayer_cache_max_entries": 256,
    "http_timeout_seconds": 10.0,
    "enable_scheduler": False,
    "reminder_hour": 9,
    "stats_list_limit": 10,
    "seed_users": 12,
    "seed_events": 8,
    "seed_invitations_per_event": 4,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "database_url": str,
    "app_host": str,
    "app_port": int,
    "cors_allow_origins": str,
    "bot_token": str,
    "mini_app_url": str,
    "admin_telegram_ids": str,
    "ramadan_start": str,
    "default_city": str,
    "prayer_times_url": str,
    "prayer_times_method": int,
    "prayer_cache_ttl_hours": int,
    "prayer_cache_max_entries": int,
    "http_timeout_seconds": float,
    "enable_scheduler": bool,
    "reminder_hour": int,
    "stats_list_limit": int,
    "seed_users": int,
    "seed_events": int,
    "seed_invitations_per_event": int,
}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    database_url: str
    app_host: str
    app_port: int
    cors_allow_origins: str
    bot_token: str
    mini_app_url: str
    admin_telegram_ids: str
    ramadan_start: str
    default_city: str
    prayer_times_url: str
    prayer_times_method: int
    prayer_cache_ttl_hours: int
    prayer_cache_max_entries: int
    http_timeout_seconds: float
    enable_scheduler: bool
    reminder_hour: int
    stats_list_limit: int
    seed_users: int
    seed_events: int
    seed_invitations_per_event: int
    config_path: Path

    @property
    def sqlalchemy_url(self) -> str:
        return self.database_url or f"sqlite:///{self.database_path}"

    @property
    def prayer_cache_ttl(self) -> timedelta:
        return timedelta(hours=self.prayer_cache_ttl_hours)

    @property
    def ramadan_start_date(self) -> date:
        return date.fromisoformat(self.ramadan_start)

    @property
    def admin_ids(self) -> frozenset[int]:
        return frozenset(int(raw) for raw in _csv(self.admin_telegram_ids))

    @property
    def cors_origins(self) -> list[str]:
        return _csv(self.cors_allow_origins) or ["*"]


def _csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    if caster is str and isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"IFTAR_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = Path(database_path) if database_path else resolved_data / "iftar.db"
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("IFTAR_BASE_DIR", Path.cwd()))
    env_config = os.getenv("IFTAR_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "iftar.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("IFTAR_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("IFTAR_DB", toml_config.get("database_path")),
    )

    values = {key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS}
    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        config_path=config_path,
        **values,
    )
    if not settings.database_url:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
    }
    for key in DEFAULTS:
        payload[key] = getattr(settings, key)
    if payload["bot_token"]:
        payload["bot_token"] = "***"
    return payload


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# Iftar planner configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
