from .models import AppConfig, ConsulConfig, LoggingConfig
from pathlib import Path
import tomllib

def _deep_update(base: dict, updates: dict) -> dict:
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _map_toml_config(data: dict) -> dict:
    mapped: dict = {}

    for key in ["name", "node_id", "environment"]:
        if key in data:
            mapped[key] = data[key]

    consul_cfg = data.get("consul", {})
    if consul_cfg:
        mapped["consul"] = {k: v for k, v in consul_cfg.items() if k in ConsulConfig.model_fields}

    logger_cfg = data.get("logger", data.get("logging", {}))
    if logger_cfg:
        mapped.setdefault("logging", {})
        if "level" in logger_cfg:
            mapped["logging"]["level"] = str(logger_cfg["level"]).upper()
        if "format" in logger_cfg:
            mapped["logging"]["format"] = str(logger_cfg["format"]).lower()

    return mapped


def load_config(config_path: Path = None) -> AppConfig:
    if config_path is None:
        candidates = [
            Path.cwd() / "config.toml",
            Path(__file__).resolve().parents[3] / "config.toml",
        ]
        config_path = next((p for p in candidates if p.exists()), None)
    if not config_path:
        return AppConfig()

    with open(config_path, "rb") as f:
        raw = tomllib.load(f)

    base = AppConfig().model_dump()
    merged = _deep_update(base, _map_toml_config(raw))
    return AppConfig.model_validate(merged)


settings = load_config()

def get_settings() -> AppConfig:
    return settings

def update_settings(new_settings: AppConfig):
    global settings
    settings = new_settings
