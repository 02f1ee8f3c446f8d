"""YAML configuration loader.

Loads a single YAML file layered over the BECA_* environment config.
When no YAML is provided, env vars work exactly as before.

Example YAML:
    beca:
      api_url: http://localhost:7860
      auto_review: true
      max_suggestions: 3
      diagnostics_debounce_seconds: 3.0
      hover_cache_ttl_seconds: 300
      code_languages: [python, typescript, go]
"""
from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from .config import BecaConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

_CONFIG_CANDIDATES = (Path(".beca") / "beca.yaml", Path("beca.yaml"))


def find_config_file(cwd: Path) -> Path | None:
    """Return the first existing config file under *cwd*, if any.

    ``.beca/beca.yaml`` is preferred over a top-level ``beca.yaml``.
    """
    for candidate in _CONFIG_CANDIDATES:
        path = cwd / candidate
        if path.is_file():
            return path
    return None


def _coerce(name: str, value: Any, default: Any) -> Any:
    if name == "code_languages":
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return tuple(str(v) for v in value)
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value if value is None else str(value)


def apply_overrides(config: BecaConfig, raw: dict[str, Any]) -> BecaConfig:
    """Apply a mapping of field overrides to *config* in place."""
    known = {f.name: f for f in fields(BecaConfig)}
    for key, value in raw.items():
        if key not in known:
            logger.warning("Ignoring unknown config key: %s", key)
            continue
        current = getattr(config, key)
        try:
            setattr(config, key, _coerce(key, value, current))
        except (TypeError, ValueError) as exc:
            raise ConfigError(key, f"bad value {value!r}: {exc}") from exc
    if "workspace_root" in raw and "workspace_name" not in raw:
        config.workspace_name = Path(config.workspace_root).name
    return config


def load_yaml_config(path: str | Path) -> BecaConfig:
    """Load env config and layer the ``beca:`` section of *path* on top."""
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ConfigError(str(path), str(exc)) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(str(path), f"YAML parse error: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(str(path), "top-level YAML must be a mapping")

    section = data.get("beca", {}) or {}
    if not isinstance(section, dict):
        raise ConfigError(str(path), "'beca' section must be a mapping")

    config = BecaConfig.from_env()
    try:
        apply_overrides(config, section)
    except ConfigError as exc:
        raise ConfigError(str(path), exc.reason) from exc
    logger.info(
        "Loaded YAML config path=%s keys=%s",
        path, ", ".join(sorted(section)) or "<none>",
    )
    return config
