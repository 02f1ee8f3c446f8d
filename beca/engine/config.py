"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via BECA_* env vars or a
``beca.yaml`` file (see yaml_config).
"""
from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


# Synchronous callback for engine state changes (task created/updated).
# Signature: def callback(message: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], None]

DEFAULT_CODE_LANGUAGES: tuple[str, ...] = (
    "javascript", "typescript", "python", "java", "csharp",
    "cpp", "c", "go", "rust", "php", "ruby", "swift", "kotlin",
)

_TRUTHY = {"1", "true", "yes", "on"}


def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set, logging instead of propagating errors."""
    if callback is None:
        return
    try:
        callback(event)
    except Exception:
        # Never let a UI callback break engine state transitions
        logger.exception("Event callback failed type=%s", event.get("type"))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass
class BecaConfig:
    """Coordination host configuration."""

    # Backend
    api_url: str = "http://localhost:7860"
    request_timeout_seconds: float = 60.0

    # Diagnostics: trailing-edge debounce shared by all documents.
    auto_review: bool = True
    diagnostics_debounce_seconds: float = 3.0
    diagnostics_cache_ttl_seconds: float = 60.0

    # Completions: per-keystroke trigger, rate limited.
    max_suggestions: int = 3
    completion_min_interval_seconds: float = 2.0
    completion_min_prefix_length: int = 3

    # Hover
    hover_cache_ttl_seconds: float = 300.0
    hover_min_word_length: int = 3

    # Save review
    review_max_insights: int = 5
    code_languages: tuple[str, ...] = DEFAULT_CODE_LANGUAGES

    # Host UI
    confirm_timeout_seconds: float = 120.0
    # Set to 0 (or a negative value) to disable the periodic check.
    connection_check_interval_seconds: float = 60.0

    workspace_root: str = field(default_factory=lambda: str(Path.cwd()))
    workspace_name: str | None = None

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.workspace_name:
            self.workspace_name = Path(self.workspace_root).name

    @classmethod
    def from_env(cls) -> BecaConfig:
        """Load configuration from BECA_* environment variables."""
        beca_vars = {
            k: v for k, v in os.environ.items() if k.startswith("BECA_")
        }
        if beca_vars:
            logger.info(
                "BecaConfig.from_env: BECA_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(beca_vars.items())),
            )
        else:
            logger.debug("BecaConfig.from_env: no BECA_* env vars set, using defaults")

        config = cls(
            api_url=os.getenv("BECA_API_URL", cls.api_url),
            request_timeout_seconds=float(os.getenv(
                "BECA_REQUEST_TIMEOUT", str(cls.request_timeout_seconds)
            )),
            auto_review=_env_bool("BECA_AUTO_REVIEW", cls.auto_review),
            diagnostics_debounce_seconds=float(os.getenv(
                "BECA_DIAGNOSTICS_DEBOUNCE",
                str(cls.diagnostics_debounce_seconds),
            )),
            diagnostics_cache_ttl_seconds=float(os.getenv(
                "BECA_DIAGNOSTICS_TTL",
                str(cls.diagnostics_cache_ttl_seconds),
            )),
            max_suggestions=int(os.getenv(
                "BECA_MAX_SUGGESTIONS", str(cls.max_suggestions)
            )),
            completion_min_interval_seconds=float(os.getenv(
                "BECA_COMPLETION_MIN_INTERVAL",
                str(cls.completion_min_interval_seconds),
            )),
            hover_cache_ttl_seconds=float(os.getenv(
                "BECA_HOVER_TTL", str(cls.hover_cache_ttl_seconds)
            )),
            confirm_timeout_seconds=float(os.getenv(
                "BECA_CONFIRM_TIMEOUT", str(cls.confirm_timeout_seconds)
            )),
            connection_check_interval_seconds=float(os.getenv(
                "BECA_CONNECTION_CHECK_INTERVAL",
                str(cls.connection_check_interval_seconds),
            )),
            workspace_root=os.getenv("BECA_WORKSPACE_ROOT") or str(Path.cwd()),
            log_level=os.getenv("BECA_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "BecaConfig.from_env: api_url=%s workspace=%s auto_review=%s log_level=%s",
            config.api_url, config.workspace_root,
            config.auto_review, config.log_level,
        )
        return config
