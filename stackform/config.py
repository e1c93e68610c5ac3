"""Compiler settings.

Numeric defaults (retry counts, probe timing) are configuration inputs, not
constants baked into the renderer. Values come from STACKFORM_* environment
variables via ``CompilerSettings.from_env()``.
"""
from __future__ import annotations

import logging
import os
from typing import Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_PLACEHOLDER_IMAGES: Tuple[str, ...] = (
    "alpine",
    "busybox",
    "changeme",
    "debian",
    "example/app",
    "nginx",
    "node",
    "python",
    "ubuntu",
    "your-registry/your-image",
)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not an integer, using {default}")
        return default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


class CompilerSettings(BaseModel):
    """Defaults and policy knobs for validation and rendering."""
    default_backoff_limit: int = 3
    max_backoff_limit: int = 10
    default_restart_policy: str = "Never"
    default_pull_policy: str = "IfNotPresent"
    probe_initial_delay: int = 10
    probe_period: int = 10
    probe_timeout: int = 5
    probe_failure_threshold: int = 3
    default_target_cpu_percent: int = 80
    placeholder_images: Tuple[str, ...] = Field(default=DEFAULT_PLACEHOLDER_IMAGES)
    managed_by: str = "stackform"
    max_workers: int = 1

    class Config:
        frozen = True

    @classmethod
    def from_env(cls) -> "CompilerSettings":
        """Load settings from environment variables."""
        defaults = cls()
        return cls(
            default_backoff_limit=_env_int("STACKFORM_DEFAULT_BACKOFF_LIMIT", defaults.default_backoff_limit),
            max_backoff_limit=_env_int("STACKFORM_MAX_BACKOFF_LIMIT", defaults.max_backoff_limit),
            default_restart_policy=os.getenv("STACKFORM_DEFAULT_RESTART_POLICY", defaults.default_restart_policy),
            default_pull_policy=os.getenv("STACKFORM_DEFAULT_PULL_POLICY", defaults.default_pull_policy),
            probe_initial_delay=_env_int("STACKFORM_PROBE_INITIAL_DELAY", defaults.probe_initial_delay),
            probe_period=_env_int("STACKFORM_PROBE_PERIOD", defaults.probe_period),
            probe_timeout=_env_int("STACKFORM_PROBE_TIMEOUT", defaults.probe_timeout),
            probe_failure_threshold=_env_int("STACKFORM_PROBE_FAILURE_THRESHOLD", defaults.probe_failure_threshold),
            default_target_cpu_percent=_env_int(
                "STACKFORM_DEFAULT_TARGET_CPU_PERCENT", defaults.default_target_cpu_percent
            ),
            placeholder_images=_env_list("STACKFORM_PLACEHOLDER_IMAGES", defaults.placeholder_images),
            managed_by=os.getenv("STACKFORM_MANAGED_BY", defaults.managed_by),
            max_workers=_env_int("STACKFORM_MAX_WORKERS", defaults.max_workers),
        )


_settings: CompilerSettings | None = None


def get_settings() -> CompilerSettings:
    """Return process-wide settings, loading them from the environment once."""
    global _settings
    if _settings is None:
        _settings = CompilerSettings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None


__all__ = ["CompilerSettings", "DEFAULT_PLACEHOLDER_IMAGES", "get_settings", "reset_settings"]
