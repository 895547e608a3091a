from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class ReasoningConfig(BaseModel):
    """Settings for the reasoning job queue."""

    concurrency: int = Field(default=3, ge=1)
    max_retries: int = Field(default=4, ge=1)
    retry_delays: list[int] = Field(default_factory=lambda: [1000, 2000, 4000, 8000])
    debug: bool = False
    generator_timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("retry_delays")
    @classmethod
    def _check_delays(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("retry_delays must contain at least one delay")
        if any(delay < 0 for delay in value):
            raise ValueError("retry_delays must not be negative")
        return value


class XRayConfig(BaseModel):
    """Top-level configuration model."""

    project_id: Optional[str] = None
    database_url: Optional[str] = None
    reasoning: ReasoningConfig = ReasoningConfig()


DEFAULT_REASONING_CONFIG = ReasoningConfig()


def create_reasoning_config(**overrides: Any) -> ReasoningConfig:
    """Return the default reasoning config with ``overrides`` applied."""
    data = DEFAULT_REASONING_CONFIG.model_dump()
    data.update(overrides)
    return ReasoningConfig(**data)


CONFIG_PATH_ENV = "XRAY_CONFIG"
DEFAULT_CONFIG_FILE = "xray.yaml"

# First set variable wins.
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "database_url": ("XRAY_DATABASE_URL", "DATABASE_URL"),
    "project_id": ("XRAY_PROJECT_ID",),
}


def _read_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def _env_overrides() -> dict[str, str]:
    overrides = {}
    for field, names in ENV_OVERRIDES.items():
        value = next((os.environ[n] for n in names if os.environ.get(n)), None)
        if value is not None:
            overrides[field] = value
    return overrides


def load_config(path: Optional[str] = None) -> XRayConfig:
    """Build the tracing configuration from YAML and the environment.

    The file is ``path``, else ``$XRAY_CONFIG``, else ``xray.yaml`` in the
    working directory; a missing file means defaults. ``XRAY_DATABASE_URL``
    (or ``DATABASE_URL``) and ``XRAY_PROJECT_ID`` take precedence over the
    file so a deployment can repoint storage without editing it.
    """
    source = Path(path or os.getenv(CONFIG_PATH_ENV, DEFAULT_CONFIG_FILE))
    data = _read_yaml(source) if source.is_file() else {}
    data.update(_env_overrides())
    return XRayConfig.model_validate(data)
