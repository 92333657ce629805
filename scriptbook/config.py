"""
Settings: runtime options read from SCRIPTBOOK_* environment variables.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "SCRIPTBOOK_"


def _env(name: str) -> Optional[str]:
    value = os.environ.get(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_float(name: str) -> Optional[float]:
    value = _env(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {value!r}") from None


class Settings(BaseModel):
    """Options shared by sessions, the kernel provider and the CLI."""

    execute_timeout: Optional[float] = Field(default=None, gt=0)
    start_method: str = "spawn"
    poll_interval: float = Field(default=0.2, gt=0)
    shutdown_timeout: float = Field(default=5.0, ge=0)
    sequential: bool = False
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """
        Build settings from the environment.

        Args:
            **overrides: Values that win over the environment (None is ignored)

        Returns:
            Validated Settings
        """
        data = {}
        timeout = _env_float("EXECUTE_TIMEOUT")
        if timeout is not None:
            data["execute_timeout"] = timeout
        start_method = _env("START_METHOD")
        if start_method is not None:
            data["start_method"] = start_method
        poll = _env_float("POLL_INTERVAL")
        if poll is not None:
            data["poll_interval"] = poll
        shutdown = _env_float("SHUTDOWN_TIMEOUT")
        if shutdown is not None:
            data["shutdown_timeout"] = shutdown
        sequential = _env("SEQUENTIAL")
        if sequential is not None:
            data["sequential"] = sequential.lower() in ("1", "true", "yes", "on")
        log_level = _env("LOG_LEVEL")
        if log_level is not None:
            data["log_level"] = log_level.upper()

        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)
