from __future__ import annotations

import os
from dataclasses import dataclass

from .models import DEFAULT_DELAY_MS, DEFAULT_MAX_ITERATIONS, StepConfig

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class FlowSettings:
    """Engine settings loaded from environment with fail-fast validation."""

    default_max_iterations: int = DEFAULT_MAX_ITERATIONS
    default_delay_ms: int = DEFAULT_DELAY_MS
    hash_timestamps: bool = True

    @classmethod
    def from_env(cls) -> "FlowSettings":
        return cls(
            default_max_iterations=_get_env_int(
                "FLOW_DEFAULT_MAX_ITERATIONS", default=DEFAULT_MAX_ITERATIONS, minimum=1, maximum=10_000
            ),
            default_delay_ms=_get_env_int("FLOW_DEFAULT_DELAY_MS", default=DEFAULT_DELAY_MS, minimum=0, maximum=600_000),
            hash_timestamps=_get_env_bool("FLOW_HASH_TIMESTAMPS", default=True),
        ).normalized()

    def normalized(self) -> "FlowSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        if isinstance(self.default_max_iterations, bool) or not isinstance(self.default_max_iterations, int):
            raise ValueError(f"default_max_iterations must be an integer, got: {self.default_max_iterations!r}")
        if isinstance(self.default_delay_ms, bool) or not isinstance(self.default_delay_ms, int):
            raise ValueError(f"default_delay_ms must be an integer, got: {self.default_delay_ms!r}")
        if self.default_delay_ms < 0:
            raise ValueError(f"FLOW_DEFAULT_DELAY_MS must be >= 0, got: {self.default_delay_ms}")
        return FlowSettings(
            default_max_iterations=max(1, self.default_max_iterations),
            default_delay_ms=self.default_delay_ms,
            hash_timestamps=bool(self.hash_timestamps),
        )

    @property
    def step_defaults(self) -> StepConfig:
        return StepConfig(max_iterations=self.default_max_iterations, delay_ms=self.default_delay_ms)


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound.

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got: {raw!r}")
