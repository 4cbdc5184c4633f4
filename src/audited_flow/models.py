from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

CAPABILITY_NAMES: tuple[str, ...] = ("draft", "critique", "revise")

DEFAULT_MAX_ITERATIONS = 3
DEFAULT_DELAY_MS = 0


class Phase(str, Enum):
    INVALID = "invalid"
    DRAFT_ERROR = "draft:error"
    CRITIQUE_ERROR = "critique:error"
    REVISE_ERROR = "revise:error"
    DRAFT_ACCEPTED = "draft:accepted"
    REVISE_ACCEPTED = "revise:accepted"
    REVISE_CAPPED = "revise:capped"

    @property
    def is_failure(self) -> bool:
        return self in _FAILURE_PHASES


_FAILURE_PHASES = frozenset({Phase.INVALID, Phase.DRAFT_ERROR, Phase.CRITIQUE_ERROR, Phase.REVISE_ERROR})


@dataclass(frozen=True)
class StepConfig:
    """Loop controls for one step, resolved once before the step runs."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    delay_ms: int = DEFAULT_DELAY_MS

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000.0


def _coerce_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"{name} must be an integer, got: {value!r}")


@dataclass(frozen=True)
class Step:
    """One Draft -> Critique -> Revise unit.

    The three capabilities are optional at construction time so that a
    malformed descriptor can still be placed in a step list; the engine
    rejects it with an ``invalid`` audit entry when the step is reached.
    ``None`` for ``max_iterations`` or ``delay_ms`` defers to the engine
    settings.
    """

    draft: Callable[..., Any] | None = None
    critique: Callable[..., Any] | None = None
    revise: Callable[..., Any] | None = None
    max_iterations: int | None = None
    delay_ms: int | None = None

    @classmethod
    def from_mapping(cls, descriptor: Mapping[str, Any]) -> "Step":
        """Build a step from a plain dict descriptor (snake_case or camelCase keys)."""
        max_iterations = descriptor.get("max_iterations", descriptor.get("maxIterations"))
        delay_ms = descriptor.get("delay_ms", descriptor.get("delayMs"))
        return cls(
            draft=descriptor.get("draft"),
            critique=descriptor.get("critique"),
            revise=descriptor.get("revise"),
            max_iterations=max_iterations,
            delay_ms=delay_ms,
        )

    def missing_capabilities(self) -> list[str]:
        return [name for name in CAPABILITY_NAMES if not callable(getattr(self, name))]

    def resolve_config(self, defaults: StepConfig | None = None) -> StepConfig:
        """Resolve loop controls against engine defaults.

        Iteration caps below one are coerced to one and negative delays to
        zero. Non-integer values raise ``ValueError``.
        """
        base = defaults if defaults is not None else StepConfig()
        max_iterations = base.max_iterations if self.max_iterations is None else self.max_iterations
        delay_ms = base.delay_ms if self.delay_ms is None else self.delay_ms
        return StepConfig(
            max_iterations=max(1, _coerce_int("max_iterations", max_iterations)),
            delay_ms=max(0, _coerce_int("delay_ms", delay_ms)),
        )


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of one phase outcome."""

    step_index: int
    timestamp: int
    phase: Phase
    input_state: Any = None
    draft_state: Any = None
    final_state: Any = None
    critiques: tuple[Any, ...] | None = None
    iterations: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "step_index": self.step_index,
            "timestamp": self.timestamp,
            "phase": self.phase.value,
        }
        for name in ("input_state", "draft_state", "final_state", "iterations", "error"):
            value = getattr(self, name)
            if value is not None:
                record[name] = value
        if self.critiques is not None:
            record["critiques"] = list(self.critiques)
        return record
