from __future__ import annotations

from .models import Phase


def describe_error(exc: BaseException) -> str:
    """Render an exception for the ``error`` field of an audit entry."""
    message = str(exc)
    return message if message else type(exc).__name__


class FlowError(Exception):
    """Terminal failure of a flow run, tied to the step and phase that failed."""

    def __init__(self, message: str, *, step_index: int, phase: Phase) -> None:
        super().__init__(message)
        self.step_index = step_index
        self.phase = phase


class InvalidStepDefinition(FlowError, TypeError):
    def __init__(self, step_index: int, missing: list[str] | None = None, detail: str | None = None) -> None:
        self.missing = list(missing or [])
        if detail is None:
            detail = "Expected functions: draft, critique, revise."
            if self.missing:
                detail = f"{detail} Missing or not callable: {', '.join(self.missing)}."
        super().__init__(f"Step {step_index} is invalid. {detail}", step_index=step_index, phase=Phase.INVALID)


class PhaseFailure(FlowError):
    """A draft, critique or revise capability raised.

    The original exception is kept in ``cause`` and chained as ``__cause__``;
    the message is carried over unchanged.
    """

    phase_name = "phase"

    def __init__(self, step_index: int, cause: BaseException, phase: Phase) -> None:
        super().__init__(describe_error(cause), step_index=step_index, phase=phase)
        self.cause = cause

    def __str__(self) -> str:
        return f"Step {self.step_index} {self.phase_name} failed: {self.args[0]}"


class DraftFailure(PhaseFailure):
    phase_name = "draft"

    def __init__(self, step_index: int, cause: BaseException) -> None:
        super().__init__(step_index, cause, Phase.DRAFT_ERROR)


class CritiqueFailure(PhaseFailure):
    phase_name = "critique"

    def __init__(self, step_index: int, cause: BaseException) -> None:
        super().__init__(step_index, cause, Phase.CRITIQUE_ERROR)


class ReviseFailure(PhaseFailure):
    phase_name = "revise"

    def __init__(self, step_index: int, cause: BaseException) -> None:
        super().__init__(step_index, cause, Phase.REVISE_ERROR)
