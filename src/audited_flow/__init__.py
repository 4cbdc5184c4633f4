from importlib.metadata import version

from .audit import AuditLog
from .canonical import to_canonical_json
from .chain import EMPTY_ROOT, canonical_payload, compute_root, first_divergence, iter_digests, verify_root
from .engine import FlowEngine, FlowExecution, StepCycle, run_flow
from .errors import (
    CritiqueFailure,
    DraftFailure,
    FlowError,
    InvalidStepDefinition,
    PhaseFailure,
    ReviseFailure,
    describe_error,
)
from .models import AuditEntry, Phase, Step, StepConfig
from .settings import FlowSettings


def get_version() -> str:
    try:
        return version("audited-flow")
    except Exception:
        return "0.0.0"


__all__ = [
    "AuditEntry",
    "AuditLog",
    "CritiqueFailure",
    "DraftFailure",
    "EMPTY_ROOT",
    "FlowEngine",
    "FlowError",
    "FlowExecution",
    "FlowSettings",
    "InvalidStepDefinition",
    "Phase",
    "PhaseFailure",
    "ReviseFailure",
    "Step",
    "StepConfig",
    "StepCycle",
    "canonical_payload",
    "compute_root",
    "describe_error",
    "first_divergence",
    "get_version",
    "iter_digests",
    "run_flow",
    "to_canonical_json",
    "verify_root",
]
