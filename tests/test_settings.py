import dataclasses
import enum
import json
from decimal import Decimal
from uuid import UUID

import pytest
from pydantic import BaseModel

from audited_flow import FlowSettings, Phase, Step, StepConfig, to_canonical_json
from audited_flow.__main__ import main
from audited_flow.errors import CritiqueFailure, InvalidStepDefinition, describe_error


def test_canonical_json() -> None:
    left = {"b": 2, "a": 1, "nested": {"z": 9, "y": [3, 2, 1]}}
    right = {"nested": {"y": [3, 2, 1], "z": 9}, "a": 1, "b": 2}
    assert to_canonical_json(left) == to_canonical_json(right)


class Colour(enum.Enum):
    RED = "red"


class Note(BaseModel):
    title: str
    tags: list[str]


@dataclasses.dataclass
class Point:
    x: int
    y: int


def test_canonical_json_normalizes_rich_state_types() -> None:
    value = {
        "note": Note(title="t", tags=["a"]),
        "point": Point(x=1, y=2),
        "colour": Colour.RED,
        "id": UUID("12345678-1234-5678-1234-567812345678"),
        "amount": Decimal("1.5"),
        "labels": {"b", "a"},
        "pair": (1, 2),
    }
    assert json.loads(to_canonical_json(value)) == {
        "note": {"title": "t", "tags": ["a"]},
        "point": {"x": 1, "y": 2},
        "colour": "red",
        "id": "12345678-1234-5678-1234-567812345678",
        "amount": 1.5,
        "labels": ["a", "b"],
        "pair": [1, 2],
    }


@pytest.mark.parametrize("value", [b"raw", object()])
def test_canonical_json_rejects_unsupported_values(value: object) -> None:
    with pytest.raises(TypeError):
        to_canonical_json({"v": value})


def test_canonical_json_tags_numbers_outside_the_jcs_domain() -> None:
    value = {
        "big": 2**60,
        "small": -(2**53),
        "edge": 2**53 - 1,
        "nan": float("nan"),
        "inf": float("inf"),
        "ninf": float("-inf"),
        "dnan": Decimal("NaN"),
    }
    assert json.loads(to_canonical_json(value)) == {
        "big": {"$int": "1152921504606846976"},
        "small": {"$int": "-9007199254740992"},
        "edge": 9007199254740991,
        "nan": {"$float": "nan"},
        "inf": {"$float": "inf"},
        "ninf": {"$float": "-inf"},
        "dnan": {"$float": "nan"},
    }
    assert to_canonical_json({"n": 2**60}) != to_canonical_json({"n": 2**60 + 1})


def test_flow_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("FLOW_DEFAULT_MAX_ITERATIONS", "FLOW_DEFAULT_DELAY_MS", "FLOW_HASH_TIMESTAMPS"):
        monkeypatch.delenv(name, raising=False)
    settings = FlowSettings.from_env()
    assert settings.default_max_iterations == 3
    assert settings.default_delay_ms == 0
    assert settings.hash_timestamps is True
    assert settings.step_defaults == StepConfig(max_iterations=3, delay_ms=0)


def test_flow_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLOW_DEFAULT_MAX_ITERATIONS", "5")
    monkeypatch.setenv("FLOW_DEFAULT_DELAY_MS", "25")
    monkeypatch.setenv("FLOW_HASH_TIMESTAMPS", "false")
    settings = FlowSettings.from_env()
    assert settings.default_max_iterations == 5
    assert settings.default_delay_ms == 25
    assert settings.hash_timestamps is False


@pytest.mark.parametrize(
    ("name", "raw"),
    [
        ("FLOW_DEFAULT_MAX_ITERATIONS", "abc"),
        ("FLOW_DEFAULT_MAX_ITERATIONS", "0"),
        ("FLOW_DEFAULT_DELAY_MS", "-1"),
        ("FLOW_HASH_TIMESTAMPS", "maybe"),
    ],
)
def test_flow_settings_invalid_env_raises(monkeypatch: pytest.MonkeyPatch, name: str, raw: str) -> None:
    monkeypatch.setenv(name, raw)
    with pytest.raises(ValueError, match=name):
        FlowSettings.from_env()


def test_flow_settings_normalized_coerces_iteration_floor() -> None:
    assert FlowSettings(default_max_iterations=0).normalized().default_max_iterations == 1
    with pytest.raises(ValueError):
        FlowSettings(default_delay_ms=-5).normalized()


def test_step_resolve_config_coerces_bounds() -> None:
    step = Step(max_iterations=-3, delay_ms=-10)
    assert step.resolve_config() == StepConfig(max_iterations=1, delay_ms=0)
    assert Step(max_iterations=2.0).resolve_config().max_iterations == 2
    assert Step().resolve_config(StepConfig(max_iterations=7, delay_ms=3)) == StepConfig(max_iterations=7, delay_ms=3)
    with pytest.raises(ValueError):
        Step(max_iterations=True).resolve_config()


def test_step_from_mapping_and_missing_capabilities() -> None:
    step = Step.from_mapping({"draft": print, "critique": "not callable", "delayMs": 10})
    assert step.missing_capabilities() == ["critique", "revise"]
    assert step.delay_ms == 10
    assert step.max_iterations is None
    snake = Step.from_mapping({"max_iterations": 4})
    assert snake.max_iterations == 4


def test_phase_failure_flags() -> None:
    failures = {phase for phase in Phase if phase.is_failure}
    assert failures == {Phase.INVALID, Phase.DRAFT_ERROR, Phase.CRITIQUE_ERROR, Phase.REVISE_ERROR}
    assert Phase("revise:capped") is Phase.REVISE_CAPPED


def test_error_messages() -> None:
    assert describe_error(ValueError("x")) == "x"
    assert describe_error(RuntimeError()) == "RuntimeError"
    invalid = InvalidStepDefinition(3, ["draft", "revise"])
    assert str(invalid) == (
        "Step 3 is invalid. Expected functions: draft, critique, revise. Missing or not callable: draft, revise."
    )
    failure = CritiqueFailure(1, ValueError("nope"))
    assert str(failure) == "Step 1 critique failed: nope"
    assert failure.phase == Phase.CRITIQUE_ERROR


def test_cli_runs_demo_flow(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--value", "0"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["result"] == {"value": 0, "draft": 1}
    assert report["audit_entries"] == 1
    assert len(report["audit_root"]) == 64


def test_cli_revises_even_draft(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--value", "1", "--exclude-timestamps"]) == 0
    first = json.loads(capsys.readouterr().out)
    assert first["result"] == {"value": 1, "draft": 3, "fixed": 1}

    assert main(["--value", "1", "--exclude-timestamps"]) == 0
    second = json.loads(capsys.readouterr().out)
    assert second["audit_root"] == first["audit_root"]


def test_cli_rejects_invalid_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLOW_DEFAULT_DELAY_MS", "soon")
    assert main([]) == 1
