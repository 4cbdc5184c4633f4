from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Generator, Iterable, Mapping
from typing import Any, Callable, TypedDict

from langgraph.graph import END, START, StateGraph
from langgraph.types import Command

from .audit import AuditLog
from .errors import (
    CritiqueFailure,
    DraftFailure,
    InvalidStepDefinition,
    ReviseFailure,
    describe_error,
)
from .models import AuditEntry, Phase, Step, StepConfig
from .settings import FlowSettings

logger = logging.getLogger(__name__)

# Supersteps per critique round (critique, route, revise) plus draft and the terminal node.
_SUPERSTEPS_PER_ROUND = 3
_SUPERSTEP_HEADROOM = 8


class CycleState(TypedDict, total=False):
    step_index: int
    step: Step
    step_config: StepConfig
    audit: AuditLog
    input_state: Any
    draft_state: Any
    candidate: Any
    critiques: list[Any]
    critique_rounds: int
    iterations: int
    outcome: Phase


async def _call(capability: Callable[..., Any], *args: Any) -> Any:
    result = capability(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _normalize_issues(result: Any) -> list[Any]:
    if not result or not isinstance(result, (list, tuple)):
        return []
    return list(result)


class StepCycle:
    """Draft -> critique -> route -> revise/accept/cap graph for a single step.

    The compiled graph is stateless; every invocation carries its own step,
    config and audit log in the graph state, so one instance serves any
    number of concurrent runs.
    """

    def __init__(self) -> None:
        self.graph = self._build_graph().compile()

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(CycleState)
        graph.add_node("draft", self._draft)
        graph.add_node("critique", self._critique)
        graph.add_node("route", self._route)
        graph.add_node("revise", self._revise)
        graph.add_node("accept", self._accept)
        graph.add_node("cap", self._cap)

        graph.add_edge(START, "draft")
        graph.add_edge("draft", "critique")
        graph.add_edge("critique", "route")
        graph.add_edge("revise", "critique")
        graph.add_edge("accept", END)
        graph.add_edge("cap", END)
        return graph

    async def _draft(self, state: CycleState) -> dict[str, Any]:
        index = state["step_index"]
        input_state = state["input_state"]
        try:
            drafted = await _call(state["step"].draft, input_state)
        except Exception as exc:
            state["audit"].append(index, Phase.DRAFT_ERROR, error=describe_error(exc), input_state=input_state)
            logger.error("Step %d draft failed: %s", index, describe_error(exc))
            raise DraftFailure(index, exc) from exc
        return {"draft_state": drafted, "candidate": drafted, "iterations": 0, "critique_rounds": 0}

    async def _critique(self, state: CycleState) -> dict[str, Any]:
        index = state["step_index"]
        candidate = state["candidate"]
        try:
            result = await _call(state["step"].critique, candidate)
        except Exception as exc:
            state["audit"].append(
                index,
                Phase.CRITIQUE_ERROR,
                error=describe_error(exc),
                draft_state=candidate,
                input_state=state["input_state"],
            )
            logger.error("Step %d critique failed: %s", index, describe_error(exc))
            raise CritiqueFailure(index, exc) from exc
        issues = _normalize_issues(result)
        rounds = int(state.get("critique_rounds", 0)) + 1
        logger.debug("Step %d critique round %d reported %d issue(s)", index, rounds, len(issues))
        return {"critiques": issues, "critique_rounds": rounds}

    async def _route(self, state: CycleState) -> Command[str]:
        # A clean critique wins over an exhausted budget.
        if not state["critiques"]:
            return Command(goto="accept")
        if state["critique_rounds"] >= state["step_config"].max_iterations:
            return Command(goto="cap")
        return Command(goto="revise")

    async def _revise(self, state: CycleState) -> dict[str, Any]:
        index = state["step_index"]
        critiques = state["critiques"]
        try:
            revised = await _call(state["step"].revise, state["candidate"], critiques, state["input_state"])
        except Exception as exc:
            state["audit"].append(
                index,
                Phase.REVISE_ERROR,
                error=describe_error(exc),
                draft_state=state["draft_state"],
                critiques=critiques,
                input_state=state["input_state"],
            )
            logger.error("Step %d revise failed: %s", index, describe_error(exc))
            raise ReviseFailure(index, exc) from exc
        delay = state["step_config"].delay_seconds
        if delay > 0:
            await asyncio.sleep(delay)
        return {"candidate": revised, "iterations": int(state.get("iterations", 0)) + 1}

    async def _accept(self, state: CycleState) -> dict[str, Any]:
        iterations = int(state.get("iterations", 0))
        phase = Phase.DRAFT_ACCEPTED if iterations == 0 else Phase.REVISE_ACCEPTED
        state["audit"].append(
            state["step_index"],
            phase,
            input_state=state["input_state"],
            draft_state=state["draft_state"],
            critiques=[],
            final_state=state["candidate"],
            iterations=iterations,
        )
        logger.debug("Step %d %s after %d revision(s)", state["step_index"], phase.value, iterations)
        return {"outcome": phase}

    async def _cap(self, state: CycleState) -> dict[str, Any]:
        rounds = int(state["critique_rounds"])
        state["audit"].append(
            state["step_index"],
            Phase.REVISE_CAPPED,
            input_state=state["input_state"],
            draft_state=state["draft_state"],
            critiques=state["critiques"],
            final_state=state["candidate"],
            iterations=rounds,
        )
        logger.warning(
            "Step %d reached iteration cap %d with %d unresolved issue(s); proceeding",
            state["step_index"],
            rounds,
            len(state["critiques"]),
        )
        return {"outcome": Phase.REVISE_CAPPED}

    async def run(self, *, step_index: int, step: Step, step_config: StepConfig, audit: AuditLog, input_state: Any) -> Any:
        """Run one step and return the state it adopts."""
        result = await self.graph.ainvoke(
            {
                "step_index": step_index,
                "step": step,
                "step_config": step_config,
                "audit": audit,
                "input_state": input_state,
            },
            config={"recursion_limit": _SUPERSTEPS_PER_ROUND * step_config.max_iterations + _SUPERSTEP_HEADROOM},
        )
        return result.get("candidate")


class FlowExecution:
    """Handle for one run: awaitable for the final state, plus the live audit log.

    ``await execution`` yields the final state or raises the run's
    ``FlowError``. The audit log stays readable whether the run is still in
    progress, succeeded or failed.
    """

    def __init__(self, audit: AuditLog, task: asyncio.Task[Any]) -> None:
        self.audit = audit
        self._task = task

    def __await__(self) -> Generator[Any, None, Any]:
        return self._task.__await__()

    @property
    def audit_entries(self) -> tuple[AuditEntry, ...]:
        return self.audit.entries

    @property
    def audit_root(self) -> str:
        return self.audit.root

    def done(self) -> bool:
        return self._task.done()

    async def result(self) -> Any:
        return await self._task

    async def wait(self) -> "FlowExecution":
        """Wait for the run to finish without raising its error."""
        await asyncio.wait({self._task})
        return self

    def exception(self) -> BaseException | None:
        return self._task.exception()

    @property
    def final_state(self) -> Any:
        """Final state of a finished run; raises the run's error if it failed."""
        return self._task.result()

    def summary(self) -> dict[str, Any]:
        return {
            "final_state": self.final_state,
            "audit_entries": self.audit.to_records(),
            "audit_root": self.audit_root,
        }


class FlowEngine:
    """Executes ordered self-correcting steps and records every phase outcome."""

    def __init__(self, settings: FlowSettings | None = None) -> None:
        self.settings = settings if settings is not None else FlowSettings.from_env()
        self.cycle = StepCycle()

    def execute(self, initial_state: Any, steps: Iterable[Step | Mapping[str, Any] | None]) -> FlowExecution:
        """Schedule a run on the current event loop and return its handle immediately.

        Must be called from a coroutine (a running event loop is required).
        """
        audit = AuditLog(include_timestamps=self.settings.hash_timestamps)
        task = asyncio.get_running_loop().create_task(self._run(initial_state, list(steps), audit))
        return FlowExecution(audit, task)

    @staticmethod
    def _reject(error: InvalidStepDefinition, state: Any, audit: AuditLog) -> InvalidStepDefinition:
        audit.append(error.step_index, Phase.INVALID, error=str(error), input_state=state)
        logger.error("%s", error)
        return error

    def _prepare_step(self, index: int, raw: Any, state: Any, audit: AuditLog) -> tuple[Step, StepConfig]:
        """Validate a step descriptor once, before any of its phases run."""
        if isinstance(raw, Step):
            step = raw
        elif isinstance(raw, Mapping):
            step = Step.from_mapping(raw)
        else:
            detail = f"Expected a Step or mapping descriptor, got {type(raw).__name__}."
            raise self._reject(InvalidStepDefinition(index, detail=detail), state, audit)

        missing = step.missing_capabilities()
        if missing:
            raise self._reject(InvalidStepDefinition(index, missing), state, audit)
        try:
            config = step.resolve_config(self.settings.step_defaults)
        except ValueError as exc:
            raise self._reject(InvalidStepDefinition(index, detail=str(exc)), state, audit) from exc
        return step, config

    async def _run(self, initial_state: Any, steps: list[Any], audit: AuditLog) -> Any:
        state = initial_state
        for index, raw in enumerate(steps):
            step, config = self._prepare_step(index, raw, state, audit)
            logger.debug(
                "Step %d starting (max_iterations=%d, delay_ms=%d)", index, config.max_iterations, config.delay_ms
            )
            state = await self.cycle.run(
                step_index=index,
                step=step,
                step_config=config,
                audit=audit,
                input_state=state,
            )
        logger.info("Flow completed: %d step(s), %d audit entries", len(steps), len(audit))
        return state


def run_flow(
    initial_state: Any,
    steps: Iterable[Step | Mapping[str, Any] | None],
    *,
    settings: FlowSettings | None = None,
) -> FlowExecution:
    """Run a flow to completion on a fresh event loop and return the finished handle.

    The run's error is not raised here; read ``final_state`` (which raises it)
    or ``exception()`` on the returned handle.
    """
    engine = FlowEngine(settings=settings)

    async def _drive() -> FlowExecution:
        return await engine.execute(initial_state, steps).wait()

    return asyncio.run(_drive())


__all__ = ["FlowEngine", "FlowExecution", "StepCycle", "run_flow"]
