"""Pipeline steps and the step chain.

Steps are linked builder-style::

    clone = CloneRepository(context)
    clone.add_next_step(CheckoutCommit(context)) \\
         .add_next_step(BuildProject(context, build)) \\
         .add_next_step(SequencerRepair(context, ...))
    statuses = await clone.execute()

``execute()`` compiles the linked chain into a LangGraph StateGraph with
one node per step and runs it.  Every configured step produces exactly
one StepStatus, in order:

  • a step that requires its predecessors' success is SKIPPED (its
    business logic is never called) once any earlier step FAILED;
  • an exception escaping a step's business logic becomes a FAILURE
    status and never propagates out of ``execute()``.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import TypedDict

from langgraph.graph import END, StateGraph

from pipeline.context import JobContext, StepStatus, _utcnow_iso

logger = logging.getLogger(__name__)


class PipelineStep(ABC):
    """A named unit of work in the step chain."""

    name: str = "step"

    def __init__(self, context: JobContext, requires_success: bool = True):
        self.context = context
        self.requires_success = requires_success
        self.next_step: PipelineStep | None = None
        self.previous_step: PipelineStep | None = None
        self.status: StepStatus | None = None

    # -- Chain building ------------------------------------------------

    def add_next_step(self, step: PipelineStep) -> PipelineStep:
        """Link *step* after this one and return it for further chaining."""
        if step.context is not self.context:
            raise ValueError(f"{step!r} belongs to a different job context.")
        if step in self.head().chain() or step.previous_step is not None:
            raise ValueError(f"{step!r} is already part of a chain.")
        if self.next_step is not None:
            raise ValueError(f"{self!r} already has a next step: {self.next_step!r}.")
        self.next_step = step
        step.previous_step = self
        return step

    def head(self) -> PipelineStep:
        step = self
        while step.previous_step is not None:
            step = step.previous_step
        return step

    def chain(self) -> list[PipelineStep]:
        """This step and all steps linked after it, in order."""
        steps: list[PipelineStep] = []
        step: PipelineStep | None = self
        while step is not None:
            steps.append(step)
            step = step.next_step
        return steps

    # -- Execution -----------------------------------------------------

    @abstractmethod
    async def business_execute(self) -> StepStatus:
        """Do the step's work and return its status."""
        ...

    async def run(self) -> StepStatus:
        """Execute this single step under the skip/failure policy."""
        started_at = _utcnow_iso()
        t0 = time.monotonic()

        if self.requires_success and self.context.has_failed_step():
            logger.info("[%s] Skipped: a previous step failed", self.name)
            status = StepStatus.skipped(self, "A previous step failed.")
        else:
            logger.info("[%s] Start", self.name)
            try:
                status = await self.business_execute()
            except Exception as exc:
                logger.exception("[%s] Unexpected error", self.name)
                self.context.add_step_error(self.name, "Unexpected error during step execution", exc)
                status = StepStatus.failure(self, f"{type(exc).__name__}: {exc}", exc)

        status.step = self
        status.started_at = started_at
        status.duration_s = time.monotonic() - t0
        self.status = status
        self.context.add_step_status(status)

        logger.info(
            "[%s] Finished | status=%s | %.1fs | %s",
            self.name, status.kind.value, status.duration_s, status.message or "-",
        )
        return status

    async def execute(self) -> list[StepStatus]:
        """Run this step and every step linked after it.

        A chain executes at most once. Calling ``execute()`` again returns
        the statuses recorded by the first run; build a new chain on a fresh
        context to retry a job.
        """
        steps = self.chain()
        if any(s.status is not None for s in steps):
            logger.warning("[%s] Step chain already executed; returning recorded statuses", self.name)
            return [s.status for s in steps if s.status is not None]

        graph = build_step_graph(steps)
        logger.info(
            "Step chain compiled with %d step(s): %s",
            len(steps), " → ".join(s.name for s in steps),
        )
        await graph.ainvoke({"executed": 0}, {"recursion_limit": len(steps) + 5})
        return [s.status for s in steps if s.status is not None]

    def __repr__(self) -> str:
        return f"<Step: {self.name}>"


# ── LangGraph wiring ─────────────────────────────────────────────────

class ChainState(TypedDict, total=False):
    """State flowing through the graph; the job itself lives in JobContext."""

    executed: int
    last_step: str
    last_status: str


def _node_name(index: int, step: PipelineStep) -> str:
    return f"step_{index}_{step.name}"


def _make_node(step: PipelineStep):
    async def _node(state: ChainState) -> ChainState:
        status = await step.run()
        return {
            "executed": state.get("executed", 0) + 1,
            "last_step": step.name,
            "last_status": status.kind.value,
        }

    return _node


def build_step_graph(steps: list[PipelineStep]):
    """Compile *steps* into a linear LangGraph StateGraph."""
    if not steps:
        raise ValueError("Cannot build an empty step chain.")

    graph = StateGraph(ChainState)
    names = [_node_name(i, s) for i, s in enumerate(steps)]
    for name, step in zip(names, steps):
        graph.add_node(name, _make_node(step))

    graph.set_entry_point(names[0])
    for source, target in zip(names, names[1:]):
        graph.add_edge(source, target)
    graph.add_edge(names[-1], END)

    return graph.compile()
