from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping, Sequence

from . import console
from .checkpoint import CheckpointStore
from .errors import InstallError
from .executil import trace
from .model import Step


@dataclass(frozen=True)
class PipelineResult:
    ran_steps: List[str] = field(default_factory=list)
    skipped_steps: List[str] = field(default_factory=list)


def active_steps(steps: Sequence[Step]) -> List[Step]:
    """Drop conditional steps whose flag is off; names of the rest are untouched."""

    return [s for s in steps if s.when]


def run_steps(steps: Sequence[Step], store: CheckpointStore, *, phase: str) -> PipelineResult:
    """Run steps in order with resume semantics.

    Completed steps are skipped without calling their body. A body that
    returns a mapping hands those values to ``mark_complete`` as carried
    values. Any exception aborts the run and leaves the failing step
    unmarked.
    """

    ran: List[str] = []
    skipped: List[str] = []
    names = [s.name for s in steps]
    if len(set(names)) != len(names):
        raise ValueError(f"duplicate step names in {phase}: {names}")

    for step in active_steps(steps):
        if step.checkpoint and store.is_complete(step.name):
            trace("pipeline.skip", phase=phase, step=step.name)
            console.info(f"Skipping {step.name} (already completed)")
            skipped.append(step.name)
            continue

        trace("pipeline.start", phase=phase, step=step.name)
        try:
            carried = step.body()
        except BaseException as exc:
            trace("pipeline.failed", phase=phase, step=step.name, error=str(exc), kind=type(exc).__name__)
            if isinstance(exc, InstallError) and not exc.action:
                exc.action = step.name
            raise
        if step.checkpoint:
            extra = dict(carried) if isinstance(carried, Mapping) else {}
            store.mark_complete(step.name, **extra)
        trace("pipeline.done", phase=phase, step=step.name)
        ran.append(step.name)

    trace("pipeline.finished", phase=phase, ran=ran, skipped=skipped)
    return PipelineResult(ran_steps=ran, skipped_steps=skipped)
