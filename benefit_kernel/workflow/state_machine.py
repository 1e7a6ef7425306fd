"""
Step state machine and derived workflow status.

    pending -> blocked -> ready -> in_progress -> completed
                                              -> awaiting_authority -> completed | failed
                                              -> failed (terminal)
                                              -> ready (transient failure, retry)
    pending | blocked -> skipped   (requirement satisfied by a reused document)
    pending | blocked -> failed    (cascade from a failed prerequisite)

Workflow status is always computed from the steps, never stored.
"""

from datetime import datetime
from typing import Dict, FrozenSet, List, Tuple

from benefit_kernel.errors import InvalidTransitionError
from benefit_kernel.models.workflow import (
    TERMINAL,
    TERMINAL_SUCCESS,
    StepState,
    Workflow,
    WorkflowStatus,
    WorkflowStep,
)

ALLOWED_TRANSITIONS: Dict[StepState, FrozenSet[StepState]] = {
    StepState.PENDING: frozenset({
        StepState.BLOCKED, StepState.READY, StepState.SKIPPED, StepState.FAILED,
    }),
    StepState.BLOCKED: frozenset({StepState.READY, StepState.SKIPPED, StepState.FAILED}),
    StepState.READY: frozenset({StepState.IN_PROGRESS}),
    StepState.IN_PROGRESS: frozenset({
        StepState.COMPLETED, StepState.AWAITING_AUTHORITY, StepState.FAILED, StepState.READY,
    }),
    StepState.AWAITING_AUTHORITY: frozenset({StepState.COMPLETED, StepState.FAILED}),
    StepState.COMPLETED: frozenset(),
    StepState.SKIPPED: frozenset(),
    StepState.FAILED: frozenset(),
}


def move(step: WorkflowStep, target: StepState, now: datetime) -> None:
    """Apply one transition to a step, rejecting anything off the table."""
    if target not in ALLOWED_TRANSITIONS[step.state]:
        raise InvalidTransitionError(
            f"Step {step.id} cannot move from {step.state.value} to {target.value}",
            detail={"step_id": step.id, "from": step.state.value, "to": target.value},
        )
    step.state = target
    step.updated_at = now


def prerequisites_satisfied(step: WorkflowStep, steps: Dict[str, WorkflowStep]) -> bool:
    return all(steps[p].state in TERMINAL_SUCCESS for p in step.prerequisites)


def refresh_readiness(workflow: Workflow, now: datetime) -> List[str]:
    """
    Promote pending/blocked steps whose prerequisites are all done, and park
    the rest as blocked. Returns the ids of steps that became ready.
    """
    steps = workflow.step_map()
    promoted = []
    for step in workflow.steps:
        if step.state not in (StepState.PENDING, StepState.BLOCKED):
            continue
        if prerequisites_satisfied(step, steps):
            move(step, StepState.READY, now)
            promoted.append(step.id)
        elif step.state == StepState.PENDING:
            move(step, StepState.BLOCKED, now)
    return promoted


def dependents_index(workflow: Workflow) -> Dict[str, List[str]]:
    index: Dict[str, List[str]] = {s.id: [] for s in workflow.steps}
    for step in workflow.steps:
        for prerequisite in step.prerequisites:
            index[prerequisite].append(step.id)
    return index


def cascade_failure(workflow: Workflow, failed_step_id: str, now: datetime) -> List[str]:
    """
    Fail every step that transitively depends on a terminally failed step.

    Steps already satisfied (completed or skipped) stop the cascade: whatever
    depends on them no longer needs the failed step.
    """
    steps = workflow.step_map()
    dependents = dependents_index(workflow)
    cascaded: List[str] = []
    frontier = list(dependents[failed_step_id])
    while frontier:
        step_id = frontier.pop(0)
        step = steps[step_id]
        if step.state in TERMINAL:
            continue
        move(step, StepState.FAILED, now)
        step.failure_reason = f"prerequisite-failed: {failed_step_id}"
        cascaded.append(step_id)
        frontier.extend(dependents[step_id])
    return cascaded


def backoff_seconds(retry_count: int, base: float, ceiling: float) -> float:
    """Exponential backoff hint for the given (1-based) retry."""
    return min(ceiling, base * (2 ** max(0, retry_count - 1)))


def derive_status(workflow: Workflow) -> Tuple[WorkflowStatus, float, bool]:
    """Return (status, percent complete, partial failure) for a workflow."""
    total = len(workflow.steps)
    done = sum(1 for s in workflow.steps if s.state in TERMINAL_SUCCESS)
    failed = any(s.state == StepState.FAILED for s in workflow.steps)
    percent = 100.0 if total == 0 else round(100.0 * done / total, 2)

    if done == total:
        return WorkflowStatus.COMPLETED, percent, False
    if failed and all(s.state in TERMINAL for s in workflow.steps):
        return WorkflowStatus.FAILED, percent, True
    return WorkflowStatus.IN_PROGRESS, percent, failed
