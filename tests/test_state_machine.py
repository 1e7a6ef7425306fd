"""Tests for the step state machine and derived workflow status."""

from datetime import datetime, timezone

import pytest

from benefit_kernel.errors import InvalidTransitionError
from benefit_kernel.models import StepState, Workflow, WorkflowStatus, WorkflowStep
from benefit_kernel.workflow.state_machine import (
    backoff_seconds,
    cascade_failure,
    derive_status,
    move,
    refresh_readiness,
)

NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


def _make_workflow(*specs) -> Workflow:
    """specs: (step_id, prerequisites, state)"""
    return Workflow(
        id="wf_test",
        profile_id="p1",
        steps=[
            WorkflowStep(id=sid, node_id=sid, prerequisites=list(prereqs), state=state)
            for sid, prereqs, state in specs
        ],
        created_at=NOW,
    )


class TestMove:
    def test_allowed(self):
        step = WorkflowStep(id="s", node_id="s", state=StepState.READY)
        move(step, StepState.IN_PROGRESS, NOW)
        assert step.state == StepState.IN_PROGRESS
        assert step.updated_at == NOW

    @pytest.mark.parametrize("source,target", [
        (StepState.READY, StepState.COMPLETED),
        (StepState.PENDING, StepState.IN_PROGRESS),
        (StepState.COMPLETED, StepState.READY),
        (StepState.FAILED, StepState.READY),
        (StepState.SKIPPED, StepState.IN_PROGRESS),
        (StepState.AWAITING_AUTHORITY, StepState.READY),
    ])
    def test_rejected(self, source, target):
        step = WorkflowStep(id="s", node_id="s", state=source)
        with pytest.raises(InvalidTransitionError):
            move(step, target, NOW)
        assert step.state == source


class TestReadiness:
    def test_roots_become_ready_dependents_blocked(self):
        workflow = _make_workflow(
            ("a", [], StepState.PENDING),
            ("b", ["a"], StepState.PENDING),
        )
        promoted = refresh_readiness(workflow, NOW)
        assert promoted == ["a"]
        assert workflow.get_step("b").state == StepState.BLOCKED

    def test_skipped_prerequisite_unblocks(self):
        workflow = _make_workflow(
            ("a", [], StepState.SKIPPED),
            ("b", ["a"], StepState.BLOCKED),
        )
        assert refresh_readiness(workflow, NOW) == ["b"]

    def test_all_prerequisites_required(self):
        workflow = _make_workflow(
            ("a", [], StepState.COMPLETED),
            ("b", [], StepState.IN_PROGRESS),
            ("c", ["a", "b"], StepState.BLOCKED),
        )
        assert refresh_readiness(workflow, NOW) == []
        assert workflow.get_step("c").state == StepState.BLOCKED


class TestCascade:
    def test_cascades_to_all_dependents(self):
        workflow = _make_workflow(
            ("a", [], StepState.FAILED),
            ("b", ["a"], StepState.BLOCKED),
            ("c", ["b"], StepState.BLOCKED),
            ("d", [], StepState.READY),
        )
        cascaded = cascade_failure(workflow, "a", NOW)
        assert cascaded == ["b", "c"]
        assert workflow.get_step("c").failure_reason == "prerequisite-failed: a"
        assert workflow.get_step("d").state == StepState.READY

    def test_terminal_dependents_untouched(self):
        workflow = _make_workflow(
            ("a", [], StepState.FAILED),
            ("b", ["a"], StepState.SKIPPED),
            ("c", ["b"], StepState.BLOCKED),
        )
        assert cascade_failure(workflow, "a", NOW) == []
        assert workflow.get_step("c").state == StepState.BLOCKED


class TestBackoff:
    def test_exponential(self):
        assert [backoff_seconds(n, 60, 86400) for n in (1, 2, 3, 4)] == [60, 120, 240, 480]

    def test_capped(self):
        assert backoff_seconds(30, 60, 3600) == 3600


class TestDeriveStatus:
    def test_empty_workflow_is_complete(self):
        assert derive_status(_make_workflow()) == (WorkflowStatus.COMPLETED, 100.0, False)

    def test_completed(self):
        workflow = _make_workflow(("a", [], StepState.COMPLETED), ("b", [], StepState.SKIPPED))
        assert derive_status(workflow)[0] == WorkflowStatus.COMPLETED

    def test_percent(self):
        workflow = _make_workflow(
            ("a", [], StepState.COMPLETED),
            ("b", [], StepState.SKIPPED),
            ("c", [], StepState.READY),
            ("d", [], StepState.BLOCKED),
        )
        assert derive_status(workflow) == (WorkflowStatus.IN_PROGRESS, 50.0, False)

    def test_partial_failure_still_in_progress(self):
        workflow = _make_workflow(
            ("a", [], StepState.FAILED),
            ("b", [], StepState.AWAITING_AUTHORITY),
        )
        status, _, partial = derive_status(workflow)
        assert status == WorkflowStatus.IN_PROGRESS
        assert partial is True

    def test_failed_once_nothing_can_progress(self):
        workflow = _make_workflow(
            ("a", [], StepState.FAILED),
            ("b", ["a"], StepState.FAILED),
            ("c", [], StepState.COMPLETED),
        )
        status, percent, _ = derive_status(workflow)
        assert status == WorkflowStatus.FAILED
        assert percent == pytest.approx(33.33)
