"""Tests for the Stale Step Monitor."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from benefit_kernel.authority.directory import AuthorityDirectory
from benefit_kernel.documents.store import DocumentStore
from benefit_kernel.models import (
    RequirementGraph,
    RequirementNode,
    ReuseAction,
    ReuseDecision,
    StepAction,
    StepInput,
    WorkflowConfig,
)
from benefit_kernel.workflow.monitor import StaleStepMonitor
from benefit_kernel.workflow.orchestrator import WorkflowOrchestrator
from benefit_kernel.workflow.store import WorkflowStore

NOW = datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)


def _make_orchestrator(config=None) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(WorkflowStore(), DocumentStore(), AuthorityDirectory(), config=config)


def _awaiting_workflow(orchestrator: WorkflowOrchestrator, profile_id: str = "p1") -> str:
    graph = RequirementGraph(
        scheme_ids=["s1"],
        nodes={
            "land-record": RequirementNode(
                document_type_id="land-record",
                category="land",
                requires_authority_interaction=True,
            )
        },
        topological_order=["land-record"],
    )
    decisions = [ReuseDecision(node_id="land-record", action=ReuseAction.FETCH_NEW)]
    workflow = orchestrator.create_workflow(graph, decisions, profile_id, current_time=NOW)
    orchestrator.advance_step(
        workflow.id, "step_land-record", 1, StepInput(action=StepAction.START), current_time=NOW
    )
    orchestrator.advance_step(
        workflow.id, "step_land-record", 2, StepInput(action=StepAction.SUBMIT), current_time=NOW
    )
    return workflow.id


class TestStaleStepMonitor:
    def test_sweep_reports_newly_stale_once(self):
        orchestrator = _make_orchestrator()
        workflow_id = _awaiting_workflow(orchestrator)
        monitor = StaleStepMonitor(orchestrator)

        assert monitor.sweep_once(NOW + timedelta(days=5)) == []
        fresh = monitor.sweep_once(NOW + timedelta(days=31))
        assert [e.workflow_id for e in fresh] == [workflow_id]
        assert monitor.sweep_once(NOW + timedelta(days=32)) == []
        assert len(monitor.get_escalations()) == 1
        assert monitor.last_sweep_at == NOW + timedelta(days=32)

    def test_resolved_steps_leave_queue(self):
        orchestrator = _make_orchestrator()
        workflow_id = _awaiting_workflow(orchestrator)
        monitor = StaleStepMonitor(orchestrator)
        monitor.sweep_once(NOW + timedelta(days=31))

        orchestrator.handle_authority_event(workflow_id, "step_land-record", confirmed=True)
        monitor.sweep_once(NOW + timedelta(days=40))
        assert monitor.get_escalations() == []

    def test_configurable_window(self):
        orchestrator = _make_orchestrator(WorkflowConfig(stale_after_days=7))
        _awaiting_workflow(orchestrator)
        monitor = StaleStepMonitor(orchestrator)
        assert len(monitor.sweep_once(NOW + timedelta(days=8))) == 1

    def test_schedule(self):
        monitor = StaleStepMonitor(_make_orchestrator())
        assert monitor.next_sweep_after(NOW) == datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)

        daily = StaleStepMonitor(_make_orchestrator(), schedule="0 6 * * *")
        assert daily.next_sweep_after(NOW) == datetime(2026, 1, 16, 6, 0, tzinfo=timezone.utc)

    def test_invalid_schedule(self):
        with pytest.raises(ValueError):
            StaleStepMonitor(_make_orchestrator(), schedule="every hour")

    def test_run_async_stops(self):
        monitor = StaleStepMonitor(_make_orchestrator())

        async def run():
            stop = asyncio.Event()
            task = asyncio.create_task(monitor.run_async(stop))
            await asyncio.sleep(0)
            assert monitor.is_running
            stop.set()
            await asyncio.wait_for(task, timeout=1)

        asyncio.run(run())
        assert monitor.is_running is False
