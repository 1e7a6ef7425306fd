"""
Stale Step Monitor — periodic sweep over awaiting-authority steps.

Runs on a cron schedule (default: top of every hour). Each sweep flags steps
that have waited longer than the stale window and records them in an
escalation queue for manual follow-up. The monitor never fails a step.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from croniter import croniter

from benefit_kernel.models.values import as_utc, utc_now
from benefit_kernel.models.workflow import StaleEscalation
from benefit_kernel.workflow.orchestrator import WorkflowOrchestrator

logger = logging.getLogger(__name__)


class StaleStepMonitor:
    """Cron-driven sweeper around WorkflowOrchestrator.flag_stale_steps."""

    def __init__(self, orchestrator: WorkflowOrchestrator, schedule: Optional[str] = None):
        self.orchestrator = orchestrator
        self.schedule = schedule or orchestrator.config.stale_sweep_schedule
        if not croniter.is_valid(self.schedule):
            raise ValueError(f"Invalid stale sweep schedule: {self.schedule!r}")
        self._escalations: Dict[str, StaleEscalation] = {}
        self._running = False
        self.last_sweep_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def next_sweep_after(self, current_time: datetime) -> datetime:
        return croniter(self.schedule, as_utc(current_time)).get_next(datetime)

    def sweep_once(self, current_time: Optional[datetime] = None) -> List[StaleEscalation]:
        """Flag stale steps and return the newly escalated ones."""
        now = as_utc(current_time) if current_time else utc_now()
        current = self.orchestrator.flag_stale_steps(now)

        fresh = []
        live_keys = set()
        for escalation in current:
            key = f"{escalation.workflow_id}:{escalation.step_id}"
            live_keys.add(key)
            if key not in self._escalations:
                fresh.append(escalation)
            self._escalations[key] = escalation

        # Steps confirmed, rejected or abandoned since the last sweep
        for key in list(self._escalations):
            if key not in live_keys:
                del self._escalations[key]

        self.last_sweep_at = now
        if fresh:
            logger.warning("Stale sweep escalated %d step(s)", len(fresh))
        return fresh

    def get_escalations(self) -> List[StaleEscalation]:
        return [self._escalations[k] for k in sorted(self._escalations)]

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Sweep on schedule until stop_event is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                now = utc_now()
                wait_seconds = max(0.0, (self.next_sweep_after(now) - now).total_seconds())
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_seconds)
                except asyncio.TimeoutError:
                    self.sweep_once()
        finally:
            self._running = False
