"""Workflow — the durable, versioned execution of a requirement graph."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from benefit_kernel.models.requirements import RequirementEdge, ReuseAction
from benefit_kernel.models.values import UTCDateTime


class StepState(str, Enum):
    PENDING = "pending"
    BLOCKED = "blocked"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    AWAITING_AUTHORITY = "awaiting_authority"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"                       # Always terminal; retried steps go back to READY


TERMINAL_SUCCESS = frozenset({StepState.COMPLETED, StepState.SKIPPED})
TERMINAL = TERMINAL_SUCCESS | {StepState.FAILED}


class WorkflowStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class StepAction(str, Enum):
    START = "start"                         # ready -> in_progress
    SUBMIT = "submit"                       # in_progress -> completed | awaiting_authority | failed
    REPORT_FAILURE = "report_failure"       # in_progress -> failed (retried when transient)
    CONFIRM_AUTHORITY = "confirm_authority" # awaiting_authority -> completed
    REJECT_AUTHORITY = "reject_authority"   # awaiting_authority -> failed (terminal)


class AuthorityContact(BaseModel):
    """Contact and escalation data for an issuing authority."""

    authority_id: str
    name: str
    channel: str = "in_person"              # "portal" | "in_person" | "phone" | "email"
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    office_hours: Optional[str] = None
    escalation_contact: Optional[str] = None


class WorkflowStep(BaseModel):
    id: str
    node_id: str                            # Bound requirement node (document type id)
    category: str = ""
    issuing_authority: Optional[str] = None
    validity_days: Optional[int] = None
    state: StepState = StepState.PENDING
    prerequisites: List[str] = []           # Step ids
    estimated_duration_days: float = 1.0
    automatable: bool = False
    requires_authority_interaction: bool = False
    retry_count: int = 0
    backoff_seconds: Optional[float] = None
    next_attempt_after: Optional[UTCDateTime] = None
    failure_reason: Optional[str] = None
    reuse_action: ReuseAction = ReuseAction.FETCH_NEW
    reused_document_id: Optional[str] = None
    renewal_of: Optional[str] = None        # Held document this step replaces
    produced_document_id: Optional[str] = None
    submission_claim: Optional[str] = None  # Set while an external submission is in flight
    awaiting_since: Optional[UTCDateTime] = None
    stale: bool = False
    escalation_contact: Optional[AuthorityContact] = None
    updated_at: Optional[UTCDateTime] = None


class Workflow(BaseModel):
    id: str
    profile_id: str
    scheme_ids: List[str] = []
    steps: List[WorkflowStep] = []          # Topological order
    edges: List[RequirementEdge] = []
    created_at: UTCDateTime
    updated_at: Optional[UTCDateTime] = None
    version: int = Field(ge=1, default=1)

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        return next((s for s in self.steps if s.id == step_id), None)

    def step_map(self) -> Dict[str, WorkflowStep]:
        return {s.id: s for s in self.steps}


class StepInput(BaseModel):
    """Caller-supplied input to an advance call."""

    action: StepAction
    document_id: Optional[str] = None       # Document obtained for a SUBMIT
    payload: dict = {}                      # Forwarded to the submission capability
    transient: bool = False                 # For REPORT_FAILURE
    reason: Optional[str] = None


class AdvanceResult(BaseModel):
    workflow_id: str
    step_id: str
    new_version: int
    step_state: StepState
    step: WorkflowStep
    workflow_status: WorkflowStatus
    document_errors: List[str] = []         # Document store updates that failed after commit


class StatusReport(BaseModel):
    workflow_id: str
    profile_id: str
    status: WorkflowStatus
    percent_complete: float = Field(ge=0.0, le=100.0)
    version: int
    partial_failure: bool = False
    steps: List[WorkflowStep] = []
    stale_step_ids: List[str] = []


class StaleEscalation(BaseModel):
    """An awaiting-authority step surfaced for manual follow-up."""

    workflow_id: str
    profile_id: str
    step_id: str
    node_id: str
    awaiting_since: UTCDateTime
    days_waiting: float
    contact: Optional[AuthorityContact] = None
