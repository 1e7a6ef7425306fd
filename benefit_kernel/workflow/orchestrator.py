"""
Workflow Orchestrator — turns a requirement graph into a resumable,
persisted state machine and drives its steps.

Behavioral Contract:
- A workflow is created once per committed requirement graph; steps follow
  the graph's topological order and mirror its edges
- Every mutating call presents the version it last observed; a stale version
  raises ConflictError and nothing is written
- Malformed input raises ValidationError before any side effect
- Transient failures return a step to READY with an exponential backoff hint
  until the retry cap; after that the step and everything depending on it
  fail terminally, while independent branches keep going
- Awaiting-authority steps wait for an explicit external event; the stale
  sweep only flags them for escalation, it never fails them
- External submissions run only after a claim on the step is committed, so
  callers racing on one version never submit twice
- Held documents are never edited; renewals go through the document store's
  pointer swap after the workflow write succeeds. Documents are checked
  before the write, and a store update that still fails is reported on the
  result rather than raised
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from benefit_kernel.authority.directory import AuthorityDirectory
from benefit_kernel.documents.store import DocumentStore
from benefit_kernel.errors import (
    ConflictError,
    InvalidTransitionError,
    KernelError,
    NotFoundError,
    ValidationError,
)
from benefit_kernel.models.config import WorkflowConfig
from benefit_kernel.models.profile import HeldDocument, VerificationStatus
from benefit_kernel.models.requirements import RequirementGraph, ReuseAction, ReuseDecision
from benefit_kernel.models.submission import SubmissionOutcome, SubmissionRequest, SubmissionStatus
from benefit_kernel.models.values import as_utc, utc_now
from benefit_kernel.models.workflow import (
    AdvanceResult,
    StaleEscalation,
    StatusReport,
    StepAction,
    StepInput,
    StepState,
    Workflow,
    WorkflowStep,
)
from benefit_kernel.requirements.reuse import document_expiry
from benefit_kernel.submission.fabric import SubmissionCapability
from benefit_kernel.workflow.state_machine import (
    backoff_seconds,
    cascade_failure,
    derive_status,
    move,
    refresh_readiness,
)
from benefit_kernel.workflow.store import WorkflowStore

logger = logging.getLogger(__name__)

Effect = Callable[[], None]


def step_id_for(node_id: str) -> str:
    return f"step_{node_id}"


def _leave_unchanged(workflow: Workflow, step: WorkflowStep, effects: List[Effect]) -> None:
    pass


class WorkflowOrchestrator:
    """Creates workflows and advances their steps under optimistic concurrency."""

    def __init__(
        self,
        store: WorkflowStore,
        document_store: DocumentStore,
        authority_directory: AuthorityDirectory,
        submission: Optional[SubmissionCapability] = None,
        config: Optional[WorkflowConfig] = None,
    ):
        self.store = store
        self.documents = document_store
        self.authorities = authority_directory
        self.submission = submission
        self.config = config or WorkflowConfig()

    # --- Creation ---

    def create_workflow(
        self,
        graph: RequirementGraph,
        decisions: Sequence[ReuseDecision],
        profile_id: str,
        current_time: Optional[datetime] = None,
    ) -> Workflow:
        """Materialize a workflow from a graph and its reuse decisions."""
        now = as_utc(current_time) if current_time else utc_now()
        by_node = self._index_decisions(graph, decisions)

        steps: List[WorkflowStep] = []
        for node_id in graph.topological_order:
            node = graph.nodes[node_id]
            decision = by_node[node_id]
            step = WorkflowStep(
                id=step_id_for(node_id),
                node_id=node_id,
                category=node.category,
                issuing_authority=node.issuing_authority,
                validity_days=node.validity_days,
                prerequisites=[step_id_for(p) for p in graph.prerequisites_of(node_id)],
                estimated_duration_days=node.estimated_duration_days,
                automatable=node.automatable,
                requires_authority_interaction=node.requires_authority_interaction,
                reuse_action=decision.action,
                updated_at=now,
            )
            if decision.action == ReuseAction.REUSE_EXISTING:
                step.reused_document_id = decision.document_id
                move(step, StepState.SKIPPED, now)
            elif decision.action == ReuseAction.RENEW_EXPIRING:
                step.renewal_of = decision.document_id
            steps.append(step)

        workflow = Workflow(
            id=f"wf_{uuid4().hex[:12]}",
            profile_id=profile_id,
            scheme_ids=list(graph.scheme_ids),
            steps=steps,
            edges=list(graph.edges),
            created_at=now,
            updated_at=now,
            version=1,
        )
        refresh_readiness(workflow, now)
        self.store.insert(workflow)
        logger.info(
            "Created workflow %s for profile %s: %d steps (%d skipped)",
            workflow.id, profile_id, len(steps),
            sum(1 for s in steps if s.state == StepState.SKIPPED),
        )
        return workflow

    def _index_decisions(
        self, graph: RequirementGraph, decisions: Sequence[ReuseDecision]
    ) -> Dict[str, ReuseDecision]:
        by_node: Dict[str, ReuseDecision] = {}
        for decision in decisions:
            if decision.node_id not in graph.nodes:
                raise ValidationError(
                    f"Reuse decision for unknown node '{decision.node_id}'",
                    detail={"node_id": decision.node_id},
                )
            if decision.node_id in by_node:
                raise ValidationError(
                    f"Duplicate reuse decision for node '{decision.node_id}'",
                    detail={"node_id": decision.node_id},
                )
            by_node[decision.node_id] = decision
        missing = sorted(set(graph.nodes) - set(by_node))
        if missing:
            raise ValidationError(
                "Every requirement node needs a reuse decision",
                detail={"missing_nodes": missing},
            )
        return by_node

    # --- Queries ---

    def get_workflow(self, workflow_id: str) -> Workflow:
        return self.store.require(workflow_id)

    def get_status(self, workflow_id: str) -> StatusReport:
        return self._report(self.store.require(workflow_id))

    def _report(self, workflow: Workflow) -> StatusReport:
        status, percent, partial = derive_status(workflow)
        return StatusReport(
            workflow_id=workflow.id,
            profile_id=workflow.profile_id,
            status=status,
            percent_complete=percent,
            version=workflow.version,
            partial_failure=partial,
            steps=workflow.steps,
            stale_step_ids=[s.id for s in workflow.steps if s.stale],
        )

    def list_workflows(self, profile_id: str) -> List[StatusReport]:
        return [self._report(w) for w in self.store.list_by_profile(profile_id)]

    # --- Advancement ---

    def advance_step(
        self,
        workflow_id: str,
        step_id: str,
        expected_version: int,
        step_input: StepInput,
        current_time: Optional[datetime] = None,
    ) -> AdvanceResult:
        """
        Apply one action to one step.

        Raises ConflictError when `expected_version` is stale, NotFoundError
        for unknown ids, and ValidationError (or InvalidTransitionError) for
        input the step cannot accept.
        """
        now = as_utc(current_time) if current_time else utc_now()
        current = self.store.require(workflow_id)
        if current.version != expected_version:
            logger.info(
                "Version conflict on %s: expected %d, found %d",
                workflow_id, expected_version, current.version,
            )
            raise ConflictError(workflow_id, expected_version, current.version)

        workflow = current.model_copy(deep=True)
        step = workflow.get_step(step_id)
        if step is None:
            raise NotFoundError(
                f"Step {step_id} not found in workflow {workflow_id}",
                detail={"workflow_id": workflow_id, "step_id": step_id},
            )

        if step_input.action == StepAction.SUBMIT and self._submits_externally(step):
            return self._submit_external(workflow, step, step_input, expected_version, now)

        handlers = {
            StepAction.START: self._start,
            StepAction.SUBMIT: self._submit,
            StepAction.REPORT_FAILURE: self._report_failure,
            StepAction.CONFIRM_AUTHORITY: self._confirm_authority,
            StepAction.REJECT_AUTHORITY: self._reject_authority,
        }
        effects: List[Effect] = []
        handlers[step_input.action](workflow, step, step_input, now, effects)
        saved, document_errors = self._commit(workflow, expected_version, effects, now)
        return self._result(saved, step_id, step_input.action, document_errors)

    def _commit(
        self, workflow: Workflow, expected_version: int, effects: List[Effect], now: datetime
    ) -> Tuple[Workflow, List[str]]:
        refresh_readiness(workflow, now)
        workflow.updated_at = now
        saved = self.store.compare_and_swap(workflow, expected_version)
        return saved, self._apply_effects(saved.id, effects)

    def _apply_effects(self, workflow_id: str, effects: List[Effect]) -> List[str]:
        """Run document store updates for a committed workflow; report, never raise."""
        errors: List[str] = []
        for effect in effects:
            try:
                effect()
            except KernelError as exc:
                logger.error(
                    "Workflow %s committed but a document update failed: %s",
                    workflow_id, exc.message,
                )
                errors.append(exc.message)
        return errors

    def _result(
        self, saved: Workflow, step_id: str, action: StepAction, document_errors: List[str]
    ) -> AdvanceResult:
        saved_step = saved.get_step(step_id)
        status, _, _ = derive_status(saved)
        logger.info(
            "Workflow %s step %s: %s -> %s (v%d)",
            saved.id, step_id, action.value, saved_step.state.value, saved.version,
        )
        return AdvanceResult(
            workflow_id=saved.id,
            step_id=step_id,
            new_version=saved.version,
            step_state=saved_step.state,
            step=saved_step,
            workflow_status=status,
            document_errors=document_errors,
        )

    def handle_authority_event(
        self,
        workflow_id: str,
        step_id: str,
        confirmed: bool,
        document_id: Optional[str] = None,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        current_time: Optional[datetime] = None,
    ) -> AdvanceResult:
        """
        Entry point for external confirmation events.

        Callers that do not track versions may omit `expected_version`; the
        event is then applied against the version read here.
        """
        if expected_version is None:
            expected_version = self.store.require(workflow_id).version
        action = StepAction.CONFIRM_AUTHORITY if confirmed else StepAction.REJECT_AUTHORITY
        return self.advance_step(
            workflow_id,
            step_id,
            expected_version,
            StepInput(action=action, document_id=document_id, reason=reason),
            current_time=current_time,
        )

    def _start(self, workflow, step, step_input, now, effects) -> None:
        move(step, StepState.IN_PROGRESS, now)

    def _submit(self, workflow, step, step_input, now, effects) -> None:
        self._require_state(step, StepState.IN_PROGRESS, StepAction.SUBMIT)

        if step.requires_authority_interaction:
            self._await_authority(step, now)
            return

        if not step_input.document_id:
            raise ValidationError(
                f"Submitting step {step.id} requires a document_id",
                detail={"step_id": step.id},
            )
        problem = self._document_problem(workflow, step, step_input.document_id, now)
        if problem:
            self._fail(workflow, step, problem, transient=True, now=now)
            return
        self._complete(workflow, step, step_input.document_id, now, effects)

    # --- External submission ---

    def _submits_externally(self, step: WorkflowStep) -> bool:
        return step.automatable and self.submission is not None

    def _submit_external(
        self,
        workflow: Workflow,
        step: WorkflowStep,
        step_input: StepInput,
        expected_version: int,
        now: datetime,
    ) -> AdvanceResult:
        """
        Claim the step, call the submission capability, then record the outcome.

        The claim is committed before anything leaves the kernel, so of several
        callers holding the same version only the one whose claim lands ever
        reaches the external system.
        """
        self._require_state(step, StepState.IN_PROGRESS, StepAction.SUBMIT)
        claim = uuid4().hex
        step.submission_claim = claim
        step.updated_at = now
        workflow.updated_at = now
        claimed = self.store.compare_and_swap(workflow, expected_version)
        logger.info(
            "Workflow %s step %s: submission claimed (v%d)", workflow.id, step.id, claimed.version
        )

        request = SubmissionRequest(
            workflow_id=workflow.id,
            profile_id=workflow.profile_id,
            step_id=step.id,
            document_type_id=step.node_id,
            category=step.category,
            attempt=step.retry_count + 1,
            renewal_of=step.renewal_of,
            payload=step_input.payload,
        )
        try:
            outcome = self.submission.submit(request)
        except Exception:
            # Release the claim so the step can be submitted again
            self._settle(workflow.id, step.id, claim, claimed.version, now, _leave_unchanged)
            raise

        def record(target: Workflow, target_step: WorkflowStep, effects: List[Effect]) -> None:
            self._apply_outcome(target, target_step, outcome, now, effects)

        saved, document_errors = self._settle(
            workflow.id, step.id, claim, claimed.version, now, record
        )
        return self._result(saved, step.id, StepAction.SUBMIT, document_errors)

    def _settle(
        self,
        workflow_id: str,
        step_id: str,
        claim: str,
        claimed_version: int,
        now: datetime,
        apply: Callable[[Workflow, WorkflowStep, List[Effect]], None],
    ) -> Tuple[Workflow, List[str]]:
        """Clear a submission claim and apply its result against the latest version."""
        while True:
            current = self.store.require(workflow_id)
            workflow = current.model_copy(deep=True)
            step = workflow.get_step(step_id)
            if step is None or step.submission_claim != claim:
                raise ConflictError(workflow_id, claimed_version, current.version)
            step.submission_claim = None
            step.updated_at = now
            effects: List[Effect] = []
            apply(workflow, step, effects)
            try:
                return self._commit(workflow, current.version, effects, now)
            except ConflictError:
                # Another step moved meanwhile; the claim keeps this one ours
                logger.info(
                    "Workflow %s changed while step %s was submitting; reapplying outcome",
                    workflow_id, step_id,
                )

    def _apply_outcome(
        self,
        workflow: Workflow,
        step: WorkflowStep,
        outcome: SubmissionOutcome,
        now: datetime,
        effects: List[Effect],
    ) -> None:
        if outcome.status == SubmissionStatus.TRANSIENT_FAILURE:
            self._fail(workflow, step, outcome.error or "transient submission failure", True, now)
            return
        if outcome.status == SubmissionStatus.PERMANENT_FAILURE:
            self._fail(workflow, step, outcome.error or "submission rejected", False, now)
            return

        if outcome.document is not None:
            problem = self._staged_document_problem(workflow, step, outcome.document)
            if problem:
                self._fail(workflow, step, problem, transient=False, now=now)
                return
            self._stage_document(workflow, step, outcome.document, effects)
            step.produced_document_id = outcome.document.document_id
        else:
            step.produced_document_id = outcome.reference

        if step.requires_authority_interaction:
            self._await_authority(step, now)
        else:
            move(step, StepState.COMPLETED, now)

    def _report_failure(self, workflow, step, step_input, now, effects) -> None:
        self._require_state(step, StepState.IN_PROGRESS, StepAction.REPORT_FAILURE)
        self._fail(
            workflow,
            step,
            step_input.reason or "failure reported by caller",
            transient=step_input.transient,
            now=now,
        )

    def _confirm_authority(self, workflow, step, step_input, now, effects) -> None:
        self._require_state(step, StepState.AWAITING_AUTHORITY, StepAction.CONFIRM_AUTHORITY)
        if step_input.document_id:
            problem = self._document_problem(workflow, step, step_input.document_id, now)
            if problem:
                raise ValidationError(problem, detail={"step_id": step.id})
            self._complete(workflow, step, step_input.document_id, now, effects)
        else:
            move(step, StepState.COMPLETED, now)
        step.stale = False

    def _reject_authority(self, workflow, step, step_input, now, effects) -> None:
        self._require_state(step, StepState.AWAITING_AUTHORITY, StepAction.REJECT_AUTHORITY)
        step.stale = False
        # Authority decisions are final; no automatic retry
        self._fail(
            workflow, step, step_input.reason or "rejected by authority", transient=False, now=now
        )

    # --- Helpers ---

    def _require_state(self, step: WorkflowStep, state: StepState, action: StepAction) -> None:
        if step.state != state:
            raise InvalidTransitionError(
                f"Cannot {action.value} step {step.id} while it is {step.state.value}",
                detail={"step_id": step.id, "state": step.state.value, "action": action.value},
            )
        if step.submission_claim is not None:
            raise InvalidTransitionError(
                f"Cannot {action.value} step {step.id} while its submission is in flight",
                detail={"step_id": step.id, "state": step.state.value, "action": action.value},
            )

    def _await_authority(self, step: WorkflowStep, now: datetime) -> None:
        move(step, StepState.AWAITING_AUTHORITY, now)
        step.awaiting_since = now
        step.stale = False
        step.escalation_contact = self.authorities.lookup(step.issuing_authority, step.category)

    def _document_problem(
        self, workflow: Workflow, step: WorkflowStep, document_id: str, now: datetime
    ) -> Optional[str]:
        """Why a supplied document cannot satisfy the step, or None if it can."""
        document = self.documents.get(document_id)
        if document is None or self.documents.owner_of(document_id) != workflow.profile_id:
            return f"Document {document_id} is not held by profile {workflow.profile_id}"
        if document.document_type_id != step.node_id:
            return f"Document {document_id} is a {document.document_type_id}, not a {step.node_id}"
        if document.verification_status == VerificationStatus.REJECTED:
            return f"Document {document_id} failed verification"
        expiry = document_expiry(document, step.validity_days)
        if expiry is not None and expiry <= now:
            return f"Document {document_id} expired on {expiry.date().isoformat()}"
        if step.renewal_of:
            if document_id == step.renewal_of:
                return f"Document {document_id} is the one this step renews"
            renewal_cutoff = now + timedelta(days=self.config.renewal_grace_days)
            if expiry is not None and expiry <= renewal_cutoff:
                return (
                    f"Document {document_id} expires on {expiry.date().isoformat()}, "
                    f"inside the {self.config.renewal_grace_days}-day renewal window"
                )
            return self._renewal_target_problem(workflow, step)
        return None

    def _renewal_target_problem(self, workflow: Workflow, step: WorkflowStep) -> Optional[str]:
        if step.renewal_of and self.documents.owner_of(step.renewal_of) != workflow.profile_id:
            return (
                f"Document {step.renewal_of} to be renewed is not held by "
                f"profile {workflow.profile_id}"
            )
        return None

    def _staged_document_problem(
        self, workflow: Workflow, step: WorkflowStep, document: HeldDocument
    ) -> Optional[str]:
        """Why a document returned by the submission capability cannot be recorded."""
        if self.documents.get(document.document_id) is not None:
            return f"Submission returned document {document.document_id}, which already exists"
        if document.document_type_id != step.node_id:
            return (
                f"Submission returned a {document.document_type_id} "
                f"for step {step.id}, not a {step.node_id}"
            )
        return self._renewal_target_problem(workflow, step)

    def _complete(self, workflow, step, document_id: str, now: datetime, effects) -> None:
        move(step, StepState.COMPLETED, now)
        step.produced_document_id = document_id
        if step.renewal_of:
            document = self.documents.get(document_id)
            effects.append(
                lambda: self.documents.renew(workflow.profile_id, step.renewal_of, document)
            )

    def _stage_document(self, workflow, step, document: HeldDocument, effects) -> None:
        if step.renewal_of:
            effects.append(
                lambda: self.documents.renew(workflow.profile_id, step.renewal_of, document)
            )
        else:
            effects.append(lambda: self.documents.add(workflow.profile_id, document))

    def _fail(
        self, workflow: Workflow, step: WorkflowStep, reason: str, transient: bool, now: datetime
    ) -> None:
        step.failure_reason = reason
        if transient and step.retry_count < self.config.max_retries:
            step.retry_count += 1
            step.backoff_seconds = backoff_seconds(
                step.retry_count,
                self.config.backoff_base_seconds,
                self.config.backoff_max_seconds,
            )
            step.next_attempt_after = now + timedelta(seconds=step.backoff_seconds)
            move(step, StepState.READY, now)
            logger.info(
                "Step %s failed transiently (%s); retry %d/%d after %.0fs",
                step.id, reason, step.retry_count, self.config.max_retries, step.backoff_seconds,
            )
            return

        move(step, StepState.FAILED, now)
        step.escalation_contact = self.authorities.lookup(step.issuing_authority, step.category)
        cascaded = cascade_failure(workflow, step.id, now)
        logger.warning(
            "Step %s in workflow %s failed terminally (%s); cascaded to %s",
            step.id, workflow.id, reason, cascaded or "nothing",
        )

    # --- Abandonment ---

    def delete_workflow(self, workflow_id: str, expected_version: Optional[int] = None) -> bool:
        """Abandon a workflow. Held documents are untouched."""
        deleted = self.store.delete(workflow_id, expected_version)
        if deleted:
            logger.info("Workflow %s abandoned", workflow_id)
        return deleted

    # --- Stale authority steps ---

    def _stale_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self.config.stale_after_days)

    def flag_stale_steps(self, current_time: Optional[datetime] = None) -> List[StaleEscalation]:
        """
        Flag awaiting-authority steps with no external update inside the stale
        window. Returns every stale step, newly flagged or not.
        """
        now = as_utc(current_time) if current_time else utc_now()
        cutoff = self._stale_cutoff(now)
        for workflow in self.store.list_all():
            fresh = [
                s for s in workflow.steps
                if s.state == StepState.AWAITING_AUTHORITY
                and not s.stale
                and s.awaiting_since is not None
                and s.awaiting_since <= cutoff
            ]
            if not fresh:
                continue
            fresh_ids = {s.id for s in fresh}
            updated = workflow.model_copy(deep=True)
            for step in updated.steps:
                if step.id in fresh_ids:
                    step.stale = True
                    step.updated_at = now
            updated.updated_at = now
            try:
                self.store.compare_and_swap(updated, workflow.version)
            except ConflictError:
                # Picked up again on the next sweep
                logger.info("Workflow %s changed during stale sweep; skipping", workflow.id)
                continue
            logger.warning(
                "Workflow %s: %d awaiting-authority step(s) flagged stale",
                workflow.id, len(fresh),
            )
        return self.stale_escalations(now)

    def stale_escalations(self, current_time: Optional[datetime] = None) -> List[StaleEscalation]:
        now = as_utc(current_time) if current_time else utc_now()
        escalations = []
        for workflow in self.store.list_all():
            for step in workflow.steps:
                if step.state != StepState.AWAITING_AUTHORITY or not step.stale:
                    continue
                escalations.append(StaleEscalation(
                    workflow_id=workflow.id,
                    profile_id=workflow.profile_id,
                    step_id=step.id,
                    node_id=step.node_id,
                    awaiting_since=step.awaiting_since,
                    days_waiting=round((now - step.awaiting_since).total_seconds() / 86400.0, 2),
                    contact=step.escalation_contact,
                ))
        return escalations
