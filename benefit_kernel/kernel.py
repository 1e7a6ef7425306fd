"""
Benefit Kernel — composition root.

Wires the catalog, document store, authority directory, eligibility engine
and workflow orchestrator into the operations the API exposes. Holds no
business rules of its own.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from benefit_kernel.authority.directory import AuthorityDirectory
from benefit_kernel.catalog.store import CatalogStore
from benefit_kernel.documents.store import DocumentStore
from benefit_kernel.eligibility.alternatives import find_alternatives
from benefit_kernel.eligibility.cache import EligibilityCache
from benefit_kernel.eligibility.engine import EligibilityEngine
from benefit_kernel.models.config import EligibilityConfig, WorkflowConfig
from benefit_kernel.models.eligibility import AlternativeSuggestion, EligibilityResult
from benefit_kernel.models.profile import HeldDocument, Profile
from benefit_kernel.models.requirements import RequirementGraph, ReuseDecision
from benefit_kernel.models.values import as_utc, utc_now
from benefit_kernel.models.workflow import (
    AdvanceResult,
    StaleEscalation,
    StatusReport,
    StepInput,
    Workflow,
)
from benefit_kernel.requirements.graph import build_requirement_graph
from benefit_kernel.requirements.reuse import resolve_reuse
from benefit_kernel.settings import Settings
from benefit_kernel.submission.fabric import SubmissionCapability
from benefit_kernel.workflow.monitor import StaleStepMonitor
from benefit_kernel.workflow.orchestrator import WorkflowOrchestrator
from benefit_kernel.workflow.store import WorkflowStore

logger = logging.getLogger(__name__)


class BenefitKernel:
    """Facade over every kernel component."""

    def __init__(
        self,
        catalog: Optional[CatalogStore] = None,
        documents: Optional[DocumentStore] = None,
        authorities: Optional[AuthorityDirectory] = None,
        workflow_store: Optional[WorkflowStore] = None,
        submission: Optional[SubmissionCapability] = None,
        eligibility_config: Optional[EligibilityConfig] = None,
        workflow_config: Optional[WorkflowConfig] = None,
    ):
        self.catalog = catalog or CatalogStore()
        self.documents = documents or DocumentStore()
        self.authorities = authorities or AuthorityDirectory()
        self.workflow_store = workflow_store or WorkflowStore()
        self.submission = submission
        self.eligibility_config = eligibility_config or EligibilityConfig()
        self.workflow_config = workflow_config or WorkflowConfig()

        self.cache = EligibilityCache(self.eligibility_config.cache_max_entries)
        self.engine = EligibilityEngine(self.eligibility_config, self.cache)
        self.orchestrator = WorkflowOrchestrator(
            self.workflow_store,
            self.documents,
            self.authorities,
            submission=self.submission,
            config=self.workflow_config,
        )
        self.monitor = StaleStepMonitor(self.orchestrator)
        self._cache_catalog_version = self.catalog.version

    @classmethod
    def from_settings(cls, settings: Settings, **collaborators) -> "BenefitKernel":
        return cls(
            workflow_store=collaborators.pop("workflow_store", None) or WorkflowStore(settings.db_path),
            eligibility_config=settings.eligibility_config(),
            workflow_config=settings.workflow_config(),
            **collaborators,
        )

    def _sync_cache(self) -> None:
        version = self.catalog.version
        if version != self._cache_catalog_version:
            purged = self.cache.invalidate_catalog(version)
            logger.info(
                "Catalog moved to version %d; purged %d cached evaluations", version, purged
            )
            self._cache_catalog_version = version

    # --- Profiles and documents ---

    def register_profile_documents(self, profile: Profile) -> List[HeldDocument]:
        """Load documents carried on a profile into the document store, once."""
        for document in profile.held_documents:
            if self.documents.get(document.document_id) is None:
                self.documents.add(profile.id, document)
        return self.documents.held_documents(profile.id)

    # --- Eligibility ---

    def evaluate_eligibility(
        self,
        profile: Profile,
        scheme_ids: Optional[Sequence[str]] = None,
        as_of: Optional[datetime] = None,
    ) -> List[EligibilityResult]:
        """Evaluate the profile against the given schemes, or the whole catalog."""
        self._sync_cache()
        as_of = as_utc(as_of) if as_of else utc_now()
        schemes = (
            self.catalog.get_schemes(list(scheme_ids))
            if scheme_ids is not None
            else self.catalog.all_schemes()
        )
        return self.engine.evaluate_eligibility(
            profile, schemes, as_of, catalog_version=self.catalog.version
        )

    def find_alternatives(
        self,
        rejected_scheme_id: str,
        profile: Profile,
        max_results: int = 5,
        as_of: Optional[datetime] = None,
    ) -> List[AlternativeSuggestion]:
        rejected = self.catalog.require_scheme(rejected_scheme_id)
        return find_alternatives(
            rejected,
            profile,
            self.catalog,
            max_results,
            as_utc(as_of) if as_of else utc_now(),
            config=self.eligibility_config,
        )

    # --- Requirements ---

    def build_requirement_graph(self, scheme_ids: Sequence[str]) -> RequirementGraph:
        return build_requirement_graph(self.catalog.get_schemes(list(scheme_ids)), self.catalog)

    def resolve_reuse(
        self,
        graph: RequirementGraph,
        profile_id: str,
        as_of: Optional[datetime] = None,
    ) -> List[ReuseDecision]:
        return resolve_reuse(
            graph,
            self.documents.held_documents(profile_id),
            as_utc(as_of) if as_of else utc_now(),
            grace_days=self.workflow_config.renewal_grace_days,
        )

    # --- Workflows ---

    def create_workflow(
        self,
        graph: RequirementGraph,
        decisions: Sequence[ReuseDecision],
        profile_id: str,
        current_time: Optional[datetime] = None,
    ) -> Workflow:
        return self.orchestrator.create_workflow(graph, decisions, profile_id, current_time)

    def plan_workflow(
        self,
        profile_id: str,
        scheme_ids: Sequence[str],
        current_time: Optional[datetime] = None,
    ) -> Workflow:
        """Build the graph, resolve reuse and create the workflow in one call."""
        graph = self.build_requirement_graph(scheme_ids)
        decisions = self.resolve_reuse(graph, profile_id, current_time)
        return self.create_workflow(graph, decisions, profile_id, current_time)

    def advance_step(
        self,
        workflow_id: str,
        step_id: str,
        expected_version: int,
        step_input: StepInput,
        current_time: Optional[datetime] = None,
    ) -> AdvanceResult:
        return self.orchestrator.advance_step(
            workflow_id, step_id, expected_version, step_input, current_time
        )

    def handle_authority_event(self, workflow_id: str, step_id: str, **event) -> AdvanceResult:
        return self.orchestrator.handle_authority_event(workflow_id, step_id, **event)

    def get_status(self, workflow_id: str) -> StatusReport:
        return self.orchestrator.get_status(workflow_id)

    def list_workflows(self, profile_id: str) -> List[StatusReport]:
        return self.orchestrator.list_workflows(profile_id)

    def delete_workflow(self, workflow_id: str, expected_version: Optional[int] = None) -> bool:
        return self.orchestrator.delete_workflow(workflow_id, expected_version)

    def sweep_stale(self, current_time: Optional[datetime] = None) -> List[StaleEscalation]:
        return self.monitor.sweep_once(current_time)

    def stale_escalations(self) -> List[StaleEscalation]:
        return self.orchestrator.stale_escalations()
