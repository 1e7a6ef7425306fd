"""
Benefit Kernel API — FastAPI endpoints.

Exposes the kernel's functionality via a REST API for:
- Catalog inspection and upserts
- Eligibility evaluation and alternative suggestions
- Requirement graphs and document reuse
- Workflow creation, advancement and status
- Authority confirmations and stale-step escalations
"""

from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from benefit_kernel.errors import (
    ConflictError,
    CycleDetectedError,
    KernelError,
    NotFoundError,
    TransientFailureError,
    ValidationError,
)
from benefit_kernel.kernel import BenefitKernel
from benefit_kernel.models.profile import HeldDocument, Profile
from benefit_kernel.models.requirements import RequirementGraph, ReuseDecision
from benefit_kernel.models.scheme import DocumentType, Scheme
from benefit_kernel.models.workflow import StepInput
from benefit_kernel.settings import Settings, configure_logging


# --- Request/Response Models ---

class EligibilityRequest(BaseModel):
    profile: Profile
    scheme_ids: Optional[List[str]] = None
    as_of: Optional[datetime] = None


class AlternativesRequest(BaseModel):
    profile: Profile
    max_results: int = 5
    as_of: Optional[datetime] = None


class GraphRequest(BaseModel):
    scheme_ids: List[str]


class ReuseRequest(BaseModel):
    graph: RequirementGraph
    profile_id: str
    as_of: Optional[datetime] = None


class WorkflowCreateRequest(BaseModel):
    """Either scheme_ids (plan from the catalog) or an explicit graph and decisions."""

    profile_id: str
    scheme_ids: Optional[List[str]] = None
    graph: Optional[RequirementGraph] = None
    decisions: Optional[List[ReuseDecision]] = None


class AdvanceRequest(BaseModel):
    expected_version: int
    input: StepInput


class AuthorityEventRequest(BaseModel):
    confirmed: bool
    document_id: Optional[str] = None
    reason: Optional[str] = None
    expected_version: Optional[int] = None


ERROR_STATUS = [
    (ConflictError, 409),
    (CycleDetectedError, 409),
    (NotFoundError, 404),
    (ValidationError, 422),
    (TransientFailureError, 503),
]


def status_for(error: KernelError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


# --- Application Factory ---

def create_app(
    kernel: Optional[BenefitKernel] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Benefit eligibility and application workflow kernel",
        version=settings.app_version,
    )

    bk = kernel or BenefitKernel.from_settings(settings)

    # Store components on app state for access in endpoints
    app.state.kernel = bk
    app.state.settings = settings

    @app.exception_handler(KernelError)
    async def kernel_error_handler(request: Request, exc: KernelError):
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    # === CATALOG ===

    @app.get("/catalog/schemes")
    def list_schemes(category: Optional[str] = None):
        """Catalog schemes, optionally filtered by category tag."""
        schemes = (
            bk.catalog.schemes_by_category(category) if category else bk.catalog.all_schemes()
        )
        return [s.model_dump(mode="json") for s in schemes]

    @app.put("/catalog/schemes/{scheme_id}")
    def upsert_scheme(scheme_id: str, scheme: Scheme):
        if scheme.id != scheme_id:
            raise ValidationError(
                "Scheme id in path and body differ",
                detail={"path": scheme_id, "body": scheme.id},
            )
        bk.catalog.upsert_scheme(scheme)
        return {"status": "upserted", "scheme_id": scheme_id, "catalog_version": bk.catalog.version}

    @app.get("/catalog/categories")
    def list_categories():
        return bk.catalog.categories()

    @app.get("/catalog/document-types")
    def list_document_types():
        return [d.model_dump(mode="json") for d in bk.catalog.all_document_types()]

    @app.put("/catalog/document-types/{document_type_id}")
    def upsert_document_type(document_type_id: str, document_type: DocumentType):
        if document_type.id != document_type_id:
            raise ValidationError(
                "Document type id in path and body differ",
                detail={"path": document_type_id, "body": document_type.id},
            )
        bk.catalog.upsert_document_type(document_type)
        return {
            "status": "upserted",
            "document_type_id": document_type_id,
            "catalog_version": bk.catalog.version,
        }

    # === DOCUMENTS ===

    @app.get("/profiles/{profile_id}/documents")
    def get_held_documents(profile_id: str):
        return [d.model_dump(mode="json") for d in bk.documents.held_documents(profile_id)]

    @app.post("/profiles/{profile_id}/documents")
    def add_document(profile_id: str, document: HeldDocument):
        """Record a document the applicant now holds."""
        bk.documents.add(profile_id, document)
        return {"status": "added", "document_id": document.document_id}

    # === ELIGIBILITY ===

    @app.post("/eligibility/evaluate")
    def evaluate_eligibility(req: EligibilityRequest):
        """Ranked eligibility results for a profile."""
        results = bk.evaluate_eligibility(req.profile, req.scheme_ids, req.as_of)
        return [r.model_dump(mode="json") for r in results]

    @app.post("/eligibility/{scheme_id}/alternatives")
    def find_alternatives(scheme_id: str, req: AlternativesRequest):
        """Similar schemes for a profile rejected by scheme_id."""
        suggestions = bk.find_alternatives(scheme_id, req.profile, req.max_results, req.as_of)
        return [s.model_dump(mode="json") for s in suggestions]

    # === REQUIREMENTS ===

    @app.post("/requirements/graph")
    def build_graph(req: GraphRequest):
        return bk.build_requirement_graph(req.scheme_ids).model_dump(mode="json")

    @app.post("/requirements/reuse")
    def resolve_reuse(req: ReuseRequest):
        decisions = bk.resolve_reuse(req.graph, req.profile_id, req.as_of)
        return [d.model_dump(mode="json") for d in decisions]

    # === WORKFLOWS ===

    @app.post("/workflows")
    def create_workflow(req: WorkflowCreateRequest):
        """Create a workflow from scheme ids, or from a graph and its decisions."""
        if req.graph is not None:
            if req.decisions is None:
                raise ValidationError("decisions are required alongside a graph")
            workflow = bk.create_workflow(req.graph, req.decisions, req.profile_id)
        elif req.scheme_ids:
            workflow = bk.plan_workflow(req.profile_id, req.scheme_ids)
        else:
            raise ValidationError("Provide scheme_ids or a graph with decisions")
        return {"id": workflow.id, "version": workflow.version}

    @app.get("/workflows/{workflow_id}")
    def get_status(workflow_id: str):
        return bk.get_status(workflow_id).model_dump(mode="json")

    @app.delete("/workflows/{workflow_id}")
    def delete_workflow(workflow_id: str, expected_version: Optional[int] = None):
        """Abandon a workflow. Held documents are kept."""
        if not bk.delete_workflow(workflow_id, expected_version):
            raise NotFoundError(
                f"Workflow {workflow_id} not found", detail={"workflow_id": workflow_id}
            )
        return {"status": "abandoned", "workflow_id": workflow_id}

    @app.get("/profiles/{profile_id}/workflows")
    def list_workflows(profile_id: str):
        return [r.model_dump(mode="json") for r in bk.list_workflows(profile_id)]

    @app.post("/workflows/{workflow_id}/steps/{step_id}/advance")
    def advance_step(workflow_id: str, step_id: str, req: AdvanceRequest):
        result = bk.advance_step(workflow_id, step_id, req.expected_version, req.input)
        return result.model_dump(mode="json")

    @app.post("/workflows/{workflow_id}/steps/{step_id}/authority-event")
    def authority_event(workflow_id: str, step_id: str, req: AuthorityEventRequest):
        """Callback for an issuing authority's confirmation or rejection."""
        result = bk.handle_authority_event(
            workflow_id,
            step_id,
            confirmed=req.confirmed,
            document_id=req.document_id,
            reason=req.reason,
            expected_version=req.expected_version,
        )
        return result.model_dump(mode="json")

    # === ESCALATIONS ===

    @app.get("/escalations/stale")
    def get_stale_escalations():
        """Awaiting-authority steps flagged for manual follow-up."""
        return [e.model_dump(mode="json") for e in bk.stale_escalations()]

    @app.post("/escalations/stale/sweep")
    def sweep_stale():
        """Force a stale sweep (for testing)."""
        return [e.model_dump(mode="json") for e in bk.sweep_stale()]

    return app


# Default application instance
app = create_app()
