"""
Submission Fabric — dispatches automatable steps to external submitters.

Behavioral Contract:
- Implements the Submission Capability the orchestrator calls
- Submitters are registered per document type id or per category
- TransientFailureError (including AuthorityUnavailableError) from a submitter
  becomes a transient outcome; any other exception becomes a permanent one
- Never retries by itself; retry policy belongs to the orchestrator
"""

import logging
import time
from typing import Callable, Dict, Optional, Protocol

from benefit_kernel.errors import TransientFailureError
from benefit_kernel.models.submission import (
    SubmissionOutcome,
    SubmissionRequest,
    SubmissionStatus,
)

logger = logging.getLogger(__name__)

Submitter = Callable[[SubmissionRequest], SubmissionOutcome]


class SubmissionCapability(Protocol):
    def submit(self, request: SubmissionRequest) -> SubmissionOutcome: ...


class SubmissionFabric:
    """
    Registry-backed submission capability. Adapters to real authority
    systems register themselves here; the kernel ships none.
    """

    def __init__(self):
        self._by_type: Dict[str, Submitter] = {}
        self._by_category: Dict[str, Submitter] = {}

    def register_submitter(
        self,
        submitter: Submitter,
        *,
        document_type_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> None:
        """Register a submitter for a document type or a whole category."""
        if document_type_id is None and category is None:
            raise ValueError("Provide document_type_id or category")
        if document_type_id is not None:
            self._by_type[document_type_id] = submitter
        if category is not None:
            self._by_category[category] = submitter

    def _resolve(self, request: SubmissionRequest) -> Optional[Submitter]:
        return self._by_type.get(request.document_type_id) or self._by_category.get(
            request.category
        )

    def submit(self, request: SubmissionRequest) -> SubmissionOutcome:
        submitter = self._resolve(request)
        if submitter is None:
            return SubmissionOutcome(
                status=SubmissionStatus.PERMANENT_FAILURE,
                error=(
                    f"No submitter registered for document type "
                    f"{request.document_type_id} (category {request.category})"
                ),
            )

        start = time.monotonic()
        try:
            outcome = submitter(request)
        except TransientFailureError as e:
            logger.warning(
                "Transient submission failure for step %s (attempt %d): %s",
                request.step_id, request.attempt, e.message,
            )
            return SubmissionOutcome(
                status=SubmissionStatus.TRANSIENT_FAILURE,
                error=f"{e.code}: {e.message}",
                duration_seconds=round(time.monotonic() - start, 3),
            )
        except Exception as e:
            logger.exception("Submission for step %s failed", request.step_id)
            return SubmissionOutcome(
                status=SubmissionStatus.PERMANENT_FAILURE,
                error=str(e),
                duration_seconds=round(time.monotonic() - start, 3),
            )

        if not outcome.duration_seconds:
            outcome = outcome.model_copy(
                update={"duration_seconds": round(time.monotonic() - start, 3)}
            )
        return outcome
