"""Submission — requests to and outcomes from the external submission capability."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from benefit_kernel.models.profile import HeldDocument


class SubmissionStatus(str, Enum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


class SubmissionRequest(BaseModel):
    workflow_id: str
    profile_id: str
    step_id: str
    document_type_id: str
    category: str
    attempt: int                            # 1-based
    renewal_of: Optional[str] = None
    payload: dict = {}


class SubmissionOutcome(BaseModel):
    """What the capability reported for one submission attempt."""

    status: SubmissionStatus
    reference: Optional[str] = None         # External tracking id
    document: Optional[HeldDocument] = None # Issued document, when the authority returns one
    error: Optional[str] = None
    duration_seconds: float = 0.0
