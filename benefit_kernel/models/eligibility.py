"""Eligibility results and alternative suggestions."""

from typing import List, Optional

from pydantic import BaseModel, Field

from benefit_kernel.models.scheme import Operator
from benefit_kernel.models.values import UTCDateTime

MISSING_DATA = "missing-data"
NOT_SATISFIED = "not-satisfied"


class FailingCriterion(BaseModel):
    field: str
    operator: Operator
    code: str                               # MISSING_DATA | NOT_SATISFIED
    reason: str                             # Human-readable
    mandatory: bool = True


class CriteriaEvaluation(BaseModel):
    """Raw outcome of evaluating one scheme's criteria against one profile."""

    eligible: bool
    confidence: float = Field(ge=0.0, le=1.0)
    failing: List[FailingCriterion] = []
    evaluated_at: UTCDateTime               # The caller-supplied as_of instant


class EligibilityResult(BaseModel):
    """Fresh per evaluation call; never reused across profile or catalog changes."""

    scheme_id: str
    eligible: bool
    confidence: float = Field(ge=0.0, le=1.0)
    failing: List[FailingCriterion] = []
    estimated_benefit: float = 0.0
    scheme_last_updated: UTCDateTime
    evaluated_at: UTCDateTime


class AlternativeSuggestion(BaseModel):
    scheme_id: str
    similarity: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    eligible: bool
    estimated_benefit: float = 0.0
    shared_categories: List[str] = []
    failing: List[FailingCriterion] = []
    rejected_scheme_id: Optional[str] = None
