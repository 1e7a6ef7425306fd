"""Catalog entities — schemes, their criteria, and document types."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from benefit_kernel.models.values import TypedValue, UTCDateTime


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_THAN = "less_than"
    LESS_OR_EQUAL = "less_or_equal"
    IN_SET = "in_set"
    NOT_IN_SET = "not_in_set"
    DATE_BEFORE = "date_before"
    DATE_AFTER = "date_after"
    RANGE_INCLUSIVE = "range_inclusive"


class Criterion(BaseModel):
    """One qualification rule. `upper` is only meaningful for range_inclusive."""

    field: str
    operator: Operator
    value: TypedValue
    upper: Optional[TypedValue] = None
    weight: float = Field(ge=0.0, default=1.0)
    optional: bool = False                  # Optional criteria feed confidence only
    reason_if_fail: Optional[str] = None    # Human-readable text shown on failure

    @property
    def mandatory(self) -> bool:
        return self.weight > 0 and not self.optional


class RequiredDocument(BaseModel):
    document_type_id: str
    mandatory: bool = True


class Scheme(BaseModel):
    """A benefit program. Immutable snapshot for the duration of a call."""

    id: str
    name: str = ""
    categories: List[str] = []
    criteria: List[Criterion] = []
    required_documents: List[RequiredDocument] = []
    estimated_benefit: float = 0.0
    last_updated: UTCDateTime


class DocumentType(BaseModel):
    """
    A kind of document an applicant may need.

    Prerequisites are referenced by id only; the catalog keeps the relation
    as an id graph so cycles can be found without chasing object references.
    """

    id: str
    name: str = ""
    category: str
    validity_days: Optional[int] = Field(default=None, ge=0)   # None = never expires
    prerequisites: List[str] = []
    automatable: bool = False
    requires_authority_interaction: bool = False
    issuing_authority: Optional[str] = None
    estimated_duration_days: float = Field(default=1.0, ge=0.0)
