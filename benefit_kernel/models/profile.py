"""Profile — the applicant as the kernel sees it. Read, never mutated."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel

from benefit_kernel.models.values import TypedValue, UTCDateTime


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    PENDING = "pending"
    REJECTED = "rejected"


class HeldDocument(BaseModel):
    """A document the applicant already holds."""

    document_id: str
    document_type_id: str
    issued_at: UTCDateTime
    expires_at: Optional[UTCDateTime] = None   # None = derive from the type's validity
    verification_status: VerificationStatus = VerificationStatus.VERIFIED
    superseded_by: Optional[str] = None         # Set when a renewal replaced this record


class Location(BaseModel):
    country: str = "IN"
    state: Optional[str] = None
    district: Optional[str] = None
    postal_code: Optional[str] = None


class Profile(BaseModel):
    """An applicant profile. Owned by the caller."""

    id: str
    full_name: Optional[str] = None
    location: Location = Location()
    fields: Dict[str, TypedValue] = {}
    held_documents: List[HeldDocument] = []
