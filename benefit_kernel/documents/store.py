"""
Document Store — the documents each applicant holds.

Documents are shared read-only across workflows. A renewal never edits a
record in place: it adds a new record and moves the applicant's current
pointer for that document type, leaving the old record marked superseded.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from benefit_kernel.errors import NotFoundError, ValidationError
from benefit_kernel.models.profile import HeldDocument

logger = logging.getLogger(__name__)


class DocumentStore:
    """
    In-memory document store.
    Production would sit in front of the encrypted document vault.
    """

    def __init__(self):
        self._records: Dict[str, HeldDocument] = {}
        self._owner: Dict[str, str] = {}
        # (profile_id, document_type_id) -> current document id
        self._current: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def add(self, profile_id: str, document: HeldDocument) -> HeldDocument:
        """Register a newly obtained document and make it current for its type."""
        with self._lock:
            if document.document_id in self._records:
                raise ValidationError(
                    f"Document {document.document_id} already exists",
                    detail={"document_id": document.document_id},
                )
            self._records[document.document_id] = document
            self._owner[document.document_id] = profile_id
            key = (profile_id, document.document_type_id)
            previous_id = self._current.get(key)
            if previous_id is not None:
                self._supersede(previous_id, document.document_id)
            self._current[key] = document.document_id
        return document

    def renew(self, profile_id: str, old_document_id: str, new_document: HeldDocument) -> HeldDocument:
        """Replace a held document with its renewal (pointer swap)."""
        old = self.get(old_document_id)
        if old is None or self._owner.get(old_document_id) != profile_id:
            raise NotFoundError(
                f"Document {old_document_id} is not held by profile {profile_id}",
                detail={"document_id": old_document_id, "profile_id": profile_id},
            )
        if old.document_type_id != new_document.document_type_id:
            raise ValidationError(
                f"Renewal of {old_document_id} must be a {old.document_type_id}, "
                f"got {new_document.document_type_id}",
                detail={"document_id": new_document.document_id},
            )
        if new_document.document_id not in self._records:
            self.add(profile_id, new_document)
        with self._lock:
            self._current[(profile_id, old.document_type_id)] = new_document.document_id
            self._supersede(old_document_id, new_document.document_id)
        logger.info(
            "Document %s renewed by %s for profile %s",
            old_document_id, new_document.document_id, profile_id,
        )
        return self._records[new_document.document_id]

    def _supersede(self, old_id: str, new_id: str) -> None:
        old = self._records[old_id]
        if old.superseded_by is None and old_id != new_id:
            self._records[old_id] = old.model_copy(update={"superseded_by": new_id})

    def get(self, document_id: str) -> Optional[HeldDocument]:
        return self._records.get(document_id)

    def owner_of(self, document_id: str) -> Optional[str]:
        return self._owner.get(document_id)

    def held_documents(self, profile_id: str) -> List[HeldDocument]:
        """Current (non-superseded) documents for a profile, ordered by type."""
        return [
            self._records[doc_id]
            for (owner, _), doc_id in sorted(self._current.items())
            if owner == profile_id
        ]

    def history(self, profile_id: str, document_type_id: str) -> List[HeldDocument]:
        """Every record of one type for a profile, oldest issue first."""
        return sorted(
            (
                d for doc_id, d in self._records.items()
                if self._owner[doc_id] == profile_id and d.document_type_id == document_type_id
            ),
            key=lambda d: (d.issued_at, d.document_id),
        )
