"""
Catalog Store — read-side view of schemes and document types.

Queried by: Eligibility Engine, Alternative Finder, Requirement Graph Builder
Updated by: the catalog authoring pipeline (out of scope), via upserts

Every upsert bumps `version`; eligibility caches key their invalidation on it.
"""

import json
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Set

from pydantic import BaseModel

from benefit_kernel.errors import CycleDetectedError, NotFoundError
from benefit_kernel.models.scheme import DocumentType, Scheme
from benefit_kernel.requirements.graph import find_cycle


class CatalogSnapshot(BaseModel):
    """Serializable form of a whole catalog."""

    schemes: List[Scheme] = []
    document_types: List[DocumentType] = []


class CatalogStore:
    """
    In-memory catalog for the kernel.
    Production would back this with the catalog service's read replica.
    """

    def __init__(self):
        self._schemes: Dict[str, Scheme] = {}
        self._document_types: Dict[str, DocumentType] = {}
        self._by_category: Dict[str, Set[str]] = defaultdict(set)
        self._version = 0

    @property
    def version(self) -> int:
        """Monotonic catalog version, bumped on every change."""
        return self._version

    # --- Schemes ---

    def upsert_scheme(self, scheme: Scheme) -> None:
        """Insert or replace a scheme."""
        previous = self._schemes.get(scheme.id)
        if previous:
            for tag in previous.categories:
                self._by_category[tag].discard(previous.id)
        self._schemes[scheme.id] = scheme
        for tag in scheme.categories:
            self._by_category[tag].add(scheme.id)
        self._version += 1

    def remove_scheme(self, scheme_id: str) -> bool:
        scheme = self._schemes.pop(scheme_id, None)
        if scheme is None:
            return False
        for tag in scheme.categories:
            self._by_category[tag].discard(scheme_id)
        self._version += 1
        return True

    def get_scheme(self, scheme_id: str) -> Optional[Scheme]:
        return self._schemes.get(scheme_id)

    def require_scheme(self, scheme_id: str) -> Scheme:
        scheme = self._schemes.get(scheme_id)
        if scheme is None:
            raise NotFoundError(
                f"Scheme '{scheme_id}' is not in the catalog",
                detail={"scheme_id": scheme_id},
            )
        return scheme

    def get_schemes(self, scheme_ids: List[str]) -> List[Scheme]:
        """Resolve ids to schemes, failing on the first unknown id."""
        return [self.require_scheme(sid) for sid in scheme_ids]

    def all_schemes(self) -> List[Scheme]:
        return [self._schemes[k] for k in sorted(self._schemes)]

    def schemes_by_category(self, category: str) -> List[Scheme]:
        """All schemes tagged with a category, ordered by id."""
        return [self._schemes[k] for k in sorted(self._by_category.get(category, ()))]

    def categories(self) -> List[str]:
        return sorted(tag for tag, ids in self._by_category.items() if ids)

    # --- Document types ---

    def upsert_document_type(self, document_type: DocumentType) -> None:
        self._document_types[document_type.id] = document_type
        self._version += 1

    def get_document_type(self, document_type_id: str) -> Optional[DocumentType]:
        return self._document_types.get(document_type_id)

    def all_document_types(self) -> List[DocumentType]:
        return [self._document_types[k] for k in sorted(self._document_types)]

    def validate(self) -> None:
        """Check the whole prerequisite relation is acyclic."""
        adjacency = {
            tid: list(dt.prerequisites) for tid, dt in self._document_types.items()
        }
        cycle = find_cycle(adjacency)
        if cycle:
            raise CycleDetectedError(cycle)

    # --- Snapshots ---

    def load_snapshot(self, snapshot: CatalogSnapshot) -> None:
        for document_type in snapshot.document_types:
            self.upsert_document_type(document_type)
        for scheme in snapshot.schemes:
            self.upsert_scheme(scheme)

    def snapshot(self) -> CatalogSnapshot:
        return CatalogSnapshot(
            schemes=self.all_schemes(),
            document_types=self.all_document_types(),
        )

    @classmethod
    def from_json_file(cls, path: str) -> "CatalogStore":
        """Build a catalog from a JSON snapshot file."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        store = cls()
        store.load_snapshot(CatalogSnapshot.model_validate(data))
        return store
