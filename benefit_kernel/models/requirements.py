"""Requirement graph and document reuse decisions."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel

from benefit_kernel.models.values import UTCDateTime


class RequirementNode(BaseModel):
    """One distinct document type pulled in by the selected schemes."""

    document_type_id: str
    category: str
    validity_days: Optional[int] = None
    mandatory: bool = True
    direct: bool = True                     # False when only pulled in as a prerequisite
    required_by: List[str] = []             # Scheme ids, sorted
    automatable: bool = False
    requires_authority_interaction: bool = False
    issuing_authority: Optional[str] = None
    estimated_duration_days: float = 1.0


class RequirementEdge(BaseModel):
    prerequisite: str
    dependent: str


class RequirementGraph(BaseModel):
    """
    Deduplicated, acyclic document dependency graph for a set of schemes.

    Adjacency lists are keyed by document type id. `topological_order` lists
    every node with prerequisites before dependents, ties broken by id.
    """

    scheme_ids: List[str] = []
    nodes: Dict[str, RequirementNode] = {}
    edges: List[RequirementEdge] = []
    topological_order: List[str] = []

    def prerequisites_of(self, node_id: str) -> List[str]:
        return sorted(e.prerequisite for e in self.edges if e.dependent == node_id)

    def dependents_of(self, node_id: str) -> List[str]:
        return sorted(e.dependent for e in self.edges if e.prerequisite == node_id)


class ReuseAction(str, Enum):
    REUSE_EXISTING = "reuse_existing"
    FETCH_NEW = "fetch_new"
    RENEW_EXPIRING = "renew_expiring"


class ReuseDecision(BaseModel):
    node_id: str
    action: ReuseAction
    document_id: Optional[str] = None       # The matched held document, if any
    expires_at: Optional[UTCDateTime] = None
    reason: str = ""
