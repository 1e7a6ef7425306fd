"""
Document Reuse Resolver — classifies each requirement node against the
documents an applicant already holds.

  reuse_existing  a matching document stays valid beyond as_of + grace window
  renew_expiring  a matching document has expired or expires within the window
  fetch_new       nothing of that type is held

Held documents are only read. Rejected documents and records already
superseded by a renewal never match.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from benefit_kernel.models.profile import HeldDocument, VerificationStatus
from benefit_kernel.models.requirements import (
    RequirementGraph,
    RequirementNode,
    ReuseAction,
    ReuseDecision,
)
from benefit_kernel.models.values import as_utc

logger = logging.getLogger(__name__)

DEFAULT_GRACE_DAYS = 30


def document_expiry(document: HeldDocument, validity_days: Optional[int]) -> Optional[datetime]:
    """Explicit expiry wins; otherwise issue date plus the type's validity. None = unbounded."""
    if document.expires_at is not None:
        return document.expires_at
    if validity_days is None:
        return None
    return document.issued_at + timedelta(days=validity_days)


def _preference(document: HeldDocument, expiry: Optional[datetime]):
    # Unbounded validity beats any date; then latest expiry, latest issue, id
    return (
        expiry is None,
        expiry or datetime.min.replace(tzinfo=document.issued_at.tzinfo),
        document.issued_at,
        document.document_id,
    )


def _best_match(
    node: RequirementNode, candidates: List[HeldDocument]
) -> Optional[HeldDocument]:
    usable = [
        d for d in candidates
        if d.verification_status != VerificationStatus.REJECTED and d.superseded_by is None
    ]
    if not usable:
        return None
    return max(usable, key=lambda d: _preference(d, document_expiry(d, node.validity_days)))


def resolve_reuse(
    graph: RequirementGraph,
    held_documents: Iterable[HeldDocument],
    as_of: datetime,
    grace_days: int = DEFAULT_GRACE_DAYS,
) -> List[ReuseDecision]:
    """Return one decision per graph node, in the graph's topological order."""
    as_of = as_utc(as_of)
    by_type: Dict[str, List[HeldDocument]] = {}
    for document in held_documents:
        by_type.setdefault(document.document_type_id, []).append(document)

    horizon = as_of + timedelta(days=grace_days)
    decisions: List[ReuseDecision] = []
    for node_id in graph.topological_order:
        node = graph.nodes[node_id]
        match = _best_match(node, by_type.get(node_id, []))
        if match is None:
            decisions.append(ReuseDecision(
                node_id=node_id,
                action=ReuseAction.FETCH_NEW,
                reason="No valid document of this type is held",
            ))
            continue

        expiry = document_expiry(match, node.validity_days)
        if expiry is None or expiry > horizon:
            action = ReuseAction.REUSE_EXISTING
            reason = "Held document remains valid"
        elif expiry <= as_of:
            action = ReuseAction.RENEW_EXPIRING
            reason = f"Held document expired on {expiry.date().isoformat()}"
        else:
            action = ReuseAction.RENEW_EXPIRING
            reason = (
                f"Held document expires on {expiry.date().isoformat()}, "
                f"within the {grace_days}-day renewal window"
            )
        decisions.append(ReuseDecision(
            node_id=node_id,
            action=action,
            document_id=match.document_id,
            expires_at=expiry,
            reason=reason,
        ))

    logger.info(
        "Reuse decisions: %s",
        {a.value: sum(1 for d in decisions if d.action == a) for a in ReuseAction},
    )
    return decisions
