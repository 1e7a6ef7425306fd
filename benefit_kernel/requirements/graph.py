"""
Requirement Graph Builder — merges the document needs of selected schemes.

Behavioral Contract:
- One node per distinct document type, however many schemes need it
- Prerequisite chains are pulled in recursively from the catalog
- Edges run prerequisite -> dependent
- Any cycle fails the build with CycleDetectedError naming its participants;
  cycles are never broken or pruned
- The graph carries a topological order (ties broken by id) used by the
  orchestrator to decide step readiness
"""

import heapq
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Set

from benefit_kernel.errors import CycleDetectedError, NotFoundError, ValidationError
from benefit_kernel.models.requirements import (
    RequirementEdge,
    RequirementGraph,
    RequirementNode,
)
from benefit_kernel.models.scheme import DocumentType, Scheme

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


class DocumentTypeSource(Protocol):
    def get_document_type(self, document_type_id: str) -> Optional[DocumentType]: ...


def find_cycle(adjacency: Mapping[str, Sequence[str]]) -> Optional[List[str]]:
    """
    Return the nodes of one cycle in traversal order, or None if acyclic.

    Iterative DFS with recursion-stack tracking. Nodes are visited in sorted
    order and neighbours in declared order, so the reported cycle is stable.
    Neighbours missing from `adjacency` are treated as sinks.
    """
    color: Dict[str, int] = {}
    for root in sorted(adjacency):
        if color.get(root, _WHITE) != _WHITE:
            continue
        path: List[str] = [root]
        iterators = [iter(adjacency.get(root, ()))]
        color[root] = _GRAY
        while iterators:
            neighbour = next(iterators[-1], None)
            if neighbour is None:
                color[path.pop()] = _BLACK
                iterators.pop()
                continue
            state = color.get(neighbour, _WHITE)
            if state == _GRAY:
                return path[path.index(neighbour):]
            if state == _WHITE:
                color[neighbour] = _GRAY
                path.append(neighbour)
                iterators.append(iter(adjacency.get(neighbour, ())))
    return None


def topological_order(nodes: Iterable[str], edges: Iterable[RequirementEdge]) -> List[str]:
    """Kahn's algorithm with a min-heap, so equal-rank nodes come out by id."""
    node_set = set(nodes)
    indegree = {n: 0 for n in node_set}
    outgoing: Dict[str, List[str]] = {n: [] for n in node_set}
    for edge in edges:
        outgoing[edge.prerequisite].append(edge.dependent)
        indegree[edge.dependent] += 1

    heap = [n for n, d in indegree.items() if d == 0]
    heapq.heapify(heap)
    order: List[str] = []
    while heap:
        node = heapq.heappop(heap)
        order.append(node)
        for dependent in outgoing[node]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(heap, dependent)

    if len(order) != len(node_set):
        # Only reachable if a cycle slipped past detection
        remaining = {n: [d for d in outgoing[n] if indegree[d] > 0] for n in node_set if indegree[n] > 0}
        raise CycleDetectedError(find_cycle(remaining) or sorted(remaining))
    return order


def _collect_document_types(
    roots: Iterable[str],
    catalog: DocumentTypeSource,
    requested_by: Mapping[str, Set[str]],
) -> Dict[str, DocumentType]:
    types: Dict[str, DocumentType] = {}
    stack = sorted(roots, reverse=True)
    dependents_of: Dict[str, str] = {}
    while stack:
        type_id = stack.pop()
        if type_id in types:
            continue
        doc_type = catalog.get_document_type(type_id)
        if doc_type is None:
            needed_by = sorted(requested_by.get(type_id, ())) or [dependents_of.get(type_id)]
            raise NotFoundError(
                f"Document type '{type_id}' is not in the catalog",
                detail={"document_type_id": type_id, "needed_by": needed_by},
            )
        types[type_id] = doc_type
        for prerequisite in reversed(doc_type.prerequisites):
            if prerequisite not in types:
                dependents_of.setdefault(prerequisite, type_id)
                stack.append(prerequisite)
    return types


def _ancestors(start: str, types: Mapping[str, DocumentType]) -> Set[str]:
    seen: Set[str] = set()
    stack = list(types[start].prerequisites)
    while stack:
        node = stack.pop()
        if node in seen:
            continue
        seen.add(node)
        stack.extend(types[node].prerequisites)
    return seen


def build_requirement_graph(
    selected_schemes: Sequence[Scheme],
    catalog: DocumentTypeSource,
) -> RequirementGraph:
    """Merge the selected schemes' document requirements into one graph."""
    if not selected_schemes:
        raise ValidationError("At least one scheme must be selected")

    mandatory: Dict[str, bool] = {}
    required_by: Dict[str, Set[str]] = {}
    for scheme in sorted(selected_schemes, key=lambda s: s.id):
        for requirement in scheme.required_documents:
            type_id = requirement.document_type_id
            mandatory[type_id] = mandatory.get(type_id, False) or requirement.mandatory
            required_by.setdefault(type_id, set()).add(scheme.id)

    types = _collect_document_types(required_by, catalog, required_by)

    adjacency = {tid: list(dt.prerequisites) for tid, dt in types.items()}
    cycle = find_cycle(adjacency)
    if cycle:
        logger.error("Prerequisite cycle detected: %s", " -> ".join(cycle))
        raise CycleDetectedError(cycle)

    # Prerequisites inherit the schemes and mandatory flag of what they unlock
    node_schemes: Dict[str, Set[str]] = {tid: set() for tid in types}
    node_mandatory: Dict[str, bool] = {tid: False for tid in types}
    for direct_id in sorted(required_by):
        for node_id in _ancestors(direct_id, types) | {direct_id}:
            node_schemes[node_id] |= required_by[direct_id]
            node_mandatory[node_id] = node_mandatory[node_id] or mandatory[direct_id]

    nodes: Dict[str, RequirementNode] = {}
    for type_id in sorted(types):
        doc_type = types[type_id]
        nodes[type_id] = RequirementNode(
            document_type_id=type_id,
            category=doc_type.category,
            validity_days=doc_type.validity_days,
            mandatory=node_mandatory[type_id],
            direct=type_id in required_by,
            required_by=sorted(node_schemes[type_id]),
            automatable=doc_type.automatable,
            requires_authority_interaction=doc_type.requires_authority_interaction,
            issuing_authority=doc_type.issuing_authority,
            estimated_duration_days=doc_type.estimated_duration_days,
        )

    edge_pairs = sorted({
        (prerequisite, type_id)
        for type_id, doc_type in types.items()
        for prerequisite in doc_type.prerequisites
    })
    edges = [RequirementEdge(prerequisite=p, dependent=d) for p, d in edge_pairs]

    graph = RequirementGraph(
        scheme_ids=sorted(s.id for s in selected_schemes),
        nodes=nodes,
        edges=edges,
        topological_order=topological_order(nodes, edges),
    )
    logger.info(
        "Requirement graph for %s: %d nodes, %d edges",
        graph.scheme_ids, len(nodes), len(edges),
    )
    return graph
