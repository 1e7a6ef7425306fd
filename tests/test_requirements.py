"""Tests for the Requirement Graph Builder and the Document Reuse Resolver."""

from datetime import datetime, timedelta, timezone

import pytest

from benefit_kernel.catalog.store import CatalogStore
from benefit_kernel.errors import CycleDetectedError, NotFoundError, ValidationError
from benefit_kernel.models import (
    DocumentType,
    HeldDocument,
    RequiredDocument,
    ReuseAction,
    Scheme,
    VerificationStatus,
)
from benefit_kernel.requirements.graph import build_requirement_graph, find_cycle
from benefit_kernel.requirements.reuse import document_expiry, resolve_reuse

AS_OF = datetime(2026, 1, 15, tzinfo=timezone.utc)


def _make_catalog() -> CatalogStore:
    catalog = CatalogStore()
    for document_type in [
        DocumentType(id="aadhaar", category="identity"),
        DocumentType(id="proof-of-address", category="residence", validity_days=365),
        DocumentType(
            id="income-certificate",
            category="income",
            validity_days=180,
            prerequisites=["aadhaar", "proof-of-address"],
            requires_authority_interaction=True,
            issuing_authority="tehsil_office",
        ),
        DocumentType(
            id="bank-passbook", category="finance", prerequisites=["aadhaar"], automatable=True
        ),
    ]:
        catalog.upsert_document_type(document_type)
    return catalog


def _make_scheme(scheme_id: str, documents, optional=()) -> Scheme:
    return Scheme(
        id=scheme_id,
        categories=["welfare"],
        required_documents=[
            RequiredDocument(document_type_id=d, mandatory=d not in optional) for d in documents
        ],
        last_updated=AS_OF,
    )


def _make_document(doc_id, type_id, issued, expires=None, **kwargs) -> HeldDocument:
    return HeldDocument(
        document_id=doc_id,
        document_type_id=type_id,
        issued_at=issued,
        expires_at=expires,
        **kwargs,
    )


class TestBuildRequirementGraph:
    def test_shared_document_is_one_node(self):
        catalog = _make_catalog()
        graph = build_requirement_graph(
            [
                _make_scheme("housing", ["proof-of-address"]),
                _make_scheme("ration_card", ["proof-of-address", "aadhaar"]),
            ],
            catalog,
        )
        assert list(graph.nodes).count("proof-of-address") == 1
        assert graph.nodes["proof-of-address"].required_by == ["housing", "ration_card"]
        assert len(graph.nodes) == 2

    def test_prerequisites_pulled_in(self):
        catalog = _make_catalog()
        graph = build_requirement_graph([_make_scheme("pension", ["income-certificate"])], catalog)
        assert set(graph.nodes) == {"aadhaar", "proof-of-address", "income-certificate"}
        assert graph.nodes["aadhaar"].direct is False
        assert graph.nodes["aadhaar"].required_by == ["pension"]
        assert graph.prerequisites_of("income-certificate") == ["aadhaar", "proof-of-address"]

    def test_topological_order(self):
        catalog = _make_catalog()
        graph = build_requirement_graph(
            [_make_scheme("s", ["income-certificate", "bank-passbook"])], catalog
        )
        order = graph.topological_order
        assert order == ["aadhaar", "bank-passbook", "proof-of-address", "income-certificate"]
        for edge in graph.edges:
            assert order.index(edge.prerequisite) < order.index(edge.dependent)

    def test_mandatory_merged_across_schemes(self):
        catalog = _make_catalog()
        graph = build_requirement_graph(
            [
                _make_scheme("a", ["bank-passbook"], optional=("bank-passbook",)),
                _make_scheme("b", ["bank-passbook"]),
            ],
            catalog,
        )
        assert graph.nodes["bank-passbook"].mandatory is True

    def test_optional_only_stays_optional(self):
        catalog = _make_catalog()
        graph = build_requirement_graph(
            [_make_scheme("a", ["bank-passbook"], optional=("bank-passbook",))], catalog
        )
        assert graph.nodes["bank-passbook"].mandatory is False
        assert graph.nodes["aadhaar"].mandatory is False

    def test_cycle_names_participants(self):
        catalog = _make_catalog()
        catalog.upsert_document_type(DocumentType(id="x", category="c", prerequisites=["y"]))
        catalog.upsert_document_type(DocumentType(id="y", category="c", prerequisites=["z"]))
        catalog.upsert_document_type(DocumentType(id="z", category="c", prerequisites=["x"]))
        with pytest.raises(CycleDetectedError) as exc_info:
            build_requirement_graph([_make_scheme("s", ["x", "aadhaar"])], catalog)
        assert set(exc_info.value.participants) == {"x", "y", "z"}
        assert exc_info.value.to_dict()["error"] == "cycle_detected"

    def test_self_cycle(self):
        catalog = _make_catalog()
        catalog.upsert_document_type(DocumentType(id="loop", category="c", prerequisites=["loop"]))
        with pytest.raises(CycleDetectedError) as exc_info:
            build_requirement_graph([_make_scheme("s", ["loop"])], catalog)
        assert exc_info.value.participants == ["loop"]

    def test_unknown_document_type(self):
        with pytest.raises(NotFoundError):
            build_requirement_graph([_make_scheme("s", ["passport"])], _make_catalog())

    def test_empty_selection(self):
        with pytest.raises(ValidationError):
            build_requirement_graph([], _make_catalog())

    def test_scheme_without_documents(self):
        graph = build_requirement_graph([_make_scheme("s", [])], _make_catalog())
        assert graph.nodes == {}
        assert graph.topological_order == []


class TestFindCycle:
    def test_acyclic(self):
        assert find_cycle({"a": ["b"], "b": ["c"], "c": []}) is None

    def test_diamond_is_not_a_cycle(self):
        assert find_cycle({"a": ["b", "c"], "b": ["d"], "c": ["d"], "d": []}) is None

    def test_stable_report(self):
        adjacency = {"b": ["c"], "c": ["b"], "a": ["b"]}
        assert find_cycle(adjacency) == ["b", "c"]


class TestResolveReuse:
    def _graph(self):
        return build_requirement_graph(
            [_make_scheme("s", ["income-certificate", "bank-passbook"])], _make_catalog()
        )

    def test_fetch_new_when_nothing_held(self):
        decisions = resolve_reuse(self._graph(), [], AS_OF)
        assert {d.action for d in decisions} == {ReuseAction.FETCH_NEW}
        assert [d.node_id for d in decisions] == self._graph().topological_order

    def test_unbounded_document_reused(self):
        held = [_make_document("d1", "aadhaar", AS_OF - timedelta(days=3000))]
        decisions = {d.node_id: d for d in resolve_reuse(self._graph(), held, AS_OF)}
        assert decisions["aadhaar"].action == ReuseAction.REUSE_EXISTING
        assert decisions["aadhaar"].document_id == "d1"

    def test_valid_beyond_grace_reused(self):
        held = [_make_document("d1", "proof-of-address", AS_OF - timedelta(days=100))]
        decisions = {d.node_id: d for d in resolve_reuse(self._graph(), held, AS_OF)}
        assert decisions["proof-of-address"].action == ReuseAction.REUSE_EXISTING

    def test_expiring_within_grace_renewed(self):
        held = [_make_document("d1", "proof-of-address", AS_OF - timedelta(days=350))]
        decisions = {d.node_id: d for d in resolve_reuse(self._graph(), held, AS_OF)}
        assert decisions["proof-of-address"].action == ReuseAction.RENEW_EXPIRING
        assert decisions["proof-of-address"].document_id == "d1"

    def test_expired_never_reused(self):
        held = [
            _make_document(
                "d1", "income-certificate", AS_OF - timedelta(days=400),
                expires=AS_OF - timedelta(days=1),
            )
        ]
        decisions = {d.node_id: d for d in resolve_reuse(self._graph(), held, AS_OF)}
        assert decisions["income-certificate"].action == ReuseAction.RENEW_EXPIRING
        assert "expired" in decisions["income-certificate"].reason

    def test_expiry_exactly_at_grace_horizon_is_renewed(self):
        held = [
            _make_document(
                "d1", "aadhaar", AS_OF - timedelta(days=10), expires=AS_OF + timedelta(days=30)
            )
        ]
        decisions = {d.node_id: d for d in resolve_reuse(self._graph(), held, AS_OF)}
        assert decisions["aadhaar"].action == ReuseAction.RENEW_EXPIRING

    def test_rejected_and_superseded_ignored(self):
        held = [
            _make_document(
                "d1", "aadhaar", AS_OF, verification_status=VerificationStatus.REJECTED
            ),
            _make_document("d2", "bank-passbook", AS_OF, superseded_by="d3"),
        ]
        decisions = {d.node_id: d for d in resolve_reuse(self._graph(), held, AS_OF)}
        assert decisions["aadhaar"].action == ReuseAction.FETCH_NEW
        assert decisions["bank-passbook"].action == ReuseAction.FETCH_NEW

    def test_best_document_preferred(self):
        held = [
            _make_document("old", "proof-of-address", AS_OF - timedelta(days=350)),
            _make_document("new", "proof-of-address", AS_OF - timedelta(days=10)),
        ]
        decisions = {d.node_id: d for d in resolve_reuse(self._graph(), held, AS_OF)}
        assert decisions["proof-of-address"].document_id == "new"
        assert decisions["proof-of-address"].action == ReuseAction.REUSE_EXISTING

    def test_custom_grace(self):
        held = [_make_document("d1", "proof-of-address", AS_OF - timedelta(days=350))]
        decisions = {d.node_id: d for d in resolve_reuse(self._graph(), held, AS_OF, grace_days=5)}
        assert decisions["proof-of-address"].action == ReuseAction.REUSE_EXISTING

    def test_held_documents_untouched(self):
        held = [_make_document("d1", "proof-of-address", AS_OF - timedelta(days=350))]
        before = [d.model_dump() for d in held]
        resolve_reuse(self._graph(), held, AS_OF)
        assert [d.model_dump() for d in held] == before

    def test_document_expiry(self):
        doc = _make_document("d", "t", datetime(2025, 1, 1, tzinfo=timezone.utc))
        assert document_expiry(doc, None) is None
        assert document_expiry(doc, 10) == datetime(2025, 1, 11, tzinfo=timezone.utc)
