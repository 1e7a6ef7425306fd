"""Tests for the FastAPI API endpoints."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from benefit_kernel.api.app import create_app
from benefit_kernel.authority.directory import AuthorityDirectory
from benefit_kernel.kernel import BenefitKernel
from benefit_kernel.models import AuthorityContact, WorkflowConfig
from benefit_kernel.settings import Settings
from benefit_kernel.workflow.store import WorkflowStore

AS_OF = "2026-01-15T00:00:00Z"


@pytest.fixture
def client():
    """Create a test client with fresh components."""
    directory = AuthorityDirectory()
    directory.register(
        AuthorityContact(authority_id="tehsil_office", name="Tehsil Office"),
        categories=["income"],
    )
    kernel = BenefitKernel(
        authorities=directory,
        workflow_store=WorkflowStore(db_path=":memory:"),
        workflow_config=WorkflowConfig(max_retries=1),
    )
    app = create_app(kernel=kernel, settings=Settings(log_level="WARNING"))
    test_client = TestClient(app)
    _seed_catalog(test_client)
    return test_client


def _seed_catalog(client: TestClient) -> None:
    for document_type in [
        {"id": "aadhaar", "category": "identity"},
        {"id": "proof-of-address", "category": "residence", "validity_days": 365},
        {
            "id": "income-certificate",
            "category": "income",
            "prerequisites": ["aadhaar", "proof-of-address"],
            "requires_authority_interaction": True,
            "issuing_authority": "tehsil_office",
        },
    ]:
        response = client.put(f"/catalog/document-types/{document_type['id']}", json=document_type)
        assert response.status_code == 200

    for scheme in [
        {
            "id": "senior_pension",
            "categories": ["pension", "elderly"],
            "criteria": [{
                "field": "age", "operator": "greater_or_equal",
                "value": {"kind": "number", "value": 60},
            }],
            "required_documents": [{"document_type_id": "income-certificate"}],
            "estimated_benefit": 1000,
            "last_updated": "2025-06-01T00:00:00Z",
        },
        {
            "id": "widow_pension",
            "categories": ["pension"],
            "criteria": [{
                "field": "marital_status", "operator": "equals",
                "value": {"kind": "string", "value": "widowed"},
            }],
            "required_documents": [{"document_type_id": "proof-of-address"}],
            "estimated_benefit": 1200,
            "last_updated": "2025-06-01T00:00:00Z",
        },
    ]:
        response = client.put(f"/catalog/schemes/{scheme['id']}", json=scheme)
        assert response.status_code == 200


def _profile(age: int = 40, marital_status: str = "widowed") -> dict:
    return {
        "id": "p1",
        "fields": {
            "age": {"kind": "number", "value": age},
            "marital_status": {"kind": "string", "value": marital_status},
        },
    }


class TestCatalogEndpoints:
    def test_list_schemes(self, client):
        response = client.get("/catalog/schemes")
        assert [s["id"] for s in response.json()] == ["senior_pension", "widow_pension"]
        response = client.get("/catalog/schemes", params={"category": "elderly"})
        assert [s["id"] for s in response.json()] == ["senior_pension"]

    def test_categories(self, client):
        assert client.get("/catalog/categories").json() == ["elderly", "pension"]

    def test_path_body_mismatch(self, client):
        response = client.put("/catalog/document-types/x", json={"id": "y", "category": "c"})
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"


class TestEligibilityEndpoints:
    def test_evaluate(self, client):
        response = client.post("/eligibility/evaluate", json={"profile": _profile(), "as_of": AS_OF})
        assert response.status_code == 200
        data = response.json()
        assert [r["scheme_id"] for r in data] == ["widow_pension", "senior_pension"]
        assert data[1]["eligible"] is False
        assert data[1]["failing"][0]["field"] == "age"

    def test_type_mismatch_is_422(self, client):
        profile = _profile()
        profile["fields"]["age"] = {"kind": "string", "value": "forty"}
        response = client.post("/eligibility/evaluate", json={"profile": profile})
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_unknown_scheme_is_404(self, client):
        response = client.post(
            "/eligibility/evaluate", json={"profile": _profile(), "scheme_ids": ["nope"]}
        )
        assert response.status_code == 404

    def test_alternatives(self, client):
        response = client.post(
            "/eligibility/senior_pension/alternatives",
            json={"profile": _profile(), "max_results": 3, "as_of": AS_OF},
        )
        assert response.status_code == 200
        assert [s["scheme_id"] for s in response.json()] == ["widow_pension"]


class TestRequirementEndpoints:
    def test_graph_and_reuse(self, client):
        graph = client.post("/requirements/graph", json={"scheme_ids": ["senior_pension"]}).json()
        assert graph["topological_order"] == ["aadhaar", "proof-of-address", "income-certificate"]

        client.post("/profiles/p1/documents", json={
            "document_id": "aadhaar_1", "document_type_id": "aadhaar",
            "issued_at": "2020-01-01T00:00:00Z",
        })
        decisions = client.post(
            "/requirements/reuse", json={"graph": graph, "profile_id": "p1", "as_of": AS_OF}
        ).json()
        actions = {d["node_id"]: d["action"] for d in decisions}
        assert actions == {
            "aadhaar": "reuse_existing",
            "proof-of-address": "fetch_new",
            "income-certificate": "fetch_new",
        }

    def test_cycle_is_409(self, client):
        client.put("/catalog/document-types/aadhaar", json={
            "id": "aadhaar", "category": "identity", "prerequisites": ["income-certificate"],
        })
        response = client.post("/requirements/graph", json={"scheme_ids": ["senior_pension"]})
        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "cycle_detected"
        assert set(body["detail"]["participants"]) == {"aadhaar", "income-certificate"}


class TestWorkflowEndpoints:
    def _create(self, client) -> str:
        response = client.post(
            "/workflows", json={"profile_id": "p1", "scheme_ids": ["senior_pension"]}
        )
        assert response.status_code == 200
        assert response.json()["version"] == 1
        return response.json()["id"]

    def test_create_and_status(self, client):
        workflow_id = self._create(client)
        status = client.get(f"/workflows/{workflow_id}").json()
        assert status["status"] == "in_progress"
        assert status["percent_complete"] == 0.0
        assert len(status["steps"]) == 3

    def test_create_from_graph(self, client):
        graph = client.post("/requirements/graph", json={"scheme_ids": ["widow_pension"]}).json()
        decisions = client.post(
            "/requirements/reuse", json={"graph": graph, "profile_id": "p1"}
        ).json()
        response = client.post(
            "/workflows", json={"profile_id": "p1", "graph": graph, "decisions": decisions}
        )
        assert response.status_code == 200

    def test_create_needs_input(self, client):
        assert client.post("/workflows", json={"profile_id": "p1"}).status_code == 422

    def test_advance_and_conflict(self, client):
        workflow_id = self._create(client)
        url = f"/workflows/{workflow_id}/steps/step_aadhaar/advance"
        ok = client.post(url, json={"expected_version": 1, "input": {"action": "start"}})
        assert ok.status_code == 200
        assert ok.json()["new_version"] == 2
        assert ok.json()["step_state"] == "in_progress"

        stale = client.post(url, json={"expected_version": 1, "input": {"action": "start"}})
        assert stale.status_code == 409
        assert stale.json()["error"] == "version_conflict"
        assert stale.json()["detail"]["actual_version"] == 2

    def test_invalid_transition_is_422(self, client):
        workflow_id = self._create(client)
        response = client.post(
            f"/workflows/{workflow_id}/steps/step_income-certificate/advance",
            json={"expected_version": 1, "input": {"action": "start"}},
        )
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_transition"

    def test_authority_event_flow(self, client):
        workflow_id = self._create(client)
        version = 1
        for node_id in ("aadhaar", "proof-of-address"):
            client.post("/profiles/p1/documents", json={
                "document_id": f"{node_id}_doc", "document_type_id": node_id,
                "issued_at": datetime.now(timezone.utc).isoformat(),
            })
            url = f"/workflows/{workflow_id}/steps/step_{node_id}/advance"
            version = client.post(
                url, json={"expected_version": version, "input": {"action": "start"}}
            ).json()["new_version"]
            version = client.post(url, json={
                "expected_version": version,
                "input": {"action": "submit", "document_id": f"{node_id}_doc"},
            }).json()["new_version"]

        url = f"/workflows/{workflow_id}/steps/step_income-certificate/advance"
        version = client.post(
            url, json={"expected_version": version, "input": {"action": "start"}}
        ).json()["new_version"]
        awaiting = client.post(
            url, json={"expected_version": version, "input": {"action": "submit"}}
        ).json()
        assert awaiting["step_state"] == "awaiting_authority"
        assert awaiting["step"]["escalation_contact"]["authority_id"] == "tehsil_office"

        confirmed = client.post(
            f"/workflows/{workflow_id}/steps/step_income-certificate/authority-event",
            json={"confirmed": True},
        )
        assert confirmed.status_code == 200
        assert confirmed.json()["workflow_status"] == "completed"
        assert client.get(f"/workflows/{workflow_id}").json()["percent_complete"] == 100.0

    def test_delete_and_list(self, client):
        workflow_id = self._create(client)
        assert [w["workflow_id"] for w in client.get("/profiles/p1/workflows").json()] == [workflow_id]
        assert client.delete(f"/workflows/{workflow_id}").status_code == 200
        assert client.delete(f"/workflows/{workflow_id}").status_code == 404
        assert client.get(f"/workflows/{workflow_id}").status_code == 404


class TestEscalationEndpoints:
    def test_no_stale_escalations(self, client):
        assert client.get("/escalations/stale").json() == []
        assert client.post("/escalations/stale/sweep").json() == []
