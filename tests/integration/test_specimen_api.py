"""Integration tests for the specimen API against SQLite."""

import pytest
from fastapi.testclient import TestClient

from specimens.adapters.reference_clients import (
    AbstractActorDirectory,
    AbstractOrderLookup,
    ReferenceLookupError,
)
from specimens.entrypoints import specimen_api


class FakeOrderLookup(AbstractOrderLookup):
    orders = {
        "ORD-1001": {"orderNumber": "ORD-1001", "patientRef": "PAT-42", "testRefs": ["CBC", "CRP"]},
    }

    def get(self, order_ref):
        if order_ref not in self.orders:
            raise ReferenceLookupError(f"order {order_ref} not found")
        return self.orders[order_ref]


class FakeActorDirectory(AbstractActorDirectory):
    def get(self, actor_ref):
        return {"displayName": actor_ref.title()}


@pytest.fixture
def client(sqlite_uow):
    specimen_api.app.dependency_overrides[specimen_api.get_uow] = lambda: sqlite_uow()
    specimen_api.app.dependency_overrides[specimen_api.get_order_lookup] = lambda: FakeOrderLookup()
    specimen_api.app.dependency_overrides[specimen_api.get_actor_directory] = lambda: FakeActorDirectory()

    yield TestClient(specimen_api.app)

    specimen_api.app.dependency_overrides.clear()


def post_specimen(client, **overrides):
    body = {
        "orderRef": "ORD-1001",
        "patientRef": "PAT-42",
        "testRefs": ["CBC"],
        "specimenType": "blood",
        "containerType": "EDTA tube",
        "volume": 4,
        "actor": "nurse-1",
    }
    body.update(overrides)
    return client.post("/api/v1/specimens", json=body)


class TestCreate:

    def test_create_returns_the_pending_specimen(self, client):
        response = post_specimen(client, priority="stat")

        assert response.status_code == 201
        data = response.json()
        assert data["specimenId"] == "SPL-2024-000001"
        assert data["barcode"] == "SMP-20240301-000001"
        assert data["status"] == "pending"
        assert data["priority"] == "stat"
        assert data["version"] == 1
        assert [e["notes"] for e in data["statusHistory"]] == ["Sample created"]

    def test_create_from_order(self, client):
        response = client.post("/api/v1/specimens/from-order", json={
            "orderRef": "ORD-1001",
            "specimenType": "blood",
            "containerType": "EDTA tube",
            "volume": 3,
            "actor": "nurse-1",
        })

        assert response.status_code == 201
        assert response.json()["patientRef"] == "PAT-42"
        assert response.json()["testRefs"] == ["CBC", "CRP"]

    def test_unknown_order_is_a_bad_gateway(self, client):
        response = client.post("/api/v1/specimens/from-order", json={
            "orderRef": "ORD-404",
            "specimenType": "blood",
            "containerType": "EDTA tube",
            "volume": 3,
            "actor": "nurse-1",
        })

        assert response.status_code == 502

    def test_invalid_body(self, client):
        assert post_specimen(client, volume=-1).status_code == 422
        assert post_specimen(client, specimenType="saliva").status_code == 422


class TestLifecycle:

    def test_collect_then_transition(self, client):
        specimen_id = post_specimen(client).json()["specimenId"]

        collected = client.post(f"/api/v1/specimens/{specimen_id}/collect", json={
            "actor": "nurse-2",
            "actualVolume": 5,
            "qualityChecks": [{"checkType": "label", "result": "pass"}],
        })
        assert collected.status_code == 200
        assert collected.json()["status"] == "collected"
        assert collected.json()["volume"] == 5
        assert collected.json()["expiryDate"] is not None

        received = client.post(f"/api/v1/specimens/{specimen_id}/transition", json={
            "status": "in_receipt",
            "actor": "lab-1",
        })
        assert received.status_code == 200
        assert received.json()["receivedByRef"] == "lab-1"

    def test_error_codes(self, client):
        specimen_id = post_specimen(client).json()["specimenId"]

        assert client.get("/api/v1/specimens/SPL-2024-999999").status_code == 404
        assert client.post(f"/api/v1/specimens/{specimen_id}/transition", json={
            "status": "completed", "actor": "lab-1",
        }).status_code == 409
        assert client.post(f"/api/v1/specimens/{specimen_id}/transition", json={
            "status": "rejected", "actor": "lab-1",
        }).status_code == 422

        client.post(f"/api/v1/specimens/{specimen_id}/transition", json={"status": "cancelled", "actor": "admin"})
        terminal = client.post(f"/api/v1/specimens/{specimen_id}/transition", json={
            "status": "collected", "actor": "nurse-1",
        })
        assert terminal.status_code == 409
        assert terminal.json()["error"] == "TerminalStateError"

        assert client.post(f"/api/v1/specimens/{specimen_id}/collect", json={"actor": "n"}).status_code == 409

    def test_batch_receive(self, client):
        ids = [post_specimen(client).json()["specimenId"] for _ in range(3)]
        for specimen_id in ids[:2]:
            client.post(f"/api/v1/specimens/{specimen_id}/collect", json={"actor": "nurse-1"})

        response = client.post("/api/v1/specimens/receive", json={"specimenIds": ids, "actor": "lab-1"})

        assert response.json() == {"matchedCount": 2, "modifiedCount": 2}
        counts = client.get("/api/v1/specimens/status-counts").json()
        assert counts["in_receipt"] == 2
        assert counts["pending"] == 1

    def test_quality_check_and_history(self, client):
        specimen_id = post_specimen(client).json()["specimenId"]

        response = client.post(f"/api/v1/specimens/{specimen_id}/quality-checks", json={
            "checkType": "volume", "result": "warning", "actor": "lab-1",
        })
        assert response.status_code == 201
        assert response.json()["qualityChecks"][0]["result"] == "warning"

        history = client.get(f"/api/v1/specimens/{specimen_id}/history").json()
        assert history[0]["changedByName"] == "Nurse-1"


class TestQueries:

    def test_queue_and_listing(self, client):
        post_specimen(client, priority="routine")
        post_specimen(client, priority="critical")

        queue = client.get("/api/v1/specimens/queue").json()
        assert [s["priority"] for s in queue] == ["critical", "routine"]

        listing = client.get("/api/v1/specimens", params={"priority": "routine", "pageSize": 10}).json()
        assert listing["total"] == 1
        assert listing["pageSize"] == 10

    def test_barcode_lookup_and_search(self, client):
        created = post_specimen(client, collectionNotes="Drawn from left arm").json()

        by_barcode = client.get(f"/api/v1/specimens/barcode/{created['barcode']}")
        assert by_barcode.json()["specimenId"] == created["specimenId"]

        found = client.get("/api/v1/specimens/search", params={"q": "left arm"}).json()
        assert [s["specimenId"] for s in found] == [created["specimenId"]]

    def test_labels(self, client):
        first = post_specimen(client, priority="urgent").json()
        second = post_specimen(client).json()

        label = client.get(f"/api/v1/specimens/{first['specimenId']}/label")
        assert label.status_code == 200
        assert label.json()["barcode"] == first["barcode"]
        assert label.json()["priority"] == "urgent"
        assert client.get("/api/v1/specimens/SPL-2024-999999/label").status_code == 404

        batch = client.post("/api/v1/specimens/labels", json={
            "specimenIds": [second["specimenId"], "SPL-2024-999999", first["specimenId"]],
        }).json()
        assert batch["count"] == 2
        assert [entry["specimenId"] for entry in batch["labels"]] == [second["specimenId"], first["specimenId"]]

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
