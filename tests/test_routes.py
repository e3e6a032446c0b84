import json

import pytest

from tests.ledger_helpers import breeding_payload, exportation_payload, harvest_payload


def _create_batch(client, **overrides):
    res = client.post("/api/harvests", json=harvest_payload(**overrides))
    assert res.status_code == 201
    return res.get_json()["id"]


def test_health_needs_no_login(anon_client):
    res = anon_client.get("/_health")
    assert res.status_code == 200
    assert res.get_json()["ok"] is True


@pytest.mark.parametrize(
    "path",
    ["/api/harvests", "/api/distributions", "/api/dashboard/stats", "/api/harvests/recent"],
)
def test_ledger_endpoints_need_a_session(anon_client, path):
    res = anon_client.get(path)
    assert res.status_code == 401
    assert res.get_json() == {"ok": False, "err": "unauthorized"}


def test_create_and_read_harvest(client):
    batch_id = _create_batch(client)

    item = client.get(f"/api/harvests/{batch_id}").get_json()["item"]
    assert item["seedBatchId"] == "2023-09-SB-TIWALA_6"
    assert item["createdBy"] == "staff-001"
    assert item["dateHarvested"].startswith("2023-09-20")

    by_key = client.get("/api/harvests/by-batch/2023-09-SB-TIWALA_6").get_json()
    assert by_key["item"]["id"] == batch_id

    listed = client.get("/api/harvests").get_json()["items"]
    assert [b["id"] for b in listed] == [batch_id]


def test_unknown_seed_batch_id_is_404(client):
    res = client.get("/api/harvests/by-batch/NOPE")
    assert res.status_code == 404
    assert res.get_json()["ok"] is False


def test_validation_errors_carry_fields(client):
    res = client.post("/api/harvests", json=harvest_payload(inQuantity=0))
    assert res.status_code == 400
    body = res.get_json()
    assert body["code"] == "VALIDATION_ERROR"
    assert "inQuantity" in body["fields"]


def test_duplicate_seed_batch_id_is_409(client):
    _create_batch(client, seedBatchId="LOT-1")
    res = client.post("/api/harvests", json=harvest_payload(seedBatchId="LOT-1"))
    assert res.status_code == 409
    assert res.get_json()["code"] == "DUPLICATE_SEED_BATCH_ID"


def test_distribution_lifecycle(client):
    batch_id = _create_batch(client)
    sbid = "2023-09-SB-TIWALA_6"

    res = client.post("/api/distributions", json=exportation_payload(sbid, 30))
    assert res.status_code == 201
    d1 = res.get_json()["id"]
    d2 = client.post("/api/distributions", json=breeding_payload(sbid, 70)).get_json()["id"]

    batch = client.get(f"/api/harvests/{batch_id}").get_json()["item"]
    assert (batch["balance"], batch["status"]) == (0, "Depleted")

    res = client.post("/api/distributions", json=exportation_payload(sbid, 1))
    assert res.status_code == 409
    assert res.get_json()["code"] == "INSUFFICIENT_BALANCE"

    assert client.patch(f"/api/distributions/{d2}", json={"quantity": 50}).status_code == 200
    assert client.get(f"/api/harvests/{batch_id}").get_json()["item"]["balance"] == 20

    res = client.delete(f"/api/distributions/{d1}")
    assert res.get_json() == {"ok": True, "deletedDistributionId": d1, "updatedBatchId": batch_id}
    assert client.get(f"/api/harvests/{batch_id}").get_json()["item"]["balance"] == 50

    item = client.get(f"/api/distributions/{d2}").get_json()["item"]
    assert item["quantity"] == 50
    assert item["date"].startswith("2024-02-12")


def test_missing_records_are_404(client):
    for method, path in (
        ("get", "/api/harvests/missing"),
        ("delete", "/api/harvests/missing"),
        ("get", "/api/distributions/missing"),
        ("delete", "/api/distributions/missing"),
    ):
        res = getattr(client, method)(path)
        assert res.status_code == 404
        assert res.get_json()["code"] == "NOT_FOUND"


def test_harvest_patch_and_cascade_delete(client):
    batch_id = _create_batch(client)
    d1 = client.post("/api/distributions", json=exportation_payload("2023-09-SB-TIWALA_6", 5)).get_json()["id"]

    res = client.patch(f"/api/harvests/{batch_id}", json={"status": "Storage", "remarks": "cold room"})
    assert res.status_code == 200
    assert client.get(f"/api/harvests/{batch_id}").get_json()["item"]["status"] == "Archived"

    res = client.delete(f"/api/harvests/{batch_id}")
    assert res.get_json()["deletedDistributionIds"] == [d1]
    assert client.get("/api/distributions").get_json()["items"] == []


def test_recent_endpoints_honor_limit(client):
    for variety in ("Tiwala 6", "Tiwala 8", "Tiwala 10"):
        _create_batch(client, variety=variety)
    assert len(client.get("/api/harvests/recent?limit=2").get_json()["items"]) == 2
    assert client.get("/api/distributions/recent").get_json()["items"] == []


def test_dashboard(client):
    _create_batch(client, dateHarvested="2023-09-20")
    client.post("/api/distributions", json=exportation_payload("2023-09-SB-TIWALA_6", 25))

    stats = client.get("/api/dashboard/stats").get_json()
    assert stats["total_seeds"] == 75
    assert stats["most_abundant_crop"] == "Soybean"
    assert stats["recent_harvest"]["dateHarvested"].startswith("2023-09-20")

    crops = client.get("/api/dashboard/crops").get_json()["items"]
    assert crops == [{"crop": "Soybean", "total": 75}]

    trend = client.get("/api/dashboard/harvest-trends?months=4").get_json()
    assert trend["months"] == 4
    assert len(trend["buckets"]) == 4
    assert len(client.get("/api/dashboard/distribution-trends").get_json()["buckets"]) == 6


def test_bulk_import_endpoint(client):
    rows = [
        ["crop", "variety", "classification", "area", "totalLotArea", "germination",
         "datePlanted", "dateHarvested", "inQuantity", "remarks"],
        ["soybean", "tiwala 6", "breeder", "field a", 1.5, 92, "06/01/2023", "09/20/2023", 100, ""],
        ["soybean", "", "breeder", "field a", 1.5, 92, "06/01/2023", "09/20/2023", 100, ""],
    ]
    body = client.post("/api/harvests/import", json={"rows": rows}).get_json()
    assert (body["createdCount"], body["failedCount"]) == (1, 1)
    assert body["failed"][0]["row"] == 3


def test_non_finite_json_numbers_are_rejected(client):
    body = json.dumps(harvest_payload(inQuantity=float("inf")))
    assert "Infinity" in body
    res = client.post("/api/harvests", data=body, content_type="application/json")
    assert res.status_code == 400
    assert "inQuantity" in res.get_json()["fields"]
    assert client.get("/api/harvests").get_json()["items"] == []


def test_trend_months_query_is_bounded(client):
    assert client.get("/api/dashboard/harvest-trends?months=100000").get_json()["months"] == 60
    body = client.get("/api/dashboard/distribution-trends?months=-3").get_json()
    assert (body["months"], len(body["buckets"])) == (1, 1)
