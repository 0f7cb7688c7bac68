"""Tests for the catalog and order API routes."""

import pytest

from labdesk.errors import DuplicateTestError
from labdesk.routes.orders import _http_error

ORDER = {
    "order_id": "ORD-1001",
    "patient": {"age": 34, "sex": "F"},
    "mrn": "MRN-445566",
    "physician": "Dr. Rao",
    "panels": ["cardiac", "cmp"],
    "entries": [
        {"test_id": "troponin_i", "value": "0.02", "prior_value": "0.01"},
        {"test_id": "creatinine", "value": "0.9"},
        {"test_id": "egfr"},
    ],
}


async def _open(client) -> dict:
    response = await client.post("/api/orders", json=ORDER)
    assert response.status_code == 201
    return response.json()


def _row(view: dict, test_id: str) -> dict:
    return next(r for r in view["rows"] if r["test_id"] == test_id)


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "LabDesk API"

    @pytest.mark.asyncio
    async def test_security_headers(self, client):
        response = await client.get("/health")
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestCatalogRoutes:
    """Tests for /api/catalog."""

    @pytest.mark.asyncio
    async def test_list_panels(self, client):
        response = await client.get("/api/catalog/panels")
        assert response.status_code == 200
        assert [p["id"] for p in response.json()] == ["cardiac", "cbc", "cmp"]

    @pytest.mark.asyncio
    async def test_search_tests(self, client):
        response = await client.get("/api/catalog/tests", params={"q": "tni"})
        assert response.status_code == 200
        assert [t["id"] for t in response.json()] == ["troponin_i"]

    @pytest.mark.asyncio
    async def test_filter_by_panel(self, client):
        response = await client.get("/api/catalog/tests", params={"panel": "cmp"})
        ids = [t["id"] for t in response.json()]
        assert "creatinine" in ids
        assert "troponin_i" not in ids

    @pytest.mark.asyncio
    async def test_unknown_panel(self, client):
        response = await client.get("/api/catalog/tests", params={"panel": "lipids"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_get_test(self, client):
        response = await client.get("/api/catalog/tests/troponin_i")
        assert response.status_code == 200
        assert response.json()["loinc"] == "10839-9"

    @pytest.mark.asyncio
    async def test_get_unknown_test(self, client):
        response = await client.get("/api/catalog/tests/unobtainium")
        assert response.status_code == 404


class TestOrderLifecycle:
    """Tests for opening, reading and closing orders."""

    @pytest.mark.asyncio
    async def test_open_order(self, client, scheduler):
        view = await _open(client)

        assert view["order_id"] == "ORD-1001"
        assert [r["test_id"] for r in view["rows"]] == ["troponin_i", "creatinine", "egfr"]
        assert view["dirty_count"] == 0
        assert view["has_critical_values"] is False
        assert view["panel_counts"]["cardiac"] == 1
        assert view["diagnostics"]["pending"] is True
        assert len(scheduler.pending) == 1

        troponin = _row(view, "troponin_i")
        assert troponin["flag"] == "normal"
        assert troponin["badge"] == "N"
        assert troponin["delta_pct"] == 100
        assert _row(view, "egfr")["value"] == "86"

    @pytest.mark.asyncio
    async def test_get_order(self, client):
        await _open(client)
        response = await client.get("/api/orders/ORD-1001")
        assert response.status_code == 200
        assert response.json()["physician"] == "Dr. Rao"

    @pytest.mark.asyncio
    async def test_get_unknown_order(self, client):
        response = await client.get("/api/orders/ORD-404")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_close_order(self, client, registry):
        await _open(client)

        response = await client.delete("/api/orders/ORD-1001")

        assert response.status_code == 204
        assert "ORD-1001" not in registry
        assert (await client.delete("/api/orders/ORD-1001")).status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_patient(self, client):
        body = {**ORDER, "patient": {"age": -1, "sex": "F"}}
        response = await client.post("/api/orders", json=body)
        assert response.status_code == 422


class TestRowEdits:
    """Tests for adding, editing and removing rows."""

    @pytest.mark.asyncio
    async def test_add_test(self, client):
        await _open(client)

        response = await client.post("/api/orders/ORD-1001/tests", json={"test_id": "potassium"})

        assert response.status_code == 201
        row = _row(response.json(), "potassium")
        assert row["value"] == ""
        assert row["flag"] == "unknown"

    @pytest.mark.asyncio
    async def test_add_duplicate_test(self, client):
        await _open(client)
        response = await client.post("/api/orders/ORD-1001/tests", json={"test_id": "troponin_i"})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_add_unknown_test(self, client):
        await _open(client)
        response = await client.post("/api/orders/ORD-1001/tests", json={"test_id": "unobtainium"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_update_value_flags_critical(self, client):
        view = await _open(client)
        row_id = _row(view, "troponin_i")["id"]

        response = await client.patch(f"/api/orders/ORD-1001/rows/{row_id}/value", json={"value": "0.85"})

        assert response.status_code == 200
        data = response.json()
        assert _row(data, "troponin_i")["flag"] == "critical"
        assert _row(data, "troponin_i")["dirty"] is True
        assert data["has_critical_values"] is True
        assert data["dirty_count"] == 1

    @pytest.mark.asyncio
    async def test_update_unit(self, client):
        view = await _open(client)
        row_id = _row(view, "troponin_i")["id"]

        response = await client.patch(f"/api/orders/ORD-1001/rows/{row_id}/unit", json={"unit": "ng/L"})

        assert response.status_code == 200
        row = _row(response.json(), "troponin_i")
        assert row["unit"] == "ng/L"
        assert row["value"] == "20"
        assert row["value_si"] == pytest.approx(0.02)

    @pytest.mark.asyncio
    async def test_update_unit_not_registered(self, client):
        view = await _open(client)
        row_id = _row(view, "troponin_i")["id"]

        response = await client.patch(f"/api/orders/ORD-1001/rows/{row_id}/unit", json={"unit": "mmol/L"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_update_unknown_row(self, client):
        await _open(client)
        response = await client.patch("/api/orders/ORD-1001/rows/row-nope/value", json={"value": "1"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_remove_test(self, client):
        view = await _open(client)
        row_id = _row(view, "troponin_i")["id"]

        response = await client.delete(f"/api/orders/ORD-1001/rows/{row_id}")

        assert response.status_code == 200
        assert "troponin_i" not in [r["test_id"] for r in response.json()["rows"]]

    @pytest.mark.asyncio
    async def test_recalculate(self, client):
        view = await _open(client)
        row_id = _row(view, "creatinine")["id"]
        await client.patch(f"/api/orders/ORD-1001/rows/{row_id}/value", json={"value": "5.0"})

        response = await client.post("/api/orders/ORD-1001/recalculate")

        egfr = _row(response.json(), "egfr")
        assert egfr["value"] == "11"
        assert egfr["flag"] == "critical"

    @pytest.mark.asyncio
    async def test_save_listed_rows(self, client):
        view = await _open(client)
        troponin_id = _row(view, "troponin_i")["id"]
        creatinine_id = _row(view, "creatinine")["id"]
        await client.patch(f"/api/orders/ORD-1001/rows/{troponin_id}/value", json={"value": "0.03"})
        await client.patch(f"/api/orders/ORD-1001/rows/{creatinine_id}/value", json={"value": "1.0"})

        response = await client.post("/api/orders/ORD-1001/save", json={"row_ids": [troponin_id]})

        assert response.json() == {"saved": 1}
        view = (await client.get("/api/orders/ORD-1001")).json()
        assert view["dirty_count"] == 1

    @pytest.mark.asyncio
    async def test_save_all(self, client):
        view = await _open(client)
        row_id = _row(view, "troponin_i")["id"]
        await client.patch(f"/api/orders/ORD-1001/rows/{row_id}/value", json={"value": "0.03"})

        response = await client.post("/api/orders/ORD-1001/save", json={})

        assert response.json() == {"saved": 1}

    @pytest.mark.asyncio
    async def test_save_unknown_row(self, client):
        await _open(client)
        response = await client.post("/api/orders/ORD-1001/save", json={"row_ids": ["row-nope"]})
        assert response.status_code == 404


class TestSamples:
    """Tests for POST /api/orders/{id}/samples."""

    @pytest.mark.asyncio
    async def test_collect_sample(self, client):
        await _open(client)

        response = await client.post(
            "/api/orders/ORD-1001/samples",
            json={"test_ids": ["troponin_i", "creatinine"], "collected_by": "J. Ortiz"},
        )

        assert response.status_code == 201
        sample = response.json()
        assert sample["sample_id"] == "S-100001"
        assert sample["specimen_type"] == "Serum"
        assert set(sample["test_ids"]) == {"troponin_i", "creatinine"}

        view = (await client.get("/api/orders/ORD-1001")).json()
        statuses = {s["test_id"]: s["status"] for s in view["sample_statuses"]}
        assert statuses == {"troponin_i": "collected", "creatinine": "collected", "egfr": "pending"}
        assert view["all_tests_collected"] is False

    @pytest.mark.asyncio
    async def test_recollect_conflicts(self, client):
        await _open(client)
        body = {"test_ids": ["troponin_i"], "collected_by": "J. Ortiz"}
        await client.post("/api/orders/ORD-1001/samples", json=body)

        response = await client.post("/api/orders/ORD-1001/samples", json=body)

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_test_not_on_order(self, client):
        await _open(client)
        response = await client.post(
            "/api/orders/ORD-1001/samples",
            json={"test_ids": ["sodium"], "collected_by": "J. Ortiz"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_empty_request(self, client):
        await _open(client)
        response = await client.post(
            "/api/orders/ORD-1001/samples",
            json={"test_ids": [], "collected_by": "J. Ortiz"},
        )
        assert response.status_code == 422


class TestDiagnosticsAndRelease:
    """Tests for analyze, validation and release."""

    @pytest.mark.asyncio
    async def test_analyze(self, client, provider):
        await _open(client)

        response = await client.post("/api/orders/ORD-1001/analyze")

        assert response.status_code == 200
        data = response.json()
        assert data["pending"] is False
        assert data["error"] is None
        assert data["response"]["report"]["narrative_draft"] == "Results reviewed."
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_analyze_failure_is_reported(self, client, provider):
        provider.error = RuntimeError("upstream 503")
        await _open(client)

        response = await client.post("/api/orders/ORD-1001/analyze")

        assert response.status_code == 200
        assert "upstream 503" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_release_blocked_by_critical(self, client):
        view = await _open(client)
        row_id = _row(view, "troponin_i")["id"]
        await client.patch(f"/api/orders/ORD-1001/rows/{row_id}/value", json={"value": "0.85"})

        validation = (await client.get("/api/orders/ORD-1001/validation")).json()
        assert validation["status"] == "blocked_critical"
        assert validation["critical_test_ids"] == ["troponin_i"]

        response = await client.post("/api/orders/ORD-1001/release")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_release(self, client):
        await _open(client)
        await client.post(
            "/api/orders/ORD-1001/samples",
            json={"test_ids": ["troponin_i"], "collected_by": "J. Ortiz"},
        )

        response = await client.post("/api/orders/ORD-1001/release")

        assert response.status_code == 200
        snapshot = response.json()
        assert snapshot["order_id"] == "ORD-1001"
        assert [r["test_id"] for r in snapshot["results"]] == ["troponin_i", "creatinine", "egfr"]
        assert snapshot["results"][0]["sample_id"] == "S-100001"
        assert snapshot["results"][1]["sample_id"] is None


class TestHttpError:
    def test_maps_known_errors(self):
        exc = _http_error(DuplicateTestError("sodium"))
        assert exc.status_code == 409

    def test_reraises_unknown_errors(self):
        with pytest.raises(KeyError):
            _http_error(KeyError("x"))
