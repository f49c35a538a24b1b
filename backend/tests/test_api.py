"""HTTP endpoint tests: a lot taken from start to production batch."""

import pytest
from httpx import AsyncClient

from conftest import OPERATOR, step_of


def step_id(run: dict, step_code: str) -> str:
    return next(s["id"] for s in run["steps"] if s["step_code"] == step_code)


@pytest.mark.api
@pytest.mark.asyncio
class TestHealth:

    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"


@pytest.mark.api
@pytest.mark.asyncio
class TestProcessEndpoints:

    async def test_create_and_fetch(self, client: AsyncClient):
        response = await client.post("/api/processes", json={
            "code": "CASHEW",
            "name": "Cashew line",
            "steps": [
                {"seq": 2, "step_code": "PACK", "step_name": "Packaging"},
                {"seq": 1, "step_code": "SORT", "step_name": "Sorting"},
            ],
        })

        assert response.status_code == 201
        created = response.json()
        assert [s["step_code"] for s in created["steps"]] == ["SORT", "PACK"]

        fetched = await client.get(f"/api/processes/{created['id']}")
        assert fetched.json()["code"] == "CASHEW"

    async def test_empty_steps_fail_validation(self, client: AsyncClient):
        response = await client.post("/api/processes", json={"code": "X", "name": "X", "steps": []})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.api
@pytest.mark.asyncio
class TestLotFlow:

    async def test_unknown_run_is_404(self, client: AsyncClient):
        response = await client.get("/api/lot-runs/missing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RESOURCE_NOT_FOUND"

    async def test_lot_from_start_to_production_batch(self, client: AsyncClient, process, supply_batch):
        response = await client.post(
            "/api/lot-runs", json={"supply_batch_id": supply_batch.id, "process_id": process.id},
        )
        assert response.status_code == 200
        run = response.json()
        assert run["run"]["status"] == "IN_PROGRESS"
        assert run["lot_no"] == "LOT-001"

        again = await client.post(
            "/api/lot-runs", json={"supply_batch_id": supply_batch.id, "process_id": process.id},
        )
        assert again.json()["run"]["id"] == run["run"]["id"]

        sort_id = step_id(run, "SORT")
        pack_id = step_id(run, "PACK")

        output = (await client.post(
            f"/api/step-runs/{sort_id}/sorting/outputs",
            json={"product_id": "almond-kernel", "quantity_kg": 500},
        )).json()

        entry = {
            "sorting_output_id": output["id"],
            "pack_identifier": "PK-1",
            "quantity_kg": 500,
            "packing_type": "carton",
            "pack_size_kg": 5,
        }
        blocked = await client.post(f"/api/step-runs/{pack_id}/packaging/pack-entries", json=entry)
        assert blocked.status_code == 422
        assert blocked.json()["error"]["message"] == "Metal detection must pass before packing this output."

        failed = await client.post(f"/api/step-runs/{pack_id}/packaging/metal-checks", json={
            "sorting_output_id": output["id"], "status": "FAIL",
        })
        assert failed.status_code == 422
        assert "At least one rejection" in failed.json()["error"]["message"]

        check = await client.post(f"/api/step-runs/{pack_id}/packaging/metal-checks", json={
            "sorting_output_id": output["id"], "status": "PASS",
        })
        assert check.status_code == 201
        assert check.json()["checked_by"] == OPERATOR.id

        packed = await client.post(f"/api/step-runs/{pack_id}/packaging/pack-entries", json=entry)
        assert packed.status_code == 201
        assert packed.json()["pack_count"] == 100

        allocation = await client.post(f"/api/step-runs/{pack_id}/packaging/allocations", json={
            "pack_entry_id": packed.json()["id"],
            "storage_type": "BOX",
            "units_count": 10,
            "packs_per_unit": 8,
            "box_unit_code": "BOX-01",
        })
        assert allocation.status_code == 201

        capacity = await client.get(
            f"/api/step-runs/{pack_id}/packaging/pack-entries/{packed.json()['id']}/capacity"
        )
        assert capacity.json()["remaining_packs"] == 20

        label = await client.get(
            f"/api/step-runs/{pack_id}/packaging/allocations/{allocation.json()['id']}/label"
        )
        assert label.status_code == 200
        assert label.headers["content-type"].startswith("image/svg+xml")
        assert b"<svg" in label.content

        early = await client.post(f"/api/lot-runs/{run['run']['id']}/complete")
        assert early.status_code == 422
        assert "Pending" in early.json()["error"]["message"]

        for step in run["steps"]:
            patched = await client.patch(
                f"/api/lot-runs/step-runs/{step['id']}", json={"status": "COMPLETED"},
            )
            assert patched.status_code == 200
        assert all(s["performed_by"] == OPERATOR.id for s in patched.json()["steps"])

        completed = await client.post(f"/api/lot-runs/{run['run']['id']}/complete")
        assert completed.status_code == 200
        body = completed.json()
        assert body["run"]["run"]["status"] == "COMPLETED"
        assert body["production_batch"]["batch_code"].startswith("PROD-")
        assert body["production_batch"]["quantity"] == pytest.approx(1000.0)


@pytest.mark.api
@pytest.mark.asyncio
class TestStepRecordEndpoints:

    async def test_quality_check_put_then_get(self, client: AsyncClient, lot_run):
        wash_id = step_of(lot_run, "WASH").id

        missing = await client.get(f"/api/step-runs/{wash_id}/quality-check")
        assert missing.status_code == 404

        saved = await client.put(f"/api/step-runs/{wash_id}/quality-check", json={
            "items": [
                {"parameter_code": "colour", "score": 3},
                {"parameter_code": "broken", "score": 1, "remarks": "chipped kernels"},
            ],
        })
        assert saved.status_code == 200
        assert saved.json()["status"] == "FAIL"
        assert saved.json()["overall_score"] == 2.0

        fetched = await client.get(f"/api/step-runs/{wash_id}/quality-check")
        assert fetched.json()["id"] == saved.json()["id"]
        assert [i["parameter_code"] for i in fetched.json()["items"]] == ["broken", "colour"]

    async def test_score_out_of_range_fails_validation(self, client: AsyncClient, lot_run):
        wash_id = step_of(lot_run, "WASH").id
        response = await client.put(f"/api/step-runs/{wash_id}/quality-check", json={
            "items": [{"parameter_code": "colour", "score": 5}],
        })

        assert response.status_code == 422

    async def test_packaging_on_a_wash_step_is_422(self, client: AsyncClient, lot_run):
        wash_id = step_of(lot_run, "WASH").id
        response = await client.get(f"/api/step-runs/{wash_id}/packaging")

        assert response.status_code == 422
        assert "packaging step" in response.json()["error"]["message"]


class TestDuplicateMessages:

    @pytest.mark.unit
    def test_known_constraints_get_operator_messages(self):
        from lotflow.middleware.exceptions import duplicate_message

        sqlite = "UNIQUE constraint failed: lot_runs.supply_batch_id, lot_runs.process_id"
        postgres = 'duplicate key value violates unique constraint "uq_metal_check_attempts_output_no"'

        assert duplicate_message(sqlite).startswith("A lot run for this batch and process")
        assert duplicate_message(postgres).startswith("Another metal check")
        assert duplicate_message("UNIQUE constraint failed: other.col") == "A record with this value already exists"
