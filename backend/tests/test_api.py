"""Local HTTP surface, driven in-process through httpx's ASGI transport."""

import httpx
import pytest
from pydantic import BaseModel

from inspection_sync.main import create_app
from inspection_sync.services.remote import RemoteServiceError


@pytest.fixture
def app(engine, templates, reports, media, connectivity):
    return create_app(
        engine=engine,
        templates=templates,
        reports=reports,
        media=media,
        connectivity=connectivity,
    )


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.controller.writer.flush()


START = {
    "organisation_id": "org-1",
    "record_id": "rec-1",
    "template_id": "tpl-1",
    "user_id": "user-1",
}


async def test_health(client):
    resp = await client.get("/api/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["local_cache"]["status"] == "ok"
    assert body["online"] is True
    assert body["pending_mutations"] == 0


async def test_request_id_is_echoed(client):
    resp = await client.get("/api/health", headers={"X-Request-ID": "req-42"})
    assert resp.headers["X-Request-ID"] == "req-42"


async def test_start_edit_and_view(client):
    resp = await client.post("/api/v1/inspections", json=START)
    assert resp.status_code == 201
    report_id = resp.json()["data"]["report_id"]

    resp = await client.put(
        "/api/v1/inspections/current/responses/item-door",
        json={"value": "fail", "severity": "high", "notes": "Hinge loose"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["response_value"] == "fail"

    resp = await client.put(
        "/api/v1/inspections/current/responses/item-hazards",
        json={"typed_value": {"kind": "choice_set", "choices": ["Trip"]}},
    )
    assert resp.json()["data"]["response_value"] == '["Trip"]'

    view = (await client.get("/api/v1/inspections/current")).json()["data"]
    assert view["report_id"] == report_id
    assert view["completed_items"] == 2
    responses = {r["template_item_id"]: r for r in view["responses"]}
    assert responses["item-door"]["severity"] == "high"
    assert responses["item-hazards"]["value"] == {"kind": "choice_set", "choices": ["Trip"]}


async def test_value_only_update_keeps_notes(client):
    await client.post("/api/v1/inspections", json=START)
    await client.put(
        "/api/v1/inspections/current/responses/item-door",
        json={"value": "fail", "notes": "Hinge loose"},
    )

    resp = await client.put(
        "/api/v1/inspections/current/responses/item-door", json={"value": "pass"},
    )

    assert resp.json()["data"]["notes"] == "Hinge loose"


async def test_unknown_item_is_a_bad_request(client):
    await client.post("/api/v1/inspections", json=START)

    resp = await client.put(
        "/api/v1/inspections/current/responses/item-missing", json={"value": "x"},
    )

    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "error": {"code": "BAD_REQUEST", "message": "Unknown template item: item-missing"},
    }


async def test_start_failure_maps_to_bad_gateway(client, templates):
    templates.fail = True

    resp = await client.post("/api/v1/inspections", json=START)

    assert resp.status_code == 502
    assert resp.json()["error"]["message"].startswith("Failed to load template")


async def test_load_unknown_report_maps_to_bad_gateway(client):
    resp = await client.post("/api/v1/inspections/report-404/load")
    assert resp.status_code == 502


async def test_load_reports_merge_counts(client, reports):
    reports.seed_report("report-9", "tpl-1")

    resp = await client.post("/api/v1/inspections/report-9/load")

    assert resp.status_code == 200
    assert resp.json()["meta"]["conflict_count"] == 0
    merge = (await client.get("/api/v1/inspections/current/merge")).json()["data"]
    assert len(merge["merged"]) == 7


async def test_submit_without_session_is_a_conflict(client):
    resp = await client.post("/api/v1/inspections/current/submit")
    assert resp.status_code == 409


async def test_validation_errors_use_the_envelope(client):
    await client.post("/api/v1/inspections", json=START)

    resp = await client.put("/api/v1/inspections/current/section", json={"index": -1})

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_navigation(client):
    await client.post("/api/v1/inspections", json=START)

    resp = await client.post("/api/v1/inspections/current/sections/next")
    assert resp.json()["data"]["current_section_index"] == 1
    resp = await client.put("/api/v1/inspections/current/section", json={"index": 2})
    assert resp.json()["data"]["current_section_index"] == 2
    resp = await client.post("/api/v1/inspections/current/sections/previous")
    assert resp.json()["data"]["current_section_index"] == 1


async def test_offline_save_then_replay(client, reports):
    report_id = (await client.post("/api/v1/inspections", json=START)).json()["data"]["report_id"]
    await client.put("/api/v1/inspections/current/responses/item-door", json={"value": "pass"})
    await client.put("/api/v1/sync/connectivity", json={"online": False})

    resp = await client.post("/api/v1/inspections/current/save")
    assert resp.status_code == 200

    queue = (await client.get("/api/v1/sync/queue")).json()
    assert [m["template_item_id"] for m in queue["data"]] == ["item-door"]
    assert queue["page_info"]["has_next_page"] is False

    status = (await client.get("/api/v1/sync/status")).json()["data"]
    assert status["pending_items"] == 1
    assert status["online"] is False

    replay = (await client.post("/api/v1/sync/replay")).json()["data"]
    assert replay["skipped_offline"] is True

    await client.put("/api/v1/sync/connectivity", json={"online": True})
    replay = (await client.post("/api/v1/sync/replay")).json()["data"]
    assert replay == {"applied": 1, "failed": 0, "skipped_offline": False}
    assert reports.responses[(report_id, "item-door")].response_value == "pass"


async def test_submit_with_media_failure_returns_warning(client, media, reports):
    report_id = (await client.post("/api/v1/inspections", json=START)).json()["data"]["report_id"]
    for item in ("a", "b"):
        resp = await client.post(
            f"/api/v1/inspections/current/responses/item-{item}/photos",
            json={"uri": f"file:///photos/{item}.jpg"},
        )
        assert resp.json()["data"]["photos"] == [f"file:///photos/{item}.jpg"]
    media.failing.add("file:///photos/b.jpg")

    resp = await client.post("/api/v1/inspections/current/submit")

    assert resp.status_code == 200
    body = resp.json()
    assert body["data"]["phase"] == "submitted"
    assert "Item B" in body["warning"]
    assert body["failed_items"] == ["item-b"]
    assert reports.submits == [report_id]


async def test_submit_status_failure_maps_to_bad_gateway(client, reports):
    await client.post("/api/v1/inspections", json=START)
    reports.fail_submit = True

    resp = await client.post("/api/v1/inspections/current/submit")

    assert resp.status_code == 502
    view = (await client.get("/api/v1/inspections/current")).json()["data"]
    assert view["phase"] == "ready"


async def test_reset_and_resume_from_drafts(client):
    report_id = (await client.post("/api/v1/inspections", json=START)).json()["data"]["report_id"]
    await client.put("/api/v1/inspections/current/responses/item-door", json={"value": "pass"})

    resp = await client.delete("/api/v1/inspections/current")
    assert resp.json()["data"]["phase"] == "idle"

    drafts = (await client.get("/api/v1/sync/drafts")).json()
    assert [d["report_id"] for d in drafts["data"]] == [report_id]

    resp = await client.post(f"/api/v1/inspections/{report_id}/load")
    responses = {r["template_item_id"]: r for r in resp.json()["data"]["responses"]}
    assert responses["item-door"]["response_value"] == "pass"


async def test_remove_photo_out_of_range(client):
    await client.post("/api/v1/inspections", json=START)

    resp = await client.delete("/api/v1/inspections/current/responses/item-a/photos/0")

    assert resp.status_code == 400


class Reading(BaseModel):
    value: float


@pytest.mark.parametrize(
    "exc, status_code, code",
    [
        (RemoteServiceError("Network unreachable"), 503, "REMOTE_UNAVAILABLE"),
        (RemoteServiceError("Report gone", status_code=404), 404, "REMOTE_NOT_FOUND"),
        (RemoteServiceError("PUT failed with HTTP 500", status_code=500), 502, "REMOTE_ERROR"),
    ],
)
async def test_remote_errors_map_by_remote_status(app, client, exc, status_code, code):
    async def fail():
        raise exc

    app.add_api_route("/api/v1/failing", fail)

    resp = await client.get("/api/v1/failing")

    assert resp.status_code == status_code
    assert resp.json()["error"]["code"] == code
    assert resp.json()["error"]["message"] == exc.message


async def test_service_validation_errors_are_unprocessable(app, client):
    async def parse():
        Reading.model_validate({"value": "warm"})

    app.add_api_route("/api/v1/parse", parse)

    resp = await client.get("/api/v1/parse")

    assert resp.status_code == 422
    error = resp.json()["error"]
    assert error["code"] == "INVALID_VALUE"
    assert error["details"][0]["field"] == "value"
