"""HTTP client for the report service, exercised over a mock transport."""

import json

import httpx
import pytest

from inspection_sync.models.enums import MediaKind, PhotoRule
from inspection_sync.schemas.inspection import ResponseUpsert
from inspection_sync.services.connectivity import ConnectivityMonitor
from inspection_sync.services.remote import RemoteServiceClient, RemoteServiceError


def make_client(handler) -> RemoteServiceClient:
    return RemoteServiceClient(
        base_url="http://reports.test/api/",
        token="secret",
        transport=httpx.MockTransport(handler),
    )


async def test_fetch_template_unwraps_envelope():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/templates/tpl-1"
        assert request.url.params["include"] == "sections"
        assert request.headers["Authorization"] == "Bearer secret"
        return httpx.Response(200, json={"success": True, "data": {
            "id": "tpl-1",
            "name": "Site walk",
            "sections": [{"id": "s1", "items": [{"id": "i1", "label": "Door", "photo_rule": "on_fail"}]}],
        }})

    template = await make_client(handler).fetch_template_with_sections("tpl-1")

    assert [i.id for i in template.items] == ["i1"]
    assert template.items[0].photo_rule == PhotoRule.ON_FAIL


async def test_upsert_is_a_put_keyed_by_report_and_item():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        body = json.loads(request.content)
        return httpx.Response(200, json={"id": "resp-1", **body})

    response = await make_client(handler).upsert_response(ResponseUpsert(
        report_id="report-1", template_item_id="item-door", response_value="pass",
    ))

    assert seen == {"method": "PUT", "path": "/api/reports/report-1/responses/item-door"}
    assert response.response_value == "pass"


async def test_http_errors_become_remote_service_errors():
    client = make_client(lambda request: httpx.Response(503, json={"detail": "down"}))

    with pytest.raises(RemoteServiceError) as excinfo:
        await client.fetch_report_by_id("report-1")

    assert excinfo.value.status_code == 503


async def test_transport_errors_become_remote_service_errors():
    def handler(request):
        raise httpx.ConnectError("no route to host")

    with pytest.raises(RemoteServiceError) as excinfo:
        await make_client(handler).submit_report("report-1")

    assert excinfo.value.status_code is None


async def test_media_upload_posts_the_file(tmp_path):
    photo = tmp_path / "door.jpg"
    photo.write_bytes(b"jpeg-bytes")

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/reports/report-1/media"
        assert b"jpeg-bytes" in request.content
        assert b"item-door" in request.content
        return httpx.Response(201, json={"data": {"storage_path": "report-1/item-door/door.jpg"}})

    result = await make_client(handler).upload_media_file(
        "report-1", "item-door", f"file://{photo}", MediaKind.PHOTO,
    )

    assert result.error is None
    assert result.storage_path == "report-1/item-door/door.jpg"


async def test_media_upload_failure_is_a_result_not_an_exception(tmp_path):
    photo = tmp_path / "door.jpg"
    photo.write_bytes(b"jpeg-bytes")
    client = make_client(lambda request: httpx.Response(413))

    result = await client.upload_media_file("report-1", "item-door", str(photo))

    assert result.storage_path is None
    assert "413" in result.error


async def test_missing_media_file_is_reported(tmp_path):
    client = make_client(lambda request: httpx.Response(201))

    result = await client.upload_media_file("report-1", "item-door", str(tmp_path / "gone.jpg"))

    assert result.error.startswith("Cannot read gone.jpg")


async def test_connectivity_probe_updates_cached_state():
    changes = []
    monitor = ConnectivityMonitor(
        initially_online=False,
        probe_url="http://reports.test/api/health",
        transport=httpx.MockTransport(lambda request: httpx.Response(200)),
    )
    monitor.subscribe(changes.append)

    assert await monitor.probe() is True
    assert monitor.is_online() is True
    assert changes == [True]


async def test_connectivity_probe_failure_goes_offline():
    def handler(request):
        raise httpx.ConnectError("offline")

    monitor = ConnectivityMonitor(
        probe_url="http://reports.test/api/health",
        transport=httpx.MockTransport(handler),
    )

    assert await monitor.probe() is False
    assert monitor.is_online() is False


def test_listeners_only_hear_real_changes():
    changes = []
    monitor = ConnectivityMonitor(initially_online=True)
    unsubscribe = monitor.subscribe(changes.append)

    monitor.set_online(True)
    monitor.set_online(False)
    unsubscribe()
    monitor.set_online(True)

    assert changes == [False]
