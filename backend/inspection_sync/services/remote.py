"""Remote collaborators: template service, report store, media store.

The session controller only depends on the protocols below. The concrete
RemoteServiceClient talks to the system of record over HTTP.
"""

import logging
import mimetypes
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import httpx

from inspection_sync.config import settings
from inspection_sync.models.enums import MediaKind
from inspection_sync.schemas.inspection import (
    MediaUploadResult,
    RemoteResponse,
    Report,
    ResponseUpsert,
    Template,
)

logger = logging.getLogger(__name__)


class RemoteServiceError(Exception):
    """A remote call failed or the service could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TemplateSource(Protocol):
    async def fetch_template_with_sections(self, template_id: str) -> Template: ...


class ReportStore(Protocol):
    async def create_report(
        self,
        organisation_id: str,
        record_id: str,
        template_id: str,
        user_id: str,
    ) -> Report: ...

    async def fetch_report_by_id(self, report_id: str) -> Report: ...

    async def fetch_report_responses(self, report_id: str) -> list[RemoteResponse]: ...

    async def upsert_response(self, data: ResponseUpsert) -> RemoteResponse: ...

    async def submit_report(self, report_id: str) -> None: ...


class MediaStore(Protocol):
    async def upload_media_file(
        self,
        report_id: str,
        template_item_id: str,
        local_uri: str,
        media_kind: MediaKind = MediaKind.PHOTO,
    ) -> MediaUploadResult: ...


def _unwrap(resp: httpx.Response) -> Any:
    body = resp.json()
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class RemoteServiceClient:
    """Thin async wrapper around the report service REST API.

    Implements TemplateSource, ReportStore and MediaStore. Every transport
    or HTTP failure surfaces as RemoteServiceError.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.REMOTE_API_URL).rstrip("/")
        self.token = token if token is not None else settings.REMOTE_API_TOKEN
        self.timeout = timeout or settings.REMOTE_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, url, headers=self._headers(), **kwargs)
                resp.raise_for_status()
                return resp
        except httpx.HTTPStatusError as exc:
            raise RemoteServiceError(
                f"{method} {path} failed with HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteServiceError(f"{method} {path} failed: {exc}") from exc

    # --- Templates ---

    async def fetch_template_with_sections(self, template_id: str) -> Template:
        resp = await self._request(
            "GET", f"/templates/{template_id}", params={"include": "sections"},
        )
        return Template.model_validate(_unwrap(resp))

    # --- Reports ---

    async def create_report(
        self,
        organisation_id: str,
        record_id: str,
        template_id: str,
        user_id: str,
    ) -> Report:
        resp = await self._request(
            "POST",
            "/reports",
            json={
                "organisation_id": organisation_id,
                "record_id": record_id,
                "template_id": template_id,
                "user_id": user_id,
                "status": "draft",
                "started_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        return Report.model_validate(_unwrap(resp))

    async def fetch_report_by_id(self, report_id: str) -> Report:
        resp = await self._request("GET", f"/reports/{report_id}")
        return Report.model_validate(_unwrap(resp))

    async def fetch_report_responses(self, report_id: str) -> list[RemoteResponse]:
        resp = await self._request("GET", f"/reports/{report_id}/responses")
        return [RemoteResponse.model_validate(r) for r in _unwrap(resp) or []]

    async def upsert_response(self, data: ResponseUpsert) -> RemoteResponse:
        # PUT keyed by (report, item) keeps replays idempotent
        resp = await self._request(
            "PUT",
            f"/reports/{data.report_id}/responses/{data.template_item_id}",
            json=data.model_dump(mode="json"),
        )
        return RemoteResponse.model_validate(_unwrap(resp))

    async def submit_report(self, report_id: str) -> None:
        await self._request(
            "POST",
            f"/reports/{report_id}/submit",
            json={
                "status": "submitted",
                "submitted_at": datetime.now(timezone.utc).isoformat(),
            },
        )

    # --- Media ---

    async def upload_media_file(
        self,
        report_id: str,
        template_item_id: str,
        local_uri: str,
        media_kind: MediaKind = MediaKind.PHOTO,
    ) -> MediaUploadResult:
        """Upload one local file. Failures come back as an error result."""
        path = Path(local_uri.removeprefix("file://"))
        try:
            content = path.read_bytes()
        except OSError as exc:
            logger.warning("Cannot read media file %s: %s", local_uri, exc)
            return MediaUploadResult(error=f"Cannot read {path.name}: {exc.strerror or exc}")

        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        try:
            resp = await self._request(
                "POST",
                f"/reports/{report_id}/media",
                data={"template_item_id": template_item_id, "media_type": MediaKind(media_kind).value},
                files={"file": (path.name, content, content_type)},
            )
        except RemoteServiceError as exc:
            logger.warning(
                "Media upload failed for report %s item %s: %s",
                report_id,
                template_item_id,
                exc.message,
            )
            return MediaUploadResult(error=exc.message)

        storage_path = (_unwrap(resp) or {}).get("storage_path")
        if not storage_path:
            return MediaUploadResult(error="Upload response did not include a storage path")
        return MediaUploadResult(storage_path=storage_path)
