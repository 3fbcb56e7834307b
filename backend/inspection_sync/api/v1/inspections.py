"""Inspection session endpoints for the on-device UI."""

from fastapi import APIRouter, HTTPException, status

from inspection_sync.core.deps import Controller
from inspection_sync.schemas.session import (
    GoToSectionRequest,
    MediaAttachRequest,
    SetResponseRequest,
    StartInspectionRequest,
)
from inspection_sync.services.session import UNSET, InspectionSessionController

router = APIRouter(prefix="/inspections", tags=["inspections"])


def _raise_for_error(controller: InspectionSessionController, error: str | None) -> None:
    """Map a controller result error to an HTTP error.

    Errors the controller records on the session came from the remote
    service. Anything else is a precondition (no session, busy, submitted).
    """
    if error is None:
        return
    if controller.error == error:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error)
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error)


def _view(controller: InspectionSessionController) -> dict:
    return controller.view().model_dump(mode="json")


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def start_inspection(data: StartInspectionRequest, controller: Controller):
    """Create a new draft report for a record and template."""
    result = await controller.start_inspection(
        organisation_id=data.organisation_id,
        record_id=data.record_id,
        template_id=data.template_id,
        user_id=data.user_id,
    )
    _raise_for_error(controller, result.error)
    return {"success": True, "data": _view(controller)}


@router.post("/{report_id}/load", response_model=dict)
async def load_inspection(report_id: str, controller: Controller):
    """Resume a report, merging the local draft with the remote responses."""
    result = await controller.load_inspection(report_id)
    _raise_for_error(controller, result.error)
    merge = controller.last_merge
    return {
        "success": True,
        "data": _view(controller),
        "meta": {
            "conflict_count": merge.conflict_count if merge else 0,
            "local_win_count": merge.local_win_count if merge else 0,
            "server_win_count": merge.server_win_count if merge else 0,
        },
    }


@router.get("/current", response_model=dict)
async def get_current(controller: Controller):
    return {"success": True, "data": _view(controller)}


@router.get("/current/merge", response_model=dict)
async def get_last_merge(controller: Controller):
    """Audit trail of the last draft/remote merge."""
    merge = controller.last_merge
    return {
        "success": True,
        "data": merge.model_dump(mode="json") if merge else None,
    }


@router.put("/current/responses/{template_item_id}", response_model=dict)
async def set_response(
    template_item_id: str,
    data: SetResponseRequest,
    controller: Controller,
):
    """Set an item's answer.

    ``typed_value`` takes precedence over ``value`` when both are sent.
    Severity and notes only change when present in the body.
    """
    fields = data.model_fields_set
    value = data.typed_value if "typed_value" in fields else data.value
    response = controller.set_response(
        template_item_id,
        value,
        severity=data.severity if "severity" in fields else UNSET,
        notes=data.notes if "notes" in fields else UNSET,
    )
    return {"success": True, "data": response.model_dump(mode="json")}


@router.post("/current/responses/{template_item_id}/photos", response_model=dict)
async def add_photo(template_item_id: str, data: MediaAttachRequest, controller: Controller):
    response = controller.add_photo(template_item_id, data.uri)
    return {"success": True, "data": response.model_dump(mode="json")}


@router.delete("/current/responses/{template_item_id}/photos/{index}", response_model=dict)
async def remove_photo(template_item_id: str, index: int, controller: Controller):
    response = controller.remove_photo(template_item_id, index)
    return {"success": True, "data": response.model_dump(mode="json")}


@router.post("/current/responses/{template_item_id}/videos", response_model=dict)
async def add_video(template_item_id: str, data: MediaAttachRequest, controller: Controller):
    response = controller.add_video(template_item_id, data.uri)
    return {"success": True, "data": response.model_dump(mode="json")}


@router.delete("/current/responses/{template_item_id}/videos/{index}", response_model=dict)
async def remove_video(template_item_id: str, index: int, controller: Controller):
    response = controller.remove_video(template_item_id, index)
    return {"success": True, "data": response.model_dump(mode="json")}


@router.post("/current/save", response_model=dict)
async def save_responses(controller: Controller):
    """Save locally, then remotely or to the mutation queue."""
    result = await controller.save_responses()
    _raise_for_error(controller, result.error)
    return {"success": True, "data": _view(controller)}


@router.post("/current/submit", response_model=dict)
async def submit_inspection(controller: Controller):
    """Upload pending media and mark the report submitted.

    Media that could not be uploaded does not fail the request; it is
    reported in ``warning`` and ``failed_items``.
    """
    result = await controller.submit_inspection()
    _raise_for_error(controller, result.error)
    return {
        "success": True,
        "data": _view(controller),
        "warning": result.warning,
        "failed_items": result.failed_items,
    }


@router.post("/current/sections/next", response_model=dict)
async def next_section(controller: Controller):
    return {"success": True, "data": {"current_section_index": controller.next_section()}}


@router.post("/current/sections/previous", response_model=dict)
async def previous_section(controller: Controller):
    return {"success": True, "data": {"current_section_index": controller.previous_section()}}


@router.put("/current/section", response_model=dict)
async def go_to_section(data: GoToSectionRequest, controller: Controller):
    return {"success": True, "data": {"current_section_index": controller.go_to_section(data.index)}}


@router.delete("/current", response_model=dict)
async def reset_inspection(controller: Controller):
    """Leave the current inspection. Unsubmitted drafts stay resumable."""
    await controller.reset_inspection()
    return {"success": True, "data": _view(controller)}
