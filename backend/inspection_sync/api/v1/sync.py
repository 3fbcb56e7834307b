"""Local cache and sync queue endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query

from inspection_sync.core.deps import Connectivity, Drafts, Queue, Replayer
from inspection_sync.schemas.session import ConnectivityUpdate

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status", response_model=dict)
async def sync_status(replayer: Replayer):
    status = await replayer.sync_status()
    data = status.model_dump(mode="json")
    data["online"] = replayer.connectivity.is_online()
    return {"success": True, "data": data}


@router.get("/queue", response_model=dict)
async def list_queue(
    queue: Queue,
    limit: Annotated[int | None, Query(ge=1)] = None,
    cursor: str | None = None,
    report_id: str | None = None,
):
    """Queued mutations awaiting replay, oldest first."""
    page = await queue.list_page(limit=limit, cursor=cursor, report_id=report_id)
    return {"success": True, **page.model_dump(mode="json")}


@router.post("/replay", response_model=dict)
async def replay_queue(replayer: Replayer):
    """Replay queued mutations now. A no-op while offline."""
    summary = await replayer.process_queue()
    return {"success": True, "data": summary.model_dump(mode="json")}


@router.get("/drafts", response_model=dict)
async def list_drafts(
    drafts: Drafts,
    limit: Annotated[int | None, Query(ge=1)] = None,
    cursor: str | None = None,
):
    """Locally stored drafts, most recently edited first."""
    page = await drafts.list_page(limit=limit, cursor=cursor)
    return {"success": True, **page.model_dump(mode="json")}


@router.put("/connectivity", response_model=dict)
async def set_connectivity(data: ConnectivityUpdate, connectivity: Connectivity):
    """Report a network change from the platform."""
    connectivity.set_online(data.online)
    return {"success": True, "data": {"online": connectivity.is_online()}}


@router.post("/connectivity/probe", response_model=dict)
async def probe_connectivity(connectivity: Connectivity):
    online = await connectivity.probe()
    return {"success": True, "data": {"online": online}}
