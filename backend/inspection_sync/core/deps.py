"""FastAPI dependencies: the engine objects wired up in the app lifespan."""

from typing import Annotated

from fastapi import Depends, Request

from inspection_sync.services.connectivity import ConnectivityMonitor
from inspection_sync.services.draft_cache import DraftCache
from inspection_sync.services.mutation_queue import MutationQueue
from inspection_sync.services.session import InspectionSessionController
from inspection_sync.services.sync import QueueReplayer


def get_controller(request: Request) -> InspectionSessionController:
    return request.app.state.controller


def get_replayer(request: Request) -> QueueReplayer:
    return request.app.state.replayer


def get_draft_cache(request: Request) -> DraftCache:
    return request.app.state.draft_cache


def get_connectivity(request: Request) -> ConnectivityMonitor:
    return request.app.state.connectivity


def get_queue(request: Request) -> MutationQueue:
    return request.app.state.queue


Controller = Annotated[InspectionSessionController, Depends(get_controller)]
Replayer = Annotated[QueueReplayer, Depends(get_replayer)]
Drafts = Annotated[DraftCache, Depends(get_draft_cache)]
Queue = Annotated[MutationQueue, Depends(get_queue)]
Connectivity = Annotated[ConnectivityMonitor, Depends(get_connectivity)]
