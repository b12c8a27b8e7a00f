"""Tournament lifecycle endpoints.

Monitoring of the lifecycle engine and manual start/end/cancel actions.
Manual actions go through the same guard and compare-and-set status
writes as the scheduled pass. These endpoints should be protected in
production (not implemented here).
"""

from collections import Counter
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from walletwars.api.dependencies import (
    get_deployment_scheduler,
    get_lifecycle_engine,
    get_record_store,
)
from walletwars.services.deployment import TournamentDeploymentScheduler
from walletwars.services.lifecycle import (
    NON_TERMINAL_STATUSES,
    TournamentLifecycleEngine,
    TransitionOutcome,
    TransitionResult,
)
from walletwars.services.store import RecordStore

router = APIRouter(prefix="/api", tags=["tournaments"])
logger = structlog.get_logger(__name__)


class TransitionResponse(BaseModel):
    """Result of a manual transition."""

    tournament_id: int
    transition: str | None
    outcome: str
    status: str | None = None
    detail: dict[str, Any] = {}


class CancelRequest(BaseModel):
    """Manual cancellation request."""

    reason: str = "Cancelled by operator"


def _to_response(result: TransitionResult) -> TransitionResponse:
    if result.detail.get("reason") == "not_found":
        raise HTTPException(status_code=404, detail="Tournament not found")
    if result.outcome == TransitionOutcome.FAILED:
        raise HTTPException(status_code=503, detail=result.detail.get("error", "Transition failed"))
    return TransitionResponse(**result.to_dict())


@router.get("/lifecycle/status")
async def lifecycle_status(
    engine: TournamentLifecycleEngine = Depends(get_lifecycle_engine),
    store: RecordStore = Depends(get_record_store),
) -> dict[str, Any]:
    """
    Lifecycle engine status.

    Includes in-flight transitions, rate limiter usage, snapshot budget
    and the number of non-terminal instances per status.
    """
    status = await engine.get_status()
    instances = await store.list_instances(sorted(NON_TERMINAL_STATUSES))
    status["instances_by_status"] = dict(Counter(i.status for i in instances))
    return status


@router.post("/tournaments/{tournament_id}/start", response_model=TransitionResponse)
async def start_tournament(
    tournament_id: int,
    engine: TournamentLifecycleEngine = Depends(get_lifecycle_engine),
) -> TransitionResponse:
    """Start a tournament whose registration has closed, ignoring the start time."""
    logger.info("manual_start_requested", tournament_id=tournament_id)
    return _to_response(await engine.start_tournament(tournament_id))


@router.post("/tournaments/{tournament_id}/end", response_model=TransitionResponse)
async def end_tournament(
    tournament_id: int,
    engine: TournamentLifecycleEngine = Depends(get_lifecycle_engine),
) -> TransitionResponse:
    """End an active tournament, ignoring the end time."""
    logger.info("manual_end_requested", tournament_id=tournament_id)
    return _to_response(await engine.end_tournament(tournament_id))


@router.post("/tournaments/{tournament_id}/cancel", response_model=TransitionResponse)
async def cancel_tournament(
    tournament_id: int,
    request: CancelRequest | None = None,
    engine: TournamentLifecycleEngine = Depends(get_lifecycle_engine),
) -> TransitionResponse:
    """Cancel a tournament that has not reached a terminal status. No refunds are issued."""
    reason = request.reason if request else CancelRequest().reason
    logger.info("manual_cancel_requested", tournament_id=tournament_id, reason=reason)
    return _to_response(await engine.cancel_tournament(tournament_id, reason=reason))


@router.get("/deployments/status")
async def deployment_status(
    scheduler: TournamentDeploymentScheduler = Depends(get_deployment_scheduler),
) -> dict[str, Any]:
    """Upcoming tournament instances and next deployment dates."""
    return await scheduler.get_deployment_status()
