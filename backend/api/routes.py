"""
REST API routes for running classifications.

Endpoints:
    GET  /api/health                              — Health check
    POST /api/classifications/run                 — Run (or resume) a job's conversation
    GET  /api/classifications/{job_id}/state      — Full checkpoint document
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.job_registry import job_registry
from database import async_session, get_session
from services.agent_invoker import AgentInvoker, create_collaborators
from services.errors import OrchestrationError
from services.job_service import get_job, outcome_updates, update_job
from services.orchestrator import ConversationOrchestrator
from services.state_store import CheckpointStore
from state import ConversationState, JobContext, Round

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

_invoker: Optional[AgentInvoker] = None


def get_checkpoint_store() -> CheckpointStore:
    return CheckpointStore(async_session)


def get_invoker() -> AgentInvoker:
    """Build the agent invoker once, on first use."""
    global _invoker
    if _invoker is None:
        _invoker = AgentInvoker(create_collaborators())
    return _invoker


# ---------------------------------------------------------------------------
# Request / Response Models
# ---------------------------------------------------------------------------

class ClassificationRunRequest(BaseModel):
    job_id: str = Field(..., min_length=1, description="The classification job to run.")
    intended_use: Optional[str] = Field(
        default=None,
        max_length=2_000,
        description="Overrides the job's intended use before running.",
    )
    restart: bool = Field(
        default=False,
        description="Discard the existing checkpoint and start the conversation over.",
    )


class ClassificationRunResponse(BaseModel):
    job_id: str
    status: str  # "waiting_for_user" | "completed" | "escalated" | "failed"
    question: Optional[str] = None
    hs_code: Optional[str] = None
    confidence: Optional[int] = None
    caveats: Optional[List[str]] = None
    reason: Optional[str] = None
    summary: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "TariffOS API"}


@router.post(
    "/classifications/run",
    response_model=ClassificationRunResponse,
    response_model_exclude_none=True,
)
async def run_classification(
    request: ClassificationRunRequest,
    session: AsyncSession = Depends(get_session),
    store: CheckpointStore = Depends(get_checkpoint_store),
    invoker: AgentInvoker = Depends(get_invoker),
):
    """
    Run a job's conversation until it completes, escalates, fails or needs the user.

    A job waiting for the user resumes once a new answer has been posted to
    /api/jobs/{job_id}/answers. A finished job returns its stored outcome.
    """
    job = await get_job(session, request.job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job '{request.job_id}' not found.")

    if not job_registry.try_acquire(job.id):
        raise HTTPException(status_code=409, detail=f"Job '{job.id}' is already running.")

    final_status = None
    try:
        updates: Dict[str, Any] = {"status": "in_progress"}
        if request.intended_use:
            updates["intended_use"] = request.intended_use
        job = await update_job(session, job.id, updates)

        orchestrator = ConversationOrchestrator(
            store,
            invoker,
            on_round=lambda state, rnd: job_registry.record_event(state.job_id, _round_event(state, rnd)),
        )
        try:
            outcome = await orchestrator.run(JobContext.from_model(job), restart=request.restart)
        except OrchestrationError as exc:
            final_status = "failed"
            await update_job(session, job.id, {"status": "failed", "error": exc.reason})
            raise HTTPException(
                status_code=502,
                detail={"error": "agent_failure", "job_id": job.id, "message": exc.reason},
            ) from exc

        final_status = outcome.status.value
        await update_job(session, job.id, outcome_updates(outcome))
        job_registry.record_event(job.id, {"event": "run_finished", **outcome.to_response()})
        return outcome.to_response()
    finally:
        job_registry.release(job.id, final_status)


@router.get("/classifications/{job_id}/state")
async def get_classification_state(
    job_id: str,
    store: CheckpointStore = Depends(get_checkpoint_store),
):
    """Return the full persisted conversation state, including every round."""
    state = await store.get(job_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"No conversation found for job '{job_id}'.")
    return state.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _round_event(state: ConversationState, rnd: Round) -> Dict[str, Any]:
    return {
        "event": "round_complete",
        "job_id": state.job_id,
        "round": rnd.round_number,
        "agent": rnd.agent_name,
        "action": rnd.action.value,
        "confidence": rnd.confidence_after,
        "status": state.status.value,
        "error": rnd.error,
    }
