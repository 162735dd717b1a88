"""
REST API routes for classification jobs.

Endpoints:
    POST /api/jobs                      — Create a job
    GET  /api/jobs                      — List recent jobs
    GET  /api/jobs/{job_id}             — Get a specific job
    POST /api/jobs/{job_id}/answers     — Record the user's answer to a pending question
    POST /api/jobs/{job_id}/cancel      — Ask a running or paused job to stop
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.job_registry import job_registry
from api.routes import get_checkpoint_store
from database import get_session
from services.job_service import add_answer, create_job, get_job, list_jobs, update_job
from services.orchestrator import ABORTED_REASON
from services.state_store import CheckpointStore, create_initial, update_status
from state import ConversationStatus


job_router = APIRouter()


# ---------------------------------------------------------------------------
# Request / Response Models
# ---------------------------------------------------------------------------

class JobCreateRequest(BaseModel):
    product_description: str = Field(
        ...,
        min_length=1,
        max_length=10_000,
        description="Free-text description of the product to classify.",
        examples=["Wireless bluetooth headphones, plastic housing, lithium battery"],
    )
    destination_country: Optional[str] = Field(
        default=None,
        min_length=2,
        max_length=8,
        description="ISO country code (or EU) of the import destination.",
    )
    intended_use: Optional[str] = Field(default=None, max_length=2_000)


class AnswerRequest(BaseModel):
    answer: str = Field(..., min_length=1, max_length=10_000)


class JobResponse(BaseModel):
    id: str
    product_description: str
    destination_country: Optional[str] = None
    intended_use: Optional[str] = None
    user_answers: List[str] = []
    status: str
    missing_info_question: Optional[str] = None
    hs_code: Optional[str] = None
    confidence_score: Optional[int] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class CancelResponse(BaseModel):
    job_id: str
    abort_requested: bool
    active: bool


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@job_router.post("/jobs", response_model=JobResponse, status_code=201)
async def create_new_job(
    request: JobCreateRequest,
    session: AsyncSession = Depends(get_session),
):
    """Create a classification job. Run it with POST /api/classifications/run."""
    job = await create_job(
        session,
        product_description=request.product_description,
        destination_country=request.destination_country,
        intended_use=request.intended_use,
    )
    return job.to_dict()


@job_router.get("/jobs", response_model=List[JobResponse])
async def list_all_jobs(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    """List recent jobs, ordered by most recent first."""
    jobs = await list_jobs(session, limit=limit, offset=offset)
    return [j.to_dict() for j in jobs]


@job_router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_single_job(
    job_id: str,
    session: AsyncSession = Depends(get_session),
):
    """Retrieve a specific job by ID."""
    job = await get_job(session, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found.")
    return job.to_dict()


@job_router.post("/jobs/{job_id}/answers", response_model=JobResponse)
async def answer_job_question(
    job_id: str,
    request: AnswerRequest,
    session: AsyncSession = Depends(get_session),
):
    """
    Record the user's answer. The next run of a job waiting for the user
    folds it into a fresh product analysis.
    """
    job = await get_job(session, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found.")
    job = await add_answer(session, job_id, request.answer)
    return job.to_dict()


@job_router.post("/jobs/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(
    job_id: str,
    session: AsyncSession = Depends(get_session),
    store: CheckpointStore = Depends(get_checkpoint_store),
):
    """
    Request cancellation. A running conversation stops before its next round;
    an idle or never-run job is marked failed immediately.
    """
    job = await get_job(session, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found.")

    state = await store.get(job_id)
    if state is not None and state.is_terminal:
        raise HTTPException(
            status_code=409,
            detail=f"Job '{job_id}' already finished with status '{state.status.value}'.",
        )

    if job_registry.is_active(job_id):
        # The running loop observes the flag before its next round
        await store.request_abort(job_id)
        return CancelResponse(job_id=job_id, abort_requested=True, active=True)

    state = update_status(
        state or create_initial(job_id),
        ConversationStatus.FAILED,
        ABORTED_REASON,
    )
    await store.persist(state)
    await update_job(session, job_id, {"status": "failed", "error": ABORTED_REASON})
    return CancelResponse(job_id=job_id, abort_requested=True, active=False)
