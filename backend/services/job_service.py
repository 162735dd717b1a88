"""
Job Service — CRUD operations for persisted classification jobs.

Provides async functions to create, read, update, and list jobs. The job row
is the user-facing record (description, answers, headline result); the
conversation itself lives in the checkpoint store.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.classification_job import ClassificationJob
from services.errors import JobNotFoundError

TERMINAL_JOB_STATUSES = ("completed", "failed", "escalated")


async def create_job(
    session: AsyncSession,
    product_description: str,
    destination_country: Optional[str] = None,
    intended_use: Optional[str] = None,
) -> ClassificationJob:
    """Create a new classification job."""
    job = ClassificationJob(
        product_description=product_description,
        destination_country=destination_country.upper() if destination_country else None,
        intended_use=intended_use,
        user_answers=[],
        status="pending",
    )
    session.add(job)
    await session.commit()
    await session.refresh(job)
    return job


async def get_job(session: AsyncSession, job_id: str) -> Optional[ClassificationJob]:
    """Get a job by ID."""
    result = await session.execute(select(ClassificationJob).where(ClassificationJob.id == job_id))
    return result.scalar_one_or_none()


async def list_jobs(
    session: AsyncSession,
    limit: int = 50,
    offset: int = 0,
) -> List[ClassificationJob]:
    """List jobs, ordered by most recent first."""
    result = await session.execute(
        select(ClassificationJob)
        .order_by(ClassificationJob.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def update_job(
    session: AsyncSession,
    job_id: str,
    updates: Dict[str, Any],
) -> Optional[ClassificationJob]:
    """Update a job with the given fields."""
    job = await get_job(session, job_id)
    if job is None:
        return None

    for key, value in updates.items():
        if hasattr(job, key):
            setattr(job, key, value)

    # Auto-set completed_at when status becomes terminal
    if updates.get("status") in TERMINAL_JOB_STATUSES:
        job.completed_at = datetime.now(timezone.utc)

    await session.commit()
    await session.refresh(job)
    return job


async def add_answer(session: AsyncSession, job_id: str, answer: str) -> ClassificationJob:
    """
    Append a user answer to the job.

    The list is reassigned rather than appended in place so the JSON column
    registers the change.
    """
    job = await get_job(session, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    job.user_answers = list(job.user_answers or []) + [answer]
    await session.commit()
    await session.refresh(job)
    return job


def outcome_updates(outcome: Any) -> Dict[str, Any]:
    """Job fields that mirror an orchestration outcome."""
    status = outcome.status.value
    return {
        "status": status,
        "hs_code": outcome.hs_code,
        "confidence_score": outcome.confidence,
        "missing_info_question": outcome.question if status == "waiting_for_user" else None,
        "error": outcome.reason if status == "failed" else None,
    }
