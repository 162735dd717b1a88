"""
State Store — pure reducers over ConversationState plus durable checkpoints.

Reducers never touch their input. Each returns a new state built with
`model_copy(update=...)`, and each refuses to operate on a terminal state so a
finished job's record cannot drift after the fact.

CheckpointStore persists the whole state as one JSON document per job in the
`conversation_checkpoints` table.
"""

import copy
import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import config
from models.conversation_checkpoint import ConversationCheckpoint
from services.confidence import compute_confidence
from services.errors import TerminalStateError
from state import (
    FACT_KEYS,
    RESUMABLE_STATUSES,
    TERMINAL_STATUSES,
    Action,
    ConversationState,
    ConversationStatus,
    Facts,
    Round,
)

logger = logging.getLogger(__name__)

# Facts that describe the product; dropped when fresh user answers arrive.
PRODUCT_FACTS = ("product_profile", "product_readiness")


# =============================================================================
# Reducers
# =============================================================================


def _guard(state: ConversationState) -> None:
    if state.is_terminal:
        raise TerminalStateError(
            f"Job {state.job_id} is {state.status.value}; state is read-only"
        )


def create_initial(job_id: str, max_rounds: Optional[int] = None) -> ConversationState:
    """Build the empty state for a job that has never run."""
    return ConversationState(
        job_id=job_id,
        max_rounds=config.MAX_ROUNDS if max_rounds is None else max_rounds,
    )


def append_round(state: ConversationState, round_data: Round) -> ConversationState:
    """
    Append one round to the audit trail.

    The round is renumbered to `current_round + 1` so `current_round` always
    equals `len(rounds)` and the trajectory stays parallel to the rounds.
    """
    _guard(state)
    numbered = round_data.model_copy(update={"round_number": state.current_round + 1})
    return state.model_copy(
        update={
            "rounds": state.rounds + (numbered,),
            "current_round": state.current_round + 1,
            "confidence_trajectory": state.confidence_trajectory + (numbered.confidence_after,),
        }
    )


def merge_facts(state: ConversationState, partial: Dict[str, Any]) -> ConversationState:
    """Merge a partial fact mapping into `current_state`. Unknown keys are rejected."""
    _guard(state)
    unknown = sorted(set(partial) - set(FACT_KEYS))
    if unknown:
        raise ValueError(f"Unknown fact keys: {', '.join(unknown)}")
    if not partial:
        return state
    facts = state.current_state.model_copy(update=copy.deepcopy(dict(partial)))
    return state.model_copy(update={"current_state": facts})


def clear_facts(state: ConversationState, keys: Iterable[str]) -> ConversationState:
    """Reset the named facts to their defaults."""
    _guard(state)
    keys = tuple(keys)
    unknown = sorted(set(keys) - set(FACT_KEYS))
    if unknown:
        raise ValueError(f"Unknown fact keys: {', '.join(unknown)}")
    if not keys:
        return state
    defaults = Facts()
    cleared = {key: getattr(defaults, key) for key in keys}
    facts = state.current_state.model_copy(update=cleared)
    return state.model_copy(update={"current_state": facts})


def update_status(
    state: ConversationState,
    status: ConversationStatus,
    reason: Optional[str] = None,
) -> ConversationState:
    """Move to a new lifecycle status. Terminal statuses record their reason."""
    _guard(state)
    update: Dict[str, Any] = {"status": status}
    if status in TERMINAL_STATUSES:
        update["termination_reason"] = reason
        update["pending_question"] = None
    return state.model_copy(update=update)


def increment_self_healing(state: ConversationState) -> ConversationState:
    _guard(state)
    return state.model_copy(update={"self_healing_attempts": state.self_healing_attempts + 1})


def with_confidence(state: ConversationState) -> ConversationState:
    """Recompute `overall_confidence` from the current facts."""
    _guard(state)
    return state.model_copy(
        update={"overall_confidence": compute_confidence(state.current_state)}
    )


def begin_action(state: ConversationState, action: Action) -> ConversationState:
    """Apply an action's bookkeeping before its agent is invoked."""
    state = clear_facts(state, action.clears)
    if action.self_healing:
        state = increment_self_healing(state)
    return state


def suspend_for_user(
    state: ConversationState,
    question: str,
    answers_seen: Optional[int] = None,
) -> ConversationState:
    """
    Park the conversation until the user answers `question`.

    `answers_seen` is the number of user answers already available when the
    question was asked; only answers beyond it resume the conversation.
    """
    _guard(state)
    update: Dict[str, Any] = {
        "status": ConversationStatus.WAITING_FOR_USER,
        "pending_question": question,
    }
    if answers_seen is not None:
        update["answers_consumed"] = max(state.answers_consumed, answers_seen)
    return state.model_copy(update=update)


def resume_with_answers(state: ConversationState, answers_available: int) -> ConversationState:
    """
    Resume a waiting conversation once new user answers exist.

    Product facts are dropped so the next round re-analyzes the product with
    the answers folded in.
    """
    state = clear_facts(state, PRODUCT_FACTS)
    return state.model_copy(
        update={
            "status": ConversationStatus.IN_PROGRESS,
            "pending_question": None,
            "answers_consumed": answers_available,
        }
    )


def attach_escalation_summary(
    state: ConversationState,
    summary: Dict[str, Any],
) -> ConversationState:
    _guard(state)
    return state.model_copy(update={"escalation_summary": copy.deepcopy(summary)})


# =============================================================================
# Durable checkpoints
# =============================================================================


class CheckpointStore:
    """Async checkpoint persistence backed by SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def _get_row(
        self, session: AsyncSession, job_id: str
    ) -> Optional[ConversationCheckpoint]:
        result = await session.execute(
            select(ConversationCheckpoint).where(ConversationCheckpoint.job_id == job_id)
        )
        return result.scalar_one_or_none()

    async def get(self, job_id: str) -> Optional[ConversationState]:
        """Return the checkpoint for `job_id` whatever its status."""
        async with self._session_factory() as session:
            row = await self._get_row(session, job_id)
            if row is None:
                return None
            return ConversationState.model_validate(row.document)

    async def load(self, job_id: str) -> Optional[ConversationState]:
        """Return the checkpoint only when the conversation can be resumed."""
        state = await self.get(job_id)
        if state is None or state.status not in RESUMABLE_STATUSES:
            return None
        return state

    async def persist(self, state: ConversationState, clear_abort: bool = False) -> None:
        """Upsert the full state document for its job."""
        document = state.model_dump(mode="json")
        async with self._session_factory() as session:
            row = await self._get_row(session, state.job_id)
            if row is None:
                row = ConversationCheckpoint(job_id=state.job_id, abort_requested=False)
                session.add(row)
            row.status = state.status.value
            row.current_round = state.current_round
            row.overall_confidence = state.overall_confidence
            row.document = document
            if clear_abort:
                row.abort_requested = False
            await session.commit()
        logger.debug(
            "Persisted checkpoint job=%s round=%d status=%s",
            state.job_id,
            state.current_round,
            state.status.value,
        )

    async def request_abort(self, job_id: str) -> bool:
        """Flag a job for cancellation. Returns False when no checkpoint exists."""
        async with self._session_factory() as session:
            row = await self._get_row(session, job_id)
            if row is None:
                return False
            row.abort_requested = True
            await session.commit()
        logger.info("Abort requested for job %s", job_id)
        return True

    async def is_abort_requested(self, job_id: str) -> bool:
        async with self._session_factory() as session:
            row = await self._get_row(session, job_id)
            return bool(row is not None and row.abort_requested)
