"""
Conversation Orchestrator — the control loop that drives a classification job.

Each iteration:

    recompute confidence → check abort → decide next action
        terminal action  → side effect, persist, return
        otherwise        → clear stale facts, invoke agent, merge facts,
                           append round, persist

The loop is bounded twice: the decision table escalates at max_rounds, and
the loop itself stops after max_iterations regardless of what the table says.
Every state change is persisted before the next decision so a crashed or
cancelled run resumes from its last completed round.
"""

import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, NoReturn, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from config import config
from services.agent_invoker import AgentInvoker
from services.confidence import analyze_confidence_factors
from services.decision_engine import DEFAULT_THRESHOLDS, Thresholds, decide_next_action
from services.errors import OrchestrationError
from services.state_store import (
    CheckpointStore,
    append_round,
    attach_escalation_summary,
    begin_action,
    create_initial,
    merge_facts,
    resume_with_answers,
    suspend_for_user,
    update_status,
    with_confidence,
)
from state import (
    Action,
    ActionKind,
    ConversationState,
    ConversationStatus,
    JobContext,
    Round,
)

logger = logging.getLogger(__name__)

ABORTED_REASON = "Aborted by request"
RECENT_ROUNDS_IN_SUMMARY = 5

Notifier = Callable[[str, str, Dict[str, Any]], Awaitable[None]]
RoundCallback = Callable[[ConversationState, Round], Any]


async def log_notifier(job_id: str, event: str, payload: Dict[str, Any]) -> None:
    """Default notifier: records terminal events in the application log."""
    logger.info("Job %s %s: %s", job_id, event, payload.get("reason") or payload.get("question") or "")


# =============================================================================
# Outcome
# =============================================================================


def build_caveats(state: ConversationState, thresholds: Thresholds = DEFAULT_THRESHOLDS) -> Tuple[str, ...]:
    """Warnings attached to a completed classification."""
    facts = state.current_state
    caveats: List[str] = []
    if state.overall_confidence < thresholds.high_confidence:
        caveats.append(
            f"Moderate confidence ({state.overall_confidence}%) - verify the classification "
            "with a licensed customs broker before filing"
        )
    for gap in (facts.tax_data or {}).get("data_gaps") or []:
        caveats.append(f"Tax data gap: {gap}")
    for gap in (facts.compliance_data or {}).get("data_gaps") or []:
        caveats.append(f"Compliance data gap: {gap}")
    return tuple(caveats)


def build_escalation_summary(state: ConversationState, reason: str) -> Dict[str, Any]:
    """Everything a human reviewer needs to pick up an escalated job."""
    facts = state.current_state
    decision = facts.decision or {}
    analysis = analyze_confidence_factors(facts)
    return {
        "reason": reason,
        "rounds_completed": state.current_round,
        "self_healing_attempts": state.self_healing_attempts,
        "confidence": state.overall_confidence,
        "recent_rounds": [
            {
                "round_number": r.round_number,
                "agent": r.agent_name,
                "action": r.action.value,
                "confidence_after": r.confidence_after,
                "error": r.error,
            }
            for r in state.rounds[-RECENT_ROUNDS_IN_SUMMARY:]
        ],
        "current_classification": (
            {
                "hs_code": decision.get("hs_code"),
                "gri_applied": decision.get("gri_applied"),
                "reasoning": decision.get("reasoning"),
            }
            if facts.decision
            else None
        ),
        "product": (facts.product_profile or {}).get("standardized_name"),
        "outstanding_issues": list((facts.validation_result or {}).get("issues") or []),
        "confidence_breakdown": analysis["breakdown"],
        "recommendations": analysis["recommendations"],
    }


class OrchestrationOutcome(BaseModel):
    """What a run hands back to its caller."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    status: ConversationStatus
    confidence: int = 0
    rounds: int = 0
    hs_code: Optional[str] = None
    question: Optional[str] = None
    reason: Optional[str] = None
    caveats: Tuple[str, ...] = ()
    summary: Optional[Dict[str, Any]] = None

    @classmethod
    def from_state(
        cls,
        state: ConversationState,
        thresholds: Thresholds = DEFAULT_THRESHOLDS,
    ) -> "OrchestrationOutcome":
        decision = state.current_state.decision or {}
        return cls(
            job_id=state.job_id,
            status=state.status,
            confidence=state.overall_confidence,
            rounds=state.current_round,
            hs_code=decision.get("hs_code"),
            question=state.pending_question,
            reason=state.termination_reason,
            caveats=build_caveats(state, thresholds) if state.status == ConversationStatus.COMPLETED else (),
            summary=state.escalation_summary,
        )

    def to_response(self) -> Dict[str, Any]:
        """The API response body for this outcome."""
        body: Dict[str, Any] = {"job_id": self.job_id, "status": self.status.value}
        if self.status == ConversationStatus.WAITING_FOR_USER:
            body["question"] = self.question
        elif self.status == ConversationStatus.COMPLETED:
            body.update(hs_code=self.hs_code, confidence=self.confidence, caveats=list(self.caveats))
        elif self.status == ConversationStatus.ESCALATED:
            body.update(reason=self.reason, summary=self.summary)
        else:
            body["reason"] = self.reason
        return body


# =============================================================================
# Orchestrator
# =============================================================================


class ConversationOrchestrator:
    """Runs one job's conversation until it completes, escalates, fails or waits."""

    def __init__(
        self,
        store: CheckpointStore,
        invoker: AgentInvoker,
        thresholds: Thresholds = DEFAULT_THRESHOLDS,
        max_iterations: int = config.MAX_ITERATIONS,
        max_rounds: int = config.MAX_ROUNDS,
        notifier: Optional[Notifier] = None,
        on_round: Optional[RoundCallback] = None,
    ) -> None:
        self.store = store
        self.invoker = invoker
        self.thresholds = thresholds
        self.max_iterations = max_iterations
        self.max_rounds = max_rounds
        self.notifier = notifier or log_notifier
        self.on_round = on_round

    async def run(self, job: JobContext, restart: bool = False) -> OrchestrationOutcome:
        """
        Drive the job from its last checkpoint.

        Raises:
            OrchestrationError: an agent call failed; the job is persisted as failed.
        """
        state = await self._load_or_create(job, restart)

        if state.is_terminal:
            logger.info("Job %s already %s; returning stored outcome", job.job_id, state.status.value)
            return OrchestrationOutcome.from_state(state, self.thresholds)

        if state.status == ConversationStatus.WAITING_FOR_USER:
            if len(job.user_answers) <= state.answers_consumed:
                return OrchestrationOutcome.from_state(state, self.thresholds)
            logger.info("Job %s resuming with %d new answer(s)",
                        job.job_id, len(job.user_answers) - state.answers_consumed)
            state = resume_with_answers(state, len(job.user_answers))
            await self.store.persist(state)

        if state.status == ConversationStatus.INITIALIZING:
            state = update_status(state, ConversationStatus.IN_PROGRESS)
            await self.store.persist(state)

        for _ in range(self.max_iterations):
            state = with_confidence(state)

            if await self.store.is_abort_requested(job.job_id):
                state = update_status(state, ConversationStatus.FAILED, ABORTED_REASON)
                await self.store.persist(state)
                await self._notify(state, "aborted", {"reason": ABORTED_REASON})
                return OrchestrationOutcome.from_state(state, self.thresholds)

            action = decide_next_action(state, self.thresholds)
            logger.info(
                "Job %s round %d: %s (%s) confidence=%d",
                job.job_id, state.current_round + 1, action.kind.value, action.reason, state.overall_confidence,
            )

            if action.is_terminal:
                state = await self._terminate(state, action, job)
                return OrchestrationOutcome.from_state(state, self.thresholds)

            state = await self._execute(state, action, job)
            if state.status == ConversationStatus.WAITING_FOR_USER:
                return OrchestrationOutcome.from_state(state, self.thresholds)

        state = with_confidence(state)
        reason = f"Iteration limit of {self.max_iterations} reached without a decision"
        state = await self._escalate(state, reason)
        return OrchestrationOutcome.from_state(state, self.thresholds)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _load_or_create(self, job: JobContext, restart: bool) -> ConversationState:
        if not restart:
            existing = await self.store.get(job.job_id)
            if existing is not None:
                return existing
        state = create_initial(job.job_id, self.max_rounds)
        await self.store.persist(state, clear_abort=True)
        return state

    async def _execute(self, state: ConversationState, action: Action, job: JobContext) -> ConversationState:
        state = begin_action(state, action)
        started = time.monotonic()
        try:
            result = await self.invoker.invoke(action, job, state)
        except Exception as exc:  # noqa: BLE001
            await self._fail(state, action, job, started, "Agent invocation failed", exc)

        try:
            if result.outcome == "waiting_for_user":
                updated = append_round(state, self._round(state, action, started, {"question": result.question}))
                updated = suspend_for_user(updated, result.question, len(job.user_answers))
            else:
                updated = with_confidence(merge_facts(state, result.facts))
                updated = append_round(updated, self._round(updated, action, started, result.summary))
        except Exception as exc:  # noqa: BLE001
            await self._fail(state, action, job, started, "Agent response could not be applied", exc)

        await self.store.persist(updated)
        if updated.status == ConversationStatus.WAITING_FOR_USER:
            await self._notify(updated, "waiting_for_user", {"question": result.question})
        self._emit_round(updated)
        return updated

    async def _fail(
        self,
        state: ConversationState,
        action: Action,
        job: JobContext,
        started: float,
        prefix: str,
        exc: Exception,
    ) -> NoReturn:
        """Record a failed round, persist the job as failed and raise OrchestrationError."""
        error = str(exc) or type(exc).__name__
        logger.error("Job %s: %s failed: %s", job.job_id, action.kind.value, error)
        state = append_round(state, self._round(state, action, started, error=error))
        reason = f"{prefix}: {error}"
        state = update_status(state, ConversationStatus.FAILED, reason)
        await self.store.persist(state)
        await self._notify(state, "failed", {"reason": reason})
        raise OrchestrationError(job.job_id, reason) from exc

    async def _terminate(self, state: ConversationState, action: Action, job: JobContext) -> ConversationState:
        if action.kind == ActionKind.FINALIZE:
            state = update_status(state, ConversationStatus.COMPLETED, action.reason)
            await self.store.persist(state)
            await self._notify(state, "completed", {
                "reason": action.reason,
                "hs_code": (state.current_state.decision or {}).get("hs_code"),
                "confidence": state.overall_confidence,
            })
            return state

        if action.kind == ActionKind.REQUEST_USER_INPUT:
            question = "\n".join(action.specific_request.questions) or action.reason
            state = suspend_for_user(state, question, len(job.user_answers))
            await self.store.persist(state)
            await self._notify(state, "waiting_for_user", {"question": question})
            return state

        return await self._escalate(state, action.reason)

    async def _escalate(self, state: ConversationState, reason: str) -> ConversationState:
        state = attach_escalation_summary(state, build_escalation_summary(state, reason))
        state = update_status(state, ConversationStatus.ESCALATED, reason)
        await self.store.persist(state)
        await self._notify(state, "escalated", {"reason": reason, "summary": state.escalation_summary})
        return state

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _round(
        state: ConversationState,
        action: Action,
        started: float,
        output_summary: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Round:
        params = action.specific_request.model_dump(mode="json", exclude_defaults=True)
        params["reason"] = action.reason
        if action.self_healing:
            params["self_healing"] = True
        return Round(
            round_number=state.current_round + 1,
            agent_name=action.agent.value if action.agent else "orchestrator",
            action=action.kind,
            input_params=params,
            output_summary=output_summary or {},
            confidence_after=state.overall_confidence,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=error,
        )

    def _emit_round(self, state: ConversationState) -> None:
        if self.on_round is None or not state.rounds:
            return
        try:
            self.on_round(state, state.rounds[-1])
        except Exception:  # noqa: BLE001
            logger.exception("Round callback failed for job %s", state.job_id)

    async def _notify(self, state: ConversationState, event: str, payload: Dict[str, Any]) -> None:
        try:
            result = self.notifier(state.job_id, event, payload)
            if inspect.isawaitable(result):
                await result
        except Exception:  # noqa: BLE001
            logger.exception("Notification %s failed for job %s", event, state.job_id)
