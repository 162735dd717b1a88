"""
End-to-end tests for the conversation orchestrator.

Runs the real decision engine, invoker and SQLite checkpoint store against
scripted collaborators.
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
import pytest_asyncio

from helpers import (
    FakeCollaborators,
    citations,
    create_test_database,
    decision_response,
    happy_path_responses,
    precedents_response,
    product_response,
    research_response,
    tax_response,
    validation_response,
)
from services.agent_invoker import (
    AgentInvoker,
    AgentResult,
    normalize_precedents,
    normalize_product,
    normalize_research,
)
from services.decision_engine import decide_next_action
from services.errors import OrchestrationError
from services.orchestrator import (
    ABORTED_REASON,
    ConversationOrchestrator,
    OrchestrationOutcome,
    build_escalation_summary,
)
from services.state_store import (
    CheckpointStore,
    create_initial,
    merge_facts,
    update_status,
    with_confidence,
)
from state import ActionKind, ConversationStatus, JobContext


JOB = JobContext(job_id="job-1", product_description="Wireless headphones", destination_country="EU")

HAPPY_PATH = [
    ActionKind.ANALYZE_PRODUCT,
    ActionKind.FETCH_LEGAL_SOURCES,
    ActionKind.SEARCH_PRECEDENTS,
    ActionKind.CLASSIFY,
    ActionKind.VALIDATE,
    ActionKind.CALCULATE_TAX,
    ActionKind.CHECK_COMPLIANCE,
]


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def __call__(self, job_id, event, payload):
        self.events.append((job_id, event, payload))


@pytest_asyncio.fixture
async def store(tmp_path):
    engine, session_factory = await create_test_database(tmp_path)
    yield CheckpointStore(session_factory)
    await engine.dispose()


def make_orchestrator(store, fake, **kwargs):
    kwargs.setdefault("max_rounds", 10)
    kwargs.setdefault("max_iterations", 15)
    return ConversationOrchestrator(store, AgentInvoker(fake), **kwargs)


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_runs_every_stage_and_completes(self, store):
        fake = FakeCollaborators(happy_path_responses())
        notifier = RecordingNotifier()
        rounds_seen = []
        orchestrator = make_orchestrator(
            store, fake, notifier=notifier, on_round=lambda state, rnd: rounds_seen.append(rnd.round_number)
        )

        outcome = await orchestrator.run(JOB)

        assert outcome.status == ConversationStatus.COMPLETED
        assert outcome.hs_code == "8518.30.00"
        assert outcome.confidence == 93
        assert outcome.rounds == 7
        assert outcome.caveats == ()
        assert fake.kinds() == HAPPY_PATH
        assert rounds_seen == [1, 2, 3, 4, 5, 6, 7]
        assert [e[1] for e in notifier.events] == ["completed"]

        state = await store.get("job-1")
        assert state.status == ConversationStatus.COMPLETED
        assert state.current_round == len(state.rounds) == len(state.confidence_trajectory)
        assert state.termination_reason == "High confidence classification complete"
        assert state.rounds[0].agent_name == "product_analyst"

    @pytest.mark.asyncio
    async def test_confidence_trajectory_is_recorded_per_round(self, store):
        await make_orchestrator(store, FakeCollaborators(happy_path_responses())).run(JOB)
        state = await store.get("job-1")
        assert state.confidence_trajectory[-1] == 93
        assert list(state.confidence_trajectory) == [r.confidence_after for r in state.rounds]

    @pytest.mark.asyncio
    async def test_finished_job_returns_stored_outcome(self, store):
        fake = FakeCollaborators(happy_path_responses())
        first = await make_orchestrator(store, fake).run(JOB)
        second = await make_orchestrator(store, fake).run(JOB)

        assert second == first
        assert len(fake.calls) == len(HAPPY_PATH)

    @pytest.mark.asyncio
    async def test_restart_starts_over(self, store):
        fake = FakeCollaborators(happy_path_responses())
        await make_orchestrator(store, fake).run(JOB)
        outcome = await make_orchestrator(store, fake).run(JOB, restart=True)

        assert outcome.status == ConversationStatus.COMPLETED
        assert len(fake.calls) == 2 * len(HAPPY_PATH)
        assert (await store.get("job-1")).current_round == 7

    @pytest.mark.asyncio
    async def test_data_gaps_become_caveats(self, store):
        responses = happy_path_responses()
        tax = tax_response()
        tax["data"]["data_gaps"] = ["VAT rate not found"]
        responses[ActionKind.CALCULATE_TAX] = tax

        outcome = await make_orchestrator(store, FakeCollaborators(responses)).run(JOB)
        assert outcome.status == ConversationStatus.COMPLETED
        assert "Tax data gap: VAT rate not found" in outcome.caveats


class TestWaitingForUser:
    @pytest.mark.asyncio
    async def test_analyst_question_suspends_and_answer_resumes(self, store):
        responses = happy_path_responses()
        responses[ActionKind.ANALYZE_PRODUCT] = [
            {"status": "waiting_for_user", "question": "What is the product made of?"},
            product_response(),
        ]
        fake = FakeCollaborators(responses)

        outcome = await make_orchestrator(store, fake).run(JOB)
        assert outcome.status == ConversationStatus.WAITING_FOR_USER
        assert outcome.question == "What is the product made of?"
        assert outcome.to_response() == {
            "job_id": "job-1",
            "status": "waiting_for_user",
            "question": "What is the product made of?",
        }

        # No new answer: nothing runs
        again = await make_orchestrator(store, fake).run(JOB)
        assert again.question == "What is the product made of?"
        assert len(fake.calls) == 1

        answered = JOB.model_copy(update={"user_answers": ("ABS plastic and electronics",)})
        final = await make_orchestrator(store, fake).run(answered)

        assert final.status == ConversationStatus.COMPLETED
        assert fake.calls[1]["kind"] == ActionKind.ANALYZE_PRODUCT
        assert fake.calls[1]["request"]["user_answers"] == ["ABS plastic and electronics"]
        state = await store.get("job-1")
        assert state.answers_consumed == 1
        assert state.rounds[0].output_summary == {"question": "What is the product made of?"}

    @pytest.mark.asyncio
    async def test_missing_critical_fields_ask_targeted_questions(self, store):
        responses = happy_path_responses()
        responses[ActionKind.ANALYZE_PRODUCT] = product_response(
            readiness=40, standardized_name=None, function=None
        )
        fake = FakeCollaborators(responses)

        outcome = await make_orchestrator(store, fake).run(JOB)

        assert outcome.status == ConversationStatus.WAITING_FOR_USER
        assert "exact product name" in outcome.question
        assert "primary function" in outcome.question
        state = await store.get("job-1")
        assert state.current_round == 1
        assert state.pending_question == outcome.question


class TestFailures:
    @pytest.mark.asyncio
    async def test_agent_failure_fails_the_job(self, store):
        responses = happy_path_responses()
        responses[ActionKind.CLASSIFY] = RuntimeError("model overloaded")
        notifier = RecordingNotifier()

        with pytest.raises(OrchestrationError) as exc_info:
            await make_orchestrator(store, FakeCollaborators(responses), notifier=notifier).run(JOB)

        assert "model overloaded" in exc_info.value.reason
        state = await store.get("job-1")
        assert state.status == ConversationStatus.FAILED
        assert state.termination_reason.startswith("Agent invocation failed")
        assert state.rounds[-1].action == ActionKind.CLASSIFY
        assert "model overloaded" in state.rounds[-1].error
        assert state.current_round == len(state.rounds) == 4
        assert notifier.events[-1][1] == "failed"

    @pytest.mark.asyncio
    async def test_collaborator_error_status_fails_the_job(self, store):
        responses = happy_path_responses()
        responses[ActionKind.FETCH_LEGAL_SOURCES] = {"status": "error", "error": "search quota exceeded"}

        with pytest.raises(OrchestrationError):
            await make_orchestrator(store, FakeCollaborators(responses)).run(JOB)
        assert (await store.get("job-1")).status == ConversationStatus.FAILED

    @pytest.mark.asyncio
    async def test_response_that_cannot_be_merged_fails_the_job(self, store):
        class BadFactsInvoker(AgentInvoker):
            async def invoke(self, action, job, state):
                if action.kind == ActionKind.SEARCH_PRECEDENTS:
                    return AgentResult(facts={"hs_guess": "8518"})
                return await super().invoke(action, job, state)

        notifier = RecordingNotifier()
        orchestrator = ConversationOrchestrator(
            store, BadFactsInvoker(FakeCollaborators(happy_path_responses())), notifier=notifier,
        )

        with pytest.raises(OrchestrationError) as exc_info:
            await orchestrator.run(JOB)

        assert "hs_guess" in exc_info.value.reason
        state = await store.get("job-1")
        assert state.status == ConversationStatus.FAILED
        assert state.termination_reason.startswith("Agent response could not be applied")
        assert state.rounds[-1].action == ActionKind.SEARCH_PRECEDENTS
        assert "hs_guess" in state.rounds[-1].error
        assert state.current_state.precedents is None
        assert notifier.events[-1][1] == "failed"

    @pytest.mark.asyncio
    async def test_abort_before_next_round(self, store):
        await store.persist(update_status(create_initial("job-1"), ConversationStatus.IN_PROGRESS))
        await store.request_abort("job-1")
        fake = FakeCollaborators(happy_path_responses())

        outcome = await make_orchestrator(store, fake).run(JOB)

        assert outcome.status == ConversationStatus.FAILED
        assert outcome.reason == ABORTED_REASON
        assert fake.calls == []

    @pytest.mark.asyncio
    async def test_abort_during_run(self, store):
        class AbortingCollaborators(FakeCollaborators):
            async def call(self, agent, kind, request):
                if kind == ActionKind.SEARCH_PRECEDENTS:
                    await store.request_abort("job-1")
                return await super().call(agent, kind, request)

        fake = AbortingCollaborators(happy_path_responses())
        outcome = await make_orchestrator(store, fake).run(JOB)

        assert outcome.status == ConversationStatus.FAILED
        assert fake.kinds()[-1] == ActionKind.SEARCH_PRECEDENTS
        assert (await store.get("job-1")).current_round == 3


class TestLooselyTypedResponses:
    @pytest.mark.asyncio
    async def test_numeric_strings_in_validation_are_scored(self, store):
        responses = happy_path_responses()
        responses[ActionKind.VALIDATE] = validation_response(score="85", retrieval_quality_score="75")

        outcome = await make_orchestrator(store, FakeCollaborators(responses)).run(JOB)

        assert outcome.status == ConversationStatus.COMPLETED
        result = (await store.get("job-1")).current_state.validation_result
        assert result["score"] == 85
        assert result["retrieval_quality_score"] == 75

    @pytest.mark.asyncio
    async def test_non_numeric_validation_score_falls_back(self, store):
        responses = happy_path_responses()
        responses[ActionKind.VALIDATE] = validation_response(score="high", retrieval_quality_score="n/a")

        outcome = await make_orchestrator(store, FakeCollaborators(responses)).run(JOB)

        assert outcome.status == ConversationStatus.COMPLETED
        result = (await store.get("job-1")).current_state.validation_result
        assert result["score"] is None
        assert result["retrieval_quality_score"] is None

    @pytest.mark.asyncio
    async def test_numeric_citation_quote_is_kept_as_text(self, store):
        quoted = citations() + [
            {"source_type": "TARIC", "source_reference": 8518300000, "exact_quote": 12345},
        ]
        responses = happy_path_responses()
        responses[ActionKind.CLASSIFY] = decision_response(legal_citations=quoted)

        outcome = await make_orchestrator(store, FakeCollaborators(responses)).run(JOB)

        assert outcome.status == ConversationStatus.COMPLETED
        facts = (await store.get("job-1")).current_state
        taric = facts.decision["legal_citations"][-1]
        assert taric == {"source_type": "TARIC", "source_reference": "8518300000", "exact_quote": "12345"}
        issue_types = [i["type"] for i in facts.validation_result["issues"]]
        assert "empty_citation" in issue_types


class TestReviewerDrivenRepair:
    @pytest.mark.asyncio
    async def test_reviewer_tax_issue_recalculates_and_revalidates(self, store):
        responses = happy_path_responses()
        responses[ActionKind.VALIDATE] = [
            validation_response(
                passed=False,
                issues=[{"type": "tax_data_missing", "severity": "high", "description": "No duty rate yet"}],
            ),
            validation_response(),
        ]
        untraced = tax_response()
        del untraced["data"]["primary"]["duty_rate_source"]
        responses[ActionKind.CALCULATE_TAX] = untraced
        fake = FakeCollaborators(responses)

        outcome = await make_orchestrator(store, fake).run(JOB)

        assert outcome.status == ConversationStatus.COMPLETED
        assert fake.kinds() == HAPPY_PATH[:5] + [
            ActionKind.CALCULATE_TAX,
            ActionKind.VALIDATE,
            ActionKind.CHECK_COMPLIANCE,
        ]
        state = await store.get("job-1")
        assert state.self_healing_attempts == 1
        assert state.rounds[5].input_params["self_healing"] is True
        # the re-validation sees tax data and checks its sourcing
        result = state.current_state.validation_result
        assert result["passed"] is True
        assert result["pre_validation_issue_count"] == 1
        assert result["issues"][0]["type"] == "tax_no_citation"


class TestBounds:
    @pytest.mark.asyncio
    async def test_self_healing_cap_escalates(self, store):
        responses = happy_path_responses()
        responses[ActionKind.VALIDATE] = validation_response(
            passed=False,
            issues=[{"type": "no_citations", "severity": "high", "description": "No citations"}],
        )
        fake = FakeCollaborators(responses)

        outcome = await make_orchestrator(store, fake, max_rounds=20, max_iterations=30).run(JOB)

        assert outcome.status == ConversationStatus.ESCALATED
        assert outcome.reason == "Self-healing exhausted after 3 attempts"
        assert fake.kinds().count(ActionKind.CLASSIFY) == 4
        assert fake.kinds().count(ActionKind.VALIDATE) == 4
        state = await store.get("job-1")
        assert state.self_healing_attempts == 3
        assert state.rounds[5].input_params["self_healing"] is True
        assert state.rounds[5].input_params["enforce_citations"] is True
        assert outcome.summary["outstanding_issues"][0]["type"] == "no_citations"

    @pytest.mark.asyncio
    async def test_max_rounds_escalates(self, store):
        outcome = await make_orchestrator(store, FakeCollaborators(happy_path_responses()), max_rounds=3).run(JOB)

        assert outcome.status == ConversationStatus.ESCALATED
        assert "Maximum rounds reached" in outcome.reason
        assert outcome.rounds == 3
        summary = outcome.summary
        assert summary["rounds_completed"] == 3
        assert summary["product"] == "Wireless Bluetooth headphones"
        assert summary["current_classification"] is None
        assert len(summary["recent_rounds"]) == 3

    @pytest.mark.asyncio
    async def test_iteration_ceiling_escalates(self, store):
        fake = FakeCollaborators(happy_path_responses())
        outcome = await make_orchestrator(store, fake, max_iterations=2).run(JOB)

        assert outcome.status == ConversationStatus.ESCALATED
        assert outcome.reason == "Iteration limit of 2 reached without a decision"
        assert len(fake.calls) == 2


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_makes_the_same_decision(self, store):
        state = update_status(create_initial("job-1"), ConversationStatus.IN_PROGRESS)
        state = merge_facts(state, normalize_product(product_response()))
        state = merge_facts(state, normalize_research(research_response()))
        state = merge_facts(state, {"precedents": normalize_precedents(precedents_response()["research_findings"])})
        state = with_confidence(state)
        await store.persist(state)

        loaded = with_confidence(await store.load("job-1"))
        assert loaded.overall_confidence == state.overall_confidence
        assert decide_next_action(loaded) == decide_next_action(state)

        fake = FakeCollaborators(happy_path_responses())
        outcome = await make_orchestrator(store, fake).run(JOB)
        assert fake.kinds()[0] == ActionKind.CLASSIFY
        assert outcome.status == ConversationStatus.COMPLETED


class TestOutcome:
    def test_escalated_response(self):
        state = update_status(create_initial("job-1"), ConversationStatus.IN_PROGRESS)
        summary = build_escalation_summary(state, "stuck")
        state = state.model_copy(update={"escalation_summary": summary})
        state = update_status(state, ConversationStatus.ESCALATED, "stuck")

        body = OrchestrationOutcome.from_state(state).to_response()
        assert body["status"] == "escalated"
        assert body["reason"] == "stuck"
        assert body["summary"]["reason"] == "stuck"
        assert "recommendations" in body["summary"]

    def test_completed_response_has_caveats_below_high_confidence(self):
        state = update_status(create_initial("job-1"), ConversationStatus.IN_PROGRESS)
        state = merge_facts(state, {"decision": decision_response()["results"]["primary"]})
        state = state.model_copy(update={"overall_confidence": 70})
        state = update_status(state, ConversationStatus.COMPLETED, "Moderate confidence")

        body = OrchestrationOutcome.from_state(state).to_response()
        assert body["status"] == "completed"
        assert body["confidence"] == 70
        assert body["caveats"][0].startswith("Moderate confidence (70%)")

    def test_failed_response(self):
        state = update_status(create_initial("job-1"), ConversationStatus.FAILED, ABORTED_REASON)
        assert OrchestrationOutcome.from_state(state).to_response() == {
            "job_id": "job-1",
            "status": "failed",
            "reason": ABORTED_REASON,
        }
