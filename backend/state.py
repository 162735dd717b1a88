"""
ConversationState — the record the orchestrator threads through every round.

All state values are immutable. The orchestrator never edits a state in place;
reducers in services/state_store.py return new values so that the round log
stays a trustworthy audit trail.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class ConversationStatus(str, Enum):
    INITIALIZING = "initializing"
    IN_PROGRESS = "in_progress"
    WAITING_FOR_USER = "waiting_for_user"
    COMPLETED = "completed"
    FAILED = "failed"
    ESCALATED = "escalated"


TERMINAL_STATUSES = frozenset(
    {ConversationStatus.COMPLETED, ConversationStatus.FAILED, ConversationStatus.ESCALATED}
)

RESUMABLE_STATUSES = frozenset(
    {ConversationStatus.IN_PROGRESS, ConversationStatus.WAITING_FOR_USER}
)


class ActionKind(str, Enum):
    ANALYZE_PRODUCT = "analyze_product"
    REFINE_PRODUCT = "refine_product"
    REQUEST_USER_INPUT = "request_user_input"
    FETCH_LEGAL_SOURCES = "fetch_legal_sources"
    SEARCH_PRECEDENTS = "search_precedents"
    CLASSIFY = "classify"
    VALIDATE = "validate"
    CALCULATE_TAX = "calculate_tax"
    CHECK_COMPLIANCE = "check_compliance"
    FINALIZE = "finalize"
    ESCALATE = "escalate"


TERMINAL_ACTIONS = frozenset(
    {ActionKind.FINALIZE, ActionKind.ESCALATE, ActionKind.REQUEST_USER_INPUT}
)


class AgentName(str, Enum):
    PRODUCT_ANALYST = "product_analyst"
    LEGAL_RESEARCHER = "legal_researcher"
    CLASSIFIER = "classifier"
    QUALITY_VALIDATOR = "quality_validator"
    TAX_AGENT = "tax_agent"
    COMPLIANCE_AGENT = "compliance_agent"


class IssueType(str, Enum):
    """Closed set of validation issue tags the self-healing router understands."""

    # citations
    NO_CITATIONS = "no_citations"
    INSUFFICIENT_CITATIONS = "insufficient_citations"
    EMPTY_CITATION = "empty_citation"
    MISSING_CORE_CITATIONS = "missing_core_citations"
    CITATION_NOT_IN_CORPUS = "citation_not_in_corpus"
    # research / legal context
    LEGAL_CONTEXT_MISSING = "legal_context_missing"
    EXCESSIVE_CONTEXT_GAPS = "excessive_context_gaps"
    RESEARCH_NO_CORPUS = "research_no_corpus"
    RESEARCH_NO_CANDIDATES = "research_no_candidates"
    RESEARCH_NO_SOURCES = "research_no_sources"
    # tax / compliance extraction
    TAX_NO_CITATION = "tax_no_citation"
    TAX_DATA_GAP = "tax_data_gap"
    COMPLIANCE_NO_CONTEXT = "compliance_no_context"
    # classification hierarchy
    GIR_HIERARCHY_VIOLATION = "gir_hierarchy_violation"
    GIR_SKIPPED_GRI1 = "gir_skipped_gri1"
    GIR_INCOMPLETE_STATE_LOG = "gir_incomplete_state_log"
    # essential character / composite goods
    ESSENTIAL_CHARACTER_MISSING = "essential_character_missing"
    ESSENTIAL_CHARACTER_NO_COMPONENTS = "essential_character_no_components"
    ESSENTIAL_CHARACTER_NO_PERCENTAGES = "essential_character_no_percentages"
    ESSENTIAL_CHARACTER_NO_CONCLUSION = "essential_character_no_conclusion"
    # HS code format
    HS_CODE_MISSING = "hs_code_missing"
    HS_CODE_INVALID = "hs_code_invalid"

    UNKNOWN = "unknown"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=False)


class ValidationIssue(_Frozen):
    type: IssueType = IssueType.UNKNOWN
    severity: str = "medium"  # "high" | "medium" | "low"
    description: str = ""
    raw_type: Optional[str] = None


class Facts(_Frozen):
    """
    Named facts accumulated across rounds.

    Each fact is written once per pipeline stage and may be overwritten when a
    stage is re-run during self-healing. Absent facts are None.
    """

    product_profile: Optional[Dict[str, Any]] = None
    product_readiness: int = 0
    candidate_headings: Optional[List[str]] = None
    legal_research: Optional[Dict[str, Any]] = None
    precedents: Optional[Dict[str, Any]] = None
    decision: Optional[Dict[str, Any]] = None
    validation_result: Optional[Dict[str, Any]] = None
    tax_data: Optional[Dict[str, Any]] = None
    compliance_data: Optional[Dict[str, Any]] = None


FACT_KEYS = tuple(Facts.model_fields.keys())


class Round(_Frozen):
    round_number: int
    agent_name: str
    action: ActionKind
    input_params: Dict[str, Any] = Field(default_factory=dict)
    output_summary: Dict[str, Any] = Field(default_factory=dict)
    confidence_after: int = 0
    duration_ms: int = 0
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    error: Optional[str] = None


class SpecificRequest(_Frozen):
    """Parameters an Action hands to the collaborator it invokes."""

    feedback: Optional[str] = None
    enforce_citations: bool = False
    enforce_hierarchy: bool = False
    expand_search: bool = False
    focus: Optional[str] = None
    focus_areas: Optional[str] = None
    questions: Tuple[str, ...] = ()


class Action(_Frozen):
    kind: ActionKind
    reason: str
    agent: Optional[AgentName] = None
    specific_request: SpecificRequest = Field(default_factory=SpecificRequest)
    # Facts nulled before the agent is invoked, so a re-run cannot leave the
    # previous (invalid) value in place.
    clears: Tuple[str, ...] = ()
    self_healing: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_ACTIONS


class JobContext(_Frozen):
    """The parts of a classification job the orchestrator and agents read."""

    job_id: str
    product_description: str
    destination_country: Optional[str] = None
    intended_use: Optional[str] = None
    user_answers: Tuple[str, ...] = ()

    @classmethod
    def from_model(cls, job: Any) -> "JobContext":
        return cls(
            job_id=job.id,
            product_description=job.product_description,
            destination_country=job.destination_country,
            intended_use=job.intended_use,
            user_answers=tuple(job.user_answers or ()),
        )


class ConversationState(_Frozen):
    """
    The durable record of one classification job.

    Fields:
        job_id:                 Identifier of the classification job. Immutable.
        current_round:          Number of completed rounds; equals len(rounds).
        max_rounds:             Hard ceiling on rounds before escalation.
        rounds:                 Append-only audit trail.
        current_state:          Facts accumulated so far.
        overall_confidence:     Derived from current_state, never authoritative.
        confidence_trajectory:  Confidence after each round, parallel to rounds.
        status:                 Lifecycle status.
        self_healing_attempts:  Count of corrective re-runs. Only increases.
        termination_reason:     Set once when a terminal status is reached.
        pending_question:       Targeted question while waiting_for_user.
        answers_consumed:       User answers already folded into product analysis.
        escalation_summary:     Diagnostic summary for human review.
    """

    job_id: str
    current_round: int = 0
    max_rounds: int = 10
    rounds: Tuple[Round, ...] = ()
    current_state: Facts = Field(default_factory=Facts)
    overall_confidence: int = 0
    confidence_trajectory: Tuple[int, ...] = ()
    status: ConversationStatus = ConversationStatus.INITIALIZING
    self_healing_attempts: int = 0
    termination_reason: Optional[str] = None
    pending_question: Optional[str] = None
    answers_consumed: int = 0
    escalation_summary: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
