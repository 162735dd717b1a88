"""
Decision Engine — picks the next Action for a conversation.

A fixed table evaluated top to bottom; the first matching rule wins. The
order encodes the pipeline's stage dependencies:

    termination → product → legal research → precedents → classification
    → validation (→ self-healing) → tax → compliance → finalize / escalate

Every rule is a single guarded return so each can be tested on its own.
"""

from typing import Dict, List

from pydantic import BaseModel, ConfigDict

from config import config
from services.self_healing import route_failure
from state import Action, ActionKind, AgentName, ConversationState, SpecificRequest


class Thresholds(BaseModel):
    """Tunable decision thresholds. Defaults come from configuration."""

    model_config = ConfigDict(frozen=True)

    product_readiness: int = config.PRODUCT_READINESS_THRESHOLD
    finalize: int = config.FINALIZE_THRESHOLD
    high_confidence: int = config.HIGH_CONFIDENCE_THRESHOLD
    self_healing_cap: int = config.SELF_HEALING_CAP


DEFAULT_THRESHOLDS = Thresholds()

# Fields without which no clarifying inference is possible: ask the user.
_CRITICAL_PRODUCT_FIELDS = (
    ("standardized_name", "product_name"),
    ("function", "primary_function"),
)

# Fields the product analyst can usually infer on a refinement pass.
_OPTIONAL_PRODUCT_FIELDS = (
    ("material_composition", "materials"),
    ("essential_character", "essential_character"),
    ("industry_specific_data", "industry_details"),
)

QUESTIONS: Dict[str, str] = {
    "product_name": "What is the exact product name or commercial description?",
    "primary_function": "What is the primary function or purpose of this product?",
    "materials": "What materials is the product made of (with approximate percentages by weight and value)?",
    "essential_character": "Which component gives this product its main identity or value?",
    "industry_details": "Can you provide technical specifications (e.g. power rating, dimensions)?",
}


def missing_product_fields(profile: dict) -> Dict[str, List[str]]:
    """Return the critical and optional product fields that are still empty."""
    critical = [label for key, label in _CRITICAL_PRODUCT_FIELDS if not profile.get(key)]
    optional = [label for key, label in _OPTIONAL_PRODUCT_FIELDS if not profile.get(key)]
    return {"critical": critical, "optional": optional}


def targeted_questions(fields: List[str]) -> List[str]:
    return [QUESTIONS.get(f, f"Please provide details about: {f}") for f in fields]


def decide_next_action(
    state: ConversationState,
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> Action:
    """
    Map the current conversation state to exactly one next Action.

    Reads `state.overall_confidence` as computed by the orchestrator for this
    iteration; it never recomputes or mutates anything.
    """
    facts = state.current_state

    # === TERMINATION ===

    if state.current_round >= state.max_rounds:
        return Action(
            kind=ActionKind.ESCALATE,
            reason="Maximum rounds reached - complex case requiring human review",
        )

    if state.self_healing_attempts >= thresholds.self_healing_cap:
        return Action(
            kind=ActionKind.ESCALATE,
            reason=f"Self-healing exhausted after {state.self_healing_attempts} attempts",
        )

    # === STAGE 1: PRODUCT UNDERSTANDING ===

    if facts.product_profile is None:
        return Action(
            kind=ActionKind.ANALYZE_PRODUCT,
            agent=AgentName.PRODUCT_ANALYST,
            reason="Need initial product understanding",
        )

    if (facts.product_readiness or 0) < thresholds.product_readiness:
        missing = missing_product_fields(facts.product_profile)
        if missing["critical"]:
            return Action(
                kind=ActionKind.REQUEST_USER_INPUT,
                reason="Insufficient product data - critical information missing",
                specific_request=SpecificRequest(
                    questions=tuple(targeted_questions(missing["critical"]))
                ),
            )
        focus = missing["optional"][0] if missing["optional"] else "general"
        return Action(
            kind=ActionKind.REFINE_PRODUCT,
            agent=AgentName.PRODUCT_ANALYST,
            reason=f"Product readiness below {thresholds.product_readiness}%, attempting refinement",
            specific_request=SpecificRequest(
                focus=focus,
                feedback="Improve product data completeness",
            ),
        )

    # === STAGE 2: LEGAL RESEARCH ===

    if facts.candidate_headings is None or facts.legal_research is None:
        return Action(
            kind=ActionKind.FETCH_LEGAL_SOURCES,
            agent=AgentName.LEGAL_RESEARCHER,
            reason="Need candidate headings and legal sources",
        )

    # === STAGE 3: PRECEDENTS ===

    if facts.precedents is None:
        return Action(
            kind=ActionKind.SEARCH_PRECEDENTS,
            agent=AgentName.LEGAL_RESEARCHER,
            reason="Need precedent research",
        )

    # === STAGE 4: CLASSIFICATION ===

    if facts.decision is None:
        return Action(
            kind=ActionKind.CLASSIFY,
            agent=AgentName.CLASSIFIER,
            reason="Ready to classify - all prerequisites gathered",
        )

    # === STAGE 5: VALIDATION ===

    if facts.validation_result is None:
        return Action(
            kind=ActionKind.VALIDATE,
            agent=AgentName.QUALITY_VALIDATOR,
            reason="Need to validate classification",
        )

    if not facts.validation_result.get("passed"):
        return route_failure(facts.validation_result.get("issues") or [])

    # === STAGE 6: TAX & COMPLIANCE ===

    if facts.tax_data is None:
        return Action(
            kind=ActionKind.CALCULATE_TAX,
            agent=AgentName.TAX_AGENT,
            reason="Calculate duties and taxes",
        )

    if facts.compliance_data is None:
        return Action(
            kind=ActionKind.CHECK_COMPLIANCE,
            agent=AgentName.COMPLIANCE_AGENT,
            reason="Check compliance requirements",
        )

    # === STAGE 7: FINALIZATION ===

    confidence = state.overall_confidence
    if confidence >= thresholds.finalize:
        if confidence >= thresholds.high_confidence:
            reason = "High confidence classification complete"
        else:
            reason = "Moderate confidence - classification complete with caveats"
        return Action(kind=ActionKind.FINALIZE, reason=reason)

    return Action(
        kind=ActionKind.ESCALATE,
        reason="Low confidence after all stages - requires expert review",
    )
