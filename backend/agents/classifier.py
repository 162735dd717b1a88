"""
Classifier Agent — applies the General Rules of Interpretation (GRI).

Walks the GRI states in order (GRI 1 first, a later rule only when the earlier
one cannot resolve the case), logs each state it visits, and cites the legal
text it relied on. Corrective runs receive feedback and enforcement flags
from the self-healing router.
"""

import json
from typing import Any, Dict

from agents.llm import invoke_llm


_SYSTEM_PROMPT = """You are a customs classification judge applying the General Rules of
Interpretation of the Harmonized System.

Work through the GRI states strictly in order:
  GRI 1 (heading texts and Section/Chapter Notes) -> GRI 2(a)/2(b) -> GRI 3(a) -> GRI 3(b)
  -> GRI 3(c) -> GRI 4, then GRI 6 for the subheading.
Record every state you visit in gir_state_log with result "resolved", "next" or "skipped".
Only move to the next state when the current one cannot resolve the classification.

If GRI 3(b) decides the case, provide a complete essential character analysis: at least
two components with bulk_percent and value_percent, the essential component, and a
justification citing value, bulk or functional dominance.

Every legal statement must be backed by a citation whose exact_quote is copied from the
LEGAL TEXT CONTEXT provided. If something you need is not in the context, list it in
context_gaps instead of inventing it.

Give the full HS code at the digit length the destination country uses, plus exactly two
rejected alternatives with the reason each was rejected."""


_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "primary": {
            "type": "object",
            "properties": {
                "hs_code": {"type": "string"},
                "confidence_score": {"type": "number"},
                "reasoning": {"type": "string"},
                "gri_applied": {"type": "string"},
                "gir_state_log": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "state": {"type": "string"},
                            "analysis": {"type": "string"},
                            "result": {"type": "string", "enum": ["resolved", "next", "skipped"]},
                        },
                    },
                },
                "essential_character_analysis": {
                    "type": "object",
                    "properties": {
                        "components": {"type": "array", "items": {"type": "object"}},
                        "essential_component": {"type": "string"},
                        "justification": {"type": "string"},
                    },
                },
                "legal_citations": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "source_type": {
                                "type": "string",
                                "enum": [
                                    "HEADING_TEXT", "EN", "SECTION_NOTE", "CHAPTER_NOTE",
                                    "WCO_OPINION", "BTI", "TARIC", "NATIONAL_TARIFF",
                                ],
                            },
                            "source_reference": {"type": "string"},
                            "exact_quote": {"type": "string"},
                            "relevance": {"type": "string"},
                        },
                    },
                },
                "context_gaps": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["hs_code", "reasoning", "gri_applied"],
        },
        "alternatives": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "hs_code": {"type": "string"},
                    "rejection_reason": {"type": "string"},
                    "might_apply_if": {"type": "string"},
                },
            },
        },
    },
    "required": ["primary"],
}


def _build_classifier_prompt(request: Dict[str, Any]) -> str:
    """Build the classification prompt, including any corrective instructions."""
    research = request.get("legal_research") or {}
    lines = [
        f"DESTINATION COUNTRY: {request.get('destination_country') or 'unspecified'}",
        f"PRODUCT SPECIFICATION:\n{json.dumps(request.get('product_profile') or {}, indent=2, default=str)}",
        f"CANDIDATE HEADINGS: {', '.join(request.get('candidate_headings') or []) or 'none found'}",
        f"LEGAL TEXT CONTEXT:\n{research.get('raw_legal_text_corpus') or '(none retrieved)'}",
    ]

    precedents = request.get("precedents")
    if precedents:
        lines.append(f"PRECEDENTS:\n{json.dumps(precedents, indent=2, default=str)}")

    if request.get("enforce_hierarchy"):
        lines.append(
            "HIERARCHY ENFORCEMENT: your previous answer did not demonstrate the GRI order. "
            "Start at GRI 1 and log every state you visit."
        )
    if request.get("enforce_citations"):
        lines.append(
            "CITATION ENFORCEMENT: every conclusion must carry a citation with an exact quote "
            "from the LEGAL TEXT CONTEXT."
        )
    if request.get("feedback"):
        lines.append(f"CORRECTIONS REQUIRED:\n{request['feedback']}")

    return "\n\n".join(lines)


async def classify_product(request: Dict[str, Any]) -> Dict[str, Any]:
    """Classify the product and return `{"status": "success", "results": {...}}`."""
    result = await invoke_llm(
        _build_classifier_prompt(request),
        task_type="reasoning",
        response_schema=_RESPONSE_SCHEMA,
        system_prompt=_SYSTEM_PROMPT,
    )
    return {"status": "success", "results": result}
