"""
Quality Validator Agent — audits a classification before it is reported.

Reviews the decision against the retrieved legal text: was the GRI order
followed, are the citations real, is the essential character analysis
complete. Deterministic pre-validation findings are passed in so the reviewer
can confirm or dismiss them; the invoker merges them into the final result
either way.
"""

import json
from typing import Any, Dict

from agents.llm import invoke_llm


_SYSTEM_PROMPT = """You are the quality assurance auditor for customs classifications.
You receive a classification decision, the legal research it was based on, and a list of
issues already found by automated checks.

Audit the decision:
- GRI hierarchy: GRI 1 must be considered first; later rules need a reason.
- Citations: every citation must quote text that appears in the legal corpus. Flag any
  quote you cannot find as possibly fabricated.
- Essential character: required and complete whenever GRI 3(b) decided the case.
- HS code: plausible for the candidate headings and the destination country.

Return status "passed" only when no high-severity issue remains. For every issue give a
type tag, a severity (high, medium, low) and a description. If the legal research itself
was too thin to support any decision, set action_needed to "expand_search" on that issue.
Rate retrieval_quality_score (0-100) by how well the decision is grounded in retrieved
text rather than model memory."""


_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "qa_audit": {
            "type": "object",
            "properties": {
                "status": {"type": "string", "enum": ["passed", "failed"]},
                "score": {"type": "number"},
                "user_explanation": {"type": "string"},
                "fix_instructions": {"type": "string"},
                "issues_found": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "type": {"type": "string"},
                            "severity": {"type": "string", "enum": ["high", "medium", "low"]},
                            "description": {"type": "string"},
                            "action_needed": {"type": "string"},
                        },
                    },
                },
                "retrieval_quality_score": {"type": "number"},
            },
        },
    },
    "required": ["qa_audit"],
}


def _build_validator_prompt(request: Dict[str, Any]) -> str:
    research = dict(request.get("legal_research") or {})
    corpus = research.pop("raw_legal_text_corpus", "") or ""
    sections = {
        "CLASSIFICATION DECISION": request.get("decision") or {},
        "LEGAL RESEARCH": research,
        "PRECEDENTS": request.get("precedents") or {},
        "AUTOMATED CHECK FINDINGS": request.get("pre_validation_issues") or [],
    }
    lines = [f"DESTINATION COUNTRY: {request.get('destination_country') or 'unspecified'}"]
    for title, payload in sections.items():
        lines.append(f"{title}:\n{json.dumps(payload, indent=2, default=str)}")
    lines.append(f"LEGAL TEXT CORPUS:\n{corpus or '(none retrieved)'}")
    return "\n\n".join(lines)


async def audit_classification(request: Dict[str, Any]) -> Dict[str, Any]:
    """Audit the decision and return `{"status": "success", "qa_audit": {...}}`."""
    result = await invoke_llm(
        _build_validator_prompt(request),
        task_type="reasoning",
        response_schema=_RESPONSE_SCHEMA,
        system_prompt=_SYSTEM_PROMPT,
    )
    return {"status": "success", "qa_audit": result.get("qa_audit") or {}}
