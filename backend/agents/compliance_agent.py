"""
Compliance Agent — import requirements, standards and restrictions.

Every requirement carries a source citation. Anything the agent could not
confirm goes into data_gaps.
"""

from typing import Any, Dict

from agents.llm import invoke_llm


_SYSTEM_PROMPT = """You are an import compliance specialist.
For the destination country and HS code, list:
- import requirements (documents, registrations, declarations)
- mandatory technical standards and the body that issues them
- labeling laws
- prohibitions or restrictions
- licenses and certifications required

Every entry must include source_citation naming the regulation or official page it comes
from. Set import_legality to "legal", "restricted" or "prohibited". Record anything you could
not confirm in data_gaps, and set extraction_metadata.legal_context_available to false if you
worked without any official source."""


def _cited_list(name_field: str) -> Dict[str, Any]:
    return {
        "type": "array",
        "items": {
            "type": "object",
            "properties": {name_field: {"type": "string"}, "source_citation": {"type": "string"}},
        },
    }


_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "compliance_data": {
            "type": "object",
            "properties": {
                "import_requirements": _cited_list("requirement"),
                "mandatory_standards": _cited_list("standard"),
                "labeling_laws": _cited_list("requirement"),
                "prohibitions": _cited_list("prohibition"),
                "licenses_required": _cited_list("license_type"),
                "certifications_needed": _cited_list("certification"),
                "import_legality": {"type": "string", "enum": ["legal", "restricted", "prohibited"]},
                "data_gaps": {"type": "array", "items": {"type": "string"}},
                "extraction_metadata": {
                    "type": "object",
                    "properties": {"legal_context_available": {"type": "boolean"}},
                },
            },
        },
    },
    "required": ["compliance_data"],
}


def _build_compliance_prompt(request: Dict[str, Any]) -> str:
    decision = request.get("decision") or {}
    profile = request.get("product_profile") or {}
    lines = [
        f"DESTINATION COUNTRY: {request.get('destination_country') or 'unspecified'}",
        f"HS CODE: {decision.get('hs_code') or 'unknown'}",
        f"PRODUCT: {profile.get('standardized_name') or ''}",
        f"FUNCTION: {profile.get('function') or ''}",
        f"MATERIALS: {profile.get('material_composition') or ''}",
    ]
    if request.get("intended_use"):
        lines.append(f"INTENDED USE: {request['intended_use']}")
    if request.get("feedback"):
        lines.append(f"CORRECTIONS REQUIRED:\n{request['feedback']}")
    return "\n\n".join(lines)


async def check_compliance(request: Dict[str, Any]) -> Dict[str, Any]:
    result = await invoke_llm(
        _build_compliance_prompt(request),
        task_type="general",
        response_schema=_RESPONSE_SCHEMA,
        system_prompt=_SYSTEM_PROMPT,
    )
    return {"status": "success", "compliance_data": result.get("compliance_data") or {}}
