"""
Tax Agent — duty and VAT rates for the classified HS code.

Rates must come with the source they were read from. A rate the agent could
not find is reported as NOT_FOUND and listed in data_gaps rather than guessed.
"""

from typing import Any, Dict

from agents.llm import invoke_llm


_SYSTEM_PROMPT = """You are a customs tax specialist.
Determine the import duty rate and VAT for the destination country, for the primary HS code
and for each alternative code.

For every rate give the source you read it from (tariff schedule, regulation, official page).
If a rate cannot be found, write "NOT_FOUND" and add an entry to data_gaps explaining what
is missing. List any preferential rates under trade agreements that may apply.
Set extraction_confidence to "high", "medium" or "low"."""


_RATE_FIELDS = {
    "duty_rate": {"type": "string"},
    "duty_rate_source": {"type": "string"},
    "vat_rate": {"type": "string"},
    "vat_rate_source": {"type": "string"},
}

_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "tax_data": {
            "type": "object",
            "properties": {
                "primary": {"type": "object", "properties": _RATE_FIELDS},
                "preferential_rates": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "agreement": {"type": "string"},
                            "rate": {"type": "string"},
                            "conditions": {"type": "string"},
                        },
                    },
                },
                "alternatives": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {"hs_code": {"type": "string"}, **_RATE_FIELDS},
                    },
                },
                "data_gaps": {"type": "array", "items": {"type": "string"}},
                "extraction_confidence": {"type": "string", "enum": ["high", "medium", "low"]},
            },
        },
    },
    "required": ["tax_data"],
}


def _build_tax_prompt(request: Dict[str, Any]) -> str:
    decision = request.get("decision") or {}
    alternatives = [a.get("hs_code") for a in decision.get("alternatives") or [] if isinstance(a, dict)]
    lines = [
        f"DESTINATION COUNTRY: {request.get('destination_country') or 'unspecified'}",
        f"PRIMARY HS CODE: {decision.get('hs_code') or 'unknown'}",
        f"ALTERNATIVE HS CODES: {', '.join(c for c in alternatives if c) or 'none'}",
        f"PRODUCT: {(request.get('product_profile') or {}).get('standardized_name') or ''}",
    ]
    if request.get("feedback"):
        lines.append(f"CORRECTIONS REQUIRED:\n{request['feedback']}")
    return "\n\n".join(lines)


async def calculate_tax(request: Dict[str, Any]) -> Dict[str, Any]:
    result = await invoke_llm(
        _build_tax_prompt(request),
        task_type="general",
        response_schema=_RESPONSE_SCHEMA,
        system_prompt=_SYSTEM_PROMPT,
    )
    return {"status": "success", "data": result.get("tax_data") or {}}
