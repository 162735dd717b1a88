"""
Product Analyst Agent — turns a free-text description into a technical spec.

On the first pass it builds a standardized specification from the user's
description. On refinement passes it is told which field to focus on, and on
resume it folds in the answers the user gave to earlier questions. When a
critical fact cannot be inferred it asks one targeted question instead.
"""

from typing import Any, Dict

from agents.llm import invoke_llm


_SYSTEM_PROMPT = """You are a forensic product analyst preparing goods for customs classification.
Transform the user's description into a standardized technical specification suitable
for Harmonized System (HS) classification.

Determine the industry sector and capture what matters for it (fiber composition for
textiles, CAS number and purity for chemicals, primary function and power rating for
machinery, processing level for food, and so on).

If the product combines several materials or components, say so: decide whether it is
a composite good, list each component with value and weight percentages, and name the
component that gives the product its essential character and why.

Attempt inference from context before asking anything. Only report insufficient data
when a critical fact (what the product is, what it does) genuinely cannot be inferred,
and then ask ONE specific question. Never ask "can you provide more details?".

Also produce search queries the research phase can use to find tariff headings,
Explanatory Notes and binding rulings."""


_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "status": {"type": "string", "enum": ["success", "insufficient_data"]},
        "missing_info_question": {"type": "string"},
        "technical_spec": {
            "type": "object",
            "properties": {
                "standardized_name": {"type": "string"},
                "material_composition": {"type": "string"},
                "function": {"type": "string"},
                "state": {"type": "string"},
                "essential_character": {"type": "string"},
                "industry_specific_data": {"type": "object"},
                "components_breakdown": {"type": "array", "items": {"type": "object"}},
                "readiness_score": {"type": "number"},
                "suggested_hs_code": {"type": "string"},
            },
        },
        "composite_analysis": {
            "type": "object",
            "properties": {
                "is_composite": {"type": "boolean"},
                "composite_type": {"type": "string"},
                "essential_character_component": {"type": "string"},
                "essential_character_reasoning": {"type": "string"},
            },
        },
        "industry_category": {"type": "string"},
        "search_queries": {"type": "object"},
    },
    "required": ["status"],
}


def _build_product_prompt(request: Dict[str, Any]) -> str:
    """Build the user-facing prompt from the job context and any feedback."""
    lines = [f"PRODUCT DESCRIPTION:\n{request.get('product_description', '')}"]

    if request.get("intended_use"):
        lines.append(f"INTENDED USE: {request['intended_use']}")
    if request.get("destination_country"):
        lines.append(f"DESTINATION COUNTRY: {request['destination_country']}")

    answers = request.get("user_answers") or []
    if answers:
        answer_block = "\n".join(f"- {a}" for a in answers)
        lines.append(f"ADDITIONAL INFORMATION FROM THE USER:\n{answer_block}")

    if request.get("focus"):
        lines.append(
            f"REFINEMENT FOCUS: the previous analysis was incomplete on '{request['focus']}'. "
            "Improve that part of the specification in particular."
        )
    if request.get("feedback"):
        lines.append(f"FEEDBACK FROM REVIEW:\n{request['feedback']}")

    return "\n\n".join(lines)


async def analyze_product(request: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run the product analysis.

    Returns a collaborator response: `{"status": "waiting_for_user", "question"}`
    when a critical fact is missing, else `{"status": "success", ...spec}`.
    """
    result = await invoke_llm(
        _build_product_prompt(request),
        task_type="analysis",
        response_schema=_RESPONSE_SCHEMA,
        system_prompt=_SYSTEM_PROMPT,
    )

    if result.get("status") == "insufficient_data":
        return {
            "status": "waiting_for_user",
            "question": result.get("missing_info_question")
            or "What is the product and what is its primary function?",
        }

    return {
        "status": "success",
        "technical_spec": result.get("technical_spec") or {},
        "composite_analysis": result.get("composite_analysis"),
        "industry_category": result.get("industry_category"),
        "search_queries": result.get("search_queries") or {},
    }
