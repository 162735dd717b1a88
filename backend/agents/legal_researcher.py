"""
Legal Researcher Agent — finds candidate headings, legal text and precedents.

Two modes share one agent:

    sources     candidate headings, Section/Chapter Notes, Explanatory Notes
                and the raw legal text the classifier must quote from
    precedents  BTI cases and WCO classification opinions for the product

When Tavily is configured the agent searches official customs sources first
and hands the hits to the model as the legal corpus; otherwise the model
works from its own knowledge and the corpus is whatever it quotes back.
"""

import asyncio
import logging
from typing import Any, Dict, List

from agents.llm import invoke_llm
from tools.web_search import gather_legal_corpus

logger = logging.getLogger(__name__)


_SOURCES_SYSTEM_PROMPT = """You are a customs legal researcher specialising in the Harmonized System.
Research the legal basis for classifying the product, in this order:

1. Identify the HS Section, then 5-8 candidate chapters, then 3-5 candidate 4-digit headings.
2. For each candidate heading extract the relevant Section and Chapter Notes.
3. Summarise the HS 2022 Explanatory Note for each heading: scope, inclusions,
   exclusions and classification criteria.
4. Note the destination country's national tariff structure where known.

Rate every source by authority: tier 1 (WCO Explanatory Notes, WCO opinions, official
customs authority), tier 2 (national tariff schedules, official ruling databases),
tier 3 (reference only). Never cite unverified blogs or commercial sites.

Quote legal text VERBATIM into raw_legal_text_corpus. The classifier may only cite text
that appears there."""


_PRECEDENTS_SYSTEM_PROMPT = """You are a customs precedent researcher.
Find binding tariff information (BTI) decisions and WCO classification opinions for
products similar to the one described, for the candidate headings given.

For each precedent record the reference, date, product, classification and a short
summary of the reasoning. Then state whether the precedents agree on one heading and
list any cases that point to a different heading."""


_SOURCES_SCHEMA = {
    "type": "object",
    "properties": {
        "candidate_headings": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "code_4_digit": {"type": "string"},
                    "description": {"type": "string"},
                    "likelihood": {"type": "string", "enum": ["PRIMARY", "SECONDARY", "TERTIARY"]},
                    "explanatory_note_summary": {"type": "string"},
                    "section_chapter_notes": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["code_4_digit", "description"],
            },
        },
        "legal_notes_found": {"type": "array", "items": {"type": "string"}},
        "verified_sources": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "url": {"type": "string"},
                    "authority_tier": {"type": "string"},
                    "excerpt": {"type": "string"},
                },
            },
        },
        "raw_legal_text_corpus": {"type": "string"},
    },
    "required": ["candidate_headings"],
}


_PRECEDENTS_SCHEMA = {
    "type": "object",
    "properties": {
        "bti_cases": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "reference": {"type": "string"},
                    "product_description": {"type": "string"},
                    "hs_code": {"type": "string"},
                    "date": {"type": "string"},
                },
            },
        },
        "wco_precedents": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "opinion_number": {"type": "string"},
                    "product": {"type": "string"},
                    "classification": {"type": "string"},
                    "reasoning": {"type": "string"},
                },
            },
        },
        "consensus": {
            "type": "object",
            "properties": {
                "agreed_heading": {"type": "string"},
                "conflicting_cases": {"type": "array", "items": {"type": "string"}},
            },
        },
    },
}


def _search_queries(request: Dict[str, Any]) -> List[str]:
    """Queries from the product analysis, widened on an expanded search."""
    profile = request.get("product_profile") or {}
    name = profile.get("standardized_name") or request.get("product_description", "")
    queries: List[str] = []
    for group in (profile.get("search_queries") or {}).values():
        if isinstance(group, list):
            queries.extend(str(q) for q in group)
    if not queries:
        queries = [f"{name} HS classification", f"{name} explanatory notes heading"]
    if request.get("expand_search"):
        queries.append(f"{name} WCO classification opinion")
        if request.get("focus_areas"):
            queries.append(f"{name} {request['focus_areas']}")
    return queries[:6]


def _build_research_prompt(request: Dict[str, Any], corpus: str) -> str:
    profile = request.get("product_profile") or {}
    lines = [
        f"PRODUCT SPECIFICATION:\n{profile or request.get('product_description', '')}",
        f"DESTINATION COUNTRY: {request.get('destination_country') or 'unspecified'}",
    ]
    if request.get("expand_search"):
        lines.append(
            "The previous research was insufficient. Widen the search: consider more "
            "chapters and headings and retrieve the full Explanatory Note text."
        )
        if request.get("focus_areas"):
            lines.append(f"FOCUS AREAS: {request['focus_areas']}")
    if corpus:
        lines.append(f"RETRIEVED LEGAL TEXT:\n{corpus}")
    return "\n\n".join(lines)


def _build_precedents_prompt(request: Dict[str, Any], corpus: str) -> str:
    profile = request.get("product_profile") or {}
    headings = ", ".join(request.get("candidate_headings") or []) or "unknown"
    lines = [
        f"PRODUCT: {profile.get('standardized_name') or request.get('product_description', '')}",
        f"CANDIDATE HEADINGS: {headings}",
    ]
    if corpus:
        lines.append(f"RETRIEVED RULINGS:\n{corpus}")
    return "\n\n".join(lines)


async def research_legal_sources(request: Dict[str, Any]) -> Dict[str, Any]:
    """Find candidate headings and the legal text that governs them."""
    corpus = await asyncio.to_thread(gather_legal_corpus, _search_queries(request)) or ""
    result = await invoke_llm(
        _build_research_prompt(request, corpus),
        task_type="research",
        response_schema=_SOURCES_SCHEMA,
        system_prompt=_SOURCES_SYSTEM_PROMPT,
    )
    findings = dict(result)
    # Search hits are verbatim; keep them alongside whatever the model quoted
    if corpus:
        findings["raw_legal_text_corpus"] = "\n\n".join(
            part for part in (corpus, findings.get("raw_legal_text_corpus") or "") if part
        )
    logger.info(
        "Legal research found %d candidate headings (corpus %d chars)",
        len(findings.get("candidate_headings") or []),
        len(findings.get("raw_legal_text_corpus") or ""),
    )
    return {"status": "success", "research_findings": findings}


async def search_precedents(request: Dict[str, Any]) -> Dict[str, Any]:
    """Find BTI cases and WCO opinions for the candidate headings."""
    headings = request.get("candidate_headings") or []
    name = (request.get("product_profile") or {}).get("standardized_name") or ""
    queries = [f"BTI {h} {name}" for h in headings[:3]] or [f"BTI {name}"]
    corpus = await asyncio.to_thread(gather_legal_corpus, queries) or ""
    result = await invoke_llm(
        _build_precedents_prompt(request, corpus),
        task_type="research",
        response_schema=_PRECEDENTS_SCHEMA,
        system_prompt=_PRECEDENTS_SYSTEM_PROMPT,
    )
    return {"status": "success", "research_findings": dict(result)}
