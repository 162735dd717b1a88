"""
Shared builders for the test suite: canned collaborator responses, a
complete set of facts, a scriptable fake collaborator backend and a
throwaway SQLite database.
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from typing import Any, Dict, List

from database import create_tables, make_engine, make_session_factory
from state import ActionKind, AgentName, Facts


HEADING_QUOTE = "Loudspeakers, whether or not mounted in their enclosures; headphones and earphones"
EN_QUOTE = "This heading covers headphones and earphones, whether or not combined with a microphone"
BTI_QUOTE = "Wireless headphones with integrated battery are classified under heading 8518"

LEGAL_CORPUS = " ".join(
    [HEADING_QUOTE + ".", EN_QUOTE + ".", BTI_QUOTE + "."]
    + ["The Explanatory Notes to Chapter 85 describe sound reproducing equipment."] * 20
)


def product_response(readiness: int = 90, **spec_overrides: Any) -> Dict[str, Any]:
    spec = {
        "standardized_name": "Wireless Bluetooth headphones",
        "material_composition": "ABS plastic 55%, electronics 35%, foam 10%",
        "function": "Audio playback from a paired device",
        "state": "finished good",
        "essential_character": "electro-acoustic transducers",
        "industry_specific_data": {"battery": "Li-ion 500mAh"},
        "readiness_score": readiness,
    }
    spec.update(spec_overrides)
    return {
        "status": "success",
        "technical_spec": spec,
        "composite_analysis": {"is_composite": False},
        "industry_category": "electronics",
        "search_queries": {"hs_headings": ["headphones heading 8518"]},
    }


def research_response() -> Dict[str, Any]:
    return {
        "status": "success",
        "research_findings": {
            "candidate_headings": [
                {"code_4_digit": "8518", "explanatory_note_summary": "Covers headphones and earphones."},
                {"code_4_digit": "8517"},
            ],
            "legal_notes_found": ["Chapter 85 Note 1"],
            "verified_sources": [{"url": "https://www.wcoomd.org", "authority_tier": 1}],
            "raw_legal_text_corpus": LEGAL_CORPUS,
        },
    }


def precedents_response() -> Dict[str, Any]:
    return {
        "status": "success",
        "research_findings": {
            "bti_cases": [{"reference": "DE-BTI-1"}, {"reference": "FR-BTI-2"}],
            "wco_precedents": [{"reference": "8518.30/1"}],
            "consensus": {"agreed_heading": "8518"},
        },
    }


def citations() -> List[Dict[str, Any]]:
    return [
        {"source_type": "HEADING_TEXT", "source_reference": "Heading 8518", "exact_quote": HEADING_QUOTE},
        {"source_type": "EN", "source_reference": "EN 85.18", "exact_quote": EN_QUOTE},
        {"source_type": "BTI", "source_reference": "DE-BTI-1", "exact_quote": BTI_QUOTE},
    ]


def decision_response(**primary_overrides: Any) -> Dict[str, Any]:
    primary = {
        "hs_code": "8518.30.00",
        "gri_applied": "GRI 1",
        "reasoning": "Heading 8518 names headphones explicitly.",
        "gir_state_log": [{"state": "GRI 1", "result": "resolved at heading 8518"}],
        "legal_citations": citations(),
        "context_gaps": [],
    }
    primary.update(primary_overrides)
    return {"status": "success", "results": {"primary": primary, "alternatives": []}}


def validation_response(passed: bool = True, issues: List[Dict[str, Any]] = None, **audit: Any) -> Dict[str, Any]:
    qa = {
        "status": "passed" if passed else "failed",
        "score": 90 if passed else 40,
        "issues_found": issues or [],
    }
    qa.update(audit)
    return {"status": "success", "qa_audit": qa}


def tax_response() -> Dict[str, Any]:
    return {
        "status": "success",
        "data": {
            "primary": {"duty_rate": "2%", "duty_rate_source": "TARIC 8518300000", "vat_rate": "19%"},
            "data_gaps": [],
        },
    }


def compliance_response() -> Dict[str, Any]:
    return {
        "status": "success",
        "compliance_data": {
            "import_legality": "allowed",
            "mandatory_standards": [{"name": "CE marking"}],
            "extraction_metadata": {"legal_context_available": True},
        },
    }


def happy_path_responses() -> Dict[ActionKind, Any]:
    return {
        ActionKind.ANALYZE_PRODUCT: product_response(),
        ActionKind.REFINE_PRODUCT: product_response(),
        ActionKind.FETCH_LEGAL_SOURCES: research_response(),
        ActionKind.SEARCH_PRECEDENTS: precedents_response(),
        ActionKind.CLASSIFY: decision_response(),
        ActionKind.VALIDATE: validation_response(),
        ActionKind.CALCULATE_TAX: tax_response(),
        ActionKind.CHECK_COMPLIANCE: compliance_response(),
    }


def complete_facts(**overrides: Any) -> Facts:
    """Every fact present, validation passed."""
    values: Dict[str, Any] = {
        "product_profile": {
            "standardized_name": "Wireless Bluetooth headphones",
            "function": "Audio playback",
            "material_composition": "ABS plastic, electronics",
            "essential_character": "electro-acoustic transducers",
            "industry_specific_data": {"battery": "Li-ion"},
            "composite_analysis": {"is_composite": False},
        },
        "product_readiness": 90,
        "candidate_headings": ["8518"],
        "legal_research": {
            "raw_legal_text_corpus": LEGAL_CORPUS,
            "raw_legal_text_corpus_length": len(LEGAL_CORPUS),
            "en_documents": [{"heading": "8518", "summary": "headphones"}],
            "notes": ["Chapter 85 Note 1"],
            "verified_sources": [{"authority_tier": 1}],
        },
        "precedents": {"bti_cases": [{}, {}], "wco_opinions": [{}], "consensus": {}},
        "decision": {
            "hs_code": "8518.30.00",
            "gri_applied": "GRI 1",
            "state_log": [{"state": "GRI 1", "result": "resolved"}],
            "legal_citations": citations(),
            "context_gaps": [],
        },
        "validation_result": {"passed": True, "score": 90, "issues": []},
        "tax_data": {"primary": {"duty_rate": "2%"}, "data_gaps": []},
        "compliance_data": {"import_legality": "allowed", "data_gaps": []},
    }
    values.update(overrides)
    return Facts(**values)


class FakeCollaborators:
    """
    Scriptable collaborator backend.

    Each ActionKind maps to a response dict, a list of responses consumed in
    order (the last one repeats), or an exception instance to raise.
    """

    def __init__(self, responses: Dict[ActionKind, Any]) -> None:
        self.responses = dict(responses)
        self.calls: List[Dict[str, Any]] = []

    async def call(self, agent: AgentName, kind: ActionKind, request: Dict[str, Any]) -> Any:
        self.calls.append({"agent": agent, "kind": kind, "request": request})
        response = self.responses[kind]
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, BaseException):
            raise response
        return response

    def kinds(self) -> List[ActionKind]:
        return [c["kind"] for c in self.calls]


async def create_test_database(tmp_path):
    """Create a file-backed SQLite database with every table; returns (engine, session_factory)."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    return engine, make_session_factory(engine)
