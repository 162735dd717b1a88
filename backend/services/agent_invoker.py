"""
Agent Invoker — the boundary between the orchestrator and its collaborators.

Maps one Action onto one collaborator call, then normalizes the collaborator's
heterogeneous payload onto fact keys with safe defaults. Whatever goes wrong
on the far side of the call surfaces here as a single AgentError.

Two collaborator backends:

    LLMCollaborators   in-process LangChain agents (agents/)
    HttpCollaborators  POST {AGENT_BASE_URL}/{agent_name} via httpx
"""

import logging
import math
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from config import config
from services.errors import AgentError
from services.prevalidation import run_prevalidation
from services.self_healing import to_issue
from state import Action, ActionKind, AgentName, ConversationState, Facts, JobContext

logger = logging.getLogger(__name__)

# Readiness assumed when the product analyst does not score its own output
DEFAULT_PRODUCT_READINESS = 85

_PRODUCT_FIELDS = (
    "standardized_name",
    "material_composition",
    "function",
    "state",
    "essential_character",
    "industry_specific_data",
    "components_breakdown",
    "suggested_hs_code",
)

_PRODUCT_ACTIONS = frozenset({ActionKind.ANALYZE_PRODUCT, ActionKind.REFINE_PRODUCT})


class AgentResult(BaseModel):
    """The normalized outcome of one collaborator call."""

    model_config = ConfigDict(frozen=True)

    facts: Dict[str, Any] = Field(default_factory=dict)
    raw: Dict[str, Any] = Field(default_factory=dict)
    outcome: str = "success"  # "success" | "waiting_for_user"
    question: Optional[str] = None
    summary: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Collaborator backends
# =============================================================================


class LLMCollaborators:
    """Runs the in-process LangChain agents."""

    def __init__(self) -> None:
        # Imported here so HTTP-only deployments never load the LLM stack
        from agents import (
            analyze_product,
            audit_classification,
            calculate_tax,
            check_compliance,
            classify_product,
            research_legal_sources,
            search_precedents,
        )

        self._handlers: Dict[ActionKind, Callable[[dict], Awaitable[dict]]] = {
            ActionKind.ANALYZE_PRODUCT: analyze_product,
            ActionKind.REFINE_PRODUCT: analyze_product,
            ActionKind.FETCH_LEGAL_SOURCES: research_legal_sources,
            ActionKind.SEARCH_PRECEDENTS: search_precedents,
            ActionKind.CLASSIFY: classify_product,
            ActionKind.VALIDATE: audit_classification,
            ActionKind.CALCULATE_TAX: calculate_tax,
            ActionKind.CHECK_COMPLIANCE: check_compliance,
        }

    async def call(self, agent: AgentName, kind: ActionKind, request: Dict[str, Any]) -> Any:
        handler = self._handlers.get(kind)
        if handler is None:
            raise AgentError(agent.value, f"No handler for action '{kind.value}'")
        return await handler(request)


class HttpCollaborators:
    """Posts each request to a remote agent service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = (base_url or config.AGENT_BASE_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=timeout or config.AGENT_TIMEOUT_SECONDS,
            headers={"Accept": "application/json"},
        )

    async def call(self, agent: AgentName, kind: ActionKind, request: Dict[str, Any]) -> Any:
        url = f"{self.base_url}/{agent.value}"
        try:
            response = await self._client.post(url, json={"operation": kind.value, **request})
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("Agent %s returned HTTP %s: %s", agent.value, exc.response.status_code, exc.response.text[:200])
            raise AgentError(agent.value, f"HTTP {exc.response.status_code}", exc) from exc
        except httpx.RequestError as exc:
            logger.error("Agent %s request failed: %s", agent.value, exc)
            raise AgentError(agent.value, f"Request failed: {exc}", exc) from exc
        try:
            return response.json()
        except ValueError as exc:
            raise AgentError(agent.value, "Response is not valid JSON", exc) from exc

    async def aclose(self) -> None:
        await self._client.aclose()


def create_collaborators() -> Any:
    """Build the backend selected by AGENT_BACKEND."""
    if config.AGENT_BACKEND == "http":
        return HttpCollaborators()
    return LLMCollaborators()


# =============================================================================
# Normalizers
# =============================================================================


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _as_dict(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


def _as_number(value: Any) -> Optional[float]:
    """A finite number from an int, float or numeric string; None for anything else."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return str(value)


def normalize_product(response: Dict[str, Any]) -> Dict[str, Any]:
    spec = _as_dict(response.get("technical_spec") or response.get("product_profile"))
    profile = {key: spec.get(key) for key in _PRODUCT_FIELDS}
    profile["composite_analysis"] = (
        _as_dict(response.get("composite_analysis") or spec.get("composite_analysis")) or None
    )
    profile["search_queries"] = _as_dict(response.get("search_queries") or spec.get("search_queries"))
    profile["industry_category"] = response.get("industry_category") or spec.get("industry_category")

    readiness = _as_number(spec.get("readiness_score"))
    if readiness is None:
        readiness = DEFAULT_PRODUCT_READINESS
    return {
        "product_profile": profile,
        "product_readiness": max(0, min(100, int(round(readiness)))),
    }


def _heading_code(heading: Any) -> Optional[str]:
    if isinstance(heading, dict):
        code = heading.get("code_4_digit") or heading.get("code")
    else:
        code = heading
    return str(code) if code else None


def normalize_precedents(findings: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "bti_cases": _as_list(findings.get("bti_cases")),
        "wco_opinions": _as_list(findings.get("wco_precedents") or findings.get("wco_opinions")),
        "consensus": _as_dict(findings.get("consensus")),
    }


def normalize_research(response: Dict[str, Any]) -> Dict[str, Any]:
    """
    Legal research produces candidate headings and legal research; it also
    produces precedents when the collaborator returned any.
    """
    findings = _as_dict(response.get("research_findings") or response)
    headings = _as_list(findings.get("candidate_headings"))
    corpus = str(findings.get("raw_legal_text_corpus") or "")
    en_documents = [
        {"heading": _heading_code(h), "summary": h["explanatory_note_summary"]}
        for h in headings
        if isinstance(h, dict) and h.get("explanatory_note_summary")
    ]
    facts: Dict[str, Any] = {
        "candidate_headings": [c for c in (_heading_code(h) for h in headings) if c],
        "legal_research": {
            "candidate_details": [h for h in headings if isinstance(h, dict)],
            "notes": _as_list(findings.get("legal_notes_found")),
            "verified_sources": _as_list(findings.get("verified_sources")),
            "en_documents": en_documents,
            "raw_legal_text_corpus": corpus,
            "raw_legal_text_corpus_length": len(corpus),
        },
    }
    if findings.get("bti_cases") or findings.get("wco_precedents") or findings.get("wco_opinions"):
        facts["precedents"] = normalize_precedents(findings)
    return facts


_CITATION_TEXT_FIELDS = ("source_type", "source_reference", "exact_quote")


def _normalize_citation(citation: Dict[str, Any]) -> Dict[str, Any]:
    entry = dict(citation)
    for key in _CITATION_TEXT_FIELDS:
        if key in entry:
            entry[key] = _as_text(entry[key])
    return entry


def _normalize_essential_character(analysis: Any) -> Optional[Dict[str, Any]]:
    analysis = _as_dict(analysis)
    if not analysis:
        return None
    components = analysis.get("components")
    if isinstance(components, list):
        normalized = []
        for component in components:
            if isinstance(component, dict):
                component = dict(component)
                for key in ("bulk_percent", "value_percent"):
                    if key in component:
                        component[key] = _as_number(component[key])
            normalized.append(component)
        analysis["components"] = normalized
    return analysis


def normalize_decision(response: Dict[str, Any]) -> Dict[str, Any]:
    results = _as_dict(response.get("results") or response.get("classification_results"))
    primary = _as_dict(results.get("primary"))
    citations = primary.get("legal_citations")
    return {
        "decision": {
            "hs_code": _as_text(primary.get("hs_code")),
            "gri_applied": _as_text(primary.get("gri_applied") or primary.get("gir_applied")),
            "confidence_score": _as_number(primary.get("confidence_score")),
            "reasoning": _as_text(primary.get("reasoning")) or "",
            "state_log": _as_list(primary.get("gir_state_log") or primary.get("state_log")),
            "essential_character_analysis": _normalize_essential_character(
                primary.get("essential_character_analysis")
            ),
            # None means the classifier never produced citations at all
            "legal_citations": (
                [_normalize_citation(c) for c in _as_list(citations) if isinstance(c, dict)]
                if citations is not None else None
            ),
            "context_gaps": _as_list(primary.get("context_gaps")),
            "alternatives": _as_list(results.get("alternatives")),
        }
    }


def normalize_validation(
    response: Dict[str, Any],
    pre_validation_issues: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Merge the reviewer's audit with deterministic findings.

    The decision passes only when the reviewer passed it and no
    high-severity pre-validation issue remains.
    """
    audit = _as_dict(response.get("qa_audit") or response.get("audit"))
    raw_issues = _as_list(audit.get("issues_found"))
    if audit.get("research_needs_expansion"):
        raw_issues.insert(0, {
            "type": "legal_context_missing",
            "severity": "high",
            "description": "Reviewer found the legal research insufficient",
            "action_needed": "expand_search",
        })
    raw_issues.extend(pre_validation_issues)

    reviewer_passed = str(audit.get("status") or "").lower() == "passed"
    blocking = any(i.get("severity") == "high" for i in pre_validation_issues)
    passed = reviewer_passed and not blocking

    issues = [to_issue(i) for i in raw_issues]
    if not passed and not issues and audit.get("fix_instructions"):
        issues.append(to_issue({"type": "unknown", "severity": "medium", "description": audit["fix_instructions"]}))

    return {
        "validation_result": {
            "passed": passed,
            "status": "passed" if passed else "failed",
            "score": _as_number(audit.get("score")),
            "issues": [i.model_dump(mode="json") for i in issues],
            "pre_validation_issue_count": len(pre_validation_issues),
            "fix_instructions": audit.get("fix_instructions"),
            "retrieval_quality_score": _as_number(audit.get("retrieval_quality_score")),
        }
    }


def normalize_tax(response: Dict[str, Any]) -> Dict[str, Any]:
    data = _as_dict(response.get("data") or response.get("tax_data"))
    return {
        "tax_data": {
            "primary": _as_dict(data.get("primary")),
            "preferential_rates": _as_list(data.get("preferential_rates")),
            "alternatives": _as_list(data.get("alternatives")),
            "data_gaps": _as_list(data.get("data_gaps")),
            "extraction_confidence": _as_number(data.get("extraction_confidence")),
        }
    }


_COMPLIANCE_LISTS = (
    "import_requirements",
    "mandatory_standards",
    "labeling_laws",
    "prohibitions",
    "licenses_required",
    "certifications_needed",
    "data_gaps",
)


def normalize_compliance(response: Dict[str, Any]) -> Dict[str, Any]:
    data = _as_dict(response.get("compliance_data") or response.get("data"))
    compliance = {key: _as_list(data.get(key)) for key in _COMPLIANCE_LISTS}
    compliance["import_legality"] = data.get("import_legality")
    compliance["extraction_metadata"] = _as_dict(data.get("extraction_metadata"))
    return {"compliance_data": compliance}


def _summarize(kind: ActionKind, facts: Dict[str, Any]) -> Dict[str, Any]:
    """A short, log-friendly digest of what a round produced."""
    if kind in _PRODUCT_ACTIONS:
        profile = facts.get("product_profile") or {}
        return {"product": profile.get("standardized_name"), "readiness": facts.get("product_readiness")}
    if kind == ActionKind.FETCH_LEGAL_SOURCES:
        research = facts.get("legal_research") or {}
        return {
            "candidate_headings": facts.get("candidate_headings"),
            "corpus_length": research.get("raw_legal_text_corpus_length"),
        }
    if kind == ActionKind.SEARCH_PRECEDENTS:
        precedents = facts.get("precedents") or {}
        return {
            "bti_cases": len(precedents.get("bti_cases") or []),
            "wco_opinions": len(precedents.get("wco_opinions") or []),
        }
    if kind == ActionKind.CLASSIFY:
        decision = facts.get("decision") or {}
        return {"hs_code": decision.get("hs_code"), "gri_applied": decision.get("gri_applied")}
    if kind == ActionKind.VALIDATE:
        result = facts.get("validation_result") or {}
        return {"passed": result.get("passed"), "issues": len(result.get("issues") or [])}
    if kind == ActionKind.CALCULATE_TAX:
        tax = facts.get("tax_data") or {}
        return {"duty_rate": tax.get("primary", {}).get("duty_rate"), "data_gaps": len(tax.get("data_gaps") or [])}
    if kind == ActionKind.CHECK_COMPLIANCE:
        compliance = facts.get("compliance_data") or {}
        return {"import_legality": compliance.get("import_legality")}
    return {}


# =============================================================================
# Invoker
# =============================================================================


def build_request(action: Action, job: JobContext, facts: Facts) -> Dict[str, Any]:
    """Flatten job context, corrective parameters and current facts into one request."""
    specific = action.specific_request
    request: Dict[str, Any] = {
        "job_id": job.job_id,
        "product_description": job.product_description,
        "destination_country": job.destination_country,
        "intended_use": job.intended_use,
        "user_answers": list(job.user_answers),
        "feedback": specific.feedback,
        "enforce_citations": specific.enforce_citations,
        "enforce_hierarchy": specific.enforce_hierarchy,
        "expand_search": specific.expand_search,
        "focus": specific.focus,
        "focus_areas": specific.focus_areas,
    }
    request.update(facts.model_dump(mode="json"))
    return request


class AgentInvoker:
    """Executes one non-terminal Action against the configured collaborators."""

    def __init__(self, collaborators: Any) -> None:
        self.collaborators = collaborators

    async def invoke(self, action: Action, job: JobContext, state: ConversationState) -> AgentResult:
        if action.agent is None or action.is_terminal:
            raise AgentError("orchestrator", f"Action '{action.kind.value}' does not invoke an agent")

        agent = action.agent
        facts = state.current_state
        request = build_request(action, job, facts)

        pre_validation_issues: List[Dict[str, Any]] = []
        if action.kind == ActionKind.VALIDATE:
            pre_validation_issues = run_prevalidation(facts, job.destination_country)
            request["pre_validation_issues"] = pre_validation_issues

        try:
            response = await self.collaborators.call(agent, action.kind, request)
        except AgentError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Agent %s failed on %s", agent.value, action.kind.value)
            raise AgentError(agent.value, str(exc) or type(exc).__name__, exc) from exc

        if not isinstance(response, dict):
            raise AgentError(agent.value, f"Expected a JSON object, got {type(response).__name__}")

        status = str(response.get("status") or "success").lower()
        if status == "error":
            raise AgentError(agent.value, str(response.get("error") or "Collaborator reported an error"))

        if status == "waiting_for_user":
            if action.kind not in _PRODUCT_ACTIONS:
                raise AgentError(agent.value, "Only product analysis may ask the user for input")
            question = response.get("question") or response.get("missing_info_question")
            return AgentResult(
                raw=response,
                outcome="waiting_for_user",
                question=str(question or "Please describe the product and its primary function."),
                summary={"waiting_for_user": True},
            )

        facts_out = self._normalize(action.kind, response, pre_validation_issues)
        return AgentResult(facts=facts_out, raw=response, summary=_summarize(action.kind, facts_out))

    @staticmethod
    def _normalize(
        kind: ActionKind,
        response: Dict[str, Any],
        pre_validation_issues: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        if kind in _PRODUCT_ACTIONS:
            return normalize_product(response)
        if kind == ActionKind.FETCH_LEGAL_SOURCES:
            return normalize_research(response)
        if kind == ActionKind.SEARCH_PRECEDENTS:
            findings = _as_dict(response.get("research_findings") or response)
            return {"precedents": normalize_precedents(findings)}
        if kind == ActionKind.CLASSIFY:
            return normalize_decision(response)
        if kind == ActionKind.VALIDATE:
            return normalize_validation(response, pre_validation_issues)
        if kind == ActionKind.CALCULATE_TAX:
            return normalize_tax(response)
        if kind == ActionKind.CHECK_COMPLIANCE:
            return normalize_compliance(response)
        return {}
