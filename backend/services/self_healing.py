"""
Self-Healing Router — turns a failed validation into one targeted re-run.

Validation issues carry a closed IssueType tag. The router takes the most
severe issue and maps its family to a corrective Action. Every Action it
returns lists the facts to clear before the agent runs, always including the
failed validation_result, so the decision table cannot re-enter the same
failure without new input.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from state import Action, ActionKind, AgentName, IssueType, SpecificRequest, ValidationIssue


CITATION_ISSUES = frozenset({
    IssueType.NO_CITATIONS,
    IssueType.INSUFFICIENT_CITATIONS,
    IssueType.EMPTY_CITATION,
    IssueType.MISSING_CORE_CITATIONS,
    IssueType.CITATION_NOT_IN_CORPUS,
})

RESEARCH_ISSUES = frozenset({
    IssueType.LEGAL_CONTEXT_MISSING,
    IssueType.EXCESSIVE_CONTEXT_GAPS,
    IssueType.RESEARCH_NO_CORPUS,
    IssueType.RESEARCH_NO_CANDIDATES,
    IssueType.RESEARCH_NO_SOURCES,
})

TAX_ISSUES = frozenset({IssueType.TAX_NO_CITATION, IssueType.TAX_DATA_GAP})

COMPLIANCE_ISSUES = frozenset({IssueType.COMPLIANCE_NO_CONTEXT})

HIERARCHY_ISSUES = frozenset({
    IssueType.GIR_HIERARCHY_VIOLATION,
    IssueType.GIR_SKIPPED_GRI1,
    IssueType.GIR_INCOMPLETE_STATE_LOG,
})

ESSENTIAL_CHARACTER_ISSUES = frozenset({
    IssueType.ESSENTIAL_CHARACTER_MISSING,
    IssueType.ESSENTIAL_CHARACTER_NO_COMPONENTS,
    IssueType.ESSENTIAL_CHARACTER_NO_PERCENTAGES,
    IssueType.ESSENTIAL_CHARACTER_NO_CONCLUSION,
})

# Tags emitted by validators that are spelled differently from IssueType values.
_ISSUE_ALIASES: Dict[str, IssueType] = {
    "empty_citation_quotes": IssueType.EMPTY_CITATION,
    "citations_not_in_corpus": IssueType.CITATION_NOT_IN_CORPUS,
    "citation_heading_mismatch": IssueType.CITATION_NOT_IN_CORPUS,
    "en_heading_not_researched": IssueType.CITATION_NOT_IN_CORPUS,
    "unverified_wco_citation": IssueType.CITATION_NOT_IN_CORPUS,
    "unverified_bti_citation": IssueType.CITATION_NOT_IN_CORPUS,
    "context_gap": IssueType.EXCESSIVE_CONTEXT_GAPS,
    "legal_context": IssueType.LEGAL_CONTEXT_MISSING,
    "research_corpus_insufficient": IssueType.RESEARCH_NO_CORPUS,
    "vat_no_citation": IssueType.TAX_NO_CITATION,
    "tax_no_context": IssueType.TAX_DATA_GAP,
    "tax_data_missing": IssueType.TAX_DATA_GAP,
    "tax_gaps_flagged": IssueType.TAX_DATA_GAP,
    "tax_low_confidence_unexplained": IssueType.TAX_DATA_GAP,
    "compliance_data_missing": IssueType.COMPLIANCE_NO_CONTEXT,
    "compliance_gaps_flagged": IssueType.COMPLIANCE_NO_CONTEXT,
    "compliance_requirements_no_citation": IssueType.COMPLIANCE_NO_CONTEXT,
    "compliance_standards_no_citation": IssueType.COMPLIANCE_NO_CONTEXT,
    "compliance_low_confidence_unexplained": IssueType.COMPLIANCE_NO_CONTEXT,
    "gir_skipped_gri3a": IssueType.GIR_HIERARCHY_VIOLATION,
    "essential_character_incomplete_components": IssueType.ESSENTIAL_CHARACTER_NO_COMPONENTS,
    "essential_character_weak_justification": IssueType.ESSENTIAL_CHARACTER_NO_CONCLUSION,
    "essential_character_mismatch": IssueType.ESSENTIAL_CHARACTER_NO_CONCLUSION,
    "ec_missing": IssueType.ESSENTIAL_CHARACTER_MISSING,
    "ec_no_components_array": IssueType.ESSENTIAL_CHARACTER_NO_COMPONENTS,
    "ec_insufficient_components": IssueType.ESSENTIAL_CHARACTER_NO_COMPONENTS,
    "ec_incomplete_components": IssueType.ESSENTIAL_CHARACTER_NO_COMPONENTS,
    "ec_no_bulk_percent": IssueType.ESSENTIAL_CHARACTER_NO_PERCENTAGES,
    "ec_no_value_percent": IssueType.ESSENTIAL_CHARACTER_NO_PERCENTAGES,
    "ec_bulk_sum_invalid": IssueType.ESSENTIAL_CHARACTER_NO_PERCENTAGES,
    "ec_value_sum_invalid": IssueType.ESSENTIAL_CHARACTER_NO_PERCENTAGES,
    "ec_no_conclusion": IssueType.ESSENTIAL_CHARACTER_NO_CONCLUSION,
    "ec_no_justification": IssueType.ESSENTIAL_CHARACTER_NO_CONCLUSION,
    "ec_weak_justification": IssueType.ESSENTIAL_CHARACTER_NO_CONCLUSION,
    "ec_component_mismatch": IssueType.ESSENTIAL_CHARACTER_NO_CONCLUSION,
    "hs_code_invalid_chars": IssueType.HS_CODE_INVALID,
    "hs_code_too_short": IssueType.HS_CODE_INVALID,
    "hs_code_insufficient_digits": IssueType.HS_CODE_INVALID,
    "hs_code_invalid_chapter": IssueType.HS_CODE_INVALID,
    "hs_code_placeholder": IssueType.HS_CODE_INVALID,
}

_SEVERITY_RANK = {"high": 0, "medium": 1, "low": 2}

_CITATION_FORMAT = """REQUIRED FORMAT FOR EACH CITATION:
{
  "source_type": "EN" | "HEADING_TEXT" | "WCO_OPINION" | "BTI" | "SECTION_NOTE" | "CHAPTER_NOTE",
  "source_reference": "Heading 8471" | "WCO Opinion 8471.30/1" | ...,
  "exact_quote": "<text copied from the retrieved legal text, at least 20 characters>",
  "relevance": "<why this citation supports the classification>"
}

Provide at least 2 citations, including at least one EN or HEADING_TEXT citation."""

_CITATION_GUIDANCE: Dict[IssueType, str] = {
    IssueType.NO_CITATIONS: _CITATION_FORMAT,
    IssueType.EMPTY_CITATION: _CITATION_FORMAT,
    IssueType.CITATION_NOT_IN_CORPUS: (
        "Your citations could not be verified against the retrieved legal text.\n"
        "Only quote text that appears in the legal context provided. If no supporting "
        "text exists, record it in context_gaps instead."
    ),
    IssueType.INSUFFICIENT_CITATIONS: (
        "A robust classification needs at least 2 citations from different source "
        "types (EN, HEADING_TEXT, WCO_OPINION, ...)."
    ),
    IssueType.MISSING_CORE_CITATIONS: (
        "Cite the heading text or the Explanatory Note that establishes the legal basis."
    ),
}


def classify_issue_type(raw_type: Optional[str], action_needed: Optional[str] = None) -> IssueType:
    """Map a validator's raw issue tag onto the closed IssueType enumeration."""
    if action_needed == "expand_search":
        return IssueType.LEGAL_CONTEXT_MISSING
    if not raw_type:
        return IssueType.UNKNOWN
    tag = raw_type.strip().lower()
    try:
        return IssueType(tag)
    except ValueError:
        return _ISSUE_ALIASES.get(tag, IssueType.UNKNOWN)


def to_issue(raw: Any) -> ValidationIssue:
    """Coerce a raw issue dict (or ValidationIssue) into a ValidationIssue."""
    if isinstance(raw, ValidationIssue):
        return raw
    if not isinstance(raw, dict):
        return ValidationIssue(description=str(raw))
    raw_type = raw.get("raw_type") or raw.get("type")
    issue_type = classify_issue_type(raw_type, raw.get("action_needed"))
    severity = str(raw.get("severity") or "medium").lower()
    return ValidationIssue(
        type=issue_type,
        severity=severity if severity in _SEVERITY_RANK else "medium",
        description=str(raw.get("description") or ""),
        raw_type=raw_type,
    )


def prioritize(issues: Iterable[Any]) -> List[ValidationIssue]:
    """Order issues by severity, high first; ties keep their original order."""
    coerced = [to_issue(i) for i in issues]
    return sorted(coerced, key=lambda i: _SEVERITY_RANK.get(i.severity, 1))


def route_failure(issues: Sequence[Any]) -> Action:
    """
    Map the highest-priority validation issue to a corrective Action.

    Args:
        issues: Raw issue dicts or ValidationIssue values from the QA stage.

    Returns:
        An Action whose `clears` names every fact to null before re-running.
    """
    ordered = prioritize(issues)
    if not ordered:
        return Action(
            kind=ActionKind.CLASSIFY,
            agent=AgentName.CLASSIFIER,
            reason="Generic validation failure",
            specific_request=SpecificRequest(feedback="QA failed - please re-analyze the classification."),
            clears=("decision", "validation_result"),
            self_healing=True,
        )

    first = ordered[0]
    description = first.description or first.type.value

    if first.type in CITATION_ISSUES:
        guidance = _CITATION_GUIDANCE.get(first.type, "")
        feedback = f"CITATION VALIDATION FAILED: {description}"
        if guidance:
            feedback += f"\n\n{guidance}"
        return Action(
            kind=ActionKind.CLASSIFY,
            agent=AgentName.CLASSIFIER,
            reason=f"Citation issue: {description}",
            specific_request=SpecificRequest(
                feedback=feedback,
                enforce_citations=True,
                enforce_hierarchy=True,
            ),
            clears=("decision", "validation_result"),
            self_healing=True,
        )

    if first.type in RESEARCH_ISSUES:
        focus_areas = "; ".join(
            i.description for i in ordered if i.type in RESEARCH_ISSUES and i.description
        ) or description
        return Action(
            kind=ActionKind.FETCH_LEGAL_SOURCES,
            agent=AgentName.LEGAL_RESEARCHER,
            reason=f"Research data insufficient: {description}",
            specific_request=SpecificRequest(expand_search=True, focus_areas=focus_areas),
            clears=("candidate_headings", "legal_research", "precedents", "decision", "validation_result"),
            self_healing=True,
        )

    if first.type in TAX_ISSUES:
        return Action(
            kind=ActionKind.CALCULATE_TAX,
            agent=AgentName.TAX_AGENT,
            reason=f"Tax extraction issue: {description}",
            specific_request=SpecificRequest(
                feedback=f"TAX SOURCE REQUIRED: {description}. Cite duty and VAT sources explicitly."
            ),
            clears=("tax_data", "validation_result"),
            self_healing=True,
        )

    if first.type in COMPLIANCE_ISSUES:
        return Action(
            kind=ActionKind.CHECK_COMPLIANCE,
            agent=AgentName.COMPLIANCE_AGENT,
            reason=f"Compliance extraction issue: {description}",
            specific_request=SpecificRequest(
                feedback=f"COMPLIANCE SOURCE REQUIRED: {description}. Cite requirement sources explicitly."
            ),
            clears=("compliance_data", "validation_result"),
            self_healing=True,
        )

    if first.type in HIERARCHY_ISSUES:
        return Action(
            kind=ActionKind.CLASSIFY,
            agent=AgentName.CLASSIFIER,
            reason=f"GRI hierarchy issue: {description}",
            specific_request=SpecificRequest(feedback=description, enforce_hierarchy=True),
            clears=("decision", "validation_result"),
            self_healing=True,
        )

    if first.type in ESSENTIAL_CHARACTER_ISSUES:
        return Action(
            kind=ActionKind.REFINE_PRODUCT,
            agent=AgentName.PRODUCT_ANALYST,
            reason="Need detailed composite analysis for essential character",
            specific_request=SpecificRequest(focus="composite_analysis", feedback=description),
            clears=("decision", "validation_result"),
            self_healing=True,
        )

    # HS code format problems and unrecognised tags: classification is the
    # stage most often at fault, so re-run it with the raw description.
    return Action(
        kind=ActionKind.CLASSIFY,
        agent=AgentName.CLASSIFIER,
        reason=f"Validation issue: {description}",
        specific_request=SpecificRequest(feedback=description, enforce_citations=True),
        clears=("decision", "validation_result"),
        self_healing=True,
    )
