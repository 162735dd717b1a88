"""
Pre-validation — deterministic checks on a classification decision.

These rules run before the quality validator's findings are stored, so
structural defects (a malformed HS code, a skipped GRI step, a missing
citation) are caught even when the LLM reviewer misses them. Each check
returns raw issue dicts `{type, severity, description}`; the raw tags are
mapped onto IssueType by the self-healing router.
"""

import re
from typing import Any, Dict, List, Optional

from services.confidence import normalize_rule
from state import Facts


HS_FORMATS: Dict[str, Dict[str, Any]] = {
    "IL": {"digits": 10, "example": "8471.30.00.00"},
    "UK": {"digits": 10, "example": "8471.30.00.00"},
    "GB": {"digits": 10, "example": "8471.30.00.00"},
    "CN": {"digits": 10, "example": "8471.30.00.00"},
    "US": {"digits": 10, "example": "8471.30.0100"},
    "EU": {"digits": 8, "example": "8471.30.00"},
    "DEFAULT": {"digits": 6, "example": "8471.30"},
}

PLACEHOLDER_HEADINGS = frozenset({"0000", "9999"})

# Source types that establish the core legal basis of a heading.
CORE_CITATION_TYPES = frozenset({"HEADING_TEXT", "EN"})

MIN_QUOTE_LENGTH = 10
MAX_CONTEXT_GAPS = 3
MIN_JUSTIFICATION_LENGTH = 50


def _issue(issue_type: str, severity: str, description: str) -> Dict[str, str]:
    return {"type": issue_type, "severity": severity, "description": description}


# =============================================================================
# HS code format
# =============================================================================


def validate_hs_code_format(hs_code: Optional[str], destination_country: Optional[str]) -> Dict[str, Any]:
    """
    Check an HS code against the digit count its destination expects.

    Returns {valid, issues, normalized_code, expected_digits}. A code is
    valid when it carries no high-severity issue.
    """
    if not hs_code:
        return {
            "valid": False,
            "issues": [_issue("hs_code_missing", "high", "HS code is missing from classification")],
        }

    clean = re.sub(r"[.\s]", "", str(hs_code))
    if not clean.isdigit():
        return {
            "valid": False,
            "issues": [_issue(
                "hs_code_invalid_chars", "high",
                f'HS code "{hs_code}" contains non-numeric characters',
            )],
        }

    country = (destination_country or "").upper()
    fmt = HS_FORMATS.get(country, HS_FORMATS["DEFAULT"])

    if len(clean) < 6:
        return {
            "valid": False,
            "issues": [_issue(
                "hs_code_too_short", "high",
                f'HS code "{hs_code}" has only {len(clean)} digits, minimum is 6',
            )],
        }

    issues = []
    if len(clean) < fmt["digits"]:
        issues.append(_issue(
            "hs_code_insufficient_digits", "medium",
            f"HS code for {country or 'destination'} requires {fmt['digits']} digits, "
            f"got {len(clean)}. Expected format: {fmt['example']}",
        ))

    chapter = int(clean[:2])
    if chapter < 1 or chapter > 99:
        issues.append(_issue(
            "hs_code_invalid_chapter", "high",
            f'HS code chapter "{clean[:2]}" is invalid (must be 01-99)',
        ))

    heading = clean[:4]
    if heading in PLACEHOLDER_HEADINGS:
        issues.append(_issue(
            "hs_code_placeholder", "high",
            f'HS code heading "{heading}" appears to be a placeholder, not a real classification',
        ))

    return {
        "valid": not any(i["severity"] == "high" for i in issues),
        "issues": issues,
        "normalized_code": clean,
        "expected_digits": fmt["digits"],
    }


# =============================================================================
# GRI hierarchy
# =============================================================================


def validate_gri_hierarchy(decision: Dict[str, Any]) -> List[Dict[str, str]]:
    """A later rule is only legitimate when the state log shows GRI 1 was tried."""
    issues: List[Dict[str, str]] = []
    applied = str(decision.get("gri_applied") or "")
    rule = normalize_rule(applied)
    state_log = [e for e in (decision.get("state_log") or []) if isinstance(e, dict)]

    if rule != "GRI1" and not state_log:
        issues.append(_issue(
            "gir_hierarchy_violation", "high",
            f"{applied or 'Unknown rule'} was applied but no GRI state log was provided. "
            "Cannot verify hierarchy compliance.",
        ))

    if rule and rule != "GRI1" and state_log:
        visited = {normalize_rule(str(entry.get("state") or "")) for entry in state_log}
        if "GRI1" not in visited:
            issues.append(_issue(
                "gir_skipped_gri1", "high",
                f"{applied} applied but GRI 1 analysis not found in state log. Must start at GRI 1.",
            ))
        if rule == "GRI3B" and "GRI3A" not in visited:
            issues.append(_issue(
                "gir_skipped_gri3a", "medium",
                "GRI 3(b) applied but GRI 3(a) analysis not in state log. "
                "Should explain why 3(a) was insufficient.",
            ))

    if any(not entry.get("state") or not entry.get("result") for entry in state_log):
        issues.append(_issue(
            "gir_incomplete_state_log", "low",
            "Some GRI state log entries are missing state or result fields",
        ))

    return issues


# =============================================================================
# Essential character (GRI 3(b))
# =============================================================================


def validate_essential_character(decision: Dict[str, Any]) -> List[Dict[str, str]]:
    if normalize_rule(decision.get("gri_applied")) != "GRI3B":
        return []

    analysis = decision.get("essential_character_analysis")
    if not isinstance(analysis, dict) or not analysis:
        return [_issue(
            "ec_missing", "high",
            "GRI 3(b) used but essential character analysis is completely missing",
        )]

    issues: List[Dict[str, str]] = []
    components = analysis.get("components")
    if not isinstance(components, list):
        issues.append(_issue("ec_no_components_array", "high", "Essential character requires a components list"))
        components = []
    elif len(components) < 2:
        issues.append(_issue(
            "ec_insufficient_components", "high",
            f"Essential character requires at least 2 components, found {len(components)}",
        ))
    else:
        components = [c for c in components if isinstance(c, dict)]
        bulk = [c.get("bulk_percent") for c in components if c.get("bulk_percent") is not None]
        value = [c.get("value_percent") for c in components if c.get("value_percent") is not None]
        if not bulk and not value:
            issues.append(_issue(
                "essential_character_no_percentages", "medium",
                "Essential character analysis should include bulk_percent and value_percent for components",
            ))
        for label, values in (("Bulk", bulk), ("Value", value)):
            if values:
                total = sum(float(v or 0) for v in values)
                if total < 90 or total > 110:
                    issues.append(_issue(
                        f"ec_{label.lower()}_sum_invalid", "medium",
                        f"{label} percentages sum to {total:.1f}%, expected ~100%",
                    ))

    essential = analysis.get("essential_component")
    if not essential:
        issues.append(_issue(
            "ec_no_conclusion", "high",
            "essential_component not specified - which component gives essential character?",
        ))
    elif components:
        essential_lower = str(essential).lower()
        names = [str(c.get("name") or "").lower() for c in components if isinstance(c, dict)]
        if not any(n and (n in essential_lower or essential_lower in n) for n in names):
            issues.append(_issue(
                "ec_component_mismatch", "medium",
                f'essential_component "{essential}" does not match any component name in the list',
            ))

    justification = str(analysis.get("justification") or "")
    if not justification:
        issues.append(_issue(
            "ec_no_justification", "high",
            "Justification is missing - must explain why this component gives essential character",
        ))
    elif len(justification) < MIN_JUSTIFICATION_LENGTH:
        issues.append(_issue(
            "ec_weak_justification", "medium",
            f"Justification too brief ({len(justification)} chars) - should cite value/bulk/function dominance",
        ))

    return issues


# =============================================================================
# Citations
# =============================================================================


def _normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text.lower())


def validate_citations(
    decision: Dict[str, Any],
    legal_research: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, str]]:
    """Citations must exist, cite the core legal basis, quote real text, and be few in gaps."""
    issues: List[Dict[str, str]] = []
    citations = [c for c in (decision.get("legal_citations") or []) if isinstance(c, dict)]
    context_gaps = decision.get("context_gaps") or []

    if not citations:
        issues.append(_issue(
            "no_citations", "high",
            "No legal citations provided - explicit citations from the retrieved legal text are required",
        ))
    elif not CORE_CITATION_TYPES & {c.get("source_type") for c in citations}:
        issues.append(_issue(
            "missing_core_citations", "medium",
            "Classification missing HEADING_TEXT or EN citations - core legal basis not explicitly cited",
        ))

    for citation in citations:
        if len(citation.get("exact_quote") or "") < MIN_QUOTE_LENGTH:
            issues.append(_issue(
                "empty_citation", "medium",
                f"Citation {citation.get('source_type')}/{citation.get('source_reference')} has no exact quote",
            ))

    if len(context_gaps) > MAX_CONTEXT_GAPS:
        issues.append(_issue(
            "excessive_context_gaps", "medium",
            f"{len(context_gaps)} context gaps flagged - classification may need more research",
        ))

    corpus = _normalize_text(str((legal_research or {}).get("raw_legal_text_corpus") or ""))
    if len(corpus) > 100:
        for citation in citations:
            quote = citation.get("exact_quote") or ""
            if len(quote) > 20 and _normalize_text(quote)[:30] not in corpus:
                issues.append(_issue(
                    "citation_not_in_corpus", "medium",
                    f'Citation "{citation.get("source_type")}/{citation.get("source_reference")}" quote '
                    "not found in retrieved legal text corpus - may be fabricated",
                ))

    return issues


# =============================================================================
# Tax / compliance extraction
# =============================================================================


def validate_extraction_quality(
    tax_data: Optional[Dict[str, Any]],
    compliance_data: Optional[Dict[str, Any]],
) -> List[Dict[str, str]]:
    """Only checks data that exists; a stage that has not run yet is not an issue."""
    issues: List[Dict[str, str]] = []

    if tax_data:
        primary = tax_data.get("primary") or {}
        duty_rate = str(primary.get("duty_rate") or "")
        if duty_rate and "NOT_FOUND" not in duty_rate and not primary.get("duty_rate_source"):
            issues.append(_issue(
                "tax_no_citation", "medium",
                "Duty rate provided without duty_rate_source citation",
            ))
        if "NOT_FOUND" in duty_rate or "NOT_FOUND" in str(primary.get("vat_rate") or ""):
            issues.append(_issue(
                "tax_data_gap", "low",
                "Some tax rates not found in retrieved context - manual verification recommended",
            ))

    if compliance_data:
        metadata = compliance_data.get("extraction_metadata") or {}
        if metadata.get("legal_context_available") is False:
            issues.append(_issue(
                "compliance_no_context", "medium",
                "Compliance requirements extracted without legal context - may be generic",
            ))

    return issues


def run_prevalidation(facts: Facts, destination_country: Optional[str] = None) -> List[Dict[str, str]]:
    """Run every deterministic check that applies to the current facts."""
    decision = facts.decision
    if not decision:
        return []

    issues: List[Dict[str, str]] = []
    issues.extend(validate_hs_code_format(decision.get("hs_code"), destination_country)["issues"])
    issues.extend(validate_gri_hierarchy(decision))
    issues.extend(validate_essential_character(decision))
    issues.extend(validate_citations(decision, facts.legal_research))
    # Tax and compliance run after the first validation, so these checks only
    # fire when a reviewer issue sends the job back through tax or compliance
    # and it is validated again.
    issues.extend(validate_extraction_quality(facts.tax_data, facts.compliance_data))
    return issues
