"""
Confidence Model — scores how well-founded the current classification is.

The overall score is a weighted sum of six category scores, each 0–100,
minus fixed penalties for known risk signals:

    product     0.15   product profile readiness and richness
    legal       0.25   volume and authority of retrieved legal text
    decision    0.25   strength of the GRI rule that resolved the case
    citation    0.15   count and diversity of citations behind the decision
    precedent   0.10   BTI cases / WCO opinions found during research
    validation  0.10   outcome of the QA stage

Citation, precedent and validation fall back to neutral mid-values only
once a decision exists; with no facts at all the score is 0.

Everything here is a pure function of Facts: the same facts always produce
the same score.
"""

import math
import re
from typing import Any, Dict, List, Optional

from state import Facts


WEIGHTS: Dict[str, float] = {
    "product": 0.15,
    "legal": 0.25,
    "decision": 0.25,
    "citation": 0.15,
    "precedent": 0.10,
    "validation": 0.10,
}

# Stronger, more specific rules score higher.
RULE_STRENGTH: Dict[str, int] = {
    "GRI1": 95,
    "GRI2": 90,
    "GRI2A": 90,
    "GRI2B": 88,
    "GRI3A": 85,
    "GRI6": 80,
    "GRI3B": 75,
    "GRI3C": 60,
    "GRI4": 55,
}

WEAKEST_RULES = frozenset({"GRI3C", "GRI4"})

DEFAULT_RULE_STRENGTH = 70
DEFAULT_CITATION_SCORE = 50
NEUTRAL_PRECEDENT_SCORE = 70
NEUTRAL_VALIDATION_SCORE = 50
FAILED_VALIDATION_SCORE = 20
PASSED_VALIDATION_SCORE = 80

CONFLICTING_PRECEDENT_PENALTY = 10
WEAK_RULE_PENALTY = 10
CONTEXT_GAP_PENALTY = 5
MAX_TOLERATED_CONTEXT_GAPS = 3

_RULE_SUFFIX = r"([1-6])(?:\s*\(?\s*([abc])\s*\)?(?![a-z]))?"
_PREFIXED_RULE = re.compile(r"(?:GRI|GIR)[\s_]*" + _RULE_SUFFIX, re.IGNORECASE)
_BARE_RULE = re.compile(r"^\s*" + _RULE_SUFFIX, re.IGNORECASE)


def normalize_rule(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a free-text rule identifier to a canonical key.

    "GRI 3(b)", "GIR3b" and "3b" all become "GRI3B". Returns None when no
    rule number can be found.
    """
    if not raw:
        return None
    text = str(raw)
    match = _PREFIXED_RULE.search(text) or _BARE_RULE.match(text)
    if not match:
        return None
    number, letter = match.group(1), match.group(2)
    return f"GRI{number}{letter.upper() if letter else ''}"


def _clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def _decision_rule(facts: Facts) -> Optional[str]:
    decision = facts.decision or {}
    return normalize_rule(decision.get("gri_applied"))


# ---------------------------------------------------------------------------
# Category scores
# ---------------------------------------------------------------------------

def product_score(facts: Facts) -> float:
    profile = facts.product_profile
    if not profile:
        return 0
    score = facts.product_readiness or 50
    if profile.get("essential_character"):
        score += 10
    composite = profile.get("composite_analysis")
    if isinstance(composite, dict) and composite.get("is_composite") is not None:
        score += 10
    return _clamp(score)


def legal_score(facts: Facts) -> float:
    research = facts.legal_research
    if not research:
        return 0
    score = 40
    if (research.get("raw_legal_text_corpus_length") or 0) > 1000:
        score += 25
    if research.get("en_documents"):
        score += 15
    if research.get("notes"):
        score += 10
    sources = research.get("verified_sources") or []
    if any(str(s.get("authority_tier")) == "1" for s in sources if isinstance(s, dict)):
        score += 10
    return _clamp(score)


def decision_score(facts: Facts) -> float:
    decision = facts.decision
    if decision is None:
        return 0
    rule = _decision_rule(facts)
    score = RULE_STRENGTH.get(rule, DEFAULT_RULE_STRENGTH) if rule else DEFAULT_RULE_STRENGTH
    analysis = decision.get("essential_character_analysis") or {}
    if isinstance(analysis, dict) and analysis.get("components"):
        score += 5
    return _clamp(score)


def citation_score(facts: Facts) -> float:
    decision = facts.decision
    if decision is None:
        return 0
    citations = decision.get("legal_citations")
    if citations is None:
        # Decision exists but citations were never evaluated
        return DEFAULT_CITATION_SCORE

    citations = [c for c in citations if isinstance(c, dict)]
    score = 30
    if len(citations) >= 3:
        score += 20
    if len(citations) >= 5:
        score += 15
    source_types = {c.get("source_type") for c in citations}
    if "EN" in source_types:
        score += 15
    if "WCO_OPINION" in source_types:
        score += 10
    if citations and all(len(c.get("exact_quote") or "") > 10 for c in citations):
        score += 10
    return _clamp(score)


def precedent_score(facts: Facts) -> float:
    precedents = facts.precedents
    if precedents is None:
        return NEUTRAL_PRECEDENT_SCORE if facts.decision is not None else 0
    score = 50
    if precedents.get("wco_opinions"):
        score += 30
    bti_cases = precedents.get("bti_cases") or []
    score += min(20, len(bti_cases) * 5)
    return _clamp(score)


def validation_score(facts: Facts) -> float:
    result = facts.validation_result
    if result is None:
        return NEUTRAL_VALIDATION_SCORE if facts.decision is not None else 0
    if result.get("passed"):
        score = result.get("score") or PASSED_VALIDATION_SCORE
    else:
        score = FAILED_VALIDATION_SCORE
    retrieval = result.get("retrieval_quality_score")
    if retrieval:
        score = (score + retrieval) / 2
    return _clamp(score)


def penalties(facts: Facts) -> float:
    penalty = 0
    consensus = (facts.precedents or {}).get("consensus") or {}
    if consensus.get("conflicting_cases"):
        penalty += CONFLICTING_PRECEDENT_PENALTY
    if _decision_rule(facts) in WEAKEST_RULES:
        penalty += WEAK_RULE_PENALTY
    if len((facts.decision or {}).get("context_gaps") or []) > MAX_TOLERATED_CONTEXT_GAPS:
        penalty += CONTEXT_GAP_PENALTY
    return penalty


_CATEGORY_SCORERS = {
    "product": product_score,
    "legal": legal_score,
    "decision": decision_score,
    "citation": citation_score,
    "precedent": precedent_score,
    "validation": validation_score,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def confidence_breakdown(facts: Facts) -> Dict[str, Any]:
    """Per-category scores, weights, contributions and the penalty total."""
    categories = {}
    weighted = 0.0
    for name, scorer in _CATEGORY_SCORERS.items():
        score = scorer(facts)
        contribution = score * WEIGHTS[name]
        weighted += contribution
        categories[name] = {
            "score": score,
            "weight": WEIGHTS[name],
            "contribution": round(contribution, 2),
        }
    return {
        "categories": categories,
        "raw_weighted": round(weighted, 2),
        "penalties": penalties(facts),
    }


def compute_confidence(facts: Facts) -> int:
    """Overall confidence in [0, 100], rounded half up."""
    weighted = sum(scorer(facts) * WEIGHTS[name] for name, scorer in _CATEGORY_SCORERS.items())
    final = _clamp(weighted - penalties(facts))
    return int(math.floor(final + 0.5))


def analyze_confidence_factors(facts: Facts) -> Dict[str, Any]:
    """
    Explain the current confidence level and suggest where to improve it.

    Used in escalation summaries so a human reviewer sees which category is
    holding the score down.
    """
    breakdown = confidence_breakdown(facts)
    scores = {name: c["score"] for name, c in breakdown["categories"].items()}
    recommendations: List[Dict[str, str]] = []

    if scores["product"] < 80:
        recommendations.append({
            "area": "product",
            "issue": "Product data incomplete",
            "suggestion": "Gather technical specifications and material composition with percentages",
        })
    if scores["legal"] < 70:
        recommendations.append({
            "area": "legal",
            "issue": "Legal foundation weak",
            "suggestion": "Fetch official Explanatory Notes and Section/Chapter Notes",
        })
    if scores["decision"] < 70:
        recommendations.append({
            "area": "decision",
            "issue": "Classification rule ambiguous",
            "suggestion": "GRI 3(c)/4 used - consider further product analysis or user clarification",
        })
    if scores["citation"] < 50:
        recommendations.append({
            "area": "citation",
            "issue": "Decision weakly cited",
            "suggestion": "Cite heading text or Explanatory Notes with exact quotes",
        })
    if scores["precedent"] < 60:
        recommendations.append({
            "area": "precedent",
            "issue": "Precedent support lacking or conflicting",
            "suggestion": "Search for additional BTI cases or WCO opinions",
        })

    return {
        "overall_score": compute_confidence(facts),
        "breakdown": breakdown,
        "recommendations": recommendations,
    }
