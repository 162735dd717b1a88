"""Tests for the deterministic pre-validation checks."""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from helpers import LEGAL_CORPUS, citations, complete_facts
from services.prevalidation import (
    run_prevalidation,
    validate_citations,
    validate_essential_character,
    validate_extraction_quality,
    validate_gri_hierarchy,
    validate_hs_code_format,
)
from state import Facts


def types(issues):
    return [i["type"] for i in issues]


class TestHsCodeFormat:
    def test_missing(self):
        result = validate_hs_code_format(None, "EU")
        assert not result["valid"]
        assert types(result["issues"]) == ["hs_code_missing"]

    def test_invalid_characters(self):
        assert types(validate_hs_code_format("8518.3X", "EU")["issues"]) == ["hs_code_invalid_chars"]

    def test_too_short(self):
        assert types(validate_hs_code_format("8518", "EU")["issues"]) == ["hs_code_too_short"]

    @pytest.mark.parametrize("country, code, digits", [
        ("EU", "8518.30.00", 8),
        ("US", "8518.30.0000", 10),
        ("IL", "8518.30.00.00", 10),
        ("GB", "8518300000", 10),
        (None, "851830", 6),
        ("JP", "8518.30", 6),
    ])
    def test_valid_per_country(self, country, code, digits):
        result = validate_hs_code_format(code, country)
        assert result["valid"]
        assert result["issues"] == []
        assert result["expected_digits"] == digits

    def test_insufficient_digits_is_not_blocking(self):
        result = validate_hs_code_format("8518.30", "US")
        assert result["valid"]
        assert types(result["issues"]) == ["hs_code_insufficient_digits"]
        assert result["normalized_code"] == "851830"

    def test_invalid_chapter(self):
        result = validate_hs_code_format("0018.30", None)
        assert not result["valid"]
        assert "hs_code_invalid_chapter" in types(result["issues"])

    @pytest.mark.parametrize("code", ["9999.99", "0000.00"])
    def test_placeholder(self, code):
        assert "hs_code_placeholder" in types(validate_hs_code_format(code, None)["issues"])


class TestGriHierarchy:
    def test_gri1_without_log_is_fine(self):
        assert validate_gri_hierarchy({"gri_applied": "GRI 1"}) == []

    def test_later_rule_without_log(self):
        issues = validate_gri_hierarchy({"gri_applied": "GRI 3(b)"})
        assert types(issues) == ["gir_hierarchy_violation"]
        assert issues[0]["severity"] == "high"

    def test_skipped_gri1(self):
        decision = {"gri_applied": "GRI 3(a)", "state_log": [{"state": "GRI 3(a)", "result": "specific"}]}
        assert types(validate_gri_hierarchy(decision)) == ["gir_skipped_gri1"]

    def test_gri3b_requires_gri3a(self):
        decision = {
            "gri_applied": "GRI 3(b)",
            "state_log": [
                {"state": "GRI 1", "result": "two headings"},
                {"state": "GRI 3(b)", "result": "essential character"},
            ],
        }
        assert types(validate_gri_hierarchy(decision)) == ["gir_skipped_gri3a"]

    def test_complete_log(self):
        decision = {
            "gri_applied": "GRI 3(b)",
            "state_log": [
                {"state": "GRI 1", "result": "two headings"},
                {"state": "GRI 3(a)", "result": "equally specific"},
                {"state": "GRI 3(b)", "result": "essential character"},
            ],
        }
        assert validate_gri_hierarchy(decision) == []

    def test_incomplete_entries(self):
        decision = {"gri_applied": "GRI 1", "state_log": [{"state": "GRI 1"}]}
        assert types(validate_gri_hierarchy(decision)) == ["gir_incomplete_state_log"]


class TestEssentialCharacter:
    def test_only_checked_for_gri3b(self):
        assert validate_essential_character({"gri_applied": "GRI 1"}) == []

    def test_missing_analysis(self):
        assert types(validate_essential_character({"gri_applied": "GRI 3(b)"})) == ["ec_missing"]

    def test_complete_analysis(self):
        decision = {
            "gri_applied": "GRI 3(b)",
            "essential_character_analysis": {
                "components": [
                    {"name": "leather upper", "bulk_percent": 60, "value_percent": 70},
                    {"name": "rubber sole", "bulk_percent": 40, "value_percent": 30},
                ],
                "essential_component": "Leather upper",
                "justification": "The leather upper accounts for most of the value and defines the shoe's use.",
            },
        }
        assert validate_essential_character(decision) == []

    def test_weak_analysis(self):
        decision = {
            "gri_applied": "GRI 3(b)",
            "essential_character_analysis": {
                "components": [
                    {"name": "frame", "bulk_percent": 30},
                    {"name": "fabric", "bulk_percent": 30},
                ],
                "essential_component": "motor",
                "justification": "value",
            },
        }
        assert types(validate_essential_character(decision)) == [
            "ec_bulk_sum_invalid",
            "ec_component_mismatch",
            "ec_weak_justification",
        ]

    def test_single_component(self):
        decision = {
            "gri_applied": "GRI 3(b)",
            "essential_character_analysis": {"components": [{"name": "a"}]},
        }
        issues = types(validate_essential_character(decision))
        assert issues[0] == "ec_insufficient_components"
        assert "ec_no_conclusion" in issues
        assert "ec_no_justification" in issues

    def test_no_percentages(self):
        decision = {
            "gri_applied": "GRI 3(b)",
            "essential_character_analysis": {
                "components": [{"name": "a"}, {"name": "b"}],
                "essential_component": "a",
                "justification": "x" * 60,
            },
        }
        assert types(validate_essential_character(decision)) == ["essential_character_no_percentages"]


class TestCitations:
    def test_no_citations(self):
        assert types(validate_citations({"legal_citations": []})) == ["no_citations"]

    def test_verified_citations_pass(self):
        decision = {"legal_citations": citations(), "context_gaps": []}
        assert validate_citations(decision, {"raw_legal_text_corpus": LEGAL_CORPUS}) == []

    def test_missing_core_citation(self):
        decision = {"legal_citations": [{"source_type": "BTI", "exact_quote": "long enough quote"}]}
        assert types(validate_citations(decision)) == ["missing_core_citations"]

    def test_empty_quote(self):
        decision = {"legal_citations": [{"source_type": "EN", "source_reference": "EN 85.18", "exact_quote": ""}]}
        assert types(validate_citations(decision)) == ["empty_citation"]

    def test_excessive_context_gaps(self):
        decision = {"legal_citations": citations(), "context_gaps": ["a", "b", "c", "d"]}
        assert types(validate_citations(decision)) == ["excessive_context_gaps"]

    def test_quote_not_in_corpus(self):
        fabricated = citations() + [{
            "source_type": "EN",
            "source_reference": "EN 84.71",
            "exact_quote": "Automatic data processing machines and units thereof",
        }]
        issues = validate_citations({"legal_citations": fabricated}, {"raw_legal_text_corpus": LEGAL_CORPUS})
        assert types(issues) == ["citation_not_in_corpus"]

    def test_short_corpus_skips_verification(self):
        fabricated = [{"source_type": "EN", "exact_quote": "Automatic data processing machines"}]
        assert validate_citations({"legal_citations": fabricated}, {"raw_legal_text_corpus": "short"}) == []


class TestExtractionQuality:
    def test_absent_data_is_not_an_issue(self):
        assert validate_extraction_quality(None, None) == []

    def test_tax_without_source(self):
        issues = validate_extraction_quality({"primary": {"duty_rate": "5%"}}, None)
        assert types(issues) == ["tax_no_citation"]

    def test_tax_not_found(self):
        issues = validate_extraction_quality({"primary": {"duty_rate": "NOT_FOUND"}}, None)
        assert types(issues) == ["tax_data_gap"]

    def test_compliance_without_context(self):
        issues = validate_extraction_quality(None, {"extraction_metadata": {"legal_context_available": False}})
        assert types(issues) == ["compliance_no_context"]


class TestRunPrevalidation:
    def test_no_decision_no_issues(self):
        assert run_prevalidation(Facts()) == []

    def test_clean_facts(self):
        facts = complete_facts(tax_data={"primary": {"duty_rate": "2%", "duty_rate_source": "TARIC"}})
        assert run_prevalidation(facts, "EU") == []

    def test_collects_every_family(self):
        facts = complete_facts(
            decision={"hs_code": "9999.00", "gri_applied": "GRI 4", "legal_citations": []},
            tax_data={"primary": {"duty_rate": "3%"}},
        )
        found = set(types(run_prevalidation(facts, "EU")))
        assert {"hs_code_insufficient_digits", "hs_code_placeholder", "gir_hierarchy_violation",
                "no_citations", "tax_no_citation"} <= found
