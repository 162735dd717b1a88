"""Collaborator agents for TariffOS."""

from .product_analyst import analyze_product
from .legal_researcher import research_legal_sources, search_precedents
from .classifier import classify_product
from .quality_validator import audit_classification
from .tax_agent import calculate_tax
from .compliance_agent import check_compliance

__all__ = [
    "analyze_product",
    "research_legal_sources",
    "search_precedents",
    "classify_product",
    "audit_classification",
    "calculate_tax",
    "check_compliance",
]
