"""Agent tools for TariffOS."""

from .web_search import gather_legal_corpus, is_search_configured, legal_source_search

__all__ = [
    "legal_source_search",
    "gather_legal_corpus",
    "is_search_configured",
]
