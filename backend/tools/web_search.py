"""
Legal Source Search Tool — Tavily Search API wrapper for the research agent.

Searches customs-law sources (WCO, EU TARIC/EBTI, national tariff sites) for
text the classifier can later quote. Requires TAVILY_API_KEY; without it the
research agent falls back to the model's own knowledge.
"""

import logging
from typing import Iterable, List, Optional

from langchain_core.tools import tool

from config import config

logger = logging.getLogger(__name__)

# Authoritative customs sources, searched first
LEGAL_SOURCE_DOMAINS = [
    "wcoomd.org",
    "taxation-customs.ec.europa.eu",
    "ec.europa.eu",
    "hts.usitc.gov",
    "rulings.cbp.gov",
    "gov.uk",
    "gov.il",
]

MAX_CORPUS_CHARS = 20000


@tool
def legal_source_search(query: str, max_results: int = 5) -> str:
    """
    Search customs-law sources for tariff headings, Explanatory Notes and rulings.

    Args:
        query: The search query string.
        max_results: Maximum number of results to return (default 5).

    Returns:
        A formatted string with search results including titles, URLs, and snippets.
    """
    from tavily import TavilyClient

    if not config.TAVILY_API_KEY:
        return "[Legal Search Error] TAVILY_API_KEY environment variable is not set."

    client = TavilyClient(api_key=config.TAVILY_API_KEY)

    try:
        response = client.search(
            query=query,
            max_results=max_results,
            search_depth="advanced",
            include_domains=LEGAL_SOURCE_DOMAINS,
        )
    except Exception as exc:  # noqa: BLE001
        return f"[Legal Search Error] {exc}"

    results = response.get("results", [])
    if not results:
        return f"No results found for: {query}"

    formatted = []
    for i, r in enumerate(results, 1):
        title = r.get("title", "No title")
        url = r.get("url", "")
        content = r.get("content", "No content available")
        formatted.append(f"{i}. **{title}**\n   URL: {url}\n   {content}")

    return "\n\n".join(formatted)


def is_search_configured() -> bool:
    return bool(config.TAVILY_API_KEY)


def gather_legal_corpus(queries: Iterable[str], max_results: int = 5) -> Optional[str]:
    """
    Run each query through the search tool and join the hits into one corpus.

    Returns None when search is not configured. Failed or empty queries are
    skipped; the joined text is truncated to MAX_CORPUS_CHARS.
    """
    if not is_search_configured():
        return None

    sections: List[str] = []
    for query in queries:
        result = legal_source_search.invoke({"query": query, "max_results": max_results})
        if result.startswith("[Legal Search Error]") or result.startswith("No results found"):
            logger.info("Legal search yielded nothing for %r: %s", query, result[:120])
            continue
        sections.append(f"### {query}\n{result}")

    corpus = "\n\n".join(sections)
    return corpus[:MAX_CORPUS_CHARS]
