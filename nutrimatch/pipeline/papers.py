"""Standalone PubMed lookup for one ingredient, cached per ingredient name."""

import logging

from nutrimatch.core.cache import CitationCache
from nutrimatch.core.errors import InvalidRequest
from nutrimatch.search.models import SelectedCitation
from nutrimatch.search.parser import parse_pubmed_xml
from nutrimatch.search.pubmed import PubMedClient, build_ingredient_term

logger = logging.getLogger(__name__)

SUMMARY_CHARS = 200


def summarize_abstract(abstract: str) -> str:
    """Opening of the abstract, cut to 200 characters with an ellipsis."""
    if not abstract:
        return "No abstract available"
    if len(abstract) > SUMMARY_CHARS:
        return abstract[: SUMMARY_CHARS - 3] + "..."
    return abstract


def lookup_papers(
    pubmed: PubMedClient,
    ingredient: str,
    max_results: int = 3,
    cache: CitationCache | None = None,
) -> tuple[list[SelectedCitation], bool]:
    """Return ``(papers, from_cache)`` for an ingredient.

    Searches twice as many PMIDs as requested and fetches the first
    ``max_results``. SearchUnavailable propagates to the caller.
    """
    ingredient = (ingredient or "").strip()
    if not ingredient:
        raise InvalidRequest("ingredientName parameter is required")
    if max_results < 1:
        raise InvalidRequest("maxResults must be at least 1")

    def fetch() -> list[SelectedCitation]:
        pmids = pubmed.search(build_ingredient_term(ingredient), max_results * 2)
        if not pmids:
            logger.info("No papers found for %s", ingredient)
            return []
        candidates = parse_pubmed_xml(pubmed.fetch(pmids[:max_results]))
        logger.info("Parsed %d papers for %s", len(candidates), ingredient)
        return [
            SelectedCitation.from_candidate(c, summarize_abstract(c.abstract))
            for c in candidates[:max_results]
        ]

    if cache is None:
        return fetch(), False
    return cache.get_or_fetch(ingredient, fetch)
