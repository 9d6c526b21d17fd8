"""Recommendation pipeline: draft, then enrich each draft with PubMed citations."""

import logging
import time

from nutrimatch.agents.drafter import Drafter
from nutrimatch.agents.gateway import LLMGateway
from nutrimatch.agents.models import (
    EnrichedRecommendation,
    RecommendationDraft,
    RecommendationRequest,
)
from nutrimatch.agents.relevance import RelevanceFilter, fallback_selection
from nutrimatch.core.cache import CitationCache
from nutrimatch.core.errors import (
    InvalidRequest,
    MetadataParseFailure,
    RequestTimeout,
    SearchUnavailable,
)
from nutrimatch.core.evidence import compute_evidence_grade
from nutrimatch.core.settings import Settings
from nutrimatch.search.dedup import DedupLedger, fresh_or_full
from nutrimatch.search.models import CandidateCitation, SelectedCitation
from nutrimatch.search.parser import parse_pubmed_xml
from nutrimatch.search.pubmed import PubMedClient, build_search_terms

logger = logging.getLogger(__name__)


class Recommender:
    """Runs one recommendation request end to end.

    Drafts are enriched strictly one after another so that citations reserved
    for draft *i* are excluded from draft *i+1*, and so that PubMed is never
    queried faster than its rate limit.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: LLMGateway,
        pubmed: PubMedClient,
        cache: CitationCache | None = None,
    ):
        self.settings = settings
        self.gateway = gateway
        self.pubmed = pubmed
        self.cache = cache
        self.drafter = Drafter(gateway)
        self.relevance = RelevanceFilter(gateway)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Recommender":
        cache = None
        if settings.cache.enabled:
            cache = CitationCache(settings.cache.path, ttl_days=settings.cache.ttl_days)
        return cls(
            settings,
            gateway=LLMGateway(settings.llm),
            pubmed=PubMedClient(settings.pubmed),
            cache=cache,
        )

    # ── Public API ───────────────────────────────────────────

    def recommend(self, request: RecommendationRequest) -> list[EnrichedRecommendation]:
        """Three enriched recommendations, in draft order.

        Raises InvalidRequest, UpstreamConfigurationError, DraftGenerationFailure
        or RequestTimeout. Search, parse and filter failures only degrade the
        affected draft.
        """
        query = (request.query or "").strip()
        if not query:
            raise InvalidRequest("Query parameter is required")

        deadline = time.monotonic() + self.settings.request_timeout
        t_start = time.time()

        drafts = self.drafter.draft(query, request.answers, request.profile)

        ledger = DedupLedger()
        enriched: list[EnrichedRecommendation] = []
        for i, draft in enumerate(drafts):
            if i > 0:
                # Space consecutive drafts' PubMed searches.
                time.sleep(self.settings.pubmed.request_interval)
            _check_deadline(deadline)
            enriched.append(self.enrich(draft, query, ledger, deadline))

        verified = sum(1 for r in enriched if r.data_source == "pubmed")
        logger.info(
            "Generated %d recommendations (%d with PubMed citations) in %.1fs",
            len(enriched), verified, time.time() - t_start,
        )
        return enriched

    # ── Enrichment ───────────────────────────────────────────

    def enrich(
        self,
        draft: RecommendationDraft,
        goal: str,
        ledger: DedupLedger,
        deadline: float | None = None,
    ) -> EnrichedRecommendation:
        """Attach up to three real citations to one draft and regrade it."""
        ingredient = draft.primary_ingredient()

        if self.cache is None:
            selected = self._lookup(ingredient, goal, ledger, deadline)
        else:
            cache_key = f"{ingredient} {goal}"
            # Held across read, lookup and insert: concurrent requests for
            # one key make a single round of external calls.
            with self.cache.lock_for(cache_key):
                _check_deadline(deadline)
                selected = self._cached_selection(cache_key, ledger)
                if selected is None:
                    selected = self._lookup(ingredient, goal, ledger, deadline, cache_key)

        if not selected:
            logger.info("No PubMed candidates for '%s' — keeping draft citations", ingredient)
            return _finalize(draft, draft.scientific_papers, verified=False)

        ledger.reserve(c.identifier for c in selected)
        return _finalize(draft, selected, verified=True)

    def _lookup(
        self,
        ingredient: str,
        goal: str,
        ledger: DedupLedger,
        deadline: float | None,
        cache_key: str | None = None,
    ) -> list[SelectedCitation]:
        """Search, dedupe and filter. Only model-made selections are cached."""
        candidates = self._gather_candidates(ingredient, goal, deadline)
        if not candidates:
            return []

        pool, _ = fresh_or_full(ledger, candidates)
        _check_deadline(deadline)
        selected, fell_back = self._filter(pool, ingredient, goal)
        if cache_key is not None and not fell_back:
            self.cache.put(cache_key, selected)
        return selected

    def _cached_selection(self, key: str, ledger: DedupLedger) -> list[SelectedCitation] | None:
        cached = self.cache.get(key)
        if not cached:
            return None
        if ledger.overlaps(c.identifier for c in cached):
            logger.info("Cached citations for '%s' already used in this request — refreshing", key)
            return None
        logger.info("Cache hit for '%s'", key)
        return cached

    def _gather_candidates(
        self,
        ingredient: str,
        goal: str,
        deadline: float | None,
    ) -> list[CandidateCitation]:
        """Search, fetch and parse. Recoverable failures yield an empty pool."""
        pmids: list[str] = []
        try:
            for term in build_search_terms(ingredient, goal):
                _check_deadline(deadline)
                pmids = self.pubmed.search(term, self.settings.pubmed.search_max_results)
                if pmids:
                    break
            if not pmids:
                raise SearchUnavailable(f"PubMed returned 0 results for '{ingredient}'")

            _check_deadline(deadline)
            candidates = parse_pubmed_xml(self.pubmed.fetch(pmids))
            if not candidates:
                raise MetadataParseFailure(f"No usable records among {len(pmids)} PMIDs")
        except (SearchUnavailable, MetadataParseFailure) as exc:
            logger.warning("Citation lookup degraded for '%s': %s", ingredient, exc)
            return []

        return candidates

    def _filter(
        self,
        pool: list[CandidateCitation],
        ingredient: str,
        goal: str,
    ) -> tuple[list[SelectedCitation], bool]:
        """Return ``(selected, fell_back)``."""
        try:
            return self.relevance.select(pool, ingredient, goal)
        except Exception as exc:
            logger.warning("Relevance filter raised for '%s': %s — using first candidates",
                           ingredient, exc)
            return fallback_selection(pool), True


# ── Helpers ──────────────────────────────────────────────────────────


def _check_deadline(deadline: float | None) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise RequestTimeout("Recommendation request timed out")


def _finalize(
    draft: RecommendationDraft,
    papers: list[SelectedCitation],
    verified: bool,
) -> EnrichedRecommendation:
    """Copy the draft with its citations and a grade computed from real citations only."""
    real = [p for p in papers if p.verified] if verified else []
    data = draft.model_dump()
    data["scientific_papers"] = [p.model_dump() for p in papers]
    data["evidence_level"] = compute_evidence_grade(p.study_type for p in real)
    data["data_source"] = "pubmed" if real else "ai-generated"
    return EnrichedRecommendation.model_validate(data)
