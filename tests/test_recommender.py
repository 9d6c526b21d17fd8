"""Tests for the recommendation pipeline (fake gateway + fake PubMed)."""

import itertools
import threading
import time
from unittest.mock import patch

import pytest

from nutrimatch.agents.models import RecommendationDraft, RecommendationRequest
from nutrimatch.core.cache import CitationCache
from nutrimatch.core.errors import DraftGenerationFailure, InvalidRequest, RequestTimeout
from nutrimatch.core.settings import PubMedSettings, Settings
from nutrimatch.pipeline.recommender import Recommender
from nutrimatch.search.dedup import DedupLedger

SLEEP_POOLS = {
    "Magnesium": ["101", "102", "103", "104"],
    "Melatonin": ["201", "202", "203", "204"],
    "L-Theanine": ["301", "302", "303"],
}


def _recommender(settings, gateway, pubmed, cache=None) -> Recommender:
    return Recommender(settings, gateway=gateway, pubmed=pubmed, cache=cache)


def _request(query="improve sleep") -> RecommendationRequest:
    return RecommendationRequest(query=query)


def _ids(rec) -> list[str]:
    return [p.identifier for p in rec.scientific_papers]


# ── Happy Path ───────────────────────────────────────────────────────


def test_three_drafts_enriched_with_real_citations(settings, fake_gateway, fake_pubmed, drafts_json):
    pubmed = fake_pubmed(SLEEP_POOLS)
    gateway = fake_gateway(drafts_json("Magnesium", "Melatonin", "L-Theanine"))
    recs = _recommender(settings, gateway, pubmed).recommend(_request())

    assert [r.name for r in recs] == ["Magnesium Complex", "Melatonin Complex", "L-Theanine Complex"]
    assert _ids(recs[0]) == ["101", "102", "103"]
    assert _ids(recs[1]) == ["201", "202", "203"]
    assert _ids(recs[2]) == ["301", "302", "303"]
    for rec in recs:
        assert rec.data_source == "pubmed"
        assert rec.evidence_level == "A"
        for paper in rec.scientific_papers:
            assert paper.verified is True
            assert paper.journal == "Journal of Sleep Research"
            assert paper.year == 2019
            assert paper.authors == "Abbasi et al."
            assert paper.highlight_sentence == (
                f"Supplementation in study {paper.identifier} improved outcomes versus placebo."
            )


def test_five_candidates_yield_three_verified(settings, fake_gateway, fake_pubmed, drafts_json):
    pubmed = fake_pubmed({
        "Magnesium Glycinate": ["11", "12", "13", "14", "15"],
        "Melatonin": ["21"],
        "L-Theanine": ["31"],
    })
    gateway = fake_gateway(drafts_json("Magnesium Glycinate", "Melatonin", "L-Theanine"))
    recs = _recommender(settings, gateway, pubmed).recommend(_request())

    papers = recs[0].scientific_papers
    assert len(papers) == 3
    assert {p.identifier for p in papers} <= {"11", "12", "13", "14", "15"}
    assert all(p.verified for p in papers)
    assert recs[1].evidence_level == "B"


def test_draft_fields_carried_through(settings, fake_gateway, fake_pubmed, drafts_json):
    recs = _recommender(
        settings, fake_gateway(drafts_json("Magnesium", "Melatonin", "L-Theanine")),
        fake_pubmed(SLEEP_POOLS),
    ).recommend(_request())
    assert recs[0].price == "$24.99"
    assert recs[0].social_sentiment == 88
    assert recs[0].warnings == ["Consult your doctor"]


def test_search_uses_primary_ingredient_and_goal(settings, fake_gateway, fake_pubmed, drafts_json):
    pubmed = fake_pubmed(SLEEP_POOLS)
    _recommender(
        settings, fake_gateway(drafts_json("Magnesium", "Melatonin", "L-Theanine")), pubmed
    ).recommend(_request())
    first_term = pubmed.search_calls[0][1]
    assert first_term.startswith("Magnesium AND (improve sleep)")
    assert "400mg" not in first_term


# ── Deduplication ────────────────────────────────────────────────────


def test_citations_not_repeated_across_drafts(settings, fake_gateway, fake_pubmed, drafts_json):
    shared = [str(i) for i in range(1, 8)]
    pubmed = fake_pubmed({"Zinc": shared, "Iron": shared, "Selenium": shared})
    recs = _recommender(
        settings, fake_gateway(drafts_json("Zinc", "Iron", "Selenium")), pubmed
    ).recommend(_request("immunity"))

    assert _ids(recs[0]) == ["1", "2", "3"]
    assert _ids(recs[1]) == ["4", "5", "6"]
    assert _ids(recs[2]) == ["7"]
    seen = [pid for rec in recs for pid in _ids(rec)]
    assert len(seen) == len(set(seen))


def test_exhausted_pool_reuses_full_pool(settings, fake_gateway, fake_pubmed, drafts_json):
    shared = [str(i) for i in range(1, 7)]
    pubmed = fake_pubmed({"Zinc": shared, "Iron": shared, "Selenium": shared})
    recs = _recommender(
        settings, fake_gateway(drafts_json("Zinc", "Iron", "Selenium")), pubmed
    ).recommend(_request("immunity"))

    assert set(_ids(recs[0])).isdisjoint(_ids(recs[1]))
    assert _ids(recs[2]) == ["1", "2", "3"]
    assert recs[2].data_source == "pubmed"


# ── Degradation ──────────────────────────────────────────────────────


def test_no_results_keeps_placeholders_ungraded(settings, fake_gateway, fake_pubmed, drafts_json):
    pubmed = fake_pubmed({"Magnesium": ["101", "102", "103"]})
    recs = _recommender(
        settings, fake_gateway(drafts_json("Magnesium", "Unobtainium", "Vibranium")), pubmed
    ).recommend(_request())

    assert recs[0].data_source == "pubmed"
    for rec in recs[1:]:
        assert rec.data_source == "ai-generated"
        assert rec.evidence_level == "D"
        assert _ids(rec) == ["000"]
        assert rec.scientific_papers[0].verified is False


def test_no_results_tries_plain_query(settings, fake_gateway, fake_pubmed, drafts_json):
    pubmed = fake_pubmed({})
    _recommender(
        settings, fake_gateway(drafts_json("Magnesium", "Melatonin", "L-Theanine")), pubmed
    ).recommend(_request())
    terms = [t for _, t in pubmed.search_calls]
    assert "Magnesium improve sleep" in terms
    assert pubmed.fetch_calls == []


def test_search_failure_degrades_each_draft(settings, fake_gateway, fake_pubmed, drafts_json):
    recs = _recommender(
        settings, fake_gateway(drafts_json("Magnesium", "Melatonin", "L-Theanine")),
        fake_pubmed(SLEEP_POOLS, fail=True),
    ).recommend(_request())

    assert len(recs) == 3
    assert all(r.data_source == "ai-generated" for r in recs)
    assert all(r.evidence_level == "D" for r in recs)


def test_filter_failure_uses_first_candidates(settings, fake_gateway, fake_pubmed, drafts_json):
    gateway = fake_gateway(
        drafts_json("Magnesium", "Melatonin", "L-Theanine"),
        filter_error=RuntimeError("model overloaded"),
    )
    recs = _recommender(settings, gateway, fake_pubmed(SLEEP_POOLS)).recommend(_request())

    assert _ids(recs[0]) == ["101", "102", "103"]
    paper = recs[0].scientific_papers[0]
    abstract = (
        "Background sentence for study 101. "
        "Supplementation in study 101 improved outcomes versus placebo."
    )
    assert paper.summary == abstract[:150]
    assert paper.highlight_sentence is None
    assert recs[0].data_source == "pubmed"


# ── Fatal Errors ─────────────────────────────────────────────────────


@pytest.mark.parametrize("query", ["", "   "])
def test_empty_query_rejected(settings, fake_gateway, fake_pubmed, drafts_json, query):
    gateway = fake_gateway(drafts_json("A", "B", "C"))
    with pytest.raises(InvalidRequest):
        _recommender(settings, gateway, fake_pubmed()).recommend(_request(query))
    assert gateway.calls == []


def test_draft_failure_is_fatal(settings, fake_gateway, fake_pubmed):
    pubmed = fake_pubmed(SLEEP_POOLS)
    with pytest.raises(DraftGenerationFailure):
        _recommender(settings, fake_gateway("not json"), pubmed).recommend(_request())
    assert pubmed.search_calls == []


def test_expired_deadline_aborts_enrichment(settings, fake_gateway, fake_pubmed, drafts_json):
    pubmed = fake_pubmed(SLEEP_POOLS)
    rec = _recommender(settings, fake_gateway(drafts_json("A", "B", "C")), pubmed)
    draft = RecommendationDraft(name="Magnesium Complex", ingredients=["Magnesium"])

    with pytest.raises(RequestTimeout):
        rec.enrich(draft, "improve sleep", DedupLedger(), deadline=time.monotonic() - 1)
    assert pubmed.search_calls == []


def test_request_timeout_returns_no_partial_results(settings, fake_gateway, fake_pubmed, drafts_json):
    pubmed = fake_pubmed(SLEEP_POOLS)
    rec = _recommender(settings, fake_gateway(drafts_json("Magnesium", "Melatonin", "L-Theanine")), pubmed)

    # Each clock read jumps 100s, past the 60s deadline.
    with patch("nutrimatch.pipeline.recommender.time.monotonic", side_effect=itertools.count(0, 100)):
        with pytest.raises(RequestTimeout):
            rec.recommend(_request())
    assert pubmed.search_calls == []


# ── Pacing ───────────────────────────────────────────────────────────


def test_searches_spaced_between_drafts(tmp_path, fake_gateway, fake_pubmed, drafts_json):
    settings = Settings(
        pubmed=PubMedSettings(request_interval=0.35),
        cache={"enabled": False, "path": tmp_path / "cache.db"},
    )
    pubmed = fake_pubmed(SLEEP_POOLS)
    _recommender(
        settings, fake_gateway(drafts_json("Magnesium", "Melatonin", "L-Theanine")), pubmed
    ).recommend(_request())

    stamps = [t for t, _ in pubmed.search_calls]
    assert len(stamps) == 3
    assert all(b - a >= 0.34 for a, b in zip(stamps, stamps[1:]))


# ── Cache ────────────────────────────────────────────────────────────


def test_second_request_served_from_cache(settings, tmp_path, fake_gateway, fake_pubmed, drafts_json):
    cache = CitationCache(tmp_path / "cache.db")
    pubmed = fake_pubmed(SLEEP_POOLS)
    rec = _recommender(
        settings, fake_gateway(drafts_json("Magnesium", "Melatonin", "L-Theanine")), pubmed, cache
    )

    first = rec.recommend(_request())
    calls_after_first = len(pubmed.search_calls)
    second = rec.recommend(_request("Improve  Sleep"))

    assert len(pubmed.search_calls) == calls_after_first
    assert [_ids(r) for r in second] == [_ids(r) for r in first]
    assert all(r.data_source == "pubmed" for r in second)
    assert second[0].evidence_level == "A"
    cache.close()


def test_cached_overlap_refetched(settings, tmp_path, fake_gateway, fake_pubmed, drafts_json):
    cache = CitationCache(tmp_path / "cache.db")
    shared = [str(i) for i in range(1, 8)]
    pubmed = fake_pubmed({"Zinc": shared, "Iron": shared, "Selenium": shared})
    rec = _recommender(settings, fake_gateway(drafts_json("Zinc", "Iron", "Selenium")), pubmed, cache)

    # "Iron immunity" cached with citations draft 1 will also claim.
    first = rec.recommend(_request("immunity"))
    cache.put("Iron immunity", first[0].scientific_papers)
    second = rec.recommend(_request("immunity"))

    assert set(_ids(second[0])).isdisjoint(_ids(second[1]))
    cache.close()


def test_fallback_selection_not_cached(settings, tmp_path, fake_gateway, fake_pubmed, drafts_json):
    cache = CitationCache(tmp_path / "cache.db")
    gateway = fake_gateway(
        drafts_json("Magnesium", "Melatonin", "L-Theanine"),
        filter_error=RuntimeError("model overloaded"),
    )
    recs = _recommender(settings, gateway, fake_pubmed(SLEEP_POOLS), cache).recommend(_request())

    assert recs[0].data_source == "pubmed"
    assert cache.get("Magnesium improve sleep") is None
    cache.close()


def test_concurrent_enrich_single_lookup(settings, tmp_path, fake_gateway, fake_pubmed, drafts_json):
    cache = CitationCache(tmp_path / "cache.db")
    pubmed = fake_pubmed(SLEEP_POOLS)
    slow_search = pubmed.search

    def search(term, max_results=None):
        time.sleep(0.1)
        return slow_search(term, max_results)

    pubmed.search = search
    gateway = fake_gateway(drafts_json("Magnesium", "Melatonin", "L-Theanine"))
    rec = _recommender(settings, gateway, pubmed, cache)
    draft = RecommendationDraft(name="Magnesium Complex", ingredients=["Magnesium 400mg"])

    results = []
    threads = [
        threading.Thread(
            target=lambda: results.append(rec.enrich(draft, "improve sleep", DedupLedger()))
        )
        for _ in range(4)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(pubmed.fetch_calls) == 1
    assert len([c for c in gateway.calls if "research librarian" in c]) == 1
    assert len(results) == 4
    assert all(_ids(r) == ["101", "102", "103"] for r in results)
    cache.close()
