"""Relevance filter: the model picks and summarizes the best PubMed records."""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from nutrimatch.agents.gateway import LLMGateway, decode_json_payload
from nutrimatch.core.errors import FilterFailure, GatewayError
from nutrimatch.search.models import CandidateCitation, SelectedCitation

logger = logging.getLogger(__name__)

MAX_SELECTED = 3
ABSTRACT_PROMPT_CHARS = 600
FALLBACK_SUMMARY_CHARS = 150


# ── Structured Output Model ──────────────────────────────────────────


class Selection(BaseModel):
    """One pick from the candidate list."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    pmid: str
    summary: str = Field(description="1-2 plain-language sentences, facts from the abstract only")
    highlight_sentence: Optional[str] = Field(
        default=None, description="Verbatim sentence from the abstract naming the ingredient"
    )


class SelectionOutput(BaseModel):
    selections: list[Selection]


# ── Prompt Builder ───────────────────────────────────────────────────

SYSTEM_PROMPT = (
    "You are a research librarian selecting scientific papers that support a "
    "supplement recommendation. You only choose from the papers you are given "
    "and never invent titles, authors, journals, years or PMIDs. "
    "Respond ONLY with the requested JSON."
)


def build_filter_prompt(candidates: list[CandidateCitation], ingredient: str, goal: str) -> str:
    """Build the selection prompt listing every candidate."""
    blocks = []
    for i, c in enumerate(candidates, 1):
        abstract = c.abstract[:ABSTRACT_PROMPT_CHARS] or "[No abstract available]"
        blocks.append(
            f"[{i}] PMID: {c.identifier}\n"
            f"Title: {c.title}\n"
            f"Journal: {c.journal} ({c.year})\n"
            f"Abstract: {abstract}"
        )
    papers = "\n\n".join(blocks)

    return f"""Select exactly {MAX_SELECTED} papers that best support taking "{ingredient}" for "{goal}".

Rank by:
1. Direct relevance of the specific ingredient AND goal pairing.
2. Clarity of the abstract's finding.
3. Recency (prefer the last ~15 years, but this is not a hard filter).

Observational studies, reviews and other non-trial designs are eligible if relevant.

For each selection provide:
- pmid: copied exactly from the list below
- summary: 1-2 plain-language sentences stating the key finding, using only facts in the abstract
- highlightSentence: ONE sentence copied word-for-word from that paper's abstract that names
  {ingredient} (or a clear synonym) and states a result. Do not quote sentences that only
  describe background or methods.

PAPERS:
{papers}

Respond with JSON only: {{"selections": [{{"pmid": "...", "summary": "...", "highlightSentence": "..."}}]}}"""


# ── Filter ───────────────────────────────────────────────────────────


class RelevanceFilter:
    def __init__(self, gateway: LLMGateway):
        self.gateway = gateway

    def filter(
        self,
        candidates: list[CandidateCitation],
        ingredient: str,
        goal: str,
    ) -> list[SelectedCitation]:
        """Pick up to three candidates. Falls back to the first three on any failure."""
        selected, _ = self.select(candidates, ingredient, goal)
        return selected

    def select(
        self,
        candidates: list[CandidateCitation],
        ingredient: str,
        goal: str,
    ) -> tuple[list[SelectedCitation], bool]:
        """Like ``filter``, also returning whether the fallback was used."""
        if not candidates:
            return [], False

        try:
            selected = self._select(candidates, ingredient, goal)
        except FilterFailure as exc:
            logger.warning("Relevance filter failed for '%s': %s — using first %d candidates",
                           ingredient, exc, MAX_SELECTED)
            return fallback_selection(candidates), True

        logger.info("Relevance filter kept %d/%d papers for '%s'",
                    len(selected), len(candidates), ingredient)
        return selected, False

    def _select(
        self,
        candidates: list[CandidateCitation],
        ingredient: str,
        goal: str,
    ) -> list[SelectedCitation]:
        try:
            raw = self.gateway.complete(
                SYSTEM_PROMPT,
                build_filter_prompt(candidates, ingredient, goal),
                temperature=self.gateway.settings.filter_temperature,
                schema=SelectionOutput.model_json_schema(),
            )
        except GatewayError as exc:
            raise FilterFailure(str(exc)) from exc

        output = decode_json_payload(raw, SelectionOutput, FilterFailure)
        selected = validate_selections(output.selections, candidates)
        if not selected:
            raise FilterFailure("No selection matched a candidate PMID")
        return selected


# ── Validation & Fallback ────────────────────────────────────────────


def verify_highlight(sentence: Optional[str], abstract: str) -> Optional[str]:
    """Return the quote only if it appears verbatim in the abstract."""
    if not sentence or not abstract:
        return None
    quote = sentence.strip().strip("\"'“”").strip()
    if quote.endswith("..."):
        quote = quote[:-3].rstrip()
    if quote and quote in abstract:
        return quote
    return None


def validate_selections(
    selections: list[Selection],
    candidates: list[CandidateCitation],
) -> list[SelectedCitation]:
    """Keep picks whose PMID is in the pool, with metadata copied from the pool."""
    pool = {c.identifier: c for c in candidates}
    result: list[SelectedCitation] = []
    seen: set[str] = set()

    for sel in selections:
        pmid = sel.pmid.strip()
        candidate = pool.get(pmid)
        if candidate is None:
            logger.warning("Dropping selection with unknown PMID %s", pmid)
            continue
        if pmid in seen:
            continue
        seen.add(pmid)

        highlight = verify_highlight(sel.highlight_sentence, candidate.abstract)
        if sel.highlight_sentence and highlight is None:
            logger.info("PMID %s: highlight sentence not found verbatim in abstract — dropped", pmid)

        summary = sel.summary.strip() or candidate.abstract[:FALLBACK_SUMMARY_CHARS]
        result.append(SelectedCitation.from_candidate(candidate, summary, highlight))
        if len(result) == MAX_SELECTED:
            break

    return result


def fallback_selection(candidates: list[CandidateCitation]) -> list[SelectedCitation]:
    """First three candidates in input order, summarized by their abstract's opening."""
    return [
        SelectedCitation.from_candidate(c, c.abstract[:FALLBACK_SUMMARY_CHARS])
        for c in candidates[:MAX_SELECTED]
    ]
