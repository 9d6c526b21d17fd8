"""Shared fakes: PubMed XML builder, a scripted PubMed client, and a fake gateway."""

import json
import re
import time

import pytest

from nutrimatch.core.errors import SearchUnavailable
from nutrimatch.core.settings import LLMSettings, PubMedSettings, Settings


# ── PubMed XML ───────────────────────────────────────────────────────


def build_article(
    pmid: str,
    title: str = "Magnesium supplementation and sleep quality",
    abstract: str = (
        "Insomnia is common in older adults. "
        "Magnesium glycinate improved sleep efficiency by 12% compared with placebo."
    ),
    year: str | None = "2019",
    journal: str = "Journal of Sleep Research",
    authors: tuple[str, ...] = ("Abbasi", "Kimiagar"),
    pub_types: tuple[str, ...] = ("Randomized Controlled Trial",),
) -> str:
    year_xml = f"<Year>{year}</Year>" if year else ""
    author_xml = "".join(
        f"<Author><LastName>{a}</LastName><ForeName>A</ForeName></Author>" for a in authors
    )
    types_xml = "".join(f"<PublicationType>{t}</PublicationType>" for t in pub_types)
    abstract_xml = f"<Abstract><AbstractText>{abstract}</AbstractText></Abstract>" if abstract else ""
    return f"""<PubmedArticle>
  <MedlineCitation Status="MEDLINE" Owner="NLM">
    <PMID Version="1">{pmid}</PMID>
    <Article PubModel="Print">
      <Journal>
        <JournalIssue CitedMedium="Internet">
          <PubDate>{year_xml}<Month>Jan</Month></PubDate>
        </JournalIssue>
        <Title>{journal}</Title>
      </Journal>
      <ArticleTitle>{title}</ArticleTitle>
      {abstract_xml}
      <AuthorList CompleteYN="Y">{author_xml}</AuthorList>
      <PublicationTypeList>{types_xml}</PublicationTypeList>
    </Article>
  </MedlineCitation>
</PubmedArticle>"""


def build_payload(*articles: str) -> str:
    return (
        '<?xml version="1.0" ?>\n'
        "<!DOCTYPE PubmedArticleSet PUBLIC \"-//NLM//DTD PubMedArticle, 1st January 2025//EN\" "
        "\"https://dtd.nlm.nih.gov/ncbi/pubmed/out/pubmed_250101.dtd\">\n"
        "<PubmedArticleSet>\n" + "\n".join(articles) + "\n</PubmedArticleSet>"
    )


# ── Fake PubMed Client ───────────────────────────────────────────────


class FakePubMed:
    """Returns scripted PMIDs per ingredient and builds EFetch XML for them."""

    def __init__(self, pools: dict[str, list[str]] | None = None, fail: bool = False):
        self.pools = pools or {}
        self.fail = fail
        self.search_calls: list[tuple[float, str]] = []
        self.fetch_calls: list[list[str]] = []

    def search(self, term: str, max_results: int | None = None) -> list[str]:
        self.search_calls.append((time.monotonic(), term))
        if self.fail:
            raise SearchUnavailable("PubMed esearch failed: HTTP 503")
        for ingredient, pmids in self.pools.items():
            if term.lower().startswith(ingredient.lower()):
                return pmids[: max_results or len(pmids)]
        return []

    def fetch(self, pmids: list[str]) -> str:
        self.fetch_calls.append(list(pmids))
        return build_payload(
            *(
                build_article(
                    p,
                    title=f"Study {p} of supplementation",
                    abstract=(
                        f"Background sentence for study {p}. "
                        f"Supplementation in study {p} improved outcomes versus placebo."
                    ),
                )
                for p in pmids
            )
        )


# ── Fake Gateway ─────────────────────────────────────────────────────

_PMID_RE = re.compile(r"PMID: (\S+)")
_ABSTRACT_RE = re.compile(r"Abstract: (.+)")


def draft_json(*ingredients: str, papers: list[dict] | None = None) -> str:
    papers = papers if papers is not None else [
        {"title": "Placeholder study", "authors": "Doe et al.", "journal": "AI Journal",
         "year": 2021, "pmid": "000", "summary": "Generated.", "studyType": "rct"}
    ]
    return json.dumps({
        "supplements": [
            {
                "name": f"{ing} Complex",
                "description": f"{ing} formula",
                "socialSentiment": 88,
                "evidenceLevel": "A",
                "keyBenefits": ["Better sleep within 2 weeks"],
                "warnings": ["Consult your doctor"],
                "ingredients": [{"name": f"{ing} 400mg", "dosage": "400mg"}],
                "price": "$24.99",
                "scientificPapers": papers,
            }
            for ing in ingredients
        ]
    })


class FakeGateway:
    """Answers draft prompts with scripted JSON and picks the first three PMIDs when filtering."""

    def __init__(self, drafts: str, filter_error: Exception | None = None):
        self.settings = LLMSettings()
        self.drafts = drafts
        self.filter_error = filter_error
        self.calls: list[str] = []

    @property
    def model(self) -> str:
        return self.settings.model

    def complete(self, system, user, temperature=None, schema=None) -> str:
        self.calls.append(system)
        if "supplement recommendation AI" in system:
            return self.drafts
        if self.filter_error is not None:
            raise self.filter_error
        pmids = _PMID_RE.findall(user)
        abstracts = _ABSTRACT_RE.findall(user)
        selections = [
            {
                "pmid": pmid,
                "summary": f"Study {pmid} found a benefit.",
                "highlightSentence": abstract.split(". ")[1] if ". " in abstract else None,
            }
            for pmid, abstract in list(zip(pmids, abstracts))[:3]
        ]
        return "```json\n" + json.dumps({"selections": selections}) + "\n```"


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        pubmed=PubMedSettings(request_interval=0.0),
        cache={"enabled": False, "path": tmp_path / "cache.db"},
    )


@pytest.fixture()
def article():
    return build_article


@pytest.fixture()
def payload():
    return build_payload


@pytest.fixture()
def fake_pubmed():
    return FakePubMed


@pytest.fixture()
def fake_gateway():
    return FakeGateway


@pytest.fixture()
def drafts_json():
    return draft_json
