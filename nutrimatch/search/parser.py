"""PubMed EFetch XML parser: one record block at a time, forgiving of gaps."""

import logging
import re
from datetime import date
from xml.etree import ElementTree
from xml.etree.ElementTree import Element

from nutrimatch.search.models import CandidateCitation, StudyType

logger = logging.getLogger(__name__)

_RECORD_RE = re.compile(r"<PubmedArticle\b[^>]*>.*?</PubmedArticle>", re.DOTALL)
_BOOK_RE = re.compile(r"<PubmedBookArticle\b")
_SPACE_RE = re.compile(r"\s+")
_YEAR_RE = re.compile(r"\b(\d{4})\b")

_UNKNOWN_JOURNAL = "Unknown Journal"
_UNKNOWN_AUTHOR = "Unknown"


# ── Public API ───────────────────────────────────────────────────────


def parse_pubmed_xml(raw_payload: str) -> list[CandidateCitation]:
    """Convert an EFetch XML payload into candidate citations.

    The payload is split into ``<PubmedArticle>`` blocks first and each block
    is parsed on its own, so a field missing from one record can never shift
    metadata onto another. Blocks that fail to parse, or that lack a PMID or a
    title, are skipped. A payload with no usable block yields ``[]``.
    """
    if not raw_payload:
        return []

    books = len(_BOOK_RE.findall(raw_payload))
    if books:
        logger.debug("Skipping %d PubmedBookArticle record(s)", books)

    blocks = _RECORD_RE.findall(raw_payload)
    if not blocks:
        logger.warning("EFetch payload contained no PubmedArticle records")
        return []

    citations: list[CandidateCitation] = []
    for block in blocks:
        try:
            article = ElementTree.fromstring(block)
        except ElementTree.ParseError as exc:
            logger.warning("Skipping malformed PubmedArticle block: %s", exc)
            continue
        citation = _parse_article(article)
        if citation:
            citations.append(citation)

    logger.debug("Parsed %d/%d PubMed records", len(citations), len(blocks))
    return citations


# ── Record Parser ────────────────────────────────────────────────────


def _parse_article(article: Element) -> CandidateCitation | None:
    pmid = _text(article.find("MedlineCitation/PMID"))
    title = _text(article.find(".//Article/ArticleTitle"))
    if not pmid or not title:
        return None

    abstract = " ".join(
        filter(None, (_text(el) for el in article.iterfind(".//Abstract/AbstractText")))
    )
    publication_types = [
        _text(el) for el in article.iterfind(".//PublicationTypeList/PublicationType")
    ]

    return CandidateCitation(
        identifier=pmid,
        title=title,
        journal=_text(article.find(".//Article/Journal/Title")) or _UNKNOWN_JOURNAL,
        year=_parse_year(article),
        authors=_format_authors(article),
        abstract=abstract,
        publication_types=[p for p in publication_types if p],
        study_type=classify_study_type(publication_types, title, abstract),
    )


def _parse_year(article: Element) -> int:
    """PubDate/Year, else the first year inside MedlineDate, else this year."""
    pub_date = article.find(".//Article/Journal/JournalIssue/PubDate")
    if pub_date is not None:
        year = _text(pub_date.find("Year"))
        if year.isdigit():
            return int(year)
        match = _YEAR_RE.search(_text(pub_date.find("MedlineDate")))
        if match:
            return int(match.group(1))
    return date.today().year


def _format_authors(article: Element) -> str:
    """'Surname et al.' for several authors, the bare surname for one."""
    surnames = [
        _text(el) for el in article.iterfind(".//AuthorList/Author/LastName")
    ]
    surnames = [s for s in surnames if s]
    if not surnames:
        return _UNKNOWN_AUTHOR
    if len(surnames) > 1:
        return f"{surnames[0]} et al."
    return surnames[0]


def _text(element: Element | None) -> str:
    """Full text of an element with nested markup (<i>, <sup>, ...) removed."""
    if element is None:
        return ""
    return _SPACE_RE.sub(" ", "".join(element.itertext())).strip()


# ── Study Type ───────────────────────────────────────────────────────

# Ordered strongest design first; first hit wins.
_PUBLICATION_TYPE_MAP: list[tuple[str, StudyType]] = [
    ("meta-analysis", "meta-analysis"),
    ("systematic review", "systematic-review"),
    ("randomized controlled trial", "rct"),
    ("case reports", "case-study"),
]

_KEYWORD_MAP: list[tuple[re.Pattern, StudyType]] = [
    (re.compile(r"\bmeta-?analys[ie]s\b"), "meta-analysis"),
    (re.compile(r"\bsystematic review\b"), "systematic-review"),
    (re.compile(r"\brandomi[sz]ed\b.*\btrial\b|\brcts?\b"), "rct"),
    (re.compile(r"\bcase (?:report|study|series)\b"), "case-study"),
]

# Abstracts cite other designs freely ("previous meta-analyses ..."), so a
# design word only counts there when the authors apply it to their own work.
_SELF_REFERENCE = r"\b(?:this|our|the present|we (?:conducted|performed|undertook|carried out) an?)\s+"

_ABSTRACT_KEYWORD_MAP: list[tuple[re.Pattern, StudyType]] = [
    (re.compile(_SELF_REFERENCE + r"(?:systematic review and )?meta-?analysis\b"), "meta-analysis"),
    (re.compile(_SELF_REFERENCE + r"systematic review\b"), "systematic-review"),
    (re.compile(_SELF_REFERENCE + r"(?:[\w-]+,?\s+){0,3}?randomi[sz]ed\b"), "rct"),
    (re.compile(_SELF_REFERENCE + r"case (?:report|study|series)\b"), "case-study"),
]


def classify_study_type(
    publication_types: list[str],
    title: str = "",
    abstract: str = "",
) -> StudyType:
    """Classify a record's design from its PubMed publication types, then its text.

    Any design keyword in the title counts. In the abstract only self-referring
    phrases count ("in this randomized trial", "we conducted a meta-analysis").
    """
    lowered_types = [p.lower() for p in publication_types]
    for needle, study_type in _PUBLICATION_TYPE_MAP:
        if any(needle == p for p in lowered_types):
            return study_type

    lowered_title = title.lower()
    for pattern, study_type in _KEYWORD_MAP:
        if pattern.search(lowered_title):
            return study_type

    lowered_abstract = abstract.lower()
    for pattern, study_type in _ABSTRACT_KEYWORD_MAP:
        if pattern.search(lowered_abstract):
            return study_type
    return "observational"
