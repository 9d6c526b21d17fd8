"""Shared data models for literature search and citation selection."""

from datetime import date
from typing import Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

StudyType = Literal[
    "rct",
    "meta-analysis",
    "systematic-review",
    "observational",
    "case-study",
]

_STUDY_TYPE_ALIASES = {
    "randomized-controlled-trial": "rct",
    "randomised-controlled-trial": "rct",
    "meta-analyses": "meta-analysis",
    "metaanalysis": "meta-analysis",
    "systematic-reviews": "systematic-review",
    "case-report": "case-study",
    "cohort": "observational",
}


class CandidateCitation(BaseModel):
    """One PubMed record fetched for a search term, before relevance filtering."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    identifier: str = Field(alias="pmid")
    title: str = ""
    journal: str = "Unknown Journal"
    year: int
    authors: str = "Unknown"
    abstract: str = ""
    publication_types: list[str] = Field(default_factory=list)
    study_type: StudyType = "observational"


class SelectedCitation(BaseModel):
    """A citation attached to a recommendation."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    identifier: str = Field(default="", alias="pmid")
    title: str = ""
    authors: str = "Unknown"
    journal: str = "Unknown Journal"
    year: int = Field(default_factory=lambda: date.today().year)
    summary: str = ""
    highlight_sentence: Optional[str] = None
    study_type: Optional[StudyType] = None
    verified: bool = False

    @field_validator("identifier", mode="before")
    @classmethod
    def identifier_as_text(cls, v):
        # Models often emit PMIDs as bare integers.
        if v is None:
            return ""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(int(v))
        return v

    @field_validator("study_type", mode="before")
    @classmethod
    def normalize_study_type(cls, v):
        if v is None:
            return None
        key = str(v).strip().lower().replace("_", "-").replace(" ", "-")
        key = _STUDY_TYPE_ALIASES.get(key, key)
        return key if key in get_args(StudyType) else None

    @classmethod
    def from_candidate(
        cls,
        candidate: CandidateCitation,
        summary: str,
        highlight_sentence: Optional[str] = None,
    ) -> "SelectedCitation":
        """Copy metadata from a real PubMed record; only the summary and quote are new."""
        return cls(
            identifier=candidate.identifier,
            title=candidate.title,
            authors=candidate.authors,
            journal=candidate.journal,
            year=candidate.year,
            summary=summary,
            highlight_sentence=highlight_sentence,
            study_type=candidate.study_type,
            verified=True,
        )
