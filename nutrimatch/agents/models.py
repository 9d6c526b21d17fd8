"""Request, draft and advice models shared by the LLM agents and the API."""

import logging
import re
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from nutrimatch.search.models import SelectedCitation

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# ── Inbound ──────────────────────────────────────────────────────────


class Profile(_CamelModel):
    """Optional user attributes that personalize recommendations."""

    age: Optional[int] = Field(default=None, ge=0, le=130)
    sex: Optional[str] = None
    activity_level: Optional[str] = None
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None
    dietary_preferences: list[str] = Field(default_factory=list)
    dietary_restrictions: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    genetic_markers: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)


class RecommendationRequest(_CamelModel):
    """A free-text health goal plus optional questionnaire answers and profile."""

    query: str = ""
    answers: dict[str, str] = Field(default_factory=dict)
    profile: Optional[Profile] = None


# ── Drafts ───────────────────────────────────────────────────────────


class Ingredient(_CamelModel):
    name: str
    dosage: Optional[str] = None


_DOSE_RE = re.compile(
    r"[\s,(\-–:]*\d[\d.,]*\s*(?:mg|mcg|µg|g|iu|ui|billion|cfu|%|ml)\b.*$",
    re.IGNORECASE,
)


class RecommendationDraft(_CamelModel):
    """A supplement entry produced by the LLM, before citation enrichment."""

    name: str
    description: str = ""
    social_sentiment: int = 0
    evidence_level: Literal["A", "B", "C", "D"] = "D"
    key_benefits: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    ingredients: list[Union[Ingredient, str]] = Field(default_factory=list)
    price: Optional[str] = None
    personalized_reason: Optional[str] = None
    recommended_dose: Optional[str] = None
    scientific_papers: list[SelectedCitation] = Field(default_factory=list)
    data_source: str = "ai-generated"

    @field_validator("social_sentiment", mode="before")
    @classmethod
    def clamp_sentiment(cls, v) -> int:
        try:
            score = round(float(v))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, score))

    @field_validator("scientific_papers", mode="before")
    @classmethod
    def drop_malformed_papers(cls, v):
        """Keep the citations that validate; a bad placeholder never sinks the draft."""
        if v is None:
            return []
        if not isinstance(v, list):
            return v
        kept = []
        for i, paper in enumerate(v):
            try:
                kept.append(SelectedCitation.model_validate(paper))
            except ValidationError as exc:
                logger.warning("Dropping malformed citation #%d: %d validation error(s)",
                               i, exc.error_count())
        return kept

    def primary_ingredient(self) -> str:
        """First listed ingredient with any dosage stripped, else the product name."""
        if self.ingredients:
            first = self.ingredients[0]
            name = first.name if isinstance(first, Ingredient) else first
            name = _DOSE_RE.sub("", name).strip(" ,-–:(")
            if name:
                return name
        return self.name


class EnrichedRecommendation(RecommendationDraft):
    """A draft with real citations attached and a recomputed evidence level."""


# ── Coaching ─────────────────────────────────────────────────────────


class YouTubeVideo(_CamelModel):
    title: str
    channel: str = ""
    url: str = ""
    relevant_timestamp: Optional[str] = None
    key_takeaway: str = ""


class CoachingAdvice(_CamelModel):
    """Sports-coaching advice for a free-text training question."""

    title: str
    main_advice: str
    personalized_reason: str = ""
    technique_tips: list[str] = Field(default_factory=list)
    common_mistakes: list[str] = Field(default_factory=list)
    progression_steps: list[str] = Field(default_factory=list)
    youtube_videos: list[YouTubeVideo] = Field(default_factory=list)
    equipment_needed: list[str] = Field(default_factory=list)


class ProgressQuestions(_CamelModel):
    questions: list[str]
