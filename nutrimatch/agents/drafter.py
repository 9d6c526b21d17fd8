"""Draft agent: three supplement recommendations from a health goal."""

import logging

from pydantic import BaseModel

from nutrimatch.agents.gateway import LLMGateway, decode_json_payload
from nutrimatch.agents.models import Profile, RecommendationDraft
from nutrimatch.core.errors import DraftGenerationFailure, GatewayError

logger = logging.getLogger(__name__)

DRAFT_COUNT = 3


# ── Structured Output Model ──────────────────────────────────────────


class DraftBatch(BaseModel):
    """Schema used for the gateway's structured output."""

    supplements: list[RecommendationDraft]


# ── Prompt Builder ───────────────────────────────────────────────────

SYSTEM_PROMPT = f"""You are a supplement recommendation AI that analyzes health goals and recommends evidence-based supplements.

For each health goal, provide exactly {DRAFT_COUNT} supplement recommendations. Each recommendation should include:
- name: Product name
- description: Brief product description (max 100 chars)
- socialSentiment: Score from 60-95 representing user satisfaction percentage
- evidenceLevel: "A" (strong clinical evidence), "B" (moderate evidence), "C" (limited evidence), or "D" (insufficient)
- keyBenefits: Array of 3-4 specific benefits with percentages/timeframes
- warnings: Array of 2-3 important safety warnings or contraindications
- ingredients: Array of 3-5 key active ingredients as {{"name": ..., "dosage": ...}}, primary active ingredient first
- price: Price range like "$24.99" or "$28-32"
- personalizedReason: 1-2 sentences on why this suits the user
- recommendedDose: Daily dose and timing
- scientificPapers: Array of up to 3 supporting studies with title, authors, journal, year, pmid, summary, studyType

The {DRAFT_COUNT} recommendations MUST have different primary active ingredients.

Return ONLY valid JSON of the form {{"supplements": [...]}} with no markdown formatting or explanation."""


def _format_list(values: list[str]) -> str:
    return ", ".join(values) if values else "None"


def build_profile_context(profile: Profile | None) -> str:
    """Profile lines for the prompt, or an empty string when there is no profile."""
    if profile is None:
        return ""
    return f"""

User Profile Context:
- Age: {profile.age or "Not specified"}
- Sex: {profile.sex or "Not specified"}
- Activity Level: {profile.activity_level or "Not specified"}
- Dietary Preferences: {_format_list(profile.dietary_preferences)}
- Dietary Restrictions: {_format_list(profile.dietary_restrictions)}
- Allergies: {_format_list(profile.allergies)}
- Genetic Markers: {_format_list(profile.genetic_markers)}
- Current Medications: {_format_list(profile.medications)}

Exclude anything that conflicts with the restrictions, allergies or medications above,
and adjust dosages for the user's age, sex and genetic markers."""


def build_draft_prompt(
    query: str,
    answers: dict[str, str] | None = None,
    profile: Profile | None = None,
) -> str:
    """Build the user prompt from the goal, questionnaire answers and profile."""
    answer_block = ""
    if answers:
        lines = "\n".join(f"- {q}: {a}" for q, a in answers.items())
        answer_block = f"\n\nQuestionnaire Answers:\n{lines}"

    return f"""Generate {DRAFT_COUNT} supplement recommendations for this health goal: "{query}"

Focus on supplements that have real scientific backing and user reviews. Be specific with dosages, timeframes, and warnings. Make sure the recommendations are relevant to the specific health goal.{answer_block}{build_profile_context(profile)}"""


# ── Drafting ─────────────────────────────────────────────────────────


class Drafter:
    def __init__(self, gateway: LLMGateway):
        self.gateway = gateway

    def draft(
        self,
        query: str,
        answers: dict[str, str] | None = None,
        profile: Profile | None = None,
    ) -> list[RecommendationDraft]:
        """Ask the model for exactly three drafts. Any failure here is fatal."""
        logger.info("Generating supplement drafts for query: %s", query)
        try:
            raw = self.gateway.complete(
                SYSTEM_PROMPT,
                build_draft_prompt(query, answers, profile),
                schema=DraftBatch.model_json_schema(),
            )
        except GatewayError as exc:
            raise DraftGenerationFailure(str(exc)) from exc

        batch = decode_json_payload(raw, DraftBatch, DraftGenerationFailure)
        drafts = batch.supplements

        if len(drafts) < DRAFT_COUNT:
            raise DraftGenerationFailure(
                f"Expected {DRAFT_COUNT} recommendations, got {len(drafts)}"
            )
        if len(drafts) > DRAFT_COUNT:
            logger.info("Model returned %d drafts — keeping first %d", len(drafts), DRAFT_COUNT)
            drafts = drafts[:DRAFT_COUNT]

        # Citations written by the model are placeholders, never verified.
        for d in drafts:
            for paper in d.scientific_papers:
                paper.verified = False
            d.data_source = "ai-generated"

        primaries = [d.primary_ingredient().lower() for d in drafts]
        if len(set(primaries)) < len(primaries):
            logger.warning("Drafts share a primary ingredient: %s", primaries)

        return drafts
