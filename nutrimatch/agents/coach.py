"""Coaching advice and daily progress-journal questions."""

import logging

from nutrimatch.agents.gateway import LLMGateway, decode_json_payload
from nutrimatch.agents.models import CoachingAdvice, Profile, ProgressQuestions
from nutrimatch.core.errors import DraftGenerationFailure, GatewayError, InvalidRequest

logger = logging.getLogger(__name__)

MAX_QUESTIONS = 5

COACHING_SYSTEM_PROMPT = """You are an expert sports coach AI that provides personalized training advice based on YouTube video content and coaching best practices.

For each coaching question, provide advice in JSON format with these fields:
- title: Short title for the coaching advice
- mainAdvice: 3-4 sentence overview of the main coaching point
- personalizedReason: 2-3 sentences explaining why this approach suits the user's profile
- techniqueTips: Array of 4-5 specific technique tips
- commonMistakes: Array of 3-4 common mistakes to avoid
- progressionSteps: Array of 4-5 progressive steps to improve
- youtubeVideos: Array of 3 relevant videos, each with title, channel, url, relevantTimestamp (e.g. "2:15") and keyTakeaway
- equipmentNeeded: Array of equipment items needed (can be empty)

Reference real coaching concepts from popular YouTube channels. Make recommendations specific and actionable.

Return ONLY valid JSON with no markdown formatting."""


def _coaching_profile_context(profile: Profile | None) -> str:
    if profile is None:
        return ""
    height = f"{profile.height_cm:g}cm" if profile.height_cm else "Not specified"
    weight = f"{profile.weight_kg:g}kg" if profile.weight_kg else "Not specified"
    return f"""

User Profile Context:
- Age: {profile.age or "Not specified"}
- Sex: {profile.sex or "Not specified"}
- Activity Level: {profile.activity_level or "Not specified"}
- Height: {height}
- Weight: {weight}

Consider this profile when providing coaching advice. Adjust technique recommendations based on age, activity level, and physical attributes."""


def generate_coaching(
    gateway: LLMGateway,
    query: str,
    profile: Profile | None = None,
) -> CoachingAdvice:
    """One coaching answer for a training question."""
    if not query or not query.strip():
        raise InvalidRequest("Query parameter is required")

    logger.info("Generating coaching advice for query: %s", query)
    user_prompt = f"""Provide coaching advice for: "{query.strip()}"

Act as if you've analyzed expert YouTube coaching videos on this topic. Reference techniques and drills that would realistically appear in top coaching channels.{_coaching_profile_context(profile)}"""

    try:
        raw = gateway.complete(
            COACHING_SYSTEM_PROMPT,
            user_prompt,
            schema=CoachingAdvice.model_json_schema(),
        )
    except GatewayError as exc:
        raise DraftGenerationFailure(str(exc)) from exc

    return decode_json_payload(raw, CoachingAdvice, DraftGenerationFailure)


# ── Progress Journal ─────────────────────────────────────────────────


def generate_progress_questions(
    gateway: LLMGateway,
    health_goal: str,
    supplement_name: str,
) -> list[str]:
    """Three to five short daily questions tracking a supplement's effect on a goal."""
    if not (health_goal or "").strip() or not (supplement_name or "").strip():
        raise InvalidRequest("healthGoal and supplementName are required")

    prompt = f"""You are designing a tiny daily progress journal for a person using the supplement "{supplement_name}" to help with "{health_goal}".

Goal: create 3-5 SHORT, concrete questions they can answer each day to track how this supplement is affecting their specific problem.

Rules:
- Questions must be specific to "{health_goal}" (e.g., hair shedding, joint pain, sleep quality), not generic mood questions.
- Use simple language that a non-medical person understands.
- Focus on symptoms, function, and quality of life (e.g., pain, energy, confidence, sleep, daily activities).
- Include at least one question about side effects or new symptoms.
- Each question should fit on one line.

Return ONLY valid JSON in this shape (no extra text, no markdown):
{{"questions": ["question 1", "question 2", "question 3"]}}"""

    try:
        raw = gateway.complete(
            "You write short daily self-tracking questions. Respond ONLY with JSON.",
            prompt,
            temperature=0.6,
            schema=ProgressQuestions.model_json_schema(),
        )
    except GatewayError as exc:
        raise DraftGenerationFailure(str(exc)) from exc

    output = decode_json_payload(raw, ProgressQuestions, DraftGenerationFailure)
    questions = [q.strip() for q in output.questions if q and q.strip()]
    if not questions:
        raise DraftGenerationFailure("AI did not return questions array")
    return questions[:MAX_QUESTIONS]
