"""FastAPI surface: one route per pipeline operation."""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from nutrimatch.agents.coach import generate_coaching, generate_progress_questions
from nutrimatch.agents.models import Profile, RecommendationRequest
from nutrimatch.core.errors import NutriMatchError
from nutrimatch.core.settings import Settings, load_settings
from nutrimatch.pipeline.papers import lookup_papers
from nutrimatch.pipeline.recommender import Recommender

logger = logging.getLogger(__name__)


# ── Request Models ───────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class PapersRequest(_CamelModel):
    ingredient_name: str = ""
    max_results: int = Field(default=3, ge=1, le=20)


class CoachingRequest(_CamelModel):
    query: str = ""
    profile: Optional[Profile] = None


class ProgressQuestionsRequest(_CamelModel):
    health_goal: str = ""
    supplement_name: str = ""


# ── Helpers ──────────────────────────────────────────────────────────


def _error(exc: NutriMatchError, **empty: Any) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc, exc_info=True)
    else:
        logger.info("%s: %s", type(exc).__name__, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc), **empty})


# Empty payload returned alongside "error" on each route's failure responses.
_EMPTY_RESULTS: dict[str, dict[str, Any]] = {
    "/generate-supplements": {"supplements": []},
    "/fetch-pubmed-papers": {"papers": []},
    "/generate-coaching": {"advice": None},
    "/generate-progress-questions": {"questions": []},
}


def _describe_validation(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return f"Invalid request body: {loc or 'body'}: {first.get('msg', 'invalid value')}"


def _dump(models) -> list[dict]:
    return [m.model_dump(mode="json", by_alias=True) for m in models]


# ── App Factory ──────────────────────────────────────────────────────


def create_app(
    settings: Settings | None = None,
    recommender: Recommender | None = None,
) -> FastAPI:
    """Build the API. Dependencies are assembled once and shared by all routes."""
    settings = settings or load_settings()
    recommender = recommender or Recommender.from_settings(settings)

    api = FastAPI(title="NutriMatch API", version="0.1.0")
    api.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @api.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        message = _describe_validation(exc)
        logger.info("RequestValidationError on %s: %s", request.url.path, message)
        return JSONResponse(
            status_code=400,
            content={"error": message, **_EMPTY_RESULTS.get(request.url.path, {})},
        )

    @api.get("/health")
    def health():
        return {"status": "ok"}

    @api.post("/generate-supplements")
    def generate_supplements(req: RecommendationRequest):
        try:
            supplements = recommender.recommend(req)
        except NutriMatchError as exc:
            return _error(exc, supplements=[])
        return {"supplements": _dump(supplements)}

    @api.post("/fetch-pubmed-papers")
    def fetch_pubmed_papers(req: PapersRequest):
        try:
            papers, from_cache = lookup_papers(
                recommender.pubmed,
                req.ingredient_name,
                req.max_results,
                cache=recommender.cache,
            )
        except NutriMatchError as exc:
            return _error(exc, papers=[])
        return {"papers": _dump(papers), "fromCache": from_cache}

    @api.post("/generate-coaching")
    def coaching(req: CoachingRequest):
        try:
            advice = generate_coaching(recommender.gateway, req.query, req.profile)
        except NutriMatchError as exc:
            return _error(exc, advice=None)
        return {"advice": advice.model_dump(mode="json", by_alias=True)}

    @api.post("/generate-progress-questions")
    def progress_questions(req: ProgressQuestionsRequest):
        try:
            questions = generate_progress_questions(
                recommender.gateway, req.health_goal, req.supplement_name
            )
        except NutriMatchError as exc:
            return _error(exc, questions=[])
        return {"questions": questions}

    return api
