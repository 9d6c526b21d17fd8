#!/usr/bin/env python3
"""Run one recommendation request from the command line and print JSON."""

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from nutrimatch.agents.coach import generate_coaching
from nutrimatch.agents.models import Profile, RecommendationRequest
from nutrimatch.core.errors import NutriMatchError
from nutrimatch.core.settings import load_settings
from nutrimatch.pipeline.papers import lookup_papers
from nutrimatch.pipeline.recommender import Recommender

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("recommend")

MODES = ("supplements", "coaching", "papers")


def _parse_answers(pairs: list[str]) -> dict[str, str]:
    answers = {}
    for pair in pairs:
        question, sep, answer = pair.partition("=")
        if not sep:
            raise SystemExit(f"--answer expects QUESTION=ANSWER, got: {pair}")
        answers[question.strip()] = answer.strip()
    return answers


def main():
    parser = argparse.ArgumentParser(description="NutriMatch recommendation runner")
    parser.add_argument("query", help="Health goal, training question, or ingredient name")
    parser.add_argument("--mode", choices=MODES, default="supplements")
    parser.add_argument("--config", default=None, help="Path to settings YAML file")
    parser.add_argument("--profile", default=None, help="Path to a profile JSON file")
    parser.add_argument(
        "--answer",
        action="append",
        default=[],
        metavar="QUESTION=ANSWER",
        help="Questionnaire answer (repeatable)",
    )
    parser.add_argument("--max-results", type=int, default=3, help="Papers mode only")
    args = parser.parse_args()

    load_dotenv()
    settings = load_settings(args.config)

    profile = None
    if args.profile:
        with open(args.profile) as f:
            profile = Profile.model_validate(json.load(f))

    recommender = Recommender.from_settings(settings)

    try:
        if args.mode == "supplements":
            request = RecommendationRequest(
                query=args.query, answers=_parse_answers(args.answer), profile=profile
            )
            result = [
                r.model_dump(mode="json", by_alias=True)
                for r in recommender.recommend(request)
            ]
            output = {"supplements": result}
        elif args.mode == "coaching":
            advice = generate_coaching(recommender.gateway, args.query, profile)
            output = {"advice": advice.model_dump(mode="json", by_alias=True)}
        else:
            papers, from_cache = lookup_papers(
                recommender.pubmed, args.query, args.max_results, cache=recommender.cache
            )
            output = {
                "papers": [p.model_dump(mode="json", by_alias=True) for p in papers],
                "fromCache": from_cache,
            }
    except NutriMatchError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        sys.exit(1)
    finally:
        if recommender.cache is not None:
            recommender.cache.close()

    print(json.dumps(output, indent=2))


if __name__ == "__main__":
    main()
