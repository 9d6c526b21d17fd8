"""PubMed search client using Biopython's Entrez module."""

import json
import logging
import socket
import threading
import time
from contextlib import contextmanager

from Bio import Entrez

from nutrimatch.core.errors import SearchUnavailable
from nutrimatch.core.settings import PubMedSettings

logger = logging.getLogger(__name__)

STUDY_TYPE_KEYWORDS = (
    "randomized controlled trial",
    "systematic review",
    "meta-analysis",
    "clinical trial",
)


# ── Rate Limiter ─────────────────────────────────────────────────────


class RateLimiter:
    """Blocks until at least ``interval`` seconds have passed since the last call."""

    def __init__(self, interval: float):
        self.interval = interval
        self._last = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            delay = self._last + self.interval - time.monotonic()
            if delay > 0:
                time.sleep(delay)
            self._last = time.monotonic()


# ── Socket Timeout ───────────────────────────────────────────────────

_SOCKET_LOCK = threading.Lock()


@contextmanager
def socket_timeout(seconds: float):
    """Bound sockets opened inside the block. Entrez has no timeout of its own."""
    with _SOCKET_LOCK:
        previous = socket.getdefaulttimeout()
        socket.setdefaulttimeout(seconds)
        try:
            yield
        finally:
            socket.setdefaulttimeout(previous)


# ── Query Builder ────────────────────────────────────────────────────


def build_search_terms(ingredient: str, goal: str) -> list[str]:
    """Search terms for one ingredient, most specific first.

    The first term restricts to trial and review designs; the second is the
    plain ingredient/goal pairing, used when the first finds nothing.
    """
    ingredient = ingredient.strip()
    goal = goal.strip()
    designs = " OR ".join(STUDY_TYPE_KEYWORDS)
    if not goal:
        return [f"{ingredient} AND ({designs})", ingredient]
    return [
        f"{ingredient} AND ({goal}) AND ({designs})",
        f"{ingredient} {goal}",
    ]


def build_ingredient_term(ingredient: str) -> str:
    """Ingredient-only search restricted to trial and review designs."""
    return f"{ingredient.strip()} " + " OR ".join(STUDY_TYPE_KEYWORDS)


# ── Client ───────────────────────────────────────────────────────────


class PubMedClient:
    """ESearch/EFetch wrapper sharing one rate limiter across all calls."""

    def __init__(self, settings: PubMedSettings):
        self.settings = settings
        self.limiter = RateLimiter(settings.request_interval)
        Entrez.email = settings.email
        Entrez.tool = settings.tool
        Entrez.max_tries = 1
        if settings.api_key:
            Entrez.api_key = settings.api_key

    def search(self, term: str, max_results: int | None = None) -> list[str]:
        """Return PMIDs for ``term`` in PubMed's relevance order. No hits is ``[]``."""
        retmax = max_results or self.settings.search_max_results
        logger.info("PubMed search: %s (retmax=%d)", term, retmax)
        raw = self._call(
            Entrez.esearch,
            db="pubmed",
            term=term,
            retmax=retmax,
            retmode="json",
            sort="relevance",
        )
        try:
            pmids = json.loads(raw)["esearchresult"]["idlist"]
        except (ValueError, KeyError, TypeError) as exc:
            raise SearchUnavailable(f"Unexpected ESearch response: {exc}") from exc

        logger.info("PubMed found %d PMIDs", len(pmids))
        return [str(p) for p in pmids[:retmax]]

    def fetch(self, pmids: list[str]) -> str:
        """Return the raw EFetch XML for a batch of PMIDs."""
        if not pmids:
            return ""
        return self._call(
            Entrez.efetch,
            db="pubmed",
            id=",".join(pmids),
            retmode="xml",
        )

    def _call(self, func, **kwargs) -> str:
        """Call an Entrez function once, paced by the rate limiter."""
        name = getattr(func, "__name__", "request")
        self.limiter.wait()
        try:
            with socket_timeout(self.settings.timeout):
                handle = func(**kwargs)
                try:
                    raw = handle.read()
                finally:
                    handle.close()
        except Exception as exc:
            logger.warning("Entrez %s failed: %s", name, exc)
            raise SearchUnavailable(f"PubMed {name} failed: {exc}") from exc

        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        return raw
