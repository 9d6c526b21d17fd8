"""Request-scoped ledger of PMIDs already attached to a recommendation."""

import logging
from collections.abc import Iterable

from nutrimatch.search.models import CandidateCitation

logger = logging.getLogger(__name__)


class DedupLedger:
    """Set of reserved citation identifiers for one recommendation request.

    Built fresh per request and never shared, so it needs no locking.
    """

    def __init__(self) -> None:
        self._reserved: set[str] = set()

    def __contains__(self, identifier: str) -> bool:
        return identifier.strip() in self._reserved

    def __len__(self) -> int:
        return len(self._reserved)

    def reserve(self, identifiers: Iterable[str]) -> None:
        """Mark identifiers as used. Already-reserved ones are ignored."""
        for identifier in identifiers:
            self._reserved.add(identifier.strip())

    def filter_fresh(self, candidates: list[CandidateCitation]) -> list[CandidateCitation]:
        """Candidates whose identifier has not been reserved yet, in input order."""
        return [c for c in candidates if c.identifier.strip() not in self._reserved]

    def overlaps(self, identifiers: Iterable[str]) -> bool:
        return any(i in self for i in identifiers)


def fresh_or_full(
    ledger: DedupLedger, candidates: list[CandidateCitation]
) -> tuple[list[CandidateCitation], bool]:
    """Deduplicated pool, or the full pool when every candidate is already used.

    Returns ``(pool, fell_back)``. A repeated citation is preferred over an
    uncited recommendation.
    """
    fresh = ledger.filter_fresh(candidates)
    if fresh or not candidates:
        return fresh, False
    logger.info(
        "All %d candidates already cited in this request — reusing full pool",
        len(candidates),
    )
    return list(candidates), True
