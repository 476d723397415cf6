"""
Resolution of canonical references to rule libraries and nested definitions.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from shared.logging import get_logger

from ..adapters.fhir_repository import FhirRepository, SearchOutcome, SearchStatus
from .models import CriteriaDefinition, parse_evidence_variable


class ResolutionSource(str, Enum):
    """Where a library identifier came from."""
    REGISTRY = "registry"
    HEURISTIC = "heuristic"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class LibraryResolution:
    """Library identifier chosen for an expression leaf."""
    library_id: str
    source: ResolutionSource
    canonical: Optional[str] = None


def canonical_tail(canonical: Optional[str]) -> Optional[str]:
    """Final path segment of a canonical with any ``|version`` suffix removed."""
    if not canonical:
        return None
    tail = canonical.split("|", 1)[0].rsplit("/", 1)[-1].strip()
    return tail or None


class ReferenceResolver:
    """Resolve canonicals against the FHIR registry with deterministic fallbacks.

    Lookups go through a read-through cache keyed by canonical. Concurrent
    callers asking for the same canonical share the first in-flight lookup, so
    every subject in a run sees the same answer.
    """

    def __init__(self, repository: FhirRepository):
        self.repository = repository
        self.logger = get_logger("cohort.resolver")
        self._library_lookups: Dict[str, asyncio.Task] = {}
        self._definition_lookups: Dict[str, asyncio.Task] = {}

    async def resolve_library(self, leaf_library: Optional[str],
                              definition_library: Optional[str],
                              fallback_id: str) -> LibraryResolution:
        """Pick the library for a leaf: leaf reference, then definition, then fallback."""
        canonical = leaf_library or definition_library
        if not canonical:
            return LibraryResolution(fallback_id, ResolutionSource.FALLBACK)

        outcome = await self._cached(self._library_lookups, canonical, self._search_library)
        if outcome.found:
            return LibraryResolution(outcome.resource["id"], ResolutionSource.REGISTRY, canonical)

        tail = canonical_tail(canonical)
        if tail:
            self.logger.debug(
                "Library resolved from canonical",
                canonical=canonical,
                library_id=tail,
                lookup=outcome.status.value
            )
            return LibraryResolution(tail, ResolutionSource.HEURISTIC, canonical)

        return LibraryResolution(fallback_id, ResolutionSource.FALLBACK, canonical)

    async def resolve_definition(self, canonical: str) -> Optional[CriteriaDefinition]:
        """Nested eligibility definition for ``canonical``, or None."""
        if not canonical:
            return None

        outcome = await self._cached(self._definition_lookups, canonical, self._search_definition)
        if not outcome.found:
            self.logger.info(
                "Eligibility definition not resolved",
                canonical=canonical,
                lookup=outcome.status.value
            )
            return None
        return parse_evidence_variable(outcome.resource)

    async def aclose(self):
        """Cancel lookups still in flight, e.g. after an aborted run."""
        pending = [
            task for task in (*self._library_lookups.values(), *self._definition_lookups.values())
            if not task.done()
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _search_library(self, canonical: str) -> SearchOutcome:
        return await self._search("Library", canonical)

    async def _search_definition(self, canonical: str) -> SearchOutcome:
        return await self._search("EvidenceVariable", canonical)

    async def _search(self, kind: str, canonical: str) -> SearchOutcome:
        # Lookup failures of any kind fall back; they never fail the evaluation
        try:
            return await self.repository.search_by_canonical(kind, canonical)
        except Exception as exc:
            self.logger.warning("Registry lookup failed", kind=kind, canonical=canonical, error=str(exc))
            return SearchOutcome(SearchStatus.UNAVAILABLE, error=str(exc))

    async def _cached(self, cache: Dict[str, asyncio.Task], canonical: str,
                      lookup: Callable[[str], Awaitable[SearchOutcome]]) -> SearchOutcome:
        task = cache.get(canonical)
        if task is None:
            task = asyncio.ensure_future(lookup(canonical))
            cache[canonical] = task
        # Shielded so one cancelled subject does not cancel a lookup others await
        return await asyncio.shield(task)
