"""
FHIR REST resource store client for the Cohort service.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from shared.logging import get_logger
from shared.errors import ResourceStoreError

FHIR_JSON = "application/fhir+json"


class SearchStatus(str, Enum):
    """Outcome of a registry search."""
    FOUND = "found"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class SearchOutcome:
    """Result of looking a definitional resource up by canonical reference."""
    status: SearchStatus
    resource: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status == SearchStatus.FOUND


def split_canonical(canonical: str) -> Dict[str, str]:
    """Search parameters for a ``url|version`` canonical reference."""
    url, _, version = canonical.partition("|")
    params = {"url": url}
    if version:
        params["version"] = version
    return params


class FhirRepository:
    """Read and search resources on a FHIR server."""

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.logger = get_logger("cohort.fhir_repository")

    async def read(self, kind: str, resource_id: str) -> Dict[str, Any]:
        """Read ``{kind}/{resource_id}``."""
        return await self._get(f"/{kind}/{quote(resource_id, safe='')}", None)

    async def search(self, kind: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Search ``kind`` and return the resulting Bundle."""
        return await self._get(f"/{kind}", params)

    async def search_by_canonical(self, kind: str, canonical: str) -> SearchOutcome:
        """Find the first concretely identified ``kind`` resource for a canonical."""
        try:
            bundle = await self.search(kind, split_canonical(canonical))
        except ResourceStoreError as exc:
            self.logger.warning(
                "Canonical search failed",
                kind=kind,
                canonical=canonical,
                error=exc.message
            )
            return SearchOutcome(SearchStatus.UNAVAILABLE, error=exc.message)

        entries = bundle.get("entry") if isinstance(bundle, dict) else None
        if isinstance(entries, list) and entries and isinstance(entries[0], dict):
            resource = entries[0].get("resource")
            if isinstance(resource, dict) and resource.get("resourceType") == kind and resource.get("id"):
                return SearchOutcome(SearchStatus.FOUND, resource=resource)

        return SearchOutcome(SearchStatus.NOT_FOUND)

    async def _get(self, path: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=params, headers={"Accept": FHIR_JSON})
        except httpx.HTTPError as exc:
            self.logger.error("FHIR store request failed", url=url, error=str(exc))
            raise ResourceStoreError(str(exc), details={"url": url})

        if response.status_code != 200:
            self.logger.info(
                "FHIR store returned error status",
                url=url,
                status_code=response.status_code
            )
            raise ResourceStoreError(
                f"Unexpected status {response.status_code}",
                details={"url": url, "status_code": response.status_code}
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ResourceStoreError("Response is not JSON", details={"url": url, "error": str(exc)})
