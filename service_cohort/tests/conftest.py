"""
Shared fixtures and fakes for Cohort service tests.
"""

from typing import Any, Dict, List, Optional, Tuple

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import ResourceStoreError
from shared.test_helpers import FhirDataFactory
from service_cohort.app.adapters.fhir_repository import SearchOutcome, SearchStatus


class FakeRuleClient:
    """Rule client answering from a ``{subject: {expression: bool}}`` table."""

    def __init__(self, answers: Dict[str, Dict[str, Any]]):
        self.answers = answers
        self.calls: List[Tuple[str, str, str]] = []

    async def invoke_boolean(self, library_id, expression_name, subject_id, base_params) -> bool:
        self.calls.append((library_id, expression_name, subject_id))
        answer = self.answers.get(subject_id, {}).get(expression_name)
        if isinstance(answer, BaseException):
            raise answer
        return answer is True


class FakeRepository:
    """In-memory FHIR store keyed by ``(kind, id)`` and ``(kind, canonical)``."""

    def __init__(self, resources: Optional[Dict[Tuple[str, str], Dict[str, Any]]] = None,
                 canonicals: Optional[Dict[Tuple[str, str], Dict[str, Any]]] = None,
                 unavailable: bool = False):
        self.resources = resources or {}
        self.canonicals = canonicals or {}
        self.unavailable = unavailable
        self.reads: List[Tuple[str, str]] = []
        self.searches: List[Tuple[str, str]] = []

    async def read(self, kind: str, resource_id: str) -> Dict[str, Any]:
        self.reads.append((kind, resource_id))
        if (kind, resource_id) not in self.resources:
            raise ResourceStoreError("Unexpected status 404", details={"status_code": 404})
        return self.resources[(kind, resource_id)]

    async def search_by_canonical(self, kind: str, canonical: str) -> SearchOutcome:
        self.searches.append((kind, canonical))
        if self.unavailable:
            return SearchOutcome(SearchStatus.UNAVAILABLE, error="store unreachable")
        resource = self.canonicals.get((kind, canonical))
        if resource is None:
            return SearchOutcome(SearchStatus.NOT_FOUND)
        return SearchOutcome(SearchStatus.FOUND, resource=resource)


@pytest.fixture
def fhir():
    """FHIR resource factory."""
    return FhirDataFactory


@pytest.fixture
def repository():
    """Empty in-memory FHIR store."""
    return FakeRepository()


@pytest.fixture
def make_repository():
    """Factory for in-memory FHIR stores."""
    return FakeRepository


@pytest.fixture
def make_rule_client():
    """Factory for table-driven rule clients."""
    return FakeRuleClient
