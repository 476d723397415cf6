"""
Adapters package for the Cohort Service.

HTTP client wrappers for external collaborators:

- fhir_repository: read/search against the FHIR resource store
- rule_client: Library/$evaluate calls against the CQL engine, with
  retry and circuit breaking
- parameters: the immutable Parameters bag sent with every call

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .fhir_repository import FhirRepository, SearchOutcome, SearchStatus
from .parameters import CallParameters
from .rule_client import RuleEvaluationClient

__all__ = [
    "FhirRepository",
    "SearchOutcome",
    "SearchStatus",
    "CallParameters",
    "RuleEvaluationClient",
]
