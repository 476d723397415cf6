"""
Cohort eligibility service.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import DefinitionNotFoundError, ValidationError
from shared.logging import set_run_id
from shared.circuit_breaker import CircuitBreaker
from shared.retry import RetryConfig

from .adapters.fhir_repository import FhirRepository
from .adapters.parameters import CallParameters
from .adapters.rule_client import RuleEvaluationClient
from .cohort.assembler import CohortAssembler
from .cohort.pseudonymizer import Pseudonymizer
from .criteria.evaluator import CriteriaEvaluator
from .criteria.models import CriteriaDefinition, parse_evidence_variable, parse_research_study
from .criteria.resolver import ReferenceResolver


class CohortEvaluationRequest(BaseModel):
    """Request body for a cohort evaluation."""
    study: Dict[str, Any] = Field(..., description="ResearchStudy resource")
    evidence_variable: Optional[Dict[str, Any]] = Field(None, description="EvidenceVariable resource")
    evidence_variable_canonical: Optional[str] = Field(None, description="Canonical of a stored EvidenceVariable")
    subjects: List[str] = Field(default_factory=list, description="Subject ids, e.g. Patient/123")
    parameters: Optional[Dict[str, Any]] = Field(None, description="Base FHIR Parameters for every call")
    fallback_library_id: Optional[str] = Field(None, description="Library used when none is referenced")


class CohortService(BaseService):
    """Cohort service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 repository: Optional[FhirRepository] = None,
                 rule_client: Optional[RuleEvaluationClient] = None):
        super().__init__("cohort", 8020, config)

        self.repository = repository or FhirRepository(
            self.config.fhir_server_url,
            timeout=self.config.request_timeout_seconds
        )
        self.rule_client = rule_client or RuleEvaluationClient(
            self.config.cql_engine_url,
            timeout=self.config.request_timeout_seconds,
            retry_config=RetryConfig(
                max_attempts=self.config.retry_max_attempts,
                base_delay=self.config.retry_base_delay,
                max_delay=self.config.retry_max_delay
            ),
            circuit_breaker=CircuitBreaker(
                failure_threshold=self.config.circuit_failure_threshold,
                recovery_timeout=self.config.circuit_recovery_timeout,
                name="rule_engine"
            ),
            metrics=self.metrics
        )
        key = self.config.pseudonymization_key
        self.pseudonymizer = Pseudonymizer(key.get_secret_value() if key else None)

        self._setup_cohort_routes()

    def _setup_cohort_routes(self):
        """Set up cohort-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "cohort",
                "message": "Cohort Eligibility Service",
                "version": "1.0.0",
                "capabilities": ["criteria_evaluation", "pseudonymization"]
            }

        @self.app.post("/cohorts/$evaluate")
        async def evaluate_cohort(request: CohortEvaluationRequest):
            """Evaluate an eligibility definition over subjects and return a Group."""
            run_id = set_run_id()
            resolver = ReferenceResolver(self.repository)
            try:
                definition = await self._load_definition(request, resolver)

                assembler = CohortAssembler(
                    CriteriaEvaluator(self.rule_client, resolver),
                    self.repository,
                    self.pseudonymizer,
                    max_concurrency=self.config.max_concurrency,
                    subject_timeout=self.config.subject_timeout_seconds,
                    metrics=self.metrics
                )
                group = await assembler.evaluate_cohort(
                    parse_research_study(request.study),
                    definition,
                    request.subjects,
                    CallParameters.from_fhir(request.parameters),
                    request.fallback_library_id or self.config.fallback_library_id
                )
            finally:
                await resolver.aclose()

            self.logger.info("Cohort run finished", run_id=run_id, members=len(group.members))
            return group.to_fhir()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report the rule-engine circuit state."""
        breaker = getattr(self.rule_client, "circuit_breaker", None)
        if breaker is None:
            return {}
        return {"rule_engine": breaker.get_state()["state"]}

    async def _load_definition(self, request: CohortEvaluationRequest,
                               resolver: ReferenceResolver) -> CriteriaDefinition:
        if request.evidence_variable is not None:
            return parse_evidence_variable(request.evidence_variable)

        if request.evidence_variable_canonical:
            definition = await resolver.resolve_definition(request.evidence_variable_canonical)
            if definition is None:
                raise DefinitionNotFoundError(request.evidence_variable_canonical)
            return definition

        raise ValidationError(
            "Either evidence_variable or evidence_variable_canonical is required"
        )


def create_app(config: Optional[ServiceConfig] = None, **components):
    """Create cohort service application."""
    service = CohortService(config, **components)
    return service.app


if __name__ == "__main__":
    service = CohortService()
    service.run()
