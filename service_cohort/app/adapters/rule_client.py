"""
Remote rule-evaluation client (FHIR ``Library/$evaluate``).
"""

from typing import Any, Dict, Optional

import httpx

from shared.logging import get_logger
from shared.errors import RuleEvaluationError
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_async

from .parameters import CallParameters, read_boolean, FHIR_JSON_HEADERS


class TransientStatusError(Exception):
    """The rule endpoint answered with a status worth retrying."""

    def __init__(self, status_code: int):
        super().__init__(f"Rule endpoint returned {status_code}")
        self.status_code = status_code


# Timeouts are transport errors: they are retried and, once exhausted, fail the call
RETRYABLE_EXCEPTIONS = (httpx.TransportError, TransientStatusError)


class RuleEvaluationClient:
    """Client for a remote CQL engine exposing ``Library/{id}/$evaluate``."""

    def __init__(self, base_url: str,
                 timeout: float = 10.0,
                 retry_config: Optional[RetryConfig] = None,
                 circuit_breaker: Optional[CircuitBreaker] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.logger = get_logger("cohort.rule_client")
        self.metrics = metrics
        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=0.5,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=True
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            name="rule_engine"
        )

    async def evaluate_library(self, library_id: str, parameters: CallParameters) -> Dict[str, Any]:
        """Run ``$evaluate`` on a library and return the ``Parameters`` reply.

        Only transport errors and 5xx statuses count against the circuit
        breaker; a 4xx or unparsable reply fails this call alone.
        """
        url = f"{self.base_url}/Library/{library_id}/$evaluate"
        body = parameters.to_fhir()

        async def _request() -> httpx.Response:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=body, headers=FHIR_JSON_HEADERS)

            if response.status_code >= 500:
                raise TransientStatusError(response.status_code)
            return response

        try:
            response = await retry_async(
                self.circuit_breaker.call, _request,
                exceptions=RETRYABLE_EXCEPTIONS,
                config=self.retry_config,
                name="evaluate_library"
            )
        except RetryError as exc:
            self._record("failure")
            raise RuleEvaluationError(
                f"Library {library_id} evaluation failed after {exc.attempts} attempts",
                details={"library_id": library_id, "error": str(exc.last_exception)}
            ) from exc
        except CircuitBreakerOpenException as exc:
            self._record("failure")
            raise RuleEvaluationError(
                str(exc),
                details={"library_id": library_id, "circuit": self.circuit_breaker.name}
            ) from exc

        try:
            reply = self._parse_reply(library_id, response)
        except RuleEvaluationError:
            self._record("failure")
            raise

        self._record("success")
        return reply

    def _parse_reply(self, library_id: str, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code != 200:
            raise RuleEvaluationError(
                f"Unexpected status {response.status_code} for library {library_id}",
                details={"library_id": library_id, "status_code": response.status_code}
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise RuleEvaluationError(
                f"Unparsable reply for library {library_id}",
                details={"library_id": library_id, "error": str(exc)}
            )
        if not isinstance(payload, dict):
            raise RuleEvaluationError(
                f"Unparsable reply for library {library_id}",
                details={"library_id": library_id, "error": "reply is not a JSON object"}
            )
        return payload

    async def invoke_boolean(self, library_id: str, expression_name: str,
                             subject_id: str, base_params: CallParameters) -> bool:
        """Evaluate one named boolean expression for one subject.

        ``base_params`` is left untouched; the call uses a copy carrying the
        prefix-free subject id. A missing or non-boolean result reads as False.
        """
        reply = await self.evaluate_library(library_id, base_params.with_subject(subject_id))
        value = read_boolean(reply, expression_name)

        self.logger.debug(
            "Expression evaluated",
            library_id=library_id,
            expression=expression_name,
            result=value
        )
        return value

    def _record(self, status: str):
        if self.metrics:
            self.metrics.increment_counter("rule_evaluations_total", status=status)
