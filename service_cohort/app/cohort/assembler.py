"""
Cohort assembly: evaluate every subject and collect pseudonymized members.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence

from shared.logging import get_logger
from shared.errors import ResourceStoreError, SubjectTimeoutError
from shared.metrics import MetricsCollector

from ..adapters.fhir_repository import FhirRepository
from ..adapters.parameters import CallParameters, strip_resource_prefix
from ..criteria.evaluator import CriteriaEvaluator
from ..criteria.models import CriteriaDefinition, ResultGroup, StudyMetadata
from .pseudonymizer import Pseudonymizer


class CohortAssembler:
    """Builds the eligible-patient group for a study.

    Subjects may be evaluated concurrently up to ``max_concurrency``; members
    always follow the input order. Any error escaping a subject (remote rule
    evaluation failure, subject timeout, pseudonymization failure) cancels the
    remaining subjects and aborts the run without returning a group.
    """

    def __init__(self, evaluator: CriteriaEvaluator, repository: FhirRepository,
                 pseudonymizer: Pseudonymizer, max_concurrency: int = 1,
                 subject_timeout: Optional[float] = None,
                 metrics: Optional[MetricsCollector] = None):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.evaluator = evaluator
        self.repository = repository
        self.pseudonymizer = pseudonymizer
        self.max_concurrency = max_concurrency
        self.subject_timeout = subject_timeout
        self.metrics = metrics
        self.logger = get_logger("cohort.assembler")

    async def evaluate_cohort(self, study: StudyMetadata, definition: CriteriaDefinition,
                              subjects: Sequence[str], params: CallParameters,
                              fallback_library_id: str) -> ResultGroup:
        start_time = time.time()
        group = ResultGroup(
            id=f"group-{study.id}",
            name=f"Patient Eligible for: {study.name or study.id}",
            description=study.description,
        )
        self.logger.info(
            "Cohort evaluation started",
            study_id=study.id,
            definition=definition.url or definition.id,
            subjects=len(subjects),
            max_concurrency=self.max_concurrency
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(subject_id: str) -> Optional[Dict[str, Any]]:
            async with semaphore:
                return await self._evaluate_subject_with_timeout(
                    definition, subject_id, params, fallback_library_id
                )

        tasks = [asyncio.ensure_future(_bounded(subject_id)) for subject_id in subjects]
        try:
            members: List[Optional[Dict[str, Any]]] = await asyncio.gather(*tasks)
        except BaseException as exc:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._count("cohort_runs_total", status="failed")
            self.logger.error(
                "Cohort evaluation aborted",
                study_id=study.id,
                error_type=type(exc).__name__,
                error=str(exc)
            )
            raise

        for identifier in members:
            if identifier is not None:
                group.add_member(identifier)

        self._count("cohort_runs_total", status="completed")
        if self.metrics:
            self.metrics.get_metric("cohort_run_duration_seconds").observe(time.time() - start_time)
        self.logger.info(
            "Cohort evaluation completed",
            study_id=study.id,
            subjects=len(subjects),
            members=len(group.members),
            duration_ms=round((time.time() - start_time) * 1000, 2)
        )
        return group

    async def _evaluate_subject_with_timeout(self, definition: CriteriaDefinition, subject_id: str,
                                             params: CallParameters,
                                             fallback_library_id: str) -> Optional[Dict[str, Any]]:
        if self.subject_timeout is None:
            return await self._evaluate_subject(definition, subject_id, params, fallback_library_id)
        try:
            return await asyncio.wait_for(
                self._evaluate_subject(definition, subject_id, params, fallback_library_id),
                timeout=self.subject_timeout
            )
        except asyncio.TimeoutError:
            raise SubjectTimeoutError(subject_id, self.subject_timeout)

    async def _evaluate_subject(self, definition: CriteriaDefinition, subject_id: str,
                                params: CallParameters,
                                fallback_library_id: str) -> Optional[Dict[str, Any]]:
        """Pseudonymized identifier for a qualifying subject, else None."""
        eligible = await self.evaluator.evaluate_tree(definition, subject_id, params, fallback_library_id)
        if not eligible:
            self._count("cohort_subjects_total", outcome="ineligible")
            return None

        identifiers = await self._lookup_identifiers(subject_id)
        if not identifiers:
            self._count("cohort_subjects_total", outcome="skipped")
            return None

        pseudonym = self.pseudonymizer.pseudonymize(identifiers[0])
        self._count("cohort_subjects_total", outcome="included")
        return pseudonym

    async def _lookup_identifiers(self, subject_id: str) -> List[Dict[str, Any]]:
        try:
            patient = await self.repository.read("Patient", strip_resource_prefix(subject_id))
        except ResourceStoreError as exc:
            self.logger.warning(
                "Identity lookup failed, subject skipped",
                subject=subject_id,
                error=exc.message
            )
            return []

        identifiers = patient.get("identifier") if isinstance(patient, dict) else None
        if not identifiers:
            self.logger.info("Eligible subject has no identifier, skipped", subject=subject_id)
            return []
        return list(identifiers)

    def _count(self, metric_name: str, **labels):
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)
