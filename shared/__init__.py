"""
Shared utilities for the Cohort Eligibility Service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with run and request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry helpers for remote calls
- circuit_breaker: Resilient external call protection
- base_service: FastAPI service skeleton with health and metrics routes

Do not import from service packages into shared/.
"""
