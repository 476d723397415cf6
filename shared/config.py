"""
Shared configuration management for the Cohort Eligibility Service.
"""

from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="COHORT_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    fhir_server_url: str = Field(default="http://localhost:8080/fhir")
    cql_engine_url: str = Field(default="http://localhost:8081/fhir")
    request_timeout_seconds: float = Field(default=10.0)

    # Remote evaluation resilience
    retry_max_attempts: int = Field(default=3)
    retry_base_delay: float = Field(default=0.5)
    retry_max_delay: float = Field(default=5.0)
    circuit_failure_threshold: int = Field(default=5)
    circuit_recovery_timeout: float = Field(default=30.0)

    # Cohort evaluation
    fallback_library_id: str = Field(default="eligibility")
    pseudonymization_key: Optional[SecretStr] = Field(default=None)
    max_concurrency: int = Field(default=1)
    subject_timeout_seconds: Optional[float] = Field(default=None)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
