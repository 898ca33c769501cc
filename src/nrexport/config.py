# src/nrexport/config.py
"""Exporter configuration.

ExporterSettings is the single, immutable configuration object shared by the
span and metric exporters. It is validated once at construction; invalid
settings raise ConfigurationError so that a misconfigured exporter fails at
startup rather than during export.

Loading settings from files or a secrets manager belongs to the embedding
application. from_env() covers the common case of environment variables.
"""

import os
from collections.abc import Mapping
from enum import StrEnum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from nrexport.errors import ConfigurationError


class Region(StrEnum):
    """Ingestion data center region."""

    US = "us"
    EU = "eu"


# (span endpoint, metric endpoint) per region
_REGION_ENDPOINTS: dict[Region, tuple[str, str]] = {
    Region.US: (
        "https://trace-api.newrelic.com/trace/v1",
        "https://metric-api.newrelic.com/metric/v1",
    ),
    Region.EU: (
        "https://trace-api.eu.newrelic.com/trace/v1",
        "https://metric-api.eu.newrelic.com/metric/v1",
    ),
}

# Environment variable suffix for the common service.name attribute
_SERVICE_NAME_ENV = "SERVICE_NAME"


def _describe_problems(error: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}" for err in error.errors())


class ExporterSettings(BaseModel):
    """Configuration for span and metric exporters.

    max_retries is the TOTAL number of delivery attempts per batch, not the
    number of retries after the first attempt.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    api_key: str = Field(description="Ingest API key sent in the Api-Key header")
    common_attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Attributes attached to every outgoing span and metric",
    )
    audit_logging: bool = Field(default=False, description="Log every outgoing payload verbatim")
    timeout_seconds: float = Field(default=10.0, gt=0, description="HTTP request timeout")
    max_retries: int = Field(default=5, gt=0, description="Total delivery attempts per batch")
    backoff_base_seconds: float = Field(default=1.0, gt=0, description="Initial backoff delay")
    backoff_cap_seconds: float = Field(default=30.0, gt=0, description="Maximum backoff delay")
    region: Region = Field(default=Region.US, description="Data center used for default endpoints")
    span_endpoint: str | None = Field(default=None, description="Override for the trace ingest URL")
    metric_endpoint: str | None = Field(default=None, description="Override for the metric ingest URL")
    compress: bool = Field(default=True, description="gzip request bodies")
    export_interval_seconds: float = Field(default=5.0, gt=0, description="Metric export interval")
    shutdown_grace_seconds: float = Field(default=10.0, gt=0, description="Time allowed to drain on shutdown")
    max_split_concurrency: int = Field(default=4, ge=0, description="Worker threads for split sub-deliveries")
    cumulative_to_delta: bool = Field(default=True, description="Convert cumulative counters to deltas")
    allow_insecure: bool = Field(default=False, description="Permit plain http endpoints (testing only)")

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise ConfigurationError("ExporterSettings", _describe_problems(e)) from e

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """API key must be present and non-blank."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("api_key must not be empty")
        return stripped

    @field_validator("common_attributes")
    @classmethod
    def validate_attribute_keys(cls, v: dict[str, Any]) -> dict[str, Any]:
        for key in v:
            if not isinstance(key, str) or not key:
                raise ValueError(f"common attribute keys must be non-empty strings, got {key!r}")
        return v

    @model_validator(mode="after")
    def validate_backoff_and_endpoints(self) -> "ExporterSettings":
        if self.backoff_cap_seconds < self.backoff_base_seconds:
            raise ValueError(
                f"backoff_cap_seconds ({self.backoff_cap_seconds}) must be >= backoff_base_seconds ({self.backoff_base_seconds})"
            )
        for url in (self.span_endpoint, self.metric_endpoint):
            if url is None:
                continue
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError(f"endpoint must be an absolute http(s) URL, got {url!r}")
            if parsed.scheme == "http" and not self.allow_insecure:
                raise ValueError(f"endpoint {url!r} is not https; set allow_insecure to permit it")
        return self

    @property
    def resolved_span_endpoint(self) -> str:
        return self.span_endpoint or _REGION_ENDPOINTS[self.region][0]

    @property
    def resolved_metric_endpoint(self) -> str:
        return self.metric_endpoint or _REGION_ENDPOINTS[self.region][1]

    @property
    def redacted_api_key(self) -> str:
        """API key safe for logs: only the last four characters survive."""
        return f"****{self.api_key[-4:]}" if len(self.api_key) > 4 else "****"

    @classmethod
    def create(cls, **values: Any) -> "ExporterSettings":
        """Build settings from keyword values.

        Raises:
            ConfigurationError: If any field is missing or invalid
        """
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, *, prefix: str = "NEW_RELIC_") -> "ExporterSettings":
        """Build settings from environment variables.

        Each field maps to ``<prefix><FIELD_NAME>`` (e.g. NEW_RELIC_API_KEY,
        NEW_RELIC_MAX_RETRIES). ``<prefix>SERVICE_NAME`` populates the
        ``service.name`` common attribute. String values are coerced by
        pydantic's lax mode.

        Raises:
            ConfigurationError: If required variables are missing or invalid
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for field_name in cls.model_fields:
            if field_name == "common_attributes":
                continue
            raw = env.get(f"{prefix}{field_name.upper()}")
            if raw is not None and raw != "":
                values[field_name] = raw

        service_name = env.get(f"{prefix}{_SERVICE_NAME_ENV}")
        if service_name:
            values["common_attributes"] = {"service.name": service_name}

        if "api_key" not in values:
            raise ConfigurationError("ExporterSettings", f"{prefix}API_KEY is not set")
        return cls.create(**values)
