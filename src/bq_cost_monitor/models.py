"""Pydantic models for the monitoring resources with validation.

These models provide:
1. Type-safe descriptions of the desired state of each resource
2. Validation at the boundary (fail fast, fail loudly)
3. Clean transformation to the JSON payloads the Cloud APIs accept
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Annotated, Any, ClassVar

from pydantic import BaseModel, Field, field_validator

from .config import VALID_EMAIL_PATTERN

if TYPE_CHECKING:
    from .config import Config


class ResourceKind(str, Enum):
    """Cloud resources managed by the deployer."""

    LOG_METRIC = "logMetric"
    NOTIFICATION_CHANNEL = "notificationChannel"
    ALERT_POLICY = "alertPolicy"
    DASHBOARD = "dashboard"


# BigQuery audit log fields used by the metric, the policy and the dashboard
BIGQUERY_RESOURCE_TYPE = "bigquery_project"
JOB_COMPLETED_METHOD = "jobservice.jobcompleted"
BILLED_BYTES_FIELD = "protoPayload.serviceData.jobCompletedEvent.job.jobStatistics.totalBilledBytes"
PRINCIPAL_EMAIL_FIELD = "protoPayload.authenticationInfo.principalEmail"

BILLED_BYTES_LOG_FILTER = (
    f'resource.type="{BIGQUERY_RESOURCE_TYPE}" '
    f'AND protoPayload.methodName="{JOB_COMPLETED_METHOD}" '
    f"AND {BILLED_BYTES_FIELD} > 0"
)

DEFAULT_METRIC_DESCRIPTION = "Tracks the total bytes billed by BigQuery queries in near real-time."
DEFAULT_CHANNEL_DISPLAY_NAME = "Email"
DEFAULT_CHANNEL_DESCRIPTION = "Email notifications for BQ cost alerts"
DEFAULT_POLICY_DOCUMENTATION = (
    "A BigQuery cost spike has been detected. Check the BQ Cost Monitoring "
    "Dashboard immediately to identify the source."
)

_BYTE_UNITS: tuple[tuple[str, int], ...] = (
    ("PB", 15),
    ("TB", 12),
    ("GB", 9),
    ("MB", 6),
    ("KB", 3),
)


def describe_bytes(value: int) -> str:
    """Render a byte count with a decimal unit, e.g. 10**12 -> '1TB'."""
    for unit, exponent in _BYTE_UNITS:
        scale = 10**exponent
        if value >= scale:
            return f"{value / scale:g}{unit}"
    return f"{value} bytes"


def describe_window(seconds: int) -> str:
    """Render a window length, e.g. 3600 -> '1 hour'."""
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size and seconds % size == 0:
            count = seconds // size
            return f"{count} {unit}" if count == 1 else f"{count} {unit}s"
    return f"{seconds} seconds"


# =============================================================================
# Identity and handles
# =============================================================================


class ResourceDescriptor(BaseModel):
    """Identity of a cloud resource: ``name`` is unique within kind and project.

    For log metrics ``name`` is the metric id; for every other kind it is the
    display name.
    """

    model_config = {"frozen": True}

    kind: ResourceKind
    name: Annotated[str, Field(min_length=1)]
    project: Annotated[str, Field(min_length=1)]

    @property
    def parent(self) -> str:
        return f"projects/{self.project}"

    def __str__(self) -> str:
        return f"{self.kind.value}/{self.name}"


@dataclass(frozen=True)
class ExistingResourceHandle:
    """Identifier handed back by Google Cloud for a found or created resource.

    Attributes:
        kind: Resource kind
        name: Full resource name (e.g. projects/p/notificationChannels/123)
        display_name: Human readable name, when the resource has one
        attributes: Extra fields worth reporting (verification status, etag)
    """

    kind: ResourceKind
    name: str
    display_name: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Desired state
# =============================================================================


class ReconciliationSpec(BaseModel):
    """Base desired-state payload. Immutable once built for a run."""

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    kind: ClassVar[ResourceKind]

    def to_payload(self) -> dict[str, Any]:
        """Convert to the JSON document accepted by the Cloud API."""
        raise NotImplementedError("Subclasses must implement to_payload")


class LogMetricSpec(ReconciliationSpec):
    """Distribution log-based metric over BigQuery billed bytes."""

    kind: ClassVar[ResourceKind] = ResourceKind.LOG_METRIC

    name: Annotated[str, Field(min_length=1, max_length=100)]
    description: str = DEFAULT_METRIC_DESCRIPTION
    filter: str = BILLED_BYTES_LOG_FILTER
    value_extractor: str = Field(
        f"EXTRACT({BILLED_BYTES_FIELD})", alias="valueExtractor"
    )
    label_extractors: dict[str, str] = Field(
        default_factory=lambda: {"user": f"EXTRACT({PRINCIPAL_EMAIL_FIELD})"},
        alias="labelExtractors",
    )
    metric_kind: str = Field("DELTA", alias="metricKind")
    value_type: str = Field("DISTRIBUTION", alias="valueType")
    unit: str = "By"
    # Exponential buckets from 1 byte up to 2^63 bytes
    num_finite_buckets: Annotated[int, Field(ge=1, le=200, alias="numFiniteBuckets")] = 64
    growth_factor: Annotated[float, Field(gt=1, alias="growthFactor")] = 2.0

    @field_validator("metric_kind")
    @classmethod
    def validate_metric_kind(cls, v: str) -> str:
        valid = {"DELTA", "GAUGE", "CUMULATIVE"}
        if v not in valid:
            raise ValueError(f"metric_kind must be one of {valid}")
        return v

    def to_payload(self) -> dict[str, Any]:
        """Convert to a Cloud Logging LogMetric document."""
        return {
            "name": self.name,
            "description": self.description,
            "filter": self.filter,
            "metricDescriptor": {
                "metricKind": self.metric_kind,
                "valueType": self.value_type,
                "unit": self.unit,
                "labels": [
                    {"key": key, "valueType": "STRING"} for key in sorted(self.label_extractors)
                ],
            },
            "valueExtractor": self.value_extractor,
            "labelExtractors": dict(self.label_extractors),
            "bucketOptions": {
                "exponentialBuckets": {
                    "numFiniteBuckets": self.num_finite_buckets,
                    "growthFactor": self.growth_factor,
                    "scale": 1,
                }
            },
        }

    @classmethod
    def from_config(cls, config: Config) -> LogMetricSpec:
        return cls(name=config.metric_name)


class NotificationChannelSpec(ReconciliationSpec):
    """E-mail notification channel."""

    kind: ClassVar[ResourceKind] = ResourceKind.NOTIFICATION_CHANNEL

    display_name: str = Field(DEFAULT_CHANNEL_DISPLAY_NAME, alias="displayName")
    description: str = DEFAULT_CHANNEL_DESCRIPTION
    channel_type: str = Field("email", alias="type")
    email_address: str = Field(alias="emailAddress")

    @field_validator("email_address")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not re.match(VALID_EMAIL_PATTERN, v):
            raise ValueError(f"not a valid e-mail address: {v}")
        return v

    @property
    def labels(self) -> dict[str, str]:
        return {"email_address": self.email_address}

    def matches(self, channel_type: str | None, labels: dict[str, Any] | None) -> bool:
        """Whether an existing channel delivers to the same address."""
        return channel_type == self.channel_type and (labels or {}).get(
            "email_address"
        ) == self.email_address

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.channel_type,
            "displayName": self.display_name,
            "description": self.description,
            "labels": self.labels,
            "enabled": True,
        }

    @classmethod
    def from_config(cls, config: Config) -> NotificationChannelSpec:
        return cls(email_address=config.notification_email)


class AlertPolicySpec(ReconciliationSpec):
    """Threshold alert on the summed billed bytes over a window."""

    kind: ClassVar[ResourceKind] = ResourceKind.ALERT_POLICY

    display_name: Annotated[str, Field(min_length=1, alias="displayName")]
    metric_name: Annotated[str, Field(min_length=1, alias="metricName")]
    threshold_bytes: Annotated[int, Field(gt=0, alias="thresholdBytes")]
    window_seconds: Annotated[int, Field(ge=60, alias="windowSeconds")]
    notification_channels: tuple[str, ...] = Field((), alias="notificationChannels")
    documentation: str = DEFAULT_POLICY_DOCUMENTATION

    @property
    def metric_filter(self) -> str:
        return (
            f'metric.type="logging.googleapis.com/user/{self.metric_name}" '
            f'AND resource.type="{BIGQUERY_RESOURCE_TYPE}"'
        )

    @property
    def condition_display_name(self) -> str:
        return (
            f"Total BQ Billed Bytes over {describe_bytes(self.threshold_bytes)} "
            f"in {describe_window(self.window_seconds)}"
        )

    def condition_payload(self) -> dict[str, Any]:
        """The single threshold condition: window sum strictly above threshold."""
        return {
            "displayName": self.condition_display_name,
            "conditionThreshold": {
                "aggregations": [
                    {
                        "alignmentPeriod": f"{self.window_seconds}s",
                        "crossSeriesReducer": "REDUCE_SUM",
                        "perSeriesAligner": "ALIGN_SUM",
                    }
                ],
                "comparison": "COMPARISON_GT",
                "duration": "0s",
                "filter": self.metric_filter,
                "thresholdValue": self.threshold_bytes,
                "trigger": {"count": 1},
            },
        }

    def to_payload(self) -> dict[str, Any]:
        return {
            "displayName": self.display_name,
            "combiner": "OR",
            "conditions": [self.condition_payload()],
            "notificationChannels": list(self.notification_channels),
            "documentation": {"content": self.documentation, "mimeType": "text/markdown"},
            "enabled": True,
        }

    def with_channels(self, *channels: str) -> AlertPolicySpec:
        return self.model_copy(update={"notification_channels": tuple(channels)})

    @classmethod
    def from_config(cls, config: Config, channel_name: str | None = None) -> AlertPolicySpec:
        return cls(
            display_name=config.policy_name,
            metric_name=config.metric_name,
            threshold_bytes=config.threshold_bytes,
            window_seconds=config.window_seconds,
            notification_channels=(channel_name,) if channel_name else (),
        )


class DashboardSpec(ReconciliationSpec):
    """Dashboard layout, submitted as-is."""

    kind: ClassVar[ResourceKind] = ResourceKind.DASHBOARD

    layout: dict[str, Any]

    @field_validator("layout")
    @classmethod
    def validate_layout(cls, v: dict[str, Any]) -> dict[str, Any]:
        if not v.get("displayName"):
            raise ValueError("dashboard layout must define a displayName")
        return v

    @property
    def display_name(self) -> str:
        return str(self.layout["displayName"])

    def to_payload(self) -> dict[str, Any]:
        return dict(self.layout)


def descriptor_for(spec: ReconciliationSpec, project: str) -> ResourceDescriptor:
    """Build the descriptor that identifies ``spec`` within ``project``."""
    if isinstance(spec, LogMetricSpec):
        name = spec.name
    elif isinstance(spec, (NotificationChannelSpec, AlertPolicySpec, DashboardSpec)):
        name = spec.display_name
    else:
        raise ValueError(f"Unsupported spec type: {type(spec).__name__}")
    return ResourceDescriptor(kind=spec.kind, name=name, project=project)
