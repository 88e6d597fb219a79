"""Configuration management with validation.

All settings are validated once, at the boundary, so that a bad value is
reported before any call reaches Cloud Logging or Cloud Monitoring.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class Backend(str, Enum):
    """Supported ways of talking to Google Cloud."""

    GCLOUD = "gcloud"
    API = "api"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Resource defaults
DEFAULT_METRIC_NAME = "bq_billed_bytes_rt"
DEFAULT_ALERT_POLICY_NAME = "bq-cost-spike-alert"
PLACEHOLDER_NOTIFICATION_EMAIL = "your-email@example.com"

BYTES_PER_TERABYTE = 10**12
DEFAULT_THRESHOLD_BYTES = BYTES_PER_TERABYTE
DEFAULT_WINDOW_SECONDS = 3600
MIN_WINDOW_SECONDS = 60
MAX_WINDOW_SECONDS = 86400

DEFAULT_DASHBOARD_FILE = Path(__file__).parent / "layouts" / "bq_cost_dashboard.json"

# Size limits for files read from disk
MAX_LAYOUT_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max dashboard layout
MAX_SETTINGS_FILE_SIZE_BYTES = 64 * 1024

MAX_METRIC_NAME_LENGTH = 100
MAX_DISPLAY_NAME_LENGTH = 512

# Input validation patterns
VALID_PROJECT_ID_PATTERN = r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$"
VALID_METRIC_NAME_PATTERN = r"^[A-Za-z0-9_.\-/]+$"
VALID_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def terabytes_to_bytes(terabytes: float) -> int:
    """Scale a decimal terabyte figure to bytes."""
    return int(round(terabytes * BYTES_PER_TERABYTE))


@dataclass(frozen=True)
class Config:
    """Deployment configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing half way through
    a deployment.
    """

    project_id: str
    notification_email: str = PLACEHOLDER_NOTIFICATION_EMAIL
    metric_name: str = DEFAULT_METRIC_NAME
    policy_name: str = DEFAULT_ALERT_POLICY_NAME
    threshold_bytes: int = DEFAULT_THRESHOLD_BYTES
    window_seconds: int = DEFAULT_WINDOW_SECONDS

    dashboard_file: Path = field(default_factory=lambda: DEFAULT_DASHBOARD_FILE)
    backend: Backend = Backend.GCLOUD

    # Behavior
    dry_run: bool = False
    continue_on_error: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.project_id:
            errors.append(
                "Google Cloud project ID is not set. "
                "Run 'gcloud config set project YOUR_PROJECT_ID' or set GCP_PROJECT_ID"
            )
        elif not re.match(VALID_PROJECT_ID_PATTERN, self.project_id):
            errors.append(
                f"GCP_PROJECT_ID must match pattern {VALID_PROJECT_ID_PATTERN}: {self.project_id}"
            )

        if not self.metric_name:
            errors.append("BQ_METRIC_NAME is required")
        elif len(self.metric_name) > MAX_METRIC_NAME_LENGTH:
            errors.append(f"BQ_METRIC_NAME exceeds maximum length of {MAX_METRIC_NAME_LENGTH}")
        elif not re.match(VALID_METRIC_NAME_PATTERN, self.metric_name):
            errors.append(
                f"BQ_METRIC_NAME may only contain letters, digits and _.-/: {self.metric_name}"
            )

        if not self.policy_name or not self.policy_name.strip():
            errors.append("BQ_ALERT_POLICY_NAME is required")
        elif len(self.policy_name) > MAX_DISPLAY_NAME_LENGTH:
            errors.append(
                f"BQ_ALERT_POLICY_NAME exceeds maximum length of {MAX_DISPLAY_NAME_LENGTH}"
            )

        if self.notification_email == PLACEHOLDER_NOTIFICATION_EMAIL:
            errors.append(
                "NOTIFICATION_EMAIL still holds the placeholder "
                f"'{PLACEHOLDER_NOTIFICATION_EMAIL}'. Set a real address"
            )
        elif not re.match(VALID_EMAIL_PATTERN, self.notification_email or ""):
            errors.append(f"NOTIFICATION_EMAIL is not a valid address: {self.notification_email}")

        if self.threshold_bytes <= 0:
            errors.append("THRESHOLD_BYTES must be a positive number of bytes")

        if not MIN_WINDOW_SECONDS <= self.window_seconds <= MAX_WINDOW_SECONDS:
            errors.append(
                f"ALERT_WINDOW_SECONDS must be between {MIN_WINDOW_SECONDS} "
                f"and {MAX_WINDOW_SECONDS} seconds"
            )
        elif self.window_seconds % 60:
            errors.append("ALERT_WINDOW_SECONDS must be a whole number of minutes")

        if not self.dashboard_file.exists():
            errors.append(f"Dashboard layout file does not exist: {self.dashboard_file}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def metric_type(self) -> str:
        """Cloud Monitoring metric type of the log-based metric."""
        return f"logging.googleapis.com/user/{self.metric_name}"

    @classmethod
    def from_env(
        cls,
        overrides: Mapping[str, Any] | None = None,
        defaults: Mapping[str, Any] | None = None,
    ) -> Config:
        """Load configuration from environment variables.

        Values in ``overrides`` (command-line options) win over the
        environment, which wins over ``defaults`` (the settings file).
        ``None`` values are treated as unset.

        Environment Variables:
            GCP_PROJECT_ID: Project to deploy into (falls back to GOOGLE_CLOUD_PROJECT)
            BQ_METRIC_NAME: Log-based metric id (default: bq_billed_bytes_rt)
            BQ_ALERT_POLICY_NAME: Alert policy display name (default: bq-cost-spike-alert)
            NOTIFICATION_EMAIL: Address that receives alert notifications
            THRESHOLD_BYTES: Alert threshold in bytes (default: 10^12)
            ALERT_WINDOW_SECONDS: Aggregation window (default: 3600)
            DASHBOARD_FILE: Dashboard layout JSON/YAML (default: packaged layout)
            MONITORING_BACKEND: gcloud or api (default: gcloud)
            DRY_RUN: If "true", only report what would change (default: false)
            CONTINUE_ON_ERROR: If "true", keep going after a failed step (default: false)
        """
        overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
        defaults = {k: v for k, v in (defaults or {}).items() if v is not None}

        def get(name: str, *env_keys: str, default: Any = None) -> Any:
            if name in overrides:
                return overrides[name]
            for key in env_keys:
                value = os.environ.get(key)
                if value:
                    return value
            return defaults.get(name, default)

        def get_int(name: str, key: str, default: int) -> int:
            value = get(name, key, default=default)
            try:
                return int(value)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(name: str, key: str) -> bool:
            value = get(name, key, default=False)
            if isinstance(value, bool):
                return value
            return str(value).lower() in ("true", "1", "yes")

        def get_backend(value: Any) -> Backend:
            if isinstance(value, Backend):
                return value
            try:
                return Backend(str(value).lower())
            except ValueError as e:
                valid = [b.value for b in Backend]
                raise ConfigurationError(f"MONITORING_BACKEND must be one of {valid}: {value}") from e

        return cls(
            project_id=get("project_id", "GCP_PROJECT_ID", "GOOGLE_CLOUD_PROJECT", default=""),
            notification_email=get(
                "notification_email", "NOTIFICATION_EMAIL", default=PLACEHOLDER_NOTIFICATION_EMAIL
            ),
            metric_name=get("metric_name", "BQ_METRIC_NAME", default=DEFAULT_METRIC_NAME),
            policy_name=get("policy_name", "BQ_ALERT_POLICY_NAME", default=DEFAULT_ALERT_POLICY_NAME),
            threshold_bytes=get_int("threshold_bytes", "THRESHOLD_BYTES", DEFAULT_THRESHOLD_BYTES),
            window_seconds=get_int("window_seconds", "ALERT_WINDOW_SECONDS", DEFAULT_WINDOW_SECONDS),
            dashboard_file=Path(get("dashboard_file", "DASHBOARD_FILE", default=DEFAULT_DASHBOARD_FILE)),
            backend=get_backend(get("backend", "MONITORING_BACKEND", default=Backend.GCLOUD)),
            dry_run=get_bool("dry_run", "DRY_RUN"),
            continue_on_error=get_bool("continue_on_error", "CONTINUE_ON_ERROR"),
        )
