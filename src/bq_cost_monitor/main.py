"""Deployment entry points shared by the CLI.

Wires configuration, prerequisite checks, the monitoring client and the
deployer together, and owns logging setup.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .cloud_api import CloudApiClient
from .config import PLACEHOLDER_NOTIFICATION_EMAIL, VALID_EMAIL_PATTERN, Backend, Config
from .gcloud import GcloudClient, GcloudRunner
from .layout_loader import load_settings
from .monitoring_client import MonitoringClient
from .prerequisites import check_prerequisites, default_project_id
from .reconciler import Deployer, DeploymentResult

logger = logging.getLogger(__name__)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)

TEXT_LOG_FORMAT = "[%(levelname)s] %(message)s"


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_format: str = "text", verbose: bool = False) -> None:
    """Configure logging on stderr.

    ``text`` prints ``[LEVEL] message`` lines; ``json`` prints one JSON object
    per record. Calling this again replaces the handler installed earlier.
    """
    handler = logging.StreamHandler(sys.stderr)
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_LOG_FORMAT))
    handler.set_name("bqmon")

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == "bqmon":
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Reduce noise from the Google client libraries
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_config(
    overrides: Mapping[str, Any] | None = None,
    settings_file: Path | None = None,
    runner: GcloudRunner | None = None,
) -> Config:
    """Build the validated configuration.

    Precedence: ``overrides`` (command line) > environment > settings file.
    When no project is configured anywhere, the active gcloud project (or the
    Application Default Credentials project) is used. That lookup is skipped
    while the notification address is missing, the placeholder or malformed,
    so a misconfigured run fails without touching gcloud.

    Raises:
        ConfigurationError: If the configuration is invalid.
        PrerequisiteError: If the default project cannot be determined.
    """
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
    defaults = load_settings(settings_file) if settings_file else {}

    def effective(name: str, env_key: str) -> Any:
        return overrides.get(name) or os.environ.get(env_key) or defaults.get(name)

    project_id = effective("project_id", "GCP_PROJECT_ID") or os.environ.get(
        "GOOGLE_CLOUD_PROJECT"
    )
    email = effective("notification_email", "NOTIFICATION_EMAIL")

    address_usable = (
        email is not None
        and email != PLACEHOLDER_NOTIFICATION_EMAIL
        and re.match(VALID_EMAIL_PATTERN, email) is not None
    )
    if not project_id and address_usable:
        value = effective("backend", "MONITORING_BACKEND") or Backend.GCLOUD
        try:
            backend = value if isinstance(value, Backend) else Backend(str(value).lower())
        except ValueError:
            backend = None  # Config reports the bad value
        if backend is not None:
            project_id = default_project_id(backend, runner)
            if project_id:
                logger.info("No project configured, using default project: %s", project_id)
                overrides["project_id"] = project_id

    return Config.from_env(overrides=overrides, defaults=defaults)


def build_client(config: Config, runner: GcloudRunner | None = None) -> MonitoringClient:
    """Create the monitoring client for the configured backend."""
    if config.backend == Backend.API:
        return CloudApiClient(config.project_id)
    return GcloudClient(config.project_id, runner=runner)


def deploy(config: Config, client: MonitoringClient | None = None) -> DeploymentResult:
    """Run the whole pipeline once.

    When no client is given, prerequisites are checked and one is built for
    the configured backend.

    Raises:
        PrerequisiteError: If the environment cannot support the deployment.
        LayoutLoadError: If the dashboard layout is invalid.
    """
    if client is None:
        logger.info("Starting prerequisite checks...")
        check_prerequisites(config)
        client = build_client(config)

    return Deployer(config, client).run()
