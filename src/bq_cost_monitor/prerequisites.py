"""Prerequisite checks performed before any mutating call.

Missing prerequisites are detected eagerly so a run never fails half way
through for a reason that was knowable up front.
"""

from __future__ import annotations

import logging
import shutil

import google.auth
from google.auth.exceptions import DefaultCredentialsError

from .config import Backend, Config
from .gcloud import GCLOUD_BINARY, GcloudRunner, run_gcloud
from .monitoring_client import MonitoringApiError

logger = logging.getLogger(__name__)

# gcloud prints this when a property has no value
UNSET_PROPERTY_MARKER = "(unset)"


class PrerequisiteError(Exception):
    """Raised when the environment cannot support a deployment."""

    pass


def require_gcloud(binary: str = GCLOUD_BINARY) -> None:
    """Check that the gcloud CLI is installed and on PATH."""
    if not shutil.which(binary):
        raise PrerequisiteError(
            f"{binary} command not found. Please install the Google Cloud SDK "
            "and ensure it's in your PATH."
        )


def require_application_default_credentials() -> None:
    """Check that Application Default Credentials can be loaded."""
    try:
        google.auth.default()
    except DefaultCredentialsError as e:
        raise PrerequisiteError(f"Application Default Credentials are not configured: {e}") from e


def default_project_id(backend: Backend, runner: GcloudRunner | None = None) -> str | None:
    """Resolve the caller's default project.

    gcloud backend: ``gcloud config get-value project``.
    api backend: the project attached to Application Default Credentials.
    """
    if backend == Backend.GCLOUD:
        require_gcloud()
        try:
            output = (runner or run_gcloud)([GCLOUD_BINARY, "config", "get-value", "project"])
        except MonitoringApiError as e:
            raise PrerequisiteError(f"Could not read the active gcloud project: {e}") from e
        project = output.strip()
        if not project or project == UNSET_PROPERTY_MARKER:
            return None
        return project

    try:
        _, project = google.auth.default()
    except DefaultCredentialsError as e:
        raise PrerequisiteError(f"Application Default Credentials are not configured: {e}") from e
    return project or None


def check_prerequisites(config: Config) -> None:
    """Verify everything a deployment with ``config`` needs is available."""
    if config.backend == Backend.GCLOUD:
        require_gcloud()
    else:
        require_application_default_credentials()
    logger.info("Prerequisite checks passed.")
