"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for gcp_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

CONFIG_ENV_VARS = (
    "GCP_PROJECT_ID",
    "GOOGLE_CLOUD_PROJECT",
    "BQ_METRIC_NAME",
    "BQ_ALERT_POLICY_NAME",
    "NOTIFICATION_EMAIL",
    "THRESHOLD_BYTES",
    "ALERT_WINDOW_SECONDS",
    "DASHBOARD_FILE",
    "MONITORING_BACKEND",
    "DRY_RUN",
    "CONTINUE_ON_ERROR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's shell configuration out of every test."""
    for key in CONFIG_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
