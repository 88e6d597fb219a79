"""Tests for logging setup, configuration loading and client wiring."""

import json
import logging
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from gcp_mock import FakeMonitoringClient, MockCloudState

from bq_cost_monitor.cloud_api import CloudApiClient
from bq_cost_monitor.config import Backend, Config, ConfigurationError
from bq_cost_monitor.gcloud import GcloudClient
from bq_cost_monitor.main import (
    JsonFormatter,
    build_client,
    deploy,
    load_config,
    setup_logging,
)
from bq_cost_monitor.prerequisites import PrerequisiteError

PROJECT = "bq-cost-test"
EMAIL = "oncall@example.com"


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


class TestJsonFormatter:
    def test_format_with_extra(self) -> None:
        record = logging.LogRecord(
            name="bq_cost_monitor.reconciler",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Deployment %s",
            args=("finished",),
            exc_info=None,
        )
        record.project_id = PROJECT

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Deployment finished"
        assert data["level"] == "INFO"
        assert data["logger"] == "bq_cost_monitor.reconciler"
        assert data["project_id"] == PROJECT
        assert data["timestamp"].endswith("Z")
        assert "pathname" not in data

    def test_format_exception(self) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "x", logging.ERROR, __file__, 1, "failed", (), exc_info=sys.exc_info()
            )

        data = json.loads(JsonFormatter().format(record))

        assert "ValueError: boom" in data["exception"]


class TestSetupLogging:
    def test_text_format(self, restore_root_logger: logging.Logger) -> None:
        setup_logging("text")

        handlers = [h for h in restore_root_logger.handlers if h.get_name() == "bqmon"]
        assert len(handlers) == 1
        assert not isinstance(handlers[0].formatter, JsonFormatter)
        assert restore_root_logger.level == logging.INFO

    def test_json_verbose(self, restore_root_logger: logging.Logger) -> None:
        setup_logging("json", verbose=True)

        handler = next(h for h in restore_root_logger.handlers if h.get_name() == "bqmon")
        assert isinstance(handler.formatter, JsonFormatter)
        assert restore_root_logger.level == logging.DEBUG
        assert logging.getLogger("google").level == logging.WARNING

    def test_replaces_previous_handler(self, restore_root_logger: logging.Logger) -> None:
        setup_logging("text")
        setup_logging("json")

        handlers = [h for h in restore_root_logger.handlers if h.get_name() == "bqmon"]
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, JsonFormatter)


class TestLoadConfig:
    """Tests for load_config."""

    def test_overrides(self) -> None:
        config = load_config({"project_id": PROJECT, "notification_email": EMAIL, "dry_run": None})

        assert config.project_id == PROJECT
        assert config.dry_run is False

    def test_settings_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        settings = tmp_path / "bqmon.yaml"
        settings.write_text(f"projectId: {PROJECT}\nnotificationEmail: {EMAIL}\nthresholdTerabytes: 3\n")
        monkeypatch.setenv("ALERT_WINDOW_SECONDS", "7200")

        config = load_config({"metric_name": "from_cli"}, settings)

        assert config.project_id == PROJECT
        assert config.threshold_bytes == 3 * 10**12
        assert config.window_seconds == 7200
        assert config.metric_name == "from_cli"

    def test_default_project_from_gcloud(self) -> None:
        with patch("bq_cost_monitor.prerequisites.shutil.which", return_value="/usr/bin/gcloud"):
            config = load_config(
                {"notification_email": EMAIL},
                runner=lambda cmd: "active-project\n",
            )

        assert config.project_id == "active-project"

    def test_placeholder_email_skips_project_lookup(self) -> None:
        def runner(cmd: list[str]) -> str:
            raise AssertionError("gcloud must not be invoked")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config({}, runner=runner)

        message = str(exc_info.value)
        assert "NOTIFICATION_EMAIL still holds the placeholder" in message
        assert "project ID is not set" in message

    def test_malformed_email_skips_project_lookup(self) -> None:
        def runner(cmd: list[str]) -> str:
            raise AssertionError("gcloud must not be invoked")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config({"notification_email": "not-an-address"}, runner=runner)

        assert "NOTIFICATION_EMAIL is not a valid address" in str(exc_info.value)

    def test_unset_default_project(self) -> None:
        with patch("bq_cost_monitor.prerequisites.shutil.which", return_value="/usr/bin/gcloud"):
            with pytest.raises(ConfigurationError) as exc_info:
                load_config({"notification_email": EMAIL}, runner=lambda cmd: "(unset)\n")

        assert "project ID is not set" in str(exc_info.value)

    def test_missing_gcloud_for_default_project(self) -> None:
        with patch("bq_cost_monitor.prerequisites.shutil.which", return_value=None):
            with pytest.raises(PrerequisiteError):
                load_config({"notification_email": EMAIL})

    def test_invalid_backend_reported_by_config(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            load_config({"notification_email": EMAIL, "backend": "terraform"})

        assert "MONITORING_BACKEND" in str(exc_info.value)


class TestBuildClient:
    def test_gcloud_backend(self) -> None:
        config = Config(project_id=PROJECT, notification_email=EMAIL)
        client = build_client(config)

        assert isinstance(client, GcloudClient)
        assert client.project_id == PROJECT

    def test_api_backend(self) -> None:
        config = Config(project_id=PROJECT, notification_email=EMAIL, backend=Backend.API)
        client = build_client(config)

        assert isinstance(client, CloudApiClient)
        assert client.project_id == PROJECT


class TestDeploy:
    def test_with_client(self) -> None:
        config = Config(project_id=PROJECT, notification_email=EMAIL)
        client = FakeMonitoringClient(MockCloudState(PROJECT))

        result = deploy(config, client)

        assert result.success
        assert len(result.results) == 4

    def test_checks_prerequisites_without_client(self) -> None:
        config = Config(project_id=PROJECT, notification_email=EMAIL)

        with patch("bq_cost_monitor.prerequisites.shutil.which", return_value=None):
            with pytest.raises(PrerequisiteError):
                deploy(config)
