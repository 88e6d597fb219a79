"""Dashboard layout and settings file loading with validation.

All file operations enforce size limits. Input validation is performed at
the boundary.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from string import Template
from typing import Annotated, Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .config import (
    MAX_LAYOUT_FILE_SIZE_BYTES,
    MAX_SETTINGS_FILE_SIZE_BYTES,
    Backend,
    Config,
    ConfigurationError,
    terabytes_to_bytes,
)
from .models import DashboardSpec

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


class LayoutLoadError(Exception):
    """Raised when a dashboard layout cannot be loaded or fails validation."""

    pass


class SettingsFile(BaseModel):
    """Schema of the optional YAML settings file."""

    model_config = {"extra": "forbid"}

    project_id: str | None = Field(None, alias="projectId")
    metric_name: str | None = Field(None, alias="metricName")
    policy_name: str | None = Field(None, alias="alertPolicyName")
    notification_email: str | None = Field(None, alias="notificationEmail")
    threshold_bytes: Annotated[int, Field(gt=0)] | None = Field(None, alias="thresholdBytes")
    threshold_terabytes: Annotated[float, Field(gt=0)] | None = Field(
        None, alias="thresholdTerabytes"
    )
    window_seconds: int | None = Field(None, alias="windowSeconds")
    dashboard_file: str | None = Field(None, alias="dashboardFile")
    backend: Backend | None = None

    @model_validator(mode="after")
    def check_single_threshold(self) -> SettingsFile:
        if self.threshold_bytes is not None and self.threshold_terabytes is not None:
            raise ValueError("set either thresholdBytes or thresholdTerabytes, not both")
        return self

    def to_defaults(self, base_dir: Path) -> dict[str, Any]:
        """Convert to keyword defaults for Config.from_env.

        Relative dashboard paths resolve against the settings file directory.
        """
        defaults = self.model_dump(exclude={"threshold_terabytes"}, exclude_none=True)
        if self.threshold_terabytes is not None:
            defaults["threshold_bytes"] = terabytes_to_bytes(self.threshold_terabytes)
        if self.dashboard_file:
            path = Path(self.dashboard_file)
            defaults["dashboard_file"] = path if path.is_absolute() else base_dir / path
        return defaults


def _read_bounded(path: Path, limit: int, error_cls: type[Exception]) -> str:
    if not path.exists():
        raise error_cls(f"File not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise error_cls(f"Failed to stat {path}: {e}") from e

    if file_size > limit:
        raise error_cls(f"File exceeds maximum size of {limit} bytes: {path}")

    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise error_cls(f"Failed to read {path}: {e}") from e


def load_settings(path: Path) -> dict[str, Any]:
    """Load the YAML settings file.

    Returns:
        Keyword defaults suitable for ``Config.from_env(defaults=...)``.

    Raises:
        ConfigurationError: If the file cannot be read or fails validation.
    """
    content = _read_bounded(path, MAX_SETTINGS_FILE_SIZE_BYTES, ConfigurationError)

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise ConfigurationError(f"Settings file must contain a YAML mapping: {path}")

    try:
        settings = SettingsFile.model_validate(raw_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise ConfigurationError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info("Loaded settings from %s", path)
    return settings.to_defaults(path.parent)


def render_layout(content: str, config: Config) -> str:
    """Substitute ``${metric_name}``, ``${project_id}`` and ``${window_seconds}``.

    Unknown placeholders are left untouched.
    """
    return Template(content).safe_substitute(
        metric_name=config.metric_name,
        project_id=config.project_id,
        window_seconds=str(config.window_seconds),
    )


def load_dashboard(config: Config) -> DashboardSpec:
    """Load and validate the dashboard layout named by the configuration.

    JSON is the default format; ``.yaml``/``.yml`` files are parsed as YAML.

    Raises:
        LayoutLoadError: If the layout cannot be loaded or fails validation.
    """
    layout_path = config.dashboard_file
    content = render_layout(
        _read_bounded(layout_path, MAX_LAYOUT_FILE_SIZE_BYTES, LayoutLoadError), config
    )

    if layout_path.suffix.lower() in YAML_SUFFIXES:
        try:
            layout = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise LayoutLoadError(f"Invalid YAML in {layout_path}: {e}") from e
    else:
        try:
            layout = json.loads(content)
        except json.JSONDecodeError as e:
            raise LayoutLoadError(f"Invalid JSON in {layout_path}: {e}") from e

    if not isinstance(layout, dict):
        raise LayoutLoadError(f"Dashboard layout must be a mapping: {layout_path}")

    try:
        spec = DashboardSpec(layout=layout)
    except ValidationError as e:
        raise LayoutLoadError(f"Invalid dashboard layout {layout_path}: {e}") from e

    logger.info(
        "Loaded dashboard layout '%s' from %s",
        spec.display_name,
        layout_path,
    )
    return spec
