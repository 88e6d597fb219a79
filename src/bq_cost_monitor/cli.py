"""BigQuery cost monitoring CLI (bqmon).

Usage:
    bqmon deploy --email oncall@example.com          # Deploy all resources
    bqmon deploy --dry-run                           # Report what would change
    bqmon render policy --threshold-tb 2             # Print a payload
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import click

from . import __version__
from .config import Backend, ConfigurationError, terabytes_to_bytes
from .layout_loader import LayoutLoadError, load_dashboard
from .main import deploy, load_config, setup_logging
from .models import (
    AlertPolicySpec,
    LogMetricSpec,
    NotificationChannelSpec,
    ResourceKind,
)
from .prerequisites import PrerequisiteError
from .reconciler import PENDING_NAME

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

RENDER_TARGETS = ("metric", "channel", "policy", "dashboard")


def config_options(func: F) -> F:
    """Options shared by every command that needs a Config."""
    options = [
        click.option(
            "--config",
            "settings_file",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            help="YAML settings file.",
        ),
        click.option("--project", "project_id", help="Google Cloud project ID."),
        click.option("--email", "notification_email", help="Address that receives alerts."),
        click.option("--metric-name", help="Log-based metric id."),
        click.option("--policy-name", help="Alert policy display name."),
        click.option(
            "--threshold-bytes", type=click.IntRange(min=1), help="Alert threshold in bytes."
        ),
        click.option(
            "--threshold-tb",
            type=click.FloatRange(min=0, min_open=True),
            help="Alert threshold in decimal terabytes.",
        ),
        click.option("--window-seconds", type=int, help="Aggregation window in seconds."),
        click.option(
            "--dashboard-file",
            type=click.Path(dir_okay=False, path_type=Path),
            help="Dashboard layout (JSON or YAML).",
        ),
        click.option(
            "--backend",
            type=click.Choice([b.value for b in Backend]),
            help="Talk to Google Cloud through the gcloud CLI or the client libraries.",
        ),
        click.option(
            "--log-format",
            type=click.Choice(["text", "json"]),
            default="text",
            show_default=True,
        ),
        click.option("-v", "--verbose", is_flag=True, help="Enable debug logging."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_overrides(
    *,
    project_id: str | None,
    notification_email: str | None,
    metric_name: str | None,
    policy_name: str | None,
    threshold_bytes: int | None,
    threshold_tb: float | None,
    window_seconds: int | None,
    dashboard_file: Path | None,
    backend: str | None,
    **flags: bool,
) -> dict[str, Any]:
    """Turn command-line options into Config overrides (None means unset)."""
    if threshold_bytes is not None and threshold_tb is not None:
        raise click.UsageError("Use either --threshold-bytes or --threshold-tb, not both.")
    if threshold_tb is not None:
        threshold_bytes = terabytes_to_bytes(threshold_tb)

    overrides: dict[str, Any] = {
        "project_id": project_id,
        "notification_email": notification_email,
        "metric_name": metric_name,
        "policy_name": policy_name,
        "threshold_bytes": threshold_bytes,
        "window_seconds": window_seconds,
        "dashboard_file": dashboard_file,
        "backend": backend,
    }
    # Flags only ever switch behavior on; the environment decides otherwise
    for name, value in flags.items():
        overrides[name] = True if value else None
    return overrides


@click.group()
@click.version_option(version=__version__, prog_name="bqmon")
def cli() -> None:
    """BigQuery cost monitoring CLI (bqmon).

    Deploys a log-based metric, an e-mail notification channel, an alert
    policy and a dashboard that together give near-real-time visibility of
    BigQuery bytes billed. Safe to re-run.
    """
    pass


@cli.command("deploy")
@config_options
@click.option("--dry-run", is_flag=True, help="Only report what would change.")
@click.option(
    "--continue-on-error",
    is_flag=True,
    help="Keep going after a failed step (the dashboard does not depend on the others).",
)
def deploy_command(
    settings_file: Path | None,
    log_format: str,
    verbose: bool,
    dry_run: bool,
    continue_on_error: bool,
    **options: Any,
) -> None:
    """Create any missing monitoring resources and overwrite the dashboard."""
    setup_logging(log_format, verbose)

    try:
        overrides = build_overrides(
            dry_run=dry_run, continue_on_error=continue_on_error, **options
        )
        config = load_config(overrides, settings_file)
        logger.info("Using project: %s", config.project_id)
        result = deploy(config)
    except (ConfigurationError, PrerequisiteError, LayoutLoadError) as e:
        logger.error("%s", e)
        sys.exit(1)

    for step in result.results:
        logger.info(
            "%s: %s",
            step.descriptor,
            step.action.value,
            extra={"handle": step.handle.name if step.handle else None},
        )

    channel = result.get(ResourceKind.NOTIFICATION_CHANNEL)
    if channel is not None and channel.handle is not None:
        click.echo(f"Using Notification Channel: {channel.handle.name}")

    if result.success:
        logger.info("Script execution finished successfully.")
    sys.exit(result.exit_code)


@cli.command("render")
@click.argument("target", type=click.Choice(RENDER_TARGETS))
@config_options
@click.option(
    "--channel",
    "channel_name",
    help="Notification channel name to reference from the policy.",
)
def render_command(
    target: str,
    settings_file: Path | None,
    log_format: str,
    verbose: bool,
    channel_name: str | None,
    **options: Any,
) -> None:
    """Print the JSON payload that deploy would submit for TARGET."""
    setup_logging(log_format, verbose)

    try:
        config = load_config(build_overrides(**options), settings_file)
        if target == "metric":
            payload = LogMetricSpec.from_config(config).to_payload()
        elif target == "channel":
            payload = NotificationChannelSpec.from_config(config).to_payload()
        elif target == "policy":
            channel = channel_name or (
                f"projects/{config.project_id}/notificationChannels/{PENDING_NAME}"
            )
            payload = AlertPolicySpec.from_config(config, channel).to_payload()
        else:
            payload = load_dashboard(config).to_payload()
    except (ConfigurationError, PrerequisiteError, LayoutLoadError) as e:
        logger.error("%s", e)
        sys.exit(1)

    click.echo(json.dumps(payload, indent=2))


def run() -> None:
    """Entry point for the bqmon CLI."""
    cli()


if __name__ == "__main__":
    run()
