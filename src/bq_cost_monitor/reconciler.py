"""Idempotent reconciliation of the BigQuery cost monitoring resources.

This module implements a create-or-skip reconciliation pattern:
1. Look the resource up by exact name (metric id or display name)
2. If found, reuse its handle unchanged
3. If not found, create it from the declared spec

The dashboard is the one exception: its lookup is skipped and the declared
layout always overwrites whatever is deployed.

The pipeline runs strictly in order: metric, notification channel, alert
policy (needs the metric name and the channel handle), dashboard. Failures
are returned as typed results; the caller decides whether to abort.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .config import Config
from .layout_loader import load_dashboard
from .models import (
    AlertPolicySpec,
    ExistingResourceHandle,
    LogMetricSpec,
    NotificationChannelSpec,
    ReconciliationSpec,
    ResourceDescriptor,
    ResourceKind,
    descriptor_for,
)
from .monitoring_client import MonitoringApiError, MonitoringClient
from .prerequisites import PrerequisiteError

logger = logging.getLogger(__name__)

# Kinds whose declared state always replaces the deployed one
OVERWRITE_KINDS = frozenset({ResourceKind.DASHBOARD})

PENDING_NAME = "[pending]"


class ReconcileAction(str, Enum):
    """What reconciliation did (or would do) for one resource."""

    CREATED = "created"
    EXISTS = "exists"
    OVERWRITTEN = "overwritten"
    PLANNED_CREATE = "plannedCreate"
    PLANNED_OVERWRITE = "plannedOverwrite"
    BLOCKED = "blocked"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Failure classes surfaced on results."""

    PREREQUISITE = "prerequisite"
    EXTERNAL_CALL = "externalCall"
    DEPENDENCY = "dependency"


class DependencyError(Exception):
    """Recorded for a step skipped because its inputs failed to resolve."""

    pass


@dataclass
class ReconcileResult:
    """Result of reconciling a single resource."""

    descriptor: ResourceDescriptor
    action: ReconcileAction
    handle: ExistingResourceHandle | None = None
    error: Exception | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> ErrorKind | None:
        if self.error is None:
            return None
        if isinstance(self.error, DependencyError):
            return ErrorKind.DEPENDENCY
        if isinstance(self.error, PrerequisiteError):
            return ErrorKind.PREREQUISITE
        return ErrorKind.EXTERNAL_CALL

    @property
    def mutated(self) -> bool:
        return self.action in (ReconcileAction.CREATED, ReconcileAction.OVERWRITTEN)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


def reconcile(
    client: MonitoringClient,
    descriptor: ResourceDescriptor,
    spec: ReconciliationSpec,
    *,
    dry_run: bool = False,
) -> ReconcileResult:
    """Ensure exactly one resource matching ``descriptor`` exists.

    Args:
        client: Capability used to reach Google Cloud.
        descriptor: Identity of the resource.
        spec: Desired state used when the resource has to be created.
        dry_run: Only look resources up; report creations as planned.

    Returns:
        ReconcileResult carrying the handle, or the error on failure.
    """
    result = ReconcileResult(descriptor=descriptor, action=ReconcileAction.FAILED)

    try:
        if descriptor.kind in OVERWRITE_KINDS:
            if dry_run:
                result.action = ReconcileAction.PLANNED_OVERWRITE
            else:
                logger.info("Deploying %s...", descriptor)
                result.handle = client.update(descriptor, spec)
                result.action = ReconcileAction.OVERWRITTEN
        else:
            logger.info("Checking for existence of %s...", descriptor)
            existing = client.find(descriptor, spec)
            if existing is not None:
                logger.info("%s already exists. Skipping creation.", descriptor)
                result.handle = existing
                result.action = ReconcileAction.EXISTS
            elif dry_run:
                logger.info("%s does not exist and would be created.", descriptor)
                result.handle = _pending_handle(descriptor)
                result.action = ReconcileAction.PLANNED_CREATE
            else:
                logger.info("Creating %s...", descriptor)
                result.handle = client.create(descriptor, spec)
                result.action = ReconcileAction.CREATED
                logger.info("Successfully created %s.", descriptor)
    except (MonitoringApiError, PrerequisiteError) as e:
        result.error = e
        result.action = ReconcileAction.FAILED
        logger.error(
            "Failed to reconcile %s: %s",
            descriptor,
            e,
            extra={"kind": descriptor.kind.value, "operation": getattr(e, "operation", None)},
        )

    result.end_time = datetime.now(UTC)
    return result


def _pending_handle(descriptor: ResourceDescriptor) -> ExistingResourceHandle:
    collection = {
        ResourceKind.LOG_METRIC: "metrics",
        ResourceKind.NOTIFICATION_CHANNEL: "notificationChannels",
        ResourceKind.ALERT_POLICY: "alertPolicies",
        ResourceKind.DASHBOARD: "dashboards",
    }[descriptor.kind]
    return ExistingResourceHandle(
        kind=descriptor.kind,
        name=f"{descriptor.parent}/{collection}/{PENDING_NAME}",
        display_name=descriptor.name,
        attributes={"created": False, "planned": True},
    )


@dataclass
class DeploymentResult:
    """Outcome of one pass over the whole pipeline."""

    project_id: str
    dry_run: bool = False
    results: list[ReconcileResult] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    aborted: bool = False

    @property
    def success(self) -> bool:
        return not self.aborted and all(r.success for r in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    @property
    def failures(self) -> list[ReconcileResult]:
        return [r for r in self.results if not r.success]

    @property
    def created(self) -> list[ReconcileResult]:
        return [r for r in self.results if r.action == ReconcileAction.CREATED]

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def get(self, kind: ResourceKind) -> ReconcileResult | None:
        for result in self.results:
            if result.descriptor.kind == kind:
                return result
        return None


class Deployer:
    """Runs the four reconciliation steps in dependency order.

    Fail-fast by default: the first failed step ends the run. With
    ``continue_on_error`` the alert policy is blocked when the metric or the
    channel failed, but the independent dashboard step still runs.
    """

    def __init__(self, config: Config, client: MonitoringClient) -> None:
        self._config = config
        self._client = client

    @property
    def config(self) -> Config:
        return self._config

    def run(self) -> DeploymentResult:
        config = self._config
        # Layout problems surface before any resource is touched
        dashboard_spec = load_dashboard(config)
        deployment = DeploymentResult(project_id=config.project_id, dry_run=config.dry_run)

        logger.info(
            "Starting deployment",
            extra={
                "project_id": config.project_id,
                "metric_name": config.metric_name,
                "policy_name": config.policy_name,
                "dry_run": config.dry_run,
            },
        )

        metric = self._step(deployment, LogMetricSpec.from_config(config))
        if self._should_stop(deployment):
            return self._finish(deployment)

        channel = self._step(deployment, NotificationChannelSpec.from_config(config))
        if channel.success and channel.handle is not None:
            if channel.action == ReconcileAction.CREATED:
                logger.info(
                    "A verification email has been sent to %s. Please verify it.",
                    config.notification_email,
                )
            elif channel.action == ReconcileAction.EXISTS:
                logger.info(
                    "Notification channel for %s already exists. Using existing channel.",
                    config.notification_email,
                )
        if self._should_stop(deployment):
            return self._finish(deployment)

        policy_spec = AlertPolicySpec.from_config(config)
        if metric.success and channel.success and channel.handle is not None:
            self._step(deployment, policy_spec.with_channels(channel.handle.name))
        else:
            blocked = ReconcileResult(
                descriptor=descriptor_for(policy_spec, config.project_id),
                action=ReconcileAction.BLOCKED,
                error=DependencyError(
                    "Alert policy needs both the log-based metric and the notification channel"
                ),
                end_time=datetime.now(UTC),
            )
            logger.error("Skipping %s: %s", blocked.descriptor, blocked.error)
            deployment.results.append(blocked)
        if self._should_stop(deployment):
            return self._finish(deployment)

        self._step(deployment, dashboard_spec)
        return self._finish(deployment)

    def _step(self, deployment: DeploymentResult, spec: ReconciliationSpec) -> ReconcileResult:
        descriptor = descriptor_for(spec, self._config.project_id)
        result = reconcile(self._client, descriptor, spec, dry_run=self._config.dry_run)
        deployment.results.append(result)
        return result

    def _should_stop(self, deployment: DeploymentResult) -> bool:
        if deployment.success or self._config.continue_on_error:
            return False
        deployment.aborted = True
        logger.error("Aborting deployment after the first failure")
        return True

    def _finish(self, deployment: DeploymentResult) -> DeploymentResult:
        deployment.end_time = datetime.now(UTC)
        level = logging.INFO if deployment.success else logging.ERROR
        logger.log(
            level,
            "Deployment finished" if deployment.success else "Deployment failed",
            extra={
                "project_id": deployment.project_id,
                "created_resources": [str(r.descriptor) for r in deployment.created],
                "failed_resources": [str(r.descriptor) for r in deployment.failures],
                "duration_seconds": deployment.duration_seconds,
            },
        )
        return deployment
