"""Monitoring client backed by the Google Cloud client libraries.

Same contract as the gcloud backend, using Application Default Credentials.
Payloads are the same camelCase JSON documents, parsed into the proto-plus
messages with ``from_json``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import monitoring_v3
from google.cloud.logging_v2.services.metrics_service_v2 import MetricsServiceV2Client
from google.cloud.logging_v2.types import LogMetric
from google.cloud import monitoring_dashboard_v1 as dashboard_v1

from .models import (
    ExistingResourceHandle,
    NotificationChannelSpec,
    ReconciliationSpec,
    ResourceDescriptor,
    ResourceKind,
)
from .monitoring_client import MonitoringApiError, unsupported
from .prerequisites import PrerequisiteError

logger = logging.getLogger(__name__)


class CloudApiClient:
    """MonitoringClient implementation over the Cloud Logging/Monitoring APIs.

    The underlying service clients are created lazily so that constructing a
    CloudApiClient never touches the network; tests inject their own.
    """

    def __init__(
        self,
        project_id: str,
        *,
        metrics_client: Any | None = None,
        channel_client: Any | None = None,
        policy_client: Any | None = None,
        dashboard_client: Any | None = None,
    ) -> None:
        self._project_id = project_id
        self._metrics_client = metrics_client
        self._channel_client = channel_client
        self._policy_client = policy_client
        self._dashboard_client = dashboard_client

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def parent(self) -> str:
        return f"projects/{self._project_id}"

    @property
    def metrics_client(self) -> Any:
        if self._metrics_client is None:
            self._metrics_client = _build(MetricsServiceV2Client)
        return self._metrics_client

    @property
    def channel_client(self) -> Any:
        if self._channel_client is None:
            self._channel_client = _build(monitoring_v3.NotificationChannelServiceClient)
        return self._channel_client

    @property
    def policy_client(self) -> Any:
        if self._policy_client is None:
            self._policy_client = _build(monitoring_v3.AlertPolicyServiceClient)
        return self._policy_client

    @property
    def dashboard_client(self) -> Any:
        if self._dashboard_client is None:
            self._dashboard_client = _build(dashboard_v1.DashboardsServiceClient)
        return self._dashboard_client

    # -------------------------------------------------------------------------
    # MonitoringClient
    # -------------------------------------------------------------------------

    def find(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle | None:
        with _wrap_errors(descriptor, "find"):
            if descriptor.kind == ResourceKind.LOG_METRIC:
                return self._find_metric(descriptor)
            if descriptor.kind == ResourceKind.NOTIFICATION_CHANNEL:
                if not isinstance(spec, NotificationChannelSpec):
                    raise TypeError(f"Expected NotificationChannelSpec, got {type(spec).__name__}")
                return self._find_channel(descriptor, spec)
            if descriptor.kind == ResourceKind.ALERT_POLICY:
                return self._find_by_display_name(
                    descriptor,
                    self.policy_client.list_alert_policies(request={"name": self.parent}),
                )
            if descriptor.kind == ResourceKind.DASHBOARD:
                return self._find_dashboard(descriptor)
        raise unsupported(descriptor, "find")

    def create(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle:
        payload = json.dumps(spec.to_payload())
        with _wrap_errors(descriptor, "create"):
            if descriptor.kind == ResourceKind.LOG_METRIC:
                self.metrics_client.create_log_metric(
                    request={"parent": self.parent, "metric": LogMetric.from_json(payload)}
                )
                return ExistingResourceHandle(
                    kind=descriptor.kind,
                    name=f"{self.parent}/metrics/{descriptor.name}",
                    display_name=descriptor.name,
                    attributes={"created": True},
                )
            if descriptor.kind == ResourceKind.NOTIFICATION_CHANNEL:
                channel = self.channel_client.create_notification_channel(
                    request={
                        "name": self.parent,
                        "notification_channel": monitoring_v3.NotificationChannel.from_json(
                            payload
                        ),
                    }
                )
                return _handle(descriptor, channel, created=True)
            if descriptor.kind == ResourceKind.ALERT_POLICY:
                policy = self.policy_client.create_alert_policy(
                    request={
                        "name": self.parent,
                        "alert_policy": monitoring_v3.AlertPolicy.from_json(payload),
                    }
                )
                return _handle(descriptor, policy, created=True)
            if descriptor.kind == ResourceKind.DASHBOARD:
                dashboard = self.dashboard_client.create_dashboard(
                    request={
                        "parent": self.parent,
                        "dashboard": dashboard_v1.Dashboard.from_json(payload),
                    }
                )
                return _handle(descriptor, dashboard, created=True)
        raise unsupported(descriptor, "create")

    def update(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle:
        if descriptor.kind != ResourceKind.DASHBOARD:
            raise unsupported(descriptor, "update")

        existing = self.find(descriptor, spec)
        if existing is None:
            return self.create(descriptor, spec)

        with _wrap_errors(descriptor, "update"):
            dashboard = dashboard_v1.Dashboard.from_json(json.dumps(spec.to_payload()))
            dashboard.name = existing.name
            updated = self.dashboard_client.update_dashboard(request={"dashboard": dashboard})
            return _handle(descriptor, updated, created=False)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _find_metric(self, descriptor: ResourceDescriptor) -> ExistingResourceHandle | None:
        metric_name = f"{self.parent}/metrics/{descriptor.name}"
        try:
            self.metrics_client.get_log_metric(request={"metric_name": metric_name})
        except NotFound:
            return None
        return ExistingResourceHandle(
            kind=descriptor.kind,
            name=metric_name,
            display_name=descriptor.name,
            attributes={"created": False},
        )

    def _find_channel(
        self, descriptor: ResourceDescriptor, spec: NotificationChannelSpec
    ) -> ExistingResourceHandle | None:
        channels = self.channel_client.list_notification_channels(
            request={"name": self.parent, "filter": f'type="{spec.channel_type}"'}
        )
        matches = [
            channel
            for channel in channels
            if spec.matches(channel.type_, dict(channel.labels))
        ]
        if not matches:
            return None
        ordered = sorted(matches, key=lambda channel: channel.name)
        preferred = [channel for channel in ordered if channel.display_name == descriptor.name]
        chosen = (preferred or ordered)[0]
        if len(matches) > 1:
            logger.warning(
                "Several notification channels deliver to the same address, reusing one",
                extra={"channel": chosen.name, "count": len(matches)},
            )
        return _handle(descriptor, chosen, created=False)

    def _find_dashboard(self, descriptor: ResourceDescriptor) -> ExistingResourceHandle | None:
        dashboards = self.dashboard_client.list_dashboards(request={"parent": self.parent})
        matches = [d for d in dashboards if d.display_name == descriptor.name]
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Several dashboards share a display name, overwriting the first",
                extra={"display_name": descriptor.name, "count": len(matches)},
            )
        return _handle(descriptor, matches[0], created=False)

    def _find_by_display_name(
        self, descriptor: ResourceDescriptor, resources: Any
    ) -> ExistingResourceHandle | None:
        for resource in resources:
            if resource.display_name == descriptor.name:
                return _handle(descriptor, resource, created=False)
        return None


@contextmanager
def _wrap_errors(descriptor: ResourceDescriptor, operation: str) -> Iterator[None]:
    """Translate Google API errors, retry timeouts included, into MonitoringApiError."""
    try:
        yield
    except GoogleAPIError as e:
        raise MonitoringApiError(
            f"{operation} {descriptor} failed: {getattr(e, 'message', None) or e}",
            kind=descriptor.kind,
            operation=operation,
        ) from e


def _build(factory: Any) -> Any:
    try:
        return factory()
    except DefaultCredentialsError as e:
        raise PrerequisiteError(
            f"Application Default Credentials are not configured: {e}"
        ) from e


def _handle(descriptor: ResourceDescriptor, resource: Any, *, created: bool) -> ExistingResourceHandle:
    attributes: dict[str, Any] = {"created": created}
    verification = getattr(resource, "verification_status", None)
    if verification is not None:
        attributes["verificationStatus"] = getattr(verification, "name", str(verification))
    etag = getattr(resource, "etag", None)
    if etag:
        attributes["etag"] = etag
    return ExistingResourceHandle(
        kind=descriptor.kind,
        name=resource.name,
        display_name=getattr(resource, "display_name", None) or descriptor.name,
        attributes=attributes,
    )
