"""Monitoring client backed by the ``gcloud`` CLI.

Every call runs ``gcloud ... --project=<id> --format=json --quiet`` through an
injectable runner so tests can substitute the CLI. JSON payloads are handed to
gcloud through temporary files which are always removed afterwards.

Matching is done client-side on the JSON listing using exact string
equality, which avoids quoting issues in ``--filter`` expressions.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from .models import (
    DashboardSpec,
    ExistingResourceHandle,
    NotificationChannelSpec,
    ReconciliationSpec,
    ResourceDescriptor,
    ResourceKind,
)
from .monitoring_client import MonitoringApiError, unsupported

logger = logging.getLogger(__name__)

GCLOUD_BINARY = "gcloud"
# Notification channel and alert policy commands are only on the alpha track
MONITORING_TRACK = "alpha"
COMMAND_NOT_FOUND_EXIT_CODE = 127

GcloudRunner = Callable[[list[str]], str]
_SpecT = TypeVar("_SpecT", bound=ReconciliationSpec)


class CommandError(MonitoringApiError):
    """Raised when a gcloud invocation exits non-zero."""

    def __init__(
        self,
        cmd: list[str],
        returncode: int,
        stderr: str = "",
        *,
        kind: ResourceKind | None = None,
        operation: str | None = None,
    ) -> None:
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(
            f"Command failed ({' '.join(cmd[:4])} ...): {detail}",
            kind=kind,
            operation=operation,
        )
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr


def run_gcloud(cmd: list[str]) -> str:
    """Run a gcloud command and return its standard output.

    Timeouts are left to gcloud itself.

    Raises:
        CommandError: If the command is missing or exits non-zero.
    """
    logger.debug("Running command", extra={"command": " ".join(cmd)})
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise CommandError(cmd, COMMAND_NOT_FOUND_EXIT_CODE, f"Command not found: {cmd[0]}") from e

    if result.returncode != 0:
        raise CommandError(cmd, result.returncode, result.stderr)
    return result.stdout


@contextmanager
def payload_file(payload: dict[str, Any]) -> Iterator[Path]:
    """Write ``payload`` to a temporary JSON file that is removed on exit."""
    fd, name = tempfile.mkstemp(prefix="bqmon-", suffix=".json")
    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        yield path
    finally:
        path.unlink(missing_ok=True)


class GcloudClient:
    """MonitoringClient implementation that shells out to gcloud."""

    def __init__(
        self,
        project_id: str,
        runner: GcloudRunner | None = None,
        binary: str = GCLOUD_BINARY,
    ) -> None:
        self._project_id = project_id
        self._runner = runner or run_gcloud
        self._binary = binary

    @property
    def project_id(self) -> str:
        return self._project_id

    # -------------------------------------------------------------------------
    # MonitoringClient
    # -------------------------------------------------------------------------

    def find(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle | None:
        finders = {
            ResourceKind.LOG_METRIC: self._find_metric,
            ResourceKind.NOTIFICATION_CHANNEL: self._find_channel,
            ResourceKind.ALERT_POLICY: self._find_policy,
            ResourceKind.DASHBOARD: self._find_dashboard,
        }
        finder = finders.get(descriptor.kind)
        if finder is None:
            raise unsupported(descriptor, "find")
        return finder(descriptor, spec)

    def create(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle:
        creators = {
            ResourceKind.LOG_METRIC: self._create_metric,
            ResourceKind.NOTIFICATION_CHANNEL: self._create_channel,
            ResourceKind.ALERT_POLICY: self._create_policy,
            ResourceKind.DASHBOARD: self._create_dashboard,
        }
        creator = creators.get(descriptor.kind)
        if creator is None:
            raise unsupported(descriptor, "create")
        return creator(descriptor, spec)

    def update(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle:
        if descriptor.kind != ResourceKind.DASHBOARD:
            raise unsupported(descriptor, "update")

        existing = self._find_dashboard(descriptor, spec)
        if existing is None:
            return self._create_dashboard(descriptor, spec)

        with payload_file(spec.to_payload()) as path:
            item = self._run_json(
                ["monitoring", "dashboards", "update", existing.name, f"--config-from-file={path}"],
                descriptor,
                "update",
            )
        return self._handle(descriptor, item, fallback_name=existing.name, created=False)

    # -------------------------------------------------------------------------
    # Log-based metric
    # -------------------------------------------------------------------------

    def _metric_resource_name(self, metric_id: str) -> str:
        return f"projects/{self._project_id}/metrics/{metric_id}"

    def _find_metric(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle | None:
        prefix = self._metric_resource_name("")
        for item in self._list(["logging", "metrics", "list"], descriptor):
            name = str(item.get("name", ""))
            if name.startswith(prefix):
                name = name[len(prefix):]
            if name == descriptor.name:
                return ExistingResourceHandle(
                    kind=descriptor.kind,
                    name=self._metric_resource_name(descriptor.name),
                    display_name=descriptor.name,
                )
        return None

    def _create_metric(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle:
        with payload_file(spec.to_payload()) as path:
            self._run(
                ["logging", "metrics", "create", descriptor.name, f"--config-from-file={path}"],
                descriptor,
                "create",
            )
        return ExistingResourceHandle(
            kind=descriptor.kind,
            name=self._metric_resource_name(descriptor.name),
            display_name=descriptor.name,
            attributes={"created": True},
        )

    # -------------------------------------------------------------------------
    # Notification channel
    # -------------------------------------------------------------------------

    def _find_channel(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle | None:
        spec = _expect(spec, NotificationChannelSpec)
        items = self._list(
            [MONITORING_TRACK, "monitoring", "channels", "list", f'--filter=type="{spec.channel_type}"'],
            descriptor,
        )
        matches = [item for item in items if spec.matches(item.get("type"), item.get("labels"))]
        if not matches:
            return None
        chosen = pick_channel(matches, descriptor.name)
        return self._handle(descriptor, chosen, created=False)

    def _create_channel(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle:
        spec = _expect(spec, NotificationChannelSpec)
        item = self._run_json(
            [
                MONITORING_TRACK,
                "monitoring",
                "channels",
                "create",
                f"--display-name={spec.display_name}",
                f"--description={spec.description}",
                f"--type={spec.channel_type}",
                f"--channel-labels=email_address={spec.email_address}",
            ],
            descriptor,
            "create",
        )
        return self._handle(descriptor, item, created=True)

    # -------------------------------------------------------------------------
    # Alert policy
    # -------------------------------------------------------------------------

    def _find_policy(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle | None:
        items = self._list([MONITORING_TRACK, "monitoring", "policies", "list"], descriptor)
        for item in items:
            if item.get("displayName") == descriptor.name:
                return self._handle(descriptor, item, created=False)
        return None

    def _create_policy(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle:
        with payload_file(spec.to_payload()) as path:
            item = self._run_json(
                [MONITORING_TRACK, "monitoring", "policies", "create", f"--policy-from-file={path}"],
                descriptor,
                "create",
            )
        return self._handle(descriptor, item, created=True)

    # -------------------------------------------------------------------------
    # Dashboard
    # -------------------------------------------------------------------------

    def _find_dashboard(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle | None:
        items = self._list(["monitoring", "dashboards", "list"], descriptor)
        matches = [item for item in items if item.get("displayName") == descriptor.name]
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Several dashboards share a display name, overwriting the first",
                extra={"display_name": descriptor.name, "count": len(matches)},
            )
        return self._handle(descriptor, matches[0], created=False)

    def _create_dashboard(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle:
        spec = _expect(spec, DashboardSpec)
        with payload_file(spec.to_payload()) as path:
            item = self._run_json(
                ["monitoring", "dashboards", "create", f"--config-from-file={path}"],
                descriptor,
                "create",
            )
        return self._handle(descriptor, item, created=True)

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _run(self, args: list[str], descriptor: ResourceDescriptor, operation: str) -> str:
        cmd = [self._binary, *args, f"--project={self._project_id}", "--format=json", "--quiet"]
        try:
            return self._runner(cmd)
        except MonitoringApiError as e:
            e.kind = e.kind or descriptor.kind
            e.operation = e.operation or operation
            raise

    def _run_json(
        self, args: list[str], descriptor: ResourceDescriptor, operation: str
    ) -> Any:
        output = self._run(args, descriptor, operation)
        if not output.strip():
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise MonitoringApiError(
                f"gcloud returned invalid JSON for {descriptor}: {e}",
                kind=descriptor.kind,
                operation=operation,
            ) from e

    def _list(self, args: list[str], descriptor: ResourceDescriptor) -> list[dict[str, Any]]:
        data = self._run_json(args, descriptor, "find")
        if data is None:
            return []
        if not isinstance(data, list):
            raise MonitoringApiError(
                f"Expected a JSON list when listing {descriptor.kind.value} resources",
                kind=descriptor.kind,
                operation="find",
            )
        return [item for item in data if isinstance(item, dict)]

    def _handle(
        self,
        descriptor: ResourceDescriptor,
        item: Any,
        *,
        created: bool,
        fallback_name: str | None = None,
    ) -> ExistingResourceHandle:
        if item is None and fallback_name:
            item = {}
        if isinstance(item, list) and len(item) == 1:
            item = item[0]
        if not isinstance(item, dict) or not (item.get("name") or fallback_name):
            raise MonitoringApiError(
                f"gcloud did not return a resource name for {descriptor}",
                kind=descriptor.kind,
                operation="create" if created else "find",
            )
        attributes: dict[str, Any] = {"created": created}
        for key in ("verificationStatus", "etag", "enabled"):
            if key in item:
                attributes[key] = item[key]
        return ExistingResourceHandle(
            kind=descriptor.kind,
            name=str(item.get("name") or fallback_name),
            display_name=item.get("displayName", descriptor.name),
            attributes=attributes,
        )


def pick_channel(matches: list[dict[str, Any]], display_name: str) -> dict[str, Any]:
    """Choose one channel among several delivering to the same address.

    A channel carrying the expected display name wins; otherwise the one with
    the lowest resource name, so repeated runs pick the same channel.
    """
    ordered = sorted(matches, key=lambda item: str(item.get("name", "")))
    preferred = [item for item in ordered if item.get("displayName") == display_name]
    chosen = (preferred or ordered)[0]
    if len(matches) > 1:
        logger.warning(
            "Several notification channels deliver to the same address, reusing one",
            extra={"channel": chosen.get("name"), "count": len(matches)},
        )
    return chosen


def _expect(spec: ReconciliationSpec, spec_type: type[_SpecT]) -> _SpecT:
    if not isinstance(spec, spec_type):
        raise TypeError(f"Expected {spec_type.__name__}, got {type(spec).__name__}")
    return spec
