"""Fake gcloud CLI for integration testing.

``FakeGcloud`` is a drop-in runner for ``GcloudClient``: it interprets the
command lines the client builds, applies them to a ``MockCloudState`` and
prints the JSON gcloud would print. Payload files are read at call time,
before the client deletes them.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from bq_cost_monitor.gcloud import CommandError
from bq_cost_monitor.models import ResourceKind

from .state import MockCloudState

GLOBAL_FLAGS = ("--project=", "--format=", "--quiet")


class FakeGcloud:
    """Callable standing in for ``run_gcloud``."""

    def __init__(self, state: MockCloudState | None = None) -> None:
        self.state = state or MockCloudState()
        self.calls: list[list[str]] = []

    @property
    def mutating_calls(self) -> list[list[str]]:
        return [c for c in self.calls if any(verb in c for verb in ("create", "update"))]

    def __call__(self, cmd: list[str]) -> str:
        self.calls.append(list(cmd))
        if cmd[0] != "gcloud":
            raise CommandError(cmd, 127, f"Command not found: {cmd[0]}")

        args = [a for a in cmd[1:] if not a.startswith(GLOBAL_FLAGS)]
        positional = [a for a in args if not a.startswith("--")]
        flags = dict(_split_flag(a) for a in args if a.startswith("--"))

        if positional[:3] == ["config", "get-value", "project"]:
            return f"{self.state.default_project or ''}\n"
        if positional[:2] == ["logging", "metrics"]:
            return self._metrics(cmd, positional[2:], flags)
        if positional[:3] == ["alpha", "monitoring", "channels"]:
            return self._channels(cmd, positional[3:], flags)
        if positional[:3] == ["alpha", "monitoring", "policies"]:
            return self._policies(cmd, positional[3:], flags)
        if positional[:2] == ["monitoring", "dashboards"]:
            return self._dashboards(cmd, positional[2:], flags)
        raise CommandError(cmd, 2, f"ERROR: (gcloud) Invalid choice: {' '.join(positional)}")

    def _check(self, cmd: list[str], kind: ResourceKind, operation: str) -> None:
        message = self.state.failure_for(kind, operation)
        if message:
            raise CommandError(cmd, 1, f"ERROR: (gcloud) {message}")

    def _metrics(self, cmd: list[str], rest: list[str], flags: dict[str, str]) -> str:
        verb = rest[0]
        if verb == "list":
            self._check(cmd, ResourceKind.LOG_METRIC, "find")
            return json.dumps(self.state.items(ResourceKind.LOG_METRIC))
        if verb == "create":
            self._check(cmd, ResourceKind.LOG_METRIC, "create")
            payload = _read_payload(flags["config-from-file"])
            payload["name"] = rest[1]
            try:
                self.state.add_metric(payload)
            except KeyError as e:
                raise CommandError(cmd, 1, f"ERROR: (gcloud.logging.metrics.create) {e}") from e
            return ""
        raise CommandError(cmd, 2, f"unknown verb {verb}")

    def _channels(self, cmd: list[str], rest: list[str], flags: dict[str, str]) -> str:
        verb = rest[0]
        if verb == "list":
            self._check(cmd, ResourceKind.NOTIFICATION_CHANNEL, "find")
            items = self.state.items(ResourceKind.NOTIFICATION_CHANNEL)
            wanted = flags.get("filter", "")
            if wanted.startswith("type="):
                channel_type = wanted.split("=", 1)[1].strip('"')
                items = [i for i in items if i.get("type") == channel_type]
            return json.dumps(items)
        if verb == "create":
            self._check(cmd, ResourceKind.NOTIFICATION_CHANNEL, "create")
            key, _, value = flags["channel-labels"].partition("=")
            item = self.state.add(
                ResourceKind.NOTIFICATION_CHANNEL,
                {
                    "type": flags["type"],
                    "displayName": flags["display-name"],
                    "description": flags.get("description", ""),
                    "labels": {key: value},
                    "enabled": True,
                },
            )
            return json.dumps(item)
        raise CommandError(cmd, 2, f"unknown verb {verb}")

    def _policies(self, cmd: list[str], rest: list[str], flags: dict[str, str]) -> str:
        verb = rest[0]
        if verb == "list":
            self._check(cmd, ResourceKind.ALERT_POLICY, "find")
            return json.dumps(self.state.items(ResourceKind.ALERT_POLICY))
        if verb == "create":
            self._check(cmd, ResourceKind.ALERT_POLICY, "create")
            item = self.state.add(
                ResourceKind.ALERT_POLICY, _read_payload(flags["policy-from-file"])
            )
            return json.dumps(item)
        raise CommandError(cmd, 2, f"unknown verb {verb}")

    def _dashboards(self, cmd: list[str], rest: list[str], flags: dict[str, str]) -> str:
        verb = rest[0]
        if verb == "list":
            self._check(cmd, ResourceKind.DASHBOARD, "find")
            return json.dumps(self.state.items(ResourceKind.DASHBOARD))
        if verb == "create":
            self._check(cmd, ResourceKind.DASHBOARD, "create")
            item = self.state.add(ResourceKind.DASHBOARD, _read_payload(flags["config-from-file"]))
            return json.dumps(item)
        if verb == "update":
            self._check(cmd, ResourceKind.DASHBOARD, "update")
            try:
                item = self.state.replace(
                    ResourceKind.DASHBOARD, rest[1], _read_payload(flags["config-from-file"])
                )
            except KeyError as e:
                raise CommandError(cmd, 1, f"ERROR: (gcloud.monitoring.dashboards.update) {e}") from e
            return json.dumps(item)
        raise CommandError(cmd, 2, f"unknown verb {verb}")


def _split_flag(arg: str) -> tuple[str, str]:
    key, _, value = arg[2:].partition("=")
    return key, value


def _read_payload(path: str) -> dict[str, Any]:
    return json.loads(Path(path).read_text(encoding="utf-8"))
