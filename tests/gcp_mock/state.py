"""In-memory Cloud Logging / Cloud Monitoring state.

Holds metrics, notification channels, alert policies and dashboards for one
project, records every mutation for assertions, and supports error injection.
"""

from __future__ import annotations

import copy
import itertools
from dataclasses import dataclass, field
from typing import Any

from bq_cost_monitor.models import ResourceKind


@dataclass
class MockMutation:
    """One create or update applied to the mock state."""

    kind: ResourceKind
    operation: str
    name: str
    payload: dict[str, Any] = field(default_factory=dict)


class MockCloudState:
    """In-memory resource store keyed by full resource name.

    All operations are synchronous since this is test code.
    """

    def __init__(self, project_id: str = "bq-cost-test") -> None:
        self.project_id = project_id
        self.default_project: str | None = project_id
        self._resources: dict[ResourceKind, dict[str, dict[str, Any]]] = {
            kind: {} for kind in ResourceKind
        }
        self._ids = itertools.count(1000)
        self.mutations: list[MockMutation] = []
        self.failures: dict[tuple[ResourceKind, str], str] = {}

    @property
    def parent(self) -> str:
        return f"projects/{self.project_id}"

    # -------------------------------------------------------------------------
    # Error injection
    # -------------------------------------------------------------------------

    def fail(self, kind: ResourceKind, operation: str, message: str = "PERMISSION_DENIED") -> None:
        """Make every future ``operation`` on ``kind`` fail with ``message``."""
        self.failures[(kind, operation)] = message

    def failure_for(self, kind: ResourceKind, operation: str) -> str | None:
        return self.failures.get((kind, operation))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def items(self, kind: ResourceKind) -> list[dict[str, Any]]:
        return [copy.deepcopy(item) for item in self._resources[kind].values()]

    def count(self, kind: ResourceKind) -> int:
        return len(self._resources[kind])

    def get(self, kind: ResourceKind, name: str) -> dict[str, Any] | None:
        item = self._resources[kind].get(name)
        return copy.deepcopy(item) if item is not None else None

    def mutations_of(self, operation: str) -> list[MockMutation]:
        return [m for m in self.mutations if m.operation == operation]

    @property
    def creations(self) -> list[MockMutation]:
        return self.mutations_of("create")

    @property
    def updates(self) -> list[MockMutation]:
        return self.mutations_of("update")

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def new_name(self, kind: ResourceKind) -> str:
        collection = {
            ResourceKind.NOTIFICATION_CHANNEL: "notificationChannels",
            ResourceKind.ALERT_POLICY: "alertPolicies",
            ResourceKind.DASHBOARD: "dashboards",
        }[kind]
        return f"{self.parent}/{collection}/{next(self._ids)}"

    def add_metric(self, payload: dict[str, Any], *, record: bool = True) -> dict[str, Any]:
        item = copy.deepcopy(payload)
        name = item["name"]
        if name in self._resources[ResourceKind.LOG_METRIC]:
            raise KeyError(f"ALREADY_EXISTS: metric {name}")
        self._resources[ResourceKind.LOG_METRIC][name] = item
        if record:
            self.mutations.append(MockMutation(ResourceKind.LOG_METRIC, "create", name, item))
        return copy.deepcopy(item)

    def add(
        self, kind: ResourceKind, payload: dict[str, Any], *, record: bool = True
    ) -> dict[str, Any]:
        """Create a channel, policy or dashboard with a generated name."""
        item = copy.deepcopy(payload)
        item["name"] = self.new_name(kind)
        if kind == ResourceKind.NOTIFICATION_CHANNEL:
            item.setdefault("verificationStatus", "UNVERIFIED")
        self._resources[kind][item["name"]] = item
        if record:
            self.mutations.append(MockMutation(kind, "create", item["name"], item))
        return copy.deepcopy(item)

    def replace(self, kind: ResourceKind, name: str, payload: dict[str, Any]) -> dict[str, Any]:
        if name not in self._resources[kind]:
            raise KeyError(f"NOT_FOUND: {name}")
        item = copy.deepcopy(payload)
        item["name"] = name
        self._resources[kind][name] = item
        self.mutations.append(MockMutation(kind, "update", name, item))
        return copy.deepcopy(item)

    def seed_channel(self, email: str, display_name: str = "Email") -> dict[str, Any]:
        """Pre-populate an e-mail channel, as if created by an earlier run."""
        return self.add(
            ResourceKind.NOTIFICATION_CHANNEL,
            {
                "type": "email",
                "displayName": display_name,
                "labels": {"email_address": email},
                "verificationStatus": "VERIFIED",
            },
            record=False,
        )
