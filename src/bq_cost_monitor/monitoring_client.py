"""Capability interface over Cloud Logging and Cloud Monitoring.

The reconciler never talks to Google Cloud directly. It is handed a
``MonitoringClient`` which exposes three operations, dispatched per resource
kind:

- ``find``: look up an existing resource matching the descriptor
- ``create``: create the resource described by the spec
- ``update``: overwrite the resource (create it if absent)

Two implementations ship with the package: ``GcloudClient`` drives the
``gcloud`` CLI, ``CloudApiClient`` uses the Google Cloud client libraries.
"""

from __future__ import annotations

from typing import Protocol

from .models import (
    ExistingResourceHandle,
    ReconciliationSpec,
    ResourceDescriptor,
    ResourceKind,
)


class MonitoringApiError(Exception):
    """Raised when a call to Google Cloud fails.

    Failures are not classified as transient or permanent and are never
    retried here.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ResourceKind | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.operation = operation


class UnsupportedOperationError(MonitoringApiError):
    """Raised when a client does not implement an operation for a kind."""

    pass


class MonitoringClient(Protocol):
    """Find, create and update monitoring resources in one project."""

    def find(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle | None:
        """Return the matching resource, or None when there is none."""
        ...

    def create(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle:
        """Create the resource and return its handle."""
        ...

    def update(
        self, descriptor: ResourceDescriptor, spec: ReconciliationSpec
    ) -> ExistingResourceHandle:
        """Overwrite the resource so it matches ``spec`` and return its handle."""
        ...


def unsupported(descriptor: ResourceDescriptor, operation: str) -> UnsupportedOperationError:
    return UnsupportedOperationError(
        f"{operation} is not supported for {descriptor.kind.value} resources",
        kind=descriptor.kind,
        operation=operation,
    )
