"""Google Cloud Monitoring mock for integration testing.

Provides an in-memory stand-in for Cloud Logging and Cloud Monitoring so the
deployer can be exercised without a project or credentials.

Key Features:
- In-memory state for metrics, channels, alert policies and dashboards
- A fake ``gcloud`` runner that interprets the CLI commands GcloudClient builds
- A direct MonitoringClient fake for reconciler tests
- Error injection per resource kind and operation

Usage:
    from gcp_mock import FakeGcloud, MockCloudState

    state = MockCloudState()
    client = GcloudClient(state.project_id, runner=FakeGcloud(state))
    result = Deployer(config, client).run()

    assert state.count(ResourceKind.ALERT_POLICY) == 1
"""

from .client import FakeMonitoringClient, MockCall
from .gcloud import FakeGcloud
from .state import MockCloudState, MockMutation

__all__ = [
    "FakeGcloud",
    "FakeMonitoringClient",
    "MockCall",
    "MockCloudState",
    "MockMutation",
]
