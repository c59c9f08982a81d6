"""Unit tests for capture module.

Tests cover:
- Undeploy before capture, redeploy afterwards (even on failure)
- Readiness polling and its deadline
- The one-shot retry on "Stop the vApp and try again"
- Capture request contents
"""

from unittest.mock import MagicMock

import pytest

from vcimage.capture import (
    CaptureOptions,
    CaptureOrchestrator,
    CaptureProgress,
    CaptureState,
)
from vcimage.errors import CloudError
from vcimage.publisher import CatalogPublisher
from vcimage.transport import MediaType
from vcimage.workload import VmState

from tests.fixtures.vcloud_documents import (
    BASE_URL,
    capture_response,
    error_document,
    template_document,
    vm_xml,
)

CONFLICT = (
    "The requested operation could not be executed since vApp web is not stopped. "
    "Stop the vApp and try again."
)


class FakeClock:
    def __init__(self):
        self.now = 1_000_000.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def publisher(events):
    publisher = MagicMock(spec=CatalogPublisher)
    publisher.publish.side_effect = lambda image: events.append(("publish", image.image_id))
    return publisher


@pytest.fixture
def orchestrator(transport, workload_service, loader, publisher, context, clock):
    transport.add(
        "vAppTemplate",
        "tpl-new",
        template_document("tpl-new", "golden", "Golden image", vms=[vm_xml("vm-x")]),
    )
    return CaptureOrchestrator(
        transport,
        workload_service,
        loader,
        publisher,
        context,
        sleep=clock.sleep,
        clock=clock,
    )


OPTIONS = CaptureOptions(vm_id="vm-1", name="golden", description="Golden image")


class TestCaptureWorkflow:
    """Tests for the capture state machine."""

    def test_running_vm_is_undeployed_then_redeployed(self, transport, orchestrator, events):
        """Test undeploy precedes capture and deploy follows publish."""
        transport.queue_post("captureVApp", capture_response("tpl-new"))

        image = orchestrator.capture(OPTIONS)

        assert image.image_id == "tpl-new"
        assert events == [
            ("undeploy", "vapp-1"),
            ("post", "captureVApp"),
            ("publish", "tpl-new"),
            ("deploy", "vapp-1"),
        ]

    def test_states_visited(self, transport, orchestrator):
        """Test the capture walks through every state in order."""
        transport.queue_post("captureVApp", capture_response("tpl-new"))
        progress = CaptureProgress("vm-1")

        orchestrator.capture(OPTIONS, progress)

        assert progress.states == [
            CaptureState.AWAITING_READY,
            CaptureState.READY,
            CaptureState.CAPTURING,
            CaptureState.CAPTURED,
            CaptureState.PUBLISHED,
            CaptureState.REDEPLOYED,
        ]
        assert progress.retried is False

    def test_stopped_vm_is_not_touched(self, transport, orchestrator, workload_service, events):
        """Test a stopped VM is neither undeployed nor redeployed."""
        workload_service.state = VmState.STOPPED
        transport.queue_post("captureVApp", capture_response("tpl-new"))

        orchestrator.capture(OPTIONS)

        assert events == [("post", "captureVApp"), ("publish", "tpl-new")]

    def test_deploy_runs_when_publish_fails(self, transport, orchestrator, publisher, events):
        """Test the vApp is redeployed even though publishing failed."""
        transport.queue_post("captureVApp", capture_response("tpl-new"))
        publisher.publish.side_effect = CloudError("No catalog")

        with pytest.raises(CloudError, match="No catalog"):
            orchestrator.capture(OPTIONS)

        assert events[-1] == ("deploy", "vapp-1")

    def test_deploy_runs_when_capture_fails(self, transport, orchestrator, events):
        """Test the vApp is redeployed after a fatal capture error."""
        transport.queue_post("captureVApp", error_document("Disk quota exceeded"))

        with pytest.raises(CloudError, match="Disk quota exceeded"):
            orchestrator.capture(OPTIONS)

        assert events == [("undeploy", "vapp-1"), ("post", "captureVApp"), ("deploy", "vapp-1")]

    def test_deploy_runs_when_undeploy_fails(
        self, transport, orchestrator, workload_service, events
    ):
        """Test a failed undeploy still redeploys and never posts the capture."""
        def refuse(vapp_id, mode):
            events.append(("undeploy", vapp_id))
            raise CloudError("undeploy failed with HTTP 500")

        workload_service.undeploy = refuse
        progress = CaptureProgress("vm-1")

        with pytest.raises(CloudError, match="undeploy failed"):
            orchestrator.capture(OPTIONS, progress)

        assert events == [("undeploy", "vapp-1"), ("deploy", "vapp-1")]
        assert transport.posts == []
        assert CaptureState.READY not in progress.states

    def test_capture_waits_for_task(self, transport, orchestrator):
        """Test the capture task is awaited before publishing."""
        response = capture_response("tpl-new")
        transport.queue_post("captureVApp", response)

        orchestrator.capture(OPTIONS)

        assert transport.waited == [response]

    def test_image_uses_account_and_options(self, transport, orchestrator, context):
        """Test the captured image is owned by the account."""
        transport.queue_post("captureVApp", capture_response("tpl-new"))

        image = orchestrator.capture(OPTIONS)

        assert image.owner_id == context.account_number
        assert image.name == "golden"
        assert image.description == "Golden image"

    def test_lost_template_is_fatal(self, transport, orchestrator, events):
        """Test a template that cannot be loaded after capture is fatal."""
        transport.queue_post("captureVApp", capture_response("tpl-gone"))

        with pytest.raises(CloudError, match="tpl-gone"):
            orchestrator.capture(OPTIONS)

        assert events[-1] == ("deploy", "vapp-1")

    def test_response_without_template_is_fatal(self, transport, orchestrator):
        """Test a response that names no template is fatal."""
        transport.queue_post("captureVApp", "<Task status='running'/>")

        with pytest.raises(CloudError, match="No vApp templates"):
            orchestrator.capture(OPTIONS)


class TestCaptureRequest:
    """Tests for the CaptureVAppParams request."""

    def test_request_contents(self, transport, orchestrator):
        """Test the request names the vApp, template and customization flag."""
        transport.queue_post("captureVApp", capture_response("tpl-new"))

        orchestrator.capture(CaptureOptions("vm-1", "web & db", "Tier <1>"))

        action, url, media_type, body = transport.posts[0]
        assert url == f"{BASE_URL}/vdc/vdc-1/action/captureVApp"
        assert media_type == MediaType.CAPTURE_VAPP_PARAMS
        assert 'name="web &amp; db"' in body
        assert "<Description>Tier &lt;1&gt;</Description>" in body
        assert f'<Source href="{BASE_URL}/vApp/vapp-1" type="{MediaType.VAPP}"/>' in body
        assert "<CustomizeOnInstantiate>true</CustomizeOnInstantiate>" in body

    def test_description_defaults_to_name(self):
        """Test the description falls back to the name."""
        assert CaptureOptions("vm-1", "golden").effective_description == "golden"


class TestReadiness:
    """Tests for waiting on a pending VM."""

    def test_polls_until_settled(self, transport, orchestrator, workload_service, clock):
        """Test a pending VM is polled until it reports another state."""
        workload_service.states = [VmState.PENDING, VmState.PENDING, VmState.PENDING]
        workload_service.state = VmState.STOPPED
        transport.queue_post("captureVApp", capture_response("tpl-new"))
        start = clock.now

        orchestrator.capture(OPTIONS)

        assert clock.now - start == 45
        assert workload_service.get_count == 4

    def test_poll_errors_are_ignored(self, transport, orchestrator, workload_service, clock):
        """Test errors while polling do not abort the wait."""
        calls = []
        real_get = workload_service.get_workload

        def flaky(vm_id):
            calls.append(vm_id)
            if len(calls) == 1:
                return real_get(vm_id)
            if len(calls) == 2:
                raise CloudError("connection reset")
            return real_get(vm_id)

        workload_service.states = [VmState.PENDING]
        workload_service.state = VmState.STOPPED
        workload_service.get_workload = flaky
        transport.queue_post("captureVApp", capture_response("tpl-new"))

        image = orchestrator.capture(OPTIONS)

        assert image.image_id == "tpl-new"
        assert len(calls) == 3

    def test_deadline_is_fatal(self, orchestrator, workload_service, transport, clock):
        """Test a VM still pending after ten minutes fails the capture."""
        workload_service.state = VmState.PENDING

        with pytest.raises(CloudError, match="still pending"):
            orchestrator.capture(OPTIONS)

        assert transport.posts == []
        assert clock.now - 1_000_000.0 >= 600

    def test_missing_vm(self, orchestrator, workload_service):
        """Test a missing VM is fatal."""
        workload_service.missing = True
        with pytest.raises(CloudError, match="No such virtual machine: vm-1"):
            orchestrator.capture(OPTIONS)

    def test_missing_vapp(self, orchestrator, workload_service):
        """Test a VM without a parent vApp is fatal."""
        workload_service.vapp_id = None
        with pytest.raises(CloudError, match="Unable to determine virtual machine vApp"):
            orchestrator.capture(OPTIONS)

    def test_missing_vm_id(self, orchestrator):
        """Test an empty VM id is rejected."""
        with pytest.raises(CloudError, match="valid VM ID"):
            orchestrator.capture(CaptureOptions("", "golden"))


class TestConflictRetry:
    """Tests for the "Stop the vApp and try again" retry."""

    def test_retry_once_then_succeed(self, transport, orchestrator, workload_service, events):
        """Test one conflict triggers a state check, undeploy and retry."""
        transport.queue_post("captureVApp", error_document(CONFLICT), capture_response("tpl-new"))
        # Still running when re-checked after the conflict
        workload_service.states = [VmState.RUNNING, VmState.RUNNING]
        progress = CaptureProgress("vm-1")

        image = orchestrator.capture(OPTIONS, progress)

        assert image.image_id == "tpl-new"
        assert progress.retried is True
        assert progress.state == CaptureState.REDEPLOYED
        assert events == [
            ("undeploy", "vapp-1"),
            ("post", "captureVApp"),
            ("undeploy", "vapp-1"),
            ("post", "captureVApp"),
            ("publish", "tpl-new"),
            ("deploy", "vapp-1"),
        ]

    def test_retry_skips_undeploy_when_stopped(self, transport, orchestrator, events):
        """Test the retry does not undeploy a vApp that is already stopped."""
        transport.queue_post("captureVApp", error_document(CONFLICT), capture_response("tpl-new"))

        orchestrator.capture(OPTIONS)

        assert events.count(("undeploy", "vapp-1")) == 1
        assert transport.post_actions() == ["captureVApp", "captureVApp"]

    def test_conflict_raised_as_http_error(self, transport, orchestrator):
        """Test a conflict delivered as an HTTP error is retried too."""
        transport.queue_post(
            "captureVApp",
            CloudError(f"captureVApp failed with HTTP 400: [400/BAD_REQUEST] {CONFLICT}"),
            capture_response("tpl-new"),
        )

        assert orchestrator.capture(OPTIONS).image_id == "tpl-new"

    def test_second_conflict_is_fatal(self, transport, orchestrator, events):
        """Test a second conflict propagates instead of retrying again."""
        transport.queue_post("captureVApp", error_document(CONFLICT), error_document(CONFLICT))

        with pytest.raises(CloudError, match="Stop the vApp and try again"):
            orchestrator.capture(OPTIONS)

        assert transport.post_actions() == ["captureVApp", "captureVApp"]
        assert events[-1] == ("deploy", "vapp-1")

    def test_vm_gone_during_retry(self, transport, orchestrator, workload_service):
        """Test the retry fails when the VM disappeared."""
        def conflict(url, body):
            workload_service.missing = True
            return error_document(CONFLICT)

        transport.queue_post("captureVApp", conflict)

        with pytest.raises(CloudError, match="went away"):
            orchestrator.capture(OPTIONS)
