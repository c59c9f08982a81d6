"""Capture orchestrator: turn a VM's vApp into a published vApp template.

Capture requires the vApp to be undeployed, so a VM that is not stopped has
its parent vApp shut down first and redeployed once the capture is over,
whether the capture succeeded or not.

States:
    AWAITING_READY: waiting for the VM to leave the pending state
    READY: VM settled, vApp undeployed if necessary
    CAPTURING: capture request issued
    CAPTURED: new template loaded and its task finished
    PUBLISHED: template added to the account's catalog
    REDEPLOYED: parent vApp restarted after capture

vCloud occasionally answers a capture with "Stop the vApp and try again"
even after a successful undeploy. That error gets exactly one retry after a
fresh power-state check; any other error, or a second conflict, is fatal.

Public API:
    CaptureOrchestrator: Drive a capture through its states
    CaptureOptions: What to capture and what to call it
    CaptureProgress: Observable record of the states a capture went through
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from vcimage.document_mapper import Document, attribute
from vcimage.errors import CloudError
from vcimage.models import MachineImage, ProviderContext
from vcimage.publisher import CatalogPublisher
from vcimage.template_loader import TemplateLoader
from vcimage.transport import OVF_NS, VCLOUD_NS, MediaType, Transport, escape_xml
from vcimage.workload import VmState, Workload, WorkloadService

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "stop the vapp and try again"
UNDEPLOY_MODE = "shutdown"

DEFAULT_CAPTURE_TIMEOUT = 10 * 60
DEFAULT_POLL_INTERVAL = 15


class CaptureState(StrEnum):
    """Stage a capture has reached."""

    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    CAPTURING = "capturing"
    CAPTURED = "captured"
    PUBLISHED = "published"
    REDEPLOYED = "redeployed"


@dataclass(frozen=True)
class CaptureOptions:
    """Capture request.

    Attributes:
        vm_id: VM whose parent vApp is captured
        name: Name of the new template
        description: Description of the new template (defaults to name)
    """

    vm_id: str
    name: str
    description: str | None = None

    @property
    def effective_description(self) -> str:
        return self.description or self.name


@dataclass
class CaptureProgress:
    """States visited by one capture, in order."""

    vm_id: str
    states: list[CaptureState] = field(default_factory=list)
    retried: bool = False

    @property
    def state(self) -> CaptureState | None:
        return self.states[-1] if self.states else None

    def advance(self, state: CaptureState) -> None:
        logger.debug(f"Capture of {self.vm_id}: {state}")
        self.states.append(state)


class CaptureOrchestrator:
    """Capture a VM's parent vApp into a new, published vApp template.

    Example:
        >>> orchestrator = CaptureOrchestrator(transport, workloads, loader, publisher, ctx)
        >>> image = orchestrator.capture(CaptureOptions("vm-1", "golden"))
    """

    def __init__(
        self,
        transport: Transport,
        workload_service: WorkloadService,
        loader: TemplateLoader,
        publisher: CatalogPublisher,
        context: ProviderContext,
        timeout: float = DEFAULT_CAPTURE_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.transport = transport
        self.workload_service = workload_service
        self.loader = loader
        self.publisher = publisher
        self.context = context
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def capture(
        self, options: CaptureOptions, progress: CaptureProgress | None = None
    ) -> MachineImage:
        """Capture and publish.

        Args:
            options: VM id, template name and description
            progress: Optional record to follow the states of this capture

        Returns:
            The new MachineImage

        Raises:
            CloudError: If the VM is missing, never settles, or any remote step fails
        """
        if not options.vm_id:
            raise CloudError("A capture operation requires a valid VM ID")
        progress = progress if progress is not None else CaptureProgress(options.vm_id)

        workload = self.workload_service.get_workload(options.vm_id)
        if workload is None:
            raise CloudError(f"No such virtual machine: {options.vm_id}")
        if workload.parent_vapp_id is None:
            raise CloudError(f"Unable to determine virtual machine vApp for capture: {options.vm_id}")
        vapp_id = workload.parent_vapp_id

        progress.advance(CaptureState.AWAITING_READY)
        workload = self.wait_until_settled(workload)

        running = workload.state != VmState.STOPPED
        try:
            if running:
                self.workload_service.undeploy(vapp_id, UNDEPLOY_MODE)
            progress.advance(CaptureState.READY)

            data_center_id = workload.data_center_id
            if data_center_id is None:
                raise CloudError(f"Unable to determine the VDC of vApp {vapp_id}")

            body = self.capture_request(options, vapp_id)
            progress.advance(CaptureState.CAPTURING)
            response, doc = self._post_capture(options, vapp_id, data_center_id, body, progress)

            template_id = self._template_id(doc)
            image = self.loader.load_vapp(
                template_id,
                self.context.account_number,
                False,
                options.name,
                options.effective_description,
                int(self._clock() * 1000),
            )
            if image is None:
                raise CloudError(f"Captured vApp template {template_id} was lost")
            self.transport.wait_for(response)
            progress.advance(CaptureState.CAPTURED)

            self.publisher.publish(image)
            progress.advance(CaptureState.PUBLISHED)
            logger.info(f"Captured {options.vm_id} as vApp template {template_id}")
            return image
        finally:
            if running:
                self.workload_service.deploy(vapp_id)
                progress.advance(CaptureState.REDEPLOYED)

    def wait_until_settled(self, workload: Workload) -> Workload:
        """Poll a pending workload until it reports another state.

        Errors while polling are ignored; the deadline is not.

        Raises:
            CloudError: If the workload is still pending when the deadline passes
        """
        deadline = self._clock() + self.timeout
        while workload.state == VmState.PENDING:
            if self._clock() >= deadline:
                raise CloudError(
                    f"VM {workload.workload_id} still pending after {self.timeout:.0f}s"
                )
            self._sleep(self.poll_interval)
            try:
                refreshed = self.workload_service.get_workload(workload.workload_id)
            except CloudError as e:
                logger.debug(f"Ignoring error while polling {workload.workload_id}: {e}")
                continue
            if refreshed is not None:
                workload = refreshed
        return workload

    def capture_request(self, options: CaptureOptions, vapp_id: str) -> str:
        """Build the CaptureVAppParams body for a vApp."""
        source = self.transport.to_url("vApp", vapp_id)
        return (
            f'<CaptureVAppParams xmlns="{VCLOUD_NS}" xmlns:ovf="{OVF_NS}" '
            f'name="{escape_xml(options.name)}">'
            f"<Description>{escape_xml(options.effective_description)}</Description>"
            f'<Source href="{source}" type="{MediaType.VAPP}"/>'
            "<CustomizationSection><ovf:Info/>"
            "<CustomizeOnInstantiate>true</CustomizeOnInstantiate>"
            "</CustomizationSection>"
            "</CaptureVAppParams>"
        )

    def _send(self, data_center_id: str, body: str) -> tuple[str, Document]:
        url = self.transport.to_url("vdc", data_center_id) + "/action/captureVApp"
        response = self.transport.post("captureVApp", url, MediaType.CAPTURE_VAPP_PARAMS, body)
        if not response:
            raise CloudError("No error or other information was in the response")
        doc = self.transport.parse_xml(response)
        self.transport.check_error(doc)
        return response, doc

    def _post_capture(
        self,
        options: CaptureOptions,
        vapp_id: str,
        data_center_id: str,
        body: str,
        progress: CaptureProgress,
    ) -> tuple[str, Document]:
        try:
            return self._send(data_center_id, body)
        except CloudError as e:
            if CONFLICT_MESSAGE not in str(e).lower():
                raise
            logger.warning(
                f"vCloud thinks vApp {vapp_id} is still running; checking its state: {e}"
            )

        progress.retried = True
        workload = self.workload_service.get_workload(options.vm_id)
        if workload is None:
            raise CloudError(f"Virtual machine {options.vm_id} went away")
        if workload.state != VmState.STOPPED:
            logger.warning(f"Current state of VM {options.vm_id}: {workload.state}")
            self.workload_service.undeploy(vapp_id, UNDEPLOY_MODE)
        return self._send(data_center_id, body)

    def _template_id(self, doc: Document) -> str:
        template = doc.find_first("VAppTemplate")
        if template is None:
            raise CloudError("No vApp templates were found in response")
        href = attribute(template, "href")
        if not href:
            raise CloudError("No vApp template id was found in response")
        return self.transport.to_id(href)


__all__ = [
    "CONFLICT_MESSAGE",
    "CaptureOptions",
    "CaptureOrchestrator",
    "CaptureProgress",
    "CaptureState",
]
