"""Workload (VM) power-state service.

The capture workflow needs three things from the compute side: a VM's power
state and parent vApp, and the ability to undeploy and redeploy that vApp.
WorkloadService is that boundary; VCloudWorkloadService implements it on top
of a Transport.
"""

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from vcimage.document_mapper import attribute, children
from vcimage.errors import CloudError
from vcimage.transport import VCLOUD_NS, MediaType, Transport

logger = logging.getLogger(__name__)


class VmState(StrEnum):
    """Power state of a workload."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    SUSPENDED = "suspended"
    ERROR = "error"


# vCloud status codes (VM "status" attribute)
_STATUS_CODES: dict[int, VmState] = {
    -1: VmState.ERROR,  # FAILED_CREATION
    0: VmState.PENDING,  # UNRESOLVED
    1: VmState.STOPPED,  # RESOLVED
    3: VmState.SUSPENDED,
    4: VmState.RUNNING,  # POWERED_ON
    5: VmState.PENDING,  # WAITING_FOR_INPUT
    6: VmState.PENDING,  # UNKNOWN
    7: VmState.PENDING,  # UNRECOGNIZED
    8: VmState.STOPPED,  # POWERED_OFF
    9: VmState.PENDING,  # INCONSISTENT_STATE
    10: VmState.PENDING,  # MIXED
}


def to_vm_state(status: str | None) -> VmState:
    """Map a vCloud status code to a VmState (PENDING when unknown)."""
    try:
        return _STATUS_CODES.get(int(status or ""), VmState.PENDING)
    except ValueError:
        return VmState.PENDING


@dataclass
class Workload:
    """A VM as seen by the capture workflow.

    Attributes:
        workload_id: VM id
        state: Current power state
        parent_vapp_id: Id of the vApp containing the VM
        data_center_id: Id of the VDC the vApp lives in
        name: VM name
    """

    workload_id: str
    state: VmState
    parent_vapp_id: str | None
    data_center_id: str | None
    name: str | None = None


class WorkloadService(Protocol):
    """Power-state operations used by the capture workflow."""

    def get_workload(self, workload_id: str) -> Workload | None: ...

    def undeploy(self, vapp_id: str, mode: str) -> None: ...

    def deploy(self, vapp_id: str) -> None: ...


class VCloudWorkloadService:
    """WorkloadService backed by the vCloud REST API."""

    def __init__(self, transport: Transport):
        self.transport = transport

    def _up_link(self, element, media_type: str) -> str | None:
        for link in children(element, "Link"):
            if (attribute(link, "rel") or "").lower() == "up" and attribute(
                link, "type"
            ) == media_type:
                href = attribute(link, "href")
                if href:
                    return self.transport.to_id(href)
        return None

    def get_workload(self, workload_id: str) -> Workload | None:
        """Load a VM and resolve its parent vApp and VDC.

        Returns:
            Workload, or None when the VM does not exist
        """
        xml = self.transport.get("vm", workload_id)
        if xml is None:
            return None
        doc = self.transport.parse_xml(xml)
        vm = doc.find_first("Vm")
        if vm is None:
            return None

        vapp_id = self._up_link(vm, MediaType.VAPP)
        vdc_id = None
        if vapp_id is not None:
            vapp_xml = self.transport.get("vApp", vapp_id)
            if vapp_xml is not None:
                vapp = self.transport.parse_xml(vapp_xml).find_first("VApp")
                if vapp is not None:
                    vdc_id = self._up_link(vapp, MediaType.VDC)

        return Workload(
            workload_id=workload_id,
            state=to_vm_state(attribute(vm, "status")),
            parent_vapp_id=vapp_id,
            data_center_id=vdc_id,
            name=attribute(vm, "name"),
        )

    def undeploy(self, vapp_id: str, mode: str) -> None:
        """Undeploy a vApp ("shutdown", "powerOff", "suspend"...) and wait."""
        logger.info(f"Undeploying vApp {vapp_id} ({mode})")
        body = (
            f'<UndeployVAppParams xmlns="{VCLOUD_NS}">'
            f"<UndeployPowerAction>{mode}</UndeployPowerAction>"
            "</UndeployVAppParams>"
        )
        url = self.transport.to_url("vApp", vapp_id) + "/action/undeploy"
        self.transport.wait_for(
            self.transport.post("undeploy", url, MediaType.UNDEPLOY_VAPP_PARAMS, body)
        )

    def deploy(self, vapp_id: str) -> None:
        """Deploy and power on a vApp, then wait."""
        logger.info(f"Deploying vApp {vapp_id}")
        body = f'<DeployVAppParams xmlns="{VCLOUD_NS}" powerOn="true"/>'
        url = self.transport.to_url("vApp", vapp_id) + "/action/deploy"
        response = self.transport.post("deploy", url, MediaType.DEPLOY_VAPP_PARAMS, body)
        if not response:
            raise CloudError(f"No response deploying vApp {vapp_id}")
        self.transport.wait_for(response)


__all__ = ["VCloudWorkloadService", "VmState", "Workload", "WorkloadService", "to_vm_state"]
