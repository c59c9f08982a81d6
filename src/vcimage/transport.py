"""vCloud REST transport.

The image-support core talks to vCloud only through the Transport protocol
defined here. VCloudMethod is the concrete implementation: a thin wrapper
around a requests.Session that issues authenticated calls against
``{endpoint}/api`` and understands vCloud error and task documents.

Session negotiation is out of scope: VCloudMethod is handed an existing
``x-vcloud-authorization`` token (or a pre-configured session).

Security:
- HTTPS certificate verification on by default
- Tokens never logged (LogSanitizer on every logged body)
- Timeout on every request

Public API:
    Transport: Protocol consumed by the image-support components
    VCloudMethod: requests-based Transport implementation
    MediaType: vCloud media type constants
    check_error: Raise CloudError when a document encodes a platform error
    escape_xml: Escape text for inclusion in request bodies
"""

import logging
import time
from collections.abc import Callable
from typing import Protocol
from xml.sax.saxutils import escape

import requests

from vcimage.config_manager import VCloudConfig
from vcimage.document_mapper import Document, attribute, first_child, parse_document
from vcimage.errors import CloudError
from vcimage.log_sanitizer import LogSanitizer

logger = logging.getLogger(__name__)

VCLOUD_NS = "http://www.vmware.com/vcloud/v1.5"
OVF_NS = "http://schemas.dmtf.org/ovf/envelope/1"

# Task states after which a task will not change again
TERMINAL_TASK_STATES = frozenset({"success", "error", "canceled", "aborted"})


class MediaType:
    """vCloud media types."""

    ORG = "application/vnd.vmware.vcloud.org+xml"
    CATALOG = "application/vnd.vmware.vcloud.catalog+xml"
    CATALOG_ITEM = "application/vnd.vmware.vcloud.catalogItem+xml"
    VAPP = "application/vnd.vmware.vcloud.vApp+xml"
    VAPP_TEMPLATE = "application/vnd.vmware.vcloud.vAppTemplate+xml"
    VDC = "application/vnd.vmware.vcloud.vdc+xml"
    VM = "application/vnd.vmware.vcloud.vm+xml"
    TASK = "application/vnd.vmware.vcloud.task+xml"
    ADMIN_CATALOG = "application/vnd.vmware.admin.catalog+xml"
    CAPTURE_VAPP_PARAMS = "application/vnd.vmware.vcloud.captureVAppParams+xml"
    DEPLOY_VAPP_PARAMS = "application/vnd.vmware.vcloud.deployVAppParams+xml"
    UNDEPLOY_VAPP_PARAMS = "application/vnd.vmware.vcloud.undeployVAppParams+xml"


class Transport(Protocol):
    """Operations the image-support components need from a vCloud client."""

    def get(self, resource: str, resource_id: str) -> str | None: ...

    def post(self, action: str, url: str, media_type: str, body: str) -> str: ...

    def delete(self, resource: str, resource_id: str) -> None: ...

    def wait_for(self, response: str | None) -> None: ...

    def to_url(self, resource: str, resource_id: str) -> str: ...

    def to_admin_url(self, resource: str, resource_id: str) -> str: ...

    def to_id(self, href: str) -> str: ...

    def parse_xml(self, raw: str) -> Document: ...

    def check_error(self, document: Document) -> None: ...


def escape_xml(value: str | None) -> str:
    """Escape text for an XML attribute or element body."""
    return escape(value or "", {'"': "&quot;"})


def error_message(document: Document) -> str | None:
    """Return the message of the first Error element in a document, if any."""
    error = document.find_first("Error")
    if error is None:
        return None
    message = attribute(error, "message")
    code = attribute(error, "majorErrorCode")
    minor = attribute(error, "minorErrorCode")
    parts = [p for p in (code, minor) if p]
    prefix = f"[{'/'.join(parts)}] " if parts else ""
    return f"{prefix}{message or 'Unspecified vCloud error'}"


def check_error(document: Document) -> None:
    """Raise CloudError if a document encodes a platform-level failure.

    Raises:
        CloudError: With the platform's message
    """
    message = error_message(document)
    if message is not None:
        raise CloudError(message)


class VCloudMethod:
    """requests-based vCloud Director client.

    Example:
        >>> method = VCloudMethod(config, auth_token=token)
        >>> xml = method.get("catalog", "f6e1b0f0-...")
        >>> doc = method.parse_xml(xml)
    """

    # Resources whose REST path differs from their name
    RESOURCE_PATHS = {"vm": "vApp"}

    def __init__(
        self,
        config: VCloudConfig,
        session: requests.Session | None = None,
        auth_token: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        config.validate()
        self.config = config
        self.base_url = f"{config.endpoint.rstrip('/')}/api"
        self.session = session or requests.Session()
        self.session.headers["Accept"] = f"application/*+xml;version={config.api_version}"
        if auth_token:
            self.session.headers["x-vcloud-authorization"] = auth_token
        self._sleep = sleep
        self._clock = clock

    def to_url(self, resource: str, resource_id: str) -> str:
        if self.config.compat and resource_id.startswith("/"):
            return f"{self.base_url}{resource_id}"
        path = self.RESOURCE_PATHS.get(resource, resource)
        return f"{self.base_url}/{path}/{resource_id}"

    def to_admin_url(self, resource: str, resource_id: str) -> str:
        return f"{self.base_url}/admin/{resource}/{resource_id}"

    def to_id(self, href: str) -> str:
        """Convert a resource href into an opaque identifier.

        Example:
            >>> method.to_id("https://vcd/api/vAppTemplate/vappTemplate-12")
            'vappTemplate-12'
        """
        parts = href.split("/")
        if len(parts) > 2:
            if self.config.compat:
                return f"/{parts[-2]}/{parts[-1]}"
            return parts[-1]
        return href

    def parse_xml(self, raw: str) -> Document:
        return parse_document(raw)

    def check_error(self, document: Document) -> None:
        check_error(document)

    def _request(
        self, method: str, url: str, body: str | None = None, media_type: str | None = None
    ) -> requests.Response:
        headers = {"Content-Type": media_type} if media_type else None
        logger.debug(f"{method} {url}")
        try:
            return self.session.request(
                method,
                url,
                data=body.encode("utf-8") if body is not None else None,
                headers=headers,
                timeout=self.config.request_timeout_seconds,
                verify=self.config.verify_ssl,
            )
        except requests.RequestException as e:
            raise CloudError(
                f"{method} {url} failed: {LogSanitizer.sanitize(str(e))}"
            ) from e

    def _raise_for_status(self, response: requests.Response, what: str) -> None:
        if response.status_code < 400:
            return
        message = None
        if response.text:
            try:
                message = error_message(parse_document(response.text))
            except CloudError:
                message = None
        detail = message or LogSanitizer.truncate(response.text or response.reason or "")
        logger.error(f"{what} failed with HTTP {response.status_code}: {detail}")
        raise CloudError(f"{what} failed with HTTP {response.status_code}: {detail}")

    def get_url(self, url: str) -> str | None:
        """GET a full URL; None when the resource does not exist."""
        response = self._request("GET", url)
        if response.status_code in (403, 404):
            # vCloud answers 403 for resources outside the caller's org
            return None
        self._raise_for_status(response, f"GET {url}")
        return response.text or None

    def get(self, resource: str, resource_id: str) -> str | None:
        """GET a resource by type and id; None when it does not exist."""
        return self.get_url(self.to_url(resource, resource_id))

    def post(self, action: str, url: str, media_type: str, body: str) -> str:
        """POST a request body and return the response body.

        Raises:
            CloudError: On transport failure or an HTTP error status
        """
        logger.info(f"Posting {action} to {url}")
        response = self._request("POST", url, body=body, media_type=media_type)
        self._raise_for_status(response, action)
        return response.text

    def delete(self, resource: str, resource_id: str) -> None:
        """DELETE a resource and wait for the resulting task.

        Raises:
            CloudError: If the resource is missing or the delete task fails
        """
        url = self.to_url(resource, resource_id)
        logger.info(f"Deleting {resource} {resource_id}")
        response = self._request("DELETE", url)
        if response.status_code == 404:
            raise CloudError(f"No such {resource}: {resource_id}")
        self._raise_for_status(response, f"delete {resource} {resource_id}")
        self.wait_for(response.text)

    def wait_for(self, response: str | None) -> None:
        """Block until the task in a response document reaches a terminal state.

        Responses without a task return immediately.

        Raises:
            CloudError: If the task fails, is canceled, or times out
        """
        if not response:
            return
        task = parse_document(response).find_first("Task")
        deadline = self._clock() + self.config.task_timeout_minutes * 60

        while task is not None:
            status = (attribute(task, "status") or "").lower()
            href = attribute(task, "href")
            if status == "success":
                return
            if status in TERMINAL_TASK_STATES:
                error = first_child(task, "Error")
                detail = attribute(error, "message") if error is not None else None
                raise CloudError(
                    f"Task {href or '(unknown)'} ended with status {status}"
                    + (f": {detail}" if detail else "")
                )
            if href is None:
                logger.warning("Task has no href; unable to track its completion")
                return
            if self._clock() > deadline:
                raise CloudError(f"Timed out waiting for task {href}")
            self._sleep(self.config.task_poll_seconds)
            xml = self.get_url(href)
            if xml is None:
                raise CloudError(f"Task {href} disappeared")
            task = parse_document(xml).find_first("Task")


__all__ = [
    "OVF_NS",
    "VCLOUD_NS",
    "MediaType",
    "Transport",
    "VCloudMethod",
    "check_error",
    "escape_xml",
]
