"""Template loader: catalog items and vApp templates as machine images.

A catalog item points at a vApp template through its Entity link. Loading an
item fetches both documents and folds everything the image model needs
(name, description, platform, architecture, child VMs, network defaults,
lease expiry) into a TemplateFacts accumulator, which becomes the
MachineImage at the end.

Missing optional sections never fail a load; they leave the default in
place. A template whose storage lease has expired is reported as absent.

Public API:
    TemplateLoader: Load catalog items and templates
    TemplateFacts: Accumulator for values read from a template document
    parse_network_connection_section: Primary-connection network defaults
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from vcimage.document_mapper import (
    Element,
    attribute,
    children,
    first_child,
    parse_timestamp,
    serialize,
    text,
    visit,
)
from vcimage.models import (
    Architecture,
    MachineImage,
    MachineImageState,
    NetworkDefaults,
    Platform,
    ProviderContext,
)
from vcimage.transport import Transport

logger = logging.getLogger(__name__)

# Tag names set on loaded images
TAG_CATALOG_ITEM_ID = "catalog_item_id"
TAG_PUBLIC = "public"
TAG_CHILD_VM_IDS = "child_vm_ids"
TAG_DEFAULT_NETWORK = "default_network_name"
TAG_DEFAULT_NETWORK_DHCP = "default_network_name_dhcp"
TAG_NETWORK_CONFIG = "network_config"
TAG_PARENT_NETWORK_HREF = "parent_network_href"
TAG_PARENT_NETWORK_ID = "parent_network_id"
TAG_PARENT_NETWORK_NAME = "parent_network_name"


def is_32_bit(os_description: str) -> bool:
    """Check whether an OS description names a 32-bit system."""
    return "32" in os_description or ("x86" in os_description and "64" not in os_description)


def parse_network_connection_section(section: Element) -> NetworkDefaults:
    """Read default network names from a NetworkConnectionSection.

    Only the connection whose NetworkConnectionIndex equals the section's
    PrimaryNetworkConnectionIndex is considered. Its network is the DHCP
    default when its IpAddressAllocationMode is DHCP and the static default
    otherwise.

    Args:
        section: NetworkConnectionSection element of a VM

    Returns:
        NetworkDefaults (both unset when there is no usable primary connection)
    """
    primary = _int_or_none(text(first_child(section, "PrimaryNetworkConnectionIndex")))
    if primary is None:
        return NetworkDefaults()

    for connection in children(section, "NetworkConnection"):
        index = _int_or_none(text(first_child(connection, "NetworkConnectionIndex")))
        if index != primary:
            continue
        mode = text(first_child(connection, "IpAddressAllocationMode"))
        if mode is None:
            return NetworkDefaults()
        network = attribute(connection, "network")
        if mode.upper() == "DHCP":
            return NetworkDefaults(dhcp_network=network)
        return NetworkDefaults(static_network=network)
    return NetworkDefaults()


def _int_or_none(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@dataclass
class TemplateFacts:
    """Values read from a vApp template document.

    Built up by the element handlers of TemplateLoader and merged with the
    caller-supplied defaults in to_image().
    """

    name: str | None = None
    description: str | None = None
    created_at: int = 0
    product: str | None = None
    os_description: str | None = None
    architecture: Architecture = Architecture.I64
    child_vm_ids: set[str] = field(default_factory=set)
    vm_count: int = 0
    network_defaults: NetworkDefaults | None = None
    network_config: str | None = None
    parent_network_href: str | None = None
    parent_network_id: str | None = None
    parent_network_name: str | None = None
    expired: bool = False

    def guess_platform(self, name: str, description: str) -> Platform:
        """Platform from the product string, the OS description, then the name."""
        for candidate in (self.product, self.os_description):
            if candidate:
                platform = Platform.guess(candidate)
                if platform != Platform.UNKNOWN:
                    return platform
        return Platform.guess(f"{name} {description}")

    def to_image(
        self,
        image_id: str,
        owner_id: str,
        region_id: str,
        published: bool,
        name: str | None,
        description: str | None,
        created_at: int,
    ) -> MachineImage:
        """Merge the facts with caller-supplied values into a MachineImage."""
        final_name = self.name or name or image_id
        final_description = self.description or description or final_name
        image = MachineImage(
            image_id=image_id,
            owner_id=owner_id,
            region_id=region_id,
            name=final_name,
            description=final_description,
            architecture=self.architecture,
            platform=self.guess_platform(final_name, final_description),
            state=MachineImageState.ACTIVE,
            created_at=self.created_at or created_at,
            child_vm_ids=tuple(sorted(self.child_vm_ids)),
        )
        image.set_tag(TAG_CHILD_VM_IDS, ",".join(image.child_vm_ids))
        if published:
            image.set_tag(TAG_PUBLIC, "true")
        if self.network_defaults is not None:
            image.set_tag(TAG_DEFAULT_NETWORK, self.network_defaults.static_network)
            image.set_tag(TAG_DEFAULT_NETWORK_DHCP, self.network_defaults.dhcp_network)
        image.set_tag(TAG_NETWORK_CONFIG, self.network_config)
        image.set_tag(TAG_PARENT_NETWORK_HREF, self.parent_network_href)
        image.set_tag(TAG_PARENT_NETWORK_ID, self.parent_network_id)
        image.set_tag(TAG_PARENT_NETWORK_NAME, self.parent_network_name)
        return image


class TemplateLoader:
    """Load catalog items and vApp templates into MachineImage records."""

    def __init__(
        self,
        transport: Transport,
        context: ProviderContext,
        clock: Callable[[], float] = time.time,
    ):
        self.transport = transport
        self.context = context
        self._clock = clock

    def load_template(
        self, owner_id: str, catalog_item_id: str, published: bool
    ) -> MachineImage | None:
        """Load the template a catalog item points at.

        Args:
            owner_id: Owner of the catalog holding the item
            catalog_item_id: Catalog item id
            published: Whether the catalog is public

        Returns:
            MachineImage, or None if the item or its template is missing or expired
        """
        xml = self.transport.get("catalogItem", catalog_item_id)
        if xml is None:
            logger.warning(f"Catalog item {catalog_item_id} is missing from the catalog")
            return None

        item = self.transport.parse_xml(xml).find_first("CatalogItem")
        if item is None:
            return None

        name = attribute(item, "name") or None
        item_facts = TemplateFacts(name=name, description=name)
        entity_ids: list[str] = []

        def read_description(element: Element) -> None:
            value = text(element)
            if value:
                item_facts.description = value
                item_facts.name = item_facts.name or value

        def read_entity(element: Element) -> None:
            href = attribute(element, "href")
            if href:
                entity_ids.append(self.transport.to_id(href))

        visit(
            item,
            {
                "Description": read_description,
                "DateCreated": lambda element: self._read_date_created(element, item_facts),
                "Entity": read_entity,
            },
        )
        if not entity_ids:
            logger.debug(f"Catalog item {catalog_item_id} has no entity link")
            return None

        return self.load_vapp(
            entity_ids[-1],
            owner_id,
            published,
            item_facts.name,
            item_facts.description,
            item_facts.created_at,
        )

    def load_vapp(
        self,
        template_id: str,
        owner_id: str,
        published: bool,
        name: str | None = None,
        description: str | None = None,
        created_at: int = 0,
    ) -> MachineImage | None:
        """Load a vApp template.

        Args:
            template_id: vApp template id
            owner_id: Owner to record on the image
            published: Whether the template comes from a public catalog
            name: Fallback name when the template has none
            description: Fallback description when the template has none
            created_at: Fallback creation time in epoch milliseconds

        Returns:
            MachineImage, or None if the template is missing or its lease expired
        """
        xml = self.transport.get("vAppTemplate", template_id)
        if xml is None:
            return None

        template = self.transport.parse_xml(xml).find_first("VAppTemplate")
        if template is None:
            return None

        facts = TemplateFacts(name=attribute(template, "name") or None)
        self.read_template(template, facts)
        if facts.expired:
            logger.debug(f"vApp template {template_id} has an expired storage lease")
            return None

        return facts.to_image(
            template_id,
            owner_id,
            self.context.region_id,
            published,
            name,
            description,
            created_at,
        )

    def read_template(self, template: Element, facts: TemplateFacts) -> None:
        """Fold the sections of a VAppTemplate element into facts."""
        visit(
            template,
            {
                "Description": lambda element: self._read_description(element, facts),
                "NetworkConfigSection": lambda element: self._read_network_config(element, facts),
                "Children": lambda element: self._read_children(element, facts),
                "DateCreated": lambda element: self._read_date_created(element, facts),
                "LeaseSettingsSection": lambda element: self._read_lease(element, facts),
            },
        )

    def _read_description(self, element: Element, facts: TemplateFacts) -> None:
        value = text(element)
        if value:
            facts.description = value

    def _read_date_created(self, element: Element, facts: TemplateFacts) -> None:
        value = text(element)
        if value:
            facts.created_at = parse_timestamp(value)

    def _read_network_config(self, section: Element, facts: TemplateFacts) -> None:
        for config in children(section, "NetworkConfig"):
            facts.network_config = serialize(config)
            for configuration in children(config, "Configuration"):
                parent = first_child(configuration, "ParentNetwork")
                if parent is not None:
                    facts.parent_network_href = attribute(parent, "href")
                    facts.parent_network_id = attribute(parent, "id")
                    facts.parent_network_name = attribute(parent, "name")

    def _read_children(self, element: Element, facts: TemplateFacts) -> None:
        for vm in children(element, "Vm"):
            href = attribute(vm, "href")
            if href:
                facts.child_vm_ids.add(self.transport.to_id(href))
            first_vm = facts.vm_count == 0
            facts.vm_count += 1
            self._read_vm(vm, facts, first_vm)

    def _read_vm(self, vm: Element, facts: TemplateFacts, first_vm: bool) -> None:
        def read_product(section: Element) -> None:
            for product in children(section, "Product"):
                value = text(product)
                if value and facts.product is None:
                    facts.product = value

        def read_os(section: Element) -> None:
            for os_description in children(section, "Description"):
                value = text(os_description)
                if not value:
                    continue
                if facts.os_description is None:
                    facts.os_description = value
                if is_32_bit(value):
                    facts.architecture = Architecture.I32

        def read_network_connections(section: Element) -> None:
            if first_vm:
                facts.network_defaults = parse_network_connection_section(section)

        visit(
            vm,
            {
                "ProductSection": read_product,
                "OperatingSystemSection": read_os,
                "NetworkConnectionSection": read_network_connections,
            },
        )

    def _read_lease(self, section: Element, facts: TemplateFacts) -> None:
        logger.debug(f"Checking lease settings for vApp template {facts.name}")
        expiration = text(first_child(section, "StorageLeaseExpiration"))
        if not expiration:
            return
        expires_at = parse_timestamp(expiration)
        # Unparseable timestamps come back as 0, which is always in the past
        if expires_at < int(self._clock() * 1000):
            facts.expired = True


__all__ = [
    "TAG_CATALOG_ITEM_ID",
    "TAG_CHILD_VM_IDS",
    "TAG_DEFAULT_NETWORK",
    "TAG_DEFAULT_NETWORK_DHCP",
    "TAG_NETWORK_CONFIG",
    "TAG_PUBLIC",
    "TemplateFacts",
    "TemplateLoader",
    "is_32_bit",
    "parse_network_connection_section",
]
