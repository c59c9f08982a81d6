"""Catalog publisher: put a captured template into the account's catalog.

The target is the account's private "Standard Catalog", else the first private
catalog the account owns. When the account owns none, a "Standard Catalog" is
created. Publishing never silently does nothing: if no catalog can be
resolved it raises CloudError.
"""

import logging

from vcimage.catalog_directory import CatalogDirectory
from vcimage.document_mapper import attribute
from vcimage.errors import CloudError
from vcimage.models import Catalog, MachineImage, ProviderContext
from vcimage.template_loader import TAG_CATALOG_ITEM_ID
from vcimage.transport import VCLOUD_NS, MediaType, Transport, escape_xml

logger = logging.getLogger(__name__)

STANDARD_CATALOG_NAME = "Standard Catalog"
STANDARD_CATALOG_DESCRIPTION = "Standard catalog for custom vApp templates"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"


class CatalogPublisher:
    """Publish vApp templates into the account's default catalog."""

    def __init__(
        self, transport: Transport, directory: CatalogDirectory, context: ProviderContext
    ):
        self.transport = transport
        self.directory = directory
        self.context = context

    def find_catalog(self) -> Catalog | None:
        """Find the account's default private catalog without creating one."""
        owned = [
            catalog
            for catalog in self.directory.list_private_catalogs()
            if catalog.owner == self.context.account_number
        ]
        for catalog in owned:
            if catalog.name == STANDARD_CATALOG_NAME:
                return catalog
        return owned[0] if owned else None

    def create_catalog(self) -> Catalog | None:
        """Create an unpublished "Standard Catalog" and resolve it.

        Returns:
            The new Catalog, or None if it could not be resolved after creation
        """
        logger.info(
            f"Creating {STANDARD_CATALOG_NAME!r} for {self.context.account_number}"
        )
        body = (
            f'<AdminCatalog xmlns="{VCLOUD_NS}" name="{escape_xml(STANDARD_CATALOG_NAME)}">'
            f"<Description>{escape_xml(STANDARD_CATALOG_DESCRIPTION)}</Description>"
            "<IsPublished>false</IsPublished>"
            "</AdminCatalog>"
        )
        url = self.transport.to_admin_url("org", self.context.region_id) + "/catalogs"
        response = self.transport.post("createCatalog", url, MediaType.ADMIN_CATALOG, body)

        doc = self.transport.parse_xml(response)
        self.transport.check_error(doc)
        created = doc.find_first("AdminCatalog")
        href = attribute(created, "href") if created is not None else None
        self.transport.wait_for(response)
        self.directory.invalidate()
        if href is None:
            return None
        return self.directory.get_catalog(False, href)

    def resolve_catalog(self) -> Catalog:
        """Find or create the catalog to publish into.

        Raises:
            CloudError: If no catalog can be found or created
        """
        catalog = self.find_catalog() or self.create_catalog()
        if catalog is None:
            raise CloudError(
                f"Unable to identify a catalog for {self.context.account_number} "
                f"in {self.context.region_id}"
            )
        return catalog

    def publish(self, image: MachineImage) -> None:
        """Add a catalog item referencing the image's template.

        The new catalog item id is recorded on the image as the
        catalog_item_id tag.

        Raises:
            CloudError: If no catalog is available or the platform rejects the item
        """
        catalog = self.resolve_catalog()
        logger.info(f"Publishing {image.image_id} into catalog {catalog.catalog_id}")

        template_url = self.transport.to_url("vAppTemplate", image.image_id)
        body = (
            f'<CatalogItem xmlns="{VCLOUD_NS}" xmlns:xsi="{XSI_NS}" '
            f'name="{escape_xml(image.name)}">'
            f"<Description>{escape_xml(image.description)}</Description>"
            f'<Entity href="{template_url}" name="{escape_xml(image.name)}" '
            f'type="{MediaType.VAPP_TEMPLATE}" xsi:type="ResourceReferenceType"/>'
            "</CatalogItem>"
        )
        url = self.transport.to_url("catalog", catalog.catalog_id) + "/catalogItems"
        response = self.transport.post("addCatalogItem", url, MediaType.CATALOG_ITEM, body)

        doc = self.transport.parse_xml(response)
        self.transport.check_error(doc)
        item = doc.find_first("CatalogItem")
        if item is not None and attribute(item, "href"):
            image.set_tag(TAG_CATALOG_ITEM_ID, self.transport.to_id(attribute(item, "href")))
        self.transport.wait_for(response)


__all__ = ["STANDARD_CATALOG_DESCRIPTION", "STANDARD_CATALOG_NAME", "CatalogPublisher"]
