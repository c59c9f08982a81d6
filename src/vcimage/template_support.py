"""vApp template support: the caller-facing image operations.

TemplateSupport wires the catalog directory, template loader, list
coordinator, capture orchestrator and catalog publisher for one
account/region and exposes the operations a machine-image consumer needs.

Example:
    >>> support = TemplateSupport.from_config(ConfigManager.load_config())
    >>> for image in support.list_images(ImageFilter(name_pattern="ubuntu")):
    ...     print(image.image_id, image.name)
"""

import logging

from vcimage.capture import CaptureOptions, CaptureOrchestrator, CaptureProgress
from vcimage.catalog_directory import CatalogDirectory
from vcimage.config_manager import ConfigManager, VCloudConfig
from vcimage.errors import CloudError
from vcimage.list_coordinator import ImageListCoordinator
from vcimage.models import (
    Catalog,
    ImageClass,
    ImageFilter,
    MachineImage,
    MachineImageFormat,
    MachineImageType,
    ProviderContext,
)
from vcimage.publisher import CatalogPublisher
from vcimage.template_loader import TAG_CATALOG_ITEM_ID, TAG_PUBLIC, TemplateLoader
from vcimage.transport import Transport, VCloudMethod
from vcimage.workload import VCloudWorkloadService, WorkloadService

logger = logging.getLogger(__name__)

PROVIDER_TERM = "vApp Template"


class TemplateSupport:
    """Machine-image operations backed by vCloud catalogs and vApp templates."""

    def __init__(
        self,
        transport: Transport,
        workload_service: WorkloadService,
        context: ProviderContext,
        config: VCloudConfig | None = None,
    ):
        config = config or VCloudConfig()
        self.transport = transport
        self.context = context
        self.config = config
        self.directory = CatalogDirectory(
            transport, context, ttl=config.catalog_ttl_minutes * 60
        )
        self.loader = TemplateLoader(transport, context)
        self.coordinator = ImageListCoordinator(
            self.directory, self.loader, context, ttl=config.image_list_ttl_minutes * 60
        )
        self.publisher = CatalogPublisher(transport, self.directory, context)
        self.orchestrator = CaptureOrchestrator(
            transport,
            workload_service,
            self.loader,
            self.publisher,
            context,
            timeout=config.capture_timeout_minutes * 60,
            poll_interval=config.capture_poll_seconds,
        )

    @classmethod
    def from_config(
        cls, config: VCloudConfig, auth_token: str | None = None
    ) -> "TemplateSupport":
        """Build a TemplateSupport talking to the configured vCloud endpoint.

        Args:
            config: Loaded configuration (endpoint and org_id required)
            auth_token: Session token; defaults to VCIMAGE_AUTH_TOKEN

        Raises:
            ConfigError: If required settings are missing
        """
        config.validate()
        transport = VCloudMethod(config, auth_token=auth_token or ConfigManager.get_auth_token())
        context = ProviderContext(account_number=config.account_number, region_id=config.org_id)
        return cls(transport, VCloudWorkloadService(transport), context, config)

    # Listing

    def list_images(self, image_filter: ImageFilter | None = None) -> list[MachineImage]:
        """List images in the account's private catalogs (cached)."""
        return self.coordinator.list_images(image_filter)

    def search_public_images(self, image_filter: ImageFilter | None = None) -> list[MachineImage]:
        """Scan every public catalog for matching images (not cached)."""
        images = []
        for catalog in self.directory.list_public_catalogs():
            images.extend(self.coordinator.scan_catalog(catalog, image_filter))
        return images

    def list_catalogs(self, published: bool = False) -> list[Catalog]:
        return self.directory.list_catalogs(published)

    def get_image(self, image_id: str) -> MachineImage | None:
        """Find an image by id, private catalogs first, then public ones."""
        for image in self.list_images():
            if image.image_id == image_id:
                return image
        for image in self.search_public_images():
            if image.image_id == image_id:
                return image
        return None

    def is_image_shared_with_public(self, image_id: str) -> bool:
        image = self.get_image(image_id)
        return image is not None and image.get_tag(TAG_PUBLIC) == "true"

    # Mutations

    def capture(
        self, options: CaptureOptions, progress: CaptureProgress | None = None
    ) -> MachineImage:
        """Capture a VM's vApp into a published template.

        The cached image list is dropped afterwards so the new image shows up
        in the next listing.
        """
        try:
            return self.orchestrator.capture(options, progress)
        finally:
            self.coordinator.invalidate()

    def remove(self, image_id: str) -> None:
        """Delete a template and, when known, its catalog item.

        Raises:
            CloudError: If no image has this id
        """
        image = self.get_image(image_id)
        if image is None:
            raise CloudError(f"No such image: {image_id}")

        catalog_item_id = image.get_tag(TAG_CATALOG_ITEM_ID)
        try:
            self.transport.delete("vAppTemplate", image_id)
            if catalog_item_id is not None:
                self.transport.delete("catalogItem", catalog_item_id)
        finally:
            self.coordinator.invalidate()
        logger.info(f"Removed image {image_id}")

    # Capabilities

    def list_supported_formats(self) -> list[MachineImageFormat]:
        return [MachineImageFormat.VMDK]

    def list_shares(self, image_id: str) -> list[str]:
        """Sharing is not supported; no image has shares."""
        return []

    def get_provider_term_for_image(self, image_class: ImageClass = ImageClass.MACHINE) -> str:
        return PROVIDER_TERM

    def supports_custom_images(self) -> bool:
        return True

    def supports_image_capture(self, image_type: MachineImageType) -> bool:
        return image_type == MachineImageType.VOLUME

    def supports_public_library(self, image_class: ImageClass) -> bool:
        return image_class == ImageClass.MACHINE


__all__ = ["PROVIDER_TERM", "TemplateSupport"]
