"""List coordinator: one full image scan per scope at a time.

Listing every image means fetching every private catalog and every catalog
item in it, so the result is cached per account/region and refreshes are
serialized by a per-scope mutex. Callers that arrive while a refresh is in
flight block on the mutex and then find the fresh list in the cache.

Public API:
    ImageListCoordinator: Cached, serialized image listing
"""

import logging
import threading

from vcimage.cache import PERMANENT_TTL, ScopedCache
from vcimage.catalog_directory import CatalogDirectory
from vcimage.errors import InternalError
from vcimage.models import Catalog, ImageFilter, MachineImage, ProviderContext
from vcimage.template_loader import TAG_CATALOG_ITEM_ID, TemplateLoader

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_LIST_TTL = 6 * 60


class ImageListCoordinator:
    """Serve image listings from cache, refreshing at most once per scope."""

    LIST_CACHE = "listImages"
    LOCK_CACHE = "listImagesLock"

    def __init__(
        self,
        directory: CatalogDirectory,
        loader: TemplateLoader,
        context: ProviderContext,
        ttl: float = DEFAULT_IMAGE_LIST_TTL,
    ):
        self.directory = directory
        self.loader = loader
        self.context = context
        self.ttl = ttl

    @property
    def list_cache(self) -> ScopedCache:
        return ScopedCache.get_instance(self.LIST_CACHE, self.ttl)

    @property
    def lock_cache(self) -> ScopedCache:
        return ScopedCache.get_instance(self.LOCK_CACHE, PERMANENT_TTL)

    def refresh_lock(self) -> threading.Lock:
        """Get the refresh mutex for this scope, creating it once."""
        lock = self.lock_cache.get_or_create(self.context, threading.Lock)
        if lock is None:
            raise InternalError(f"No lock for {self.context.scope_key}")
        return lock

    def list_images(self, image_filter: ImageFilter | None = None) -> list[MachineImage]:
        """List the images in the account's private catalogs.

        The unfiltered list is cached; a filter is applied to the cached list
        and never stored.

        Args:
            image_filter: Optional predicate on the returned images

        Returns:
            List of MachineImage records
        """
        images = self.list_cache.get(self.context)
        if images is None:
            with self.refresh_lock():
                images = self.list_cache.get(self.context)
                if images is None:
                    images = self._scan_private_catalogs()
                    self.list_cache.put(self.context, images)

        if image_filter is None:
            return images
        return [image for image in images if image_filter.matches(image)]

    def _scan_private_catalogs(self) -> list[MachineImage]:
        logger.debug(f"Refreshing image list for {self.context.scope_key}")
        images: list[MachineImage] = []
        for catalog in self.directory.list_private_catalogs():
            images.extend(self.scan_catalog(catalog))
        logger.debug(f"Found {len(images)} images for {self.context.scope_key}")
        return images

    def scan_catalog(
        self, catalog: Catalog, image_filter: ImageFilter | None = None
    ) -> list[MachineImage]:
        """Load every image in one catalog.

        Items that are missing or expired are skipped.

        Returns:
            Matching images, stamped with the catalog owner and item id
        """
        item_ids = self.directory.catalog_item_ids(catalog)
        if item_ids is None:
            return []

        images = []
        for item_id in item_ids:
            image = self.loader.load_template(catalog.owner, item_id, catalog.published)
            if image is None:
                continue
            if image_filter is not None and not image_filter.matches(image):
                continue
            image.owner_id = catalog.owner
            image.set_tag(TAG_CATALOG_ITEM_ID, item_id)
            images.append(image)
        return images

    def invalidate(self) -> None:
        """Drop the cached image list for this scope."""
        self.list_cache.invalidate(self.context)


__all__ = ["DEFAULT_IMAGE_LIST_TTL", "ImageListCoordinator"]
