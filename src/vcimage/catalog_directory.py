"""Catalog directory: public and private catalogs of an organization.

Catalog lists are cached for 30 minutes per account/region scope. A cache
miss fetches the organization document once and every catalog it links to;
a hit makes no remote call.
"""

import logging
from dataclasses import dataclass

from vcimage.cache import ScopedCache
from vcimage.document_mapper import Element, attribute, children, text, visit
from vcimage.models import PUBLIC_OWNER, Catalog, ProviderContext
from vcimage.transport import MediaType, Transport

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_TTL = 30 * 60


@dataclass
class _CatalogFacts:
    """Values collected while walking a Catalog element."""

    published: bool = False
    owner: str = PUBLIC_OWNER

    def read_published(self, element: Element) -> None:
        self.published = (text(element) or "").lower() == "true"


class CatalogDirectory:
    """List and resolve catalogs for one account/region scope."""

    PUBLIC_CACHE = "publicCatalogs"
    PRIVATE_CACHE = "privateCatalogs"

    def __init__(
        self,
        transport: Transport,
        context: ProviderContext,
        ttl: float = DEFAULT_CATALOG_TTL,
    ):
        self.transport = transport
        self.context = context
        self.ttl = ttl

    def _cache(self, published: bool) -> ScopedCache:
        name = self.PUBLIC_CACHE if published else self.PRIVATE_CACHE
        return ScopedCache.get_instance(name, self.ttl)

    def list_catalogs(self, published: bool) -> list[Catalog]:
        """List catalogs whose published flag equals `published`.

        Args:
            published: True for public catalogs, False for private ones

        Returns:
            List of Catalog records (possibly cached)
        """
        cache = self._cache(published)
        catalogs = cache.get(self.context)
        if catalogs is not None:
            return catalogs

        catalogs = []
        xml = self.transport.get("org", self.context.region_id)
        if xml is None:
            logger.warning(f"Organization {self.context.region_id} not found")
        else:
            doc = self.transport.parse_xml(xml)
            for link in doc.find_all("Link"):
                if (attribute(link, "rel") or "").lower() != "down":
                    continue
                if attribute(link, "type") != MediaType.CATALOG:
                    continue
                href = attribute(link, "href")
                if not href:
                    continue
                catalog = self.get_catalog(published, href)
                if catalog is not None:
                    catalogs.append(catalog)

        logger.debug(
            f"Found {len(catalogs)} {'public' if published else 'private'} catalogs "
            f"for {self.context.scope_key}"
        )
        cache.put(self.context, catalogs)
        return catalogs

    def list_public_catalogs(self) -> list[Catalog]:
        return self.list_catalogs(True)

    def list_private_catalogs(self) -> list[Catalog]:
        return self.list_catalogs(False)

    def get_catalog(self, published: bool, href: str) -> Catalog | None:
        """Load a catalog by href if its published flag matches.

        Returns:
            Catalog, or None if missing or of the other visibility
        """
        catalog_id = self.transport.to_id(href)
        xml = self.transport.get("catalog", catalog_id)
        if xml is None:
            logger.warning(
                f"Unable to find catalog {catalog_id} indicated by org "
                f"{self.context.account_number}"
            )
            return None

        doc = self.transport.parse_xml(xml)
        for node in doc.find_all("Catalog"):
            if len(node) == 0:
                continue
            facts = _CatalogFacts()
            visit(
                node,
                {
                    "IsPublished": facts.read_published,
                    "Link": lambda link, facts=facts: self._read_owner(link, facts),
                },
            )
            if facts.published == published:
                return Catalog(
                    catalog_id=catalog_id,
                    name=attribute(node, "name"),
                    published=published,
                    owner=facts.owner,
                )
        return None

    def _read_owner(self, link: Element, facts: "_CatalogFacts") -> None:
        if (attribute(link, "rel") or "").lower() != "up":
            return
        if attribute(link, "type") != MediaType.ORG:
            return
        org_href = attribute(link, "href")
        if org_href:
            facts.owner = self.get_org_name(org_href) or PUBLIC_OWNER

    def get_org_name(self, org_href: str) -> str | None:
        """Follow an organization href and read the org's name."""
        xml = self.transport.get("org", self.transport.to_id(org_href))
        if xml is None:
            return None
        org = self.transport.parse_xml(xml).find_first("Org")
        return attribute(org, "name") if org is not None else None

    def catalog_item_ids(self, catalog: Catalog) -> list[str] | None:
        """List the catalog item ids of a catalog.

        Returns:
            Item ids in document order, or None if the catalog is gone
        """
        xml = self.transport.get("catalog", catalog.catalog_id)
        if xml is None:
            logger.warning(
                f"Unable to find catalog {catalog.catalog_id} indicated by org "
                f"{self.context.account_number}"
            )
            return None

        doc = self.transport.parse_xml(xml)
        item_ids = []
        for node in doc.find_all("Catalog"):
            for wrapper in children(node, "CatalogItems"):
                for item in children(wrapper, "CatalogItem"):
                    href = attribute(item, "href")
                    if href:
                        item_ids.append(self.transport.to_id(href))
        return item_ids

    def invalidate(self) -> None:
        """Drop cached public and private catalog lists for this scope."""
        self._cache(True).invalidate(self.context)
        self._cache(False).invalidate(self.context)


__all__ = ["DEFAULT_CATALOG_TTL", "CatalogDirectory"]
