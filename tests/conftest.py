"""
Shared test fixtures and configuration for vcimage tests.

This module provides common fixtures used across all test types:
- Fresh process-wide caches for every test
- A provider context and fake vCloud collaborators
- A small organization with one private and one public catalog
"""

import pytest

from vcimage.cache import ScopedCache
from vcimage.catalog_directory import CatalogDirectory
from vcimage.models import ProviderContext
from vcimage.template_loader import TemplateLoader

from tests.fixtures.vcloud_documents import (
    catalog_document,
    catalog_item_document,
    org_document,
    template_document,
    vm_xml,
)
from tests.mocks.vcloud_mock import FakeTransport, FakeWorkloadService

# ============================================================================
# CACHE ISOLATION
# ============================================================================


@pytest.fixture(autouse=True)
def reset_scoped_caches():
    """Drop every named cache so no test sees another test's entries."""
    ScopedCache.reset_all()
    yield
    ScopedCache.reset_all()


# ============================================================================
# VCLOUD FAKES
# ============================================================================


@pytest.fixture
def context():
    """Account "acme" in organization "org-1"."""
    return ProviderContext(account_number="acme", region_id="org-1")


@pytest.fixture
def events():
    """Shared log of remote operations, in call order."""
    return []


@pytest.fixture
def transport(events):
    return FakeTransport(events=events)


@pytest.fixture
def workload_service(events):
    return FakeWorkloadService(events=events)


@pytest.fixture
def directory(transport, context):
    return CatalogDirectory(transport, context)


@pytest.fixture
def loader(transport, context):
    return TemplateLoader(transport, context)


@pytest.fixture
def populated_transport(transport):
    """Organization with a private catalog (two items) and a public one (one item).

    \b
    org-1 (acme)
      cat-private "Standard Catalog"   -> item-1 -> tpl-1 (Ubuntu, 64-bit)
                                        -> item-2 -> tpl-2 (CentOS, 32-bit)
      cat-public  "Public Catalog"     -> item-3 -> tpl-3 (Windows)
    """
    transport.add("org", "org-1", org_document(catalog_ids=("cat-private", "cat-public")))
    transport.add(
        "catalog", "cat-private", catalog_document("cat-private", item_ids=("item-1", "item-2"))
    )
    transport.add(
        "catalog",
        "cat-public",
        catalog_document("cat-public", "Public Catalog", published=True, item_ids=("item-3",)),
    )
    transport.add("catalogItem", "item-1", catalog_item_document("item-1", "tpl-1", "ubuntu"))
    transport.add("catalogItem", "item-2", catalog_item_document("item-2", "tpl-2", "centos"))
    transport.add("catalogItem", "item-3", catalog_item_document("item-3", "tpl-3", "windows"))
    transport.add(
        "vAppTemplate",
        "tpl-1",
        template_document("tpl-1", "ubuntu-22", vms=[vm_xml("vm-a", "Ubuntu Linux (64-bit)")]),
    )
    transport.add(
        "vAppTemplate",
        "tpl-2",
        template_document(
            "tpl-2", "centos-6", "CentOS base", vms=[vm_xml("vm-b", "CentOS 4/5/6 (32-bit)")]
        ),
    )
    transport.add(
        "vAppTemplate",
        "tpl-3",
        template_document(
            "tpl-3",
            "win-2012",
            "Windows Server",
            vms=[vm_xml("vm-c", "Microsoft Windows Server 2012 (64-bit)")],
        ),
    )
    return transport
