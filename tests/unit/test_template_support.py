"""Unit tests for template_support module.

Tests cover:
- Listing, searching and lookup across private and public catalogs
- Capture followed by listing (cache invalidation)
- Removal of templates and their catalog items
- Capability answers
- Construction from configuration
"""

import pytest

from vcimage.capture import CaptureOptions
from vcimage.config_manager import ConfigError, VCloudConfig
from vcimage.errors import CloudError, FilterError
from vcimage.models import (
    ImageClass,
    ImageFilter,
    MachineImageFormat,
    MachineImageType,
    Platform,
)
from vcimage.template_support import PROVIDER_TERM, TemplateSupport
from vcimage.transport import VCloudMethod

from tests.fixtures.vcloud_documents import (
    capture_response,
    catalog_document,
    catalog_item_document,
    catalog_item_response,
    template_document,
    vm_xml,
)


@pytest.fixture
def support(populated_transport, workload_service, context):
    return TemplateSupport(populated_transport, workload_service, context, VCloudConfig())


class TestListing:
    """Tests for listing and lookup."""

    def test_list_images(self, support):
        """Test private catalog images are listed."""
        assert [image.image_id for image in support.list_images()] == ["tpl-1", "tpl-2"]

    def test_list_images_filtered(self, support):
        """Test filters apply to the private listing."""
        images = support.list_images(ImageFilter(platform=Platform.UBUNTU))
        assert [image.image_id for image in images] == ["tpl-1"]

    def test_search_public_images(self, support):
        """Test public catalogs are searched."""
        images = support.search_public_images(ImageFilter(name_pattern="win"))
        assert [image.image_id for image in images] == ["tpl-3"]
        assert support.search_public_images(ImageFilter(name_pattern="ubuntu")) == []

    def test_invalid_name_pattern_rejected(self):
        """Test a malformed name pattern fails when the filter is built."""
        with pytest.raises(FilterError, match="Invalid name pattern"):
            ImageFilter(name_pattern="[unclosed")

    def test_list_catalogs(self, support):
        """Test catalogs of either visibility can be listed."""
        assert [c.catalog_id for c in support.list_catalogs()] == ["cat-private"]
        assert [c.catalog_id for c in support.list_catalogs(published=True)] == ["cat-public"]

    def test_get_image_private_then_public(self, support):
        """Test lookup searches private catalogs, then public ones."""
        assert support.get_image("tpl-2").name == "centos-6"
        assert support.get_image("tpl-3").name == "win-2012"
        assert support.get_image("nope") is None

    def test_is_image_shared_with_public(self, support):
        """Test only images from published catalogs count as shared."""
        assert support.is_image_shared_with_public("tpl-3") is True
        assert support.is_image_shared_with_public("tpl-1") is False
        assert support.is_image_shared_with_public("nope") is False


class TestCapture:
    """Tests for capture through the facade."""

    def test_captured_image_is_listed(self, populated_transport, support, events):
        """Test a captured image appears in the next listing."""
        assert len(support.list_images()) == 2

        populated_transport.add(
            "vAppTemplate",
            "tpl-new",
            template_document("tpl-new", "golden", "Golden image", vms=[vm_xml("vm-x")]),
        )

        def add_item(url, body):
            populated_transport.add(
                "catalogItem", "item-new", catalog_item_document("item-new", "tpl-new", "golden")
            )
            populated_transport.add(
                "catalog",
                "cat-private",
                catalog_document("cat-private", item_ids=("item-1", "item-2", "item-new")),
            )
            return catalog_item_response("item-new", "golden")

        populated_transport.queue_post("captureVApp", capture_response("tpl-new"))
        populated_transport.queue_post("addCatalogItem", add_item)

        image = support.capture(CaptureOptions("vm-1", "golden", "Golden image"))

        assert image.image_id == "tpl-new"
        assert image.get_tag("catalog_item_id") == "item-new"
        assert [i.image_id for i in support.list_images()] == ["tpl-1", "tpl-2", "tpl-new"]
        assert events[0] == ("undeploy", "vapp-1")
        assert events[-1] == ("deploy", "vapp-1")

    def test_failed_capture_still_invalidates(self, support, workload_service):
        """Test the image cache is dropped even when capture fails."""
        first = support.list_images()
        workload_service.missing = True

        with pytest.raises(CloudError, match="No such virtual machine"):
            support.capture(CaptureOptions("vm-1", "golden"))

        assert support.list_images() is not first


class TestRemove:
    """Tests for image removal."""

    def test_remove_deletes_template_and_item(self, populated_transport, support):
        """Test the template and its catalog item are deleted."""
        support.remove("tpl-1")

        assert populated_transport.deleted == [("vAppTemplate", "tpl-1"), ("catalogItem", "item-1")]
        assert [image.image_id for image in support.list_images()] == ["tpl-2"]

    def test_remove_unknown_image(self, populated_transport, support):
        """Test removing an unknown image is an error and deletes nothing."""
        with pytest.raises(CloudError, match="No such image: nope"):
            support.remove("nope")

        assert populated_transport.deleted == []

    def test_failed_delete_still_invalidates(self, populated_transport, support):
        """Test the image cache is dropped even when deletion fails."""
        first = support.list_images()

        def refuse(resource, resource_id):
            raise CloudError(f"delete {resource} {resource_id} failed with HTTP 500")

        populated_transport.delete = refuse

        with pytest.raises(CloudError, match="HTTP 500"):
            support.remove("tpl-1")

        assert support.list_images() is not first


class TestCapabilities:
    """Tests for the fixed capability answers."""

    def test_capabilities(self, support):
        assert support.list_supported_formats() == [MachineImageFormat.VMDK]
        assert support.list_shares("tpl-1") == []
        assert support.get_provider_term_for_image() == PROVIDER_TERM == "vApp Template"
        assert support.supports_custom_images() is True

    @pytest.mark.parametrize(
        "image_type,expected",
        [(MachineImageType.VOLUME, True), (MachineImageType.STORAGE, False)],
    )
    def test_supports_image_capture(self, support, image_type, expected):
        assert support.supports_image_capture(image_type) is expected

    @pytest.mark.parametrize(
        "image_class,expected",
        [(ImageClass.MACHINE, True), (ImageClass.KERNEL, False), (ImageClass.RAMDISK, False)],
    )
    def test_supports_public_library(self, support, image_class, expected):
        assert support.supports_public_library(image_class) is expected


class TestFromConfig:
    """Tests for building the facade from configuration."""

    def test_from_config(self):
        """Test the transport, context and cache lifetimes come from config."""
        config = VCloudConfig(
            endpoint="https://vcd.example.com",
            org_id="org-1",
            account="acme",
            catalog_ttl_minutes=5,
            image_list_ttl_minutes=2,
        )

        support = TemplateSupport.from_config(config, auth_token="session-token")

        assert isinstance(support.transport, VCloudMethod)
        assert support.transport.session.headers["x-vcloud-authorization"] == "session-token"
        assert support.context.account_number == "acme"
        assert support.context.region_id == "org-1"
        assert support.directory.ttl == 300
        assert support.coordinator.ttl == 120

    def test_token_from_environment(self, monkeypatch):
        """Test the session token defaults to the environment."""
        monkeypatch.setenv("VCIMAGE_AUTH_TOKEN", "env-token")
        config = VCloudConfig(endpoint="https://vcd.example.com", org_id="org-1")

        support = TemplateSupport.from_config(config)

        assert support.transport.session.headers["x-vcloud-authorization"] == "env-token"
        assert support.context.account_number == "org-1"

    def test_incomplete_config(self):
        """Test a config without endpoint is rejected."""
        with pytest.raises(ConfigError, match="endpoint"):
            TemplateSupport.from_config(VCloudConfig(org_id="org-1"))
