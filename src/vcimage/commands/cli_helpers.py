"""Shared helper functions for CLI commands.

Functions in this module should be:
- Side-effect minimal
- Reusable across command groups
"""

import logging
from datetime import datetime, timezone

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from vcimage.config_manager import ConfigManager
from vcimage.models import Catalog, MachineImage
from vcimage.template_support import TemplateSupport

logger = logging.getLogger(__name__)

console = Console()


def build_support(config_path: str | None = None) -> TemplateSupport:
    """Load configuration and build a TemplateSupport for it.

    Raises:
        ConfigError: If the configuration is unreadable or incomplete
    """
    config = ConfigManager.load_config(config_path)
    logger.debug(f"Using vCloud endpoint {config.endpoint} (org {config.org_id})")
    return TemplateSupport.from_config(config)


def format_timestamp(epoch_ms: int) -> str:
    """Format epoch milliseconds for display ("-" when unknown)."""
    if not epoch_ms:
        return "-"
    moment = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M UTC")


def image_table(images: list[MachineImage], title: str = "vApp Templates") -> Table:
    """Build a table with one row per image."""
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Owner")
    table.add_column("Platform")
    table.add_column("Arch", width=5)
    table.add_column("Created", style="dim")

    for image in images:
        table.add_row(
            escape(image.image_id),
            escape(image.name),
            escape(image.owner_id),
            str(image.platform),
            str(image.architecture),
            format_timestamp(image.created_at),
        )
    return table


def catalog_table(catalogs: list[Catalog], title: str) -> Table:
    """Build a table with one row per catalog."""
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Owner")
    table.add_column("Published", width=9)

    for catalog in catalogs:
        table.add_row(
            escape(catalog.catalog_id),
            escape(catalog.name or "-"),
            escape(catalog.owner),
            "yes" if catalog.published else "no",
        )
    return table


__all__ = ["build_support", "catalog_table", "console", "format_timestamp", "image_table"]
