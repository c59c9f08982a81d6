"""Command groups for vcimage CLI."""

from vcimage.commands.catalogs import catalogs_group
from vcimage.commands.images import images_group

__all__ = ["catalogs_group", "images_group"]
