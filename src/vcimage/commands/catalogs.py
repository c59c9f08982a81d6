"""Catalog commands.

This module provides the command for listing the organization's public and
private catalogs.
"""

from __future__ import annotations

import sys

import click

from vcimage.commands.cli_helpers import build_support, catalog_table, console
from vcimage.config_manager import ConfigError
from vcimage.errors import VCloudError

__all__ = ["catalogs_group"]


@click.group(name="catalogs")
def catalogs_group() -> None:
    """Inspect vCloud catalogs.

    \b
    EXAMPLES:
        # Private catalogs of the organization
        $ vcimage catalogs list

        # Public catalogs
        $ vcimage catalogs list --public
    """
    pass


@catalogs_group.command(name="list")
@click.option("--public", "published", is_flag=True, help="List public catalogs")
@click.pass_context
def catalogs_list(ctx: click.Context, published: bool):
    """List catalogs visible to the organization."""
    try:
        support = build_support((ctx.obj or {}).get("config_path"))
        catalogs = support.list_catalogs(published)

        if not catalogs:
            click.echo(f"No {'public' if published else 'private'} catalogs found.")
            return

        title = "Public Catalogs" if published else "Private Catalogs"
        console.print(catalog_table(catalogs, title))

    except (ConfigError, VCloudError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
