"""Machine image commands.

This module provides commands for listing, showing, searching, capturing
and removing vApp templates.
"""

from __future__ import annotations

import sys

import click

from vcimage.capture import CaptureOptions
from vcimage.commands.cli_helpers import build_support, console, format_timestamp, image_table
from vcimage.config_manager import ConfigError
from vcimage.errors import VCloudError
from vcimage.models import ImageFilter

__all__ = ["images_group"]


def _config_path(ctx: click.Context) -> str | None:
    return (ctx.obj or {}).get("config_path")


@click.group(name="images")
def images_group() -> None:
    """Manage vApp templates as machine images.

    \b
    EXAMPLES:
        # List the organization's templates
        $ vcimage images list

        # Only templates whose name matches a pattern
        $ vcimage images list --name 'ubuntu.*22'

        # Search public catalogs
        $ vcimage images search-public --name centos

        # Capture a VM's vApp as a new template
        $ vcimage images capture vm-1234 --name golden-web --description "Web tier"

        # Remove a template and its catalog item
        $ vcimage images remove vappTemplate-5678
    """
    pass


@images_group.command(name="list")
@click.option("--name", "name_pattern", help="Regular expression matched against names", type=str)
@click.pass_context
def images_list(ctx: click.Context, name_pattern: str | None):
    """List templates in the organization's private catalogs."""
    try:
        image_filter = ImageFilter(name_pattern=name_pattern) if name_pattern else None
        support = build_support(_config_path(ctx))
        images = support.list_images(image_filter)

        if not images:
            click.echo("No images found.")
            return

        console.print(image_table(images))
        click.echo(f"\nTotal: {len(images)} images")

    except (ConfigError, VCloudError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@images_group.command(name="show")
@click.argument("image_id", type=str)
@click.pass_context
def images_show(ctx: click.Context, image_id: str):
    """Show details of one template.

    \b
    Example:
        vcimage images show vappTemplate-5678
    """
    try:
        support = build_support(_config_path(ctx))
        image = support.get_image(image_id)

        if image is None:
            click.echo(f"Error: No such image: {image_id}", err=True)
            sys.exit(1)

        click.echo(f"Image: {image.image_id}")
        click.echo(f"  Name: {image.name}")
        click.echo(f"  Description: {image.description}")
        click.echo(f"  Owner: {image.owner_id}")
        click.echo(f"  Region: {image.region_id}")
        click.echo(f"  Platform: {image.platform}")
        click.echo(f"  Architecture: {image.architecture}")
        click.echo(f"  State: {image.state}")
        click.echo(f"  Created: {format_timestamp(image.created_at)}")
        if image.child_vm_ids:
            click.echo(f"  VMs: {', '.join(image.child_vm_ids)}")
        for key in sorted(image.tags):
            if key == "network_config":
                continue
            click.echo(f"  {key}: {image.tags[key]}")

    except (ConfigError, VCloudError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@images_group.command(name="search-public")
@click.option("--name", "name_pattern", help="Regular expression matched against names", type=str)
@click.pass_context
def images_search_public(ctx: click.Context, name_pattern: str | None):
    """Search public catalogs for templates."""
    try:
        image_filter = ImageFilter(name_pattern=name_pattern) if name_pattern else None
        support = build_support(_config_path(ctx))
        images = support.search_public_images(image_filter)

        if not images:
            click.echo("No public images found.")
            return

        console.print(image_table(images, title="Public vApp Templates"))
        click.echo(f"\nTotal: {len(images)} images")

    except (ConfigError, VCloudError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@images_group.command(name="capture")
@click.argument("vm_id", type=str)
@click.option("--name", required=True, help="Name of the new template", type=str)
@click.option("--description", help="Description of the new template", type=str)
@click.pass_context
def images_capture(ctx: click.Context, vm_id: str, name: str, description: str | None):
    """Capture a VM's vApp as a new template and publish it.

    A running vApp is shut down for the capture and redeployed afterwards.

    \b
    Example:
        vcimage images capture vm-1234 --name golden-web
    """
    try:
        support = build_support(_config_path(ctx))
        click.echo(f"Capturing {vm_id} as '{name}'...")

        image = support.capture(CaptureOptions(vm_id=vm_id, name=name, description=description))

        click.echo(f"\n✓ Captured image {image.image_id}")
        click.echo(f"  Name: {image.name}")
        click.echo(f"  Platform: {image.platform}")

    except (ConfigError, VCloudError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@images_group.command(name="remove")
@click.argument("image_id", type=str)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def images_remove(ctx: click.Context, image_id: str, yes: bool):
    """Delete a template and its catalog item.

    \b
    Example:
        vcimage images remove vappTemplate-5678 --yes
    """
    try:
        if not yes:
            click.confirm(
                f"Delete image '{image_id}'? This action cannot be undone!", abort=True
            )

        support = build_support(_config_path(ctx))
        support.remove(image_id)

        click.echo(f"\n✓ Image '{image_id}' deleted successfully!")

    except (ConfigError, VCloudError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
