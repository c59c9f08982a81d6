"""vcimage command-line interface.

Entry point for the ``vcimage`` console script. Global options are stored on
the click context for the command groups in vcimage.commands.
"""

import logging

import click

from vcimage import __version__
from vcimage.commands import catalogs_group, images_group


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)
@click.option("--config", "config_path", help="Config file path", type=click.Path())
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """vcimage - vCloud Director vApp templates as machine images.

    Lists, captures, publishes and removes vApp templates in the catalogs of
    a vCloud organization.

    \b
    EXAMPLES:
        $ vcimage images list
        $ vcimage images capture vm-1234 --name golden-web
        $ vcimage catalogs list --public

    \b
    CONFIGURATION:
        Config file: ~/.vcimage/config.toml
        Required: endpoint, org_id
        Session token: VCIMAGE_AUTH_TOKEN environment variable

    For help on any command: vcimage <command> --help
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


main.add_command(images_group)
main.add_command(catalogs_group)


if __name__ == "__main__":
    main()
