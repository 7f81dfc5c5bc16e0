"""CLI entry point for the OIDC tester."""

import click

from oidctester import __version__
from oidctester.cli import check as check_commands
from oidctester.cli import config as config_commands
from oidctester.cli import serve as serve_commands


@click.group()
@click.version_option(version=__version__, prog_name="oidctester")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """OIDC Tester - Mock PKCE identity provider and conformance checks."""
    ctx.ensure_object(dict)


cli.add_command(check_commands.check)
cli.add_command(config_commands.config)
cli.add_command(serve_commands.serve)
