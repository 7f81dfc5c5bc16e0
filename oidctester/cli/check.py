"""Conformance check CLI command."""

from __future__ import annotations

import dataclasses
import sys
from typing import Any

import click

from oidctester.cli.config import json_option, output_result

LOG_LEVELS = ["ERROR", "INFO", "DEBUG", "TRACE"]


def _prompt_for_callback(authorization_url: str) -> str | None:
    """Ask the user to log in with a browser and paste the callback URL."""
    click.echo("", err=True)
    click.echo("The provider did not redirect straight back. Open this URL in a browser:", err=True)
    click.echo(f"  {authorization_url}", err=True)
    click.echo("", err=True)
    url = click.prompt("Paste the URL you were redirected to", default="", show_default=False, err=True)
    return url.strip() or None


def _print_report(result: dict[str, Any]) -> None:
    for item in result["checks"]:
        marker = "PASS" if item["pass"] else "FAIL"
        click.echo(f"[{marker}] {item['description']}")
        if not item["pass"] and item.get("details"):
            for line in str(item["details"]).splitlines():
                click.echo(f"       {line}")

    summary = result["summary"]
    click.echo("")
    click.echo(f"{summary['passed']}/{summary['total']} checks passed")

    token = result.get("token")
    if token:
        click.echo("")
        click.echo("Verified ID token:")
        click.echo(f"  Header:  {token['protected_header']}")
        click.echo(f"  Payload: {token['payload']}")


@click.command()
@click.option("--oidc-server", default=None, help="Base URL of the OIDC provider to test")
@click.option("--redirect-uri", default=None, help="Redirect URI registered with the provider")
@click.option("--client-id", default=None, help="OAuth2 client ID, if the provider requires one")
@click.option("--client-secret", default=None, help="OAuth2 client secret, if the provider requires one")
@click.option("--scope", default=None, help="Scope to request (default: openid)")
@click.option(
    "--interactive",
    is_flag=True,
    help="Prompt for the callback URL when the provider requires a browser login",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Log level for protocol output (default: from config)",
)
@json_option
def check(
    oidc_server: str | None,
    redirect_uri: str | None,
    client_id: str | None,
    client_secret: str | None,
    scope: str | None,
    interactive: bool,
    log_level: str | None,
    output_json: bool,
) -> None:
    """Run the Authorization Code + PKCE flow against a provider.

    Discovery, JWKS retrieval, code exchange and ID token verification are
    each recorded as checks. Exits with status 1 if any check failed.

    Examples:

        # Test the local mock IdP (oidctester serve)
        oidctester check --oidc-server http://localhost:8000

        # Test a provider that needs a browser login
        oidctester check --oidc-server https://idp.example.com \\
            --client-id my-app --redirect-uri http://localhost:8000/tester/callback \\
            --interactive
    """
    from oidctester.core.config import load_config
    from oidctester.core.logging import configure_logging
    from oidctester.core.oidc.flows import AuthorizationCodeFlow, run_headless

    config = load_config()
    configure_logging(log_level or config.log_level)

    overrides = {
        "oidc_server": oidc_server,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "client_secret": client_secret,
        "scope": scope,
    }
    settings = dataclasses.replace(config.client, **{k: v for k, v in overrides.items() if v is not None})

    if not output_json:
        click.echo(f"Testing {settings.oidc_server}")
        click.echo("")

    with AuthorizationCodeFlow(settings) as flow:
        verified = run_headless(flow, _prompt_for_callback if interactive else None)
        result = flow.to_dict()
    result["token"] = verified.to_dict() if verified else None

    if output_json:
        output_result(result, as_json=True)
    else:
        _print_report(result)

    if verified is None or result["summary"]["failed"]:
        sys.exit(1)
