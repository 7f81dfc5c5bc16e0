"""Configuration management CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click
import yaml

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result as JSON or YAML text.

    Args:
        data: Data to output
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False).rstrip())


@click.group()
def config() -> None:
    """Manage OIDC tester configuration."""
    pass


@config.command("show")
@click.option("--show-secrets", is_flag=True, help="Include the client secret in the output")
@json_option
def config_show(show_secrets: bool, output_json: bool) -> None:
    """Show the effective configuration.

    Values come from ~/.oidctester/config.yaml (or OIDCTESTER_CONFIG),
    overridden by OIDCTESTER_* environment variables.
    """
    from oidctester.core.config import load_config

    app_config = load_config()
    data = app_config.to_dict(include_secrets=show_secrets)
    data["config_path"] = str(app_config.config_path) if app_config.config_path else None
    output_result(data, as_json=output_json)


@config.command("init")
@click.option(
    "--path",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),  # type: ignore[type-var]
    default=None,
    help="Where to write the config file (default: ~/.oidctester/config.yaml)",
)
@click.option("--force", is_flag=True, help="Overwrite an existing config file.")
def config_init(config_path: Path | None, force: bool) -> None:
    """Write a config file with the default settings."""
    from oidctester.core.config import DEFAULT_CONFIG_FILE, AppConfig

    path = config_path or DEFAULT_CONFIG_FILE
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists. Use --force to overwrite it.")

    AppConfig().save(path)
    click.echo(f"Configuration written to: {path}")


@config.command("generate-key")
@click.argument(
    "path",
    type=click.Path(dir_okay=False, path_type=Path),  # type: ignore[type-var]
)
@click.option("--kid", default="mock-idp-key", show_default=True, help="Key ID to publish in the JWKS")
@click.option("--force", is_flag=True, help="Overwrite an existing key file.")
def config_generate_key(path: Path, kid: str, force: bool) -> None:
    """Generate a P-256 signing key for the mock IdP.

    The private JWK is written to PATH (mode 0600). Point idp.signing_key_path
    or OIDCTESTER_SIGNING_KEY at it to keep tokens verifiable across restarts.
    """
    from oidctester.core.crypto.tokens import SigningKey

    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists. Use --force to overwrite it.")

    signing_key = SigningKey.generate(kid=kid)
    signing_key.save(path)
    click.echo(f"Signing key '{kid}' written to: {path}")
