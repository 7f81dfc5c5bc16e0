"""Server CLI commands."""

from pathlib import Path

import click


@click.command()
@click.option(
    "--host",
    "-h",
    default=None,
    help="Host to bind to (default: from config or 127.0.0.1)",
)
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to bind to (default: from config or 8000)",
)
@click.option(
    "--issuer",
    default=None,
    help="Issuer URL of the mock IdP (default: from config or http://localhost:8000)",
)
@click.option(
    "--signing-key",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),  # type: ignore[type-var]
    help="Private EC JWK file to sign ID tokens with",
)
@click.option(
    "--cert",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS certificate (PEM format)",
)
@click.option(
    "--key",
    type=click.Path(exists=True, path_type=Path),  # type: ignore[type-var]
    help="Path to TLS private key (PEM format)",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode",
)
def serve(
    host: str | None,
    port: int | None,
    issuer: str | None,
    signing_key: Path | None,
    cert: Path | None,
    key: Path | None,
    debug: bool,
) -> None:
    """Start the mock identity provider and browser tester.

    The mock IdP serves discovery, JWKS, authorization and token endpoints.
    It authenticates nobody: any redirect URI and code challenge are accepted.

    Examples:

        # Start on the default port
        oidctester serve

        # Sign tokens with a persistent key
        oidctester serve --signing-key ~/.oidctester/signing-key.json

        # Serve over HTTPS
        oidctester serve --cert /path/to/cert.pem --key /path/to/key.pem
    """
    from oidctester.app import run_server
    from oidctester.core.config import load_config

    if cert and not key:
        raise click.ClickException("--key is required when --cert is provided")
    if key and not cert:
        raise click.ClickException("--cert is required when --key is provided")

    config = load_config()

    if issuer:
        config.idp.issuer = issuer

    if signing_key:
        config.idp.signing_key_path = signing_key

    if cert and key:
        config.server.tls.cert_path = cert
        config.server.tls.key_path = key

    if debug:
        config.server.debug = True

    run_server(app_config=config, host=host, port=port)
