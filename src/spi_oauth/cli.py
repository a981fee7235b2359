"""Command line entry point of the OAuth service."""

from __future__ import annotations

import sys

import click
from pydantic import ValidationError
from rich.console import Console

from spi_oauth import __version__

console = Console()

BANNER = f"""
 ███████╗██████╗ ██╗     ██████╗  █████╗ ██╗   ██╗████████╗██╗  ██╗
 ██╔════╝██╔══██╗██║    ██╔═══██╗██╔══██╗██║   ██║╚══██╔══╝██║  ██║
 ███████╗██████╔╝██║    ██║   ██║███████║██║   ██║   ██║   ███████║
 ╚════██║██╔═══╝ ██║    ██║   ██║██╔══██║██║   ██║   ██║   ██╔══██║
 ███████║██║     ██║    ╚██████╔╝██║  ██║╚██████╔╝   ██║   ██║  ██║
 ╚══════╝╚═╝     ╚═╝     ╚═════╝ ╚═╝  ╚═╝ ╚═════╝    ╚═╝   ╚═╝  ╚═╝
                         OAuth service v{__version__}
"""


def _split_bind(bind: str) -> tuple[str, int]:
    host, _, port = bind.rpartition(":")
    try:
        return host or "0.0.0.0", int(port)
    except ValueError:
        raise click.BadParameter(f"invalid bind address: {bind}") from None


@click.group()
@click.version_option(__version__, prog_name="spi-oauth")
def main() -> None:
    """OAuth broker for service provider tokens."""


@main.command()
@click.option(
    "--config",
    "-c",
    "config_file",
    envvar="SPI_CONFIG_FILE",
    type=click.Path(dir_okay=False),
    help="YAML or TOML configuration file",
)
@click.option("--bind", default=None, help="Bind address, e.g. 0.0.0.0:8000")
@click.option("--base-url", default=None, help="Public URL of this service")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Log level",
)
def serve(
    config_file: str | None,
    bind: str | None,
    base_url: str | None,
    log_level: str | None,
) -> None:
    """Run the OAuth service."""
    from aiohttp import web

    from spi_oauth.core.config import load_config
    from spi_oauth.core.logging import configure_logging
    from spi_oauth.server.app import create_app

    try:
        config = load_config(config_file, bind=bind, base_url=base_url, log_level=log_level)
    except (OSError, ValueError, ValidationError) as e:
        console.print(f"[red]Failed to load config: {e}[/red]")
        sys.exit(1)

    configure_logging(config.log_level, json=config.log_json)

    try:
        app = create_app(config)
    except ValueError as e:
        console.print(f"[red]Invalid service configuration: {e}[/red]")
        sys.exit(1)

    host, port = _split_bind(config.bind)
    console.print(BANNER, style="cyan")
    console.print(f"Listening on {host}:{port}, public URL {config.base_url}", style="yellow")
    web.run_app(app, host=host, port=port, print=None, access_log=None)


@main.command("encode-state")
@click.option("--secret", envvar="SPI_STATE_SIGNING_SECRET", required=True, help="State signing secret")
@click.option("--name", required=True, help="SPIAccessToken name")
@click.option("--namespace", required=True, help="SPIAccessToken namespace")
@click.option("--provider", required=True, help="Service provider type (GitHub, GitLab, Quay)")
@click.option("--scope", "scopes", multiple=True, help="Scope to request (repeatable)")
@click.option("--ttl", type=int, default=600, show_default=True, help="State lifetime in seconds")
def encode_state(
    secret: str,
    name: str,
    namespace: str,
    provider: str,
    scopes: tuple[str, ...],
    ttl: int,
) -> None:
    """Print a signed anonymous state, for trying the flow by hand."""
    from spi_oauth.oauth.config import ProviderType
    from spi_oauth.oauth.state import AnonymousState, StateCodec

    try:
        provider_type = ProviderType.parse(provider)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--provider") from None

    state = AnonymousState(
        token_name=name,
        token_namespace=namespace,
        service_provider_type=provider_type,
        scopes=scopes,
    )
    click.echo(StateCodec(secret, ttl=ttl).encode(state))


if __name__ == "__main__":
    main()
