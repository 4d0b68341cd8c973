"""udptracker command line.

Commands:
- announce: announce a torrent to a UDP tracker and list its peers
- config show: print the effective configuration
"""

from __future__ import annotations

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.table import Table

from udptracker.config.config import ConfigManager, init_config
from udptracker.discovery.tracker_session import AnnounceResult
from udptracker.discovery.tracker_udp_client import get_peers
from udptracker.models import LogLevel, TorrentMetadata
from udptracker.utils.exceptions import ConfigurationError, UDPTrackerError
from udptracker.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _get_config_from_context(ctx: click.Context) -> ConfigManager:
    """Get ConfigManager from CLI context."""
    ctx.ensure_object(dict)
    manager = ctx.obj.get("config_manager")
    if manager is None:
        try:
            manager = init_config(ctx.obj.get("config"))
        except ConfigurationError as e:
            raise click.ClickException(str(e)) from e
        ctx.obj["config_manager"] = manager
    return manager


def _result_as_dict(result: AnnounceResult) -> dict:
    return {
        "url": result.url,
        "interval": result.interval,
        "leechers": result.leechers,
        "seeders": result.seeders,
        "peers": [{"ip": peer.ip, "port": peer.port} for peer in result.peers],
    }


def _print_result(console: Console, result: AnnounceResult) -> None:
    console.print(
        f"[bold]{result.url}[/bold]: "
        f"[green]{result.seeders}[/green] seeders, "
        f"[yellow]{result.leechers}[/yellow] leechers, "
        f"reannounce in {result.interval}s"
    )

    table = Table(title=f"Peers ({len(result.peers)})")
    table.add_column("IP", style="cyan")
    table.add_column("Port", style="green", justify="right")
    for peer in result.peers:
        table.add_row(peer.ip, str(peer.port))
    console.print(table)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (-v: info, -vv: debug)",
)
@click.pass_context
def cli(ctx, config, verbose):
    """udptracker - BitTorrent UDP tracker client (BEP 15)."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["verbosity"] = verbose

    config_manager = _get_config_from_context(ctx)
    if verbose:
        observability = config_manager.config.observability.model_copy()
        observability.log_level = LogLevel.DEBUG if verbose > 1 else LogLevel.INFO
        setup_logging(observability)


@cli.command()
@click.argument("url")
@click.option(
    "--info-hash",
    "info_hash",
    required=True,
    help="Torrent info hash (40 hex characters)",
)
@click.option(
    "--size",
    "total_length",
    type=click.IntRange(min=0),
    required=True,
    help="Total torrent size in bytes (reported as 'left')",
)
@click.option("--port", "-p", type=click.IntRange(0, 65535), help="Listening port to report")
@click.option("--peer-id", help="Peer ID to use (exactly 20 ASCII characters)")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def announce(ctx, url, info_hash, total_length, port, peer_id, as_json):
    """Announce a torrent to the UDP tracker at URL and list its peers."""
    console = Console()
    config_manager = _get_config_from_context(ctx)

    if len(info_hash) != 40:
        msg = "Info hash must be 40 hex characters"
        raise click.BadParameter(msg, param_hint="--info-hash")
    try:
        torrent = TorrentMetadata.from_hex(info_hash, total_length, announce=url)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--info-hash") from e

    peer_id_bytes = None
    if peer_id is not None:
        try:
            peer_id_bytes = peer_id.encode("ascii")
        except UnicodeEncodeError as e:
            msg = "Peer ID must be ASCII"
            raise click.BadParameter(msg, param_hint="--peer-id") from e
        if len(peer_id_bytes) != 20:
            msg = "Peer ID must be exactly 20 characters"
            raise click.BadParameter(msg, param_hint="--peer-id")

    try:
        result = asyncio.run(
            get_peers(
                torrent,
                url,
                peer_id=peer_id_bytes,
                port=port,
                config=config_manager.config,
            )
        )
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="URL") from e
    except UDPTrackerError as e:
        logger.debug("Announce to %s failed", url, exc_info=True)
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(json.dumps(_result_as_dict(result), indent=2))
    else:
        _print_result(console, result)


@cli.group()
def config():
    """Configuration management commands."""


@config.command("show")
@click.option(
    "--format",
    "format_",
    type=click.Choice(["toml", "json"]),
    default="toml",
)
@click.pass_context
def show_config(ctx, format_):
    """Show current configuration in the desired format."""
    config_manager = _get_config_from_context(ctx)
    click.echo(config_manager.export(format_))


def main() -> None:
    """Console script entry point."""
    cli(obj={})
