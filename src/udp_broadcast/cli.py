"""Command-line interface for udp-broadcast."""

import asyncio
import logging
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from udp_broadcast.config import Config, EnvSettings
from udp_broadcast.connection import BroadcastConnection
from udp_broadcast.core.types import AddressFamily
from udp_broadcast.errors import BroadcastConnectionError

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Set up logging with rich handler."""
    handlers = [RichHandler(rich_tracebacks=True, console=console)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=handlers
    )


def hex_bytes(data: bytes) -> str:
    """Format bytes as comma separated upper-case hex."""
    return ", ".join(f"{b:X}" for b in data)


@dataclass
class Reply:
    """A datagram received in answer to a broadcast."""

    host: str
    port: int
    payload: bytes

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


async def run_discovery(config: Config) -> Tuple[List[Reply], List[BroadcastConnectionError]]:
    """
    Broadcast the configured message and collect replies.

    One connection is opened per configured address family. Replies are
    gathered for ``discovery.listen_seconds`` and the connections are closed
    afterwards.

    Returns:
        (replies, errors)
    """
    replies: List[Reply] = []
    errors: List[BroadcastConnectionError] = []

    def handle_response(host: str, port: int, payload: bytes):
        reply = Reply(host, port, payload)
        replies.append(reply)
        logger.info(f"Received from {host}:{port}: {hex_bytes(payload)} {reply.text!r}")

    def handle_error(error: BroadcastConnectionError):
        errors.append(error)
        logger.error(f"Error: {error}")

    settings = config.connection
    connections: List[BroadcastConnection] = []

    try:
        for family in config.discovery.families:
            try:
                connection = BroadcastConnection(
                    family,
                    settings.port,
                    handle_response,
                    handle_error,
                    interface=settings.interface,
                    bind=settings.bind,
                    broadcast_address=settings.broadcast_address,
                )
            except BroadcastConnectionError as e:
                handle_error(e)
                continue

            connections.append(connection)
            try:
                connection.send_broadcast(config.discovery.message)
                logger.info(f"Sent {config.discovery.message!r} via {family.value} to port {settings.port}")
            except BroadcastConnectionError as e:
                handle_error(e)

        if connections:
            await asyncio.sleep(config.discovery.listen_seconds)
    finally:
        for connection in connections:
            connection.close_connection(reopen=False)

    return replies, errors


class ResponderProtocol(asyncio.DatagramProtocol):
    """Answers every datagram with a fixed reply sent back to its sender."""

    def __init__(self, reply: bytes, count: Optional[int] = None):
        self.reply = reply
        self.count = count
        self.answered = 0
        self.transport: Optional[asyncio.DatagramTransport] = None
        self.done = asyncio.get_running_loop().create_future()

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        logger.info(f"Request from {addr[0]}:{addr[1]}: {data!r}")
        self.transport.sendto(self.reply, addr)
        self.answered += 1
        if self.count is not None and self.answered >= self.count and not self.done.done():
            self.done.set_result(self.answered)

    def error_received(self, exc):
        logger.error(f"Responder error: {exc}")

    def connection_lost(self, exc):
        if not self.done.done():
            self.done.set_result(self.answered)


async def run_responder(
    port: int,
    reply: str,
    host: str = "",
    count: Optional[int] = None,
    ready: Optional[asyncio.Event] = None
) -> int:
    """
    Answer broadcasts on ``port`` until ``count`` replies were sent.

    Returns:
        Number of replies sent
    """
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        lambda: ResponderProtocol(reply.encode("utf-8"), count),
        local_addr=(host or "0.0.0.0", port),
        reuse_port=hasattr(socket, "SO_REUSEPORT"),
        allow_broadcast=True,
    )
    logger.info(f"Responding with {reply!r} on port {port}")

    if ready is not None:
        ready.set()

    try:
        return await protocol.done
    finally:
        transport.close()


@click.group()
@click.option("--config", type=click.Path(exists=True), help="Path to config file")
@click.option("--log-level", default=None, help="Logging level")
@click.pass_context
def cli(ctx, config: Optional[str], log_level: Optional[str]):
    """UDP Broadcast - announce on the local network and collect replies."""
    ctx.ensure_object(dict)

    # Load configuration
    if config:
        config_path = Path(config)
    else:
        config_path = Path("config.yaml")

    if config_path.exists():
        app_config = Config.from_yaml(config_path)
    else:
        app_config = Config()

    # Environment settings take precedence over the file
    env = EnvSettings()
    app_config = app_config.apply_env(env)

    setup_logging(log_level or app_config.logging.level, app_config.logging.file)

    ctx.obj["config"] = app_config


FAMILY_CHOICES = click.Choice(["ipv4", "ipv6", "both"], case_sensitive=False)


@cli.command()
@click.option("--family", type=FAMILY_CHOICES, default=None, help="Address family to broadcast on")
@click.option("--port", type=click.IntRange(0, 65535), default=None, help="UDP port")
@click.option("--interface", default=None, help="Network interface for IPv6 multicast")
@click.option("--message", default=None, help="Message to broadcast")
@click.option("--listen", type=float, default=None, help="Seconds to wait for replies")
@click.option("--broadcast-address", default=None, help="IPv4 broadcast address override")
@click.pass_context
def discover(
    ctx,
    family: Optional[str],
    port: Optional[int],
    interface: Optional[str],
    message: Optional[str],
    listen: Optional[float],
    broadcast_address: Optional[str]
):
    """Broadcast a message and list the replies."""
    config: Config = ctx.obj["config"]

    connection_updates = {
        key: value
        for key, value in {
            "port": port,
            "interface": interface,
            "broadcast_address": broadcast_address,
        }.items()
        if value is not None
    }
    discovery_updates = {
        key: value
        for key, value in {"message": message, "listen_seconds": listen}.items()
        if value is not None
    }
    if family == "both":
        discovery_updates["families"] = [AddressFamily.IPV4, AddressFamily.IPV6]
    elif family:
        discovery_updates["families"] = [AddressFamily(family.lower())]

    config = config.model_copy(update={
        "connection": config.connection.model_copy(update=connection_updates),
        "discovery": config.discovery.model_copy(update=discovery_updates),
    })

    replies, errors = asyncio.run(run_discovery(config))

    if replies:
        table = Table(title=f"Replies ({len(replies)})")
        table.add_column("Host", style="cyan")
        table.add_column("Port", justify="right")
        table.add_column("Bytes", style="yellow")
        table.add_column("Text", style="green")
        for reply in replies:
            table.add_row(reply.host, str(reply.port), hex_bytes(reply.payload), reply.text)
        console.print(table)
    else:
        console.print("[yellow]No replies received[/yellow]")

    for error in errors:
        console.print(f"[red]Error: {error}[/red]")

    if errors and not replies:
        ctx.exit(1)


@cli.command()
@click.option("--port", type=click.IntRange(0, 65535), default=None, help="UDP port to answer on")
@click.option("--reply", default=None, help="Reply payload")
@click.option("--host", default=None, help="Local address to bind")
@click.option("--count", type=int, default=None, help="Stop after this many replies")
@click.pass_context
def respond(ctx, port: Optional[int], reply: Optional[str], host: Optional[str], count: Optional[int]):
    """Answer every broadcast received on a port."""
    config: Config = ctx.obj["config"]
    port = port if port is not None else config.connection.port
    reply = reply if reply is not None else config.responder.reply
    host = host if host is not None else config.responder.host

    console.print(f"[cyan]Answering on port {port} with {reply!r} (Ctrl+C to stop)[/cyan]")
    try:
        answered = asyncio.run(run_responder(port, reply, host=host, count=count))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")
        return
    console.print(f"[green]✓[/green] Sent {answered} replies")


@cli.command()
@click.pass_context
def info(ctx):
    """Show the effective configuration."""
    config: Config = ctx.obj["config"]

    console.print(Panel.fit(
        "[bold]UDP Broadcast Configuration[/bold]",
        border_style="cyan"
    ))

    console.print("\n[bold]Connection:[/bold]")
    console.print(f"  Port: {config.connection.port}")
    console.print(f"  Interface: {config.connection.interface}")
    console.print(f"  Bind: {config.connection.bind}")

    console.print("\n[bold]Discovery:[/bold]")
    console.print(f"  Message: {config.discovery.message!r}")
    console.print(f"  Families: {', '.join(f.value for f in config.discovery.families)}")
    console.print(f"  Listen: {config.discovery.listen_seconds}s")


def main():
    """Entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
