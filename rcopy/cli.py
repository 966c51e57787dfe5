"""
rcopy CLI

Command-line interface for the remote file copy tool.

Usage:
    rcopy serve                      # Run a server (self-signed TLS)
    rcopy serve --cert C --key K     # Run a server with a certificate
    rcopy cp FILE host:PATH          # Upload
    rcopy cp host:PATH FILE          # Download
    rcopy ping                       # Liveness check
    rcopy kill                       # Shut the server down
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn, DownloadColumn, Progress, TextColumn, TransferSpeedColumn,
)

from .client import FileTransferClient
from .config import Config, load_config
from .errors import RcopyError
from .server import run_server

console = Console(stderr=True)


def setup_logging(level: str) -> logging.Logger:
    """Configure rich output and return the logger handed to components."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )
    log = logging.getLogger('rcopy')
    log.setLevel(level)
    return log


def _run(coro):
    """Run a coroutine, reporting rcopy errors the way the CLI does."""
    try:
        return asyncio.run(coro)
    except (RcopyError, ValueError) as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


@click.group(context_settings={'help_option_names': ['--help']})
@click.option('-H', '--host', default=None, help='Server host name (default: localhost)')
@click.option('-p', '--port', type=int, default=None, help='Server port (default: 8022)')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              default=None, help='JSON config file')
@click.option('--no-tls', is_flag=True, help='Use plain TCP (unencrypted)')
@click.option('-d', '--debug', is_flag=True, help='Enable debug log')
@click.option('-q', '--quiet', is_flag=True, help='Only log warnings and errors, no progress')
@click.pass_context
def cli(ctx, host, port, config_path, no_tls, debug, quiet):
    """rcopy - copy files to and from a remote rcopy server."""
    try:
        config = load_config(config_path)
    except (OSError, ValueError, TypeError) as e:
        console.print(f"[red]✗ Invalid configuration: {e}[/red]")
        sys.exit(1)
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    if no_tls:
        config.tls = False
    if quiet:
        config.log_level = 'WARNING'
    elif debug:
        config.log_level = 'DEBUG'

    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.obj['quiet'] = quiet
    ctx.obj['log'] = setup_logging(config.log_level)


@cli.command()
@click.option('--cert', 'cert_file', type=click.Path(exists=True, dir_okay=False),
              default=None, help='Certificate file (PEM)')
@click.option('--key', 'key_file', type=click.Path(exists=True, dir_okay=False),
              default=None, help='Private key file (PEM)')
@click.option('--shutdown-delay', type=float, default=None,
              help='Seconds between answering Shutdown and exiting')
@click.pass_context
def serve(ctx, cert_file, key_file, shutdown_delay):
    """Run a server.

    Without --cert/--key a self-signed certificate is generated in memory.
    It encrypts traffic but does not prove the server's identity; clients
    should pin its fingerprint (logged at start-up) with `cp --fingerprint`.
    """
    config: Config = ctx.obj['config']
    if cert_file:
        config.cert_file = cert_file
    if key_file:
        config.key_file = key_file
    if shutdown_delay is not None:
        config.shutdown_delay = shutdown_delay

    _run(run_server(config, log=ctx.obj['log']))


@cli.command()
@click.argument('src')
@click.argument('dest')
@click.option('--ca', 'ca_file', type=click.Path(exists=True, dir_okay=False),
              default=None, help='CA file to verify the server certificate')
@click.option('--fingerprint', default=None, help='Expected SHA-256 server certificate fingerprint')
@click.pass_context
def cp(ctx, src, dest, ca_file, fingerprint):
    """Copy SRC to DEST; exactly one of them is host:path."""
    config: Config = ctx.obj['config']
    if ca_file:
        config.ca_file = ca_file
    if fingerprint:
        config.fingerprint = fingerprint
    client = FileTransferClient(config, log=ctx.obj['log'])

    if ctx.obj['quiet']:
        _run(client.copy(src, dest))
        return

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(f"{src} → {dest}", total=None)

        def update_progress(done: int, total: Optional[int]):
            progress.update(task, completed=done, total=total)

        _run(client.copy(src, dest, progress=update_progress))


@cli.command()
@click.argument('message', default='ping')
@click.pass_context
def ping(ctx, message):
    """Check that the server is alive."""
    client = FileTransferClient(ctx.obj['config'], log=ctx.obj['log'])
    reply = _run(client.ping(message))
    console.print(f"[green]✓ {reply}[/green]")


@cli.command()
@click.pass_context
def kill(ctx):
    """Shut the server down."""
    client = FileTransferClient(ctx.obj['config'], log=ctx.obj['log'])
    _run(client.shutdown())
    console.print("[green]✓ Shutdown requested[/green]")


def main():
    cli()


if __name__ == '__main__':
    main()
