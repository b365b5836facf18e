"""
CLI entry point for txretrace.

This module provides the Typer-based command-line interface for txretrace.
All user interactions flow through these commands.

Commands:
    retrace     Reconstruct a transaction and verify its state hash
    locate      Resolve a transaction hash into (address, lt, hash)

Architecture Note:
    The CLI is intentionally thin - it parses arguments, builds the providers
    and backends from a RetraceConfig and delegates to RetraceEngine. The
    engine can be used programmatically without the CLI.
"""

import asyncio
import json
import logging
import os
import traceback
from pathlib import Path
from typing import Annotated, Any, Optional

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from txretrace import __version__
from txretrace.backends import load_tonpy_backend
from txretrace.errors import TxRetraceError
from txretrace.libraries import LibraryResolver
from txretrace.locator import ChainLocator
from txretrace.providers import HttpChainProvider, library_providers
from txretrace.report import build_error_dict, generate_console_report, generate_json_report
from txretrace.retrace import RetraceEngine
from txretrace.schema import RetraceConfig, TraceReport, TransactionHandle, load_config

# Initialize Typer app with metadata
app = typer.Typer(
    name="txretrace",
    help="Reconstruct and verify historical TON transactions.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]txretrace[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    txretrace - Re-execute past TON transactions locally.

    Rebuilds the account state a transaction ran against, emulates it and
    checks the result against the chain.
    """


# =============================================================================
# Pipeline wiring
# =============================================================================


async def run_retrace(tx_hash: str, config: RetraceConfig) -> TraceReport:
    """Build the providers and backends for `config` and retrace one transaction."""
    codec, emulator = load_tonpy_backend()
    async with httpx.AsyncClient(timeout=config.timeout_seconds) as client:
        chain = HttpChainProvider.from_config(config, client)
        locator = ChainLocator(chain, codec, page_limit=config.transactions_page_limit)
        resolver = LibraryResolver(
            library_providers(config, client),
            codec,
            fallback_delay_seconds=config.library_fallback_delay_seconds,
        )
        engine = RetraceEngine(locator, resolver, emulator, codec)
        return await engine.retrace(tx_hash)


async def run_locate(tx_hash: str, config: RetraceConfig) -> TransactionHandle:
    """Look up a transaction hash on the indexer."""
    async with httpx.AsyncClient(timeout=config.timeout_seconds) as client:
        chain = HttpChainProvider.from_config(config, client)
        return await ChainLocator(chain).locate(tx_hash)


def _build_config(config_path: Path | None, testnet: bool) -> RetraceConfig:
    config = load_config(config_path) if config_path else RetraceConfig()
    if testnet and not config.testnet:
        config = config.model_copy(update={"testnet": True})
    return config.with_env(os.environ)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# =============================================================================
# Commands
# =============================================================================


@app.command()
def retrace(
    tx_hash: Annotated[
        str,
        typer.Argument(help="Transaction hash (64 hex characters)."),
    ],
    testnet: Annotated[
        bool,
        typer.Option(
            "--testnet",
            help="Use testnet endpoints.",
        ),
    ] = False,
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to a YAML configuration file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output the report in JSON format.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            help="Enable debug logging and include VM logs in the report.",
        ),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            help="Enable debug mode with full error tracebacks.",
        ),
    ] = False,
) -> None:
    """
    Reconstruct a transaction and verify its state hash.

    Exits with code 0 when the emulated state hash matches the chain,
    1 on a mismatch or any error.

    Example:
        $ txretrace retrace 9f2c...e41a --testnet
    """
    _configure_logging(verbose)

    try:
        config = _build_config(config_path, testnet)
        report = asyncio.run(run_retrace(tx_hash, config))
    except Exception as e:
        _report_error(e, json_output, debug)
        raise typer.Exit(code=1)

    if json_output:
        print(generate_json_report(report))
    else:
        generate_console_report(report, console=console, verbose=verbose)

    raise typer.Exit(code=0 if report.state_update_hash_ok else 1)


@app.command()
def locate(
    tx_hash: Annotated[
        str,
        typer.Argument(help="Transaction hash (64 hex characters)."),
    ],
    testnet: Annotated[
        bool,
        typer.Option(
            "--testnet",
            help="Use testnet endpoints.",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output the handle in JSON format.",
        ),
    ] = False,
) -> None:
    """
    Resolve a transaction hash into its account, logical time and hash.

    Example:
        $ txretrace locate 9f2c...e41a
    """
    try:
        config = _build_config(None, testnet)
        handle = asyncio.run(run_locate(tx_hash, config))
    except Exception as e:
        _report_error(e, json_output, debug=False)
        raise typer.Exit(code=1)

    if json_output:
        print(json.dumps({"address": handle.address, "lt": handle.lt, "hash": handle.hash.hex()}, indent=2))
        return

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Address", handle.address)
    table.add_row("LT", str(handle.lt))
    table.add_row("Hash", handle.hash.hex())
    console.print(table)


def _report_error(error: Exception, json_output: bool, debug: bool) -> None:
    """Print a single error description, as text or JSON."""
    if json_output:
        if isinstance(error, TxRetraceError):
            output: dict[str, Any] = build_error_dict(error)
        else:
            output = {"error": {"error_type": type(error).__name__, "message": str(error)}}
        if debug:
            output["traceback"] = traceback.format_exc()
        print(json.dumps(output, indent=2, default=str))
        return

    console.print(f"[red]Error: {escape(str(error))}[/red]")
    if debug:
        console.print(f"[dim]{traceback.format_exc()}[/dim]")


if __name__ == "__main__":
    app()
