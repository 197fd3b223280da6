#!/usr/bin/env python3
"""
funny-ip-etcd-detector — Command Line Entry Point
==================================================

Inspects etcd db files for IPv4 addresses with leading zeros, which strict
parsers reject.

Usage:
    python main.py find-ips /var/lib/etcd                  # data dir
    python main.py find-ips ./snapshot.db --match-all      # db file
    python main.py find-ips ./snapshot.db --timeout 0      # wait for the lock forever

Options left off the command line fall back to ScanConfig.from_env()
(FUNNY_IP_LIMIT, FUNNY_IP_DECODE, FUNNY_IP_MATCH_ALL, FUNNY_IP_DEBUG,
FUNNY_IP_BUCKET, FUNNY_IP_LOCK_TIMEOUT, also read from a .env file).
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
from click.core import ParameterSource
from dotenv import load_dotenv

from funny_ip_detector.config import DEFAULT_BUCKET, ScanConfig, resolve_db_path
from funny_ip_detector.exceptions import ScanError
from funny_ip_detector.models import ScanReport
from funny_ip_detector.scanner import scan_store

load_dotenv()

_WIDTH = 72


# ─── Summary Printer ─────────────────────────────────────────────────


def print_summary(report: ScanReport) -> int:
    """Print a closing summary of the walk.

    Returns:
        0 if no invalid address was seen, 1 otherwise.
    """
    click.echo("=" * _WIDTH)
    click.echo(f"  Store:       {report.store_path}")
    click.echo(f"  Bucket:      {report.bucket}")
    click.echo(f"  Scanned:     {report.records_scanned} record(s)")
    if report.is_valid:
        click.secho("  NO INVALID IPv4 ADDRESSES FOUND", fg="green", bold=True)
    else:
        click.secho(
            f"  Invalid IPv4 addresses found  --  {len(report.invalid_addresses)} "
            f"address(es) on {len(report.errors)} record(s)",
            fg="red",
            bold=True,
        )
    click.echo("=" * _WIDTH)
    return 0 if report.is_valid else 1


# ─── Commands ────────────────────────────────────────────────────────

_TIMEOUT_HELP = "Seconds to wait to obtain a file lock on the db file, 0 to block indefinitely."


@click.group()
@click.option("--timeout", type=click.FloatRange(min=0), default=None, help=_TIMEOUT_HELP)
@click.option("-v", "--verbose", count=True, help="Log progress (-vv for debug detail).")
@click.pass_context
def cli(ctx: click.Context, timeout: float | None, verbose: int) -> None:
    """Inspect etcd db files for IPv4 addresses with leading zeros."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ctx.obj = {"timeout": timeout}


def _explicit(ctx: click.Context, **params) -> dict:
    """Keep only the options given on the command line."""
    return {
        name: value
        for name, value in params.items()
        if ctx.get_parameter_source(name) is not ParameterSource.DEFAULT
    }


@cli.command("find-ips")
@click.argument("path", type=click.Path(path_type=Path))
@click.option(
    "--limit",
    type=click.IntRange(min=0),
    default=0,
    help="Max number of key-value pairs to iterate (0 to iterate all).",
)
@click.option(
    "--decode/--no-decode",
    default=True,
    show_default=True,
    help="Decode stored values as etcd key-value records.",
)
@click.option("--match-all", is_flag=True, help="Print all IPv4 addresses found.")
@click.option("--debug", is_flag=True, help="Dump all key values.")
@click.option("--bucket", default=DEFAULT_BUCKET, show_default=True, help="Bucket to walk.")
@click.option("--ascending", is_flag=True, help="Walk from the first key instead of the last.")
@click.option("--timeout", type=click.FloatRange(min=0), default=None, help=_TIMEOUT_HELP)
@click.pass_context
def find_ips(
    ctx: click.Context,
    path: Path,
    limit: int,
    decode: bool,
    match_all: bool,
    debug: bool,
    bucket: str,
    ascending: bool,
    timeout: float | None,
) -> None:
    """List IPv4 addresses with leading zeros in a data dir or db file."""
    db_path = resolve_db_path(path)
    if not db_path.exists():
        click.echo(f"{str(db_path)!r} does not exist", err=True)
        ctx.exit(1)

    overrides = _explicit(ctx, limit=limit, decode=decode, match_all=match_all, debug=debug, bucket=bucket)
    overrides["lock_timeout"] = timeout if timeout is not None else ctx.obj["timeout"]
    overrides["reverse"] = not ascending
    try:
        config = ScanConfig.from_env(**overrides)
    except ValueError as exc:
        raise click.ClickException(f"invalid FUNNY_IP_* setting: {exc}") from exc

    try:
        report = scan_store(db_path, config, emit=click.echo)
    except ScanError as exc:
        click.echo(f"Error [{exc.code}]: {exc.message}", err=True)
        ctx.exit(1)

    ctx.exit(print_summary(report))


if __name__ == "__main__":
    cli()
