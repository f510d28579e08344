from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Optional

import typer

from .workflows.content_normalizer import normalize
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.errors import AcquisitionError, ErrorKind
from .workflows.fetcher import extraction_payload, get_default_fetcher
from .workflows.web_fetch import Strategy

app = typer.Typer(add_help_option=False, no_args_is_help=False)

# Exit codes: 2 = refused input, 3 = acquisition failed, 4 = deadline exceeded
_EXIT_CODES = {
    ErrorKind.UNSUPPORTED_PROTOCOL: 2,
    ErrorKind.BLOCKED_HOST: 2,
    ErrorKind.TIMEOUT: 4,
}


def _minimal_help() -> str:
    return """webacquire

Usage:
  webacquire get <url> [--raw] [--payload] [--timeout <S>] [--strategy <NAME>] [--verbose]
  webacquire doctor

Options:
  --raw            Print the acquired markup instead of the normalized document.
  --payload        Print the extraction payload (text + image URLs).
  --timeout <S>    Overall deadline in seconds (default WEBACQUIRE_REQUEST_TIMEOUT_S).
  --strategy NAME  Force lightweight or rendering.
  --verbose        Log attempts and escalations to stderr.
"""


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show help."),
) -> None:
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd() -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("get", add_help_option=True)
def get_url(
    url: str = typer.Argument(..., help="URL to acquire."),
    raw: bool = typer.Option(False, "--raw", help="Print raw markup."),
    payload: bool = typer.Option(False, "--payload", help="Print the extraction payload."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Overall deadline in seconds."),
    strategy: Optional[Strategy] = typer.Option(None, "--strategy", case_sensitive=False, help="Force a strategy."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress to stderr."),
) -> None:
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    fetcher = get_default_fetcher()
    try:
        result = asyncio.run(fetcher.fetch(url, timeout, strategy=strategy))
    except AcquisitionError as exc:
        error = exc.to_dict()
        error["http_status"] = exc.kind.http_status(exc.status_code)
        sys.stdout.write(json.dumps({"ok": False, **error}, ensure_ascii=False) + "\n")
        typer.echo(f"hint: {exc.kind.remedy}", err=True)
        raise typer.Exit(code=_EXIT_CODES.get(exc.kind, 3))

    if raw:
        sys.stdout.write(result.markup)
        raise typer.Exit(code=0)
    document = normalize(result.markup, result.final_url or url, fetcher.config.normalizer)
    if payload:
        body = extraction_payload(document, url)
    else:
        body = {"ok": True, "fetch": result.to_dict(), "document": document.to_dict()}
    sys.stdout.write(json.dumps(body, ensure_ascii=False) + "\n")
    raise typer.Exit(code=0)
