"""reqsign CLI - compute and check request signatures."""

import asyncio
import json
import sys
import time
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any, ParamSpec, TypeVar

import click
from rich.console import Console
from rich.table import Table

from reqsign.client import SigningClient, SigningClientError
from reqsign.common.logging import setup_logging
from reqsign.common.settings import Settings, get_settings
from reqsign.signature import Credential, SignatureEngine, SigningContext

console = Console()

P = ParamSpec("P")
R = TypeVar("R")


def async_command(f: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, R]:
    """Decorator to run async commands."""

    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return asyncio.run(f(*args, **kwargs))

    wrapper.__name__ = f.__name__
    wrapper.__doc__ = f.__doc__
    return wrapper


def _parse_params(
    _ctx: click.Context, _param: click.Parameter, values: tuple[str, ...]
) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected key=value, got {item!r}")
        params.setdefault(key, value)
    return params


def _read_body(body: str | None, body_file: str | None) -> bytes | None:
    if body_file:
        path = Path(body_file)
        if not path.exists():
            console.print(f"[red]Body file not found: {body_file}[/red]")
            sys.exit(1)
        return path.read_bytes()
    if body is not None:
        return body.encode("utf-8")
    return None


def request_options(f: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by sign and verify."""
    options = [
        click.option("--ak", "access_key", required=True, help="Access key"),
        click.option(
            "--sk",
            "secret_key",
            required=True,
            envvar="REQSIGN_SECRET_KEY",
            help="Secret key (or REQSIGN_SECRET_KEY)",
        ),
        click.option("--ts", "timestamp", help="Unix-seconds timestamp (default: now)"),
        click.option("--method", "-X", default="GET", show_default=True, help="HTTP method"),
        click.option(
            "--param",
            "-p",
            "params",
            multiple=True,
            callback=_parse_params,
            help="Request parameter as key=value (repeatable)",
        ),
        click.option("--body", help="Raw request body"),
        click.option("--body-file", type=click.Path(dir_okay=False), help="Read body from file"),
        click.option("--content-type", default="", help="Content type of the body"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _engine_and_context(
    access_key: str,
    secret_key: str,
    timestamp: str | None,
    method: str,
    params: dict[str, str],
    body: str | None,
    body_file: str | None,
    content_type: str,
) -> tuple[SignatureEngine, SigningContext]:
    access_ts = timestamp or str(int(time.time()))
    engine = SignatureEngine(access_key, secret_key, access_ts)
    context = SigningContext.from_params(
        method,
        params,
        body=_read_body(body, body_file),
        content_type=content_type,
    )
    return engine, context


@click.group()
@click.option("--log-level", default=None, help="Log level (default: settings)")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """reqsign CLI - sign and verify API requests."""
    setup_logging(level=log_level, json_logs=False)
    ctx.ensure_object(dict)


@cli.command("sign")
@request_options
@click.option("--show-canonical", is_flag=True, help="Also print the string to sign")
def sign_cmd(show_canonical: bool, **kwargs: Any) -> None:
    """Compute the signature of a request."""
    engine, context = _engine_and_context(**kwargs)

    if show_canonical:
        console.print(engine.string_to_sign(context), markup=False, highlight=False, soft_wrap=True)

    table = Table(title="Request Signature")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("ak", engine.access_key)
    table.add_row("accessTs", engine.access_ts)
    table.add_row("sign", engine.sign(context))
    console.print(table)


@cli.command("verify")
@request_options
@click.option("--signature", "-s", required=True, help="Signature to check")
def verify_cmd(signature: str, **kwargs: Any) -> None:
    """Verify a request signature."""
    engine, context = _engine_and_context(**kwargs)

    if engine.verify(context, signature):
        console.print("[green]✓ Signature is valid[/green]")
    else:
        console.print("[red]✗ Signature is invalid[/red]")
        sys.exit(1)


@cli.command("check-timestamp")
@click.argument("timestamp")
@click.option(
    "--live-minutes",
    type=int,
    default=None,
    help="Liveness window in minutes (default: settings)",
)
def check_timestamp(timestamp: str, live_minutes: int | None) -> None:
    """Check whether a signing timestamp is still fresh."""
    if live_minutes is None:
        live_minutes = get_settings().live_minutes
    engine = SignatureEngine("", "", timestamp, live_minutes=live_minutes)
    elapsed = engine.elapsed_minutes(timestamp)

    if engine.is_expired(timestamp):
        console.print(f"[red]✗ Expired ({elapsed} min old, window {live_minutes} min)[/red]")
        sys.exit(1)
    console.print(f"[green]✓ Fresh ({elapsed} min old, window {live_minutes} min)[/green]")


@cli.command("send")
@click.argument("path")
@click.option("--base-url", default=None, help="Server base URL (default: settings)")
@click.option("--ak", "access_key", required=True, help="Access key")
@click.option(
    "--sk",
    "secret_key",
    required=True,
    envvar="REQSIGN_SECRET_KEY",
    help="Secret key (or REQSIGN_SECRET_KEY)",
)
@click.option("--method", "-X", default="GET", show_default=True, help="HTTP method")
@click.option(
    "--param",
    "-p",
    "params",
    multiple=True,
    callback=_parse_params,
    help="Query parameter as key=value (repeatable)",
)
@click.option("--json-body", help="JSON body for POST requests")
@async_command
async def send(
    path: str,
    base_url: str | None,
    access_key: str,
    secret_key: str,
    method: str,
    params: dict[str, str],
    json_body: str | None,
) -> None:
    """Send a signed request and print the response."""
    settings: Settings = get_settings()
    credential = Credential(access_key=access_key, secret_key=secret_key)
    payload = json.loads(json_body) if json_body else None

    async with SigningClient(credential, settings, base_url=base_url) as client:
        try:
            result = await client.request(method.upper(), path, params=params, json=payload)
        except SigningClientError as e:
            console.print(f"[red]Error ({e.status_code}): {e}[/red]")
            sys.exit(1)

    if isinstance(result, (dict, list)):
        console.print_json(json.dumps(result))
    else:
        console.print(result, markup=False, highlight=False)


def main() -> None:
    """CLI entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
