from __future__ import annotations

import sys

import click
import typer
from rich.console import Console
from rich.markup import escape

from . import __version__
from .bigtable_client import GOOGLE_AUTH_REFRESH_MARGIN, BigtableClient, open_client
from .cli_shared import GlobalOpts, OpError, UsageError, _eprint, _print_json
from .config import ResolvedConfig, resolve_config
from .printer import RowPrinter
from .query import compile_lookup, compile_read, decode_columns, decode_type

app = typer.Typer(
    name="btcli",
    help="Cloud Bigtable command-line client.",
    no_args_is_help=True,
    add_completion=False,
)

_ERROR_CONSOLE = Console(stderr=True)

_KV_COMMAND_SETTINGS = {"ignore_unknown_options": True}


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {escape(msg)}", highlight=False)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"btcli {__version__}")
        raise typer.Exit(code=0)


@app.callback()
def app_callback(
    ctx: typer.Context,
    project: str | None = typer.Option(
        None, "--project", help="Project ID; if unset uses the gcloud configured project"
    ),
    instance: str | None = typer.Option(None, "--instance", help="Cloud Bigtable instance"),
    creds: str | None = typer.Option(
        None, "--creds", help="If set, use application credentials in this file"
    ),
    quiet: bool = typer.Option(False, "--quiet", help="Reduce stderr logging"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    del version
    g = GlobalOpts(project=project, instance=instance, creds=creds, quiet=quiet)
    ctx.obj = {"g": g}


def _ctx_global(ctx: typer.Context) -> GlobalOpts:
    if isinstance(ctx.obj, dict) and isinstance(ctx.obj.get("g"), GlobalOpts):
        return ctx.obj["g"]
    return GlobalOpts()


def _quiet_notice(msg: str) -> None:
    del msg


def _resolved(ctx: typer.Context, *, require_instance: bool = False) -> ResolvedConfig:
    if not isinstance(ctx.obj, dict):
        ctx.obj = {}
    cached = ctx.obj.get("config")
    if isinstance(cached, ResolvedConfig):
        return cached
    g = _ctx_global(ctx)
    config = resolve_config(
        project=g.project,
        instance=g.instance,
        creds=g.creds,
        notice=_quiet_notice if g.quiet else _eprint,
        token_expiry_margin=GOOGLE_AUTH_REFRESH_MARGIN,
        require_instance=require_instance,
    )
    ctx.obj["config"] = config
    return config


def _client(ctx: typer.Context) -> BigtableClient:
    return open_client(_resolved(ctx, require_instance=True))


@app.command("ls", help="List tables in the instance.")
def ls(ctx: typer.Context) -> None:
    for name in _client(ctx).tables():
        typer.echo(name)


@app.command("count", help="Count rows in a table.")
def count(ctx: typer.Context, table: str = typer.Argument(..., help="Table name")) -> None:
    typer.echo(str(_client(ctx).count(table)))


@app.command(
    "lookup",
    help="Read a single row: lookup <table> <row> [decode=<type>] [decode_columns=<col:type,...>] [version=<n>]",
    context_settings=_KV_COMMAND_SETTINGS,
)
def lookup(
    ctx: typer.Context,
    table: str = typer.Argument(..., help="Table name"),
    row: str = typer.Argument(..., help="Row key"),
    options: list[str] | None = typer.Argument(None, help="key=value options"),
) -> None:
    req = compile_lookup(table, row, options or [])
    client = _client(ctx)
    printer = RowPrinter(
        decode=decode_type(req.decode),
        decode_columns=decode_columns(req.decode_columns),
    )
    printer.print_row(client.lookup(req))


@app.command(
    "read",
    help=(
        "Read rows: read <table> [start=<row>] [end=<row>] [prefix=<prefix>] [count=<n>] "
        "[version=<n>] [family=<family>] [value=<value>] [from=<unix>] [to=<unix>] "
        "[decode=<type>] [decode_columns=<col:type,...>]"
    ),
    context_settings=_KV_COMMAND_SETTINGS,
)
def read(
    ctx: typer.Context,
    table: str = typer.Argument(..., help="Table name"),
    options: list[str] | None = typer.Argument(None, help="key=value options"),
) -> None:
    req = compile_read(table, options or [])
    client = _client(ctx)
    printer = RowPrinter(
        decode=decode_type(req.decode),
        decode_columns=decode_columns(req.decode_columns),
    )
    printer.print_rows(client.read(req))


@app.command("config", help="Print the resolved project, instance and credential source.")
def config(ctx: typer.Context, plain_json: bool = typer.Option(False, "--plain-json")) -> None:
    resolved = _resolved(ctx)
    payload = {
        "kind": "btcli.config.v1",
        "project": resolved.project,
        "instance": resolved.instance,
        "credentialSource": resolved.credential_source,
        "credentialsPath": resolved.credentials_path or "",
    }
    _print_json(payload, pretty=not plain_json)


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        result = app(args=argv, prog_name="btcli", standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _rich_error(str(e))
        return 2
    except OpError as e:
        _rich_error(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
