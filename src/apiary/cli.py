"""
CLI entry point for apiary.

Commands:
    kinds       List registered kinds and their capabilities
    list        Show stored requests as a path tree
    show        Show one request and its history
    create      Create a request
    update      Replace a request's payload
    rename      Move a request to a new path
    delete      Delete a request and its history
    duplicate   Copy a request
    perform     Execute a request and record the response
    query       Run a query through a sql-source
    tables      List the tables of a sql-source
    endpoints   List the endpoints of an http-source
    call        Call an http-source endpoint
    check       Decode a document and summarise it

The CLI is thin: it parses arguments and delegates to RequestStore and
ExecutionOrchestrator.
"""

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any, Generator, Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from apiary import __version__
from apiary.config import DEFAULT_CONFIG_PATH, ApiaryConfig, load_config
from apiary.engine import ExecutionOrchestrator, PerformResult
from apiary.errors import ApiaryError
from apiary.logging import configure_logging
from apiary.plugins import default_registry
from apiary.report import (
    build_list_dict,
    print_document_summary,
    print_endpoints,
    print_kinds,
    print_request,
    print_request_tree,
    print_response,
    print_sql_result,
    request_to_dict,
    to_json,
)
from apiary.store import RequestStore, VersionedCodec

app = typer.Typer(
    name="apiary",
    help="Store, organise and execute HTTP, SQL, Redis and other requests.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()


DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", help="Path to the JSON document. Defaults to db_path from the config."),
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        help="YAML configuration file. Defaults to ./apiary.yaml if present.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output results in JSON format.")]
VerboseOption = Annotated[bool, typer.Option("--verbose", help="Enable verbose output and debug logging.")]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]apiary[/bold] version {__version__}")
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
    apiary - a local workbench for requests.

    Requests of every kind live in one JSON document together with the
    history of their executions.
    """
    pass


# =============================================================================
# Helpers
# =============================================================================


def _load_settings(config_path: Path | None, verbose: bool = False) -> ApiaryConfig:
    """Load configuration and set up logging."""
    if config_path is None and DEFAULT_CONFIG_PATH.exists():
        config_path = DEFAULT_CONFIG_PATH
    try:
        config = load_config(config_path) if config_path else ApiaryConfig()
    except ValidationError as e:
        console.print(f"[red]Invalid configuration {config_path}:[/red]\n{e}")
        raise typer.Exit(code=1)
    configure_logging("DEBUG" if verbose else config.log_level)
    return config


def _open_store(db: Path | None, config: ApiaryConfig) -> RequestStore:
    return RequestStore(db or config.db_path)


def _orchestrator(db: Path | None, config: ApiaryConfig) -> ExecutionOrchestrator:
    """Orchestrator for commands that only read the store."""
    return ExecutionOrchestrator(_open_store(db, config), timeout_seconds=config.perform_timeout_seconds)


def _parse_payload(payload: str | None) -> dict[str, Any] | None:
    if payload is None:
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        console.print(f"[red]--payload is not valid JSON: {e}[/red]")
        raise typer.Exit(code=1)
    if not isinstance(data, dict):
        console.print("[red]--payload must be a JSON object[/red]")
        raise typer.Exit(code=1)
    return data


@contextmanager
def _errors(json_output: bool = False) -> Generator[None, None, None]:
    """Turn apiary errors into a message and exit code 1."""
    try:
        yield
    except ApiaryError as e:
        if json_output:
            print(json.dumps({"error": True, **e.to_dict()}, indent=2, default=str))
        else:
            console.print(f"[red]{e.message}[/red]")
            if e.suggestion:
                console.print(f"[dim]{e.suggestion}[/dim]")
        raise typer.Exit(code=1)


def _output_result(result: PerformResult, json_output: bool) -> None:
    if json_output:
        print(to_json(result.to_dict()))
        return
    data = result.response.model_dump(mode="json", by_alias=True)
    if result.kind == "sql":
        print_sql_result(console, data["columns"], data["types"], data["rows"])
        return
    print_response(console, result.kind, data, result.duration_ms, result.recorded)


# =============================================================================
# Commands
# =============================================================================


@app.command()
def kinds(
    json_output: JsonOption = False,
) -> None:
    """List the registered kinds."""
    if json_output:
        print(to_json([
            {
                "kind": plugin.kind,
                "title": plugin.title,
                "executable": plugin.executable,
                "explorable": plugin.explore is not None,
                "side_table": plugin.side_table.value,
            }
            for plugin in default_registry
        ]))
        return
    print_kinds(console, default_registry)


@app.command("list")
def list_requests(
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Show stored requests grouped by path.

    Example:
        $ apiary list --db db.json
    """
    settings = _load_settings(config, verbose)
    with _errors(json_output):
        requests = _open_store(db, settings).list()
        if json_output:
            print(to_json(build_list_dict(requests)))
        else:
            print_request_tree(console, requests)


@app.command()
def show(
    request_id: Annotated[str, typer.Argument(help="Request id.")],
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Show a request's payload and history."""
    settings = _load_settings(config, verbose)
    with _errors(json_output):
        request = _open_store(db, settings).get(request_id)
        if json_output:
            print(to_json(request_to_dict(request)))
        else:
            print_request(console, request, verbose)


@app.command()
def create(
    kind: Annotated[str, typer.Argument(help="Kind of the request (see 'apiary kinds').")],
    path: Annotated[str, typer.Argument(help="Display path, '/' separated.")],
    payload: Annotated[
        Optional[str],
        typer.Option("--payload", "-p", help="Request payload as a JSON object."),
    ] = None,
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Create a request and print its id.

    Example:
        $ apiary create http api/users -p '{"url": "https://example.com/users"}'
    """
    settings = _load_settings(config, verbose)
    data = _parse_payload(payload)
    with _errors(json_output):
        with _open_store(db, settings) as store:
            request_id = store.create(path, kind, data)
        if json_output:
            print(to_json({"id": request_id}))
        else:
            console.print(f"[green]✓[/green] Created {kind} request [bold]{request_id}[/bold]")


@app.command()
def update(
    request_id: Annotated[str, typer.Argument(help="Request id.")],
    payload: Annotated[
        str,
        typer.Option("--payload", "-p", help="New request payload as a JSON object."),
    ],
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Replace a request's payload. The kind cannot change."""
    settings = _load_settings(config, verbose)
    data = _parse_payload(payload)
    with _errors(json_output):
        with _open_store(db, settings) as store:
            store.update(request_id, data)
        if json_output:
            print(to_json({"id": request_id, "updated": True}))
        else:
            console.print(f"[green]✓[/green] Updated [bold]{request_id}[/bold]")


@app.command()
def rename(
    request_id: Annotated[str, typer.Argument(help="Request id.")],
    new_path: Annotated[str, typer.Argument(help="New display path.")],
    db: DbOption = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Move a request to a new path."""
    settings = _load_settings(config, verbose)
    with _errors():
        with _open_store(db, settings) as store:
            store.rename(request_id, new_path)
        console.print(f"[green]✓[/green] Renamed [bold]{request_id}[/bold] to {new_path}")


@app.command()
def delete(
    request_id: Annotated[str, typer.Argument(help="Request id.")],
    db: DbOption = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Delete a request and its history."""
    settings = _load_settings(config, verbose)
    with _errors():
        with _open_store(db, settings) as store:
            store.delete(request_id)
        console.print(f"[green]✓[/green] Deleted [bold]{request_id}[/bold]")


@app.command()
def duplicate(
    request_id: Annotated[str, typer.Argument(help="Request id.")],
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Copy a request (without history) and print the new id."""
    settings = _load_settings(config, verbose)
    with _errors(json_output):
        with _open_store(db, settings) as store:
            new_id = store.duplicate(request_id)
        if json_output:
            print(to_json({"id": new_id}))
        else:
            console.print(f"[green]✓[/green] Duplicated {request_id} as [bold]{new_id}[/bold]")


@app.command()
def perform(
    request_id: Annotated[str, typer.Argument(help="Request id.")],
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Execute a request and record the response in its history.

    Example:
        $ apiary perform Xy3... --json
    """
    settings = _load_settings(config, verbose)
    with _errors(json_output):
        with _open_store(db, settings) as store:
            orchestrator = ExecutionOrchestrator(store, timeout_seconds=settings.perform_timeout_seconds)
            result = orchestrator.perform(request_id)
        _output_result(result, json_output)


@app.command()
def query(
    source_id: Annotated[str, typer.Argument(help="sql-source id.")],
    sql: Annotated[str, typer.Argument(help="Query to run.")],
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Run an ad-hoc query through a sql-source. Nothing is recorded."""
    settings = _load_settings(config, verbose)
    with _errors(json_output):
        orchestrator = _orchestrator(db, settings)
        result = orchestrator.perform_sql_source(source_id, sql)
        _output_result(result, json_output)


@app.command()
def tables(
    source_id: Annotated[str, typer.Argument(help="sql-source id.")],
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """List the tables visible through a sql-source."""
    settings = _load_settings(config, verbose)
    with _errors(json_output):
        orchestrator = _orchestrator(db, settings)
        names = orchestrator.list_tables_sql_source(source_id)
        if json_output:
            print(to_json(names))
        else:
            for name in names:
                console.print(name)


@app.command()
def endpoints(
    source_id: Annotated[str, typer.Argument(help="http-source id.")],
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """List the endpoints described by an http-source."""
    settings = _load_settings(config, verbose)
    with _errors(json_output):
        orchestrator = _orchestrator(db, settings)
        found = orchestrator.list_endpoints_http_source(source_id)
        if json_output:
            print(to_json([e.model_dump(mode="json", by_alias=True) for e in found]))
        else:
            print_endpoints(console, found)


@app.command()
def call(
    source_id: Annotated[str, typer.Argument(help="http-source id.")],
    endpoint: Annotated[int, typer.Argument(help="Endpoint index (see 'apiary endpoints').")],
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Send the generated example request for an http-source endpoint."""
    settings = _load_settings(config, verbose)
    with _errors(json_output):
        orchestrator = _orchestrator(db, settings)
        result = orchestrator.perform_http_source(source_id, endpoint_index=endpoint)
        _output_result(result, json_output)


@app.command()
def check(
    document: Annotated[
        Path,
        typer.Argument(
            help="Document to check.",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    json_output: JsonOption = False,
) -> None:
    """
    Decode a document without modifying it and summarise its contents.

    Exits with code 1 if the document cannot be decoded.
    """
    with _errors(json_output):
        requests = VersionedCodec(default_registry).loads(document.read_text(encoding="utf-8"))
        if json_output:
            counts: dict[str, int] = {}
            for request in requests.values():
                counts[request.kind] = counts.get(request.kind, 0) + 1
            print(to_json({"ok": True, "requests": len(requests), "kinds": counts}))
        else:
            print_document_summary(console, str(document), requests.values())
            console.print("[green]✓ Document is valid[/green]")


if __name__ == "__main__":
    app()
