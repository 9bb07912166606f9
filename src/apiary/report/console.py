"""
Console output for apiary using Rich.

Listings are shown as a path tree, single requests as a payload panel
followed by a history table.
"""

import json
from typing import Any, Iterable

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from apiary.plugins import PluginRegistry
from apiary.report.tree import PathTree, build_path_tree, leaf_name, sub_kind
from apiary.schema import Request

KIND_STYLES = {
    "http": "green",
    "sql": "blue",
    "grpc": "magenta",
    "jq": "yellow",
    "redis": "red",
    "md": "white",
    "sql-source": "bright_blue",
    "http-source": "bright_green",
}


def _label(request: Request) -> Text:
    style = KIND_STYLES.get(request.kind, "cyan")
    label = Text()
    label.append(f"{request.kind.upper():<11}", style=f"bold {style}")
    qualifier = sub_kind(request)
    if qualifier:
        label.append(f"{qualifier:<8}", style=style)
    label.append(leaf_name(request))
    label.append(f"  {request.id}", style="dim")
    return label


def _add_branch(branch: Tree, node: PathTree, by_id: dict[str, Request]) -> None:
    for name in sorted(node.dirs):
        _add_branch(branch.add(Text(f"{name}/", style="bold")), node.dirs[name], by_id)
    for request_id in node.ids:
        branch.add(_label(by_id[request_id]))


def print_request_tree(console: Console, requests: Iterable[Request], title: str = "requests") -> None:
    """Print all requests as a tree grouped by path."""
    requests = list(requests)
    if not requests:
        console.print("[dim]No requests stored.[/dim]")
        return
    root = Tree(f"[bold]{title}[/bold] ({len(requests)})")
    _add_branch(root, build_path_tree(requests), {r.id: r for r in requests})
    console.print(root)


def _pretty(data: dict[str, Any]) -> Syntax:
    return Syntax(json.dumps(data, indent=2, ensure_ascii=False), "json", word_wrap=True)


def _truncate(s: str, max_len: int) -> str:
    """Truncate string with ellipsis."""
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."


def print_request(console: Console, request: Request, verbose: bool = False) -> None:
    """Print one request: payload panel, then its history."""
    header = Text()
    header.append(f" {request.kind.upper()} ", style=f"bold {KIND_STYLES.get(request.kind, 'cyan')}")
    header.append(request.path or "(no path)", style="bold")
    header.append(f" │ {request.id}", style="dim")
    console.print(Panel(header, expand=False))
    console.print(_pretty(request.data.model_dump(mode="json", by_alias=True)))
    console.print()

    if not request.responses:
        console.print("[dim]No responses recorded.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", show_lines=verbose, expand=True)
    table.add_column("#", style="dim", width=3, justify="right")
    table.add_column("Sent", width=26)
    table.add_column("Duration", justify="right", width=10)
    table.add_column("Response", overflow="fold")

    # Most recent first
    for n, response in reversed(list(enumerate(request.responses, start=1))):
        duration = (response.received_at - response.sent_at).total_seconds() * 1000
        body = json.dumps(response.response.model_dump(mode="json", by_alias=True), ensure_ascii=False)
        table.add_row(
            str(n),
            response.sent_at.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
            f"{duration:.1f}ms",
            body if verbose else _truncate(body, 80),
        )

    console.print(table)


def print_response(console: Console, kind: str, data: dict[str, Any], duration_ms: float, recorded: bool) -> None:
    """Print the result of a perform or exploration."""
    status = "[green]✓ recorded[/green]" if recorded else "[dim]not recorded[/dim]"
    console.print(f"[bold]{kind.upper()}[/bold] response in {duration_ms:.1f}ms {status}")
    console.print(_pretty(data))


def print_kinds(console: Console, registry: PluginRegistry) -> None:
    """Print the registered kinds and their capabilities."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Kind", style="cyan")
    table.add_column("Title")
    table.add_column("Perform", justify="center")
    table.add_column("Explore", justify="center")
    table.add_column("Storage", style="dim")

    for plugin in registry:
        table.add_row(
            plugin.kind,
            plugin.title,
            "[green]✓[/green]" if plugin.executable else "[dim]-[/dim]",
            "[green]✓[/green]" if plugin.explore is not None else "[dim]-[/dim]",
            plugin.side_table.value,
        )

    console.print(table)


def print_document_summary(console: Console, path: str, requests: Iterable[Request]) -> None:
    """Print per-kind counts of a decoded document."""
    counts: dict[str, list[int]] = {}
    for request in requests:
        entry = counts.setdefault(request.kind, [0, 0])
        entry[0] += 1
        entry[1] += len(request.responses)

    table = Table(show_header=True, header_style="bold", title=path)
    table.add_column("Kind", style="cyan")
    table.add_column("Requests", justify="right")
    table.add_column("Responses", justify="right")
    for kind in sorted(counts):
        table.add_row(kind, str(counts[kind][0]), str(counts[kind][1]))
    table.add_row("[bold]total[/bold]", str(sum(c[0] for c in counts.values())), str(sum(c[1] for c in counts.values())))
    console.print(table)


def print_sql_result(console: Console, columns: Iterable[str], types: Iterable[str], rows: Iterable[Iterable[Any]]) -> None:
    """Print a query result as a table, with column types in the header."""
    table = Table(show_header=True, header_style="bold")
    for name, kind in zip(columns, types):
        table.add_column(f"{name}\n[dim]{kind or '?'}[/dim]")
    count = 0
    for row in rows:
        table.add_row(*[Text("NULL", style="dim") if v is None else Text(str(v)) for v in row])
        count += 1
    console.print(table)
    console.print(f"[dim]{count} row(s)[/dim]")


def print_endpoints(console: Console, endpoints: Iterable[Any]) -> None:
    """Print the endpoints of an API description with their indexes."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Method", style="cyan")
    table.add_column("Path")
    table.add_column("Summary", overflow="fold")
    for index, endpoint in enumerate(endpoints):
        table.add_row(str(index), endpoint.method, endpoint.path, endpoint.summary)
    console.print(table)
