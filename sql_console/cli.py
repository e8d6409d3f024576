import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, TypeVar

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from sql_console import __version__
from sql_console.assistant import SUGGESTIONS, strip_sql_fences
from sql_console.config import ConsoleConfig, load_config
from sql_console.console import Workspace
from sql_console.errors import SqlConsoleError
from sql_console.export import write_csv
from sql_console.models import Cell, ConversationTurn, Dataset, HarnessReport, QueryResult, StepStatus
from sql_console.progress import UploadPhase
from sql_console.transport import TransportClient

# Load environment variables
load_dotenv()

app = typer.Typer(
    name="sql-console",
    help="Upload CSV files, inspect their statistics and query them with SQL or plain English",
    add_completion=False
)

console = Console()

T = TypeVar("T")

# Global state
api_url_override: Optional[str] = None

STEP_STYLES = {
    StepStatus.PENDING: "dim",
    StepStatus.RUNNING: "yellow",
    StepStatus.PASS: "green",
    StepStatus.FAIL: "red",
}


def get_config() -> ConsoleConfig:
    if api_url_override:
        return load_config(api_url=api_url_override)
    return load_config()


def get_transport(config: ConsoleConfig) -> TransportClient:
    return TransportClient.from_config(config)


def _run(action: Callable[[Workspace], Awaitable[T]]) -> T:
    config = get_config()

    async def main() -> T:
        async with get_transport(config) as transport:
            return await action(Workspace(transport, config))

    return asyncio.run(main())


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    raise typer.Exit(1)


def format_cell(cell: Cell) -> str:
    if cell is None:
        return "NULL"
    if isinstance(cell, bool):
        return str(cell)
    if isinstance(cell, int) or (isinstance(cell, float) and cell.is_integer()):
        return f"{int(cell):,}"
    if isinstance(cell, float):
        return f"{cell:,.3f}".rstrip("0").rstrip(".")
    return str(cell)


def result_footer(result: QueryResult) -> str:
    shown = len(result.rows)
    if result.total_rows and result.total_rows > shown:
        return f"Showing {shown:,} of {result.total_rows:,} rows"
    return f"{shown:,} row{'s' if shown != 1 else ''} returned"


def render_rows(columns: List[str], rows: List[List[Cell]], title: Optional[str] = None) -> Table:
    table = Table(title=title)
    for column in columns:
        table.add_column(column, overflow="fold")
    for row in rows:
        table.add_row(*[
            "[dim italic]NULL[/dim italic]" if cell is None else format_cell(cell)
            for cell in row
        ])
    return table


def display_result(result: QueryResult) -> None:
    if not result.ok:
        console.print(f"[red]Error: {result.error}[/red]")
        return
    if not result.columns:
        console.print("[dim]Run a query to see results[/dim]")
        return

    console.print(render_rows(result.columns, result.rows))
    if not result.rows:
        console.print("[dim]Query returned no rows[/dim]")
    else:
        console.print(f"[dim]{result_footer(result)}[/dim]")


def display_dataset(dataset: Dataset) -> None:
    if not dataset.loaded:
        console.print("[yellow]No dataset loaded. Upload a CSV to see stats[/yellow]")
        return

    info_table = Table(title="📊 Data Stats")
    info_table.add_column("Property", style="cyan")
    info_table.add_column("Value", style="green")
    info_table.add_row("Rows", f"{dataset.row_count:,}")
    info_table.add_row("Columns", str(dataset.column_count))
    console.print(info_table)

    cols_table = Table(title="Schema")
    cols_table.add_column("Name", style="bold blue")
    cols_table.add_column("Type", style="yellow")
    cols_table.add_column("Nulls", style="magenta")
    cols_table.add_column("Summary")

    for col in dataset.columns:
        numeric = col.numeric_stats
        text = col.text_stats
        if numeric is not None:
            nulls = str(numeric.null_count)
            if numeric.min is None:
                summary = "all null"
            else:
                summary = f"min {format_cell(numeric.min)} · max {format_cell(numeric.max)} · mean {format_cell(numeric.mean)}"
        elif text is not None:
            nulls = str(text.null_count)
            top = ", ".join(f"{vc.value} ({vc.count})" for vc in text.top_values[:3])
            summary = f"{text.unique_count} unique" + (f" · top: {top}" if top else "")
        else:
            nulls = "-"
            summary = ""
        cols_table.add_row(col.name, col.type.value, nulls, summary)

    console.print(cols_table)


def display_turn(turn: ConversationTurn, preview_rows: int) -> None:
    if turn.failed:
        console.print(f"[red]{turn.content}[/red]")
        return

    text = strip_sql_fences(turn.content)
    if text:
        console.print(Panel(text, title="💡 Assistant", border_style="green"))
    if turn.sql:
        console.print(Panel(turn.sql, title="SQL", border_style="blue"))
    if turn.query_result and turn.query_result.rows:
        preview = turn.query_result
        console.print(render_rows(
            preview.columns,
            preview.rows[:preview_rows],
            title=f"Results ({len(preview.rows)} rows)",
        ))
        hidden = len(preview.rows) - preview_rows
        if hidden > 0:
            console.print(f"[dim]+{hidden} more rows[/dim]")


def display_report(report: HarnessReport) -> None:
    table = Table(title="🧪 Self-test")
    table.add_column("#", justify="right")
    table.add_column("Step", style="bold")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")
    for index, step in enumerate(report.steps, 1):
        style = STEP_STYLES[step.status]
        table.add_row(str(index), step.name, f"[{style}]{step.status.value}[/{style}]", step.detail or "")
    console.print(table)


@app.callback()
def main(
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Base URL of the data service"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging")
):
    """Query CSV files through a remote data service."""
    global api_url_override
    api_url_override = api_url

    if verbose or debug:
        logging.basicConfig(level=logging.DEBUG if debug else logging.INFO)
    else:
        logging.basicConfig(level=getattr(logging, get_config().log_level, logging.WARNING))


@app.command()
def upload(
    csv_path: str = typer.Argument(..., help="Path to the CSV file to upload")
):
    """Upload a CSV file and show its statistics."""
    path = Path(csv_path)
    if not path.exists():
        _fail(f"CSV file '{csv_path}' not found")

    async def action(workspace: Workspace) -> Optional[Dataset]:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=console
        ) as progress:
            task = progress.add_task(f"Uploading {path.name}...", total=100)

            def on_percent(percent: int) -> None:
                description = "Processing CSV..." if workspace.progress.phase is UploadPhase.PROCESSING else f"Uploading {path.name}..."
                progress.update(task, completed=percent, description=description)

            workspace.progress.subscribe(on_percent)
            dataset = await workspace.upload(path.read_bytes(), path.name)

        if dataset is None:
            _fail(workspace.view.upload_error or "Upload failed")
        return dataset

    dataset = _run(action)
    if not dataset.loaded:
        console.print(f"[yellow]⚠️  '{path.name}' contained no data; nothing is loaded[/yellow]")
        raise typer.Exit(1)

    console.print(f"[green]✅ Successfully loaded '{path.name}'[/green]")
    display_dataset(dataset)
    console.print(f"\n[green]✨ Ready for queries! Use:[/green]")
    console.print('   sql-console query "SELECT * FROM tablename LIMIT 10"')


@app.command()
def stats():
    """Show row/column counts and per-column statistics of the loaded data."""

    async def action(workspace: Workspace) -> Dataset:
        return await workspace.sync()

    try:
        dataset = _run(action)
    except SqlConsoleError as e:
        _fail(str(e))
    display_dataset(dataset)


@app.command()
def query(
    sql: Optional[str] = typer.Argument(None, help="SQL to run (default: the configured default query)"),
    export: Optional[Path] = typer.Option(None, "--export", "-o", help="Write the result to this CSV file")
):
    """Run a SQL query against the loaded data."""

    async def action(workspace: Workspace) -> Optional[QueryResult]:
        await workspace.sync()
        return await workspace.run_query(sql)

    try:
        result = _run(action)
    except SqlConsoleError as e:
        _fail(str(e))

    if result is None:
        _fail("SQL query is required")
    display_result(result)
    if not result.ok:
        raise typer.Exit(1)

    if export is not None:
        target = write_csv(result, export)
        console.print(f"[green]💾 Exported {len(result.rows)} rows to {target}[/green]")


@app.command()
def ask(
    question: Optional[str] = typer.Argument(None, help="Question about your data"),
    no_execute: bool = typer.Option(False, "--no-execute", help="Only generate SQL, do not run it"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Keep asking follow-up questions")
):
    """Ask the AI assistant a question about your data."""
    config = get_config()
    auto_execute = config.auto_execute and not no_execute

    async def action(workspace: Workspace) -> bool:
        await workspace.sync()
        if not workspace.loaded:
            console.print("[yellow]Upload a CSV file first to start chatting.[/yellow]")
            return False

        if question:
            turn = await workspace.ask(question, auto_execute)
            display_turn(turn, config.preview_rows)
            if not interactive:
                return not turn.failed

        console.print(Panel(
            "🤖 Interactive mode - type 'exit' to leave, 'clear' to reset the chat\n"
            + "\n".join(f"  • {s}" for s in SUGGESTIONS),
            style="bold green"
        ))
        while True:
            try:
                text = typer.prompt("\n❓ Your question")
            except (KeyboardInterrupt, EOFError, typer.Abort):
                break
            if text.lower() in ["exit", "quit", "q"]:
                break
            if text.lower() == "clear":
                workspace.clear_chat()
                console.print("[dim]Chat cleared[/dim]")
                continue
            turn = await workspace.ask(text, auto_execute)
            if turn is not None:
                display_turn(turn, config.preview_rows)
        console.print("[blue]👋 Goodbye![/blue]")
        return True

    try:
        ok = _run(action)
    except SqlConsoleError as e:
        _fail(str(e))
    if not ok:
        raise typer.Exit(1)


@app.command()
def selftest():
    """Run the end-to-end self-test against the service."""

    async def action(workspace: Workspace) -> HarnessReport:
        await workspace.sync()
        return await workspace.run_self_test()

    try:
        report = _run(action)
    except SqlConsoleError as e:
        _fail(str(e))

    display_report(report)
    if report.passed:
        console.print("[green]✅ All passed[/green]")
    else:
        console.print("[red]❌ Failed[/red]")
        raise typer.Exit(1)


@app.command()
def health():
    """Check that the data service is reachable."""

    async def action(workspace: Workspace) -> bool:
        return await workspace.transport.health()

    try:
        healthy = _run(action)
    except SqlConsoleError as e:
        _fail(str(e))
    if not healthy:
        _fail("Service reported an unhealthy status")
    console.print(f"[green]✅ Service at {get_config().api_url} is healthy[/green]")


@app.command()
def version():
    """Show version information."""
    console.print(f"sql-console v{__version__}")
    console.print("CSV to SQL console for a remote data service")


if __name__ == "__main__":
    app()
