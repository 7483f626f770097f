"""Main CLI application."""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.markup import escape

from convmem.cli.console import (
    confirm_or_cancel,
    console,
    create_table,
    dim,
    error,
    state_label,
    success,
    warning,
)

app = typer.Typer(
    name="convmem",
    help="Conversation memory for coding assistants",
    no_args_is_help=True,
)

WorkspaceOption = Annotated[
    Path,
    typer.Option(
        "--workspace",
        "-w",
        help="Workspace directory",
        file_okay=False,
        resolve_path=True,
    ),
]
ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to configuration file",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option(
        "--verbose",
        "-v",
        help="Show debug logs",
    ),
]


def _run(
    workspace: Path,
    config_path: Path | None,
    verbose: bool,
    action: Callable[[Any], Awaitable[None]],
) -> None:
    """Load config, open the workspace's manager and run an async action on it."""
    from convmem.config import ConfigError, load_config
    from convmem.logging import configure_logging
    from convmem.runtime import create_runtime

    configure_logging(level="DEBUG" if verbose else None, use_rich=True)

    try:
        config = load_config(config_path)
    except (ConfigError, FileNotFoundError) as e:
        error(str(e))
        raise typer.Exit(1) from None

    async def run() -> None:
        runtime = create_runtime(config)
        try:
            manager = await runtime.open_workspace(str(workspace))
            await action(manager)
        finally:
            await runtime.close()

    asyncio.run(run())


def _require_enabled(manager: Any) -> None:
    if not manager.is_enabled():
        status = manager.get_status()
        error(f"Conversation memory unavailable: {status.message}")
        raise typer.Exit(1)


@app.command()
def status(
    workspace: WorkspaceOption = Path("."),
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show the memory state of a workspace."""

    async def show(manager: Any) -> None:
        current = manager.get_status()
        table = create_table("Conversation Memory", [("Property", "cyan"), ("Value", "")])
        table.add_row("Workspace", manager.workspace_path)
        table.add_row("State", state_label(current.state))
        table.add_row("Message", current.message or "-")
        if manager.orchestrator is not None:
            table.add_row("Collection", manager.orchestrator.collection_name)
            init = manager.orchestrator.get_initialization_status()
            if init["error"]:
                table.add_row("Error", init["error"])
        console.print(table)

    _run(workspace, config, verbose, show)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="What to look for")],
    limit: Annotated[
        int,
        typer.Option(
            "--limit",
            "-n",
            help="Maximum facts to show",
        ),
    ] = 10,
    workspace: WorkspaceOption = Path("."),
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Search stored facts."""

    async def do_search(manager: Any) -> None:
        _require_enabled(manager)
        facts = await manager.search_memory(query, limit)
        if not facts:
            warning("No memories found")
            return
        table = create_table(
            f"Memories for {query!r}",
            [
                ("Category", "cyan"),
                ("Content", {"style": "white", "overflow": "fold"}),
                ("Confidence", "green"),
                ("When", "dim"),
            ],
        )
        for fact in facts:
            table.add_row(
                fact.category.value,
                fact.content,
                f"{fact.confidence:.2f}",
                fact.reference_time.strftime("%Y-%m-%d") if fact.reference_time else "-",
            )
        console.print(table)

    _run(workspace, config, verbose, do_search)


@app.command()
def episodes(
    query: Annotated[str, typer.Argument(help="What to look for")],
    limit: Annotated[
        int,
        typer.Option(
            "--limit",
            "-n",
            help="Maximum episodes to show",
        ),
    ] = 5,
    workspace: WorkspaceOption = Path("."),
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Search conversation episodes."""

    async def do_search(manager: Any) -> None:
        _require_enabled(manager)
        results = await manager.search_episodes(query, limit)
        if not results:
            warning("No episodes found")
            return
        for result in results:
            console.print(
                f"[bold]{escape(result.episode_context)}[/bold] "
                f"[dim]({result.timeframe}, {result.fact_count} facts, "
                f"score {result.relevance_score:.2f})[/dim]"
            )
            for fact in result.facts[:5]:
                console.print(f"  - \\[{fact.category.value}] {escape(fact.content)}")

    _run(workspace, config, verbose, do_search)


@app.command()
def sweep(
    workspace: WorkspaceOption = Path("."),
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Run one retention pass over debugging facts."""

    async def do_sweep(manager: Any) -> None:
        _require_enabled(manager)
        deleted = await manager.orchestrator.retention.run_cleanup()
        if deleted:
            success(f"Removed {deleted} expired debugging facts")
        else:
            dim("Nothing to remove")

    _run(workspace, config, verbose, do_sweep)


@app.command()
def clear(
    workspace: WorkspaceOption = Path("."),
    config: ConfigOption = None,
    verbose: VerboseOption = False,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Skip confirmation prompt",
        ),
    ] = False,
) -> None:
    """Delete all conversation memory for a workspace."""
    if not confirm_or_cancel(f"Delete all conversation memory for {workspace}?", force):
        return

    async def do_clear(manager: Any) -> None:
        _require_enabled(manager)
        await manager.clear_memory_data()
        success(manager.get_status().message)

    _run(workspace, config, verbose, do_clear)


if __name__ == "__main__":
    app()
