"""Command line interface for Codebase Indexer."""

import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__
from .config import ConfigManager
from .indexing.codebase_indexer import CodebaseIndexer
from .indexing.types import IndexingStatus
from .services.embedding_factory import EmbeddingProviderFactory
from .services.embedding_provider import EmbeddingProviderError
from .services.workspace import LocalWorkspace
from .storage.index_store import IndexStore

console = Console()


class GracefulInterruptHandler:
    """Ctrl-C stops indexing after the current batch; a second Ctrl-C aborts."""

    def __init__(self, cancel_event: threading.Event):
        self.cancel_event = cancel_event
        self.original_sigint_handler: Optional[Union[Callable, int]] = None

    def __enter__(self):
        self.original_sigint_handler = signal.signal(
            signal.SIGINT, self._signal_handler
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        signal.signal(signal.SIGINT, self.original_sigint_handler)

    def _signal_handler(self, signum, frame):
        if self.cancel_event.is_set():
            raise KeyboardInterrupt
        self.cancel_event.set()
        console.print(
            "\n🛑 Cancelling after the current batch; press Ctrl-C again to abort",
            style="yellow",
        )


def _build_indexer(ctx) -> CodebaseIndexer:
    config_manager: ConfigManager = ctx.obj["config_manager"]
    config = config_manager.get_config()
    provider = EmbeddingProviderFactory.create(config, console)
    store = IndexStore(config.storage.index_dir)
    return CodebaseIndexer(config, LocalWorkspace(config), store, provider)


def _resolve_dirs(indexer: CodebaseIndexer, dirs: Tuple[str, ...]):
    if dirs:
        return [str(Path(d).resolve()) for d in dirs]
    return indexer.workspace.get_workspace_dirs()


@click.group(invoke_without_command=True)
@click.option("--config", "-c", type=click.Path(exists=False), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__, prog_name="codebase-indexer")
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool):
    """Incremental code indexing with chunk, full-text, vector and snippet indexes.

    \b
    GETTING STARTED:
      1. codebase-indexer init      # Write .codebase-indexer/config.json
      2. codebase-indexer index     # Bring every index up to date
      3. codebase-indexer search "term"

    \b
    CONFIGURATION:
      Config file: .codebase-indexer/config.json
      Set embedding_provider to "ollama" or "voyage-ai" to build vectors.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    if config:
        ctx.obj["config_manager"] = ConfigManager(Path(config))
    else:
        ctx.obj["config_manager"] = ConfigManager.create_with_backtrack()


@cli.command()
@click.argument("workspace_dir", required=False, default=".", type=click.Path(exists=True))
@click.option("--force", "-f", is_flag=True, help="Overwrite existing configuration")
@click.option(
    "--embedding-provider",
    type=click.Choice(["none", "ollama", "voyage-ai"]),
    default="none",
    help="Embedding provider used for the vector index",
)
@click.pass_context
def init(ctx, workspace_dir: str, force: bool, embedding_provider: str):
    """Create a configuration for WORKSPACE_DIR."""
    root = Path(workspace_dir).resolve()
    config_manager = ConfigManager(root / ".codebase-indexer" / "config.json")
    if config_manager.config_path.exists() and not force:
        console.print(
            f"⚠️  Configuration already exists at {config_manager.config_path}",
            style="yellow",
        )
        console.print("Use --force to overwrite", style="dim")
        sys.exit(1)

    config = config_manager.create_default_config(root)
    config.embedding_provider = embedding_provider
    config_manager.save(config)
    console.print(f"✅ Wrote {config_manager.config_path}", style="green")


@cli.command()
@click.argument("dirs", nargs=-1, type=click.Path(exists=True, file_okay=False))
@click.pass_context
def index(ctx, dirs: Tuple[str, ...]):
    """Index DIRS, or every configured workspace directory."""
    indexer = _build_indexer(ctx)
    cancel_event = threading.Event()
    final_status = IndexingStatus.DONE

    try:
        with GracefulInterruptHandler(cancel_event), Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>5.1f}%"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Starting indexing", total=1.0)
            for update in indexer.refresh_dirs(_resolve_dirs(indexer, dirs), cancel_event):
                progress.update(task, completed=update.progress, description=update.description)
                final_status = update.status
                if update.status is IndexingStatus.FAILED:
                    console.print(f"❌ {update.description}", style="red", markup=False)
                    if update.should_clear_indexes:
                        console.print(
                            "The index looks corrupted; run 'codebase-indexer clear --all'",
                            style="yellow",
                        )
                    if ctx.obj["verbose"] and update.debug_info:
                        console.print(update.debug_info, style="dim", markup=False)
    except EmbeddingProviderError as e:
        console.print(f"❌ Embedding provider failed: {e}", style="red", markup=False)
        sys.exit(1)
    finally:
        indexer.close()
        indexer.store.close()

    if final_status is IndexingStatus.CANCELLED:
        console.print("Indexing cancelled", style="yellow")
        sys.exit(130)
    if final_status is IndexingStatus.FAILED:
        sys.exit(1)
    if final_status is IndexingStatus.DISABLED:
        console.print("Indexing is disabled in config.json", style="yellow")
        return
    console.print("✅ Indexing complete", style="green")


@cli.command("refresh-file")
@click.argument("paths", nargs=-1, required=True, type=click.Path())
@click.pass_context
def refresh_file(ctx, paths: Tuple[str, ...]):
    """Re-index individual files, e.g. from an editor save hook."""
    indexer = _build_indexer(ctx)
    try:
        for update in indexer.refresh_files([str(Path(p).resolve()) for p in paths]):
            if update.status is IndexingStatus.FAILED:
                console.print(f"❌ {update.description}", style="red", markup=False)
                sys.exit(1)
            if ctx.obj["verbose"]:
                console.print(update.description, style="dim", markup=False)
    finally:
        indexer.close()
        indexer.store.close()


@cli.command()
@click.argument("dirs", nargs=-1, type=click.Path(file_okay=False))
@click.option("--all", "clear_all", is_flag=True, help="Delete every index for every project")
@click.pass_context
def clear(ctx, dirs: Tuple[str, ...], clear_all: bool):
    """Remove indexes for DIRS on their current branch."""
    indexer = _build_indexer(ctx)
    try:
        if clear_all:
            indexer.clear_all_indexes()
            console.print("🧹 Cleared all indexes", style="green")
        else:
            targets = _resolve_dirs(indexer, dirs)
            indexer.clear_indexes(targets)
            console.print(f"🧹 Cleared indexes for {len(targets)} directories", style="green")
    finally:
        indexer.close()
        indexer.store.close()


@cli.command()
@click.argument("text")
@click.option("--limit", "-n", default=10, show_default=True, help="Maximum results")
@click.option("--semantic", is_flag=True, help="Use the vector index instead of full-text")
@click.pass_context
def search(ctx, text: str, limit: int, semantic: bool):
    """Search indexed code in the configured workspace."""
    indexer = _build_indexer(ctx)
    try:
        if semantic:
            hits = indexer.search_vectors(text, limit)
        else:
            hits = indexer.search_text(text, limit)
    except RuntimeError as e:
        console.print(f"❌ {e}", style="red", markup=False)
        sys.exit(1)
    finally:
        indexer.close()
        indexer.store.close()

    if not hits:
        console.print("No results", style="yellow")
        return

    for hit in hits:
        console.print(
            f"[bold]{hit.path}[/bold]:{hit.start_line}-{hit.end_line} "
            f"[dim](score {hit.score:.3f})[/dim]",
            soft_wrap=True,
        )
        console.print(hit.content.rstrip(), markup=False, highlight=False)
        console.print()


@cli.command()
@click.pass_context
def status(ctx):
    """Show catalog entries per index."""
    indexer = _build_indexer(ctx)
    try:
        counts = indexer.status()
        table = Table(title="Index status")
        table.add_column("Index")
        table.add_column("Entries", justify="right")
        for index in indexer.get_indexes_to_build():
            table.add_row(index.artifact_id, str(counts.get(index.artifact_id, 0)))
        console.print(table)
        console.print(f"Index directory: {indexer.store.index_dir}", style="dim")
    finally:
        indexer.close()
        indexer.store.close()


def main():
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n❌ Interrupted by user", style="red")
        sys.exit(1)
    except Exception as e:
        console.print(f"❌ Unexpected error: {str(e)}", style="red", markup=False)
        sys.exit(1)


if __name__ == "__main__":
    main()
