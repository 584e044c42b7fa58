"""Command-line interface for project-scoped semantic search."""

import asyncio
import json
import os
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__
from .config import config
from .documents.files import TREE_SKIP_NAMES
from .exceptions import ReviewSearchError, is_retryable
from .logging import bind_command
from .semantic import CustomDocument, SearchResult, SemanticSearchSystem


app = typer.Typer(
    name="review-search",
    help="Project-scoped semantic search for code review",
    add_completion=False
)
console = Console()


def create_system() -> SemanticSearchSystem:
    """Build the search system from the loaded configuration."""
    return SemanticSearchSystem(settings=config)


def discover_files(project_path: Path) -> List[str]:
    """All files under the project, skipping vendored and generated directories."""
    files = []
    for root, dirs, filenames in os.walk(project_path):
        dirs[:] = sorted(d for d in dirs if d not in TREE_SKIP_NAMES)
        for filename in sorted(filenames):
            files.append(str(Path(root) / filename))
    return files


def display_results(results: List[SearchResult], title: str, output: str) -> None:
    if output == "json":
        console.print_json(json.dumps([result.to_dict() for result in results]))
        return

    if not results:
        console.print("[yellow]No results found.[/yellow]")
        return

    table = Table(title=title)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Similarity", justify="right")
    table.add_column("Path", style="cyan")
    table.add_column("Heading / Type")
    table.add_column("Reranked", justify="center")

    for i, result in enumerate(results, 1):
        table.add_row(
            str(i),
            f"{result.similarity:.3f}",
            result.path or "",
            result.heading_text or result.type,
            "✓" if result.reranked else ""
        )
    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"[green]review-search v{__version__}[/green]")


@app.command()
def index(
    project: Path = typer.Argument(Path("."), help="Project directory to index"),
    exclude: List[str] = typer.Option([], "--exclude", "-e", help="Glob pattern to exclude (repeatable)"),
    gitignore: bool = typer.Option(True, "--gitignore/--no-gitignore", help="Skip files ignored by git"),
    output: str = typer.Option("table", "--output", "-o", help="Output format (table, json)")
) -> None:
    """Index the files of a project."""
    project = project.expanduser().resolve()
    bind_command("index", project_path=str(project))
    if not project.is_dir():
        console.print(f"[red]Not a directory: {project}[/red]")
        raise typer.Exit(1)

    files = discover_files(project)
    console.print(f"[blue]Indexing {len(files)} files in[/blue] {project}")

    async def _run():
        system = create_system()
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TimeElapsedColumn(),
                console=console
            ) as progress:
                task = progress.add_task("Indexing...", total=len(files))

                def _on_progress(status: str, path: str) -> None:
                    progress.update(task, advance=1, description=f"Indexing... ({status})")

                return await system.index_batch(
                    files,
                    str(project),
                    exclude_patterns=exclude,
                    respect_gitignore=gitignore,
                    on_progress=_on_progress
                )
        finally:
            await system.close()

    try:
        result = asyncio.run(_run())
    except ReviewSearchError as e:
        console.print(f"[red]Indexing failed: {e}[/red]")
        if is_retryable(e):
            console.print("[yellow]The failure may be transient, try again.[/yellow]")
        raise typer.Exit(1)

    if output == "json":
        console.print_json(json.dumps(result.to_dict()))
    else:
        table = Table(title="Indexing Summary")
        table.add_column("Status", style="cyan")
        table.add_column("Files", justify="right")
        table.add_row("Processed", str(result.processed))
        table.add_row("Skipped", str(result.skipped))
        table.add_row("Excluded", str(result.excluded))
        table.add_row("Failed", str(result.failed))
        console.print(table)

    if result.failed and not result.processed and not result.skipped:
        raise typer.Exit(1)


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    project: Path = typer.Option(Path("."), "--project", "-p", help="Project directory"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum number of results"),
    threshold: Optional[float] = typer.Option(None, "--threshold", "-t", help="Minimum similarity"),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="File under review, excluded from results"),
    tests: Optional[bool] = typer.Option(None, "--tests/--no-tests", help="Only test files, or no test files"),
    structure: bool = typer.Option(False, "--structure", help="Include the project structure snapshot"),
    output: str = typer.Option("table", "--output", "-o", help="Output format (table, json)")
) -> None:
    """Search for similar code in a project."""
    bind_command("search", project_path=str(project))

    async def _run():
        system = create_system()
        try:
            return await system.search(
                query,
                str(project.expanduser().resolve()),
                limit=limit,
                similarity_threshold=threshold,
                include_project_structure=structure,
                query_file_path=file,
                is_test_file=tests
            )
        finally:
            await system.close()

    results = asyncio.run(_run())
    display_results(results, f"Code matching: {query}", output)


@app.command("search-docs")
def search_docs(
    query: str = typer.Argument(..., help="Search query"),
    project: Path = typer.Option(Path("."), "--project", "-p", help="Project directory"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum number of results"),
    threshold: Optional[float] = typer.Option(None, "--threshold", "-t", help="Minimum similarity"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="File under review, used as reranking context"),
    docs: List[Path] = typer.Option(
        [], "--doc", "-d", help="Extra document searched alongside the project docs (repeatable)"
    ),
    rerank: bool = typer.Option(True, "--rerank/--no-rerank", help="Apply contextual reranking"),
    output: str = typer.Option("table", "--output", "-o", help="Output format (table, json)")
) -> None:
    """Search for relevant documentation in a project."""
    project = project.expanduser().resolve()
    bind_command("search-docs", project_path=str(project))
    query_code = None
    query_file_path = None
    if file is not None:
        file_path = file if file.is_absolute() else project / file
        try:
            query_code = file_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            console.print(f"[red]Cannot read {file_path}: {e}[/red]")
            raise typer.Exit(1)
        query_file_path = os.path.relpath(file_path, project)

    custom_documents = []
    for doc in docs:
        try:
            custom_documents.append(CustomDocument(
                title=f"custom:./{doc.name}",
                content=doc.expanduser().read_text(encoding="utf-8", errors="replace")
            ))
        except OSError as e:
            console.print(f"[red]Cannot read {doc}: {e}[/red]")
            raise typer.Exit(1)

    async def _run():
        system = create_system()
        try:
            query_embedding = None
            if custom_documents:
                query_embedding = await system.calculate_query_embedding(query)
            results = await system.search_docs(
                query,
                str(project),
                limit=limit,
                similarity_threshold=threshold,
                use_reranking=rerank,
                query_file_path=query_file_path,
                query_code=query_code,
                precomputed_query_embedding=query_embedding
            )
            custom_results = []
            if custom_documents:
                chunks = await system.process_custom_documents(custom_documents, str(project))
                custom_results = await system.find_relevant_custom_doc_chunks(
                    query,
                    str(project),
                    chunks=chunks,
                    limit=limit,
                    use_reranking=rerank,
                    query_file_path=query_file_path,
                    query_code=query_code,
                    precomputed_query_embedding=query_embedding
                )
            return results, custom_results
        finally:
            await system.close()

    results, custom_results = asyncio.run(_run())
    if custom_documents and output == "json":
        console.print_json(json.dumps({
            "documentation": [result.to_dict() for result in results],
            "custom_documents": [result.to_dict() for result in custom_results],
        }))
        return
    display_results(results, f"Documentation matching: {query}", output)
    if custom_documents:
        display_results(custom_results, f"Custom documents matching: {query}", output)


@app.command("reindex-comments")
def reindex_comments() -> None:
    """Rebuild the vector and full-text indexes of the review comments table."""
    bind_command("reindex-comments")

    async def _run():
        system = create_system()
        try:
            return await system.update_pr_comments_index()
        finally:
            await system.close()

    strategy = asyncio.run(_run())
    if strategy is None:
        console.print("[red]Review comments index was not updated[/red]")
        raise typer.Exit(1)
    console.print(f"✅ Review comments indexed ({strategy.kind.value}, {strategy.rows} rows)")


@app.command()
def clear(
    project: Optional[Path] = typer.Option(None, "--project", "-p", help="Project whose embeddings to delete"),
    all_projects: bool = typer.Option(False, "--all", help="Drop every table for every project"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")
) -> None:
    """Delete stored embeddings for one project or for all projects."""
    if project is None and not all_projects:
        console.print("[red]Specify --project or --all[/red]")
        raise typer.Exit(1)

    target = "ALL projects" if all_projects else str(project.expanduser().resolve())
    bind_command("clear", target=target)
    if not yes and not typer.confirm(f"Delete embeddings for {target}?"):
        console.print("Cancelled.")
        return

    async def _run():
        system = create_system()
        try:
            if all_projects:
                return await system.clear_all()
            return await system.clear_project(target)
        finally:
            await system.close()

    if asyncio.run(_run()):
        console.print(f"✅ Cleared embeddings for {target}")
    else:
        console.print(f"[red]Failed to clear embeddings for {target}[/red]")
        raise typer.Exit(1)


@app.command()
def status(
    output: str = typer.Option("table", "--output", "-o", help="Output format (table, json)")
) -> None:
    """Show store and model status."""
    bind_command("status")

    async def _run():
        system = create_system()
        try:
            return await system.get_system_status()
        finally:
            await system.close()

    data = asyncio.run(_run())

    if output == "json":
        console.print_json(json.dumps(data, default=str))
        return

    console.print(Panel(
        f"Model: {data['model']['name']} ({data['model']['dimensions']} dims)\n"
        f"Database: {data['storage']['db_path']}",
        title="Review Search Status",
        border_style="green"
    ))

    tables = data["storage"].get("tables", {})
    table = Table(title="Tables")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right")
    table.add_column("Project scoped", justify="center")
    for name, stats in tables.items():
        table.add_row(name, str(stats["rows"]), "✓" if stats["has_project_path"] else "✗")
    console.print(table)

    if data["storage"].get("error"):
        console.print(f"[red]Storage error: {data['storage']['error']}[/red]")


if __name__ == "__main__":
    app()
