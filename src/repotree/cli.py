"""CLI entry point for repotree."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Annotated, TypeVar

import typer
import yaml
from rich import print as rprint
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table
from rich.tree import Tree

from repotree.config import RepoTreeConfig, load_config
from repotree.config.loader import DEFAULT_CONFIG_TEMPLATE
from repotree.errors import SyncError
from repotree.logging import init_logging
from repotree.sync import SyncEngine, SyncResult, create_engine
from repotree.tree.models import TreeNode
from repotree.vcs.models import RepositoryRef

app = typer.Typer(
    name="repotree",
    help="Cache GitHub repository file trees locally and keep them fresh.",
)

config_app = typer.Typer(help="Manage repotree configuration.")
app.add_typer(config_app, name="config")

T = TypeVar("T")

# Global state
_config: RepoTreeConfig | None = None


def _get_config() -> RepoTreeConfig:
    if _config is None:
        return load_config()
    return _config


@app.callback()
def main(
    config: Annotated[
        str | None, typer.Option("--config", "-c", help="Path to repotree.yaml")
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Debug logging")
    ] = False,
) -> None:
    """Global options."""
    global _config
    try:
        _config = load_config(config)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    init_logging("debug" if verbose else _config.log_level, _config.log_format)


def _run(action: Callable[[SyncEngine], Awaitable[T]]) -> T:
    """Run *action* against a fresh engine and close it afterwards."""

    async def _go() -> T:
        async with create_engine(_get_config()) as engine:
            return await action(engine)

    try:
        return asyncio.run(_go())
    except SyncError as e:
        rprint(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)


def _parse_ref(repo: str) -> RepositoryRef:
    try:
        return RepositoryRef.parse(repo)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)


def _format_age(delta: timedelta) -> str:
    seconds = int(delta.total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def _add_children(branch: Tree, node: TreeNode, depth: int | None) -> None:
    if depth is not None and depth <= 0:
        if node.children:
            branch.add(f"[dim]… {len(node.children)} more[/dim]")
        return
    for child in node.children.values():
        if child.is_dir:
            sub = branch.add(f"[bold blue]{escape(child.name)}/[/bold blue]")
            _add_children(sub, child, None if depth is None else depth - 1)
        else:
            branch.add(escape(child.name))


def _display_result(result: SyncResult, depth: int | None) -> None:
    for warning in result.warnings:
        rprint(f"[yellow]Warning:[/yellow] {escape(str(warning))}")
    tree = Tree(f"[bold]{result.ref}[/bold] [dim]({result.status.value})[/dim]")
    _add_children(tree, result.tree, depth)
    rprint(tree)


@app.command()
def tree(
    repo: str = typer.Argument(..., help="owner/repo or owner/repo@ref"),
    refresh: bool = typer.Option(False, "--refresh", help="Bypass the cache"),
    depth: int | None = typer.Option(None, "--depth", "-d", help="Limit displayed depth"),
) -> None:
    """Show a repository's file tree, from cache when fresh."""
    ref = _parse_ref(repo)
    result = _run(lambda engine: engine.resolve(ref, force_refresh=refresh))
    _display_result(result, depth)


@app.command()
def sync(
    owner: str = typer.Argument(..., help="GitHub user or organization"),
    refresh: bool = typer.Option(False, "--refresh", help="Bypass the cache"),
) -> None:
    """Cache the default-branch tree of every repository an account owns."""
    rprint(f"[bold]Syncing[/bold] {owner}...")
    report = _run(lambda engine: engine.sync_account(owner, force_refresh=refresh))

    for warning in report.warnings:
        rprint(f"[yellow]Warning:[/yellow] {escape(str(warning))}")
    table = Table(title=f"Repositories ({len(report.results) + len(report.errors)})")
    table.add_column("Repository", style="cyan")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    for key, result in sorted(report.results.items()):
        table.add_row(key, result.status.value, str(len(result.tree.file_paths())))
    for key, error in sorted(report.errors.items()):
        table.add_row(key, f"[red]{type(error).__name__}[/red]", "-")
    rprint(table)
    if not report.ok:
        raise typer.Exit(1)


@app.command()
def cached(
    owner: str = typer.Argument(..., help="GitHub user or organization"),
) -> None:
    """List cached repository trees for an account."""
    records = _run(lambda engine: asyncio.to_thread(engine.store.list_records, owner))
    if not records:
        rprint(f"[yellow]Nothing cached for '{owner}'.[/yellow]")
        raise typer.Exit(0)

    now = datetime.now(timezone.utc)
    table = Table(title=f"Cached trees ({len(records)})")
    table.add_column("Repository", style="cyan")
    table.add_column("Ref")
    table.add_column("Age", justify="right")
    table.add_column("Fresh", justify="center")
    for record in records:
        table.add_row(
            record.ref.slug,
            record.ref.ref,
            _format_age(record.age(now)),
            "[green]yes[/green]" if record.is_fresh(now) else "[yellow]no[/yellow]",
        )
    rprint(table)


@app.command()
def invalidate(
    repo: str = typer.Argument(..., help="owner/repo (all refs) or owner/repo@ref"),
) -> None:
    """Drop cached trees so the next lookup refetches them."""
    ref = _parse_ref(repo)
    if "@" in repo:
        removed = int(_run(lambda engine: engine.invalidate(ref)))
    else:
        removed = _run(lambda engine: engine.invalidate_repository(ref.owner, ref.name))
    rprint(f"[green]Removed[/green] {removed} cached tree(s) for {repo}")


@app.command()
def sweep(
    max_age: int | None = typer.Option(
        None, "--max-age", help="Seconds; defaults to cache.max_age from config"
    ),
) -> None:
    """Evict cached trees that have not been used for a long time."""
    cfg = _get_config()
    age = timedelta(seconds=max_age) if max_age is not None else cfg.cache.max_age
    removed = _run(lambda engine: engine.sweep(age))
    rprint(f"[green]Swept[/green] {removed} cached tree(s)")


@config_app.command("show")
def config_show() -> None:
    """Show current resolved configuration."""
    data = _get_config().model_dump(mode="json")
    if data["github"].get("token"):
        data["github"]["token"] = "***"
    rprint(Syntax(yaml.dump(data, default_flow_style=False), "yaml"))


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config"),
) -> None:
    """Create default repotree.yaml in current directory."""
    target = Path("repotree.yaml")
    if target.exists() and not force:
        rprint("[yellow]repotree.yaml already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE)
    rprint(f"[green]Created[/green] {target}")


if __name__ == "__main__":
    app()
