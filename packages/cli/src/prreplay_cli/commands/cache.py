"""cache command group: manage the reference-clone cache and its allow-list."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.table import Table

from prreplay_core.cache import ReferenceRepoCache
from prreplay_core.errors import CloneFailure
from prreplay_core.locks import RepoLockManager
from prreplay_core.utils.urls import parse_repo_slug

console = Console()


def format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _cache(config: dict) -> ReferenceRepoCache:
    return ReferenceRepoCache(
        config["repos_dir"],
        RepoLockManager(),
        progress_interval=config.get("progress_interval", 2.0),
    )


def _slug(value: str):
    try:
        return parse_repo_slug(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


@click.group("cache")
def cache_cmd():
    """Inspect and manage cached reference clones."""


@cache_cmd.command("list")
@click.option("--size/--no-size", default=True, show_default=True, help="Compute the on-disk size of each clone.")
@click.pass_context
def cache_list(ctx, size: bool):
    """List cached clones and allow-listed repositories."""
    config = ctx.obj["config"]
    store = ctx.obj["store"]

    on_disk = {entry.repo.key: entry for entry in _cache(config).list_entries(with_size=size)}
    allowed = {f"{r.repo_owner}/{r.repo_name}": r for r in store.list_cached_repos()}

    keys = sorted(set(on_disk) | set(allowed))
    if not keys:
        console.print("[yellow]No cached repositories.[/yellow]")
        return

    table = Table(title="Reference Cache", show_header=True, header_style="bold cyan")
    table.add_column("Repository", style="bold")
    table.add_column("Allow-listed", justify="center", width=12)
    table.add_column("Cloned", justify="center", width=8)
    table.add_column("Last Synced", width=20)
    table.add_column("Size", justify="right", width=10)
    table.add_column("Notes", max_width=30)

    for key in keys:
        entry = on_disk.get(key)
        record = allowed.get(key)
        synced = entry.last_synced_at.strftime("%Y-%m-%d %H:%M:%S") if entry and entry.last_synced_at else "-"
        table.add_row(
            key,
            "[green]yes[/green]" if record else "[dim]no[/dim]",
            "[green]yes[/green]" if entry else "[dim]no[/dim]",
            synced,
            format_bytes(entry.size_bytes) if entry and size else "-",
            (record.notes or "") if record else "",
        )

    console.print(table)


@cache_cmd.command("add")
@click.argument("repo")
@click.option("--notes", default=None, help="Free-form note stored with the entry.")
@click.pass_context
def cache_add(ctx, repo: str, notes: str | None):
    """Allow-list REPO (owner/name) for caching on its next reproduction."""
    ref = _slug(repo)
    ctx.obj["store"].add_cached_repo(ref.owner, ref.name, notes)
    console.print(f"[green]Added {ref.key} to the cache list.[/green]")


@cache_cmd.command("sync")
@click.argument("repo")
@click.pass_context
def cache_sync(ctx, repo: str):
    """Clone or update the reference clone of REPO (owner/name) now."""
    config = ctx.obj["config"]
    ref = _slug(repo)

    def report(update: dict) -> None:
        console.print(f"[dim]{update['phase']} {update['percent']}%[/dim]", highlight=False)

    try:
        asyncio.run(_cache(config).ensure(ref, config.get("github_token"), on_progress=report, force=True))
    except CloneFailure as e:
        console.print(f"[red]{e}[/red]")
        ctx.exit(1)

    ctx.obj["store"].add_cached_repo(ref.owner, ref.name)
    console.print(f"[green]{ref.key} is cached.[/green]")


@cache_cmd.command("remove")
@click.argument("repo")
@click.option("--delete-from-disk", is_flag=True, help="Also delete the cloned repository from disk.")
@click.pass_context
def cache_remove(ctx, repo: str, delete_from_disk: bool):
    """Remove REPO (owner/name) from the cache list."""
    ref = _slug(repo)
    removed = ctx.obj["store"].remove_cached_repo(ref.owner, ref.name)
    if removed:
        console.print(f"Removed {ref.key} from the cache list.")
    else:
        console.print(f"[yellow]{ref.key} was not on the cache list.[/yellow]")

    if delete_from_disk:
        deleted = asyncio.run(_cache(ctx.obj["config"]).remove(ref))
        if deleted:
            console.print(f"Deleted cached clone of {ref.key}.")
        else:
            console.print(f"[yellow]No cached clone of {ref.key} on disk.[/yellow]")
