"""history command: display recorded reproductions from the store."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("history")
@click.option("--repo", default=None, help="Filter by source repository (owner/name).")
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.pass_context
def history_cmd(ctx, repo: str | None, limit: int):
    """Show reproduced PRs recorded in the configured store."""
    from prreplay_store.noop import NoOpStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, NoOpStore):
        raise click.UsageError("No store configured. Add 'store: sqlite' to .prreplay.yml.")

    records = store.list_reproductions(repo)
    if not records:
        console.print("[yellow]No reproductions found.[/yellow]")
        return

    # Show most recent first, capped at --limit.
    records = list(reversed(records))[:limit]

    table = Table(title="Reproductions", show_header=True, header_style="bold cyan")
    table.add_column("Source", style="bold")
    table.add_column("Title", max_width=40)
    table.add_column("Strategy", width=14)
    table.add_column("Commits", justify="right", width=8)
    table.add_column("Fork PR")
    table.add_column("Created At", width=20)

    for r in records:
        source = f"{r.source_repo}#{r.source_number}" if r.source_number else f"{r.source_repo}@{(r.commit_sha or '')[:7]}"
        table.add_row(
            source,
            r.title[:40] if r.title else "",
            r.strategy,
            str(r.commit_count),
            r.forked_pr_url,
            r.created_at[:19].replace("T", " "),
        )

    console.print(table)
