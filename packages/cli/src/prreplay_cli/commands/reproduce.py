"""reproduce command: recreate a PR or commit on the fork."""

from __future__ import annotations

import asyncio
import json

import click
from rich.console import Console
from rich.markup import escape

from prreplay_cli.bridge import StorePersistence, result_to_record
from prreplay_core.engine import ReproductionEngine, ReproductionRequest
from prreplay_core.models import ProgressEvent, ReproductionResult

console = Console()

_KIND_STYLE = {"info": "cyan", "success": "green", "error": "red", "progress": "dim"}


def build_engine(config: dict, store) -> ReproductionEngine:
    return ReproductionEngine(config, persistence=StorePersistence(store))


def render_event(event: ProgressEvent) -> None:
    style = _KIND_STYLE.get(event.kind, "white")
    prefix = f"[bold][{event.step}/{event.total_steps}][/bold] " if event.step else ""
    console.print(f"{prefix}[{style}]{escape(event.message)}[/{style}]", highlight=False)


async def consume(engine: ReproductionEngine, request: ReproductionRequest, as_json: bool) -> ReproductionResult:
    result = None
    async for item in engine.stream(request):
        if isinstance(item, ReproductionResult):
            result = item
        if as_json:
            click.echo(json.dumps(item.to_dict()))
        elif isinstance(item, ProgressEvent):
            render_event(item)
    return result


@click.command("reproduce")
@click.option("--pr-url", default=None, help="Pull request to reproduce (https://github.com/owner/repo/pull/N).")
@click.option("--repo-url", default=None, help="Repository to reproduce a commit from (https://github.com/owner/repo).")
@click.option("--commit", "commit_sha", default=None, help="Commit to reproduce. Defaults to the fork's main branch tip.")
@click.option("--cache", "cache_repo", is_flag=True, help="Add the repository to the reference cache.")
@click.option("--fork-org", default=None, help="Organization that owns the forks. Overrides config file.")
@click.option("--json", "as_json", is_flag=True, help="Emit progress and result as JSON lines.")
@click.pass_context
def reproduce_cmd(
    ctx,
    pr_url: str | None,
    repo_url: str | None,
    commit_sha: str | None,
    cache_repo: bool,
    fork_org: str | None,
    as_json: bool,
):
    """Recreate a pull request (or a single commit) as a PR on the fork.

    \b
    Required configuration:
      GITHUB_BOT_TOKEN / GITHUB_TOKEN   token with repo scope (or use gh CLI)
      fork_org / PRREPLAY_FORK_ORG      organization that owns the forks
    """
    config = dict(ctx.obj["config"])
    store = ctx.obj["store"]
    if fork_org:
        config["fork_org"] = fork_org

    if bool(pr_url) == bool(repo_url):
        raise click.UsageError("Pass exactly one of --pr-url or --repo-url.")
    if commit_sha and not repo_url:
        raise click.UsageError("--commit requires --repo-url.")
    if not config.get("github_token"):
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_BOT_TOKEN or GITHUB_TOKEN, or run `gh auth login` first."
        )

    request = ReproductionRequest(pr_url=pr_url, repo_url=repo_url, commit_sha=commit_sha, cache_repo=cache_repo)
    engine = build_engine(config, store)
    result = asyncio.run(consume(engine, request, as_json))

    if result is None or not result.success:
        if not as_json:
            error = result.error if result else "no result"
            console.print(f"\n[red]Reproduction failed:[/red] {escape(error)}")
        ctx.exit(1)

    store.save_reproduction(result_to_record(result))
    if not as_json:
        verb = "Reused existing PR" if result.reused else "Created PR"
        console.print(f"\n[green]{verb}:[/green] {result.pr_url}")
