"""CLI entry point for prreplay.

Commands:
  reproduce: recreate a pull request or commit as a PR on the fork
  cache    : inspect and manage reference clones
  history  : display recorded reproductions from the store
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prreplay_cli.commands.cache import cache_cmd
from prreplay_cli.commands.history import history_cmd
from prreplay_cli.commands.reproduce import reproduce_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured store from .prreplay.yml settings.

    Store selection:
      store: sqlite → SQLiteStore (uses store_path, default <data_dir>/prreplay.db)
      (default)     → NoOpStore  (no persistence; every check goes to GitHub)
    """
    from prreplay_store.noop import NoOpStore

    if config.get("store", "noop") == "sqlite":
        from prreplay_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=config["store_path"])

    return NoOpStore()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("prreplay"),
    prog_name="prreplay",
)
@click.option(
    "--config",
    "config_path",
    default=".prreplay.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRREPLAY_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging, including git commands.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Reproduce GitHub pull requests on an organization fork for re-review."""
    from prreplay_cli.auth import resolve_github_token
    from prreplay_core.config import load_config

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)

    # A token from the environment or gh CLI session replaces the loaded one.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(reproduce_cmd)
main.add_command(cache_cmd)
main.add_command(history_cmd)
