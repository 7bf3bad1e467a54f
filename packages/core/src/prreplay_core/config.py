import os
from pathlib import Path
from typing import Optional

import yaml

from prreplay_core.errors import ConfigError

DEFAULT_CONFIG: dict = {
    "fork_org": None,
    "data_dir": "data",
    "repos_dir": None,  # None = <data_dir>/repos
    "work_dir": None,  # None = system temp directory
    "default_base_branch": "main",
    "fallback_base_branch": "master",
    "fork_ready_delay": 3,
    "progress_interval": 2.0,
    "git_user_name": "prreplay",
    "git_user_email": "prreplay@users.noreply.github.com",
    "store": "noop",
    "store_path": None,  # None = <data_dir>/prreplay.db
}


def load_config(config_path: str = ".prreplay.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prreplay.yml in the current directory
      3. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Deployment paths from the environment win over the file
    if os.environ.get("DATA_DIR"):
        config["data_dir"] = os.environ["DATA_DIR"]
    if os.environ.get("REPOS_DIR"):
        config["repos_dir"] = os.environ["REPOS_DIR"]
    if not config.get("repos_dir"):
        config["repos_dir"] = str(Path(config["data_dir"]) / "repos")
    if not config.get("store_path"):
        config["store_path"] = str(Path(config["data_dir"]) / "prreplay.db")

    if not config.get("fork_org"):
        config["fork_org"] = os.environ.get("PRREPLAY_FORK_ORG")

    # GITHUB_BOT_TOKEN takes precedence over GITHUB_TOKEN
    config["github_token"] = os.environ.get("GITHUB_BOT_TOKEN") or os.environ.get("GITHUB_TOKEN")

    return config


def validate_config(config: dict) -> None:
    """Raise ConfigError when the engine cannot run with ``config``."""
    missing = []
    if not config.get("github_token"):
        missing.append("GitHub token (GITHUB_BOT_TOKEN or GITHUB_TOKEN)")
    if not config.get("fork_org"):
        missing.append("fork organization (fork_org or PRREPLAY_FORK_ORG)")
    if missing:
        raise ConfigError("Missing configuration: " + ", ".join(missing))
