"""Configuration defaults, env vars, and project root discovery."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_STATE_DIR = ".knowledgeforge"
STATE_FILE = "state.json"
STATS_FILE = "stats.json"
IGNORE_FILE = ".gitignore"
ROADMAP_FILE = "ROADMAP.md"


@dataclass
class Config:
    """Runtime configuration for a state store and the CLI."""

    # Persistence layout
    state_dir: str = ""
    state_file: str = STATE_FILE
    stats_file: str = STATS_FILE
    ignore_file: str = IGNORE_FILE
    roadmap_file: str = ROADMAP_FILE

    # Misc
    verbose: bool = False
    notify: bool = True

    def __post_init__(self) -> None:
        if not self.state_dir:
            self.state_dir = os.environ.get("KNOWLEDGEFORGE_STATE_DIR") or DEFAULT_STATE_DIR
        if os.environ.get("KNOWLEDGEFORGE_NO_NOTIFY", "").lower() in ("1", "true", "yes"):
            self.notify = False

    def state_path(self, project_root: Path) -> Path:
        return project_root / self.state_dir / self.state_file

    def stats_path(self, project_root: Path) -> Path:
        return project_root / self.state_dir / self.stats_file

    def ignore_path(self, project_root: Path) -> Path:
        return project_root / self.state_dir / self.ignore_file


def resolve_project_root() -> Path:
    """Return the project root: env override, git top-level, or cwd."""
    import subprocess

    override = os.environ.get("KNOWLEDGEFORGE_PROJECT_ROOT")
    if override:
        return Path(override)

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
        )
        return Path(result.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path.cwd()
