"""Repository name and branch detection used for stream and topic naming."""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from pathlib import Path
from urllib.parse import urlparse

GitRunner = Callable[[list[str], Path], str | None]

DETACHED_HEAD_BRANCH = "Detached HEAD"
UNKNOWN_REPO_NAME = "unknown-repo"


def run_git(args: list[str], cwd: Path) -> str | None:
    """Run a git command and return stripped stdout, or None on any failure."""

    try:
        completed = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return completed.stdout.strip()


def parse_repo_name_from_remote(remote_url: str) -> str | None:
    """Extract the repository name from HTTPS, SSH, or path-style remotes."""

    trimmed = remote_url.strip()
    if not trimmed:
        return None

    without_git = trimmed.removesuffix(".git")

    if "://" in without_git:
        parsed = urlparse(without_git)
        return _last_segment(parsed.path)

    if "@" in without_git and ":" in without_git.split("@", 1)[1]:
        return _last_segment(without_git.split(":", 1)[1])

    return _last_segment(without_git)


def detect_repo_name(
    *,
    cwd: Path | None = None,
    git_runner: GitRunner = run_git,
) -> str:
    """Return origin repo name, falling back to directory name or `unknown-repo`."""

    working_dir = cwd or Path.cwd()
    remote_url = git_runner(["remote", "get-url", "origin"], working_dir)
    parsed = parse_repo_name_from_remote(remote_url) if remote_url else None
    if parsed:
        return parsed

    fallback = working_dir.name.strip()
    return fallback or UNKNOWN_REPO_NAME


def detect_branch_name(
    *,
    cwd: Path | None = None,
    git_runner: GitRunner = run_git,
) -> str:
    """Return current branch name, or `Detached HEAD` when none is checked out."""

    working_dir = cwd or Path.cwd()
    branch = git_runner(["rev-parse", "--abbrev-ref", "HEAD"], working_dir)
    branch = branch.strip() if branch else ""
    if not branch or branch == "HEAD":
        return DETACHED_HEAD_BRANCH
    return branch


def _last_segment(path: str) -> str | None:
    segments = [segment for segment in path.split("/") if segment]
    return segments[-1] if segments else None
