"""Minimal git helpers.

The helpers below provide just enough structure to inspect the working tree,
create and switch branches, stage and commit changes, and push them to a
remote.  Every call shells out to ``git`` in the repository root.
"""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

__all__ = ["CommitInfo", "GitError", "GitRepository", "parse_gitlab_remote"]


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


@dataclass(slots=True)
class CommitInfo:
    """One entry of ``git log`` between two refs."""

    sha: str
    message: str
    author: str
    date: str


_WELL_KNOWN_DEFAULTS = ("main", "master", "develop", "dev")
_LOG_SEPARATOR = "\x1f"
_RECORD_SEPARATOR = "\x1e"


def parse_gitlab_remote(remote_url: str | None) -> Optional[str]:
    """Return the ``namespace/project`` path encoded in a git remote URL."""
    if not remote_url:
        return None
    url = remote_url.strip()
    ssh = re.match(r"^(?:ssh://)?git@[^:/]+[:/](?:\d+/)?(.+?)(?:\.git)?/?$", url)
    https = re.match(r"^https?://[^/]+/(.+?)(?:\.git)?/?$", url)
    match = ssh or https
    if not match:
        return None
    path = match.group(1).strip("/")
    if "/" not in path:
        return None
    return path


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Locate the nearest git repository starting from ``start``."""

        path = Path(start or Path.cwd()).resolve()
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return cls(candidate)
        raise GitError(f"Unable to locate a git repository from {path}")

    # ------------------------------------------------------------------ git IO
    def _run_git(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        command = ["git", *args]
        process = subprocess.run(
            command,
            cwd=self.root,
            capture_output=True,
            text=False,
            check=False,
        )
        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
        if check and result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message}")
        return result

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return self._run_git(list(args), check=check)

    # -------------------------------------------------------------- branches
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        branch = result.stdout.strip()
        if not branch or branch == "HEAD":
            return None
        return branch

    def local_branches(self) -> List[str]:
        result = self._run_git(["for-each-ref", "--format=%(refname:short)", "refs/heads"])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def branch_exists(self, name: str) -> bool:
        result = self._run_git(["rev-parse", "--verify", "--quiet", f"refs/heads/{name}"], check=False)
        return result.returncode == 0

    def create_branch(self, name: str, *, checkout: bool = True) -> None:
        """Create ``name`` from ``HEAD`` and optionally switch to it."""

        if checkout:
            self._run_git(["checkout", "-b", name])
        else:
            self._run_git(["branch", name])

    def checkout(self, name: str) -> None:
        self._run_git(["checkout", name])

    def default_branch(self, remote: str = "origin") -> str:
        """Best-effort default branch: remote HEAD, then well-known local names."""

        result = self._run_git(["symbolic-ref", "--quiet", f"refs/remotes/{remote}/HEAD"], check=False)
        reference = result.stdout.strip()
        if result.returncode == 0 and reference:
            return reference.rsplit("/", 1)[-1]

        branches = self.local_branches()
        for candidate in _WELL_KNOWN_DEFAULTS:
            if candidate in branches:
                return candidate
        return "main"

    # ----------------------------------------------------------------- status
    def _status_entries(self) -> List[str]:
        result = self._run_git(["status", "--porcelain", "--untracked-files=all"])
        return [line for line in result.stdout.splitlines() if line.strip()]

    def working_tree_changes(self) -> List[Path]:
        """Return paths with staged, unstaged or untracked changes."""

        paths: List[Path] = []
        for entry in self._status_entries():
            path_text = entry[3:]
            if " -> " in path_text:
                path_text = path_text.split(" -> ", 1)[1]
            paths.append(Path(path_text.strip().strip('"')))
        return paths

    def has_changes(self) -> bool:
        return bool(self._status_entries())

    def has_staged_changes(self) -> bool:
        result = self._run_git(["diff", "--cached", "--quiet"], check=False)
        return result.returncode == 1

    # ---------------------------------------------------------------- staging
    def stage_all(self) -> None:
        self._run_git(["add", "--all"])

    def stage_files(self, paths: Sequence[str]) -> None:
        if paths:
            self._run_git(["add", "--", *paths])

    # ------------------------------------------------------------------ diffs
    def staged_diff(self) -> str:
        return self._run_git(["diff", "--cached"]).stdout

    def unstaged_diff(self) -> str:
        return self._run_git(["diff"]).stdout

    def all_diff(self) -> str:
        """Staged and unstaged changes plus a listing of untracked files."""

        parts = [self.staged_diff(), self.unstaged_diff()]
        untracked = self._run_git(["ls-files", "--others", "--exclude-standard"]).stdout.split()
        if untracked:
            parts.append("\n".join(f"New file: {path}" for path in untracked))
        return "\n".join(part for part in parts if part.strip())

    def diff_with_branch(self, target: str, *, remote: str = "origin") -> str:
        """Diff of ``HEAD`` against its merge base with ``target``."""

        for reference in (target, f"{remote}/{target}"):
            result = self._run_git(["diff", f"{reference}...HEAD"], check=False)
            if result.returncode == 0:
                return result.stdout
        return self._run_git(["show", "--format=", "HEAD"], check=False).stdout

    # ---------------------------------------------------------------- history
    def commit(self, message: str) -> str:
        """Commit staged changes and return the new ``HEAD`` sha."""

        self._run_git(["commit", "-m", message])
        return self._run_git(["rev-parse", "HEAD"]).stdout.strip()

    def commits_between(self, base: str, head: str = "HEAD", *, limit: int = 20) -> List[CommitInfo]:
        """Commits reachable from ``head`` but not ``base``; recent history if ``base`` is unknown."""

        fmt = _LOG_SEPARATOR.join(["%H", "%s", "%an", "%aI"]) + _RECORD_SEPARATOR
        result = self._run_git(
            ["log", f"--max-count={limit}", f"--format={fmt}", f"{base}..{head}"],
            check=False,
        )
        if result.returncode != 0:
            result = self._run_git(["log", "--max-count=10", f"--format={fmt}", head], check=False)
            if result.returncode != 0:
                return []

        commits: List[CommitInfo] = []
        for record in result.stdout.split(_RECORD_SEPARATOR):
            fields = record.strip().split(_LOG_SEPARATOR)
            if len(fields) == 4:
                commits.append(CommitInfo(*fields))
        return commits

    # ----------------------------------------------------------------- remote
    def remote_url(self, remote: str = "origin") -> str | None:
        result = self._run_git(["remote", "get-url", remote], check=False)
        url = result.stdout.strip()
        if result.returncode != 0 or not url:
            return None
        return url

    def push(self, remote: str = "origin", branch: str | None = None, *, set_upstream: bool = False) -> None:
        """Push ``branch`` (default: current branch) to ``remote``."""

        target = branch or self.current_branch()
        if not target:
            raise GitError("Cannot push from a detached HEAD.")
        args: List[str] = ["push"]
        if set_upstream:
            args.append("--set-upstream")
        args.extend([remote, target])
        self._run_git(args)

    def user_name(self) -> str:
        return self._run_git(["config", "user.name"], check=False).stdout.strip()
