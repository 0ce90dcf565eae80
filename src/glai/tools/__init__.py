"""Integrations with git, GitLab and the run log directory."""

from .gitlab import (
    DiffRefs,
    DiscussionPosition,
    FileChange,
    GitLabAPIError,
    GitLabApiCallContext,
    GitLabClient,
    MergeRequestInfo,
    ProjectInfo,
)
from .run_logs import RunLogEntry, latest_run_log, load_run_log, write_run_record
from .vcs import CommitInfo, GitError, GitRepository, parse_gitlab_remote

__all__ = [
    "CommitInfo",
    "DiffRefs",
    "DiscussionPosition",
    "FileChange",
    "GitError",
    "GitLabAPIError",
    "GitLabApiCallContext",
    "GitLabClient",
    "GitRepository",
    "MergeRequestInfo",
    "ProjectInfo",
    "RunLogEntry",
    "latest_run_log",
    "load_run_log",
    "parse_gitlab_remote",
    "write_run_record",
]
