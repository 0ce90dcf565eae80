"""GitLab API client with a pre-call hook system."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import gitlab
import requests
from gitlab.exceptions import GitlabError, GitlabGetError

__all__ = [
    "BranchInfo",
    "CODEOWNERS_PATHS",
    "DiffRefs",
    "DiscussionPosition",
    "FileChange",
    "GitLabAPIError",
    "GitLabApiCallContext",
    "GitLabClient",
    "MergeRequestInfo",
    "ProjectInfo",
    "UserInfo",
]

LOGGER = logging.getLogger(__name__)

CODEOWNERS_PATHS = ("CODEOWNERS", ".gitlab/CODEOWNERS", "docs/CODEOWNERS")

ProjectRef = int | str


class GitLabAPIError(RuntimeError):
    """Raised when a GitLab API call fails; carries the HTTP status when known."""

    def __init__(self, message: str, *, status: Optional[int] = None, method: str = "") -> None:
        self.status = status
        self.method = method
        prefix = f"GitLab {method} failed" if method else "GitLab request failed"
        detail = f"{prefix} (HTTP {status}): {message}" if status else f"{prefix}: {message}"
        super().__init__(detail)


@dataclass
class GitLabApiCallContext:
    """Metadata handed to hooks before each API call."""

    method: str  # e.g. "create_merge_request"
    gitlab_url: str
    project: Optional[ProjectRef]


@dataclass(slots=True)
class UserInfo:
    id: int
    username: str
    name: str


@dataclass(slots=True)
class ProjectInfo:
    id: int
    path_with_namespace: str
    default_branch: str
    web_url: str


@dataclass(slots=True)
class BranchInfo:
    name: str
    protected: bool = False
    default: bool = False


@dataclass(slots=True)
class DiffRefs:
    base_sha: str
    start_sha: str
    head_sha: str


@dataclass(slots=True)
class MergeRequestInfo:
    """The subset of merge request fields the workflow relies on."""

    iid: int
    title: str
    source_branch: str
    target_branch: str
    web_url: str
    state: str = "opened"
    description: str = ""
    diff_refs: Optional[DiffRefs] = None


@dataclass(slots=True)
class FileChange:
    old_path: str
    new_path: str
    diff: str
    new_file: bool = False
    deleted_file: bool = False
    renamed_file: bool = False


@dataclass(slots=True)
class DiscussionPosition:
    """Anchor of an inline discussion on a merge request diff."""

    base_sha: str
    start_sha: str
    head_sha: str
    old_path: str
    new_path: str
    old_line: Optional[int] = None
    new_line: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "position_type": "text",
            "base_sha": self.base_sha,
            "start_sha": self.start_sha,
            "head_sha": self.head_sha,
            "old_path": self.old_path,
            "new_path": self.new_path,
        }
        if self.old_line is not None:
            payload["old_line"] = self.old_line
        if self.new_line is not None:
            payload["new_line"] = self.new_line
        return payload


def _diff_refs(value: Any) -> Optional[DiffRefs]:
    if not isinstance(value, dict):
        return None
    try:
        return DiffRefs(
            base_sha=str(value["base_sha"]),
            start_sha=str(value["start_sha"]),
            head_sha=str(value["head_sha"]),
        )
    except KeyError:
        return None


def _merge_request_info(mr: Any) -> MergeRequestInfo:
    return MergeRequestInfo(
        iid=int(mr.iid),
        title=str(mr.title),
        source_branch=str(mr.source_branch),
        target_branch=str(mr.target_branch),
        web_url=str(mr.web_url),
        state=str(getattr(mr, "state", "opened")),
        description=str(getattr(mr, "description", "") or ""),
        diff_refs=_diff_refs(getattr(mr, "diff_refs", None)),
    )


class GitLabClient:
    """GitLab REST client used by the workflow.

    Args:
        url: GitLab instance URL (e.g. https://gitlab.com)
        token: personal access token
        timeout: request timeout in seconds
        before_api_call_hooks: callables invoked with a ``GitLabApiCallContext``
            before every API call
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout: int = 30,
        before_api_call_hooks: list[Callable[[GitLabApiCallContext], None]] | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._timeout = timeout
        self._before_api_call_hooks = [_log_api_call, *(before_api_call_hooks or [])]
        self._gitlab = gitlab.Gitlab(url=self.url, private_token=token, timeout=timeout)

    # ------------------------------------------------------------------ plumbing
    @contextmanager
    def _api_call(self, method: str, project: Optional[ProjectRef] = None) -> Iterator[None]:
        context = GitLabApiCallContext(method=method, gitlab_url=self.url, project=project)
        for hook in self._before_api_call_hooks:
            hook(context)
        try:
            yield
        except GitlabError as error:
            raise GitLabAPIError(
                str(error.error_message or error),
                status=error.response_code,
                method=method,
            ) from error
        except requests.exceptions.RequestException as error:
            raise GitLabAPIError(str(error), method=method) from error

    def _project(self, project: ProjectRef) -> Any:
        return self._gitlab.projects.get(project, lazy=True)

    def _merge_request(self, project: ProjectRef, iid: int) -> Any:
        return self._project(project).mergerequests.get(iid)

    # ------------------------------------------------------------------ identity
    def current_user(self) -> UserInfo:
        with self._api_call("current_user"):
            self._gitlab.auth()
            user = self._gitlab.user
        return UserInfo(id=int(user.id), username=str(user.username), name=str(user.name))

    def get_project(self, path: ProjectRef) -> ProjectInfo:
        with self._api_call("get_project", path):
            project = self._gitlab.projects.get(path)
        return ProjectInfo(
            id=int(project.id),
            path_with_namespace=str(project.path_with_namespace),
            default_branch=str(getattr(project, "default_branch", None) or "main"),
            web_url=str(project.web_url),
        )

    def list_members(self, project: ProjectRef) -> List[UserInfo]:
        with self._api_call("list_members", project):
            members = self._project(project).members_all.list(get_all=True)
        return [UserInfo(id=int(m.id), username=str(m.username), name=str(m.name)) for m in members]

    # ------------------------------------------------------------------ branches
    def list_branches(self, project: ProjectRef) -> List[BranchInfo]:
        with self._api_call("list_branches", project):
            branches = self._project(project).branches.list(get_all=True)
        return [
            BranchInfo(
                name=str(branch.name),
                protected=bool(getattr(branch, "protected", False)),
                default=bool(getattr(branch, "default", False)),
            )
            for branch in branches
        ]

    def get_branch(self, project: ProjectRef, name: str) -> BranchInfo:
        with self._api_call("get_branch", project):
            branch = self._project(project).branches.get(name)
        return BranchInfo(name=str(branch.name), protected=bool(getattr(branch, "protected", False)))

    def create_branch(self, project: ProjectRef, name: str, ref: str) -> BranchInfo:
        with self._api_call("create_branch", project):
            branch = self._project(project).branches.create({"branch": name, "ref": ref})
        return BranchInfo(name=str(branch.name))

    def compare(self, project: ProjectRef, from_ref: str, to_ref: str) -> Dict[str, Any]:
        """Return the raw ``{commits, diffs}`` comparison between two refs."""
        with self._api_call("compare", project):
            result = self._project(project).repository_compare(from_ref, to_ref)
        return {"commits": list(result.get("commits") or []), "diffs": list(result.get("diffs") or [])}

    def commits_between(self, project: ProjectRef, from_ref: str, to_ref: str) -> List[str]:
        """Commit titles reachable from ``to_ref`` but not ``from_ref``."""
        commits = self.compare(project, from_ref, to_ref)["commits"]
        return [str(commit.get("title") or commit.get("message") or "") for commit in commits]

    # ------------------------------------------------------------- merge requests
    def list_merge_requests(
        self,
        project: ProjectRef,
        *,
        state: str = "opened",
        source_branch: Optional[str] = None,
        target_branch: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[MergeRequestInfo]:
        filters: Dict[str, Any] = {"state": state}
        if source_branch:
            filters["source_branch"] = source_branch
        if target_branch:
            filters["target_branch"] = target_branch
        if limit:
            filters.update({"per_page": limit, "order_by": "updated_at", "get_all": False})
        else:
            filters["get_all"] = True
        with self._api_call("list_merge_requests", project):
            items = self._project(project).mergerequests.list(**filters)
        return [_merge_request_info(item) for item in items]

    def recent_merge_request_targets(self, project: ProjectRef, *, limit: int = 10) -> List[str]:
        """Target branches of recently merged MRs, most recent first."""
        merged = self.list_merge_requests(project, state="merged", limit=limit)
        return [mr.target_branch for mr in merged]

    def get_merge_request(self, project: ProjectRef, iid: int) -> MergeRequestInfo:
        with self._api_call("get_merge_request", project):
            mr = self._merge_request(project, iid)
        return _merge_request_info(mr)

    def create_merge_request(
        self,
        project: ProjectRef,
        *,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str = "",
        draft: bool = False,
        remove_source_branch: bool = True,
    ) -> MergeRequestInfo:
        if draft and not title.lower().startswith("draft:"):
            title = f"Draft: {title}"
        data = {
            "source_branch": source_branch,
            "target_branch": target_branch,
            "title": title,
            "description": description,
            "remove_source_branch": remove_source_branch,
        }
        with self._api_call("create_merge_request", project):
            mr = self._project(project).mergerequests.create(data)
        return _merge_request_info(mr)

    def update_merge_request(self, project: ProjectRef, iid: int, **fields: Any) -> MergeRequestInfo:
        with self._api_call("update_merge_request", project):
            mr = self._merge_request(project, iid)
            for key, value in fields.items():
                setattr(mr, key, value)
            mr.save()
        return _merge_request_info(mr)

    def merge_request_changes(self, project: ProjectRef, iid: int) -> List[FileChange]:
        with self._api_call("merge_request_changes", project):
            payload = self._merge_request(project, iid).changes()
        changes = payload.get("changes") if isinstance(payload, dict) else None
        return [
            FileChange(
                old_path=str(change.get("old_path") or ""),
                new_path=str(change.get("new_path") or ""),
                diff=str(change.get("diff") or ""),
                new_file=bool(change.get("new_file")),
                deleted_file=bool(change.get("deleted_file")),
                renamed_file=bool(change.get("renamed_file")),
            )
            for change in changes or []
        ]

    def create_note(self, project: ProjectRef, iid: int, body: str) -> None:
        with self._api_call("create_note", project):
            self._merge_request(project, iid).notes.create({"body": body})

    def create_discussion(self, project: ProjectRef, iid: int, body: str, position: DiscussionPosition) -> None:
        with self._api_call("create_discussion", project):
            self._merge_request(project, iid).discussions.create({"body": body, "position": position.to_payload()})

    def list_discussions(self, project: ProjectRef, iid: int) -> List[Dict[str, Any]]:
        with self._api_call("list_discussions", project):
            discussions = self._merge_request(project, iid).discussions.list(get_all=True)
        return [dict(getattr(item, "attributes", {}) or {}) for item in discussions]

    # ----------------------------------------------------------------- files
    def get_file_content(self, project: ProjectRef, path: str, ref: str = "main") -> Optional[str]:
        """Raw file content at ``ref``; ``None`` when the file does not exist."""
        try:
            with self._api_call("get_file_content", project):
                file = self._project(project).files.get(file_path=path.lstrip("/"), ref=ref)
        except GitLabAPIError as error:
            if isinstance(error.__cause__, GitlabGetError):
                return None
            raise
        return file.decode().decode("utf-8")

    def get_codeowners(self, project: ProjectRef, ref: str = "main") -> Optional[str]:
        for path in CODEOWNERS_PATHS:
            content = self.get_file_content(project, path, ref)
            if content is not None:
                return content
        return None

    def get_ci_config(self, project: ProjectRef, ref: str = "main") -> Optional[str]:
        return self.get_file_content(project, ".gitlab-ci.yml", ref)


def _log_api_call(context: GitLabApiCallContext) -> None:
    LOGGER.debug("GitLab API call %s project=%s", context.method, context.project)
