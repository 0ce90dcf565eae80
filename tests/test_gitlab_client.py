from __future__ import annotations

from types import SimpleNamespace
from typing import Any, List
from unittest import mock

import pytest
import requests
from gitlab.exceptions import GitlabCreateError, GitlabGetError

from glai.config import Settings
from glai.orchestrator import WorkflowOrchestrator
from glai.stages import Stage
from glai.tools.gitlab import (
    DiscussionPosition,
    GitLabAPIError,
    GitLabApiCallContext,
    GitLabClient,
)
from glai.tools.vcs import GitRepository

from conftest import GitFixture, ScriptedLLM


def _mr(**overrides: Any) -> SimpleNamespace:
    data = {
        "iid": 7,
        "title": "Draft: feat(ABC-1): login",
        "source_branch": "feature/ABC-1-login",
        "target_branch": "develop",
        "web_url": "https://gitlab.example.com/group/project/-/merge_requests/7",
        "state": "opened",
        "description": None,
        "diff_refs": {"base_sha": "b", "start_sha": "s", "head_sha": "h"},
    }
    data.update(overrides)
    return SimpleNamespace(**data)


@pytest.fixture()
def api() -> mock.MagicMock:
    with mock.patch("glai.tools.gitlab.gitlab.Gitlab") as factory:
        yield factory.return_value


def test_hooks_run_before_each_call(api: mock.MagicMock) -> None:
    seen: List[GitLabApiCallContext] = []
    client = GitLabClient("https://gitlab.example.com/", "token", before_api_call_hooks=[seen.append])
    api.projects.get.return_value.mergerequests.create.return_value = _mr()

    client.create_merge_request(
        "group/project",
        source_branch="feature/ABC-1-login",
        target_branch="develop",
        title="feat(ABC-1): login",
        draft=True,
    )

    assert [(ctx.method, ctx.project, ctx.gitlab_url) for ctx in seen] == [
        ("create_merge_request", "group/project", "https://gitlab.example.com")
    ]
    sent = api.projects.get.return_value.mergerequests.create.call_args.args[0]
    assert sent["title"] == "Draft: feat(ABC-1): login"
    assert sent["remove_source_branch"] is True


def test_draft_prefix_is_not_duplicated(api: mock.MagicMock) -> None:
    client = GitLabClient("https://gitlab.example.com", "token")
    create = api.projects.get.return_value.mergerequests.create
    create.return_value = _mr()

    info = client.create_merge_request(
        1, source_branch="a", target_branch="b", title="Draft: already", draft=True
    )

    assert create.call_args.args[0]["title"] == "Draft: already"
    assert info.iid == 7
    assert info.description == ""
    assert info.diff_refs is not None and info.diff_refs.head_sha == "h"


def test_gitlab_errors_are_wrapped_with_status(api: mock.MagicMock) -> None:
    client = GitLabClient("https://gitlab.example.com", "token")
    api.projects.get.return_value.mergerequests.create.side_effect = GitlabCreateError(
        error_message="Another open merge request already exists", response_code=409
    )

    with pytest.raises(GitLabAPIError) as excinfo:
        client.create_merge_request(1, source_branch="a", target_branch="b", title="t")

    assert excinfo.value.status == 409
    assert excinfo.value.method == "create_merge_request"
    assert "HTTP 409" in str(excinfo.value)


def test_missing_files_return_none_and_codeowners_falls_back(api: mock.MagicMock) -> None:
    client = GitLabClient("https://gitlab.example.com", "token")
    found = mock.Mock()
    found.decode.return_value = b"* @team-lead\n"

    def lookup(file_path: str, ref: str) -> Any:
        if file_path == ".gitlab/CODEOWNERS":
            return found
        raise GitlabGetError(error_message="404 File Not Found", response_code=404)

    api.projects.get.return_value.files.get.side_effect = lookup

    assert client.get_ci_config(1) is None
    assert client.get_codeowners(1, ref="develop") == "* @team-lead\n"


def test_changes_and_discussions(api: mock.MagicMock) -> None:
    client = GitLabClient("https://gitlab.example.com", "token")
    merge_request = api.projects.get.return_value.mergerequests.get.return_value
    merge_request.changes.return_value = {
        "changes": [{"old_path": "a.py", "new_path": "b.py", "diff": "@@", "renamed_file": True}]
    }

    changes = client.merge_request_changes(1, 7)
    client.create_discussion(1, 7, "body", DiscussionPosition("b", "s", "h", "a.py", "b.py", new_line=3))

    assert changes[0].renamed_file and changes[0].new_path == "b.py"
    payload = merge_request.discussions.create.call_args.args[0]
    assert payload["position"] == {
        "position_type": "text",
        "base_sha": "b",
        "start_sha": "s",
        "head_sha": "h",
        "old_path": "a.py",
        "new_path": "b.py",
        "new_line": 3,
    }


def test_recent_targets_and_branches(api: mock.MagicMock) -> None:
    client = GitLabClient("https://gitlab.example.com", "token")
    project = api.projects.get.return_value
    project.mergerequests.list.return_value = [_mr(target_branch="develop"), _mr(target_branch="main")]
    project.branches.list.return_value = [SimpleNamespace(name="main", protected=True, default=True)]

    assert client.recent_merge_request_targets("group/project", limit=5) == ["develop", "main"]
    assert project.mergerequests.list.call_args.kwargs == {
        "state": "merged",
        "per_page": 5,
        "order_by": "updated_at",
        "get_all": False,
    }
    branch = client.list_branches("group/project")[0]
    assert (branch.name, branch.protected, branch.default) == ("main", True, True)


def test_current_user(api: mock.MagicMock) -> None:
    client = GitLabClient("https://gitlab.example.com", "token")
    api.user = SimpleNamespace(id=3, username="dev", name="Dev Eloper")

    user = client.current_user()

    api.auth.assert_called_once_with()
    assert user.username == "dev"


def test_transport_errors_are_wrapped(api: mock.MagicMock) -> None:
    client = GitLabClient("https://gitlab.example.com", "token", timeout=5)
    api.projects.get.side_effect = requests.exceptions.ReadTimeout("read timed out (5s)")

    with pytest.raises(GitLabAPIError) as excinfo:
        client.get_project("group/project")

    assert excinfo.value.status is None
    assert excinfo.value.method == "get_project"
    assert "read timed out" in str(excinfo.value)


def test_unreachable_gitlab_fails_the_run_at_its_stage(api: mock.MagicMock, git_repo: GitFixture) -> None:
    api.projects.get.side_effect = requests.exceptions.ConnectionError("Max retries exceeded")
    orchestrator = WorkflowOrchestrator(
        GitRepository(git_repo.root),
        GitLabClient("http://127.0.0.1:1", "token"),
        ScriptedLLM(),
        Settings(),
    )

    run = orchestrator.review_mr(1)

    assert run.stage == Stage.FAILED
    assert run.failure is not None
    assert run.failure[0] == Stage.PROJECT_RESOLVED
    assert "Max retries exceeded" in run.failure[1]
