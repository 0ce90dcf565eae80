from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from glai.tools.vcs import GitError, GitRepository, parse_gitlab_remote

from conftest import GITLAB_REMOTE, GitFixture


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("git@gitlab.com:group/project.git", "group/project"),
        ("git@gitlab.com:group/sub/project", "group/sub/project"),
        ("ssh://git@gitlab.example.com:2222/group/project.git", "group/project"),
        ("https://gitlab.example.com/group/project.git", "group/project"),
        ("https://gitlab.example.com/group/project/", "group/project"),
        ("https://gitlab.example.com/project", None),
        ("/srv/repos/project.git", None),
        (None, None),
    ],
)
def test_parse_gitlab_remote(url: str | None, expected: str | None) -> None:
    assert parse_gitlab_remote(url) == expected


def test_discover_walks_up_and_rejects_plain_directories(git_repo: GitFixture, tmp_path: Path) -> None:
    nested = git_repo.root / "pkg" / "deep"
    nested.mkdir(parents=True)

    assert GitRepository.discover(nested).root == git_repo.root.resolve()
    with pytest.raises(GitError):
        GitRepository(tmp_path)


def test_branch_operations(git_repo: GitFixture) -> None:
    repo = GitRepository(git_repo.root)

    assert repo.current_branch() == "main"
    assert repo.default_branch() == "main"
    assert repo.user_name() == "Dev Eloper"

    repo.create_branch("feature/ABC-1-login")
    assert repo.current_branch() == "feature/ABC-1-login"
    assert repo.branch_exists("feature/ABC-1-login")
    assert not repo.branch_exists("feature/missing")

    repo.create_branch("scratch", checkout=False)
    repo.checkout("main")
    assert sorted(repo.local_branches()) == ["feature/ABC-1-login", "main", "scratch"]


def test_status_and_diffs_include_untracked_files(git_repo: GitFixture) -> None:
    repo = GitRepository(git_repo.root)
    assert not repo.has_changes()

    git_repo.write("app.py", "def greet():\n    return 'hello'\n")
    git_repo.write("notes/todo.txt", "later\n")

    assert repo.has_changes()
    assert not repo.has_staged_changes()
    assert sorted(str(path) for path in repo.working_tree_changes()) == ["app.py", "notes/todo.txt"]
    diff = repo.all_diff()
    assert "+    return 'hello'" in diff
    assert "New file: notes/todo.txt" in diff

    repo.stage_files(["app.py"])
    assert repo.has_staged_changes()
    assert "return 'hello'" in repo.staged_diff()
    assert repo.unstaged_diff() == ""


def test_commit_history_and_branch_diff(git_repo: GitFixture) -> None:
    repo = GitRepository(git_repo.root)
    repo.create_branch("feature/x")
    git_repo.write("feature.py", "VALUE = 1\n")
    repo.stage_all()

    sha = repo.commit("feat: add feature module")

    commits = repo.commits_between("main")
    assert [(commit.sha, commit.message, commit.author) for commit in commits] == [
        (sha, "feat: add feature module", "Dev Eloper")
    ]
    assert "+VALUE = 1" in repo.diff_with_branch("main")
    assert [commit.message for commit in repo.commits_between("origin/unknown")] == [
        "feat: add feature module",
        "chore: initial commit",
    ]


def test_commit_without_staged_changes_raises(git_repo: GitFixture) -> None:
    with pytest.raises(GitError):
        GitRepository(git_repo.root).commit("fix: nothing")


def test_push_sets_upstream_on_remote(git_repo: GitFixture) -> None:
    repo = GitRepository(git_repo.root)
    repo.create_branch("feature/push-me")

    repo.push("origin", set_upstream=True)

    heads = subprocess.run(
        ["git", "for-each-ref", "--format=%(refname:short)", "refs/heads"],
        cwd=git_repo.remote,
        check=True,
        capture_output=True,
        text=True,
    ).stdout.split()
    assert "feature/push-me" in heads
    assert repo.remote_url() == GITLAB_REMOTE
    assert repo.remote_url("upstream") is None
    with pytest.raises(GitError):
        repo.push("missing-remote")
