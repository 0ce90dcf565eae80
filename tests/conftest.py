from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Sequence, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from glai.models.llm_client import LLMClient, LLMMessage, LLMResponse  # noqa: E402

GITLAB_REMOTE = "git@gitlab.example.com:group/project.git"

Reply = Union[str, Exception, Callable[[str, str], str]]


class ScriptedLLM(LLMClient):
    """LLM double that replays canned replies and records every prompt."""

    def __init__(self, replies: Sequence[Reply] = ()) -> None:
        super().__init__(model="scripted")
        self.replies: List[Reply] = list(replies)
        self.calls: List[tuple[str, str]] = []

    def _complete(self, messages: List[LLMMessage], *, max_tokens: int, temperature: float) -> LLMResponse:
        system = next((message.content for message in messages if message.role == "system"), "")
        prompt = messages[-1].content
        self.calls.append((system, prompt))
        if not self.replies:
            raise AssertionError(f"Unexpected LLM call: {prompt[:80]}")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return LLMResponse(reply(system, prompt))
        return LLMResponse(reply)


@dataclass(slots=True)
class GitFixture:
    root: Path
    remote: Path

    def run(self, *args: str) -> str:
        result = subprocess.run(["git", *args], cwd=self.root, check=True, capture_output=True, text=True)
        return result.stdout

    def write(self, relative: str, content: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path


@pytest.fixture()
def git_repo(tmp_path: Path) -> GitFixture:
    """Git repository on ``main`` with one commit and a pushable ``origin``."""

    remote = tmp_path / "remote.git"
    subprocess.run(["git", "init", "--bare", str(remote)], check=True, capture_output=True)

    root = tmp_path / "work"
    root.mkdir()
    repo = GitFixture(root=root, remote=remote)
    repo.run("init")
    repo.run("symbolic-ref", "HEAD", "refs/heads/main")
    repo.run("config", "user.email", "dev@example.com")
    repo.run("config", "user.name", "Dev Eloper")
    repo.write("app.py", "def greet():\n    return 'hi'\n")
    repo.run("add", ".")
    repo.run("commit", "-m", "chore: initial commit")
    repo.run("remote", "add", "origin", GITLAB_REMOTE)
    repo.run("remote", "set-url", "--push", "origin", str(remote))
    return repo
