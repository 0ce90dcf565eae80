"""Command line entry point for the GitLab AI workflow assistant."""

from __future__ import annotations

import logging
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import typer

from .artifacts import parse_ticket
from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigurationError,
    Settings,
    copy_config_template,
    load_settings,
    validate_settings,
    write_config,
)
from .context import write_sample_context
from .models import LLMClient, LLMClientError, create_llm_client
from .orchestrator import CancellationToken, Interaction, WorkflowOrchestrator, WorkflowRun
from .review import render_review_text
from .stages import Stage
from .targeting import TargetBranchDecision
from .tools.gitlab import GitLabAPIError, GitLabClient, MergeRequestInfo
from .tools.run_logs import latest_run_log
from .tools.vcs import GitError, GitRepository

APP_HELP = "GitLab AI workflow assistant: branches, commits, merge requests and reviews."
EXIT_FAILED = 1
EXIT_CANCELLED = 130

app = typer.Typer(help=APP_HELP)

CONFIG_OPTION = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the assistant configuration file.")
TICKET_OPTION = typer.Option(None, "--ticket", "-t", help="Ticket reference such as ABC-123.")
YES_OPTION = typer.Option(False, "--yes", "-y", help="Accept every confirmation without prompting.")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging before any command runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


class TyperInteraction(Interaction):
    """Confirmation gates answered on the terminal."""

    def __init__(self, *, assume_yes: bool = False) -> None:
        self._assume_yes = assume_yes

    def ask_ticket(self, default: str) -> Optional[str]:
        if self._assume_yes:
            return None
        answer = typer.prompt("Ticket number (e.g. ABC-123)", default=default)
        return parse_ticket(answer)

    def confirm_new_branch(self, current_branch: str) -> bool:
        if self._assume_yes:
            return True
        return typer.confirm(f"You are on '{current_branch}'. Create a new branch anyway?", default=False)

    def confirm_commit(self, message: str) -> bool:
        typer.echo(f"Commit message:\n{message}\n")
        if self._assume_yes:
            return True
        return typer.confirm("Commit with this message?", default=True)

    def choose_target_branch(self, decision: TargetBranchDecision, available: Sequence[str]) -> Optional[str]:
        typer.echo(f"Suggested target branch: {decision.target_branch} ({decision.confidence} confidence)")
        if decision.reasoning:
            typer.echo(f"Reason: {decision.reasoning}")
        if self._assume_yes:
            return decision.target_branch
        answer = typer.prompt("Target branch", default=decision.target_branch).strip()
        if answer not in available and answer != decision.target_branch:
            typer.echo(f"Unknown branch '{answer}'.")
            return None
        return answer

    def choose_merge_request(self, merge_requests: Sequence[MergeRequestInfo]) -> Optional[MergeRequestInfo]:
        for mr in merge_requests:
            typer.echo(f"!{mr.iid}: {mr.title} ({mr.source_branch} -> {mr.target_branch})")
        if self._assume_yes:
            return merge_requests[0] if merge_requests else None
        iid = typer.prompt("Merge request IID", type=int, default=merge_requests[0].iid)
        return next((mr for mr in merge_requests if mr.iid == iid), None)

    def edit_title(self, title: str) -> str:
        if self._assume_yes:
            return title
        return typer.prompt("Merge request title", default=title)

    def edit_description(self, description: str) -> str:
        typer.echo(f"Merge request description:\n{description}\n")
        if self._assume_yes or typer.confirm("Use this description?", default=True):
            return description
        return typer.prompt("Description", default="")

    def notify(self, message: str) -> None:
        typer.echo(message)


# ------------------------------------------------------------------ helpers
def _load(config: str) -> Settings:
    try:
        return load_settings(Path(config))
    except ConfigurationError as error:
        typer.echo("Invalid configuration:")
        for problem in error.errors:
            typer.echo(f"  - {problem}")
        raise typer.Exit(code=EXIT_FAILED) from error


def _require_valid(settings: Settings, *, llm_only: bool = False) -> None:
    problems = validate_settings(settings)
    if llm_only:
        problems = [problem for problem in problems if problem.startswith("llm.")]
    if problems:
        typer.echo("Configuration is incomplete:")
        for problem in problems:
            typer.echo(f"  - {problem}")
        raise typer.Exit(code=EXIT_FAILED)


def _open_repo() -> GitRepository:
    try:
        return GitRepository.discover()
    except GitError as error:
        typer.echo(str(error))
        raise typer.Exit(code=EXIT_FAILED) from error


def _checked_ticket(ticket: Optional[str]) -> Optional[str]:
    if ticket is None:
        return None
    parsed = parse_ticket(ticket)
    if parsed is None:
        raise typer.BadParameter("Ticket must look like ABC-123.", param_hint="--ticket")
    return parsed


def build_llm_client(settings: Settings) -> LLMClient:
    llm = settings.llm
    return create_llm_client(
        llm.provider,
        model=llm.model,
        api_key=llm.api_key or None,
        api_url=llm.api_url or None,
        timeout=llm.timeout,
        max_tokens=llm.max_tokens,
        temperature=llm.temperature,
    )


def build_gitlab_client(settings: Settings) -> GitLabClient:
    return GitLabClient(settings.gitlab.url, settings.gitlab.token, timeout=settings.gitlab.timeout)


def _orchestrator(
    settings: Settings,
    repo: GitRepository,
    *,
    assume_yes: bool,
    token: CancellationToken,
    with_gitlab: bool = True,
) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(
        repo,
        build_gitlab_client(settings) if with_gitlab else None,
        build_llm_client(settings),
        settings,
        interaction=TyperInteraction(assume_yes=assume_yes),
        cancel_token=token,
        logs_root=settings.logs_root(repo.root),
    )


@contextmanager
def _cancel_on_interrupt(token: CancellationToken) -> Iterator[None]:
    """Turn Ctrl-C into a cooperative cancellation for the duration of a run."""

    def handler(signum: int, frame: object) -> None:
        typer.echo("\nCancelling after the current step...")
        token.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _finish(run: WorkflowRun) -> None:
    for warning in run.warnings:
        typer.echo(f"Warning: {warning}")
    if run.stage == Stage.FAILED and run.failure:
        stage, reason = run.failure
        typer.echo(f"Failed at {stage.value}: {reason}")
        raise typer.Exit(code=EXIT_FAILED)
    if run.stage == Stage.CANCELLED:
        typer.echo("Cancelled.")
        raise typer.Exit(code=EXIT_CANCELLED)


def _print_review(run: WorkflowRun) -> None:
    if run.review is not None:
        typer.echo(render_review_text(run.review))


# ------------------------------------------------------------------ commands
@app.command("create-branch")
def create_branch(
    config: str = CONFIG_OPTION,
    ticket: Optional[str] = TICKET_OPTION,
    yes: bool = YES_OPTION,
) -> None:
    """Create a branch named after the current changes."""
    settings = _load(config)
    _require_valid(settings, llm_only=True)
    repo = _open_repo()
    token = CancellationToken()
    with _cancel_on_interrupt(token):
        run = _orchestrator(settings, repo, assume_yes=yes, token=token, with_gitlab=False).create_branch(
            ticket=_checked_ticket(ticket)
        )
    _finish(run)
    typer.echo(f"Branch: {run.branch}")


@app.command()
def commit(
    config: str = CONFIG_OPTION,
    ticket: Optional[str] = TICKET_OPTION,
    staged: bool = typer.Option(False, "--staged", help="Commit only what is already staged."),
    yes: bool = YES_OPTION,
) -> None:
    """Generate a commit message for the current changes and commit them."""
    settings = _load(config)
    _require_valid(settings, llm_only=True)
    repo = _open_repo()
    token = CancellationToken()
    with _cancel_on_interrupt(token):
        run = _orchestrator(settings, repo, assume_yes=yes, token=token, with_gitlab=False).commit_changes(
            ticket=_checked_ticket(ticket), stage_mode="staged" if staged else "all"
        )
    _finish(run)


@app.command("push-mr")
def push_mr(config: str = CONFIG_OPTION, yes: bool = YES_OPTION) -> None:
    """Push the current branch and open (or reuse) its merge request."""
    settings = _load(config)
    _require_valid(settings)
    repo = _open_repo()
    token = CancellationToken()
    with _cancel_on_interrupt(token):
        run = _orchestrator(settings, repo, assume_yes=yes, token=token).push_and_create_mr()
    _finish(run)


@app.command()
def review(config: str = CONFIG_OPTION) -> None:
    """Review the local working tree changes."""
    settings = _load(config)
    _require_valid(settings, llm_only=True)
    repo = _open_repo()
    token = CancellationToken()
    with _cancel_on_interrupt(token):
        run = _orchestrator(settings, repo, assume_yes=True, token=token, with_gitlab=False).review_local()
    _print_review(run)
    _finish(run)


@app.command("review-mr")
def review_mr(
    iid: Optional[int] = typer.Argument(None, help="Merge request IID; defaults to the current branch's MR."),
    config: str = CONFIG_OPTION,
    post: bool = typer.Option(False, "--post", help="Post the review as merge request comments."),
    yes: bool = YES_OPTION,
) -> None:
    """Review a merge request and optionally post the results."""
    settings = _load(config)
    _require_valid(settings)
    repo = _open_repo()
    token = CancellationToken()
    with _cancel_on_interrupt(token):
        run = _orchestrator(settings, repo, assume_yes=yes, token=token).review_mr(iid, post=post)
    _print_review(run)
    _finish(run)


@app.command()
def run(
    config: str = CONFIG_OPTION,
    ticket: Optional[str] = TICKET_OPTION,
    yes: bool = YES_OPTION,
) -> None:
    """Run the whole workflow: branch, commit, push, merge request, review."""
    settings = _load(config)
    _require_valid(settings)
    repo = _open_repo()
    token = CancellationToken()
    with _cancel_on_interrupt(token):
        result = _orchestrator(settings, repo, assume_yes=yes, token=token).run_full(ticket=_checked_ticket(ticket))
    _print_review(result)
    _finish(result)
    if result.merge_request is not None:
        typer.echo(f"Merge request: {result.merge_request.web_url}")


@app.command()
def configure(
    config: str = CONFIG_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
    context: bool = typer.Option(False, "--context", help="Also write a sample business context file."),
) -> None:
    """Write a configuration template (and optionally a business context sample)."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"{config_path} already exists; use --force to overwrite it.")
    else:
        write_config(config_path, copy_config_template())
        typer.echo(f"Wrote configuration template to {config_path}")
    if context:
        settings = _load(config)
        context_path = config_path.parent / settings.review.business_context_file
        if write_sample_context(context_path):
            typer.echo(f"Wrote sample business context to {context_path}")
        else:
            typer.echo(f"{context_path} already exists; leaving it untouched.")


@app.command()
def check(config: str = CONFIG_OPTION) -> None:
    """Validate the configuration and probe GitLab and the model."""
    settings = _load(config)
    _require_valid(settings)
    failures: List[str] = []
    try:
        user = build_gitlab_client(settings).current_user()
        typer.echo(f"GitLab: authenticated as {user.username}")
    except GitLabAPIError as error:
        failures.append(f"GitLab: {error}")
    try:
        build_llm_client(settings).ask("Reply with OK.", max_tokens=5, temperature=0.0)
        typer.echo(f"LLM: {settings.llm.provider}/{settings.llm.model} reachable")
    except LLMClientError as error:
        failures.append(f"LLM: {error}")
    for failure in failures:
        typer.echo(failure)
    if failures:
        raise typer.Exit(code=EXIT_FAILED)


@app.command()
def status(config: str = CONFIG_OPTION) -> None:
    """Show the most recent workflow run."""
    settings = _load(config)
    try:
        base = GitRepository.discover().root
    except GitError:
        base = Path.cwd()
    entry = latest_run_log(settings.logs_root(base))
    if entry is None:
        typer.echo("No workflow runs recorded.")
        return
    typer.echo(f"Last run: {entry.command} [{entry.stage}] ({entry.path.name})")
    branch = entry.payload.get("branch")
    if branch:
        typer.echo(f"Branch: {branch}")
    if entry.merge_request_url:
        typer.echo(f"Merge request: {entry.merge_request_url}")
    if entry.failure:
        typer.echo(f"Failure at {entry.failure.get('stage')}: {entry.failure.get('reason')}")
    for warning in entry.warnings:
        typer.echo(f"Warning: {warning}")


if __name__ == "__main__":
    app()
