"""Workflow orchestration: branch, commit, push, merge request, review.

Each public ``WorkflowOrchestrator`` method owns exactly one ``WorkflowRun``.
Stages only move forward; a failing step ends the run in ``Stage.FAILED``
with the stage that was being attempted, and nothing already done (commits,
pushes, created merge requests) is rolled back.  Cancellation is cooperative
and observed at stage boundaries only.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .artifacts import (
    DEFAULT_COMMIT_PATTERN,
    GITMOJI_COMMIT_PATTERN,
    ArtifactValidationError,
    build_branch_name,
    normalize_branch_name,
    normalize_commit_message,
    parse_ticket,
    strip_markup,
    strip_reasoning,
    validate_branch_name,
    validate_commit_message,
)
from .config import Settings
from .context import load_business_context
from .models.llm_client import LLMClient, LLMClientError, LLMResponseFormatError, parse_json_payload
from .policy.rules import RuleSet, is_protected_branch, load_rules
from .prompts import (
    render_branch_instructions,
    render_branch_request,
    render_branch_system_prompt,
    render_commit_instructions,
    render_commit_request,
    render_commit_system_prompt,
    render_mr_description_request,
    render_mr_description_system_prompt,
)
from .review import (
    ReviewResult,
    format_inline_comment,
    format_summary_note,
    request_review,
    review_diff_from_changes,
    select_inline_comments,
)
from .stages import Stage, stage_index
from .targeting import TargetBranchDecision, select_target_branch
from .tools.gitlab import (
    DiscussionPosition,
    FileChange,
    GitLabAPIError,
    GitLabClient,
    MergeRequestInfo,
    ProjectInfo,
)
from .tools.run_logs import write_run_record
from .tools.vcs import GitError, GitRepository, parse_gitlab_remote

__all__ = [
    "CancellationToken",
    "Interaction",
    "StageEvent",
    "WorkflowCancelled",
    "WorkflowError",
    "WorkflowOrchestrator",
    "WorkflowRun",
]

LOGGER = logging.getLogger(__name__)

_BACKEND_ERRORS = (GitError, GitLabAPIError, LLMClientError, ArtifactValidationError)
_BRANCH_TICKET = re.compile(r"/([A-Z]+-[0-9]+)(?:-|$)")
_BRANCH_SHAPE = re.compile(r"^([a-z]+)/(?:([A-Z]+-[0-9]+)-?)?(.*)$")
_BUSINESS_MODES = ("business", "comprehensive")


class WorkflowError(RuntimeError):
    """Halts a run; always names the stage that could not be reached."""

    def __init__(self, stage: Stage, reason: str) -> None:
        self.stage = stage
        self.reason = reason
        super().__init__(f"{stage.value}: {reason}")


class WorkflowCancelled(RuntimeError):
    """Raised internally when the user or a signal cancels the run."""


class CancellationToken:
    """Thread-safe cancellation flag checked at stage boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(slots=True)
class StageEvent:
    stage: Stage
    at: str


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _diff_path(path: str) -> str:
    """Drop the ``a/`` or ``b/`` prefix used by unified diff headers."""
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


@dataclass(slots=True)
class WorkflowRun:
    """Mutable record of one workflow invocation."""

    command: str
    stage: Stage = Stage.IDLE
    branch: Optional[str] = None
    ticket: Optional[str] = None
    commit_sha: Optional[str] = None
    commit_message: Optional[str] = None
    project: Optional[ProjectInfo] = None
    merge_request: Optional[MergeRequestInfo] = None
    merge_request_reused: bool = False
    target: Optional[TargetBranchDecision] = None
    review: Optional[ReviewResult] = None
    inline_comments_posted: int = 0
    warnings: List[str] = field(default_factory=list)
    history: List[StageEvent] = field(default_factory=lambda: [StageEvent(Stage.IDLE, _utc_timestamp())])
    failure: Optional[Tuple[Stage, str]] = None

    @property
    def cancelled(self) -> bool:
        return self.stage == Stage.CANCELLED

    @property
    def failed(self) -> bool:
        return self.stage == Stage.FAILED

    def advance(self, stage: Stage) -> None:
        """Move to ``stage``; moving backwards or leaving a terminal stage is an error."""
        if self.stage.terminal:
            raise RuntimeError(f"Run already finished in stage {self.stage.value}")
        if stage_index(stage) <= stage_index(self.stage):
            raise RuntimeError(f"Cannot move from {self.stage.value} back to {stage.value}")
        self.stage = stage
        self.history.append(StageEvent(stage, _utc_timestamp()))

    def fail(self, stage: Stage, reason: str) -> None:
        self.failure = (stage, reason)
        self.stage = Stage.FAILED
        self.history.append(StageEvent(Stage.FAILED, _utc_timestamp()))

    def cancel(self) -> None:
        if self.stage.terminal:
            return
        self.stage = Stage.CANCELLED
        self.history.append(StageEvent(Stage.CANCELLED, _utc_timestamp()))

    def warn(self, message: str) -> None:
        LOGGER.warning(message)
        self.warnings.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "branch": self.branch,
            "ticket": self.ticket,
            "commit_sha": self.commit_sha,
            "commit_message": self.commit_message,
            "project": asdict(self.project) if self.project else None,
            "merge_request": asdict(self.merge_request) if self.merge_request else None,
            "merge_request_reused": self.merge_request_reused,
            "target": asdict(self.target) if self.target else None,
            "review_score": self.review.score if self.review else None,
            "review_comments": len(self.review.comments) if self.review else 0,
            "inline_comments_posted": self.inline_comments_posted,
            "warnings": list(self.warnings),
            "history": [{"stage": event.stage.value, "at": event.at} for event in self.history],
            "failure": {"stage": self.failure[0].value, "reason": self.failure[1]} if self.failure else None,
        }


class Interaction:
    """Human confirmation gates; the base class answers every gate automatically."""

    def ask_ticket(self, default: str) -> Optional[str]:
        return None

    def confirm_new_branch(self, current_branch: str) -> bool:
        return True

    def confirm_commit(self, message: str) -> bool:
        return True

    def choose_target_branch(self, decision: TargetBranchDecision, available: Sequence[str]) -> Optional[str]:
        return decision.target_branch

    def choose_merge_request(self, merge_requests: Sequence[MergeRequestInfo]) -> Optional[MergeRequestInfo]:
        return merge_requests[0] if merge_requests else None

    def edit_title(self, title: str) -> str:
        return title

    def edit_description(self, description: str) -> str:
        return description

    def notify(self, message: str) -> None:
        LOGGER.info(message)


class WorkflowOrchestrator:
    """Drives the git → GitLab → model pipeline for one repository."""

    def __init__(
        self,
        repo: GitRepository,
        gitlab: Optional[GitLabClient],
        llm: LLMClient,
        settings: Settings,
        *,
        interaction: Optional[Interaction] = None,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Callable[[float], None] = time.sleep,
        logs_root: Optional[Path] = None,
    ) -> None:
        self.repo = repo
        self.gitlab = gitlab
        self.llm = llm
        self.settings = settings
        self.interaction = interaction or Interaction()
        self.cancel_token = cancel_token or CancellationToken()
        self._sleep = sleep
        self._logs_root = logs_root

    # ------------------------------------------------------------------ commands
    def run_full(self, *, ticket: Optional[str] = None) -> WorkflowRun:
        """Branch → commit → push → merge request → review → comments."""

        def body(run: WorkflowRun) -> None:
            rules = self._step(run, Stage.RULE_EXTRACTION, lambda: load_rules(self.repo.root))
            self._ensure_branch(run, rules, ticket, ask_first=False)
            self._commit(run, rules, ticket, stage_mode="all")
            self._push(run)
            self._publish(run)

        return self._execute("run", body)

    def create_branch(self, *, ticket: Optional[str] = None) -> WorkflowRun:
        def body(run: WorkflowRun) -> None:
            rules = self._step(run, Stage.RULE_EXTRACTION, lambda: load_rules(self.repo.root))
            self._ensure_branch(run, rules, ticket, ask_first=True)

        return self._execute("create-branch", body)

    def commit_changes(self, *, ticket: Optional[str] = None, stage_mode: str = "all") -> WorkflowRun:
        def body(run: WorkflowRun) -> None:
            rules = self._step(run, Stage.RULE_EXTRACTION, lambda: load_rules(self.repo.root))
            self._require_feature_branch(run, Stage.BRANCH_ENSURED, "commit to")
            self._commit(run, rules, ticket, stage_mode=stage_mode)

        return self._execute("commit", body)

    def push_and_create_mr(self) -> WorkflowRun:
        def body(run: WorkflowRun) -> None:
            self._require_feature_branch(run, Stage.BRANCH_ENSURED, "push")
            self._push(run)
            self._resolve_project(run)
            self._resolve_merge_request(run)

        return self._execute("push-mr", body)

    def review_local(self) -> WorkflowRun:
        """Review the uncommitted diff of the working tree without touching GitLab."""

        def body(run: WorkflowRun) -> None:
            run.branch = self.repo.current_branch()
            diff = self._step(run, Stage.CHANGES_AVAILABLE, self.repo.all_diff)
            if not diff.strip():
                run.warn("No local changes to review.")
                return
            self._review(run, diff)

        return self._execute("review", body)

    def review_mr(self, iid: Optional[int] = None, *, post: bool = False) -> WorkflowRun:
        def body(run: WorkflowRun) -> None:
            self._resolve_project(run)
            self._step(run, Stage.MR_RESOLVED, lambda: self._select_existing_merge_request(run, iid))
            self._review_merge_request(run, post=post)

        return self._execute("review-mr", body)

    # ------------------------------------------------------------------ plumbing
    def _execute(self, command: str, body: Callable[[WorkflowRun], None]) -> WorkflowRun:
        run = WorkflowRun(command=command)
        try:
            body(run)
            if not run.stage.terminal:
                run.advance(Stage.DONE)
        except WorkflowCancelled:
            run.cancel()
        except WorkflowError as error:
            LOGGER.error("Workflow %s failed at %s: %s", command, error.stage.value, error.reason)
            run.fail(error.stage, error.reason)
        finally:
            if self._logs_root is not None:
                write_run_record(self._logs_root, run.to_dict(), command=command)
        return run

    def _check_cancelled(self) -> None:
        if self.cancel_token.cancelled:
            raise WorkflowCancelled()

    def _step(self, run: WorkflowRun, stage: Stage, action: Callable[[], Any]) -> Any:
        """Run ``action`` as the transition into ``stage``."""
        self._check_cancelled()
        try:
            result = action()
        except _BACKEND_ERRORS as error:
            raise WorkflowError(stage, str(error)) from error
        run.advance(stage)
        return result

    def _require_gitlab(self, stage: Stage) -> GitLabClient:
        if self.gitlab is None:
            raise WorkflowError(stage, "GitLab client is not configured")
        return self.gitlab

    def _require_feature_branch(self, run: WorkflowRun, stage: Stage, action: str) -> None:
        self._check_cancelled()
        branch = self.repo.current_branch()
        if not branch:
            raise WorkflowError(stage, "HEAD is detached; check out a branch first")
        if is_protected_branch(branch):
            raise WorkflowError(
                stage, f"Cannot {action} protected branch '{branch}'; create a feature branch first"
            )
        run.branch = branch
        run.advance(stage)

    # ------------------------------------------------------------------ tickets
    def _resolve_ticket(self, run: WorkflowRun, ticket: Optional[str], *, required: bool) -> Optional[str]:
        explicit = parse_ticket(ticket)
        if ticket and explicit is None:
            run.warn(f"Ignoring malformed ticket '{ticket}'; expected a form like ABC-123.")
        if explicit is None and run.branch:
            found = _BRANCH_TICKET.search(run.branch)
            explicit = found.group(1) if found else None
        if explicit or not required:
            return explicit
        default = self.settings.workflow.default_ticket
        answer = self.interaction.ask_ticket(default)
        return parse_ticket(answer) or default

    # ------------------------------------------------------------------ branches
    def _ensure_branch(self, run: WorkflowRun, rules: RuleSet, ticket: Optional[str], *, ask_first: bool) -> None:
        self._check_cancelled()
        current = self.repo.current_branch()
        if current and not is_protected_branch(current):
            if not ask_first or not self.interaction.confirm_new_branch(current):
                run.branch = current
                run.advance(Stage.BRANCH_ENSURED)
                return

        def synthesize() -> str:
            diff = self.repo.all_diff()
            if not diff.strip():
                raise WorkflowError(Stage.BRANCH_ENSURED, "No changes found to derive a branch name from")
            run.ticket = self._resolve_ticket(run, ticket, required=rules.branch_requires_ticket)
            name = self._generate_branch_name(rules, run.ticket, diff)
            validate_branch_name(name, rules, types=self.settings.branch.types)
            if self.repo.branch_exists(name):
                self.repo.checkout(name)
            else:
                self.repo.create_branch(name)
            return name

        run.branch = self._step(run, Stage.BRANCH_ENSURED, synthesize)
        self.interaction.notify(f"Switched to branch {run.branch}")

    def _generate_branch_name(self, rules: RuleSet, ticket: Optional[str], diff: str) -> str:
        instructions = render_branch_instructions(rules, ticket)
        raw = self.llm.ask(
            render_branch_request(diff),
            system_prompt=render_branch_system_prompt(instructions),
            max_tokens=100,
            temperature=0.3,
        )
        name = normalize_branch_name(raw, ticket=ticket)
        if rules.has_rules and rules.branch_pattern:
            return name
        shape = _BRANCH_SHAPE.match(name)
        if not shape:
            return name
        return build_branch_name(
            shape.group(1),
            shape.group(3),
            ticket=ticket or shape.group(2),
            convention=self.settings.branch.naming_convention,
            username=self.repo.user_name(),
        )

    # ------------------------------------------------------------------ commits
    def _commit(self, run: WorkflowRun, rules: RuleSet, ticket: Optional[str], *, stage_mode: str) -> None:
        def stage_changes() -> str:
            if stage_mode == "all":
                self.repo.stage_all()
            if not self.repo.has_staged_changes():
                raise WorkflowError(Stage.STAGED, "No changes to commit")
            return self.repo.staged_diff()

        diff = self._step(run, Stage.STAGED, stage_changes)

        def generate() -> str:
            run.ticket = self._resolve_ticket(run, ticket, required=rules.commit_requires_ticket)
            message = self._generate_commit_message(rules, run.ticket, diff)
            return validate_commit_message(message, rules, default_pattern=self._commit_default_pattern())

        run.commit_message = self._step(run, Stage.COMMIT_GENERATED, generate)

        if not self.interaction.confirm_commit(run.commit_message):
            raise WorkflowCancelled()

        def commit() -> str:
            branch = self.repo.current_branch()
            if is_protected_branch(branch):
                raise WorkflowError(Stage.COMMITTED, f"Refusing to commit on protected branch '{branch}'")
            return self.repo.commit(run.commit_message or "")

        run.commit_sha = self._step(run, Stage.COMMITTED, commit)
        self.interaction.notify(f"Committed {run.commit_sha[:8]}: {run.commit_message.splitlines()[0]}")

    def _commit_default_pattern(self) -> Optional[str]:
        convention = self.settings.commit.convention
        if convention == "gitmoji":
            return GITMOJI_COMMIT_PATTERN
        if convention == "custom":
            return None
        return DEFAULT_COMMIT_PATTERN

    def _generate_commit_message(self, rules: RuleSet, ticket: Optional[str], diff: str) -> str:
        instructions = render_commit_instructions(
            rules,
            ticket,
            convention=self.settings.commit.convention,
            custom_template=self.settings.commit.custom_template,
        )
        raw = self.llm.ask(
            render_commit_request(diff),
            system_prompt=render_commit_system_prompt(instructions),
            max_tokens=500,
            temperature=0.3,
        )
        return normalize_commit_message(raw, ticket=ticket)

    # ------------------------------------------------------------------ push
    def _push(self, run: WorkflowRun) -> None:
        remote = self.settings.workflow.remote

        def push() -> None:
            branch = run.branch or self.repo.current_branch()
            try:
                self.repo.push(remote, branch, set_upstream=True)
            except GitError as error:
                LOGGER.warning("Push with upstream tracking failed, retrying without it: %s", error)
                try:
                    self.repo.push(remote, branch)
                except GitError as retry_error:
                    raise WorkflowError(Stage.PUSHED, f"Push failed: {retry_error}") from retry_error

        self._step(run, Stage.PUSHED, push)
        self.interaction.notify(f"Pushed {run.branch} to {remote}")

    # ------------------------------------------------------------- merge requests
    def _publish(self, run: WorkflowRun) -> None:
        self._resolve_project(run)
        self._resolve_merge_request(run)
        self._review_merge_request(run, post=True)

    def _resolve_project(self, run: WorkflowRun) -> None:
        gitlab = self._require_gitlab(Stage.PROJECT_RESOLVED)

        def resolve() -> ProjectInfo:
            remote = self.settings.workflow.remote
            path = parse_gitlab_remote(self.repo.remote_url(remote))
            if not path:
                raise WorkflowError(
                    Stage.PROJECT_RESOLVED, f"Could not determine the GitLab project from remote '{remote}'"
                )
            return gitlab.get_project(path)

        run.project = self._step(run, Stage.PROJECT_RESOLVED, resolve)

    def _resolve_merge_request(self, run: WorkflowRun) -> None:
        gitlab = self._require_gitlab(Stage.MR_RESOLVED)
        project = run.project
        assert project is not None
        branch = run.branch or self.repo.current_branch() or ""

        def resolve() -> MergeRequestInfo:
            existing = gitlab.list_merge_requests(project.id, state="opened", source_branch=branch)
            if existing:
                run.merge_request_reused = True
                return existing[0]

            available = [item.name for item in gitlab.list_branches(project.id)]
            commit_messages = self._commit_messages(project)
            decision = self._decide_target(run, project, branch, available, commit_messages)
            target = decision.target_branch
            if decision.needs_confirmation:
                chosen = self.interaction.choose_target_branch(decision, available)
                if not chosen:
                    raise WorkflowCancelled()
                target = chosen
            run.target = TargetBranchDecision(target, decision.confidence, decision.reasoning)

            diff = self._diff_against(run, target)
            title, description = self._generate_mr_text(branch, commit_messages, diff)
            title = self.interaction.edit_title(title)
            description = self.interaction.edit_description(description)
            return gitlab.create_merge_request(
                project.id,
                source_branch=branch,
                target_branch=target,
                title=title,
                description=description,
                draft=self.settings.merge_request.draft,
                remove_source_branch=self.settings.merge_request.remove_source_branch,
            )

        run.merge_request = self._step(run, Stage.MR_RESOLVED, resolve)
        verb = "Reusing existing" if run.merge_request_reused else "Created"
        self.interaction.notify(f"{verb} merge request !{run.merge_request.iid}: {run.merge_request.web_url}")

    def _decide_target(
        self,
        run: WorkflowRun,
        project: ProjectInfo,
        branch: str,
        available: Sequence[str],
        commit_messages: Sequence[str],
    ) -> TargetBranchDecision:
        configured = self.settings.merge_request.target_branch.strip()
        if configured:
            return TargetBranchDecision(configured, "high", "Configured target branch")
        assert self.gitlab is not None
        try:
            recent = self.gitlab.recent_merge_request_targets(project.id)
        except GitLabAPIError as error:
            run.warn(f"Could not load recent merge request targets: {error}")
            recent = []
        return select_target_branch(
            self.llm,
            branch,
            available,
            project.default_branch,
            recent_targets=recent,
            commit_messages=commit_messages,
            ticket=run.ticket,
        )

    def _commit_messages(self, project: ProjectInfo) -> List[str]:
        base = f"{self.settings.workflow.remote}/{project.default_branch}"
        try:
            commits = self.repo.commits_between(base)
        except GitError as error:
            LOGGER.warning("Could not list commits since %s: %s", base, error)
            return []
        return [commit.message for commit in commits]

    def _diff_against(self, run: WorkflowRun, target: str) -> str:
        try:
            return self.repo.diff_with_branch(target, remote=self.settings.workflow.remote)
        except GitError as error:
            run.warn(f"Could not diff against {target}: {error}")
            return ""

    def _mr_template(self) -> str:
        template = self.settings.merge_request.template.strip()
        if not template:
            return ""
        path = Path(template)
        if not path.is_absolute():
            path = self.repo.root / path
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as error:
            LOGGER.warning("Merge request template %s could not be read: %s", path, error)
            return ""

    def _generate_mr_text(self, branch: str, commit_messages: Sequence[str], diff: str) -> Tuple[str, str]:
        raw = self.llm.ask(
            render_mr_description_request(branch, commit_messages, diff),
            system_prompt=render_mr_description_system_prompt(self._mr_template()),
            max_tokens=1000,
            temperature=0.3,
        )
        text = strip_reasoning(raw)
        try:
            payload = parse_json_payload(text)
        except LLMResponseFormatError:
            payload = None
        if isinstance(payload, dict) and str(payload.get("title") or "").strip():
            return str(payload["title"]).strip(), str(payload.get("description") or "").strip()

        lines = strip_markup(text).splitlines()
        title = lines[0].lstrip("# ").strip() if lines else ""
        description = "\n".join(lines[1:]).strip()
        return title or branch, description

    def _select_existing_merge_request(self, run: WorkflowRun, iid: Optional[int]) -> MergeRequestInfo:
        gitlab = self._require_gitlab(Stage.MR_RESOLVED)
        assert run.project is not None
        if iid is not None:
            mr = gitlab.get_merge_request(run.project.id, iid)
        else:
            branch = self.repo.current_branch() or ""
            candidates = gitlab.list_merge_requests(run.project.id, state="opened", source_branch=branch)
            if not candidates:
                raise WorkflowError(Stage.MR_RESOLVED, f"No open merge request found for branch '{branch}'")
            chosen = candidates[0] if len(candidates) == 1 else self.interaction.choose_merge_request(candidates)
            if chosen is None:
                raise WorkflowCancelled()
            mr = chosen
        run.merge_request = mr
        run.branch = mr.source_branch
        return mr

    # ------------------------------------------------------------------ review
    def _poll_changes(self, run: WorkflowRun) -> List[FileChange]:
        gitlab = self._require_gitlab(Stage.CHANGES_AVAILABLE)
        assert run.project is not None and run.merge_request is not None
        attempts = self.settings.workflow.changes_poll_attempts
        for attempt in range(1, attempts + 1):
            changes = gitlab.merge_request_changes(run.project.id, run.merge_request.iid)
            if changes:
                return changes
            if attempt < attempts:
                LOGGER.debug("Merge request !%s has no changes yet (attempt %s)", run.merge_request.iid, attempt)
                self._sleep(self.settings.workflow.changes_poll_delay)
        return []

    def _review_merge_request(self, run: WorkflowRun, *, post: bool) -> None:
        changes = self._step(run, Stage.CHANGES_AVAILABLE, lambda: self._poll_changes(run))
        if not changes:
            assert run.merge_request is not None
            run.warn(
                f"No changes found in merge request !{run.merge_request.iid} after "
                f"{self.settings.workflow.changes_poll_attempts} attempts; skipping review."
            )
            return
        self._review(run, review_diff_from_changes(changes))
        if post:
            self._post_comments(run, changes)

    def _review(self, run: WorkflowRun, diff: str) -> None:
        mode = self.settings.review.mode
        context = None
        if mode in _BUSINESS_MODES:
            context = load_business_context(self.repo.root, self.settings.review.business_context_file)

        run.review = self._step(
            run, Stage.REVIEWED, lambda: request_review(self.llm, diff, mode=mode, business_context=context)
        )
        if run.review.degraded:
            run.warn("Review output was not valid JSON; reported a neutral score.")

    def _post_comments(self, run: WorkflowRun, changes: Sequence[FileChange]) -> None:
        gitlab = self._require_gitlab(Stage.COMMENTS_POSTED)
        project, review = run.project, run.review
        assert project is not None and review is not None and run.merge_request is not None

        def post() -> int:
            mr = run.merge_request
            gitlab.create_note(project.id, mr.iid, format_summary_note(review))
            inline = select_inline_comments(
                review,
                severities=self.settings.review.inline_severities,
                limit=self.settings.review.max_inline_comments,
            )
            if not inline:
                return 0
            if mr.diff_refs is None:
                mr = gitlab.get_merge_request(project.id, mr.iid)
            refs = mr.diff_refs
            if refs is None:
                run.warn("Merge request has no diff refs; inline comments were skipped.")
                return 0

            by_path: Dict[str, FileChange] = {}
            for change in changes:
                by_path.setdefault(change.old_path, change)
                by_path[change.new_path] = change

            posted = 0
            for comment in inline:
                change = by_path.get(_diff_path(comment.file))
                if change is None:
                    run.warn(f"Skipped inline comment on {comment.file}:{comment.line}: file not in merge request")
                    continue
                position = DiscussionPosition(
                    base_sha=refs.base_sha,
                    start_sha=refs.start_sha,
                    head_sha=refs.head_sha,
                    old_path=change.old_path,
                    new_path=change.new_path,
                    new_line=comment.line,
                )
                try:
                    gitlab.create_discussion(project.id, mr.iid, format_inline_comment(comment), position)
                except GitLabAPIError as error:
                    run.warn(f"Skipped inline comment on {comment.file}:{comment.line}: {error}")
                    continue
                posted += 1
            return posted

        run.inline_comments_posted = self._step(run, Stage.COMMENTS_POSTED, post)
        self.interaction.notify(
            f"Posted review summary and {run.inline_comments_posted} inline comment(s) on !{run.merge_request.iid}"
        )
