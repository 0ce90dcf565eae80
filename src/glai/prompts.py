"""Prompt templates and helpers shared across workflow steps."""

from __future__ import annotations

import re
from typing import Optional, Sequence

from .policy.rules import PROTECTED_BRANCHES, RuleSet

DIFF_PREVIEW_CHARS = 3000
REVIEW_DIFF_CHARS = 60000

PLAIN_ANSWER_INSTRUCTION = "Return ONLY the {artifact}. No explanation, no quotes, no markdown."

DEFAULT_BRANCH_INSTRUCTIONS = """Follow conventional branch naming:
- Format: {type}/{ticket-or-description}
- Types: feature, bugfix, hotfix, chore, docs, refactor
- Use lowercase letters, numbers, and hyphens only
- Keep it concise but descriptive
- If a ticket number is given, include it right after the type: {type}/{TICKET}-{description}
- Maximum 50 characters

Examples:
- feature/ABC-123-add-user-auth
- bugfix/fix-login-redirect
- chore/update-dependencies"""

COMMIT_CONVENTIONS = {
    "conventional": """Follow the Conventional Commits specification:
<type>(<scope>): <subject>

<body>

Types: feat, fix, docs, style, refactor, perf, test, chore, ci, build
- feat: new feature
- fix: bug fix
- docs: documentation changes
- style: formatting, missing semicolons, etc.
- refactor: code refactoring
- perf: performance improvements
- test: adding tests
- chore: maintenance tasks
- ci: CI/CD changes
- build: build system changes

Rules:
- Subject line max 72 characters
- Use imperative mood ("add" not "added")
- Don't end the subject with a period
- Lowercase type and scope
- Body explains what and why, not how""",
    "angular": """Follow the Angular commit convention:
<type>(<scope>): <short summary>

<body>

Types: build, ci, docs, feat, fix, perf, refactor, test
Scope: component or module affected
Summary: imperative, present tense, lowercase, no period

Example: feat(auth): add OAuth2 login support""",
    "gitmoji": """Prefix commit messages with a gitmoji:
<emoji> <type>(<scope>): <subject>

Common emojis:
:sparkles: - New feature
:bug: - Bug fix
:memo: - Documentation
:lipstick: - UI/style
:recycle: - Refactor
:zap: - Performance
:white_check_mark: - Tests
:wrench: - Config
:lock: - Security

Example: :sparkles: feat(auth): add social login""",
}

TARGET_BRANCH_SYSTEM_PROMPT = """You are a git workflow expert. Select the most appropriate target branch for a merge request.

## Selection Rules (in priority order)

1. Branch naming convention:
   - `feature/*`, `feat/*` -> `develop`/`development`/`dev` if one exists, else the default branch
   - `bugfix/*`, `fix/*` -> the integration branch for non-critical fixes, `main`/`master` for critical ones
   - `hotfix/*`, `release/*` -> `main` or `master` (production branch)
   - `chore/*`, `docs/*` -> the integration branch if one exists, else the default branch

2. Two-tier flow: if both an integration branch (`develop`/`development`/`dev`) and a production
   branch (`main`/`master`) exist, feature and non-critical fix branches target the integration branch.

3. Single-tier flow: if only `main`/`master` exists, target the default branch.

4. Historical patterns: prefer the branches that recently received similar merge requests.

5. Fallback order: `develop` > `development` > `dev` > `main` > `master` > default branch.

## Output Format
Return ONLY a JSON object with no additional text:
{"targetBranch": "<selected_branch>", "confidence": "high|medium|low", "reasoning": "<brief explanation>"}"""

REVIEW_BASE_PROMPT = """You are an expert code reviewer. Analyze the provided code changes and give constructive, actionable feedback.

Return your review as a JSON object with this structure:
{
  "summary": "Brief overall summary of the changes and their quality",
  "comments": [
    {
      "file": "path/to/file.py",
      "line": 42,
      "severity": "error|warning|info|suggestion",
      "category": "syntax|logic|performance|security|style|business",
      "message": "Description of the issue",
      "suggestion": "Optional suggested fix or improvement"
    }
  ],
  "score": 85,
  "recommendations": ["Optional follow-up actions"]
}

Line numbers refer to lines in the new version of the file.

Score guidelines:
- 90-100: Excellent, ready to merge
- 70-89: Good, minor issues
- 50-69: Needs work, several issues
- Below 50: Significant problems"""

REVIEW_MODE_INSTRUCTIONS = {
    "syntax": """Focus ONLY on:
- Syntax errors and typos
- Code style and formatting
- Naming conventions
- Import organization""",
    "logic": """Focus ONLY on:
- Logical errors and bugs
- Edge cases and error handling
- Null/None checks
- Algorithm correctness
- Race conditions""",
    "business": """Focus on:
- Business logic correctness
- Domain model accuracy
- Requirements compliance
- Data validation""",
    "comprehensive": """Review ALL aspects:
- Syntax and style
- Logic and correctness
- Performance implications
- Security vulnerabilities
- Best practices
- Maintainability and readability
- Test coverage suggestions""",
}
REVIEW_MODES = tuple(REVIEW_MODE_INSTRUCTIONS)

MR_DESCRIPTION_SECTIONS = """Generate a clear, concise merge request description that includes:
1. A brief summary of changes
2. List of main changes
3. Any breaking changes or important notes
4. Testing suggestions

Return a JSON object with "title" and "description" fields."""


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n... [truncated {len(text) - limit} characters]"


# ------------------------------------------------------------------ branches
def render_branch_instructions(rules: RuleSet, ticket: Optional[str] = None) -> str:
    """Naming instructions derived from the repository rules, or the defaults."""
    if not (rules.has_rules and rules.branch_pattern):
        instructions = DEFAULT_BRANCH_INSTRUCTIONS
        if ticket:
            instructions += f"\n\nUse this ticket number: {ticket}"
        return instructions

    pattern = rules.branch_pattern
    lines = [f"Generate a git branch name that MUST match this regex pattern: {pattern}", ""]
    allowed = [value for value in rules.allowed_types if value not in PROTECTED_BRANCHES]
    if allowed:
        lines.append(f"Allowed branch types: {', '.join(allowed)}")
    if rules.branch_requires_ticket:
        if ticket:
            lines.append(f"Use this ticket number: {ticket}")
        else:
            lines.append("The pattern requires a ticket number in a format like ABC-123.")
            lines.append("If no ticket number is apparent from the code, use the placeholder TASK-001.")
    lines.extend(
        [
            "",
            "The branch name format should be: {type}/{TICKET-NUMBER}-{short-description}",
            "- type: one of the allowed types",
            "- TICKET-NUMBER: uppercase letters, dash, numbers (e.g. ABC-123)",
            "- short-description: lowercase letters, numbers, and hyphens only",
            "",
            "Examples:",
            "- feature/ABC-123-add-user-login",
            "- bugfix/JIRA-456-fix-null-pointer",
        ]
    )
    return "\n".join(lines)


def render_branch_system_prompt(instructions: str) -> str:
    return (
        "You are going to generate git branch names.\n\n"
        f"{instructions}\n\n"
        f"IMPORTANT: {PLAIN_ANSWER_INSTRUCTION.format(artifact='branch name')}"
    )


def render_branch_request(diff: str) -> str:
    return (
        "Based on these code changes, generate an appropriate branch name:\n\n"
        f"{_truncate(diff, DIFF_PREVIEW_CHARS)}"
    )


# ------------------------------------------------------------------ commits
def render_commit_instructions(
    rules: RuleSet,
    ticket: Optional[str] = None,
    *,
    convention: str = "conventional",
    custom_template: str = "",
) -> str:
    """Commit message instructions for the repository pattern or the configured convention."""
    if rules.has_rules and rules.commit_pattern:
        pattern = rules.commit_pattern
        lines = [f"Generate a git commit message that MUST match this regex pattern: {pattern}", ""]
        if ticket and (rules.commit_requires_ticket or re.search(r"\\?\(\[A-Z\]", pattern)):
            lines.extend(
                [
                    f"CRITICAL: the ticket number {ticket} must be the scope (in parentheses).",
                    f"Format: <type>({ticket}): <description>",
                    f"Example: fix({ticket}): update error handling",
                ]
            )
        lines.extend(
            [
                "",
                "- type: one of feat, fix, chore, docs, style, refactor, perf, test, ci, build (lowercase)",
                "- short description: brief, imperative description of the change",
            ]
        )
        return "\n".join(lines)

    if convention == "custom" and custom_template:
        instructions = (
            f"Follow this custom commit template:\n{custom_template}\n\n"
            "Fill in the placeholders based on the changes."
        )
    else:
        instructions = COMMIT_CONVENTIONS.get(convention, COMMIT_CONVENTIONS["conventional"])
    if ticket:
        instructions += f"\n\nUse the ticket number {ticket} as the scope."
    return instructions


def render_commit_system_prompt(instructions: str) -> str:
    return (
        "You are going to generate git commit messages.\n\n"
        f"{instructions}\n\n"
        f"IMPORTANT: {PLAIN_ANSWER_INSTRUCTION.format(artifact='commit message')}"
    )


def render_commit_request(diff: str) -> str:
    return f"Generate a commit message for the following changes:\n\n{_truncate(diff, REVIEW_DIFF_CHARS)}"


# ------------------------------------------------------------- target branch
def render_target_branch_request(
    current_branch: str,
    available: Sequence[str],
    default_branch: str,
    *,
    recent_targets: Sequence[str] = (),
    commit_messages: Sequence[str] = (),
    ticket: Optional[str] = None,
) -> str:
    lines = [
        "Select the target branch for this merge request:",
        "",
        "## Context",
        f"- Source branch: {current_branch}",
        f"- Available branches: {', '.join(available)}",
        f"- Project default branch: {default_branch}",
    ]
    if recent_targets:
        lines.append(f"- Recent MR target branches: {', '.join(recent_targets)}")
    if commit_messages:
        lines.append(f"- Commit messages: {'; '.join(list(commit_messages)[:5])}")
    if ticket:
        lines.append(f"- Ticket/Issue: {ticket}")
    return "\n".join(lines)


# ------------------------------------------------------------ merge requests
def render_mr_description_system_prompt(template: str = "") -> str:
    guide = f"Use this template as a guide:\n{template}\n\n" if template.strip() else ""
    return f"You are going to generate merge request descriptions.\n{guide}\n{MR_DESCRIPTION_SECTIONS}"


def render_mr_description_request(branch: str, commit_messages: Sequence[str], diff: str) -> str:
    commits = "\n".join(f"- {message}" for message in commit_messages) or "- (no commits listed)"
    return (
        "Generate MR title and description for:\n"
        f"Branch: {branch}\n"
        f"Commits:\n{commits}\n\n"
        f"Diff summary (first {DIFF_PREVIEW_CHARS} chars):\n{_truncate(diff, DIFF_PREVIEW_CHARS)}"
    )


# ------------------------------------------------------------------- review
def render_review_system_prompt(mode: str, business_context: Optional[str] = None) -> str:
    """Review prompt for ``mode``; business context is added for business-aware modes."""
    instructions = REVIEW_MODE_INSTRUCTIONS.get(mode, REVIEW_MODE_INSTRUCTIONS["comprehensive"])
    if business_context and mode in {"business", "comprehensive"}:
        instructions = f"{instructions}\n\nBusiness Context:\n{business_context}"
    return f"{REVIEW_BASE_PROMPT}\n\n{instructions}"


def render_review_request(diff: str) -> str:
    return f"Review the following code changes:\n\n{_truncate(diff, REVIEW_DIFF_CHARS)}"


__all__ = [
    "COMMIT_CONVENTIONS",
    "REVIEW_MODES",
    "TARGET_BRANCH_SYSTEM_PROMPT",
    "render_branch_instructions",
    "render_branch_request",
    "render_branch_system_prompt",
    "render_commit_instructions",
    "render_commit_request",
    "render_commit_system_prompt",
    "render_mr_description_request",
    "render_mr_description_system_prompt",
    "render_review_request",
    "render_review_system_prompt",
    "render_target_branch_request",
]
