"""Canonicalisation and validation of generated branch names and commit messages.

Model output is treated as untrusted text.  Each public normaliser runs the same
fixed pipeline: strip markup, pick the line that carries the answer, fix casing,
then (for commits) re-derive the ticket scope.  Every step is idempotent so a
normalised value passes through unchanged.  Validation is a separate hard gate:
it never rewrites its input and raises ``ArtifactValidationError`` on mismatch.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Iterable, Optional, Pattern

from .policy.rules import PROTECTED_BRANCHES, RuleSet, is_protected_branch
from .utils.slug import collapse_hyphens, slugify

__all__ = [
    "ArtifactValidationError",
    "COMMIT_TYPES",
    "DEFAULT_BRANCH_TYPES",
    "DEFAULT_COMMIT_PATTERN",
    "DEFAULT_TICKET",
    "GITMOJI_COMMIT_PATTERN",
    "build_branch_name",
    "default_branch_pattern",
    "normalize_branch_name",
    "normalize_commit_message",
    "parse_ticket",
    "strip_markup",
    "strip_reasoning",
    "validate_branch_name",
    "validate_commit_message",
]

DEFAULT_TICKET = "TASK-001"

COMMIT_TYPES: tuple[str, ...] = (
    "feat",
    "fix",
    "docs",
    "style",
    "refactor",
    "perf",
    "test",
    "chore",
    "ci",
    "build",
    "revert",
)
DEFAULT_BRANCH_TYPES: tuple[str, ...] = (
    "feature",
    "feat",
    "fix",
    "bugfix",
    "hotfix",
    "release",
    "chore",
    "docs",
    "refactor",
    "test",
)

_TYPE_ALTERNATION = "|".join(COMMIT_TYPES)
DEFAULT_COMMIT_PATTERN = rf"^({_TYPE_ALTERNATION})(\([^()\s]+\))?!?: \S.*$"
GITMOJI_COMMIT_PATTERN = rf"^(?::\w+:|[^\x00-\x7f]+)\s+({_TYPE_ALTERNATION})(\([^()\s]+\))?!?: \S.*$"

_TICKET = re.compile(r"^[A-Z]+-[0-9]+$")

_REASONING_TAGS = "think|thinking|reasoning|reflection"
_REASONING_BLOCK = re.compile(rf"<({_REASONING_TAGS})\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_DANGLING_REASONING_CLOSE = re.compile(rf"</(?:{_REASONING_TAGS})\s*>", re.IGNORECASE)
_TAGGED_REGION = re.compile(r"<([A-Za-z][\w-]*)\b[^>]*>(.*?)</\1\s*>", re.DOTALL)
_FENCED_BLOCK = re.compile(r"```[^\n`]*\n?(.*?)```", re.DOTALL)
_INLINE_CODE = re.compile(r"`([^`\n]+)`")
_QUOTES = "\"'“”‘’"

_BRANCH_GRAMMAR_LINE = re.compile(r"^[A-Za-z]+/[A-Za-z]+-[0-9]+-\S+$")
_BRANCH_LIKE_LINE = re.compile(r"^[A-Za-z]+/\S")
_BRANCH_PARTS = re.compile(r"^([A-Za-z]+)/(.*)$")
_LEADING_TICKET = re.compile(r"^([A-Za-z]+-[0-9]+)(?=-|$)-?")

_CONVENTIONAL_SUBJECT = re.compile(
    rf"^(?P<prefix>(?::\w+:|[^\x00-\x7f]+)\s+)?(?P<type>{_TYPE_ALTERNATION})"
    r"(?P<scope>\([^)]*\))?(?P<bang>!)?:\s*(?P<description>.+)$",
    re.IGNORECASE,
)


class ArtifactValidationError(ValueError):
    """Raised when a normalised artifact does not satisfy the active grammar."""

    def __init__(self, kind: str, value: str, pattern: str, reason: str | None = None) -> None:
        self.kind = kind
        self.value = value
        self.pattern = pattern
        message = reason or f"{kind.capitalize()} {value!r} does not match pattern: {pattern}"
        super().__init__(message)


# ------------------------------------------------------------------ tickets
def parse_ticket(value: str | None) -> Optional[str]:
    """Return the upper-cased ticket when ``value`` is ticket-shaped."""
    if not value:
        return None
    candidate = value.strip().upper()
    return candidate if _TICKET.match(candidate) else None


# ------------------------------------------------------------------ markup
def strip_reasoning(raw: str | None) -> str:
    """Drop model reasoning blocks, including text before a dangling closing tag."""
    text = _REASONING_BLOCK.sub("", (raw or "").strip())
    dangling = list(_DANGLING_REASONING_CLOSE.finditer(text))
    if dangling:
        text = text[dangling[-1].end() :]
    return text.strip()


def strip_markup(raw: str | None) -> str:
    """Remove reasoning blocks, tags, code fences and one layer of quotes."""
    text = strip_reasoning(raw)

    without_tags = _TAGGED_REGION.sub("", text)
    if without_tags.strip() or not _TAGGED_REGION.search(text):
        text = without_tags
    else:
        text = _TAGGED_REGION.sub(lambda match: match.group(2), text)

    fences = _FENCED_BLOCK.findall(text)
    if fences:
        without_fences = _FENCED_BLOCK.sub("", text)
        text = without_fences if without_fences.strip() else fences[-1]
    text = _INLINE_CODE.sub(r"\1", text).strip()

    if len(text) >= 2 and text[0] in _QUOTES and text[-1] in _QUOTES:
        text = text[1:-1].strip()
    return text


def _non_blank_lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


# ------------------------------------------------------------------ branches
def _select_branch_line(lines: list[str]) -> str:
    for line in lines:
        if _BRANCH_GRAMMAR_LINE.match(line):
            return line
    for line in lines:
        if _BRANCH_LIKE_LINE.match(line):
            return line
    return lines[-1] if lines else ""


def _clean_description(value: str) -> str:
    return collapse_hyphens(re.sub(r"[^a-z0-9-]", "-", value.lower()))


def normalize_branch_name(raw: str | None, *, ticket: str | None = None) -> str:
    """Coerce raw model output into ``type/TICKET-description`` form.

    A supplied ``ticket`` replaces a missing or different leading ticket
    segment.  Output without a ``type/`` prefix is only case-folded and left for
    validation to reject.
    """
    line = _select_branch_line(_non_blank_lines(strip_markup(raw)))
    line = re.sub(r"\s+", "-", line.strip())
    wanted = parse_ticket(ticket)

    parts = _BRANCH_PARTS.match(line)
    if not parts:
        return collapse_hyphens(re.sub(r"[^a-z0-9/-]", "-", line.lower()))

    branch_type = parts.group(1).lower()
    rest = parts.group(2)

    found_ticket: Optional[str] = None
    leading = _LEADING_TICKET.match(rest)
    if leading:
        candidate = leading.group(1)
        if _TICKET.match(candidate) or (wanted and candidate.upper() == wanted):
            found_ticket = candidate.upper()
            rest = rest[leading.end() :]

    description = _clean_description(rest)
    ticket_segment = wanted or found_ticket
    if ticket_segment and description:
        return f"{branch_type}/{ticket_segment}-{description}"
    if ticket_segment:
        return f"{branch_type}/{ticket_segment}"
    return f"{branch_type}/{description}"


def build_branch_name(
    branch_type: str,
    description: str,
    *,
    ticket: str | None = None,
    convention: str = "{type}/{ticket}-{description}",
    username: str = "",
) -> str:
    """Render a branch name from a naming convention and normalise it."""
    values = {
        "type": branch_type.strip().lower(),
        "ticket": parse_ticket(ticket) or "",
        "description": slugify(description),
        "username": slugify(username, fallback="user") if username else "",
        "date": date.today().strftime("%Y%m%d"),
    }
    rendered = convention
    for key, value in values.items():
        rendered = rendered.replace("{" + key + "}", value)
    rendered = re.sub(r"/-+", "/", rendered)
    return normalize_branch_name(rendered, ticket=ticket)


def default_branch_pattern(types: Iterable[str], *, require_ticket: bool = False) -> str:
    """Return the grammar used when the repository declares no branch pattern."""
    alternation = "|".join(re.escape(value) for value in types if value) or "[a-z]+"
    ticket = r"[A-Z]+-[0-9]+-" if require_ticket else r"(?:[A-Z]+-[0-9]+-)?"
    return rf"^({alternation})/{ticket}[a-z0-9]+(?:-[a-z0-9]+)*$"


def validate_branch_name(
    name: str,
    rules: RuleSet,
    *,
    types: Iterable[str] | None = None,
    require_ticket: bool | None = None,
) -> str:
    """Return ``name`` unchanged or raise ``ArtifactValidationError``."""
    if is_protected_branch(name):
        protected = ", ".join(sorted(PROTECTED_BRANCHES))
        raise ArtifactValidationError(
            "branch",
            name,
            f"not one of: {protected}",
            reason=f"Cannot use protected branch: {name}",
        )

    if rules.branch_regex is not None and rules.branch_pattern is not None:
        if not rules.branch_regex.search(name):
            raise ArtifactValidationError("branch", name, rules.branch_pattern)
        return name

    allowed = tuple(rules.allowed_types) or tuple(types or ()) or DEFAULT_BRANCH_TYPES
    needs_ticket = rules.branch_requires_ticket if require_ticket is None else require_ticket
    pattern = default_branch_pattern(allowed, require_ticket=needs_ticket)
    if not re.match(pattern, name):
        raise ArtifactValidationError("branch", name, pattern)
    return name


# ------------------------------------------------------------------ commits
def normalize_commit_message(raw: str | None, *, ticket: str | None = None) -> str:
    """Clean a generated commit message and move the ticket into its scope.

    Messages without a recognisable ``type(scope): description`` subject are
    returned as cleaned text; they are rejected later by validation.
    """
    text = strip_markup(raw)
    lines = [line.rstrip() for line in text.splitlines()]

    subject = None
    for index, line in enumerate(lines):
        subject = _CONVENTIONAL_SUBJECT.match(line.strip())
        if subject:
            lines = lines[index:]
            break
    if subject is None:
        return "\n".join(lines).strip()

    wanted = parse_ticket(ticket)
    scope = subject.group("scope") or ""
    if wanted:
        scope = f"({wanted})"
    prefix = subject.group("prefix") or ""
    if prefix:
        prefix = prefix.strip() + " "
    header = (
        f"{prefix}{subject.group('type').lower()}{scope}{subject.group('bang') or ''}: "
        f"{subject.group('description').strip()}"
    )

    body = "\n".join(lines[1:]).strip()
    if body:
        return f"{header}\n\n{body}"
    return header


def validate_commit_message(
    message: str,
    rules: RuleSet,
    *,
    default_pattern: str | None = DEFAULT_COMMIT_PATTERN,
) -> str:
    """Check the subject line against the repository or default grammar."""
    subject = message.split("\n", 1)[0].strip()
    if not subject:
        raise ArtifactValidationError(
            "commit message", message, rules.commit_pattern or default_pattern or "", reason="Commit message is empty"
        )

    if rules.commit_regex is not None and rules.commit_pattern is not None:
        if not rules.commit_regex.search(subject):
            raise ArtifactValidationError("commit message", subject, rules.commit_pattern)
        return message

    if default_pattern:
        regex: Pattern[str] = re.compile(default_pattern)
        if not regex.match(subject):
            raise ArtifactValidationError("commit message", subject, default_pattern)
    return message
