"""Naming rules discovered from a repository's CI configuration.

Repositories that enforce branch and commit conventions usually do so with a
dedicated "git-check" job in ``.gitlab-ci.yml``.  The job is free-form shell,
so the extractor does not try to understand it.  Instead it runs a short,
ordered list of matcher strategies over the raw text and keeps the first
pattern that both matches and compiles:

``BRANCH_STRATEGIES``
    Explicit ``pattern``/``regex``/``match`` key, then a ``=~ /.../``
    comparison, then a conventional-types fallback inferred from keywords.

``COMMIT_STRATEGIES``
    ``grep -E "..."`` argument, explicit key, ``=~ /.../`` comparison, then a
    named convention.  There is deliberately no keyword fallback for commits:
    an absent commit pattern is a legitimate outcome.

Partial matches are never merged across strategies, and a pattern that fails
to compile is treated as if the strategy found nothing.  Any failure to read
the configuration yields the empty ``RuleSet``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Pattern

__all__ = [
    "BRANCH_STRATEGIES",
    "CI_CONFIG_FILENAME",
    "COMMIT_STRATEGIES",
    "CONVENTIONAL_BRANCH_PATTERN",
    "CONVENTIONAL_BRANCH_TYPES",
    "CONVENTIONAL_COMMIT_PATTERN",
    "PROTECTED_BRANCHES",
    "RuleSet",
    "extract_rules",
    "is_protected_branch",
    "load_rules",
    "requires_ticket",
]

LOGGER = logging.getLogger(__name__)

CI_CONFIG_FILENAME = ".gitlab-ci.yml"

PROTECTED_BRANCHES: frozenset[str] = frozenset({"main", "master", "dev", "develop", "development"})

CHECK_STAGE_TOKENS = ("git-check", "git_check")

CONVENTIONAL_BRANCH_TYPES: tuple[str, ...] = (
    "feature",
    "feat",
    "fix",
    "bugfix",
    "hotfix",
    "chore",
    "docs",
    "refactor",
    "test",
)
CONVENTIONAL_BRANCH_PATTERN = r"^(feature|feat|fix|bugfix|hotfix|chore|docs|refactor|test)/[a-z0-9-]+$"
CONVENTIONAL_COMMIT_PATTERN = (
    r"^(feat|fix|docs|style|refactor|perf|test|chore|ci|build|revert)(\([a-z0-9-]+\))?!?:\s.+$"
)

_BRANCH_KEYWORDS = re.compile(
    r"\b(feature|bugfix|hotfix|release|fix|feat|chore|docs|refactor)\b",
    re.IGNORECASE,
)
_CONVENTION_HINTS = ("conventional", "feat", "fix")
_TICKET_FRAGMENT = re.compile(r"\[A-Z\].*(?:\[0-9\]|\\d)")
_JS_NAMED_GROUP = re.compile(r"\(\?<(?![=!])")


def is_protected_branch(name: str | None) -> bool:
    """Return ``True`` when ``name`` is one of the protected branches."""
    if not name:
        return False
    return name.strip().lower() in PROTECTED_BRANCHES


def requires_ticket(pattern: str | None) -> bool:
    """Best-effort guess whether ``pattern`` demands a ticket reference."""
    if not pattern:
        return False
    return bool(_TICKET_FRAGMENT.search(pattern)) or "ticket" in pattern.lower()


@dataclass(slots=True, frozen=True)
class RuleSet:
    """Branch and commit rules derived from a single CI configuration snapshot."""

    has_rules: bool = False
    branch_pattern: Optional[str] = None
    branch_regex: Optional[Pattern[str]] = None
    commit_pattern: Optional[str] = None
    commit_regex: Optional[Pattern[str]] = None
    allowed_types: tuple[str, ...] = field(default_factory=tuple)
    branch_requires_ticket: bool = False
    commit_requires_ticket: bool = False

    @property
    def requires_ticket(self) -> bool:
        return self.branch_requires_ticket or self.commit_requires_ticket

    def to_dict(self) -> Dict[str, Any]:
        """Return a serialisable view of the rules."""

        return {
            "has_rules": self.has_rules,
            "branch_pattern": self.branch_pattern,
            "commit_pattern": self.commit_pattern,
            "allowed_types": list(self.allowed_types),
            "branch_requires_ticket": self.branch_requires_ticket,
            "commit_requires_ticket": self.commit_requires_ticket,
        }


@dataclass(slots=True, frozen=True)
class _Candidate:
    """Pattern text proposed by one strategy, with the flags it compiles under."""

    pattern: str
    flags: int = 0


Strategy = Callable[[str], Optional[_Candidate]]


# ------------------------------------------------------------------ matchers
def _quoted_key(subject: str) -> Strategy:
    expression = re.compile(
        subject + r".*?(?:pattern|regex|match).*?['\"]([^'\"]+)['\"]",
        re.IGNORECASE,
    )

    def _match(text: str) -> Optional[_Candidate]:
        found = expression.search(text)
        return _Candidate(found.group(1)) if found else None

    _match.__name__ = f"{subject}_quoted_key"
    return _match


def _shell_comparison(prefix: str) -> Strategy:
    expression = re.compile(prefix + r".*?=~\s*/((?:\\/|[^/\n])+)/", re.IGNORECASE)

    def _match(text: str) -> Optional[_Candidate]:
        found = expression.search(text)
        return _Candidate(found.group(1)) if found else None

    _match.__name__ = f"{prefix}_shell_comparison"
    return _match


def _conventional_branch_fallback(text: str) -> Optional[_Candidate]:
    if any(hint in text for hint in _CONVENTION_HINTS):
        return _Candidate(CONVENTIONAL_BRANCH_PATTERN, re.IGNORECASE)
    return None


_GREP_EXTENDED = re.compile(r"grep\s+-[a-zA-Z]*E[a-zA-Z]*\s+[\"']([^\"']+)[\"']")


def _grep_extended(text: str) -> Optional[_Candidate]:
    found = _GREP_EXTENDED.search(text)
    return _Candidate(found.group(1)) if found else None


def _named_commit_convention(text: str) -> Optional[_Candidate]:
    lowered = text.lower()
    if "conventional-commit" in lowered or "conventionalcommit" in lowered:
        return _Candidate(CONVENTIONAL_COMMIT_PATTERN, re.IGNORECASE)
    return None


BRANCH_STRATEGIES: tuple[Strategy, ...] = (
    _quoted_key("branch"),
    _shell_comparison("branch"),
    _conventional_branch_fallback,
)

COMMIT_STRATEGIES: tuple[Strategy, ...] = (
    _grep_extended,
    _quoted_key("commit"),
    _shell_comparison(r"commit.*?message"),
    _named_commit_convention,
)


def _compile(candidate: _Candidate) -> Optional[Pattern[str]]:
    source = _JS_NAMED_GROUP.sub("(?P<", candidate.pattern.replace("\\/", "/"))
    try:
        return re.compile(source, candidate.flags)
    except re.error as error:
        LOGGER.debug("Discarding uncompilable pattern %r: %s", candidate.pattern, error)
        return None


def _first_match(
    text: str, strategies: Sequence[Strategy]
) -> tuple[Optional[str], Optional[Pattern[str]]]:
    for strategy in strategies:
        candidate = strategy(text)
        if candidate is None:
            continue
        regex = _compile(candidate)
        if regex is None:
            continue
        LOGGER.debug("Strategy %s produced pattern %r", strategy.__name__, candidate.pattern)
        return candidate.pattern, regex
    return None, None


# --------------------------------------------------------------- branch types
_EXPLICIT_TYPES = re.compile(
    r"(?:branch[_-]?types?|allowed[_-]?branch(?:es)?)\s*[:=]\s*(.+)",
    re.IGNORECASE,
)


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    seen: list[str] = []
    for value in values:
        lowered = value.strip().lower()
        if lowered and lowered not in seen and lowered not in PROTECTED_BRANCHES:
            seen.append(lowered)
    return tuple(seen)


def _explicit_types(text: str) -> tuple[str, ...]:
    found = _EXPLICIT_TYPES.search(text)
    if not found:
        return ()
    return _unique(re.findall(r"[A-Za-z][A-Za-z0-9_-]*", found.group(1)))


def _types_from_pattern(pattern: Optional[str]) -> tuple[str, ...]:
    if not pattern:
        return ()
    group = re.search(r"\((?:\?:)?([^()]+)\)", pattern)
    if not group:
        return ()
    options = group.group(1).split("|")
    if not all(re.fullmatch(r"[A-Za-z]+", option) for option in options):
        return ()
    return _unique(options)


def _keyword_types(text: str) -> tuple[str, ...]:
    return _unique(match.group(1) for match in _BRANCH_KEYWORDS.finditer(text))


def _allowed_types(text: str, branch_pattern: Optional[str]) -> tuple[str, ...]:
    for resolver in (
        lambda: _explicit_types(text),
        lambda: _types_from_pattern(branch_pattern),
        lambda: _keyword_types(text),
    ):
        types = resolver()
        if types:
            return types
    return ()


# -------------------------------------------------------------------- public
def extract_rules(text: str | None) -> RuleSet:
    """Derive a ``RuleSet`` from raw CI configuration text."""
    if not text or not any(token in text for token in CHECK_STAGE_TOKENS):
        return RuleSet()

    branch_pattern, branch_regex = _first_match(text, BRANCH_STRATEGIES)
    commit_pattern, commit_regex = _first_match(text, COMMIT_STRATEGIES)

    allowed = _allowed_types(text, branch_pattern)
    if not allowed and branch_pattern == CONVENTIONAL_BRANCH_PATTERN:
        allowed = CONVENTIONAL_BRANCH_TYPES

    rules = RuleSet(
        has_rules=True,
        branch_pattern=branch_pattern,
        branch_regex=branch_regex,
        commit_pattern=commit_pattern,
        commit_regex=commit_regex,
        allowed_types=allowed,
        branch_requires_ticket=requires_ticket(branch_pattern),
        commit_requires_ticket=requires_ticket(commit_pattern),
    )
    LOGGER.debug("Extracted naming rules: %s", rules.to_dict())
    return rules


def load_rules(repo_root: Path | str, filename: str = CI_CONFIG_FILENAME) -> RuleSet:
    """Read the CI configuration under ``repo_root`` and extract its rules.

    Missing or unreadable files produce the empty ``RuleSet``.
    """
    path = Path(repo_root) / filename
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        LOGGER.debug("No CI rules loaded from %s: %s", path, error)
        return RuleSet()
    return extract_rules(text)
