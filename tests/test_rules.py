from __future__ import annotations

import textwrap
from pathlib import Path

from glai.policy.rules import (
    CONVENTIONAL_BRANCH_PATTERN,
    CONVENTIONAL_BRANCH_TYPES,
    PROTECTED_BRANCHES,
    RuleSet,
    extract_rules,
    is_protected_branch,
    load_rules,
    requires_ticket,
)

SHELL_CHECK_CONFIG = textwrap.dedent(
    r"""
    stages:
      - git-check
      - test

    branch-name:
      stage: git-check
      script:
        - |
          if [[ ! "$CI_COMMIT_BRANCH" =~ /^(feature|bugfix|hotfix)\/[A-Z]+-[0-9]+-[a-z0-9-]+$/ ]]; then
            echo "bad branch"; exit 1
          fi
        - git log -1 --pretty=%s | grep -E "^(feat|fix|chore)\([A-Z]+-[0-9]+\): .+"
    """
)


def test_config_without_check_stage_yields_empty_rules() -> None:
    text = "stages:\n  - build\nbuild:\n  script: make feature fix\n"
    rules = extract_rules(text)

    assert rules == RuleSet()
    assert rules.has_rules is False
    assert rules.branch_regex is None and rules.commit_regex is None
    assert rules.allowed_types == ()


def test_shell_comparison_and_grep_patterns_are_extracted() -> None:
    rules = extract_rules(SHELL_CHECK_CONFIG)

    assert rules.has_rules is True
    assert rules.branch_pattern == r"^(feature|bugfix|hotfix)\/[A-Z]+-[0-9]+-[a-z0-9-]+$"
    assert rules.branch_regex is not None
    assert rules.branch_regex.search("feature/ABC-12-add-login")
    assert rules.commit_pattern == r"^(feat|fix|chore)\([A-Z]+-[0-9]+\): .+"
    assert rules.commit_regex is not None
    assert rules.commit_regex.search("fix(ABC-12): handle timeout")
    assert rules.allowed_types == ("feature", "bugfix", "hotfix")
    assert rules.branch_requires_ticket is True
    assert rules.commit_requires_ticket is True


def test_explicit_pattern_key_wins_over_shell_comparison() -> None:
    text = textwrap.dedent(
        """
        git_check:
          variables:
            BRANCH_PATTERN: "^(feat|fix)/[a-z-]+$"
          script:
            - '[[ "$CI_COMMIT_BRANCH" =~ /^main$/ ]]'
        """
    )
    rules = extract_rules(text)

    assert rules.branch_pattern == "^(feat|fix)/[a-z-]+$"
    assert rules.allowed_types == ("feat", "fix")
    assert rules.branch_requires_ticket is False


def test_uncompilable_pattern_falls_through_to_next_strategy() -> None:
    text = textwrap.dedent(
        """
        git-check:
          variables:
            BRANCH_REGEX: "^(feature|fix/[a-z"
          script:
            - echo conventional naming
        """
    )
    rules = extract_rules(text)

    assert rules.branch_pattern == CONVENTIONAL_BRANCH_PATTERN
    assert rules.branch_regex is not None
    assert rules.branch_regex.search("fix/timeout")


def test_conventional_fallback_uses_default_branch_types() -> None:
    rules = extract_rules("git-check:\n  script: echo conventional\n")

    assert rules.branch_pattern == CONVENTIONAL_BRANCH_PATTERN
    assert rules.allowed_types == CONVENTIONAL_BRANCH_TYPES
    assert rules.commit_pattern is None
    assert rules.commit_regex is None


def test_named_commit_convention_without_pattern() -> None:
    rules = extract_rules("git-check:\n  script: npx commitlint --config conventional-commit\n")

    assert rules.commit_pattern is not None
    assert rules.commit_regex is not None
    assert rules.commit_regex.search("docs: update readme")
    assert rules.commit_requires_ticket is False


def test_explicit_branch_types_exclude_protected_names() -> None:
    text = textwrap.dedent(
        """
        git-check:
          variables:
            ALLOWED_BRANCHES: feature, hotfix, main, develop
        """
    )
    rules = extract_rules(text)

    assert rules.allowed_types == ("feature", "hotfix")
    assert not set(rules.allowed_types) & PROTECTED_BRANCHES


def test_js_named_groups_are_translated() -> None:
    text = 'git-check:\n  variables:\n    BRANCH_MATCH: "^(?<type>feature|fix)/.+$"\n'
    rules = extract_rules(text)

    assert rules.branch_regex is not None
    found = rules.branch_regex.search("feature/x")
    assert found is not None and found.group("type") == "feature"


def test_requires_ticket_heuristic() -> None:
    assert requires_ticket(r"^feature/[A-Z]+-[0-9]+-.+$")
    assert requires_ticket(r"^feature/[A-Z]{2,}-\d+")
    assert requires_ticket("ticket-required")
    assert not requires_ticket(r"^(feat|fix)/[a-z-]+$")
    assert not requires_ticket(None)


def test_is_protected_branch_is_case_insensitive() -> None:
    assert is_protected_branch("main")
    assert is_protected_branch("Develop")
    assert not is_protected_branch("feature/main-menu")
    assert not is_protected_branch(None)


def test_load_rules_tolerates_missing_and_binary_files(tmp_path: Path) -> None:
    assert load_rules(tmp_path) == RuleSet()

    (tmp_path / ".gitlab-ci.yml").write_bytes(b"\xff\xfe\x00git-check")
    assert load_rules(tmp_path) == RuleSet()


def test_load_rules_reads_repository_config(tmp_path: Path) -> None:
    (tmp_path / ".gitlab-ci.yml").write_text(SHELL_CHECK_CONFIG, encoding="utf-8")

    rules = load_rules(tmp_path)

    assert rules.has_rules is True
    assert rules.allowed_types == ("feature", "bugfix", "hotfix")
