"""Repository naming policy discovered from CI configuration."""

from .rules import (
    CI_CONFIG_FILENAME,
    PROTECTED_BRANCHES,
    RuleSet,
    extract_rules,
    is_protected_branch,
    load_rules,
    requires_ticket,
)

__all__ = [
    "CI_CONFIG_FILENAME",
    "PROTECTED_BRANCHES",
    "RuleSet",
    "extract_rules",
    "is_protected_branch",
    "load_rules",
    "requires_ticket",
]
