"""Workflow stage enumeration and forward ordering."""

from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    """Stages of a single assistant workflow run."""

    IDLE = "idle"
    RULE_EXTRACTION = "rule_extraction"
    BRANCH_ENSURED = "branch_ensured"
    STAGED = "staged"
    COMMIT_GENERATED = "commit_generated"
    COMMITTED = "committed"
    PUSHED = "pushed"
    PROJECT_RESOLVED = "project_resolved"
    MR_RESOLVED = "mr_resolved"
    CHANGES_AVAILABLE = "changes_available"
    REVIEWED = "reviewed"
    COMMENTS_POSTED = "comments_posted"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STAGES


STAGE_SEQUENCE = [
    Stage.IDLE,
    Stage.RULE_EXTRACTION,
    Stage.BRANCH_ENSURED,
    Stage.STAGED,
    Stage.COMMIT_GENERATED,
    Stage.COMMITTED,
    Stage.PUSHED,
    Stage.PROJECT_RESOLVED,
    Stage.MR_RESOLVED,
    Stage.CHANGES_AVAILABLE,
    Stage.REVIEWED,
    Stage.COMMENTS_POSTED,
    Stage.DONE,
]

TERMINAL_STAGES = frozenset({Stage.DONE, Stage.CANCELLED, Stage.FAILED})


def stage_index(stage: Stage) -> int:
    """Position of ``stage`` in the forward sequence; terminal failures sort last."""
    if stage in (Stage.CANCELLED, Stage.FAILED):
        return len(STAGE_SEQUENCE)
    return STAGE_SEQUENCE.index(stage)


__all__ = ["STAGE_SEQUENCE", "Stage", "TERMINAL_STAGES", "stage_index"]
