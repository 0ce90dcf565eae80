"""Merge request target selection with a deterministic fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from .artifacts import strip_reasoning
from .models.llm_client import LLMClient, LLMClientError, parse_json_payload
from .prompts import TARGET_BRANCH_SYSTEM_PROMPT, render_target_branch_request

__all__ = [
    "CONFIDENCE_LEVELS",
    "FALLBACK_ORDER",
    "TargetBranchDecision",
    "fallback_target_branch",
    "select_target_branch",
]

LOGGER = logging.getLogger(__name__)

CONFIDENCE_LEVELS = ("high", "medium", "low")
FALLBACK_ORDER = ("develop", "development", "dev", "main", "master")


@dataclass(slots=True, frozen=True)
class TargetBranchDecision:
    target_branch: str
    confidence: str
    reasoning: str = ""

    @property
    def needs_confirmation(self) -> bool:
        return self.confidence == "low"


def fallback_target_branch(available: Iterable[str], default_branch: str) -> TargetBranchDecision:
    """Pick the first well-known integration branch that exists, else the default."""
    names = set(available)
    for candidate in FALLBACK_ORDER:
        if candidate in names:
            return TargetBranchDecision(candidate, "medium", f"Fallback: using {candidate} branch")
    return TargetBranchDecision(default_branch, "low", "Fallback: using default branch")


def _decision_from_payload(payload: object, available: Sequence[str]) -> Optional[TargetBranchDecision]:
    if not isinstance(payload, Mapping):
        return None
    target = payload.get("targetBranch") or payload.get("target_branch")
    if not isinstance(target, str) or target.strip() not in available:
        return None
    confidence = str(payload.get("confidence") or "").strip().lower()
    if confidence not in CONFIDENCE_LEVELS:
        confidence = "medium"
    return TargetBranchDecision(target.strip(), confidence, str(payload.get("reasoning") or "").strip())


def select_target_branch(
    llm: LLMClient,
    current_branch: str,
    available: Sequence[str],
    default_branch: str,
    *,
    recent_targets: Sequence[str] = (),
    commit_messages: Sequence[str] = (),
    ticket: Optional[str] = None,
) -> TargetBranchDecision:
    """Ask the model for a target branch; never returns a branch outside ``available``
    except for the configured default on the low-confidence fallback."""
    candidates = [name for name in available if name != current_branch]
    prompt = render_target_branch_request(
        current_branch,
        candidates,
        default_branch,
        recent_targets=recent_targets,
        commit_messages=commit_messages,
        ticket=ticket,
    )
    try:
        raw = llm.ask(prompt, system_prompt=TARGET_BRANCH_SYSTEM_PROMPT, max_tokens=300, temperature=0.1)
        decision = _decision_from_payload(parse_json_payload(strip_reasoning(raw)), candidates)
    except LLMClientError as error:
        LOGGER.warning("Target branch selection failed, using fallback: %s", error)
        return fallback_target_branch(candidates, default_branch)

    if decision is None:
        LOGGER.warning("Model suggested an unknown target branch; using fallback order.")
        return fallback_target_branch(candidates, default_branch)
    return decision
