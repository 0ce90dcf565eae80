"""Review result parsing, grouping and rendering."""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

from .artifacts import strip_reasoning
from .models.llm_client import LLMClient, LLMResponseFormatError, parse_json_payload
from .prompts import render_review_request, render_review_system_prompt
from .tools.gitlab import FileChange

__all__ = [
    "CATEGORIES",
    "INLINE_SEVERITIES",
    "NEUTRAL_SCORE",
    "ReviewComment",
    "ReviewResult",
    "SEVERITIES",
    "format_inline_comment",
    "format_summary_note",
    "group_by_file",
    "parse_review",
    "render_review_text",
    "request_review",
    "review_diff_from_changes",
    "select_inline_comments",
]

LOGGER = logging.getLogger(__name__)

SEVERITIES = ("error", "warning", "info", "suggestion")
CATEGORIES = ("syntax", "logic", "performance", "security", "style", "business")
INLINE_SEVERITIES = ("error", "warning")
NEUTRAL_SCORE = 70
SUMMARY_TABLE_ROWS = 10

SEVERITY_ICONS = {"error": "❌", "warning": "⚠️", "info": "ℹ️", "suggestion": "💡"}


@dataclass(slots=True)
class ReviewComment:
    file: str
    line: int
    message: str
    severity: str = "info"
    category: str = "logic"
    suggestion: Optional[str] = None


@dataclass(slots=True)
class ReviewResult:
    """Validated review; ``degraded`` marks a fallback built from unparsable output."""

    summary: str
    comments: List[ReviewComment] = field(default_factory=list)
    score: int = NEUTRAL_SCORE
    recommendations: List[str] = field(default_factory=list)
    degraded: bool = False


_RESULT_ADAPTER: TypeAdapter[ReviewResult] = TypeAdapter(ReviewResult)


def _coerce_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if isinstance(value, float) and not math.isfinite(value):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    return default


def _coerce_comment(item: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(item, Mapping):
        return None
    message = str(item.get("message") or "").strip()
    if not message:
        return None
    severity = str(item.get("severity") or "").strip().lower()
    category = str(item.get("category") or "").strip().lower()
    suggestion = item.get("suggestion")
    return {
        "file": str(item.get("file") or item.get("path") or "").strip(),
        "line": max(_coerce_int(item.get("line"), 0), 0),
        "message": message,
        "severity": severity if severity in SEVERITIES else "info",
        "category": category if category in CATEGORIES else "logic",
        "suggestion": str(suggestion).strip() if suggestion else None,
    }


def _coerce_payload(data: Mapping[str, Any]) -> Dict[str, Any]:
    comments = data.get("comments")
    recommendations = data.get("recommendations")
    return {
        "summary": str(data.get("summary") or "").strip(),
        "comments": [
            comment
            for comment in (_coerce_comment(item) for item in (comments if isinstance(comments, list) else []))
            if comment is not None
        ],
        "score": min(max(_coerce_int(data.get("score"), NEUTRAL_SCORE), 0), 100),
        "recommendations": [str(item) for item in recommendations] if isinstance(recommendations, list) else [],
    }


def parse_review(raw: str) -> ReviewResult:
    """Validate raw review output, degrading to a summary-only result on failure."""
    text = strip_reasoning(raw)
    try:
        data = parse_json_payload(text)
        if not isinstance(data, Mapping):
            raise LLMResponseFormatError("Review payload is not a JSON object.")
        return _RESULT_ADAPTER.validate_python(_coerce_payload(data))
    except (LLMResponseFormatError, ValidationError) as error:
        LOGGER.warning("Review output could not be parsed, using neutral score: %s", error)
        return ReviewResult(summary=text or raw, comments=[], score=NEUTRAL_SCORE, degraded=True)


def request_review(
    llm: LLMClient,
    diff: str,
    *,
    mode: str = "comprehensive",
    business_context: Optional[str] = None,
) -> ReviewResult:
    """Ask the model for a review of ``diff`` and parse the answer."""
    content = llm.ask(
        render_review_request(diff),
        system_prompt=render_review_system_prompt(mode, business_context),
        max_tokens=4000,
        temperature=0.2,
    )
    return parse_review(content)


def review_diff_from_changes(changes: Iterable[FileChange]) -> str:
    return "\n\n".join(f"--- a/{change.old_path}\n+++ b/{change.new_path}\n{change.diff}" for change in changes)


# ------------------------------------------------------------------ selection
def group_by_file(comments: Iterable[ReviewComment]) -> "OrderedDict[str, List[ReviewComment]]":
    grouped: "OrderedDict[str, List[ReviewComment]]" = OrderedDict()
    for comment in comments:
        grouped.setdefault(comment.file or "(general)", []).append(comment)
    return grouped


def select_inline_comments(
    result: ReviewResult,
    *,
    severities: Sequence[str] = INLINE_SEVERITIES,
    limit: int = 5,
) -> List[ReviewComment]:
    """Comments eligible for inline posting: anchored, high severity, capped."""
    eligible = [
        comment
        for comment in result.comments
        if comment.severity in severities and comment.file and comment.line > 0
    ]
    return eligible[: max(limit, 0)]


# ------------------------------------------------------------------ rendering
def format_inline_comment(comment: ReviewComment) -> str:
    icon = SEVERITY_ICONS.get(comment.severity, "•")
    body = f"{icon} **[{comment.category.upper()}]** {comment.message}"
    if comment.suggestion:
        body += f"\n\n💡 **Suggestion:** {comment.suggestion}"
    return body


def _table_cell(text: str, limit: int = 50) -> str:
    flattened = " ".join(text.split()).replace("|", "\\|")
    return flattened if len(flattened) <= limit else f"{flattened[:limit]}..."


def format_summary_note(result: ReviewResult) -> str:
    """Markdown body for the aggregate merge request note."""
    lines = ["## 🤖 AI Code Review", "", f"**Score: {result.score}/100**", "", result.summary]
    if result.comments:
        lines.extend(
            [
                "",
                f"### Issues Found: {len(result.comments)}",
                "",
                "| Severity | File | Line | Issue |",
                "|----------|------|------|-------|",
            ]
        )
        for comment in result.comments[:SUMMARY_TABLE_ROWS]:
            lines.append(
                f"| {comment.severity} | {comment.file} | {comment.line} | {_table_cell(comment.message)} |"
            )
        remaining = len(result.comments) - SUMMARY_TABLE_ROWS
        if remaining > 0:
            lines.extend(["", f"*...and {remaining} more*"])
    if result.recommendations:
        lines.extend(["", "### Recommendations", *(f"- {item}" for item in result.recommendations)])
    lines.extend(["", "---", "*This review was generated by the GitLab AI workflow assistant*"])
    return "\n".join(lines)


def render_review_text(result: ReviewResult) -> str:
    """Plain-text rendering for terminal output, grouped by file."""
    lines = [f"Score: {result.score}/100", "", result.summary]
    for path, comments in group_by_file(result.comments).items():
        lines.extend(["", path])
        for comment in comments:
            icon = SEVERITY_ICONS.get(comment.severity, "•")
            lines.append(f"  {icon} line {comment.line} [{comment.category}] {comment.message}")
            if comment.suggestion:
                lines.append(f"      suggestion: {comment.suggestion}")
    if result.recommendations:
        lines.extend(["", "Recommendations:", *(f"- {item}" for item in result.recommendations)])
    return "\n".join(lines)
