from __future__ import annotations

import json

import pytest

from glai.review import (
    NEUTRAL_SCORE,
    ReviewComment,
    ReviewResult,
    format_inline_comment,
    format_summary_note,
    group_by_file,
    parse_review,
    render_review_text,
    request_review,
    review_diff_from_changes,
    select_inline_comments,
)
from glai.tools.gitlab import FileChange

from conftest import ScriptedLLM


def _payload(**overrides: object) -> str:
    data = {
        "summary": "Solid change with one bug.",
        "comments": [
            {"file": "app.py", "line": 3, "severity": "error", "category": "logic", "message": "Off by one."},
            {"file": "app.py", "line": 9, "severity": "CRITICAL", "category": "vibes", "message": "Odd naming."},
        ],
        "score": 82,
        "recommendations": ["Add a regression test"],
    }
    data.update(overrides)
    return json.dumps(data)


def test_parse_review_coerces_unknown_values() -> None:
    result = parse_review(_payload())

    assert result.degraded is False
    assert result.score == 82
    assert [comment.severity for comment in result.comments] == ["error", "info"]
    assert result.comments[1].category == "logic"
    assert result.recommendations == ["Add a regression test"]


def test_parse_review_clamps_score_and_drops_empty_comments() -> None:
    raw = _payload(score=140, comments=[{"file": "a.py", "line": "7", "message": "  "}, {"message": "General"}])

    result = parse_review(f"<think>hmm</think>```json\n{raw}\n```")

    assert result.score == 100
    assert len(result.comments) == 1
    assert result.comments[0].file == ""
    assert result.comments[0].line == 0


def test_unparsable_review_degrades_to_neutral_score() -> None:
    result = parse_review("Looks fine to me overall.")

    assert result == ReviewResult(summary="Looks fine to me overall.", comments=[], score=NEUTRAL_SCORE, degraded=True)


def test_non_object_payload_degrades() -> None:
    result = parse_review("[1, 2, 3]")

    assert result.degraded is True
    assert result.score == 70


def test_request_review_includes_business_context_for_business_modes() -> None:
    llm = ScriptedLLM([_payload(), _payload()])

    request_review(llm, "diff --git a/x b/x", mode="business", business_context="Project: Billing")
    request_review(llm, "diff --git a/x b/x", mode="syntax", business_context="Project: Billing")

    assert "Business Context:\nProject: Billing" in llm.calls[0][0]
    assert "Business Context" not in llm.calls[1][0]
    assert "diff --git a/x b/x" in llm.calls[0][1]


def test_select_inline_comments_filters_and_caps() -> None:
    comments = [ReviewComment("a.py", line, f"issue {line}", severity="warning") for line in range(1, 9)]
    comments.insert(0, ReviewComment("a.py", 4, "style nit", severity="suggestion"))
    comments.append(ReviewComment("", 0, "general", severity="error"))
    result = ReviewResult(summary="s", comments=comments)

    selected = select_inline_comments(result)

    assert len(selected) == 5
    assert all(comment.severity == "warning" for comment in selected)
    assert select_inline_comments(result, severities=("suggestion",)) == [comments[0]]


def test_group_by_file_keeps_order_and_general_bucket() -> None:
    comments = [
        ReviewComment("b.py", 1, "x"),
        ReviewComment("", 0, "general"),
        ReviewComment("a.py", 2, "y"),
        ReviewComment("b.py", 5, "z"),
    ]

    grouped = group_by_file(comments)

    assert list(grouped) == ["b.py", "(general)", "a.py"]
    assert [comment.line for comment in grouped["b.py"]] == [1, 5]


def test_summary_note_lists_issues_and_overflow() -> None:
    comments = [ReviewComment("a.py", line, f"issue | {line}", severity="warning") for line in range(1, 13)]
    note = format_summary_note(ReviewResult(summary="Summary text", comments=comments, score=55))

    assert note.startswith("## 🤖 AI Code Review")
    assert "**Score: 55/100**" in note
    assert "### Issues Found: 12" in note
    assert "issue \\| 1" in note
    assert "*...and 2 more*" in note


def test_inline_comment_format_includes_suggestion() -> None:
    body = format_inline_comment(
        ReviewComment("a.py", 3, "Possible None dereference", severity="error", category="logic", suggestion="Guard it")
    )

    assert body.startswith("❌ **[LOGIC]** Possible None dereference")
    assert "💡 **Suggestion:** Guard it" in body


def test_render_review_text_and_diff_helpers() -> None:
    result = ReviewResult(summary="ok", comments=[ReviewComment("a.py", 2, "nit", suggestion="rename")], score=90)
    text = render_review_text(result)

    assert "Score: 90/100" in text
    assert "a.py" in text and "suggestion: rename" in text

    diff = review_diff_from_changes([FileChange("old.py", "new.py", "@@ -1 +1 @@\n-a\n+b\n", renamed_file=True)])
    assert diff.startswith("--- a/old.py\n+++ b/new.py\n@@")


@pytest.mark.parametrize("number", ["1e999", "-1e999", "Infinity", "NaN"])
def test_non_finite_numbers_fall_back_to_defaults(number: str) -> None:
    raw = (
        '{"summary": "ok", "score": %s, '
        '"comments": [{"file": "a.py", "line": %s, "severity": "error", "message": "Bad."}]}' % (number, number)
    )

    result = parse_review(raw)

    assert result.degraded is False
    assert result.score == NEUTRAL_SCORE
    assert result.comments[0].line == 0
    assert parse_review('{"summary": "ok", "score": "inf"}').score == NEUTRAL_SCORE
