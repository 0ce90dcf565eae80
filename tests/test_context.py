from __future__ import annotations

from pathlib import Path

from glai.context import (
    SAMPLE_CONTEXT_TEMPLATE,
    load_business_context,
    parse_business_context,
    write_sample_context,
)

CONTEXT = """# Billing Service

## Project Description
Invoices and payment reconciliation.

## Domain Terms
- **Ledger**: Append-only record of balance changes
- Dunning: Reminder process for unpaid invoices

## Security Requirements
- Never log card numbers
- All endpoints require auth

### Custom Rules
Money is always Decimal
"""


def test_parse_business_context_sections() -> None:
    context = parse_business_context(CONTEXT)

    assert context.project_description == "Invoices and payment reconciliation."
    assert context.domain_terms == {
        "Ledger": "Append-only record of balance changes",
        "Dunning": "Reminder process for unpaid invoices",
    }
    assert context.security_requirements == ["Never log card numbers", "All endpoints require auth"]
    assert context.custom_rules == ["Money is always Decimal"]
    assert context.architecture is None


def test_to_prompt_only_renders_present_sections() -> None:
    prompt = parse_business_context(CONTEXT).to_prompt()

    assert prompt.startswith("Project: Invoices and payment reconciliation.")
    assert "Domain Terms:\n- Ledger: Append-only record of balance changes" in prompt
    assert "Custom Rules:\n- Money is always Decimal" in prompt
    assert "Architecture" not in prompt
    assert "Performance" not in prompt


def test_load_business_context_handles_missing_and_empty(tmp_path: Path) -> None:
    assert load_business_context(tmp_path) is None

    (tmp_path / "empty.md").write_text("# Nothing here\n", encoding="utf-8")
    assert load_business_context(tmp_path, "empty.md") is None

    (tmp_path / ".gitlab-ai-context.md").write_text(CONTEXT, encoding="utf-8")
    assert "Never log card numbers" in (load_business_context(tmp_path) or "")


def test_write_sample_context_does_not_clobber(tmp_path: Path) -> None:
    path = tmp_path / "docs" / "context.md"

    assert write_sample_context(path) is True
    assert path.read_text(encoding="utf-8") == SAMPLE_CONTEXT_TEMPLATE

    path.write_text("custom", encoding="utf-8")
    assert write_sample_context(path) is False
    assert path.read_text(encoding="utf-8") == "custom"
    assert write_sample_context(path, overwrite=True) is True
