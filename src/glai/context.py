"""Business context file parsing for review prompts."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

__all__ = [
    "BusinessContext",
    "DEFAULT_CONTEXT_FILE",
    "SAMPLE_CONTEXT_TEMPLATE",
    "load_business_context",
    "parse_business_context",
    "write_sample_context",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_CONTEXT_FILE = ".gitlab-ai-context.md"

SAMPLE_CONTEXT_TEMPLATE = """# Project Context for AI Code Review

## Project Description
Describe your project, its purpose, and main functionality here.

## Architecture
Describe the overall architecture, main components, and how they interact.

## Coding Standards
- List your coding standards and conventions
- Naming conventions
- File organization rules

## Domain Terms
- **Term1**: Definition of term 1
- **Term2**: Definition of term 2

## Security Requirements
- List security requirements
- Authentication/authorization rules
- Data handling requirements

## Performance Requirements
- List performance requirements
- Response time expectations
- Resource usage limits

## Custom Rules
- Any custom rules for code review
- Project-specific patterns to follow
- Anti-patterns to avoid
"""

_HEADER = re.compile(r"^#{1,3}\s+(.+?)\s*$")
_TERM = re.compile(r"^[-*]?\s*\**(.+?)\**\s*:\s*(.+)$")
_LIST_ITEM = re.compile(r"^[-*]\s+(.+)$")


@dataclass(slots=True)
class BusinessContext:
    project_description: Optional[str] = None
    architecture: Optional[str] = None
    coding_standards: Optional[str] = None
    domain_terms: Dict[str, str] = field(default_factory=dict)
    security_requirements: List[str] = field(default_factory=list)
    performance_requirements: List[str] = field(default_factory=list)
    custom_rules: List[str] = field(default_factory=list)

    def to_prompt(self) -> str:
        """Render the context as plain text for inclusion in a review prompt."""
        parts: List[str] = []
        if self.project_description:
            parts.append(f"Project: {self.project_description}")
        if self.architecture:
            parts.append(f"Architecture: {self.architecture}")
        if self.coding_standards:
            parts.append(f"Coding Standards: {self.coding_standards}")
        if self.domain_terms:
            terms = "\n".join(f"- {term}: {definition}" for term, definition in self.domain_terms.items())
            parts.append(f"Domain Terms:\n{terms}")
        for title, items in (
            ("Security Requirements", self.security_requirements),
            ("Performance Requirements", self.performance_requirements),
            ("Custom Rules", self.custom_rules),
        ):
            if items:
                parts.append(f"{title}:\n- " + "\n- ".join(items))
        return "\n\n".join(parts)


def _sections(content: str) -> Dict[str, str]:
    sections: Dict[str, str] = {}
    current: Optional[str] = None
    buffer: List[str] = []
    for line in content.splitlines():
        header = _HEADER.match(line)
        if header:
            if current:
                sections[current.lower()] = "\n".join(buffer).strip()
            current = header.group(1)
            buffer = []
        else:
            buffer.append(line)
    if current:
        sections[current.lower()] = "\n".join(buffer).strip()
    return sections


def _first(sections: Dict[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = sections.get(name)
        if value:
            return value
    return None


def _terms(content: Optional[str]) -> Dict[str, str]:
    terms: Dict[str, str] = {}
    for line in (content or "").splitlines():
        match = _TERM.match(line.strip())
        if match:
            terms[match.group(1).strip()] = match.group(2).strip()
    return terms


def _items(content: Optional[str]) -> List[str]:
    items: List[str] = []
    for line in (content or "").splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        match = _LIST_ITEM.match(stripped)
        items.append(match.group(1).strip() if match else stripped)
    return items


def parse_business_context(content: str) -> BusinessContext:
    """Parse a markdown context file organised into ``##`` sections."""
    sections = _sections(content)
    return BusinessContext(
        project_description=_first(sections, "project description", "description"),
        architecture=_first(sections, "architecture"),
        coding_standards=_first(sections, "coding standards", "style guide"),
        domain_terms=_terms(_first(sections, "domain terms", "glossary")),
        security_requirements=_items(_first(sections, "security requirements", "security")),
        performance_requirements=_items(_first(sections, "performance requirements", "performance")),
        custom_rules=_items(_first(sections, "custom rules", "rules")),
    )


def load_business_context(repo_root: Path | str, filename: str = DEFAULT_CONTEXT_FILE) -> Optional[str]:
    """Return prompt-ready context text, or ``None`` when no usable file exists."""
    path = Path(repo_root) / filename
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        LOGGER.debug("No business context loaded from %s: %s", path, error)
        return None
    text = parse_business_context(content).to_prompt()
    return text or None


def write_sample_context(path: Path, *, overwrite: bool = False) -> bool:
    """Write the sample context template; returns ``False`` if it already exists."""
    if path.exists() and not overwrite:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(SAMPLE_CONTEXT_TEMPLATE, encoding="utf-8")
    return True
