"""YAML configuration, validated into typed settings records."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .artifacts import DEFAULT_TICKET, parse_ticket
from .context import DEFAULT_CONTEXT_FILE

__all__ = [
    "BranchSettings",
    "CommitSettings",
    "ConfigurationError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "GitLabSettings",
    "LLMSettings",
    "MergeRequestSettings",
    "PathSettings",
    "ReviewSettings",
    "Settings",
    "WorkflowSettings",
    "copy_config_template",
    "load_settings",
    "validate_settings",
    "write_config",
]

DEFAULT_CONFIG_NAME = "glai.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "gitlab": {
        "url": "https://gitlab.com",
        "token": "",
        "timeout": 30,
    },
    "llm": {
        "provider": "openai",
        "api_url": "",
        "api_key": "",
        "model": "gpt-4o-mini",
        "timeout": 120,
        "max_tokens": 4096,
        "temperature": 0.3,
    },
    "branch": {
        "naming_convention": "{type}/{ticket}-{description}",
        "types": ["feature", "bugfix", "hotfix", "release", "chore", "docs", "refactor"],
    },
    "commit": {
        "convention": "conventional",
        "custom_template": "",
    },
    "review": {
        "mode": "comprehensive",
        "business_context_file": DEFAULT_CONTEXT_FILE,
        "max_inline_comments": 5,
        "inline_severities": ["error", "warning"],
    },
    "merge_request": {
        "target_branch": "",
        "template": "",
        "draft": True,
        "remove_source_branch": True,
    },
    "workflow": {
        "remote": "origin",
        "changes_poll_attempts": 5,
        "changes_poll_delay": 2.0,
        "default_ticket": DEFAULT_TICKET,
    },
    "paths": {
        "logs": ".glai/logs",
    },
}


class ConfigurationError(ValueError):
    """Raised when the configuration cannot be loaded or is not usable."""

    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid configuration")


class SettingsModel(BaseModel):
    """Base settings section that rejects unknown keys."""

    model_config = ConfigDict(extra="forbid")


class GitLabSettings(SettingsModel):
    url: str = "https://gitlab.com"
    token: str = ""
    timeout: int = Field(default=30, gt=0)


class LLMSettings(SettingsModel):
    provider: Literal["openai", "anthropic", "ollama", "custom"] = "openai"
    api_url: str = ""
    api_key: str = ""
    model: str = "gpt-4o-mini"
    timeout: float = Field(default=120.0, gt=0)
    max_tokens: int = Field(default=4096, gt=0)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)


class BranchSettings(SettingsModel):
    naming_convention: str = "{type}/{ticket}-{description}"
    types: List[str] = Field(default_factory=lambda: list(DEFAULT_CONFIG_TEMPLATE["branch"]["types"]))


class CommitSettings(SettingsModel):
    convention: Literal["conventional", "angular", "gitmoji", "custom"] = "conventional"
    custom_template: str = ""


class ReviewSettings(SettingsModel):
    mode: Literal["syntax", "logic", "business", "comprehensive"] = "comprehensive"
    business_context_file: str = DEFAULT_CONTEXT_FILE
    max_inline_comments: int = Field(default=5, ge=0)
    inline_severities: List[Literal["error", "warning", "info", "suggestion"]] = Field(
        default_factory=lambda: ["error", "warning"]
    )


class MergeRequestSettings(SettingsModel):
    target_branch: str = ""
    template: str = ""
    draft: bool = True
    remove_source_branch: bool = True


class WorkflowSettings(SettingsModel):
    remote: str = "origin"
    changes_poll_attempts: int = Field(default=5, ge=1)
    changes_poll_delay: float = Field(default=2.0, ge=0.0)
    default_ticket: str = DEFAULT_TICKET

    @field_validator("default_ticket")
    @classmethod
    def _ticket_shape(cls, value: str) -> str:
        ticket = parse_ticket(value)
        if ticket is None:
            raise ValueError("must look like ABC-123")
        return ticket


class PathSettings(SettingsModel):
    logs: str = ".glai/logs"


class Settings(SettingsModel):
    gitlab: GitLabSettings = Field(default_factory=GitLabSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    branch: BranchSettings = Field(default_factory=BranchSettings)
    commit: CommitSettings = Field(default_factory=CommitSettings)
    review: ReviewSettings = Field(default_factory=ReviewSettings)
    merge_request: MergeRequestSettings = Field(default_factory=MergeRequestSettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    paths: PathSettings = Field(default_factory=PathSettings)

    def logs_root(self, base: Path) -> Path:
        logs = Path(self.paths.logs)
        return logs if logs.is_absolute() else base / logs


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


def _format_validation_error(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{location or 'config'}: {item.get('msg', 'invalid value')}")
    return messages


def _apply_environment(settings: Settings, environ: Mapping[str, str]) -> Settings:
    """Fill secrets and the GitLab URL from the environment when unset."""
    if not settings.gitlab.token:
        settings.gitlab.token = environ.get("GITLAB_TOKEN", "")
    if environ.get("GITLAB_URL") and settings.gitlab.url == DEFAULT_CONFIG_TEMPLATE["gitlab"]["url"]:
        settings.gitlab.url = environ["GITLAB_URL"]
    if not settings.llm.api_key:
        provider_key = {"openai": "OPENAI_API_KEY", "anthropic": "ANTHROPIC_API_KEY"}.get(settings.llm.provider)
        settings.llm.api_key = environ.get("GLAI_LLM_API_KEY") or (environ.get(provider_key, "") if provider_key else "")
    return settings


def load_settings(config_path: Path, *, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Load and validate settings; a missing file yields the defaults."""
    env = os.environ if environ is None else environ
    if not config_path.exists():
        return _apply_environment(Settings(), env)

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigurationError([f"Failed to parse config: {error}"]) from error

    if not isinstance(data, dict):
        raise ConfigurationError(["Configuration must be a mapping at the top level."])

    try:
        settings = Settings.model_validate(data)
    except ValidationError as error:
        raise ConfigurationError(_format_validation_error(error)) from error
    return _apply_environment(settings, env)


def validate_settings(settings: Settings) -> List[str]:
    """Return every problem that prevents talking to GitLab or the model."""
    problems: List[str] = []
    parsed = urlparse(settings.gitlab.url or "")
    if not settings.gitlab.url:
        problems.append("gitlab.url is required")
    elif parsed.scheme not in ("http", "https") or not parsed.netloc:
        problems.append(f"gitlab.url is not a valid http(s) URL: {settings.gitlab.url}")
    if not settings.gitlab.token:
        problems.append("gitlab.token is required (or set GITLAB_TOKEN)")
    if settings.llm.provider != "ollama" and not settings.llm.api_key:
        problems.append("llm.api_key is required (or set GLAI_LLM_API_KEY)")
    if settings.llm.provider in ("custom", "ollama") and not settings.llm.api_url:
        problems.append(f"llm.api_url is required for provider '{settings.llm.provider}'")
    if not settings.llm.model:
        problems.append("llm.model is required")
    return problems
