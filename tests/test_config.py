from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from glai.config import (
    ConfigurationError,
    Settings,
    copy_config_template,
    load_settings,
    validate_settings,
    write_config,
)


def test_missing_file_uses_defaults_and_environment(tmp_path: Path) -> None:
    settings = load_settings(
        tmp_path / "glai.yaml",
        environ={"GITLAB_TOKEN": "glpat-1", "OPENAI_API_KEY": "sk-1", "GITLAB_URL": "https://git.corp"},
    )

    assert settings.gitlab.token == "glpat-1"
    assert settings.gitlab.url == "https://git.corp"
    assert settings.llm.api_key == "sk-1"
    assert settings.workflow.changes_poll_attempts == 5
    assert settings.review.inline_severities == ["error", "warning"]
    assert validate_settings(settings) == []


def test_template_round_trips_through_loader(tmp_path: Path) -> None:
    config_path = tmp_path / "glai.yaml"
    data = copy_config_template()
    data["llm"]["provider"] = "anthropic"
    data["gitlab"]["url"] = "https://gitlab.internal"
    write_config(config_path, data)

    settings = load_settings(
        config_path,
        environ={"GITLAB_URL": "https://ignored", "ANTHROPIC_API_KEY": "ak", "OPENAI_API_KEY": "sk"},
    )

    assert list(yaml.safe_load(config_path.read_text(encoding="utf-8"))) == list(data)
    assert settings.gitlab.url == "https://gitlab.internal"
    assert settings.llm.api_key == "ak"


def test_explicit_values_win_over_environment(tmp_path: Path) -> None:
    config_path = tmp_path / "glai.yaml"
    config_path.write_text("gitlab:\n  token: from-file\nllm:\n  api_key: file-key\n", encoding="utf-8")

    settings = load_settings(config_path, environ={"GITLAB_TOKEN": "env", "GLAI_LLM_API_KEY": "env-key"})

    assert settings.gitlab.token == "from-file"
    assert settings.llm.api_key == "file-key"


@pytest.mark.parametrize(
    ("content", "fragment"),
    [
        ("gitlab:\n  tokn: x\n", "gitlab.tokn"),
        ("llm:\n  provider: bard\n", "llm.provider"),
        ("workflow:\n  default_ticket: nope\n", "workflow.default_ticket"),
        ("review:\n  inline_severities: [fatal]\n", "review.inline_severities"),
        ("- just\n- a list\n", "mapping"),
        ("gitlab: [unclosed\n", "Failed to parse config"),
    ],
)
def test_invalid_files_raise_configuration_error(tmp_path: Path, content: str, fragment: str) -> None:
    config_path = tmp_path / "glai.yaml"
    config_path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationError) as excinfo:
        load_settings(config_path, environ={})

    assert any(fragment in message for message in excinfo.value.errors)


def test_default_ticket_is_upper_cased(tmp_path: Path) -> None:
    config_path = tmp_path / "glai.yaml"
    config_path.write_text("workflow:\n  default_ticket: proj-7\n", encoding="utf-8")

    assert load_settings(config_path, environ={}).workflow.default_ticket == "PROJ-7"


def test_validate_settings_reports_every_problem() -> None:
    settings = Settings.model_validate({"gitlab": {"url": "gitlab.com"}, "llm": {"provider": "custom", "model": ""}})

    problems = validate_settings(settings)

    assert problems == [
        "gitlab.url is not a valid http(s) URL: gitlab.com",
        "gitlab.token is required (or set GITLAB_TOKEN)",
        "llm.api_key is required (or set GLAI_LLM_API_KEY)",
        "llm.api_url is required for provider 'custom'",
        "llm.model is required",
    ]


def test_ollama_needs_no_api_key() -> None:
    settings = Settings.model_validate(
        {"gitlab": {"token": "t"}, "llm": {"provider": "ollama", "api_url": "http://localhost:11434"}}
    )

    assert validate_settings(settings) == []


def test_logs_root_is_relative_to_repository(tmp_path: Path) -> None:
    settings = Settings()

    assert settings.logs_root(tmp_path) == tmp_path / ".glai" / "logs"
    absolute = Settings.model_validate({"paths": {"logs": str(tmp_path / "elsewhere")}})
    assert absolute.logs_root(Path("/repo")) == tmp_path / "elsewhere"
