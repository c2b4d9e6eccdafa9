"""Tests for system prompt assembly."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from agentstream.prompting import PromptBuilder, RuntimeTool
from agentstream_config import (
    AUTOMATION_STRATEGY,
    CHAT_STRATEGY,
    INSIGHTS_STRATEGY,
    WORKER_STRATEGY,
    PromptStrategy,
    UserProfile,
)


if TYPE_CHECKING:
    from pathlib import Path


async def runtime_tools() -> list[RuntimeTool]:
    return [RuntimeTool(category="runtime", name="python", version="3.12.1")]


async def broken_runtime() -> list[RuntimeTool]:
    raise RuntimeError("detection failed")


@pytest.fixture
def builder() -> PromptBuilder:
    return PromptBuilder(app_name="agentstream", app_version="1.2.3", runtime_env_provider=runtime_tools)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    (tmp_path / "AGENTS.md").write_text("Always run the linter.\n", encoding="utf-8")
    return tmp_path


class TestChatStrategy:
    """Tests for the default interactive strategy."""

    async def test_all_sections_in_order(self, builder: PromptBuilder, project: Path) -> None:
        strategy = CHAT_STRATEGY.model_copy(update={"user_profile": UserProfile(preferred_name="Ada")})
        prompt = await builder.build_system_prompt(strategy, str(project))
        assert prompt.kind == "preset"
        text = prompt.append
        headers = ["# About This Software", "# User Profile", "# Runtime Environment"]
        headers += ["# Skill Awareness (Beta)", "# AGENTS.md"]
        positions = [text.index(h) for h in headers]
        assert positions == sorted(positions)
        assert text.startswith("\n\n# About This Software")
        assert f"`{project}`" in text
        assert "- runtime: python (3.12.1)" in text
        assert "Always run the linter." in text
        assert "- Preferred name: Ada" in text

    async def test_nested_agents_md(self, builder: PromptBuilder, tmp_path: Path) -> None:
        (tmp_path / ".claude").mkdir()
        (tmp_path / ".claude" / "AGENTS.md").write_text("nested rules", encoding="utf-8")
        prompt = await builder.build_system_prompt(CHAT_STRATEGY, str(tmp_path))
        assert "nested rules" in prompt.append

    async def test_missing_agents_md(self, builder: PromptBuilder, tmp_path: Path) -> None:
        prompt = await builder.build_system_prompt(CHAT_STRATEGY, str(tmp_path))
        assert "# AGENTS.md" not in prompt.append

    async def test_runtime_failure_omits_section(self, tmp_path: Path) -> None:
        builder = PromptBuilder(runtime_env_provider=broken_runtime)
        prompt = await builder.build_system_prompt(CHAT_STRATEGY, str(tmp_path))
        assert "# Runtime Environment" not in prompt.append
        assert "# About This Software" in prompt.append

    async def test_defaults_apply_to_unset_toggles(self, builder: PromptBuilder) -> None:
        prompt = await builder.build_system_prompt(PromptStrategy(type="chat"))
        assert "# Runtime Environment" in prompt.append
        assert "# Skill Awareness (Beta)" in prompt.append


class TestOtherStrategies:
    """Tests for automation, insights and worker strategies."""

    async def test_automation(self, builder: PromptBuilder, project: Path) -> None:
        prompt = await builder.build_system_prompt(AUTOMATION_STRATEGY, str(project))
        text = prompt.append
        assert text.index("# Automation Mode") < text.index("# About This Software")
        assert "# Runtime Environment" not in text
        assert "# Skill Awareness (Beta)" not in text
        assert "# AGENTS.md" not in text

    async def test_insights_uses_custom_prompt(self, builder: PromptBuilder) -> None:
        prompt = await builder.build_system_prompt(INSIGHTS_STRATEGY)
        assert prompt.kind == "custom"
        assert prompt.content == INSIGHTS_STRATEGY.custom_system_prompt
        assert prompt.append == ""

    async def test_worker(self, builder: PromptBuilder) -> None:
        prompt = await builder.build_system_prompt(WORKER_STRATEGY)
        assert "# Worker Mode" in prompt.append
        assert "# Skill Awareness (Beta)" in prompt.append
        assert "# Runtime Environment" not in prompt.append


class TestCustomization:
    """Tests for prepend, append and replace."""

    async def test_replace_and_remove(self, builder: PromptBuilder) -> None:
        strategy = PromptStrategy(
            type="chat",
            replace_sections={"softwareIntro": "# Custom Intro", "runtime": None},
            append_sections=["# Footer"],
        )
        text = (await builder.build_system_prompt(strategy)).append
        assert "# Custom Intro" in text
        assert "# About This Software" not in text
        assert "# Runtime Environment" not in text
        assert text.endswith("\n\n# Footer")

    async def test_blank_sections_skipped(self, builder: PromptBuilder) -> None:
        strategy = PromptStrategy(
            type="insights",
            include_software_intro=False,
            prepend_sections=["  ", "# Only"],
        )
        assert (await builder.build_system_prompt(strategy)).append == "\n\n# Only"
