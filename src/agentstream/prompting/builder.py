"""System prompt assembly for the different run scenarios."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

import anyio

from agentstream.log import get_logger
from agentstream.utils.time_utils import get_now
from agentstream_config.prompts import CHAT_STRATEGY, PromptStrategy


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from agentstream_config.prompts import SectionName, StrategyType, UserProfile


logger = get_logger(__name__)

SECTION_ORDER: tuple[SectionName, ...] = (
    "softwareIntro",
    "userProfile",
    "runtime",
    "skillAwareness",
    "agentsMd",
)
AGENTS_MD_CANDIDATES = ("AGENTS.md", ".claude/AGENTS.md")

STRATEGY_DEFAULTS: dict[StrategyType, dict[str, bool]] = {
    "chat": {"intro": True, "runtime": True, "skills": True, "agents_md": True},
    "automation": {"intro": True, "runtime": False, "skills": False, "agents_md": False},
    "insights": {"intro": False, "runtime": False, "skills": False, "agents_md": False},
    "worker": {"intro": True, "runtime": False, "skills": True, "agents_md": False},
}

SKILL_AWARENESS = """\
# Skill Awareness (Beta)
Before you start planning or executing a task, check if there are any relevant skills \
available that could help. Skills are specialized capabilities that provide domain-specific \
knowledge and workflows.

**When to check for skills:**
- When starting a new task or subtask
- When the task involves specific file formats (PDF, DOCX, spreadsheets, etc.)
- When the task requires specialized domain knowledge

**How to use skills:**
- Review the available skills listed in your system prompt under "Available Skills"
- If a skill matches your current task, invoke it using the Skill tool before proceeding
- Skills can provide better results than generic approaches for their specialized domains"""


@dataclass(frozen=True)
class RuntimeTool:
    """A tool detected on the host, e.g. ``python`` in category ``runtime``."""

    category: str
    name: str
    version: str | None = None

    def __str__(self) -> str:
        version = f" ({self.version})" if self.version else ""
        return f"{self.category}: {self.name}{version}"


type RuntimeEnvProvider = Callable[[], Awaitable[list[RuntimeTool]]]


@dataclass(frozen=True)
class SystemPrompt:
    """Either a complete custom prompt, or additions to the engine's preset prompt."""

    kind: Literal["preset", "custom"]
    content: str = ""
    """Full prompt for ``custom``, text appended to the preset otherwise."""

    @property
    def append(self) -> str:
        return self.content if self.kind == "preset" else ""


class PromptBuilder:
    """Builds system prompts from a ``PromptStrategy``."""

    def __init__(
        self,
        *,
        app_name: str = "agentstream",
        app_version: str = "0.1.0",
        runtime_env_provider: RuntimeEnvProvider | None = None,
    ) -> None:
        self.app_name = app_name
        self.app_version = app_version
        self.runtime_env_provider = runtime_env_provider

    def build_software_intro(self, cwd: str | None = None) -> str:
        intro = (
            "# About This Software\n"
            f"You are running **{self.app_name}**, a local-first assistant for AI-powered "
            "code assistance and collaboration.\n\n"
            f"- **Version**: v{self.app_version}\n"
            f"- **Current Time**: {get_now().isoformat()}"
        )
        if cwd:
            intro += (
                f"\n\nThe current working directory is `{cwd}`. By default, any generated "
                "files should be placed in this directory unless otherwise specified.\n\n"
                "**File Write Security Policy**: You MUST only create or write files within "
                f"the current working directory (`{cwd}`) and its subdirectories. Writing to "
                "any path outside this directory is strictly prohibited unless the user has "
                "explicitly granted permission for a specific external path in the current "
                "conversation. If a task requires writing outside the working directory, ask "
                "the user for explicit confirmation before proceeding."
            )
        return intro

    @staticmethod
    def build_user_profile(profile: UserProfile | None) -> str:
        if not profile:
            return ""
        lines = []
        if name := (profile.preferred_name or "").strip():
            lines.append(f"- Preferred name: {name}")
        if prefs := (profile.personal_preferences or "").strip():
            lines.append(f"- Personal preferences: {prefs}")
        if not lines:
            return ""
        return (
            "# User Profile\n"
            "The following describes the user you are assisting:\n"
            + "\n".join(lines)
            + "\n\nPlease use the user's preferred name naturally and warmly in your "
            "responses to create a friendly, personalized experience."
        )

    async def build_runtime(self) -> str:
        if not self.runtime_env_provider:
            return ""
        try:
            tools = await self.runtime_env_provider()
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to get runtime environment", error=str(e))
            return ""
        if not tools:
            return ""
        listing = "\n".join(f"- {tool}" for tool in tools)
        return (
            "# Runtime Environment\n"
            "The following tools are available on this system. Prefer using these when "
            f"applicable:\n{listing}"
        )

    @staticmethod
    async def load_agents_md(cwd: str) -> str:
        """Content of the project's AGENTS.md, or an empty string."""
        for candidate in AGENTS_MD_CANDIDATES:
            path = anyio.Path(cwd) / candidate
            try:
                return (await path.read_text(encoding="utf-8")).strip()
            except OSError:
                continue
        return ""

    async def build_agents_md(self, cwd: str | None) -> str:
        if not cwd:
            return ""
        content = await self.load_agents_md(cwd)
        if not content:
            return ""
        return f"# AGENTS.md\nThe following are the project's AGENTS.md instructions:\n\n{content}"

    async def build_system_prompt(
        self,
        strategy: PromptStrategy = CHAT_STRATEGY,
        cwd: str | None = None,
    ) -> SystemPrompt:
        """Build the system prompt for ``strategy``.

        Args:
            strategy: Which sections to include and how to customize them
            cwd: Working directory, used for the intro and AGENTS.md lookup
        """
        if strategy.custom_system_prompt:
            return SystemPrompt(kind="custom", content=strategy.custom_system_prompt)

        defaults = STRATEGY_DEFAULTS[strategy.type]

        def enabled(value: bool | None, key: str) -> bool:
            return defaults[key] if value is None else value

        sections: dict[SectionName, str] = {}
        if enabled(strategy.include_software_intro, "intro"):
            sections["softwareIntro"] = self.build_software_intro(cwd)
        if profile := self.build_user_profile(strategy.user_profile):
            sections["userProfile"] = profile

        async def nothing() -> str:
            return ""

        runtime, agents_md = await asyncio.gather(
            self.build_runtime() if enabled(strategy.include_runtime_info, "runtime") else nothing(),
            self.build_agents_md(cwd)
            if enabled(strategy.include_agents_md, "agents_md") and cwd
            else nothing(),
        )
        if runtime:
            sections["runtime"] = runtime
        if agents_md:
            sections["agentsMd"] = agents_md
        if enabled(strategy.include_skill_awareness, "skills"):
            sections["skillAwareness"] = SKILL_AWARENESS

        for key, value in strategy.replace_sections.items():
            if value is None:
                sections.pop(key, None)
            else:
                sections[key] = value

        ordered = [
            *strategy.prepend_sections,
            *(sections[key] for key in SECTION_ORDER if sections.get(key)),
            *strategy.append_sections,
        ]
        append = "".join(f"\n\n{part}" for part in ordered if part and part.strip())
        return SystemPrompt(kind="preset", content=append)
