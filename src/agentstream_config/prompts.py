"""System prompt strategy configuration."""

from __future__ import annotations

from typing import Final, Literal

from pydantic import ConfigDict, Field
from schemez import Schema


StrategyType = Literal["chat", "automation", "insights", "worker"]
SectionName = Literal["softwareIntro", "userProfile", "runtime", "skillAwareness", "agentsMd"]


class UserProfile(Schema):
    """Information about the user folded into the system prompt."""

    preferred_name: str | None = Field(default=None, title="Preferred name")
    """Name the assistant should address the user with."""

    personal_preferences: str | None = Field(default=None, title="Personal preferences")
    """Free-form preferences."""

    model_config = ConfigDict(frozen=True)


class PromptStrategy(Schema):
    """How the system prompt is assembled for one kind of run.

    Include toggles left as ``None`` fall back to the defaults of ``type``.
    """

    type: StrategyType = Field(default="chat", title="Strategy type")
    """Scenario the prompt is built for."""

    include_software_intro: bool | None = Field(default=None, title="Include software intro")
    """Describe the application and the working directory write policy."""

    include_runtime_info: bool | None = Field(default=None, title="Include runtime info")
    """List locally available runtime tools."""

    include_skill_awareness: bool | None = Field(default=None, title="Include skill awareness")
    """Remind the model to check available skills."""

    include_agents_md: bool | None = Field(default=None, title="Include AGENTS.md")
    """Embed the project's AGENTS.md instructions."""

    user_profile: UserProfile | None = Field(default=None, title="User profile")
    """Profile rendered into the userProfile section."""

    prepend_sections: list[str] = Field(default_factory=list, title="Prepended sections")
    """Sections placed before the built-in ones."""

    append_sections: list[str] = Field(default_factory=list, title="Appended sections")
    """Sections placed after the built-in ones."""

    replace_sections: dict[SectionName, str | None] = Field(
        default_factory=dict,
        examples=[{"runtime": None, "softwareIntro": "# About\nCustom intro"}],
        title="Replaced sections",
    )
    """Built-in sections to replace. A ``None`` value removes the section."""

    custom_system_prompt: str | None = Field(default=None, title="Custom system prompt")
    """Use this prompt verbatim and skip all sections."""

    model_config = ConfigDict(frozen=True)


CHAT_STRATEGY: Final = PromptStrategy(
    type="chat",
    include_software_intro=True,
    include_runtime_info=True,
    include_skill_awareness=True,
    include_agents_md=True,
)

AUTOMATION_STRATEGY: Final = PromptStrategy(
    type="automation",
    include_software_intro=True,
    include_runtime_info=False,
    include_skill_awareness=False,
    include_agents_md=False,
    prepend_sections=[
        "# Automation Mode\n"
        "You are executing an automated task. Focus on completing the task efficiently "
        "and output structured results.\n"
        "Do not ask clarifying questions - work with the information provided."
    ],
)

INSIGHTS_STRATEGY: Final = PromptStrategy(
    type="insights",
    include_software_intro=False,
    include_runtime_info=False,
    include_skill_awareness=False,
    include_agents_md=False,
    custom_system_prompt=(
        "You are a data analysis assistant responsible for generating work insights "
        "and reports.\n\n"
        "Your task is to analyze the provided data and generate clear, actionable insights.\n\n"
        "Guidelines:\n"
        "- Focus on patterns and trends in the data\n"
        "- Highlight key metrics and changes\n"
        "- Provide actionable recommendations\n"
        "- Use clear, professional language\n"
        "- Format output in markdown for easy reading"
    ),
)

WORKER_STRATEGY: Final = PromptStrategy(
    type="worker",
    include_software_intro=True,
    include_runtime_info=False,
    include_skill_awareness=True,
    include_agents_md=False,
    prepend_sections=[
        "# Worker Mode\n"
        "You are running as a background worker agent. Process the task autonomously "
        "and report results.\n"
        "- Do not ask for user input\n"
        "- Complete the task to the best of your ability\n"
        "- Output structured results that can be stored or displayed later"
    ],
)
