"""Tool permission policies.

A policy is a pure function ``(tool_name, tool_input, context) -> PermissionDecision``.
Policies are composed left to right: the first denial wins, and an allowing
policy may hand a rewritten input on to the next one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import TYPE_CHECKING, Any, Literal

from agentstream.log import get_logger


if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


logger = get_logger(__name__)

PLAN_MODE_BLOCKED_TOOLS = frozenset({"Bash", "NotebookEdit"})
CHAT_MODE_BLOCKED_TOOLS = frozenset({
    "Read",
    "Write",
    "Edit",
    "Glob",
    "Grep",
    "Bash",
    "NotebookEdit",
    "LS",
    "Find",
})
AUTOMATION_BLOCKED_TOOLS = frozenset({"AskUserQuestion"})
PLAN_MODE_EDIT_TOOLS = frozenset({"Edit", "Write"})

# tool name -> {wrong field: correct field}
OLLAMA_FIELD_FIXES: dict[str, dict[str, str]] = {
    "Read": {"file": "file_path"},
    "Write": {"file": "file_path"},
    "Edit": {"file": "file_path"},
    "Glob": {"directory": "path", "dir": "path"},
    "Grep": {"query": "pattern", "directory": "path"},
    "Bash": {"cmd": "command"},
}

_MARKDOWN_PATH = re.compile(r"\.md$", re.IGNORECASE)


@dataclass(frozen=True)
class PermissionDecision:
    """Outcome of evaluating a tool call."""

    behavior: Literal["allow", "deny"]
    """Whether the call may proceed."""

    updated_input: dict[str, Any] | None = None
    """Input to run the tool with (allow only)."""

    message: str | None = None
    """Reason shown to the model (deny only)."""

    @classmethod
    def allow(cls, tool_input: dict[str, Any] | None = None) -> PermissionDecision:
        return cls(behavior="allow", updated_input=tool_input)

    @classmethod
    def deny(cls, message: str) -> PermissionDecision:
        return cls(behavior="deny", message=message)

    @property
    def allowed(self) -> bool:
        return self.behavior == "allow"


@dataclass(frozen=True)
class PolicyContext:
    """Facts about the running turn that policies may consult."""

    session_id: str = ""
    mode: Literal["plan", "agent"] = "agent"
    chat_mode: bool = False
    is_ollama: bool = False
    tool_call_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


type ToolPolicy = Callable[[str, dict[str, Any], PolicyContext], PermissionDecision]


def allow_all_policy(
    tool_name: str, tool_input: dict[str, Any], context: PolicyContext
) -> PermissionDecision:
    return PermissionDecision.allow(tool_input)


def plan_mode_policy(
    tool_name: str, tool_input: dict[str, Any], context: PolicyContext
) -> PermissionDecision:
    """Only markdown files may be edited; shell and notebook tools are blocked."""
    if tool_name in PLAN_MODE_EDIT_TOOLS:
        file_path = tool_input.get("file_path")
        if not isinstance(file_path, str) or not _MARKDOWN_PATH.search(file_path):
            return PermissionDecision.deny('Only ".md" files can be modified in plan mode.')
    if tool_name in PLAN_MODE_BLOCKED_TOOLS:
        return PermissionDecision.deny(f'Tool "{tool_name}" blocked in plan mode.')
    return PermissionDecision.allow(tool_input)


def chat_mode_policy(
    tool_name: str, tool_input: dict[str, Any], context: PolicyContext
) -> PermissionDecision:
    if tool_name in CHAT_MODE_BLOCKED_TOOLS:
        return PermissionDecision.deny(
            f'Tool "{tool_name}" is not available in chat mode. To work with files, '
            "please convert this chat to a workspace."
        )
    return PermissionDecision.allow(tool_input)


def automation_policy(
    tool_name: str, tool_input: dict[str, Any], context: PolicyContext
) -> PermissionDecision:
    if tool_name in AUTOMATION_BLOCKED_TOOLS:
        return PermissionDecision.deny(
            f'Tool "{tool_name}" is not available in automation mode. '
            "Automation tasks cannot request user input."
        )
    return PermissionDecision.allow(tool_input)


def ollama_field_fix_policy(
    tool_name: str, tool_input: dict[str, Any], context: PolicyContext
) -> PermissionDecision:
    """Rename parameters that local models commonly get wrong."""
    fixes = OLLAMA_FIELD_FIXES.get(tool_name)
    if not fixes:
        return PermissionDecision.allow(tool_input)
    updated = dict(tool_input)
    fixed: list[str] = []
    for wrong, correct in fixes.items():
        if updated.get(wrong) is not None and updated.get(correct) is None:
            updated[correct] = updated.pop(wrong)
            fixed.append(f"{wrong}->{correct}")
    if fixed:
        logger.info("Fixed tool parameters", tool_name=tool_name, fixes=fixed)
    return PermissionDecision.allow(updated)


def compose_policies(policies: Sequence[ToolPolicy]) -> ToolPolicy:
    """Chain ``policies``; the first denial wins, allowed input is forwarded."""
    chain = list(policies)

    def composite(
        tool_name: str, tool_input: dict[str, Any], context: PolicyContext
    ) -> PermissionDecision:
        current = tool_input
        for policy in chain:
            decision = policy(tool_name, current, context)
            if not decision.allowed:
                logger.debug(
                    "Tool call denied",
                    tool_name=tool_name,
                    policy=getattr(policy, "__name__", repr(policy)),
                    reason=decision.message,
                )
                return decision
            if decision.updated_input is not None:
                current = decision.updated_input
        return PermissionDecision.allow(current)

    return composite


def create_tool_policy(context: PolicyContext) -> ToolPolicy:
    """Policy chain for an interactive turn.

    Parameter fixes run first so that the deny checks see corrected input.
    """
    policies: list[ToolPolicy] = []
    if context.is_ollama:
        policies.append(ollama_field_fix_policy)
    if context.chat_mode:
        policies.append(chat_mode_policy)
    if context.mode == "plan":
        policies.append(plan_mode_policy)
    if not policies:
        return allow_all_policy
    return compose_policies(policies)


def create_automation_policy(*, is_ollama: bool = False) -> ToolPolicy:
    policies: list[ToolPolicy] = [ollama_field_fix_policy] if is_ollama else []
    policies.append(automation_policy)
    return compose_policies(policies)
