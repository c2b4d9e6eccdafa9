"""Tool permission policies and interactive approvals."""

from __future__ import annotations

from agentstream.permissions.negotiator import (
    ApprovalResolution,
    PendingApproval,
    ToolPermissionNegotiator,
)
from agentstream.permissions.policies import (
    PermissionDecision,
    PolicyContext,
    ToolPolicy,
    automation_policy,
    chat_mode_policy,
    compose_policies,
    create_automation_policy,
    create_tool_policy,
    ollama_field_fix_policy,
    plan_mode_policy,
)

__all__ = [
    "ApprovalResolution",
    "PendingApproval",
    "PermissionDecision",
    "PolicyContext",
    "ToolPermissionNegotiator",
    "ToolPolicy",
    "automation_policy",
    "chat_mode_policy",
    "compose_policies",
    "create_automation_policy",
    "create_tool_policy",
    "ollama_field_fix_policy",
    "plan_mode_policy",
]
