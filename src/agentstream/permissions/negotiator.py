"""Tool permission negotiation, including interactive user questions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from agentstream.exceptions import ApprovalNotFoundError
from agentstream.log import get_logger
from agentstream.permissions.policies import PermissionDecision, allow_all_policy
from agentstream.streaming.chunks import (
    AskUserQuestionChunk,
    AskUserQuestionResultChunk,
    AskUserQuestionTimeoutChunk,
)


if TYPE_CHECKING:
    from agentstream.permissions.policies import PolicyContext, ToolPolicy
    from agentstream.streaming.chunks import ApprovalChunk
    from agentstream.utils.cancellation import CancellationToken


logger = get_logger(__name__)

ASK_USER_QUESTION_TOOL = "AskUserQuestion"
SAFETY_TIMEOUT = 600.0
TIMED_OUT_MESSAGE = "Timed out"
SKIPPED_MESSAGE = "Skipped"


@dataclass(frozen=True)
class ApprovalResolution:
    """External answer to a pending question."""

    approved: bool
    message: str | None = None
    updated_input: dict[str, Any] | None = None
    timed_out: bool = False


@dataclass
class PendingApproval:
    """A question waiting for its answer, owned by exactly one session."""

    call_id: str
    session_id: str
    future: asyncio.Future[ApprovalResolution]
    timer: asyncio.TimerHandle | None = None

    def settle(self, resolution: ApprovalResolution) -> bool:
        """Resolve once. Returns False if already settled."""
        if self.timer:
            self.timer.cancel()
        if self.future.done():
            return False
        self.future.set_result(resolution)
        return True


class ToolPermissionNegotiator:
    """Evaluates tool calls against a policy chain and suspends on user questions.

    Chunks produced while negotiating (question pending / timed out / answered)
    are put on a per-session queue which the turn pipeline merges into its
    output stream.
    """

    def __init__(self, *, approval_timeout: float = SAFETY_TIMEOUT) -> None:
        self.approval_timeout = approval_timeout
        self._pending: dict[str, PendingApproval] = {}
        self._queues: dict[str, asyncio.Queue[ApprovalChunk]] = {}

    def approval_queue(self, session_id: str) -> asyncio.Queue[ApprovalChunk]:
        """Queue receiving negotiation chunks for ``session_id``."""
        if session_id not in self._queues:
            self._queues[session_id] = asyncio.Queue()
        return self._queues[session_id]

    def release_queue(self, session_id: str) -> None:
        self._queues.pop(session_id, None)

    def pending_call_ids(self, session_id: str | None = None) -> list[str]:
        return [
            call_id
            for call_id, pending in self._pending.items()
            if session_id is None or pending.session_id == session_id
        ]

    def _emit(self, session_id: str, chunk: ApprovalChunk) -> None:
        self.approval_queue(session_id).put_nowait(chunk)

    async def can_use_tool(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        context: PolicyContext,
        *,
        policy: ToolPolicy = allow_all_policy,
        token: CancellationToken | None = None,
    ) -> PermissionDecision:
        """Decide whether the engine may run ``tool_name``.

        The policy chain runs first. Interactive questions are then turned into
        a pending approval which blocks this call (and so this session's
        generation) until answered, timed out, or cancelled.
        """
        decision = policy(tool_name, tool_input, context)
        if not decision.allowed:
            return decision
        effective_input = decision.updated_input if decision.updated_input is not None else tool_input
        if tool_name != ASK_USER_QUESTION_TOOL:
            return PermissionDecision.allow(effective_input)
        call_id = context.tool_call_id
        if not call_id:
            logger.warning("Question without tool call id", session_id=context.session_id)
            return PermissionDecision.allow(effective_input)
        return await self._ask_user(call_id, effective_input, context.session_id, token)

    async def _ask_user(
        self,
        call_id: str,
        tool_input: dict[str, Any],
        session_id: str,
        token: CancellationToken | None,
    ) -> PermissionDecision:
        loop = asyncio.get_running_loop()
        pending = PendingApproval(
            call_id=call_id,
            session_id=session_id,
            future=loop.create_future(),
        )
        pending.timer = loop.call_later(self.approval_timeout, self._on_timeout, call_id)
        self._pending[call_id] = pending
        self._emit(
            session_id,
            AskUserQuestionChunk(tool_use_id=call_id, questions=tool_input.get("questions", [])),
        )
        logger.info("Waiting for user answer", session_id=session_id, tool_call_id=call_id)

        def on_cancel() -> None:
            if self._pending.get(call_id) is pending:
                del self._pending[call_id]
            pending.settle(ApprovalResolution(approved=False, message="Cancelled"))

        if token:
            token.add_callback(on_cancel)
        try:
            resolution = await pending.future
        finally:
            if token:
                token.remove_callback(on_cancel)
            if pending.timer:
                pending.timer.cancel()
            if self._pending.get(call_id) is pending:
                del self._pending[call_id]

        if resolution.timed_out:
            return PermissionDecision.deny(TIMED_OUT_MESSAGE)
        if not resolution.approved:
            message = resolution.message or SKIPPED_MESSAGE
            self._emit(session_id, AskUserQuestionResultChunk(tool_use_id=call_id, result=message))
            return PermissionDecision.deny(message)
        answers = (resolution.updated_input or {}).get("answers")
        self._emit(
            session_id,
            AskUserQuestionResultChunk(tool_use_id=call_id, result={"answers": answers}),
        )
        return PermissionDecision.allow(resolution.updated_input)

    def _on_timeout(self, call_id: str) -> None:
        pending = self._pending.pop(call_id, None)
        if pending is None or pending.future.done():
            return
        logger.warning("User question timed out", session_id=pending.session_id, tool_call_id=call_id)
        self._emit(pending.session_id, AskUserQuestionTimeoutChunk(tool_use_id=call_id))
        pending.settle(ApprovalResolution(approved=False, message=TIMED_OUT_MESSAGE, timed_out=True))

    def resolve_approval(
        self,
        call_id: str,
        approved: bool,
        *,
        message: str | None = None,
        updated_input: dict[str, Any] | None = None,
    ) -> None:
        """Answer the pending question ``call_id``.

        Raises:
            ApprovalNotFoundError: If nothing is pending under ``call_id``
        """
        pending = self._pending.pop(call_id, None)
        if pending is None:
            raise ApprovalNotFoundError(call_id)
        resolution = ApprovalResolution(
            approved=approved,
            message=message,
            updated_input=updated_input,
        )
        pending.settle(resolution)
        logger.info("Question resolved", tool_call_id=call_id, approved=approved)

    def clear_pending_approvals(self, message: str, session_id: str | None = None) -> int:
        """Deny pending questions of ``session_id`` (all sessions if None).

        Returns:
            Number of approvals resolved
        """
        call_ids = self.pending_call_ids(session_id)
        for call_id in call_ids:
            pending = self._pending.pop(call_id)
            pending.settle(ApprovalResolution(approved=False, message=message))
        if call_ids:
            logger.info("Cleared pending approvals", session_id=session_id, count=len(call_ids))
        return len(call_ids)

    def reset(self) -> None:
        self.clear_pending_approvals("Reset")
        self._queues.clear()
