"""The turn pipeline: from a submitted prompt to a persisted assistant message."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Self
from uuid import uuid4

from agentstream.exceptions import EngineStreamError, ProviderUnavailableError, TurnCancelledError
from agentstream.log import get_logger
from agentstream.messaging import Message, TextPart
from agentstream.permissions import (
    PolicyContext,
    ToolPermissionNegotiator,
    create_automation_policy,
    create_tool_policy,
)
from agentstream.prompting import (
    build_offline_context,
    merge_unanswered_messages,
    parse_mentions,
)
from agentstream.readiness import ReadinessCache
from agentstream.sessions.engine import EngineRequest
from agentstream.sessions.errors import (
    ClassifiedError,
    ErrorCategory,
    classify_error,
    classify_provider_error,
    extract_provider_error,
)
from agentstream.sessions.registry import SUPERSEDED, SessionRegistry
from agentstream.storage import PersistenceWriter
from agentstream.streaming import MessageAccumulator, StreamTransformer
from agentstream.streaming.chunks import ErrorChunk, FinishChunk, ToolOutputAvailableChunk
from agentstream.utils.streams import iterate_until_cancelled, merge_side_queue
from agentstream_config.session import SessionConfig


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence
    from types import TracebackType

    from agentstream.messaging import AttachmentPart, Session, SessionMode
    from agentstream.permissions import PermissionDecision, ToolPolicy
    from agentstream.prompting import PromptBuilder
    from agentstream.readiness.manager import DescriptorStore
    from agentstream.sessions.engine import CanUseTool, CompletionEngine
    from agentstream.sessions.providers import ProviderResolver, ProviderSelection
    from agentstream.storage import MessageStore, TurnOutcome
    from agentstream.streaming import OutputChannel
    from agentstream.streaming.chunks import Chunk
    from agentstream.utils.cancellation import CancellationToken
    from agentstream_config.prompts import PromptStrategy


logger = get_logger(__name__)

EXIT_PLAN_MODE_TOOL = "ExitPlanMode"


@dataclass
class TurnResult:
    """How a turn ended and what it persisted."""

    session_id: str
    outcome: TurnOutcome
    message: Message | None = None
    """The persisted assistant message, None if nothing was produced."""
    error: ClassifiedError | None = None
    cancel_reason: str | None = None
    """Why the turn was cancelled, ``superseded`` when a newer turn replaced it."""

    @property
    def superseded(self) -> bool:
        return self.outcome == "cancelled" and self.cancel_reason == SUPERSEDED


@dataclass
class TurnHandle:
    """A running turn.

    Iterate the handle to receive its chunks. The turn runs and persists
    whether or not anybody iterates.
    """

    session_id: str
    token: CancellationToken
    task: asyncio.Task[TurnResult] = field(repr=False)
    _chunks: asyncio.Queue[Chunk | None] = field(repr=False)

    async def __aiter__(self) -> AsyncIterator[Chunk]:
        while (chunk := await self._chunks.get()) is not None:
            yield chunk

    async def collect(self) -> list[Chunk]:
        return [chunk async for chunk in self]

    async def wait(self) -> TurnResult:
        return await self.task

    def cancel(self, reason: str = "cancelled") -> None:
        self.token.cancel(reason)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    @property
    def done(self) -> bool:
        return self.task.done()


@dataclass(kw_only=True)
class _TurnState:
    """Mutable bookkeeping of one running turn."""

    session_id: str
    token: CancellationToken
    chunks: asyncio.Queue[Chunk | None]
    channel: OutputChannel | None
    accumulator: MessageAccumulator = field(default_factory=MessageAccumulator)
    transformer: StreamTransformer = field(default_factory=StreamTransformer)
    outcome: TurnOutcome = "completed"
    error: ClassifiedError | None = None
    finished: bool = False
    raw_events: int = 0
    provider_session_id: str | None = None
    plan_completed: bool = False
    session_loaded: bool = False

    def emit(self, chunk: Chunk) -> None:
        if isinstance(chunk, FinishChunk):
            if self.finished:
                return
            self.finished = True
        self.chunks.put_nowait(chunk)
        if self.channel:
            self.channel.on_chunk(chunk)

    def fail(self, error: ClassifiedError, **debug_info: Any) -> None:
        self.error = error
        self.outcome = "errored"
        chunk = ErrorChunk(
            error_text=error.error_text,
            category=error.category.value,
            debug_info={"context": error.context, **debug_info},
        )
        self.emit(chunk)
        if self.channel:
            self.channel.on_error(chunk)


class TurnPipeline:
    """Runs turns: one active generation per session, always persisted.

    All collaborators are injected, so that independent pipelines (and tests)
    never share state through module globals.
    """

    def __init__(
        self,
        *,
        engine: CompletionEngine,
        store: MessageStore,
        providers: ProviderResolver,
        registry: SessionRegistry | None = None,
        negotiator: ToolPermissionNegotiator | None = None,
        readiness: ReadinessCache | None = None,
        descriptors: DescriptorStore | None = None,
        prompt_builder: PromptBuilder | None = None,
        config: SessionConfig | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.engine = engine
        self.store = store
        self.providers = providers
        self.registry = registry or SessionRegistry()
        self.negotiator = negotiator or ToolPermissionNegotiator(
            approval_timeout=self.config.approval_timeout
        )
        self.readiness = readiness or ReadinessCache()
        self.descriptors = descriptors
        self.prompt_builder = prompt_builder
        self.writer = PersistenceWriter(store)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    def submit_turn(
        self,
        session_id: str,
        prompt: str,
        *,
        attachments: Sequence[AttachmentPart] = (),
        mode: SessionMode | None = None,
        cwd: str | None = None,
        conversation_id: str | None = None,
        strategy: PromptStrategy | None = None,
        automation: bool = False,
        channel: OutputChannel | None = None,
    ) -> TurnHandle:
        """Start a turn for ``session_id``, superseding any running one.

        The running turn's token is cancelled and the new token registered
        before this returns. The new turn only starts loading history once the
        superseded turn has flushed.
        """
        token, previous = self.registry.begin(session_id)
        chunks: asyncio.Queue[Chunk | None] = asyncio.Queue()
        state = _TurnState(session_id=session_id, token=token, chunks=chunks, channel=channel)
        task = asyncio.create_task(
            self._run_turn(
                state,
                previous,
                prompt=prompt,
                attachments=attachments,
                mode=mode,
                cwd=cwd,
                conversation_id=conversation_id,
                strategy=strategy,
                automation=automation,
            ),
            name=f"turn-{session_id}",
        )
        self.registry.attach_task(session_id, token, task)
        return TurnHandle(session_id=session_id, token=token, task=task, _chunks=chunks)

    def cancel(self, session_id: str) -> bool:
        """Cancel the running turn of ``session_id``. Other sessions are unaffected."""
        cancelled = self.registry.cancel(session_id)
        self.negotiator.clear_pending_approvals("Cancelled", session_id)
        return cancelled

    def resolve_approval(
        self,
        call_id: str,
        approved: bool,
        *,
        message: str | None = None,
        answers: dict[str, Any] | None = None,
    ) -> None:
        updated_input = {"answers": answers} if answers is not None else None
        self.negotiator.resolve_approval(
            call_id,
            approved,
            message=message,
            updated_input=updated_input,
        )

    async def shutdown(self) -> None:
        """Cancel every running turn and wait for all of them to flush."""
        tasks = self.registry.tasks()
        self.registry.reset()
        self.negotiator.reset()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        errors = [r for r in results if isinstance(r, Exception)]
        if errors:
            msg = "Errors while shutting down turns"
            raise ExceptionGroup(msg, errors)

    async def _run_turn(
        self,
        state: _TurnState,
        previous: asyncio.Task[Any] | None,
        *,
        prompt: str,
        attachments: Sequence[AttachmentPart],
        mode: SessionMode | None,
        cwd: str | None,
        conversation_id: str | None,
        strategy: PromptStrategy | None,
        automation: bool,
    ) -> TurnResult:
        session_id = state.session_id
        message: Message | None = None
        try:
            superseded = await self._await_previous(previous)
            defaults: dict[str, Any] = {"mode": mode or self.config.mode, "cwd": cwd}
            if conversation_id:
                defaults["conversation_id"] = conversation_id
            session = await self.store.get_or_create(session_id, **defaults)
            state.session_loaded = True
            if superseded and superseded.message:
                session = await self._drop_superseded_reply(session, superseded.message)
            history = await self._record_user_message(session, prompt, attachments)
            await self.store.set_stream_id(session_id, str(uuid4()))
            state.token.raise_if_cancelled()
            await self._generate(
                state,
                session,
                history,
                prompt=prompt,
                attachments=attachments,
                mode=mode or session.mode,
                cwd=cwd or session.cwd,
                strategy=strategy,
                automation=automation,
            )
        except TurnCancelledError:
            state.outcome = "cancelled"
        except asyncio.CancelledError:
            state.outcome = "cancelled"
            raise
        except Exception as e:
            logger.exception("Unexpected error in turn", session_id=session_id)
            state.fail(ClassifiedError(ErrorCategory.UNKNOWN, "Unexpected error", str(e)))
        finally:
            message = await self._finish(state)
        return TurnResult(
            session_id=session_id,
            outcome=state.outcome,
            message=message,
            error=state.error,
            cancel_reason=state.token.reason if state.outcome == "cancelled" else None,
        )

    async def _await_previous(self, previous: asyncio.Task[Any] | None) -> TurnResult | None:
        """Wait until the replaced turn has flushed. Returns its result if it was superseded."""
        if previous is None:
            return None
        [result] = await asyncio.gather(previous, return_exceptions=True)
        if isinstance(result, TurnResult) and result.superseded:
            return result
        return None

    async def _drop_superseded_reply(self, session: Session, reply: Message) -> Session:
        """Remove the partial reply of a turn that was replaced before it finished."""
        kept = [m for m in session.messages if m.message_id != reply.message_id]
        if len(kept) == len(session.messages):
            return session
        logger.info(
            "Dropping partial reply of superseded turn",
            session_id=session.session_id,
            message_id=reply.message_id,
        )
        await self.store.replace_messages(session.session_id, kept)
        session.messages = kept
        return session

    async def _record_user_message(
        self,
        session: Session,
        prompt: str,
        attachments: Sequence[AttachmentPart],
    ) -> list[Message]:
        """Persist the user message, returning the history preceding it."""
        last = session.last_message
        if last and last.role == "user" and last.text == prompt:
            logger.info("Duplicate submission, reusing stored message", session_id=session.session_id)
            return session.messages[:-1]
        user_message = Message(role="user", parts=[TextPart(text=prompt), *attachments])
        await self.store.append_message(session.session_id, user_message)
        return session.messages

    async def _generate(
        self,
        state: _TurnState,
        session: Session,
        history: list[Message],
        *,
        prompt: str,
        attachments: Sequence[AttachmentPart],
        mode: SessionMode,
        cwd: str | None,
        strategy: PromptStrategy | None,
        automation: bool,
    ) -> None:
        try:
            selection = await self.providers.resolve(session)
        except ProviderUnavailableError as e:
            error = ClassifiedError(ErrorCategory.PROVIDER_UNAVAILABLE, "Provider unavailable", e.reason)
            state.fail(error, provider=e.provider)
            return

        effective_prompt = merge_unanswered_messages(history, prompt)
        mentions = parse_mentions(effective_prompt)
        final_prompt = mentions.final_prompt
        resume_token = session.resume_token
        if selection.offline:
            final_prompt = build_offline_context(
                messages=history,
                prompt=final_prompt,
                cwd=cwd or ".",
                model=selection.model,
            )
            resume_token = None

        system_prompt = None
        if self.prompt_builder and not selection.offline:
            if strategy is not None:
                system_prompt = await self.prompt_builder.build_system_prompt(strategy, cwd)
            else:
                system_prompt = await self.prompt_builder.build_system_prompt(cwd=cwd)

        servers = await self.descriptors.list_descriptors() if self.descriptors else []
        offered = self.readiness.filter_descriptors(servers)
        if len(offered) < len(servers):
            logger.info(
                "Withholding unusable servers",
                session_id=session.session_id,
                withheld=len(servers) - len(offered),
            )

        policy = self._build_policy(session.session_id, mode, selection, automation=automation)
        request = EngineRequest(
            session_id=session.session_id,
            prompt=final_prompt,
            cancel_token=state.token,
            can_use_tool=self._permission_callback(state, policy, mode, selection),
            system_prompt=system_prompt,
            servers=offered,
            resume_token=resume_token,
            cwd=cwd,
            mode=mode,
            provider=selection.provider,
            model=selection.model,
            attachments=attachments,
            mentions=mentions,
        )
        logger.info(
            "Starting generation",
            session_id=session.session_id,
            provider=selection.provider,
            model=selection.model,
            mode=mode,
            servers=len(offered),
            resuming=bool(resume_token),
        )
        await self._consume(state, request, mode)

    def _build_policy(
        self,
        session_id: str,
        mode: SessionMode,
        selection: ProviderSelection,
        *,
        automation: bool,
    ) -> ToolPolicy:
        if automation:
            return create_automation_policy(is_ollama=selection.is_ollama)
        context = PolicyContext(
            session_id=session_id,
            mode=mode,
            chat_mode=self.config.chat_mode,
            is_ollama=selection.is_ollama,
        )
        return create_tool_policy(context)

    def _permission_callback(
        self,
        state: _TurnState,
        policy: ToolPolicy,
        mode: SessionMode,
        selection: ProviderSelection,
    ) -> CanUseTool:
        async def can_use_tool(
            tool_name: str, tool_input: dict[str, Any], tool_use_id: str
        ) -> PermissionDecision:
            context = PolicyContext(
                session_id=state.session_id,
                mode=mode,
                chat_mode=self.config.chat_mode,
                is_ollama=selection.is_ollama,
                tool_call_id=state.transformer.resolve_call_id(tool_use_id),
            )
            return await self.negotiator.can_use_tool(
                tool_name,
                tool_input,
                context,
                policy=policy,
                token=state.token,
            )

        return can_use_tool

    async def _consume(self, state: _TurnState, request: EngineRequest, mode: SessionMode) -> None:
        raw_stream = iterate_until_cancelled(self.engine.stream(request), state.token)
        approvals = self.negotiator.approval_queue(state.session_id)
        try:
            async with merge_side_queue(raw_stream, approvals) as events:
                async for item in events:
                    if not isinstance(item, dict):
                        state.accumulator.apply(item)
                        state.emit(item)
                        continue
                    if self._handle_raw_event(state, item, mode):
                        break
        except Exception as e:  # noqa: BLE001
            stderr = e.stderr if isinstance(e, EngineStreamError) else ""
            classified = classify_error(e, stderr)
            logger.warning(
                "Generation failed",
                session_id=state.session_id,
                category=classified.category,
                error=str(e),
            )
            state.fail(classified, error_type=type(e).__name__, stderr=stderr[-2000:])
            return

        if state.token.cancelled:
            state.outcome = "cancelled"
            logger.info("Turn cancelled", session_id=state.session_id, reason=state.token.reason)
        elif state.raw_events == 0 and state.error is None:
            message = self.config.empty_response_message
            state.fail(ClassifiedError(ErrorCategory.EMPTY_RESPONSE, "Empty response", message))

    def _handle_raw_event(self, state: _TurnState, event: dict[str, Any], mode: SessionMode) -> bool:
        """Process one raw engine event. Returns True to stop consuming."""
        state.raw_events += 1
        if provider_session := event.get("session_id"):
            state.provider_session_id = provider_session
        if reported := extract_provider_error(event):
            text, code = reported
            state.fail(classify_provider_error(text, code), error_code=code)
            return True
        is_result = event.get("type") == "result"
        if is_result and event.get("is_error"):
            text = str(event.get("result") or event.get("subtype") or "Unknown provider error")
            state.fail(classify_provider_error(text), result_subtype=event.get("subtype"))
        for chunk in state.transformer.transform(event):
            state.accumulator.apply(chunk)
            state.emit(chunk)
            if isinstance(chunk, ToolOutputAvailableChunk):
                self._on_tool_output(state, chunk, mode)
        # After ExitPlanMode only the result event is awaited, for its usage metadata
        return is_result and state.plan_completed

    def _on_tool_output(
        self, state: _TurnState, chunk: ToolOutputAvailableChunk, mode: SessionMode
    ) -> None:
        part = state.accumulator.find_tool_part(chunk.tool_call_id)
        if part is None:
            return
        if state.channel:
            state.channel.on_tool_call(part.tool_name, part.input, chunk.output)
        if mode == "plan" and part.tool_name == EXIT_PLAN_MODE_TOOL and not state.plan_completed:
            state.plan_completed = True
            logger.info("Plan completed", session_id=state.session_id)
            state.emit(FinishChunk())

    async def _finish(self, state: _TurnState) -> Message | None:
        """Flush and persist, then close the chunk stream. Runs on every exit path."""
        session_id = state.session_id
        accumulator = state.accumulator
        if state.provider_session_id and "sessionId" not in accumulator.metadata:
            accumulator.metadata["sessionId"] = state.provider_session_id
        clear_token = bool(state.error and state.error.clears_session)
        if state.outcome == "cancelled":
            self.negotiator.clear_pending_approvals("Cancelled", session_id)
        message: Message | None = None
        try:
            if state.session_loaded:
                message = await self.writer.flush(
                    session_id,
                    accumulator,
                    state.outcome,
                    clear_resume_token=clear_token,
                )
        except Exception as e:
            logger.exception("Failed to persist turn", session_id=session_id)
            error = ClassifiedError(ErrorCategory.UNKNOWN, "Failed to save the response", str(e))
            state.fail(error)
        finally:
            state.emit(FinishChunk(metadata=accumulator.metadata or None))
            if state.channel:
                state.channel.on_complete(
                    accumulator.metadata.get("sessionId"),
                    dict(accumulator.metadata),
                )
            state.chunks.put_nowait(None)
            self.negotiator.release_queue(session_id)
            self.registry.release(session_id, state.token)
        return message
