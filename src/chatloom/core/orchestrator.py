"""Session orchestrator: runs one user turn end to end.

user text -> window -> composer (before_send) -> adapter stream
-> accumulator -> after_receive / on_tool_call -> window -> persistence
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import TYPE_CHECKING, Any, Iterable, Optional

from chatloom.config import MemoryConfig, ProviderConfig
from chatloom.core.accumulator import CancelToken, StreamAccumulator, StreamCallbacks, invoke_callback
from chatloom.core.composer import PromptComposer
from chatloom.core.models import (
    Message,
    SessionSnapshot,
    StreamChunk,
    ToolCall,
    new_message_id,
    now_ms,
    user_message,
)
from chatloom.core.types import Role, TurnState
from chatloom.core.window import ContextWindow
from chatloom.errors import TurnInProgressError
from chatloom.log import get_logger
from chatloom.plugins.base import ChatPlugin, PluginContext
from chatloom.plugins.manager import PluginManager

if TYPE_CHECKING:
    from chatloom.providers.registry import ProviderRegistry
    from chatloom.storage.base import PersistenceBackend

logger = get_logger(__name__)

_IN_FLIGHT = (TurnState.COMPOSING, TurnState.STREAMING)


def _new_session_id() -> str:
    return uuid.uuid4().hex[:12]


def _tool_result_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(result)


class SessionOrchestrator:
    """Sequences the steps of each turn and owns the transcript.

    At most one turn is in flight; a second ``send_turn`` while one is
    composing or streaming raises ``TurnInProgressError``.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        provider_config: ProviderConfig,
        *,
        memory: Optional[MemoryConfig] = None,
        system_prompt: Optional[str] = None,
        plugins: Iterable[ChatPlugin] = (),
        store: Optional[PersistenceBackend] = None,
        session_id: Optional[str] = None,
        tools: Optional[list[dict[str, Any]]] = None,
    ):
        self._registry = registry
        self._provider_config = provider_config
        self._window = ContextWindow(memory)
        if system_prompt:
            self._window.set_system_prompt(system_prompt)
        self._plugins = PluginManager(plugins)
        self._accumulator = StreamAccumulator()
        self._store = store
        self._tools = tools or None
        self._session_id = session_id or _new_session_id()
        self._created_at = now_ms()
        self._state = TurnState.IDLE
        self._last_outcome: Optional[TurnState] = None
        self._cancel: Optional[CancelToken] = None
        self._pending_saves: set[asyncio.Task] = set()

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def last_outcome(self) -> Optional[TurnState]:
        return self._last_outcome

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def window(self) -> ContextWindow:
        return self._window

    @property
    def plugins(self) -> PluginManager:
        return self._plugins

    @property
    def provider_config(self) -> ProviderConfig:
        return self._provider_config

    async def send_turn(
        self,
        content: str,
        callbacks: Optional[StreamCallbacks] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Message:
        """Run one turn and return the assistant message.

        A cancelled turn returns the partial message without recording it.
        A failed turn re-raises after ``callbacks.on_error``; the user message
        stays in the transcript.
        """
        if self._state in _IN_FLIGHT:
            raise TurnInProgressError(
                "A turn is already in progress", details={"session_id": self._session_id}
            )

        callbacks = callbacks or StreamCallbacks()
        token = cancel or CancelToken()
        self._cancel = token
        self._state = TurnState.COMPOSING
        log = logger.bind(session_id=self._session_id, provider=self._provider_config.provider)
        log.info("turn_started", chars=len(content))

        try:
            self._window.append(user_message(content))
            snapshot = self._window.sendable_subset()

            metadata: dict[str, Any] = {"session_id": self._session_id}
            if self._window.config.enable_summarization and snapshot.trimmed:
                metadata["trimmed_messages"] = list(snapshot.trimmed)

            composed = await PromptComposer.compose(
                snapshot.system_prompt,
                snapshot.messages,
                plugins=self._plugins,
                tools=self._tools,
                metadata=metadata,
            )
            outgoing = PromptComposer.format_for_provider(composed, self._provider_config.provider)
            adapter = self._registry.get_for(self._provider_config)

            async def _forward(chunk: StreamChunk) -> None:
                if chunk.content:
                    await invoke_callback(callbacks.on_chunk, chunk.content)

            self._state = TurnState.STREAMING
            message = await self._accumulator.consume(
                adapter.stream(outgoing, self._provider_config, token, tools=self._tools),
                StreamCallbacks(on_chunk=_forward),
                cancel=token,
            )

            if self._accumulator.outcome == TurnState.CANCELLED:
                self._last_outcome = TurnState.CANCELLED
                log.info("turn_cancelled", chars=len(message.content))
                return message

            ctx = PluginContext(
                messages=self._window.all(),
                system_prompt=snapshot.system_prompt,
                metadata=metadata,
            )
            message = await self._plugins.run_after_receive(message, ctx)
            tool_messages = await self._run_tool_calls(message.tool_calls, ctx)

            self._window.append(message)
            self._window.append_many(tool_messages)
            self._last_outcome = TurnState.COMPLETED
            log.info(
                "turn_completed",
                message_id=message.id,
                chars=len(message.content),
                tool_calls=len(message.tool_calls),
                finish_reason=self._accumulator.finish_reason,
            )
        except asyncio.CancelledError:
            self._last_outcome = TurnState.CANCELLED
            log.info("turn_aborted")
            raise
        except Exception as exc:
            self._last_outcome = TurnState.FAILED
            log.error("turn_failed", error=str(exc), error_type=type(exc).__name__)
            await invoke_callback(callbacks.on_error, exc)
            raise
        finally:
            self._state = TurnState.IDLE
            self._cancel = None

        await self._persist()
        await invoke_callback(callbacks.on_complete, message)
        return message

    def cancel(self) -> bool:
        """Cancel the streaming turn. Returns False when nothing is streaming."""
        if self._state != TurnState.STREAMING or self._cancel is None:
            return False
        self._cancel.cancel()
        logger.info("turn_cancel_requested", session_id=self._session_id)
        return True

    async def _run_tool_calls(self, tool_calls: list[ToolCall], ctx: PluginContext) -> list[Message]:
        messages: list[Message] = []
        for tool_call in tool_calls:
            for result in await self._plugins.run_tool_call(tool_call, ctx):
                messages.append(
                    Message(
                        id=new_message_id(),
                        role=Role.TOOL,
                        content=_tool_result_text(result),
                        tool_call_id=tool_call.id,
                        name=tool_call.name,
                        timestamp=now_ms(),
                    )
                )
        return messages

    # -- persistence -----------------------------------------------------

    async def _persist(self) -> None:
        if self._store is None:
            return
        messages = self._window.all()

        task = asyncio.create_task(self._store.save_recent(self._session_id, messages))
        self._pending_saves.add(task)
        task.add_done_callback(self._on_recent_saved)

        snapshot = SessionSnapshot(
            id=self._session_id,
            messages=messages,
            created_at=self._created_at,
            updated_at=now_ms(),
            title=_title_for(messages),
        )
        try:
            await self._store.save_session(snapshot)
        except Exception as exc:
            logger.warning("persist_failed", session_id=self._session_id, op="save_session", error=str(exc))

    def _on_recent_saved(self, task: asyncio.Task) -> None:
        self._pending_saves.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("persist_failed", session_id=self._session_id, op="save_recent", error=str(exc))

    async def flush(self) -> None:
        """Wait for outstanding background saves."""
        if self._pending_saves:
            await asyncio.gather(*self._pending_saves, return_exceptions=True)

    async def restore_recent(self) -> bool:
        """Load the most recent unexpired session into the window."""
        if self._store is None:
            return False
        try:
            recent = await self._store.get_recent()
        except Exception as exc:
            logger.warning("restore_failed", error=str(exc))
            return False
        if recent is None:
            return False

        self._window.clear()
        self._window.append_many(recent.messages)
        self._session_id = recent.id
        self._created_at = recent.created_at
        logger.info("session_restored", session_id=recent.id, messages=len(recent.messages))
        return True

    # -- transcript management -------------------------------------------

    def history(self) -> list[Message]:
        return self._window.all()

    def clear(self) -> None:
        """Drop the transcript and start a new session id."""
        self._window.clear()
        self._session_id = _new_session_id()
        self._created_at = now_ms()
        logger.info("session_reset", session_id=self._session_id)

    def update_system_prompt(self, prompt: str) -> None:
        self._window.set_system_prompt(prompt)

    def pin_messages(self, messages: Iterable[Message]) -> None:
        self._window.pin(messages)

    def add_plugin(self, plugin: ChatPlugin) -> None:
        self._plugins.register(plugin)

    def remove_plugin(self, name: str) -> None:
        self._plugins.unregister(name)


def _title_for(messages: list[Message]) -> Optional[str]:
    for msg in messages:
        if msg.role == Role.USER and msg.content.strip():
            title = msg.content.strip().splitlines()[0]
            return title[:60]
    return None
