"""Simulated assistant replies streamed into a conversation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from .config import REPLY_CHAR_DELAY, REPLY_START_DELAY
from .models import Conversation, Message, MessageRole, utcnow

logger = logging.getLogger(__name__)

Locator = Callable[[UUID], Conversation | None]
Completion = Callable[[Conversation], None]


def compose_reply(prompt: str) -> str:
    """Canned reply text; there is no model behind it."""
    return f"You said: {prompt}"


class ReplySimulator:
    """Streams a canned reply into a conversation one character at a time.

    Each stream runs as an asyncio task keyed by conversation id. The
    conversation and the assistant message are looked up by id before every
    write, so a stream whose conversation disappears stops quietly. A new
    reply to the same conversation waits for the previous one to finish.

    Without a running event loop the reply is written in one step.
    """

    def __init__(
        self,
        start_delay: float = REPLY_START_DELAY,
        char_delay: float = REPLY_CHAR_DELAY,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.start_delay = start_delay
        self.char_delay = char_delay
        self.clock = clock
        self._tasks: dict[UUID, asyncio.Task] = {}

    def start(
        self,
        conversation_id: UUID,
        prompt: str,
        locate: Locator,
        on_complete: Completion,
    ) -> asyncio.Task | None:
        text = compose_reply(prompt)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_at_once(conversation_id, text, locate, on_complete)
            return None

        previous = self._tasks.get(conversation_id)
        task = loop.create_task(
            self._stream(conversation_id, text, locate, on_complete, previous)
        )
        self._tasks[conversation_id] = task
        task.add_done_callback(lambda t: self._forget(conversation_id, t))
        return task

    def is_streaming(self, conversation_id: UUID) -> bool:
        task = self._tasks.get(conversation_id)
        return task is not None and not task.done()

    def cancel(self, conversation_id: UUID) -> None:
        task = self._tasks.pop(conversation_id, None)
        if task is not None:
            task.cancel()

    def cancel_all(self) -> None:
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()

    async def wait(self) -> None:
        """Wait for every reply currently streaming."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def _forget(self, conversation_id: UUID, task: asyncio.Task) -> None:
        if self._tasks.get(conversation_id) is task:
            del self._tasks[conversation_id]

    def _write_at_once(
        self,
        conversation_id: UUID,
        text: str,
        locate: Locator,
        on_complete: Completion,
    ) -> None:
        conversation = locate(conversation_id)
        if conversation is None:
            return
        now = self.clock()
        conversation.messages.append(
            Message(content=text, role=MessageRole.ASSISTANT, timestamp=now)
        )
        conversation.updated_at = now
        on_complete(conversation)

    async def _stream(
        self,
        conversation_id: UUID,
        text: str,
        locate: Locator,
        on_complete: Completion,
        previous: asyncio.Task | None,
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        await asyncio.sleep(self.start_delay)

        conversation = locate(conversation_id)
        if conversation is None:
            return
        message = Message(content="", role=MessageRole.ASSISTANT, timestamp=self.clock())
        conversation.messages.append(message)

        for ch in text:
            await asyncio.sleep(self.char_delay)
            conversation = locate(conversation_id)
            current = conversation.find_message(message.id) if conversation else None
            if current is None:
                logger.debug("Reply target %s is gone, stopping stream", conversation_id)
                return
            current.content += ch

        conversation.updated_at = self.clock()
        on_complete(conversation)
