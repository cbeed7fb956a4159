"""Agent session: the conversation state machine."""

from __future__ import annotations

import logging

from localwork.backend import Backend
from localwork.errors import NoModelSelectedError, SessionBusyError
from localwork.model_session import ModelSessionManager
from localwork.schemas import TOOL_ERROR_PREFIX, ConversationMessage, Role, SessionState

logger = logging.getLogger(__name__)


class AgentSession:
    """Owns the conversation history and drives one turn at a time.

    Each turn sends the whole history plus the new user message to the
    backend, which runs any tool calls itself and answers with the assistant
    content plus the resolved calls. A successful turn commits the user and
    assistant messages together; a failed turn commits only an assistant
    message carrying the error, so failures stay visible in the chat.
    """

    def __init__(self, backend: Backend, models: ModelSessionManager):
        self._backend = backend
        self._models = models
        self._history: list[ConversationMessage] = []
        self._pending: ConversationMessage | None = None
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> tuple[ConversationMessage, ...]:
        return tuple(self._history)

    @property
    def pending_message(self) -> ConversationMessage | None:
        """User message of the turn in flight, not yet committed to history."""
        return self._pending

    async def send(self, text: str) -> ConversationMessage:
        """Send a user message and return the appended assistant message.

        Raises:
            ValueError: If the message is blank
            NoModelSelectedError: If no model is ready (history is untouched)
            SessionBusyError: If a turn is already in flight
        """
        if not text.strip():
            raise ValueError("Message is empty")

        if self._state == SessionState.AWAITING_RESPONSE:
            logger.warning("Rejected send: a turn is already in flight")
            raise SessionBusyError("A response is already being generated")

        if not self._models.active.is_ready:
            self._state = SessionState.BLOCKED_NO_MODEL
            logger.warning("Rejected send: no model is loaded")
            raise NoModelSelectedError("Select and load a model before chatting")

        user_message = ConversationMessage(role=Role.USER, content=text)
        self._pending = user_message
        self._state = SessionState.AWAITING_RESPONSE

        try:
            response = await self._backend.send_turn([*self._history, user_message])
        except Exception as e:
            detail = str(e) or e.__class__.__name__
            logger.error(f"Chat turn failed: {detail}")
            turn = [
                ConversationMessage(role=Role.ASSISTANT, content=f"{TOOL_ERROR_PREFIX} {detail}")
            ]
        else:
            reply = ConversationMessage(
                role=Role.ASSISTANT,
                content=response.content,
                tool_calls=list(response.tool_calls) or None,
            )
            if reply.tool_calls:
                failed = sum(1 for call in reply.tool_calls if call.is_error)
                logger.info(f"Turn used {len(reply.tool_calls)} tool calls ({failed} failed)")
            turn = [user_message, reply]
        finally:
            self._pending = None
            self._state = SessionState.IDLE

        self._history.extend(turn)
        return turn[-1]
