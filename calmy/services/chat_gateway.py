import logging
from typing import AsyncGenerator, AsyncIterator, List, Optional, Protocol, Sequence

from calmy.core.exceptions import AuthenticationError, ChatGatewayError
from calmy.models.chat_message import ChatMessage
from calmy.schemas.chat import ChatRequest, ContextTurn
from calmy.services.auth import parse_bearer
from calmy.services.conversation import DEFAULT_HISTORY_LIMIT, build_context
from calmy.services.prompts import EMPTY_REPLY_FALLBACK, ESCALATION_MESSAGE
from calmy.services.safety import detect_danger_signs

logger = logging.getLogger(__name__)

__all__ = ["ChatGateway"]


class LlmClient(Protocol):
    def stream_reply(self, turns: Sequence[ContextTurn]) -> AsyncGenerator[str, None]: ...


class MessageStore(Protocol):
    async def get_recent_messages(self, user_id: str, session_id: str, limit: int = ...) -> List[ChatMessage]: ...

    async def list_messages(self, user_id: str, session_id: str) -> List[ChatMessage]: ...

    async def save_message(self, user_id: str, session_id: str, role: str, content: str) -> ChatMessage: ...


class AuthVerifier(Protocol):
    async def verify(self, token: str) -> str: ...


class ChatGateway:
    """
    Handles one chat turn: authenticates the caller, assembles the context,
    streams the model's reply and records both turns.

    The user turn is written before generation starts and the model turn only
    after the provider finished the stream without error.
    """
    def __init__(
        self,
        llm: LlmClient,
        store: MessageStore,
        auth_verifier: AuthVerifier,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        enforce_user_binding: bool = True,
        safety_prefilter: bool = True,
    ):
        self.llm = llm
        self.store = store
        self.auth_verifier = auth_verifier
        self.history_limit = history_limit
        self.enforce_user_binding = enforce_user_binding
        self.safety_prefilter = safety_prefilter

    async def authenticate(self, authorization: Optional[str], user_id: str) -> str:
        """
        Verifies the bearer token and returns the caller's user id.

        Raises:
            AuthenticationError: If the token is missing or invalid, or, with
                user binding enforced, belongs to a different user than `user_id`.
        """
        token = parse_bearer(authorization)
        if token is None:
            raise AuthenticationError("Missing bearer token")

        caller_id = await self.auth_verifier.verify(token)
        if self.enforce_user_binding and caller_id != user_id:
            logger.warning(f"Authenticated user {caller_id} tried to act as {user_id}")
            raise AuthenticationError("Token does not belong to the requested user")
        return caller_id

    async def open_reply(self, request: ChatRequest) -> AsyncIterator[str]:
        """
        Prepares the turn and returns an async iterator over the reply chunks.

        Everything that can fail before the first byte (history read, user
        turn write, opening the provider stream) fails here with
        ChatGatewayError, so the caller can still answer with an error status.
        """
        user_id, session_id = request.user_id, request.session_id

        if self.safety_prefilter and detect_danger_signs(request.message):
            logger.info(f"Escalating session {session_id} without calling the model")
            await self.store.save_message(user_id, session_id, "user", request.message)
            return self._fixed_reply(user_id, session_id, ESCALATION_MESSAGE)

        history = await self.store.get_recent_messages(user_id, session_id, limit=self.history_limit)
        turns = build_context(history, request.message)
        logger.info(f"Assembled context for session {session_id}: history={len(history)}, turns={len(turns)}")

        await self.store.save_message(user_id, session_id, "user", request.message)

        chunks = self.llm.stream_reply(turns).__aiter__()
        try:
            first_chunk = await chunks.__anext__()
        except StopAsyncIteration:
            logger.warning(f"Received empty LLM response for session {session_id}")
            return self._fixed_reply(user_id, session_id, EMPTY_REPLY_FALLBACK)
        except ChatGatewayError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error opening LLM stream for session {session_id}: {e}", exc_info=True)
            raise ChatGatewayError("Could not start generation") from e

        return self._relay(user_id, session_id, first_chunk, chunks)

    async def history(self, user_id: str, session_id: str) -> List[ChatMessage]:
        return await self.store.list_messages(user_id, session_id)

    async def _relay(
        self, user_id: str, session_id: str, first_chunk: str, chunks: AsyncGenerator[str, None]
    ) -> AsyncIterator[str]:
        full_reply_parts = [first_chunk]
        try:
            yield first_chunk
            async for chunk in chunks:
                full_reply_parts.append(chunk)
                yield chunk
        except Exception:
            logger.error(
                f"LLM stream for session {session_id} failed after {len(full_reply_parts)} chunk(s); "
                "model turn not saved",
                exc_info=True,
            )
            raise
        finally:
            # Also runs when the response is closed early (client disconnect)
            await chunks.aclose()

        full_reply = "".join(full_reply_parts)
        logger.info(f"Full LLM response received for session {session_id}. Content length: {len(full_reply)}")
        await self.store.save_message(user_id, session_id, "model", full_reply)

    async def _fixed_reply(self, user_id: str, session_id: str, text: str) -> AsyncIterator[str]:
        yield text
        await self.store.save_message(user_id, session_id, "model", text)
