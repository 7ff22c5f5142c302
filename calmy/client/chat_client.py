import asyncio
import logging
import uuid
from enum import Enum
from typing import Callable, List, Optional, Protocol

import httpx
from supabase import Client

from calmy.core.config import settings
from calmy.schemas.chat import ConversationMessage
from calmy.services.prompts import CLIENT_ERROR_MESSAGE

logger = logging.getLogger(__name__)

__all__ = ["ChatClient", "ChatPhase", "ChatRequestError", "SupabaseSessionAuth"]


class ChatPhase(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_BYTE = "awaiting_first_byte"
    STREAMING = "streaming"
    DONE = "done"
    ERRORED = "errored"


class ChatRequestError(Exception):
    """The chat endpoint answered with an error status."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"Failed to get a response from the server. Status: {status_code}")
        self.status_code = status_code
        self.body = body


class AuthProvider(Protocol):
    async def get_user_id(self) -> Optional[str]: ...

    async def get_access_token(self) -> Optional[str]: ...


class SupabaseSessionAuth:
    """Reads the signed-in user and a fresh access token from a Supabase client."""

    def __init__(self, client: Client):
        self.client = client

    async def get_user_id(self) -> Optional[str]:
        try:
            response = await asyncio.to_thread(self.client.auth.get_user)
        except Exception as e:
            logger.warning(f"Could not resolve the signed-in user: {e}")
            return None
        user = getattr(response, "user", None)
        return str(user.id) if user else None

    async def get_access_token(self) -> Optional[str]:
        session = await asyncio.to_thread(self.client.auth.get_session)
        return session.access_token if session else None


UpdateCallback = Callable[[List[ConversationMessage]], None]


class ChatClient:
    """
    Drives one conversation with the chat endpoint.

    Messages are kept in insertion order. While the client waits for the first
    byte of a reply, `messages` ends with a single synthetic 'loading' entry;
    it is computed from the phase and never stored, so it can only ever be the
    last element. Only one send is in flight at a time.
    """

    def __init__(
        self,
        auth: AuthProvider,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        on_update: Optional[UpdateCallback] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.auth = auth
        self.on_update = on_update
        self._owns_http_client = http_client is None
        self.http = http_client or httpx.AsyncClient(
            base_url=base_url or settings.CHAT_API_URL,
            timeout=timeout_seconds or settings.CLIENT_TIMEOUT_SECONDS,
        )

        self.user_id: Optional[str] = None
        self.session_id: Optional[str] = None
        self.phase = ChatPhase.IDLE

        self._messages: List[ConversationMessage] = []
        self._loading: Optional[ConversationMessage] = None
        self._pending_reply: Optional[ConversationMessage] = None
        self._inflight: Optional[asyncio.Task] = None
        # Bumped by every send, cancel and reset; stale exchanges compare against it
        self._generation = 0

    # --- Lifecycle ---

    async def start(self) -> bool:
        """Resolves the signed-in user and opens a fresh session."""
        user_id = await self.auth.get_user_id()
        if not user_id:
            logger.error("User not logged in, cannot start chat.")
            return False
        self.user_id = user_id
        self.session_id = str(uuid.uuid4())
        logger.info(f"Chat session {self.session_id} started")
        return True

    async def aclose(self) -> None:
        self.cancel()
        if self._owns_http_client:
            await self.http.aclose()

    async def __aenter__(self) -> "ChatClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # --- State ---

    @property
    def is_sending(self) -> bool:
        return self.phase in (ChatPhase.AWAITING_FIRST_BYTE, ChatPhase.STREAMING)

    @property
    def messages(self) -> List[ConversationMessage]:
        messages = list(self._messages)
        if self.phase is ChatPhase.AWAITING_FIRST_BYTE and self._loading is not None:
            messages.append(self._loading)
        return messages

    # --- Operations ---

    async def send_message(self, text: str) -> bool:
        """
        Sends one user message and streams the reply into the message list.

        Returns False, without any side effect, when the text is blank, the
        user or session is not resolved yet, or another send is in flight.
        Failures never raise: they end with one fallback model message.
        """
        if not text or not text.strip() or not self.user_id or not self.session_id or self.is_sending:
            return False

        self._generation += 1
        generation = self._generation
        self._messages.append(ConversationMessage(role="user", content=text))
        self._loading = ConversationMessage(role="loading")
        self.phase = ChatPhase.AWAITING_FIRST_BYTE
        self._notify()

        task = asyncio.create_task(self._exchange(text, generation))
        self._inflight = task
        try:
            await task
        except asyncio.CancelledError:
            if generation != self._generation:
                # Stopped through cancel() or reset_chat(), state already cleaned up
                return True
            self._abandon()
            raise
        finally:
            if self._inflight is task:
                self._inflight = None
        return True

    def cancel(self) -> bool:
        """Abandons the in-flight send. The partial reply is discarded."""
        task = self._inflight
        if task is None or task.done():
            return False
        self._abandon()
        task.cancel()
        self._notify()
        return True

    def reset_chat(self) -> None:
        """Clears the conversation and starts a new session. Stored history is untouched."""
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._abandon()
        self._messages = []
        if self.user_id:
            self.session_id = str(uuid.uuid4())
        logger.info(f"Chat reset, new session {self.session_id}")
        self._notify()

    async def load_history(self) -> bool:
        """Replaces the message list with the session's stored messages."""
        if not self.user_id or not self.session_id or self.is_sending:
            return False
        try:
            token = await self.auth.get_access_token()
            if not token:
                raise RuntimeError("No session token found.")
            response = await self.http.get(
                "/api/chat/history",
                params={"sessionId": self.session_id, "userId": self.user_id},
                headers={"Authorization": f"Bearer {token}"},
            )
            if not response.is_success:
                raise ChatRequestError(response.status_code, response.text)
            rows = response.json()
        except Exception as e:
            logger.error(f"Could not load chat history: {e}", exc_info=True)
            return False

        self._messages = [ConversationMessage(role=row["role"], content=row["content"]) for row in rows]
        self._notify()
        return True

    # --- Internals ---

    async def _exchange(self, text: str, generation: int) -> None:
        try:
            token = await self.auth.get_access_token()
            if not token:
                raise RuntimeError("No session token found.")

            async with self.http.stream(
                "POST",
                "/api/chat",
                json={"message": text, "userId": self.user_id, "sessionId": self.session_id},
                headers={"Authorization": f"Bearer {token}"},
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(f"Server responded with an error: {body}")
                    raise ChatRequestError(response.status_code, body)

                self._begin_reply(generation)
                async for fragment in response.aiter_text():
                    if fragment:
                        self._append_fragment(generation, fragment)

            if generation == self._generation:
                self._pending_reply = None
                self.phase = ChatPhase.DONE
                self._notify()
        except Exception as e:
            logger.error(f"Chat error: {e}", exc_info=True)
            if generation == self._generation:
                self._fail()

    def _begin_reply(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._loading = None
        self._pending_reply = ConversationMessage(role="model")
        self._messages.append(self._pending_reply)
        self.phase = ChatPhase.STREAMING
        self._notify()

    def _append_fragment(self, generation: int, fragment: str) -> None:
        if generation != self._generation or self._pending_reply is None:
            return
        self._pending_reply.content += fragment
        self._notify()

    def _fail(self) -> None:
        self._discard_pending_reply()
        self._loading = None
        self._messages.append(ConversationMessage(role="model", content=CLIENT_ERROR_MESSAGE))
        self.phase = ChatPhase.ERRORED
        self._notify()

    def _abandon(self) -> None:
        self._generation += 1
        self._discard_pending_reply()
        self._loading = None
        self.phase = ChatPhase.IDLE

    def _discard_pending_reply(self) -> None:
        if self._pending_reply is not None:
            self._messages = [m for m in self._messages if m is not self._pending_reply]
            self._pending_reply = None

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self.messages)
