import logging
import asyncio
from typing import AsyncIterator, List, Optional, Sequence
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from calmy.core.exceptions import GenerationError
from calmy.schemas.chat import ContextTurn
from calmy.services.prompts import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

__all__ = ['GeminiChatService', 'SAFETY_CATEGORIES']

# Legitimate pregnancy questions easily trip stricter thresholds
SAFETY_CATEGORIES = (
    types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)

class GeminiChatService:
    """
    Streams chat replies from Google's Gemini models.

    The service turns the assembled conversation context into Gemini contents,
    applies the generation and safety configuration, and yields the reply text
    chunk by chunk as the provider produces it.
    """
    def __init__(
        self,
        api_key: str,
        model: str,
        temperature: float = 0.5,
        timeout_seconds: float = 30.0,
        system_instruction: str = SYSTEM_PROMPT,
        client: Optional[genai.Client] = None,
    ):
        """
        Initializes the GeminiChatService.

        Args:
            api_key (str): Google API Key for the Gemini API.
            model (str): Model name used for generation.
            temperature (float): Sampling temperature.
            timeout_seconds (float): Upper bound for opening the stream and for each chunk.
            system_instruction (str): Policy sent as the system instruction.
            client (genai.Client): Optional pre-built client.

        Raises:
            ConnectionError: If initialization of the Google GenAI Client fails.
        """
        self.model = model
        self.timeout_seconds = timeout_seconds

        logger.info(f"Initializing GeminiChatService with model='{self.model}', temperature={temperature}")

        try:
            self.client = client or genai.Client(api_key=api_key)
        except Exception as e:
            logger.error(f"Failed to initialize Google GenAI Client: {e}", exc_info=True)
            raise ConnectionError(f"Failed to initialize Google GenAI Client: {e}") from e

        self.config = types.GenerateContentConfig(
            temperature=temperature,
            system_instruction=system_instruction,
            safety_settings=[
                types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_ONLY_HIGH)
                for category in SAFETY_CATEGORIES
            ],
        )

    @staticmethod
    def to_contents(turns: Sequence[ContextTurn]) -> List[types.Content]:
        return [
            types.Content(role=turn.role, parts=[types.Part(text=turn.text)])
            for turn in turns
        ]

    async def stream_reply(self, turns: Sequence[ContextTurn]) -> AsyncIterator[str]:
        """
        Async generator yielding the non-empty text chunks of the model's reply.

        Raises:
            GenerationError: If the provider fails, or if opening the stream or
                waiting for the next chunk exceeds the timeout.
        """
        logger.debug(f"Generating stream with model={self.model}, turns={len(turns)}")
        try:
            stream = await asyncio.wait_for(
                self.client.aio.models.generate_content_stream(
                    model=self.model,
                    contents=self.to_contents(turns),
                    config=self.config,
                ),
                timeout=self.timeout_seconds,
            )
            iterator = stream.__aiter__()
            while True:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=self.timeout_seconds)
                except StopAsyncIteration:
                    break
                text_chunk = self._extract_text(chunk)
                if text_chunk:
                    yield text_chunk
        except asyncio.TimeoutError as e:
            logger.error(f"Gemini stream with {self.model} timed out after {self.timeout_seconds}s")
            raise GenerationError("LLM stream timed out") from e
        except genai_errors.APIError as api_err:
            logger.error(f"Google API Error during streaming generation with {self.model}: {api_err}", exc_info=True)
            raise GenerationError(f"LLM API Error: {api_err}") from api_err

    @staticmethod
    def _extract_text(chunk: types.GenerateContentResponse) -> str:
        try:
            return chunk.text or ""
        except ValueError:
            # Raised by some SDK versions when a chunk only carries blocked candidates
            logger.warning(f"Chunk without text content: {chunk}")
            return ""
