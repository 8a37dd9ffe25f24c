# app/services/responder/openai_responder.py
"""
OpenAI-backed responder.

Treated as a black box by the pipeline: a system prompt, the conversation
so far and the new message go in, a reply string comes out. Failures and
timeouts degrade to a fixed fallback reply instead of propagating.
"""

import asyncio

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FALLBACK_REPLY = (
    "Thank you for your message. I'm having trouble answering right now, "
    "but someone from our team will get back to you shortly."
)


class ResponderError(Exception):
    """Raised when the text generation call fails."""

    def __init__(self, message: str, api_error: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.api_error = api_error
        self.recoverable = recoverable


class OpenAIResponder:
    """Chat-completions wrapper with a hard timeout and a fallback reply."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout or settings.OPENAI_TIMEOUT_SECONDS
        self.max_tokens = max_tokens or settings.OPENAI_MAX_TOKENS
        self.temperature = settings.OPENAI_TEMPERATURE if temperature is None else temperature
        self.client = client or self._initialize_client()

    def _initialize_client(self) -> AsyncOpenAI | None:
        if not settings.OPENAI_API_KEY:
            logger.warning("OPENAI_API_KEY not configured; responder will use the fallback reply")
            return None
        # Client-level retries are disabled; the hard timeout below bounds the whole call
        return AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=self.timeout, max_retries=0)

    def is_configured(self) -> bool:
        return self.client is not None

    async def generate(self, system_prompt: str, history: list[dict[str, str]], message: str) -> str:
        """
        Generate a reply.

        Args:
            system_prompt: Instructions for the model
            history: Prior turns as role/content dicts, oldest first
            message: The inbound message being answered

        Returns:
            The generated reply, or FALLBACK_REPLY on any failure
        """
        try:
            return await asyncio.wait_for(
                self._complete(system_prompt, history, message), timeout=self.timeout
            )
        except TimeoutError:
            logger.error("Responder timed out", timeout=self.timeout, model=self.model)
        except ResponderError as e:
            logger.error("Responder failed", error=str(e), api_error=e.api_error)
        return FALLBACK_REPLY

    async def _complete(self, system_prompt: str, history: list[dict[str, str]], message: str) -> str:
        if self.client is None:
            raise ResponderError("OpenAI client not initialized", recoverable=False)

        messages = [{"role": "system", "content": system_prompt}, *history]
        messages.append({"role": "user", "content": message})

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.APIError as e:
            raise ResponderError(
                "OpenAI API call failed",
                api_error=str(e),
                recoverable=not isinstance(e, openai.BadRequestError),
            ) from e

        if not response.choices or not response.choices[0].message.content:
            raise ResponderError("Empty response from OpenAI API")

        reply = response.choices[0].message.content.strip()
        logger.info(
            "Responder reply generated",
            model=self.model,
            history_turns=len(history),
            response_length=len(reply),
            usage_tokens=response.usage.total_tokens if response.usage else 0,
        )
        return reply
