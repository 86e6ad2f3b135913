"""Text-understanding and generation service adapter.

Wraps OpenAI chat completions behind a single ``complete`` call used by
both page extraction and answer synthesis, each with its own instruction.
"""

import logging
from typing import Optional

import openai
from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class TextServiceError(Exception):
    """Raised when the text-understanding service cannot produce a completion."""
    pass


class TextService:
    """Async chat-completion client."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, api_key: Optional[str] = None):
        self._client = client
        self._api_key = api_key

    @property
    def client(self) -> AsyncOpenAI:
        # Created on first use so importing and wiring never requires a key
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def complete(self,
                       system_instruction: str,
                       content: str,
                       model: str,
                       temperature: float = 0.2,
                       max_tokens: Optional[int] = None,
                       json_response: bool = False) -> str:
        """Run one completion and return the message text.

        Args:
            system_instruction: System prompt
            content: User message
            model: Model name
            temperature: Sampling temperature
            max_tokens: Response token limit
            json_response: Ask the service for a JSON object

        Returns:
            The completion text (may be empty)

        Raises:
            TextServiceError: On any transport or API failure
        """
        kwargs = {
            'model': model,
            'messages': [
                {'role': 'system', 'content': system_instruction},
                {'role': 'user', 'content': content},
            ],
            'temperature': temperature,
        }
        if max_tokens is not None:
            kwargs['max_tokens'] = max_tokens
        if json_response:
            kwargs['response_format'] = {'type': 'json_object'}

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            logger.warning(f"Completion request to {model} failed: {e}")
            raise TextServiceError(str(e)) from e

        if not response.choices:
            raise TextServiceError(f"Completion from {model} returned no choices")

        return response.choices[0].message.content or ""
