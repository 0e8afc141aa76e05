"""
Dialogue Engine: LLM-powered reply generation.

Sends the transcript as a single user turn behind a fixed persona/policy
block. The persona is opaque configuration: it is passed through as the
system message and never inspected here. No conversation history is
kept between calls.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from config.settings import DialogueConfig, get_settings
from core.errors import DialogueError

logger = structlog.get_logger()


class DialogueEngine:
    """
    Generates the assistant reply for one transcript using the OpenAI
    chat completions API.
    """

    def __init__(self, config: DialogueConfig = None, client: Any = None, persona: str = None):
        self.config = config or get_settings().dialogue
        self.persona = persona if persona is not None else self.config.load_persona()
        self._client = client

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.config.api_key)
            logger.info("llm_client_initialized", provider="openai", model=self.config.model)
        return self._client

    def build_messages(self, transcript: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.persona},
            {"role": "user", "content": transcript},
        ]

    async def generate_reply(self, transcript: str) -> str:
        """
        Return the first completion's text, trimmed.

        Raises DialogueError on any API failure, on an empty choice list,
        and on a choice that carries no text.
        """
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": self.build_messages(transcript),
            "temperature": self.config.temperature,
        }
        if self.config.max_tokens:
            kwargs["max_tokens"] = self.config.max_tokens

        try:
            response = await client.chat.completions.create(**kwargs)
        except Exception as e:
            raise DialogueError(f"Dialogue request failed: {e}") from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise DialogueError("Dialogue service returned no completions")

        content: Optional[str] = choices[0].message.content
        reply = (content or "").strip()
        if not reply:
            raise DialogueError("Dialogue service returned an empty reply")

        logger.debug("llm_reply_received", model=self.config.model,
                     choices=len(choices), chars=len(reply))
        return reply

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
