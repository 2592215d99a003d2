"""Thin wrapper around an OpenAI-compatible chat-completion API."""

from __future__ import annotations

import logging

from openai import OpenAI as _HTTPClient

from inspectflow.config import Settings

logger = logging.getLogger(__name__)


def make_openai_client(settings: Settings) -> _HTTPClient:
    """One client per pipeline; timeouts and retries come from settings."""
    return _HTTPClient(
        api_key=settings.openai_api_key or "unused",  # local servers ignore the key
        base_url=settings.openai_base_url,
        timeout=settings.request_timeout_s,
        max_retries=settings.max_retries,
    )


class LLMClient:
    def __init__(self, client: _HTTPClient, model: str, max_tokens: int = 1000) -> None:
        self._client = client
        self.model = model
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings, client: _HTTPClient | None = None) -> LLMClient:
        return cls(
            client or make_openai_client(settings),
            model=settings.llm_model,
            max_tokens=settings.llm_max_tokens,
        )

    def chat(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = True,
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> str:
        """Send a chat completion request and return the assistant's reply.

        Errors from the client (connection, timeout, non-2xx status) propagate.
        """
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens or self.max_tokens,
            **kwargs,
        )
        content = response.choices[0].message.content or ""
        logger.debug("LLM response (%d chars): %s…", len(content), content[:120])
        return content.strip()
