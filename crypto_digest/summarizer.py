"""Chat-completions summarizer for a single digest entry."""
from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from .http_client import HttpClientError, body_snippet, request_json, status_of

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "mixtral-8x7b-32768"
COMPLETIONS_PATH = "/openai/v1/chat/completions"

SYSTEM_INSTRUCTION = (
    "Response must not exceed 280 tokens. You are a crypto analyst and journalist. "
    "You analyze news/prices and summarize the data. The summary for each token must use the "
    "following template: 'Analyze the following data: Coin: {coin_name}, Symbol: {coin_symbol}, "
    "24h Change: {24h_change}%, 7d Change: {7d_change}%, What caused: {news analysis}'. "
    "The summary must not exceed 300 tokens and must NOT include any URLs, references, or links. "
    "Just provide the analysis in a newspaper style. If one of the news items is not related to "
    "the token, ignore it and do not mention it. You don't have to list the news. "
    "Write a solid, stylish newspaper paragraph that highlights the most important news and "
    "explains it to readers as the reason for the rise or fall in the price of the token. "
    "Make sure that all sentences are logically connected and complete."
)


class SummarizerError(RuntimeError):
    """Raised when the LLM provider does not return a usable completion."""


class ChatMessage(BaseModel):
    content: Optional[str] = None


class ChatChoice(BaseModel):
    message: ChatMessage


class ChatCompletionResponse(BaseModel):
    choices: list[ChatChoice]


class ChatSummarizer:
    """OpenAI-compatible chat-completions client (Groq by default)."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 320,
        temperature: float = 0.5,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: Any) -> "ChatSummarizer":
        return cls(
            config.llm_api_key,
            config.llm_base_url,
            model=config.llm_model,
            max_tokens=config.llm_max_tokens,
            timeout_seconds=config.http_timeout_seconds,
        )

    @property
    def url(self) -> str:
        return f"{self.base_url.rstrip('/')}{COMPLETIONS_PATH}"

    def build_payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_INSTRUCTION},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": 1.0,
            "stop": None,
            "stream": False,
        }

    def summarize(self, prompt: str) -> str:
        logger.debug("summarize_request model=%s prompt=%s", self.model, prompt)
        try:
            payload = request_json(
                self.url,
                method="POST",
                headers={"Authorization": f"Bearer {self.api_key}"},
                body=self.build_payload(prompt),
                timeout=self.timeout_seconds,
            )
        except HttpClientError as exc:
            logger.warning(
                "summarize_failed model=%s status=%s body=%s error=%s",
                self.model,
                status_of(exc),
                body_snippet(exc),
                exc,
            )
            raise SummarizerError("No valid response received.") from exc

        try:
            parsed = ChatCompletionResponse.model_validate(payload)
        except ValidationError as exc:
            logger.warning("summarize_unexpected_response body=%s", str(payload)[:180])
            raise SummarizerError("No valid response received.") from exc

        content = parsed.choices[0].message.content if parsed.choices else None
        if not content or not content.strip():
            logger.warning("summarize_empty_content body=%s", str(payload)[:180])
            raise SummarizerError("No valid response received.")
        return content.strip()
