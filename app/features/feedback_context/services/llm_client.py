"""
OpenAI chat-completions client for the feedback context engine.

Handles retries for transient failures (rate limits, timeouts, 5xx) and
strict JSON-constrained calls validated against a pydantic model. Every
failure that reaches the caller is a ModelFailure carrying the status code
and a raw snippet for operators.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_model_call

from ..errors import ModelFailure

logger = get_logger(__name__)

SNIPPET_CHARS = 200
MAX_BACKOFF_SECONDS = 30


@dataclass(slots=True)
class Completion:
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    parsed: BaseModel | None = None

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


def _status_code(error: Exception) -> int | None:
    return getattr(error, "status_code", None)


class LLMClient:
    """Thin async wrapper over AsyncOpenAI with the engine's error contract."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        max_retries: int | None = None,
        max_tokens: int | None = None,
    ):
        self._client = client
        self.model = model or settings.OPENAI_MODEL
        self.max_retries = max_retries if max_retries is not None else settings.OPENAI_MAX_RETRIES
        self.max_tokens = max_tokens or settings.CHAT_MAX_COMPLETION_TOKENS

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise ModelFailure("OPENAI_API_KEY not configured in settings", recoverable=False)
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
            )
            logger.info(
                "OpenAI client initialized",
                model=self.model,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
            )
        return self._client

    @staticmethod
    def _messages(system: str, messages: Sequence[dict[str, str]]) -> list[dict[str, str]]:
        return [{"role": "system", "content": system}, *messages]

    async def complete(
        self,
        system: str,
        messages: Sequence[dict[str, str]],
        temperature: float,
        response_model: type[BaseModel] | None = None,
        max_tokens: int | None = None,
        purpose: str = "chat",
    ) -> Completion:
        """
        Single completion. With ``response_model`` the call is JSON-constrained
        and the payload must validate against the model; anything else raises
        ModelFailure rather than being parsed leniently.
        """
        request: dict[str, Any] = {
            "model": self.model,
            "messages": self._messages(system, messages),
            "temperature": temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if response_model is not None:
            request["response_format"] = {"type": "json_object"}

        started = time.perf_counter()
        try:
            response = await self._create_with_retry(request, purpose)
        except ModelFailure as e:
            log_model_call(
                purpose,
                self.model,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
                error=str(e),
            )
            raise

        usage = response.usage
        completion = Completion(
            text=response.choices[0].message.content.strip(),
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )
        log_model_call(
            purpose,
            self.model,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
        )

        if response_model is not None:
            completion.parsed = self.parse_structured(completion.text, response_model)
        return completion

    @staticmethod
    def parse_structured(text: str, response_model: type[BaseModel]) -> BaseModel:
        try:
            return response_model.model_validate_json(text)
        except ValidationError as e:
            logger.error(
                "Model returned non-conforming JSON",
                schema=response_model.__name__,
                error_count=e.error_count(),
                raw_result=text[:SNIPPET_CHARS],
            )
            raise ModelFailure(
                f"Model output does not match {response_model.__name__}",
                raw_snippet=text[:SNIPPET_CHARS],
            ) from e

    async def _create_with_retry(self, request: dict[str, Any], purpose: str):
        last_error: Exception | None = None
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                logger.debug("Calling OpenAI API", purpose=purpose, attempt=attempt + 1, model=self.model)
                response = await self.client.chat.completions.create(**request)

                if not response.choices or not response.choices[0].message.content:
                    last_error = ModelFailure("Empty response from OpenAI API")
                    logger.warning("Empty OpenAI response, retrying", purpose=purpose, attempt=attempt + 1)
                    continue

                return response

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, MAX_BACKOFF_SECONDS)
                logger.warning(
                    "OpenAI rate limit hit, retrying",
                    attempt=attempt + 1,
                    wait_time=wait_time,
                    error=str(e),
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(wait_time)

            except openai.APITimeoutError as e:
                last_error = e
                logger.warning(
                    "OpenAI API timeout, retrying",
                    attempt=attempt + 1,
                    timeout=settings.OPENAI_TIMEOUT_SECONDS,
                    error=str(e),
                )

            except openai.APIError as e:
                last_error = e
                status_code = _status_code(e)
                # Don't retry on client errors (4xx)
                if status_code is not None and 400 <= status_code < 500:
                    logger.error("OpenAI client error (not retrying)", status_code=status_code, error=str(e))
                    break
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

        logger.error(
            "OpenAI API call failed after all retries",
            purpose=purpose,
            attempts=attempts,
            final_error=str(last_error),
        )
        status_code = _status_code(last_error) if last_error else None
        raise ModelFailure(
            f"OpenAI API failed after {attempts} attempts: {last_error}",
            status_code=status_code,
            raw_snippet=str(last_error)[:SNIPPET_CHARS] if last_error else None,
            recoverable=status_code is None or status_code >= 500 or status_code == 429,
        ) from last_error

    async def stream(
        self,
        system: str,
        messages: Sequence[dict[str, str]],
        temperature: float,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> AsyncIterator[str]:
        """
        Yield text chunks as they arrive. Streams are not restartable, so no
        retry happens here; a failure mid-stream surfaces as ModelFailure.
        """
        request: dict[str, Any] = {
            "model": self.model,
            "messages": self._messages(system, messages),
            "temperature": temperature,
            "max_tokens": max_tokens or self.max_tokens,
            "stream": True,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(**request)
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except openai.APIError as e:
            logger.error("OpenAI stream failed", status_code=_status_code(e), error=str(e))
            raise ModelFailure(
                f"OpenAI stream failed: {e}",
                status_code=_status_code(e),
                raw_snippet=str(e)[:SNIPPET_CHARS],
            ) from e


_llm_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    """Shared client; the OpenAI connection is created on first use."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
