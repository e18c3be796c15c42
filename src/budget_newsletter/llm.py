"""LLM adapter interface and Anthropic implementation.

Defines the LLMAdapter protocol for producing newsletter commentary, plus
two implementations:
- AnthropicAdapter: sends the prompt to the Anthropic Messages API via httpx.
- NullAdapter: always unavailable (for --skip-ai / ``provider = "none"``).

``write_commentary`` drives the recovery chain: primary model, then the
secondary model, then the deterministic template text supplied by the
caller. Adapters raise :class:`LLMUnavailableError`; the chain never does.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Protocol

import httpx

from budget_newsletter.errors import LLMUnavailableError
from budget_newsletter.models import Commentary, LLMResponse

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"

STAGE = "llm"


class LLMAdapter(Protocol):
    """Protocol for commentary generation.

    Implementations send one prompt to one model and return the text plus
    token usage. On any failure they raise :class:`LLMUnavailableError`.
    """

    async def generate(self, prompt: str, model: str, max_tokens: int) -> LLMResponse:
        ...


class AnthropicAdapter:
    """LLM adapter that calls the Anthropic Messages API via httpx.

    Reads the API key from the environment variable named by
    ``api_key_env`` at call time.

    Args:
        api_key_env: Name of the environment variable containing the API key.
        timeout: HTTP request timeout in seconds. Default: 60.
        client: Optional shared ``httpx.AsyncClient`` (tests inject one
            backed by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        api_key_env: str = "ANTHROPIC_API_KEY",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key_env = api_key_env
        self.timeout = timeout
        self._client = client

    async def generate(self, prompt: str, model: str, max_tokens: int) -> LLMResponse:
        """Send *prompt* to *model* and return the response text and usage.

        Raises:
            LLMUnavailableError: On a missing API key, transport error,
                non-2xx status, or a response without text.
        """
        api_key = os.environ.get(self.api_key_env, "")
        if not api_key:
            raise LLMUnavailableError(
                STAGE, f"API key not found in environment variable '{self.api_key_env}'"
            )

        request_body = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": prompt,
                }
            ],
        }
        headers = {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }

        try:
            if self._client is not None:
                response = await self._client.post(
                    ANTHROPIC_API_URL, json=request_body, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        ANTHROPIC_API_URL, json=request_body, headers=headers
                    )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("LLM request to %s timed out", model)
            raise LLMUnavailableError(STAGE, f"{model}: request timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "LLM API returned HTTP %d for %s: %s",
                exc.response.status_code,
                model,
                exc.response.text[:200],
            )
            raise LLMUnavailableError(
                STAGE, f"{model}: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("LLM request to %s failed: %s", model, exc)
            raise LLMUnavailableError(STAGE, f"{model}: {exc}") from exc

        # Extract text from the Anthropic response format
        try:
            body = response.json()
            text_parts: list[str] = []
            for block in body.get("content", []):
                if block.get("type") == "text":
                    text_parts.append(block["text"])
            usage = body.get("usage", {})
            input_tokens = int(usage.get("input_tokens", 0))
            output_tokens = int(usage.get("output_tokens", 0))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Failed to extract text from LLM response: %s", exc)
            raise LLMUnavailableError(STAGE, f"{model}: unreadable response") from exc

        text = "\n".join(text_parts).strip()
        if not text:
            raise LLMUnavailableError(STAGE, f"{model}: response contained no text")

        return LLMResponse(text=text, input_tokens=input_tokens, output_tokens=output_tokens)


class NullAdapter:
    """No-op LLM adapter for skip-AI mode.

    Always raises, so the commentary chain falls straight through to the
    template text.
    """

    async def generate(self, prompt: str, model: str, max_tokens: int) -> LLMResponse:
        raise LLMUnavailableError(STAGE, "LLM disabled")


async def write_commentary(
    adapter: LLMAdapter,
    prompt: str,
    models: list[str],
    max_tokens: int,
    template_text: str,
) -> Commentary:
    """Try each model in order, falling back to *template_text*.

    Args:
        adapter: The LLM adapter.
        prompt: The assembled analysis prompt.
        models: Model identifiers, primary first.
        max_tokens: Response token limit.
        template_text: Deterministic commentary used when every model fails.

    Returns:
        A :class:`Commentary` whose ``source`` is ``"primary"``,
        ``"fallback"`` or ``"template"``.
    """
    for position, model in enumerate(m for m in models if m):
        try:
            response = await adapter.generate(prompt, model, max_tokens)
        except LLMUnavailableError as exc:
            logger.warning("Commentary from %s unavailable: %s", model, exc.message)
            continue
        return Commentary(
            text=response.text,
            source="primary" if position == 0 else "fallback",
            tokens=response.total_tokens,
            model=model,
        )

    logger.info("Using template commentary")
    return Commentary(text=template_text, source="template")
