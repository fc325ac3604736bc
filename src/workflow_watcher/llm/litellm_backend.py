"""LiteLLM direct API backend implementation.

Text-only completion using the litellm Python library; used by the advisory
analysis pass.
"""

import asyncio
import logging
import time
from typing import Optional

import litellm

from .base import LLMBackend, LLMRequest, LLMResponse

logger = logging.getLogger(__name__)


class LiteLLMBackend(LLMBackend):
    """LLM backend using litellm for direct API calls to any supported provider."""

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout

    def _failure(self, model: str, start_time: float, error: str) -> LLMResponse:
        return LLMResponse(
            content="",
            model_used=model,
            input_tokens=0,
            output_tokens=0,
            finish_reason="error",
            latency_ms=(time.time() - start_time) * 1000,
            success=False,
            error=error,
        )

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Send a completion request via litellm.acompletion()."""
        start_time = time.time()
        model = request.model or self.model

        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        kwargs = {
            "model": model,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        try:
            response = await asyncio.wait_for(
                litellm.acompletion(**kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"LiteLLM call timed out after {self.timeout} seconds")
            return self._failure(model, start_time, f"LiteLLM call timed out after {self.timeout} seconds")
        except Exception as e:
            logger.warning(f"LiteLLM call failed: {e}")
            return self._failure(model, start_time, str(e))

        content = response.choices[0].message.content or ""
        finish_reason = response.choices[0].finish_reason or "stop"
        usage = getattr(response, "usage", None)

        return LLMResponse(
            content=content,
            model_used=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            finish_reason=finish_reason,
            latency_ms=(time.time() - start_time) * 1000,
        )
