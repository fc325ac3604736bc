"""LLM backends for the advisory analysis pass."""

from .base import LLMBackend, LLMRequest, LLMResponse
from .litellm_backend import LiteLLMBackend

__all__ = ["LLMBackend", "LLMRequest", "LLMResponse", "LiteLLMBackend"]
