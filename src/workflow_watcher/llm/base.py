"""Base LLM backend interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class LLMRequest:
    """Request to LLM backend."""
    prompt: str
    system_prompt: Optional[str] = None
    model: Optional[str] = None  # None = backend default
    max_tokens: int = 1024
    temperature: float = 0.0


@dataclass
class LLMResponse:
    """Response from LLM backend."""
    content: str
    model_used: str
    input_tokens: int
    output_tokens: int
    finish_reason: str
    latency_ms: float
    success: bool = True
    error: Optional[str] = None


class LLMBackend(ABC):
    """Abstract base class for LLM backends."""

    @abstractmethod
    async def complete(self, request: LLMRequest) -> LLMResponse:
        """
        Send a completion request to the LLM.

        Implementations report failures through ``LLMResponse.success`` and
        ``error`` rather than raising.
        """
        pass
