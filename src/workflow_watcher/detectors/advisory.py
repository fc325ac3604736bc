"""Model-assisted detection for anomalies the rule engine misses.

Best effort only: any backend failure, timeout or unusable answer simply
means no finding for this pass.
"""

import json
import logging
import re
from typing import Optional

from pydantic import BaseModel, ValidationError

from ..core.task import AnomalyType, CreateTaskInput, Priority, TaskSource
from ..llm.base import LLMBackend, LLMRequest
from .rules import RuleEngine

logger = logging.getLogger(__name__)

_JSON_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_EXCERPT_CHARS = 300

SYSTEM_PROMPT = """You review output from an automated coding agent and flag anomalies.
Respond with a single JSON object and nothing else:
{"anomaly_detected": bool, "anomaly_type": str, "priority": "high"|"medium"|"low",
 "analysis": str, "confidence": float between 0 and 1, "suggested_agent": str, "prompt": str}
anomaly_type must be one of: """ + ", ".join(a.value for a in AnomalyType)


class AdvisoryVerdict(BaseModel):
    """Shape of the model's answer."""
    anomaly_detected: bool = False
    anomaly_type: Optional[str] = None
    priority: Optional[str] = None
    analysis: Optional[str] = None
    confidence: float = 0.0
    suggested_agent: Optional[str] = None
    prompt: Optional[str] = None


def _extract_json(content: str) -> Optional[dict]:
    fenced = _JSON_FENCE_PATTERN.findall(content)
    candidates = fenced[::-1] + [content]
    for candidate in candidates:
        candidate = candidate.strip()
        start, end = candidate.find("{"), candidate.rfind("}")
        if start < 0 or end <= start:
            continue
        try:
            data = json.loads(candidate[start:end + 1])
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


class AdvisoryAnalyzer:
    """
    Rules first, model second.

    The model's answer is accepted only when it reports an anomaly of a known
    type, carries a prompt and agent, and meets the confidence floor.
    Priority is capped at ``high``; critical is reserved for deterministic
    findings.
    """

    def __init__(
        self,
        backend: LLMBackend,
        rule_engine: Optional[RuleEngine] = None,
        confidence_threshold: float = 0.7,
        max_log_chars: int = 4000,
        max_tokens: int = 1024,
    ):
        self.backend = backend
        self.rule_engine = rule_engine or RuleEngine()
        self.confidence_threshold = confidence_threshold
        self.max_log_chars = max_log_chars
        self.max_tokens = max_tokens

    async def analyze(self, log_content: str) -> Optional[CreateTaskInput]:
        if not log_content or not log_content.strip():
            return None
        match = self.rule_engine.analyze(log_content)
        if match:
            return match.to_task_input()
        return await self.analyze_with_model(log_content)

    async def analyze_with_model(self, log_content: str) -> Optional[CreateTaskInput]:
        recent = log_content[-self.max_log_chars:]
        try:
            response = await self.backend.complete(LLMRequest(
                prompt=f"Agent output:\n\n{recent}",
                system_prompt=SYSTEM_PROMPT,
                max_tokens=self.max_tokens,
            ))
        except Exception as e:
            logger.warning(f"Advisory analysis skipped: backend error: {e}")
            return None

        if not response.success:
            logger.info(f"Advisory analysis skipped: {response.error}")
            return None

        data = _extract_json(response.content)
        if data is None:
            logger.info("Advisory analysis skipped: response was not JSON")
            return None
        try:
            verdict = AdvisoryVerdict.model_validate(data)
        except ValidationError as e:
            logger.info(f"Advisory analysis skipped: malformed response: {e.error_count()} errors")
            return None

        return self._to_task_input(verdict, recent)

    def _to_task_input(self, verdict: AdvisoryVerdict, log_content: str) -> Optional[CreateTaskInput]:
        if not verdict.anomaly_detected:
            return None
        if not (verdict.anomaly_type and verdict.prompt and verdict.suggested_agent):
            logger.info("Advisory analysis skipped: response missing required fields")
            return None
        if verdict.confidence < self.confidence_threshold:
            logger.debug(
                f"Advisory finding below threshold ({verdict.confidence:.2f} < "
                f"{self.confidence_threshold:.2f})"
            )
            return None

        try:
            anomaly = AnomalyType(verdict.anomaly_type)
        except ValueError:
            logger.info(f"Advisory analysis skipped: unknown anomaly type {verdict.anomaly_type!r}")
            return None

        try:
            priority = Priority(verdict.priority or Priority.MEDIUM.value)
        except ValueError:
            priority = Priority.MEDIUM
        if priority == Priority.CRITICAL:
            priority = Priority.HIGH

        return CreateTaskInput(
            priority=priority,
            source=TaskSource.LOG_MONITOR,
            anomaly_type=anomaly,
            prompt=verdict.prompt,
            suggested_agent=verdict.suggested_agent,
            context={
                "analysis": verdict.analysis,
                "confidence": verdict.confidence,
                "log_excerpt": log_content[:_EXCERPT_CHARS],
            },
        )
