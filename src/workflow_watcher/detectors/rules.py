"""Hardcoded rules for fast anomaly detection in raw agent output.

Everything here is pure: text in, matches out. No I/O, no clock.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from ..core.task import AnomalyType, CreateTaskInput, Priority, TaskSource

DEFAULT_LOOP_THRESHOLD = 5
LOOP_CONFIDENCE_BASE = 0.85
LOOP_CONFIDENCE_STEP = 0.03
LOOP_CONFIDENCE_CAP = 0.98

_TOOL_RE = re.compile(r"Tool:\s*(\w+)")
_HEX_RE = re.compile(r"\b(?:0x[0-9a-f]+|[0-9a-f]{7,})\b")
_NUM_RE = re.compile(r"\d+")
_SPACE_RE = re.compile(r"\s+")

_TRACEBACK_HEADER = "Traceback (most recent call last):"
_PY_FRAME_RE = re.compile(r'File "([^"]+)", line (\d+)')
_PY_EXCEPTION_RE = re.compile(r"^\s*(?:[\w.]+\.)?(\w*(?:Error|Exception)):\s*(.*)$")
_JS_STACK_RE = re.compile(
    r"(?:TypeError|ReferenceError|SyntaxError|RangeError):\s*(.+?)\n\s+at\s+\S+\s+\(([^:]+):(\d+)"
)
_JS_FRAME_RE = re.compile(r"at\s+\S+\s+\(([^:]+):(\d+)")


@dataclass
class RuleMatch:
    """A positive rule hit, ready to become a task."""

    rule: str
    anomaly_type: AnomalyType
    priority: Priority
    confidence: float
    prompt: str
    suggested_agent: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_task_input(self, source: TaskSource = TaskSource.LOG_MONITOR) -> CreateTaskInput:
        return CreateTaskInput(
            priority=self.priority,
            source=source,
            anomaly_type=self.anomaly_type,
            prompt=self.prompt,
            suggested_agent=self.suggested_agent,
            context={**self.context, "confidence": self.confidence},
        )


@dataclass
class Rule:
    name: str
    pattern: re.Pattern
    anomaly_type: AnomalyType
    priority: Priority
    confidence: float
    suggested_agent: str
    extract: Callable[[re.Match], dict[str, Any]]
    prompt: Callable[[dict[str, Any]], str]


def _excerpt(match: re.Match, limit: int = 300) -> dict[str, Any]:
    return {"log_excerpt": match.group(0)[:limit]}


def _test_file(match: re.Match) -> dict[str, Any]:
    return {"test_file": match.group(1), "log_excerpt": match.group(0)}


def _pytest_failure(match: re.Match) -> dict[str, Any]:
    return {"test_file": match.group(1), "test_name": match.group(2), "log_excerpt": match.group(0)}


def _fix_test_file(ctx: dict[str, Any]) -> str:
    return (
        f"Fix the failing test in {ctx['test_file']}. "
        "Analyze the test failure and implement the necessary fix."
    )


RULES: list[Rule] = [
    Rule(
        name="test_failure_fail",
        pattern=re.compile(r"FAIL\s+(\S+\.test\.[tj]sx?)", re.IGNORECASE),
        anomaly_type=AnomalyType.TEST_FAILURE,
        priority=Priority.HIGH,
        confidence=0.9,
        suggested_agent="debugger",
        extract=_test_file,
        prompt=_fix_test_file,
    ),
    Rule(
        name="test_failure_vitest",
        pattern=re.compile(r"❯\s+(\S+\.test\.[tj]sx?)\s+\([^)]*\d+\s+failed"),
        anomaly_type=AnomalyType.TEST_FAILURE,
        priority=Priority.HIGH,
        confidence=0.9,
        suggested_agent="debugger",
        extract=_test_file,
        prompt=_fix_test_file,
    ),
    Rule(
        name="test_failure_pytest",
        pattern=re.compile(r"FAILED\s+(\S+\.py)::(\S+)"),
        anomaly_type=AnomalyType.TEST_FAILURE,
        priority=Priority.HIGH,
        confidence=0.9,
        suggested_agent="debugger",
        extract=_pytest_failure,
        prompt=lambda ctx: (
            f"Fix the failing test {ctx['test_name']} in {ctx['test_file']}. "
            "Analyze the test failure and implement the necessary fix."
        ),
    ),
    Rule(
        name="test_failure_generic",
        pattern=re.compile(r"Test failed:?\s*(.+)", re.IGNORECASE),
        anomaly_type=AnomalyType.TEST_FAILURE,
        priority=Priority.HIGH,
        confidence=0.8,
        suggested_agent="debugger",
        extract=lambda m: {"test_name": m.group(1).strip(), "log_excerpt": m.group(0)},
        prompt=lambda ctx: (
            f'Fix the failing test: "{ctx["test_name"]}". '
            "Analyze the test failure and implement the necessary fix."
        ),
    ),
    Rule(
        name="agent_stuck_timeout",
        pattern=re.compile(r"(?:Command\s+)?timed?\s*out\s+(?:after\s+)?(\d+)", re.IGNORECASE),
        anomaly_type=AnomalyType.AGENT_STUCK,
        priority=Priority.HIGH,
        confidence=0.8,
        suggested_agent="debugger",
        extract=lambda m: {"log_excerpt": m.group(0), "idle_seconds": float(m.group(1))},
        prompt=lambda ctx: (
            "Investigate the command timeout. Check if the process is hung or if "
            "there's an infinite loop."
        ),
    ),
    Rule(
        name="agent_stuck_no_output",
        pattern=re.compile(
            r"no\s+output\s+(?:received\s+)?(?:for\s+)?(\d+)\s*(?:seconds?|s)\b", re.IGNORECASE
        ),
        anomaly_type=AnomalyType.AGENT_STUCK,
        priority=Priority.HIGH,
        confidence=0.8,
        suggested_agent="debugger",
        extract=lambda m: {"log_excerpt": m.group(0), "idle_seconds": float(m.group(1))},
        prompt=lambda ctx: (
            "Investigate why there's no output. The process may be stuck or waiting for input."
        ),
    ),
    Rule(
        name="ci_failure_emoji",
        pattern=re.compile(r"❌\s*(?:CI|Build|Pipeline)[:\s]+(.+)", re.IGNORECASE),
        anomaly_type=AnomalyType.CI_FAILURE,
        priority=Priority.HIGH,
        confidence=0.9,
        suggested_agent="deployment-engineer",
        extract=_excerpt,
        prompt=lambda ctx: f"CI pipeline failed. Investigate the failure: {ctx['log_excerpt']}",
    ),
    Rule(
        name="ci_failure_text",
        pattern=re.compile(r"\b(?:CI|build)\s+failed", re.IGNORECASE),
        anomaly_type=AnomalyType.CI_FAILURE,
        priority=Priority.HIGH,
        confidence=0.85,
        suggested_agent="deployment-engineer",
        extract=_excerpt,
        prompt=lambda ctx: "CI/Build failed. Investigate the failure and fix the underlying issue.",
    ),
    Rule(
        name="pr_check_failed",
        pattern=re.compile(r"PR\s+check\s+failed", re.IGNORECASE),
        anomaly_type=AnomalyType.PR_CHECK_FAILED,
        priority=Priority.HIGH,
        confidence=0.9,
        suggested_agent="deployment-engineer",
        extract=_excerpt,
        prompt=lambda ctx: "PR check failed. Review the check failure and address the issues.",
    ),
    Rule(
        name="push_failed",
        pattern=re.compile(r"(?:error:\s*)?failed\s+to\s+push", re.IGNORECASE),
        anomaly_type=AnomalyType.PUSH_FAILED,
        priority=Priority.HIGH,
        confidence=0.9,
        suggested_agent="deployment-engineer",
        extract=_excerpt,
        prompt=lambda ctx: "Git push failed. Check for remote conflicts or permission issues.",
    ),
    Rule(
        name="agent_error",
        pattern=re.compile(r"\bagent\s+(?:error|failed|crashed)[:\s]+(.+)", re.IGNORECASE),
        anomaly_type=AnomalyType.AGENT_ERROR,
        priority=Priority.HIGH,
        confidence=0.85,
        suggested_agent="debugger",
        extract=lambda m: {"error": m.group(1).strip(), "log_excerpt": m.group(0)[:300]},
        prompt=lambda ctx: f"The agent reported an error: {ctx['error']}. Investigate and recover.",
    ),
    Rule(
        name="error_generic",
        pattern=re.compile(r"\b(\w*Error|\w+Exception):\s*(.+)"),
        anomaly_type=AnomalyType.EXCEPTION,
        priority=Priority.MEDIUM,
        confidence=0.7,
        suggested_agent="debugger",
        extract=lambda m: {"error": m.group(0)[:300], "log_excerpt": m.group(0)[:300]},
        prompt=lambda ctx: f"Investigate and fix the error: {ctx['log_excerpt']}",
    ),
]


def normalize_signature(line: str) -> str:
    """Reduce a line to the part that identifies the action it describes.

    Tool invocations collapse to the tool name; anything else is lower-cased
    with numbers, hex ids and whitespace runs folded so incidental detail
    (counters, hashes, timings) does not hide a repeat.
    """
    tool = _TOOL_RE.search(line)
    if tool:
        return f"tool:{tool.group(1)}"
    text = line.strip().lower()
    text = _HEX_RE.sub("<id>", text)
    text = _NUM_RE.sub("<n>", text)
    return _SPACE_RE.sub(" ", text)


def _exception_prompt(ctx: dict[str, Any]) -> str:
    prompt = f"Fix the error: {ctx['error']}"
    if ctx.get("file"):
        prompt += f" in {ctx['file']}"
        if ctx.get("line"):
            prompt += f":{ctx['line']}"
    return prompt


def _exception_match(error: str, excerpt: str, file: Optional[str], line: Optional[int]) -> RuleMatch:
    context = {"error": error, "log_excerpt": excerpt[:500], "file": file, "line": line}
    return RuleMatch(
        rule="exception_with_stack",
        anomaly_type=AnomalyType.EXCEPTION,
        priority=Priority.MEDIUM,
        confidence=0.85,
        prompt=_exception_prompt(context),
        suggested_agent="debugger",
        context=context,
    )


class RuleEngine:
    """
    Pattern-based anomaly detection over raw output.

    - ``analyze_window``: newest line of a sliding window, with the window as
      context for loops and multi-line tracebacks
    - ``analyze``: a whole text blob (aggregated output)
    """

    def __init__(self, loop_threshold: int = DEFAULT_LOOP_THRESHOLD):
        self.loop_threshold = loop_threshold

    def loop_confidence(self, repeats: int) -> float:
        extra = max(0, repeats - self.loop_threshold)
        return min(LOOP_CONFIDENCE_CAP, LOOP_CONFIDENCE_BASE + extra * LOOP_CONFIDENCE_STEP)

    def detect_loop(self, lines: Sequence[str]) -> Optional[RuleMatch]:
        """Trailing run of identical signatures at or above the threshold."""
        signatures = [normalize_signature(line) for line in lines if line.strip()]
        if not signatures:
            return None

        current = signatures[-1]
        repeats = 0
        for signature in reversed(signatures):
            if signature != current:
                break
            repeats += 1

        if repeats < self.loop_threshold:
            return None

        tool = current[len("tool:"):] if current.startswith("tool:") else None
        label = tool or current[:80]
        return RuleMatch(
            rule="agent_loop",
            anomaly_type=AnomalyType.AGENT_LOOP,
            priority=Priority.HIGH,
            confidence=self.loop_confidence(repeats),
            prompt=(
                f"Detected agent loop: {label} was repeated {repeats} times. "
                "Investigate and break the loop."
            ),
            suggested_agent="debugger",
            context={
                "tool_name": tool,
                "signature": current,
                "repeat_count": repeats,
                "log_excerpt": f"{label} repeated {repeats} times",
            },
        )

    def match_patterns(self, text: str) -> list[RuleMatch]:
        """Single-line pattern rules; at most one match per anomaly type."""
        matches: list[RuleMatch] = []
        seen: set[str] = set()
        for rule in RULES:
            if rule.anomaly_type.value in seen:
                continue
            found = rule.pattern.search(text)
            if not found:
                continue
            context = rule.extract(found)
            matches.append(RuleMatch(
                rule=rule.name,
                anomaly_type=rule.anomaly_type,
                priority=rule.priority,
                confidence=rule.confidence,
                prompt=rule.prompt(context),
                suggested_agent=rule.suggested_agent,
                context=context,
            ))
            seen.add(rule.anomaly_type.value)
        return matches

    def analyze_window(self, lines: Sequence[str]) -> list[RuleMatch]:
        """Matches triggered by the newest line of ``lines``."""
        if not lines or not lines[-1].strip():
            return []

        results: list[RuleMatch] = []
        loop = self.detect_loop(lines)
        if loop:
            results.append(loop)

        current = lines[-1]
        traceback = self._traceback_ending_at(lines)
        patterns = self.match_patterns(current)
        if traceback:
            patterns = [m for m in patterns if m.anomaly_type != AnomalyType.EXCEPTION]
            patterns.append(traceback)
        results.extend(patterns)
        return results

    def analyze(self, text: str) -> Optional[RuleMatch]:
        """First match in a text blob: loops, then stack traces, then patterns."""
        if not text or not text.strip():
            return None

        lines = text.splitlines()
        loop = self.detect_loop(lines)
        if loop:
            return loop

        stack = self._find_stack_trace(text)
        if stack:
            return stack

        matches = self.match_patterns(text)
        return matches[0] if matches else None

    def _traceback_ending_at(self, lines: Sequence[str]) -> Optional[RuleMatch]:
        """A Python traceback whose final exception line is the newest line."""
        final = _PY_EXCEPTION_RE.match(lines[-1])
        if not final:
            return None
        header = None
        for index in range(len(lines) - 2, -1, -1):
            if lines[index].strip() == _TRACEBACK_HEADER:
                header = index
                break
        if header is None:
            return None

        block = list(lines[header:])
        frames = _PY_FRAME_RE.findall("\n".join(block))
        file, line = frames[-1] if frames else (None, None)
        error = f"{final.group(1)}: {final.group(2)}".strip()
        return _exception_match(error, "\n".join(block), file, int(line) if line else None)

    def _find_stack_trace(self, text: str) -> Optional[RuleMatch]:
        if _TRACEBACK_HEADER in text:
            lines = text.splitlines()
            for end in range(len(lines), 0, -1):
                if _PY_EXCEPTION_RE.match(lines[end - 1]):
                    match = self._traceback_ending_at(lines[:end])
                    if match:
                        return match
                    break

        js = _JS_STACK_RE.search(text)
        if js:
            frame = _JS_FRAME_RE.search(text)
            file, line = (frame.group(1), int(frame.group(2))) if frame else (js.group(2), int(js.group(3)))
            return _exception_match(js.group(1).strip(), js.group(0), file, line)
        return None
