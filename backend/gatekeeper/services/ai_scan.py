"""AI semantic scan of changed files through LiteLLM.

The pipeline consumes this through the ``AIScanProvider`` protocol and treats
``AIScanUnavailableError`` as a neutral, pending result.

Note: LiteLLM is imported lazily to avoid fork-safety issues with Celery
prefork workers.
"""

import json
import logging
import re
from typing import Literal, Protocol

from pydantic import BaseModel, Field, ValidationError

from gatekeeper.core.exceptions import GatekeeperError

logger = logging.getLogger(__name__)

_litellm_initialized = False

SYSTEM_PROMPT = """You are an expert code reviewer. Analyze the following code changes.
Respond ONLY with valid JSON, no markdown or extra text, in this format:
{
    "verdict": "GOOD",
    "categories": {"security": 5, "correctness": 5, "maintainability": 5, "performance": 5, "testing": 3},
    "findings": [{"file": "path", "line_range": [1, 1], "message": "...", "suggestion": "...", "severity": 3, "confidence": "medium"}]
}
Scores are 1-5. Use GOOD if the code looks clean, RISKY if there are minor concerns,
BAD if there are serious issues."""

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


class AIScanUnavailableError(GatekeeperError):
    """The AI scan could not produce a usable result (timeout, error, bad output)."""


class AICategoryScores(BaseModel):
    security: int = Field(default=5, ge=1, le=5)
    correctness: int = Field(default=5, ge=1, le=5)
    maintainability: int = Field(default=5, ge=1, le=5)
    performance: int = Field(default=5, ge=1, le=5)
    testing: int = Field(default=3, ge=1, le=5)


class AIFinding(BaseModel):
    file: str = ""
    line_range: list[int] = Field(default_factory=lambda: [1, 1])
    message: str
    suggestion: str = ""
    severity: int = 3
    confidence: str = "medium"


class AIScanResult(BaseModel):
    verdict: Literal["GOOD", "RISKY", "BAD"]
    categories: AICategoryScores = Field(default_factory=AICategoryScores)
    findings: list[AIFinding] = Field(default_factory=list)


class AIScanProvider(Protocol):
    def scan(self, files: list[dict[str, str]]) -> AIScanResult:
        """Scan ``[{"path", "content"}]`` pairs. Raises AIScanUnavailableError."""
        ...


def _ensure_litellm(debug: bool = False) -> None:
    """Lazy initialize LiteLLM on first use."""
    global _litellm_initialized
    if _litellm_initialized:
        return

    import os

    import litellm

    if debug:
        os.environ["LITELLM_LOG"] = "DEBUG"

    litellm.drop_params = True
    litellm.success_callback = []
    litellm.failure_callback = []

    _litellm_initialized = True
    logger.debug("LiteLLM initialized")


def parse_scan_response(text: str) -> AIScanResult:
    """Parse model output, tolerating a surrounding markdown code fence."""
    match = _FENCE_RE.search(text)
    payload = (match.group(1) if match else text).strip()
    try:
        return AIScanResult.model_validate(json.loads(payload))
    except (json.JSONDecodeError, ValidationError) as e:
        raise AIScanUnavailableError(f"Invalid AI scan response: {e}") from e


def build_file_context(files: list[dict[str, str]]) -> str:
    return "\n---\n".join(f"File: {f['path']}\nContent:\n{f['content']}" for f in files)


class LiteLLMScanProvider:
    """AI scan backed by any LiteLLM-supported model."""

    def __init__(self, model: str, timeout: float = 60.0, temperature: float = 0.1, debug: bool = False):
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.debug = debug

    def scan(self, files: list[dict[str, str]]) -> AIScanResult:
        if not files:
            return AIScanResult(verdict="GOOD")

        _ensure_litellm(self.debug)
        from litellm import completion

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": "Code to analyze:\n" + build_file_context(files)},
        ]
        try:
            response = completion(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                timeout=self.timeout,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content or ""
        except Exception as e:
            logger.error(f"AI scan failed: {e}")
            raise AIScanUnavailableError(f"AI scan failed: {e}") from e

        result = parse_scan_response(content)
        logger.info(f"AI scan complete: {result.verdict} ({len(result.findings)} findings)")
        return result
