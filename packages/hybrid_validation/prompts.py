"""Validation prompt text and AI verdict parsing."""
from __future__ import annotations

import json
import re
from pathlib import PurePath
from typing import Optional

from pydantic import BaseModel, ValidationError, field_validator

from packages.hybrid_validation.errors import VerdictParseError
from packages.schema.models import Finding, Severity

SYSTEM_PROMPT = (
    "You are a security analysis expert. "
    "Always respond with valid JSON only, no additional text."
)

_FENCE_LANGUAGES = {
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".rs": "rust",
    ".java": "java",
    ".go": "go",
    ".js": "javascript",
    ".ts": "typescript",
}

_FENCE_RE = re.compile(r"^```[A-Za-z0-9_-]*\s*\n?(.*?)\n?```\s*$", re.DOTALL)

_TEMPLATE = """\
A static analysis tool ({analyzer}) reported a *potential* security issue:

- Issue: {title}
- Description: {description}
- File: {location}
- Severity (Reported): {severity}
- Category: {category}

Below is the code context (the enclosing function) where the issue was found:
```{language}
{code}
```

Analyze this context carefully. Is this a *real, exploitable vulnerability*, or is it likely a *false positive*?

Consider:
- Buffer sizes and bounds checks
- Null pointer checks
- Data flow and taint analysis
- Input validation
- Error handling
- Context-specific mitigations

Example 1 (Real Vulnerability):
{{"is_vulnerability": true, "reason": "strcpy without bounds check on user input from an untrusted source", "suggested_severity": "Critical"}}

Example 2 (False Positive):
{{"is_vulnerability": false, "reason": "Input is validated and size-limited (line 15) before the strcpy call on line 18", "suggested_severity": "Info"}}

Now analyze this case and respond ONLY in the following JSON format:
{{"is_vulnerability": true/false, "reason": "Your technical explanation", "suggested_severity": "Critical/High/Medium/Low/Info"}}
"""


class AiVerdict(BaseModel):
    is_vulnerability: bool
    reason: Optional[str] = None
    suggested_severity: Optional[str] = None

    @field_validator("reason", "suggested_severity", mode="before")
    @classmethod
    def _loose_text(cls, value):
        # Models send nulls, numbers or nested objects here; none of them may fail the verdict.
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return None

    @property
    def severity(self) -> Optional[Severity]:
        return Severity.parse(self.suggested_severity)


def build_validation_prompt(finding: Finding, code_slice: str) -> str:
    suffix = PurePath(finding.location.file_path).suffix.lower()
    return _TEMPLATE.format(
        analyzer=finding.source_analyzer,
        title=finding.title,
        description=finding.description or "(none)",
        location=f"{finding.location.file_path}:{finding.location.line_number}",
        severity=finding.severity.value.capitalize(),
        category=finding.category,
        language=_FENCE_LANGUAGES.get(suffix, ""),
        code=code_slice.rstrip("\n"),
    )


def parse_verdict(text: str) -> AiVerdict:
    """Parse the model's JSON answer, tolerating code fences and stray prose."""

    body = text.strip()
    fenced = _FENCE_RE.match(body)
    if fenced:
        body = fenced.group(1).strip()

    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        start, end = body.find("{"), body.rfind("}")
        if start == -1 or end <= start:
            raise VerdictParseError(f"No JSON object in AI response: {text[:120]!r}") from None
        try:
            data = json.loads(body[start : end + 1])
        except json.JSONDecodeError as exc:
            raise VerdictParseError(f"Malformed JSON in AI response: {exc}") from exc

    if not isinstance(data, dict):
        raise VerdictParseError("AI response JSON is not an object")
    try:
        return AiVerdict.model_validate(data)
    except ValidationError as exc:
        raise VerdictParseError(f"AI response missing verdict fields: {exc}") from exc


__all__ = ["AiVerdict", "SYSTEM_PROMPT", "build_validation_prompt", "parse_verdict"]
