# Adapter boundary: read upstream analyzer output and normalize to our schema.
import json
from pathlib import Path
from typing import Any, Iterable, List

from pydantic import ValidationError

from packages.schema.models import Finding


class FindingsInputError(ValueError):
    """Analyzer output could not be read or did not match the Finding schema."""


def load_findings(path: Path) -> List[Finding]:
    """
    Accepts either:
      - a JSON array of finding objects,
      - a JSON object with a "findings" array,
      - JSONL, one finding object per line.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise FindingsInputError(f"Cannot read findings file {path}: {exc}") from exc

    if not text.strip():
        return []

    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError:
        data = _parse_jsonl(text, path)

    if isinstance(data, dict):
        # A lone object is either the wrapper or a single-line JSONL file.
        data = data["findings"] if "findings" in data else [data]
    if not isinstance(data, list):
        raise FindingsInputError(f"Expected a list of findings in {path}")
    return _validate(data, path)


def _parse_jsonl(text: str, path: Path) -> List[Any]:
    records = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError as exc:
            raise FindingsInputError(f"{path}:{lineno}: invalid JSON ({exc.msg})") from exc
    return records


def _validate(records: Iterable[Any], path: Path) -> List[Finding]:
    findings = []
    for idx, record in enumerate(records):
        try:
            findings.append(Finding.model_validate(record))
        except ValidationError as exc:
            raise FindingsInputError(f"{path}: finding #{idx} is invalid: {exc}") from exc
    return findings
