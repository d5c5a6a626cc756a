# JSONL writer for enhanced findings (hand-off format for downstream reporting).
from pathlib import Path
from typing import List
import json

from packages.schema.models import EnhancedFinding


def write_jsonl(
    path: Path,
    findings: List[EnhancedFinding],
    model_name: str,
) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for item in findings:
            rec = {
                "finding": item.finding.model_dump(mode="json"),
                "verdict": item.verdict.value,
                "confidence": round(item.confidence, 4),
                "severity": item.severity.value,
                "explanation": item.explanation,
                "model": model_name,
            }
            f.write(json.dumps(rec, ensure_ascii=False) + "\n")
