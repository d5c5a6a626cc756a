"""Line-numbered source slices around a finding, bounded to the enclosing function."""
from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional

from packages.hybrid_validation.config import ContextSettings
from packages.hybrid_validation.errors import ContextExtractionError

logger = logging.getLogger(__name__)

# C-family signature: return type, name, parameter list, optional opening brace.
_FUNCTION_RE = re.compile(
    r"^[A-Za-z_][A-Za-z0-9_*&:<>,\s]*\s+[*&]*([A-Za-z_][A-Za-z0-9_:~]*)\s*\([^)]*\)\s*(?:const\s*)?\{?$"
)
_CONTROL_WORDS = {"if", "for", "while", "switch", "else", "return", "sizeof", "do", "case"}

ISSUE_MARKER = " <<< ISSUE HERE"
EMPTY_FILE = "[Error: File is empty or cannot be read]"


class CodeContextExtractor:
    """Slices source files for prompts. `slice` never raises."""

    def __init__(self, settings: Optional[ContextSettings] = None) -> None:
        self._settings = settings or ContextSettings()
        self._files: Dict[Path, List[str]] = {}
        self._lock = threading.Lock()

    def slice(self, file_path: str, line_number: int) -> str:
        path = Path(file_path)
        try:
            lines = self._lines(path)
        except ContextExtractionError as exc:
            logger.warning("Context unavailable for %s: %s", path, exc)
            return EMPTY_FILE

        if not lines:
            return EMPTY_FILE
        if line_number < 1 or line_number > len(lines):
            return f"[Error: Invalid line number {line_number} (file has {len(lines)} lines)]"

        issue_idx = line_number - 1
        start = self._find_start(lines, issue_idx)
        end = self._find_end(lines, start, issue_idx)

        out = [f"// File: {path.name} (lines {start + 1}-{end + 1})"]
        for idx in range(start, end + 1):
            marker = ISSUE_MARKER if idx == issue_idx else ""
            out.append(f"{idx + 1:4d}: {lines[idx]}{marker}")
        return "\n".join(out) + "\n"

    def clear_cache(self) -> None:
        with self._lock:
            self._files.clear()
        logger.debug("Context file cache cleared")

    @property
    def cache_size(self) -> int:
        return len(self._files)

    def _lines(self, path: Path) -> List[str]:
        cached = self._files.get(path)
        if cached is not None:
            return cached
        try:
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        except (OSError, ValueError) as exc:
            raise ContextExtractionError(str(exc)) from exc
        with self._lock:
            # Concurrent readers of the same file may race here; either copy is identical.
            return self._files.setdefault(path, lines)

    def _find_start(self, lines: List[str], issue_idx: int) -> int:
        floor = max(0, issue_idx - self._settings.max_search_lines)
        for idx in range(issue_idx, floor - 1, -1):
            text = lines[idx].strip()
            if not text or text.startswith(("//", "/*", "*", "#")):
                continue
            match = _FUNCTION_RE.match(text)
            if match and match.group(1) not in _CONTROL_WORDS:
                logger.debug("Function start at line %d: %s", idx + 1, text)
                return idx

        fallback = max(0, issue_idx - self._settings.fallback_before)
        logger.debug("Function start not found, falling back to line %d", fallback + 1)
        return fallback

    def _find_end(self, lines: List[str], start: int, issue_idx: int) -> int:
        depth = 0
        opened = False
        for idx in range(start, len(lines)):
            for char in lines[idx]:
                if char == "{":
                    depth += 1
                    opened = True
                elif char == "}" and opened:
                    depth -= 1
            if opened and depth == 0:
                if idx >= issue_idx:
                    return idx
                break

        fallback = min(len(lines) - 1, issue_idx + self._settings.fallback_after)
        logger.debug("Function end not found, falling back to line %d", fallback + 1)
        return fallback


__all__ = ["CodeContextExtractor", "EMPTY_FILE", "ISSUE_MARKER"]
