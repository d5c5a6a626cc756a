from pathlib import Path

from packages.hybrid_validation.config import ContextSettings
from packages.hybrid_validation.context import EMPTY_FILE, ISSUE_MARKER, CodeContextExtractor

C_SOURCE = """\
#include <string.h>

int helper(int x) {
    return x + 1;
}

void copy(char *dst, const char *src) {
    if (src) {
        strcpy(dst, src);
    }
}
"""

ALLMAN_SOURCE = """\
int check(int n)
{
    if (n > 0)
    {
        n--;
    }
    else if (n < 0)
    {
        n++;
    }
    return n;
}
"""


def _write(tmp_path: Path, name: str, text: str) -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_slice_covers_enclosing_function(tmp_path):
    path = _write(tmp_path, "sample.c", C_SOURCE)
    extractor = CodeContextExtractor()

    code = extractor.slice(str(path), 9)
    lines = code.splitlines()

    assert lines[0] == "// File: sample.c (lines 7-11)"
    assert lines[1] == "   7: void copy(char *dst, const char *src) {"
    assert lines[3] == f"   9:         strcpy(dst, src);{ISSUE_MARKER}"
    assert lines[-1] == "  11: }"
    assert code.count(ISSUE_MARKER) == 1
    assert "helper" not in code


def test_control_statements_are_not_mistaken_for_functions(tmp_path):
    path = _write(tmp_path, "check.c", ALLMAN_SOURCE)
    extractor = CodeContextExtractor()

    code = extractor.slice(str(path), 9)

    assert code.splitlines()[0] == "// File: check.c (lines 1-12)"
    assert f"   9:         n++;{ISSUE_MARKER}" in code


def test_falls_back_to_fixed_window_without_function(tmp_path):
    path = _write(tmp_path, "script.txt", "".join(f"x{i} = {i}\n" for i in range(1, 31)))
    extractor = CodeContextExtractor()

    code = extractor.slice(str(path), 15)
    lines = code.splitlines()

    assert lines[0] == "// File: script.txt (lines 5-30)"
    assert lines[1].startswith("   5: ")
    assert f"  15: x15 = 15{ISSUE_MARKER}" in lines


def test_fallback_window_is_configurable(tmp_path):
    path = _write(tmp_path, "script.txt", "".join(f"x{i} = {i}\n" for i in range(1, 31)))
    extractor = CodeContextExtractor(ContextSettings(fallback_before=2, fallback_after=3))

    assert extractor.slice(str(path), 15).splitlines()[0] == "// File: script.txt (lines 13-18)"


def test_invalid_line_number_returns_placeholder(tmp_path):
    path = _write(tmp_path, "sample.c", C_SOURCE)
    extractor = CodeContextExtractor()

    assert extractor.slice(str(path), 0) == "[Error: Invalid line number 0 (file has 11 lines)]"
    assert extractor.slice(str(path), 99) == "[Error: Invalid line number 99 (file has 11 lines)]"


def test_missing_and_empty_files_return_placeholder(tmp_path):
    empty = _write(tmp_path, "empty.c", "")
    extractor = CodeContextExtractor()

    assert extractor.slice(str(tmp_path / "missing.c"), 3) == EMPTY_FILE
    assert extractor.slice(str(empty), 1) == EMPTY_FILE


def test_file_lines_are_cached_until_cleared(tmp_path):
    path = _write(tmp_path, "sample.c", C_SOURCE)
    extractor = CodeContextExtractor()

    first = extractor.slice(str(path), 9)
    path.write_text("changed\n", encoding="utf-8")

    assert extractor.slice(str(path), 9) == first
    assert extractor.cache_size == 1

    extractor.clear_cache()

    assert extractor.cache_size == 0
    assert extractor.slice(str(path), 9).startswith("[Error: Invalid line number 9")


def test_unusable_path_returns_placeholder():
    extractor = CodeContextExtractor()

    assert extractor.slice("bad\x00path.c", 1) == EMPTY_FILE
    assert extractor.cache_size == 0
