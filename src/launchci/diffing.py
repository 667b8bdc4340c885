# diffing.py
# Line diffs for config/statement content shown next to an edit.

from __future__ import annotations

import difflib
import re
from typing import Any, Dict, List

_NEWLINES = re.compile(r"\r\n|\r|\\n")


def normalize_content(text: str | None) -> str:
    text = text or ""
    return _NEWLINES.sub("\n", text).replace("\\t", "\t")


def diff_lines(original: str | None, current: str | None) -> List[Dict[str, Any]]:
    """
    Diff two texts by line.

    Returns segments {"value", "added", "removed"}; runs of equal lines are
    one segment, so identical content always yields exactly one segment.
    """
    a = normalize_content(original)
    b = normalize_content(current)
    if a == b:
        return [{"value": b, "added": False, "removed": False}]

    a_lines = a.splitlines(keepends=True)
    b_lines = b.splitlines(keepends=True)
    out: List[Dict[str, Any]] = []
    matcher = difflib.SequenceMatcher(a=a_lines, b=b_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            out.append({"value": "".join(a_lines[i1:i2]), "added": False, "removed": False})
            continue
        if tag in ("replace", "delete"):
            out.append({"value": "".join(a_lines[i1:i2]), "added": False, "removed": True})
        if tag in ("replace", "insert"):
            out.append({"value": "".join(b_lines[j1:j2]), "added": True, "removed": False})
    return out


def has_real_change(diff: List[Dict[str, Any]] | None) -> bool:
    """Any segment count other than one counts as a change; None is no evidence."""
    if diff is None:
        return False
    return len(diff) != 1


def change_count(diff: List[Dict[str, Any]] | None) -> int:
    return sum(1 for d in diff or [] if d.get("added") or d.get("removed"))
