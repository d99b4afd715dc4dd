"""Line-in-file editing for ``KEY=value`` style config files.

Semantics follow the usual "lineinfile" contract:

* a present line replaces the **last** line matching ``^KEY=``;
* if nothing matches it is appended at the end of the file;
* an absent line (``None``) removes **every** matching line.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

Edit = Tuple[str, Optional[str]]


def split_lines(text: Optional[str]) -> List[str]:
    return (text or "").splitlines()


def join_lines(lines: Iterable[str]) -> str:
    """Join with a trailing newline (empty input stays empty)."""
    lines = list(lines)
    return "\n".join(lines) + "\n" if lines else ""


def normalize(text: Optional[str]) -> str:
    """Canonical form used for change detection (line endings, final newline)."""
    return join_lines(split_lines(text))


def set_line(lines: List[str], key: str, line: Optional[str]) -> List[str]:
    """Return a copy of *lines* with the ``KEY=`` line set or removed."""
    pattern = re.compile(rf"^{re.escape(key)}=.*$")
    matches = [i for i, existing in enumerate(lines) if pattern.match(existing)]

    if line is None:
        return [existing for i, existing in enumerate(lines) if i not in matches]

    result = list(lines)
    if matches:
        result[matches[-1]] = line
    else:
        result.append(line)
    return result


def apply_edits(text: Optional[str], edits: Iterable[Edit]) -> str:
    """Apply ordered ``(key, line-or-None)`` *edits* to *text*."""
    lines = split_lines(text)
    for key, line in edits:
        lines = set_line(lines, key, line)
    return join_lines(lines)


def changed_lines(before: Optional[str], after: Optional[str]) -> List[str]:
    """Lines present in *after* but not in *before* (for logging)."""
    old = set(split_lines(before))
    return [line for line in split_lines(after) if line not in old]
