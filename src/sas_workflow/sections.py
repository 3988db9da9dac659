"""Section-level edits over a container document.

A section is addressed by its literal heading line. Its body runs from the
end of that line to the next line starting with ``## `` (or end of text).
All functions here are pure ``str -> str`` transforms; persistence lives in
:mod:`sas_workflow.state_store`.
"""

from __future__ import annotations

import re
from enum import Enum

_NEXT_HEADING = "\n## "


class Section(str, Enum):
    TASK_CLAIM = "## 0. Task-Claim (C_t, E_t)"
    MAPPING_LAYER = "## 1. Mapping Layer for this Container"
    MECHANICS = "## 2. Mechanics & Invariants"
    MAPPING_TABLE = "## 3. Code Mapping Table"
    PLAN = "## 4. Plan State (Agent 2 Output)"
    IMPLEMENTATION = "## 5. Implementation Diffs (Agent 3 Output)"
    OPEN_QUESTIONS = "## 6. Open Questions / Indeterminate Regions"


def _heading_text(heading: Section | str) -> str:
    return heading.value if isinstance(heading, Section) else heading


def _locate(content: str, heading: str) -> tuple[int, int] | None:
    """Return ``(body_start, body_end)`` offsets, or None if the heading is absent."""
    match = re.search(rf"^{re.escape(heading)}[ \t]*$", content, flags=re.MULTILINE)
    if match is None:
        return None
    heading_end = match.end()
    body_start = heading_end + 1 if heading_end < len(content) else heading_end
    next_heading = content.find(_NEXT_HEADING, heading_end)
    body_end = len(content) if next_heading == -1 else next_heading
    return body_start, max(body_start, body_end)


def _splice(content: str, heading: str, body: str) -> str:
    location = _locate(content, heading)
    if location is None:
        return f"{content.rstrip()}\n\n{heading}\n{body}\n"

    body_start, body_end = location
    before = content[:body_start]
    if not before.endswith("\n"):
        before += "\n"
    after = content[body_end:].lstrip()
    if not after:
        return f"{before}{body}\n"
    return f"{before}{body}\n\n{after}"


def _indent_continuation(line: str) -> str:
    # Continuation lines are indented so free text can never open a new section.
    first, *rest = line.strip("\n").split("\n")
    return "\n".join([first, *(f"  {part}" for part in rest)])


def section_body(content: str, heading: Section | str) -> str:
    """Return the raw body text of a section, or ``""`` when the heading is missing."""
    location = _locate(content, _heading_text(heading))
    if location is None:
        return ""
    body_start, body_end = location
    return content[body_start:body_end]


def body_lines(content: str, heading: Section | str) -> list[str]:
    body = section_body(content, heading).rstrip("\n")
    return body.split("\n") if body else []


def append_entry(content: str, heading: Section | str, line: str) -> str:
    """Append ``line`` as the last line of a section body, keeping every earlier line."""
    heading_text = _heading_text(heading)
    entry = _indent_continuation(line)
    existing = section_body(content, heading_text).rstrip()
    body = f"{existing}\n{entry}" if existing else entry
    return _splice(content, heading_text, body)


def replace_body(content: str, heading: Section | str, new_body: str) -> str:
    """Discard a section body and write ``new_body`` in its place."""
    return _splice(content, _heading_text(heading), new_body.strip())
