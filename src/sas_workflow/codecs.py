"""Line codecs for the invariant list, the plan checklist and the mapping layer.

Item ids are persisted as a trailing ``<!-- id:S3 -->`` marker. Lines written
by hand without a marker fall back to a positional id built from the line's
index in the section body.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from .models import Invariant, InvariantStatus, PlanItem, PlanStatus

INVARIANT_PLACEHOLDER = "- Invariants: _"
PLAN_PLACEHOLDER_TEXT = "Pending plan items"
PLAN_PLACEHOLDER = f"- [ ] {PLAN_PLACEHOLDER_TEXT}"
INVARIANT_ID_PREFIX = "I"
PLAN_ID_PREFIX = "S"

_INVARIANT_LINE_RE = re.compile(r"^- \[(satisfied|violated|unknown)\]\s*(.+)$", re.IGNORECASE)
_PLAN_LINE_RE = re.compile(r"^- \[( |x)\]\s*(.+)$", re.IGNORECASE)
_ID_MARKER_RE = re.compile(r"\s*<!--\s*id:(?P<id>[A-Za-z]+\d+)\s*-->\s*$")
_ID_NUMBER_RE = re.compile(r"^[A-Za-z]+(\d+)$")


def is_placeholder(line: str) -> bool:
    return line.endswith(": _") or "pending" in line


def split_id_marker(text: str) -> tuple[str, str | None]:
    """Strip a trailing id marker, returning ``(text, id)``."""
    match = _ID_MARKER_RE.search(text)
    if match is None:
        return text.strip(), None
    return text[: match.start()].strip(), match.group("id")


def with_id_marker(text: str, item_id: str) -> str:
    return f"{text} <!-- id:{item_id} -->"


def next_id(prefix: str, existing: Iterable[str]) -> int:
    """Return the next free number for ``prefix`` given ids already in use."""
    highest = 0
    for item_id in existing:
        match = _ID_NUMBER_RE.match(item_id)
        if match and item_id.upper().startswith(prefix.upper()):
            highest = max(highest, int(match.group(1)))
    return highest + 1


def decode_invariants(lines: Iterable[str]) -> list[Invariant]:
    invariants: list[Invariant] = []
    for index, line in enumerate(lines):
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("##"):
            continue
        positional_id = f"{INVARIANT_ID_PREFIX}{index + 1}"
        match = _INVARIANT_LINE_RE.match(trimmed)
        if match:
            description, marker_id = split_id_marker(match.group(2))
            invariants.append(
                Invariant(
                    invariant_id=marker_id or positional_id,
                    description=description,
                    status=InvariantStatus(match.group(1).lower()),
                )
            )
            continue
        if is_placeholder(trimmed):
            continue
        description, marker_id = split_id_marker(re.sub(r"^-\s*", "", trimmed))
        invariants.append(Invariant(invariant_id=marker_id or positional_id, description=description))
    return invariants


def encode_invariants(invariants: Iterable[Invariant]) -> str:
    lines = [
        with_id_marker(f"- [{invariant.status.value}] {invariant.description}", invariant.invariant_id)
        for invariant in invariants
    ]
    return "\n".join(lines) if lines else INVARIANT_PLACEHOLDER


def decode_plan(lines: Iterable[str]) -> list[PlanItem]:
    items: list[PlanItem] = []
    for index, line in enumerate(lines):
        match = _PLAN_LINE_RE.match(line.strip())
        if not match:
            continue
        text, marker_id = split_id_marker(match.group(2))
        status = PlanStatus.DONE if match.group(1).lower() == "x" else PlanStatus.TODO
        items.append(PlanItem(item_id=marker_id or f"{PLAN_ID_PREFIX}{index + 1}", text=text, status=status))
    return items


def encode_plan(items: Iterable[PlanItem]) -> str:
    lines = [
        with_id_marker(f"- [{'x' if item.status is PlanStatus.DONE else ' '}] {item.text}", item.item_id)
        for item in items
    ]
    return "\n".join(lines) if lines else PLAN_PLACEHOLDER


def has_meaningful_mapping(lines: Iterable[str]) -> bool:
    for line in lines:
        trimmed = line.strip()
        if trimmed and not is_placeholder(trimmed):
            return True
    return False
