from __future__ import annotations

import logging
from pathlib import Path

from .models import WorkflowPhase
from .registry import read_header, update_header, utc_timestamp
from .sections import Section, append_entry
from .state_store import DocumentStore

logger = logging.getLogger(__name__)


def format_phase_entry(phase: WorkflowPhase, timestamp: str, reason: str | None = None) -> str:
    reason_segment = f" — {reason}" if reason else ""
    return f"- [Loop {phase.label}] {timestamp}{reason_segment}"


def phase_from_document(content: str) -> WorkflowPhase | None:
    """Read the persisted phase from the document header."""
    header = read_header(content) or {}
    raw = header.get("phase")
    if raw is None:
        return None
    try:
        return WorkflowPhase(str(raw).strip().lower())
    except ValueError:
        logger.warning("Ignoring unrecognized phase %r in container header", raw)
        return None


class PhaseTracker:
    """Current workflow phase of one container.

    Any phase may follow any phase.  Each transition is persisted in the
    header ``phase`` field and logged as a ``[Loop ...]`` line in the
    Task-Claim section.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self._phase: WorkflowPhase | None = None

    @property
    def current(self) -> WorkflowPhase | None:
        return self._phase

    def load(self, content: str) -> WorkflowPhase | None:
        self._phase = phase_from_document(content)
        return self._phase

    def set_phase(self, path: Path, phase: WorkflowPhase, reason: str | None = None) -> bool:
        """Move to ``phase``; returns False when nothing was logged.

        Re-entering the current phase without a reason is a no-op.
        """
        if self._phase is phase and not reason:
            return False
        self._phase = phase
        entry = format_phase_entry(phase, utc_timestamp(), reason)

        def transform(content: str) -> str:
            return append_entry(update_header(content, phase=phase.value), Section.TASK_CLAIM, entry)

        self.store.mutate(path, transform)
        logger.debug("Container %s entered phase %s", path.name, phase.value)
        return True
