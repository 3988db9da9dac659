from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .codecs import (
    INVARIANT_ID_PREFIX,
    PLAN_ID_PREFIX,
    PLAN_PLACEHOLDER_TEXT,
    decode_invariants,
    decode_plan,
    encode_invariants,
    encode_plan,
    has_meaningful_mapping,
    next_id,
)
from .determinacy import evaluate
from .events import EventRoute, resolve_route
from .models import (
    Attachments,
    AuthorizationDecision,
    ContainerMetadata,
    HostEvent,
    Invariant,
    InvariantStatus,
    PlanItem,
    PlanStatus,
    ReadinessReport,
    WorkflowPhase,
)
from .phase import PhaseTracker
from .registry import ContainerRegistry, parse_metadata, utc_timestamp
from .sections import Section, append_entry, body_lines, replace_body
from .settings import RuntimeSettings
from .state_store import DocumentStore

logger = logging.getLogger(__name__)

PROTOCOL_SUMMARY = (
    "Operate within the SAS three-agent loop: "
    "A1=Instantiator (spec intent), A2=Planner (mapping + plan), A3=Implementer (apply approved diffs)."
)
TRUNCATION_MARKER = "\n... (truncated)"


class WorkflowEngine:
    """Structured-document state engine and action gate for one container.

    Every operation re-reads the container document; nothing but the current
    phase is held in memory, and that is persisted in the document header.
    """

    def __init__(
        self,
        *,
        workspace_root: str | Path | None = None,
        container_id: str,
        title: str,
        initial_task: str | None = None,
        scope_paths: list[str] | None = None,
        settings: RuntimeSettings | None = None,
        store: DocumentStore | None = None,
    ) -> None:
        self.settings = settings if settings is not None else RuntimeSettings.from_env()
        root = Path(workspace_root) if workspace_root is not None else self.settings.workspace_root_path
        self.store = store if store is not None else DocumentStore()
        self.registry = ContainerRegistry(root, settings=self.settings, store=self.store)
        self.metadata = ContainerMetadata(container_id=container_id, title=title, scope_paths=scope_paths or [])
        self.initial_task = initial_task
        self.phase = PhaseTracker(self.store)
        self._path: Path | None = None

    # ------------------------------------------------------------------
    # Document access
    # ------------------------------------------------------------------

    def ensure_initialized(self) -> Path | None:
        """Create the container document on first use and restore the persisted phase."""
        if self._path is not None:
            return self._path
        path = self.registry.ensure_document(self.metadata, self.initial_task)
        if path is None:
            return None
        content = self.store.read(path)
        if content is not None:
            self.phase.load(content)
        self._path = path
        return path

    @property
    def document_path(self) -> Path | None:
        return self.ensure_initialized()

    @property
    def current_phase(self) -> WorkflowPhase | None:
        self.ensure_initialized()
        return self.phase.current

    def _read(self) -> str | None:
        path = self.ensure_initialized()
        return self.store.read(path) if path is not None else None

    def _append(self, section: Section, entry: str) -> None:
        path = self.ensure_initialized()
        if path is None:
            return
        self.store.mutate(path, lambda content: append_entry(content, section, entry))

    def set_phase(self, phase: WorkflowPhase, reason: str | None = None) -> bool:
        path = self.ensure_initialized()
        if path is None:
            return False
        return self.phase.set_phase(path, phase, reason)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_intent(self, text: str, attachments: Attachments | None = None) -> None:
        self.set_phase(WorkflowPhase.INSTANTIATOR, "Captured user intent")
        summary = attachments.summary() if attachments is not None else ""
        entry = f"- [{WorkflowPhase.INSTANTIATOR.label}] @ {utc_timestamp()}: {text or '(no task text)'}{summary}"
        self._append(Section.TASK_CLAIM, entry)

    def record_plan(self, plan_text: str | None = None) -> None:
        """Replace the plan with one todo item per non-empty line of ``plan_text``.

        Prior plan items are discarded.  When the container has no invariants
        yet, one ``unknown`` invariant is seeded per new plan line.  Without
        plan text only a log line is appended to the Plan section.
        """
        self.set_phase(WorkflowPhase.PLANNER, "Planner produced an update")
        path = self.ensure_initialized()
        if path is None:
            return

        lines = [line.strip() for line in (plan_text or "").split("\n") if line.strip()]
        if not lines:
            self._append(
                Section.PLAN,
                f"- [{WorkflowPhase.PLANNER.label}] @ {utc_timestamp()}: (no plan text provided)",
            )
            return

        def transform(content: str) -> str:
            previous_plan = decode_plan(body_lines(content, Section.PLAN))
            first = next_id(
                PLAN_ID_PREFIX,
                (item.item_id for item in previous_plan if item.text != PLAN_PLACEHOLDER_TEXT),
            )
            items = [PlanItem(item_id=f"{PLAN_ID_PREFIX}{first + offset}", text=line) for offset, line in enumerate(lines)]
            updated = replace_body(content, Section.PLAN, encode_plan(items))

            if decode_invariants(body_lines(content, Section.MECHANICS)):
                return updated
            seeds = [
                Invariant(invariant_id=f"{INVARIANT_ID_PREFIX}{offset + 1}", description=f"Plan alignment: {line}")
                for offset, line in enumerate(lines)
            ]
            return replace_body(updated, Section.MECHANICS, encode_invariants(seeds))

        if self.store.mutate(path, transform):
            logger.debug("Recorded %d plan items for %s", len(lines), path.name)

    def record_implementation_note(self, kind: str, text: str | None = None) -> None:
        self.set_phase(WorkflowPhase.IMPLEMENTER, "Implementer acted on plan")
        entry = f"- [{WorkflowPhase.IMPLEMENTER.label}:{kind}] @ {utc_timestamp()}: {text or '(no details provided)'}"
        self._append(Section.IMPLEMENTATION, entry)

    def record_open_question(self, note: str) -> None:
        self.set_phase(WorkflowPhase.INSTANTIATOR, "Raised an open question")
        self._append(Section.OPEN_QUESTIONS, f"- {utc_timestamp()}: {note}")

    def classify_and_record(self, event: HostEvent | Mapping[str, Any]) -> EventRoute | None:
        """Record a host event according to its kind.

        Partial (streaming) events and unrecognized kinds are skipped.

        Returns:
            The route the event took, or None if it was skipped.

        Raises:
            pydantic.ValidationError: If a mapping payload is not a valid event.
        """
        host_event = event if isinstance(event, HostEvent) else HostEvent.model_validate(event)
        if host_event.partial:
            return None
        resolved = resolve_route(host_event.kind)
        if resolved is None:
            return None
        kind, route = resolved
        text = host_event.text

        if route is EventRoute.INTENT:
            self.record_intent(text if text is not None else "(no task text provided)")
        elif route is EventRoute.PLAN:
            self.record_plan(text)
        elif route is EventRoute.OPEN_QUESTION:
            self.record_open_question(text if text is not None else "Error emitted by task")
        elif route is EventRoute.IMPLEMENTATION:
            self.record_implementation_note(kind.value, text)
        return route

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_prompt_context(self, max_chars: int | None = None) -> str | None:
        """Return the container document wrapped with protocol and phase labels.

        Scope paths come from the document header, which is authoritative once
        the document exists; the constructor's ``scope_paths`` only seed it.

        Args:
            max_chars: Character budget for the document text; defaults to
                ``settings.prompt_max_chars``.  Values below 1 are clamped to 1.

        Returns:
            The context block, or None if the document cannot be read.
        """
        budget = self.settings.prompt_max_chars if max_chars is None else max_chars
        if budget < 1:
            logger.warning("Prompt budget %d is below 1; using 1", budget)
            budget = 1
        path = self.ensure_initialized()
        content = self._read()
        if path is None or content is None:
            return None

        trimmed = content.strip()
        truncated = f"{trimmed[:budget]}{TRUNCATION_MARKER}" if len(trimmed) > budget else trimmed
        metadata = parse_metadata(content)
        scope_paths = (metadata if metadata is not None else self.metadata).scope_paths or ["."]
        phase = self.phase.current
        return "\n\n".join(
            [
                f"SAS container spec: {path.name}",
                PROTOCOL_SUMMARY,
                f"Scope paths: {', '.join(scope_paths)}",
                f"Current SAS phase: {phase.label if phase is not None else 'unspecified'}",
                "Ground planning and execution in this spec (sections 0-6).",
                truncated,
            ]
        )

    def read_invariants(self) -> list[Invariant]:
        content = self._read()
        return decode_invariants(body_lines(content, Section.MECHANICS)) if content is not None else []

    def read_plan(self) -> list[PlanItem]:
        content = self._read()
        return decode_plan(body_lines(content, Section.PLAN)) if content is not None else []

    def evaluate_readiness(self) -> ReadinessReport:
        content = self._read() or ""
        return evaluate(
            decode_invariants(body_lines(content, Section.MECHANICS)),
            decode_plan(body_lines(content, Section.PLAN)),
            has_meaningful_mapping(body_lines(content, Section.MAPPING_LAYER)),
            threshold=self.settings.determinacy_threshold,
        )

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------

    def authorize_action(self, name: str) -> AuthorizationDecision:
        """Decide whether the named action may run now.

        Allowed only in the implementer phase, with readiness for
        implementation, and when an open plan step mentions ``name``
        (case-insensitive).  The first matching step wins.
        """
        if self.current_phase is not WorkflowPhase.IMPLEMENTER:
            return AuthorizationDecision(
                allowed=False,
                reason="SAS is not in implementer phase; plan steps must be approved first.",
            )

        state = self.evaluate_readiness()
        if not state.ready_for_implementation:
            return AuthorizationDecision(allowed=False, reason="Determinacy too low or no open plan items to execute.")

        needle = name.lower()
        matching = next(
            (item for item in state.plan if item.status is PlanStatus.TODO and needle in item.text.lower()),
            None,
        )
        if matching is None:
            return AuthorizationDecision(allowed=False, reason="Tool request is not mapped to any open plan step.")
        return AuthorizationDecision(allowed=True, plan_item_id=matching.item_id)

    def complete_step(self, plan_item_id: str, note: str | None = None) -> bool:
        """Mark a plan step done and advance at most one ``unknown`` invariant to ``satisfied``.

        The invariant advance and the ``plan_step`` log entry happen whether or
        not ``plan_item_id`` names a step in the current plan.

        Returns:
            True if the step was found and the document updated.
        """
        path = self.ensure_initialized()
        if path is None:
            return False
        wanted = plan_item_id.strip().upper()
        matched = False

        def transform(content: str) -> str:
            nonlocal matched
            items = decode_plan(body_lines(content, Section.PLAN))
            matched = any(item.item_id.upper() == wanted for item in items)
            updated = content
            if matched:
                items = [
                    PlanItem(item_id=item.item_id, text=item.text, status=PlanStatus.DONE)
                    if item.item_id.upper() == wanted
                    else item
                    for item in items
                ]
                updated = replace_body(content, Section.PLAN, encode_plan(items))

            invariants = decode_invariants(body_lines(content, Section.MECHANICS))
            index = next(
                (idx for idx, invariant in enumerate(invariants) if invariant.status is InvariantStatus.UNKNOWN),
                None,
            )
            if index is None:
                return updated
            flipped = invariants[index]
            invariants[index] = Invariant(
                invariant_id=flipped.invariant_id,
                description=flipped.description,
                status=InvariantStatus.SATISFIED,
            )
            return replace_body(updated, Section.MECHANICS, encode_invariants(invariants))

        if not self.store.mutate(path, transform):
            return False
        if not matched:
            logger.warning("No plan step %r in %s; advancing invariants only", plan_item_id, path.name)

        summary = f"{plan_item_id}: {note}" if note else f"Completed plan step {plan_item_id}"
        self.record_implementation_note("plan_step", summary)
        return matched
