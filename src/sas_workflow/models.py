from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class InvariantStatus(str, Enum):
    SATISFIED = "satisfied"
    VIOLATED = "violated"
    UNKNOWN = "unknown"


class PlanStatus(str, Enum):
    TODO = "todo"
    DONE = "done"


class WorkflowPhase(str, Enum):
    INSTANTIATOR = "instantiator"
    PLANNER = "planner"
    IMPLEMENTER = "implementer"

    @property
    def label(self) -> str:
        """Role label used in log lines and prompt context."""
        return _PHASE_LABELS[self]


_PHASE_LABELS = {
    WorkflowPhase.INSTANTIATOR: "A1 Instantiator",
    WorkflowPhase.PLANNER: "A2 Planner",
    WorkflowPhase.IMPLEMENTER: "A3 Implementer",
}


@dataclass(frozen=True)
class Invariant:
    invariant_id: str
    description: str
    status: InvariantStatus = InvariantStatus.UNKNOWN


@dataclass(frozen=True)
class PlanItem:
    item_id: str
    text: str
    status: PlanStatus = PlanStatus.TODO


@dataclass(frozen=True)
class ReadinessReport:
    """Workflow readiness derived from the current document content."""

    determinacy: float
    invariants: list[Invariant]
    plan: list[PlanItem]
    ready_for_planning: bool
    ready_for_implementation: bool
    has_known_invariant: bool


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: str | None = None
    plan_item_id: str | None = None


@dataclass(frozen=True)
class Attachments:
    files: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)

    def summary(self) -> str:
        file_segment = f" | files: {', '.join(self.files)}" if self.files else ""
        image_segment = f" | images: {', '.join(self.images)}" if self.images else ""
        return f"{file_segment}{image_segment}"


class ContainerMetadata(BaseModel):
    """Metadata header of a container document."""

    model_config = ConfigDict(extra="ignore")

    container_id: str
    title: str
    created_at: str | None = None
    version: int = 1
    status: str = "active"
    phase: WorkflowPhase | None = None
    scope_paths: list[str] = Field(default_factory=list)
    primary_model: str | None = None
    backup_model: str | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must be non-empty")
        return value

    @field_validator("created_at", mode="before")
    @classmethod
    def _timestamp_as_text(cls, value: object) -> object:
        # Hand-edited headers may carry unquoted timestamps that YAML parses as datetimes.
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return value


class HostEvent(BaseModel):
    """Progress event emitted by the host agent runtime."""

    model_config = ConfigDict(extra="ignore")

    kind: str = Field(validation_alias=AliasChoices("kind", "type"))
    text: str | None = None
    partial: bool = False
