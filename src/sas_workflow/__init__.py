from importlib.metadata import PackageNotFoundError, version

from .canonical import to_canonical_json
from .determinacy import determinacy_score, evaluate
from .engine import WorkflowEngine
from .events import EVENT_ROUTES, EventKind, EventRoute
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
from .registry import ContainerRegistry, sanitize_container_id
from .sections import Section, append_entry, replace_body, section_body
from .settings import RuntimeSettings
from .state_store import DocumentStore


def get_version() -> str:
    try:
        return version(__name__)
    except PackageNotFoundError:
        return "0.0.0"


__all__ = [
    "Attachments",
    "AuthorizationDecision",
    "ContainerMetadata",
    "ContainerRegistry",
    "DocumentStore",
    "EVENT_ROUTES",
    "EventKind",
    "EventRoute",
    "HostEvent",
    "Invariant",
    "InvariantStatus",
    "PhaseTracker",
    "PlanItem",
    "PlanStatus",
    "ReadinessReport",
    "RuntimeSettings",
    "Section",
    "WorkflowEngine",
    "WorkflowPhase",
    "append_entry",
    "determinacy_score",
    "evaluate",
    "get_version",
    "replace_body",
    "sanitize_container_id",
    "section_body",
    "to_canonical_json",
]
