from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .codecs import INVARIANT_PLACEHOLDER, PLAN_PLACEHOLDER
from .models import ContainerMetadata
from .sections import Section
from .settings import RuntimeSettings
from .state_store import DocumentStore

logger = logging.getLogger(__name__)

HEADER_DELIMITER = "---"
DEFAULT_CONTAINER_ID = "task"
DOCUMENT_SUFFIX = ".sas.md"

_HEADER_RE = re.compile(r"\A---[ \t]*\n(?P<body>.*?)\n---[ \t]*(?:\n|\Z)", re.DOTALL)


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def sanitize_container_id(raw_id: str) -> str:
    normalized = re.sub(r"[^a-z0-9]+", "-", raw_id.strip().lower()).strip("-")
    return normalized or DEFAULT_CONTAINER_ID


def _header_payload(metadata: ContainerMetadata, settings: RuntimeSettings) -> dict[str, Any]:
    return {
        "container_id": sanitize_container_id(metadata.container_id),
        "title": metadata.title,
        "created_at": metadata.created_at or utc_timestamp(),
        "version": metadata.version,
        "status": metadata.status,
        "phase": metadata.phase.value if metadata.phase is not None else None,
        "scope": {
            "paths": list(metadata.scope_paths) or ["."],
            "tests": [],
        },
        "models": {
            "primary": metadata.primary_model or settings.primary_model,
            "backup": metadata.backup_model or settings.backup_model,
        },
    }


def _render_header(payload: dict[str, Any]) -> str:
    body = yaml.safe_dump(
        payload,
        default_flow_style=False,
        allow_unicode=True,
        sort_keys=False,
        width=120,
    )
    return f"{HEADER_DELIMITER}\n{body.rstrip()}\n{HEADER_DELIMITER}"


def build_initial_document(
    metadata: ContainerMetadata,
    settings: RuntimeSettings,
    initial_task: str | None = None,
) -> str:
    description = initial_task.strip() if initial_task and initial_task.strip() else "Pending user intent"
    return "\n".join(
        [
            _render_header(_header_payload(metadata, settings)),
            "",
            Section.TASK_CLAIM.value,
            f"- User intent: {description}",
            "- Task claim: Pending determinacy mapping.",
            "",
            Section.MAPPING_LAYER.value,
            "- Entities: _",
            "- Attributes: _",
            "- Relations: _",
            "- Constraints: _",
            "",
            Section.MECHANICS.value,
            INVARIANT_PLACEHOLDER,
            "",
            Section.MAPPING_TABLE.value,
            "| ID | Concept | File:Line(s) | Kind | Status |",
            "| -- | -------- | ------------- | ---- | ------ |",
            "| M1 | pending | pending | pending | unknown |",
            "",
            Section.PLAN.value,
            PLAN_PLACEHOLDER,
            "",
            Section.IMPLEMENTATION.value,
            "- No implementation actions recorded yet.",
            "",
            Section.OPEN_QUESTIONS.value,
            "- None recorded.",
            "",
        ]
    )


def read_header(content: str) -> dict[str, Any] | None:
    """Parse the metadata header into a dict, or None if missing or malformed."""
    match = _HEADER_RE.match(content)
    if match is None:
        return None
    try:
        data = yaml.safe_load(match.group("body"))
    except yaml.YAMLError:
        logger.warning("Ignoring malformed container header", exc_info=True)
        return None
    return data if isinstance(data, dict) else None


def parse_metadata(content: str) -> ContainerMetadata | None:
    header = read_header(content)
    if header is None:
        return None
    scope = header.get("scope") if isinstance(header.get("scope"), dict) else {}
    models = header.get("models") if isinstance(header.get("models"), dict) else {}
    try:
        return ContainerMetadata.model_validate(
            {
                **header,
                "container_id": str(header.get("container_id", "")),
                "title": str(header.get("title", "")),
                "scope_paths": [str(path) for path in scope.get("paths") or []],
                "primary_model": models.get("primary"),
                "backup_model": models.get("backup"),
            }
        )
    except ValidationError:
        logger.warning("Container header failed validation", exc_info=True)
        return None


def update_header(content: str, **fields: Any) -> str:
    """Return ``content`` with top-level header ``fields`` replaced.

    Documents without a readable header are returned unchanged.
    """
    match = _HEADER_RE.match(content)
    header = read_header(content)
    if match is None or header is None:
        logger.warning("Container document has no readable header; header fields not updated")
        return content
    header.update(fields)
    remainder = content[match.end():]
    return f"{_render_header(header)}\n{remainder}"


class ContainerRegistry:
    """Locates container documents and creates them on first use."""

    def __init__(
        self,
        workspace_root: Path,
        *,
        settings: RuntimeSettings | None = None,
        store: DocumentStore | None = None,
    ) -> None:
        self.workspace_root = workspace_root
        self.settings = settings if settings is not None else RuntimeSettings.from_env()
        self.store = store if store is not None else DocumentStore()

    @property
    def container_dir(self) -> Path:
        return self.settings.container_dir_path(self.workspace_root)

    def document_path(self, container_id: str) -> Path:
        return self.container_dir / f"{sanitize_container_id(container_id)}{DOCUMENT_SUFFIX}"

    def ensure_document(self, metadata: ContainerMetadata, initial_task: str | None = None) -> Path | None:
        """Create the container document unless it already exists.

        An existing document is never rewritten, even when ``metadata``
        differs from its header.

        Returns:
            Path to the document, or None if it could not be created.
        """
        path = self.document_path(metadata.container_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            created = self.store.create_if_absent(
                path,
                lambda: build_initial_document(metadata, self.settings, initial_task),
            )
        except OSError:
            logger.error("Failed to ensure container document %s", path, exc_info=True)
            return None
        if created:
            logger.info("Created container document %s", path)
        return path

    @staticmethod
    def section_headings() -> dict[str, str]:
        return {section.name.lower(): section.value for section in Section}
