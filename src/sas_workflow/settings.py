from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    workspace_root: str = ""
    container_dir: str = "sas/containers"
    prompt_max_chars: int = 6_000
    determinacy_threshold: float = 0.5
    primary_model: str = "gpt-5.1-thinking"
    backup_model: str = "gpt-4.1"

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            workspace_root=os.getenv("SAS_WORKSPACE_ROOT", ""),
            container_dir=os.getenv("SAS_CONTAINER_DIR", "sas/containers"),
            prompt_max_chars=_get_env_int("SAS_PROMPT_MAX_CHARS", default=6_000, minimum=1, maximum=1_000_000),
            determinacy_threshold=_get_env_float("SAS_DETERMINACY_THRESHOLD", default=0.5, minimum=0.0, maximum=1.0),
            primary_model=os.getenv("SAS_PRIMARY_MODEL", "gpt-5.1-thinking"),
            backup_model=os.getenv("SAS_BACKUP_MODEL", "gpt-4.1"),
        ).normalized()

    @property
    def workspace_root_path(self) -> Path:
        """Return the workspace root as a Path, defaulting to cwd if unset."""
        return Path(self.workspace_root) if self.workspace_root else Path.cwd()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        container_dir = self.container_dir.strip().strip("/")
        if not container_dir:
            raise ValueError("SAS_CONTAINER_DIR must be non-empty")
        if Path(container_dir).is_absolute() or ".." in Path(container_dir).parts:
            raise ValueError(f"SAS_CONTAINER_DIR must stay inside the workspace, got: {self.container_dir!r}")

        primary_model = self.primary_model.strip()
        if not primary_model:
            raise ValueError("SAS_PRIMARY_MODEL must be non-empty")
        backup_model = self.backup_model.strip()
        if not backup_model:
            raise ValueError("SAS_BACKUP_MODEL must be non-empty")

        if self.prompt_max_chars < 1:
            raise ValueError(f"SAS_PROMPT_MAX_CHARS must be >= 1, got: {self.prompt_max_chars}")
        if not 0.0 <= self.determinacy_threshold <= 1.0:
            raise ValueError(
                f"SAS_DETERMINACY_THRESHOLD must be between 0 and 1, got: {self.determinacy_threshold}"
            )
        return RuntimeSettings(
            workspace_root=self.workspace_root.strip(),
            container_dir=container_dir,
            prompt_max_chars=self.prompt_max_chars,
            determinacy_threshold=self.determinacy_threshold,
            primary_model=primary_model,
            backup_model=backup_model,
        )

    def container_dir_path(self, workspace_root: Path | None = None) -> Path:
        root = workspace_root if workspace_root is not None else self.workspace_root_path
        return root / self.container_dir


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound.

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_float(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from exc
    if not minimum <= parsed <= maximum:
        raise ValueError(f"{name} must be between {minimum} and {maximum}, got: {parsed}")
    return parsed
