"""Data shapes shared by the store, validator and summarizer.

All records serialize to plain dicts with snake_case keys, which is the
shape written to manifest.json and printed by the CLI.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class Artifact:
    """One tracked unit of content (file + metadata record)."""

    id: str
    name: str
    filename: str
    kind: str
    mime_type: str
    size_bytes: int
    tags: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Artifact:
        """Build from a manifest entry; raises TypeError/ValueError on bad shapes."""
        tags = data.get("tags") or []
        if not isinstance(tags, list):
            raise TypeError(f"tags must be a list, got {type(tags).__name__}")
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            filename=str(data.get("filename", "")),
            kind=str(data.get("kind", "")),
            mime_type=str(data.get("mime_type", "")),
            size_bytes=int(data.get("size_bytes") or 0),
            tags=[str(t) for t in tags],
            created_at=str(data.get("created_at", "")),
            updated_at=str(data.get("updated_at", "")),
        )


@dataclass
class Manifest:
    """The JSON index of all artifacts for a repository."""

    version: int
    created_at: str
    updated_at: str
    artifacts: list[Artifact] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "artifacts": [a.to_dict() for a in self.artifacts],
        }


@dataclass
class ValidationResult:
    ok: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    artifact_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReindexResult:
    """Outcome of a reconciliation pass."""

    added: int
    removed: int
    total: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SuggestedReference:
    filename: str
    reason: str


@dataclass
class ArtifactSummary:
    """Aggregate heuristic summary across all readable artifacts."""

    themes: list[str] = field(default_factory=list)
    open_questions: list[str] = field(default_factory=list)
    candidate_changes: list[str] = field(default_factory=list)
    suggested_reffy_references: list[SuggestedReference] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
