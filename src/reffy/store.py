"""Artifact store — manifest.json + artifacts/ kept consistent.

Layout under a repository root:

    .references/
    ├── manifest.json      # metadata, source of truth for identity/tags
    └── artifacts/         # one file per artifact, source of truth for content

Single writer per manifest is assumed; there is no locking. A crash between
writing content and persisting the manifest is repaired by reconcile().
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from reffy.manifest import (
    DEFAULT_KIND,
    DEFAULT_MIME_TYPE,
    KNOWN_KINDS,
    MANIFEST_VERSION,
    infer_artifact_type,
    is_safe_relative_path,
    utc_now,
    validate_manifest,
)
from reffy.models import Artifact, Manifest, ReindexResult, ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_REFS_DIR = ".references"
FALLBACK_SLUG = "untitled"

CorruptPolicy = Literal["raise", "recover"]


class ManifestCorruptError(RuntimeError):
    """manifest.json exists but cannot be decoded into a manifest."""

    def __init__(self, path: Path, detail: str) -> None:
        super().__init__(f"manifest at {path} is corrupt: {detail}")
        self.path = path
        self.detail = detail


@dataclass
class ManifestLoad:
    """Result of reading manifest.json; status tells missing from corrupt."""

    manifest: Manifest
    status: Literal["ok", "missing", "corrupt"]
    error: str = ""


def slugify(name: str) -> str:
    """Lowercase, keep word chars/hyphens/spaces, whitespace runs to hyphens."""
    cleaned = "".join(ch for ch in name if re.match(r"[\w\- ]", ch)).strip()
    return re.sub(r"\s+", "-", cleaned).lower() or FALLBACK_SLUG


class ReferencesStore:
    """CRUD and reconciliation for artifacts tracked in a single manifest."""

    def __init__(
        self,
        repo_root: str | Path,
        *,
        refs_dir: str = DEFAULT_REFS_DIR,
        on_corrupt: CorruptPolicy = "raise",
    ) -> None:
        if on_corrupt not in ("raise", "recover"):
            raise ValueError(f"on_corrupt must be 'raise' or 'recover', got {on_corrupt!r}")
        self.repo_root = Path(repo_root)
        self.refs_dir = self.repo_root / refs_dir
        self.artifacts_dir = self.refs_dir / "artifacts"
        self.manifest_path = self.refs_dir / "manifest.json"
        self.on_corrupt = on_corrupt
        self._ensure_initialized()

    # ── Layout ────────────────────────────────────────────

    def _ensure_initialized(self) -> None:
        """Create directories and an empty manifest if absent. Idempotent."""
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)
        if not self.manifest_path.exists():
            self._write_manifest_sync(self._empty_manifest())
            logger.info("Initialized empty manifest at %s", self.manifest_path)

    def _empty_manifest(self) -> Manifest:
        now = utc_now()
        return Manifest(version=MANIFEST_VERSION, created_at=now, updated_at=now)

    def get_artifact_path(self, artifact: Artifact) -> Path:
        return self.artifacts_dir / artifact.filename

    # ── Manifest I/O ──────────────────────────────────────

    def load_manifest_sync(self) -> ManifestLoad:
        """Read manifest.json without raising; see ManifestLoad.status."""
        try:
            text = self.manifest_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ManifestLoad(self._empty_manifest(), "missing")
        except (OSError, UnicodeDecodeError) as e:
            return ManifestLoad(self._empty_manifest(), "corrupt", str(e))

        try:
            raw = json.loads(text)
        except ValueError as e:
            return ManifestLoad(self._empty_manifest(), "corrupt", str(e))

        now = utc_now()
        if isinstance(raw, list):
            # Legacy layout: a bare array of artifacts.
            version, created_at, updated_at, entries = 0, now, now, raw
        elif isinstance(raw, dict):
            version = raw.get("version")
            if not isinstance(version, int) or isinstance(version, bool):
                version = MANIFEST_VERSION
            created_at = raw.get("created_at") if isinstance(raw.get("created_at"), str) else now
            updated_at = raw.get("updated_at") if isinstance(raw.get("updated_at"), str) else now
            entries = raw.get("artifacts") if isinstance(raw.get("artifacts"), list) else []
        else:
            return ManifestLoad(
                self._empty_manifest(), "corrupt", "top-level value must be an object or array"
            )

        artifacts: list[Artifact] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                return ManifestLoad(
                    self._empty_manifest(), "corrupt", f"artifacts[{index}] is not an object"
                )
            try:
                artifacts.append(Artifact.from_dict(entry))
            except (TypeError, ValueError, OverflowError) as e:
                return ManifestLoad(self._empty_manifest(), "corrupt", f"artifacts[{index}]: {e}")

        manifest = Manifest(
            version=version, created_at=created_at, updated_at=updated_at, artifacts=artifacts
        )
        return ManifestLoad(manifest, "ok")

    async def load_manifest(self) -> ManifestLoad:
        return await asyncio.to_thread(self.load_manifest_sync)

    async def _read_manifest(self) -> Manifest:
        load = await self.load_manifest()
        if load.status != "corrupt":
            return load.manifest
        if self.on_corrupt == "raise":
            raise ManifestCorruptError(self.manifest_path, load.error)
        await asyncio.to_thread(self._quarantine_corrupt, load)
        return load.manifest

    def _quarantine_corrupt(self, load: ManifestLoad) -> None:
        """Move a corrupt manifest aside, then start from an empty one."""
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        target = self.manifest_path.with_name(f"{self.manifest_path.name}.corrupt-{ts}")
        os.replace(self.manifest_path, target)
        self._write_manifest_sync(load.manifest)
        logger.warning(
            "Corrupt manifest moved to %s (%s); continuing with an empty manifest",
            target,
            load.error,
        )

    def _write_manifest_sync(self, manifest: Manifest) -> None:
        manifest.version = MANIFEST_VERSION
        self.refs_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.manifest_path.with_name(self.manifest_path.name + ".tmp")
        tmp.write_text(
            json.dumps(manifest.to_dict(), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        os.replace(tmp, self.manifest_path)

    async def _write_manifest(self, manifest: Manifest) -> None:
        await asyncio.to_thread(self._write_manifest_sync, manifest)

    # ── File helpers ──────────────────────────────────────

    def _unique_filename(self, base: str, taken: set[str], ext: str = ".md") -> str:
        candidate = f"{base}{ext}"
        counter = 2
        while candidate in taken or (self.artifacts_dir / candidate).exists():
            candidate = f"{base}-{counter}{ext}"
            counter += 1
        return candidate

    @staticmethod
    def _write_content(path: Path, content: str) -> int:
        """Write content verbatim and return the on-disk size."""
        path.write_bytes(content.encode("utf-8"))
        return path.stat().st_size

    @staticmethod
    def _file_size(path: Path) -> int:
        try:
            return path.stat().st_size
        except OSError:
            return 0

    def _files_on_disk(self) -> list[str]:
        return sorted(p.name for p in self.artifacts_dir.iterdir() if p.is_file())

    def _require_safe(self, artifact: Artifact) -> Path:
        if not is_safe_relative_path(artifact.filename, self.artifacts_dir):
            raise ValueError(
                f"artifact {artifact.id} has an unsafe filename: {artifact.filename!r}"
            )
        return self.get_artifact_path(artifact)

    # ── CRUD ──────────────────────────────────────────────

    async def list_artifacts(
        self, *, kind: str | None = None, tag: str | None = None
    ) -> list[Artifact]:
        """Artifacts in manifest (insertion) order, optionally narrowed by kind and/or tag."""
        manifest = await self._read_manifest()
        return [
            a
            for a in manifest.artifacts
            if (kind is None or a.kind == kind) and (tag is None or tag in a.tags)
        ]

    async def get_artifact(self, artifact_id: str) -> Artifact | None:
        manifest = await self._read_manifest()
        return next((a for a in manifest.artifacts if a.id == artifact_id), None)

    async def create_artifact(
        self,
        name: str,
        content: str | None = None,
        kind: str | None = None,
        mime_type: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> Artifact:
        """Create an artifact; the filename is a collision-free slug of name."""
        if not isinstance(name, str) or not name.strip():
            raise ValueError("name must be a non-empty string")
        tags = _check_fields(content=content, kind=kind, mime_type=mime_type, tags=tags)

        manifest = await self._read_manifest()
        taken = {a.filename for a in manifest.artifacts}
        filename = await asyncio.to_thread(self._unique_filename, slugify(name), taken)
        path = self.artifacts_dir / filename

        size_bytes = 0
        if content is not None:
            size_bytes = await asyncio.to_thread(self._write_content, path, content)

        now = utc_now()
        artifact = Artifact(
            id=str(uuid.uuid4()),
            name=name,
            filename=filename,
            kind=kind if kind is not None else DEFAULT_KIND,
            mime_type=mime_type if mime_type is not None else DEFAULT_MIME_TYPE,
            size_bytes=size_bytes,
            tags=tags if tags is not None else [],
            created_at=now,
            updated_at=now,
        )
        manifest.artifacts.append(artifact)
        manifest.updated_at = now
        await self._write_manifest(manifest)
        logger.info("Created artifact %s (%s)", artifact.id, filename)
        return artifact

    async def update_artifact(
        self,
        artifact_id: str,
        *,
        name: str | None = None,
        content: str | None = None,
        kind: str | None = None,
        mime_type: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> Artifact | None:
        """Apply only the fields given; the artifact's filename never changes."""
        if name is not None and (not isinstance(name, str) or not name.strip()):
            raise ValueError("name must be a non-empty string")
        tags = _check_fields(content=content, kind=kind, mime_type=mime_type, tags=tags)

        manifest = await self._read_manifest()
        item = next((a for a in manifest.artifacts if a.id == artifact_id), None)
        if item is None:
            return None

        if name is not None:
            item.name = name
        if kind is not None:
            item.kind = kind
        if mime_type is not None:
            item.mime_type = mime_type
        if tags is not None:
            item.tags = tags
        if content is not None:
            path = self._require_safe(item)
            item.size_bytes = await asyncio.to_thread(self._write_content, path, content)

        now = utc_now()
        item.updated_at = now
        manifest.updated_at = now
        await self._write_manifest(manifest)
        logger.info("Updated artifact %s", artifact_id)
        return item

    async def delete_artifact(self, artifact_id: str) -> bool:
        """Drop the manifest entry and its file. A missing file is fine."""
        manifest = await self._read_manifest()
        index = next((i for i, a in enumerate(manifest.artifacts) if a.id == artifact_id), None)
        if index is None:
            return False

        removed = manifest.artifacts.pop(index)
        if is_safe_relative_path(removed.filename, self.artifacts_dir):
            await asyncio.to_thread(self.get_artifact_path(removed).unlink, missing_ok=True)
        else:
            logger.warning(
                "Not deleting file for artifact %s: unsafe filename %r",
                artifact_id,
                removed.filename,
            )

        manifest.updated_at = utc_now()
        await self._write_manifest(manifest)
        logger.info("Deleted artifact %s (%s)", artifact_id, removed.filename)
        return True

    # ── Reconciliation ────────────────────────────────────

    async def reconcile(self) -> ReindexResult:
        """Sync manifest entries with files present in artifacts/.

        Entries without a file are dropped; untracked files get synthesized
        entries. The manifest is only rewritten when something changed.
        """
        manifest = await self._read_manifest()
        files = await asyncio.to_thread(self._files_on_disk)
        on_disk = set(files)

        before = len(manifest.artifacts)
        manifest.artifacts = [a for a in manifest.artifacts if a.filename in on_disk]
        removed = before - len(manifest.artifacts)

        known = {a.filename for a in manifest.artifacts}
        added = 0
        for filename in files:
            if filename in known:
                continue
            path = self.artifacts_dir / filename
            inferred = infer_artifact_type(filename)
            now = utc_now()
            manifest.artifacts.append(
                Artifact(
                    id=str(uuid.uuid4()),
                    name=Path(filename).stem.replace("-", " ").strip() or FALLBACK_SLUG,
                    filename=filename,
                    kind=inferred["kind"],
                    mime_type=inferred["mime_type"],
                    size_bytes=await asyncio.to_thread(self._file_size, path),
                    tags=[],
                    created_at=now,
                    updated_at=now,
                )
            )
            added += 1

        total = len(manifest.artifacts)
        if added or removed:
            manifest.updated_at = utc_now()
            await self._write_manifest(manifest)
            logger.info("Reconciled manifest: added=%d removed=%d total=%d", added, removed, total)
        else:
            logger.debug("Reconcile found nothing to change (total=%d)", total)
        return ReindexResult(added=added, removed=removed, total=total)

    async def validate(self) -> ValidationResult:
        return await validate_manifest(self.manifest_path, self.artifacts_dir)


def _check_fields(
    *,
    content: str | None,
    kind: str | None,
    mime_type: str | None,
    tags: Sequence[str] | None,
) -> list[str] | None:
    """Reject wrongly-shaped inputs; returns tags as a list (or None)."""
    if content is not None and not isinstance(content, str):
        raise ValueError("content must be a string")
    if kind is not None and (not isinstance(kind, str) or kind not in KNOWN_KINDS):
        raise ValueError(f"kind must be one of {', '.join(sorted(KNOWN_KINDS))}, got {kind!r}")
    if mime_type is not None and not isinstance(mime_type, str):
        raise ValueError("mime_type must be a string")
    if tags is None:
        return None
    if isinstance(tags, str) or not all(isinstance(t, str) for t in tags):
        raise ValueError("tags must be a sequence of strings")
    return list(tags)
