"""Shared fixtures: a temporary repository with an empty v1 manifest."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from pathlib import Path

import pytest

from reffy.manifest import utc_now


@dataclass
class TempRepo:
    root: Path
    refs_dir: Path
    artifacts_dir: Path
    manifest_path: Path

    def read_manifest(self) -> dict:
        return json.loads(self.manifest_path.read_text(encoding="utf-8"))

    def write_manifest(self, data) -> None:
        self.manifest_path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def add_artifact(self, filename: str, content: str, *, name: str | None = None,
                     kind: str = "note", mime_type: str = "text/markdown") -> dict:
        """Write a file and append a matching entry, bypassing the store."""
        path = self.artifacts_dir / filename
        path.write_text(content, encoding="utf-8")
        now = utc_now()
        entry = {
            "id": str(uuid.uuid4()),
            "name": name or Path(filename).stem,
            "filename": filename,
            "kind": kind,
            "mime_type": mime_type,
            "size_bytes": path.stat().st_size,
            "tags": [],
            "created_at": now,
            "updated_at": now,
        }
        manifest = self.read_manifest()
        manifest["artifacts"].append(entry)
        manifest["updated_at"] = now
        self.write_manifest(manifest)
        return entry


@pytest.fixture
def repo(tmp_path: Path) -> TempRepo:
    refs_dir = tmp_path / ".references"
    artifacts_dir = refs_dir / "artifacts"
    artifacts_dir.mkdir(parents=True)
    r = TempRepo(tmp_path, refs_dir, artifacts_dir, refs_dir / "manifest.json")
    now = utc_now()
    r.write_manifest({"version": 1, "created_at": now, "updated_at": now, "artifacts": []})
    return r
