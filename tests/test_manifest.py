"""Tests for type inference and manifest validation."""

from __future__ import annotations

import pytest

from reffy.manifest import (
    allowed_kind_extensions,
    infer_artifact_type,
    is_manifest,
    is_safe_relative_path,
    parse_timestamp,
    utc_now,
    validate_manifest,
)


class TestTypeInference:
    def test_known_types(self):
        assert infer_artifact_type("doc.md") == {"kind": "note", "mime_type": "text/markdown"}
        assert infer_artifact_type("image.jpeg") == {"kind": "image", "mime_type": "image/jpeg"}
        assert infer_artifact_type("paper.pdf") == {"kind": "pdf", "mime_type": "application/pdf"}

    def test_extension_is_case_insensitive(self):
        assert infer_artifact_type("SHOT.PNG")["kind"] == "image"

    def test_fallback(self):
        assert infer_artifact_type("unknown.bin") == {
            "kind": "file",
            "mime_type": "application/octet-stream",
        }
        assert infer_artifact_type("Makefile")["kind"] == "file"

    def test_allowed_extensions_is_a_copy(self):
        first = allowed_kind_extensions()
        first["note"].append(".rst")
        first["pdf"].clear()
        second = allowed_kind_extensions()
        assert ".rst" not in second["note"]
        assert second["pdf"] == [".pdf"]

    def test_allowed_extensions_cover_known_kinds(self):
        table = allowed_kind_extensions()
        assert set(table) == {"note", "image", "pdf", "file"}
        assert ".md" in table["note"]
        assert table["file"] == []


class TestHelpers:
    def test_is_manifest(self):
        assert is_manifest({"version": 1, "artifacts": [], "created_at": "x", "updated_at": "y"})
        assert not is_manifest({"version": 2, "artifacts": []})
        assert not is_manifest({"version": 1, "artifacts": {}})
        assert not is_manifest([])
        assert not is_manifest(None)

    def test_parse_timestamp(self):
        assert parse_timestamp(utc_now()) is not None
        assert parse_timestamp("2026-01-02T03:04:05") is not None
        assert parse_timestamp("bad-date") is None
        assert parse_timestamp(42) is None

    def test_safe_relative_path(self, tmp_path):
        assert is_safe_relative_path("note.md", tmp_path)
        assert is_safe_relative_path("sub/note.md", tmp_path)
        assert not is_safe_relative_path("../escape.md", tmp_path)
        assert not is_safe_relative_path("a/../../escape.md", tmp_path)
        assert not is_safe_relative_path("/etc/passwd", tmp_path)
        assert not is_safe_relative_path("..\\escape.md", tmp_path)
        assert not is_safe_relative_path("", tmp_path)
        assert not is_safe_relative_path(".", tmp_path)
        assert not is_safe_relative_path("a\x00.md", tmp_path)


class TestValidateManifest:
    @pytest.mark.asyncio
    async def test_well_formed(self, repo):
        repo.add_artifact("idea.md", "# Feature Idea\n\n- Test")
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        assert result.ok is True
        assert result.errors == []
        assert result.warnings == []
        assert result.artifact_count == 1

    @pytest.mark.asyncio
    async def test_parse_failure_short_circuits(self, repo):
        repo.manifest_path.write_text("not-json", encoding="utf-8")
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        assert result.ok is False
        assert len(result.errors) == 1
        assert "manifest read/parse failed" in result.errors[0]
        assert result.artifact_count == 0

    @pytest.mark.asyncio
    async def test_missing_manifest(self, tmp_path):
        result = await validate_manifest(tmp_path / "nope.json", tmp_path)
        assert result.ok is False
        assert "manifest read/parse failed" in result.errors[0]

    @pytest.mark.asyncio
    async def test_wrong_shape(self, repo):
        repo.write_manifest([{"id": "a"}])
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        assert result.ok is False
        assert "contract" in result.errors[0]

    @pytest.mark.asyncio
    async def test_reports_every_defect_in_one_pass(self, repo):
        (repo.artifacts_dir / "valid.md").write_text("hello", encoding="utf-8")
        now = utc_now()
        base = {"mime_type": "text/markdown", "tags": [], "created_at": now, "updated_at": now}
        repo.write_manifest(
            {
                "version": 1,
                "created_at": now,
                "updated_at": now,
                "artifacts": [
                    {**base, "id": "dup", "name": "A", "filename": "valid.md",
                     "kind": "note", "size_bytes": 5},
                    {**base, "id": "dup", "name": "B", "filename": "../escape.md",
                     "kind": "bad-kind", "size_bytes": 0, "created_at": "bad-date"},
                    {**base, "id": "ok-id", "name": "C", "filename": "missing.pdf",
                     "kind": "pdf", "mime_type": "application/pdf", "size_bytes": 1},
                ],
            }
        )
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        joined = "\n".join(result.errors)
        assert result.ok is False
        assert result.artifact_count == 3
        assert "duplicate artifact id: dup" in joined
        assert "filename must be a safe relative path" in joined
        assert "kind must be one of" in joined
        assert "created_at must be an ISO timestamp" in joined
        assert "file is missing: missing.pdf" in joined

    @pytest.mark.asyncio
    async def test_duplicate_id_reported_per_extra_occurrence(self, repo):
        for name in ("a.md", "b.md", "c.md"):
            repo.add_artifact(name, "x")
        manifest = repo.read_manifest()
        for entry in manifest["artifacts"]:
            entry["id"] = "same"
        repo.write_manifest(manifest)
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        dupes = [e for e in result.errors if e == "duplicate artifact id: same"]
        assert len(dupes) == 2

    @pytest.mark.asyncio
    async def test_extension_must_match_kind(self, repo):
        repo.add_artifact("photo.png", "not really a png", kind="note")
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        assert result.ok is False
        assert any("extension .png is not allowed for kind note" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_unrecognized_extension_and_file_kind_pass(self, repo):
        repo.add_artifact("data.bin", "raw", kind="note")
        repo.add_artifact("notes.md", "raw", kind="file", mime_type="application/octet-stream")
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        assert result.ok is True

    @pytest.mark.asyncio
    async def test_field_types(self, repo):
        entry = repo.add_artifact("a.md", "x")
        manifest = repo.read_manifest()
        manifest["artifacts"][0].update(size_bytes=-1, tags="oops", name="", mime_type=None)
        manifest["artifacts"].append("not-an-object")
        repo.write_manifest(manifest)
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        joined = "\n".join(result.errors)
        assert "size_bytes must be a non-negative integer" in joined
        assert "tags must be a list of strings" in joined
        assert "name must be a non-empty string" in joined
        assert "mime_type must be a string" in joined
        assert "artifacts[1] must be an object" in joined
        assert result.artifact_count == 2
        assert entry["filename"] == "a.md"

    @pytest.mark.asyncio
    async def test_unhashable_kind_is_reported(self, repo):
        repo.add_artifact("a.md", "x")
        manifest = repo.read_manifest()
        manifest["artifacts"][0]["kind"] = ["note"]
        repo.write_manifest(manifest)
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        assert result.ok is False
        assert any("kind must be one of" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_nul_in_filename_is_unsafe(self, repo):
        repo.add_artifact("a.md", "x")
        manifest = repo.read_manifest()
        manifest["artifacts"][0]["filename"] = "a\u0000.md"
        repo.write_manifest(manifest)
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        assert result.ok is False
        assert any("must be a safe relative path" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_size_mismatch_is_warning(self, repo):
        entry = repo.add_artifact("size.md", "12345")
        manifest = repo.read_manifest()
        manifest["artifacts"][0]["size_bytes"] = entry["size_bytes"] + 10
        repo.write_manifest(manifest)
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        assert result.ok is True
        assert result.errors == []
        assert "size_bytes" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_advisory_warnings(self, repo):
        repo.add_artifact("t.md", "x")
        manifest = repo.read_manifest()
        manifest["artifacts"][0].update(
            tags=["a", "a"],
            created_at="2026-02-01T00:00:00Z",
            updated_at="2026-01-01T00:00:00Z",
        )
        repo.write_manifest(manifest)
        result = await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        assert result.ok is True
        assert any("duplicates" in w for w in result.warnings)
        assert any("earlier than created_at" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_is_read_only(self, repo):
        repo.add_artifact("a.md", "x")
        before = repo.manifest_path.read_bytes()
        await validate_manifest(repo.manifest_path, repo.artifacts_dir)
        assert repo.manifest_path.read_bytes() == before
        assert sorted(p.name for p in repo.artifacts_dir.iterdir()) == ["a.md"]
