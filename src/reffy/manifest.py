"""Manifest contract: type inference, shape guard and validation.

The validator is read-only. It reports as many problems as it can find in
one pass; only an unreadable or wrongly-shaped manifest short-circuits.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath, PureWindowsPath
from types import MappingProxyType
from typing import Any

from reffy.models import ValidationResult

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1

DEFAULT_KIND = "note"
DEFAULT_MIME_TYPE = "text/markdown"
FALLBACK_TYPE = ("file", "application/octet-stream")

# extension -> (kind, mime_type)
_TYPE_TABLE: MappingProxyType[str, tuple[str, str]] = MappingProxyType(
    {
        ".md": ("note", "text/markdown"),
        ".markdown": ("note", "text/markdown"),
        ".txt": ("note", "text/plain"),
        ".png": ("image", "image/png"),
        ".jpg": ("image", "image/jpeg"),
        ".jpeg": ("image", "image/jpeg"),
        ".gif": ("image", "image/gif"),
        ".webp": ("image", "image/webp"),
        ".svg": ("image", "image/svg+xml"),
        ".pdf": ("pdf", "application/pdf"),
    }
)

KNOWN_KINDS: frozenset[str] = frozenset({"note", "image", "pdf", "file"})

# "file" has no entry in the table and accepts any extension.
_KIND_EXTENSIONS: MappingProxyType[str, tuple[str, ...]] = MappingProxyType(
    {
        kind: tuple(ext for ext, (k, _) in _TYPE_TABLE.items() if k == kind)
        for kind in sorted(KNOWN_KINDS)
    }
)


# ── Timestamps ────────────────────────────────────────────


def utc_now() -> str:
    """UTC timestamp in the manifest's format, e.g. 2026-01-02T03:04:05.678Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string, returning None when it is not one."""
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Type inference ────────────────────────────────────────


def infer_artifact_type(filename: str | Path) -> dict[str, str]:
    """Map a filename's extension to {"kind", "mime_type"}."""
    ext = PurePosixPath(str(filename)).suffix.lower()
    kind, mime_type = _TYPE_TABLE.get(ext, FALLBACK_TYPE)
    return {"kind": kind, "mime_type": mime_type}


def allowed_kind_extensions() -> dict[str, list[str]]:
    """Return a fresh copy of the kind -> allowed extensions table."""
    return {kind: list(exts) for kind, exts in _KIND_EXTENSIONS.items()}


def is_manifest(value: Any) -> bool:
    """True for a mapping with the current version and an artifacts list."""
    return (
        isinstance(value, dict)
        and value.get("version") == MANIFEST_VERSION
        and isinstance(value.get("artifacts"), list)
    )


# ── Validation ────────────────────────────────────────────


def is_safe_relative_path(filename: str, root: Path) -> bool:
    """Reject absolute paths, '..' segments and anything resolving outside root."""
    if not filename or "\x00" in filename or filename.startswith(("/", "\\")):
        return False
    if PurePosixPath(filename).is_absolute() or PureWindowsPath(filename).drive:
        return False
    if ".." in re.split(r"[\\/]", filename):
        return False
    try:
        base = root.resolve()
        resolved = (base / filename).resolve()
    except (OSError, ValueError):
        return False
    return resolved != base and resolved.is_relative_to(base)


async def validate_manifest(manifest_path: str | Path, artifacts_dir: str | Path) -> ValidationResult:
    """Audit a manifest file against the artifacts directory. Never mutates either."""
    return await asyncio.to_thread(_validate, Path(manifest_path), Path(artifacts_dir))


def _validate(manifest_path: Path, artifacts_dir: Path) -> ValidationResult:
    try:
        raw = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        return ValidationResult(ok=False, errors=[f"manifest read/parse failed: {e}"])

    if not is_manifest(raw):
        return ValidationResult(
            ok=False,
            errors=[
                f"manifest does not match the v{MANIFEST_VERSION} contract "
                f"(expected an object with version={MANIFEST_VERSION} and an artifacts list)"
            ],
        )

    entries: list[Any] = raw["artifacts"]
    errors: list[str] = []
    warnings: list[str] = []
    seen_ids: set[str] = set()

    for index, entry in enumerate(entries):
        label = f"artifacts[{index}]"
        if not isinstance(entry, dict):
            errors.append(f"{label} must be an object")
            continue
        _check_entry(entry, label, artifacts_dir, seen_ids, errors, warnings)

    result = ValidationResult(
        ok=not errors, errors=errors, warnings=warnings, artifact_count=len(entries)
    )
    logger.debug(
        "Validated %s: %d error(s), %d warning(s)", manifest_path, len(errors), len(warnings)
    )
    return result


def _check_entry(
    entry: dict[str, Any],
    label: str,
    artifacts_dir: Path,
    seen_ids: set[str],
    errors: list[str],
    warnings: list[str],
) -> None:
    artifact_id = entry.get("id")
    if not isinstance(artifact_id, str) or not artifact_id:
        errors.append(f"{label}.id must be a non-empty string")
    elif artifact_id in seen_ids:
        errors.append(f"duplicate artifact id: {artifact_id}")
    else:
        seen_ids.add(artifact_id)

    name = entry.get("name")
    if not isinstance(name, str) or not name:
        errors.append(f"{label}.name must be a non-empty string")

    filename = entry.get("filename")
    safe = False
    if not isinstance(filename, str) or not filename:
        errors.append(f"{label}.filename must be a non-empty string")
        filename = None
    elif not is_safe_relative_path(filename, artifacts_dir):
        errors.append(f"{label}.filename must be a safe relative path: {filename}")
    else:
        safe = True

    kind = entry.get("kind")
    if not isinstance(kind, str) or kind not in KNOWN_KINDS:
        errors.append(f"{label}.kind must be one of {', '.join(sorted(KNOWN_KINDS))}: {kind!r}")
    elif filename and kind != "file":
        ext = PurePosixPath(filename).suffix.lower()
        if ext in _TYPE_TABLE and ext not in _KIND_EXTENSIONS[kind]:
            errors.append(f"{label}.filename extension {ext} is not allowed for kind {kind}")

    if not isinstance(entry.get("mime_type"), str):
        errors.append(f"{label}.mime_type must be a string")

    size_bytes = entry.get("size_bytes")
    size_ok = isinstance(size_bytes, int) and not isinstance(size_bytes, bool) and size_bytes >= 0
    if not size_ok:
        errors.append(f"{label}.size_bytes must be a non-negative integer")

    tags = entry.get("tags")
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        errors.append(f"{label}.tags must be a list of strings")
    elif len(set(tags)) != len(tags):
        warnings.append(f"{label}.tags contains duplicates")

    created = parse_timestamp(entry.get("created_at"))
    updated = parse_timestamp(entry.get("updated_at"))
    if created is None:
        errors.append(f"{label}.created_at must be an ISO timestamp")
    if updated is None:
        errors.append(f"{label}.updated_at must be an ISO timestamp")
    if created and updated and updated < created:
        warnings.append(f"{label}.updated_at is earlier than created_at")

    if not safe:
        return
    path = artifacts_dir / filename
    if not path.is_file():
        errors.append(f"file is missing: {filename}")
        return
    if size_ok:
        actual = path.stat().st_size
        if actual != size_bytes:
            warnings.append(
                f"{label}.size_bytes ({size_bytes}) does not match on-disk size ({actual}) for {filename}"
            )
