"""Entry point: python -m reffy <command> [--repo PATH] [--output text|json]

- bootstrap: ensure .references/ exists, then reindex
- reindex:   reconcile manifest.json with files in .references/artifacts
- validate:  check manifest.json against the v1 contract
- summarize: validate, then print themes / questions / candidate changes
- list:      print tracked artifacts, optionally filtered by --kind / --tag
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

from reffy.config import ReffyConfig, load_config
from reffy.store import ManifestCorruptError, ReferencesStore
from reffy.summarize import summarize_artifacts

logger = logging.getLogger(__name__)

COMMANDS = ("bootstrap", "reindex", "validate", "summarize", "list")

USAGE = """\
Usage: reffy <command> [--repo PATH] [--output text|json] [--kind KIND] [--tag TAG]

Commands:
  bootstrap  Ensure .references/ structure exists, then reindex artifacts.
  reindex    Scan .references/artifacts and sync manifest entries.
  validate   Validate .references/manifest.json against the v1 contract.
  summarize  Generate a read-only summary of indexed artifacts.
  list       List tracked artifacts (--kind and --tag narrow the list)."""


class UsageError(ValueError):
    pass


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


_VALUE_OPTIONS = ("--repo", "--output", "--kind", "--tag")


def _parse_args(argv: list[str]) -> tuple[str | None, Path, str, dict[str, str]]:
    """Return (command, repo, output, list filters)."""
    command: str | None = None
    repo = Path.cwd()
    output = "text"
    filters: dict[str, str] = {}
    args = iter(argv)
    for arg in args:
        if arg == "--json":
            output = "json"
            continue
        if arg in _VALUE_OPTIONS:
            option, value = arg, next(args, None)
        elif arg.startswith(tuple(f"{o}=" for o in _VALUE_OPTIONS)):
            option, value = arg.split("=", 1)
        elif arg.startswith("-"):
            raise UsageError(f"Unknown option: {arg}")
        elif command is None:
            command = arg
            continue
        else:
            raise UsageError(f"Unexpected argument: {arg}")

        if not value:
            raise UsageError(f"{option} requires a value")
        if option == "--repo":
            repo = Path(value).resolve()
        elif option == "--output":
            output = value
        else:
            filters[option[2:]] = value
    if output not in ("text", "json"):
        raise UsageError(f"Unsupported output mode: {output}")
    if filters and command != "list":
        raise UsageError("--kind and --tag only apply to the list command")
    return command, repo, output, filters


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _print_section(title: str, values: list[str]) -> None:
    print(f"{title}:")
    if not values:
        print("- (none)")
    for value in values:
        print(f"- {value}")


async def _run(
    command: str, repo: Path, output: str, config: ReffyConfig, filters: dict[str, str] | None = None
) -> int:
    store = ReferencesStore(
        repo, refs_dir=config.store.refs_dir, on_corrupt=config.store.on_corrupt
    )

    if command in ("bootstrap", "reindex"):
        result = await store.reconcile()
        if output == "json":
            if command == "bootstrap":
                _emit(
                    {
                        "status": "ok",
                        "command": command,
                        "refs_dir": str(store.refs_dir),
                        "manifest_path": str(store.manifest_path),
                        "reindex": result.to_dict(),
                    }
                )
            else:
                _emit({"status": "ok", "command": command, **result.to_dict()})
        else:
            if command == "bootstrap":
                print(f"Bootstrapped {store.refs_dir}")
            print(f"Reindex complete: added={result.added} removed={result.removed} total={result.total}")
        return 0

    if command == "list":
        filters = filters or {}
        artifacts = await store.list_artifacts(**filters)
        if output == "json":
            _emit(
                {
                    "status": "ok",
                    "command": command,
                    "filters": filters,
                    "artifacts": [a.to_dict() for a in artifacts],
                }
            )
        else:
            if not artifacts:
                print("- (none)")
            for a in artifacts:
                print(f"- {a.filename} [{a.kind}] {a.name} ({a.size_bytes} bytes)")
        return 0

    validation = await store.validate()

    if command == "validate":
        status = "ok" if validation.ok else "error"
        if output == "json":
            _emit({"status": status, "command": command, **validation.to_dict()})
        elif validation.ok:
            print(f"Manifest valid: artifacts={validation.artifact_count}")
            for warning in validation.warnings:
                print(f"warn: {warning}")
        else:
            print(f"Manifest invalid: {len(validation.errors)} error(s)", file=sys.stderr)
            for error in validation.errors:
                print(f"error: {error}", file=sys.stderr)
            for warning in validation.warnings:
                print(f"warn: {warning}", file=sys.stderr)
        return 0 if validation.ok else 1

    # summarize
    if not validation.ok:
        if output == "json":
            _emit({"status": "error", "command": command, **validation.to_dict()})
        else:
            print(
                f"Cannot summarize: manifest invalid ({len(validation.errors)} error(s))",
                file=sys.stderr,
            )
            for error in validation.errors:
                print(f"error: {error}", file=sys.stderr)
        return 1

    summary = await summarize_artifacts(store, limit=config.summarize.limit)
    if output == "json":
        _emit({"status": "ok", "command": command, **summary.to_dict()})
        return 0
    _print_section("Themes", summary.themes)
    print()
    _print_section("Open Questions", summary.open_questions)
    print()
    _print_section("Candidate Changes", summary.candidate_changes)
    print()
    _print_section(
        "Suggested Reffy References",
        [f"{r.filename} - {r.reason}" for r in summary.suggested_reffy_references],
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    try:
        command, repo, output, filters = _parse_args(sys.argv[1:] if argv is None else argv)
        config = load_config()
    except ValueError as e:
        print(str(e), file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return 1
    _setup_logging(config.log_level)

    if command not in COMMANDS:
        if command:
            print(f"Unknown command: {command}", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return 1

    try:
        return asyncio.run(_run(command, repo, output, config, filters))
    except (ManifestCorruptError, ValueError) as e:
        logger.error("%s failed: %s", command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
