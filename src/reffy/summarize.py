"""Heuristic summary of artifact text: themes, open questions, candidate changes.

No model involved. Each non-heading line is run through an ordered list of
independent rules; a rule looks at (line, current section) and returns the
facts it extracted. Headings only move the current section (and may yield a
theme). Output is low precision, high recall.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from reffy.models import Artifact, ArtifactSummary, SuggestedReference

logger = logging.getLogger(__name__)

SUMMARY_LIMIT = 8
COMMAND_PREFIX = "reffy "

THEME = "themes"
QUESTION = "open_questions"
CHANGE = "candidate_changes"

GENERIC_HEADINGS = frozenset(
    {
        "problem",
        "proposed feature",
        "scope",
        "scope (small)",
        "why it fits reffy",
        "ux sketch",
        "acceptance criteria",
        "follow-up",
        "follow-up (optional)",
    }
)

REASON_FEATURE = "feature ideation and rationale"
REASON_QUESTIONS = "open questions and constraints"
REASON_CONTEXT = "exploratory context note"

_HEADING_RE = re.compile(r"^#{1,6}\s+(.+)$")
_FEATURE_PREFIX_RE = re.compile(r"^feature idea:\s*", re.IGNORECASE)
_BULLET_RE = re.compile(r"^[-*]\s*")
_COMMAND_RE = re.compile(r"`(" + re.escape(COMMAND_PREFIX) + r"[^`]+)`")
_CODE_CHARS_RE = re.compile(r"[{}\[\]]")
_QUOTED_KEY_RE = re.compile(r"[\"']\s*:")


@runtime_checkable
class StoreReader(Protocol):
    """The slice of ReferencesStore the summarizer reads through."""

    async def list_artifacts(self) -> list[Artifact]: ...

    def get_artifact_path(self, artifact: Artifact) -> Path: ...


@dataclass(frozen=True)
class Fact:
    category: str
    text: str


Rule = Callable[[str, str], list[Fact]]


def normalize_line(line: str) -> str:
    """Drop backticks, collapse whitespace, trim."""
    return re.sub(r"\s+", " ", line.replace("`", "")).strip()


def heading_value(line: str) -> str | None:
    match = _HEADING_RE.match(line)
    if not match:
        return None
    return normalize_line(match.group(1)) or None


def is_natural_language_question(line: str) -> bool:
    """A '?' line that does not look like JSON or code."""
    if "?" not in line:
        return False
    if _CODE_CHARS_RE.search(line) or _QUOTED_KEY_RE.search(line):
        return False
    return True


# ── Line rules ────────────────────────────────────────────


def question_rule(line: str, section: str) -> list[Fact]:
    if not is_natural_language_question(line):
        return []
    return [Fact(QUESTION, _BULLET_RE.sub("", line, count=1))]


def command_rule(line: str, section: str) -> list[Fact]:
    return [Fact(CHANGE, f"Introduce {cmd}") for cmd in _COMMAND_RE.findall(line)]


def proposed_feature_rule(line: str, section: str) -> list[Fact]:
    if "proposed feature" not in section:
        return []
    if not line.startswith(("- ", "* ")) or f"`{COMMAND_PREFIX}" in line:
        return []
    return [Fact(CHANGE, _BULLET_RE.sub("", line, count=1))]


LINE_RULES: tuple[Rule, ...] = (question_rule, command_rule, proposed_feature_rule)


# ── Aggregation ───────────────────────────────────────────


@dataclass
class _Collector:
    """First-seen, de-duplicated accumulation across artifacts."""

    lists: dict[str, list[str]] = field(
        default_factory=lambda: {THEME: [], QUESTION: [], CHANGE: []}
    )

    def add(self, category: str, value: str) -> bool:
        text = normalize_line(value)
        if not text:
            return False
        bucket = self.lists[category]
        if text not in bucket:
            bucket.append(text)
        return True


def summarize_content(artifact: Artifact, content: str, out: _Collector) -> str:
    """Extract facts from one artifact into out; return its reference reason."""
    section = ""
    has_theme = False
    has_question = False

    for raw_line in re.split(r"\r?\n", content):
        line = raw_line.strip()
        if not line:
            continue

        heading = heading_value(line)
        if heading is not None:
            section = heading.lower()
            if section not in GENERIC_HEADINGS:
                has_theme |= out.add(THEME, _FEATURE_PREFIX_RE.sub("", heading))
            continue

        for rule in LINE_RULES:
            for fact in rule(line, section):
                if fact.category == QUESTION:
                    has_question = True
                out.add(fact.category, fact.text)

    if not has_theme:
        out.add(THEME, artifact.name)

    if "feature idea" in content.lower():
        return REASON_FEATURE
    if has_question:
        return REASON_QUESTIONS
    return REASON_CONTEXT


async def summarize_artifacts(store: StoreReader, limit: int = SUMMARY_LIMIT) -> ArtifactSummary:
    """Summarize every readable artifact; unreadable files are skipped."""
    out = _Collector()
    references: list[SuggestedReference] = []

    for artifact in await store.list_artifacts():
        path = store.get_artifact_path(artifact)
        try:
            content = await asyncio.to_thread(Path(path).read_text, encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Skipping unreadable artifact %s: %s", artifact.filename, e)
            continue
        reason = summarize_content(artifact, content, out)
        references.append(SuggestedReference(filename=artifact.filename, reason=reason))

    return ArtifactSummary(
        themes=out.lists[THEME][:limit],
        open_questions=out.lists[QUESTION][:limit],
        candidate_changes=out.lists[CHANGE][:limit],
        suggested_reffy_references=references,
    )
