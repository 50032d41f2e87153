"""Configuration loading from environment variables and reffy.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from reffy.store import DEFAULT_REFS_DIR
from reffy.summarize import SUMMARY_LIMIT

_CONFIG_FILENAME = "reffy.toml"
_CORRUPT_POLICIES = ("raise", "recover")


@dataclass
class StoreConfig:
    """Where the manifest lives and what to do when it is corrupt."""

    refs_dir: str = DEFAULT_REFS_DIR
    on_corrupt: str = "raise"


@dataclass
class SummarizeConfig:
    limit: int = SUMMARY_LIMIT


@dataclass
class ReffyConfig:
    """Top-level Reffy configuration."""

    store: StoreConfig = field(default_factory=StoreConfig)
    summarize: SummarizeConfig = field(default_factory=SummarizeConfig)
    log_level: str = "WARNING"


def load_config(config_path: Path | None = None) -> ReffyConfig:
    """Load configuration from environment variables and optional reffy.toml.

    Priority: environment variables > reffy.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text(encoding="utf-8"))
    else:
        # Search current dir and ~/.reffy/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".reffy" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text(encoding="utf-8"))
                break

    store_data = file_data.get("store", {})
    summarize_data = file_data.get("summarize", {})

    config = ReffyConfig(
        store=StoreConfig(
            refs_dir=os.getenv("REFFY_REFS_DIR", store_data.get("refs_dir", DEFAULT_REFS_DIR)),
            on_corrupt=os.getenv("REFFY_ON_CORRUPT", store_data.get("on_corrupt", "raise")),
        ),
        summarize=SummarizeConfig(
            limit=int(os.getenv("REFFY_SUMMARY_LIMIT", summarize_data.get("limit", SUMMARY_LIMIT))),
        ),
        log_level=os.getenv("REFFY_LOG_LEVEL", file_data.get("log_level", "WARNING")),
    )
    if config.store.on_corrupt not in _CORRUPT_POLICIES:
        raise ValueError(
            f"store.on_corrupt must be one of {', '.join(_CORRUPT_POLICIES)}, "
            f"got {config.store.on_corrupt!r}"
        )
    return config
