"""Reffy — repository-local references: artifacts + manifest + heuristic summaries.

Layout (per repository):
    .references/
    ├── manifest.json     # artifact metadata (schema version 1)
    └── artifacts/        # artifact content, one file each

Modules:
    manifest   type inference and manifest validation
    store      ReferencesStore: CRUD + reconciliation
    summarize  heuristic themes / open questions / candidate changes
"""
