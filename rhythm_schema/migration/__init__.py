"""
Schema migration and reconciliation engine for rhythm-schema.

Finds a transformation path between a stored data version and the current
schema version, applies it without touching the caller's data, and reconciles
locally edited records against bundled defaults under a MergePolicy.

Key exports:
    - compare_versions, is_newer_version, meets_minimum_version
    - find_migration_path, analyze_migration, apply_migration_path
    - merge_with_defaults, merge_songs_with_defaults, merge_instruments_with_defaults
    - detect, resolve: pure startup/decision transitions
    - SONGS_MIGRATIONS, INSTRUMENTS_MIGRATIONS, PREFERENCES_MIGRATIONS, DOMAINS

The session that persists decisions lives in rhythm_schema.migration.session.
"""

from .detector import Detection, MigrationStatus, Resolution, detect, resolve
from .engine import analyze_migration, apply_migration_path, find_migration_path
from .merge import (
    merge_instruments_with_defaults,
    merge_songs_with_defaults,
    merge_with_defaults,
)
from .models import (
    DEFAULT_MERGE_POLICY,
    DomainState,
    MergePolicy,
    MergeResult,
    MigrationAnalysis,
    MigrationOutcome,
    MigrationRecord,
    MigrationStep,
    UserChoice,
)
from .registry import (
    DOMAINS,
    INSTRUMENTS_MIGRATIONS,
    PREFERENCES_MIGRATIONS,
    SONGS_MIGRATIONS,
    DomainDefinition,
    DomainStrategy,
    get_domain,
)
from .versions import compare_versions, is_newer_version, meets_minimum_version

__all__ = [
    "DEFAULT_MERGE_POLICY",
    "DOMAINS",
    "INSTRUMENTS_MIGRATIONS",
    "PREFERENCES_MIGRATIONS",
    "SONGS_MIGRATIONS",
    "Detection",
    "DomainDefinition",
    "DomainState",
    "DomainStrategy",
    "MergePolicy",
    "MergeResult",
    "MigrationAnalysis",
    "MigrationOutcome",
    "MigrationRecord",
    "MigrationStatus",
    "MigrationStep",
    "Resolution",
    "UserChoice",
    "analyze_migration",
    "apply_migration_path",
    "compare_versions",
    "detect",
    "find_migration_path",
    "get_domain",
    "is_newer_version",
    "meets_minimum_version",
    "merge_instruments_with_defaults",
    "merge_songs_with_defaults",
    "merge_with_defaults",
    "resolve",
]
