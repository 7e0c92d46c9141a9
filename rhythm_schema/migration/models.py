"""
Data structures shared by the migration and reconciliation engine.

Engine values (steps, analyses, outcomes, merge results) are frozen dataclasses:
they are created fresh per evaluation and never mutated afterwards, which lets
a UI preview them before anything is committed.

Values that cross the persistence boundary (merge policy, migration records,
domain state) are Pydantic models so they validate on the way back in.

Models:
    MigrationStep: One pure transform between two adjacent schema versions
    MigrationAnalysis: UI-consumable report of what a migration entails
    MigrationOutcome: Result of applying a path to a document
    MergePolicy: Four-flag reconciliation configuration
    MergeResult: Classified output of a merge
    UserChoice: Accepted / dismissed / kept-data
    MigrationRecord: Latest user decision per domain
    DomainState: Stored version plus document or record list
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from rhythm_schema.utils.time import parse_timestamp

from .versions import parse_version

Transform = Callable[[Any], Any]


@dataclass(frozen=True)
class MigrationStep:
    """
    A single registry edge from one schema version to the next.

    The transform must return a new value and never edit its argument in
    place; the executor relies on this to leave the caller's data untouched
    when a later step fails.
    """

    from_version: str
    to_version: str
    transform: Transform = field(repr=False, compare=False)
    description: str
    breaking: bool = False

    def __post_init__(self) -> None:
        parse_version(self.from_version)
        parse_version(self.to_version)

    def describe(self) -> str:
        return f"{self.from_version} → {self.to_version}: {self.description}"


MigrationPath = tuple[MigrationStep, ...]


@dataclass(frozen=True)
class MigrationAnalysis:
    """
    What it takes to bring stored data from one version to another.

    `needed=True` with an empty path means no registry route exists; the
    single description then explains that, and callers should render it
    differently from a successful analysis.
    """

    needed: bool
    from_version: str
    to_version: str
    path: MigrationPath = ()
    has_breaking_changes: bool = False
    total_steps: int = 0
    descriptions: tuple[str, ...] = ()

    @property
    def no_path(self) -> bool:
        return self.needed and not self.path

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view; transforms are not serializable and are omitted."""
        return {
            "needed": self.needed,
            "from_version": self.from_version,
            "to_version": self.to_version,
            "path": [
                {
                    "from_version": step.from_version,
                    "to_version": step.to_version,
                    "description": step.description,
                    "breaking": step.breaking,
                }
                for step in self.path
            ],
            "has_breaking_changes": self.has_breaking_changes,
            "total_steps": self.total_steps,
            "descriptions": list(self.descriptions),
        }


@dataclass(frozen=True)
class MigrationOutcome:
    """Result of MigrationExecutor: either migrated data or an error message."""

    success: bool
    data: Any = None
    error: str | None = None


class MergePolicy(BaseModel):
    """
    Reconciliation flags chosen by the user before accepting a merge.

    Attributes:
        preserve_user_data: Keep local-only (custom) records
        add_new_defaults: Add bundled records the user does not have
        update_modified: Replace user-modified defaults with the bundled version
        remove_deleted: Recorded with the policy; dropping records no longer
            shipped as defaults is done by turning preserve_user_data off
    """

    model_config = ConfigDict(frozen=True)

    preserve_user_data: bool = True
    add_new_defaults: bool = True
    update_modified: bool = False
    remove_deleted: bool = False


DEFAULT_MERGE_POLICY = MergePolicy()


@dataclass(frozen=True)
class MergeResult:
    """
    Classified output of MergeEngine.

    Every bundled-or-local record that survives lands in exactly one of
    added/updated/preserved. conflicts lists the local side of every record
    whose content differs from its bundled counterpart, whichever way the
    policy resolved it. merged is the single ordered output collection.
    """

    merged: tuple[dict, ...] = ()
    added: tuple[dict, ...] = ()
    updated: tuple[dict, ...] = ()
    preserved: tuple[dict, ...] = ()
    conflicts: tuple[dict, ...] = ()

    def summary(self) -> dict[str, int]:
        return {
            "merged": len(self.merged),
            "added": len(self.added),
            "updated": len(self.updated),
            "preserved": len(self.preserved),
            "conflicts": len(self.conflicts),
        }


class UserChoice(StrEnum):
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"
    KEPT_DATA = "kept-data"


class MigrationRecord(BaseModel):
    """
    The latest migration decision for a domain. Only one is retained.

    Attributes:
        from_version: Stored version at the time of the decision
        to_version: Target version offered to the user
        timestamp: ISO 8601 UTC timestamp with 'Z' suffix
        user_choice: What the user decided
    """

    model_config = ConfigDict(frozen=True)

    from_version: str
    to_version: str
    timestamp: str
    user_choice: UserChoice

    @field_validator("from_version", "to_version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate versions are dotted integers."""
        parse_version(v)
        return v

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        """Validate timestamp is a UTC ISO 8601 string with a 'Z' suffix."""
        parse_timestamp(v)
        return v


class DomainState(BaseModel):
    """
    Persisted state of one domain: its schema version and its payload.

    data is a document (dict) for transform domains or a list of records for
    reconcile domains; the engine treats it as opaque.
    """

    model_config = ConfigDict(frozen=True)

    version: str
    data: Any

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version is a dotted integer string."""
        parse_version(v)
        return v
