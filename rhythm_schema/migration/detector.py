"""
Startup detection and user-decision transitions.

Per domain, the migration state machine is:

    NONE -> PENDING -> {ACCEPTED, KEPT, DISMISSED} -> NONE

This module holds only pure transitions. detect() turns stored state into a
Detection; resolve() turns a pending Detection plus a user choice into a
Resolution. Neither reads nor writes storage: the session layer
(migration.session) performs the single read before detect() and the single
write-back after resolve().

Order of checks in detect():

1. Stored version below the domain floor: forced reset to bundled defaults.
   No prompt, no preview. Logged at WARNING because local edits are dropped.
2. Stored version equals the target: nothing to do.
3. Target version already dismissed: nothing to do.
4. Otherwise analyze; a needed migration becomes PENDING, with a merge
   preview for reconcile domains. Nothing is mutated in this state.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from rhythm_schema.exceptions import (
    NoPathFoundError,
    NoPendingMigrationError,
    StepFailureError,
)
from rhythm_schema.utils.logging import log_with_context

from .engine import analyze_migration, apply_migration_path
from .merge import merge_with_defaults
from .models import (
    DomainState,
    MergePolicy,
    MergeResult,
    MigrationAnalysis,
    MigrationOutcome,
    MigrationRecord,
    UserChoice,
)
from .registry import DomainDefinition
from .versions import compare_versions, meets_minimum_version

logger = logging.getLogger(__name__)


class MigrationStatus(StrEnum):
    NONE = "none"
    PENDING = "pending"
    ACCEPTED = "accepted"
    KEPT = "kept"
    DISMISSED = "dismissed"


_STATUS_FOR_CHOICE = {
    UserChoice.ACCEPTED: MigrationStatus.ACCEPTED,
    UserChoice.KEPT_DATA: MigrationStatus.KEPT,
    UserChoice.DISMISSED: MigrationStatus.DISMISSED,
}


@dataclass(frozen=True)
class Detection:
    """
    Outcome of one detector run for one domain.

    Attributes:
        domain: Domain name
        status: NONE or PENDING
        stored_version: Version found in storage
        target_version: Version the application expects
        analysis: Migration analysis, set when PENDING
        preview: Merge preview for reconcile domains, set when PENDING
        forced_reset: True when the stored version was below the floor
        replacement: State to persist after a forced reset
        error: Why the preview could not be built, if it could not
    """

    domain: str
    status: MigrationStatus
    stored_version: str
    target_version: str
    analysis: MigrationAnalysis | None = None
    preview: MergeResult | None = None
    forced_reset: bool = False
    replacement: DomainState | None = None
    error: str | None = None

    @property
    def pending(self) -> bool:
        return self.status is MigrationStatus.PENDING


@dataclass(frozen=True)
class Resolution:
    """
    Outcome of a user decision on a pending migration.

    state, dismissed_versions and record are what the session must persist;
    a None state or record means "leave as is". A decision that cannot be
    applied raises instead of producing a Resolution.
    """

    domain: str
    status: MigrationStatus
    state: DomainState | None = None
    dismissed_versions: tuple[str, ...] | None = None
    record: MigrationRecord | None = None


def bring_forward(
    domain: DomainDefinition,
    stored: DomainState,
    analysis: MigrationAnalysis,
) -> MigrationOutcome:
    """
    Apply the analysis path to stored data.

    For reconcile domains with no registry route, the stored records are
    returned as they are: the merge against bundled defaults is then the
    only reconciliation.
    """
    if analysis.no_path:
        if domain.reconciles:
            return MigrationOutcome(success=True, data=stored.data)
        return MigrationOutcome(success=False, error=analysis.descriptions[0])

    return apply_migration_path(stored.data, analysis.path)


def preview_merge(
    domain: DomainDefinition,
    local: Sequence[dict],
    bundled: Sequence[dict],
    policy: MergePolicy,
) -> MergeResult:
    return merge_with_defaults(local, bundled, policy, domain.key, domain.equals)


def detect(
    domain: DomainDefinition,
    stored: DomainState,
    dismissed_versions: Sequence[str],
    bundled: Any,
    policy: MergePolicy,
) -> Detection:
    """
    Decide whether a domain needs a migration prompt.

    Args:
        domain: Domain definition from the registry
        stored: State read from storage
        dismissed_versions: The domain's dismissal ledger
        bundled: Current bundled defaults (records or document)
        policy: Merge policy used for the preview

    Returns:
        Detection with status NONE or PENDING
    """
    target = domain.target_version

    if not meets_minimum_version(stored.version, domain.floor_version):
        log_with_context(
            logger,
            logging.WARNING,
            "Stored version below minimum, resetting to bundled defaults",
            context={
                "stored_version": stored.version,
                "floor_version": domain.floor_version,
                "target_version": target,
            },
            domain=domain.name,
        )
        return Detection(
            domain=domain.name,
            status=MigrationStatus.NONE,
            stored_version=stored.version,
            target_version=target,
            forced_reset=True,
            replacement=DomainState(version=target, data=bundled),
        )

    if compare_versions(stored.version, target) == 0:
        logger.debug(f"{domain.name} schema is current ({target})")
        return Detection(
            domain=domain.name,
            status=MigrationStatus.NONE,
            stored_version=stored.version,
            target_version=target,
        )

    if target in dismissed_versions:
        logger.info(f"{domain.name} version {target} was previously dismissed")
        return Detection(
            domain=domain.name,
            status=MigrationStatus.NONE,
            stored_version=stored.version,
            target_version=target,
        )

    logger.info(f"{domain.name} version mismatch detected: {stored.version} → {target}")
    analysis = analyze_migration(stored.version, target, domain.migrations)

    if not analysis.needed:
        return Detection(
            domain=domain.name,
            status=MigrationStatus.NONE,
            stored_version=stored.version,
            target_version=target,
        )

    preview = None
    error = None
    if domain.reconciles:
        outcome = bring_forward(domain, stored, analysis)
        if outcome.success:
            preview = preview_merge(domain, outcome.data, bundled, policy)
        else:
            error = outcome.error

    return Detection(
        domain=domain.name,
        status=MigrationStatus.PENDING,
        stored_version=stored.version,
        target_version=target,
        analysis=analysis,
        preview=preview,
        error=error,
    )


def resolve(
    domain: DomainDefinition,
    detection: Detection,
    choice: UserChoice,
    stored: DomainState,
    dismissed_versions: Sequence[str],
    bundled: Any,
    policy: MergePolicy,
    timestamp: str,
) -> Resolution:
    """
    Apply a user decision to a pending detection.

    ACCEPTED migrates (transform) or merges (reconcile) and records the
    decision; KEPT records the decision only; DISMISSED adds the target
    version to the ledger and records nothing.

    Raises:
        NoPendingMigrationError: If detection is not PENDING.
        NoPathFoundError: If a transform domain has no route to the target.
        StepFailureError: If a migration step raised while accepting.
    """
    if not detection.pending:
        raise NoPendingMigrationError(f"No pending migration for '{domain.name}'")

    target = detection.target_version

    if choice is UserChoice.DISMISSED:
        ledger = tuple(dismissed_versions)
        if target not in ledger:
            ledger = ledger + (target,)
        return Resolution(
            domain=domain.name,
            status=MigrationStatus.DISMISSED,
            dismissed_versions=ledger,
        )

    record = MigrationRecord(
        from_version=detection.stored_version,
        to_version=target,
        timestamp=timestamp,
        user_choice=choice,
    )

    if choice is UserChoice.KEPT_DATA:
        return Resolution(domain=domain.name, status=MigrationStatus.KEPT, record=record)

    analysis = detection.analysis
    outcome = bring_forward(domain, stored, analysis)
    if not outcome.success:
        if analysis.no_path:
            raise NoPathFoundError(outcome.error, analysis.from_version, analysis.to_version)
        raise StepFailureError(outcome.error, analysis.from_version, analysis.to_version)

    data = outcome.data
    if domain.reconciles:
        data = list(preview_merge(domain, data, bundled, policy).merged)

    return Resolution(
        domain=domain.name,
        status=_STATUS_FOR_CHOICE[choice],
        state=DomainState(version=target, data=data),
        record=record,
    )
