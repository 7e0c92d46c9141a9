"""
Migration session: the command -> transition -> persist boundary.

MigrationSession wires the pure detector transitions to the persistence and
bundled-defaults collaborators:

- start() reads each domain's stored state once, runs detect(), persists
  forced resets and first-run defaults, and remembers pending migrations.
- decide() takes a user choice for one pending domain, runs resolve(), and
  writes the resolution back.

No failure escapes to the host application. Malformed stored data is replaced
by bundled defaults; a failing migration step or a missing path is reported
in the DecisionOutcome while stored data stays untouched.

The pending map is the only mutable state. Access to it is serialized with a
lock so a host calling from several contexts keeps a single writer.

Example:
    >>> session = MigrationSession(SQLitePersistence("./data/rhythm.db"))
    >>> for detection in session.start():
    ...     print(detection.domain, detection.analysis.descriptions)
    songs ('2.0.0 → 2.1.0: Added displayOrder and links support', ...)
    >>> outcome = session.decide("songs", UserChoice.ACCEPTED)
    >>> outcome.success
    True
"""

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from rhythm_schema.exceptions import (
    MalformedStoredDataError,
    NoPathFoundError,
    NoPendingMigrationError,
    RhythmSchemaError,
    StepFailureError,
)
from rhythm_schema.storage.persistence import Persistence
from rhythm_schema.utils.logging import log_with_context
from rhythm_schema.utils.time import utc_timestamp

from .detector import (
    Detection,
    MigrationStatus,
    bring_forward,
    detect,
    preview_merge,
    resolve,
)
from .models import DEFAULT_MERGE_POLICY, DomainState, MergePolicy, MergeResult, UserChoice
from .registry import DOMAINS, DomainDefinition, get_domain

logger = logging.getLogger(__name__)

DefaultsProvider = Callable[[str], Any]


@dataclass(frozen=True)
class _PendingMigration:
    detection: Detection
    stored: DomainState
    bundled: Any


@dataclass(frozen=True)
class DecisionOutcome:
    """
    Result of a user decision as seen by the host.

    Attributes:
        domain: Domain name
        choice: The decision that was requested
        success: Whether the decision was applied and persisted
        status: Terminal status on success, PENDING on failure
        state: New domain state written on accept
        error: Failure message, if any
    """

    domain: str
    choice: UserChoice
    success: bool
    status: MigrationStatus
    state: DomainState | None = None
    error: str | None = None


class MigrationSession:
    """
    Orchestrates startup detection and user decisions for a set of domains.

    Args:
        persistence: Store collaborator (see storage.persistence.Persistence)
        defaults_provider: Callable returning bundled defaults for a domain
        domains: Domain definitions to manage; defaults to the whole registry
        policy: Merge policy preselected for previews and accepts
    """

    def __init__(
        self,
        persistence: Persistence,
        defaults_provider: DefaultsProvider | None = None,
        domains: Iterable[DomainDefinition] | None = None,
        policy: MergePolicy = DEFAULT_MERGE_POLICY,
    ):
        if defaults_provider is None:
            from rhythm_schema.defaults import load_bundled_defaults

            defaults_provider = load_bundled_defaults

        self.persistence = persistence
        self.defaults_provider = defaults_provider
        self.domains = {
            domain.name: domain
            for domain in (domains if domains is not None else DOMAINS.values())
        }
        self.policy = policy
        self._lock = threading.Lock()
        self._pending: dict[str, _PendingMigration] = {}

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def start(self) -> list[Detection]:
        """
        Run startup detection for every managed domain.

        Returns:
            Detections for every domain, in registry order. Pending ones are
            also available through pending().
        """
        return [self.check(name) for name in self.domains]

    def check(self, name: str) -> Detection:
        """Run startup detection for one domain."""
        domain = self._domain(name)
        bundled = self.defaults_provider(name)
        stored = self._load_state(domain, bundled)
        ledger = self.persistence.load_dismissal_ledger(name)

        detection = detect(domain, stored, ledger, bundled, self.policy)

        if detection.forced_reset:
            self.persistence.save_domain_state(name, detection.replacement)
            log_with_context(
                logger,
                logging.WARNING,
                "Local data discarded by forced reset",
                context={
                    "stored_version": detection.stored_version,
                    "target_version": detection.target_version,
                },
                domain=name,
            )

        with self._lock:
            if detection.pending:
                self._pending[name] = _PendingMigration(detection, stored, bundled)
            else:
                self._pending.pop(name, None)

        return detection

    def _load_state(self, domain: DomainDefinition, bundled: Any) -> DomainState:
        """
        Read stored state, falling back to bundled defaults.

        First runs and structurally invalid data both get the bundled defaults
        at the target version, written back so the next start is clean.
        """
        try:
            stored = self.persistence.load_domain_state(
                domain.name, default_version=domain.default_version
            )
            if stored is not None and not domain.is_valid(stored.data):
                raise MalformedStoredDataError(
                    f"Stored {domain.name} failed structural validation",
                    domain=domain.name,
                )
        except MalformedStoredDataError as e:
            log_with_context(
                logger,
                logging.WARNING,
                "Malformed stored data, using bundled defaults",
                context={"error": str(e)},
                domain=domain.name,
            )
            stored = None

        if stored is None:
            stored = DomainState(version=domain.target_version, data=bundled)
            self.persistence.save_domain_state(domain.name, stored)
            logger.info(f"Initialized {domain.name} with bundled defaults")

        return stored

    def pending(self) -> dict[str, Detection]:
        """Detections currently awaiting a user decision, keyed by domain."""
        with self._lock:
            return {name: entry.detection for name, entry in self._pending.items()}

    def preview(self, name: str, policy: MergePolicy | None = None) -> MergeResult | None:
        """
        Recompute the merge preview for a pending domain under another policy.

        Returns None for transform domains, or when the stored records cannot
        be brought forward.

        Raises:
            NoPendingMigrationError: If the domain has no pending migration.
        """
        domain = self._domain(name)
        entry = self._pending_entry(name)
        if not domain.reconciles:
            return None

        outcome = bring_forward(domain, entry.stored, entry.detection.analysis)
        if not outcome.success:
            return None
        return preview_merge(domain, outcome.data, entry.bundled, policy or self.policy)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        name: str,
        choice: UserChoice,
        policy: MergePolicy | None = None,
    ) -> DecisionOutcome:
        """
        Apply a user decision to a pending migration and persist it.

        Args:
            name: Domain name
            choice: Accepted, kept-data or dismissed
            policy: Merge policy edited by the user before accepting

        Returns:
            DecisionOutcome. Failures are reported, never raised.
        """
        try:
            domain = self._domain(name)
            entry = self._pending_entry(name)
            ledger = self.persistence.load_dismissal_ledger(name)

            resolution = resolve(
                domain,
                entry.detection,
                choice,
                entry.stored,
                ledger,
                entry.bundled,
                policy or self.policy,
                utc_timestamp(),
            )
        except (NoPathFoundError, StepFailureError) as e:
            log_with_context(
                logger,
                logging.ERROR,
                "Migration failed, stored data left unchanged",
                context={
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "from_version": e.from_version,
                    "to_version": e.to_version,
                },
                domain=name,
            )
            return DecisionOutcome(
                domain=name,
                choice=choice,
                success=False,
                status=MigrationStatus.PENDING,
                error=str(e),
            )
        except RhythmSchemaError as e:
            logger.error(f"Cannot apply '{choice}' to {name}: {e}")
            return DecisionOutcome(
                domain=name,
                choice=choice,
                success=False,
                status=MigrationStatus.NONE,
                error=str(e),
            )

        try:
            if resolution.state is not None:
                self.persistence.save_domain_state(name, resolution.state)
            if resolution.dismissed_versions is not None:
                self.persistence.save_dismissal_ledger(name, resolution.dismissed_versions)
            if resolution.record is not None:
                self.persistence.save_last_migration_record(name, resolution.record)
        except RhythmSchemaError as e:
            logger.error(f"Failed to persist '{choice}' for {name}: {e}", exc_info=True)
            return DecisionOutcome(
                domain=name,
                choice=choice,
                success=False,
                status=MigrationStatus.PENDING,
                error=str(e),
            )

        with self._lock:
            self._pending.pop(name, None)

        log_with_context(
            logger,
            logging.INFO,
            f"Migration decision recorded: {choice}",
            context={
                "from_version": entry.detection.stored_version,
                "to_version": entry.detection.target_version,
            },
            domain=name,
        )
        return DecisionOutcome(
            domain=name,
            choice=choice,
            success=True,
            status=resolution.status,
            state=resolution.state,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _domain(self, name: str) -> DomainDefinition:
        if name in self.domains:
            return self.domains[name]
        # Raises UnknownDomainError for unregistered names
        get_domain(name)
        raise NoPendingMigrationError(f"Domain '{name}' is not managed by this session")

    def _pending_entry(self, name: str) -> _PendingMigration:
        with self._lock:
            entry = self._pending.get(name)
        if entry is None:
            raise NoPendingMigrationError(f"No pending migration for '{name}'")
        return entry
