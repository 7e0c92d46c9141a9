"""
Migration engine: path finding, analysis and execution.

The registry for a domain is a directed graph whose nodes are version strings
and whose edges are MigrationStep values. This module finds the shortest route
through that graph, summarizes it for the UI, and applies it to a document.

Every function here is pure over in-memory values. Nothing is cached between
calls, so identical arguments always give identical results.

Example:
    >>> from rhythm_schema.migration.registry import SONGS_MIGRATIONS
    >>> analysis = analyze_migration("2.0.0", "2.2.0", SONGS_MIGRATIONS)
    >>> analysis.total_steps
    2
    >>> outcome = apply_migration_path(stored_songs, analysis.path)
    >>> outcome.success
    True
"""

import logging
from collections import deque
from collections.abc import Iterable
from typing import Any

from .models import MigrationAnalysis, MigrationOutcome, MigrationPath, MigrationStep

logger = logging.getLogger(__name__)


def find_migration_path(
    from_version: str,
    to_version: str,
    migrations: Iterable[MigrationStep],
) -> MigrationPath | None:
    """
    Find the shortest chain of steps from one version to another.

    Breadth-first search over the registry graph. Outgoing edges are explored
    in their declaration order, so when several minimum-length paths exist the
    one discovered first in the edge list wins.

    Args:
        from_version: Version the data is stored at
        to_version: Version the application expects
        migrations: Registry edges for one domain, in declaration order

    Returns:
        Empty tuple if the versions are identical, the path if one exists,
        or None if the versions differ and no route connects them.
    """
    if from_version == to_version:
        return ()

    graph: dict[str, list[MigrationStep]] = {}
    for step in migrations:
        graph.setdefault(step.from_version, []).append(step)

    queue: deque[tuple[str, MigrationPath]] = deque([(from_version, ())])
    visited = {from_version}

    while queue:
        version, path = queue.popleft()

        for step in graph.get(version, []):
            if step.to_version == to_version:
                return path + (step,)

            if step.to_version not in visited:
                visited.add(step.to_version)
                queue.append((step.to_version, path + (step,)))

    return None


def analyze_migration(
    from_version: str,
    to_version: str,
    migrations: Iterable[MigrationStep],
) -> MigrationAnalysis:
    """
    Describe whether a migration is needed and what it involves.

    A missing path is a normal outcome, not an exception: the analysis comes
    back with needed=True, an empty path and an explanatory description.
    """
    if from_version == to_version:
        return MigrationAnalysis(
            needed=False,
            from_version=from_version,
            to_version=to_version,
        )

    path = find_migration_path(from_version, to_version, migrations)

    if path is None:
        return MigrationAnalysis(
            needed=True,
            from_version=from_version,
            to_version=to_version,
            descriptions=(
                f"No migration path available from {from_version} to {to_version}",
            ),
        )

    return MigrationAnalysis(
        needed=True,
        from_version=from_version,
        to_version=to_version,
        path=path,
        has_breaking_changes=any(step.breaking for step in path),
        total_steps=len(path),
        descriptions=tuple(step.describe() for step in path),
    )


def apply_migration_path(data: Any, path: Iterable[MigrationStep]) -> MigrationOutcome:
    """
    Run each step's transform over a working copy, in order.

    If any transform raises, the whole path is abandoned: no later step runs
    and the half-built working copy is discarded. The caller's original value
    is never edited because each transform returns a new one.

    Args:
        data: Document or record list at the path's source version
        path: Steps to apply, typically MigrationAnalysis.path

    Returns:
        MigrationOutcome with the migrated data, or with the error message of
        the first failing step.
    """
    result = data

    for step in path:
        logger.info(f"Applying migration {step.describe()}")
        try:
            result = step.transform(result)
        except Exception as e:
            logger.error(
                f"Migration {step.from_version} → {step.to_version} failed: {e}",
                exc_info=True,
            )
            return MigrationOutcome(success=False, error=str(e) or "Migration failed")

    return MigrationOutcome(success=True, data=result)
