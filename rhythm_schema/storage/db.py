"""
SQLite key/value store for rhythm-schema.

The application persists client-side state as JSON strings under string keys,
the way a browser's local storage would. This module provides that store on
top of SQLite, with its own table-layout versioning so the storage file
itself can evolve independently of the documents kept inside it.

Tables:
- store_version: applied table-layout versions
- entries: key, JSON value, last update timestamp

Example usage:
    >>> from rhythm_schema.storage.db import init_store_if_needed, put_value
    >>> init_store_if_needed("./data/rhythm.db")
    >>> with sqlite3.connect("./data/rhythm.db") as conn:
    ...     put_value(conn, "songs:state", '{"version": "2.2.0", "data": []}')

Note:
    ALL queries use parameterized statements. Connection context managers
    commit on success and roll back on error.
"""

import logging
import sqlite3
from pathlib import Path

from rhythm_schema.exceptions import StorageInitError, StorageMigrationError

from ..utils.time import utc_timestamp

logger = logging.getLogger(__name__)

# Increment when the table layout changes and add a _migrate_to_vN below
CURRENT_STORE_VERSION = 2


def init_store_if_needed(db_path: str | Path) -> None:
    """
    Create the store file and bring its table layout up to date.

    Idempotent: a store already at CURRENT_STORE_VERSION is left untouched.

    Args:
        db_path: Filesystem path to the SQLite file. Parent directories are
            created if needed.

    Raises:
        StorageInitError: If the file cannot be created or opened, or was
            written by a newer release.
        StorageMigrationError: If upgrading the table layout fails.
    """
    db_path_obj = Path(db_path)

    try:
        db_path_obj.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path_obj))
    except (OSError, sqlite3.Error) as e:
        raise StorageInitError(f"Cannot open store at {db_path_obj}: {e}") from e

    try:
        with conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS store_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
            """)

        current_version = get_store_version(conn)

        if current_version < CURRENT_STORE_VERSION:
            logger.info(
                f"Store layout upgrade needed: "
                f"v{current_version} -> v{CURRENT_STORE_VERSION}"
            )
            apply_store_migrations(conn, current_version, CURRENT_STORE_VERSION)
        elif current_version > CURRENT_STORE_VERSION:
            raise StorageInitError(
                f"Store layout version {current_version} is newer than "
                f"expected {CURRENT_STORE_VERSION}. Update the application or "
                f"use a different store file."
            )
        else:
            logger.debug(f"Store layout is current (v{CURRENT_STORE_VERSION})")
    except sqlite3.Error as e:
        raise StorageInitError(f"Failed to initialize store at {db_path_obj}: {e}") from e
    finally:
        conn.close()


def get_store_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied layout version, 0 for a fresh file."""
    cursor = conn.execute("SELECT MAX(version) FROM store_version")
    result = cursor.fetchone()[0]
    return result if result is not None else 0


def apply_store_migrations(
    conn: sqlite3.Connection, from_version: int, to_version: int
) -> None:
    """
    Apply table-layout migrations one version at a time.

    Each version runs in its own transaction. If version N fails, the store
    stays at N-1.

    Raises:
        ValueError: If from_version > to_version (downgrades not supported)
        StorageMigrationError: If a migration fails
    """
    if from_version > to_version:
        raise ValueError(
            f"Cannot downgrade store layout from v{from_version} to v{to_version}."
        )

    migrations = {1: _migrate_to_v1, 2: _migrate_to_v2}

    for target_version in range(from_version + 1, to_version + 1):
        logger.info(f"Applying store migration to layout version {target_version}")
        try:
            with conn:
                migrations[target_version](conn)
                conn.execute(
                    "INSERT INTO store_version (version, applied_at) VALUES (?, ?)",
                    (target_version, utc_timestamp()),
                )
        except (KeyError, sqlite3.Error) as e:
            raise StorageMigrationError(
                f"Failed to migrate store layout to v{target_version}: {e}"
            ) from e


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """Layout v1: the entries table."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS entries (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """Layout v2: per-domain namespace column, backfilled from 'domain:' keys."""
    conn.execute("ALTER TABLE entries ADD COLUMN namespace TEXT NOT NULL DEFAULT ''")
    conn.execute("""
        UPDATE entries
        SET namespace = substr(key, 1, instr(key, ':') - 1)
        WHERE instr(key, ':') > 0
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_namespace ON entries(namespace)")


def _namespace_of(key: str) -> str:
    return key.split(":", 1)[0] if ":" in key else ""


def get_value(conn: sqlite3.Connection, key: str) -> str | None:
    """Return the raw stored value for key, or None if absent."""
    cursor = conn.execute("SELECT value FROM entries WHERE key = ?", (key,))
    row = cursor.fetchone()
    return row[0] if row is not None else None


def put_value(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Insert or replace the value stored under key."""
    conn.execute(
        """
        INSERT INTO entries (key, value, updated_at, namespace)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET
            value = excluded.value,
            updated_at = excluded.updated_at
        """,
        (key, value, utc_timestamp(), _namespace_of(key)),
    )
