"""
Persistence collaborator for the migration engine.

The engine never touches the store directly. It reads and writes plain values
through the Persistence protocol:

    load_domain_state / save_domain_state              version + payload
    load_dismissal_ledger / save_dismissal_ledger      dismissed target versions
    load_last_migration_record / save_last_migration_record

Two implementations are provided: SQLitePersistence (JSON values in the
key/value store from storage.db) and InMemoryPersistence (tests, previews).

Storage keys per domain:
    <domain>:state               {"version": "...", "data": ...}
    <domain>:dismissed_versions  ["2.2.0", ...]
    <domain>:last_migration      {"from_version": ..., "user_choice": ...}

Only the dismissal ledger and the last migration record are migration state;
pending migrations and dialog state are never persisted.
"""

import json
import logging
import sqlite3
from collections.abc import Sequence
from contextlib import closing
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from rhythm_schema.exceptions import MalformedStoredDataError, StorageError
from rhythm_schema.migration.models import DomainState, MigrationRecord

from .db import get_value, init_store_if_needed, put_value

logger = logging.getLogger(__name__)


class Persistence(Protocol):
    """Read/write contract the migration session depends on."""

    def load_domain_state(
        self, domain: str, default_version: str | None = None
    ) -> DomainState | None: ...

    def save_domain_state(self, domain: str, state: DomainState) -> None: ...

    def load_dismissal_ledger(self, domain: str) -> tuple[str, ...]: ...

    def save_dismissal_ledger(self, domain: str, versions: Sequence[str]) -> None: ...

    def load_last_migration_record(self, domain: str) -> MigrationRecord | None: ...

    def save_last_migration_record(self, domain: str, record: MigrationRecord) -> None: ...


def state_key(domain: str) -> str:
    return f"{domain}:state"


def ledger_key(domain: str) -> str:
    return f"{domain}:dismissed_versions"


def record_key(domain: str) -> str:
    return f"{domain}:last_migration"


def decode_domain_state(
    domain: str, payload: Any, default_version: str | None = None
) -> DomainState:
    """
    Validate the structure of a stored domain payload.

    Raises:
        MalformedStoredDataError: If the payload is not an object with a
            valid version (or a default to fall back on) and a data field.
    """
    if not isinstance(payload, dict) or "data" not in payload:
        raise MalformedStoredDataError(
            f"Stored {domain} state is not an object with a 'data' field", domain=domain
        )

    version = payload.get("version") or default_version
    if version is None:
        raise MalformedStoredDataError(
            f"Stored {domain} state has no version", domain=domain
        )

    try:
        return DomainState(version=version, data=payload["data"])
    except ValidationError as e:
        raise MalformedStoredDataError(
            f"Stored {domain} state is invalid: {e.errors()[0]['msg']}", domain=domain
        ) from e


def decode_ledger(domain: str, payload: Any) -> tuple[str, ...]:
    if payload is None:
        return ()
    if not isinstance(payload, list) or not all(isinstance(v, str) for v in payload):
        logger.warning(f"Ignoring invalid dismissal ledger for {domain}")
        return ()
    return tuple(dict.fromkeys(payload))


def decode_record(domain: str, payload: Any) -> MigrationRecord | None:
    if payload is None:
        return None
    try:
        return MigrationRecord.model_validate(payload)
    except ValidationError:
        logger.warning(f"Ignoring invalid migration record for {domain}")
        return None


class InMemoryPersistence:
    """
    Persistence kept in a dict of JSON strings.

    Values are serialized on write and parsed on read, so callers never share
    mutable objects with the store, just as with the SQLite implementation.
    """

    def __init__(self, entries: dict[str, str] | None = None):
        self.entries: dict[str, str] = dict(entries or {})

    def _load(self, key: str) -> Any:
        raw = self.entries.get(key)
        return None if raw is None else json.loads(raw)

    def _save(self, key: str, value: Any) -> None:
        self.entries[key] = json.dumps(value)

    def load_domain_state(
        self, domain: str, default_version: str | None = None
    ) -> DomainState | None:
        try:
            payload = self._load(state_key(domain))
        except json.JSONDecodeError as e:
            raise MalformedStoredDataError(
                f"Stored {domain} state is not valid JSON: {e}", domain=domain
            ) from e
        if payload is None:
            return None
        return decode_domain_state(domain, payload, default_version)

    def save_domain_state(self, domain: str, state: DomainState) -> None:
        self._save(state_key(domain), state.model_dump())

    def load_dismissal_ledger(self, domain: str) -> tuple[str, ...]:
        return decode_ledger(domain, self._load(ledger_key(domain)))

    def save_dismissal_ledger(self, domain: str, versions: Sequence[str]) -> None:
        self._save(ledger_key(domain), list(versions))

    def load_last_migration_record(self, domain: str) -> MigrationRecord | None:
        return decode_record(domain, self._load(record_key(domain)))

    def save_last_migration_record(self, domain: str, record: MigrationRecord) -> None:
        self._save(record_key(domain), record.model_dump(mode="json"))


class SQLitePersistence:
    """
    Persistence backed by the SQLite key/value store.

    A connection is opened and closed per operation; each write commits on
    its own.

    Example:
        >>> persistence = SQLitePersistence("./data/rhythm.db")
        >>> persistence.load_dismissal_ledger("songs")
        ()
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        init_store_if_needed(self.db_path)

    def _read(self, key: str) -> Any:
        try:
            with closing(sqlite3.connect(self.db_path)) as conn, conn:
                raw = get_value(conn, key)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read '{key}' from {self.db_path}: {e}") from e
        return None if raw is None else json.loads(raw)

    def _write(self, key: str, value: Any) -> None:
        try:
            with closing(sqlite3.connect(self.db_path)) as conn, conn:
                put_value(conn, key, json.dumps(value, ensure_ascii=False))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write '{key}' to {self.db_path}: {e}") from e
        logger.debug(f"Saved {key}")

    def load_domain_state(
        self, domain: str, default_version: str | None = None
    ) -> DomainState | None:
        try:
            payload = self._read(state_key(domain))
        except json.JSONDecodeError as e:
            raise MalformedStoredDataError(
                f"Stored {domain} state is not valid JSON: {e}", domain=domain
            ) from e
        if payload is None:
            return None
        return decode_domain_state(domain, payload, default_version)

    def save_domain_state(self, domain: str, state: DomainState) -> None:
        self._write(state_key(domain), state.model_dump())

    def load_dismissal_ledger(self, domain: str) -> tuple[str, ...]:
        try:
            return decode_ledger(domain, self._read(ledger_key(domain)))
        except json.JSONDecodeError:
            logger.warning(f"Ignoring unreadable dismissal ledger for {domain}")
            return ()

    def save_dismissal_ledger(self, domain: str, versions: Sequence[str]) -> None:
        self._write(ledger_key(domain), list(versions))

    def load_last_migration_record(self, domain: str) -> MigrationRecord | None:
        try:
            return decode_record(domain, self._read(record_key(domain)))
        except json.JSONDecodeError:
            logger.warning(f"Ignoring unreadable migration record for {domain}")
            return None

    def save_last_migration_record(self, domain: str, record: MigrationRecord) -> None:
        self._write(record_key(domain), record.model_dump(mode="json"))
