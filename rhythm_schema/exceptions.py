"""
Custom exceptions for rhythm-schema.

This module provides a hierarchy of exceptions that enable type-safe error
handling throughout the engine and its collaborators. All exceptions inherit
from the base RhythmSchemaError for consistent catching.

Exception Hierarchy:
    RhythmSchemaError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   └── ConfigValidationError
    ├── StorageError
    │   ├── StorageInitError
    │   ├── StorageMigrationError
    │   └── MalformedStoredDataError
    ├── MigrationError
    │   ├── NoPathFoundError
    │   ├── StepFailureError
    │   ├── UnknownDomainError
    │   └── NoPendingMigrationError
    └── InvalidVersionError (also a ValueError)

Usage:
    from rhythm_schema.exceptions import MalformedStoredDataError

    try:
        state = persistence.load_domain_state("songs")
    except MalformedStoredDataError as e:
        logger.warning(f"Stored songs unusable, using defaults: {e}")
        state = DomainState(version=target, data=bundled)
"""


class RhythmSchemaError(Exception):
    """
    Base exception for all rhythm-schema errors.

    All custom exceptions in this package inherit from this class, so callers
    can catch every application-specific error with a single except clause.
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(RhythmSchemaError):
    """
    Base class for configuration-related errors.

    Should be caught and result in exit code 1 (configuration error).
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """
    Configuration file does not exist at the specified path.

    Example:
        raise ConfigFileNotFoundError("/path/to/rhythm-schema.yaml")
    """

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (YAML syntax or schema validation failed).

    Example:
        raise ConfigValidationError("Field 'storage.db_path' cannot be empty")
    """

    pass


# ============================================================================
# Storage Errors
# ============================================================================


class StorageError(RhythmSchemaError):
    """
    Base class for errors raised by the client-local key/value store.

    Should be caught and result in exit code 2 (storage error).
    """

    pass


class StorageInitError(StorageError):
    """
    Store initialization failed (file cannot be created or opened).

    Example:
        raise StorageInitError("Failed to create store: permission denied")
    """

    pass


class StorageMigrationError(StorageError):
    """
    The key/value store's own table layout could not be upgraded.

    This concerns the storage file itself, not the documents kept inside it.
    """

    pass


class MalformedStoredDataError(StorageError):
    """
    Persisted state failed basic structural validation.

    Raised before any migration logic runs. The calling layer recovers by
    substituting bundled defaults.

    Attributes:
        domain: Domain whose stored value was rejected
    """

    def __init__(self, message: str, domain: str | None = None):
        super().__init__(message)
        self.domain = domain


# ============================================================================
# Migration Errors
# ============================================================================


class MigrationError(RhythmSchemaError):
    """
    Base class for migration and reconciliation errors.

    These never propagate to the host application; the session layer turns
    them into failure outcomes.
    """

    pass


class NoPathFoundError(MigrationError):
    """
    Versions differ and no chain of registry edges connects them.

    Example:
        raise NoPathFoundError(
            "No migration path available from 1.0.0 to 3.0.0", "1.0.0", "3.0.0"
        )
    """

    def __init__(self, message: str, from_version: str, to_version: str):
        super().__init__(message)
        self.from_version = from_version
        self.to_version = to_version


class StepFailureError(MigrationError):
    """
    A migration transform raised while a path was being applied.

    Attributes:
        from_version: Stored version the failing path started from
        to_version: Target version the path was heading to
    """

    def __init__(
        self,
        message: str,
        from_version: str | None = None,
        to_version: str | None = None,
    ):
        super().__init__(message)
        self.from_version = from_version
        self.to_version = to_version


class UnknownDomainError(MigrationError):
    """
    A domain name has no entry in the migration registry.

    Example:
        raise UnknownDomainError("Unknown domain 'drumkits'")
    """

    pass


class NoPendingMigrationError(MigrationError):
    """
    A user decision arrived for a domain with no pending migration.

    Example:
        raise NoPendingMigrationError("No pending migration for 'songs'")
    """

    pass


# ============================================================================
# Version Errors
# ============================================================================


class InvalidVersionError(RhythmSchemaError, ValueError):
    """
    A schema version string is not a dotted list of non-negative integers.

    Example:
        raise InvalidVersionError("Invalid schema version: '2.x.0'")
    """

    pass
