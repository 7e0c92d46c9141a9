"""
Configuration schema models for rhythm-schema.

This module defines Pydantic models for validating and parsing the
rhythm-schema.yaml file.

Models:
    StorageSettings: Where the key/value store and defaults overrides live
    DomainSettings: Per-domain switches (enabled, floor override)
    RhythmSchemaConfig: Root configuration model (validates entire YAML)

Example YAML:
    storage:
      db_path: ./data/rhythm.db
      defaults_dir: ./my-defaults
    merge_policy:
      preserve_user_data: true
      add_new_defaults: true
      update_modified: false
    domains:
      songs:
        floor_version: "2.1.0"
      preferences:
        enabled: false
"""

from pydantic import BaseModel, field_validator, model_validator

from rhythm_schema.migration.models import MergePolicy
from rhythm_schema.migration.registry import DOMAINS
from rhythm_schema.migration.versions import is_newer_version, parse_version


class StorageSettings(BaseModel):
    """
    Storage locations.

    Attributes:
        db_path: SQLite file holding the client-local key/value store
        defaults_dir: Optional directory with <domain>.json overrides for the
            bundled defaults
    """

    db_path: str = "./data/rhythm.db"
    defaults_dir: str | None = None

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        """Validate db_path is non-empty."""
        if not v or v.isspace():
            raise ValueError("db_path cannot be empty")
        return v


class DomainSettings(BaseModel):
    """
    Per-domain overrides.

    Attributes:
        enabled: Whether startup detection checks this domain
        floor_version: Replaces the compiled-in floor. Stored data below it is
            reset to bundled defaults without prompting.
    """

    enabled: bool = True
    floor_version: str | None = None

    @field_validator("floor_version")
    @classmethod
    def validate_floor_version(cls, v: str | None) -> str | None:
        """Validate floor_version is a dotted integer version."""
        if v is not None:
            parse_version(v)
        return v


class RhythmSchemaConfig(BaseModel):
    """
    Root configuration model.

    Attributes:
        storage: Storage locations
        merge_policy: Policy preselected for merge previews and accepts
        domains: Per-domain overrides keyed by domain name
    """

    storage: StorageSettings = StorageSettings()
    merge_policy: MergePolicy = MergePolicy()
    domains: dict[str, DomainSettings] = {}

    @field_validator("domains")
    @classmethod
    def validate_domain_names(
        cls, v: dict[str, DomainSettings]
    ) -> dict[str, DomainSettings]:
        """Validate every configured domain is registered."""
        unknown = sorted(set(v) - set(DOMAINS))
        if unknown:
            raise ValueError(
                f"Unknown domain(s): {', '.join(unknown)}. "
                f"Known domains: {', '.join(DOMAINS)}"
            )
        return v

    @model_validator(mode="after")
    def validate_floor_not_above_target(self) -> "RhythmSchemaConfig":
        """A floor above the target would reset every store on every start."""
        for name, settings in self.domains.items():
            target = DOMAINS[name].target_version
            if settings.floor_version and is_newer_version(settings.floor_version, target):
                raise ValueError(
                    f"domains.{name}.floor_version {settings.floor_version} "
                    f"is newer than target version {target}"
                )
        return self
