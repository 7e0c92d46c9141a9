"""
Configuration loader for rhythm-schema.

This module loads the YAML configuration file, validates it with Pydantic
models, and resolves the active domain definitions (registry entries with any
configured floor overrides applied).

Functions:
    load_config: Main entrypoint to load and validate rhythm-schema.yaml
    resolve_domains: Registry domain definitions adjusted by the configuration
"""

from dataclasses import replace
from pathlib import Path

import yaml
from pydantic import ValidationError

from rhythm_schema.exceptions import ConfigFileNotFoundError, ConfigValidationError
from rhythm_schema.migration.registry import DOMAINS, DomainDefinition

from .schema import RhythmSchemaConfig

DEFAULT_CONFIG_FILENAME = "rhythm-schema.yaml"


def load_config(config_path: str | Path | None = None) -> RhythmSchemaConfig:
    """
    Load rhythm-schema.yaml and validate it.

    Args:
        config_path: Path to the YAML file. None means "no file": built-in
            defaults are returned.

    Returns:
        Validated RhythmSchemaConfig

    Raises:
        ConfigFileNotFoundError: If config_path is given but does not exist
        ConfigValidationError: If YAML is invalid or validation fails

    Security:
        Uses yaml.safe_load() to prevent code injection.
    """
    if config_path is None:
        return RhythmSchemaConfig()

    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    # An empty file is a valid "use the defaults" configuration
    if raw_config is None:
        return RhythmSchemaConfig()

    try:
        return RhythmSchemaConfig.model_validate(raw_config)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            error_messages.append(f"  - {loc}: {error['msg']}")

        raise ConfigValidationError(
            f"Configuration validation failed in {config_path}:\n"
            + "\n".join(error_messages)
        ) from e


def resolve_domains(config: RhythmSchemaConfig) -> list[DomainDefinition]:
    """
    Return the enabled domain definitions, in registry order.

    Floor overrides from the configuration replace the compiled-in floor;
    everything else comes from the registry unchanged.
    """
    resolved = []
    for name, domain in DOMAINS.items():
        settings = config.domains.get(name)
        if settings is None:
            resolved.append(domain)
            continue
        if not settings.enabled:
            continue
        if settings.floor_version is not None:
            domain = replace(domain, floor_version=settings.floor_version)
        resolved.append(domain)
    return resolved
