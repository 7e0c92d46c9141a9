"""Bundled defaults loader for rhythm-schema.

Loads the shipped baseline records for each domain from JSON files:
- Package defaults (bundled with the application)
- User overrides (~/.config/rhythm-schema/defaults/ or a configured directory)

Path resolution order:
1. Override directory, if given
2. User config directory (~/.config/rhythm-schema/defaults/)
3. Package directory (rhythm_schema/defaults/)

Bundled records are always at the domain's current target version.
"""

import json
import logging
from pathlib import Path
from typing import Any

from rhythm_schema.migration.registry import get_domain

logger = logging.getLogger(__name__)


class DefaultsNotFoundError(Exception):
    """Raised when no bundled defaults file exists for a domain."""

    pass


class InvalidDefaultsError(ValueError):
    """Raised when a defaults file is not valid JSON or fails validation."""

    pass


def _get_package_defaults_dir() -> Path:
    """Get the package-bundled defaults directory."""
    return Path(__file__).parent


def _get_user_defaults_dir() -> Path:
    """Get the user config directory for custom defaults.

    Note: Does not create the directory if it doesn't exist.
    """
    return Path.home() / ".config" / "rhythm-schema" / "defaults"


def _resolve_defaults_path(domain: str, override_dir: Path | None = None) -> Path:
    """Find the JSON file holding a domain's defaults.

    Raises:
        DefaultsNotFoundError: If the file is not found in any location
    """
    filename = f"{domain}.json"
    candidates = [_get_user_defaults_dir() / filename, _get_package_defaults_dir() / filename]
    if override_dir is not None:
        candidates.insert(0, Path(override_dir) / filename)

    for path in candidates:
        if path.exists():
            logger.debug(f"Using {domain} defaults: {path}")
            return path

    searched = "\n".join(f"  - {path}" for path in candidates)
    raise DefaultsNotFoundError(f"Bundled defaults not found: {filename}\nSearched in:\n{searched}")


def load_bundled_defaults(domain: str, override_dir: Path | None = None) -> Any:
    """Load and validate the bundled defaults for a domain.

    Records without a display order get their position in the file, so the
    shipped order is what the merge engine sees.

    Args:
        domain: Domain name ("songs", "instruments", "preferences")
        override_dir: Optional directory checked before the standard locations

    Returns:
        List of records for reconcile domains, a document for transform domains

    Raises:
        UnknownDomainError: If the domain is not registered
        DefaultsNotFoundError: If no defaults file exists
        InvalidDefaultsError: If the file is not valid JSON or fails structural validation
    """
    definition = get_domain(domain)
    path = _resolve_defaults_path(domain, override_dir)

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidDefaultsError(f"Invalid JSON in defaults file {path}: {e}") from e

    if not definition.is_valid(data):
        raise InvalidDefaultsError(f"Bundled {domain} defaults in {path} failed validation")

    if definition.reconciles:
        data = [
            record if "displayOrder" in record else {**record, "displayOrder": index}
            for index, record in enumerate(data)
        ]
        logger.info(f"Loaded {len(data)} bundled {domain} from {path}")
    else:
        logger.info(f"Loaded bundled {domain} document from {path}")

    return data
