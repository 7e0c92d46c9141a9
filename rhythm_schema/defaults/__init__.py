"""Bundled default records for rhythm-schema.

The application ships a baseline set of songs, instrument configurations and
preferences. The migration engine reconciles user data against them.

Supports both package defaults and user overrides:
- Package defaults: rhythm_schema/defaults/<domain>.json
- User overrides: ~/.config/rhythm-schema/defaults/<domain>.json

User files take precedence over package defaults.
"""

from rhythm_schema.defaults.loader import (
    DefaultsNotFoundError,
    InvalidDefaultsError,
    load_bundled_defaults,
)

__all__ = [
    "DefaultsNotFoundError",
    "InvalidDefaultsError",
    "load_bundled_defaults",
]
