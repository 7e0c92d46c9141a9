"""
Migration registry: schema versions and per-domain migration steps.

Three domains are persisted:

- songs: list of song records, reconciled against bundled songs
- instruments: list of instrument configurations, reconciled against bundled
  instruments
- preferences: a single document, brought forward by its transform chain

When a record or document shape changes:

1. Bump the domain's target version (MAJOR for removed/renamed/retyped fields,
   MINOR for new optional fields, PATCH for fixes with no shape change)
2. Append a MigrationStep from the previous target to the new one
3. Raise the floor only when stored data older than it cannot be migrated at
   all; data below the floor is replaced by bundled defaults without asking

Change history:

SONGS:
- 2.2.0: Multi-cycle tracks (visualGrid on measures, cycleLength/startOffset
  on tracks)
- 2.1.0: Added displayOrder and links
- 2.0.0: Sections/measures/tracks format (older legacy data is below the floor)

INSTRUMENTS:
- 1.0.0: Initial dynamic instrument configuration

PREFERENCES:
- 1.1.0: instrumentFocus is always a non-empty list
- 1.0.0: Initial preferences document
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from rhythm_schema.exceptions import UnknownDomainError
from rhythm_schema.notation import (
    ORDER_FIELD,
    instrument_key,
    instruments_equal,
    song_key,
    songs_equal,
    validate_instrument,
    validate_song,
)

from .models import MigrationStep

SONGS_SCHEMA_VERSION = "2.2.0"
MIN_SONGS_VERSION = "2.0.0"

INSTRUMENTS_SCHEMA_VERSION = "1.0.0"
MIN_INSTRUMENTS_VERSION = "1.0.0"

PREFERENCES_SCHEMA_VERSION = "1.1.0"
MIN_PREFERENCES_VERSION = "1.0.0"

DEFAULT_INSTRUMENT_FOCUS = ("djembe",)


class DomainStrategy(StrEnum):
    """How accepted migrations are applied to a domain."""

    TRANSFORM = "transform"
    RECONCILE = "reconcile"


# ============================================================================
# Songs
# ============================================================================


def _add_display_order_and_links(songs: list[dict]) -> list[dict]:
    return [
        {
            **song,
            ORDER_FIELD: song.get(ORDER_FIELD, index),
            "links": song.get("links", []),
        }
        for index, song in enumerate(songs)
    ]


def _multi_cycle_measure(measure: dict) -> dict:
    time_signature = measure.get("timeSignature", {})
    subdivisions = 3 if time_signature.get("divisionType") == "triplet" else 4
    grid_size = time_signature.get("beats", 4) * subdivisions

    return {
        **measure,
        "visualGrid": measure.get(
            "visualGrid",
            {
                "pulses": grid_size,
                "pulsesPerBeat": subdivisions,
                "showCycleGuides": False,
            },
        ),
        "tracks": [
            {
                **track,
                "cycleLength": track.get("cycleLength", len(track.get("notes", []))),
                "startOffset": track.get("startOffset", 0),
            }
            for track in measure.get("tracks", [])
        ],
    }


def _add_multi_cycle(songs: list[dict]) -> list[dict]:
    return [
        {
            **song,
            "sections": [
                {
                    **section,
                    "measures": [
                        _multi_cycle_measure(measure)
                        for measure in section.get("measures", [])
                    ],
                }
                for section in song.get("sections", [])
            ],
        }
        for song in songs
    ]


SONGS_MIGRATIONS: tuple[MigrationStep, ...] = (
    MigrationStep(
        from_version="2.0.0",
        to_version="2.1.0",
        transform=_add_display_order_and_links,
        description="Added displayOrder and links support",
    ),
    MigrationStep(
        from_version="2.1.0",
        to_version="2.2.0",
        transform=_add_multi_cycle,
        description="Added multi-cycle tracks and visual grid",
    ),
)


# ============================================================================
# Instruments
# ============================================================================

# Still at the initial schema
INSTRUMENTS_MIGRATIONS: tuple[MigrationStep, ...] = ()


# ============================================================================
# Preferences
# ============================================================================


def _normalize_instrument_focus(preferences: dict) -> dict:
    focus = preferences.get("instrumentFocus")
    if not isinstance(focus, list) or not focus:
        focus = list(DEFAULT_INSTRUMENT_FOCUS)
    return {**preferences, "instrumentFocus": focus}


PREFERENCES_MIGRATIONS: tuple[MigrationStep, ...] = (
    MigrationStep(
        from_version="1.0.0",
        to_version="1.1.0",
        transform=_normalize_instrument_focus,
        description="Instrument focus is always a non-empty list",
    ),
)


def _validate_preferences(document: Any) -> bool:
    return isinstance(document, Mapping)


# ============================================================================
# Domain definitions
# ============================================================================


@dataclass(frozen=True)
class DomainDefinition:
    """
    Everything the engine needs to know about one persisted domain.

    Attributes:
        name: Domain name used as the storage key
        target_version: Version the running application expects
        floor_version: Oldest stored version that can still be migrated
        default_version: Version assumed when stored state carries none
        migrations: Registry edges, in declaration order
        strategy: TRANSFORM (document chain) or RECONCILE (merge with defaults)
        validate: Structural check for one record (reconcile) or the document
        key: Natural key extractor, reconcile domains only
        equals: Content equality, reconcile domains only
    """

    name: str
    target_version: str
    floor_version: str
    default_version: str
    migrations: tuple[MigrationStep, ...]
    strategy: DomainStrategy
    validate: Callable[[Any], bool] = field(repr=False)
    key: Callable[[Mapping], Any] | None = field(default=None, repr=False)
    equals: Callable[[Mapping, Mapping], bool] | None = field(default=None, repr=False)

    @property
    def reconciles(self) -> bool:
        return self.strategy is DomainStrategy.RECONCILE

    def is_valid(self, data: Any) -> bool:
        """Structural validation of stored data for this domain."""
        if self.reconciles:
            return isinstance(data, list) and all(self.validate(item) for item in data)
        return self.validate(data)


SONGS = DomainDefinition(
    name="songs",
    target_version=SONGS_SCHEMA_VERSION,
    floor_version=MIN_SONGS_VERSION,
    default_version="2.0.0",
    migrations=SONGS_MIGRATIONS,
    strategy=DomainStrategy.RECONCILE,
    validate=validate_song,
    key=song_key,
    equals=songs_equal,
)

INSTRUMENTS = DomainDefinition(
    name="instruments",
    target_version=INSTRUMENTS_SCHEMA_VERSION,
    floor_version=MIN_INSTRUMENTS_VERSION,
    default_version="1.0.0",
    migrations=INSTRUMENTS_MIGRATIONS,
    strategy=DomainStrategy.RECONCILE,
    validate=validate_instrument,
    key=instrument_key,
    equals=instruments_equal,
)

PREFERENCES = DomainDefinition(
    name="preferences",
    target_version=PREFERENCES_SCHEMA_VERSION,
    floor_version=MIN_PREFERENCES_VERSION,
    default_version="1.0.0",
    migrations=PREFERENCES_MIGRATIONS,
    strategy=DomainStrategy.TRANSFORM,
    validate=_validate_preferences,
)

DOMAINS: dict[str, DomainDefinition] = {
    domain.name: domain for domain in (SONGS, INSTRUMENTS, PREFERENCES)
}


def get_domain(name: str) -> DomainDefinition:
    """
    Look up a domain definition by name.

    Raises:
        UnknownDomainError: If no domain is registered under that name.
    """
    try:
        return DOMAINS[name]
    except KeyError:
        raise UnknownDomainError(
            f"Unknown domain '{name}'. Known domains: {', '.join(DOMAINS)}"
        ) from None
