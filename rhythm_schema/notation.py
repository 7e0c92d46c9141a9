"""
Record-level view of the rhythm notation data model.

The engine treats songs and instrument configurations as opaque mappings
except for three contracts defined here:

- Natural keys: songs match on title, instruments on their slug-like key.
  Surrogate ids are regenerated freely and never used for matching.
- Volatile fields: surrogate ids, created/modified timestamps and the display
  order are excluded from content equality.
- Notes: a track note is either a single stroke symbol or a flam. Stored data
  encodes flams as {"type": "flam", "grace": ..., "main": ..., "open": ...};
  parse_note resolves that once into a tagged value so equality never has to
  re-sniff the shape.

Equality is structural over parsed values, so key order inside nested
mappings and int/float spelling (a tempo of 120 vs 120.0) do not create false
conflicts.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

ORDER_FIELD = "displayOrder"
VOLATILE_FIELDS = frozenset({"id", "created", "modified", ORDER_FIELD})

SONG_CONTENT_FIELDS = ("title", "description", "tempo", "links", "sections")
INSTRUMENT_CONTENT_FIELDS = (
    "key",
    "name",
    "description",
    "color",
    "availableNotes",
    "cycleOrder",
    "noteLabels",
    "noteColors",
    "noteSymbols",
    "flamNotes",
)


@dataclass(frozen=True)
class Stroke:
    """A plain note: rest ('.'), bass, tone, slap, accent, open, muted..."""

    symbol: str


@dataclass(frozen=True)
class Flam:
    """Grace note followed by a main note. Open flams are spaced wider."""

    grace: str
    main: str
    open: bool = False

    def label(self) -> str:
        separator = "-" if self.open else ""
        return f"{self.grace.lower()}{separator}{self.main}"


Note = Stroke | Flam


def parse_note(raw: Any) -> Note:
    """
    Resolve a stored note into its tagged variant.

    Raises:
        ValueError: If raw is neither a stroke symbol nor a flam mapping.
    """
    if isinstance(raw, (Stroke, Flam)):
        return raw
    if isinstance(raw, str):
        return Stroke(raw)
    if isinstance(raw, Mapping) and raw.get("type") == "flam":
        try:
            return Flam(grace=raw["grace"], main=raw["main"], open=bool(raw.get("open", False)))
        except KeyError as e:
            raise ValueError(f"Flam note missing field {e}: {dict(raw)!r}") from e
    raise ValueError(f"Unrecognized note: {raw!r}")


def _normalize(value: Any) -> Any:
    # Nested surrogate ids (sections, measures, tracks) are dropped along
    # with the top-level one.
    if isinstance(value, Mapping):
        normalized = {}
        for key, item in value.items():
            if key == "id":
                continue
            if key == "notes" and isinstance(item, list):
                normalized[key] = tuple(parse_note(note) for note in item)
            else:
                normalized[key] = _normalize(item)
        return normalized
    if isinstance(value, (list, tuple)):
        return tuple(_normalize(item) for item in value)
    return value


def content_view(record: Mapping, fields: tuple[str, ...]) -> dict[str, Any]:
    """Project a record onto its content fields, normalized for comparison."""
    return {name: _normalize(record.get(name)) for name in fields}


def song_key(song: Mapping) -> str:
    return song["title"]


def instrument_key(instrument: Mapping) -> str:
    return instrument["key"]


def songs_equal(a: Mapping, b: Mapping) -> bool:
    """Compare two songs ignoring ids, timestamps and display order."""
    return content_view(a, SONG_CONTENT_FIELDS) == content_view(b, SONG_CONTENT_FIELDS)


def instruments_equal(a: Mapping, b: Mapping) -> bool:
    """Compare two instrument configurations ignoring volatile fields."""
    return content_view(a, INSTRUMENT_CONTENT_FIELDS) == content_view(
        b, INSTRUMENT_CONTENT_FIELDS
    )


def _notes_valid(notes: Any) -> bool:
    if not isinstance(notes, list):
        return False
    try:
        for note in notes:
            parse_note(note)
    except ValueError:
        return False
    return True


def _sections_valid(sections: list) -> bool:
    # Missing measures/tracks/notes lists are tolerated; older versions and
    # half-built songs omit them.
    for section in sections:
        if not isinstance(section, Mapping):
            return False
        measures = section.get("measures", [])
        if not isinstance(measures, list):
            return False
        for measure in measures:
            if not isinstance(measure, Mapping):
                return False
            tracks = measure.get("tracks", [])
            if not isinstance(tracks, list):
                return False
            for track in tracks:
                if not isinstance(track, Mapping) or not _notes_valid(track.get("notes", [])):
                    return False
    return True


def validate_song(song: Any) -> bool:
    """
    Structural check applied to stored songs before migration.

    Walks every track so that a note parse_note cannot resolve marks the
    whole song invalid here rather than failing later in a comparison.
    """
    return (
        isinstance(song, Mapping)
        and "id" in song
        and "title" in song
        and "tempo" in song
        and isinstance(song.get("sections"), list)
        and _sections_valid(song["sections"])
    )


def validate_instrument(instrument: Any) -> bool:
    """Basic structural check applied to stored instrument configurations."""
    return (
        isinstance(instrument, Mapping)
        and isinstance(instrument.get("key"), str)
        and bool(instrument["key"].strip())
        and isinstance(instrument.get("name"), str)
        and isinstance(instrument.get("availableNotes"), list)
    )
