"""
Merge strategy: reconcile user records against bundled defaults.

Records are matched on a natural key, compared on content, and classified
under a MergePolicy:

    bundled only           -> added      (if add_new_defaults)
    both, same content     -> preserved  (local copy kept)
    both, content differs  -> conflict; updated (bundled copy, local order)
                              if update_modified, else preserved (local copy)
    local only             -> preserved  (if preserve_user_data)

When several local records share a key, the first one is matched and the
rest are treated as local only.

The merged output is stably sorted by the display order field. Inputs are never
mutated; records that need an order field assigned are copied first.

Example:
    >>> result = merge_songs_with_defaults(user_songs, bundled_songs, DEFAULT_MERGE_POLICY)
    >>> result.summary()
    {'merged': 9, 'added': 1, 'updated': 0, 'preserved': 8, 'conflicts': 1}
"""

from collections.abc import Callable, Hashable, Mapping, Sequence

from rhythm_schema.notation import (
    ORDER_FIELD,
    instrument_key,
    instruments_equal,
    song_key,
    songs_equal,
)

from .models import MergePolicy, MergeResult

KeyFunc = Callable[[Mapping], Hashable]
EqualsFunc = Callable[[Mapping, Mapping], bool]


def merge_with_defaults(
    local: Sequence[Mapping],
    bundled: Sequence[Mapping],
    policy: MergePolicy,
    key: KeyFunc,
    equals: EqualsFunc,
    order_field: str = ORDER_FIELD,
) -> MergeResult:
    """
    Three-way reconciliation of local records against bundled defaults.

    Args:
        local: The user's current records
        bundled: The shipped default records, in display order
        policy: Which categories of difference to keep, add or overwrite
        key: Natural key extractor (never a surrogate id)
        equals: Content equality ignoring volatile fields
        order_field: Field holding the display order

    Returns:
        MergeResult. Conflict detection does not depend on the policy; only
        the resolution of a conflict does.
    """
    first_index: dict[Hashable, int] = {}
    for position, record in enumerate(local):
        first_index.setdefault(key(record), position)
    local_by_key = {k: local[position] for k, position in first_index.items()}
    bundled_keys = {key(record) for record in bundled}
    matched = {position for k, position in first_index.items() if k in bundled_keys}

    merged: list[Mapping] = []
    added: list[Mapping] = []
    updated: list[Mapping] = []
    preserved: list[Mapping] = []
    conflicts: list[Mapping] = []

    for index, default in enumerate(bundled):
        user_record = local_by_key.get(key(default))

        if user_record is None:
            if policy.add_new_defaults:
                order = default.get(order_field)
                new_record = {**default, order_field: index if order is None else order}
                merged.append(new_record)
                added.append(new_record)
            continue

        if equals(user_record, default):
            merged.append(user_record)
            preserved.append(user_record)
            continue

        conflicts.append(user_record)
        if policy.update_modified:
            order = user_record.get(order_field)
            replacement = {**default, order_field: index if order is None else order}
            merged.append(replacement)
            updated.append(replacement)
        else:
            merged.append(user_record)
            preserved.append(user_record)

    if policy.preserve_user_data:
        for position, user_record in enumerate(local):
            if position not in matched:
                merged.append(user_record)
                preserved.append(user_record)

    # list.sort is stable: equal orders keep their relative position
    merged.sort(key=lambda record: record.get(order_field) or 0)

    return MergeResult(
        merged=tuple(merged),
        added=tuple(added),
        updated=tuple(updated),
        preserved=tuple(preserved),
        conflicts=tuple(conflicts),
    )


def merge_songs_with_defaults(
    user_songs: Sequence[Mapping],
    default_songs: Sequence[Mapping],
    policy: MergePolicy,
) -> MergeResult:
    """Merge songs, matching on title."""
    return merge_with_defaults(user_songs, default_songs, policy, song_key, songs_equal)


def merge_instruments_with_defaults(
    user_instruments: Sequence[Mapping],
    default_instruments: Sequence[Mapping],
    policy: MergePolicy,
) -> MergeResult:
    """Merge instrument configurations, matching on their key."""
    return merge_with_defaults(
        user_instruments,
        default_instruments,
        policy,
        instrument_key,
        instruments_equal,
    )
