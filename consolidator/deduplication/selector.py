"""
Survivor election.

The oldest row of a group survives: lowest creation timestamp, ties broken
by lowest id. Rows without a timestamp sort after every dated row.

Ids are compared as the database orders them. Groups from the Grouper carry
each member's position in the store's (created, id) order, and that position
breaks timestamp ties. Members without a position (built by hand) fall back
to Python's ordering of the ids, which can differ from the database
collation for text ids.
"""

from typing import Any, Iterable

from consolidator.deduplication.types import DuplicateGroup, GroupMember


def _rank(member: GroupMember) -> tuple:
    created = member.created_at
    tie = member.id if member.position is None else member.position
    return (created is None, created if created is not None else 0, tie)


def select_survivor(group: DuplicateGroup) -> Any:
    """Return the survivor id of a group; independent of member order."""
    if not group.members:
        raise ValueError(f"Empty duplicate group for key {group.key!r}")
    return min(group.members, key=_rank).id


def build_mapping(groups: Iterable[DuplicateGroup]) -> dict[Any, Any]:
    """Consolidation mapping: every loser id -> its group's survivor id."""
    mapping: dict[Any, Any] = {}
    for group in groups:
        survivor = select_survivor(group)
        for member in group.members:
            if member.id != survivor:
                mapping[member.id] = survivor
    return mapping
