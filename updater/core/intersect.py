"""Three-way set comparison used by every reconciler."""
from __future__ import annotations

from typing import Hashable, Iterable, List, NamedTuple, TypeVar

K = TypeVar("K", bound=Hashable)


class Intersection(NamedTuple):
    """Result of comparing current keys with desired keys.

    Attributes:
        both: keys present on both sides
        only_current: keys only present in the current state (revoke/disable)
        only_desired: keys only present in the desired state (grant/create)
    """
    both: List
    only_current: List
    only_desired: List


def _dedupe(keys: Iterable[K]) -> List[K]:
    seen = set()
    unique = []
    for key in keys:
        if key not in seen:
            seen.add(key)
            unique.append(key)
    return unique


def intersect(current: Iterable[K], desired: Iterable[K]) -> Intersection:
    """Split the union of ``current`` and ``desired`` into three disjoint lists.

    Duplicates within one input are ignored. ``both`` and ``only_current``
    follow the order of ``current``, ``only_desired`` the order of ``desired``;
    callers must not rely on it.

    Args:
        current: keys observed in the external system
        desired: keys declared in the desired state

    Returns:
        Intersection(both, only_current, only_desired)
    """
    current_keys = _dedupe(current)
    desired_keys = _dedupe(desired)
    desired_lookup = set(desired_keys)
    current_lookup = set(current_keys)

    both = [key for key in current_keys if key in desired_lookup]
    only_current = [key for key in current_keys if key not in desired_lookup]
    only_desired = [key for key in desired_keys if key not in current_lookup]
    return Intersection(both, only_current, only_desired)
