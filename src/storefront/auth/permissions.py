"""
storefront.auth.permissions

Pure bitmask operations over capability masks.
"""

from __future__ import annotations

from functools import reduce
from operator import or_


def combine(*masks: int) -> int:
    return int(reduce(or_, masks, 0))


def has(mask: int, capability: int) -> bool:
    return (mask & capability) != 0


def revoke(mask: int, capability: int) -> int:
    return int(mask & ~capability)
