"""
storefront.auth.roles

The closed registry of capabilities and their bit positions.

Responsibilities:
- Define every capability once, with an explicit bit value.
- Validate the registry at construction (power-of-two bits, no collisions).
- Translate between capability names and masks for tokens and admin payloads.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field


class Capability(enum.IntFlag):
    USER = 1
    DELIVERY_AGENT = 2
    SUPPORT_AGENT = 4
    ADMIN = 8


class RegistryError(ValueError):
    pass


def _is_power_of_two(value: int) -> bool:
    return value > 0 and value & (value - 1) == 0


@dataclass(frozen=True, slots=True)
class RoleRegistry:
    """
    Name -> bit table. Construction fails fast on a malformed table, so a
    registry instance is always a closed, collision-free bit space.
    """

    entries: Mapping[str, int]
    _by_bit: dict[int, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_bit: dict[int, str] = {}
        for name, bit in self.entries.items():
            if not _is_power_of_two(bit):
                raise RegistryError(f"capability {name!r} has non power-of-two bit {bit}")
            if bit in by_bit:
                raise RegistryError(f"capabilities {by_bit[bit]!r} and {name!r} share bit {bit}")
            by_bit[bit] = name
        object.__setattr__(self, "entries", dict(self.entries))
        object.__setattr__(self, "_by_bit", by_bit)

    @classmethod
    def from_flags(cls, flags: type[enum.IntFlag]) -> RoleRegistry:
        # Iterating __members__ keeps aliases visible, so duplicate values are caught too.
        return cls({name: int(member) for name, member in flags.__members__.items()})

    @property
    def full_mask(self) -> int:
        mask = 0
        for bit in self._by_bit:
            mask |= bit
        return mask

    def bit(self, name: str) -> int:
        try:
            return self.entries[name.upper()]
        except KeyError:
            raise RegistryError(f"unknown capability {name!r}") from None

    def mask_of(self, names: Iterable[str]) -> int:
        mask = 0
        for name in names:
            mask |= self.bit(name)
        return mask

    def names(self, mask: int) -> list[str]:
        # Ordered by bit so token payloads and API responses are stable.
        return [self._by_bit[bit] for bit in sorted(self._by_bit) if mask & bit]

    def validate_mask(self, mask: int) -> int:
        if mask < 0 or mask & ~self.full_mask:
            raise RegistryError(f"mask {mask} carries bits outside the registry")
        return mask


REGISTRY = RoleRegistry.from_flags(Capability)


# --- Module Notes -----------------------------------------------------------
# There is no runtime API for adding capabilities: a new role means a new member on
# `Capability`, which is then validated when this module is imported.
