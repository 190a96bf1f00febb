"""
Capability Set
==============

Value type describing what a provider can service: the tow-truck types it
operates and the vehicle types it handles.

Two flavours exist because the two capability lists mean different things
when empty:

  - ``strict``               -- empty means "supports nothing". Used for
                                tow-truck types: a provider that declares no
                                truck cannot service a job asking for one.
  - ``universal_when_empty`` -- empty means "supports everything". Used for
                                vehicle types: a provider that declares no
                                vehicle restriction takes any vehicle.

Requirement strings coming from clients are normalised with
``normalize_requirement`` before lookup. Blank values and the literal
strings ``"null"`` / ``"undefined"`` (serialised nulls from mobile clients)
mean "no requirement".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


# Placeholder strings that clients send instead of an absent value
_NULL_LITERALS: frozenset[str] = frozenset({"", "null", "undefined", "none"})


def normalize_requirement(value: str | None) -> str | None:
    """Return the trimmed requirement, or None when it means "no requirement"."""
    if value is None:
        return None
    stripped = str(value).strip()
    if stripped.lower() in _NULL_LITERALS:
        return None
    return stripped


def _normalize_members(values: Iterable[str] | None) -> frozenset[str]:
    members: set[str] = set()
    for value in values or ():
        normalized = normalize_requirement(value)
        if normalized is not None:
            members.add(normalized)
    return frozenset(members)


@dataclass(frozen=True)
class CapabilitySet:
    """An immutable set of capability names with explicit empty semantics."""

    members: frozenset[str]
    empty_means_all: bool = False

    @classmethod
    def strict(cls, values: Iterable[str] | None) -> "CapabilitySet":
        return cls(members=_normalize_members(values), empty_means_all=False)

    @classmethod
    def universal_when_empty(cls, values: Iterable[str] | None) -> "CapabilitySet":
        return cls(members=_normalize_members(values), empty_means_all=True)

    @property
    def is_universal(self) -> bool:
        return self.empty_means_all and not self.members

    def supports(self, requirement: str | None) -> bool:
        """Check whether this set satisfies a single requirement.

        A missing requirement is always satisfied.
        """
        required = normalize_requirement(requirement)
        if required is None:
            return True
        if self.is_universal:
            return True
        return required in self.members

    def __len__(self) -> int:
        return len(self.members)
