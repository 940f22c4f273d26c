"""
Compiled program model.

A Program is what the parser hands to the encoder and what the viewer
application loads: an ordered, immutable sequence of MicroInstructions,
each one a complete partition of the control word into resolved fields.
"""

from __future__ import annotations
import types
from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional, Tuple


@dataclass(frozen=True)
class ResolvedField:
    name: str
    hi: int
    lo: int
    value: int

    @property
    def width(self) -> int:
        return self.hi - self.lo + 1

    @property
    def bits(self) -> int:
        """The value shifted into its position in the control word."""
        return self.value << self.lo


@dataclass(frozen=True)
class MicroInstruction:
    address: int
    fields: Tuple[ResolvedField, ...]
    labels: Tuple[str, ...] = ()
    line: Optional[int] = None
    col: Optional[int] = None

    @property
    def width(self) -> int:
        return sum(f.width for f in self.fields)

    @property
    def word(self) -> int:
        word = 0
        for f in self.fields:
            word |= f.bits
        return word

    def field(self, name: str) -> ResolvedField:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(name)

    def values(self) -> Dict[str, int]:
        return {f.name: f.value for f in self.fields}


def _frozen_labels(labels: Optional[Mapping[str, int]]) -> Mapping[str, int]:
    return types.MappingProxyType(dict(labels or {}))


@dataclass(frozen=True)
class Program:
    width: int
    instructions: Tuple[MicroInstruction, ...] = ()
    labels: Mapping[str, int] = field(default_factory=dict)
    origin: int = 0

    def __post_init__(self):
        object.__setattr__(self, "instructions", tuple(self.instructions))
        object.__setattr__(self, "labels", _frozen_labels(self.labels))

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self) -> Iterator[MicroInstruction]:
        return iter(self.instructions)

    def __getitem__(self, index: int) -> MicroInstruction:
        return self.instructions[index]

    def words(self) -> Tuple[int, ...]:
        return tuple(i.word for i in self.instructions)
