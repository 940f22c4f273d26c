"""
Symbol table for one compilation.

Maps every name in the source (labels, fields, constants, enum types and
micro-ops) to an entry. Labels are bound to their address as soon as pass 1
sees them; constants keep their defining expression and are bound by the
resolver, since they may refer to labels that appear later.
"""

from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from .errors import DuplicateSymbolError


class SymbolKind(enum.Enum):
    LABEL = "label"
    FIELD = "field"
    CONSTANT = "constant"
    ENUM = "enum"
    OP = "op"


@dataclass
class SymbolTableEntry:
    name: str
    kind: SymbolKind
    value: Any = None              # None until resolved
    line: Optional[int] = None
    col: Optional[int] = None
    definition: Any = None         # defining expression for constants

    @property
    def resolved(self) -> bool:
        return self.value is not None

    def where(self) -> str:
        if self.line is None:
            return f"{self.kind.value} from the target description"
        return f"{self.kind.value} defined at L{self.line}:{self.col}"


class SymbolTable:
    """Flat, single-namespace table. Redefinition is always an error."""

    def __init__(self):
        self._entries: Dict[str, SymbolTableEntry] = {}

    def define(self, name: str, kind: SymbolKind, *, value: Any = None,
               line: Optional[int] = None, col: Optional[int] = None,
               definition: Any = None) -> SymbolTableEntry:
        prior = self._entries.get(name)
        if prior is not None:
            raise DuplicateSymbolError(name, line, col, previous=prior.where())
        entry = SymbolTableEntry(name, kind, value, line, col, definition)
        self._entries[name] = entry
        return entry

    def lookup(self, name: str) -> Optional[SymbolTableEntry]:
        return self._entries.get(name)

    def entries(self, kind: Optional[SymbolKind] = None) -> List[SymbolTableEntry]:
        if kind is None:
            return list(self._entries.values())
        return [e for e in self._entries.values() if e.kind is kind]

    def labels(self) -> Dict[str, int]:
        return {e.name: e.value for e in self.entries(SymbolKind.LABEL)}

    def unresolved(self) -> List[SymbolTableEntry]:
        return [e for e in self._entries.values() if e.value is None]

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[SymbolTableEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)
