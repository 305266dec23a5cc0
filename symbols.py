from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from monitor import Value, make_scalar
from nodes import Identifier


@dataclass
class Symbol:
    name: str
    index: int
    value: Value = field(default_factory=lambda: make_scalar(0.0))
    node: Optional[Identifier] = None
    target: Optional[int] = None

    # consistency-check counters
    slabeldef: int = 0
    slabelref: int = 0
    blabeldef: int = 0
    blabelref: int = 0
    assigned: int = 0
    used: int = 0

    watchcount: int = 0

    @property
    def label_defs(self) -> int:
        return self.slabeldef + self.blabeldef

    @property
    def label_refs(self) -> int:
        return self.slabelref + self.blabelref

    @property
    def is_label(self) -> bool:
        return self.label_defs > 0 or self.label_refs > 0

    @property
    def is_variable(self) -> bool:
        return self.assigned > 0 or self.used > 0

    def reset_counters(self) -> None:
        self.slabeldef = self.slabelref = 0
        self.blabeldef = self.blabelref = 0
        self.assigned = self.used = 0

    def counters(self) -> Dict[str, int]:
        return {
            "slabeldef": self.slabeldef,
            "slabelref": self.slabelref,
            "blabeldef": self.blabeldef,
            "blabelref": self.blabelref,
            "assigned": self.assigned,
            "used": self.used,
        }


@dataclass
class SymbolTable:
    """One entry per distinct identifier spelling, kept in definition order."""

    entries: List[Symbol] = field(default_factory=list)
    by_name: Dict[str, Symbol] = field(default_factory=dict)

    def intern(self, name: str) -> Symbol:
        found = self.by_name.get(name)
        if found is not None:
            return found
        symbol = Symbol(name=name, index=len(self.entries))
        self.entries.append(symbol)
        self.by_name[name] = symbol
        return symbol

    def identifier(self, name: str) -> Identifier:
        symbol = self.intern(name)
        node = Identifier(name=name, symbol=symbol.index)
        if symbol.node is None:
            symbol.node = node
        return node

    def lookup(self, name: str) -> Symbol:
        return self.by_name[name]

    def has(self, name: str) -> bool:
        return name in self.by_name

    def of(self, node: Identifier) -> Symbol:
        return self.entries[node.symbol]

    def reset_values(self) -> None:
        for symbol in self.entries:
            symbol.value = make_scalar(0.0)
            symbol.watchcount = 0

    def __getitem__(self, index: int) -> Symbol:
        return self.entries[index]

    def __iter__(self) -> Iterator[Symbol]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)
