"""Label resolution.

Turns the checked statement chain into a ``Program``: a flat list of
statements addressed by position.  Labels are bound to statement addresses,
every BLOCK header is paired with its END, and each GO, OG and PERFORM is
replaced by a ``Transfer`` that carries its target address.  The input tree
is left untouched.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from nodes import (
    BLOCK,
    DATA,
    END,
    GO,
    LABEL,
    OG,
    PERFORM,
    CuplCheckError,
    CuplTreeError,
    Identifier,
    Interior,
    Node,
    Transfer,
    iter_statements,
)
from symbols import Symbol, SymbolTable


@dataclass
class Statement:
    index: int
    op: Node
    label: Optional[str] = None
    symbol: Optional[int] = None
    # address of the matching END, BLOCK headers only
    end: Optional[int] = None

    @property
    def kind(self) -> str:
        return self.op.kind

    def describe(self) -> str:
        prefix = f"{self.label} " if self.label else ""
        return f"{prefix}{self.op.kind}"


@dataclass
class Program:
    statements: List[Statement]
    symbols: SymbolTable
    # symbol index -> address of the BLOCK header it labels
    blocks: Dict[int, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.statements)

    def __iter__(self) -> Iterator[Statement]:
        return iter(self.statements)

    def __getitem__(self, index: int) -> Statement:
        return self.statements[index]

    def data_start(self) -> int:
        """Address of the first DATA statement, or the program length when there is none."""
        for statement in self.statements:
            if statement.kind == DATA:
                return statement.index
        return len(self.statements)


class Resolver:
    def __init__(self, symbols: SymbolTable) -> None:
        self.symbols = symbols
        self.blocks: Dict[int, int] = {}
        self.ends: Dict[int, int] = {}

    def resolve(self, tree: Optional[Node]) -> Program:
        for symbol in self.symbols:
            symbol.target = None
        flat = self._flatten(tree)
        self._match_ends(flat)
        statements: List[Statement] = []
        for index, (label, op) in enumerate(flat):
            statements.append(
                Statement(
                    index=index,
                    op=self._rewrite(op, index),
                    label=label.name if label else None,
                    symbol=label.symbol if label else None,
                    end=self.ends.get(index),
                )
            )
        return Program(statements=statements, symbols=self.symbols, blocks=dict(self.blocks))

    def _flatten(self, tree: Optional[Node]) -> List[Tuple[Optional[Identifier], Node]]:
        flat: List[Tuple[Optional[Identifier], Node]] = []
        for index, statement in enumerate(iter_statements(tree)):
            op = statement.left
            if op is None:
                raise CuplTreeError(f"statement {index} has no operation")
            label: Optional[Identifier] = None
            if op.kind == BLOCK:
                raise CuplTreeError(f"statement {index}: BLOCK without a label")
            if op.kind == LABEL:
                assert isinstance(op, Interior)
                if not isinstance(op.left, Identifier) or op.right is None:
                    raise CuplTreeError(f"malformed label on statement {index}")
                label = op.left
                op = op.right
                symbol = self.symbols.of(label)
                if op.kind == BLOCK:
                    symbol.target = index + 1
                    self.blocks[symbol.index] = index
                elif op.kind != END:
                    symbol.target = index
            flat.append((label, op))
        return flat

    def _match_ends(self, flat: List[Tuple[Optional[Identifier], Node]]) -> None:
        for symbol_index, opening in self.blocks.items():
            for address in range(opening + 1, len(flat)):
                label, op = flat[address]
                if label is not None and label.symbol == symbol_index and op.kind == END:
                    self.ends[opening] = address
                    break
            else:
                raise CuplCheckError(f"BLOCK {self.symbols[symbol_index].name} has no matching END")

    def _rewrite(self, node: Optional[Node], index: int) -> Optional[Node]:
        if not isinstance(node, Interior):
            return node
        if node.kind in (GO, OG, PERFORM):
            return self._transfer(node, index)
        if node.kind == LABEL:
            raise CuplTreeError("labels may only be attached to top-level statements")
        return Interior(node.kind, self._rewrite(node.left, index), self._rewrite(node.right, index))

    def _label_of(self, node: Interior) -> Symbol:
        if not isinstance(node.left, Identifier):
            raise CuplTreeError(f"{node.kind} without a label")
        return self.symbols.of(node.left)

    def _entered_blocks(self, source: int, target: int) -> Tuple[int, ...]:
        """Resume addresses for the blocks a jump from ``source`` to ``target`` enters, outermost first."""
        resume: List[int] = []
        for opening, end in sorted(self.ends.items()):
            if opening < target <= end and not opening < source <= end:
                resume.append(end + 1)
        return tuple(resume)

    def _transfer(self, node: Interior, index: int) -> Transfer:
        label = self._label_of(node)
        opening = self.blocks.get(label.index)
        if node.kind == GO:
            if label.target is None:
                raise CuplCheckError(f"GO to undefined label {label.name}")
            return Transfer(GO, label.name, label.target, self._entered_blocks(index, label.target))
        if opening is None:
            raise CuplCheckError(f"{node.kind} of {label.name}, which does not label a BLOCK")
        if node.kind == PERFORM:
            return Transfer(PERFORM, label.name, opening + 1)
        return Transfer(OG, label.name, self.ends[opening])


def resolve(tree: Optional[Node], symbols: SymbolTable) -> Program:
    return Resolver(symbols).resolve(tree)
