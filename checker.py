"""Static consistency checks on identifiers and labels.

One post-order pass counts, for every symbol, how often it is defined and
referenced as a statement label or a block label, and how often it is
assigned and used as a variable.  The counts are then checked: dangling
label references and identifiers that play both roles are fatal, unused
labels and half-used variables only draw a warning.
"""

from __future__ import annotations
from typing import Callable, List, Optional

from nodes import (
    ALL,
    BLOCK,
    DATA,
    DEBUG_CHECKDUMP,
    END,
    LABEL,
    SUBSCRIPT,
    WRITE,
    CuplCheckError,
    Identifier,
    Interior,
    Node,
    is_blabelref,
    is_slabelref,
    is_varset,
    reads_left,
    reads_right,
    recursive_apply,
    stderr_sink,
    warning_text,
)
from symbols import Symbol, SymbolTable


class Checker:
    def __init__(
        self,
        symbols: SymbolTable,
        *,
        diagnostic_sink: Optional[Callable[[str], None]] = None,
        verbose: int = 0,
    ) -> None:
        self.symbols = symbols
        self.diagnostic_sink = diagnostic_sink or stderr_sink
        self.verbose = verbose
        self.warnings: List[str] = []

    def check(self, tree: Optional[Node]) -> None:
        for symbol in self.symbols:
            symbol.reset_counters()
        recursive_apply(tree, self._mark, skip=(DATA,))
        if self.verbose >= DEBUG_CHECKDUMP:
            self.dump()
        for symbol in self.symbols:
            self._enforce(symbol)

    def _symbol(self, node: Optional[Node]) -> Optional[Symbol]:
        if isinstance(node, Identifier):
            return self.symbols.of(node)
        return None

    def _mark(self, node: Node) -> None:
        if not isinstance(node, Interior):
            return
        kind = node.kind
        if kind == LABEL:
            label = self._symbol(node.left)
            guarded = node.right
            if label is None or guarded is None:
                raise CuplCheckError("LABEL node without a label or a guarded statement")
            if guarded.kind == BLOCK:
                label.blabeldef += 1
            elif guarded.kind != END:
                label.slabeldef += 1
            return
        if is_slabelref(kind) or is_blabelref(kind):
            label = self._symbol(node.left)
            if label is None:
                raise CuplCheckError(f"{kind} without a label")
            if is_slabelref(kind):
                label.slabelref += 1
            else:
                label.blabelref += 1
            return
        if is_varset(kind):
            target = node.left
            if isinstance(target, Interior) and target.kind == SUBSCRIPT:
                target = target.left
            variable = self._symbol(target)
            if variable is None:
                raise CuplCheckError(f"{kind} must set a variable")
            variable.assigned += 1
            used = self._symbol(node.right)
            if used is not None and reads_right(kind):
                used.used += 1
            return
        if kind == WRITE and node.left is not None and node.left.kind == ALL:
            # WRITE ALL reads everything assigned so far
            for symbol in self.symbols:
                if symbol.assigned:
                    symbol.used += 1
        left = self._symbol(node.left)
        if left is not None and reads_left(kind):
            left.used += 1
        right = self._symbol(node.right)
        if right is not None and reads_right(kind):
            right.used += 1

    def _enforce(self, symbol: Symbol) -> None:
        name = symbol.name
        if symbol.label_refs and not symbol.label_defs:
            raise CuplCheckError(f"label {name} is referenced but never defined")
        if symbol.blabelref and not symbol.blabeldef:
            raise CuplCheckError(f"{name} is performed but does not label a BLOCK")
        if symbol.label_defs > 1:
            raise CuplCheckError(f"label {name} is defined more than once")
        if symbol.is_label and symbol.is_variable:
            raise CuplCheckError(f"{name} is used both as a label and as a variable")
        if symbol.label_defs and not symbol.label_refs:
            self._warn(f"label {name} is defined but never referenced")
        if symbol.used and not symbol.assigned:
            self._warn(f"variable {name} is used but never assigned")
        if symbol.assigned and not symbol.used:
            self._warn(f"variable {name} is assigned but never used")

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        self.diagnostic_sink(warning_text(message))

    def dump(self) -> None:
        for symbol in self.symbols:
            counts = " ".join(f"{key}={count}" for key, count in symbol.counters().items())
            self.diagnostic_sink(f"{symbol.name:<12} {counts}")


def check(
    tree: Optional[Node],
    symbols: SymbolTable,
    *,
    diagnostic_sink: Optional[Callable[[str], None]] = None,
    verbose: int = 0,
) -> List[str]:
    """Run the consistency checks; returns the warnings issued."""
    checker = Checker(symbols, diagnostic_sink=diagnostic_sink, verbose=verbose)
    checker.check(tree)
    return checker.warnings
