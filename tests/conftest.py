"""Shared fixtures for the CUPL test suite."""

from dataclasses import dataclass, field
from typing import List, Optional

import pytest

from interpreter import Interpreter, interpret
from nodes import (
    BLOCK,
    DATA,
    END,
    LABEL,
    LET,
    LIST,
    WRITE,
    Identifier,
    Interior,
    Node,
    chain,
    cons,
    linked,
)
from symbols import SymbolTable


class ProgramBuilder:
    """Shorthand for building program trees the way a front end would."""

    def __init__(self, symbols: SymbolTable) -> None:
        self.symbols = symbols

    def id(self, name: str) -> Identifier:
        return self.symbols.identifier(name)

    def label(self, name: str, op: Node) -> Interior:
        return cons(LABEL, self.id(name), op)

    def block(self, name: str) -> Interior:
        return self.label(name, cons(BLOCK))

    def end(self, name: str) -> Interior:
        return self.label(name, cons(END))

    def let(self, name: str, expr) -> Interior:
        return cons(LET, self.id(name), expr)

    def write(self, *items) -> Interior:
        return linked(WRITE, items)

    def data(self, *items) -> Interior:
        return cons(DATA, linked(LIST, items))

    def program(self, *ops: Node) -> Optional[Interior]:
        return chain(ops)


@dataclass
class RunResult:
    output: str
    diagnostics: List[str] = field(default_factory=list)
    interpreter: Optional[Interpreter] = None

    @property
    def warnings(self) -> List[str]:
        return [line for line in self.diagnostics if line.startswith("cupl: warning: ")]


@pytest.fixture
def symbols():
    return SymbolTable()


@pytest.fixture
def b(symbols):
    return ProgramBuilder(symbols)


@pytest.fixture
def run_program():
    """Run a tree through check, resolve and evaluate, capturing both streams."""

    def run(tree, symbols, **options) -> RunResult:
        output: List[str] = []
        diagnostics: List[str] = []
        interpreter = interpret(
            tree,
            symbols,
            output_sink=output.append,
            diagnostic_sink=diagnostics.append,
            **options,
        )
        return RunResult("".join(output), diagnostics, interpreter)

    return run
