from __future__ import annotations
import sys
from dataclasses import dataclass
from typing import Callable, ClassVar, Iterable, Iterator, Optional, Tuple, Union


class CuplError(Exception):
    """Base class for interpreter errors."""


class CuplTreeError(CuplError):
    """Raised when a program tree is structurally malformed."""


class CuplCheckError(CuplError):
    """Raised when static checking or label resolution fails."""


class CuplRuntimeError(CuplError):
    """Raised for fatal conditions during evaluation."""

    def __init__(self, message: str, *, rule: Optional[str] = None, statement: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.rule = rule
        self.statement = statement
        self.step_index: Optional[int] = None


# Verbosity levels; each includes the ones below it.
DEBUG_PARSEDUMP = 1
DEBUG_CHECKDUMP = 2
DEBUG_EXECUTE = 3
DEBUG_ALLOCATE = 4


def stderr_sink(text: str) -> None:
    print(text, file=sys.stderr)


def warning_text(message: str) -> str:
    return f"cupl: warning: {message}"


# Syntax classes.  Atoms first, then statement-level constructs, then
# expression operators.
NUMBER = "NUMBER"
IDENTIFIER = "IDENTIFIER"
STRING = "STRING"

STATEMENT = "STATEMENT"
LABEL = "LABEL"
BLOCK = "BLOCK"
END = "END"
LET = "LET"
READ = "READ"
WRITE = "WRITE"
FWRITE = "FWRITE"
ALL = "ALL"
WATCH = "WATCH"
ALLOCATE = "ALLOCATE"
GO = "GO"
OG = "OG"
PERFORM = "PERFORM"
IF = "IF"
IFELSE = "IFELSE"
ELSE = "ELSE"
WHILE = "WHILE"
UNTIL = "UNTIL"
TIMES = "TIMES"
FOR = "FOR"
ITERATE = "ITERATE"
FROM = "FROM"
TO = "TO"
STOP = "STOP"
DATA = "DATA"
LIST = "LIST"
TAG = "TAG"
SUBSCRIPT = "SUBSCRIPT"
INDEX = "INDEX"

PLUS = "PLUS"
MINUS = "MINUS"
MULTIPLY = "MULTIPLY"
DIVIDE = "DIVIDE"
POWER = "POWER"
UMINUS = "UMINUS"

ABS = "ABS"
ATAN = "ATAN"
COS = "COS"
EXP = "EXP"
FLOOR = "FLOOR"
LOG = "LOG"
LN = "LN"
SQRT = "SQRT"
MAX = "MAX"
MIN = "MIN"
RAND = "RAND"

DET = "DET"
DOT = "DOT"
INV = "INV"
POSMAX = "POSMAX"
POSMIN = "POSMIN"
SGM = "SGM"
TRC = "TRC"
TRN = "TRN"

EQ = "EQ"
NE = "NE"
LT = "LT"
GT = "GT"
LE = "LE"
GE = "GE"
AND = "AND"
OR = "OR"

ATOMS = {NUMBER, IDENTIFIER, STRING}

UNARY_OPERATORS = {UMINUS, ABS, ATAN, COS, EXP, FLOOR, LOG, LN, SQRT, RAND, DET, INV, POSMAX, POSMIN, SGM, TRC, TRN}
BINARY_OPERATORS = {PLUS, MINUS, MULTIPLY, DIVIDE, POWER, MAX, MIN, DOT}
RELATIONS = {EQ, NE, LT, GT, LE, GE}
CONNECTIVES = {AND, OR}

INTERIOR_KINDS = (
    {
        STATEMENT, LABEL, BLOCK, END, LET, READ, WRITE, FWRITE, ALL, WATCH, ALLOCATE,
        GO, OG, PERFORM, IF, IFELSE, ELSE, WHILE, UNTIL, TIMES, FOR, ITERATE, FROM, TO,
        STOP, DATA, LIST, TAG, SUBSCRIPT, INDEX,
    }
    | UNARY_OPERATORS
    | BINARY_OPERATORS
    | RELATIONS
    | CONNECTIVES
)

# Operand roles used by the consistency checker.
SLABELREF = {GO}
BLABELREF = {PERFORM, OG}
VARSET = {LET, READ, ITERATE}
NO_LEFT_READ = {FOR, GO, OG, LABEL, ALLOCATE, WATCH, ITERATE, PERFORM}
NO_RIGHT_READ = {PERFORM}


def is_atomic(kind: str) -> bool:
    return kind in ATOMS


def is_slabelref(kind: str) -> bool:
    return kind in SLABELREF


def is_blabelref(kind: str) -> bool:
    return kind in BLABELREF


def is_varset(kind: str) -> bool:
    return kind in VARSET


def reads_left(kind: str) -> bool:
    return kind not in NO_LEFT_READ


def reads_right(kind: str) -> bool:
    return kind not in NO_RIGHT_READ


class Node:
    kind: ClassVar[str]


@dataclass
class Number(Node):
    value: float
    kind: ClassVar[str] = NUMBER


@dataclass
class Identifier(Node):
    name: str
    symbol: int
    kind: ClassVar[str] = IDENTIFIER


@dataclass
class String(Node):
    text: str
    kind: ClassVar[str] = STRING


@dataclass
class Interior(Node):
    kind: str  # type: ignore[misc]
    left: Optional[Node] = None
    right: Optional[Node] = None


@dataclass
class Transfer(Node):
    """A GO, OG or PERFORM whose label has been bound to a statement address.

    ``resume`` is only set for a GO that enters blocks from outside: one
    address per entered block, outermost first, each the statement after
    that block's END.
    """

    kind: str  # type: ignore[misc]
    label: str
    target: int
    resume: Tuple[int, ...] = ()


Operand = Union[Node, float, str, None]


def cons(kind: str, left: Operand = None, right: Operand = None) -> Interior:
    """Build an interior node; bare floats become Numbers and bare str become Strings."""
    if kind not in INTERIOR_KINDS:
        raise CuplTreeError(f"unknown node type {kind}")
    return Interior(kind, _coerce(left), _coerce(right))


def _coerce(operand: Operand) -> Optional[Node]:
    if operand is None or isinstance(operand, Node):
        return operand
    if isinstance(operand, bool):
        raise CuplTreeError("booleans are not CUPL operands")
    if isinstance(operand, (int, float)):
        return Number(float(operand))
    if isinstance(operand, str):
        return String(operand)
    raise CuplTreeError(f"cannot use {operand!r} as a tree operand")


def linked(kind: str, items: Iterable[Operand]) -> Optional[Interior]:
    """Build a right-linked list of ``kind`` nodes (READ, WRITE, WATCH, LIST, STATEMENT)."""
    head: Optional[Interior] = None
    for item in reversed(list(items)):
        head = cons(kind, item, head)
    return head


def chain(operations: Iterable[Node]) -> Optional[Interior]:
    """Chain statement operations into a program."""
    return linked(STATEMENT, operations)


def iter_linked(node: Optional[Node], kind: str) -> Iterator[Interior]:
    while node is not None:
        if not isinstance(node, Interior) or node.kind != kind:
            raise CuplTreeError(f"expected {kind} node, found {node.kind}")
        yield node
        node = node.right


def iter_statements(tree: Optional[Node]) -> Iterator[Interior]:
    while tree is not None:
        if not isinstance(tree, Interior) or tree.kind != STATEMENT:
            raise CuplTreeError(f"non-statement node {tree.kind} at top level")
        yield tree
        tree = tree.right


def recursive_apply(tree: Optional[Node], fn: Callable[[Node], None], *, skip: Iterable[str] = ()) -> None:
    """Post-order traversal of a program: each statement's operation tree is
    visited left, right, then the node itself.

    The statement chain is walked iteratively so long programs do not hit the
    recursion limit.  Statements whose operation kind is in ``skip`` are not
    visited.
    """
    skipped = set(skip)
    for statement in iter_statements(tree):
        operation = statement.left
        if operation is None:
            raise CuplTreeError("statement without an operation")
        if operation.kind in skipped:
            continue
        _apply(operation, fn)


def _apply(node: Optional[Node], fn: Callable[[Node], None]) -> None:
    if node is None:
        return
    if isinstance(node, Interior):
        _apply(node.left, fn)
        _apply(node.right, fn)
    fn(node)
