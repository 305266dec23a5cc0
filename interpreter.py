from __future__ import annotations
import json
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import numpy as np

import monitor
from checker import check
from cuplio import DEFAULT_FIELDWIDTH, DEFAULT_LINEWIDTH, OutputFormatter
from monitor import MATRIX, SCALAR, VECTOR, Value, make_scalar
from nodes import (
    ABS,
    ALL,
    ALLOCATE,
    AND,
    ATAN,
    BLOCK,
    COS,
    DATA,
    DEBUG_ALLOCATE,
    DEBUG_EXECUTE,
    DET,
    DIVIDE,
    DOT,
    ELSE,
    END,
    EQ,
    EXP,
    FLOOR,
    FOR,
    FROM,
    FWRITE,
    GE,
    GO,
    GT,
    IF,
    IFELSE,
    INDEX,
    INV,
    ITERATE,
    LABEL,
    LE,
    LET,
    LIST,
    LN,
    LOG,
    LT,
    MAX,
    MIN,
    MINUS,
    MULTIPLY,
    NE,
    OR,
    PERFORM,
    PLUS,
    POSMAX,
    POSMIN,
    POWER,
    RAND,
    READ,
    SGM,
    SQRT,
    STOP,
    SUBSCRIPT,
    TAG,
    TIMES,
    TO,
    TRC,
    TRN,
    UMINUS,
    UNTIL,
    WATCH,
    WHILE,
    WRITE,
    CuplError,
    CuplRuntimeError,
    CuplTreeError,
    Identifier,
    Interior,
    Node,
    Number,
    String,
    Transfer,
    iter_linked,
    stderr_sink,
    warning_text,
)
from resolver import Program, Statement, resolve
from symbols import Symbol, SymbolTable

# Bound on nested PERFORMs (and blocks entered by GO) awaiting their END.
MAX_DEPTH = 64
# Number of assignments traced after WATCH.
WATCH_COUNT = 10
# Substituted when READ runs out of DATA.
READ_SENTINEL = 1.0
# Resume-stack entry meaning "leave the current PERFORM region".
RETURN_MARKER = -1


@dataclass(frozen=True)
class Outcome:
    """What the driver does after a statement: continue, jump or finish."""

    kind: str
    target: Optional[int] = None
    # blocks entered by the jump, pushed once the jump lands
    resume: Tuple[int, ...] = ()


NEXT = Outcome("NEXT")
STOP_PROGRAM = Outcome("STOP")
END_OF_PROGRAM = Outcome("END_OF_PROGRAM")
RETURNED = Outcome("RETURN")


def jump(target: int, resume: Tuple[int, ...] = ()) -> Outcome:
    return Outcome("JUMP", target, resume)


@dataclass
class Datum:
    value: float
    name: Optional[str] = None


@dataclass
class Frame:
    name: str
    frame_id: str
    call_statement: Optional[int]


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    statement: Optional[int]
    text: Optional[str]
    rule: str


class StateLogger:
    def __init__(self, verbose: int, sink: Callable[[str], None], history: int = 1000) -> None:
        self.verbose = verbose
        self.sink = sink
        # only the recent past is needed for tracebacks
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        statement: Optional[int],
        text: Optional[str],
        rule: str,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            frame_id=frame.frame_id if frame else None,
            statement=statement,
            text=text,
            rule=rule,
        )
        self.entries.append(entry)
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.next_state_index += 1
        if self.verbose >= DEBUG_EXECUTE:
            where = frame.name if frame else "-"
            self.sink(f"cupl: [{entry.state_id}] {where}: statement {statement}: {text}")
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)


BuiltinImpl = Callable[..., Value]


@dataclass
class BuiltinFunction:
    name: str
    arity: int
    impl: BuiltinImpl

    def validate(self, node: Interior) -> None:
        if node.left is None or (self.arity == 2 and node.right is None):
            raise CuplTreeError(f"{self.name} expects {self.arity} operand(s)")


class Builtins:
    def __init__(self, rng: np.random.Generator) -> None:
        self.table: Dict[str, BuiltinFunction] = {}
        self._register(PLUS, 2, monitor.add)
        self._register(MINUS, 2, monitor.subtract)
        self._register(MULTIPLY, 2, monitor.multiply)
        self._register(DIVIDE, 2, monitor.divide)
        self._register(POWER, 2, monitor.power)
        self._register(MAX, 2, monitor.maximum)
        self._register(MIN, 2, monitor.minimum)
        self._register(DOT, 2, monitor.dot)
        self._register(UMINUS, 1, monitor.uminus)
        self._register(ABS, 1, monitor.abs_)
        self._register(ATAN, 1, monitor.atan)
        self._register(COS, 1, monitor.cos)
        self._register(EXP, 1, monitor.exp)
        self._register(FLOOR, 1, monitor.floor)
        self._register(LOG, 1, monitor.log)
        self._register(LN, 1, monitor.ln)
        self._register(SQRT, 1, monitor.sqrt)
        self._register(RAND, 1, lambda v: monitor.rand(v, rng))
        self._register(DET, 1, monitor.det)
        self._register(INV, 1, monitor.inv)
        self._register(POSMAX, 1, monitor.posmax)
        self._register(POSMIN, 1, monitor.posmin)
        self._register(SGM, 1, monitor.sgm)
        self._register(TRC, 1, monitor.trc)
        self._register(TRN, 1, monitor.trn)

        self.relations: Dict[str, Callable[[Value, Value], bool]] = {
            EQ: monitor.eq,
            NE: monitor.ne,
            LT: monitor.lt,
            GT: monitor.gt,
            LE: monitor.le,
            GE: monitor.ge,
        }

    def _register(self, name: str, arity: int, impl: BuiltinImpl) -> None:
        self.table[name] = BuiltinFunction(name=name, arity=arity, impl=impl)

    def has(self, name: str) -> bool:
        return name in self.table

    def invoke(self, interpreter: "Interpreter", node: Interior) -> Value:
        builtin = self.table[node.kind]
        builtin.validate(node)
        args = [interpreter._evaluate(node.left)]
        if builtin.arity == 2:
            args.append(interpreter._evaluate(node.right))
        return builtin.impl(*args)


class Interpreter:
    def __init__(
        self,
        program: Program,
        *,
        linewidth: int = DEFAULT_LINEWIDTH,
        fieldwidth: int = DEFAULT_FIELDWIDTH,
        verbose: int = 0,
        output_sink: Optional[Callable[[str], None]] = None,
        diagnostic_sink: Optional[Callable[[str], None]] = None,
        seed: Optional[int] = None,
        max_depth: int = MAX_DEPTH,
    ) -> None:
        self.program = program
        self.symbols: SymbolTable = program.symbols
        self.verbose = verbose
        self.diagnostic_sink = diagnostic_sink or stderr_sink
        self.formatter = OutputFormatter(output_sink, linewidth=linewidth, fieldwidth=fieldwidth)
        self.rng = np.random.default_rng(seed)
        self.builtins = Builtins(self.rng)
        self.max_depth = max_depth

        self.logger = StateLogger(verbose=verbose, sink=self.diagnostic_sink)
        self.call_stack: List[Frame] = []
        self.frame_counter = 0
        self.resume_stack: List[int] = []
        self.pc: Optional[int] = None
        self.code_end = len(program)
        self.data: List[Datum] = []
        self.data_cursor = 0
        self.warnings: List[str] = []

    def run(self) -> None:
        self.symbols.reset_values()
        self.formatter.reset()
        self.call_stack = []
        self.resume_stack = []
        self.data = []
        self.data_cursor = 0
        self._detach_data()
        self.call_stack.append(self._new_frame("<top-level>", None))
        try:
            outcome = self._run_region(0)
        except CuplError as error:
            if isinstance(error, CuplRuntimeError) and self.logger.entries:
                error.step_index = self.logger.entries[-1].step_index
            raise
        except RecursionError as exc:
            raise CuplRuntimeError("expression or PERFORM nesting too deep", rule="internal", statement=self.pc) from exc
        if outcome is END_OF_PROGRAM:
            self._warn("program ended without a STOP")
        self.call_stack.pop()

    def _detach_data(self) -> None:
        start = self.program.data_start()
        for statement in self.program.statements[start:]:
            if statement.kind != DATA:
                raise CuplTreeError(f"statement {statement.index} ({statement.describe()}) follows the DATA block")
            assert isinstance(statement.op, Interior)
            for item in iter_linked(statement.op.left, LIST):
                self.data.append(self._datum(item.left))
        self.code_end = start
        if start == len(self.program):
            self._warn("no DATA block")

    def _datum(self, node: Optional[Node]) -> Datum:
        if isinstance(node, Number):
            return Datum(node.value)
        if isinstance(node, Interior) and node.kind == UMINUS and isinstance(node.left, Number):
            return Datum(-node.left.value)
        if isinstance(node, Interior) and node.kind == TAG and isinstance(node.left, Identifier):
            inner = self._datum(node.right)
            return Datum(inner.value, node.left.name)
        raise CuplTreeError("DATA items must be numbers or tagged numbers")

    # ---- driver ----

    def _run_region(self, pc: int, bounds: Optional[Tuple[int, int]] = None) -> Outcome:
        """Run statements from ``pc`` until the region returns, stops or runs out.

        A region started by PERFORM has ``bounds``, the addresses of its first
        and last (END) statements; a jump outside them is handed back to the
        caller.
        """
        statements = self.program.statements
        while pc < self.code_end:
            statement = statements[pc]
            self.pc = pc
            self._log_step(statement)
            kind = statement.kind
            if kind == BLOCK:
                # blocks run only when entered by PERFORM or GO
                assert statement.end is not None
                pc = statement.end + 1
                continue
            if kind == END:
                resume = self._pop_resume(statement)
                if resume == RETURN_MARKER:
                    return RETURNED
                pc = resume
                continue
            try:
                outcome = self._execute(statement.op)
            except CuplRuntimeError as error:
                if error.statement is None:
                    error.statement = pc
                raise
            if outcome is NEXT:
                pc += 1
            elif outcome.kind == "JUMP":
                assert outcome.target is not None
                if bounds is not None and not bounds[0] <= outcome.target <= bounds[1]:
                    return outcome
                for address in outcome.resume:
                    self._push_resume(address, GO)
                pc = outcome.target
            else:
                return outcome
        return END_OF_PROGRAM

    def _push_resume(self, address: int, rule: str) -> None:
        if len(self.resume_stack) >= self.max_depth:
            raise CuplRuntimeError("too many PERFORM calls", rule=rule, statement=self.pc)
        self.resume_stack.append(address)

    def _pop_resume(self, statement: Statement) -> int:
        if not self.resume_stack:
            raise CuplRuntimeError("too many END statements", rule="END", statement=statement.index)
        return self.resume_stack.pop()

    def _perform(self, transfer: Transfer) -> Outcome:
        depth = len(self.resume_stack)
        self._push_resume(RETURN_MARKER, PERFORM)
        self.call_stack.append(self._new_frame(transfer.label, self.pc))
        caller = self.pc
        end = self.program[transfer.target - 1].end
        assert end is not None
        outcome = self._run_region(transfer.target, (transfer.target, end))
        self.call_stack.pop()
        self.pc = caller
        if outcome is RETURNED:
            return NEXT
        if outcome.kind == "JUMP":
            # a GO out of the block abandons this PERFORM and any blocks it entered
            del self.resume_stack[depth:]
        return outcome

    # ---- statements ----

    def _execute(self, op: Optional[Node]) -> Outcome:
        if op is None:
            raise CuplTreeError("missing statement body")
        kind = op.kind
        if isinstance(op, Transfer):
            if kind == PERFORM:
                return self._perform(op)
            return jump(op.target, op.resume)
        if not isinstance(op, Interior):
            raise CuplRuntimeError(f"unknown node type {kind}", rule=kind)
        if kind == LET:
            self._let(op)
            return NEXT
        if kind == READ:
            self._read(op)
            return NEXT
        if kind == WRITE:
            self._write(op)
            return NEXT
        if kind == STOP:
            return STOP_PROGRAM
        if kind == IF:
            if self._condition(op.left):
                return self._execute(op.right)
            return NEXT
        if kind == IFELSE:
            branches = op.right
            if not isinstance(branches, Interior) or branches.kind != ELSE:
                raise CuplTreeError("IFELSE without an ELSE node")
            if self._condition(op.left):
                return self._execute(branches.left)
            return self._execute(branches.right)
        if kind == WHILE or kind == UNTIL:
            return self._execute_conditional_loop(op)
        if kind == TIMES:
            return self._execute_times(op)
        if kind == FOR:
            return self._execute_for(op)
        if kind == WATCH:
            for node in iter_linked(op, WATCH):
                self._variable(node.left, WATCH).watchcount = WATCH_COUNT
            return NEXT
        if kind == ALLOCATE:
            self._allocate(op)
            return NEXT
        if kind == LABEL:
            return self._execute(op.right)
        raise CuplRuntimeError(f"unknown node type {kind}", rule=kind)

    def _execute_conditional_loop(self, op: Interior) -> Outcome:
        # post-test: the body always runs once
        until = op.kind == UNTIL
        while True:
            outcome = self._execute(op.left)
            if outcome is not NEXT:
                return outcome
            if self._condition(op.right) == until:
                return NEXT

    def _execute_times(self, op: Interior) -> Outcome:
        count = monitor.as_count(self._evaluate(op.right), TIMES)
        for _ in range(count):
            outcome = self._execute(op.left)
            if outcome is not NEXT:
                return outcome
        return NEXT

    def _execute_for(self, op: Interior) -> Outcome:
        header = op.right
        if isinstance(header, Interior) and header.kind == LET:
            items = [item.left for item in iter_linked(header.right, LIST)]
            if len(items) != 3:
                raise CuplTreeError("FOR needs a start, a step and an end")
            start_node, step_node, end_node = items
        elif isinstance(header, Interior) and header.kind == ITERATE:
            span = header.right
            if not isinstance(span, Interior) or span.kind != FROM:
                raise CuplTreeError("ITERATE without FROM")
            bound = span.right
            if not isinstance(bound, Interior) or bound.kind != TO:
                raise CuplTreeError("ITERATE without TO")
            start_node, end_node, step_node = span.left, bound.left, bound.right
        else:
            raise CuplTreeError("FOR without an iteration header")
        variable = self._variable(header.left, FOR)
        start = self._scalar(self._evaluate(start_node), FOR)
        step = 1.0 if step_node is None else self._scalar(self._evaluate(step_node), FOR)
        end = self._scalar(self._evaluate(end_node), FOR)
        if step == 0.0:
            raise CuplRuntimeError("FOR step is zero", rule=FOR)

        current = start
        while (current <= end if step > 0 else current >= end) or monitor.fuzzy_equal(current, end):
            self._assign(variable, make_scalar(current))
            outcome = self._execute(op.left)
            if outcome is not NEXT:
                return outcome
            # the body may have changed the loop variable
            current = self._scalar(variable.value, FOR) + step
        return NEXT

    def _let(self, op: Interior) -> None:
        target = op.left
        value = self._evaluate(op.right)
        if isinstance(target, Interior) and target.kind == SUBSCRIPT:
            variable = self._variable(target.left, LET)
            indices = self._indices(target.right)
            updated = monitor.replace_element(variable.value, indices, self._scalar(value, LET))
            self._assign(variable, updated)
            return
        self._assign(self._variable(target, LET), value)

    def _assign(self, symbol: Symbol, value: Value) -> None:
        if self.verbose >= DEBUG_ALLOCATE:
            self.diagnostic_sink(
                f"cupl: {symbol.name}: releasing {symbol.value.describe()}, storing {value.describe()}"
            )
        symbol.value = value
        if symbol.watchcount > 0:
            symbol.watchcount -= 1
            self.formatter.reset()
            self._write_named(symbol.name, value)
            self.formatter.end_line()

    def _allocate(self, op: Interior) -> None:
        variable = self._variable(op.left, ALLOCATE)
        dims = op.right
        if not isinstance(dims, Interior) or dims.kind != INDEX:
            raise CuplTreeError("ALLOCATE needs dimensions")
        first = monitor.as_subscript(self._evaluate(dims.left), ALLOCATE)
        if dims.right is None:
            value = monitor.allocate_value(VECTOR, 1, first)
        else:
            second = monitor.as_subscript(self._evaluate(dims.right), ALLOCATE)
            value = monitor.allocate_value(MATRIX, first, second)
        self._assign(variable, value)

    def _read(self, op: Interior) -> None:
        for node in iter_linked(op, READ):
            variable = self._variable(node.left, READ)
            current = variable.value
            if current.rank == SCALAR:
                self._assign(variable, make_scalar(self._next_datum(variable.name)))
                continue
            items = [self._next_datum(variable.name) for _ in range(current.size)]
            self._assign(
                variable,
                Value(rank=current.rank, width=current.width, depth=current.depth, elements=np.array(items, dtype=np.float64)),
            )

    def _next_datum(self, name: str) -> float:
        if self.data_cursor >= len(self.data):
            self._warn(f"DATA exhausted reading {name}, using {READ_SENTINEL:g}")
            return READ_SENTINEL
        datum = self.data[self.data_cursor]
        self.data_cursor += 1
        if datum.name is not None and datum.name != name:
            self._warn(f"READ of {name} consumed DATA item tagged {datum.name}")
        return datum.value

    def _write(self, op: Interior) -> None:
        formatter = self.formatter
        formatter.reset()
        for node in iter_linked(op, WRITE):
            item = node.left
            if item is None:
                continue
            if isinstance(item, String):
                formatter.write_string(item.text)
            elif isinstance(item, Identifier):
                self._write_named(item.name, self.symbols.of(item).value)
            elif item.kind == ALL:
                for symbol in self.symbols:
                    if symbol.assigned and not symbol.is_label:
                        self._write_named(symbol.name, symbol.value)
            elif item.kind == FWRITE:
                assert isinstance(item, Interior)
                for x in self._evaluate(item.left).elements:
                    formatter.write_scalar(None, float(x))
            else:
                for x in self._evaluate(item).elements:
                    formatter.write_scalar(None, float(x))
        formatter.end_line()

    def _write_named(self, name: str, value: Value) -> None:
        for offset, x in enumerate(value.elements):
            self.formatter.write_scalar(name + monitor.subscripts_for(value, offset), float(x))

    # ---- expressions ----

    def _evaluate(self, node: Optional[Node]) -> Value:
        if node is None:
            raise CuplTreeError("missing operand")
        if isinstance(node, Number):
            return make_scalar(node.value)
        if isinstance(node, Identifier):
            return monitor.copy_value(self.symbols.of(node).value)
        if isinstance(node, String):
            raise CuplRuntimeError("strings can only be written", rule="STRING")
        if not isinstance(node, Interior):
            raise CuplRuntimeError(f"unknown node type {node.kind}", rule=node.kind)
        kind = node.kind
        if self.builtins.has(kind):
            return self.builtins.invoke(self, node)
        if kind == SUBSCRIPT:
            variable = self._variable(node.left, SUBSCRIPT)
            return monitor.element(variable.value, self._indices(node.right))
        if kind in self.builtins.relations or kind == AND or kind == OR:
            return make_scalar(1.0 if self._condition(node) else 0.0)
        raise CuplRuntimeError(f"unknown node type {kind}", rule=kind)

    def _condition(self, node: Optional[Node]) -> bool:
        if node is None:
            raise CuplTreeError("missing condition")
        kind = node.kind
        if isinstance(node, Interior):
            relation = self.builtins.relations.get(kind)
            if relation is not None:
                return relation(self._evaluate(node.left), self._evaluate(node.right))
            if kind == AND or kind == OR:
                # both sides are always evaluated
                left = self._condition(node.left)
                right = self._condition(node.right)
                return (left and right) if kind == AND else (left or right)
        return self._scalar(self._evaluate(node), "IF") != 0.0

    def _indices(self, node: Optional[Node]) -> List[int]:
        if not isinstance(node, Interior) or node.kind != INDEX:
            raise CuplTreeError("subscript without an INDEX node")
        indices = [monitor.as_subscript(self._evaluate(node.left), SUBSCRIPT)]
        if node.right is not None:
            indices.append(monitor.as_subscript(self._evaluate(node.right), SUBSCRIPT))
        return indices

    def _variable(self, node: Optional[Node], rule: str) -> Symbol:
        if not isinstance(node, Identifier):
            raise CuplTreeError(f"{rule} needs a variable")
        return self.symbols.of(node)

    def _scalar(self, value: Value, rule: str) -> float:
        if value.rank != SCALAR:
            raise CuplRuntimeError(f"{rule} needs a scalar, got a {value.describe()}", rule=rule)
        return value.scalar()

    # ---- bookkeeping ----

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        self.diagnostic_sink(warning_text(message))

    def _new_frame(self, name: str, call_statement: Optional[int]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, frame_id=frame_id, call_statement=call_statement)

    def _log_step(self, statement: Statement) -> None:
        frame = self.call_stack[-1] if self.call_stack else None
        self.logger.record(frame=frame, statement=statement.index, text=statement.describe(), rule=statement.kind)


@dataclass
class TracebackFrame:
    name: str
    statement: Optional[int]
    text: Optional[str]
    state_entry: Optional[StateEntry]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for frame in self.interpreter.call_stack:
            entry = self.interpreter.logger.last_entry_for_frame(frame.frame_id)
            frames.append(
                TracebackFrame(
                    name=frame.name,
                    statement=entry.statement if entry else frame.call_statement,
                    text=entry.text if entry else None,
                    state_entry=entry,
                )
            )
        return frames

    def format_line(self, error: CuplError) -> str:
        if isinstance(error, CuplRuntimeError) and error.statement is not None:
            return f"cupl: {error} (statement {error.statement})"
        return f"cupl: {error}"

    def format_text(self, error: CuplError) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            if frame.statement is not None:
                lines.append(f"  statement {frame.statement}, in {frame.name}")
                if frame.text:
                    lines.append(f"    {frame.text}")
            else:
                lines.append(f"  <unknown statement> in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
        rule = getattr(error, "rule", None) or "runtime"
        lines.append(f"{error.__class__.__name__}: {error} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: CuplError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name, "statement": frame.statement}
            if frame.text:
                entry["text"] = frame.text
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": str(error),
                "rule": getattr(error, "rule", None),
                "statement": getattr(error, "statement", None),
                "failing_step_index": getattr(error, "step_index", None),
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)


def prepare(
    tree: Optional[Node],
    symbols: SymbolTable,
    **options: Any,
) -> Interpreter:
    """Check and resolve ``tree``, returning an interpreter ready to run."""
    check(tree, symbols, diagnostic_sink=options.get("diagnostic_sink"), verbose=options.get("verbose", 0))
    program = resolve(tree, symbols)
    return Interpreter(program, **options)


def interpret(tree: Optional[Node], symbols: SymbolTable, **options: Any) -> Interpreter:
    """Check, resolve and run a program tree."""
    interpreter = prepare(tree, symbols, **options)
    interpreter.run()
    return interpreter
