import pytest

from checker import Checker, check
from interpreter import interpret
from nodes import (
    ALL,
    GO,
    OG,
    PERFORM,
    PLUS,
    STOP,
    SUBSCRIPT,
    INDEX,
    TAG,
    WRITE,
    CuplCheckError,
    CuplTreeError,
    Interior,
    cons,
)


def run_check(tree, symbols):
    diagnostics = []
    warnings = check(tree, symbols, diagnostic_sink=diagnostics.append)
    return warnings, diagnostics


def test_clean_program_has_no_warnings(b, symbols):
    tree = b.program(b.let("X", cons(PLUS, 2.0, 3.0)), b.write(b.id("X")), cons(STOP))
    warnings, diagnostics = run_check(tree, symbols)
    assert warnings == []
    assert diagnostics == []
    x = symbols.lookup("X")
    assert (x.assigned, x.used) == (1, 1)


def test_used_but_never_assigned(b, symbols):
    tree = b.program(b.write(b.id("Y")), cons(STOP))
    warnings, diagnostics = run_check(tree, symbols)
    assert warnings == ["variable Y is used but never assigned"]
    assert diagnostics == ["cupl: warning: variable Y is used but never assigned"]


def test_assigned_but_never_used(b, symbols):
    tree = b.program(b.let("X", 1.0), cons(STOP))
    warnings, _ = run_check(tree, symbols)
    assert warnings == ["variable X is assigned but never used"]


def test_unreferenced_label(b, symbols):
    tree = b.program(b.label("L", b.let("X", 1.0)), b.write(b.id("X")), cons(STOP))
    warnings, _ = run_check(tree, symbols)
    assert warnings == ["label L is defined but never referenced"]
    assert symbols.lookup("L").slabeldef == 1


def test_go_to_undefined_label_is_fatal(b, symbols):
    tree = b.program(cons(GO, b.id("NOWHERE")), cons(STOP))
    with pytest.raises(CuplCheckError, match="NOWHERE is referenced but never defined"):
        run_check(tree, symbols)


def test_perform_of_plain_label_is_fatal(b, symbols):
    tree = b.program(
        cons(PERFORM, b.id("L")),
        b.label("L", cons(STOP)),
    )
    with pytest.raises(CuplCheckError, match="does not label a BLOCK"):
        run_check(tree, symbols)


def test_duplicate_label_is_fatal(b, symbols):
    tree = b.program(
        b.label("L", cons(STOP)),
        b.label("L", cons(STOP)),
        cons(GO, b.id("L")),
    )
    with pytest.raises(CuplCheckError, match="defined more than once"):
        run_check(tree, symbols)


def test_label_used_as_variable_is_fatal(b, symbols):
    tree = b.program(
        b.label("L", b.let("X", b.id("L"))),
        b.write(b.id("X")),
        cons(GO, b.id("L")),
    )
    with pytest.raises(CuplCheckError, match="both as a label and as a variable"):
        run_check(tree, symbols)


def test_block_labels(b, symbols):
    tree = b.program(
        cons(PERFORM, b.id("B")),
        cons(STOP),
        b.block("B"),
        cons(OG, b.id("B")),
        b.end("B"),
    )
    warnings, _ = run_check(tree, symbols)
    assert warnings == []
    block = symbols.lookup("B")
    assert (block.blabeldef, block.blabelref, block.slabeldef) == (1, 2, 0)


def test_subscripted_let_assigns_the_array(b, symbols):
    target = cons(SUBSCRIPT, b.id("V"), cons(INDEX, 1.0))
    tree = b.program(cons("LET", target, 2.0), cons(STOP))
    run_check(tree, symbols)
    v = symbols.lookup("V")
    assert v.assigned == 1
    assert v.used == 1


def test_data_is_not_checked(b, symbols):
    tree = b.program(
        b.let("X", 1.0),
        b.write(b.id("X")),
        cons(STOP),
        b.data(cons(TAG, b.id("Z"), 3.0)),
    )
    warnings, _ = run_check(tree, symbols)
    assert warnings == []
    assert not any(symbols.lookup("Z").counters().values())


def test_write_all_uses_assigned_variables(b, symbols):
    tree = b.program(b.let("X", 1.0), b.let("Y", 2.0), cons(WRITE, cons(ALL)), cons(STOP))
    warnings, _ = run_check(tree, symbols)
    assert warnings == []


def test_check_dump_at_verbosity_two(b, symbols):
    tree = b.program(b.let("X", 1.0), b.write(b.id("X")), cons(STOP))
    diagnostics = []
    Checker(symbols, diagnostic_sink=diagnostics.append, verbose=2).check(tree)
    assert len(diagnostics) == 1
    assert diagnostics[0].startswith("X")
    assert "assigned=1" in diagnostics[0]
    assert "used=1" in diagnostics[0]


def test_non_statement_at_top_level(symbols):
    with pytest.raises(CuplTreeError, match="non-statement"):
        run_check(cons(STOP), symbols)


def test_check_failure_happens_before_output(b, symbols):
    tree = b.program(b.write("HELLO"), cons(GO, b.id("NOWHERE")), cons(STOP))
    output = []
    with pytest.raises(CuplCheckError):
        interpret(tree, symbols, output_sink=output.append, diagnostic_sink=lambda text: None)
    assert output == []


def test_unknown_nodes_mark_identifier_operands_as_used(symbols):
    x = symbols.identifier("X")
    tree = cons("STATEMENT", Interior("BOGUS", x, None))
    warnings, _ = run_check(tree, symbols)
    assert warnings == ["variable X is used but never assigned"]
