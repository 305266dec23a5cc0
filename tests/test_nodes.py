import pytest

from nodes import (
    DATA,
    GO,
    LET,
    LIST,
    PERFORM,
    PLUS,
    STOP,
    CuplTreeError,
    Identifier,
    Interior,
    Number,
    String,
    Transfer,
    chain,
    cons,
    is_blabelref,
    is_slabelref,
    is_varset,
    iter_linked,
    linked,
    reads_left,
    reads_right,
    recursive_apply,
)


def test_cons_coerces_literals():
    node = cons(PLUS, 2, "TEXT")
    assert node.left == Number(2.0)
    assert node.right == String("TEXT")


def test_cons_rejects_unknown_kinds_and_operands():
    with pytest.raises(CuplTreeError, match="unknown node type"):
        cons("NOPE")
    with pytest.raises(CuplTreeError):
        cons(PLUS, True, 1.0)
    with pytest.raises(CuplTreeError):
        cons(PLUS, [1.0], 1.0)


def test_linked_lists():
    head = linked(LIST, [1.0, 2.0, 3.0])
    assert [item.left.value for item in iter_linked(head, LIST)] == [1.0, 2.0, 3.0]
    assert linked(LIST, []) is None
    with pytest.raises(CuplTreeError):
        list(iter_linked(cons(STOP), LIST))


def test_operand_roles():
    assert is_slabelref(GO) and not is_slabelref(PERFORM)
    assert is_blabelref(PERFORM)
    assert is_varset(LET) and not is_varset(PLUS)
    assert not reads_left(PERFORM) and not reads_right(PERFORM)
    assert reads_left(PLUS) and reads_right(LET)


def test_recursive_apply_is_post_order_and_skips_data(symbols):
    x = symbols.identifier("X")
    tree = chain([cons(LET, x, cons(PLUS, 1.0, 2.0)), cons(DATA, linked(LIST, [9.0]))])
    visited = []
    recursive_apply(tree, lambda node: visited.append(node), skip=(DATA,))
    kinds = [node.kind for node in visited]
    assert kinds == ["IDENTIFIER", "NUMBER", "NUMBER", PLUS, LET]


def test_recursive_apply_handles_long_programs():
    tree = chain([cons(STOP) for _ in range(20000)])
    count = []
    recursive_apply(tree, lambda node: count.append(node))
    assert len(count) == 20000


def test_symbol_table(symbols):
    first = symbols.identifier("A")
    again = symbols.identifier("A")
    other = symbols.identifier("B")
    assert first == again == Identifier("A", 0)
    assert other.symbol == 1
    assert symbols.of(again).node is first
    assert symbols.has("B") and not symbols.has("C")
    assert len(symbols) == 2
    assert [symbol.name for symbol in symbols] == ["A", "B"]
    with pytest.raises(KeyError):
        symbols.lookup("C")


def test_interior_defaults():
    node = Interior(STOP)
    assert node.left is None and node.right is None


def test_transfer_fields():
    go = Transfer(GO, "L", 3)
    assert (go.kind, go.label, go.target, go.resume) == (GO, "L", 3, ())
    assert Transfer(GO, "B", 2, (5,)).resume == (5,)
    assert Number(1.0).kind == "NUMBER"
