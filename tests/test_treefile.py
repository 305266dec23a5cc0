import io
import json

import pytest

from interpreter import interpret
from nodes import (
    LET,
    PERFORM,
    PLUS,
    STOP,
    CuplTreeError,
    Identifier,
    Number,
    String,
    cons,
    iter_statements,
)
from treefile import TreeLoader, dumps, load, loads

ADD_AND_WRITE = [
    {"op": "LET", "left": {"id": "X"}, "right": {"op": "PLUS", "left": 2, "right": 3}},
    {"op": "WRITE", "left": {"id": "X"}},
    {"op": "STOP"},
]


def run_tree(tree, symbols):
    output = []
    interpret(tree, symbols, output_sink=output.append, diagnostic_sink=lambda text: None)
    return "".join(output)


def test_load_statement_list():
    tree, symbols = loads(json.dumps(ADD_AND_WRITE))
    operations = [statement.left for statement in iter_statements(tree)]
    assert [op.kind for op in operations] == [LET, "WRITE", STOP]
    assert operations[0].right.left == Number(2.0)
    assert run_tree(tree, symbols).strip() == "X = 5.000000000"


def test_program_object_and_file_handle():
    tree, symbols = load(io.StringIO(json.dumps({"program": ADD_AND_WRITE})))
    assert len(list(iter_statements(tree))) == 3
    assert [symbol.name for symbol in symbols] == ["X"]


def test_identifiers_are_interned_in_order_of_appearance():
    document = [
        {"op": "READ", "left": {"id": "B"}, "right": {"op": "READ", "left": {"id": "A"}}},
        {"op": "WRITE", "left": {"id": "A"}, "right": {"op": "WRITE", "left": {"id": "B"}}},
        {"op": "WRITE", "left": {"str": "DONE"}},
    ]
    tree, symbols = loads(json.dumps(document))
    assert [symbol.name for symbol in symbols] == ["B", "A"]
    read = next(iter_statements(tree)).left
    assert read.left == Identifier("B", 0)
    assert read.right.left == Identifier("A", 1)
    assert symbols.lookup("A").node is read.right.left
    last = list(iter_statements(tree))[-1].left
    assert last.left == String("DONE")


def test_chained_statement_tree():
    document = {
        "program": {
            "op": "STATEMENT",
            "left": {"op": "STOP"},
            "right": {"op": "STATEMENT", "left": {"op": "DATA", "left": {"op": "LIST", "left": 1}}},
        }
    }
    tree, _ = loads(json.dumps(document))
    assert [statement.left.kind for statement in iter_statements(tree)] == [STOP, "DATA"]


@pytest.mark.parametrize(
    "document",
    [
        [{"op": "FROBNICATE"}],
        [{"op": "STOP", "middle": 1}],
        [True],
        [None],
        [{"id": ""}],
        [{"str": 5}],
        {"statements": []},
        {"program": {"op": "STOP"}},
        [["STOP"]],
    ],
)
def test_malformed_documents(document):
    with pytest.raises(CuplTreeError):
        loads(json.dumps(document))


def test_invalid_json():
    with pytest.raises(CuplTreeError, match="invalid tree document"):
        loads("{not json")


def test_dump_then_load_runs_the_same(b, symbols):
    tree = b.program(
        cons(PERFORM, b.id("B")),
        cons(STOP),
        b.block("B"),
        b.let("X", cons(PLUS, 1.5, 2.0)),
        b.write("SUM", b.id("X")),
        b.end("B"),
    )
    text = dumps(tree)
    reloaded, reloaded_symbols = loads(text)
    assert run_tree(reloaded, reloaded_symbols) == run_tree(tree, symbols)
    assert json.loads(dumps(reloaded)) == json.loads(text)


def test_loader_extends_an_existing_table(symbols):
    symbols.intern("FIRST")
    loader = TreeLoader(symbols)
    node = loader.node({"id": "SECOND"})
    assert node == Identifier("SECOND", 1)
