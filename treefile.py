"""JSON interchange for program trees.

A front end that cannot link against these modules can dump its tree as
JSON and hand it to ``cupl``.  Encoding:

* a number is a NUMBER leaf;
* ``{"id": name}`` is an IDENTIFIER, interned on first appearance;
* ``{"str": text}`` is a STRING leaf;
* ``{"op": KIND, "left": ..., "right": ...}`` is an interior node
  (missing operands are absent);
* ``null`` is an absent operand.

The document is either a list of statement operations, which is chained
into a program, or an object whose ``"program"`` member holds such a list or
an already chained STATEMENT tree.
"""

from __future__ import annotations
import json
from typing import Any, Dict, IO, Optional, Tuple

from nodes import (
    INTERIOR_KINDS,
    STATEMENT,
    CuplTreeError,
    Identifier,
    Interior,
    Node,
    Number,
    String,
    chain,
    cons,
    iter_statements,
)
from symbols import SymbolTable


class TreeLoader:
    def __init__(self, symbols: Optional[SymbolTable] = None) -> None:
        self.symbols = symbols if symbols is not None else SymbolTable()

    def load_document(self, document: Any) -> Optional[Node]:
        if isinstance(document, dict):
            if "program" not in document:
                raise CuplTreeError('program document needs a "program" member')
            document = document["program"]
        if isinstance(document, list):
            return chain(self._operation(item, index) for index, item in enumerate(document))
        tree = self.node(document)
        if tree is not None and tree.kind != STATEMENT:
            raise CuplTreeError(f"program tree must start with a STATEMENT node, found {tree.kind}")
        return tree

    def _operation(self, item: Any, index: int) -> Node:
        op = self.node(item)
        if op is None:
            raise CuplTreeError(f"statement {index} is empty")
        return op

    def node(self, data: Any) -> Optional[Node]:
        if data is None:
            return None
        if isinstance(data, bool):
            raise CuplTreeError("booleans are not CUPL operands")
        if isinstance(data, (int, float)):
            return Number(float(data))
        if isinstance(data, dict):
            return self._object(data)
        raise CuplTreeError(f"cannot read {data!r} as a tree node")

    def _object(self, data: Dict[str, Any]) -> Node:
        if "id" in data:
            name = data["id"]
            if not isinstance(name, str) or not name:
                raise CuplTreeError(f"identifier name must be a non-empty string, got {name!r}")
            return self.symbols.identifier(name)
        if "str" in data:
            text = data["str"]
            if not isinstance(text, str):
                raise CuplTreeError(f"string literal must be text, got {text!r}")
            return String(text)
        if "op" in data:
            kind = data["op"]
            if kind not in INTERIOR_KINDS:
                raise CuplTreeError(f"unknown node type {kind!r}")
            unexpected = set(data) - {"op", "left", "right"}
            if unexpected:
                raise CuplTreeError(f"{kind} node has unexpected members {sorted(unexpected)}")
            return cons(kind, self.node(data.get("left")), self.node(data.get("right")))
        raise CuplTreeError(f"cannot read {data!r} as a tree node")


def loads(text: str, symbols: Optional[SymbolTable] = None) -> Tuple[Optional[Node], SymbolTable]:
    """Parse a JSON document into a program tree and its symbol table."""
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CuplTreeError(f"invalid tree document: {exc}") from exc
    loader = TreeLoader(symbols)
    return loader.load_document(document), loader.symbols


def load(handle: IO[str], symbols: Optional[SymbolTable] = None) -> Tuple[Optional[Node], SymbolTable]:
    return loads(handle.read(), symbols)


def node_to_dict(node: Optional[Node]) -> Any:
    """Inverse of ``TreeLoader.node`` for trees built in memory."""
    if node is None:
        return None
    if isinstance(node, Number):
        return node.value
    if isinstance(node, Identifier):
        return {"id": node.name}
    if isinstance(node, String):
        return {"str": node.text}
    if isinstance(node, Interior):
        data: Dict[str, Any] = {"op": node.kind}
        if node.left is not None:
            data["left"] = node_to_dict(node.left)
        if node.right is not None:
            data["right"] = node_to_dict(node.right)
        return data
    raise CuplTreeError(f"cannot serialize {node.kind} nodes")


def dumps(tree: Optional[Node], indent: Optional[int] = None) -> str:
    operations = [statement.left for statement in iter_statements(tree)]
    return json.dumps({"program": [node_to_dict(op) for op in operations]}, indent=indent)
