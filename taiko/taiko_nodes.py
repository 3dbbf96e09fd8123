"""
Expression tree node kinds consumed by the taiko evaluator.

A node tree is the evaluator's input contract: the bundled front end
(`taiko_transformer`) builds one from source text and `taiko_serialize`
can load one from JSON or YAML. Every node may carry a `loc` dict
(`line`, `col`, `end_line`, `end_col`) used only for error reporting;
it takes no part in equality.
"""

import re
from dataclasses import dataclass, field, fields
from typing import List, Optional


@dataclass
class Node:
    loc: Optional[dict] = field(default=None, kw_only=True, compare=False, repr=False)

    @classmethod
    def tag(cls) -> str:
        """The snake_case kind name used in serialized trees."""
        return re.sub(r'(?<!^)(?=[A-Z])', '_', cls.__name__).lower()

    def children(self) -> List[tuple]:
        """(field name, value) pairs for every field except `loc`."""
        return [(f.name, getattr(self, f.name)) for f in fields(self) if f.name != 'loc']

    def location(self) -> Optional[tuple]:
        if not self.loc or 'line' not in self.loc:
            return None
        return self.loc['line'], self.loc.get('col', 1)


# --- Literals ---

@dataclass
class IntLit(Node):
    value: int


@dataclass
class StrLit(Node):
    value: str


@dataclass
class BoolLit(Node):
    value: bool


@dataclass
class NilLit(Node):
    pass


@dataclass
class SelfNode(Node):
    pass


@dataclass
class ArrayLit(Node):
    elements: List[Node] = field(default_factory=list)


# --- Variable references ---
# Names are stored without their sigils.

@dataclass
class LocalVar(Node):
    name: str


@dataclass
class InstanceVar(Node):
    name: str


@dataclass
class ClassVar(Node):
    name: str


@dataclass
class GlobalVar(Node):
    name: str


@dataclass
class Const(Node):
    name: str


@dataclass
class Index(Node):
    receiver: Node
    index: Node


# --- Operations ---

@dataclass
class Assign(Node):
    """`target = value`; with `op` set (e.g. '+') this is `target op= value`.

    The target is a LocalVar, InstanceVar, ClassVar, GlobalVar, Const or
    Index node.
    """
    target: Node
    value: Node
    op: Optional[str] = None


@dataclass
class BinOp(Node):
    """Binary operator. `&&` and `||` short-circuit; the rest evaluate both
    sides left to right."""
    op: str
    lhs: Node
    rhs: Node


@dataclass
class UnaryOp(Node):
    op: str
    operand: Node


@dataclass
class BlockLit(Node):
    params: List[str] = field(default_factory=list)
    body: 'Seq' = None


@dataclass
class Send(Node):
    """A method call. `receiver` is None for receiver-less calls."""
    receiver: Optional[Node]
    name: str
    args: List[Node] = field(default_factory=list)
    block: Optional[BlockLit] = None


# --- Compound forms ---

@dataclass
class Seq(Node):
    stmts: List[Node] = field(default_factory=list)


@dataclass
class If(Node):
    cond: Node
    then: Seq
    else_: Optional[Node] = None


@dataclass
class While(Node):
    cond: Node
    body: Seq


@dataclass
class For(Node):
    var: str
    iterable: Node
    body: Seq


@dataclass
class ClassDef(Node):
    name: str
    superclass: Optional[str]
    body: Seq


@dataclass
class MethodDef(Node):
    name: str
    params: List[str]
    body: Seq


NODE_TYPES = {
    cls.tag(): cls for cls in (
        IntLit, StrLit, BoolLit, NilLit, SelfNode, ArrayLit,
        LocalVar, InstanceVar, ClassVar, GlobalVar, Const, Index,
        Assign, BinOp, UnaryOp, BlockLit, Send,
        Seq, If, While, For, ClassDef, MethodDef,
    )
}

