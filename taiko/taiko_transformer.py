"""
Transforms the lark parse tree into a taiko node tree (taiko_nodes).
"""

from pathlib import Path
from typing import Optional

from lark import Lark, Transformer, v_args
from lark.exceptions import UnexpectedInput, UnexpectedCharacters, UnexpectedToken, UnexpectedEOF

from taiko.taiko_nodes import (
    Node, IntLit, StrLit, BoolLit, NilLit, SelfNode, ArrayLit,
    LocalVar, InstanceVar, ClassVar, GlobalVar, Const, Index,
    Assign, BinOp, UnaryOp, BlockLit, Send,
    Seq, If, While, For, ClassDef, MethodDef,
)


GRAMMAR_PATH = Path(__file__).with_name("taiko_grammar.lark")

_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '0': '\0', '\\': '\\', "'": "'", '"': '"', 'e': '\x1b'}


class ParseError(Exception):
    """Raised when source text does not match the grammar.

    `line` and `col` are 1-based; `expected` lists the token names the
    parser would have accepted, when known. `at_end` is set when the input
    stopped before the construct it opened was closed.
    """
    def __init__(self, message: str, line: Optional[int] = None, col: Optional[int] = None, expected=None, at_end: bool = False):
        super().__init__(message)
        self.message = message
        self.line = line
        self.col = col
        self.expected = sorted(expected or [])
        self.at_end = at_end


def unescape(body: str) -> str:
    out = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == '\\' and i + 1 < len(body):
            nxt = body[i + 1]
            out.append(_ESCAPES.get(nxt, '\\' + nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return ''.join(out)


@v_args(inline=True, meta=True)
class TaikoTransformer(Transformer):
    def _attach_loc(self, obj: Node, meta) -> Node:
        line = getattr(meta, 'line', None)
        col = getattr(meta, 'column', None)
        if line is not None and col is not None:
            obj.loc = {
                'line': line, 'col': col,
                'end_line': getattr(meta, 'end_line', line),
                'end_col': getattr(meta, 'end_column', col),
            }
        return obj

    # --- Structure ---

    def start(self, meta, body):
        return body

    def body(self, meta, *stmts):
        return self._attach_loc(Seq([s for s in stmts if s is not None]), meta)

    # --- Literals ---

    def int_lit(self, meta, tok):
        return self._attach_loc(IntLit(int(tok.replace('_', ''))), meta)

    def str_lit(self, meta, tok):
        return self._attach_loc(StrLit(unescape(tok[1:-1])), meta)

    def nil_lit(self, meta):
        return self._attach_loc(NilLit(), meta)

    def true_lit(self, meta):
        return self._attach_loc(BoolLit(True), meta)

    def false_lit(self, meta):
        return self._attach_loc(BoolLit(False), meta)

    def self_ref(self, meta):
        return self._attach_loc(SelfNode(), meta)

    def array(self, meta, elements=None):
        return self._attach_loc(ArrayLit(list(elements or [])), meta)

    def elements(self, meta, *items):
        return list(items)

    # --- Variables ---

    def var(self, meta, tok):
        return self._attach_loc(LocalVar(str(tok)), meta)

    def ivar(self, meta, tok):
        return self._attach_loc(InstanceVar(tok[1:]), meta)

    def cvar(self, meta, tok):
        return self._attach_loc(ClassVar(tok[2:]), meta)

    def gvar(self, meta, tok):
        return self._attach_loc(GlobalVar(tok[1:]), meta)

    def const(self, meta, tok):
        return self._attach_loc(Const(str(tok)), meta)

    def index(self, meta, receiver, idx):
        return self._attach_loc(Index(receiver, idx), meta)

    # Assignment targets reuse the variable builders above.
    def local_target(self, meta, tok):
        return self.var(meta, tok)

    def ivar_target(self, meta, tok):
        return self.ivar(meta, tok)

    def cvar_target(self, meta, tok):
        return self.cvar(meta, tok)

    def gvar_target(self, meta, tok):
        return self.gvar(meta, tok)

    def const_target(self, meta, tok):
        return self.const(meta, tok)

    def index_target(self, meta, receiver, idx):
        return self.index(meta, receiver, idx)

    # --- Assignment ---

    def assign(self, meta, target, value):
        return self._attach_loc(Assign(target, value), meta)

    def add_assign(self, meta, target, value):
        return self._attach_loc(Assign(target, value, op='+'), meta)

    def sub_assign(self, meta, target, value):
        return self._attach_loc(Assign(target, value, op='-'), meta)

    def mul_assign(self, meta, target, value):
        return self._attach_loc(Assign(target, value, op='*'), meta)

    def div_assign(self, meta, target, value):
        return self._attach_loc(Assign(target, value, op='/'), meta)

    # --- Operators ---

    def _binop(op):
        def build(self, meta, lhs, rhs):
            return self._attach_loc(BinOp(op, lhs, rhs), meta)
        build.__name__ = f"binop_{op}"
        return build

    or_op = _binop('||')
    and_op = _binop('&&')
    eq = _binop('==')
    ne = _binop('!=')
    lt = _binop('<')
    le = _binop('<=')
    gt = _binop('>')
    ge = _binop('>=')
    add = _binop('+')
    sub = _binop('-')
    mul = _binop('*')
    div = _binop('/')
    mod = _binop('%')
    del _binop

    def not_op(self, meta, operand):
        return self._attach_loc(UnaryOp('!', operand), meta)

    def neg(self, meta, operand):
        if isinstance(operand, IntLit):
            return self._attach_loc(IntLit(-operand.value), meta)
        return self._attach_loc(UnaryOp('-', operand), meta)

    # --- Calls ---

    def call_args(self, meta, arglist=None):
        return list(arglist or [])

    def arglist(self, meta, *exprs):
        return list(exprs)

    def send(self, meta, receiver, name, args, blk):
        return self._attach_loc(Send(receiver, str(name), args or [], blk), meta)

    def class_name(self, meta):
        return 'class'

    def fcall(self, meta, name, args, blk):
        return self._attach_loc(Send(None, str(name), args or [], blk), meta)

    def block(self, meta, *children):
        params, body = children[:-1], children[-1]
        names = params[0] if params and params[0] is not None else []
        return self._attach_loc(BlockLit(names, body), meta)

    def block_params(self, meta, *names):
        return [str(n) for n in names]

    # --- Compound forms ---

    def if_expr(self, meta, cond, then, *rest):
        *elsifs, else_ = rest
        # elsif chains fold right into nested Ifs
        tail = else_
        for clause in reversed(elsifs):
            tail = Seq([If(clause.cond, clause.then, tail, loc=clause.loc)], loc=clause.loc)
        return self._attach_loc(If(cond, then, tail), meta)

    def unless_expr(self, meta, cond, body, else_=None):
        negated = UnaryOp('!', cond, loc=cond.loc)
        return self._attach_loc(If(negated, body, else_), meta)

    def elsif_clause(self, meta, cond, body):
        return self._attach_loc(If(cond, body), meta)

    def else_clause(self, meta, body):
        return body

    def while_expr(self, meta, cond, body):
        return self._attach_loc(While(cond, body), meta)

    def for_expr(self, meta, name, iterable, body):
        return self._attach_loc(For(str(name), iterable, body), meta)

    def class_def(self, meta, name, *rest):
        superclass = rest[0] if len(rest) > 1 else None
        return self._attach_loc(ClassDef(str(name), superclass, rest[-1]), meta)

    def superclass(self, meta, name):
        return str(name)

    def method_def(self, meta, name, *rest):
        params = rest[0] if len(rest) > 1 else []
        return self._attach_loc(MethodDef(str(name), params, rest[-1]), meta)

    def params(self, meta, *names):
        return [str(n) for n in names]


class TaikoParser:
    """Parses taiko source text into a node tree.

    The lark parser is built once per process and shared by all instances.
    """
    _lark: Optional[Lark] = None

    def __init__(self):
        if TaikoParser._lark is None:
            TaikoParser._lark = Lark(
                GRAMMAR_PATH.read_text(encoding="utf-8"),
                start="start",
                parser="lalr",
                propagate_positions=True,
            )
        self.transformer = TaikoTransformer()

    def parse(self, source: str) -> Seq:
        return self.transformer.transform(self._parse(source))

    def _parse(self, source: str):
        try:
            return TaikoParser._lark.parse(source)
        except UnexpectedInput as e:
            raise self._to_parse_error(e, source) from e

    def _to_parse_error(self, e: UnexpectedInput, source: str) -> ParseError:
        line = getattr(e, 'line', None)
        col = getattr(e, 'column', None)
        expected = getattr(e, 'expected', None) or getattr(e, 'allowed', None) or set()
        at_end = False
        match e:
            case UnexpectedEOF():
                message = "unexpected end of input"
                lines = source.splitlines() or ['']
                line, col = len(lines), len(lines[-1]) + 1
                at_end = True
            case UnexpectedToken(token=tok):
                shown = 'newline' if tok.type == '_T' else repr(str(tok))
                at_end = tok.type == "$END"
                message = "unexpected end of input" if at_end else f"unexpected {shown}"
            case UnexpectedCharacters(char=ch):
                message = f"unexpected character {ch!r}"
            case _:
                message = str(e)
        if line is not None and line < 0:
            line, col = None, None
        return ParseError(message, line, col, expected, at_end)


def parse(source: str) -> Seq:
    return TaikoParser().parse(source)
