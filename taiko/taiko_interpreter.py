"""
The core taiko interpreter: a tree-walking Evaluator over taiko_nodes.

Evaluation is synchronous and single threaded. Every node evaluates to a
value; frames are created for class bodies, method calls and block calls,
and method lookup walks the receiver's class chain.
"""
import os
import sys
from typing import Any, List, Optional, Dict, Callable

from taiko.taiko_datatypes import (
    Frame, Discipline, TaikoClass, TaikoObject, AttributeBearer, Method, Block,
    TaikoError, UnboundName, NoMethodError, ArgumentError, TaikoTypeError,
    TaikoZeroDivisionError, TaikoIndexError,
    values_equal, is_truthy,
)
from taiko.taiko_nodes import (
    Node, IntLit, StrLit, BoolLit, NilLit, SelfNode, ArrayLit,
    LocalVar, InstanceVar, ClassVar, GlobalVar, Const, Index,
    Assign, BinOp, UnaryOp, BlockLit, Send,
    Seq, If, While, For, ClassDef, MethodDef,
)

# A native method takes (receiver, args, block) and returns a value.
NativeFn = Callable[[Any, List[Any], Optional[Block]], Any]

BUILTIN_CLASS_NAMES = ('Integer', 'String', 'Array', 'NilClass', 'TrueClass', 'FalseClass', 'Class')


class Evaluator:
    """The taiko execution engine."""

    def __init__(self):
        self.side_effects: List[Any] = []
        self.host_object: Optional[Any] = None
        self.current_node: Optional[Node] = None
        self.call_stack: List[Dict[str, Any]] = []
        self.globals: Dict[str, Any] = {}
        self.constants: Dict[str, Any] = {}
        # Native method tables keyed by owning class; `kernel` holds the
        # receiver-less host functions (puts, assert, ...).
        self.natives: Dict[TaikoClass, Dict[str, NativeFn]] = {}
        self.kernel: Dict[str, NativeFn] = {}

        self.object_class = TaikoClass('Object', None, builtin=True)
        self.constants['Object'] = self.object_class
        for name in BUILTIN_CLASS_NAMES:
            self.constants[name] = TaikoClass(name, self.object_class, builtin=True)
        self.main = TaikoObject(self.object_class, label='main')
        self.root_frame = Frame(parent=None, discipline=Discipline.SHADOWING, kind='top', self_obj=self.main)

    # -----------------------------------------------------------------
    # Registration and diagnostics
    # -----------------------------------------------------------------

    def builtin_class(self, name: str) -> TaikoClass:
        return self.constants[name]

    def register_native(self, owner: str, name: str, fn: NativeFn):
        if owner == 'Kernel':
            self.kernel[name] = fn
        else:
            self.natives.setdefault(self.builtin_class(owner), {})[name] = fn

    def _push_frame(self, name, func, args, call_site_node):
        loc = getattr(call_site_node, 'loc', None)
        self.call_stack.append({
            'name': name,
            'func': func,
            'args': args,
            'call_site': loc,
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    def _dbg(self, *parts):
        if os.environ.get("TAIKO_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    # -----------------------------------------------------------------
    # Value classification
    # -----------------------------------------------------------------

    def class_of(self, value: Any) -> TaikoClass:
        match value:
            case TaikoObject():
                return value.cls
            case TaikoClass():
                return self.constants['Class']
            case bool():
                return self.constants['TrueClass' if value else 'FalseClass']
            case None:
                return self.constants['NilClass']
            case int():
                return self.constants['Integer']
            case str():
                return self.constants['String']
            case list():
                return self.constants['Array']
            case _:
                return self.object_class

    def describe(self, value: Any) -> str:
        """Receiver description used in NoMethodError messages."""
        if value is None:
            return "nil"
        if value is self.main:
            return "main:Object"
        if isinstance(value, TaikoClass):
            return f"class {value.name}"
        return f"an instance of {self.class_of(value).name}"

    def _bearer(self, frame: Frame, node: Node) -> AttributeBearer:
        target = frame.self_obj
        if not isinstance(target, AttributeBearer):
            raise TaikoTypeError(
                f"can't modify instance variables of {self.class_of(target).name}", node)
        return target

    def _cvar_base(self, frame: Frame) -> TaikoClass:
        target = frame.self_obj
        return target if isinstance(target, TaikoClass) else self.class_of(target)

    def _definition_target(self, frame: Frame) -> TaikoClass:
        target = frame.self_obj
        return target if isinstance(target, TaikoClass) else self.class_of(target)

    # -----------------------------------------------------------------
    # Method lookup and invocation
    # -----------------------------------------------------------------

    def find_method(self, cls: TaikoClass, name: str):
        """Nearest class first; at each level a user method wins over a
        native one. Returns a Method, a native callable or None."""
        for klass in cls.ancestors():
            method = klass.methods.get(name)
            if method is not None:
                return method
            native = self.natives.get(klass, {}).get(name)
            if native is not None:
                return native
        return None

    def resolve_function(self, self_obj: Any, name: str):
        """Receiver-less resolution: the class chain of `self` (which ends
        at Object, where top-level defs live), then the Kernel functions."""
        found = self.find_method(self.class_of(self_obj), name)
        if found is None:
            found = self.kernel.get(name)
        return found

    def call_method(self, receiver: Any, name: str, args: List[Any],
                    block: Optional[Block] = None, node: Optional[Node] = None) -> Any:
        found = self.find_method(self.class_of(receiver), name)
        if found is None:
            raise NoMethodError(name, self.describe(receiver), taiko_obj=node)
        self._dbg("SEND", self.describe(receiver), name, f"argc={len(args)}")
        return self.invoke(found, name, receiver, args, block, node)

    def call_function(self, name: str, args: List[Any], block: Optional[Block],
                      frame: Frame, node: Optional[Node] = None) -> Any:
        receiver = frame.self_obj
        found = self.resolve_function(receiver, name)
        if found is None:
            raise NoMethodError(name, self.describe(receiver), taiko_obj=node)
        self._dbg("CALL", name, f"argc={len(args)}")
        return self.invoke(found, name, receiver, args, block, node)

    def invoke(self, found, name: str, receiver: Any, args: List[Any],
               block: Optional[Block], node: Optional[Node]) -> Any:
        if isinstance(found, Method):
            return self.invoke_method(found, receiver, args, node)
        self._push_frame(name, found, args, node)
        _ok = False
        try:
            result = found(receiver, args, block)
            _ok = True
        except TaikoError as e:
            if e.taiko_obj is None:
                e.taiko_obj = node
            raise
        finally:
            if _ok:
                self._pop_frame()
        return result

    def invoke_method(self, method: Method, receiver: Any, args: List[Any],
                      node: Optional[Node] = None) -> Any:
        if len(args) != len(method.params):
            raise ArgumentError(len(args), len(method.params), taiko_obj=node)
        call_frame = Frame(parent=method.closure, discipline=method.discipline,
                           kind='method', self_obj=receiver)
        for param, arg in zip(method.params, args):
            call_frame.define(param, arg)
        owner = method.owner.name if method.owner else '?'
        self._push_frame(f"{owner}#{method.name}", method, args, node)
        _ok = False
        try:
            result = self.eval(method.body, call_frame)
            _ok = True
        finally:
            if _ok:
                self._pop_frame()
        return result

    def invoke_block(self, block: Block, args: List[Any], node: Optional[Node] = None) -> Any:
        """Runs `block` in a fresh write-through frame. Missing arguments
        bind nil and extra arguments are dropped."""
        call_frame = Frame(parent=block.closure, discipline=block.discipline,
                           kind='block', self_obj=block.self_obj)
        for i, param in enumerate(block.params):
            call_frame.define(param, args[i] if i < len(args) else None)
        self._push_frame("block", block, args, node)
        _ok = False
        try:
            result = self.eval(block.body, call_frame)
            _ok = True
        finally:
            if _ok:
                self._pop_frame()
        return result

    def new_instance(self, cls: TaikoClass) -> TaikoObject:
        if cls.builtin and cls is not self.object_class:
            raise NoMethodError('new', f"class {cls.name}")
        return TaikoObject(cls)

    # -----------------------------------------------------------------
    # Classes and methods
    # -----------------------------------------------------------------

    def define_class(self, name: str, superclass_name: Optional[str], node: Optional[Node] = None) -> TaikoClass:
        superclass = None
        if superclass_name is not None:
            superclass = self.constants.get(superclass_name)
            if superclass is None:
                raise UnboundName(superclass_name, f"uninitialized constant {superclass_name}", taiko_obj=node)
            if not isinstance(superclass, TaikoClass):
                raise TaikoTypeError(f"superclass must be a Class ({superclass_name} given)", node)

        existing = self.constants.get(name)
        if existing is not None:
            if not isinstance(existing, TaikoClass):
                raise TaikoTypeError(f"{name} is not a class", node)
            if superclass is not None and existing.superclass is not superclass:
                raise TaikoTypeError(f"superclass mismatch for class {name}", node)
            self._dbg("CLASS reopen", name)
            return existing

        cls = TaikoClass(name, superclass or self.object_class)
        self.constants[name] = cls
        self._dbg("CLASS new", name, "<", cls.superclass.name)
        return cls

    def define_method(self, node: MethodDef, frame: Frame) -> Method:
        target = self._definition_target(frame)
        method = Method(node.name, node.params, node.body, frame.home())
        target.add_method(method)
        self._dbg("DEF", f"{target.name}#{node.name}", f"closure={frame.home().kind}")
        return method

    # -----------------------------------------------------------------
    # Operators
    # -----------------------------------------------------------------

    def binary_op(self, op: str, lhs: Any, rhs: Any, node: Optional[Node] = None) -> Any:
        match op:
            case '==':
                return values_equal(lhs, rhs)
            case '!=':
                return not values_equal(lhs, rhs)

        lhs_int = isinstance(lhs, int) and not isinstance(lhs, bool)
        rhs_int = isinstance(rhs, int) and not isinstance(rhs, bool)

        if lhs_int and rhs_int:
            match op:
                case '+': return lhs + rhs
                case '-': return lhs - rhs
                case '*': return lhs * rhs
                case '/' | '%':
                    if rhs == 0:
                        raise TaikoZeroDivisionError("divided by 0", node)
                    return lhs // rhs if op == '/' else lhs % rhs
                case '<': return lhs < rhs
                case '<=': return lhs <= rhs
                case '>': return lhs > rhs
                case '>=': return lhs >= rhs

        if isinstance(lhs, str) and isinstance(rhs, str):
            match op:
                case '+': return lhs + rhs
                case '<': return lhs < rhs
                case '<=': return lhs <= rhs
                case '>': return lhs > rhs
                case '>=': return lhs >= rhs

        if isinstance(lhs, str) and rhs_int and op == '*':
            if rhs < 0:
                raise ArgumentError(message="negative argument", taiko_obj=node)
            return lhs * rhs

        if isinstance(lhs, list) and isinstance(rhs, list) and op == '+':
            return lhs + rhs

        raise TaikoTypeError(
            f"unsupported operand types for {op}: {self.class_of(lhs).name} and {self.class_of(rhs).name}", node)

    def index_get(self, receiver: Any, idx: Any, node: Optional[Node] = None) -> Any:
        if not isinstance(idx, int) or isinstance(idx, bool):
            raise TaikoTypeError(f"no implicit conversion of {self.class_of(idx).name} into Integer", node)
        if isinstance(receiver, (list, str)):
            if -len(receiver) <= idx < len(receiver):
                return receiver[idx]
            return None
        raise NoMethodError('[]', self.describe(receiver), taiko_obj=node)

    def index_set(self, receiver: Any, idx: Any, value: Any, node: Optional[Node] = None) -> Any:
        if not isinstance(receiver, list):
            raise NoMethodError('[]=', self.describe(receiver), taiko_obj=node)
        if not isinstance(idx, int) or isinstance(idx, bool):
            raise TaikoTypeError(f"no implicit conversion of {self.class_of(idx).name} into Integer", node)
        if idx < -len(receiver):
            raise TaikoIndexError(f"index {idx} too small for array; minimum: -{len(receiver)}", node)
        if idx >= len(receiver):
            receiver.extend([None] * (idx - len(receiver) + 1))
        receiver[idx] = value
        return value

    # -----------------------------------------------------------------
    # Variables and assignment
    # -----------------------------------------------------------------

    def read_cvar(self, name: str, frame: Frame, node: Optional[Node] = None) -> Any:
        base = self._cvar_base(frame)
        owner = base.cvar_owner(name)
        if owner is None:
            raise UnboundName(f"@@{name}", f"uninitialized class variable @@{name} in {base.name}", taiko_obj=node)
        return owner.cvars[name]

    def write_cvar(self, name: str, value: Any, frame: Frame) -> Any:
        base = self._cvar_base(frame)
        owner = base.cvar_owner(name) or base
        owner.cvars[name] = value
        return value

    def read_target(self, target: Node, frame: Frame) -> Any:
        match target:
            case LocalVar(name=name):
                owner = frame.find_owner(name)
                if owner is None:
                    raise UnboundName(name, taiko_obj=target)
                return owner.bindings[name]
            case Index(receiver=recv, index=idx):
                return self.index_get(self.eval(recv, frame), self.eval(idx, frame), target)
            case _:
                return self.eval(target, frame)

    def assign(self, node: Assign, frame: Frame) -> Any:
        target = node.target
        if isinstance(target, Index):
            receiver = self.eval(target.receiver, frame)
            idx = self.eval(target.index, frame)
            value = self.eval(node.value, frame)
            if node.op:
                value = self.binary_op(node.op, self.index_get(receiver, idx, target), value, node)
            return self.index_set(receiver, idx, value, node)

        if node.op:
            current = self.read_target(target, frame)
            value = self.binary_op(node.op, current, self.eval(node.value, frame), node)
        else:
            value = self.eval(node.value, frame)

        match target:
            case LocalVar(name=name):
                return frame.assign(name, value)
            case InstanceVar(name=name):
                return self._bearer(frame, node).set_ivar(name, value)
            case ClassVar(name=name):
                return self.write_cvar(name, value, frame)
            case GlobalVar(name=name):
                self.globals[name] = value
                return value
            case Const(name=name):
                self.constants[name] = value
                return value
            case _:
                raise TaikoTypeError(f"cannot assign to {type(target).__name__}", node)

    # -----------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------

    def eval(self, node: Any, frame: Frame) -> Any:
        """Evaluates `node` in `frame` and returns its value."""
        self.current_node = node
        match node:
            case Seq(stmts=stmts):
                result = None
                for stmt in stmts:
                    result = self.eval(stmt, frame)
                return result

            case IntLit(value=value) | StrLit(value=value) | BoolLit(value=value):
                return value
            case NilLit():
                return None
            case SelfNode():
                return frame.self_obj
            case ArrayLit(elements=elements):
                return [self.eval(e, frame) for e in elements]

            case LocalVar(name=name):
                owner = frame.find_owner(name)
                if owner is not None:
                    return owner.bindings[name]
                # No binding: a bare name may be a zero-argument call on self.
                found = self.resolve_function(frame.self_obj, name)
                if found is not None:
                    return self.invoke(found, name, frame.self_obj, [], None, node)
                raise UnboundName(name, taiko_obj=node)
            case InstanceVar(name=name):
                target = frame.self_obj
                return target.get_ivar(name) if isinstance(target, AttributeBearer) else None
            case ClassVar(name=name):
                return self.read_cvar(name, frame, node)
            case GlobalVar(name=name):
                return self.globals.get(name)
            case Const(name=name):
                if name not in self.constants:
                    raise UnboundName(name, f"uninitialized constant {name}", taiko_obj=node)
                return self.constants[name]
            case Index(receiver=recv, index=idx):
                return self.index_get(self.eval(recv, frame), self.eval(idx, frame), node)

            case Assign():
                return self.assign(node, frame)

            case BinOp(op='&&', lhs=lhs, rhs=rhs):
                left = self.eval(lhs, frame)
                return self.eval(rhs, frame) if is_truthy(left) else left
            case BinOp(op='||', lhs=lhs, rhs=rhs):
                left = self.eval(lhs, frame)
                return left if is_truthy(left) else self.eval(rhs, frame)
            case BinOp(op=op, lhs=lhs, rhs=rhs):
                left = self.eval(lhs, frame)
                right = self.eval(rhs, frame)
                return self.binary_op(op, left, right, node)
            case UnaryOp(op='!', operand=operand):
                return not is_truthy(self.eval(operand, frame))
            case UnaryOp(op='-', operand=operand):
                value = self.eval(operand, frame)
                if isinstance(value, int) and not isinstance(value, bool):
                    return -value
                raise TaikoTypeError(f"undefined unary minus for {self.class_of(value).name}", node)

            case BlockLit(params=params, body=body):
                return Block(params, body, frame)
            case Send(receiver=None, name=name, args=args, block=blk):
                argv = [self.eval(a, frame) for a in args]
                block = Block(blk.params, blk.body, frame) if blk is not None else None
                return self.call_function(name, argv, block, frame, node)
            case Send(receiver=recv, name=name, args=args, block=blk):
                receiver = self.eval(recv, frame)
                argv = [self.eval(a, frame) for a in args]
                block = Block(blk.params, blk.body, frame) if blk is not None else None
                return self.call_method(receiver, name, argv, block, node)

            case If(cond=cond, then=then, else_=else_):
                if is_truthy(self.eval(cond, frame)):
                    return self.eval(then, frame)
                return self.eval(else_, frame) if else_ is not None else None
            case While(cond=cond, body=body):
                while is_truthy(self.eval(cond, frame)):
                    self.eval(body, frame)
                return None
            case For(var=var, iterable=iterable, body=body):
                items = self.eval(iterable, frame)
                if not isinstance(items, list):
                    raise TaikoTypeError(f"can't iterate {self.class_of(items).name}", node)
                for item in list(items):
                    frame.assign(var, item)
                    self.eval(body, frame)
                return None

            case ClassDef(name=name, superclass=superclass, body=body):
                cls = self.define_class(name, superclass, node)
                class_frame = Frame(parent=frame, discipline=Discipline.SHADOWING, kind='class', self_obj=cls)
                self._push_frame(f"<class:{name}>", cls, [], node)
                _ok = False
                try:
                    self.eval(body, class_frame)
                    _ok = True
                finally:
                    if _ok:
                        self._pop_frame()
                return None
            case MethodDef():
                self.define_method(node, frame)
                return None

            case _:
                raise TaikoTypeError(f"cannot evaluate {type(node).__name__}: {node!r}", node if isinstance(node, Node) else None)
