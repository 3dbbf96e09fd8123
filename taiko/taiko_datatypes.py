"""
Defines the core runtime types for the taiko language.

This module provides the binding frames, the class-based object model,
the callables (methods and blocks) and the error hierarchy that the
taiko evaluator works with. Plain Python values carry the scalar and
array variants of a taiko value: int, str, bool, None and list.
"""

from enum import Enum
from typing import List, Dict, Any, Optional, Iterator


# =================================================================
# Errors
# =================================================================

class TaikoError(Exception):
    """Base class for every error the evaluator raises.

    `taiko_obj` holds the node that was being evaluated when the error
    occurred so the runner can report a source location.
    """
    kind = "TaikoError"

    def __init__(self, message: str, taiko_obj: Any = None):
        super().__init__(message)
        self.message = message
        self.taiko_obj = taiko_obj


class UnboundName(TaikoError):
    kind = "NameError"

    def __init__(self, name: str, message: Optional[str] = None, taiko_obj: Any = None):
        super().__init__(message or f"undefined local variable or method '{name}'", taiko_obj)
        self.name = name


class NoMethodError(TaikoError):
    kind = "NoMethodError"

    def __init__(self, name: str, receiver_desc: str, taiko_obj: Any = None):
        super().__init__(f"undefined method '{name}' for {receiver_desc}", taiko_obj)
        self.name = name


class ArgumentError(TaikoError):
    kind = "ArgumentError"

    def __init__(self, given: Optional[int] = None, expected: Optional[int] = None,
                 message: Optional[str] = None, taiko_obj: Any = None):
        super().__init__(message or f"wrong number of arguments (given {given}, expected {expected})", taiko_obj)
        self.given = given
        self.expected = expected


class TaikoTypeError(TaikoError, TypeError):
    kind = "TypeError"


class TaikoZeroDivisionError(TaikoError):
    kind = "ZeroDivisionError"


class TaikoIndexError(TaikoError):
    kind = "IndexError"


class AssertionFailure(TaikoError):
    kind = "AssertionFailure"

    def __init__(self, actual: Any, expected: Any, message: str, taiko_obj: Any = None):
        super().__init__(message, taiko_obj)
        self.actual = actual
        self.expected = expected


# =================================================================
# Binding Frames
# =================================================================

class Discipline(Enum):
    """How a frame resolves writes to names it does not hold itself."""
    SHADOWING = "shadowing"
    THROUGH = "through"


class Frame:
    """A name-to-value binding scope with an optional parent for lookup.

    Frames form the lexical chain of the evaluator:
      - reads walk from this frame outwards until a binding is found,
      - `shadowing` frames (top level, class bodies, method calls) always
        write into themselves,
      - `through` frames (block calls) update the nearest existing binding,
        searching outwards up to and including the first shadowing frame,
        and only create a binding locally when none is found.

    `kind` records what created the frame ('top', 'class', 'method' or
    'block') and `self_obj` is the receiver in effect while code runs in it.
    """
    def __init__(self,
                 parent: Optional['Frame'] = None,
                 discipline: Discipline = Discipline.SHADOWING,
                 kind: str = "top",
                 self_obj: Any = None):
        self.bindings: Dict[str, Any] = {}
        self.parent = parent
        self.discipline = discipline
        self.kind = kind
        self.self_obj = self_obj

    def define(self, name: str, value: Any) -> Any:
        """Creates or updates a binding in this frame only."""
        self.bindings[name] = value
        return value

    def find_owner(self, name: str) -> Optional['Frame']:
        """Finds the frame in the lookup chain that holds `name`."""
        frame = self
        while frame is not None:
            if name in frame.bindings:
                return frame
            frame = frame.parent
        return None

    def lookup(self, name: str) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            raise UnboundName(name)
        return owner.bindings[name]

    def assign(self, name: str, value: Any) -> Any:
        """Writes `name` according to this frame's discipline."""
        if self.discipline is Discipline.SHADOWING:
            return self.define(name, value)
        frame = self
        while frame is not None:
            if name in frame.bindings:
                frame.bindings[name] = value
                return value
            if frame.discipline is Discipline.SHADOWING:
                break
            frame = frame.parent
        return self.define(name, value)

    def home(self) -> 'Frame':
        """The nearest enclosing class-body or top-level frame.

        Method definitions capture this frame, whatever call or block
        frames they are evaluated in.
        """
        frame = self
        while frame.kind not in ("top", "class") and frame.parent is not None:
            frame = frame.parent
        return frame

    def __contains__(self, name: str) -> bool:
        return self.find_owner(name) is not None

    def __getitem__(self, name: str) -> Any:
        return self.lookup(name)

    def __setitem__(self, name: str, value: Any):
        self.assign(name, value)

    def keys(self):
        """Returns a view of names bound in this frame only."""
        return self.bindings.keys()

    def __repr__(self) -> str:
        keys = ', '.join(self.bindings.keys())
        parent_id = f", parent=#{id(self.parent)}" if self.parent else ""
        return f"<Frame {self.kind}/{self.discipline.value} bindings=[{keys}]{parent_id}>"


# =================================================================
# Object Model
# =================================================================

class AttributeBearer:
    """Shared instance-variable capability of classes and instances.

    Whichever value is `self` during evaluation owns the table that
    `@name` reads and writes.
    """
    def __init__(self):
        self.ivars: Dict[str, Any] = {}

    def get_ivar(self, name: str) -> Any:
        return self.ivars.get(name)

    def set_ivar(self, name: str, value: Any) -> Any:
        self.ivars[name] = value
        return value

    def ivar_names(self) -> List[str]:
        return [f"@{name}" for name in self.ivars]


class TaikoClass(AttributeBearer):
    """A class: method table, optional single parent, own instance
    variables (a class is itself an object) and a class-variable table
    shared with its subclasses by lookup delegation."""
    def __init__(self, name: str, superclass: Optional['TaikoClass'] = None, builtin: bool = False):
        super().__init__()
        self.name = name
        self.superclass = superclass
        self.methods: Dict[str, 'Method'] = {}
        self.cvars: Dict[str, Any] = {}
        self.builtin = builtin

    def ancestors(self) -> Iterator['TaikoClass']:
        """Yields this class, then its parent chain, nearest first."""
        cls = self
        while cls is not None:
            yield cls
            cls = cls.superclass

    def find_method(self, name: str) -> Optional['Method']:
        for cls in self.ancestors():
            method = cls.methods.get(name)
            if method is not None:
                return method
        return None

    def add_method(self, method: 'Method'):
        self.methods[method.name] = method
        method.owner = self

    def cvar_owner(self, name: str) -> Optional['TaikoClass']:
        for cls in self.ancestors():
            if name in cls.cvars:
                return cls
        return None

    def __repr__(self) -> str:
        return f"<TaikoClass {self.name}>"


class TaikoObject(AttributeBearer):
    """An instance of a TaikoClass with its own instance-variable table."""
    def __init__(self, cls: TaikoClass, label: Optional[str] = None):
        super().__init__()
        self.cls = cls
        self.label = label

    def __repr__(self) -> str:
        return f"<TaikoObject {self.label or self.cls.name} at #{id(self)}>"


# =================================================================
# Callables
# =================================================================

class TaikoCallable:
    """A deferred unit of execution bundling its parameters, its body and
    the frame in which it was defined."""
    discipline = Discipline.SHADOWING

    def __init__(self, params: List[str], body: Any, closure: Frame):
        self.params = list(params)
        self.body = body
        self.closure = closure


class Method(TaikoCallable):
    """A method defined with `def`. Calls run in a fresh shadowing frame
    whose parent is the captured class-body or top-level frame, with
    `self` bound to the receiver."""
    discipline = Discipline.SHADOWING

    def __init__(self, name: str, params: List[str], body: Any, closure: Frame):
        super().__init__(params, body, closure)
        self.name = name
        self.owner: Optional[TaikoClass] = None

    def __repr__(self) -> str:
        owner = self.owner.name if self.owner else "?"
        return f"<Method {owner}#{self.name}({', '.join(self.params)})>"


class Block(TaikoCallable):
    """A block literal attached to a call. Calls run in a fresh
    write-through frame whose parent is the frame the literal appears in,
    with `self` as it was at that point."""
    discipline = Discipline.THROUGH

    def __init__(self, params: List[str], body: Any, closure: Frame):
        super().__init__(params, body, closure)
        self.self_obj = closure.self_obj

    def __repr__(self) -> str:
        return f"<Block |{', '.join(self.params)}|>"


# =================================================================
# Equality and truthiness
# =================================================================

def values_equal(a: Any, b: Any) -> bool:
    """Structural equality for scalars and arrays, identity for objects.

    Booleans never compare equal to integers.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a is b
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, int) and isinstance(b, int):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    return a is b


def is_truthy(value: Any) -> bool:
    return value is not None and value is not False
