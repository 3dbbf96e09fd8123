# taiko runtime: built-ins, host binding and script execution

import re
import sys
import inspect
import threading
from abc import ABC
from pathlib import Path
from typing import Any, List, Optional, Literal, Dict
from dataclasses import dataclass, field

from taiko.taiko_transformer import TaikoParser, ParseError
from taiko.taiko_interpreter import Evaluator
from taiko.taiko_printer import Printer
from taiko.taiko_nodes import Node, Seq
from taiko.taiko_datatypes import (
    AttributeBearer,
    TaikoError, ArgumentError, TaikoTypeError, AssertionFailure,
    values_equal,
)

# ===================================================================
# 1. Host integration
# ===================================================================


def taiko_api_method(func):
    """A decorator to explicitly mark host methods as callable from taiko."""
    func._is_taiko_api = True
    return func


class TaikoHost(ABC):
    """Base class for Python objects exposed to taiko scripts.

    Methods marked with @taiko_api_method become receiver-less functions
    in every script run by a ScriptRunner that hosts the object.
    """


def taiko_builtin(owner: str, *names: str):
    """Marks a StdLib method as the native implementation of `names` on
    the built-in class `owner` ('Kernel' for receiver-less functions)."""
    def mark(func):
        func._taiko_builtin = (owner, names)
        return func
    return mark


# ===================================================================
# 2. Built-in library
# ===================================================================

_LEADING_INT = re.compile(r'\s*([+-]?\d+(?:_\d+)*)')

# A taiko call costs a handful of Python frames; these leave room for a few
# thousand nested taiko calls before SystemStackError.
EVAL_RECURSION_LIMIT = 60_000
EVAL_STACK_SIZE = 512 * 1024 * 1024


class StdLib:
    """Python implementations of the taiko built-in methods.

    Every native receives `(receiver, args, block)`.
    """
    def __init__(self, evaluator: Evaluator, strict_asserts: bool = True):
        self.evaluator = evaluator
        self.strict_asserts = strict_asserts
        self.assert_failures = 0
        self.printer = Printer()
        for name, member in inspect.getmembers(self):
            spec = getattr(member, '_taiko_builtin', None)
            if spec is None:
                continue
            owner, aliases = spec
            for alias in aliases:
                evaluator.register_native(owner, alias, member)

    def _arity(self, args: List[Any], expected: int):
        if len(args) != expected:
            raise ArgumentError(len(args), expected)

    def _expect(self, value: Any, kind: type, what: str):
        if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
            cls = self.evaluator.class_of(value).name
            raise TaikoTypeError(f"no implicit conversion of {cls} into {what}")
        return value

    def _emit(self, topic: str, message: str, **extra):
        """Appends a side-effect event for the host application."""
        event = {"topics": [topic], "message": message, **extra}
        self.evaluator.side_effects.append(event)

    # --- Kernel: output and assertion sinks ---

    def _puts_lines(self, value: Any, out: List[str]):
        if isinstance(value, list):
            if not value:
                out.append("")
            for item in value:
                self._puts_lines(item, out)
        else:
            out.append(self.printer.to_s(value))

    @taiko_builtin('Kernel', 'puts')
    def _puts(self, receiver, args, block):
        lines: List[str] = []
        for value in args:
            self._puts_lines(value, lines)
        for line in lines or [""]:
            self._emit("stdout", line)
        return None

    @taiko_builtin('Kernel', 'print')
    def _print(self, receiver, args, block):
        self._emit("stdout", "".join(self.printer.to_s(v) for v in args), end="")
        return None

    @taiko_builtin('Kernel', 'p')
    def _p(self, receiver, args, block):
        for value in args:
            self._emit("stdout", self.printer.pformat(value))
        if not args:
            return None
        return args[0] if len(args) == 1 else list(args)

    @taiko_builtin('Kernel', 'assert')
    def _assert(self, receiver, args, block):
        self._arity(args, 2)
        actual, expected = args
        if values_equal(actual, expected):
            return None
        pf = self.printer.pformat
        message = f"assertion failed: expected {pf(expected)}, got {pf(actual)}"
        if self.strict_asserts:
            raise AssertionFailure(actual, expected, message)
        self.assert_failures += 1
        node = self.evaluator.current_node
        loc = node.location() if isinstance(node, Node) else None
        where = f" (line {loc[0]})" if loc else ""
        self._emit("assert", message + where)
        return None

    # --- Integer ---

    @taiko_builtin('Integer', 'times')
    def _int_times(self, receiver, args, block):
        self._arity(args, 0)
        if block is None:
            raise ArgumentError(message="times requires a block")
        for i in range(receiver):
            self.evaluator.invoke_block(block, [i])
        return None

    @taiko_builtin('Integer', 'to_s')
    def _int_to_s(self, receiver, args, block):
        self._arity(args, 0)
        return str(receiver)

    @taiko_builtin('Integer', 'to_i')
    def _int_to_i(self, receiver, args, block):
        self._arity(args, 0)
        return receiver

    @taiko_builtin('Integer', 'abs')
    def _int_abs(self, receiver, args, block):
        self._arity(args, 0)
        return abs(receiver)

    # --- String ---

    @taiko_builtin('String', 'to_i')
    def _str_to_i(self, receiver, args, block):
        self._arity(args, 0)
        m = _LEADING_INT.match(receiver)
        return int(m.group(1).replace('_', '')) if m else 0

    @taiko_builtin('String', 'to_s')
    def _str_to_s(self, receiver, args, block):
        self._arity(args, 0)
        return receiver

    @taiko_builtin('String', 'len', 'length', 'size')
    def _str_len(self, receiver, args, block):
        self._arity(args, 0)
        return len(receiver)

    @taiko_builtin('String', 'upcase')
    def _str_upcase(self, receiver, args, block):
        self._arity(args, 0)
        return receiver.upper()

    @taiko_builtin('String', 'downcase')
    def _str_downcase(self, receiver, args, block):
        self._arity(args, 0)
        return receiver.lower()

    # --- Array ---

    @taiko_builtin('Array', 'each')
    def _array_each(self, receiver, args, block):
        self._arity(args, 0)
        if block is None:
            raise ArgumentError(message="each requires a block")
        i = 0
        # Index-based so elements appended by the block are visited too.
        while i < len(receiver):
            self.evaluator.invoke_block(block, [receiver[i]])
            i += 1
        return None

    @taiko_builtin('Array', 'len', 'length', 'size')
    def _array_len(self, receiver, args, block):
        self._arity(args, 0)
        return len(receiver)

    @taiko_builtin('Array', 'first')
    def _array_first(self, receiver, args, block):
        self._arity(args, 0)
        return receiver[0] if receiver else None

    @taiko_builtin('Array', 'last')
    def _array_last(self, receiver, args, block):
        self._arity(args, 0)
        return receiver[-1] if receiver else None

    @taiko_builtin('Array', 'push')
    def _array_push(self, receiver, args, block):
        receiver.extend(args)
        return receiver

    @taiko_builtin('Array', 'join')
    def _array_join(self, receiver, args, block):
        if len(args) > 1:
            raise ArgumentError(len(args), 1)
        sep = self._expect(args[0], str, 'String') if args else ""
        return sep.join(self.printer.to_s(v) for v in receiver)

    # --- Class ---

    @taiko_builtin('Class', 'new')
    def _class_new(self, receiver, args, block):
        self._arity(args, 0)
        return self.evaluator.new_instance(receiver)

    @taiko_builtin('Class', 'name')
    def _class_name(self, receiver, args, block):
        self._arity(args, 0)
        return receiver.name

    @taiko_builtin('Class', 'superclass')
    def _class_superclass(self, receiver, args, block):
        self._arity(args, 0)
        return receiver.superclass

    # --- Object (every value) ---

    @taiko_builtin('Object', 'class')
    def _obj_class(self, receiver, args, block):
        self._arity(args, 0)
        return self.evaluator.class_of(receiver)

    @taiko_builtin('Object', 'to_s')
    def _obj_to_s(self, receiver, args, block):
        self._arity(args, 0)
        return self.printer.to_s(receiver)

    @taiko_builtin('Object', 'inspect')
    def _obj_inspect(self, receiver, args, block):
        self._arity(args, 0)
        return self.printer.pformat(receiver)

    @taiko_builtin('Object', 'instance_variables')
    def _obj_instance_variables(self, receiver, args, block):
        self._arity(args, 0)
        if isinstance(receiver, AttributeBearer):
            return receiver.ivar_names()
        return []



# ===================================================================
# 3. Script Execution
# ===================================================================

Token = Dict[str, Any]


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Token] = None
    side_effects: List[Dict] = field(default_factory=list)
    assert_failures: int = 0

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and self.error_token.get('line') is not None:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg

    def stdout(self) -> str:
        """The text written by puts/print/p during the run."""
        return "".join(e['message'] + e.get('end', '\n')
                       for e in self.side_effects if e.get('topics') == ['stdout'])


class ScriptRunner:
    """Parses, transforms, and executes taiko code.

    One runner owns one Evaluator, so the top-level frame, classes and
    globals persist across calls to `handle_script`.
    """

    _core_tree: Optional[Seq] = None

    def __init__(self, host_object: Optional[TaikoHost] = None, load_core: bool = True,
                 strict_asserts: bool = True):
        self.host_object = host_object
        self._initialized = False
        self._load_core = load_core
        self.parser = TaikoParser()
        self.printer = Printer()
        self.evaluator = Evaluator()
        self.evaluator.host_object = host_object
        self.stdlib = StdLib(self.evaluator, strict_asserts=strict_asserts)
        self._host_api_names: set = set()
        self._shadowed_kernel: Dict[str, Any] = {}

    @property
    def root_frame(self):
        return self.evaluator.root_frame

    def _initialize(self):
        """Evaluates root.rb into the top-level frame once per runner."""
        if self._initialized or not self._load_core:
            self._initialized = True
            return
        # The tree is parsed once and cached on the class
        if ScriptRunner._core_tree is None:
            core_path = Path(__file__).parent / "root.rb"
            core_source = core_path.read_text(encoding="utf-8")
            try:
                ScriptRunner._core_tree = self.parser.parse(core_source)
            except ParseError as e:
                raise RuntimeError(f"Failed to parse root.rb:\n{self._format_parse_error(e, core_source)}") from e
        self.evaluator.eval(ScriptRunner._core_tree, self.evaluator.root_frame)
        self._initialized = True

    def _bind_host_api_methods(self):
        """Bind @taiko_api_method methods of the host as Kernel functions."""
        kernel = self.evaluator.kernel
        for name in self._host_api_names:
            kernel.pop(name, None)
            if name in self._shadowed_kernel:
                kernel[name] = self._shadowed_kernel.pop(name)
        self._host_api_names = set()

        host = self.host_object
        if not host:
            return
        for name, member in inspect.getmembers(host):
            if not callable(member):
                continue
            is_api = getattr(member, "_is_taiko_api", False)
            if not is_api:
                func = getattr(member, "__func__", None)
                is_api = func is not None and getattr(func, "_is_taiko_api", False)
            if not is_api:
                continue
            if name in kernel:
                self._shadowed_kernel[name] = kernel[name]
            kernel[name] = self._host_adapter(member)
            self._host_api_names.add(name)

    def _host_adapter(self, member):
        def call_host(receiver, args, block):
            return member(*args)
        call_host.__name__ = getattr(member, '__name__', 'host')
        return call_host

    # --- Error formatting ---

    def _format_parse_error(self, e: ParseError, source: str) -> str:
        if e.line is not None and e.col is not None:
            return f"ParseError: {e.message} (line {e.line}, col {e.col})\n{self._source_context(source, e.line, e.col)}"
        return f"ParseError: {e.message}"

    def _format_runtime_error(self, e: Exception, source: Optional[str], node) -> tuple[str, Optional[dict]]:
        match e:
            case TaikoError():
                msg = f"{e.kind}: {e.message}"
            case RecursionError():
                msg = "SystemStackError: stack level too deep"
            case _:
                msg = f"InternalError: {type(e).__name__}: {e}"

        token = None
        offender = getattr(e, 'taiko_obj', None) or node
        loc = getattr(offender, 'loc', None) if offender is not None else None
        if loc and isinstance(loc, dict):
            line = loc.get('line')
            col = loc.get('col')
            token = {'line': line, 'col': col, 'tag': offender.tag() if isinstance(offender, Node) else None}
            if line is not None and col is not None:
                msg = f"{msg}\n(line {line}, col {col})"
                context = self._source_context(source, line, col) if source else ""
                if context:
                    msg = f"{msg}\n{context}"

        st = self._format_stacktrace()
        if st:
            msg += "\n" + st
        return msg, token

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            out.append(f"{prefix} {ln} | {lines[i - 1]}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _format_stacktrace(self) -> str:
        stack = self.evaluator.call_stack
        if not stack:
            return ""
        frames = []
        for frame in stack:
            name = frame.get('name') or '<call>'
            args = " ".join(self.printer.pformat(a) for a in frame.get('args') or [])
            site = frame.get('call_site') or {}
            where = f"@{site['line']}" if site.get('line') is not None else ""
            frames.append(f"({name}{' ' + args if args else ''}){where}")
        return "taiko stacktrace: " + " ".join(frames)

    # --- Entry points ---

    def _begin_run(self):
        self.evaluator.side_effects.clear()
        self.evaluator.call_stack.clear()
        self.evaluator.current_node = None
        self.evaluator.host_object = self.host_object
        self.stdlib.assert_failures = 0

    def _error_result(self, msg: str, token: Optional[Token] = None) -> ExecutionResult:
        self.evaluator.side_effects.append({'topics': ['stderr'], 'message': msg})
        return ExecutionResult(
            status='error',
            error_message=msg,
            error_token=token,
            side_effects=list(self.evaluator.side_effects),
            assert_failures=self.stdlib.assert_failures,
        )

    def _eval_deep(self, tree: Node) -> Any:
        """Evaluates `tree` on a worker thread with a large stack and a raised
        recursion limit, re-raising whatever the evaluation raised."""
        outcome: Dict[str, Any] = {}

        def work():
            try:
                outcome['value'] = self.evaluator.eval(tree, self.evaluator.root_frame)
            except BaseException as e:
                outcome['error'] = e

        old_limit = sys.getrecursionlimit()
        sys.setrecursionlimit(max(old_limit, EVAL_RECURSION_LIMIT))
        try:
            old_size = threading.stack_size(EVAL_STACK_SIZE)
            try:
                worker = threading.Thread(target=work, name="taiko-eval")
                worker.start()
            finally:
                threading.stack_size(old_size)
            worker.join()
        finally:
            sys.setrecursionlimit(old_limit)
        if 'error' in outcome:
            raise outcome['error']
        return outcome.get('value')

    def _run_tree(self, tree: Node, source: Optional[str]) -> ExecutionResult:
        try:
            self._initialize()
            self._bind_host_api_methods()
            result = self._eval_deep(tree)
        except Exception as e:
            err_msg, err_token = self._format_runtime_error(e, source, self.evaluator.current_node)
            return self._error_result(err_msg, err_token)
        return ExecutionResult(
            status='success',
            value=result,
            side_effects=list(self.evaluator.side_effects),
            assert_failures=self.stdlib.assert_failures,
        )

    async def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script."""
        self._begin_run()
        try:
            tree = self.parser.parse(source_code)
        except ParseError as e:
            token = {'line': e.line, 'col': e.col, 'tag': 'parse_error'}
            return self._error_result(self._format_parse_error(e, source_code), token)
        return self._run_tree(tree, source_code)

    async def handle_tree(self, tree: Node, source_code: Optional[str] = None) -> ExecutionResult:
        """Executes an already-built node tree (e.g. loaded by taiko_serialize)."""
        self._begin_run()
        if not isinstance(tree, Node):
            return self._error_result(f"TypeError: expected a node tree, got {type(tree).__name__}")
        return self._run_tree(tree, source_code)
