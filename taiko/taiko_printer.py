"""
Renders taiko values as text: `to_s` (what `puts` shows) and `pformat`
(the `inspect` form used by `p`, the REPL and error messages).
"""

from taiko.taiko_datatypes import TaikoClass, TaikoObject, Method, Block

_INSPECT_ESCAPES = {'\\': '\\\\', '"': '\\"', '\n': '\\n', '\t': '\\t', '\r': '\\r', '\x1b': '\\e'}


class Printer:
    """Formats taiko values into readable strings."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def pformat(self, obj) -> str:
        """Inspect form: strings quoted, nil spelled out."""
        return self._get_handler(obj)(obj, set())

    def to_s(self, obj) -> str:
        """Display form: strings raw, nil empty, everything else as inspected."""
        if obj is None:
            return ""
        if isinstance(obj, str):
            return obj
        if isinstance(obj, TaikoObject):
            return obj.label if obj.label else f"#<{obj.cls.name}>"
        return self.pformat(obj)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, TaikoClass):
            return self._pformat_class
        if isinstance(obj, TaikoObject):
            return self._pformat_object
        if isinstance(obj, list):
            return self._pformat_array
        return lambda o, seen: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_int,
            bool: self._pformat_bool,
            type(None): self._pformat_nil,
            list: self._pformat_array,
            TaikoClass: self._pformat_class,
            TaikoObject: self._pformat_object,
            Method: self._pformat_method,
            Block: self._pformat_block,
        }

    def _pformat_str(self, obj, seen):
        return '"' + ''.join(_INSPECT_ESCAPES.get(ch, ch) for ch in obj) + '"'

    def _pformat_int(self, obj, seen):
        return str(obj)

    def _pformat_bool(self, obj, seen):
        return 'true' if obj else 'false'

    def _pformat_nil(self, obj, seen):
        return 'nil'

    def _pformat_array(self, obj, seen):
        if id(obj) in seen:
            return '[...]'
        seen = seen | {id(obj)}
        return '[' + ', '.join(self._get_handler(item)(item, seen) for item in obj) + ']'

    def _pformat_class(self, obj, seen):
        return obj.name

    def _pformat_object(self, obj, seen):
        if obj.label:
            return obj.label
        if id(obj) in seen or not obj.ivars:
            return f"#<{obj.cls.name}>"
        seen = seen | {id(obj)}
        attrs = ', '.join(f"@{name}={self._get_handler(v)(v, seen)}" for name, v in obj.ivars.items())
        return f"#<{obj.cls.name} {attrs}>"

    def _pformat_method(self, obj, seen):
        owner = obj.owner.name if obj.owner else '?'
        return f"#<Method {owner}#{obj.name}>"

    def _pformat_block(self, obj, seen):
        return "#<Proc>"
