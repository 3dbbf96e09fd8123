"""
Node-tree interchange: converts taiko node trees to plain dicts/lists and
to JSON or YAML text, and back.

Each node becomes a mapping with a snake_case `tag` (e.g. 'method_def')
plus one key per field; `loc` is carried when present. This is the format
an external parser uses to hand trees to ScriptRunner.handle_tree.
"""
from __future__ import annotations

import json
import re
from dataclasses import fields
from typing import Any, Optional

import yaml

from taiko.taiko_nodes import Node, NODE_TYPES


class TreeFormatError(ValueError):
    """Raised when serialized data does not describe a valid node tree."""


def to_builtin(obj: Any, *, include_loc: bool = True) -> Any:
    if isinstance(obj, Node):
        out = {'tag': obj.tag()}
        for name, value in obj.children():
            out[name] = to_builtin(value, include_loc=include_loc)
        if include_loc and obj.loc:
            out['loc'] = dict(obj.loc)
        return out
    if isinstance(obj, (list, tuple)):
        return [to_builtin(x, include_loc=include_loc) for x in obj]
    return obj


def from_builtin(data: Any) -> Any:
    if isinstance(data, list):
        return [from_builtin(x) for x in data]
    if not isinstance(data, dict):
        return data
    tag = data.get('tag')
    cls = NODE_TYPES.get(tag)
    if cls is None:
        raise TreeFormatError(f"unknown node tag: {tag!r}")
    names = {f.name for f in fields(cls) if f.name != 'loc'}
    unknown = set(data) - names - {'tag', 'loc'}
    if unknown:
        raise TreeFormatError(f"unexpected fields for {tag}: {', '.join(sorted(unknown))}")
    kwargs = {k: from_builtin(v) for k, v in data.items() if k in names}
    try:
        node = cls(**kwargs)
    except TypeError as e:
        raise TreeFormatError(f"invalid {tag} node: {e}") from e
    if isinstance(data.get('loc'), dict):
        node.loc = dict(data['loc'])
    return node


def detect_format(path_or_content_type: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns 'json' or 'yaml' from a file name, a Content-Type, or by
    sniffing `data_hint`; None when undecided.
    """
    hint = (path_or_content_type or "").lower()
    if 'json' in hint:
        return 'json'
    if 'yaml' in hint or hint.endswith('.yml'):
        return 'yaml'
    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
        if re.match(r'(---\s*\n)?tag\s*:', s):
            return 'yaml'
    return None


def serialize(node: Node, *, fmt: str = 'json', pretty: bool = True, include_loc: bool = True) -> str:
    """Converts a node tree into JSON or YAML text."""
    f = (fmt or '').lower()
    built = to_builtin(node, include_loc=include_loc)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f in ('yaml', 'yml'):
        return yaml.safe_dump(built, sort_keys=False)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def deserialize(data: bytes | bytearray | str, *, fmt: Optional[str] = None,
                content_type: Optional[str] = None) -> Node:
    """Loads a node tree from JSON or YAML text."""
    text = data.decode('utf-8') if isinstance(data, (bytes, bytearray)) else data
    f = fmt or detect_format(content_type, text)
    try:
        if f == 'json':
            raw = json.loads(text)
        elif f in ('yaml', 'yml', None):
            raw = yaml.safe_load(text)
        else:
            raise ValueError(f"Unsupported serialization format: {fmt!r}")
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise TreeFormatError(f"malformed {f or 'yaml'} tree: {e}") from e
    node = from_builtin(raw)
    if not isinstance(node, Node):
        raise TreeFormatError("top level of a serialized tree must be a node")
    return node


__all__ = [
    "TreeFormatError",
    "to_builtin",
    "from_builtin",
    "deserialize",
    "serialize",
    "detect_format",
]
