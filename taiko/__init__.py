from taiko.taiko_runtime import ScriptRunner, ExecutionResult, StdLib, TaikoHost, taiko_api_method
from taiko.taiko_interpreter import Evaluator
from taiko.taiko_transformer import TaikoParser, ParseError, parse

__all__ = [
    "ScriptRunner",
    "ExecutionResult",
    "StdLib",
    "TaikoHost",
    "taiko_api_method",
    "Evaluator",
    "TaikoParser",
    "ParseError",
    "parse",
]
