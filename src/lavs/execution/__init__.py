"""Handler executors for script and function endpoints."""

from lavs.execution.context import ExecutionContext
from lavs.execution.function import FunctionExecutor
from lavs.execution.output import extract_json, parse_output
from lavs.execution.script import ScriptExecutor, resolve_args

__all__ = [
    "ExecutionContext",
    "FunctionExecutor",
    "ScriptExecutor",
    "extract_json",
    "parse_output",
    "resolve_args",
]
