# expressions.py
#
# Renders the ${{ ... }} placeholders a workflow definition uses:
#   ${{ runner.os }}
#   ${{ steps.toolchain.outputs.rustc_hash }}
#   ${{ secrets.DOCKERHUB_TOKEN }}
#   ${{ hashFiles('**/Cargo.lock') }}
# Only lookups and hashFiles(...) are supported, no operators.

from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Mapping

from .errors import ExpressionError

_PLACEHOLDER = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")
_CALL = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\((.*)\)$", re.DOTALL)
_PATH = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*(\.[A-Za-z_][A-Za-z0-9_-]*)*$")
_STRING_ARG = re.compile(r"\s*'((?:[^']|'')*)'\s*(?:,|$)")


def _parse_args(raw: str) -> List[str]:
    args: List[str] = []
    pos = 0
    raw = raw.strip()
    while pos < len(raw):
        m = _STRING_ARG.match(raw, pos)
        if not m:
            raise ExpressionError(f"Only quoted string arguments are supported: ({raw})")
        args.append(m.group(1).replace("''", "'"))
        pos = m.end()
    return args


def _lookup(context: Mapping[str, Any], path: str) -> str:
    node: Any = context
    for part in path.split("."):
        if isinstance(node, Mapping) and part in node:
            node = node[part]
        else:
            # unknown context paths render empty, like the hosted runners do
            return ""
    if node is None:
        return ""
    if isinstance(node, bool):
        return "true" if node else "false"
    return str(node)


def evaluate(expr: str, context: Mapping[str, Any], functions: Mapping[str, Callable[..., str]]) -> str:
    expr = expr.strip()
    call = _CALL.match(expr)
    if call:
        name, raw_args = call.group(1), call.group(2)
        fn = functions.get(name)
        if fn is None:
            raise ExpressionError(f"Unknown function: {name}()")
        return str(fn(*_parse_args(raw_args)))
    if _PATH.match(expr):
        return _lookup(context, expr)
    raise ExpressionError(f"Unsupported expression: {expr!r}")


def render(
    value: Any,
    context: Mapping[str, Any],
    functions: Mapping[str, Callable[..., str]] | None = None,
) -> Any:
    """Render placeholders in strings, recursively through lists and dicts."""
    functions = functions or {}
    if isinstance(value, str):
        return _PLACEHOLDER.sub(lambda m: evaluate(m.group(1), context, functions), value)
    if isinstance(value, list):
        return [render(v, context, functions) for v in value]
    if isinstance(value, tuple):
        return tuple(render(v, context, functions) for v in value)
    if isinstance(value, dict):
        return {k: render(v, context, functions) for k, v in value.items()}
    return value


def referenced_secrets(value: Any) -> List[str]:
    """Names of secrets.X referenced anywhere in value."""
    found: List[str] = []
    if isinstance(value, str):
        for m in _PLACEHOLDER.finditer(value):
            expr = m.group(1).strip()
            if expr.startswith("secrets."):
                found.append(expr[len("secrets."):])
    elif isinstance(value, (list, tuple)):
        for v in value:
            found.extend(referenced_secrets(v))
    elif isinstance(value, dict):
        for v in value.values():
            found.extend(referenced_secrets(v))
    return found


def secret(name: str) -> str:
    """Reference to a secret, resolved only when the step runs."""
    return "${{ secrets.%s }}" % name


def build_context(
    *,
    os_name: str,
    event: Any,
    run_id: str,
    step_outputs: Dict[str, Dict[str, str]],
    secrets: Mapping[str, str],
    env: Mapping[str, str],
) -> Dict[str, Any]:
    return {
        "runner": {"os": os_name},
        "github": {
            "sha": getattr(event, "sha", ""),
            "ref": f"refs/heads/{getattr(event, 'branch', '')}",
            "ref_name": getattr(event, "branch", ""),
            "run_id": run_id,
            "event_name": "push",
        },
        "steps": {k: {"outputs": v} for k, v in step_outputs.items()},
        "secrets": dict(secrets),
        "env": dict(env),
    }
