"""Static checks and rewriting applied to caller code before compilation."""

from __future__ import annotations

import ast
import keyword
from types import CodeType
from typing import Any, Iterable, cast

from ..errors import CapabilityViolation

SNIPPET_FUNCTION = "__snippet__"
JOIN_HELPER = "__guarded_join__"
SNIPPET_FILENAME = "<snippet>"

# Introspection attributes that lead from ordinary objects to frames, code
# objects or arbitrary attribute walks.
BLOCKED_ATTRIBUTES = frozenset(
    {
        "ag_await",
        "ag_code",
        "ag_frame",
        "co_code",
        "co_consts",
        "cr_await",
        "cr_code",
        "cr_frame",
        "f_back",
        "f_builtins",
        "f_code",
        "f_globals",
        "f_locals",
        "format",
        "format_map",
        "gi_code",
        "gi_frame",
        "gi_yieldfrom",
        "mro",
        "tb_frame",
        "tb_next",
    }
)


def _check_name(name: str) -> None:
    """Reject dunder identifiers.

    Example:
        ```python
        _check_name("__builtins__")  # raises CapabilityViolation
        ```
    """
    if name.startswith("__"):
        raise CapabilityViolation(name)


def _check_attribute(attr: str) -> None:
    """Reject private and introspection attributes.

    Example:
        ```python
        _check_attribute("__class__")  # raises CapabilityViolation
        ```
    """
    if attr.startswith("_") or attr in BLOCKED_ATTRIBUTES:
        raise CapabilityViolation(attr)


class _SnippetGuard(ast.NodeVisitor):
    """Walk the caller's tree and raise on the first blocked construct.

    Example:
        ```python
        _SnippetGuard().visit(ast.parse("x = 1"))
        ```
    """

    def visit_Name(self, node: ast.Name) -> None:
        """Check plain names.

        Example:
            ```python
            guard.visit(ast.parse("__import__"))
            ```
        """
        _check_name(node.id)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        """Check attribute names, then the object expression.

        Example:
            ```python
            guard.visit(ast.parse("x.__class__"))
            ```
        """
        _check_attribute(node.attr)
        self.generic_visit(node)

    def visit_Import(self, node: ast.Import) -> None:
        """Imports are never available.

        Example:
            ```python
            guard.visit(ast.parse("import os"))
            ```
        """
        raise CapabilityViolation(node.names[0].name)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        """`from x import y` is never available.

        Example:
            ```python
            guard.visit(ast.parse("from os import path"))
            ```
        """
        raise CapabilityViolation(node.module or "." * node.level)

    def visit_Global(self, node: ast.Global) -> None:
        """Check names declared global.

        Example:
            ```python
            guard.visit(ast.parse("global __builtins__"))
            ```
        """
        for name in node.names:
            _check_name(name)

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        """Check names declared nonlocal.

        Example:
            ```python
            guard.visit(ast.parse("def f():\\n    nonlocal x"))
            ```
        """
        for name in node.names:
            _check_name(name)

    def visit_MatchClass(self, node: ast.MatchClass) -> None:
        """Class patterns read attributes by keyword.

        Example:
            ```python
            guard.visit(ast.parse("match x:\\n    case int(__class__=c): pass"))
            ```
        """
        for attr in node.kwd_attrs:
            _check_attribute(attr)
        self.generic_visit(node)


class _JoinRewriter(ast.NodeTransformer):
    """Replace every `<expr>.join` load with `__guarded_join__(<expr>)`.

    Example:
        ```python
        tree = _JoinRewriter().visit(ast.parse("', '.join(items)"))
        ```
    """

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        """Rewrite `.join` reads; leave everything else in place.

        Example:
            ```python
            rewriter.visit_Attribute(ast.parse("s.join", mode="eval").body)
            ```
        """
        self.generic_visit(node)
        if node.attr != "join" or not isinstance(node.ctx, ast.Load):
            return node
        call = ast.Call(
            func=ast.Name(id=JOIN_HELPER, ctx=ast.Load()),
            args=[node.value],
            keywords=[],
        )
        return ast.copy_location(call, node)


def validate_param_names(names: Iterable[str]) -> list[str]:
    """Check that caller parameters can be bound as keyword arguments.

    Example:
        ```python
        validate_param_names(["x", "rows"])
        ```
    """
    checked: list[str] = []
    for name in names:
        if not isinstance(name, str) or not name.isidentifier() or keyword.iskeyword(name):
            raise ValueError(f"Invalid parameter name: {name!r}")
        if name.startswith("_"):
            raise CapabilityViolation(name)
        checked.append(name)
    return checked


def compile_snippet(code: str, param_names: Iterable[str] = ()) -> CodeType:
    """Check, wrap and compile caller code into a module defining the snippet function.

    The body becomes `async def __snippet__(*, <params>)`. A trailing
    expression statement is turned into the return value.

    Example:
        ```python
        code_obj = compile_snippet("x + 1", ["x"])
        ```
    """
    params = validate_param_names(param_names)
    tree = ast.parse(code, filename=SNIPPET_FILENAME, mode="exec")
    _SnippetGuard().visit(tree)

    body = list(tree.body)
    if body and isinstance(body[-1], ast.Expr):
        last = body[-1]
        body[-1] = ast.copy_location(ast.Return(value=last.value), last)

    signature = f"*, {', '.join(params)}" if params else ""
    module = ast.parse(f"async def {SNIPPET_FUNCTION}({signature}):\n    pass\n")
    function = cast(ast.AsyncFunctionDef, module.body[0])
    if body:
        function.body = body

    module = _JoinRewriter().visit(module)
    ast.fix_missing_locations(module)
    return compile(module, SNIPPET_FILENAME, "exec")
