"""Capability table for the execution context.

Caller code never sees the interpreter's ambient builtins. The worker builds
one `GuardedBuiltins` mapping from the explicit tables below; any name that is
not in the mapping raises `CapabilityViolation` when read.
"""

from __future__ import annotations

import asyncio
import builtins
import datetime
import decimal
import fractions
import functools
import itertools
import json
import math
import random
import re
import statistics
import time
from typing import Any, Callable, Iterable, Mapping

import structlog

from ..errors import CapabilityViolation, ResourceLimitExceeded

MAX_COLLECTION_ITEMS = 500
_JOIN_TYPES = (str, bytes, bytearray)

_logger = structlog.get_logger(__name__)


class GuardedBuiltins(dict):
    """Builtins mapping that raises on every name outside the table.

    Example:
        ```python
        table = GuardedBuiltins({"len": len})
        ```
    """

    def __missing__(self, key: str) -> Any:
        """Raise a capability violation for an unknown name.

        Example:
            ```python
            GuardedBuiltins()["open"]  # raises CapabilityViolation
            ```
        """
        raise CapabilityViolation(str(key))

    def __setitem__(self, key: str, value: Any) -> None:
        """Refuse redefinition of an installed capability.

        Example:
            ```python
            GuardedBuiltins()["len"] = print  # raises CapabilityViolation
            ```
        """
        raise CapabilityViolation(str(key))

    def __delitem__(self, key: str) -> None:
        """Refuse removal of an installed capability.

        Example:
            ```python
            del GuardedBuiltins({"len": len})["len"]  # raises CapabilityViolation
            ```
        """
        raise CapabilityViolation(str(key))


class CapabilityNamespace:
    """Read-only namespace exposing selected callables instead of a module.

    Example:
        ```python
        ns = CapabilityNamespace("json", {"dumps": json.dumps})
        ```
    """

    __slots__ = ("_name", "_members")

    def __init__(self, name: str, members: Mapping[str, Any]) -> None:
        """Store the namespace name and a copy of its members.

        Example:
            ```python
            ns = CapabilityNamespace("math", {"pi": math.pi})
            ```
        """
        object.__setattr__(self, "_name", name)
        object.__setattr__(self, "_members", dict(members))

    def __getattr__(self, attr: str) -> Any:
        """Resolve a member or raise a capability violation.

        Example:
            ```python
            ns.dumps
            ```
        """
        members = object.__getattribute__(self, "_members")
        if attr in members:
            return members[attr]
        name = object.__getattribute__(self, "_name")
        raise CapabilityViolation(f"{name}.{attr}")

    def __setattr__(self, attr: str, value: Any) -> None:
        """Refuse attribute assignment.

        Example:
            ```python
            ns.pi = 3  # raises CapabilityViolation
            ```
        """
        raise CapabilityViolation(f"{object.__getattribute__(self, '_name')}.{attr}")

    def __delattr__(self, attr: str) -> None:
        """Refuse attribute deletion.

        Example:
            ```python
            del ns.pi  # raises CapabilityViolation
            ```
        """
        raise CapabilityViolation(f"{object.__getattribute__(self, '_name')}.{attr}")

    def __dir__(self) -> list[str]:
        """List the exposed member names.

        Example:
            ```python
            dir(ns)
            ```
        """
        return sorted(object.__getattribute__(self, "_members"))

    def __repr__(self) -> str:
        """Render a short description.

        Example:
            ```python
            repr(ns)
            ```
        """
        return f"<capability {object.__getattribute__(self, '_name')}>"


def _namespace(name: str, source: Any, members: Iterable[str]) -> CapabilityNamespace:
    """Build a namespace from the members `source` actually provides.

    Example:
        ```python
        ns = _namespace("json", json, ["dumps", "loads"])
        ```
    """
    found: dict[str, Any] = {}
    for member in members:
        if hasattr(source, member):
            found[member] = getattr(source, member)
        else:
            _logger.debug("capability.member_missing", namespace=name, member=member)
    return CapabilityNamespace(name, found)


class _BoundedListType(type):
    """Metaclass making `list` a bounded constructor that still type-checks as list.

    Example:
        ```python
        BoundedList(range(3))  # [0, 1, 2]
        ```
    """

    def __call__(cls, iterable: Iterable[Any] = (), /) -> list[Any]:
        """Build a real list, refusing more than MAX_COLLECTION_ITEMS items.

        Example:
            ```python
            BoundedList("abc")
            ```
        """
        items = list(itertools.islice(iterable, MAX_COLLECTION_ITEMS + 1))
        if len(items) > MAX_COLLECTION_ITEMS:
            raise ResourceLimitExceeded(
                f"Too many items: list() is limited to {MAX_COLLECTION_ITEMS} items"
            )
        return items

    def __instancecheck__(cls, instance: Any) -> bool:
        """Treat every real list as an instance.

        Example:
            ```python
            isinstance([], BoundedList)  # True
            ```
        """
        return isinstance(instance, list)

    def __subclasscheck__(cls, subclass: type) -> bool:
        """Treat list subclasses as subclasses.

        Example:
            ```python
            issubclass(list, BoundedList)  # True
            ```
        """
        return issubclass(subclass, list)

    def __getattr__(cls, attr: str) -> Any:
        """Forward unbound method lookups such as `list.append` to list.

        Example:
            ```python
            BoundedList.append
            ```
        """
        return getattr(list, attr)

    def __setattr__(cls, attr: str, value: Any) -> None:
        """Refuse attribute assignment on the constructor.

        Example:
            ```python
            BoundedList.x = 1  # raises CapabilityViolation
            ```
        """
        raise CapabilityViolation(f"list.{attr}")

    def __repr__(cls) -> str:
        """Render like the builtin.

        Example:
            ```python
            repr(BoundedList)  # "<class 'list'>"
            ```
        """
        return "<class 'list'>"


class BoundedList(metaclass=_BoundedListType):
    """The `list` capability installed in the execution context."""


def _bounded_items(items: Any) -> Any:
    """Return `items` as a sized collection, refusing oversized ones.

    Example:
        ```python
        _bounded_items(["a", "b"])
        ```
    """
    try:
        size = len(items)
    except TypeError:
        try:
            iterator = iter(items)
        except TypeError:
            return items
        items = list(itertools.islice(iterator, MAX_COLLECTION_ITEMS + 1))
        size = len(items)
    if size > MAX_COLLECTION_ITEMS:
        raise ResourceLimitExceeded(
            f"Too many items: join() is limited to {MAX_COLLECTION_ITEMS} items"
        )
    return items


def bounded_join(join: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call a `join` method after checking the item count and separator length.

    Example:
        ```python
        bounded_join(", ".join, ["a", "b"])  # "a, b"
        ```
    """
    if not args:
        return join(**kwargs)
    *head, items = args
    for separator in (getattr(join, "__self__", None), *head):
        if isinstance(separator, (str, bytes)) and len(separator) > MAX_COLLECTION_ITEMS:
            raise ResourceLimitExceeded(
                f"Too many items: join() separator is limited to {MAX_COLLECTION_ITEMS} characters"
            )
    return join(*head, _bounded_items(items), **kwargs)


def guarded_join(target: Any) -> Any:
    """Resolve `target.join`, wrapping it with the item ceiling for text types.

    Only `str`, `bytes` and `bytearray` (instances or the types themselves)
    get the bounded wrapper; any other object's `join` is returned as is.

    Example:
        ```python
        guarded_join("-")(["a", "b"])  # "a-b"
        ```
    """
    join = getattr(target, "join")
    if isinstance(target, _JOIN_TYPES) or (isinstance(target, type) and issubclass(target, _JOIN_TYPES)):
        return functools.partial(bounded_join, join)
    return join


_BASE_BUILTIN_NAMES = (
    "abs",
    "all",
    "any",
    "bool",
    "dict",
    "divmod",
    "enumerate",
    "filter",
    "float",
    "frozenset",
    "int",
    "isinstance",
    "len",
    "map",
    "max",
    "min",
    "range",
    "reversed",
    "round",
    "set",
    "sorted",
    "str",
    "sum",
    "tuple",
    "zip",
    "ArithmeticError",
    "AssertionError",
    "AttributeError",
    "Exception",
    "IndexError",
    "KeyError",
    "LookupError",
    "NameError",
    "NotImplementedError",
    "OverflowError",
    "RuntimeError",
    "StopIteration",
    "TypeError",
    "ValueError",
    "ZeroDivisionError",
)

_OPTIONAL_BUILTIN_NAMES = (
    "bin",
    "bytes",
    "callable",
    "chr",
    "classmethod",
    "format",
    "hash",
    "hex",
    "iter",
    "next",
    "oct",
    "ord",
    "property",
    "repr",
    "slice",
    "staticmethod",
    "super",
)


def _from_builtins(names: Iterable[str]) -> dict[str, Any]:
    """Pick the named objects out of the interpreter builtins, skipping absent ones.

    Example:
        ```python
        table = _from_builtins(["len", "sum"])
        ```
    """
    table: dict[str, Any] = {}
    for name in names:
        value = getattr(builtins, name, None)
        if value is None:
            _logger.debug("capability.builtin_missing", name=name)
            continue
        table[name] = value
    return table


def _base_table() -> dict[str, Any]:
    """Return the capabilities every execution context receives.

    Example:
        ```python
        names = sorted(_base_table())
        ```
    """
    table = _from_builtins(_BASE_BUILTIN_NAMES)
    # Required by class statements; the guard keeps it unreachable by name.
    table["__build_class__"] = builtins.__build_class__
    table["list"] = BoundedList
    table["math"] = _namespace(
        "math", math, [name for name in dir(math) if not name.startswith("_")]
    )
    table["json"] = _namespace("json", json, ["dumps", "loads"])
    table["re"] = _namespace(
        "re",
        re,
        [
            "compile",
            "escape",
            "findall",
            "finditer",
            "fullmatch",
            "match",
            "search",
            "split",
            "sub",
            "subn",
            "ASCII",
            "DOTALL",
            "IGNORECASE",
            "MULTILINE",
            "VERBOSE",
        ],
    )
    table["date"] = datetime.date
    table["datetime"] = datetime.datetime
    table["time"] = datetime.time
    table["timedelta"] = datetime.timedelta
    table["timezone"] = datetime.timezone
    table["sleep"] = asyncio.sleep
    return table


def _optional_table() -> dict[str, Any]:
    """Return the capabilities a caller may enable via `extra_whitelist`.

    Example:
        ```python
        names = sorted(_optional_table())
        ```
    """
    table = _from_builtins(_OPTIONAL_BUILTIN_NAMES)
    table["Decimal"] = decimal.Decimal
    table["Fraction"] = fractions.Fraction
    table["statistics"] = _namespace(
        "statistics",
        statistics,
        ["mean", "median", "mode", "pstdev", "pvariance", "stdev", "variance"],
    )
    table["random"] = _namespace(
        "random", random, ["choice", "randint", "random", "sample", "shuffle", "uniform"]
    )
    table["monotonic"] = time.monotonic
    return table


BASE_CAPABILITIES: Mapping[str, Any] = _base_table()
OPTIONAL_CAPABILITIES: Mapping[str, Any] = _optional_table()
OUTPUT_CAPABILITY_NAMES = frozenset({"print", "console"})
FETCH_CAPABILITY_NAME = "fetch"
OPTIONAL_CAPABILITY_NAMES = frozenset(OPTIONAL_CAPABILITIES)


def base_capability_names() -> list[str]:
    """Return the public names every context receives, including output and fetch.

    Example:
        ```python
        "len" in base_capability_names()  # True
        ```
    """
    names = {name for name in BASE_CAPABILITIES if not name.startswith("_")}
    return sorted(names | OUTPUT_CAPABILITY_NAMES | {FETCH_CAPABILITY_NAME})


def build_builtins(
    extra_whitelist: Iterable[str],
    *,
    write: Callable[..., None],
    console: Any,
    fetch: Callable[..., Any] | None = None,
) -> GuardedBuiltins:
    """Assemble the builtins mapping for one execution context.

    `fetch` is only installed when a proxy shim is supplied; without it the
    name stays outside the table even if requested.

    Example:
        ```python
        table = build_builtins(["chr"], write=channel.write, console=ScriptConsole(channel))
        ```
    """
    table: dict[str, Any] = dict(BASE_CAPABILITIES)
    for name in sorted(set(extra_whitelist)):
        if name in OPTIONAL_CAPABILITIES:
            table[name] = OPTIONAL_CAPABILITIES[name]
        else:
            _logger.warning("capability.unknown", name=name)
    table["print"] = write
    table["console"] = console
    if fetch is not None:
        table[FETCH_CAPABILITY_NAME] = fetch
    return GuardedBuiltins(table)
