import pytest

from safe_py_supervisor import SupervisorConfig
from safe_py_supervisor.execution.context import ExecutionContext


async def _violation(code: str, **overrides) -> str:
    context = ExecutionContext(SupervisorConfig(**overrides).handshake())
    message = await context.run(code)
    assert message["type"] == "error", message
    assert message["error"]["kind"] == "CapabilityViolation", message
    return message["error"]["message"]


@pytest.mark.parametrize(
    "name",
    ["eval", "exec", "compile", "open", "getattr", "setattr", "type", "globals", "locals", "vars", "dir", "input", "breakpoint", "memoryview", "object"],
)
async def test_ambient_builtins_are_blocked(name: str) -> None:
    """Reading any ambient builtin outside the table raises."""
    message = await _violation(f"{name}")
    assert message.endswith(f": {name}")


async def test_dunder_import_bypass_attempt() -> None:
    """Attempt to bypass the import block using __import__."""
    assert (await _violation("os = __import__('os')")).endswith("__import__")


async def test_import_statements_are_blocked() -> None:
    assert (await _violation("import os")).endswith("os")
    assert (await _violation("import importlib\nimportlib.import_module('os')")).endswith("importlib")
    assert (await _violation("from subprocess import run")).endswith("subprocess")


async def test_class_hierarchy_walk_is_blocked() -> None:
    """The classic ().__class__.__base__.__subclasses__() walk."""
    message = await _violation("().__class__.__base__.__subclasses__()")
    assert message.endswith("__subclasses__") or message.endswith("__class__")


async def test_function_globals_are_unreachable() -> None:
    for code in (
        "json.dumps.__globals__",
        "(lambda: 1).__code__",
        "print.__self__",
        "console.log.__self__",
        "sorted.__self__",
        "math.__dict__",
    ):
        await _violation(code)


async def test_frame_introspection_is_blocked() -> None:
    traceback_walk = (
        "try:\n"
        "    1 / 0\n"
        "except Exception as exc:\n"
        "    exc.__traceback__"
    )
    assert (await _violation(traceback_walk)).endswith("__traceback__")
    assert (await _violation("g = (i for i in [1])\ng.gi_frame")).endswith("gi_frame")
    coroutine_walk = "async def inner():\n    pass\nc = inner()\nc.cr_frame"
    assert (await _violation(coroutine_walk)).endswith("cr_frame")


async def test_format_string_attribute_walk_is_blocked() -> None:
    assert (await _violation("'{0.__class__}'.format(1)")).endswith("format")
    assert (await _violation("str.format_map('{x}', {'x': 1})")).endswith("format_map")


async def test_match_class_attribute_walk_is_blocked() -> None:
    code = "match 1:\n    case int(__class__=cls):\n        cls"
    assert (await _violation(code)).endswith("__class__")


async def test_capabilities_cannot_be_mutated() -> None:
    assert (await _violation("math.pi = 3")).endswith("math.pi")
    assert (await _violation("list.copy = None")).endswith("list.copy")


async def test_namespace_members_are_limited() -> None:
    assert (await _violation("json.JSONEncoder")).endswith("json.JSONEncoder")
    assert (await _violation("re.sre_compile")).endswith("re.sre_compile")


async def test_private_fetch_response_fields_are_blocked() -> None:
    code = "r = None\nr._body"
    assert (await _violation(code)).endswith("_body")


async def test_shadowing_capabilities_stays_local() -> None:
    context = ExecutionContext(SupervisorConfig().handshake())
    shadowed = await context.run("len = lambda value: 0\nlen([1, 2])")
    restored = await context.run("len([1, 2])")
    assert shadowed["result"] == "0"
    assert restored["result"] == "2"
