import json

import pytest

from safe_py_supervisor import SupervisorConfig
from safe_py_supervisor.execution import context as context_module
from safe_py_supervisor.execution.context import ExecutionContext, serialize_result
from safe_py_supervisor import ResultTooLarge, SerializationError


def _context(**overrides) -> ExecutionContext:
    return ExecutionContext(SupervisorConfig(**overrides).handshake())


async def _run(code: str, params=None, **overrides) -> dict:
    return await _context(**overrides).run(code, params)


def _error_kind(message: dict) -> str:
    assert message["type"] == "error", message
    return message["error"]["kind"]


def test_serialize_result_is_compact_json() -> None:
    assert serialize_result(None, 100) == "null"
    assert serialize_result({"a": 1}, 100) == '{"a":1}'
    assert serialize_result([1, "x"], 100) == '[1,"x"]'


def test_serialize_result_errors() -> None:
    with pytest.raises(SerializationError):
        serialize_result(float("nan"), 100)
    with pytest.raises(SerializationError):
        serialize_result({1, 2}, 100)
    with pytest.raises(ResultTooLarge, match="Result was too long"):
        serialize_result("x" * 200, 100)


async def test_trailing_expression_is_result() -> None:
    message = await _run("x * 2", {"x": 21})
    assert message == {"type": "result", "result": "42", "logs": [], "dropped_logs": 0}


async def test_missing_result_is_null() -> None:
    message = await _run("value = 1")
    assert message["result"] == "null"


async def test_explicit_return_of_object() -> None:
    message = await _run("return {'a': 1}")
    assert message["result"] == '{"a":1}'


async def test_params_do_not_leak_between_requests() -> None:
    context = _context()
    first = await context.run("secret", {"secret": 7})
    second = await context.run("secret")
    assert first["result"] == "7"
    assert _error_kind(second) == "CapabilityViolation"
    assert "secret" in second["error"]["message"]


async def test_logs_are_captured_and_reset() -> None:
    context = _context()
    first = await context.run("print('a', 1)\nconsole.log({'k': [1]})\nconsole.error(ValueError('v'))")
    assert first["logs"] == ["a 1", '{"k": [1]}', "ValueError: v"]
    second = await context.run("None")
    assert second["logs"] == []


async def test_log_cap_keeps_most_recent_entries() -> None:
    message = await _run("for i in range(10):\n    print(i)", max_log_entries=3)
    assert message["logs"] == ["7", "8", "9"]


async def test_result_too_large_is_not_truncated() -> None:
    message = await _run("'x' * 500", max_result_bytes=100)
    assert _error_kind(message) == "ResultTooLarge"
    assert "result" not in message


async def test_cyclic_result_is_serialization_error() -> None:
    message = await _run("a = []\na.append(a)\na")
    assert _error_kind(message) == "SerializationError"


async def test_script_errors_report_type_and_message() -> None:
    message = await _run("print('before')\n1 / 0")
    assert _error_kind(message) == "ScriptError"
    assert message["error"]["message"] == "ZeroDivisionError: division by zero"
    assert message["logs"] == ["before"]


async def test_syntax_error_is_script_error() -> None:
    message = await _run("def broken(:")
    assert _error_kind(message) == "ScriptError"
    assert message["error"]["message"].startswith("SyntaxError")


async def test_invalid_param_name_is_script_error() -> None:
    message = await _run("1", {"not valid": 1})
    assert _error_kind(message) == "ScriptError"


async def test_capability_violation_names_identifier() -> None:
    message = await _run("open('/etc/passwd')")
    assert _error_kind(message) == "CapabilityViolation"
    assert message["error"]["message"] == "Security exception - cannot access: open"


async def test_optional_capability_needs_whitelist() -> None:
    denied = await _run("chr(65)")
    allowed = await _run("chr(65)", extra_whitelist=["chr"])
    assert _error_kind(denied) == "CapabilityViolation"
    assert allowed["result"] == '"A"'


async def test_large_collections_are_refused() -> None:
    listed = await _run("list(range(501))")
    joined = await _run("','.join(['a'] * 501)")
    fine = await _run("'-'.join(['a'] * 3)")
    assert _error_kind(listed) == "ResourceLimitExceeded"
    assert _error_kind(joined) == "ResourceLimitExceeded"
    assert fine["result"] == '"a-a-a"'


async def test_own_join_attributes_are_left_alone() -> None:
    code = (
        "class Path:\n"
        "    join = 5\n"
        "class Builder:\n"
        "    def join(self, *parts, sep='/'):\n"
        "        return sep.join(parts)\n"
        "[Path().join, Builder().join('a', 'b', sep=':'), str.join('-', ['x', 'y'])]"
    )
    message = await _run(code)
    assert json.loads(message["result"]) == [5, "a:b", "x-y"]


async def test_unprintable_values_are_logged_not_raised() -> None:
    code = (
        "class Broken(Exception):\n"
        "    def __str__(self):\n"
        "        raise ValueError('no')\n"
        "console.log(Broken())\n"
        "print('after')\n"
        "1"
    )
    message = await _run(code)
    assert message["result"] == "1"
    assert message["logs"] == ["UnloggableValue: Broken", "after"]


async def test_huge_print_is_clipped() -> None:
    message = await _run("print('x' * (17 * 1024 * 1024))\n1")
    assert message["result"] == "1"
    assert len(message["logs"]) == 1
    assert message["logs"][0].endswith(" chars truncated]")
    assert len(message["logs"][0]) < 9000


async def test_oversized_response_is_replaced(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(context_module, "MAX_RESPONSE_BYTES", 500)
    message = await _run("for i in range(10):\n    print('y' * 100)\n1")
    assert _error_kind(message) == "ResourceLimitExceeded"
    assert message["error"]["message"].startswith("Response was too long")
    assert message["logs"] == []
    assert message["dropped_logs"] == 10


async def test_async_code_and_sleep() -> None:
    message = await _run("await sleep(0)\nawait sleep(0.01)\n'done'")
    assert message["result"] == '"done"'


async def test_classes_and_closures_work() -> None:
    code = (
        "class Point:\n"
        "    def __init__(self, x, y):\n"
        "        self.x = x\n"
        "        self.y = y\n"
        "    def norm(self):\n"
        "        return math.sqrt(self.x ** 2 + self.y ** 2)\n"
        "def scale(k):\n"
        "    return lambda p: Point(p.x * k, p.y * k)\n"
        "scale(2)(Point(3, 4)).norm()"
    )
    message = await _run(code)
    assert json.loads(message["result"]) == 10.0


async def test_user_exceptions_are_reported() -> None:
    code = "class Boom(Exception):\n    pass\nraise Boom('bad input')"
    message = await _run(code)
    assert message["error"] == {"kind": "ScriptError", "message": "Boom: bad input"}


async def test_fetch_absent_without_proxy() -> None:
    message = await _run("await fetch('https://example.com')")
    assert _error_kind(message) == "CapabilityViolation"
    assert message["error"]["message"].endswith("fetch")


async def test_isinstance_against_list_capability() -> None:
    message = await _run("isinstance(values, list) and isinstance(list('ab'), list)", {"values": [1]})
    assert message["result"] == "true"
