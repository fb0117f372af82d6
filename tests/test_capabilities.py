import pytest

from safe_py_supervisor import CapabilityViolation, ResourceLimitExceeded
from safe_py_supervisor.execution.capabilities import (
    BASE_CAPABILITIES,
    MAX_COLLECTION_ITEMS,
    OPTIONAL_CAPABILITIES,
    BoundedList,
    CapabilityNamespace,
    GuardedBuiltins,
    base_capability_names,
    bounded_join,
    build_builtins,
    guarded_join,
)
from safe_py_supervisor.execution.console import ConsoleChannel, ScriptConsole


def _builtins(extra=(), fetch=None) -> GuardedBuiltins:
    channel = ConsoleChannel(10)
    return build_builtins(extra, write=channel.print, console=ScriptConsole(channel), fetch=fetch)


def test_unknown_name_raises_capability_violation() -> None:
    table = _builtins()
    with pytest.raises(CapabilityViolation) as exc_info:
        table["open"]
    assert exc_info.value.name == "open"
    assert "cannot access: open" in str(exc_info.value)


def test_ambient_builtins_are_absent() -> None:
    table = _builtins()
    for name in ("eval", "exec", "open", "getattr", "type", "globals", "vars", "compile", "input"):
        assert name not in table


def test_table_cannot_be_modified() -> None:
    table = _builtins()
    with pytest.raises(CapabilityViolation):
        table["len"] = print
    with pytest.raises(CapabilityViolation):
        del table["len"]


def test_optional_capabilities_require_whitelist() -> None:
    assert "chr" not in _builtins()
    table = _builtins(["chr", "Decimal"])
    assert table["chr"](65) == "A"
    assert table["Decimal"] is OPTIONAL_CAPABILITIES["Decimal"]


def test_unknown_whitelist_name_is_ignored() -> None:
    table = _builtins(["definitely_not_a_capability"])
    assert "definitely_not_a_capability" not in table


def test_fetch_installed_only_when_provided() -> None:
    assert "fetch" not in _builtins()

    async def fake_fetch(url: str) -> str:
        return url

    assert _builtins(fetch=fake_fetch)["fetch"] is fake_fetch


def test_base_names_cover_output_and_fetch() -> None:
    names = base_capability_names()
    assert {"print", "console", "fetch", "len", "sleep", "math"} <= set(names)
    assert not any(name.startswith("_") for name in names)
    assert not set(BASE_CAPABILITIES) & set(OPTIONAL_CAPABILITIES)


def test_namespace_is_read_only() -> None:
    ns = CapabilityNamespace("demo", {"answer": 42})
    assert ns.answer == 42
    with pytest.raises(CapabilityViolation) as exc_info:
        ns.missing
    assert exc_info.value.name == "demo.missing"
    with pytest.raises(CapabilityViolation):
        ns.answer = 1
    assert dir(ns) == ["answer"]


def test_json_namespace_exposes_only_dumps_and_loads() -> None:
    json_ns = BASE_CAPABILITIES["json"]
    assert json_ns.loads("[1]") == [1]
    with pytest.raises(CapabilityViolation):
        json_ns.JSONDecoder


def test_bounded_list_limits_items() -> None:
    assert BoundedList(range(MAX_COLLECTION_ITEMS)) == list(range(MAX_COLLECTION_ITEMS))
    with pytest.raises(ResourceLimitExceeded, match="list\\(\\) is limited to 500 items"):
        BoundedList(range(MAX_COLLECTION_ITEMS + 1))


def test_bounded_list_behaves_like_list_type() -> None:
    assert BoundedList() == []
    assert isinstance([1], BoundedList)
    assert BoundedList.append is list.append
    assert repr(BoundedList) == "<class 'list'>"


def test_guarded_join_matches_join_within_limit() -> None:
    items = [str(i) for i in range(MAX_COLLECTION_ITEMS)]
    assert guarded_join(",")(items) == ",".join(items)
    assert guarded_join(b"-")([b"a", b"b"]) == b"a-b"


def test_guarded_join_rejects_large_collections() -> None:
    with pytest.raises(ResourceLimitExceeded, match="join\\(\\) is limited to 500 items"):
        guarded_join(",")(["x"] * (MAX_COLLECTION_ITEMS + 1))
    with pytest.raises(ResourceLimitExceeded):
        guarded_join("")(str(i) for i in range(MAX_COLLECTION_ITEMS + 1))


def test_guarded_join_rejects_long_separator() -> None:
    with pytest.raises(ResourceLimitExceeded, match="separator"):
        bounded_join(("x" * (MAX_COLLECTION_ITEMS + 1)).join, ["a", "b"])


def test_guarded_join_only_wraps_text_types() -> None:
    class Joiner:
        join = "plain"

    assert guarded_join(Joiner()) == "plain"
    assert guarded_join(Joiner) == "plain"
    assert guarded_join(str)("-", ["a", "b"]) == "a-b"
    assert guarded_join(bytearray(b","))([b"a", b"b"]) == bytearray(b"a,b")
    with pytest.raises(ResourceLimitExceeded):
        guarded_join(str)("-", ["a"] * (MAX_COLLECTION_ITEMS + 1))
