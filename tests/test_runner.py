from pathlib import Path

import pytest

from safe_py_supervisor import ErrorKind, ExecutionFailure, ExecutionSuccess, SupervisorConfig, run_code


async def test_run_code_success_with_params() -> None:
    result = await run_code("print('summing')\nsum(values)", {"values": [1, 2, 3]})

    assert isinstance(result, ExecutionSuccess)
    assert result.ok is True
    assert result.result_json == "6"
    assert result.logs == ["summing"]


async def test_run_code_reports_capability_violation() -> None:
    result = await run_code("import os")

    assert isinstance(result, ExecutionFailure)
    assert result.ok is False
    assert result.error is ErrorKind.CAPABILITY_VIOLATION
    assert str(result) == "CapabilityViolation: Security exception - cannot access: os"


async def test_run_code_timeout() -> None:
    result = await run_code("while True:\n    pass", config=SupervisorConfig(max_execution_ms=200))

    assert result.error is ErrorKind.EXECUTION_TIMEOUT


async def test_run_code_with_config_file(tmp_path: Path) -> None:
    config_file = tmp_path / "supervisor.toml"
    config_file.write_text(
        "[supervisor]\nextra_whitelist = [\"ord\"]\nmax_log_entries = 2\n",
        encoding="utf-8",
    )

    result = await run_code(
        "for c in 'abc':\n    print(ord(c))\nord('z')",
        config_file=str(config_file),
    )

    assert result.result_json == "122"
    assert result.logs == ["98", "99"]


async def test_run_code_rejects_config_and_file(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="either 'config' or 'config_file'"):
        await run_code("1", config=SupervisorConfig(), config_file=str(tmp_path / "x.toml"))
