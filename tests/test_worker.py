import io
import json

from safe_py_supervisor import SupervisorConfig
from safe_py_supervisor.worker import serve


def _lines(*messages) -> io.StringIO:
    return io.StringIO("".join(m if isinstance(m, str) else json.dumps(m) + "\n" for m in messages))


def _responses(writer: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in writer.getvalue().splitlines()]


def test_handshake_answered_with_ready_and_requests_echo_ids() -> None:
    reader = _lines(
        SupervisorConfig(max_log_entries=2).handshake(),
        {"id": 1, "code": "x * 2", "params": {"x": 21}},
        {"id": 2, "code": "for i in range(4):\n    print(i)"},
    )
    writer = io.StringIO()

    assert serve(reader, writer, apply_limits=False) == 0

    ready, first, second = _responses(writer)
    assert ready == {"type": "ready"}
    assert first == {"type": "result", "id": 1, "result": "42", "logs": [], "dropped_logs": 0}
    assert second["id"] == 2
    assert second["result"] == "null"
    assert second["logs"] == ["2", "3"]


def test_error_responses_carry_kind_and_logs() -> None:
    reader = _lines(
        SupervisorConfig().handshake(),
        {"id": 7, "code": "print('x')\nundefined_name"},
    )
    writer = io.StringIO()

    serve(reader, writer, apply_limits=False)

    response = _responses(writer)[1]
    assert response["type"] == "error"
    assert response["id"] == 7
    assert response["error"]["kind"] == "CapabilityViolation"
    assert response["logs"] == ["x"]


def test_undecodable_request_gets_transport_error_and_worker_continues() -> None:
    reader = _lines(
        SupervisorConfig().handshake(),
        "this is not json\n",
        "\n",
        "[1, 2]\n",
        {"id": 3, "code": "'still alive'"},
    )
    writer = io.StringIO()

    serve(reader, writer, apply_limits=False)

    responses = _responses(writer)
    assert [r["error"]["kind"] for r in responses[1:3]] == ["TransportError", "TransportError"]
    assert responses[3]["result"] == '"still alive"'


def test_eof_before_handshake_exits_cleanly() -> None:
    writer = io.StringIO()
    assert serve(io.StringIO(""), writer, apply_limits=False) == 0
    assert writer.getvalue() == ""


def test_bad_handshake_exits_with_error() -> None:
    writer = io.StringIO()
    assert serve(io.StringIO("nope\n"), writer, apply_limits=False) == 2
    assert writer.getvalue() == ""
