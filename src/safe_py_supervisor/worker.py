"""Worker process entry point: `python -m safe_py_supervisor.worker`.

Reads the handshake and then one request per line from stdin; writes one
JSON line per response to a private copy of the original stdout.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any, TextIO

from .errors import ErrorKind
from .execution.context import ExecutionContext
from .log import configure_logging, get_logger

_resource: Any
try:
    import resource as _resource_module  # POSIX only
    _resource = _resource_module
except ImportError:  # pragma: no cover - platform specific
    _resource = None

_logger = get_logger(__name__)


def _set_limits(memory_limit_mb: int) -> list[str]:
    """Cap the worker address space; return the limits that could not be applied.

    Example:
        ```python
        errors = _set_limits(512)
        ```
    """
    errors: list[str] = []
    if _resource is None:
        errors.append("RLIMIT limits unavailable on this platform")
        return errors

    mem_bytes = int(memory_limit_mb) * 1024 * 1024

    try:
        _, current_hard = _resource.getrlimit(_resource.RLIMIT_AS)
        if current_hard in (-1, _resource.RLIM_INFINITY):
            target_hard = mem_bytes
        else:
            target_hard = min(mem_bytes, current_hard)
        target_soft = min(mem_bytes, target_hard)
        _resource.setrlimit(_resource.RLIMIT_AS, (target_soft, target_hard))
    except (ValueError, OSError) as exc:
        errors.append(f"RLIMIT_AS not applied: {exc}")

    return errors


def _protocol_stream() -> TextIO:
    """Move the real stdout to a private descriptor and point fd 1 at stderr.

    Example:
        ```python
        out = _protocol_stream()
        ```
    """
    sys.stdout.flush()
    private_fd = os.dup(sys.stdout.fileno())
    os.dup2(sys.stderr.fileno(), sys.stdout.fileno())
    return os.fdopen(private_fd, "w", encoding="utf-8", buffering=1)


def _write(writer: TextIO, message: dict[str, Any]) -> None:
    """Write one protocol line and flush it.

    Example:
        ```python
        _write(sys.stdout, {"type": "ready"})
        ```
    """
    writer.write(json.dumps(message, separators=(",", ":")) + "\n")
    writer.flush()


def _transport_error(request_id: Any, message: str) -> dict[str, Any]:
    """Build the response sent for an undecodable request.

    Example:
        ```python
        _transport_error(None, "Request must be a JSON object")
        ```
    """
    return {
        "type": "error",
        "id": request_id,
        "error": {"kind": ErrorKind.TRANSPORT_ERROR.value, "message": message},
        "logs": [],
        "dropped_logs": 0,
    }


def serve(reader: TextIO, writer: TextIO, apply_limits: bool = True) -> int:
    """Answer the handshake and then every request until stdin closes.

    Example:
        ```python
        code = serve(io.StringIO(handshake_line + request_line), io.StringIO(), apply_limits=False)
        ```
    """
    line = reader.readline()
    if not line:
        return 0
    try:
        handshake = json.loads(line)
    except ValueError as exc:
        _logger.error("worker.bad_handshake", error=str(exc))
        return 2
    if not isinstance(handshake, dict):
        _logger.error("worker.bad_handshake", error="handshake must be a JSON object")
        return 2

    memory_limit_mb = int(handshake.get("memory_limit_mb", 0) or 0)
    if apply_limits and memory_limit_mb > 0:
        for problem in _set_limits(memory_limit_mb):
            _logger.warning("worker.limit_not_applied", detail=problem)

    context = ExecutionContext(handshake)
    _write(writer, {"type": "ready"})

    with asyncio.Runner() as runner:
        for line in reader:
            if not line.strip():
                continue
            try:
                request = json.loads(line)
            except ValueError as exc:
                _write(writer, _transport_error(None, f"Request is not valid JSON: {exc}"))
                continue
            if not isinstance(request, dict):
                _write(writer, _transport_error(None, "Request must be a JSON object"))
                continue

            response = runner.run(context.run(request.get("code", ""), request.get("params")))
            response["id"] = request.get("id")
            _write(writer, response)
    return 0


def main() -> int:
    """Run the worker over the process stdio.

    Example:
        ```python
        raise SystemExit(main())
        ```
    """
    writer = _protocol_stream()
    configure_logging(logging.WARNING, stream=sys.stderr)
    return serve(sys.stdin, writer)


if __name__ == "__main__":
    raise SystemExit(main())
