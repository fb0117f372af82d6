"""JSON-lines channel to one worker process."""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

import structlog

from ..errors import TransportError, WorkerExited

WORKER_MODULE = "safe_py_supervisor.worker"
# Upper bound for one response line; longer lines poison the stream.
STREAM_LIMIT = 16 * 1024 * 1024

_logger = structlog.get_logger(__name__)


def _package_root() -> Path:
    """Return the directory that contains the `safe_py_supervisor` package.

    Example:
        ```python
        root = _package_root()
        ```
    """
    return Path(__file__).resolve().parents[2]


def _worker_env() -> dict[str, str]:
    """Copy the host environment with PYTHONPATH pointing at this package.

    Example:
        ```python
        env = _worker_env()
        ```
    """
    env = os.environ.copy()
    root = str(_package_root())
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = root if not existing else os.pathsep.join([root, existing])
    env.setdefault("PYTHONIOENCODING", "utf-8")
    return env


def encode_message(message: dict[str, Any]) -> bytes:
    """Encode one protocol message as a JSON line.

    Example:
        ```python
        encode_message({"type": "ready"})  # b'{"type":"ready"}\\n'
        ```
    """
    return json.dumps(message, separators=(",", ":")).encode("utf-8") + b"\n"


def decode_message(line: bytes | str) -> dict[str, Any]:
    """Decode one JSON line into a message object.

    Example:
        ```python
        decode_message(b'{"type":"ready"}\\n')
        ```
    """
    try:
        message = json.loads(line)
    except ValueError as exc:
        raise TransportError(f"Worker sent invalid JSON: {exc}") from None
    if not isinstance(message, dict):
        raise TransportError("Worker message must be a JSON object")
    return message


class WorkerProcess:
    """One `python -m safe_py_supervisor.worker` subprocess.

    Example:
        ```python
        worker = WorkerProcess()
        await worker.start()
        ```
    """

    def __init__(self, python_executable: str | None = None) -> None:
        """Remember which interpreter runs the worker.

        Example:
            ```python
            WorkerProcess("/usr/bin/python3")
            ```
        """
        self.python_executable = python_executable or sys.executable
        self._process: asyncio.subprocess.Process | None = None
        self._killed = False

    @property
    def pid(self) -> int | None:
        """Return the worker pid once started.

        Example:
            ```python
            worker.pid
            ```
        """
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        """Return the exit code, or None while running.

        Example:
            ```python
            worker.returncode
            ```
        """
        return self._process.returncode if self._process is not None else None

    async def start(self) -> None:
        """Spawn the worker process.

        A `kill()` issued before the spawn completes is applied right after it.

        Example:
            ```python
            await worker.start()
            ```
        """
        if self._killed:
            raise WorkerExited("Worker was killed before it started")
        self._process = await asyncio.create_subprocess_exec(
            self.python_executable,
            "-m",
            WORKER_MODULE,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            env=_worker_env(),
            limit=STREAM_LIMIT,
        )
        if self._killed:
            self._process.kill()
            raise WorkerExited("Worker was killed before it started")

    async def send(self, message: dict[str, Any]) -> None:
        """Write one message to the worker's stdin.

        Example:
            ```python
            await worker.send({"id": 1, "code": "1", "params": {}})
            ```
        """
        process = self._require_process()
        if process.stdin is None:
            raise WorkerExited("Worker stdin is not available")
        try:
            process.stdin.write(encode_message(message))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise WorkerExited(f"Worker stdin closed: {exc}") from None

    async def receive(self) -> dict[str, Any]:
        """Read the next message from the worker's stdout.

        Example:
            ```python
            message = await worker.receive()
            ```
        """
        process = self._require_process()
        if process.stdout is None:
            raise WorkerExited("Worker stdout is not available")
        try:
            line = await process.stdout.readline()
        except ValueError:
            self.kill()
            raise WorkerExited(f"Worker message exceeded {STREAM_LIMIT} bytes") from None
        if not line:
            returncode = await process.wait()
            raise WorkerExited(f"Worker exited with code {returncode}")
        return decode_message(line)

    def kill(self) -> None:
        """Kill the process; safe to call more than once.

        Example:
            ```python
            worker.kill()
            ```
        """
        self._killed = True
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            _logger.debug("worker.already_exited", pid=process.pid)

    async def wait(self) -> int | None:
        """Wait for the process to exit and close its stdin.

        Example:
            ```python
            code = await worker.wait()
            ```
        """
        process = self._process
        if process is None:
            return None
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        return await process.wait()

    def _require_process(self) -> asyncio.subprocess.Process:
        """Return the running process or raise `WorkerExited`.

        Example:
            ```python
            process = worker._require_process()
            ```
        """
        if self._process is None:
            raise WorkerExited("Worker has not been started")
        return self._process
