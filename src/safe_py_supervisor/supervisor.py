"""Host-side supervisor: lifecycle, deadline and recovery of one worker."""

from __future__ import annotations

import asyncio
import functools
import json
from typing import Any, Callable

from .errors import ErrorKind, SandboxError, TransportError, WorkerExited
from .execution.transport import WorkerProcess
from .execution.types import (
    ExecutionFailure,
    ExecutionRequest,
    ExecutionResult,
    ExecutionSuccess,
    WorkerState,
)
from .log import get_logger
from .policy import SupervisorConfig

SuccessCallback = Callable[[ExecutionSuccess], Any]
FailureCallback = Callable[[ExecutionFailure], Any]

_logger = get_logger(__name__)


def _message_logs(message: dict[str, Any]) -> list[str]:
    """Validate the `logs` field of a worker response.

    Example:
        ```python
        _message_logs({"logs": ["a", "b"]})
        ```
    """
    logs = message.get("logs", [])
    if not isinstance(logs, list) or not all(isinstance(entry, str) for entry in logs):
        raise TransportError("Worker response 'logs' must be a list of strings")
    return logs


def _message_dropped(message: dict[str, Any]) -> int:
    """Validate the `dropped_logs` counter of a worker response.

    Example:
        ```python
        _message_dropped({"dropped_logs": 3})  # 3
        ```
    """
    dropped = message.get("dropped_logs", 0)
    if isinstance(dropped, bool) or not isinstance(dropped, int) or dropped < 0:
        raise TransportError("Worker response 'dropped_logs' must be a non-negative integer")
    return dropped


def parse_response(message: dict[str, Any]) -> ExecutionResult:
    """Turn a decoded worker response into an execution result.

    Example:
        ```python
        parse_response({"type": "result", "id": 1, "result": "null", "logs": []})
        ```
    """
    logs = _message_logs(message)
    message_type = message.get("type")
    if message_type == "result":
        result = message.get("result")
        if not isinstance(result, str):
            raise TransportError("Worker response 'result' must be a string")
        return ExecutionSuccess(result_json=result, logs=logs, dropped_logs=_message_dropped(message))
    if message_type == "error":
        error = message.get("error")
        if not isinstance(error, dict):
            raise TransportError("Worker response 'error' must be an object")
        try:
            kind = ErrorKind(error.get("kind"))
        except ValueError:
            raise TransportError(f"Unknown error kind: {error.get('kind')!r}") from None
        return ExecutionFailure(error=kind, message=str(error.get("message", "")), logs=logs)
    raise TransportError(f"Unknown worker message type: {message_type!r}")


class Supervisor:
    """Run caller code in a supervised worker process, one request at a time.

    Results are delivered to `on_success` / `on_failure`; the future returned
    by `execute` resolves to the result JSON on success and to None on any
    failure.

    Example:
        ```python
        async with Supervisor(print, print, SupervisorConfig(max_execution_ms=2000)) as sup:
            result = await sup.execute("x * 2", {"x": 21})  # "42"
        ```
    """

    def __init__(
        self,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
        config: SupervisorConfig | None = None,
        *,
        python_executable: str | None = None,
    ) -> None:
        """Store callbacks and configuration; no process is started yet.

        Example:
            ```python
            sup = Supervisor(results.append, failures.append)
            ```
        """
        self._on_success = on_success
        self._on_failure = on_failure
        self._config = config or SupervisorConfig()
        self._python_executable = python_executable
        self._state = WorkerState.UNINITIALIZED
        self._worker: WorkerProcess | None = None
        self._startup: asyncio.Task[None] | None = None
        self._task: asyncio.Task[None] | None = None
        self._pending: asyncio.Future[str | None] | None = None
        self._reapers: set[asyncio.Task[Any]] = set()
        self._next_id = 0

    @property
    def state(self) -> WorkerState:
        """Return the current worker state.

        Example:
            ```python
            sup.state is WorkerState.ALIVE
            ```
        """
        return self._state

    @property
    def config(self) -> SupervisorConfig:
        """Return the configuration applied to every worker.

        Example:
            ```python
            sup.config.max_execution_ms
            ```
        """
        return self._config

    def init_worker(self) -> None:
        """Start a worker unless one is already alive.

        Must be called while an event loop is running.

        Example:
            ```python
            sup.init_worker()
            ```
        """
        if self._state in (WorkerState.ALIVE, WorkerState.EXECUTING):
            return
        self._spawn(asyncio.get_running_loop())
        self._state = WorkerState.ALIVE

    def execute(
        self,
        code: str,
        params: dict[str, Any] | None = None,
    ) -> asyncio.Future[str | None]:
        """Send one request to the worker and return a future for its result.

        Example:
            ```python
            value = await sup.execute("return {'a': 1}")  # '{"a":1}'
            ```
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str | None] = loop.create_future()
        if self._state is WorkerState.TERMINATED:
            self._reject(
                future,
                ErrorKind.WORKER_DEAD,
                "Worker is terminated; call init_worker() to start a new one",
            )
            return future
        if self._state is WorkerState.EXECUTING:
            self._reject(future, ErrorKind.ALREADY_EXECUTING, "A request is already executing")
            return future

        params = {} if params is None else params
        if not isinstance(params, dict):
            self._reject(future, ErrorKind.SERIALIZATION_ERROR, "params must be a JSON object")
            return future
        try:
            json.dumps(params, allow_nan=False)
        except (TypeError, ValueError) as exc:
            self._reject(
                future,
                ErrorKind.SERIALIZATION_ERROR,
                f"params are not JSON serializable: {exc}",
            )
            return future

        if self._state is WorkerState.UNINITIALIZED:
            self.init_worker()

        self._next_id += 1
        request = ExecutionRequest(id=self._next_id, code=code, params=dict(params))
        self._state = WorkerState.EXECUTING
        self._pending = future
        self._task = loop.create_task(self._run(request, self._worker, self._startup))
        return future

    def kill(self) -> None:
        """Destroy the worker and move to TERMINATED.

        An in-flight request is reported as `WorkerDead`.

        Example:
            ```python
            sup.kill()
            ```
        """
        worker = self._worker
        pending = self._pending
        task = self._task
        startup = self._startup
        self._worker = None
        self._pending = None
        self._task = None
        self._startup = None
        self._state = WorkerState.TERMINATED

        if task is not None and not task.done():
            task.cancel()
        if startup is not None and not startup.done():
            startup.cancel()
        if worker is not None:
            self._retire(worker)
            _logger.info("worker.killed", pid=worker.pid, reason="kill")
        if pending is not None:
            self._reject(pending, ErrorKind.WORKER_DEAD, "Worker was killed while executing")

    async def aclose(self) -> None:
        """Kill the worker and wait until retired processes have exited.

        Example:
            ```python
            await sup.aclose()
            ```
        """
        self.kill()
        if self._reapers:
            await asyncio.gather(*list(self._reapers))

    async def __aenter__(self) -> "Supervisor":
        """Start the worker on entry.

        Example:
            ```python
            async with Supervisor(on_ok, on_err) as sup:
                ...
            ```
        """
        self.init_worker()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        """Close the worker on exit.

        Example:
            ```python
            async with Supervisor(on_ok, on_err):
                pass
            ```
        """
        await self.aclose()

    def _spawn(self, loop: asyncio.AbstractEventLoop) -> None:
        """Create a worker and schedule its handshake.

        Example:
            ```python
            sup._spawn(asyncio.get_running_loop())
            ```
        """
        worker = WorkerProcess(self._python_executable)
        startup = loop.create_task(
            asyncio.wait_for(self._handshake(worker), self._config.startup_timeout_ms / 1000)
        )
        startup.add_done_callback(functools.partial(self._startup_done, worker))
        self._worker = worker
        self._startup = startup

    async def _handshake(self, worker: WorkerProcess) -> None:
        """Start the process, send the configuration and wait for `ready`.

        Example:
            ```python
            await sup._handshake(WorkerProcess())
            ```
        """
        await worker.start()
        _logger.info("worker.spawned", pid=worker.pid)
        await worker.send(self._config.handshake())
        message = await worker.receive()
        if message.get("type") != "ready":
            raise TransportError(f"Expected ready message, got {message.get('type')!r}")
        _logger.info("worker.ready", pid=worker.pid)

    def _startup_done(self, worker: WorkerProcess, task: asyncio.Task[None]) -> None:
        """Handle a failed handshake when no request is waiting on it.

        Example:
            ```python
            startup.add_done_callback(functools.partial(sup._startup_done, worker))
            ```
        """
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None or worker is not self._worker or self._pending is not None:
            return
        self._startup_failed(worker, exc)

    def _startup_failed(self, worker: WorkerProcess, exc: BaseException) -> str:
        """Retire a worker that never became ready and move to TERMINATED.

        Example:
            ```python
            message = sup._startup_failed(worker, TimeoutError())
            ```
        """
        message = f"Worker failed to start: {type(exc).__name__}: {exc}".rstrip(": ")
        _logger.error("worker.crashed", pid=worker.pid, error=message, phase="startup")
        self._retire(worker)
        if worker is self._worker:
            self._worker = None
            self._startup = None
        self._state = WorkerState.TERMINATED
        return message

    async def _run(
        self,
        request: ExecutionRequest,
        worker: WorkerProcess | None,
        startup: asyncio.Task[None] | None,
    ) -> None:
        """Drive one request through the worker and report its outcome.

        Example:
            ```python
            task = loop.create_task(sup._run(request, worker, startup))
            ```
        """
        if worker is None or startup is None:
            self._complete(ExecutionFailure(ErrorKind.WORKER_DEAD, "No worker is available"))
            return
        try:
            await startup
        except (SandboxError, OSError, asyncio.TimeoutError) as exc:
            message = self._startup_failed(worker, exc)
            self._complete(ExecutionFailure(ErrorKind.WORKER_CRASHED, message))
            return

        loop = asyncio.get_running_loop()
        started = loop.time()
        timeout_ms = self._config.max_execution_ms
        _logger.info("execution.start", request_id=request.id, pid=worker.pid)
        try:
            await worker.send(request.to_message())
            message = await asyncio.wait_for(
                self._response(worker, request.id), timeout_ms / 1000
            )
            result = parse_response(message)
        except asyncio.TimeoutError:
            _logger.warning(
                "execution.timeout", request_id=request.id, pid=worker.pid, timeout_ms=timeout_ms
            )
            self._replace_worker(worker, loop)
            self._complete(
                ExecutionFailure(
                    ErrorKind.EXECUTION_TIMEOUT, f"Execution exceeded {timeout_ms} ms"
                )
            )
            return
        except WorkerExited as exc:
            _logger.error("worker.crashed", request_id=request.id, pid=worker.pid, error=str(exc))
            self._replace_worker(worker, loop)
            self._complete(ExecutionFailure(ErrorKind.WORKER_CRASHED, str(exc)))
            return
        except TransportError as exc:
            self._state = WorkerState.ALIVE
            self._complete(ExecutionFailure(ErrorKind.TRANSPORT_ERROR, str(exc)))
            return

        _logger.info(
            "execution.complete",
            request_id=request.id,
            ok=result.ok,
            duration_ms=round((loop.time() - started) * 1000, 1),
        )
        self._state = WorkerState.ALIVE
        self._complete(result)

    async def _response(self, worker: WorkerProcess, request_id: int) -> dict[str, Any]:
        """Read until the response for `request_id`, dropping stale ones.

        Example:
            ```python
            message = await sup._response(worker, 3)
            ```
        """
        while True:
            message = await worker.receive()
            if message.get("id") == request_id:
                return message
            _logger.warning("response.stale", expected=request_id, received=message.get("id"))

    def _replace_worker(self, worker: WorkerProcess, loop: asyncio.AbstractEventLoop) -> None:
        """Kill `worker` and spawn a fresh one with the same configuration.

        Example:
            ```python
            sup._replace_worker(worker, asyncio.get_running_loop())
            ```
        """
        self._retire(worker)
        _logger.info("worker.killed", pid=worker.pid, reason="recovery")
        self._spawn(loop)
        self._state = WorkerState.ALIVE

    def _retire(self, worker: WorkerProcess) -> None:
        """Kill a worker and reap it in the background.

        Example:
            ```python
            sup._retire(worker)
            ```
        """
        worker.kill()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        reaper = loop.create_task(worker.wait())
        self._reapers.add(reaper)
        reaper.add_done_callback(self._reapers.discard)

    def _complete(self, result: ExecutionResult) -> None:
        """Clear the in-flight slot, run the callback and resolve the future.

        Example:
            ```python
            sup._complete(ExecutionSuccess("null"))
            ```
        """
        future = self._pending
        self._pending = None
        self._task = None
        if isinstance(result, ExecutionSuccess):
            self._notify(self._on_success, result)
            value: str | None = result.result_json
        else:
            self._notify(self._on_failure, result)
            value = None
        if future is not None and not future.done():
            future.set_result(value)

    def _reject(
        self,
        future: asyncio.Future[str | None],
        kind: ErrorKind,
        message: str,
    ) -> None:
        """Report an immediate failure and resolve `future` with None.

        Example:
            ```python
            sup._reject(future, ErrorKind.WORKER_DEAD, "Worker is terminated")
            ```
        """
        self._notify(self._on_failure, ExecutionFailure(error=kind, message=message))
        if not future.done():
            future.set_result(None)

    def _notify(self, callback: Callable[[Any], Any], result: ExecutionResult) -> None:
        """Invoke a host callback; its exceptions are logged, not raised.

        Example:
            ```python
            sup._notify(print, ExecutionSuccess("1"))
            ```
        """
        try:
            callback(result)
        except Exception:
            _logger.exception("callback.failed", callback=getattr(callback, "__name__", repr(callback)))
