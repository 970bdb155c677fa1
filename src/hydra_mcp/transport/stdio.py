"""Stdio transport: an MCP server subprocess speaking JSON lines.

The server is launched with argument-array semantics (no shell), after the
command validator has approved the executable and its arguments.

Wire format:
    stdin:  {"jsonrpc": "2.0", "method": "ping", "params": {}, "id": 1}\\n
    stdout: {"jsonrpc": "2.0", "id": 1, "result": "pong"}\\n
    stderr: free-form server logs, surfaced as diagnostics
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os
import signal
from collections.abc import Awaitable, Callable
from typing import Any

from ..config import StdioServerConfig
from ..errors import InvalidStateError, SecurityError, StartupError, TransportClosedError
from ..protocol import JsonRpcNotification
from ..security import CommandValidator, DefaultCommandValidator
from .base import Transport, TransportState
from .events import CloseInfo
from .framing import LineBuffer

logger = logging.getLogger(__name__)

SpawnFunc = Callable[..., Awaitable[asyncio.subprocess.Process]]

_READ_CHUNK_SIZE = 64 * 1024
# How long to keep reading stdout after the process exited
_EXIT_DRAIN_TIMEOUT = 1.0


def _close_info(returncode: int | None) -> CloseInfo:
    if returncode is None:
        return CloseInfo(reason="closed")
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return CloseInfo(signal=name, reason=f"terminated by {name}")
    return CloseInfo(code=returncode, reason=f"exited with code {returncode}")


class StdioTransport(Transport):
    """Transport over a subprocess's stdin/stdout.

    Readiness is the first stdout line or ``ready_grace`` seconds of silence,
    whichever comes first, bounded by ``startup_timeout``. Stderr is never a
    protocol channel; its lines are emitted as ``stderr`` events.
    """

    transport_type = "stdio"

    def __init__(
        self,
        config: StdioServerConfig,
        *,
        validator: CommandValidator | None = None,
        spawn: SpawnFunc | None = None,
    ):
        super().__init__(config)
        self.config: StdioServerConfig = config
        self._validator = validator or DefaultCommandValidator()
        self._spawn = spawn or asyncio.create_subprocess_exec
        self._process: asyncio.subprocess.Process | None = None
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._exit_task: asyncio.Task[None] | None = None
        self._lines = LineBuffer()
        self._first_line = asyncio.Event()
        self._exited = asyncio.Event()
        self._close_emitted = False

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def command_line(self) -> str:
        return " ".join([self.config.command, *self.config.args])

    # Lifecycle

    async def start(self) -> None:
        """Validate, spawn and wait for the server to become ready.

        Raises:
            InvalidStateError: not in IDLE
            SecurityError: command rejected; nothing was spawned
            StartupError: spawn failed, process exited early, or timeout
        """
        if self._state != TransportState.IDLE:
            raise InvalidStateError(f"Cannot start transport in state: {self._state.value}")

        self._set_state(TransportState.STARTING)

        try:
            self._validate_command()
        except SecurityError as e:
            logger.error(f"{e} (command: {self.config.command})")
            self._set_state(TransportState.ERROR)
            raise

        try:
            await asyncio.wait_for(self._launch(), timeout=self.config.startup_timeout)
        except TimeoutError:
            await self._abort_startup()
            raise StartupError(
                f"Transport startup timeout after {self.config.startup_timeout}s"
            ) from None
        except StartupError:
            await self._abort_startup()
            raise

        if self._close_task is not None:
            await self._abort_startup()
            raise StartupError(f"Transport closed during startup: {self.command_line}")

        if self._state != TransportState.STARTING:
            # The exit watcher ran before readiness was confirmed
            await self._abort_startup()
            raise StartupError(f"MCP server exited during startup: {self.command_line}")

        self._set_state(TransportState.READY)
        self.events.ready.emit(None)
        logger.info(f"STDIO transport ready: {self.command_line} (pid={self.pid})")

    def _validate_command(self) -> None:
        verdict = self._validator.validate_executable(
            self.config.command, self.config.allow_unlisted
        )
        if not verdict.valid:
            raise SecurityError(self.config.command, verdict.reason or "executable rejected")

        verdict = self._validator.validate_args(self.config.args)
        if not verdict.valid:
            raise SecurityError(self.config.command, verdict.reason or "arguments rejected")

    async def _launch(self) -> None:
        env = {**os.environ, **self.config.env}
        try:
            self._process = await self._spawn(
                self.config.command,
                *self.config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.config.cwd,
                env=env,
            )
        except OSError as e:
            logger.error(f"Failed to start MCP server subprocess: {e}")
            self.events.error.emit(e)
            raise StartupError(f"Failed to spawn '{self.config.command}': {e}") from e

        if self._close_task is not None:
            # close() finished while the spawn was in flight; _abort_startup reaps it
            raise StartupError(f"Transport closed during startup: {self.command_line}")

        logger.info(f"Launched subprocess: {self.command_line} (pid={self._process.pid})")

        self._stdout_task = asyncio.create_task(self._read_stdout(self._process))
        self._stderr_task = asyncio.create_task(self._read_stderr(self._process))
        self._exit_task = asyncio.create_task(self._watch_exit(self._process))

        await self._wait_for_readiness()

    async def _wait_for_readiness(self) -> None:
        first_line = asyncio.create_task(self._first_line.wait())
        exited = asyncio.create_task(self._exited.wait())
        try:
            await asyncio.wait(
                {first_line, exited},
                timeout=self.config.ready_grace,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            first_line.cancel()
            exited.cancel()

        if self._exited.is_set() and not self._first_line.is_set():
            code = self._process.returncode if self._process else None
            raise StartupError(f"MCP server exited during startup (code {code})")

    async def _abort_startup(self) -> None:
        closed_by_caller = self._close_task is not None
        await self.close()
        # Anything spawned after close() completed is still ours to release
        await self._teardown()
        if not closed_by_caller:
            self._set_state(TransportState.ERROR)

    async def _shutdown(self) -> None:
        process = self._process
        if self._state == TransportState.CLOSED and (
            process is None or process.returncode is not None
        ):
            # The exit watcher already reported the close
            await self._teardown()
            return

        self._set_state(TransportState.CLOSING)
        self._reject_pending("Transport closed")
        returncode = await self._teardown()
        self._set_state(TransportState.CLOSED)
        self._emit_close(_close_info(returncode))

    async def _teardown(self) -> int | None:
        """Stop the exit watcher, the process and the readers."""
        process = self._process

        if self._exit_task is not None and not self._exit_task.done():
            self._exit_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._exit_task

        returncode = await self._terminate(process) if process is not None else None

        for task in (self._stdout_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        self._stdout_task = self._stderr_task = self._exit_task = None
        self._lines = LineBuffer()
        self._process = None
        return returncode

    async def _terminate(self, process: asyncio.subprocess.Process) -> int | None:
        """SIGTERM, then SIGKILL if still running after ``kill_timeout``."""
        if process.returncode is not None:
            return process.returncode

        logger.info(f"Stopping MCP server subprocess (pid={process.pid})")
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            return await asyncio.wait_for(process.wait(), timeout=self.config.kill_timeout)
        except TimeoutError:
            logger.warning(f"Force killing MCP server subprocess (pid={process.pid})")
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            return await process.wait()

    async def _watch_exit(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        self._exited.set()

        # Dispatch whatever the server wrote before it went away
        if self._stdout_task is not None:
            await asyncio.wait({self._stdout_task}, timeout=_EXIT_DRAIN_TIMEOUT)

        info = _close_info(returncode)
        logger.warning(f"MCP server process {info.reason} (pid={process.pid})")
        reason = f"MCP server process {info.reason}"
        self._reject_pending(reason)
        self._set_state(TransportState.CLOSED)
        self.events.error.emit(TransportClosedError(reason))
        self._emit_close(info)

    def _emit_close(self, info: CloseInfo) -> None:
        if not self._close_emitted:
            self._close_emitted = True
            self.events.close.emit(info)

    # Outbound

    async def _send(self, message: JsonRpcNotification) -> None:
        process = self._process
        if process is None or process.stdin is None or process.stdin.is_closing():
            raise TransportClosedError("Process stdin not writable")

        data = message.to_line()
        logger.debug(f"STDIO >> {data[:500]!r}")
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportClosedError(f"Process stdin closed: {e}") from e

    # Inbound

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        if process.stdout is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await process.stdout.read(_READ_CHUNK_SIZE)
                if not chunk:
                    break
                for line in self._lines.feed(decoder.decode(chunk)):
                    self._on_line(line)

            # EOF: a final line without a trailing newline still counts
            for line in self._lines.feed(decoder.decode(b"", final=True)):
                self._on_line(line)
            tail = self._lines.flush()
            if tail is not None:
                self._on_line(tail)
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.warning(f"STDIO stdout reader stopped: {e}")
            self.events.error.emit(e)

    def _on_line(self, line: str) -> None:
        self._first_line.set()
        self.handle_line(line)

    def handle_line(self, line: str) -> None:
        """Dispatch one stdout line. Malformed JSON becomes ``output``."""
        line = line.strip()
        if not line:
            return
        logger.debug(f"STDIO << {line[:500]}")
        self._handle_text(line)

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        """Surface stderr lines (servers log there) as diagnostics."""
        if process.stderr is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        lines = LineBuffer()
        try:
            while True:
                chunk = await process.stderr.read(_READ_CHUNK_SIZE)
                if not chunk:
                    break
                for line in lines.feed(decoder.decode(chunk)):
                    self._on_stderr(line)
            tail = lines.flush()
            if tail is not None:
                self._on_stderr(tail)
        except (ConnectionResetError, BrokenPipeError):
            pass

    def _on_stderr(self, line: str) -> None:
        if line:
            logger.debug(f"[{self.config.command} stderr] {line}")
            self.events.stderr.emit(line)

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        process = self._process
        info.update(
            command=self.command_line,
            pid=process.pid if process else None,
            returncode=process.returncode if process else None,
        )
        return info
