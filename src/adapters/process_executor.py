"""Ejecución segura de comandos externos.

Cada llamada pasa por el mismo pipeline:

1. valida programa y argumentos (allow-list, saneado, rutas),
2. construye el entorno del hijo desde la allow-list,
3. espera un hueco en el pool acotado (FIFO),
4. lanza, transmite y acumula la salida, aplicando el timeout,
5. convierte el resultado en `CommandResult` o en un error tipado.

Por qué aquí:
- `asyncio.Semaphore` limita la concurrencia entre todas las llamadas.
- El semáforo se ata al event loop en curso: un ejecutor por `asyncio.run`.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

from adapters.platform import PlatformManager
from adapters.termination import spawn_kwargs, terminate, terminate_with_escalation
from core.config import MAX_POOL_CAPACITY, AppSettings
from core.domain.formats import ExecutionState, OperationClass
from core.domain.models import CommandResult
from core.environment import EnvironmentAllowList
from core.errors import (
    CommandTimeoutError,
    InvalidArgumentsError,
    NonZeroExitError,
    OutputLimitError,
    PlatformUnsupportedError,
    SpawnFailureError,
    ZiskDevError,
)
from core.interfaces.platform import PlatformProbe
from core.log import get_logger
from core.security import (
    DEFAULT_ALLOWED_COMMANDS,
    redact,
    redact_command_line,
    sanitize_arguments,
    validate_command,
    validate_path_argument,
)

logger = get_logger("executor")

CHUNK_SIZE = 64 * 1024
VERSION_TIMEOUT_SECONDS = 15.0
EXIT_POLL_SECONDS = 0.05

ZISK_PATH_FLAGS: frozenset[str] = frozenset({"-i", "-o", "--input", "--output"})

OutputSink = Callable[[bytes], None]


def terminal_sink(stream_name: str) -> OutputSink:
    """Sink que escribe chunks crudos en `sys.stdout`/`sys.stderr` (resuelto en cada llamada)."""

    def write(chunk: bytes) -> None:
        stream = getattr(sys, stream_name)
        buffer = getattr(stream, "buffer", None)
        if buffer is not None:
            buffer.write(chunk)
            buffer.flush()
        else:
            stream.write(chunk.decode("utf-8", errors="replace"))
            stream.flush()

    return write


@dataclass(frozen=True)
class ExecuteOptions:
    """Opciones por llamada de `ProcessExecutor.execute`."""

    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    operation: OperationClass = OperationClass.GENERIC
    timeout: float | None = None
    path_flags: frozenset[str] = frozenset()
    path_arguments: tuple[str, ...] = ()
    allow_absolute_paths: bool = True
    stream_output: bool = True


@dataclass
class Invocation:
    """Un comando validado en su paso por el pool."""

    program: str
    args: list[str]
    cwd: Path
    env: dict[str, str]
    operation: OperationClass
    timeout: float
    display: str
    state: ExecutionState = ExecutionState.PENDING

    def transition(self, state: ExecutionState) -> None:
        self.state = state
        logger.debug("%s -> %s", self.display, state.value)


class _OutputCapture:
    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.total = 0
        self.chunks: dict[str, list[bytes]] = {"stdout": [], "stderr": []}

    def add(self, stream: str, chunk: bytes) -> None:
        self.total += len(chunk)
        if self.total > self.limit:
            raise OutputLimitError(
                f"Command output exceeded {self.limit} bytes",
                limit=self.limit,
            )
        self.chunks[stream].append(chunk)

    def text(self, stream: str) -> str:
        return b"".join(self.chunks[stream]).decode("utf-8", errors="replace").strip()


async def _pump(
    reader: asyncio.StreamReader,
    stream: str,
    capture: _OutputCapture,
    sink: OutputSink | None,
) -> None:
    while True:
        chunk = await reader.read(CHUNK_SIZE)
        if not chunk:
            return
        if sink is not None:
            sink(chunk)
        capture.add(stream, chunk)


def _path_values(args: Sequence[str], flags: frozenset[str]) -> list[str]:
    values: list[str] = []
    for index, arg in enumerate(args):
        if index > 0 and args[index - 1] in flags:
            values.append(arg)
            continue
        flag, sep, value = arg.partition("=")
        if sep and flag in flags:
            values.append(value)
    return values


async def _wait_for_exit(process: asyncio.subprocess.Process, readers: list[asyncio.Task[None]]) -> int:
    """Código de salida de `process`; los fallos de los lectores (tope de salida) se propagan.

    Consulta `returncode` en vez de esperar a los pipes: un descendiente que
    heredó stdout/stderr los mantiene abiertos tras la salida del hijo.
    """

    pending = set(readers)
    while process.returncode is None:
        if not pending:
            return await process.wait()
        done, pending = await asyncio.wait(pending, timeout=EXIT_POLL_SECONDS)
        for task in done:
            task.result()
    return process.returncode


async def _drain(process: asyncio.subprocess.Process, readers: list[asyncio.Task[None]], grace: float) -> None:
    """Recoge la salida pendiente tras la salida del hijo y mata a los descendientes que queden."""

    pending = [reader for reader in readers if not reader.done()]
    if pending:
        _, still_open = await asyncio.wait(pending, timeout=grace)
        if still_open:
            logger.warning("Process %s exited but its descendants keep the output open; killing them", process.pid)
            await terminate(process, "force")
            await asyncio.wait(still_open, timeout=grace)
    for reader in readers:
        if reader.done() and not reader.cancelled():
            reader.result()


class ProcessExecutor:
    """Ejecuta programas de la allow-list con concurrencia acotada."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        platform: PlatformProbe | None = None,
        allowed_commands: Iterable[str] = DEFAULT_ALLOWED_COMMANDS,
        environ: Mapping[str, str] | None = None,
        capacity: int | None = None,
        stdout_sink: OutputSink | None = None,
        stderr_sink: OutputSink | None = None,
    ) -> None:
        self.settings = settings or AppSettings()
        self._platform = platform
        self.allowed_commands = frozenset(allowed_commands)
        self.env_allow_list = EnvironmentAllowList.build(
            allow=self.settings.env_allow,
            deny=self.settings.env_deny,
        )
        self._environ = environ
        if capacity is not None:
            self.capacity = max(1, min(MAX_POOL_CAPACITY, capacity))
        else:
            self.capacity = self.settings.pool_capacity()
        self._pool = asyncio.Semaphore(self.capacity)
        self._stdout_sink = stdout_sink or terminal_sink("stdout")
        self._stderr_sink = stderr_sink or terminal_sink("stderr")
        self.running = 0
        self.peak_running = 0

    @property
    def platform(self) -> PlatformProbe:
        if self._platform is None:
            self._platform = PlatformManager(self.settings)
        return self._platform

    # -- validación ---------------------------------------------------------

    def prepare(self, command: str, args: object = (), options: ExecuteOptions | None = None) -> Invocation:
        """Valida una llamada y construye su `Invocation` sin ejecutarla."""

        options = options or ExecuteOptions()
        validate_command(command, self.allowed_commands)
        clean_args = sanitize_arguments(args, strict=self.settings.strict_arguments)

        cwd = Path(options.cwd) if options.cwd is not None else Path.cwd()
        if not cwd.is_dir():
            raise InvalidArgumentsError(f"Working directory does not exist: {cwd}", cwd=str(cwd))

        for value in [*_path_values(clean_args, options.path_flags), *options.path_arguments]:
            validate_path_argument(value, cwd, allow_absolute=options.allow_absolute_paths)

        environ = self._environ if self._environ is not None else os.environ
        env = self.env_allow_list.compose(environ, options.env)

        timeout = options.timeout if options.timeout is not None else self.settings.timeout_for(options.operation)
        if timeout <= 0:
            raise InvalidArgumentsError(f"Timeout must be positive, got {timeout}", timeout=timeout)

        invocation = Invocation(
            program=command,
            args=clean_args,
            cwd=cwd,
            env=env,
            operation=options.operation,
            timeout=float(timeout),
            display=redact_command_line(command, clean_args),
        )
        invocation.transition(ExecutionState.VALIDATED)
        return invocation

    # -- ejecución ----------------------------------------------------------

    async def execute(
        self,
        command: str,
        args: object = (),
        options: ExecuteOptions | None = None,
    ) -> CommandResult:
        """Ejecuta `command` con `args` y devuelve su `CommandResult`.

        Lanza `CommandNotAllowedError`, `InvalidArgumentsError`,
        `PathViolationError`, `CommandTimeoutError`, `NonZeroExitError`,
        `SpawnFailureError` u `OutputLimitError`.
        """

        options = options or ExecuteOptions()
        invocation = self.prepare(command, args, options)
        logger.info(
            "Executing: %s",
            invocation.display,
            extra={
                "metadata": {
                    "command": command,
                    "operation": invocation.operation.value,
                    "cwd": str(invocation.cwd),
                    "timeout": invocation.timeout,
                }
            },
        )
        async with self._pool:
            invocation.transition(ExecutionState.ADMITTED)
            return await self._run(invocation, stream=options.stream_output)

    async def _run(self, invocation: Invocation, *, stream: bool) -> CommandResult:
        started = time.perf_counter()
        try:
            process = await asyncio.create_subprocess_exec(
                invocation.program,
                *invocation.args,
                cwd=str(invocation.cwd),
                env=invocation.env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **spawn_kwargs(),
            )
        except (FileNotFoundError, PermissionError, OSError) as exc:
            invocation.transition(ExecutionState.FAILED)
            error = SpawnFailureError(
                f"Failed to start {invocation.program}: {exc}",
                command=invocation.program,
            )
            raise self._failed(invocation, error) from exc

        invocation.transition(ExecutionState.RUNNING)
        self.running += 1
        self.peak_running = max(self.peak_running, self.running)

        capture = _OutputCapture(self.settings.max_buffer_bytes)
        readers = [
            asyncio.create_task(
                _pump(process.stdout, "stdout", capture, self._stdout_sink if stream else None)  # type: ignore[arg-type]
            ),
            asyncio.create_task(
                _pump(process.stderr, "stderr", capture, self._stderr_sink if stream else None)  # type: ignore[arg-type]
            ),
        ]

        grace = self.settings.kill_grace_seconds
        try:
            exit_code = await asyncio.wait_for(_wait_for_exit(process, readers), invocation.timeout)
            await _drain(process, readers, grace)
        except asyncio.TimeoutError as exc:
            invocation.transition(ExecutionState.TIMED_OUT)
            await terminate_with_escalation(process, grace)
            error = CommandTimeoutError(
                f"Command timed out after {invocation.timeout:g}s: {invocation.display}",
                command=invocation.program,
                timeout=invocation.timeout,
                operation=invocation.operation.value,
            )
            raise self._failed(invocation, error) from exc
        except OutputLimitError as error:
            invocation.transition(ExecutionState.KILLED)
            await terminate_with_escalation(process, grace)
            error.context["command"] = invocation.program
            raise self._failed(invocation, error)
        except asyncio.CancelledError:
            invocation.transition(ExecutionState.KILLED)
            await asyncio.shield(terminate_with_escalation(process, grace))
            raise
        finally:
            for reader in readers:
                if not reader.done():
                    reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)
            self.running -= 1

        duration_ms = (time.perf_counter() - started) * 1000
        stdout = capture.text("stdout")
        stderr = capture.text("stderr")

        if exit_code != 0:
            invocation.transition(ExecutionState.FAILED)
            clean_stderr = redact(stderr)
            error = NonZeroExitError(
                f"Command failed with exit code {exit_code}: {invocation.display}",
                exit_code=exit_code,
                stderr=clean_stderr,
                command=invocation.program,
            )
            raise self._failed(invocation, error, stderr_tail=error.stderr_tail())

        invocation.transition(ExecutionState.COMPLETED)
        logger.debug("Command completed in %.1fms: %s", duration_ms, invocation.display)
        return CommandResult(
            command=invocation.program,
            args=invocation.args,
            operation=invocation.operation,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=duration_ms,
        )

    @staticmethod
    def _failed(invocation: Invocation, error: ZiskDevError, **metadata: object) -> ZiskDevError:
        """Anota el estado final en `error` y lo registra."""

        error.context["state"] = invocation.state.value
        logger.error("Command failed: %s", error.describe(), extra={"metadata": {**error.to_dict(), **metadata}})
        return error

    # -- especializaciones ZisK --------------------------------------------

    async def execute_cargo_zisk(
        self,
        subcommand: str,
        args: Sequence[str] = (),
        options: ExecuteOptions | None = None,
    ) -> CommandResult:
        """`cargo-zisk <subcomando> ...` con el timeout de su clase de operación."""

        options = options or ExecuteOptions()
        program = self.platform.resolve_library_paths().cargo_zisk
        full_args = [subcommand, *args]
        if subcommand == "build":
            full_args.extend(self.platform.build_flags())
        return await self.execute(
            program,
            full_args,
            _with_zisk_defaults(options, OperationClass.for_cargo_zisk(subcommand)),
        )

    async def execute_ziskemu(self, args: Sequence[str] = (), options: ExecuteOptions | None = None) -> CommandResult:
        options = options or ExecuteOptions()
        program = self.platform.resolve_library_paths().ziskemu
        return await self.execute(program, list(args), _with_zisk_defaults(options, OperationClass.EXECUTE))

    async def execute_with_mpi(
        self,
        command: str,
        args: Sequence[str] = (),
        options: ExecuteOptions | None = None,
        *,
        processes: int | None = None,
        threads_per_process: int | None = None,
    ) -> CommandResult:
        """Ejecuta `command` bajo `mpirun` con procesos e hilos explícitos."""

        if not self.platform.capabilities.mpi_support:
            raise PlatformUnsupportedError("MPI not supported on this platform", command=command)
        validate_command(command, self.allowed_commands)

        defaults = self.platform.parallelism()
        processes = processes or defaults.processes
        threads = threads_per_process or defaults.threads_per_process
        if processes < 1 or threads < 1:
            raise InvalidArgumentsError(
                "MPI process and thread counts must be positive",
                processes=processes,
                threads=threads,
            )
        mpi_args = [
            "--bind-to",
            "none",
            "-np",
            str(processes),
            "-x",
            f"OMP_NUM_THREADS={threads}",
            "-x",
            f"RAYON_NUM_THREADS={threads}",
            command,
            *args,
        ]
        return await self.execute("mpirun", mpi_args, options)

    # -- sondas -------------------------------------------------------------

    @staticmethod
    def command_exists(name: str) -> bool:
        return shutil.which(name) is not None

    async def command_version(self, name: str) -> str | None:
        """Primera línea de `<name> --version`, o None si no se puede ejecutar."""

        try:
            result = await self.execute(
                name,
                ["--version"],
                ExecuteOptions(timeout=VERSION_TIMEOUT_SECONDS, stream_output=False),
            )
        except ZiskDevError as exc:
            logger.debug("Version probe failed for %s: %s", name, exc.describe())
            return None
        lines = (result.stdout or result.stderr).splitlines()
        return lines[0].strip() if lines else None


def _with_zisk_defaults(options: ExecuteOptions, operation: OperationClass) -> ExecuteOptions:
    return ExecuteOptions(
        cwd=options.cwd,
        env=options.env,
        operation=operation if options.operation is OperationClass.GENERIC else options.operation,
        timeout=options.timeout,
        path_flags=options.path_flags | ZISK_PATH_FLAGS,
        path_arguments=options.path_arguments,
        allow_absolute_paths=options.allow_absolute_paths,
        stream_output=options.stream_output,
    )
