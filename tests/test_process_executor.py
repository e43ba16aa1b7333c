from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from pathlib import Path

import pytest

from adapters.process_executor import ZISK_PATH_FLAGS, ExecuteOptions, ProcessExecutor
from conftest import PYTHON, StubPlatform, posix_only
from core.config import MAX_POOL_CAPACITY, AppSettings
from core.domain.formats import ExecutionState, OperationClass
from core.errors import (
    CommandNotAllowedError,
    CommandTimeoutError,
    InvalidArgumentsError,
    NonZeroExitError,
    OutputLimitError,
    PathViolationError,
    PlatformUnsupportedError,
    SpawnFailureError,
)
from core.interfaces.platform import Capabilities, ToolPaths

pytestmark = posix_only


def _executor(settings: AppSettings, allowed: frozenset[str], **kwargs) -> ProcessExecutor:
    return ProcessExecutor(settings, allowed_commands=allowed, **kwargs)


def _quiet(tmp_path: Path, **kwargs) -> ExecuteOptions:
    return ExecuteOptions(cwd=tmp_path, stream_output=False, **kwargs)


def test_successful_command(settings, allowed_commands, write_script, tmp_path: Path) -> None:
    script = write_script("hello.py", "import sys\nprint('hello', sys.argv[1])\n")

    async def main():
        executor = _executor(settings, allowed_commands)
        return await executor.execute(PYTHON, [script, "world"], _quiet(tmp_path))

    result = asyncio.run(main())

    assert result.ok
    assert result.exit_code == 0
    assert result.stdout == "hello world"
    assert result.operation is OperationClass.GENERIC
    assert result.duration_ms >= 0


def test_output_is_streamed_to_sinks(settings, allowed_commands, write_script, tmp_path: Path) -> None:
    script = write_script("both.py", "import sys\nprint('out')\nprint('err', file=sys.stderr)\n")
    seen: dict[str, bytes] = {"stdout": b"", "stderr": b""}

    def sink(name: str):
        def write(chunk: bytes) -> None:
            seen[name] += chunk

        return write

    async def main():
        executor = _executor(
            settings,
            allowed_commands,
            stdout_sink=sink("stdout"),
            stderr_sink=sink("stderr"),
        )
        return await executor.execute(PYTHON, [script], ExecuteOptions(cwd=tmp_path))

    result = asyncio.run(main())

    assert seen["stdout"].strip() == b"out"
    assert seen["stderr"].strip() == b"err"
    assert result.stdout == "out"
    assert result.stderr == "err"


def test_non_zero_exit_carries_redacted_stderr(settings, allowed_commands, write_script, tmp_path: Path) -> None:
    script = write_script(
        "fail.py",
        "import sys\nsys.stderr.write('loading token=abc123\\n')\nsys.stderr.write('boom\\n')\nsys.exit(3)\n",
    )

    async def main():
        executor = _executor(settings, allowed_commands)
        return await executor.execute(PYTHON, [script], _quiet(tmp_path))

    with pytest.raises(NonZeroExitError) as excinfo:
        asyncio.run(main())

    error = excinfo.value
    assert error.exit_code == 3
    assert error.kind == "NonZeroExit"
    assert error.context["state"] == ExecutionState.FAILED.value
    assert "abc123" not in error.stderr
    assert error.stderr_tail(1) == "boom"


def test_spawn_failure(settings, allowed_commands, tmp_path: Path) -> None:
    async def main():
        executor = _executor(settings, allowed_commands)
        return await executor.execute(str(tmp_path / "cargo-zisk"), ["build"], _quiet(tmp_path))

    with pytest.raises(SpawnFailureError) as excinfo:
        asyncio.run(main())

    assert excinfo.value.context["state"] == ExecutionState.FAILED.value


@pytest.mark.parametrize("command", ["rm", "sh", "/bin/bash"])
def test_command_not_allowed(settings, command: str, tmp_path: Path) -> None:
    async def main():
        return await ProcessExecutor(settings).execute(command, ["-c", "true"], _quiet(tmp_path))

    with pytest.raises(CommandNotAllowedError):
        asyncio.run(main())


@pytest.mark.parametrize("args", ["build", ["build", 1], ["$()"]])
def test_invalid_arguments(settings, args, tmp_path: Path) -> None:
    async def main():
        return await ProcessExecutor(settings).execute("cargo", args, _quiet(tmp_path))

    with pytest.raises(InvalidArgumentsError):
        asyncio.run(main())


def test_path_traversal_is_rejected_before_spawn(settings, tmp_path: Path) -> None:
    executor = ProcessExecutor(settings)

    with pytest.raises(PathViolationError):
        executor.prepare(
            "cargo-zisk",
            ["prove", "-i", "../../etc/passwd"],
            _quiet(tmp_path, path_flags=ZISK_PATH_FLAGS),
        )
    with pytest.raises(PathViolationError):
        executor.prepare("cargo-zisk", ["prove", "--output=~/proofs"], _quiet(tmp_path, path_flags=ZISK_PATH_FLAGS))
    with pytest.raises(PathViolationError):
        executor.prepare("cargo-zisk", ["verify"], _quiet(tmp_path, path_arguments=("../proof.bin",)))


def test_prepare_resolves_timeout_and_state(settings, tmp_path: Path) -> None:
    executor = ProcessExecutor(settings)

    invocation = executor.prepare("cargo-zisk", ["prove"], _quiet(tmp_path, operation=OperationClass.PROVE))
    explicit = executor.prepare("cargo", ["build"], _quiet(tmp_path, operation=OperationClass.BUILD, timeout=12))

    assert invocation.timeout == 7200
    assert explicit.timeout == 12
    assert invocation.state is ExecutionState.VALIDATED


def test_environment_is_filtered(settings, allowed_commands, write_script, tmp_path: Path) -> None:
    script = write_script("env.py", "import json, os\nprint(json.dumps(sorted(os.environ)))\n")
    environ = {
        **os.environ,
        "ZISK_FOO": "1",
        "AWS_SECRET_ACCESS_KEY": "s",
        "RANDOM_VAR_XYZ": "r",
    }

    async def main():
        executor = _executor(settings, allowed_commands, environ=environ)
        return await executor.execute(PYTHON, [script], _quiet(tmp_path, env={"CUSTOM_FLAG": "on"}))

    names = json.loads(asyncio.run(main()).stdout)

    assert "ZISK_FOO" in names
    assert "CUSTOM_FLAG" in names
    assert "AWS_SECRET_ACCESS_KEY" not in names
    assert "RANDOM_VAR_XYZ" not in names


def test_timeout_escalates_to_kill(settings, allowed_commands, write_script, tmp_path: Path) -> None:
    pid_file = tmp_path / "child.pid"
    script = write_script(
        "stubborn.py",
        "import os, signal, sys, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "open(sys.argv[1], 'w').write(str(os.getpid()))\n"
        "time.sleep(60)\n",
    )

    async def main():
        executor = _executor(settings, allowed_commands)
        return await executor.execute(PYTHON, [script, str(pid_file)], _quiet(tmp_path, timeout=1.0))

    started = time.monotonic()
    with pytest.raises(CommandTimeoutError) as excinfo:
        asyncio.run(main())
    elapsed = time.monotonic() - started

    assert excinfo.value.kind == "Timeout"
    assert excinfo.value.context["state"] == ExecutionState.TIMED_OUT.value
    assert elapsed < 1.0 + settings.kill_grace_seconds + 3
    if pid_file.exists():
        with pytest.raises(ProcessLookupError):
            os.kill(int(pid_file.read_text()), 0)


def test_pool_bounds_concurrency(settings, allowed_commands, write_script, tmp_path: Path) -> None:
    script = write_script(
        "slow.py",
        "import time\nstart = time.time()\ntime.sleep(0.3)\nprint(start, time.time())\n",
    )
    capacity = 2
    jobs = 5

    async def main():
        executor = _executor(settings, allowed_commands, capacity=capacity)
        samples: list[int] = []
        done = asyncio.Event()

        async def monitor() -> None:
            while not done.is_set():
                samples.append(executor.running)
                await asyncio.sleep(0.02)

        watcher = asyncio.create_task(monitor())
        results = await asyncio.gather(*(executor.execute(PYTHON, [script], _quiet(tmp_path)) for _ in range(jobs)))
        done.set()
        await watcher
        return executor, samples, results

    executor, samples, results = asyncio.run(main())

    assert all(r.ok for r in results)
    assert max(samples) <= capacity
    assert executor.peak_running == capacity
    intervals = [tuple(map(float, r.stdout.split())) for r in results]
    for start, _ in intervals:
        alive = sum(1 for s, e in intervals if s <= start < e)
        assert alive <= capacity


def test_capacity_override_is_capped(settings, allowed_commands) -> None:
    assert _executor(settings, allowed_commands, capacity=100).capacity == MAX_POOL_CAPACITY
    assert _executor(settings, allowed_commands, capacity=0).capacity == 1
    assert _executor(settings, allowed_commands, capacity=3).capacity == 3


def test_exit_is_not_held_by_descendant_keeping_output_open(
    settings, allowed_commands, write_script, tmp_path: Path
) -> None:
    script = write_script(
        "detach.py",
        "import subprocess, sys\n"
        "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)'])\n"
        "print('done')\n",
    )

    async def main():
        executor = _executor(settings, allowed_commands)
        return await executor.execute(PYTHON, [script], _quiet(tmp_path, timeout=10))

    started = time.monotonic()
    result = asyncio.run(main())
    elapsed = time.monotonic() - started

    assert result.exit_code == 0
    assert result.stdout == "done"
    assert elapsed < 5


def test_output_limit_kills_the_child(allowed_commands, write_script, tmp_path: Path) -> None:
    settings = AppSettings(_env_file=None, max_buffer_bytes=2048, kill_grace_seconds=0.5)
    script = write_script("noisy.py", "import sys, time\nsys.stdout.write('x' * 100000)\nsys.stdout.flush()\ntime.sleep(30)\n")

    async def main():
        executor = _executor(settings, allowed_commands)
        return await executor.execute(PYTHON, [script], _quiet(tmp_path))

    started = time.monotonic()
    with pytest.raises(OutputLimitError) as excinfo:
        asyncio.run(main())

    assert excinfo.value.kind == "IOError"
    assert excinfo.value.context["state"] == ExecutionState.KILLED.value
    assert time.monotonic() - started < 10


def test_command_line_is_logged_redacted(settings, allowed_commands, write_script, tmp_path: Path, caplog) -> None:
    script = write_script("noop.py", "pass\n")

    async def main():
        executor = _executor(settings, allowed_commands)
        return await executor.execute(
            PYTHON,
            [script, "--proving-key", "/secret/path", "--witness=/secret dir/w.so", "--key", "/key dir/pk.bin"],
            _quiet(tmp_path),
        )

    with caplog.at_level(logging.INFO, logger="zisk_dev"):
        asyncio.run(main())

    assert "--proving-key [REDACTED]" in caplog.text
    assert "--witness=[REDACTED]" in caplog.text
    assert "/secret/path" not in caplog.text
    assert "dir/w.so" not in caplog.text
    assert "dir/pk.bin" not in caplog.text


def _stub(fake_tool, **kwargs) -> StubPlatform:
    cargo_zisk = fake_tool("cargo-zisk")
    ziskemu = fake_tool("ziskemu")
    return StubPlatform(
        tools=ToolPaths(cargo_zisk=str(cargo_zisk), ziskemu=str(ziskemu), witness_library=Path("libzisk_witness.so")),
        **kwargs,
    )


def test_execute_cargo_zisk_adds_build_flags(settings, fake_tool, tmp_path: Path) -> None:
    platform = _stub(fake_tool, flags=["--features", "gpu"])

    async def main():
        executor = ProcessExecutor(settings, platform=platform)
        build = await executor.execute_cargo_zisk("build", ["--profile", "release"], _quiet(tmp_path))
        run = await executor.execute_cargo_zisk("run", ["-i", "build/input.bin"], _quiet(tmp_path))
        return build, run

    build, run = asyncio.run(main())

    assert build.stdout == "build --profile release --features gpu"
    assert build.operation is OperationClass.BUILD
    assert run.stdout == "run -i build/input.bin"
    assert run.operation is OperationClass.EXECUTE


def test_execute_cargo_zisk_validates_input_paths(settings, fake_tool, tmp_path: Path) -> None:
    platform = _stub(fake_tool)

    async def main():
        executor = ProcessExecutor(settings, platform=platform)
        return await executor.execute_cargo_zisk("prove", ["-i", "../../etc/passwd"], _quiet(tmp_path))

    with pytest.raises(PathViolationError):
        asyncio.run(main())


def test_execute_ziskemu(settings, fake_tool, tmp_path: Path) -> None:
    platform = _stub(fake_tool)

    async def main():
        executor = ProcessExecutor(settings, platform=platform)
        return await executor.execute_ziskemu(["-e", "guest.elf", "-i", "input.bin"], _quiet(tmp_path))

    result = asyncio.run(main())

    assert result.stdout == "-e guest.elf -i input.bin"
    assert result.operation is OperationClass.EXECUTE


def test_mpi_requires_support(settings, fake_tool, tmp_path: Path) -> None:
    platform = _stub(fake_tool)

    async def main():
        executor = ProcessExecutor(settings, platform=platform)
        return await executor.execute_with_mpi("cargo-zisk", ["prove"], _quiet(tmp_path))

    with pytest.raises(PlatformUnsupportedError):
        asyncio.run(main())


def test_mpi_arguments(settings, fake_tool, child_environ, tmp_path: Path) -> None:
    fake_tool("mpirun")
    platform = _stub(fake_tool, capabilities=Capabilities(mpi_support=True))

    async def main():
        executor = ProcessExecutor(settings, platform=platform, environ=child_environ)
        return await executor.execute_with_mpi(
            "cargo-zisk",
            ["prove", "-i", "input.bin"],
            _quiet(tmp_path),
            processes=3,
        )

    result = asyncio.run(main())

    assert result.stdout == (
        "--bind-to none -np 3 -x OMP_NUM_THREADS=2 -x RAYON_NUM_THREADS=2 cargo-zisk prove -i input.bin"
    )


def test_command_version_and_exists(settings, fake_tool, child_environ, tmp_path: Path, monkeypatch) -> None:
    fake_tool("cargo", 'echo "cargo 1.80.0 (fake)"; echo "second line"')
    monkeypatch.chdir(tmp_path)

    async def main():
        executor = ProcessExecutor(settings, environ=child_environ)
        return await executor.command_version("cargo"), await executor.command_version("rm")

    version, refused = asyncio.run(main())

    assert version == "cargo 1.80.0 (fake)"
    assert refused is None
    assert ProcessExecutor.command_exists(str(tmp_path / "bin" / "cargo"))
    assert not ProcessExecutor.command_exists(str(tmp_path / "bin" / "missing-tool"))
