from __future__ import annotations

import logging
import os
import stat
import sys
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from core.config import AppSettings
from core.interfaces.platform import Capabilities, Parallelism, ToolPaths
from core.log import LOGGER_NAME
from core.security import DEFAULT_ALLOWED_COMMANDS, command_name

PYTHON = sys.executable
PYTHON_NAME = command_name(sys.executable)

posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="relies on POSIX signals and shell scripts")


@dataclass
class StubPlatform:
    tools: ToolPaths
    capabilities: Capabilities = field(default_factory=Capabilities)
    flags: list[str] = field(default_factory=list)
    parallel: Parallelism = field(default_factory=lambda: Parallelism(2, 2, 4))

    def resolve_library_paths(self) -> ToolPaths:
        return self.tools

    def build_flags(self) -> list[str]:
        return list(self.flags)

    def execution_mode(self) -> str:
        return "asm" if self.capabilities.asm_runner else "emulator"

    def parallelism(self) -> Parallelism:
        return self.parallel


@pytest.fixture(autouse=True)
def _reset_app_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(_env_file=None, kill_grace_seconds=0.5)


@pytest.fixture
def allowed_commands() -> frozenset[str]:
    return DEFAULT_ALLOWED_COMMANDS | {PYTHON_NAME}


@pytest.fixture
def write_script(tmp_path: Path):
    """Write a Python script under tmp_path and return its path as str."""

    def _write(name: str, body: str) -> str:
        path = tmp_path / name
        path.write_text(body, encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def fake_tool(tmp_path: Path):
    """Create an executable shell script in tmp_path/bin."""

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _make(name: str, body: str = 'echo "$@"') -> Path:
        path = bin_dir / name
        path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def child_environ(tmp_path: Path) -> dict[str, str]:
    """Inherited env for children: the real one with tmp_path/bin first on PATH."""

    env = dict(os.environ)
    env["PATH"] = os.pathsep.join([str(tmp_path / "bin"), env.get("PATH", "")])
    return env


def parse_pairs(path: Path, options) -> dict[str, int]:
    """Custom converter used by the CLI tests: `name:count` per line."""

    pairs = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        name, _, count = line.partition(":")
        pairs[name.strip()] = int(count)
    return pairs
