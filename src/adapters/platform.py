"""Detector de capacidades de la plataforma.

Detecta OS/arch, qué puede hacer aquí el toolchain de ZisK (ASM runner, MPI,
GPU) y dónde viven sus binarios. Solo lectura para el resto de la app; las
sondas corren una vez por instancia.

Nota: solo usa `shutil.which`; aquí no se ejecuta nada.
"""

from __future__ import annotations

import os
import platform as _platform
import shutil
import sys
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Any

from core.config import AppSettings
from core.interfaces.platform import Capabilities, Parallelism, PlatformProbe, ToolPaths

MIN_MEMORY_BYTES = 8 * 1024**3
RECOMMENDED_MEMORY_BYTES = 16 * 1024**3
MIN_CORES = 4
RECOMMENDED_CORES = 8

_ARCH_ALIASES = {"amd64": "x64", "x86_64": "x64", "aarch64": "arm64", "arm64": "arm64", "i386": "ia32", "i686": "ia32"}


@dataclass(frozen=True)
class PlatformInfo:
    system: str
    arch: str
    release: str
    hostname: str

    @property
    def key(self) -> str:
        return f"{self.system}-{self.arch}"

    @property
    def is_linux(self) -> bool:
        return self.system == "linux"

    @property
    def is_macos(self) -> bool:
        return self.system == "darwin"

    @property
    def is_windows(self) -> bool:
        return self.system == "win32"

    def describe(self) -> str:
        return f"{self.system} {self.arch} ({self.release})"


@dataclass(frozen=True)
class ZiskPaths:
    base: Path
    bin: Path = field(init=False)
    proving_key: Path = field(init=False)
    cache: Path = field(init=False)
    config: Path = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "bin", self.base / "bin")
        object.__setattr__(self, "proving_key", self.base / "provingKey")
        object.__setattr__(self, "cache", self.base / "cache")
        object.__setattr__(self, "config", self.base / "config.json")


def detect_platform() -> PlatformInfo:
    machine = _platform.machine().lower()
    system = "win32" if sys.platform.startswith("win") else sys.platform
    if system.startswith("linux"):
        system = "linux"
    return PlatformInfo(
        system=system,
        arch=_ARCH_ALIASES.get(machine, machine or "unknown"),
        release=_platform.release(),
        hostname=_platform.node(),
    )


def _total_memory_bytes() -> int | None:
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return None
    if pages <= 0 or page_size <= 0:
        return None
    return int(pages) * int(page_size)


class PlatformManager(PlatformProbe):
    """Plataforma del host, capacidades de ZisK y ubicación del toolchain."""

    def __init__(self, settings: AppSettings | None = None, *, info: PlatformInfo | None = None) -> None:
        self._settings = settings or AppSettings()
        self.info = info or detect_platform()
        base = self._settings.zisk_home or Path(os.environ.get("ZISK_HOME") or (Path.home() / ".zisk"))
        self.zisk_paths = ZiskPaths(base=Path(base).expanduser())

    @cached_property
    def capabilities(self) -> Capabilities:
        info = self.info
        if info.is_linux and info.arch == "x64":
            return Capabilities(
                asm_runner=True,
                mpi_support=shutil.which("mpirun") is not None,
                gpu_support=shutil.which("nvidia-smi") is not None,
                full_support=True,
                native_compilation=True,
                parallel_execution=True,
            )
        if info.is_macos:
            return Capabilities(
                full_support=True,
                native_compilation=shutil.which("xcode-select") is not None,
                parallel_execution=True,
            )
        if info.is_linux and info.arch == "arm64":
            return Capabilities(full_support=True, native_compilation=True, parallel_execution=True)
        return Capabilities()

    def is_supported(self) -> bool:
        return self.capabilities.full_support

    def execution_mode(self) -> str:
        if self.capabilities.asm_runner:
            return "asm"
        if self.capabilities.full_support:
            return "emulator"
        return "unsupported"

    def parallelism(self) -> Parallelism:
        cpus = os.cpu_count() or 1
        return Parallelism(
            processes=max(1, cpus // 2),
            threads_per_process=max(1, cpus // 4),
            total_threads=cpus,
        )

    def _tool(self, name: str) -> str:
        installed = self.zisk_paths.bin / name
        if installed.is_file():
            return str(installed)
        return shutil.which(name) or name

    def resolve_library_paths(self) -> ToolPaths:
        suffix = "dylib" if self.info.is_macos else "so"
        return ToolPaths(
            cargo_zisk=self._tool("cargo-zisk"),
            ziskemu=self._tool("ziskemu"),
            witness_library=self.zisk_paths.bin / f"libzisk_witness.{suffix}",
        )

    def build_flags(self) -> list[str]:
        if self.capabilities.gpu_support:
            return ["--features", "gpu"]
        return []

    def limitations(self) -> list[str]:
        notes: list[str] = []
        if not self.capabilities.asm_runner:
            notes.append("ASM runner not available - using emulator mode")
        if not self.capabilities.mpi_support:
            notes.append("MPI support not available")
        if not self.capabilities.gpu_support:
            notes.append("GPU support not available")
        return notes

    def resources(self) -> dict[str, Any]:
        load: tuple[float, ...] | None
        try:
            load = os.getloadavg()
        except (AttributeError, OSError):
            load = None
        return {
            "cpu_count": os.cpu_count() or 1,
            "memory_total": _total_memory_bytes(),
            "load_average": load,
        }

    def check_resource_requirements(self) -> tuple[bool, list[str]]:
        """Compara los recursos del host con los mínimos de ZisK."""

        res = self.resources()
        issues: list[str] = []
        memory = res["memory_total"]
        if memory is not None and memory < MIN_MEMORY_BYTES:
            issues.append(
                f"Insufficient memory: {memory // 1024**3}GB available, {MIN_MEMORY_BYTES // 1024**3}GB required"
            )
        if res["cpu_count"] < MIN_CORES:
            issues.append(f"Insufficient CPU cores: {res['cpu_count']} available, {MIN_CORES} required")
        return not issues, issues
