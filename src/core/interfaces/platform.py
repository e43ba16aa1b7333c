"""Contrato del detector de capacidades de la plataforma.

Los wrappers del ejecutor y el comando doctor solo leen de él; los tests lo
sustituyen por un stub con rutas y capacidades fijas.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ToolPaths:
    """Ubicación resuelta de los binarios externos de ZisK."""

    cargo_zisk: str
    ziskemu: str
    witness_library: Path


@dataclass(frozen=True)
class Capabilities:
    asm_runner: bool = False
    mpi_support: bool = False
    gpu_support: bool = False
    full_support: bool = False
    native_compilation: bool = False
    parallel_execution: bool = False


@dataclass(frozen=True)
class Parallelism:
    processes: int
    threads_per_process: int
    total_threads: int


@runtime_checkable
class PlatformProbe(Protocol):
    @property
    def capabilities(self) -> Capabilities: ...

    def resolve_library_paths(self) -> ToolPaths: ...

    def build_flags(self) -> list[str]: ...

    def execution_mode(self) -> str: ...

    def parallelism(self) -> Parallelism: ...
