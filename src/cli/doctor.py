"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from adapters.http_client import check_url
from adapters.platform import PlatformManager
from adapters.process_executor import ProcessExecutor
from core.config import AppSettings

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()

TOOLS = ("cargo", "rustc", "cargo-zisk", "ziskemu", "mpirun")


def _status(ok: bool, *, optional: bool = False) -> str:
    if ok:
        return "OK"
    return "OPTIONAL" if optional else "FAIL"


async def _tool_versions(executor: ProcessExecutor, platform: PlatformManager) -> dict[str, str | None]:
    paths = platform.resolve_library_paths()
    resolved = {"cargo-zisk": paths.cargo_zisk, "ziskemu": paths.ziskemu}
    versions: dict[str, str | None] = {}
    for tool in TOOLS:
        program = resolved.get(tool, tool)
        if not executor.command_exists(program):
            versions[tool] = None
            continue
        versions[tool] = await executor.command_version(program)
    return versions


async def _connectivity(settings: AppSettings) -> list[tuple[str, bool, str]]:
    results = await asyncio.gather(*(check_url(url, settings) for url in settings.connectivity_urls))
    return [(url, ok, detail) for url, (ok, detail) in zip(settings.connectivity_urls, results)]


async def _collect(settings: AppSettings, platform: PlatformManager, *, offline: bool):
    executor = ProcessExecutor(settings, platform=platform)
    versions = await _tool_versions(executor, platform)
    connectivity = [] if offline else await _connectivity(settings)
    return versions, connectivity


@app.command()
def run(
    offline: bool = typer.Option(False, "--offline", help="Skip the HTTP connectivity checks."),
) -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()
    platform = PlatformManager(settings)
    caps = platform.capabilities

    table = Table(title="zisk-dev Doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    # Platform
    table.add_row("Platform", _status(platform.is_supported()), platform.info.describe())
    table.add_row("Execution mode", _status(platform.execution_mode() != "unsupported"), platform.execution_mode())
    table.add_row("ASM runner", _status(caps.asm_runner, optional=True), "linux-x64 only")
    table.add_row("MPI", _status(caps.mpi_support, optional=True), "mpirun on PATH")
    table.add_row("GPU", _status(caps.gpu_support, optional=True), "nvidia-smi on PATH")

    # Toolchain
    versions, connectivity = asyncio.run(_collect(settings, platform, offline=offline))
    for tool, version in versions.items():
        optional = tool == "mpirun"
        table.add_row(tool, _status(version is not None, optional=optional), version or "not found")
    witness = platform.resolve_library_paths().witness_library
    table.add_row("Witness library", _status(witness.is_file(), optional=True), str(witness))
    proving_key = platform.zisk_paths.proving_key
    table.add_row("Proving key", _status(proving_key.is_dir(), optional=True), str(proving_key))

    # Resources
    res = platform.resources()
    ok_res, issues = platform.check_resource_requirements()
    memory = res["memory_total"]
    detail = f"{res['cpu_count']} cores, " + (f"{memory // 1024**3} GB RAM" if memory else "RAM unknown")
    table.add_row("Resources", _status(ok_res), "; ".join(issues) or detail)

    # Connectivity (best-effort)
    for url, ok, detail_http in connectivity:
        table.add_row(f"HTTP {url}", _status(ok), detail_http)

    # Config
    table.add_row("Concurrency", "OK", str(settings.pool_capacity()))
    table.add_row("Strict arguments", "OK", str(settings.strict_arguments))
    table.add_row("Log dir", "OK", str(settings.log_dir))

    _console.print(table)

    for note in platform.limitations():
        _console.print(f"[yellow]Note:[/yellow] {note}")
