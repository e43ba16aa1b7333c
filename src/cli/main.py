"""zisk-dev command line.

Commands only orchestrate: conversion lives in `core.services`, process
execution in `adapters.process_executor`. Every typed failure is caught here,
printed as `Kind: message` and turned into exit code 1.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import contextmanager
from pathlib import Path
from typing import Awaitable, Callable, Iterator, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from adapters.input_formats import CustomFormat, load_parser
from adapters.json_exporter import export_command_result, export_conversion_report
from adapters.platform import PlatformManager
from adapters.process_executor import ZISK_PATH_FLAGS, ExecuteOptions, ProcessExecutor
from adapters.zisk_commands import build_args, prove_args, run_args, verify_args, ziskemu_args
from cli import doctor
from cli.ui_components import (
    build_command_panel,
    build_conversion_table,
    build_header_table,
    print_banner,
    print_error,
)
from core.config import AppSettings, write_user_env_vars
from core.domain.formats import OperationClass, SerializationMode, TextFormat
from core.domain.models import BatchItem, CommandResult, ConversionOptions
from core.envelope import decode_typed
from core.errors import MalformedInputError, ZiskDevError
from core.log import configure_logging
from core.services.input_converter import InputConverter, default_output_path, read_envelope

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Development workflow for ZisK zkVM programs: inputs, build, execute, prove.",
)
config_app = typer.Typer(no_args_is_help=True, help="Show or persist zisk-dev settings.")
app.add_typer(doctor.app, name="doctor")
app.add_typer(config_app, name="config")

console = Console()
err_console = Console(stderr=True)


class _State:
    settings: AppSettings | None = None


_state = _State()


def _settings() -> AppSettings:
    if _state.settings is None:
        _state.settings = AppSettings()
    return _state.settings


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except ZiskDevError as exc:
        print_error(err_console, exc)
        raise typer.Exit(code=1) from exc


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs on the console."),
    debug: bool = typer.Option(False, "--debug", help="Debug mode (implies --verbose)."),
) -> None:
    try:
        settings = AppSettings()
    except ValidationError as exc:
        err_console.print(f"Invalid configuration:\n{exc}", markup=False)
        raise typer.Exit(code=2) from exc
    if debug:
        settings = settings.model_copy(update={"debug": True})
    _state.settings = settings
    configure_logging(verbose=verbose or settings.debug, log_dir=settings.log_dir, console=err_console)


# -- inputs ------------------------------------------------------------------


def _input_path(path: Path) -> Path:
    """`path` as given, or under `input_dir` when only found there."""

    if path.exists() or path.is_absolute():
        return path
    candidate = _settings().input_dir / path
    return candidate if candidate.exists() else path


def _build_converter(converters: list[str]) -> InputConverter:
    custom = {}
    for entry in converters:
        ext, sep, target = entry.partition("=")
        if not sep or not ext.strip() or not target.strip():
            raise typer.BadParameter(f"Expected EXT=module:function, got {entry!r}", param_hint="--converter")
        parser = load_parser(target.strip())
        custom[ext.strip()] = CustomFormat(parser, name=target.strip())
    return InputConverter(custom)


def _convert_one(converter: InputConverter, source: Path, options: ConversionOptions) -> Path:
    result = converter.convert(source, default_output_path(source), options)
    console.print(build_conversion_table([BatchItem(source_path=source, result=result)]))
    return result.destination_path


@app.command()
def convert(
    sources: list[Path] = typer.Argument(..., help="Input files (.json, .yaml, .yml, .txt, .bin)."),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file (single source) or directory (several sources).",
    ),
    mode: SerializationMode = typer.Option(SerializationMode.DEFAULT, "--mode", help="Payload serialization."),
    text_format: TextFormat = typer.Option(TextFormat.LINES, "--text-format", help="How .txt inputs are parsed."),
    converters: list[str] = typer.Option(
        [],
        "--converter",
        help="Custom converter as EXT=module:function (repeatable).",
    ),
    report: Optional[Path] = typer.Option(None, "--report", help="Write a JSON report of the conversion."),
) -> None:
    """Convert input files into the ZisK binary envelope."""

    options = ConversionOptions(mode=mode, text_format=text_format)
    with _cli_errors():
        converter = _build_converter(converters)
        sources = [_input_path(source) for source in sources]
        if len(sources) == 1:
            source = sources[0]
            destination = output or default_output_path(source)
            result = converter.convert(source, destination, options)
            items = [BatchItem(source_path=source, result=result)]
        else:
            items = converter.convert_many(sources, output or _settings().output_dir, options)

        console.print(build_conversion_table(items))
        if report is not None:
            export_conversion_report(items=items, output_path=report)
            console.print(f"[green]Report written to:[/green] {report}")

    failed = [item for item in items if not item.ok]
    if failed:
        err_console.print(f"{len(failed)} of {len(items)} conversions failed", style="red")
        raise typer.Exit(code=1)


@app.command()
def inspect(
    path: Path = typer.Argument(..., help="Converted .bin file."),
) -> None:
    """Show the envelope header and, when possible, the decoded payload."""

    with _cli_errors():
        header, payload = read_envelope(path)
        console.print(build_header_table(header, file_size=path.stat().st_size))

    try:
        value = decode_typed(payload)
        label = "typed"
    except MalformedInputError:
        try:
            value = json.loads(payload.decode("utf-8"))
            label = "json"
        except (UnicodeDecodeError, ValueError):
            console.print(f"Payload: {len(payload)} opaque bytes")
            return
    console.print(f"Payload ({label}):")
    console.print_json(json.dumps(value, ensure_ascii=False))


# -- toolchain ---------------------------------------------------------------


def _run(call: Callable[[ProcessExecutor], Awaitable[CommandResult]]) -> CommandResult:
    """Run one executor call on a fresh event loop."""

    async def runner() -> CommandResult:
        settings = _settings()
        executor = ProcessExecutor(settings, platform=PlatformManager(settings))
        return await call(executor)

    return asyncio.run(runner())


def _finish(result: CommandResult, report: Path | None) -> None:
    console.print(build_command_panel(result))
    if report is not None:
        export_command_result(result=result, output_path=report)
        console.print(f"[green]Report written to:[/green] {report}")


@app.command()
def build(
    profile: Optional[str] = typer.Option(None, "--profile", help="Cargo profile (default from settings)."),
    features: list[str] = typer.Option([], "--features", help="Cargo features (repeatable)."),
    target: Optional[str] = typer.Option(None, "--target", help="Target triple."),
    report: Optional[Path] = typer.Option(None, "--report", help="Write a JSON report of the command."),
) -> None:
    """Build the guest program with `cargo-zisk build`."""

    settings = _settings()
    args = build_args(
        profile=profile or settings.build_profile,
        features=features or settings.build_features,
        target=target or settings.build_target,
    )
    with _cli_errors():
        result = _run(lambda ex: ex.execute_cargo_zisk("build", args))
    _finish(result, report)


@app.command()
def execute(
    input_path: Path = typer.Option(..., "--input", "-i", help="Input file (converted automatically)."),
    elf: Optional[Path] = typer.Option(None, "--elf", "-e", help="Guest ELF; runs the standalone emulator."),
    max_steps: Optional[int] = typer.Option(None, "--max-steps", "-n", min=1, help="Emulator step limit."),
    metrics: bool = typer.Option(False, "--metrics", "-m", help="Print metrics."),
    stats: bool = typer.Option(False, "--stats", "-x", help="Print statistics."),
    report: Optional[Path] = typer.Option(None, "--report", help="Write a JSON report of the command."),
) -> None:
    """Convert the input and run the program (`ziskemu` or `cargo-zisk run`)."""

    settings = _settings()
    with _cli_errors():
        binary = _convert_one(InputConverter(), _input_path(input_path), ConversionOptions())
        if elf is not None:
            args = ziskemu_args(elf, binary, max_steps=max_steps, metrics=metrics, stats=stats)
            result = _run(lambda ex: ex.execute_ziskemu(args))
        else:
            args = run_args(binary, profile=settings.build_profile, metrics=metrics, stats=stats)
            result = _run(lambda ex: ex.execute_cargo_zisk("run", args))
    _finish(result, report)


@app.command()
def prove(
    input_path: Path = typer.Option(..., "--input", "-i", help="Input file (converted automatically)."),
    elf: Path = typer.Option(..., "--elf", "-e", help="Guest ELF."),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Proof output directory."),
    aggregate: bool = typer.Option(False, "--aggregate", "-a", help="Aggregate proofs."),
    verify_proof: bool = typer.Option(False, "--verify", "-y", help="Verify the proof after generation."),
    mpi: Optional[int] = typer.Option(None, "--mpi", min=1, help="Run under mpirun with N processes."),
    report: Optional[Path] = typer.Option(None, "--report", help="Write a JSON report of the command."),
) -> None:
    """Convert the input and generate a proof with `cargo-zisk prove`."""

    settings = _settings()
    with _cli_errors():
        binary = _convert_one(InputConverter(), _input_path(input_path), ConversionOptions())
        platform = PlatformManager(settings)
        paths = platform.resolve_library_paths()
        args = prove_args(
            binary,
            elf=elf,
            output_dir=output_dir or settings.proofs_dir,
            witness_library=paths.witness_library if paths.witness_library.is_file() else None,
            aggregate=aggregate,
            verify=verify_proof,
        )
        if mpi is None:
            result = _run(lambda ex: ex.execute_cargo_zisk("prove", args))
        else:
            options = ExecuteOptions(
                operation=OperationClass.PROVE,
                path_flags=ZISK_PATH_FLAGS,
            )
            result = _run(
                lambda ex: ex.execute_with_mpi(paths.cargo_zisk, ["prove", *args], options, processes=mpi)
            )
    _finish(result, report)


@app.command()
def verify(
    proof: Path = typer.Option(..., "--proof", "-p", help="Proof file."),
    report: Optional[Path] = typer.Option(None, "--report", help="Write a JSON report of the command."),
) -> None:
    """Verify a proof with `cargo-zisk verify`."""

    with _cli_errors():
        result = _run(lambda ex: ex.execute_cargo_zisk("verify", verify_args(proof)))
    _finish(result, report)


# -- config ------------------------------------------------------------------


@config_app.command("show")
def config_show() -> None:
    """Print the effective settings."""

    table = Table(title="zisk-dev settings")
    table.add_column("Setting", style="bright_green", no_wrap=True)
    table.add_column("Value", style="white")
    for key, value in _settings().model_dump(mode="json").items():
        table.add_row(key, ", ".join(map(str, value)) if isinstance(value, list) else str(value))
    console.print(table)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Setting name, e.g. max_concurrency."),
    value: str = typer.Argument(..., help="New value."),
) -> None:
    """Persist a setting in the user config .env."""

    name = key.strip().lower().removeprefix("zisk_dev_")
    if name not in AppSettings.model_fields:
        raise typer.BadParameter(f"Unknown setting: {key}", param_hint="KEY")
    env_path = write_user_env_vars({f"ZISK_DEV_{name.upper()}": value})
    console.print(f"[green]Saved {name} to:[/green] {env_path}")


def run() -> None:
    """Console entry point."""

    if console.is_terminal:
        print_banner(console)
    app()


if __name__ == "__main__":
    run()
