"""Constructores de argumentos para el toolchain de ZisK.

Cada builder devuelve los argumentos *después* del subcomando; los wrappers
del ejecutor (`execute_cargo_zisk`, `execute_ziskemu`) lo anteponen. Las
rutas pasan tal cual para que el ejecutor las valide.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

PathArg = str | Path | None


def _push(args: list[str], flag: str, value: PathArg | int) -> None:
    if value is None or value == "":
        return
    args.extend([flag, str(value)])


def build_args(
    *,
    profile: str | None = None,
    features: Sequence[str] = (),
    target: str | None = None,
) -> list[str]:
    args: list[str] = []
    _push(args, "--profile", profile)
    if features:
        args.extend(["--features", ",".join(features)])
    _push(args, "--target", target)
    return args


def run_args(
    input_path: PathArg = None,
    *,
    profile: str | None = None,
    metrics: bool = False,
    stats: bool = False,
) -> list[str]:
    args: list[str] = []
    _push(args, "--profile", profile)
    _push(args, "-i", input_path)
    if metrics:
        args.append("-m")
    if stats:
        args.append("-x")
    return args


def prove_args(
    input_path: PathArg = None,
    *,
    elf: PathArg = None,
    output_dir: PathArg = None,
    witness_library: PathArg = None,
    proving_key: PathArg = None,
    aggregate: bool = False,
    verify: bool = False,
) -> list[str]:
    """Argumentos de `cargo-zisk prove` (`-e -i -o -w -k -a -y`)."""

    args: list[str] = []
    _push(args, "-e", elf)
    _push(args, "-i", input_path)
    _push(args, "-o", output_dir)
    _push(args, "-w", witness_library)
    _push(args, "-k", proving_key)
    if aggregate:
        args.append("-a")
    if verify:
        args.append("-y")
    return args


def verify_args(
    proof: PathArg,
    *,
    stark_info: PathArg = None,
    verifier_bin: PathArg = None,
    verkey: PathArg = None,
) -> list[str]:
    args: list[str] = []
    _push(args, "-p", proof)
    _push(args, "-s", stark_info)
    _push(args, "-e", verifier_bin)
    _push(args, "-k", verkey)
    return args


def rom_setup_args(elf: PathArg, *, proving_key: PathArg = None) -> list[str]:
    args: list[str] = []
    _push(args, "-e", elf)
    _push(args, "-k", proving_key)
    return args


def ziskemu_args(
    elf: PathArg,
    input_path: PathArg = None,
    *,
    max_steps: int | None = None,
    metrics: bool = False,
    stats: bool = False,
) -> list[str]:
    """Argumentos del emulador standalone (`-e -i -n -m -x`)."""

    args: list[str] = []
    _push(args, "-e", elf)
    _push(args, "-i", input_path)
    _push(args, "-n", max_steps)
    if metrics:
        args.append("-m")
    if stats:
        args.append("-x")
    return args
