"""Reglas de validación y redacción para invocaciones de comandos externos.

Funciones puras, sin I/O salvo la resolución de rutas:
- `validate_command`: allow-list de programas (deny por defecto).
- `sanitize_arguments`: quita caracteres de control (y, en modo estricto,
  metacaracteres de shell) de cada argumento.
- `validate_path_argument`: traversal, `~` y rutas fuera del árbol.
- `redact`: enmascara secretos en texto para logs o terminal.
"""

from __future__ import annotations

import re
from pathlib import Path, PurePath
from typing import Any, Iterable, Sequence

from core.errors import CommandNotAllowedError, InvalidArgumentsError, PathViolationError

DEFAULT_ALLOWED_COMMANDS: frozenset[str] = frozenset(
    {
        "cargo",
        "cargo-zisk",
        "ziskemu",
        "rustc",
        "rustup",
        "tar",
        "curl",
        "wget",
        "git",
        "make",
        "gcc",
        "clang",
        "mpirun",
        "nvidia-smi",
    }
)

# Controles C0 y DEL; el tab se mantiene.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")
_SHELL_METACHARS = re.compile(r"[;&|`$<>(){}\\!*?\[\]'\"\t]")

SECRET_FLAGS: frozenset[str] = frozenset({"--proving-key", "--witness", "--key", "--secret"})

_REDACTED = "[REDACTED]"

_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"--proving-key(\s+|=)\S+"), r"--proving-key\1[REDACTED]"),
    (re.compile(r"--witness(\s+|=)\S+"), r"--witness\1[REDACTED]"),
    (re.compile(r"--key(\s+|=)\S+"), r"--key\1[REDACTED]"),
    (re.compile(r"--secret(\s+|=)\S+"), r"--secret\1[REDACTED]"),
    (re.compile(r"/\.ssh/\S+"), "/.ssh/[REDACTED]"),
    (re.compile(r"/\.zisk/\S+"), "/.zisk/[REDACTED]"),
    (re.compile(r"password[=:]\s*\S+", re.IGNORECASE), "password=[REDACTED]"),
    (re.compile(r"token[=:]\s*\S+", re.IGNORECASE), "token=[REDACTED]"),
    (re.compile(r"key[=:]\s*\S+", re.IGNORECASE), "key=[REDACTED]"),
)


def redact(text: Any) -> str:
    """Enmascara fragmentos sensibles (rutas de claves/witness, credenciales)."""

    redacted = text if isinstance(text, str) else str(text)
    for pattern, replacement in _REDACTIONS:
        redacted = pattern.sub(replacement, redacted)
    return redacted


def redact_argv(args: Sequence[str]) -> list[str]:
    """Enmascara el valor de cada flag secreto, argumento completo.

    Los valores pueden llevar espacios: se aplica antes de unir el argv.
    """

    masked: list[str] = []
    hide_next = False
    for arg in args:
        if hide_next:
            masked.append(_REDACTED)
            hide_next = False
            continue
        flag, sep, _ = arg.partition("=")
        if sep and flag in SECRET_FLAGS:
            masked.append(f"{flag}={_REDACTED}")
        else:
            masked.append(arg)
            hide_next = arg in SECRET_FLAGS
    return masked


def redact_command_line(command: str, args: Sequence[str]) -> str:
    return redact(" ".join([command, *redact_argv(args)]))


def command_name(command: str) -> str:
    """Nombre del programa sin directorios (y sin `.exe` en Windows)."""

    name = PurePath(command.strip()).name
    if name.lower().endswith(".exe"):
        name = name[:-4]
    return name


def validate_command(command: object, allowed: Iterable[str] = DEFAULT_ALLOWED_COMMANDS) -> str:
    """Devuelve el nombre del programa o lanza `CommandNotAllowedError`."""

    if not isinstance(command, str) or not command.strip():
        raise CommandNotAllowedError(f"Command not allowed: {command!r}", command=repr(command))
    if _CONTROL_CHARS.search(command):
        raise CommandNotAllowedError(f"Command not allowed: {command!r}", command=command)
    name = command_name(command)
    if name not in allowed:
        raise CommandNotAllowedError(f"Command not allowed: {name}", command=command)
    return name


def sanitize_argument(arg: str, *, strict: bool = True) -> str:
    cleaned = _CONTROL_CHARS.sub("", arg)
    if strict:
        cleaned = _SHELL_METACHARS.sub("", cleaned)
    return cleaned


def sanitize_arguments(args: object, *, strict: bool = True) -> list[str]:
    """Valida la forma de la lista de argumentos y sanea cada elemento."""

    if not isinstance(args, (list, tuple)):
        raise InvalidArgumentsError(
            f"Arguments must be a list of strings, got {type(args).__name__}",
            args_type=type(args).__name__,
        )
    cleaned: list[str] = []
    for index, arg in enumerate(args):
        if not isinstance(arg, str):
            raise InvalidArgumentsError(
                f"Argument {index} must be a string, got {type(arg).__name__}",
                index=index,
            )
        value = sanitize_argument(arg, strict=strict)
        if arg and not value:
            raise InvalidArgumentsError(f"Argument {index} is empty after sanitization", index=index)
        cleaned.append(value)
    return cleaned


def validate_path_argument(value: str, cwd: Path, *, allow_absolute: bool = True) -> str:
    """Comprueba un argumento de ruta que debe quedar dentro de `cwd`.

    Se inspecciona el valor crudo antes de normalizar: los segmentos `..` y
    `~` se rechazan, no se resuelven.
    """

    if "\x00" in value:
        raise PathViolationError("Path contains a NUL byte", path=value)
    if not value.strip():
        raise PathViolationError("Empty path argument", path=value)

    segments = re.split(r"[\\/]+", value)
    if any(seg == ".." for seg in segments):
        raise PathViolationError(f"Path traversal rejected: {value}", path=value)
    if any(seg.startswith("~") for seg in segments):
        raise PathViolationError(f"Home-relative path rejected: {value}", path=value)

    candidate = Path(value)
    if candidate.is_absolute() or candidate.drive or value.startswith(("/", "\\")):
        if not allow_absolute:
            raise PathViolationError(f"Absolute path not allowed: {value}", path=value)

    root = cwd.resolve()
    resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise PathViolationError(
            f"Path escapes the working directory: {value}",
            path=value,
            cwd=str(root),
        )
    return value
