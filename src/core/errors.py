"""Taxonomía de errores compartida por el conversor y el ejecutor.

Cada error lleva:
- `kind`: etiqueta estable que imprime la CLI (`NotFound`, `Timeout`, ...).
- `context`: dict plano con la ruta, el comando, el código de salida o la
  posición del parser necesarios para un mensaje accionable.

Por qué aquí:
- El core no reintenta nada; los errores suben hasta quien llama.
- La CLI solo necesita `describe()` para pintar `Kind: mensaje`.
"""

from __future__ import annotations

from typing import Any


class ZiskDevError(Exception):
    """Base de todos los fallos tipados de zisk-dev."""

    kind: str = "Error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        return self.message

    def describe(self) -> str:
        """Línea `Kind: mensaje` que usa la CLI."""

        return f"{self.kind}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "context": dict(self.context)}


# --- converter -------------------------------------------------------------


class ConversionError(ZiskDevError):
    """Fallo de una única conversión."""


class SourceNotFoundError(ConversionError):
    kind = "NotFound"


class UnsupportedFormatError(ConversionError):
    kind = "UnsupportedFormat"


class MalformedInputError(ConversionError):
    """Fallo de parseo o serialización; `context` guarda la posición del parser."""

    kind = "MalformedInput"


class OutputWriteError(ConversionError):
    kind = "IOError"


# --- executor --------------------------------------------------------------


class ExecutionError(ZiskDevError):
    """Fallo de una única invocación de comando externo."""


class CommandNotAllowedError(ExecutionError):
    kind = "CommandNotAllowed"


class InvalidArgumentsError(ExecutionError):
    kind = "InvalidArguments"


class PathViolationError(ExecutionError):
    kind = "PathViolation"


class CommandTimeoutError(ExecutionError):
    kind = "Timeout"


class NonZeroExitError(ExecutionError):
    """El hijo terminó con estado distinto de cero.

    `stderr` guarda el stderr capturado completo (redactado); el mensaje solo
    lleva la cola.
    """

    kind = "NonZeroExit"

    def __init__(self, message: str, *, exit_code: int, stderr: str = "", **context: Any) -> None:
        super().__init__(message, exit_code=exit_code, **context)
        self.exit_code = exit_code
        self.stderr = stderr

    def stderr_tail(self, lines: int = 20) -> str:
        return "\n".join(self.stderr.strip().splitlines()[-lines:])


class SpawnFailureError(ExecutionError):
    kind = "SpawnFailure"


class OutputLimitError(ExecutionError):
    """La salida capturada superó el tamaño de buffer configurado."""

    kind = "IOError"


class PlatformUnsupportedError(ExecutionError):
    kind = "PlatformUnsupported"
