"""Vocabularios de formatos y operaciones de zisk-dev.

Por qué aquí:
- La CLI, el servicio de conversión y el ejecutor comparten una única
  fuente de verdad para las etiquetas aceptadas.
"""

from __future__ import annotations

from enum import Enum


class SourceFormat(str, Enum):
    """Familia del formato de entrada, derivada de la extensión."""

    JSON = "json"
    YAML = "yaml"
    TEXT = "text"
    BINARY = "binary"
    CUSTOM = "custom"

    @property
    def wrapped(self) -> bool:
        """Si la salida de la conversión lleva la cabecera del Binary Envelope."""

        return self is not SourceFormat.BINARY


class SerializationMode(str, Enum):
    """Cómo un valor estructurado se convierte en payload del envelope."""

    DEFAULT = "default"
    COMPACT = "compact"
    TYPED = "typed"


class TextFormat(str, Enum):
    """Sub-modo para convertir un `.txt` en valor estructurado."""

    LINES = "lines"
    CSV = "csv"
    KEYVALUE = "keyvalue"
    RAW = "raw"


class OperationClass(str, Enum):
    """Etiqueta que selecciona el timeout de un comando externo."""

    BUILD = "build"
    PROVE = "prove"
    VERIFY = "verify"
    EXECUTE = "execute"
    SETUP = "setup"
    GENERIC = "generic"

    @classmethod
    def for_cargo_zisk(cls, subcommand: str) -> "OperationClass":
        """Mapea un subcomando de `cargo-zisk` a su clase de operación."""

        mapping = {
            "build": cls.BUILD,
            "prove": cls.PROVE,
            "verify": cls.VERIFY,
            "run": cls.EXECUTE,
            "execute": cls.EXECUTE,
            "rom-setup": cls.SETUP,
            "check-setup": cls.SETUP,
        }
        return mapping.get(subcommand, cls.GENERIC)


class ExecutionState(str, Enum):
    """Ciclo de vida de una invocación de comando."""

    PENDING = "pending"
    VALIDATED = "validated"
    ADMITTED = "admitted"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    KILLED = "killed"
