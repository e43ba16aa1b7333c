"""Modelos de dominio (Pydantic v2).

Estos modelos describen *qué* produjo una conversión o una invocación, no
*cómo* se obtuvo. Objetos de valor efímeros: nada se persiste salvo a
través del exportador JSON.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from core.domain.formats import OperationClass, SerializationMode, SourceFormat, TextFormat

# Modelo de datos JSON común a todos los formatos de entrada.
StructuredValue = Union[None, bool, int, float, str, list[Any], dict[str, Any]]


class ConversionOptions(BaseModel):
    """Opciones por llamada de `InputConverter.convert`."""

    model_config = ConfigDict(frozen=True)

    mode: SerializationMode = Field(
        default=SerializationMode.DEFAULT,
        description="Payload serialization mode for structured values.",
    )
    text_format: TextFormat = Field(
        default=TextFormat.LINES,
        description="How `.txt` sources are parsed into a structured value.",
    )


class ConversionResult(BaseModel):
    """Resultado de una conversión correcta."""

    source_path: Path = Field(..., description="File that was converted.")
    destination_path: Path = Field(..., description="File that was written.")
    source_format: SourceFormat = Field(..., description="Format family of the source.")
    mode: SerializationMode = Field(default=SerializationMode.DEFAULT)
    byte_size: int = Field(..., ge=0, description="Size of the written file in bytes.")
    duration_ms: float = Field(..., ge=0, description="Wall time of the conversion.")


class BatchItem(BaseModel):
    """Entrada de una conversión por lotes; hay `result` o `error`."""

    source_path: Path
    result: ConversionResult | None = None
    error: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class EnvelopeHeader(BaseModel):
    """Cabecera decodificada de 16 bytes del Binary Envelope."""

    model_config = ConfigDict(frozen=True)

    magic: bytes = Field(..., min_length=4, max_length=4)
    major: int = Field(..., ge=0, le=0xFFFF)
    minor: int = Field(..., ge=0, le=0xFFFF)
    payload_length: int = Field(..., ge=0)


class CommandResult(BaseModel):
    """Resultado estructurado de un comando externo terminado."""

    command: str = Field(..., description="Program that was executed.")
    args: list[str] = Field(default_factory=list, description="Sanitized arguments.")
    operation: OperationClass = Field(default=OperationClass.GENERIC)
    exit_code: int = Field(...)
    stdout: str = Field(default="")
    stderr: str = Field(default="")
    duration_ms: float = Field(..., ge=0)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
