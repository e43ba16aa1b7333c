"""Contrato para adaptadores de formato de entrada.

Un adaptador convierte un fichero en un valor estructurado (que serializa
el conversor) o en bytes crudos (escritos tal cual dentro del envelope, o
sin él en formatos passthrough). La serialización vive en `core.envelope`;
los adaptadores solo parsean.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from core.domain.formats import SourceFormat
from core.domain.models import ConversionOptions, StructuredValue


@runtime_checkable
class InputFormat(Protocol):
    """Estrategia de parseo seleccionada por extensión.

    Reglas:
    - `parse` lanza `MalformedInputError` para contenido que no puede leer.
    - Devolver `bytes` significa "payload listo"; cualquier otra cosa es
      "valor estructurado, serialízalo".
    """

    format: SourceFormat

    def parse(self, path: Path, options: ConversionOptions) -> StructuredValue | bytes:
        """Lee `path` y devuelve un valor estructurado o un payload listo."""

        ...
