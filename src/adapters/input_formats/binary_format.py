"""Formato de entrada: binario ya serializado (`.bin`).

Único formato que se escribe sin cabecera de envelope: el fichero se da por
listo y se copia byte a byte.
"""

from __future__ import annotations

from pathlib import Path

from adapters.input_formats.base import read_source_bytes
from core.domain.formats import SourceFormat
from core.domain.models import ConversionOptions
from core.interfaces.input_format import InputFormat


class BinaryFormat(InputFormat):
    format = SourceFormat.BINARY

    def parse(self, path: Path, options: ConversionOptions) -> bytes:
        return read_source_bytes(path)
