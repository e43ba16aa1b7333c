"""Formato de entrada: texto plano (`.txt`).

Sub-modos (`TextFormat`):
- lines:    lista de líneas no vacías, tal cual (se quita el CR final).
- csv:      la primera fila es la cabecera; cada fila siguiente es {cabecera: celda}.
            Celdas recortadas; las que faltan son "", las que sobran se descartan.
- keyvalue: `KEY=VALUE` por línea, partido en el primer `=`; se saltan líneas
            sin `=` o con clave vacía. Los duplicados posteriores sobrescriben.
- raw:      {"content": <fichero completo>}.
"""

from __future__ import annotations

import csv
from pathlib import Path

from adapters.input_formats.base import read_source_text
from core.domain.formats import SourceFormat, TextFormat
from core.domain.models import ConversionOptions, StructuredValue
from core.errors import MalformedInputError
from core.interfaces.input_format import InputFormat


def _non_blank_lines(content: str) -> list[str]:
    lines = (line.removesuffix("\r") for line in content.split("\n"))
    return [line for line in lines if line.strip()]


def parse_lines(content: str) -> list[str]:
    return _non_blank_lines(content)


def parse_csv(content: str) -> list[dict[str, str]]:
    rows = _non_blank_lines(content)
    if not rows:
        return []
    try:
        parsed = list(csv.reader(rows, skipinitialspace=True))
    except csv.Error as exc:
        raise MalformedInputError(f"Invalid CSV: {exc}") from exc

    headers = [h.strip() for h in parsed[0]]
    records: list[dict[str, str]] = []
    for cells in parsed[1:]:
        values = [c.strip() for c in cells]
        records.append({h: (values[i] if i < len(values) else "") for i, h in enumerate(headers)})
    return records


def parse_keyvalue(content: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for line in _non_blank_lines(content):
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key:
            data[key] = value.strip()
    return data


class TextFormatAdapter(InputFormat):
    format = SourceFormat.TEXT

    def parse(self, path: Path, options: ConversionOptions) -> StructuredValue:
        return self.parse_content(read_source_text(path), options.text_format)

    def parse_content(self, content: str, text_format: TextFormat = TextFormat.LINES) -> StructuredValue:
        if text_format is TextFormat.CSV:
            return parse_csv(content)
        if text_format is TextFormat.KEYVALUE:
            return parse_keyvalue(content)
        if text_format is TextFormat.RAW:
            return {"content": content}
        return parse_lines(content)
