"""Formato de entrada: JSON.

Parsea con el módulo estándar `json` al modelo de valores estructurados.
Los literales `NaN`/`Infinity` se rechazan: no tienen representación JSON.
"""

from __future__ import annotations

import json
from pathlib import Path

from adapters.input_formats.base import read_source_text
from core.domain.formats import SourceFormat
from core.domain.models import ConversionOptions, StructuredValue
from core.envelope import normalize_value
from core.errors import MalformedInputError
from core.interfaces.input_format import InputFormat


def _reject_constant(name: str) -> float:
    raise ValueError(f"non-standard JSON constant {name}")


class JsonFormat(InputFormat):
    format = SourceFormat.JSON

    def parse(self, path: Path, options: ConversionOptions) -> StructuredValue:
        return self.loads(read_source_text(path), source=path)

    def loads(self, text: str, *, source: Path | None = None) -> StructuredValue:
        label = source.name if source else "<json>"
        try:
            data = json.loads(text, parse_constant=_reject_constant)
        except json.JSONDecodeError as exc:
            raise MalformedInputError(
                f"Invalid JSON in {label}: {exc.msg} (line {exc.lineno}, column {exc.colno})",
                path=str(source) if source else None,
                line=exc.lineno,
                column=exc.colno,
                position=exc.pos,
            ) from exc
        except (ValueError, RecursionError) as exc:
            raise MalformedInputError(f"Invalid JSON in {label}: {exc}", path=str(source) if source else None) from exc
        return normalize_value(data)
