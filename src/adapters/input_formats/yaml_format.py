"""Formato de entrada: YAML (`.yaml` / `.yml`).

Usa `yaml.safe_load`: solo se aceptan tags de datos planos. Fechas y
timestamps pasan a strings ISO-8601; un documento vacío es `null`.
"""

from __future__ import annotations

from pathlib import Path

import yaml

from adapters.input_formats.base import read_source_text
from core.domain.formats import SourceFormat
from core.domain.models import ConversionOptions, StructuredValue
from core.envelope import normalize_value
from core.errors import MalformedInputError
from core.interfaces.input_format import InputFormat


class YamlFormat(InputFormat):
    format = SourceFormat.YAML

    def parse(self, path: Path, options: ConversionOptions) -> StructuredValue:
        text = read_source_text(path)
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            mark = getattr(exc, "problem_mark", None)
            position: dict[str, int] = {}
            if mark is not None:
                position = {"line": mark.line + 1, "column": mark.column + 1, "position": mark.index}
            where = f" (line {position['line']}, column {position['column']})" if position else ""
            problem = getattr(exc, "problem", None) or str(exc)
            raise MalformedInputError(
                f"Invalid YAML in {path.name}: {problem}{where}",
                path=str(path),
                **position,
            ) from exc
        except RecursionError as exc:
            raise MalformedInputError(f"Invalid YAML in {path.name}: nesting too deep", path=str(path)) from exc
        return normalize_value(data)
