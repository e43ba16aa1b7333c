"""Formato de entrada: extensiones personalizadas registradas por quien llama.

Un formato custom envuelve un callable `(path, options) -> bytes | valor`.
La CLI lo construye desde un target `module:function` con `load_parser`.

Por qué aquí:
- Cualquier fallo del parser (también `OSError` de ficheros auxiliares) se
  reporta como `MalformedInput` contra la fuente, nunca como error de escritura.
"""

from __future__ import annotations

import importlib
from pathlib import Path
from typing import Any, Callable

from core.domain.formats import SourceFormat
from core.domain.models import ConversionOptions, StructuredValue
from core.envelope import normalize_value
from core.errors import MalformedInputError, UnsupportedFormatError
from core.interfaces.input_format import InputFormat

CustomParser = Callable[[Path, ConversionOptions], Any]


class CustomFormat(InputFormat):
    format = SourceFormat.CUSTOM

    def __init__(self, parser: CustomParser, *, name: str | None = None) -> None:
        self._parser = parser
        self.name = name or getattr(parser, "__name__", "custom")

    def parse(self, path: Path, options: ConversionOptions) -> StructuredValue | bytes:
        try:
            data = self._parser(path, options)
        except MalformedInputError:
            raise
        except (OSError, ValueError, TypeError, KeyError, UnicodeDecodeError) as exc:
            raise MalformedInputError(
                f"Custom converter {self.name} failed on {path.name}: {exc}",
                path=str(path),
                converter=self.name,
            ) from exc
        if isinstance(data, (bytes, bytearray, memoryview)):
            return bytes(data)
        return normalize_value(data)


def load_parser(target: str) -> CustomParser:
    """Resuelve un target `package.module:function` a un callable."""

    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise UnsupportedFormatError(
            f"Custom converter must look like 'module:function', got {target!r}",
            converter=target,
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise UnsupportedFormatError(f"Cannot import custom converter module {module_name!r}: {exc}") from exc
    parser = getattr(module, attr, None)
    if not callable(parser):
        raise UnsupportedFormatError(f"{target!r} is not a callable converter", converter=target)
    return parser
