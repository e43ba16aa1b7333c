"""Servicio de conversión de entradas.

Convierte un fichero en el Binary Envelope (o en una copia passthrough para
`.bin`) en una ruta de destino. La tabla extensión → adaptador se resuelve
al construir y no se modifica después.

Escritura atómica para quien llama: el contenido va a un temporal en el
directorio de destino y se mueve con `os.replace`; una conversión fallida
nunca deja un destino truncado.

Por qué aquí:
- El servicio orquesta adaptadores y devuelve modelos de dominio; la CLI
  solo pinta el resultado.
- Conversiones concurrentes al mismo destino no se arbitran: cada job
  elige su ruta.
"""

from __future__ import annotations

import os
import shutil
import tempfile
import time
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

from adapters.input_formats import BinaryFormat, CustomFormat, JsonFormat, TextFormatAdapter, YamlFormat
from core.domain.formats import SourceFormat
from core.domain.models import BatchItem, ConversionOptions, ConversionResult, EnvelopeHeader, StructuredValue
from core.envelope import pack_envelope, serialize, unpack_envelope
from core.errors import (
    ConversionError,
    OutputWriteError,
    SourceNotFoundError,
    UnsupportedFormatError,
)
from core.interfaces.input_format import InputFormat
from core.log import get_logger

logger = get_logger("converter")

DEFAULT_BUILD_DIRNAME = "build"


def _builtin_formats() -> dict[str, InputFormat]:
    yaml_format = YamlFormat()
    return {
        ".json": JsonFormat(),
        ".yaml": yaml_format,
        ".yml": yaml_format,
        ".txt": TextFormatAdapter(),
        ".bin": BinaryFormat(),
    }


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    if not ext.startswith("."):
        ext = "." + ext
    if len(ext) < 2 or any(sep in ext for sep in ("/", "\\")):
        raise UnsupportedFormatError(f"Invalid extension: {ext!r}", extension=ext)
    return ext


def binary_filename(source: Path) -> str:
    return f"{Path(source).stem}.bin"


def default_output_path(source: Path) -> Path:
    source = Path(source)
    return source.parent / DEFAULT_BUILD_DIRNAME / binary_filename(source)


def read_envelope(path: Path) -> tuple[EnvelopeHeader, bytes]:
    try:
        data = Path(path).read_bytes()
    except FileNotFoundError as exc:
        raise SourceNotFoundError(f"Envelope not found: {path}", path=str(path)) from exc
    except OSError as exc:
        raise SourceNotFoundError(f"Envelope not readable: {path} ({exc})", path=str(path)) from exc
    return unpack_envelope(data)


class InputConverter:
    """Convierte ficheros de entrada al formato que consume el toolchain."""

    def __init__(self, custom_formats: Mapping[str, InputFormat] | None = None) -> None:
        table = _builtin_formats()
        for ext, adapter in (custom_formats or {}).items():
            table[_normalize_extension(ext)] = adapter
        self._formats: Mapping[str, InputFormat] = MappingProxyType(table)

    @classmethod
    def with_custom_parsers(cls, parsers: Mapping[str, object]) -> "InputConverter":
        """Construye un conversor a partir de `{extension: parse_callable}`."""

        return cls({ext: CustomFormat(parser) for ext, parser in parsers.items()})  # type: ignore[arg-type]

    def supported_formats(self) -> list[str]:
        return sorted(self._formats)

    def adapter_for(self, source: Path) -> InputFormat:
        ext = Path(source).suffix.lower()
        adapter = self._formats.get(ext)
        if adapter is None:
            raise UnsupportedFormatError(
                f"Unsupported input format: {ext or '(no extension)'}",
                path=str(source),
                extension=ext,
                supported=", ".join(self.supported_formats()),
            )
        return adapter

    def _check_source(self, source: Path) -> None:
        if not source.exists() or not source.is_file():
            raise SourceNotFoundError(f"Input file not found: {source}", path=str(source))
        if not os.access(source, os.R_OK):
            raise SourceNotFoundError(f"Input file not readable: {source}", path=str(source))

    def validate(self, source: Path, options: ConversionOptions | None = None) -> StructuredValue | bytes:
        """Parsea `source` sin escribir nada."""

        source = Path(source)
        options = options or ConversionOptions()
        self._check_source(source)
        return self.adapter_for(source).parse(source, options)

    def render(self, source: Path, options: ConversionOptions | None = None) -> tuple[SourceFormat, bytes]:
        """Produce exactamente los bytes que escribiría `convert`."""

        source = Path(source)
        options = options or ConversionOptions()
        self._check_source(source)
        adapter = self.adapter_for(source)
        parsed = adapter.parse(source, options)

        if not adapter.format.wrapped:
            return adapter.format, bytes(parsed)  # type: ignore[arg-type]
        if isinstance(parsed, (bytes, bytearray)):
            payload = bytes(parsed)
        else:
            payload = serialize(parsed, options.mode)
        return adapter.format, pack_envelope(payload)

    def convert(
        self,
        source: Path,
        destination: Path | None = None,
        options: ConversionOptions | None = None,
    ) -> ConversionResult:
        """Convierte `source` y lo escribe en `destination`.

        Lanza `SourceNotFoundError`, `UnsupportedFormatError`,
        `MalformedInputError` u `OutputWriteError`.
        """

        started = time.perf_counter()
        source = Path(source)
        options = options or ConversionOptions()
        destination = Path(destination) if destination is not None else default_output_path(source)

        logger.info(
            "Converting %s to binary format",
            source.name,
            extra={"metadata": {"source": str(source), "destination": str(destination), "mode": options.mode.value}},
        )
        try:
            self._check_source(source)
            adapter = self.adapter_for(source)
            if adapter.format.wrapped:
                source_format, data = self.render(source, options)
            else:
                source_format, data = adapter.format, None
        except ConversionError as exc:
            logger.error("Input conversion failed: %s", exc.describe(), extra={"metadata": exc.to_dict()})
            raise

        try:
            if data is None:
                _atomic_copy(source, destination)
            else:
                _atomic_write_bytes(destination, data)
            size = destination.stat().st_size
        except OSError as exc:
            error = OutputWriteError(f"Cannot write {destination}: {exc}", path=str(destination))
            logger.error("Input conversion failed: %s", error.describe(), extra={"metadata": error.to_dict()})
            raise error from exc

        duration_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            "Input conversion completed in %.1fms",
            duration_ms,
            extra={"metadata": {"destination": str(destination), "size": size}},
        )
        return ConversionResult(
            source_path=source,
            destination_path=destination,
            source_format=source_format,
            mode=options.mode,
            byte_size=size,
            duration_ms=duration_ms,
        )

    def convert_many(
        self,
        sources: Iterable[Path],
        output_dir: Path,
        options: ConversionOptions | None = None,
    ) -> list[BatchItem]:
        """Convierte cada fuente en `<output_dir>/<stem>.bin`.

        Una fuente que falla queda registrada en su `BatchItem`; el lote sigue.
        """

        output_dir = Path(output_dir)
        items: list[BatchItem] = []
        for source in sources:
            source = Path(source)
            try:
                result = self.convert(source, output_dir / binary_filename(source), options)
            except ConversionError as exc:
                items.append(BatchItem(source_path=source, error=exc.to_dict()))
                continue
            items.append(BatchItem(source_path=source, result=result))
        return items


def _temp_sibling(destination: Path) -> tuple[int, Path]:
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".tmp", dir=destination.parent)
    return fd, Path(tmp_name)


def _atomic_write_bytes(destination: Path, data: bytes) -> None:
    fd, tmp = _temp_sibling(destination)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, destination)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def _atomic_copy(source: Path, destination: Path) -> None:
    fd, tmp = _temp_sibling(destination)
    os.close(fd)
    try:
        shutil.copyfile(source, tmp)
        os.replace(tmp, destination)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
