"""Helpers comunes de los adaptadores de formato."""

from __future__ import annotations

from pathlib import Path

from core.errors import MalformedInputError, SourceNotFoundError


def read_source_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except FileNotFoundError as exc:
        raise SourceNotFoundError(f"Input file not found: {path}", path=str(path)) from exc
    except OSError as exc:
        raise SourceNotFoundError(f"Input file not readable: {path} ({exc})", path=str(path)) from exc


def read_source_text(path: Path) -> str:
    """Lee una fuente como UTF-8 (se descarta el BOM inicial)."""

    raw = read_source_bytes(path)
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise MalformedInputError(
            f"{path.name} is not valid UTF-8 (byte offset {exc.start})",
            path=str(path),
            position=exc.start,
        ) from exc
