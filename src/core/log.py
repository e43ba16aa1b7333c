"""Configuración de logging.

- Consola: `rich.logging.RichHandler` (WARNING por defecto, DEBUG en modo verbose).
- Fichero: JSON lines en `<log_dir>/zisk-dev.log`.
- Cada registro pasa por `RedactingFilter` antes de que lo vea un handler.

Los metadatos estructurados viajan en `extra={"metadata": {...}}`.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from core.security import redact

LOGGER_NAME = "zisk_dev"
LOG_FILENAME = "zisk-dev.log"


def get_logger(name: str | None = None) -> logging.Logger:
    """Hijo del logger de la aplicación (`zisk_dev.<name>`)."""

    return logging.getLogger(f"{LOGGER_NAME}.{name}" if name else LOGGER_NAME)


def _redact_metadata(value: Any) -> Any:
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, dict):
        return {k: _redact_metadata(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact_metadata(v) for v in value]
    return value


class RedactingFilter(logging.Filter):
    """Reescribe mensaje y metadatos con los secretos enmascarados."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact(record.getMessage())
        record.args = None
        metadata = getattr(record, "metadata", None)
        if metadata is not None:
            record.metadata = _redact_metadata(metadata)
        return True


class JsonLinesFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        metadata = getattr(record, "metadata", None)
        if metadata:
            payload["metadata"] = metadata
        if record.exc_info:
            payload["exception"] = redact(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(
    *,
    verbose: bool = False,
    log_dir: Path | None = None,
    console: Console | None = None,
) -> logging.Logger:
    """Instala los handlers en el logger de la aplicación (idempotente)."""

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Los filtros en handlers también ven registros de loggers hijos.
    redacting = RedactingFilter()
    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
        markup=False,
    )
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.addFilter(redacting)
    logger.addHandler(console_handler)

    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_dir / LOG_FILENAME, encoding="utf-8")
        except OSError as exc:
            logger.warning("File logging disabled: %s", exc)
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(JsonLinesFormatter())
            file_handler.addFilter(redacting)
            logger.addHandler(file_handler)

    return logger
