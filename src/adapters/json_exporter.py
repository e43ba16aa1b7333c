"""Exportación JSON de conversiones y comandos (`--report`)."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from core.domain.models import BatchItem, CommandResult
from core.security import redact, redact_command_line


def _write_json(payload: dict[str, Any], output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    return output_path


def _envelope(kind: str, body: Any) -> dict[str, Any]:
    return {
        "kind": kind,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "data": body,
    }


def export_conversion_report(*, items: Sequence[BatchItem], output_path: Path) -> Path:
    """Una entrada por fuente convertida, fallos incluidos."""

    entries = [item.model_dump(mode="json") for item in items]
    summary = {
        "total": len(entries),
        "succeeded": sum(1 for item in items if item.ok),
        "failed": sum(1 for item in items if not item.ok),
    }
    return _write_json(_envelope("conversion", {"summary": summary, "items": entries}), output_path)


def export_command_result(*, result: CommandResult, output_path: Path) -> Path:
    """Resultado de un comando; argumentos y salida capturada van redactados."""

    payload = result.model_dump(mode="json")
    payload["command_line"] = redact_command_line(result.command, result.args)
    del payload["args"]
    payload["stdout"] = redact(payload["stdout"])
    payload["stderr"] = redact(payload["stderr"])
    return _write_json(_envelope("command", payload), output_path)

