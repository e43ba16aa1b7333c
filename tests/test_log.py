from __future__ import annotations

import json
import logging
from pathlib import Path

from rich.console import Console

from core.log import LOG_FILENAME, RedactingFilter, configure_logging, get_logger


def test_redacting_filter_masks_message_and_metadata() -> None:
    record = logging.LogRecord("zisk_dev.test", logging.INFO, __file__, 1, "using %s", ("--key abc",), None)
    record.metadata = {"args": ["password=hunter2"], "nested": {"path": "/home/u/.ssh/id_rsa"}}

    assert RedactingFilter().filter(record)

    assert record.getMessage() == "using --key [REDACTED]"
    assert record.metadata == {"args": ["password=[REDACTED]"], "nested": {"path": "/home/u/.ssh/[REDACTED]"}}


def test_configure_logging_writes_redacted_json_lines(tmp_path: Path) -> None:
    console = Console(file=open(tmp_path / "console.txt", "w", encoding="utf-8"), width=120)
    configure_logging(verbose=False, log_dir=tmp_path / "logs", console=console)

    get_logger("executor").info(
        "Executing: cargo-zisk prove --proving-key /keys/pk",
        extra={"metadata": {"command": "cargo-zisk"}},
    )
    get_logger("executor").warning("token=abc")
    for handler in logging.getLogger("zisk_dev").handlers:
        handler.flush()
    console.file.close()

    lines = (tmp_path / "logs" / LOG_FILENAME).read_text(encoding="utf-8").splitlines()
    entries = [json.loads(line) for line in lines]
    assert entries[0]["message"] == "Executing: cargo-zisk prove --proving-key [REDACTED]"
    assert entries[0]["metadata"] == {"command": "cargo-zisk"}
    assert entries[0]["logger"] == "zisk_dev.executor"
    assert entries[1]["level"] == "warning"

    console_text = (tmp_path / "console.txt").read_text(encoding="utf-8")
    assert "Executing" not in console_text
    assert "abc" not in console_text
    assert "token=[REDACTED]" in console_text


def test_configure_logging_is_idempotent(tmp_path: Path) -> None:
    configure_logging(log_dir=tmp_path)
    configure_logging(log_dir=tmp_path)

    assert len(logging.getLogger("zisk_dev").handlers) == 2
