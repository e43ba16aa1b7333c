from __future__ import annotations

from pathlib import Path

import pytest

from core.errors import CommandNotAllowedError, InvalidArgumentsError, PathViolationError
from core.security import (
    command_name,
    redact,
    redact_argv,
    redact_command_line,
    sanitize_argument,
    sanitize_arguments,
    validate_command,
    validate_path_argument,
)


@pytest.mark.parametrize(
    "command",
    ["cargo-zisk", "/home/dev/.zisk/bin/cargo-zisk", "ziskemu", "mpirun", "cargo"],
)
def test_allowed_commands(command: str) -> None:
    assert validate_command(command) == command_name(command)


@pytest.mark.parametrize("command", ["rm", "bash", "/bin/sh", "", "   ", None, "cargo\x00"])
def test_disallowed_commands(command: object) -> None:
    with pytest.raises(CommandNotAllowedError):
        validate_command(command)


def test_command_name_strips_exe() -> None:
    assert command_name(r"C:\zisk\bin\cargo-zisk.exe") in {"cargo-zisk", r"C:\zisk\bin\cargo-zisk"}
    assert command_name("ziskemu.EXE") == "ziskemu"


def test_strict_sanitization_strips_shell_metacharacters() -> None:
    assert sanitize_argument("input; rm -rf /") == "input rm -rf /"
    assert sanitize_argument("$(whoami)`id`") == "whoamiid"
    assert sanitize_argument("a|b&c>d<e") == "abcde"


def test_lenient_sanitization_keeps_metacharacters_but_not_controls() -> None:
    assert sanitize_argument("a;b\x07\nc", strict=False) == "a;bc"


def test_sanitize_arguments_shape() -> None:
    assert sanitize_arguments(["build", "--features", "gpu,metrics"]) == ["build", "--features", "gpu,metrics"]
    assert sanitize_arguments(("",)) == [""]
    with pytest.raises(InvalidArgumentsError):
        sanitize_arguments("build --release")
    with pytest.raises(InvalidArgumentsError):
        sanitize_arguments(["ok", 3])
    with pytest.raises(InvalidArgumentsError):
        sanitize_arguments([";;&&"])


@pytest.mark.parametrize(
    "value",
    ["../../etc/passwd", "inputs/../../x", "..", "~/secret", "inputs/~user/x", "a\x00b", "  "],
)
def test_path_violations(value: str, tmp_path: Path) -> None:
    with pytest.raises(PathViolationError):
        validate_path_argument(value, tmp_path)


def test_paths_inside_cwd_pass(tmp_path: Path) -> None:
    assert validate_path_argument("build/input.bin", tmp_path) == "build/input.bin"
    assert validate_path_argument(str(tmp_path / "proofs"), tmp_path) == str(tmp_path / "proofs")


def test_absolute_paths(tmp_path: Path) -> None:
    inside = str(tmp_path / "a.bin")
    with pytest.raises(PathViolationError):
        validate_path_argument(inside, tmp_path, allow_absolute=False)
    with pytest.raises(PathViolationError):
        validate_path_argument("/etc/passwd", tmp_path)


def test_redaction_of_key_paths() -> None:
    line = redact_command_line("cargo-zisk", ["prove", "--proving-key", "/secret/path", "-i", "in.bin"])

    assert "/secret/path" not in line
    assert "--proving-key [REDACTED]" in line
    assert line.endswith("-i in.bin")


def test_redaction_masks_whole_argument_with_spaces() -> None:
    args = ["prove", "--proving-key", "/my keys/pk dir", "--secret=a b c", "-o", "out dir"]

    assert redact_argv(args) == ["prove", "--proving-key", "[REDACTED]", "--secret=[REDACTED]", "-o", "out dir"]
    line = redact_command_line("cargo-zisk", args)
    assert "pk dir" not in line
    assert "b c" not in line
    assert line.endswith("-o out dir")


@pytest.mark.parametrize(
    "text,leak",
    [
        ("--witness=/data/w.so", "/data/w.so"),
        ("--key abc123", "abc123"),
        ("--secret hunter2", "hunter2"),
        ("reading /home/u/.ssh/id_ed25519", "id_ed25519"),
        ("using /home/u/.zisk/provingKey/x", "provingKey"),
        ("PASSWORD=hunter2", "hunter2"),
        ("token: abc.def", "abc.def"),
        ("apikey=xyz", "xyz"),
    ],
)
def test_redaction_patterns(text: str, leak: str) -> None:
    redacted = redact(text)

    assert leak not in redacted
    assert "[REDACTED]" in redacted


def test_redaction_leaves_plain_text() -> None:
    assert redact("cargo-zisk build --release") == "cargo-zisk build --release"
