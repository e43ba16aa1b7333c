"""Configuración del Core.

Por qué aquí:
- Centraliza variables de entorno (pydantic-settings, prefijo `ZISK_DEV_`)
  para que la CLI, el conversor y el ejecutor lean un único contrato.
- Fuentes, en orden: entorno del proceso, `.env` del proyecto, `.env` de usuario.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from core.domain.formats import OperationClass

MAX_POOL_CAPACITY = 16


def get_user_config_dir() -> Path:
    """Directorio de configuración por usuario (cross-platform, sin dependencias)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "zisk-dev"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "zisk-dev"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "zisk-dev"
    return Path.home() / ".config" / "zisk-dev"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def _parse_env_lines(text: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key:
            data[key] = value
    return data


def write_user_env_vars(values: dict[str, str], env_path: Path | None = None) -> Path:
    """Escribe/actualiza variables en el `.env` global del usuario."""

    env_path = env_path or get_user_env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    existing: dict[str, str] = {}
    if env_path.exists():
        existing = _parse_env_lines(env_path.read_text(encoding="utf-8"))

    existing.update({k: v for k, v in values.items() if v is not None})

    lines = ["# zisk-dev user config (.env)"]
    for key in sorted(existing.keys()):
        lines.append(f"{key}={existing[key]}")
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return env_path


class AppSettings(BaseSettings):
    """Configuración global de la aplicación."""

    model_config = SettingsConfigDict(
        env_prefix="ZISK_DEV_",
        extra="ignore",
        case_sensitive=False,
        # Orden: proyecto primero (dev), luego config global de usuario.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    # Estructura del proyecto
    input_dir: Path = Field(default=Path("inputs"), description="Default directory of input files.")
    output_dir: Path = Field(default=Path("build"), description="Where converted inputs are written.")
    proofs_dir: Path = Field(default=Path("proofs"), description="Default proof output directory.")

    # Build
    build_profile: str = Field(default="release", min_length=1, description="Cargo profile.")
    build_target: str = Field(
        default="riscv64ima-zisk-zkvm-elf",
        min_length=1,
        description="Target triple of the guest program.",
    )
    build_features: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Cargo features to enable.",
    )

    # Toolchain
    zisk_home: Path | None = Field(
        default=None,
        description="ZisK installation root (defaults to ~/.zisk).",
    )

    # Executor
    max_concurrency: int | None = Field(
        default=None,
        description="Pool capacity override; clamped to 1..16.",
    )
    env_allow: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Extra environment variable names forwarded to child processes.",
    )
    env_deny: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Environment variable names never forwarded to child processes.",
    )
    strict_arguments: bool = Field(
        default=True,
        description="Strip shell metacharacters from arguments in addition to control characters.",
    )

    timeout_build_seconds: float = Field(default=1800.0, gt=0)
    timeout_prove_seconds: float = Field(default=7200.0, gt=0)
    timeout_verify_seconds: float = Field(default=600.0, gt=0)
    timeout_execute_seconds: float = Field(default=1800.0, gt=0)
    timeout_setup_seconds: float = Field(default=1800.0, gt=0)
    timeout_generic_seconds: float = Field(default=300.0, gt=0)
    kill_grace_seconds: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="Wait between the graceful signal and the forced kill.",
    )
    max_buffer_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Maximum captured stdout+stderr per command.",
    )

    # Doctor
    http_timeout_seconds: float = Field(default=10.0, gt=0, description="Timeout of connectivity probes.")
    connectivity_urls: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["https://github.com", "https://static.rust-lang.org"],
        description="URLs probed by `doctor run`.",
    )

    # Logging
    log_dir: Path = Field(default=Path(".zisk-build") / "logs", description="Directory of log files.")
    debug: bool = Field(default=False, description="Verbose console logging and echo of commands.")

    @field_validator("build_features", "env_allow", "env_deny", "connectivity_urls", mode="before")
    @classmethod
    def _split_csv(cls, value: object) -> object:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    def timeout_for(self, operation: OperationClass) -> float:
        """Presupuesto de timeout (segundos) de una clase de operación."""

        return float(getattr(self, f"timeout_{operation.value}_seconds"))

    def pool_capacity(self) -> int:
        """Tamaño efectivo del pool: override o la mitad de los cores, con tope."""

        if self.max_concurrency is not None:
            requested = self.max_concurrency
        else:
            requested = (os.cpu_count() or 2) // 2
        return max(1, min(MAX_POOL_CAPACITY, requested))
