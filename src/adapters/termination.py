"""Terminación del árbol de procesos.

Los hijos se lanzan como líderes de su propio grupo (sesión POSIX o grupo
de procesos de Windows): un timeout o una cancelación tumba el árbol entero,
no solo al hijo directo.

- POSIX: SIGTERM al grupo, luego SIGKILL.
- Windows: `taskkill /T`, luego `taskkill /T /F` (lanzado con asyncio, sin bloquear el loop).
"""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess
import sys
from typing import Any, Literal

from core.log import get_logger

logger = get_logger("termination")

Phase = Literal["graceful", "force"]

IS_WINDOWS = sys.platform.startswith("win")
TASKKILL_TIMEOUT_SECONDS = 10.0


def spawn_kwargs() -> dict[str, Any]:
    """Kwargs extra de `create_subprocess_exec` que aíslan el árbol del hijo."""

    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}  # type: ignore[attr-defined]
    return {"start_new_session": True}


def _signal_group(pid: int, phase: Phase) -> None:
    sig = signal.SIGTERM if phase == "graceful" else signal.SIGKILL
    try:
        os.killpg(pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError as exc:
        logger.warning("Cannot signal process group %s: %s", pid, exc)


async def _taskkill(pid: int, phase: Phase) -> None:
    cmd = ["/PID", str(pid), "/T"]
    if phase == "force":
        cmd.append("/F")
    try:
        killer = await asyncio.create_subprocess_exec(
            "taskkill",
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await asyncio.wait_for(killer.wait(), TASKKILL_TIMEOUT_SECONDS)
    except (OSError, asyncio.TimeoutError) as exc:
        logger.warning("taskkill failed for %s: %s", pid, exc)


async def terminate(process: asyncio.subprocess.Process, phase: Phase) -> None:
    """Envía la señal de `phase` al árbol con raíz en `process`."""

    logger.debug("Terminating process tree %s (%s)", process.pid, phase)
    if IS_WINDOWS:
        await _taskkill(process.pid, phase)
    else:
        _signal_group(process.pid, phase)


async def terminate_with_escalation(process: asyncio.subprocess.Process, grace_seconds: float) -> bool:
    """Señal amable, espera hasta `grace_seconds` y luego fuerza.

    Devuelve True si hizo falta matar al líder por la fuerza. Los miembros
    que queden en el grupo se matan en cualquier caso.
    """

    await terminate(process, "graceful")
    forced = False
    try:
        await asyncio.wait_for(process.wait(), grace_seconds)
    except asyncio.TimeoutError:
        forced = True
    await terminate(process, "force")
    if forced:
        logger.warning("Process %s ignored the graceful signal; killed", process.pid)
    await process.wait()
    return forced
