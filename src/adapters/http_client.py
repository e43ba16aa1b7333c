"""Wrapper httpx para las comprobaciones de conectividad del doctor.

Por qué aquí:
- Timeouts y headers salen de `AppSettings`; todas las sondas se comportan igual.
"""

from __future__ import annotations

import httpx

from core.config import AppSettings

USER_AGENT = "zisk-dev (+https://github.com/0xPolygonHermez/zisk)"


def build_async_client(settings: AppSettings | None = None) -> httpx.AsyncClient:
    settings = settings or AppSettings()
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    )


async def check_url(url: str, settings: AppSettings | None = None) -> tuple[bool, str]:
    """Sonda HEAD y luego GET; devuelve `(ok, detalle)`."""

    try:
        async with build_async_client(settings) as client:
            response = await client.head(url)
            if response.status_code == 405:
                response = await client.get(url)
    except httpx.HTTPError as exc:
        return False, f"{type(exc).__name__}: {exc}"
    return response.status_code < 400, f"HTTP {response.status_code}"
