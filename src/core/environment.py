"""Allow-list de entorno para procesos hijo.

El entorno heredado se filtra a:
- un conjunto base fijo (shell, sesión, red),
- más los nombres de las familias del toolchain (`ZISK_*`, `CARGO_*`, ...),
- más los nombres de `ZISK_DEV_ENV_ALLOW`,
- menos la deny-list (nombres con pinta de secreto y `ZISK_DEV_ENV_DENY`).

Se construye una vez por ejecutor; inmutable después.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from core.errors import InvalidArgumentsError

BASE_ALLOWED_NAMES: frozenset[str] = frozenset(
    {
        # shell / sesión
        "PATH",
        "HOME",
        "USER",
        "LOGNAME",
        "SHELL",
        "TERM",
        "COLORTERM",
        "LANG",
        "LANGUAGE",
        "LC_ALL",
        "LC_CTYPE",
        "TZ",
        "TMPDIR",
        "TMP",
        "TEMP",
        "PWD",
        "HOSTNAME",
        # loader dinámico
        "LD_LIBRARY_PATH",
        "DYLD_LIBRARY_PATH",
        "DYLD_FALLBACK_LIBRARY_PATH",
        # red
        "HTTP_PROXY",
        "HTTPS_PROXY",
        "NO_PROXY",
        "ALL_PROXY",
        "http_proxy",
        "https_proxy",
        "no_proxy",
        "all_proxy",
        "SSL_CERT_FILE",
        "SSL_CERT_DIR",
        # windows
        "SYSTEMROOT",
        "SYSTEMDRIVE",
        "COMSPEC",
        "PATHEXT",
        "WINDIR",
        "APPDATA",
        "LOCALAPPDATA",
        "USERPROFILE",
        "PROGRAMFILES",
        # GPU
        "CUDA_HOME",
        "CUDA_VISIBLE_DEVICES",
    }
)

ALLOWED_NAME_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^ZISK_[A-Z0-9_]+$"),
    re.compile(r"^CARGO_[A-Z0-9_]+$"),
    re.compile(r"^RUSTUP_[A-Z0-9_]+$"),
    re.compile(r"^RUST_[A-Z0-9_]+$"),
    re.compile(r"^RUSTFLAGS$"),
    re.compile(r"^OMP_[A-Z0-9_]+$"),
    re.compile(r"^OMPI_[A-Z0-9_]+$"),
    re.compile(r"^RAYON_[A-Z0-9_]+$"),
    re.compile(r"^XDG_[A-Z0-9_]+$"),
)

DENIED_NAME_PATTERN = re.compile(r"(SECRET|TOKEN|PASSWORD|PASSWD|CREDENTIAL|PRIVATE_KEY|API_KEY)", re.IGNORECASE)

PATH_LIKE_NAMES: frozenset[str] = frozenset(
    {"PATH", "LD_LIBRARY_PATH", "DYLD_LIBRARY_PATH", "DYLD_FALLBACK_LIBRARY_PATH", "PATHEXT"}
)

_VALID_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_VALUE_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


def clean_value(value: str) -> str:
    """Quita caracteres de control; separadores `:`/`;` y espacios se mantienen."""

    return _VALUE_CONTROL_CHARS.sub("", value)


@dataclass(frozen=True)
class EnvironmentAllowList:
    extra_allowed: frozenset[str] = field(default_factory=frozenset)
    denied: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def build(cls, *, allow: Iterable[str] = (), deny: Iterable[str] = ()) -> "EnvironmentAllowList":
        return cls(
            extra_allowed=frozenset(n.strip() for n in allow if n.strip()),
            denied=frozenset(n.strip() for n in deny if n.strip()),
        )

    def is_allowed(self, name: str) -> bool:
        if name in self.denied:
            return False
        if name in self.extra_allowed:
            return True
        if DENIED_NAME_PATTERN.search(name):
            return False
        if name in BASE_ALLOWED_NAMES:
            return True
        return any(p.match(name) for p in ALLOWED_NAME_PATTERNS)

    def filter(self, environ: Mapping[str, str]) -> dict[str, str]:
        """Subconjunto de `environ` que se puede pasar a un proceso hijo."""

        return {name: clean_value(value) for name, value in environ.items() if self.is_allowed(name)}

    def compose(
        self,
        environ: Mapping[str, str],
        overrides: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Entorno heredado filtrado, con los overrides de quien llama encima.

        Los overrides saltan la allow-list, pero sus nombres deben ser
        válidos y sus valores se limpian.
        """

        env = self.filter(environ)
        for name, value in (overrides or {}).items():
            if not isinstance(name, str) or not _VALID_NAME.match(name):
                raise InvalidArgumentsError(f"Invalid environment variable name: {name!r}", name=repr(name))
            if not isinstance(value, str):
                raise InvalidArgumentsError(
                    f"Environment value for {name} must be a string",
                    name=name,
                )
            env[name] = clean_value(value)
        return env
