"""Configuración del Core.

Por qué aquí:
- Centraliza variables de entorno (pydantic-settings) sin contaminar la CLI.
- Permite que adaptadores (HTTP/transport) y servicios lean config de forma
  consistente.

Nota: la configuración del *servidor* (ldk-server-config.toml) no vive aquí;
ver `core.config_resolver`.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_user_config_dir() -> Path:
    """Directorio de configuración por usuario (cross-platform, sin dependencias)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "ldk-console"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "ldk-console"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "ldk-console"
    return Path.home() / ".config" / "ldk-console"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def is_restricted_environment() -> bool:
    """True cuando corremos embebidos en un navegador o sandbox (Pyodide/WASI).

    En esos entornos no hay certificado configurable: el TLS lo valida el host.
    """

    return sys.platform in ("emscripten", "wasi")


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


def write_user_env_vars(values: dict[str, str | None], env_path: Path | None = None) -> Path:
    """Escribe/actualiza variables en el .env global del usuario."""

    env_path = env_path or get_user_env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    existing: dict[str, str] = {}
    if env_path.exists():
        existing = _parse_env_lines(env_path.read_text(encoding="utf-8"))

    existing.update({k: v for k, v in values.items() if v is not None})

    lines = ["# ldk-console user config (.env)"]
    for key in sorted(existing.keys()):
        lines.append(f"{key}={existing[key]}")
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return env_path


class AppSettings(BaseSettings):
    """Configuración central de la aplicación.

    Por qué pydantic-settings:
    - Tipado + validación en el borde (env vars) sin ensuciar el Core con lógica.
    - Un único contrato de configuración para CLI/adapters/servicios.
    """

    model_config = SettingsConfigDict(
        env_prefix="LDK_CONSOLE_",
        extra="ignore",
        case_sensitive=False,
        # Orden: proyecto primero (dev), luego config global de usuario.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    http_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Timeout por request (segundos).",
    )
    user_agent: str = Field(
        default="ldk-console/0.1",
        min_length=1,
        description="User-Agent para peticiones al servidor.",
    )
    api_key_header: str = Field(
        default="X-Api-Key",
        min_length=1,
        description="Header HTTP que transporta la API key (hex).",
    )

    # Descubrimiento del config del servidor
    config_env_var: str = Field(
        default="LDK_SERVER_CONFIG",
        min_length=1,
        description="Variable de entorno con la ruta a un ldk-server-config.toml.",
    )
    config_filename: str = Field(
        default="ldk-server-config.toml",
        min_length=1,
        description="Nombre del fichero de config buscado en cada candidato.",
    )
    server_project_dir: str = Field(
        default="ldk-server",
        min_length=1,
        description="Directorio hermano donde suele vivir el proyecto del servidor.",
    )

    # Entrada manual (equivalente a rellenar el formulario de conexión)
    default_host: str = Field(
        default="localhost:3002",
        min_length=1,
        description="Host sugerido cuando no hay config.",
    )
    host: str | None = Field(
        default=None,
        description="Host del REST service (host:port) para entrada manual.",
    )
    api_key: str | None = Field(
        default=None,
        description="API key en hex para entrada manual.",
    )
    tls_cert_path: Path | None = Field(
        default=None,
        description="Ruta al certificado TLS del servidor (tls.crt).",
    )
    allow_platform_trust: bool = Field(
        default=False,
        description="Permite usar el trust store del sistema si no hay certificado.",
    )

    default_page_size: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Tamaño de página para el historial de pagos.",
    )

    log_level: str = Field(
        default="WARNING",
        description="Nivel de logging (DEBUG/INFO/WARNING/ERROR).",
    )
    log_format: str = Field(
        default="console",
        pattern="^(console|json)$",
        description="Formato de logs: console | json.",
    )
