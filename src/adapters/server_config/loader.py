"""Carga del ldk-server-config.toml.

Soporta:
- Texto (pegado por el usuario, entornos sin filesystem).
- Ruta en disco.

Los fallos se elevan como `ServerConfigError` con un mensaje legible; el
resolver los convierte en diagnósticos y sigue con el siguiente candidato.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import ValidationError

from adapters.server_config.models import ServerConfigDocument


class ServerConfigError(ValueError):
    """El documento no se pudo leer o no tiene la forma esperada."""


def _describe(exc: ValidationError) -> str:
    parts: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def parse_server_config(raw: str) -> ServerConfigDocument:
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ServerConfigError(f"invalid TOML: {exc}") from exc
    try:
        return ServerConfigDocument.model_validate(data)
    except ValidationError as exc:
        raise ServerConfigError(f"unexpected config layout: {_describe(exc)}") from exc


def load_server_config(path: Path) -> ServerConfigDocument:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ServerConfigError(f"cannot read {path}: {exc.strerror or exc}") from exc
    except UnicodeDecodeError as exc:
        raise ServerConfigError(f"{path} is not UTF-8 text") from exc
    return parse_server_config(raw)
