"""Escritura de la fuente de cadena en el ldk-server-config.toml.

Por qué tomlkit:
- Edita el documento en sitio: comentarios, orden y formato del resto de
  secciones (`[node]`, `[storage]`, ...) se conservan tal cual.
- Solo se tocan `[bitcoind]`, `[electrum]` y `[esplora]`; como mucho queda una.

El servidor lee el fichero al arrancar: el cambio aplica tras reiniciarlo.
"""

from __future__ import annotations

from pathlib import Path

import structlog
import tomlkit
from tomlkit.exceptions import TOMLKitError

from adapters.server_config.loader import ServerConfigError, parse_server_config
from core.domain.models import ChainSource, ChainSourceKind

logger = structlog.get_logger()

CHAIN_SOURCE_SECTIONS = ("bitcoind", "electrum", "esplora")


def _required(value: str | None, name: str, kind: ChainSourceKind) -> str:
    text = (value or "").strip()
    if not text:
        raise ServerConfigError(f"{kind.value} needs {name}")
    return text


def chain_source_table(source: ChainSource):
    """Sección TOML para `source`, o None si no hay fuente de cadena."""

    if source.kind is ChainSourceKind.NONE:
        return None

    table = tomlkit.table()
    if source.kind is ChainSourceKind.BITCOIND:
        table.add("rpc_address", _required(source.rpc_address, "rpc_address", source.kind))
        table.add("rpc_user", _required(source.rpc_user, "rpc_user", source.kind))
        table.add("rpc_password", _required(source.rpc_password, "rpc_password", source.kind))
    else:
        table.add("server_url", _required(source.server_url, "server_url", source.kind))
    return table


def apply_chain_source(raw: str, source: ChainSource) -> str:
    """Devuelve `raw` con la fuente de cadena reemplazada por `source`."""

    try:
        doc = tomlkit.parse(raw)
    except TOMLKitError as exc:
        raise ServerConfigError(f"invalid TOML: {exc}") from exc

    table = chain_source_table(source)
    for name in CHAIN_SOURCE_SECTIONS:
        if name in doc:
            del doc[name]
    if table is not None:
        doc[source.kind.value] = table

    text = tomlkit.dumps(doc)
    # Lo que escribimos tiene que seguir siendo un config que sabemos leer.
    parse_server_config(text)
    return text


def save_chain_source(path: Path, source: ChainSource) -> Path:
    """Reescribe la fuente de cadena de `path` conservando el resto del fichero."""

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ServerConfigError(f"cannot read {path}: {exc.strerror or exc}") from exc
    except UnicodeDecodeError as exc:
        raise ServerConfigError(f"{path} is not UTF-8 text") from exc

    text = apply_chain_source(raw, source)
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise ServerConfigError(f"cannot write {path}: {exc.strerror or exc}") from exc

    logger.info("chain_source_saved", path=str(path), kind=source.kind.value)
    return path
