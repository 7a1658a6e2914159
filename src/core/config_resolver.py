"""Descubrimiento del config del servidor y construcción de credenciales.

Este módulo vive en `core/` porque:
- centraliza *dónde* buscamos el ldk-server-config.toml (orden de candidatos)
  sin acoplarse a la CLI
- traduce el documento del servidor a un `ConnectionConfig` del dominio.

Ningún fallo aquí es fatal: cada problema queda como `Diagnostic` y, si no
hay ningún candidato válido, el llamador cae a entrada manual.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from adapters.server_config import ServerConfigDocument, ServerConfigError, load_server_config, parse_server_config
from core.config import AppSettings, is_restricted_environment
from core.domain.models import (
    ChainSource,
    ChainSourceKind,
    ConnectionConfig,
    FilePathCert,
    PlatformDefaultCert,
)
from core.domain.network import network_dir_name

logger = structlog.get_logger()

API_KEY_FILENAME = "api_key"
TLS_CERT_FILENAME = "tls.crt"


@dataclass(frozen=True)
class Diagnostic:
    """Problema no fatal encontrado en un candidato."""

    candidate: str
    path: Path | None
    reason: str

    def __str__(self) -> str:
        where = f" ({self.path})" if self.path else ""
        return f"{self.candidate}{where}: {self.reason}"


@dataclass(frozen=True)
class ServerProfile:
    """Lo que el cliente extrae de un config del servidor.

    La API key no se lee al parsear: el fichero puede no existir todavía si el
    servidor nunca arrancó. Se lee bajo demanda con `load_api_key()`.
    """

    host: str
    network: str
    storage_dir: Path
    chain_source: ChainSource = field(default_factory=ChainSource)
    source_path: Path | None = None

    @property
    def api_key_path(self) -> Path:
        return self.storage_dir / network_dir_name(self.network) / API_KEY_FILENAME

    @property
    def tls_cert_path(self) -> Path:
        return self.storage_dir / TLS_CERT_FILENAME

    def load_api_key(self) -> bytes | None:
        """Bytes crudos de la API key, o None si el fichero no está disponible."""

        try:
            data = self.api_key_path.read_bytes()
        except OSError:
            return None
        return data or None

    @classmethod
    def from_document(cls, doc: ServerConfigDocument, source_path: Path | None = None) -> "ServerProfile":
        return cls(
            host=doc.node.rest_service_address.strip(),
            network=doc.node.network.strip(),
            storage_dir=Path(doc.storage.disk.dir_path),
            chain_source=_chain_source(doc),
            source_path=source_path,
        )


def _chain_source(doc: ServerConfigDocument) -> ChainSource:
    # Mismo orden de preferencia que el servidor: bitcoind > electrum > esplora.
    if doc.bitcoind is not None:
        return ChainSource(
            kind=ChainSourceKind.BITCOIND,
            rpc_address=doc.bitcoind.rpc_address,
            rpc_user=doc.bitcoind.rpc_user,
            rpc_password=doc.bitcoind.rpc_password,
        )
    if doc.electrum is not None:
        return ChainSource(kind=ChainSourceKind.ELECTRUM, server_url=doc.electrum.server_url)
    if doc.esplora is not None:
        return ChainSource(kind=ChainSourceKind.ESPLORA, server_url=doc.esplora.server_url)
    return ChainSource()


@dataclass
class Resolution:
    """Resultado de buscar config: nunca lanza, siempre explica."""

    config: ConnectionConfig | None = None
    profile: ServerProfile | None = None
    source: Path | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.profile is not None


def build_connection_config(
    profile: ServerProfile,
    *,
    label: str,
    diagnostics: list[Diagnostic],
    api_key_hex: str | None = None,
    restricted: bool | None = None,
) -> ConnectionConfig | None:
    """Convierte un `ServerProfile` en `ConnectionConfig` (lee la key ahora).

    Devuelve None (con diagnóstico) si no hay API key disponible o el
    resultado no cumple las invariantes del dominio.
    """

    restricted = is_restricted_environment() if restricted is None else restricted

    api_key = profile.load_api_key()
    if api_key is None and api_key_hex:
        try:
            api_key = bytes.fromhex(api_key_hex.strip())
        except ValueError:
            diagnostics.append(Diagnostic(label, None, "api key override is not valid hex"))
            return None
    if not api_key:
        diagnostics.append(
            Diagnostic(
                label,
                profile.api_key_path,
                "api key file not available yet (has the server been started?)",
            )
        )
        return None

    cert_source = PlatformDefaultCert() if restricted else FilePathCert(path=profile.tls_cert_path)
    try:
        return ConnectionConfig(host=profile.host, api_key=api_key, cert_source=cert_source)
    except ValueError as exc:
        diagnostics.append(Diagnostic(label, profile.source_path, f"invalid connection parameters: {exc}"))
        return None


class ConfigResolver:
    """Busca un ldk-server-config.toml en ubicaciones comunes.

    Orden (el primero parseable gana):
    1) ruta explícita
    2) ruta en la variable de entorno (`LDK_SERVER_CONFIG` por defecto)
    3) ./ldk-server-config.toml (cwd)
    4) ../ldk-server/ldk-server-config.toml (proyecto del servidor al lado)
    5) ../ldk-server-config.toml (directorio padre)
    """

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        base_dir: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings or AppSettings()
        self._base_dir = base_dir
        self._environ = environ if environ is not None else os.environ

    def candidates(
        self,
        explicit_override: Path | None = None,
        env_override: str | None = None,
    ) -> list[tuple[str, Path]]:
        base = self._base_dir or Path.cwd()
        filename = self._settings.config_filename
        out: list[tuple[str, Path]] = []

        if explicit_override is not None:
            out.append(("explicit", Path(explicit_override).expanduser()))

        env_value = env_override if env_override is not None else self._environ.get(self._settings.config_env_var)
        env_value = (env_value or "").strip()
        if env_value:
            out.append(("env", Path(env_value).expanduser()))

        out.append(("cwd", base / filename))
        out.append(("sibling", base.parent / self._settings.server_project_dir / filename))
        out.append(("parent", base.parent / filename))
        return out

    def resolve(
        self,
        explicit_override: Path | None = None,
        env_override: str | None = None,
    ) -> Resolution:
        resolution = Resolution()

        for label, path in self.candidates(explicit_override, env_override):
            if not path.is_file():
                resolution.diagnostics.append(Diagnostic(label, path, "not found"))
                continue
            try:
                doc = load_server_config(path)
            except ServerConfigError as exc:
                resolution.diagnostics.append(Diagnostic(label, path, str(exc)))
                logger.info("config_candidate_rejected", candidate=label, path=str(path), reason=str(exc))
                continue

            profile = ServerProfile.from_document(doc, source_path=path)
            resolution.profile = profile
            resolution.source = path
            resolution.config = build_connection_config(
                profile,
                label=label,
                diagnostics=resolution.diagnostics,
            )
            logger.info(
                "config_resolved",
                candidate=label,
                path=str(path),
                host=profile.host,
                network=profile.network,
                api_key_available=resolution.config is not None,
            )
            return resolution

        logger.info("config_not_found", candidates=len(resolution.diagnostics))
        return resolution


def parse_config_text(
    raw: str,
    *,
    api_key_hex: str | None = None,
    restricted: bool | None = None,
) -> Resolution:
    """Aplica el mismo parseo a texto pegado (entornos sin filesystem)."""

    resolution = Resolution()
    try:
        doc = parse_server_config(raw)
    except ServerConfigError as exc:
        resolution.diagnostics.append(Diagnostic("pasted", None, str(exc)))
        return resolution

    profile = ServerProfile.from_document(doc)
    resolution.profile = profile
    resolution.config = build_connection_config(
        profile,
        label="pasted",
        diagnostics=resolution.diagnostics,
        api_key_hex=api_key_hex,
        restricted=restricted,
    )
    return resolution


def load_config_text(
    raw: str,
    *,
    api_key_hex: str | None = None,
    restricted: bool | None = None,
) -> ConnectionConfig | None:
    return parse_config_text(raw, api_key_hex=api_key_hex, restricted=restricted).config


def resolve(
    explicit_override: Path | None = None,
    env_override: str | None = None,
    settings: AppSettings | None = None,
) -> Resolution:
    """Atajo sobre `ConfigResolver(settings).resolve(...)` desde el cwd."""

    return ConfigResolver(settings).resolve(explicit_override, env_override)
