"""Almacén de credenciales: los parámetros de conexión activos, vengan de donde vengan.

Por qué un único almacén:
- El config del servidor, los campos manuales, las variables de entorno y el
  texto pegado terminan todos como *un* `ConnectionConfig` validado.
- La config se reemplaza entera; nunca se edita en sitio.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from core.config import AppSettings, is_restricted_environment
from core.config_resolver import Resolution, ServerProfile
from core.domain.models import (
    CertSource,
    ConnectionConfig,
    ErrorKind,
    Fail,
    FilePathCert,
    InlinePemCert,
    Ok,
    PlatformDefaultCert,
    RequestOutcome,
    check_host_shape,
    normalize_host,
)

logger = structlog.get_logger()


def validate_host_field(raw: str) -> str:
    """Campo "host" de la entrada manual: `host`, `host:port` o `[ipv6]:port`."""

    host = normalize_host(raw or "")
    if not host:
        raise ValueError("server host is required")
    try:
        return check_host_shape(host)
    except ValueError as exc:
        raise ValueError(f"server host is invalid: {exc}") from exc


def validate_api_key_field(raw: str) -> bytes:
    """API key en hex → bytes crudos."""

    value = (raw or "").strip()
    if not value:
        raise ValueError("API key is required")
    try:
        key = bytes.fromhex(value)
    except ValueError as exc:
        raise ValueError("API key must be hex encoded") from exc
    if not key:
        raise ValueError("API key is required")
    return key


def validate_cert_field(raw: str | Path | None, *, allow_platform_trust: bool, restricted: bool) -> CertSource:
    """Ruta al tls.crt. Vacía solo vale si se delega la confianza en la plataforma."""

    value = str(raw).strip() if raw is not None else ""
    if not value:
        if restricted or allow_platform_trust:
            return PlatformDefaultCert()
        raise ValueError("TLS certificate path is required")
    if restricted:
        # Sin filesystem: la ruta no sirve de nada, confía en el entorno.
        return PlatformDefaultCert()
    path = Path(value).expanduser()
    if not path.is_file():
        raise ValueError(f"TLS certificate not found: {path}")
    return FilePathCert(path=path)


class CredentialStore:
    """Guarda el único `ConnectionConfig` activo (o nada)."""

    def __init__(self, settings: AppSettings | None = None, *, restricted: bool | None = None) -> None:
        self._settings = settings or AppSettings()
        self._restricted = is_restricted_environment() if restricted is None else restricted
        self._config: ConnectionConfig | None = None
        self._profile: ServerProfile | None = None
        self._source: str | None = None

    @property
    def current(self) -> ConnectionConfig | None:
        return self._config

    @property
    def profile(self) -> ServerProfile | None:
        return self._profile

    @property
    def source(self) -> str | None:
        return self._source

    @property
    def is_ready(self) -> bool:
        return self._config is not None

    def load(self, config: ConnectionConfig, source: str, profile: ServerProfile | None = None) -> None:
        self._config = config
        self._source = source
        self._profile = profile
        logger.info(
            "credentials_loaded",
            source=source,
            host=config.host,
            cert=config.cert_source.kind,
            key=config.api_key_fingerprint,
        )

    def load_resolution(self, resolution: Resolution, source: str | None = None) -> bool:
        """Carga lo que encontró el resolver. Devuelve False si no había config."""

        if resolution.config is None:
            # El perfil sirve para pre-rellenar la entrada manual.
            self._profile = resolution.profile or self._profile
            return False
        label = source or (str(resolution.source) if resolution.source else "pasted")
        self.load(resolution.config, label, resolution.profile)
        return True

    def clear(self) -> None:
        self._config = None
        self._profile = None
        self._source = None

    def apply_manual_input(
        self,
        host: str,
        api_key_hex: str,
        cert_path: str | Path | None,
        *,
        source: str = "manual",
    ) -> RequestOutcome[ConnectionConfig]:
        """Valida cada campo por separado y, si todo es correcto, reemplaza la config."""

        problems: list[str] = []
        parsed_host = parsed_key = cert = None
        try:
            parsed_host = validate_host_field(host)
        except ValueError as exc:
            problems.append(str(exc))
        try:
            parsed_key = validate_api_key_field(api_key_hex)
        except ValueError as exc:
            problems.append(str(exc))
        try:
            cert = validate_cert_field(
                cert_path,
                allow_platform_trust=self._settings.allow_platform_trust,
                restricted=self._restricted,
            )
        except ValueError as exc:
            problems.append(str(exc))

        if problems:
            return Fail.of(ErrorKind.VALIDATION, "; ".join(problems))

        config = ConnectionConfig(host=parsed_host, api_key=parsed_key, cert_source=cert)
        self.load(config, source)
        return Ok(config)

    def load_inline_pem(self, host: str, api_key_hex: str, pem: str | bytes) -> RequestOutcome[ConnectionConfig]:
        """Variante con el certificado pegado como texto PEM."""

        problems: list[str] = []
        parsed_host = parsed_key = None
        try:
            parsed_host = validate_host_field(host)
        except ValueError as exc:
            problems.append(str(exc))
        try:
            parsed_key = validate_api_key_field(api_key_hex)
        except ValueError as exc:
            problems.append(str(exc))
        pem_bytes = pem.encode("utf-8") if isinstance(pem, str) else pem
        if b"-----BEGIN CERTIFICATE-----" not in pem_bytes:
            problems.append("certificate must be PEM encoded")

        if problems:
            return Fail.of(ErrorKind.VALIDATION, "; ".join(problems))

        config = ConnectionConfig(host=parsed_host, api_key=parsed_key, cert_source=InlinePemCert(pem=pem_bytes))
        self.load(config, "inline")
        return Ok(config)

    def load_from_settings(self) -> RequestOutcome[ConnectionConfig] | None:
        """Usa LDK_CONSOLE_HOST / _API_KEY / _TLS_CERT_PATH si están definidos.

        Devuelve None cuando no hay nada configurado por entorno.
        """

        s = self._settings
        if not s.host and not s.api_key:
            return None
        return self.apply_manual_input(s.host or "", s.api_key or "", s.tls_cert_path, source="environment")
