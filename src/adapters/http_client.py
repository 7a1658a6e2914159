"""Wrapper de httpx.

Por qué un wrapper:
- Estandariza timeouts, headers, autenticación y confianza TLS.
- Facilita testeo: se puede inyectar un `httpx.MockTransport`.
"""

from __future__ import annotations

import ssl

import httpx
import structlog

from core.config import AppSettings
from core.domain.models import CertSource, ConnectionConfig, FilePathCert, InlinePemCert

logger = structlog.get_logger()


class CertificateLoadError(Exception):
    """El material del certificado no se pudo leer o no es un certificado."""


class InvalidHostError(ValueError):
    """httpx no acepta `https://<host>` como base_url."""


def _pem_or_der(data: bytes) -> str | bytes:
    # `cadata` acepta PEM como texto o DER como bytes.
    if b"-----BEGIN" in data:
        return data.decode("ascii", errors="strict")
    return data


def build_ssl_context(cert_source: CertSource) -> ssl.SSLContext | bool:
    """Contexto TLS anclado al certificado del servidor.

    Con `PlatformDefaultCert` devolvemos `True`: httpx usa el trust store del
    sistema/entorno. Es una reducción de garantías y se registra como tal.
    """

    if isinstance(cert_source, FilePathCert):
        try:
            data = cert_source.path.read_bytes()
        except OSError as exc:
            raise CertificateLoadError(f"failed to read TLS cert {cert_source.path}: {exc.strerror or exc}") from exc
    elif isinstance(cert_source, InlinePemCert):
        data = cert_source.pem
    else:
        logger.warning("tls_trust_delegated", reason="no server certificate configured")
        return True

    try:
        return ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH, cadata=_pem_or_der(data))
    except (ssl.SSLError, ValueError, UnicodeDecodeError) as exc:
        raise CertificateLoadError(f"invalid TLS certificate: {exc}") from exc


def build_async_client(
    config: ConnectionConfig,
    settings: AppSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Crea un `httpx.AsyncClient` autenticado contra el REST service.

    Por qué un builder:
    - Centraliza base_url/timeouts/headers para todas las operaciones.
    - Cada request lleva la API key (hex) en el header configurado.
    """

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": settings.user_agent,
        "Accept": "application/json",
        settings.api_key_header: config.api_key_hex,
    }
    verify = build_ssl_context(config.cert_source)
    try:
        return httpx.AsyncClient(
            base_url=config.base_url,
            verify=verify,
            timeout=httpx.Timeout(settings.http_timeout_seconds),
            headers=headers,
            transport=transport,
        )
    except httpx.InvalidURL as exc:
        raise InvalidHostError(f"invalid server address {config.host!r}: {exc}") from exc
