"""Transporte REST hacia ldk-server.

Responsabilidad:
- Enviar una `OperationSpec` + body JSON con el cliente httpx autenticado.
- Clasificar cualquier fallo en un `ErrorKind` y devolverlo como `Fail`.

No reintenta nada: la política de reintento es del llamador.
"""

from __future__ import annotations

import ssl
import uuid
from typing import Any

import httpx
import structlog
from pydantic import BaseModel

from adapters.http_client import build_async_client
from core.config import AppSettings
from core.domain.models import ConnectionConfig, ErrorKind, Fail, Ok, RequestOutcome
from core.interfaces.transport import Body, OperationSpec

logger = structlog.get_logger()


def encode_body(body: Body) -> dict[str, Any]:
    if body is None:
        return {}
    if isinstance(body, BaseModel):
        return body.model_dump(mode="json", exclude_none=True)
    return dict(body)


def _is_certificate_error(exc: BaseException) -> bool:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ssl.SSLCertVerificationError):
            return True
        if "CERTIFICATE_VERIFY_FAILED" in str(current):
            return True
        current = current.__cause__ or current.__context__
    return False


def server_error_message(response: httpx.Response) -> str:
    """Mensaje legible de un error del servidor ({"message": ..., "error_code": ...})."""

    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message")
        code = payload.get("error_code")
        if isinstance(message, str) and message:
            return f"{message} ({code})" if code else message
    text = response.text.strip()
    return text[:200] if text else f"HTTP {response.status_code}"


def classify_status(status_code: int) -> ErrorKind | None:
    if 200 <= status_code < 300:
        return None
    if status_code in (401, 403):
        return ErrorKind.AUTHENTICATION
    if status_code >= 500:
        return ErrorKind.SERVER_FAULT
    return ErrorKind.PROTOCOL


class LdkRestTransport:
    """Cliente asíncrono del REST service (implementa `Transport`)."""

    def __init__(self, client: httpx.AsyncClient, *, host: str = "") -> None:
        self._client = client
        self._host = host

    @classmethod
    def from_config(
        cls,
        config: ConnectionConfig,
        settings: AppSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "LdkRestTransport":
        """Construye el transporte. Lanza `CertificateLoadError` si el certificado no sirve."""

        return cls(build_async_client(config, settings, transport=transport), host=config.host)

    async def call(self, operation: OperationSpec, body: Body = None) -> RequestOutcome[dict[str, Any]]:
        request_id = uuid.uuid4().hex[:12]
        log = logger.bind(op=operation.name, request_id=request_id, host=self._host)
        log.debug("ldk_request")

        try:
            response = await self._client.request(operation.method, operation.path, json=encode_body(body))
        except httpx.TimeoutException as exc:
            log.warning("ldk_request_failed", kind=ErrorKind.NETWORK.value, error=repr(exc))
            return Fail.of(ErrorKind.NETWORK, f"{operation.name}: request timed out")
        except httpx.TransportError as exc:
            kind = ErrorKind.CERTIFICATE if _is_certificate_error(exc) else ErrorKind.NETWORK
            log.warning("ldk_request_failed", kind=kind.value, error=repr(exc))
            detail = "TLS certificate verification failed" if kind is ErrorKind.CERTIFICATE else str(exc) or type(exc).__name__
            return Fail.of(kind, f"{operation.name}: {detail}")

        kind = classify_status(response.status_code)
        if kind is not None:
            message = server_error_message(response)
            log.warning("ldk_request_failed", kind=kind.value, status=response.status_code, error=message)
            return Fail.of(kind, f"{operation.name}: {message}")

        if not response.content:
            log.debug("ldk_response", status=response.status_code)
            return Ok({})
        try:
            payload = response.json()
        except ValueError:
            log.warning("ldk_request_failed", kind=ErrorKind.PROTOCOL.value, status=response.status_code)
            return Fail.of(ErrorKind.PROTOCOL, f"{operation.name}: response body is not JSON")
        if not isinstance(payload, dict):
            return Fail.of(ErrorKind.PROTOCOL, f"{operation.name}: expected a JSON object")

        log.debug("ldk_response", status=response.status_code)
        return Ok(payload)

    async def aclose(self) -> None:
        await self._client.aclose()
