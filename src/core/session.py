"""Máquina de estados de la sesión con el servidor.

Por qué un objeto inyectado (y no un global):
- La CLI, los fetchers y el dispatcher comparten *la misma* sesión sin
  depender de estado de módulo; en tests se construye una nueva cada vez.

Cada cambio de config/conexión incrementa `generation`. Toda petición se
etiqueta con la generación vigente al emitirse y su resultado se descarta
si, al llegar, la generación ya cambió.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from adapters.http_client import CertificateLoadError, InvalidHostError
from adapters.ldk_transport import LdkRestTransport
from core.config import AppSettings
from core.domain.models import (
    ConnectionConfig,
    ErrorInfo,
    ErrorKind,
    Fail,
    NodeInfo,
    Ok,
    RequestOutcome,
    SessionState,
)
from core.interfaces.transport import Body, Operations, OperationSpec, Transport, TransportFactory

logger = structlog.get_logger()

_CONNECTABLE = (SessionState.DISCONNECTED, SessionState.ERROR)


class Clearable(Protocol):
    def clear(self) -> None: ...


@dataclass(frozen=True)
class SessionStatus:
    """Foto de la sesión para mostrar en pantalla."""

    state: SessionState
    generation: int
    host: str | None
    last_error: ErrorInfo | None
    last_operation_error: ErrorInfo | None
    node_info: NodeInfo | None


class SessionManager:
    """Disconnected → Connecting → Connected | Error (sin estado terminal)."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._settings = settings or AppSettings()
        self._factory = transport_factory or self._default_factory
        self._lock = asyncio.Lock()
        self._state = SessionState.DISCONNECTED
        self._generation = 0
        self._config: ConnectionConfig | None = None
        self._transport: Transport | None = None
        self._node_info: NodeInfo | None = None
        self._last_error: ErrorInfo | None = None
        self._last_operation_error: ErrorInfo | None = None
        self._caches: list[Clearable] = []

    def _default_factory(self, config: ConnectionConfig) -> Transport:
        return LdkRestTransport.from_config(config, self._settings)

    # ─── Lectura ────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def config(self) -> ConnectionConfig | None:
        return self._config

    @property
    def node_info(self) -> NodeInfo | None:
        return self._node_info

    @property
    def last_error(self) -> ErrorInfo | None:
        return self._last_error

    @property
    def last_operation_error(self) -> ErrorInfo | None:
        return self._last_operation_error

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def attach(self, cache: Clearable) -> None:
        """Registra un cache que se vacía en cada disconnect/reconfiguración."""

        if cache not in self._caches:
            self._caches.append(cache)

    def snapshot(self) -> SessionStatus:
        return SessionStatus(
            state=self._state,
            generation=self._generation,
            host=self._config.host if self._config else None,
            last_error=self._last_error,
            last_operation_error=self._last_operation_error,
            node_info=self._node_info,
        )

    def _clear_caches(self) -> None:
        for cache in self._caches:
            cache.clear()

    # ─── Transiciones ───────────────────────────────────────────────

    async def connect(self, config: ConnectionConfig) -> RequestOutcome[NodeInfo]:
        """Reemplaza la config y verifica la conexión con un único getNodeInfo."""

        async with self._lock:
            if self._state not in _CONNECTABLE:
                return Fail.of(ErrorKind.VALIDATION, f"cannot connect while {self._state.value}")

            previous = self._transport
            self._generation += 1
            generation = self._generation
            self._config = config
            self._transport = None
            self._node_info = None
            self._last_error = None
            self._state = SessionState.CONNECTING
            self._clear_caches()
            log = logger.bind(host=config.host, generation=generation)
            log.info("session_connecting", key=config.api_key_fingerprint, cert=config.cert_source.kind)

            build_error: ErrorInfo | None = None
            try:
                transport = self._factory(config)
            except CertificateLoadError as exc:
                build_error = ErrorInfo.of(ErrorKind.CERTIFICATE, str(exc))
            except InvalidHostError as exc:
                build_error = ErrorInfo.of(ErrorKind.VALIDATION, str(exc))
            else:
                self._transport = transport

            if build_error is not None:
                self._state = SessionState.ERROR
                self._last_error = build_error
                log.warning("session_error", kind=build_error.kind.value, error=build_error.message)

        if previous is not None:
            await previous.aclose()
        if build_error is not None:
            return Fail(build_error)

        outcome = await transport.call(Operations.GET_NODE_INFO)

        async with self._lock:
            if not self.is_current(generation):
                log.info("stale_result_discarded", op=Operations.GET_NODE_INFO.name)
                return Fail.of(ErrorKind.STALE, "connection attempt superseded")

            if isinstance(outcome, Ok):
                try:
                    info = NodeInfo.model_validate(outcome.value)
                except ValidationError as exc:
                    outcome = Fail.of(ErrorKind.PROTOCOL, f"unexpected node info response: {exc.error_count()} errors")
                else:
                    self._node_info = info
                    self._state = SessionState.CONNECTED
                    log.info("session_connected", node_id=info.node_id)
                    return Ok(info)

            self._state = SessionState.ERROR
            self._last_error = outcome.error
            log.warning("session_error", kind=outcome.kind.value, error=outcome.message)
            return outcome

    async def reconnect(self) -> RequestOutcome[NodeInfo]:
        """Reintento explícito desde Error con la config que ya teníamos."""

        if self._state is not SessionState.ERROR or self._config is None:
            return Fail.of(ErrorKind.VALIDATION, f"cannot reconnect while {self._state.value}")
        return await self.connect(self._config)

    async def disconnect(self) -> None:
        async with self._lock:
            self._generation += 1
            transport, self._transport = self._transport, None
            self._config = None
            self._node_info = None
            self._last_error = None
            self._last_operation_error = None
            self._state = SessionState.DISCONNECTED
            self._clear_caches()
            logger.info("session_disconnected", generation=self._generation)

        if transport is not None:
            await transport.aclose()

    # ─── Peticiones ─────────────────────────────────────────────────

    async def call(self, operation: OperationSpec, body: Body = None) -> RequestOutcome[dict[str, Any]]:
        """Petición en estado Connected. Un fallo nunca cambia `state`."""

        async with self._lock:
            if self._state is not SessionState.CONNECTED or self._transport is None:
                return Fail.of(ErrorKind.NETWORK, "not connected")
            generation = self._generation
            transport = self._transport

        outcome = await transport.call(operation, body)

        if not self.is_current(generation):
            logger.info("stale_result_discarded", op=operation.name, generation=generation)
            return Fail.of(ErrorKind.STALE, f"{operation.name}: session changed while the request was in flight")
        if isinstance(outcome, Fail):
            self._last_operation_error = outcome.error
            logger.warning(
                "operation_failed",
                op=operation.name,
                kind=outcome.kind.value,
                retriable=outcome.retriable,
                error=outcome.message,
            )
        return outcome
