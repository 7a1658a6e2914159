"""Contrato del transporte REST hacia ldk-server.

Por qué Protocol:
- El Core (sesión, fetcher, dispatcher) solo conoce `call(operation, body)`.
- Permite sustituir el cliente httpx por un doble de test sin red.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from pydantic import BaseModel

from core.domain.models import ConnectionConfig, RequestOutcome


@dataclass(frozen=True)
class OperationSpec:
    """Una operación del REST surface (nombre lógico + ruta HTTP)."""

    name: str
    path: str
    method: str = "POST"


class Operations:
    """Catálogo cerrado de operaciones expuestas por el servidor."""

    GET_NODE_INFO = OperationSpec("get_node_info", "/getNodeInfo")
    GET_BALANCES = OperationSpec("get_balances", "/getBalances")
    LIST_CHANNELS = OperationSpec("list_channels", "/listChannels")
    OPEN_CHANNEL = OperationSpec("open_channel", "/openChannel")
    CLOSE_CHANNEL = OperationSpec("close_channel", "/closeChannel")
    FORCE_CLOSE_CHANNEL = OperationSpec("force_close_channel", "/forceCloseChannel")
    SPLICE_IN = OperationSpec("splice_in", "/spliceIn")
    SPLICE_OUT = OperationSpec("splice_out", "/spliceOut")
    UPDATE_CHANNEL_CONFIG = OperationSpec("update_channel_config", "/updateChannelConfig")
    CONNECT_PEER = OperationSpec("connect_peer", "/connectPeer")
    LIST_PAYMENTS = OperationSpec("list_payments", "/listPayments")
    GET_PAYMENT_DETAILS = OperationSpec("get_payment_details", "/getPaymentDetails")
    ONCHAIN_RECEIVE = OperationSpec("onchain_receive", "/onchainReceive")
    ONCHAIN_SEND = OperationSpec("onchain_send", "/onchainSend")
    BOLT11_RECEIVE = OperationSpec("bolt11_receive", "/bolt11Receive")
    BOLT11_SEND = OperationSpec("bolt11_send", "/bolt11Send")
    BOLT12_RECEIVE = OperationSpec("bolt12_receive", "/bolt12Receive")
    BOLT12_SEND = OperationSpec("bolt12_send", "/bolt12Send")

    @classmethod
    def all(cls) -> list[OperationSpec]:
        return [v for v in vars(cls).values() if isinstance(v, OperationSpec)]


Body = BaseModel | dict[str, Any] | None


@runtime_checkable
class Transport(Protocol):
    """Contrato mínimo para hablar con el servidor.

    Reglas de diseño:
    - `call` es asíncrono (I/O de red) y nunca lanza por fallos esperados:
      devuelve `Ok(dict)` o `Fail(ErrorInfo)`.
    - Sin reintentos: la política de reintento es del llamador.
    """

    async def call(self, operation: OperationSpec, body: Body = None) -> RequestOutcome[dict[str, Any]]:
        ...

    async def aclose(self) -> None:
        ...


TransportFactory = Callable[[ConnectionConfig], Transport]
