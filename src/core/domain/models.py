"""Modelos del dominio (Pydantic v2).

Por qué Pydantic en el dominio:
- Nos da validación estricta y documentación autocontenida (Field) sin acoplar
  el Core a librerías de I/O.
- Los parámetros de conexión llegan de fuentes no confiables (fichero, campos
  manuales, env vars, texto pegado): validamos una sola vez, aquí.

Nota:
- Estos modelos describen *qué* es la información, no *cómo* se obtiene.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

T = TypeVar("T")
ItemT = TypeVar("ItemT")


# ─── Errores y resultados ───────────────────────────────────────────


class ErrorKind(str, Enum):
    """Clasificación cerrada de fallos visibles para el usuario."""

    NETWORK = "network"
    AUTHENTICATION = "authentication"
    CERTIFICATE = "certificate"
    SERVER_FAULT = "server_fault"
    PROTOCOL = "protocol"
    VALIDATION = "validation"
    # Resultado descartado: la sesión cambió de generación mientras volaba.
    STALE = "stale"

    @property
    def retriable(self) -> bool:
        return self in _RETRIABLE_KINDS


_RETRIABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.SERVER_FAULT, ErrorKind.STALE})


class ErrorInfo(BaseModel):
    """Descripción de un fallo: qué pasó y si tiene sentido reintentar."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str = Field(..., min_length=1)
    retriable: bool

    @classmethod
    def of(cls, kind: ErrorKind, message: str) -> "ErrorInfo":
        """Construye un `ErrorInfo` derivando `retriable` del tipo de error."""

        return cls(kind=kind, message=message or kind.value, retriable=kind.retriable)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Fail:
    error: ErrorInfo

    @property
    def is_ok(self) -> bool:
        return False

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def retriable(self) -> bool:
        return self.error.retriable

    @classmethod
    def of(cls, kind: ErrorKind, message: str) -> "Fail":
        return cls(ErrorInfo.of(kind, message))


RequestOutcome = Union[Ok[T], Fail]


# ─── Credenciales ───────────────────────────────────────────────────


class FilePathCert(BaseModel):
    """Certificado leído de disco al construir el cliente HTTPS."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["file"] = "file"
    path: Path


class InlinePemCert(BaseModel):
    """Certificado ya en memoria (p.ej. pegado por el usuario)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["inline"] = "inline"
    pem: bytes = Field(..., min_length=1)


class PlatformDefaultCert(BaseModel):
    """Sin certificado propio: la validación TLS la hace el entorno anfitrión.

    Es una reducción explícita de garantías (no hay pinning del certificado
    del servidor); solo se usa en entornos restringidos o si se permite.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["platform"] = "platform"


CertSource = Annotated[
    Union[FilePathCert, InlinePemCert, PlatformDefaultCert],
    Field(discriminator="kind"),
]


def normalize_host(value: str) -> str:
    """Quita espacios, el prefijo de esquema y la barra final de un host."""

    host = value.strip()
    lowered = host.lower()
    for scheme in ("https://", "http://"):
        if lowered.startswith(scheme):
            host = host[len(scheme):]
            break
    return host.rstrip("/")


def check_host_shape(host: str) -> str:
    """Exige `host`, `host:port` o `[ipv6]:port` con puerto numérico 1..65535.

    Lo que pasa este filtro es una autoridad que httpx acepta como base_url.
    """

    if any(ch.isspace() for ch in host):
        raise ValueError("host must not contain whitespace")
    if any(ch in host for ch in "/?#@"):
        raise ValueError("host must be host[:port] without path, query or user info")

    if host.startswith("["):
        end = host.find("]")
        if end == -1:
            raise ValueError("unbalanced '[' in IPv6 host")
        name, rest = host[1:end], host[end + 1:]
        if not name or "[" in name or "]" in rest:
            raise ValueError("IPv6 host must look like [addr] or [addr]:port")
        if not rest:
            return host
        if not rest.startswith(":"):
            raise ValueError("expected ':port' after the IPv6 address")
        port = rest[1:]
    else:
        if "[" in host or "]" in host:
            raise ValueError("IPv6 addresses must be written as [addr]:port")
        if host.count(":") > 1:
            raise ValueError("IPv6 addresses must be written as [addr]:port")
        name, sep, port = host.partition(":")
        if not name:
            raise ValueError("host name is missing")
        if not sep:
            return host

    if not port.isdigit() or not 0 < int(port) < 65536:
        raise ValueError(f"invalid port {port!r} (expected 1-65535)")
    return host


class ConnectionConfig(BaseModel):
    """Parámetros resueltos para abrir una sesión.

    Invariantes:
    - `host` no vacío, sin esquema y con forma `host[:port]`
      (`localhost:3002`, no `https://...` ni `localhost:abc`).
    - `api_key` no vacía (bytes crudos; se envían en hex).
    - Exactamente una fuente de certificado activa.

    Es inmutable: reconfigurar significa reemplazar el objeto.
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(
        ...,
        min_length=1,
        description="host:port del REST service, sin esquema.",
    )
    api_key: bytes = Field(
        ...,
        min_length=1,
        description="API key en bytes crudos.",
    )
    cert_source: CertSource = Field(
        default_factory=PlatformDefaultCert,
        description="Origen de la confianza TLS.",
    )

    @field_validator("host", mode="before")
    @classmethod
    def check_host(cls, value: Any) -> Any:
        if isinstance(value, str):
            host = normalize_host(value)
            return check_host_shape(host) if host else host
        return value

    @property
    def api_key_hex(self) -> str:
        return self.api_key.hex()

    @property
    def api_key_fingerprint(self) -> str:
        """Huella corta para logs: nunca se registra la key en claro."""

        return hashlib.sha256(self.api_key).hexdigest()[:8]

    @property
    def base_url(self) -> str:
        return f"https://{self.host}"


# ─── Sesión ─────────────────────────────────────────────────────────


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


# ─── Paginación ─────────────────────────────────────────────────────


class PageCursor(BaseModel):
    """Token opaco de posición devuelto por el servidor (hashable)."""

    model_config = ConfigDict(frozen=True)

    token: str
    index: int = 0


class PagePosition(BaseModel):
    """Cursor del cliente: página del servidor + desplazamiento dentro de ella.

    El servidor decide cuántos elementos trae cada página suya; el cliente
    las corta en trozos de `page_size`. `server=None` es la primera página.
    """

    model_config = ConfigDict(frozen=True)

    server: PageCursor | None = None
    offset: int = Field(default=0, ge=0)

    @property
    def is_start(self) -> bool:
        return self.server is None and self.offset == 0


class Page(BaseModel, Generic[ItemT]):
    """Una página de una colección ordenada.

    `cursor_out=None` significa que no hay más páginas.
    """

    model_config = ConfigDict(frozen=True)

    cursor_in: PagePosition | None = None
    items: list[ItemT] = Field(default_factory=list)
    cursor_out: PagePosition | None = None
    page_size: int = Field(..., ge=1)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_more(self) -> bool:
        return self.cursor_out is not None


# ─── Registros del servidor ─────────────────────────────────────────


class BestBlock(BaseModel):
    model_config = ConfigDict(extra="ignore")

    block_hash: str = ""
    height: int = 0


class NodeInfo(BaseModel):
    """Identidad del nodo (respuesta de getNodeInfo al conectar)."""

    model_config = ConfigDict(extra="ignore")

    node_id: str = Field(..., min_length=1, description="Pubkey del nodo (hex).")
    current_best_block: BestBlock | None = None
    latest_lightning_wallet_sync_timestamp: int | None = None
    latest_onchain_wallet_sync_timestamp: int | None = None
    latest_fee_rate_cache_update_timestamp: int | None = None
    latest_rgs_snapshot_timestamp: int | None = None
    latest_node_announcement_broadcast_timestamp: int | None = None


class PaymentDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    UNKNOWN = "unknown"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"


_PAYMENT_KIND_LABELS = {
    "onchain": "On-chain",
    "bolt11": "BOLT11",
    "bolt11_jit": "BOLT11 JIT",
    "bolt12_offer": "BOLT12 Offer",
    "bolt12_refund": "BOLT12 Refund",
    "spontaneous": "Spontaneous",
}


def _enum_from_wire(value: Any, members: list[str], unknown: str) -> str:
    # El servidor puede serializar enums protobuf como índice o como nombre.
    if isinstance(value, int) and not isinstance(value, bool):
        return members[value] if 0 <= value < len(members) else unknown
    if isinstance(value, str):
        name = value.strip().lower()
        return name if name in members else unknown
    return unknown


class PaymentRecord(BaseModel):
    """Entrada del historial de pagos."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    kind: dict[str, Any] | None = Field(
        default=None,
        description="Variante de pago tal cual la envía el servidor ({'bolt11': {...}}).",
    )
    amount_msat: int | None = None
    fee_paid_msat: int | None = None
    direction: PaymentDirection = PaymentDirection.UNKNOWN
    status: PaymentStatus = PaymentStatus.UNKNOWN
    latest_update_timestamp: int = 0

    @field_validator("direction", mode="before")
    @classmethod
    def check_direction(cls, value: Any) -> str:
        return _enum_from_wire(value, ["inbound", "outbound"], "unknown")

    @field_validator("status", mode="before")
    @classmethod
    def check_status(cls, value: Any) -> str:
        return _enum_from_wire(value, ["pending", "succeeded", "failed"], "unknown")

    @property
    def kind_label(self) -> str:
        if not self.kind:
            return "Unknown"
        variant = next(iter(self.kind))
        return _PAYMENT_KIND_LABELS.get(variant, variant)


# ─── Chain source (config del servidor) ─────────────────────────────


class ChainSourceKind(str, Enum):
    NONE = "none"
    BITCOIND = "bitcoind"
    ELECTRUM = "electrum"
    ESPLORA = "esplora"

    def label(self) -> str:
        return {
            ChainSourceKind.NONE: "None",
            ChainSourceKind.BITCOIND: "Bitcoin Core RPC",
            ChainSourceKind.ELECTRUM: "Electrum",
            ChainSourceKind.ESPLORA: "Esplora",
        }[self]


class ChainSource(BaseModel):
    """Fuente de datos on-chain configurada en el servidor (`chain-source set` la reescribe)."""

    model_config = ConfigDict(frozen=True)

    kind: ChainSourceKind = ChainSourceKind.NONE
    rpc_address: str | None = None
    rpc_user: str | None = None
    rpc_password: str | None = Field(default=None, repr=False)
    server_url: str | None = None

    @property
    def endpoint(self) -> str | None:
        return self.rpc_address if self.kind is ChainSourceKind.BITCOIND else self.server_url
