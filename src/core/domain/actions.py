"""Intents de usuario y los cuerpos de request que generan.

Por qué dos capas:
- El *intent* (dataclass) guarda lo que el usuario pidió, sin validar: se
  puede construir con `amount_sats=-1` y el dispatcher lo rechazará.
- El *request* (Pydantic) es el cuerpo que viaja al servidor; construirlo es
  la validación estructural. Si falla, no hay llamada de red.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic.config import ConfigDict

from core.domain.models import ErrorKind, Fail, Ok, PaymentRecord, RequestOutcome
from core.interfaces.transport import OperationSpec, Operations

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")

DEFAULT_BOLT11_EXPIRY_SECS = 86_400


def validate_node_id(value: str) -> str:
    """Pubkey comprimida: 33 bytes en hex (66 chars) con prefijo 02/03."""

    v = value.strip()
    if len(v) != 66 or not _HEX_RE.match(v) or v[:2] not in ("02", "03"):
        raise ValueError("node id must be a 33-byte compressed public key in hex")
    return v.lower()


def validate_peer_address(value: str) -> str:
    """Dirección de peer `host:port` (IPv6 entre corchetes)."""

    v = value.strip()
    host, sep, port = v.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError("address must look like host:port")
    if not 0 < int(port) < 65536:
        raise ValueError("address port out of range")
    if host.startswith("[") != host.endswith("]"):
        raise ValueError("malformed IPv6 address")
    return v


def _required_text(value: str, field: str) -> str:
    v = value.strip() if isinstance(value, str) else value
    if not v:
        raise ValueError(f"{field} is required")
    return v


# ─── Request bodies ─────────────────────────────────────────────────


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


class EmptyRequest(_Request):
    pass


class ChannelConfigBody(_Request):
    forwarding_fee_proportional_millionths: int | None = Field(default=None, ge=0)
    forwarding_fee_base_msat: int | None = Field(default=None, ge=0)
    cltv_expiry_delta: int | None = Field(default=None, ge=0, le=65_535)

    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())


class _ChannelRef(_Request):
    user_channel_id: str = Field(..., min_length=1)
    counterparty_node_id: str

    @field_validator("user_channel_id", mode="before")
    @classmethod
    def check_channel_id(cls, value: Any) -> Any:
        return _required_text(value, "user_channel_id")

    @field_validator("counterparty_node_id")
    @classmethod
    def check_counterparty(cls, value: str) -> str:
        return validate_node_id(value)


class OpenChannelRequest(_Request):
    node_pubkey: str
    address: str
    channel_amount_sats: int = Field(..., gt=0)
    push_to_counterparty_msat: int | None = Field(default=None, ge=0)
    channel_config: ChannelConfigBody | None = None
    announce_channel: bool = False

    @field_validator("node_pubkey")
    @classmethod
    def check_node_pubkey(cls, value: str) -> str:
        return validate_node_id(value)

    @field_validator("address")
    @classmethod
    def check_address(cls, value: str) -> str:
        return validate_peer_address(value)


class CloseChannelRequest(_ChannelRef):
    pass


class ForceCloseChannelRequest(_ChannelRef):
    force_close_reason: str | None = None


class SpliceInRequest(_ChannelRef):
    splice_amount_sats: int = Field(..., gt=0)


class SpliceOutRequest(_ChannelRef):
    splice_amount_sats: int = Field(..., gt=0)
    address: str | None = None


class UpdateChannelConfigRequest(_ChannelRef):
    channel_config: ChannelConfigBody

    @model_validator(mode="after")
    def check_something_to_update(self) -> "UpdateChannelConfigRequest":
        if self.channel_config.is_empty():
            raise ValueError("at least one channel config field is required")
        return self


class ConnectPeerRequest(_Request):
    node_pubkey: str
    address: str
    persist: bool = False

    @field_validator("node_pubkey")
    @classmethod
    def check_node_pubkey(cls, value: str) -> str:
        return validate_node_id(value)

    @field_validator("address")
    @classmethod
    def check_address(cls, value: str) -> str:
        return validate_peer_address(value)


class OnchainSendRequest(_Request):
    address: str
    amount_sats: int | None = Field(default=None, gt=0)
    send_all: bool | None = None
    fee_rate_sat_per_vb: int | None = Field(default=None, gt=0)

    @field_validator("address", mode="before")
    @classmethod
    def check_address(cls, value: Any) -> Any:
        v = _required_text(value, "address")
        if isinstance(v, str) and (any(ch.isspace() for ch in v) or not v.isalnum()):
            raise ValueError("address is not a valid bitcoin address")
        return v

    @model_validator(mode="after")
    def check_amount_xor_send_all(self) -> "OnchainSendRequest":
        if self.send_all and self.amount_sats is not None:
            raise ValueError("amount_sats and send_all are mutually exclusive")
        if not self.send_all and self.amount_sats is None:
            raise ValueError("amount_sats is required unless send_all is set")
        return self


class Bolt11Description(_Request):
    direct: str = Field(..., min_length=1, max_length=639)


class Bolt11ReceiveRequest(_Request):
    amount_msat: int | None = Field(default=None, gt=0)
    description: Bolt11Description | None = None
    expiry_secs: int = Field(default=DEFAULT_BOLT11_EXPIRY_SECS, gt=0)


class Bolt11SendRequest(_Request):
    invoice: str
    amount_msat: int | None = Field(default=None, gt=0)

    @field_validator("invoice", mode="before")
    @classmethod
    def check_invoice(cls, value: Any) -> Any:
        v = _required_text(value, "invoice")
        if isinstance(v, str):
            lowered = v.lower()
            if lowered.startswith("lno"):
                raise ValueError("this is a BOLT12 offer, not a BOLT11 invoice")
            if not lowered.startswith("ln"):
                raise ValueError("invoice must be a BOLT11 string (ln...)")
        return v


class Bolt12ReceiveRequest(_Request):
    description: str
    amount_msat: int | None = Field(default=None, gt=0)
    expiry_secs: int | None = Field(default=None, gt=0)
    quantity: int | None = Field(default=None, gt=0)

    @field_validator("description", mode="before")
    @classmethod
    def check_description(cls, value: Any) -> Any:
        return _required_text(value, "description")


class Bolt12SendRequest(_Request):
    offer: str
    amount_msat: int | None = Field(default=None, gt=0)
    quantity: int | None = Field(default=None, gt=0)
    payer_note: str | None = None

    @field_validator("offer", mode="before")
    @classmethod
    def check_offer(cls, value: Any) -> Any:
        v = _required_text(value, "offer")
        if isinstance(v, str) and not v.lower().startswith("lno"):
            raise ValueError("offer must be a BOLT12 string (lno...)")
        return v


class GetPaymentDetailsRequest(_Request):
    payment_id: str

    @field_validator("payment_id", mode="before")
    @classmethod
    def check_payment_id(cls, value: Any) -> Any:
        v = _required_text(value, "payment_id")
        if isinstance(v, str) and (len(v) != 64 or not _HEX_RE.match(v)):
            raise ValueError("payment_id must be 32 bytes in hex")
        return v


# ─── Intents ────────────────────────────────────────────────────────


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    v = value.strip()
    return v or None


class ActionIntent:
    """Base de los intents: qué operación dispara y cómo se arma el body."""

    operation: ClassVar[OperationSpec]

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_request(self) -> BaseModel:
        return EmptyRequest()


@dataclass(frozen=True)
class GetNodeInfo(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.GET_NODE_INFO


@dataclass(frozen=True)
class GetBalances(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.GET_BALANCES


@dataclass(frozen=True)
class ListChannels(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.LIST_CHANNELS


@dataclass(frozen=True)
class GetPaymentDetails(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.GET_PAYMENT_DETAILS

    payment_id: str

    def to_request(self) -> BaseModel:
        return GetPaymentDetailsRequest(payment_id=self.payment_id)


@dataclass(frozen=True)
class OpenChannel(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.OPEN_CHANNEL

    node_pubkey: str
    address: str
    channel_amount_sats: int
    push_to_counterparty_msat: int | None = None
    announce_channel: bool = False
    forwarding_fee_proportional_millionths: int | None = None
    forwarding_fee_base_msat: int | None = None
    cltv_expiry_delta: int | None = None

    def to_request(self) -> BaseModel:
        config = ChannelConfigBody(
            forwarding_fee_proportional_millionths=self.forwarding_fee_proportional_millionths,
            forwarding_fee_base_msat=self.forwarding_fee_base_msat,
            cltv_expiry_delta=self.cltv_expiry_delta,
        )
        return OpenChannelRequest(
            node_pubkey=self.node_pubkey,
            address=self.address,
            channel_amount_sats=self.channel_amount_sats,
            push_to_counterparty_msat=self.push_to_counterparty_msat,
            # Sin campos de fee/CLTV el servidor usa su config por defecto.
            channel_config=None if config.is_empty() else config,
            announce_channel=self.announce_channel,
        )


@dataclass(frozen=True)
class CloseChannel(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.CLOSE_CHANNEL

    user_channel_id: str
    counterparty_node_id: str

    def to_request(self) -> BaseModel:
        return CloseChannelRequest(
            user_channel_id=self.user_channel_id,
            counterparty_node_id=self.counterparty_node_id,
        )


@dataclass(frozen=True)
class ForceCloseChannel(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.FORCE_CLOSE_CHANNEL

    user_channel_id: str
    counterparty_node_id: str
    force_close_reason: str | None = None

    def to_request(self) -> BaseModel:
        return ForceCloseChannelRequest(
            user_channel_id=self.user_channel_id,
            counterparty_node_id=self.counterparty_node_id,
            force_close_reason=_blank_to_none(self.force_close_reason),
        )


@dataclass(frozen=True)
class SpliceIn(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.SPLICE_IN

    user_channel_id: str
    counterparty_node_id: str
    splice_amount_sats: int

    def to_request(self) -> BaseModel:
        return SpliceInRequest(
            user_channel_id=self.user_channel_id,
            counterparty_node_id=self.counterparty_node_id,
            splice_amount_sats=self.splice_amount_sats,
        )


@dataclass(frozen=True)
class SpliceOut(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.SPLICE_OUT

    user_channel_id: str
    counterparty_node_id: str
    splice_amount_sats: int
    address: str | None = None

    def to_request(self) -> BaseModel:
        return SpliceOutRequest(
            user_channel_id=self.user_channel_id,
            counterparty_node_id=self.counterparty_node_id,
            splice_amount_sats=self.splice_amount_sats,
            address=_blank_to_none(self.address),
        )


@dataclass(frozen=True)
class UpdateChannelConfig(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.UPDATE_CHANNEL_CONFIG

    user_channel_id: str
    counterparty_node_id: str
    forwarding_fee_proportional_millionths: int | None = None
    forwarding_fee_base_msat: int | None = None
    cltv_expiry_delta: int | None = None

    def to_request(self) -> BaseModel:
        return UpdateChannelConfigRequest(
            user_channel_id=self.user_channel_id,
            counterparty_node_id=self.counterparty_node_id,
            channel_config=ChannelConfigBody(
                forwarding_fee_proportional_millionths=self.forwarding_fee_proportional_millionths,
                forwarding_fee_base_msat=self.forwarding_fee_base_msat,
                cltv_expiry_delta=self.cltv_expiry_delta,
            ),
        )


@dataclass(frozen=True)
class ConnectPeer(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.CONNECT_PEER

    node_pubkey: str
    address: str
    persist: bool = False

    def to_request(self) -> BaseModel:
        return ConnectPeerRequest(node_pubkey=self.node_pubkey, address=self.address, persist=self.persist)


@dataclass(frozen=True)
class SendOnchain(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.ONCHAIN_SEND

    address: str
    amount_sats: int | None = None
    send_all: bool = False
    fee_rate_sat_per_vb: int | None = None

    def to_request(self) -> BaseModel:
        return OnchainSendRequest(
            address=self.address,
            amount_sats=self.amount_sats,
            send_all=True if self.send_all else None,
            fee_rate_sat_per_vb=self.fee_rate_sat_per_vb,
        )


@dataclass(frozen=True)
class ReceiveOnchain(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.ONCHAIN_RECEIVE


@dataclass(frozen=True)
class SendBolt11(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.BOLT11_SEND

    invoice: str
    amount_msat: int | None = None

    def to_request(self) -> BaseModel:
        return Bolt11SendRequest(invoice=self.invoice, amount_msat=self.amount_msat)


@dataclass(frozen=True)
class ReceiveBolt11(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.BOLT11_RECEIVE

    amount_msat: int | None = None
    description: str | None = None
    expiry_secs: int = DEFAULT_BOLT11_EXPIRY_SECS

    def to_request(self) -> BaseModel:
        description = _blank_to_none(self.description)
        return Bolt11ReceiveRequest(
            amount_msat=self.amount_msat,
            description=Bolt11Description(direct=description) if description else None,
            expiry_secs=self.expiry_secs,
        )


@dataclass(frozen=True)
class SendBolt12(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.BOLT12_SEND

    offer: str
    amount_msat: int | None = None
    quantity: int | None = None
    payer_note: str | None = None

    def to_request(self) -> BaseModel:
        return Bolt12SendRequest(
            offer=self.offer,
            amount_msat=self.amount_msat,
            quantity=self.quantity,
            payer_note=_blank_to_none(self.payer_note),
        )


@dataclass(frozen=True)
class ReceiveBolt12(ActionIntent):
    operation: ClassVar[OperationSpec] = Operations.BOLT12_RECEIVE

    description: str
    amount_msat: int | None = None
    expiry_secs: int | None = None
    quantity: int | None = None

    def to_request(self) -> BaseModel:
        return Bolt12ReceiveRequest(
            description=self.description,
            amount_msat=self.amount_msat,
            expiry_secs=self.expiry_secs,
            quantity=self.quantity,
        )


INTENT_TYPES: tuple[type[ActionIntent], ...] = (
    GetNodeInfo,
    GetBalances,
    ListChannels,
    GetPaymentDetails,
    OpenChannel,
    CloseChannel,
    ForceCloseChannel,
    SpliceIn,
    SpliceOut,
    UpdateChannelConfig,
    ConnectPeer,
    SendOnchain,
    ReceiveOnchain,
    SendBolt11,
    ReceiveBolt11,
    SendBolt12,
    ReceiveBolt12,
)


@dataclass(frozen=True)
class ActionResult:
    """Respuesta del servidor a un intent ya despachado."""

    intent: str
    operation: str
    data: dict[str, Any]

    def _text(self, key: str) -> str | None:
        value = self.data.get(key)
        return value if isinstance(value, str) and value else None

    @property
    def txid(self) -> str | None:
        return self._text("txid")

    @property
    def payment_id(self) -> str | None:
        return self._text("payment_id")

    @property
    def user_channel_id(self) -> str | None:
        return self._text("user_channel_id")

    @property
    def invoice(self) -> str | None:
        return self._text("invoice")

    @property
    def offer(self) -> str | None:
        return self._text("offer")

    @property
    def address(self) -> str | None:
        return self._text("address")

    def payment_record(self) -> RequestOutcome[PaymentRecord | None]:
        """`payment` de getPaymentDetails como `PaymentRecord` (None si no existe)."""

        raw = self.data.get("payment")
        if raw is None:
            return Ok(None)
        try:
            return Ok(PaymentRecord.model_validate(raw))
        except ValidationError as exc:
            return Fail.of(ErrorKind.PROTOCOL, f"unexpected payment details response: {exc.error_count()} errors")
