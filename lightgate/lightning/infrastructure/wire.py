"""Wire models of the LND REST API (grpc-gateway JSON).

grpc-gateway encodes 64-bit integers as strings and ``bytes`` fields as
base64; both are decoded here so the rest of the package sees plain ints and
raw bytes. Unknown fields are ignored.
"""

import base64
import binascii
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator


def decode_base64(value: Any) -> bytes | None:
    """Decode a grpc-gateway ``bytes`` field (standard or url-safe base64)."""
    if value is None or isinstance(value, bytes):
        return value or None
    if not isinstance(value, str):
        raise ValueError(f"Expected base64 string, got {type(value).__name__}")
    text = value.strip()
    if not text:
        return None
    text += "=" * (-len(text) % 4)
    try:
        if "-" in text or "_" in text:
            return base64.urlsafe_b64decode(text)
        return base64.b64decode(text, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 value: {value!r}") from e


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# =============================================================================
# Invoices
# =============================================================================


class LnrpcInvoice(WireModel):
    """Invoice as returned by LookupInvoice and the subscription stream."""

    memo: str = ""
    r_hash: bytes | None = None
    value_msat: int = 0
    settled: bool = False
    creation_date: int = 0
    settle_date: int = 0
    payment_request: str = ""
    expiry: int = 0
    amt_paid_msat: int | None = Field(
        default=None, validation_alias=AliasChoices("amt_paid_msat", "amt_paid")
    )
    state: str | None = None
    private: bool = False

    @field_validator("r_hash", mode="before")
    @classmethod
    def _decode_hash(cls, value: Any) -> bytes | None:
        return decode_base64(value)

    @field_validator("amt_paid_msat", "state", mode="before")
    @classmethod
    def _optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("value_msat", "creation_date", "settle_date", "expiry", mode="before")
    @classmethod
    def _blank_is_zero(cls, value: Any) -> Any:
        return 0 if _blank_to_none(value) is None else value

    @property
    def is_canceled(self) -> bool:
        return (self.state or "").upper() == "CANCELED"


class AddInvoiceRequest(WireModel):
    value_msat: int
    memo: str = ""
    description_hash: bytes | None = None
    expiry: int
    private: bool = False

    @field_serializer("description_hash")
    def _encode_hash(self, value: bytes | None) -> str | None:
        return base64.b64encode(value).decode() if value else None


class AddInvoiceResponse(WireModel):
    r_hash: bytes
    payment_request: str
    add_index: int | None = None

    @field_validator("r_hash", mode="before")
    @classmethod
    def _decode_hash(cls, value: Any) -> bytes | None:
        return decode_base64(value)


class CancelInvoiceRequest(WireModel):
    payment_hash: bytes

    @field_serializer("payment_hash")
    def _encode_hash(self, value: bytes) -> str:
        return base64.b64encode(value).decode()


# =============================================================================
# Payments
# =============================================================================


class SendRequest(WireModel):
    payment_request: str


class Route(WireModel):
    total_amt_msat: int = 0
    total_fees_msat: int = 0


class SendResponse(WireModel):
    payment_error: str = ""
    payment_preimage: bytes | None = None
    payment_route: Route | None = None

    @field_validator("payment_preimage", mode="before")
    @classmethod
    def _decode_preimage(cls, value: Any) -> bytes | None:
        return decode_base64(value)

    @field_validator("payment_error", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value


# =============================================================================
# Channels
# =============================================================================


class OpenChannelRequest(WireModel):
    node_pubkey_string: str
    local_funding_amount: int
    sat_per_byte: int | None = None


class Channel(WireModel):
    remote_pubkey: str
    channel_point: str
    capacity: int = 0
    local_balance: int = 0
    active: bool | None = None
    private: bool | None = None


class ListChannelsResponse(WireModel):
    channels: list[Channel] | None = None


class PendingChannel(WireModel):
    remote_node_pub: str = ""


class PendingOpenChannel(WireModel):
    channel: PendingChannel | None = None


class PendingChannelsResponse(WireModel):
    pending_open_channels: list[PendingOpenChannel] | None = None

    def has_pending_open_to(self, node_pubkey: str) -> bool:
        """Whether a pending-open channel with ``node_pubkey`` exists."""
        return any(
            p.channel is not None and p.channel.remote_node_pub == node_pubkey
            for p in self.pending_open_channels or []
        )


# =============================================================================
# Node
# =============================================================================


class GetInfoResponse(WireModel):
    identity_pubkey: str = ""
    alias: str = ""
    block_height: int | None = None
    synced_to_chain: bool = False
    uris: list[str] | None = None


class NewAddressResponse(WireModel):
    address: str


class LightningAddress(WireModel):
    pubkey: str
    host: str


class ConnectPeerRequest(WireModel):
    addr: LightningAddress
    perm: bool = False


# =============================================================================
# Errors and stream frames
# =============================================================================


class ErrorObject(WireModel):
    """``{code, error}``; newer gateways send ``message`` / ``grpc_code`` instead."""

    code: int = Field(default=0, validation_alias=AliasChoices("code", "grpc_code"))
    error: str = Field(default="", validation_alias=AliasChoices("error", "message"))
