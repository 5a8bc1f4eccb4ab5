"""Domain value objects for Lightning Network integration.

Value Objects in DDD:
- Immutable (frozen dataclasses)
- No identity (equality based on attributes)
- Describe characteristics, not entities
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from .enums import InvoiceStatus, OpenChannelResult, PayResult

MSAT_PER_SAT = 1000
SAT_PER_BTC = 100_000_000
DEFAULT_LIGHTNING_PORT = 9735

_PAYMENT_HASH_RE = re.compile(r"^[0-9a-f]{64}$")
_PUBKEY_RE = re.compile(r"^(02|03)[0-9a-f]{64}$")
_TXID_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True, order=True)
class LightMoney:
    """Amount of money on the Lightning Network, held in millisatoshis."""

    msat: int

    def __post_init__(self) -> None:
        if isinstance(self.msat, bool) or not isinstance(self.msat, int):
            raise TypeError(f"msat must be an int, got {type(self.msat).__name__}")
        if self.msat < 0:
            raise ValueError(f"Amount cannot be negative, got {self.msat}")

    @classmethod
    def milli_satoshis(cls, msat: int) -> "LightMoney":
        return cls(int(msat))

    @classmethod
    def satoshis(cls, sat: int | Decimal) -> "LightMoney":
        msat = Decimal(sat) * MSAT_PER_SAT
        if msat != msat.to_integral_value():
            raise ValueError(f"Satoshi amount has sub-millisatoshi precision: {sat}")
        return cls(int(msat))

    @property
    def sat(self) -> int:
        """Whole satoshis (truncated)."""
        return self.msat // MSAT_PER_SAT

    @property
    def btc(self) -> Decimal:
        return Decimal(self.msat) / (MSAT_PER_SAT * SAT_PER_BTC)

    def __add__(self, other: "LightMoney") -> "LightMoney":
        return LightMoney(self.msat + other.msat)

    def __str__(self) -> str:
        return f"{self.msat} msat"


@dataclass(frozen=True)
class Invoice:
    """Lightning invoice as observed on the node.

    ``id`` is the lowercase hex encoding of the payment hash. ``status`` is a
    snapshot taken at observation time, not stored state: observing the same
    unpaid invoice after its expiry yields EXPIRED.
    """

    id: str
    amount: LightMoney
    bolt11: str
    status: InvoiceStatus
    expires_at: datetime
    amount_received: LightMoney | None = None
    paid_at: datetime | None = None

    def __post_init__(self) -> None:
        if not _PAYMENT_HASH_RE.match(self.id):
            raise ValueError(f"Invalid invoice id (payment hash): {self.id}")
        if self.status is InvoiceStatus.PAID and self.paid_at is None:
            raise ValueError("Paid invoice must carry paid_at")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "amount_msat": self.amount.msat,
            "amount_received_msat": self.amount_received.msat if self.amount_received else None,
            "bolt11": self.bolt11,
            "status": str(self.status),
            "expires_at": self.expires_at.isoformat(),
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


@dataclass(frozen=True)
class CreateInvoiceParams:
    """Parameters for creating an invoice."""

    amount: LightMoney
    description: str
    expiry: timedelta
    description_hash: bytes | None = None
    private_route_hints: bool = False

    def __post_init__(self) -> None:
        if self.expiry.total_seconds() <= 0:
            raise ValueError(f"Expiry must be positive, got {self.expiry}")
        if self.description_hash is not None and len(self.description_hash) != 32:
            raise ValueError("description_hash must be 32 bytes")


@dataclass(frozen=True)
class PayDetails:
    """Amounts of a successful payment, from the route taken."""

    total_amount: LightMoney
    fee_amount: LightMoney


@dataclass(frozen=True)
class PayResponse:
    """Typed result of a payment attempt."""

    result: PayResult
    details: PayDetails | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls, details: PayDetails | None = None) -> "PayResponse":
        return cls(PayResult.OK, details=details)

    @classmethod
    def could_not_find_route(cls, message: str) -> "PayResponse":
        return cls(PayResult.COULD_NOT_FIND_ROUTE, error_message=message)

    @classmethod
    def error(cls, message: str) -> "PayResponse":
        return cls(PayResult.ERROR, error_message=message)


@dataclass(frozen=True)
class NodeUri:
    """Public key and network address of a Lightning node (``pubkey@host:port``)."""

    node_id: str
    host: str
    port: int = DEFAULT_LIGHTNING_PORT

    def __post_init__(self) -> None:
        if not _PUBKEY_RE.match(self.node_id):
            raise ValueError(f"Invalid node public key: {self.node_id}")
        if not self.host:
            raise ValueError("Host is required")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")

    @classmethod
    def parse(cls, uri: str) -> "NodeUri":
        """Parse ``pubkey@host[:port]``; IPv6 hosts must be bracketed."""
        node_id, sep, address = uri.strip().partition("@")
        if not sep:
            raise ValueError(f"Missing '@' in node URI: {uri}")

        host, port = address, DEFAULT_LIGHTNING_PORT
        if address.startswith("["):
            end = address.find("]")
            if end < 0:
                raise ValueError(f"Unterminated IPv6 address: {uri}")
            host, rest = address[1:end], address[end + 1 :]
            if rest:
                if not rest.startswith(":"):
                    raise ValueError(f"Invalid address: {uri}")
                port = int(rest[1:])
        elif ":" in address:
            host, _, port_str = address.rpartition(":")
            port = int(port_str)

        return cls(node_id=node_id.lower(), host=host, port=port)

    @classmethod
    def try_parse(cls, uri: str) -> "NodeUri | None":
        try:
            return cls.parse(uri)
        except ValueError:
            return None

    @property
    def address(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.node_id}@{self.address}"


@dataclass(frozen=True)
class OpenChannelRequest:
    """Request to open a channel to ``node_info``, funded with ``channel_amount``."""

    node_info: NodeUri | None
    channel_amount: LightMoney | None
    fee_rate_sat_per_byte: int | None = None

    def assert_is_sane(self) -> None:
        """Reject obviously invalid requests before touching the network."""
        if self.node_info is None:
            raise ValueError("node_info is required")
        if self.channel_amount is None or self.channel_amount.sat <= 0:
            raise ValueError("channel_amount must be a positive amount of satoshis")
        if self.fee_rate_sat_per_byte is not None and self.fee_rate_sat_per_byte < 0:
            raise ValueError("fee_rate_sat_per_byte cannot be negative")


@dataclass(frozen=True)
class OpenChannelResponse:
    """Typed result of a channel opening attempt."""

    result: OpenChannelResult


@dataclass(frozen=True)
class OutPoint:
    """Funding transaction output of a channel."""

    txid: str
    index: int

    def __post_init__(self) -> None:
        if not _TXID_RE.match(self.txid):
            raise ValueError(f"Invalid txid: {self.txid}")
        if self.index < 0:
            raise ValueError(f"Invalid output index: {self.index}")

    @classmethod
    def parse(cls, channel_point: str) -> "OutPoint":
        txid, sep, index = channel_point.partition(":")
        if not sep:
            raise ValueError(f"Invalid channel point: {channel_point}")
        return cls(txid=txid.lower(), index=int(index))

    def __str__(self) -> str:
        return f"{self.txid}:{self.index}"


@dataclass(frozen=True)
class LightningChannel:
    """Channel of this node."""

    remote_node: str
    is_public: bool
    is_active: bool
    capacity: LightMoney
    local_balance: LightMoney
    channel_point: OutPoint

    @property
    def inbound_capacity(self) -> LightMoney:
        """How much this node can still receive over the channel."""
        return LightMoney(max(self.capacity.msat - self.local_balance.msat, 0))


@dataclass(frozen=True)
class NodeInformation:
    """What the node reports about itself."""

    block_height: int
    node_info_list: tuple[NodeUri, ...] = field(default_factory=tuple)
