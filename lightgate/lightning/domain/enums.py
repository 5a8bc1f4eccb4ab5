"""Domain enums for Lightning Network integration."""

from enum import Enum


class InvoiceStatus(str, Enum):
    """Lightning invoice status.

    Never stored: derived each time an invoice is observed.
        UNPAID → PAID (settled by the node)
        UNPAID → EXPIRED (expiry passed without settlement)
    """

    UNPAID = "unpaid"
    PAID = "paid"
    EXPIRED = "expired"

    def __str__(self) -> str:
        return self.value


class PayResult(str, Enum):
    """Outcome of paying a BOLT-11 payment request."""

    OK = "ok"
    COULD_NOT_FIND_ROUTE = "could_not_find_route"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class OpenChannelResult(str, Enum):
    """Outcome of opening a channel."""

    OK = "ok"
    PEER_NOT_CONNECTED = "peer_not_connected"
    CANNOT_AFFORD_FUNDING = "cannot_afford_funding"
    NEED_MORE_CONF = "need_more_conf"  # Pending open, or node not ready yet
    ALREADY_EXISTS = "already_exists"

    def __str__(self) -> str:
        return self.value


class ConnectionResult(str, Enum):
    """Outcome of connecting to a peer."""

    OK = "ok"
    COULD_NOT_CONNECT = "could_not_connect"

    def __str__(self) -> str:
        return self.value


class RemoteOperation(str, Enum):
    """Operation a remote error was reported for (scopes classifier rules)."""

    ANY = "any"
    PAY = "pay"
    OPEN_CHANNEL = "open_channel"

    def __str__(self) -> str:
        return self.value


class ErrorClassification(str, Enum):
    """Closed set of remote error categories."""

    TRANSIENT = "transient"  # Node still syncing
    TOO_EARLY = "too_early"  # Channels cannot be created yet
    PEER_OFFLINE = "peer_offline"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    DUPLICATE_OR_PENDING = "duplicate_or_pending"  # Code 177
    TOO_MANY_PENDING = "too_many_pending"
    ALREADY_PAID = "already_paid"  # Pay only
    NO_ROUTE = "no_route"  # Pay only
    UNCLASSIFIED = "unclassified"

    def __str__(self) -> str:
        return self.value

    @property
    def is_retryable(self) -> bool:
        """Whether the failure is expected to resolve with time."""
        return self in (ErrorClassification.TRANSIENT, ErrorClassification.TOO_EARLY)
