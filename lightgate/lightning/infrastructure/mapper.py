"""Conversion of LND wire models into domain value objects."""

from datetime import UTC, datetime

from lightgate.utils.logging import get_logger

from ..domain.enums import InvoiceStatus
from ..domain.value_objects import (
    Invoice,
    LightMoney,
    LightningChannel,
    NodeInformation,
    NodeUri,
    OutPoint,
)
from .wire import Channel, GetInfoResponse, LnrpcInvoice

logger = get_logger(__name__)


def invoice_id_from_hash(payment_hash: bytes) -> str:
    """Invoice id: lowercase hex of the raw payment hash."""
    return payment_hash.hex()


def from_unix(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, UTC)


def derive_invoice_status(
    settled: bool, expires_at: datetime, now: datetime | None = None
) -> InvoiceStatus:
    """Derive the status of an invoice at observation time.

    Settlement takes priority over expiry; an unsettled invoice whose expiry
    is strictly in the past is expired.
    """
    if settled:
        return InvoiceStatus.PAID
    now = now or datetime.now(UTC)
    if expires_at < now:
        return InvoiceStatus.EXPIRED
    return InvoiceStatus.UNPAID


def to_invoice(wire: LnrpcInvoice, now: datetime | None = None) -> Invoice:
    """Map a node invoice to the domain ``Invoice``.

    Timestamps come from the node's clock; only the expiry comparison uses
    the local clock (``now``).

    Raises:
        ValueError: If the invoice carries no payment hash
    """
    if not wire.r_hash:
        raise ValueError("Invoice without r_hash")

    expires_at = from_unix(wire.creation_date + wire.expiry)
    status = derive_invoice_status(wire.settled, expires_at, now)

    return Invoice(
        id=invoice_id_from_hash(wire.r_hash),
        amount=LightMoney.milli_satoshis(wire.value_msat),
        amount_received=(
            LightMoney.milli_satoshis(wire.amt_paid_msat)
            if wire.amt_paid_msat is not None
            else None
        ),
        bolt11=wire.payment_request,
        status=status,
        expires_at=expires_at,
        paid_at=from_unix(wire.settle_date) if status is InvoiceStatus.PAID else None,
    )


def to_channel(wire: Channel) -> LightningChannel:
    return LightningChannel(
        remote_node=wire.remote_pubkey,
        is_public=not (wire.private or False),
        is_active=wire.active or False,
        capacity=LightMoney.satoshis(wire.capacity),
        local_balance=LightMoney.satoshis(wire.local_balance),
        channel_point=OutPoint.parse(wire.channel_point),
    )


def to_node_information(wire: GetInfoResponse) -> NodeInformation:
    uris: list[NodeUri] = []
    for uri in wire.uris or []:
        parsed = NodeUri.try_parse(uri)
        if parsed is None:
            logger.debug("node_uri_skipped", uri=uri)
            continue
        uris.append(parsed)
    return NodeInformation(block_height=wire.block_height or 0, node_info_list=tuple(uris))
