"""LND client over the REST API.

Implements ``LightningClientProtocol``, the node-independent surface used by
the payment platform: invoices, payments, channels, node information and the
settlement notification stream.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import httpx

from lightgate.exceptions import RemoteError
from lightgate.utils.config import Settings, get_settings
from lightgate.utils.logging import get_logger
from lightgate.utils.retry import FIXED_DELAY_RETRY, RetryConfig, fixed_delay

from ..application.services.call_executor import ResilientCallExecutor
from ..domain.enums import ConnectionResult, InvoiceStatus
from ..domain.value_objects import (
    CreateInvoiceParams,
    Invoice,
    LightMoney,
    LightningChannel,
    NodeInformation,
    NodeUri,
    OpenChannelRequest,
    OpenChannelResponse,
    PayResponse,
)
from .invoice_stream import DEFAULT_QUEUE_CAPACITY, InvoiceStreamSession
from .mapper import invoice_id_from_hash, to_channel, to_invoice, to_node_information
from .rest_gateway import LndRestGateway
from .wire import AddInvoiceRequest, ConnectPeerRequest, LightningAddress

logger = get_logger(__name__)


class LightningClientProtocol:
    """Protocol defining the Lightning client interface."""

    async def create_invoice(
        self,
        amount: LightMoney,
        description: str,
        expiry: timedelta,
        *,
        description_hash: bytes | None = None,
        private_route_hints: bool = False,
    ) -> Invoice:
        """Create a new Lightning invoice."""
        raise NotImplementedError("Subclasses must implement create_invoice")

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        """Look up an invoice by id; None if unknown or cancelled."""
        raise NotImplementedError("Subclasses must implement get_invoice")

    async def cancel_invoice(self, invoice_id: str) -> None:
        """Cancel an open invoice."""
        raise NotImplementedError("Subclasses must implement cancel_invoice")

    async def pay(self, bolt11: str) -> PayResponse:
        """Pay a BOLT-11 payment request."""
        raise NotImplementedError("Subclasses must implement pay")

    async def open_channel(self, request: OpenChannelRequest) -> OpenChannelResponse:
        """Open a channel to another node."""
        raise NotImplementedError("Subclasses must implement open_channel")

    async def list_channels(self) -> list[LightningChannel]:
        """List all channels for this node."""
        raise NotImplementedError("Subclasses must implement list_channels")

    async def get_info(self) -> NodeInformation:
        """Get information about this Lightning node."""
        raise NotImplementedError("Subclasses must implement get_info")

    async def get_deposit_address(self) -> str:
        """Get a fresh on-chain address funding the node wallet."""
        raise NotImplementedError("Subclasses must implement get_deposit_address")

    async def connect_to(self, node: NodeUri) -> ConnectionResult:
        """Connect to a peer."""
        raise NotImplementedError("Subclasses must implement connect_to")

    async def listen(self) -> InvoiceStreamSession:
        """Start listening for invoice notifications."""
        raise NotImplementedError("Subclasses must implement listen")

    async def close(self) -> None:
        """Close the client connection."""
        raise NotImplementedError("Subclasses must implement close")


class LndClient(LightningClientProtocol):
    """LND REST client.

    One-shot calls map node responses straight to domain objects; ``pay`` and
    ``open_channel`` go through ``ResilientCallExecutor``; ``listen`` opens a
    dedicated stream connection per session.
    """

    def __init__(
        self,
        gateway: LndRestGateway,
        retry_config: RetryConfig = FIXED_DELAY_RETRY,
        invoice_queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
    ):
        self.gateway = gateway
        self.executor = ResilientCallExecutor(gateway, retry_config)
        self.invoice_queue_capacity = invoice_queue_capacity
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "LndClient":
        settings = settings or get_settings()
        return cls(
            LndRestGateway.from_settings(settings, transport=transport),
            retry_config=fixed_delay(settings.retry_attempts, settings.retry_delay_seconds),
            invoice_queue_capacity=settings.invoice_queue_capacity,
        )

    async def create_invoice(
        self,
        amount: LightMoney,
        description: str,
        expiry: timedelta,
        *,
        description_hash: bytes | None = None,
        private_route_hints: bool = False,
    ) -> Invoice:
        """Create a new Lightning invoice via AddInvoice."""
        return await self.create_invoice_from_params(
            CreateInvoiceParams(
                amount=amount,
                description=description,
                expiry=expiry,
                description_hash=description_hash,
                private_route_hints=private_route_hints,
            )
        )

    async def create_invoice_from_params(self, params: CreateInvoiceParams) -> Invoice:
        request = AddInvoiceRequest(
            value_msat=params.amount.msat,
            memo=params.description,
            description_hash=params.description_hash,
            expiry=round(params.expiry.total_seconds()),
            private=params.private_route_hints,
        )
        response = await self.gateway.add_invoice(request)

        invoice = Invoice(
            id=invoice_id_from_hash(response.r_hash),
            amount=params.amount,
            bolt11=response.payment_request,
            status=InvoiceStatus.UNPAID,
            expires_at=datetime.now(UTC) + params.expiry,
        )
        logger.info("invoice_created", invoice_id=invoice.id, amount_msat=invoice.amount.msat)
        return invoice

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        """Look up an invoice; None if not found, malformed id, or cancelled."""
        try:
            wire_invoice = await self.gateway.lookup_invoice(invoice_id)
        except RemoteError as e:
            if e.status_code == 404:
                return None
            if e.status_code == 500 and e.message.lower().startswith("encoding/hex"):
                return None
            raise

        if wire_invoice.is_canceled:
            return None
        return to_invoice(wire_invoice)

    async def cancel_invoice(self, invoice_id: str) -> None:
        wire_invoice = await self.gateway.lookup_invoice(invoice_id)
        payment_hash = wire_invoice.r_hash or bytes.fromhex(invoice_id)
        await self.gateway.cancel_invoice(payment_hash)
        logger.info("invoice_cancelled", invoice_id=invoice_id)

    async def pay(self, bolt11: str) -> PayResponse:
        return await self.executor.pay(bolt11)

    async def open_channel(self, request: OpenChannelRequest) -> OpenChannelResponse:
        return await self.executor.open_channel(request)

    async def list_channels(self) -> list[LightningChannel]:
        response = await self.gateway.list_channels()
        return [to_channel(c) for c in response.channels or []]

    async def get_info(self) -> NodeInformation:
        return to_node_information(await self.gateway.get_info())

    async def get_deposit_address(self) -> str:
        response = await self.gateway.new_witness_address()
        return response.address

    async def connect_to(self, node: NodeUri) -> ConnectionResult:
        request = ConnectPeerRequest(
            addr=LightningAddress(pubkey=node.node_id, host=node.address),
        )
        try:
            await self.gateway.connect_peer(request)
        except RemoteError as e:
            if e.message.startswith("already connected to peer"):
                return ConnectionResult.OK
            logger.warning("connect_peer_failed", node=str(node), error=e.message)
            return ConnectionResult.COULD_NOT_CONNECT
        return ConnectionResult.OK

    async def listen(self) -> InvoiceStreamSession:
        session = InvoiceStreamSession(self.gateway, capacity=self.invoice_queue_capacity)
        return session.start()

    async def close(self) -> None:
        """Close the request/response connection pool.

        Stream sessions own their connections and are released separately.
        """
        async with self._lock:
            await self.gateway.aclose()
