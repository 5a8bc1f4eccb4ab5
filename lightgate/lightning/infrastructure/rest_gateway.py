"""HTTP gateway to the LND REST API.

Thin layer over ``httpx.AsyncClient``: authenticates with the macaroon,
verifies the node's self-signed certificate, decodes responses into wire
models and turns error bodies into ``RemoteError``.
"""

import ssl
from pathlib import Path
from typing import Any

import httpx

from lightgate.exceptions import GatewayConnectionError, RemoteError
from lightgate.utils.config import Settings
from lightgate.utils.logging import get_logger

from .wire import (
    AddInvoiceRequest,
    AddInvoiceResponse,
    CancelInvoiceRequest,
    ConnectPeerRequest,
    ErrorObject,
    GetInfoResponse,
    ListChannelsResponse,
    LnrpcInvoice,
    NewAddressResponse,
    OpenChannelRequest,
    PendingChannelsResponse,
    SendRequest,
    SendResponse,
)

logger = get_logger(__name__)

MACAROON_HEADER = "Grpc-Metadata-macaroon"
SUBSCRIBE_INVOICES_PATH = "/v1/invoices/subscribe"
WITNESS_PUBKEY_HASH = 0


class LndRestGateway:
    """Request/response calls against one LND node."""

    def __init__(
        self,
        base_url: str,
        macaroon_hex: str,
        tls_cert_path: Path | None = None,
        allow_insecure: bool = False,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the gateway.

        Args:
            base_url: LND REST base URL, e.g. ``https://127.0.0.1:8080``
            macaroon_hex: Hex encoded macaroon sent with every request
            tls_cert_path: Node certificate used as trust anchor
            allow_insecure: Disable TLS verification entirely
            timeout_seconds: Timeout for request/response calls
            transport: Optional transport override (tests, proxies)
        """
        self.base_url = base_url.rstrip("/")
        self._macaroon_hex = macaroon_hex
        self._tls_cert_path = tls_cert_path
        self._allow_insecure = allow_insecure
        self._transport = transport
        self._client = self._build_client(httpx.Timeout(timeout_seconds, connect=10.0))

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "LndRestGateway":
        return cls(
            base_url=settings.lnd_rest_url,
            macaroon_hex=settings.macaroon(),
            tls_cert_path=settings.tls_cert_path,
            allow_insecure=settings.allow_insecure,
            timeout_seconds=settings.request_timeout_seconds,
            transport=transport,
        )

    def _verify(self) -> ssl.SSLContext | bool:
        if self._allow_insecure:
            return False
        if self._tls_cert_path is not None:
            return ssl.create_default_context(cafile=str(self._tls_cert_path))
        return True

    def _build_client(self, timeout: httpx.Timeout) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={MACAROON_HEADER: self._macaroon_hex, "Accept": "application/json"},
            verify=self._verify(),
            timeout=timeout,
            transport=self._transport,
        )

    def open_stream_client(self) -> httpx.AsyncClient:
        """New client for a long-lived stream: no read timeout, owned by the caller."""
        return self._build_client(httpx.Timeout(None, connect=10.0))

    @staticmethod
    def remote_error(response: httpx.Response) -> RemoteError:
        """Build a ``RemoteError`` from an error response body."""
        try:
            error = ErrorObject.model_validate(response.json())
            message = error.error or response.reason_phrase
            code = error.code
        except ValueError:
            message = response.text or response.reason_phrase
            code = 0
        return RemoteError(message, code=code, status_code=response.status_code)

    def connection_error(self, error: httpx.TransportError, path: str) -> GatewayConnectionError:
        """Wrap a transport failure (connect, TLS, timeout, dropped stream)."""
        logger.error("lnd_connection_error", path=path, error=str(error))
        return GatewayConnectionError(
            f"Cannot reach LND at {self.base_url}",
            context={"path": path},
            original_error=error,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TransportError as e:
            raise self.connection_error(e, path) from e

        if response.is_error:
            error = self.remote_error(response)
            logger.info(
                "lnd_remote_error",
                path=path,
                status_code=response.status_code,
                code=error.code,
                error=error.message,
            )
            raise error

        return response.json()

    async def add_invoice(self, request: AddInvoiceRequest) -> AddInvoiceResponse:
        data = await self._request(
            "POST", "/v1/invoices", json=request.model_dump(mode="json", exclude_none=True)
        )
        return AddInvoiceResponse.model_validate(data)

    async def lookup_invoice(self, r_hash_hex: str) -> LnrpcInvoice:
        data = await self._request("GET", f"/v1/invoice/{r_hash_hex}")
        return LnrpcInvoice.model_validate(data)

    async def cancel_invoice(self, payment_hash: bytes) -> None:
        request = CancelInvoiceRequest(payment_hash=payment_hash)
        await self._request("POST", "/v2/invoices/cancel", json=request.model_dump(mode="json"))

    async def send_payment_sync(self, request: SendRequest) -> SendResponse:
        data = await self._request(
            "POST", "/v1/channels/transactions", json=request.model_dump(mode="json")
        )
        return SendResponse.model_validate(data)

    async def open_channel_sync(self, request: OpenChannelRequest) -> dict[str, Any]:
        return await self._request(
            "POST", "/v1/channels", json=request.model_dump(mode="json", exclude_none=True)
        )

    async def list_channels(self) -> ListChannelsResponse:
        data = await self._request("GET", "/v1/channels")
        return ListChannelsResponse.model_validate(data)

    async def pending_channels(self) -> PendingChannelsResponse:
        data = await self._request("GET", "/v1/channels/pending")
        return PendingChannelsResponse.model_validate(data)

    async def get_info(self) -> GetInfoResponse:
        data = await self._request("GET", "/v1/getinfo")
        return GetInfoResponse.model_validate(data)

    async def new_witness_address(self) -> NewAddressResponse:
        data = await self._request("GET", "/v1/newaddress", params={"type": WITNESS_PUBKEY_HASH})
        return NewAddressResponse.model_validate(data)

    async def connect_peer(self, request: ConnectPeerRequest) -> None:
        await self._request("POST", "/v1/peers", json=request.model_dump(mode="json"))

    async def aclose(self) -> None:
        await self._client.aclose()
