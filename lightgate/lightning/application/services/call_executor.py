"""Resilient execution of state-changing calls (payments, channel opening).

Remote failures are classified and mapped to typed results; callers never
see a ``RemoteError`` from these calls. Retryable failures go through the
bounded fixed-delay retry loop first.
"""

from dataclasses import replace

from lightgate.exceptions import (
    ClassifiedRemoteError,
    PermanentRemoteError,
    RemoteError,
    TransientRemoteError,
    UnclassifiedRemoteError,
)
from lightgate.utils.logging import CorrelationScope, get_logger
from lightgate.utils.retry import FIXED_DELAY_RETRY, RetryConfig, retry_async

from ...domain.enums import ErrorClassification, OpenChannelResult, RemoteOperation
from ...domain.error_classifier import classify_exception
from ...domain.value_objects import (
    LightMoney,
    OpenChannelRequest,
    OpenChannelResponse,
    PayDetails,
    PayResponse,
)
from ...infrastructure import wire
from ...infrastructure.rest_gateway import LndRestGateway

logger = get_logger(__name__)

_OPEN_CHANNEL_RESULTS = {
    ErrorClassification.PEER_OFFLINE: OpenChannelResult.PEER_NOT_CONNECTED,
    ErrorClassification.INSUFFICIENT_FUNDS: OpenChannelResult.CANNOT_AFFORD_FUNDING,
    ErrorClassification.TOO_MANY_PENDING: OpenChannelResult.NEED_MORE_CONF,
}


def classify(error: RemoteError, operation: RemoteOperation) -> ClassifiedRemoteError:
    """Wrap a remote error in the exception type matching its classification."""
    classification = classify_exception(error, operation)
    if classification.is_retryable:
        return TransientRemoteError(error, classification)
    if classification is ErrorClassification.UNCLASSIFIED:
        return UnclassifiedRemoteError(error, classification)
    return PermanentRemoteError(error, classification)


class ResilientCallExecutor:
    """Runs Pay and OpenChannel against the node with classification and retry."""

    def __init__(self, gateway: LndRestGateway, retry_config: RetryConfig = FIXED_DELAY_RETRY):
        """Initialize the executor.

        Args:
            gateway: Remote gateway issuing the calls
            retry_config: Bound and delay for retryable failures; only
                ``TransientRemoteError`` is ever retried
        """
        self.gateway = gateway
        self.retry_config = replace(retry_config, retryable_exceptions=(TransientRemoteError,))

    async def pay(self, bolt11: str) -> PayResponse:
        """Pay a BOLT-11 payment request."""
        with CorrelationScope():
            return await self._pay(bolt11)

    async def _pay(self, bolt11: str) -> PayResponse:
        request = wire.SendRequest(payment_request=bolt11)

        async def attempt() -> PayResponse:
            try:
                response = await self.gateway.send_payment_sync(request)
            except RemoteError as e:
                raise classify(e, RemoteOperation.PAY) from e

            if not response.payment_error and response.payment_preimage is not None:
                route = response.payment_route
                if route is None:
                    return PayResponse.ok()
                return PayResponse.ok(
                    PayDetails(
                        total_amount=LightMoney.milli_satoshis(route.total_amt_msat),
                        fee_amount=LightMoney.milli_satoshis(route.total_fees_msat),
                    )
                )

            raise classify(RemoteError(response.payment_error), RemoteOperation.PAY)

        try:
            result = await retry_async(attempt, self.retry_config)
        except TransientRemoteError as e:
            logger.warning("pay_retries_exhausted", error=e.message)
            return PayResponse.error(e.message)
        except ClassifiedRemoteError as e:
            result = self._pay_response(e)

        logger.info("pay_completed", result=str(result.result), error=result.error_message)
        return result

    @staticmethod
    def _pay_response(error: ClassifiedRemoteError) -> PayResponse:
        if error.classification is ErrorClassification.ALREADY_PAID:
            return PayResponse.ok()
        if error.classification is ErrorClassification.NO_ROUTE:
            return PayResponse.could_not_find_route(error.message)
        return PayResponse.error(error.message)

    async def open_channel(self, request: OpenChannelRequest) -> OpenChannelResponse:
        """Open a channel, funded from the node's on-chain wallet.

        Raises:
            ValueError: The request is not sane
            UnclassifiedRemoteError: The node failed in a way no rule covers
        """
        with CorrelationScope():
            return await self._open_channel(request)

    async def _open_channel(self, request: OpenChannelRequest) -> OpenChannelResponse:
        request.assert_is_sane()
        node_pubkey = request.node_info.node_id  # type: ignore[union-attr]
        wire_request = wire.OpenChannelRequest(
            node_pubkey_string=node_pubkey,
            local_funding_amount=request.channel_amount.sat,  # type: ignore[union-attr]
            sat_per_byte=request.fee_rate_sat_per_byte,
        )

        async def attempt() -> OpenChannelResponse:
            try:
                await self.gateway.open_channel_sync(wire_request)
            except RemoteError as e:
                raise classify(e, RemoteOperation.OPEN_CHANNEL) from e
            return OpenChannelResponse(OpenChannelResult.OK)

        try:
            response = await retry_async(attempt, self.retry_config)
        except TransientRemoteError as e:
            logger.warning("open_channel_retries_exhausted", node=node_pubkey, error=e.message)
            return OpenChannelResponse(OpenChannelResult.NEED_MORE_CONF)
        except PermanentRemoteError as e:
            response = await self._open_channel_response(e, node_pubkey)

        logger.info("open_channel_completed", node=node_pubkey, result=str(response.result))
        return response

    async def _open_channel_response(
        self, error: PermanentRemoteError, node_pubkey: str
    ) -> OpenChannelResponse:
        if error.classification is ErrorClassification.DUPLICATE_OR_PENDING:
            # Either still confirming or already open: ask the node which
            pending = await self.gateway.pending_channels()
            if pending.has_pending_open_to(node_pubkey):
                return OpenChannelResponse(OpenChannelResult.NEED_MORE_CONF)
            return OpenChannelResponse(OpenChannelResult.ALREADY_EXISTS)

        result = _OPEN_CHANNEL_RESULTS.get(error.classification)
        if result is None:
            # Pay-only classifications cannot occur here; treat as unclassified
            raise UnclassifiedRemoteError(error.remote, error.classification) from error
        return OpenChannelResponse(result)
