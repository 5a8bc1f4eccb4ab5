"""Tests for the invoice settlement stream: decoding, queue and session lifecycle."""

import asyncio
import json

import httpx
import pytest

from lightgate.exceptions import (
    CancellationRequestedError,
    GatewayConnectionError,
    ProtocolViolationError,
    RemoteError,
)
from lightgate.lightning.domain.enums import InvoiceStatus
from lightgate.lightning.infrastructure.invoice_stream import (
    DEFAULT_QUEUE_CAPACITY,
    InvoiceQueue,
    InvoiceStreamSession,
    decode_stream_line,
    parse_invoice_stream,
)
from lightgate.lightning.infrastructure.rest_gateway import SUBSCRIBE_INVOICES_PATH, LndRestGateway
from lightgate.utils.logging import get_correlation_id
from tests.lightning.helpers import (
    StreamFeed,
    invoice_json,
    payment_hash,
    stream_line,
    wait_until,
)


def result_line(seed: str, **fields) -> str:
    return json.dumps({"result": invoice_json(seed, **fields)})


async def lines_of(*lines: str):
    for line in lines:
        yield line


# ============================================================================
# Line decoding
# ============================================================================


class TestDecodeStreamLine:
    def test_result(self):
        event = decode_stream_line(result_line("a", settled=True))

        assert event.invoice is not None
        assert event.invoice.id == payment_hash("a").hex()
        assert event.invoice.status is InvoiceStatus.PAID
        assert not event.is_terminal

    def test_error_object(self):
        event = decode_stream_line('{"error": {"code": 2, "message": "permission denied"}}')

        assert isinstance(event.error, RemoteError)
        assert event.error.code == 2
        assert event.error.message == "permission denied"
        assert event.is_terminal

    def test_error_string(self):
        event = decode_stream_line('{"error": "stream reset"}')

        assert isinstance(event.error, RemoteError)
        assert event.error.message == "stream reset"

    @pytest.mark.parametrize(
        "line",
        [
            "not json",
            '{"unexpected": 1}',
            "[1, 2, 3]",
            '{"result": {"value_msat": "1"}}',
            '{"result": {"r_hash": "%%%"}}',
            '{"error": 5}',
        ],
    )
    def test_protocol_violation(self, line):
        event = decode_stream_line(line)

        assert isinstance(event.error, ProtocolViolationError)
        assert event.is_terminal


class TestParseInvoiceStream:
    @pytest.mark.asyncio
    async def test_skips_blank_lines(self):
        events = [e async for e in parse_invoice_stream(lines_of("", result_line("a"), "  "))]

        assert len(events) == 1
        assert events[0].invoice.id == payment_hash("a").hex()

    @pytest.mark.asyncio
    async def test_stops_after_terminal_event(self):
        stream = lines_of(
            result_line("a"),
            '{"error": {"code": 14, "message": "unavailable"}}',
            result_line("b"),
        )

        events = [e async for e in parse_invoice_stream(stream)]

        assert len(events) == 2
        assert isinstance(events[1].error, RemoteError)


# ============================================================================
# Bounded queue
# ============================================================================


def sample_invoice(seed: str):
    return decode_stream_line(result_line(seed)).invoice


class TestInvoiceQueue:
    def test_default_capacity(self):
        assert InvoiceQueue().capacity == DEFAULT_QUEUE_CAPACITY == 50

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            InvoiceQueue(0)

    @pytest.mark.asyncio
    async def test_fifo(self):
        queue = InvoiceQueue(3)
        invoices = [sample_invoice(s) for s in "abc"]
        for invoice in invoices:
            await queue.put(invoice)

        assert [await queue.get() for _ in range(3)] == invoices

    @pytest.mark.asyncio
    async def test_put_suspends_when_full(self):
        queue = InvoiceQueue(1)
        await queue.put(sample_invoice("a"))

        blocked = asyncio.create_task(queue.put(sample_invoice("b")))
        await asyncio.sleep(0.01)
        assert not blocked.done()

        assert (await queue.get()).id == payment_hash("a").hex()
        await asyncio.wait_for(blocked, timeout=1)
        assert queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_get_suspends_until_put(self):
        queue = InvoiceQueue(1)
        waiter = asyncio.create_task(queue.get())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        await queue.put(sample_invoice("a"))

        assert (await asyncio.wait_for(waiter, timeout=1)).id == payment_hash("a").hex()

    @pytest.mark.asyncio
    async def test_buffered_items_survive_completion(self):
        queue = InvoiceQueue(2)
        await queue.put(sample_invoice("a"))
        queue.complete()

        assert (await queue.get()).id == payment_hash("a").hex()
        with pytest.raises(CancellationRequestedError):
            await queue.get()

    @pytest.mark.asyncio
    async def test_discarding_completion_drops_buffer(self):
        queue = InvoiceQueue(2)
        await queue.put(sample_invoice("a"))
        await queue.put(sample_invoice("b"))

        assert queue.complete(discard=True) is True

        assert queue.qsize() == 0
        with pytest.raises(CancellationRequestedError):
            await queue.get()

    @pytest.mark.asyncio
    async def test_discard_after_completion_keeps_error(self):
        queue = InvoiceQueue(2)
        error = RemoteError("boom")
        await queue.put(sample_invoice("a"))
        queue.complete(error)

        assert queue.complete(discard=True) is False

        assert queue.qsize() == 0
        with pytest.raises(RemoteError) as exc_info:
            await queue.get()
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_discard_wakes_waiting_consumer(self):
        queue = InvoiceQueue(1)
        waiter = asyncio.create_task(queue.get())
        await asyncio.sleep(0.01)

        queue.complete(discard=True)

        with pytest.raises(CancellationRequestedError):
            await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_completion_is_first_wins(self):
        queue = InvoiceQueue(1)
        error = RemoteError("boom")

        assert queue.complete(error) is True
        assert queue.complete() is False

        with pytest.raises(RemoteError) as exc_info:
            await queue.get()
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_completion_wakes_waiting_consumer(self):
        queue = InvoiceQueue(1)
        waiter = asyncio.create_task(queue.get())
        await asyncio.sleep(0.01)

        queue.complete()

        with pytest.raises(CancellationRequestedError):
            await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_put_after_completion_rejected(self):
        queue = InvoiceQueue(1)
        queue.complete()

        with pytest.raises(RuntimeError):
            await queue.put(sample_invoice("a"))

    @pytest.mark.asyncio
    async def test_per_call_cancellation(self):
        queue = InvoiceQueue(1)
        cancellation = asyncio.Event()
        waiter = asyncio.create_task(queue.get(cancellation))
        await asyncio.sleep(0.01)

        cancellation.set()

        with pytest.raises(CancellationRequestedError):
            await asyncio.wait_for(waiter, timeout=1)
        assert not queue.is_completed


# ============================================================================
# Session lifecycle
# ============================================================================


@pytest.fixture
def feed():
    return StreamFeed()


@pytest.fixture
def stream_router(router, feed):
    router.add(
        "GET",
        SUBSCRIBE_INVOICES_PATH,
        lambda request: httpx.Response(200, content=feed.body()),
    )
    return router


class TestInvoiceStreamSession:
    @pytest.mark.asyncio
    async def test_delivers_invoices_in_order(self, gateway, stream_router, feed):
        async with InvoiceStreamSession(gateway) as session:
            for seed in "abc":
                feed.send({"result": invoice_json(seed)})

            ids = [(await session.wait_invoice()).id for _ in range(3)]

        assert ids == [payment_hash(s).hex() for s in "abc"]
        request = stream_router.requests[0]
        assert request.headers["Grpc-Metadata-macaroon"] == "0201036c6e64"

    @pytest.mark.asyncio
    async def test_backpressure_without_loss(self, gateway, stream_router, feed):
        session = InvoiceStreamSession(gateway, capacity=2).start()
        seeds = [f"inv{i}" for i in range(5)]
        for seed in seeds:
            feed.send({"result": invoice_json(seed)})

        await wait_until(lambda: session.queue.qsize() == 2)
        await asyncio.sleep(0.02)
        assert session.queue.qsize() == 2

        received = [(await session.wait_invoice()).id for _ in seeds]
        assert received == [payment_hash(s).hex() for s in seeds]
        await session.aclose()

    @pytest.mark.asyncio
    async def test_release_unblocks_consumer_and_closes_stream(
        self, gateway, stream_router, feed
    ):
        session = InvoiceStreamSession(gateway).start()
        waiter = asyncio.create_task(session.wait_invoice())
        await wait_until(feed.started.is_set)

        await session.aclose()

        with pytest.raises(CancellationRequestedError):
            await asyncio.wait_for(waiter, timeout=1)
        assert session.is_released
        assert feed.closed.is_set()

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, gateway, stream_router, feed):
        session = InvoiceStreamSession(gateway).start()

        await session.aclose()
        await session.aclose()

        assert session.is_released

    @pytest.mark.asyncio
    async def test_release_drops_buffered_invoices(self, gateway, stream_router, feed):
        session = InvoiceStreamSession(gateway).start()
        feed.send({"result": invoice_json("a")})
        await wait_until(lambda: session.queue.qsize() == 1)

        await session.aclose()
        feed.send({"result": invoice_json("b")})
        await asyncio.sleep(0.02)

        assert session.queue.qsize() == 0
        with pytest.raises(CancellationRequestedError):
            await session.wait_invoice()

    @pytest.mark.asyncio
    async def test_release_after_remote_close_drops_buffered_invoices(
        self, gateway, stream_router, feed
    ):
        session = InvoiceStreamSession(gateway).start()
        feed.send({"result": invoice_json("a")})
        feed.end()
        await wait_until(lambda: session.is_released)

        await session.aclose()

        with pytest.raises(CancellationRequestedError):
            await session.wait_invoice()

    @pytest.mark.asyncio
    async def test_remote_close_ends_session(self, gateway, stream_router, feed):
        session = InvoiceStreamSession(gateway).start()
        feed.send({"result": invoice_json("a")})
        feed.end()

        assert (await session.wait_invoice()).id == payment_hash("a").hex()
        with pytest.raises(CancellationRequestedError):
            await session.wait_invoice()
        await wait_until(lambda: session.is_released)

    @pytest.mark.asyncio
    async def test_remote_error_reaches_consumer(self, gateway, stream_router, feed):
        session = InvoiceStreamSession(gateway).start()
        feed.send({"error": {"code": 14, "message": "node shutting down"}})

        with pytest.raises(RemoteError, match="node shutting down"):
            await session.wait_invoice()
        await wait_until(lambda: session.is_released)

    @pytest.mark.asyncio
    async def test_malformed_line_is_protocol_violation(self, gateway, stream_router, feed):
        session = InvoiceStreamSession(gateway).start()
        feed.send(b"<html>oops</html>\n")

        with pytest.raises(ProtocolViolationError):
            await session.wait_invoice()
        await session.aclose()

    @pytest.mark.asyncio
    async def test_error_status_on_subscribe(self, gateway, router):
        router.json(
            "GET",
            SUBSCRIBE_INVOICES_PATH,
            {"code": 2, "message": "verification failed: signature mismatch"},
            status_code=401,
        )
        session = InvoiceStreamSession(gateway).start()

        with pytest.raises(RemoteError) as exc_info:
            await session.wait_invoice()

        assert exc_info.value.status_code == 401
        assert exc_info.value.message.startswith("verification failed")

    @pytest.mark.asyncio
    async def test_unreachable_node_is_connection_error(self):
        refused = httpx.ConnectError("connection refused")

        def refuse(request):
            raise refused

        gateway = LndRestGateway(
            "https://lnd.test:8080", "00", transport=httpx.MockTransport(refuse)
        )
        session = InvoiceStreamSession(gateway).start()

        with pytest.raises(GatewayConnectionError) as exc_info:
            await session.wait_invoice()

        assert exc_info.value.original_error is refused
        assert exc_info.value.context["path"] == SUBSCRIBE_INVOICES_PATH
        await wait_until(lambda: session.is_released)

    @pytest.mark.asyncio
    async def test_dropped_connection_is_connection_error(self, gateway, router):
        async def body():
            yield stream_line({"result": invoice_json("a")})
            raise httpx.ReadError("connection reset by peer")

        router.add(
            "GET", SUBSCRIBE_INVOICES_PATH, lambda request: httpx.Response(200, content=body())
        )
        session = InvoiceStreamSession(gateway).start()

        assert (await session.wait_invoice()).id == payment_hash("a").hex()
        with pytest.raises(GatewayConnectionError) as exc_info:
            await session.wait_invoice()

        assert isinstance(exc_info.value.original_error, httpx.ReadError)

    @pytest.mark.asyncio
    async def test_reader_logs_under_session_correlation_id(self, gateway, router):
        seen = []

        def subscribe(request):
            seen.append(get_correlation_id())
            return httpx.Response(200, content=b"")

        router.add("GET", SUBSCRIBE_INVOICES_PATH, subscribe)
        session = InvoiceStreamSession(gateway).start()
        await wait_until(lambda: session.is_released)

        assert seen == [session.session_id]
        assert get_correlation_id() != session.session_id

    @pytest.mark.asyncio
    async def test_per_call_cancellation_keeps_session(self, gateway, stream_router, feed):
        session = InvoiceStreamSession(gateway).start()
        cancellation = asyncio.Event()
        waiter = asyncio.create_task(session.wait_invoice(cancellation))
        await asyncio.sleep(0.01)

        cancellation.set()
        with pytest.raises(CancellationRequestedError):
            await asyncio.wait_for(waiter, timeout=1)

        feed.send({"result": invoice_json("a")})
        assert (await session.wait_invoice()).id == payment_hash("a").hex()
        assert not session.is_released
        await session.aclose()

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, gateway, stream_router, feed):
        session = InvoiceStreamSession(gateway).start()

        with pytest.raises(RuntimeError):
            session.start()
        await session.aclose()
