"""Invoice settlement notification stream.

One ``InvoiceStreamSession`` owns one streaming HTTP connection to
``/v1/invoices/subscribe``. A single background task reads the
newline-delimited JSON body, maps each invoice and hands it to one consumer
through a bounded FIFO queue. When the queue is full the reader suspends;
nothing is dropped.

The session ends exactly once, by caller release, remote close, a reported
remote error or malformed content. After that it produces nothing more and its
connection chain has been released, innermost reader first.
"""

import asyncio
import json
import uuid
from collections.abc import AsyncIterator
from typing import cast

import httpx
from pydantic import ValidationError

from lightgate.exceptions import CancellationRequestedError, ProtocolViolationError, RemoteError
from lightgate.utils.logging import get_logger, set_correlation_id

from ..domain.events import InvoiceEvent
from ..domain.value_objects import Invoice
from .mapper import to_invoice
from .rest_gateway import SUBSCRIBE_INVOICES_PATH, LndRestGateway
from .wire import ErrorObject, LnrpcInvoice

logger = get_logger(__name__)

DEFAULT_QUEUE_CAPACITY = 50


def decode_stream_line(line: str) -> InvoiceEvent:
    """Decode one line of the subscription body.

    ``{"result": <invoice>}`` gives an invoice event; ``{"error": <error>}`` a
    terminal ``RemoteError``; anything else a terminal ``ProtocolViolationError``.
    """
    try:
        frame = json.loads(line)
    except json.JSONDecodeError as e:
        return InvoiceEvent.of_error(
            ProtocolViolationError("Unknown result from LND", line=line, original_error=e)
        )

    if isinstance(frame, dict) and "result" in frame:
        try:
            invoice = to_invoice(LnrpcInvoice.model_validate(frame["result"]))
        except (ValidationError, ValueError) as e:
            return InvoiceEvent.of_error(
                ProtocolViolationError("Malformed invoice from LND", line=line, original_error=e)
            )
        return InvoiceEvent.of_invoice(invoice)

    if isinstance(frame, dict) and "error" in frame:
        payload = frame["error"]
        if isinstance(payload, str):
            return InvoiceEvent.of_error(RemoteError(payload))
        try:
            error = ErrorObject.model_validate(payload)
        except ValidationError as e:
            return InvoiceEvent.of_error(
                ProtocolViolationError("Malformed error from LND", line=line, original_error=e)
            )
        return InvoiceEvent.of_error(RemoteError(error.error, code=error.code))

    return InvoiceEvent.of_error(ProtocolViolationError("Unknown result from LND", line=line))


async def parse_invoice_stream(lines: AsyncIterator[str]) -> AsyncIterator[InvoiceEvent]:
    """Lazily decode the subscription body into events.

    Finite and not restartable: ends when ``lines`` is exhausted or right
    after the first terminal event. Blank lines are skipped.
    """
    async for line in lines:
        if not line.strip():
            continue
        event = decode_stream_line(line)
        yield event
        if event.is_terminal:
            return


class InvoiceQueue:
    """Bounded FIFO of invoices with a single, first-wins completion.

    Items enqueued before a plain completion stay readable; once drained,
    ``get`` raises ``CancellationRequestedError`` (completed without error) or
    the exact error the queue was completed with. A discarding completion
    drops the buffer, so nothing is handed out afterwards.
    """

    def __init__(self, capacity: int = DEFAULT_QUEUE_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._items: asyncio.Queue[Invoice] = asyncio.Queue(maxsize=capacity)
        self._closed = asyncio.Event()
        self._error: BaseException | None = None
        self._discarded = False

    @property
    def is_completed(self) -> bool:
        return self._closed.is_set()

    @property
    def error(self) -> BaseException | None:
        return self._error

    def qsize(self) -> int:
        return 0 if self._discarded else self._items.qsize()

    async def put(self, invoice: Invoice) -> None:
        """Enqueue, suspending while the queue is full."""
        if self.is_completed:
            raise RuntimeError("Invoice queue is completed")
        await self._items.put(invoice)

    def complete(self, error: BaseException | None = None, *, discard: bool = False) -> bool:
        """Complete the queue; returns False if it was already completed.

        With ``discard`` the buffered invoices are dropped, even when the
        queue was already completed.
        """
        if discard:
            self._discarded = True
            while not self._items.empty():
                self._items.get_nowait()
        if self.is_completed:
            return False
        self._error = error
        self._closed.set()
        return True

    def _terminal(self) -> BaseException:
        if self._error is None:
            return CancellationRequestedError()
        return self._error

    async def get(self, cancellation: asyncio.Event | None = None) -> Invoice:
        """Dequeue the next invoice, suspending while the queue is empty.

        Args:
            cancellation: Optional event aborting this dequeue only

        Raises:
            CancellationRequestedError: Completed without error, or ``cancellation`` fired
            BaseException: The error the queue was completed with
        """
        if self._discarded:
            raise self._terminal()
        if not self._items.empty():
            return self._items.get_nowait()
        if self.is_completed:
            raise self._terminal()

        getter = asyncio.ensure_future(self._items.get())
        closed = asyncio.ensure_future(self._closed.wait())
        waiters = {getter, closed}
        cancelled = None
        if cancellation is not None:
            cancelled = asyncio.ensure_future(cancellation.wait())
            waiters.add(cancelled)

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

        if self._discarded:
            raise self._terminal()
        if getter in done:
            return getter.result()
        if cancelled is not None and cancelled in done:
            raise CancellationRequestedError("Wait for invoice cancelled")
        if not self._items.empty():
            return self._items.get_nowait()
        raise self._terminal()


class InvoiceStreamSession:
    """Listener for settled and updated invoices.

    Usage:
        async with await client.listen() as session:
            while True:
                invoice = await session.wait_invoice()
                ...

    Exactly one concurrent consumer is supported. Log lines written by the
    reader task carry the session id as correlation id.
    """

    def __init__(self, gateway: LndRestGateway, capacity: int = DEFAULT_QUEUE_CAPACITY):
        self._gateway = gateway
        self._queue = InvoiceQueue(capacity)
        self._cancel_requested = False
        self._released = False
        self._listen_task: asyncio.Task[None] | None = None
        self.session_id = uuid.uuid4().hex[:12]
        self._log = logger.bind(session_id=self.session_id)

        # Connection chain, released innermost first
        self._client: httpx.AsyncClient | None = None
        self._response: httpx.Response | None = None
        self._lines: AsyncIterator[str] | None = None
        self._events: AsyncIterator[InvoiceEvent] | None = None

    @property
    def is_released(self) -> bool:
        return self._released

    @property
    def queue(self) -> InvoiceQueue:
        return self._queue

    def start(self) -> "InvoiceStreamSession":
        """Open the stream and start reading in a background task."""
        if self._listen_task is not None or self._released:
            raise RuntimeError("Invoice stream session already started")

        self._client = self._gateway.open_stream_client()
        self._listen_task = asyncio.create_task(
            self._listen_loop(self._client), name="lightgate-invoice-stream"
        )
        return self

    async def _listen_loop(self, client: httpx.AsyncClient) -> None:
        set_correlation_id(self.session_id)
        request = client.build_request("GET", SUBSCRIBE_INVOICES_PATH)
        self._log.info("invoice_stream_started", url=str(request.url))
        try:
            self._response = await client.send(request, stream=True)
            if self._response.is_error:
                await self._response.aread()
                raise self._gateway.remote_error(self._response)

            self._lines = self._response.aiter_lines()
            self._events = parse_invoice_stream(self._lines)
            async for event in self._events:
                if self._cancel_requested:
                    break
                if event.error is not None:
                    raise event.error
                invoice = cast(Invoice, event.invoice)
                await self._queue.put(invoice)
                self._log.debug(
                    "invoice_stream_event",
                    invoice_id=invoice.id,
                    status=str(invoice.status),
                    queued=self._queue.qsize(),
                )
            else:
                self._log.info("invoice_stream_closed_by_remote")
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            self._log.debug("invoice_stream_cancelled")
        except Exception as e:
            if self._cancel_requested:
                self._log.debug("invoice_stream_cancelled", error=str(e))
            else:
                if isinstance(e, httpx.TransportError):
                    e = self._gateway.connection_error(e, SUBSCRIBE_INVOICES_PATH)
                self._log.warning(
                    "invoice_stream_failed", error=str(e), error_type=type(e).__name__
                )
                self._queue.complete(e)
        finally:
            await self._close_resources()
            self._release_nowait()

    async def _close_resources(self) -> None:
        """Release reader, body stream, response, then client."""
        events, self._events = self._events, None
        lines, self._lines = self._lines, None
        response, self._response = self._response, None
        client, self._client = self._client, None

        for name, resource in (
            ("events", events),
            ("lines", lines),
            ("response", response),
            ("client", client),
        ):
            if resource is None:
                continue
            try:
                await resource.aclose()  # type: ignore[attr-defined]
            except Exception as e:
                self._log.debug("invoice_stream_release_failed", resource=name, error=str(e))

    def _release_nowait(self) -> bool:
        """Mark released and complete the queue without waiting on the loop.

        Called from inside the read loop, so it must never join the loop.
        """
        if self._released:
            return False
        self._released = True
        self._cancel_requested = True
        self._queue.complete()
        self._log.info("invoice_stream_released")
        return True

    async def aclose(self) -> None:
        """Release the session and wait until the read loop has exited.

        Idempotent. Once called, ``wait_invoice`` hands out no further
        invoice, buffered ones included.
        """
        self._cancel_requested = True
        self._queue.complete(discard=True)
        if self._released:
            return

        task = self._listen_task
        if task is not None and task is asyncio.current_task():
            self._release_nowait()
            return

        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        # A task cancelled before its first step never ran its cleanup
        await self._close_resources()
        self._release_nowait()

    async def wait_invoice(self, cancellation: asyncio.Event | None = None) -> Invoice:
        """Wait for the next invoice notification.

        Args:
            cancellation: Optional event; when set, aborts only this wait

        Raises:
            CancellationRequestedError: Session released, stream closed, or ``cancellation`` set
            RemoteError: The node reported an error on the stream
            ProtocolViolationError: The stream carried malformed content
            GatewayConnectionError: The node could not be reached or the connection dropped
        """
        return await self._queue.get(cancellation)

    async def __aenter__(self) -> "InvoiceStreamSession":
        if self._listen_task is None and not self._released:
            self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
