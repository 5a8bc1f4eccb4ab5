"""CLI commands for the Lightning node."""

import asyncio
from datetime import timedelta

import typer

from lightgate.exceptions import CancellationRequestedError, LightGateError
from lightgate.utils.config import get_settings
from lightgate.utils.logging import configure_logging

from ..domain.value_objects import LightMoney, NodeUri, OpenChannelRequest
from ..infrastructure.lnd_client import LndClient

app = typer.Typer(name="lightgate", help="Lightning Network node payment commands")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    settings = get_settings()
    configure_logging(
        log_level="DEBUG" if verbose else settings.log_level,
        json_logs=settings.json_logs,
    )


def get_lnd_client() -> LndClient:
    """Get configured LND client."""
    return LndClient.from_settings(get_settings())


def _fail(action: str, error: Exception) -> None:
    typer.echo(f"Error {action}: {error}", err=True)
    raise typer.Exit(1)


@app.command()
def info():
    """Show Lightning node information."""

    async def _info():
        client = get_lnd_client()
        try:
            node_info = await client.get_info()
            typer.echo("Lightning Node Information:")
            typer.echo(f"  Block Height: {node_info.block_height}")
            for uri in node_info.node_info_list:
                typer.echo(f"  URI: {uri}")
        except LightGateError as e:
            _fail("getting node info", e)
        finally:
            await client.close()

    asyncio.run(_info())


@app.command()
def channels():
    """List Lightning channels."""

    async def _channels():
        client = get_lnd_client()
        try:
            result = await client.list_channels()
            if not result:
                typer.echo("No channels found")
                return

            typer.echo("Lightning Channels:")
            typer.echo("-" * 80)
            for ch in result:
                typer.echo(f"Channel Point: {ch.channel_point}")
                typer.echo(f"  Peer: {ch.remote_node}")
                typer.echo(f"  Capacity: {ch.capacity.sat:,} sat")
                typer.echo(f"  Local Balance: {ch.local_balance.sat:,} sat")
                typer.echo(f"  Inbound Capacity: {ch.inbound_capacity.sat:,} sat")
                typer.echo(f"  Active: {ch.is_active}  Public: {ch.is_public}")
                typer.echo()

            total = sum((ch.local_balance for ch in result), LightMoney(0))
            typer.echo(f"Total Local Balance: {total.sat:,} sat ({total.btc} BTC)")
        except LightGateError as e:
            _fail("listing channels", e)
        finally:
            await client.close()

    asyncio.run(_channels())


@app.command()
def address():
    """Show a fresh deposit address for the node wallet."""

    async def _address():
        client = get_lnd_client()
        try:
            typer.echo(await client.get_deposit_address())
        except LightGateError as e:
            _fail("getting deposit address", e)
        finally:
            await client.close()

    asyncio.run(_address())


@app.command()
def create_invoice(
    amount: int = typer.Option(..., help="Amount in satoshis"),
    description: str = typer.Option("", help="Invoice description"),
    expiry_minutes: int = typer.Option(60, help="Invoice expiry in minutes"),
    private: bool = typer.Option(False, help="Include private route hints"),
):
    """Create a new Lightning invoice."""

    async def _create_invoice():
        client = get_lnd_client()
        try:
            invoice = await client.create_invoice(
                LightMoney.satoshis(amount),
                description,
                timedelta(minutes=expiry_minutes),
                private_route_hints=private,
            )
            typer.echo("Lightning Invoice Created:")
            typer.echo(f"  Id: {invoice.id}")
            typer.echo(f"  Amount: {invoice.amount.sat} sat")
            typer.echo(f"  Expires: {invoice.expires_at}")
            typer.echo()
            typer.echo(invoice.bolt11)
        except LightGateError as e:
            _fail("creating invoice", e)
        finally:
            await client.close()

    asyncio.run(_create_invoice())


@app.command()
def get_invoice(invoice_id: str = typer.Argument(..., help="Invoice id (payment hash hex)")):
    """Show an invoice and its current status."""

    async def _get_invoice():
        client = get_lnd_client()
        try:
            invoice = await client.get_invoice(invoice_id)
            if invoice is None:
                typer.echo("Invoice not found", err=True)
                raise typer.Exit(1)
            for key, value in invoice.to_dict().items():
                typer.echo(f"  {key}: {value}")
        except LightGateError as e:
            _fail("getting invoice", e)
        finally:
            await client.close()

    asyncio.run(_get_invoice())


@app.command()
def cancel_invoice(invoice_id: str = typer.Argument(..., help="Invoice id (payment hash hex)")):
    """Cancel an open invoice."""

    async def _cancel_invoice():
        client = get_lnd_client()
        try:
            await client.cancel_invoice(invoice_id)
            typer.echo(f"Invoice {invoice_id} cancelled")
        except LightGateError as e:
            _fail("cancelling invoice", e)
        finally:
            await client.close()

    asyncio.run(_cancel_invoice())


@app.command()
def pay(bolt11: str = typer.Argument(..., help="BOLT-11 payment request")):
    """Pay a BOLT-11 payment request."""

    async def _pay():
        client = get_lnd_client()
        try:
            response = await client.pay(bolt11)
            typer.echo(f"Result: {response.result}")
            if response.details:
                typer.echo(f"  Total: {response.details.total_amount}")
                typer.echo(f"  Fee: {response.details.fee_amount}")
            if response.error_message:
                typer.echo(f"  Error: {response.error_message}")
        except LightGateError as e:
            _fail("paying", e)
        finally:
            await client.close()

    asyncio.run(_pay())


@app.command()
def connect(node: str = typer.Argument(..., help="pubkey@host:port")):
    """Connect to a peer."""

    async def _connect():
        client = get_lnd_client()
        try:
            result = await client.connect_to(NodeUri.parse(node))
            typer.echo(f"Result: {result}")
        except (LightGateError, ValueError) as e:
            _fail("connecting", e)
        finally:
            await client.close()

    asyncio.run(_connect())


@app.command()
def open_channel(
    node: str = typer.Argument(..., help="pubkey@host:port"),
    amount: int = typer.Option(..., help="Funding amount in satoshis"),
    fee_rate: int | None = typer.Option(None, help="Fee rate in sat/byte"),
):
    """Open a channel to another node."""

    async def _open_channel():
        client = get_lnd_client()
        try:
            request = OpenChannelRequest(
                node_info=NodeUri.parse(node),
                channel_amount=LightMoney.satoshis(amount),
                fee_rate_sat_per_byte=fee_rate,
            )
            response = await client.open_channel(request)
            typer.echo(f"Result: {response.result}")
        except (LightGateError, ValueError) as e:
            _fail("opening channel", e)
        finally:
            await client.close()

    asyncio.run(_open_channel())


@app.command()
def listen(count: int = typer.Option(0, help="Stop after this many invoices (0 = forever)")):
    """Print invoice notifications as they arrive."""

    async def _listen():
        client = get_lnd_client()
        received = 0
        try:
            async with await client.listen() as session:
                while not count or received < count:
                    invoice = await session.wait_invoice()
                    received += 1
                    typer.echo(f"{invoice.id} {invoice.status} {invoice.amount.sat} sat")
        except CancellationRequestedError:
            typer.echo("Stream closed")
        except LightGateError as e:
            _fail("listening", e)
        finally:
            await client.close()

    try:
        asyncio.run(_listen())
    except KeyboardInterrupt:
        typer.echo("Stopped")
