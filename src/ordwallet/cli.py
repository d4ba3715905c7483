"""
ordwallet CLI - preview fees, sign sends and estimate BRC-20 transfers.

Signed transactions are printed as hex and never broadcast.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any

import typer
from loguru import logger

from ordwallet.backends.base import StaticKeyProvider
from ordwallet.backends.esplora import EsploraBackend
from ordwallet.brc20 import Brc20TransferRequest, estimate_transfer_fees
from ordwallet.config import Settings
from ordwallet.errors import TransactionError
from ordwallet.models import NetworkType, Recipient
from ordwallet.transactions import TransactionContext, get_btc_fees, sign_btc_transaction

app = typer.Typer(
    name="ordwallet",
    help="Bitcoin and ordinals transaction construction",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def parse_recipient(value: str) -> Recipient:
    """Parse ADDRESS:AMOUNT"""
    address, sep, amount = value.rpartition(":")
    if not sep or not address:
        raise typer.BadParameter(f"Expected ADDRESS:AMOUNT, got {value!r}")
    try:
        return Recipient(address, int(amount))
    except ValueError as e:
        raise typer.BadParameter(f"Invalid amount in {value!r}: {e}") from e


def build_settings(network: NetworkType | None, esplora_url: str | None, **extra: Any) -> Settings:
    overrides: dict[str, Any] = {k: v for k, v in extra.items() if v is not None}
    if network is not None:
        overrides["network"] = network
    if esplora_url is not None:
        overrides["esplora_url"] = esplora_url
    return Settings(**overrides)


def _backend(settings: Settings) -> EsploraBackend:
    return EsploraBackend(
        base_url=settings.esplora_url,
        ord_url=settings.ord_url,
        timeout=settings.request_timeout,
    )


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except TransactionError as e:
        logger.error(f"{e.kind.value}: {e}")
        raise typer.Exit(1)


@app.command()
def fees(
    payment_address: str = typer.Option(..., "--from", help="Payment address funding the send"),
    to: list[str] = typer.Option(..., "--to", "-t", help="Recipient as ADDRESS:AMOUNT"),
    fee_rate: float | None = typer.Option(None, "--fee-rate", help="sats/vbyte"),
    custom_fee: int | None = typer.Option(None, "--custom-fee", help="Fixed fee in sats"),
    network: NetworkType | None = typer.Option(None, "--network", "-n"),
    esplora_url: str | None = typer.Option(None, "--esplora-url", envvar="ESPLORA_URL"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Preview the inputs and fee of a BTC send."""
    setup_logging(log_level)
    settings = build_settings(network, esplora_url)
    recipients = [parse_recipient(item) for item in to]
    _run(_show_fees(recipients, payment_address, fee_rate, custom_fee, settings))


async def _show_fees(
    recipients: list[Recipient],
    payment_address: str,
    fee_rate: float | None,
    custom_fee: int | None,
    settings: Settings,
) -> None:
    backend = _backend(settings)
    try:
        resolution = await get_btc_fees(
            recipients,
            payment_address,
            backend,
            fee_rate_provider=backend,
            fee_rate=fee_rate,
            custom_fee=custom_fee,
            settings=settings,
        )
    finally:
        await backend.close()

    plan = resolution.plan
    print(f"\nInputs ({len(plan.inputs)}):")
    for utxo in plan.inputs:
        print(f"  {utxo.outpoint}  {utxo.value:>15,} sats")
    print("Outputs:")
    for recipient in plan.outputs:
        print(f"  {recipient.address}  {recipient.amount:>15,} sats")
    if plan.change is not None:
        print(f"  {plan.change.address}  {plan.change.value:>15,} sats (change)")
    print(f"Fee: {plan.fee:,} sats")


@app.command()
def send(
    payment_address: str = typer.Option(..., "--from", help="Payment address funding the send"),
    to: list[str] = typer.Option(..., "--to", "-t", help="Recipient as ADDRESS:AMOUNT"),
    private_key: str = typer.Option(
        ..., "--private-key", envvar="ORDWALLET_PRIVATE_KEY", help="Hex private key"
    ),
    fee_rate: float | None = typer.Option(None, "--fee-rate", help="sats/vbyte"),
    custom_fee: int | None = typer.Option(None, "--custom-fee", help="Fixed fee in sats"),
    network: NetworkType | None = typer.Option(None, "--network", "-n"),
    esplora_url: str | None = typer.Option(None, "--esplora-url", envvar="ESPLORA_URL"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Build and sign a BTC send. Prints the raw transaction hex."""
    setup_logging(log_level)
    settings = build_settings(network, esplora_url)
    recipients = [parse_recipient(item) for item in to]
    try:
        key_provider = StaticKeyProvider(private_key)
    except ValueError as e:
        logger.error(f"Invalid private key: {e}")
        raise typer.Exit(1)

    _run(_sign_send(recipients, payment_address, key_provider, fee_rate, custom_fee, settings))


async def _sign_send(
    recipients: list[Recipient],
    payment_address: str,
    key_provider: StaticKeyProvider,
    fee_rate: float | None,
    custom_fee: int | None,
    settings: Settings,
) -> None:
    backend = _backend(settings)
    try:
        result = await sign_btc_transaction(
            recipients,
            payment_address,
            0,
            key_provider,
            backend,
            fee_rate_provider=backend,
            fee_rate=fee_rate,
            custom_fee=custom_fee,
            settings=settings,
        )
    finally:
        await backend.close()

    print(f"\ntxid:  {result.tx.txid}")
    print(f"vsize: {result.vsize} vB")
    print(f"fee:   {result.fee:,} sats")
    print(f"\n{result.signed_tx}")


@app.command("brc20-fees")
def brc20_fees(
    tick: str = typer.Option(..., "--tick", help="4 character BRC-20 ticker"),
    amount: str = typer.Option(..., "--amount", help="Token amount to transfer"),
    fee_rate: float = typer.Option(..., "--fee-rate", help="sats/vbyte"),
    payment_address: str = typer.Option(..., "--from", help="Payment address funding the fees"),
    reveal_address: str = typer.Option(
        ..., "--reveal-address", help="Address holding the BRC-20 balance"
    ),
    network: NetworkType | None = typer.Option(None, "--network", "-n"),
    esplora_url: str | None = typer.Option(None, "--esplora-url", envvar="ESPLORA_URL"),
    ord_url: str | None = typer.Option(None, "--ord-url", envvar="ORD_URL"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Estimate the commit value of a BRC-20 transfer inscription."""
    setup_logging(log_level)
    settings = build_settings(network, esplora_url, ord_url=ord_url)
    request = Brc20TransferRequest(tick, amount, reveal_address, fee_rate)
    _run(_show_brc20_fees(request, payment_address, settings))


async def _show_brc20_fees(
    request: Brc20TransferRequest, payment_address: str, settings: Settings
) -> None:
    backend = _backend(settings)
    context = TransactionContext(
        payment_address=payment_address,
        ordinals_address=request.reveal_address,
        utxo_provider=backend,
        settings=settings,
    )
    try:
        estimate = await estimate_transfer_fees(request, context)
    finally:
        await backend.close()

    breakdown = estimate.breakdown
    print(f"\nCommit value:        {estimate.commit_value:>12,} sats")
    print(f"  Commit chain fee:  {breakdown.commit_chain_fee:>12,} sats")
    print(f"  Reveal chain fee:  {breakdown.reveal_chain_fee:>12,} sats")
    print(f"  Reveal service fee:{breakdown.reveal_service_fee:>12,} sats")
    print(f"  Transfer chain fee:{breakdown.transfer_chain_fee:>12,} sats")
    print(f"  Transfer UTXO:     {breakdown.transfer_utxo_value:>12,} sats")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
