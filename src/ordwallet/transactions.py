"""
Caller-facing send and fee-preview operations.

Each operation fetches a fresh UTXO / fee-rate snapshot from its collaborators,
resolves inputs and fee, and (for the sign_* variants) builds and signs the
transaction. Collaborator calls are the only suspension points; each one is
raced against the request's CancellationToken.
"""

from __future__ import annotations

from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TypeVar

import httpx
from loguru import logger

from ordwallet.backends.base import FeeRateProvider, KeyProvider, UtxoProvider
from ordwallet.builder import TransactionBuilder
from ordwallet.cancellation import CancellationToken
from ordwallet.config import Settings, get_settings
from ordwallet.errors import (
    MalformedInputError,
    NetworkError,
    RequestCancelled,
    ServerError,
    TransactionError,
)
from ordwallet.models import UTXO, NetworkType, Recipient, SignedTransactionResult
from ordwallet.resolver import FeeResolution, resolve_fee, resolve_ordinal_send

T = TypeVar("T")

FeeRateValue = float | Decimal


@dataclass
class TransactionContext:
    """
    Addresses and collaborators shared by the operations of one account.

    payment_address holds the spendable BTC and receives change;
    ordinals_address holds inscriptions.
    """

    payment_address: str
    ordinals_address: str
    utxo_provider: UtxoProvider
    network: NetworkType | None = None
    settings: Settings = field(default_factory=get_settings)

    @property
    def effective_network(self) -> NetworkType:
        return self.network or self.settings.network


async def collaborator_call(awaitable: Awaitable[T], token: CancellationToken | None = None) -> T:
    """
    Await a collaborator call, classifying its failures.

    httpx errors become NetworkError, classified errors and cancellation pass
    through, anything else becomes ServerError.
    """
    try:
        if token is None:
            return await awaitable
        return await token.guard(awaitable)
    except (TransactionError, RequestCancelled):
        raise
    except httpx.HTTPError as e:
        raise NetworkError(f"Collaborator unreachable: {e}") from e
    except Exception as e:
        logger.error(f"Collaborator call failed: {e}")
        raise ServerError(f"Collaborator failed: {e}") from e


async def resolve_fee_rate(
    fee_rate: FeeRateValue | None,
    custom_fee: int | None,
    fee_rate_provider: FeeRateProvider | None,
    token: CancellationToken | None = None,
) -> FeeRateValue | None:
    """
    Pick the fee rate for a request.

    An explicit rate wins, then the provider's regular rate. A custom fee
    makes the rate unnecessary and no fetch happens.
    """
    if fee_rate is not None or custom_fee is not None:
        return fee_rate
    if fee_rate_provider is None:
        raise MalformedInputError("Fee rate unavailable: supply a custom fee")
    rates = await collaborator_call(fee_rate_provider.get_recommended_fee_rate(), token)
    logger.debug(f"Using recommended regular fee rate {rates.regular} sat/vB")
    return rates.regular


def _builder(settings: Settings, network: NetworkType) -> TransactionBuilder:
    return TransactionBuilder(
        network=network,
        input_type=settings.input_script_type,
        dust_threshold=settings.dust_threshold,
    )


async def get_btc_fees(
    recipients: Sequence[Recipient],
    change_address: str,
    utxo_provider: UtxoProvider,
    fee_rate_provider: FeeRateProvider | None = None,
    fee_rate: FeeRateValue | None = None,
    custom_fee: int | None = None,
    network: NetworkType | None = None,
    settings: Settings | None = None,
    token: CancellationToken | None = None,
) -> FeeResolution:
    """
    Preview the inputs and fee of a BTC send without signing.

    UTXOs are fetched from change_address, which is the payment address.
    """
    settings = settings or get_settings()
    network = network or settings.network

    rate = await resolve_fee_rate(fee_rate, custom_fee, fee_rate_provider, token)
    utxos = await collaborator_call(utxo_provider.get_unspent_outputs(change_address), token)
    if token is not None:
        token.raise_if_cancelled()

    return resolve_fee(
        recipients,
        change_address,
        utxos,
        fee_rate=rate,
        custom_fee=custom_fee,
        network=network,
        input_type=settings.input_script_type,
        dust_threshold=settings.dust_threshold,
        max_iterations=settings.max_fee_iterations,
    )


async def sign_btc_transaction(
    recipients: Sequence[Recipient],
    change_address: str,
    account_index: int,
    key_provider: KeyProvider,
    utxo_provider: UtxoProvider,
    fee_rate_provider: FeeRateProvider | None = None,
    fee_rate: FeeRateValue | None = None,
    custom_fee: int | None = None,
    network: NetworkType | None = None,
    settings: Settings | None = None,
    token: CancellationToken | None = None,
) -> SignedTransactionResult:
    """
    Build and sign a BTC send paying recipients from the payment address.

    Returns:
        SignedTransactionResult; the transaction is not broadcast
    """
    settings = settings or get_settings()
    network = network or settings.network

    resolution = await get_btc_fees(
        recipients,
        change_address,
        utxo_provider,
        fee_rate_provider=fee_rate_provider,
        fee_rate=fee_rate,
        custom_fee=custom_fee,
        network=network,
        settings=settings,
        token=token,
    )
    private_key = key_provider.get_private_key(account_index)
    builder = _builder(settings, network)
    result = builder.build_from_plan(private_key, resolution.plan, change_address)
    logger.info(f"Signed BTC send of {resolution.plan.output_value} sats, fee {result.fee} sats")
    return result


async def get_btc_fees_for_ordinal_send(
    recipient_address: str,
    ordinal_utxo: UTXO,
    payment_address: str,
    utxo_provider: UtxoProvider,
    fee_rate_provider: FeeRateProvider | None = None,
    fee_rate: FeeRateValue | None = None,
    custom_fee: int | None = None,
    excluded_ordinals: Sequence[UTXO] | None = None,
    network: NetworkType | None = None,
    settings: Settings | None = None,
    token: CancellationToken | None = None,
) -> FeeResolution:
    """
    Preview an inscription transfer.

    The ordinal UTXO is spent as input 0; the payment address funds the fee.
    When excluded_ordinals is None, the inscribed outputs of the payment
    address are fetched and kept out of the funding selection.
    """
    settings = settings or get_settings()
    network = network or settings.network

    rate = await resolve_fee_rate(fee_rate, custom_fee, fee_rate_provider, token)
    utxos = await collaborator_call(utxo_provider.get_unspent_outputs(payment_address), token)
    if excluded_ordinals is None:
        excluded_ordinals = await collaborator_call(
            utxo_provider.get_ordinal_outputs(payment_address), token
        )
    if token is not None:
        token.raise_if_cancelled()

    return resolve_ordinal_send(
        recipient_address,
        ordinal_utxo,
        payment_address,
        utxos,
        fee_rate=rate,
        custom_fee=custom_fee,
        excluded=excluded_ordinals,
        network=network,
        input_type=settings.input_script_type,
        dust_threshold=settings.dust_threshold,
        max_iterations=settings.max_fee_iterations,
    )


async def sign_ordinal_send_transaction(
    recipient_address: str,
    ordinal_utxo: UTXO,
    payment_address: str,
    account_index: int,
    key_provider: KeyProvider,
    utxo_provider: UtxoProvider,
    fee_rate_provider: FeeRateProvider | None = None,
    fee_rate: FeeRateValue | None = None,
    custom_fee: int | None = None,
    excluded_ordinals: Sequence[UTXO] | None = None,
    network: NetworkType | None = None,
    settings: Settings | None = None,
    token: CancellationToken | None = None,
) -> SignedTransactionResult:
    settings = settings or get_settings()
    network = network or settings.network

    resolution = await get_btc_fees_for_ordinal_send(
        recipient_address,
        ordinal_utxo,
        payment_address,
        utxo_provider,
        fee_rate_provider=fee_rate_provider,
        fee_rate=fee_rate,
        custom_fee=custom_fee,
        excluded_ordinals=excluded_ordinals,
        network=network,
        settings=settings,
        token=token,
    )
    private_key = key_provider.get_private_key(account_index)
    result = _builder(settings, network).build_ordinal_send(
        private_key, resolution.plan, ordinal_utxo, payment_address
    )
    logger.info(f"Signed ordinal send of {ordinal_utxo.outpoint}, fee {result.fee} sats")
    return result


async def find_ordinal_utxo(
    ordinal_output: str,
    ordinals_address: str,
    utxo_provider: UtxoProvider,
    token: CancellationToken | None = None,
) -> UTXO:
    """
    Locate the UTXO holding an inscription by its "txid:vout" output.

    Raises:
        MalformedInputError: If the output is not unspent at ordinals_address
    """
    utxos = await collaborator_call(utxo_provider.get_unspent_outputs(ordinals_address), token)
    for utxo in utxos:
        if utxo.outpoint == ordinal_output:
            return utxo
    raise MalformedInputError(f"Ordinal output {ordinal_output} not found at {ordinals_address}")


async def get_btc_fees_for_ordinal_transaction(
    recipient_address: str,
    ordinal_output: str,
    context: TransactionContext,
    fee_rate_provider: FeeRateProvider | None = None,
    fee_rate: FeeRateValue | None = None,
    custom_fee: int | None = None,
    token: CancellationToken | None = None,
) -> FeeResolution:
    """Preview an inscription transfer identified by its output."""
    ordinal_utxo = await find_ordinal_utxo(
        ordinal_output, context.ordinals_address, context.utxo_provider, token
    )
    return await get_btc_fees_for_ordinal_send(
        recipient_address,
        ordinal_utxo,
        context.payment_address,
        context.utxo_provider,
        fee_rate_provider=fee_rate_provider,
        fee_rate=fee_rate,
        custom_fee=custom_fee,
        network=context.effective_network,
        settings=context.settings,
        token=token,
    )


async def sign_ordinal_transaction(
    recipient_address: str,
    ordinal_output: str,
    context: TransactionContext,
    account_index: int,
    key_provider: KeyProvider,
    fee_rate_provider: FeeRateProvider | None = None,
    fee_rate: FeeRateValue | None = None,
    custom_fee: int | None = None,
    token: CancellationToken | None = None,
) -> SignedTransactionResult:
    """Build and sign an inscription transfer identified by its output."""
    ordinal_utxo = await find_ordinal_utxo(
        ordinal_output, context.ordinals_address, context.utxo_provider, token
    )
    return await sign_ordinal_send_transaction(
        recipient_address,
        ordinal_utxo,
        context.payment_address,
        account_index,
        key_provider,
        context.utxo_provider,
        fee_rate_provider=fee_rate_provider,
        fee_rate=fee_rate,
        custom_fee=custom_fee,
        network=context.effective_network,
        settings=context.settings,
        token=token,
    )
