"""
Fee resolution.

Finds a self-consistent (input set, fee) pair: selecting more inputs grows the
transaction, which raises the fee, which may require more inputs.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from loguru import logger

from ordwallet.errors import InsufficientFundsError, MalformedInputError
from ordwallet.fees import estimate_fee
from ordwallet.models import UTXO, NetworkType, Recipient, SelectionResult, TransactionPlan
from ordwallet.scripts import ScriptType, classify_address
from ordwallet.selection import select_utxos

DEFAULT_DUST_THRESHOLD = 546
DEFAULT_MAX_ITERATIONS = 30


@dataclass
class FeeResolution:
    selection: SelectionResult
    fee: int
    plan: TransactionPlan


def _price_selection(
    selection: SelectionResult,
    amount: int,
    output_types: Sequence[ScriptType],
    change_type: ScriptType,
    fee_rate: float | Decimal,
    input_type: ScriptType,
    dust_threshold: int,
) -> tuple[int, bool]:
    """Fee for the selection and whether that fee pays for a change output."""
    count = len(selection)
    with_change = estimate_fee(count, output_types, fee_rate, input_type, True, change_type)
    if selection.total_value - amount - with_change > dust_threshold:
        return with_change, True
    return estimate_fee(count, output_types, fee_rate, input_type), False


def calculate_fee(
    selection: SelectionResult,
    amount: int,
    recipients: Sequence[Recipient],
    fee_rate: float | Decimal,
    change_address: str,
    network: NetworkType | None = None,
    input_type: ScriptType = ScriptType.WRAPPED_SEGWIT,
    dust_threshold: int = DEFAULT_DUST_THRESHOLD,
) -> int:
    """
    Size-based fee for spending selection to recipients.

    The change output is priced in only when what is left after paying for it
    is above the dust threshold.
    """
    output_types = [classify_address(r.address, network) for r in recipients]
    change_type = classify_address(change_address, network)
    fee, _ = _price_selection(
        selection, amount, output_types, change_type, fee_rate, input_type, dust_threshold
    )
    return fee


def resolve_fee(
    recipients: Sequence[Recipient],
    change_address: str,
    utxos: Sequence[UTXO],
    fee_rate: float | Decimal | None = None,
    custom_fee: int | None = None,
    pinned: UTXO | None = None,
    excluded: Iterable[UTXO] = (),
    network: NetworkType | None = None,
    input_type: ScriptType = ScriptType.WRAPPED_SEGWIT,
    dust_threshold: int = DEFAULT_DUST_THRESHOLD,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> FeeResolution:
    """
    Resolve inputs and fee for paying recipients from utxos.

    Args:
        recipients: Outputs in order
        change_address: Where change goes
        utxos: Spendable pool snapshot
        fee_rate: sats/vbyte (ignored when custom_fee is given)
        custom_fee: Fixed fee in satoshis, bypasses size-based pricing
        pinned: UTXO forced as first input (ordinal transfers)
        excluded: UTXOs never to be auto-selected
        network: Network the addresses must belong to
        input_type: Script kind the inputs are spent with
        dust_threshold: Largest remainder folded into the fee instead of change
        max_iterations: Bound on the selection / pricing loop

    Returns:
        FeeResolution with the selection, the fee and the balanced plan

    Raises:
        InvalidAddressError: If a recipient or the change address does not parse
        MalformedInputError: If neither a fee rate nor a custom fee is available
        InsufficientFundsError: If the pool cannot cover amount plus fee
    """
    if not recipients:
        raise MalformedInputError("At least one recipient is required")
    if custom_fee is not None and custom_fee < 0:
        raise MalformedInputError(f"Custom fee must be non-negative, got {custom_fee}")

    output_types = [classify_address(r.address, network) for r in recipients]
    change_type = classify_address(change_address, network)
    outputs = list(recipients)
    amount = sum(r.amount for r in outputs)
    excluded = list(excluded)

    if custom_fee is not None:
        required = amount + custom_fee
        selection = select_utxos(required, None, utxos, pinned, excluded, input_type)
        remainder = selection.total_value - required
        if 0 < remainder <= dust_threshold:
            # Try to turn a dust remainder into a spendable change output
            try:
                selection = select_utxos(
                    required + dust_threshold + 1, None, utxos, pinned, excluded, input_type
                )
            except InsufficientFundsError:
                logger.warning(
                    f"Custom fee leaves {remainder} sats of dust, folding it into the fee"
                )
        plan = TransactionPlan.from_selection(
            selection, outputs, custom_fee, change_address, dust_threshold
        )
        logger.debug(f"Custom fee {custom_fee} sats over {len(selection)} inputs")
        return FeeResolution(selection, plan.fee, plan)

    if fee_rate is None:
        raise MalformedInputError("Fee rate unavailable: supply a custom fee")

    selection = select_utxos(amount, fee_rate, utxos, pinned, excluded, input_type)
    fee, priced_change = _price_selection(
        selection, amount, output_types, change_type, fee_rate, input_type, dust_threshold
    )

    for iteration in range(max_iterations):
        if selection.total_value >= amount + fee:
            break
        logger.debug(
            f"Fee iteration {iteration}: {len(selection)} inputs hold "
            f"{selection.total_value} sats, need {amount + fee}"
        )
        selection = select_utxos(amount + fee, fee_rate, utxos, pinned, excluded, input_type)
        fee, priced_change = _price_selection(
            selection, amount, output_types, change_type, fee_rate, input_type, dust_threshold
        )
    else:
        if selection.total_value < amount + fee:
            raise InsufficientFundsError(
                required=amount + fee,
                available=selection.total_value,
                message=f"Fee resolution did not converge after {max_iterations} iterations",
            )

    if not priced_change:
        # No change output was paid for, so the whole remainder goes to the fee
        fee = selection.total_value - amount

    plan = TransactionPlan.from_selection(selection, outputs, fee, change_address, dust_threshold)
    logger.debug(
        f"Resolved fee {plan.fee} sats at {fee_rate} sat/vB over {len(selection)} inputs"
    )
    return FeeResolution(selection, plan.fee, plan)


def resolve_ordinal_send(
    recipient_address: str,
    ordinal_utxo: UTXO,
    change_address: str,
    utxos: Sequence[UTXO],
    fee_rate: float | Decimal | None = None,
    custom_fee: int | None = None,
    excluded: Iterable[UTXO] = (),
    network: NetworkType | None = None,
    input_type: ScriptType = ScriptType.WRAPPED_SEGWIT,
    dust_threshold: int = DEFAULT_DUST_THRESHOLD,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> FeeResolution:
    """
    Resolve an inscription transfer.

    The inscription UTXO is input 0 and its full value goes to the single
    recipient output; the remaining inputs only pay the fee and change.
    """
    recipients = [Recipient(recipient_address, ordinal_utxo.value)]
    return resolve_fee(
        recipients,
        change_address,
        utxos,
        fee_rate=fee_rate,
        custom_fee=custom_fee,
        pinned=ordinal_utxo,
        excluded=excluded,
        network=network,
        input_type=input_type,
        dust_threshold=dust_threshold,
        max_iterations=max_iterations,
    )
