"""
UTXO selection.

Greedy, largest-first, confirmed before unconfirmed, with a per-candidate
dust test against the current fee rate.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal

from loguru import logger

from ordwallet.errors import InsufficientFundsError
from ordwallet.fees import marginal_input_fee
from ordwallet.models import UTXO, SelectionResult
from ordwallet.scripts import ScriptType


def sum_utxos(utxos: Iterable[UTXO]) -> int:
    return sum(utxo.value for utxo in utxos)


def filter_utxos(utxos: Iterable[UTXO], excluded: Iterable[UTXO]) -> list[UTXO]:
    """Drop every UTXO whose outpoint appears in excluded, keeping pool order."""
    excluded_outpoints = {utxo.outpoint for utxo in excluded}
    return [utxo for utxo in utxos if utxo.outpoint not in excluded_outpoints]


def order_utxos(utxos: Sequence[UTXO]) -> list[UTXO]:
    """
    Confirmed UTXOs first, then unconfirmed, each descending by value.

    sorted() is stable, so equal values keep their pool order.
    """
    confirmed = sorted((u for u in utxos if u.confirmed), key=lambda u: u.value, reverse=True)
    unconfirmed = sorted(
        (u for u in utxos if not u.confirmed), key=lambda u: u.value, reverse=True
    )
    return confirmed + unconfirmed


def select_utxos(
    target: int,
    fee_rate: float | Decimal | None,
    utxos: Sequence[UTXO],
    pinned: UTXO | None = None,
    excluded: Iterable[UTXO] = (),
    input_type: ScriptType = ScriptType.WRAPPED_SEGWIT,
) -> SelectionResult:
    """
    Select UTXOs whose total value covers target.

    Args:
        target: Satoshis the selection must cover (the resolver folds the fee in)
        fee_rate: sats/vbyte used for the dust test; None disables it
        utxos: Candidate pool
        pinned: Inscription UTXO forced as the first input, never auto-selected
        excluded: Inscription UTXOs that must never be auto-selected
        input_type: Script kind the inputs are spent with

    Returns:
        SelectionResult in spend order

    Raises:
        InsufficientFundsError: If the eligible pool cannot reach target
    """
    protected = list(excluded)
    if pinned is not None:
        protected.append(pinned)
    eligible = order_utxos(filter_utxos(utxos, protected))

    dust_limit = marginal_input_fee(fee_rate, input_type) if fee_rate is not None else 0

    selected: list[UTXO] = []
    total = 0
    if pinned is not None:
        selected.append(pinned)
        total += pinned.value

    for utxo in eligible:
        if total >= target:
            break
        if utxo.value < dust_limit:
            logger.debug(
                f"Skipping dust UTXO {utxo.outpoint} ({utxo.value} sats < {dust_limit} sats "
                f"input fee)"
            )
            continue
        selected.append(utxo)
        total += utxo.value

    if total < target:
        raise InsufficientFundsError(required=target, available=total)

    logger.debug(f"Selected {len(selected)} UTXOs totalling {total} sats for target {target}")
    return SelectionResult(selected)
