"""
BRC-20 transfer inscription fee estimation.

A BRC-20 transfer takes three transactions:

  1. commit   - pays the reveal fee, postage and service fee to a taproot
                output committing to the inscription script
  2. reveal   - spends the commit output through the script path, writing the
                transfer inscription onto a postage-sized output
  3. transfer - sends the inscribed output on, funded by the payment address

The commit value a user is asked to pay covers all three.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum

from loguru import logger

from ordwallet.cancellation import CancellationToken
from ordwallet.errors import (
    ErrorKind,
    InsufficientFundsError,
    InvalidAddressError,
    NetworkError,
    TransactionError,
)
from ordwallet.fees import compute_fee, estimate_fee
from ordwallet.models import (
    UTXO,
    Brc20TransferEstimate,
    CommitValueBreakdown,
    Confirmation,
    Recipient,
)
from ordwallet.resolver import resolve_fee, resolve_ordinal_send
from ordwallet.scripts import ScriptType, classify_address, taproot_placeholder_address
from ordwallet.signing import encode_varint, push_data
from ordwallet.transactions import TransactionContext, collaborator_call

DEFAULT_CONTENT_TYPE = "text/plain;charset=utf-8"

# Largest single script push allowed by consensus
MAX_PUSH_SIZE = 520

# Placeholder outpoints for outputs that do not exist yet
_PENDING_INSCRIPTION_TXID = "00" * 32
_FICTITIOUS_TXID = "ff" * 32


class Brc20ErrorCode(str, Enum):
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INVALID_TICK = "INVALID_TICK"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_FEE_RATE = "INVALID_FEE_RATE"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVER_ERROR = "SERVER_ERROR"


class Brc20Error(TransactionError):
    """Invalid BRC-20 transfer parameters."""

    kind = ErrorKind.MALFORMED_INPUT

    def __init__(self, code: Brc20ErrorCode, message: str):
        self.code = code
        super().__init__(message)


def error_code_for(exc: BaseException) -> Brc20ErrorCode:
    if isinstance(exc, Brc20Error):
        return exc.code
    if isinstance(exc, InsufficientFundsError):
        return Brc20ErrorCode.INSUFFICIENT_FUNDS
    if isinstance(exc, InvalidAddressError):
        return Brc20ErrorCode.INVALID_ADDRESS
    if isinstance(exc, NetworkError):
        return Brc20ErrorCode.NETWORK_ERROR
    return Brc20ErrorCode.SERVER_ERROR


@dataclass(frozen=True)
class Brc20TransferRequest:
    tick: str
    amount: int | str | Decimal
    reveal_address: str
    fee_rate: float | Decimal


def _format_amount(amount: int | str | Decimal) -> str:
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise Brc20Error(Brc20ErrorCode.INVALID_AMOUNT, f"Invalid amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise Brc20Error(Brc20ErrorCode.INVALID_AMOUNT, f"Amount must be positive: {amount!r}")
    return format(value.normalize(), "f")


def transfer_inscription_content(tick: str, amount: int | str | Decimal) -> bytes:
    """
    The BRC-20 transfer inscription body.

    >>> transfer_inscription_content("ordi", 10)
    b'{"p":"brc-20","op":"transfer","tick":"ordi","amt":"10"}'
    """
    if len(tick) != 4:
        raise Brc20Error(Brc20ErrorCode.INVALID_TICK, f"Tick must be 4 characters: {tick!r}")
    body = {"p": "brc-20", "op": "transfer", "tick": tick, "amt": _format_amount(amount)}
    return json.dumps(body, separators=(",", ":")).encode()


def inscription_script(
    content: bytes,
    content_type: str = DEFAULT_CONTENT_TYPE,
    internal_key: bytes = bytes(32),
) -> bytes:
    """
    Ordinals envelope tapscript:

        <x-only pubkey> OP_CHECKSIG
        OP_FALSE OP_IF "ord" OP_1 <content type> OP_0 <content chunks...> OP_ENDIF
    """
    script = push_data(internal_key) + b"\xac"
    script += b"\x00\x63" + push_data(b"ord") + b"\x51" + push_data(content_type.encode())
    script += b"\x00"
    for i in range(0, len(content), MAX_PUSH_SIZE):
        script += push_data(content[i : i + MAX_PUSH_SIZE])
    script += b"\x68"
    return script


def estimate_reveal_vsize(
    content: bytes,
    content_type: str = DEFAULT_CONTENT_TYPE,
    service_output: bool = False,
) -> int:
    """
    Virtual size of a reveal transaction.

    One taproot script-path input carrying the envelope, one taproot output
    for the inscription and optionally a second one for the service fee.
    """
    output_count = 2 if service_output else 1
    # version + input count + outpoint/empty scriptSig/sequence + output count
    # + P2TR outputs + locktime
    base_size = 4 + 1 + 41 + 1 + 43 * output_count + 4

    script = inscription_script(content, content_type)
    witness_items = [
        bytes(64),  # schnorr signature
        script,
        bytes(33),  # control block for a single-leaf tree
    ]
    witness_size = 2  # marker and flag
    witness_size += len(encode_varint(len(witness_items)))
    witness_size += sum(len(encode_varint(len(item))) + len(item) for item in witness_items)

    return math.ceil((base_size * 4 + witness_size) / 4)


def _fictitious_utxo(value: int, address: str, vout: int = 0) -> UTXO:
    return UTXO(_FICTITIOUS_TXID, vout, value, address, Confirmation(confirmed=True))


def _validate_request(request: Brc20TransferRequest) -> bytes:
    try:
        rate = Decimal(str(request.fee_rate))
    except InvalidOperation as e:
        raise Brc20Error(Brc20ErrorCode.INVALID_FEE_RATE, "Fee rate is not a number") from e
    if not rate.is_finite() or rate <= 0:
        raise Brc20Error(
            Brc20ErrorCode.INVALID_FEE_RATE, f"Fee rate must be positive: {request.fee_rate}"
        )
    return transfer_inscription_content(request.tick, request.amount)


async def estimate_transfer_fees(
    request: Brc20TransferRequest,
    context: TransactionContext,
    token: CancellationToken | None = None,
    fictitious: bool = False,
) -> Brc20TransferEstimate:
    """
    Estimate the commit value of a BRC-20 transfer inscription.

    Args:
        request: Tick, amount, reveal address and fee rate
        context: Payment address and UTXO source
        token: Cancels the collaborator calls of this estimate
        fictitious: Price against placeholder UTXOs that exactly cover each
            transaction, for when the real pool is too small

    Returns:
        Brc20TransferEstimate; advisory when fictitious

    Raises:
        Brc20Error: On an invalid tick, amount or fee rate
        InvalidAddressError: If the reveal or payment address does not parse
        InsufficientFundsError: If the payment address cannot fund the transfer
        NetworkError: If the UTXO source is unreachable
        RequestCancelled: If token fires
    """
    content = _validate_request(request)
    settings = context.settings
    network = context.effective_network
    payment_address = context.payment_address
    input_type = settings.input_script_type
    fee_rate = request.fee_rate
    postage = settings.brc20_postage
    service_fee = settings.brc20_reveal_service_fee

    reveal_type = classify_address(request.reveal_address, network)
    classify_address(payment_address, network)

    reveal_vsize = estimate_reveal_vsize(content, service_output=service_fee > 0)
    reveal_chain_fee = compute_fee(reveal_vsize, fee_rate)
    commit_amount = reveal_chain_fee + postage + service_fee
    commit_recipient = Recipient(taproot_placeholder_address(network), commit_amount)

    if fictitious:
        commit_pool = [
            _fictitious_utxo(
                commit_amount + estimate_fee(1, [ScriptType.TAPROOT], fee_rate, input_type),
                payment_address,
            )
        ]
        excluded: list[UTXO] = []
    else:
        commit_pool = await collaborator_call(
            context.utxo_provider.get_unspent_outputs(payment_address), token
        )
        excluded = await collaborator_call(
            context.utxo_provider.get_ordinal_outputs(payment_address), token
        )
    if token is not None:
        token.raise_if_cancelled()

    commit = resolve_fee(
        [commit_recipient],
        payment_address,
        commit_pool,
        fee_rate=fee_rate,
        excluded=excluded,
        network=network,
        input_type=input_type,
        dust_threshold=settings.dust_threshold,
        max_iterations=settings.max_fee_iterations,
    )

    inscription_utxo = UTXO(
        _PENDING_INSCRIPTION_TXID, 0, postage, request.reveal_address, Confirmation(False)
    )
    if fictitious:
        transfer_pool = [
            _fictitious_utxo(
                estimate_fee(2, [reveal_type], fee_rate, input_type), payment_address, vout=1
            )
        ]
    else:
        spent = {utxo.outpoint for utxo in commit.selection}
        transfer_pool = [utxo for utxo in commit_pool if utxo.outpoint not in spent]

    transfer = resolve_ordinal_send(
        request.reveal_address,
        inscription_utxo,
        payment_address,
        transfer_pool,
        fee_rate=fee_rate,
        excluded=excluded,
        network=network,
        input_type=input_type,
        dust_threshold=settings.dust_threshold,
        max_iterations=settings.max_fee_iterations,
    )

    breakdown = CommitValueBreakdown(
        commit_chain_fee=commit.fee,
        reveal_chain_fee=reveal_chain_fee,
        reveal_service_fee=service_fee,
        transfer_chain_fee=transfer.fee,
        transfer_utxo_value=postage,
    )
    logger.info(
        f"BRC-20 transfer {request.amount} {request.tick}: commit value {breakdown.total} sats"
        f"{' (advisory)' if fictitious else ''}"
    )
    return Brc20TransferEstimate(
        commit_value=breakdown.total, breakdown=breakdown, advisory=fictitious
    )
