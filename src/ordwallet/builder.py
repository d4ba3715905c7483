"""
Transaction builder and signer.

Turns a resolved selection and its outputs into a fully signed transaction:
- Inputs: selection order, every input spent with the account's script kind
- Outputs: recipients in order, then one change output when above dust
"""

from __future__ import annotations

from collections.abc import Sequence

from coincurve import PrivateKey
from loguru import logger

from ordwallet.errors import InsufficientFundsError, MalformedInputError
from ordwallet.models import (
    UTXO,
    NetworkType,
    Recipient,
    SelectionResult,
    SignedTransactionResult,
    TransactionPlan,
)
from ordwallet.resolver import DEFAULT_DUST_THRESHOLD
from ordwallet.scripts import ScriptType, address_to_scriptpubkey
from ordwallet.signing import Transaction, TxInput, TxOutput, sign_input


def _as_private_key(private_key: PrivateKey | bytes) -> PrivateKey:
    if isinstance(private_key, PrivateKey):
        return private_key
    if len(private_key) != 32:
        raise MalformedInputError("Private key must be 32 bytes")
    return PrivateKey(private_key)


class TransactionBuilder:
    """
    Builds and signs transactions for one network and one input script kind.

    The private key is only used for the duration of a build call.
    """

    def __init__(
        self,
        network: NetworkType = NetworkType.MAINNET,
        input_type: ScriptType = ScriptType.WRAPPED_SEGWIT,
        dust_threshold: int = DEFAULT_DUST_THRESHOLD,
    ):
        self.network = network
        self.input_type = input_type
        self.dust_threshold = dust_threshold

    def build(
        self,
        private_key: PrivateKey | bytes,
        selection: SelectionResult,
        amount_to_send: int,
        recipients: Sequence[Recipient],
        change_address: str,
    ) -> SignedTransactionResult:
        """
        Build and sign a transaction.

        Args:
            private_key: Key controlling every selected input
            selection: Inputs in spend order
            amount_to_send: Recipients total plus fee
            recipients: Outputs in order
            change_address: Receives the remainder when above the dust threshold

        Returns:
            SignedTransactionResult with the decoded tx, its hex and the fee paid

        Raises:
            InsufficientFundsError: If selection does not cover amount_to_send
            InvalidAddressError: If a recipient or the change address does not parse
        """
        if not recipients:
            raise MalformedInputError("At least one recipient is required")

        recipients_total = sum(r.amount for r in recipients)
        if amount_to_send < recipients_total:
            raise MalformedInputError(
                f"Amount to send {amount_to_send} is below recipients total {recipients_total}"
            )
        if selection.total_value < amount_to_send:
            raise InsufficientFundsError(
                required=amount_to_send, available=selection.total_value
            )

        # Parse every address before touching the key
        outputs = [
            TxOutput(r.amount, address_to_scriptpubkey(r.address, self.network))
            for r in recipients
        ]
        change_script = address_to_scriptpubkey(change_address, self.network)

        change = selection.total_value - amount_to_send
        if change > self.dust_threshold:
            outputs.append(TxOutput(change, change_script))
        elif change > 0:
            logger.debug(f"Folding {change} sats of sub-dust change into the fee")

        tx = Transaction(
            inputs=[TxInput(utxo.txid, utxo.vout) for utxo in selection],
            outputs=outputs,
        )

        key = _as_private_key(private_key)
        for index, utxo in enumerate(selection):
            sign_input(tx, index, utxo.value, key, self.input_type)

        fee = selection.total_value - sum(out.value for out in tx.outputs)
        logger.info(
            f"Signed transaction {tx.txid}: {len(tx.inputs)} inputs, "
            f"{len(tx.outputs)} outputs, {tx.vsize} vB, fee {fee} sats"
        )
        return SignedTransactionResult(tx=tx, signed_tx=tx.to_hex(), fee=fee)

    def build_from_plan(
        self, private_key: PrivateKey | bytes, plan: TransactionPlan, change_address: str
    ) -> SignedTransactionResult:
        """Sign a resolved plan. The plan's fee is honoured exactly."""
        if plan.change is not None and plan.change.address != change_address:
            raise MalformedInputError("Change address does not match the resolved plan")
        amount_to_send = plan.output_value + plan.fee
        return self.build(private_key, plan.inputs, amount_to_send, plan.outputs, change_address)

    def build_ordinal_send(
        self,
        private_key: PrivateKey | bytes,
        plan: TransactionPlan,
        ordinal_utxo: UTXO,
        change_address: str,
    ) -> SignedTransactionResult:
        """Sign an inscription transfer after checking the ordinal maps 1:1 to output 0."""
        verify_ordinal_pairing(plan, ordinal_utxo)
        return self.build_from_plan(private_key, plan, change_address)


def verify_ordinal_pairing(plan: TransactionPlan, ordinal_utxo: UTXO) -> None:
    """
    The inscribed UTXO must be input 0 and its whole value must land in output 0.

    Raises:
        MalformedInputError: If the pairing is broken
    """
    if not plan.inputs.utxos or plan.inputs[0].outpoint != ordinal_utxo.outpoint:
        raise MalformedInputError(f"Ordinal {ordinal_utxo.outpoint} must be the first input")
    if len(plan.outputs) != 1 or plan.outputs[0].amount != ordinal_utxo.value:
        raise MalformedInputError(
            f"Ordinal value {ordinal_utxo.value} must flow to exactly one recipient output"
        )
    if any(utxo.outpoint == ordinal_utxo.outpoint for utxo in plan.inputs.utxos[1:]):
        raise MalformedInputError(f"Ordinal {ordinal_utxo.outpoint} selected twice")
