"""
Transaction construction data models.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, model_validator

from ordwallet.errors import InsufficientFundsError, MalformedInputError

if TYPE_CHECKING:
    from ordwallet.signing import Transaction


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


@dataclass(frozen=True)
class Confirmation:
    confirmed: bool
    block_height: int | None = None
    block_time: int | None = None
    block_hash: str | None = None


@dataclass(frozen=True)
class UTXO:
    """Unspent output as reported by the indexer. Identity is (txid, vout)."""

    txid: str
    vout: int
    value: int
    address: str
    status: Confirmation = field(default_factory=lambda: Confirmation(confirmed=True))

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"

    @property
    def confirmed(self) -> bool:
        return self.status.confirmed


@dataclass(frozen=True)
class Recipient:
    address: str
    amount: int

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise MalformedInputError(f"Recipient amount must be non-negative: {self.amount}")


class FeeLimits(BaseModel):
    min: float = Field(..., gt=0)
    max: float = Field(..., gt=0)


class FeeRate(BaseModel):
    """Recommended fee rates in sats/vbyte."""

    regular: float = Field(..., gt=0)
    priority: float = Field(..., gt=0)
    limits: FeeLimits | None = None

    @model_validator(mode="after")
    def check_limits(self) -> FeeRate:
        if self.limits is not None and self.limits.min > self.limits.max:
            raise ValueError("Fee limit min exceeds max")
        return self


@dataclass
class SelectionResult:
    """Ordered UTXOs chosen by the selector."""

    utxos: list[UTXO] = field(default_factory=list)

    @property
    def total_value(self) -> int:
        return sum(utxo.value for utxo in self.utxos)

    def __len__(self) -> int:
        return len(self.utxos)

    def __iter__(self) -> Iterator[UTXO]:
        return iter(self.utxos)

    def __getitem__(self, index: int) -> UTXO:
        return self.utxos[index]


@dataclass(frozen=True)
class ChangeOutput:
    address: str
    value: int


@dataclass
class TransactionPlan:
    """
    Resolved inputs, outputs and fee for one transaction.

    Invariant: inputs.total_value == sum(outputs) + change.value + fee.
    """

    inputs: SelectionResult
    outputs: list[Recipient]
    change: ChangeOutput | None
    fee: int

    def __post_init__(self) -> None:
        spent = self.output_value + self.change_value + self.fee
        if self.inputs.total_value != spent:
            raise MalformedInputError(
                f"Unbalanced plan: inputs {self.inputs.total_value} != "
                f"outputs {self.output_value} + change {self.change_value} + fee {self.fee}"
            )

    @property
    def output_value(self) -> int:
        return sum(r.amount for r in self.outputs)

    @property
    def change_value(self) -> int:
        return self.change.value if self.change else 0

    @classmethod
    def from_selection(
        cls,
        selection: SelectionResult,
        outputs: list[Recipient],
        fee: int,
        change_address: str,
        dust_threshold: int,
    ) -> TransactionPlan:
        """
        Derive the change output from a selection and a fee.

        A remainder at or below the dust threshold is folded into the fee.
        """
        amount = sum(r.amount for r in outputs)
        remainder = selection.total_value - amount - fee
        if remainder < 0:
            raise InsufficientFundsError(required=amount + fee, available=selection.total_value)

        if remainder > dust_threshold:
            return cls(selection, list(outputs), ChangeOutput(change_address, remainder), fee)
        return cls(selection, list(outputs), None, fee + remainder)


@dataclass
class SignedTransactionResult:
    tx: Transaction
    signed_tx: str
    fee: int

    @property
    def vsize(self) -> int:
        return self.tx.vsize


@dataclass(frozen=True)
class CommitValueBreakdown:
    """Cost of a BRC-20 transfer inscription's commit/reveal/transfer sequence."""

    commit_chain_fee: int
    reveal_chain_fee: int
    reveal_service_fee: int
    transfer_chain_fee: int
    transfer_utxo_value: int

    @property
    def total(self) -> int:
        return (
            self.commit_chain_fee
            + self.reveal_chain_fee
            + self.reveal_service_fee
            + self.transfer_chain_fee
            + self.transfer_utxo_value
        )


@dataclass(frozen=True)
class Brc20TransferEstimate:
    commit_value: int
    breakdown: CommitValueBreakdown
    advisory: bool = False  # True when priced against a fictitious UTXO
