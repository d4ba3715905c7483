"""
BRC-20 transfer fee estimator.

Keeps the latest commit value estimate for a set of transfer parameters.
Changing the parameters supersedes the outstanding request; a superseded or
cancelled request never touches the visible value or error.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from loguru import logger

from ordwallet.brc20 import (
    Brc20ErrorCode,
    Brc20TransferRequest,
    error_code_for,
    estimate_transfer_fees,
)
from ordwallet.cancellation import CancellationToken
from ordwallet.errors import RequestCancelled, TransactionError
from ordwallet.models import Brc20TransferEstimate, CommitValueBreakdown
from ordwallet.transactions import TransactionContext

SUPERSEDED_REASON = "Fee estimate out of scope, cleaning up"


class EstimateState(str, Enum):
    IDLE = "idle"
    ESTIMATING = "estimating"
    ESTIMATING_FALLBACK = "estimating_fallback"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class EstimatorSnapshot:
    state: EstimateState
    commit_value: int | None
    breakdown: CommitValueBreakdown | None
    error_code: Brc20ErrorCode | None

    @property
    def is_loading(self) -> bool:
        return self.state in (EstimateState.ESTIMATING, EstimateState.ESTIMATING_FALLBACK)


class Brc20TransferFeeEstimator:
    """
    Request state machine for BRC-20 transfer estimates.

    IDLE -> ESTIMATING -> DONE
                       -> ESTIMATING_FALLBACK -> DONE | FAILED
                       -> FAILED
                       -> CANCELLED

    The primary estimate runs against the payment address' real UTXOs. If it
    fails with INSUFFICIENT_FUNDS, a second estimate against a fictitious UTXO
    provides advisory values while the error code stays INSUFFICIENT_FUNDS.
    """

    def __init__(self, context: TransactionContext, skip_initial_fetch: bool = False):
        self.context = context
        self.skip_initial_fetch = skip_initial_fetch

        self.state = EstimateState.IDLE
        self.commit_value: int | None = None
        self.breakdown: CommitValueBreakdown | None = None
        self.error_code: Brc20ErrorCode | None = None

        self._initialised = False
        self._params: tuple | None = None
        self._tokens: tuple[CancellationToken, CancellationToken] | None = None
        self._task: asyncio.Task[None] | None = None

    def snapshot(self) -> EstimatorSnapshot:
        return EstimatorSnapshot(self.state, self.commit_value, self.breakdown, self.error_code)

    def request(
        self,
        tick: str,
        amount: int | str | Decimal,
        fee_rate: float | Decimal,
        reveal_address: str,
    ) -> asyncio.Task[None] | None:
        """
        Start estimating for new parameters.

        Unchanged parameters keep the outstanding request. Must be called from
        a running event loop.

        Returns:
            The task running the estimate, or None if the first request was
            skipped
        """
        params = (tick, amount, fee_rate, reveal_address)
        if self._initialised and params == self._params:
            return self._task

        self._params = params
        self._cancel_outstanding(SUPERSEDED_REASON)

        if self.skip_initial_fetch and not self._initialised:
            self._initialised = True
            logger.debug("Skipping initial BRC-20 fee estimate")
            return None
        self._initialised = True

        primary, fallback = CancellationToken(), CancellationToken()
        self._tokens = (primary, fallback)
        self.state = EstimateState.ESTIMATING
        self.error_code = None

        request = Brc20TransferRequest(tick, amount, reveal_address, fee_rate)
        self._task = asyncio.create_task(self._run(request, primary, fallback))
        return self._task

    async def wait(self) -> EstimatorSnapshot:
        """Wait for the outstanding request and return the resulting state."""
        if self._task is not None:
            await self._task
        return self.snapshot()

    def cancel(self, reason: str = "Fee estimate cancelled") -> None:
        """Abandon the outstanding request, keeping the last visible values."""
        if self.state in (EstimateState.ESTIMATING, EstimateState.ESTIMATING_FALLBACK):
            self._cancel_outstanding(reason)
            self.state = EstimateState.CANCELLED

    def _cancel_outstanding(self, reason: str) -> None:
        if self._tokens is None:
            return
        for token in self._tokens:
            token.cancel(reason)
        self._tokens = None

    async def _estimate(
        self, request: Brc20TransferRequest, token: CancellationToken, fictitious: bool
    ) -> Brc20TransferEstimate | Brc20ErrorCode:
        try:
            return await estimate_transfer_fees(request, self.context, token, fictitious)
        except TransactionError as e:
            logger.debug(f"BRC-20 estimate failed: {e}")
            return error_code_for(e)

    async def _run(
        self,
        request: Brc20TransferRequest,
        primary: CancellationToken,
        fallback: CancellationToken,
    ) -> None:
        try:
            result = await self._estimate(request, primary, fictitious=False)
            if result is Brc20ErrorCode.INSUFFICIENT_FUNDS:
                primary.raise_if_cancelled()
                self.state = EstimateState.ESTIMATING_FALLBACK
                logger.warning(
                    "Insufficient funds for BRC-20 transfer, estimating with a fictitious UTXO"
                )
                fallback_result = await self._estimate(request, fallback, fictitious=True)
                fallback.raise_if_cancelled()
                if isinstance(fallback_result, Brc20ErrorCode):
                    self._fail(fallback_result)
                else:
                    self._succeed(fallback_result, Brc20ErrorCode.INSUFFICIENT_FUNDS)
                return

            primary.raise_if_cancelled()
            if isinstance(result, Brc20ErrorCode):
                self._fail(result)
            else:
                self._succeed(result, None)
        except RequestCancelled as e:
            logger.debug(f"BRC-20 estimate cancelled: {e.reason}")
        except Exception:
            if not primary.cancelled:
                self._fail(Brc20ErrorCode.SERVER_ERROR)
            raise

    def _succeed(self, estimate: Brc20TransferEstimate, error_code: Brc20ErrorCode | None) -> None:
        self.commit_value = estimate.commit_value
        self.breakdown = estimate.breakdown
        self.error_code = error_code
        self.state = EstimateState.DONE

    def _fail(self, error_code: Brc20ErrorCode) -> None:
        self.error_code = error_code
        self.state = EstimateState.FAILED
