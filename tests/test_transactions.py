"""
Tests for the caller-facing send and preview operations.
"""

from __future__ import annotations

import httpx
import pytest
from fakes import (
    P2PKH_RECIPIENT_1,
    P2PKH_RECIPIENT_2,
    P2SH_RECIPIENT,
    PAYMENT_ADDRESS,
    FakeFeeRateProvider,
    FakeUtxoProvider,
    taproot_address,
)

from ordwallet.cancellation import CancellationToken
from ordwallet.errors import (
    InsufficientFundsError,
    MalformedInputError,
    NetworkError,
    RequestCancelled,
    ServerError,
)
from ordwallet.models import Recipient
from ordwallet.signing import deserialize_transaction
from ordwallet.transactions import (
    TransactionContext,
    collaborator_call,
    find_ordinal_utxo,
    get_btc_fees,
    get_btc_fees_for_ordinal_send,
    get_btc_fees_for_ordinal_transaction,
    sign_btc_transaction,
    sign_ordinal_send_transaction,
    sign_ordinal_transaction,
)

ORDINALS = taproot_address(9)


@pytest.fixture
def recipients() -> list[Recipient]:
    return [Recipient(P2PKH_RECIPIENT_1, 200000), Recipient(P2PKH_RECIPIENT_2, 100000)]


class TestCollaboratorCall:
    """Tests for collaborator failure classification."""

    @pytest.mark.asyncio
    async def test_http_error_is_network_error(self) -> None:
        async def fetch() -> None:
            raise httpx.ConnectError("connection refused")

        with pytest.raises(NetworkError):
            await collaborator_call(fetch())

    @pytest.mark.asyncio
    async def test_unexpected_error_is_server_error(self) -> None:
        async def fetch() -> None:
            raise KeyError("halfHourFee")

        with pytest.raises(ServerError):
            await collaborator_call(fetch(), CancellationToken())

    @pytest.mark.asyncio
    async def test_classified_errors_pass_through(self) -> None:
        async def fetch() -> None:
            raise InsufficientFundsError(required=2, available=1)

        with pytest.raises(InsufficientFundsError):
            await collaborator_call(fetch())

    @pytest.mark.asyncio
    async def test_cancellation_passes_through(self) -> None:
        async def fetch() -> int:
            return 1

        token = CancellationToken()
        token.cancel()
        with pytest.raises(RequestCancelled):
            await collaborator_call(fetch(), token)


class TestBtcSend:
    """Tests for plain BTC sends."""

    @pytest.mark.asyncio
    async def test_preview_uses_recommended_rate(self, make_utxo, recipients, settings) -> None:
        pool = [make_utxo(100000), make_utxo(200000), make_utxo(250000)]
        utxo_provider = FakeUtxoProvider(utxos={PAYMENT_ADDRESS: pool})
        fee_provider = FakeFeeRateProvider(regular=10)

        resolution = await get_btc_fees(
            recipients, PAYMENT_ADDRESS, utxo_provider, fee_provider, settings=settings
        )

        # P2SH change: 10 + 2 * 91 + 2 * 34 + 32 vB
        assert resolution.fee == 2920
        assert fee_provider.calls == 1
        assert utxo_provider.calls == [("utxos", PAYMENT_ADDRESS)]

    @pytest.mark.asyncio
    async def test_explicit_rate_skips_provider(self, make_utxo, recipients, settings) -> None:
        pool = [make_utxo(250000), make_utxo(200000)]
        fee_provider = FakeFeeRateProvider(error=httpx.ConnectError("down"))

        resolution = await get_btc_fees(
            recipients,
            PAYMENT_ADDRESS,
            FakeUtxoProvider(utxos={PAYMENT_ADDRESS: pool}),
            fee_provider,
            fee_rate=1,
            settings=settings,
        )

        assert resolution.fee == 292
        assert fee_provider.calls == 0

    @pytest.mark.asyncio
    async def test_custom_fee_without_rate(self, make_utxo, recipients, settings) -> None:
        pool = [make_utxo(250000), make_utxo(200000)]
        resolution = await get_btc_fees(
            recipients,
            PAYMENT_ADDRESS,
            FakeUtxoProvider(utxos={PAYMENT_ADDRESS: pool}),
            custom_fee=777,
            settings=settings,
        )
        assert resolution.fee == 777

    @pytest.mark.asyncio
    async def test_rate_unavailable(self, make_utxo, recipients, settings) -> None:
        with pytest.raises(MalformedInputError):
            await get_btc_fees(
                recipients, PAYMENT_ADDRESS, FakeUtxoProvider(), settings=settings
            )

    @pytest.mark.asyncio
    async def test_fee_service_down(self, recipients, settings) -> None:
        fee_provider = FakeFeeRateProvider(error=httpx.ReadTimeout("slow"))
        with pytest.raises(NetworkError):
            await get_btc_fees(
                recipients, PAYMENT_ADDRESS, FakeUtxoProvider(), fee_provider, settings=settings
            )

    @pytest.mark.asyncio
    async def test_sign(
        self, make_utxo, recipients, settings, key_provider, wallet_address
    ) -> None:
        pool = [make_utxo(v, address=wallet_address) for v in (100000, 200000, 250000)]
        utxo_provider = FakeUtxoProvider(utxos={wallet_address: pool})

        result = await sign_btc_transaction(
            recipients,
            wallet_address,
            0,
            key_provider,
            utxo_provider,
            FakeFeeRateProvider(regular=10),
            settings=settings,
        )

        assert result.fee == 2920
        tx = deserialize_transaction(bytes.fromhex(result.signed_tx))
        assert [out.value for out in tx.outputs] == [200000, 100000, 147080]

    @pytest.mark.asyncio
    async def test_sign_insufficient_funds(
        self, make_utxo, settings, key_provider, wallet_address
    ) -> None:
        pool = [make_utxo(v, address=wallet_address) for v in (5500, 3911, 941, 5700, 1510)]

        with pytest.raises(InsufficientFundsError):
            await sign_btc_transaction(
                [Recipient(P2SH_RECIPIENT, 60000)],
                wallet_address,
                0,
                key_provider,
                FakeUtxoProvider(utxos={wallet_address: pool}),
                fee_rate=10,
                settings=settings,
            )

    @pytest.mark.asyncio
    async def test_unknown_account(self, make_utxo, settings, key_provider, wallet_address) -> None:
        pool = [make_utxo(50000, address=wallet_address)]
        with pytest.raises(MalformedInputError):
            await sign_btc_transaction(
                [Recipient(P2SH_RECIPIENT, 10000)],
                wallet_address,
                1,
                key_provider,
                FakeUtxoProvider(utxos={wallet_address: pool}),
                fee_rate=10,
                settings=settings,
            )


class TestOrdinalSend:
    """Tests for inscription transfers."""

    @pytest.mark.asyncio
    async def test_inscribed_payment_utxos_excluded(self, make_utxo, settings) -> None:
        ordinal = make_utxo(546, address=ORDINALS)
        inscribed = make_utxo(100000)
        funding = make_utxo(20000)
        utxo_provider = FakeUtxoProvider(
            utxos={PAYMENT_ADDRESS: [inscribed, funding]},
            ordinals={PAYMENT_ADDRESS: [inscribed]},
        )

        resolution = await get_btc_fees_for_ordinal_send(
            P2PKH_RECIPIENT_1,
            ordinal,
            PAYMENT_ADDRESS,
            utxo_provider,
            fee_rate=10,
            settings=settings,
        )

        assert [u.outpoint for u in resolution.selection] == [ordinal.outpoint, funding.outpoint]
        assert ("ordinals", PAYMENT_ADDRESS) in utxo_provider.calls

    @pytest.mark.asyncio
    async def test_explicit_exclusions_skip_lookup(self, make_utxo, settings) -> None:
        ordinal = make_utxo(546, address=ORDINALS)
        utxo_provider = FakeUtxoProvider(utxos={PAYMENT_ADDRESS: [make_utxo(20000)]})

        await get_btc_fees_for_ordinal_send(
            P2PKH_RECIPIENT_1,
            ordinal,
            PAYMENT_ADDRESS,
            utxo_provider,
            fee_rate=10,
            excluded_ordinals=[],
            settings=settings,
        )

        assert utxo_provider.calls == [("utxos", PAYMENT_ADDRESS)]

    @pytest.mark.asyncio
    async def test_sign(self, make_utxo, settings, key_provider, wallet_address) -> None:
        ordinal = make_utxo(80000, address=ORDINALS)
        pool = [make_utxo(1000, address=wallet_address), make_utxo(10000, address=wallet_address)]

        result = await sign_ordinal_send_transaction(
            P2PKH_RECIPIENT_1,
            ordinal,
            wallet_address,
            0,
            key_provider,
            FakeUtxoProvider(utxos={wallet_address: pool}),
            fee_rate=10,
            settings=settings,
        )

        assert result.tx.inputs[0].txid == ordinal.txid
        assert result.tx.outputs[0].value == 80000
        # P2SH change: 10 + 2 * 91 + 34 + 32 vB
        assert result.fee == 2580


class TestOrdinalByOutput:
    """Tests for transfers identified by the inscription's output."""

    @pytest.fixture
    def context(self, make_utxo, settings, wallet_address):
        ordinal = make_utxo(546, address=ORDINALS, vout=1)
        provider = FakeUtxoProvider(
            utxos={ORDINALS: [ordinal], wallet_address: [make_utxo(30000, address=wallet_address)]}
        )
        context = TransactionContext(
            payment_address=wallet_address,
            ordinals_address=ORDINALS,
            utxo_provider=provider,
            settings=settings,
        )
        return context, ordinal

    @pytest.mark.asyncio
    async def test_find(self, context) -> None:
        ctx, ordinal = context
        found = await find_ordinal_utxo(ordinal.outpoint, ORDINALS, ctx.utxo_provider)
        assert found == ordinal

    @pytest.mark.asyncio
    async def test_not_found(self, context) -> None:
        ctx, ordinal = context
        with pytest.raises(MalformedInputError):
            await find_ordinal_utxo(f"{ordinal.txid}:0", ORDINALS, ctx.utxo_provider)

    @pytest.mark.asyncio
    async def test_preview(self, context) -> None:
        ctx, ordinal = context
        resolution = await get_btc_fees_for_ordinal_transaction(
            P2PKH_RECIPIENT_1, ordinal.outpoint, ctx, fee_rate=5
        )
        assert resolution.selection[0] == ordinal
        assert resolution.plan.outputs[0].amount == 546

    @pytest.mark.asyncio
    async def test_sign(self, context, key_provider) -> None:
        ctx, ordinal = context
        result = await sign_ordinal_transaction(
            P2PKH_RECIPIENT_1, ordinal.outpoint, ctx, 0, key_provider, fee_rate=5
        )
        assert result.tx.inputs[0].vout == 1
        assert result.tx.outputs[0].value == 546
