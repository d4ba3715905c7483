"""
Tests for the esplora HTTP backend (mocked transport).
"""

from __future__ import annotations

import httpx
import pytest

from ordwallet.backends.esplora import EsploraBackend
from ordwallet.errors import NetworkError
from ordwallet.transactions import collaborator_call

ADDRESS = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
TXID_1 = "11" * 32
TXID_2 = "22" * 32
INSCRIPTION_ID = f"{TXID_2}i0"

UTXO_RESPONSE = [
    {
        "txid": TXID_1,
        "vout": 0,
        "value": 50000,
        "status": {"confirmed": True, "block_height": 800000, "block_time": 1690000000},
    },
    {"txid": TXID_2, "vout": 1, "value": 546, "status": {"confirmed": False}},
]


def _handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == f"/api/address/{ADDRESS}/utxo":
        return httpx.Response(200, json=UTXO_RESPONSE)
    if path == "/api/v1/fees/recommended":
        return httpx.Response(
            200,
            json={
                "fastestFee": 25,
                "halfHourFee": 18,
                "hourFee": 12,
                "economyFee": 6,
                "minimumFee": 2,
            },
        )
    if path == f"/address/{ADDRESS}":
        assert request.headers["accept"] == "application/json"
        return httpx.Response(200, json={"outputs": [], "inscriptions": [INSCRIPTION_ID]})
    if path == f"/inscription/{INSCRIPTION_ID}":
        return httpx.Response(200, json={"id": INSCRIPTION_ID, "satpoint": f"{TXID_2}:1:0"})
    return httpx.Response(404)


@pytest.fixture
def backend() -> EsploraBackend:
    return EsploraBackend(
        base_url="https://esplora.test/api/",
        ord_url="https://ord.test",
        transport=httpx.MockTransport(_handler),
    )


class TestEsploraBackend:
    """Tests for response parsing and failure propagation."""

    @pytest.mark.asyncio
    async def test_unspent_outputs(self, backend: EsploraBackend) -> None:
        try:
            utxos = await backend.get_unspent_outputs(ADDRESS)
        finally:
            await backend.close()

        assert [u.outpoint for u in utxos] == [f"{TXID_1}:0", f"{TXID_2}:1"]
        assert utxos[0].confirmed
        assert utxos[0].status.block_height == 800000
        assert not utxos[1].confirmed
        assert all(u.address == ADDRESS for u in utxos)

    @pytest.mark.asyncio
    async def test_recommended_fee_rate(self, backend: EsploraBackend) -> None:
        try:
            rate = await backend.get_recommended_fee_rate()
        finally:
            await backend.close()

        assert rate.regular == 18
        assert rate.priority == 25
        assert rate.limits is not None
        assert rate.limits.min == 2
        assert rate.limits.max == 25

    @pytest.mark.asyncio
    async def test_ordinal_outputs(self, backend: EsploraBackend) -> None:
        try:
            ordinals = await backend.get_ordinal_outputs(ADDRESS)
        finally:
            await backend.close()

        assert [u.outpoint for u in ordinals] == [f"{TXID_2}:1"]

    @pytest.mark.asyncio
    async def test_no_ord_server(self) -> None:
        backend = EsploraBackend(
            base_url="https://esplora.test/api", transport=httpx.MockTransport(_handler)
        )
        try:
            assert await backend.get_ordinal_outputs(ADDRESS) == []
        finally:
            await backend.close()

    @pytest.mark.asyncio
    async def test_http_error_propagates(self) -> None:
        backend = EsploraBackend(
            base_url="https://esplora.test/api",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await backend.get_unspent_outputs(ADDRESS)
            with pytest.raises(NetworkError):
                await collaborator_call(backend.get_recommended_fee_rate())
        finally:
            await backend.close()
