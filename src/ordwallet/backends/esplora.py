"""
Esplora / mempool.space HTTP backend.

UTXOs come from an esplora REST API, recommended fee rates from the
mempool.space `/v1/fees/recommended` endpoint, and inscription locations from
an optional ord server.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from ordwallet.backends.base import FeeRateProvider, UtxoProvider
from ordwallet.models import UTXO, Confirmation, FeeLimits, FeeRate

DEFAULT_TIMEOUT = 30.0


def _parse_utxo(address: str, entry: dict[str, Any]) -> UTXO:
    status = entry.get("status") or {}
    return UTXO(
        txid=entry["txid"],
        vout=int(entry["vout"]),
        value=int(entry["value"]),
        address=address,
        status=Confirmation(
            confirmed=bool(status.get("confirmed", False)),
            block_height=status.get("block_height"),
            block_time=status.get("block_time"),
            block_hash=status.get("block_hash"),
        ),
    )


def _satpoint_outpoint(satpoint: str) -> str:
    """'txid:vout:offset' -> 'txid:vout'"""
    txid, vout, _offset = satpoint.split(":")
    return f"{txid}:{vout}"


class EsploraBackend(UtxoProvider, FeeRateProvider):
    """
    Collaborator backend over plain HTTP.

    Does not cache anything: every call returns a fresh snapshot.
    """

    def __init__(
        self,
        base_url: str = "https://mempool.space/api",
        ord_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.ord_url = ord_url.rstrip("/") if ord_url else None
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def _get_json(self, url: str, headers: dict[str, str] | None = None) -> Any:
        try:
            response = await self.client.get(url, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Request timed out: {url} - {e}")
            raise
        except httpx.HTTPError as e:
            logger.error(f"Request failed: {url} - {e}")
            raise

    async def get_unspent_outputs(self, address: str) -> list[UTXO]:
        data = await self._get_json(f"{self.base_url}/address/{address}/utxo")
        utxos = [_parse_utxo(address, entry) for entry in data]
        logger.debug(f"Fetched {len(utxos)} UTXOs for {address}")
        return utxos

    async def get_ordinal_outputs(self, address: str) -> list[UTXO]:
        """
        Unspent outputs of address carrying at least one inscription.

        Without an ord server no inscription data is available and an empty
        list is returned.
        """
        if self.ord_url is None:
            logger.debug("No ord server configured, assuming no inscriptions")
            return []

        headers = {"Accept": "application/json"}
        info = await self._get_json(f"{self.ord_url}/address/{address}", headers=headers)
        inscription_ids: list[str] = info.get("inscriptions") or []
        if not inscription_ids:
            return []

        inscriptions = await asyncio.gather(
            *(
                self._get_json(f"{self.ord_url}/inscription/{inscription_id}", headers=headers)
                for inscription_id in inscription_ids
            )
        )
        inscribed = {_satpoint_outpoint(item["satpoint"]) for item in inscriptions}

        utxos = await self.get_unspent_outputs(address)
        ordinals = [utxo for utxo in utxos if utxo.outpoint in inscribed]
        logger.debug(f"Found {len(ordinals)} inscribed outputs for {address}")
        return ordinals

    async def get_recommended_fee_rate(self) -> FeeRate:
        data = await self._get_json(f"{self.base_url}/v1/fees/recommended")
        return FeeRate(
            regular=data["halfHourFee"],
            priority=data["fastestFee"],
            limits=FeeLimits(min=data["minimumFee"], max=data["fastestFee"]),
        )

    async def close(self) -> None:
        await self.client.aclose()
