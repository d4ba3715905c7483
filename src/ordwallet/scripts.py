"""
Address and script kinds.

Each address is resolved once into a ScriptType; fee weights and signing
routines are looked up by that tag instead of branching on address prefixes.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum

import base58
import bech32

from ordwallet.errors import InvalidAddressError
from ordwallet.models import NetworkType


class ScriptType(str, Enum):
    LEGACY = "p2pkh"
    WRAPPED_SEGWIT = "p2sh-p2wpkh"
    NATIVE_SEGWIT = "p2wpkh"
    NATIVE_SEGWIT_SCRIPT = "p2wsh"
    TAPROOT = "p2tr"


@dataclass(frozen=True)
class ScriptCapability:
    """Virtual bytes contributed by one input / one output of a script kind."""

    input_vbytes: int | None
    output_vbytes: int


# Input weights assume a 72-byte DER signature and compressed pubkey, rounded up:
# P2SH-P2WPKH 64 + 108/4, P2WPKH 41 + 108/4, P2TR key path 41 + 66/4.
SCRIPT_CAPABILITIES: dict[ScriptType, ScriptCapability] = {
    ScriptType.LEGACY: ScriptCapability(input_vbytes=148, output_vbytes=34),
    ScriptType.WRAPPED_SEGWIT: ScriptCapability(input_vbytes=91, output_vbytes=32),
    ScriptType.NATIVE_SEGWIT: ScriptCapability(input_vbytes=68, output_vbytes=31),
    ScriptType.NATIVE_SEGWIT_SCRIPT: ScriptCapability(input_vbytes=None, output_vbytes=43),
    ScriptType.TAPROOT: ScriptCapability(input_vbytes=58, output_vbytes=43),
}

_BECH32_HRP = {
    NetworkType.MAINNET: "bc",
    NetworkType.TESTNET: "tb",
    NetworkType.SIGNET: "tb",
    NetworkType.REGTEST: "bcrt",
}

_P2PKH_VERSIONS = {0x00: NetworkType.MAINNET, 0x6F: NetworkType.TESTNET}
_P2SH_VERSIONS = {0x05: NetworkType.MAINNET, 0xC4: NetworkType.TESTNET}


@dataclass(frozen=True)
class DecodedAddress:
    address: str
    script_type: ScriptType
    scriptpubkey: bytes


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    return hashlib.new("ripemd160", hashlib.sha256(data).digest()).digest()


def get_bech32_hrp(network: NetworkType) -> str:
    return _BECH32_HRP[network]


def _base58_network_matches(version_network: NetworkType, network: NetworkType | None) -> bool:
    if network is None:
        return True
    if version_network == NetworkType.MAINNET:
        return network == NetworkType.MAINNET
    return network != NetworkType.MAINNET


def decode_address(address: str, network: NetworkType | None = None) -> DecodedAddress:
    """
    Decode a Bitcoin address into its script kind and scriptPubKey.

    Supports:
    - P2PKH (1..., m..., n...)
    - P2SH (3..., 2...)
    - P2WPKH / P2WSH (bc1q..., tb1q..., bcrt1q...)
    - P2TR (bc1p..., tb1p..., bcrt1p...)

    Raises:
        InvalidAddressError: on any parse failure or network mismatch
    """
    addr = address.strip()
    if not addr:
        raise InvalidAddressError(address, "empty address")

    lowered = addr.lower()
    if lowered.startswith(("bc1", "tb1", "bcrt1")):
        hrp = "bcrt" if lowered.startswith("bcrt1") else lowered[:2]
        if network is not None and get_bech32_hrp(network) != hrp:
            raise InvalidAddressError(address, f"not a {network.value} address")

        witver, witprog = bech32.decode(hrp, addr)
        if witver is None or witprog is None:
            raise InvalidAddressError(address, "bad bech32 encoding")
        program = bytes(witprog)

        if witver == 0 and len(program) == 20:
            # P2WPKH: OP_0 <20-byte-pubkeyhash>
            return DecodedAddress(addr, ScriptType.NATIVE_SEGWIT, bytes([0x00, 0x14]) + program)
        if witver == 0 and len(program) == 32:
            # P2WSH: OP_0 <32-byte-scripthash>
            return DecodedAddress(
                addr, ScriptType.NATIVE_SEGWIT_SCRIPT, bytes([0x00, 0x20]) + program
            )
        if witver == 1 and len(program) == 32:
            # P2TR: OP_1 <32-byte-pubkey>
            return DecodedAddress(addr, ScriptType.TAPROOT, bytes([0x51, 0x20]) + program)

        raise InvalidAddressError(address, f"unsupported witness version {witver}")

    try:
        decoded = base58.b58decode_check(addr)
    except ValueError as e:
        raise InvalidAddressError(address, str(e)) from e

    if len(decoded) != 21:
        raise InvalidAddressError(address, "bad payload length")

    version = decoded[0]
    payload = decoded[1:]

    if version in _P2PKH_VERSIONS:
        if not _base58_network_matches(_P2PKH_VERSIONS[version], network):
            raise InvalidAddressError(address, "network mismatch")
        # OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG
        return DecodedAddress(
            addr, ScriptType.LEGACY, bytes([0x76, 0xA9, 0x14]) + payload + bytes([0x88, 0xAC])
        )
    if version in _P2SH_VERSIONS:
        if not _base58_network_matches(_P2SH_VERSIONS[version], network):
            raise InvalidAddressError(address, "network mismatch")
        # OP_HASH160 <20-byte-scripthash> OP_EQUAL
        return DecodedAddress(
            addr, ScriptType.WRAPPED_SEGWIT, bytes([0xA9, 0x14]) + payload + bytes([0x87])
        )

    raise InvalidAddressError(address, f"unknown address version {version}")


def address_to_scriptpubkey(address: str, network: NetworkType | None = None) -> bytes:
    return decode_address(address, network).scriptpubkey


def classify_address(address: str, network: NetworkType | None = None) -> ScriptType:
    return decode_address(address, network).script_type


def p2wpkh_script(pubkey: bytes) -> bytes:
    """P2WPKH scriptPubKey (also the P2SH-P2WPKH redeem script): OP_0 <20-byte-hash>"""
    return bytes([0x00, 0x14]) + hash160(pubkey)


def p2pkh_script(pubkey: bytes) -> bytes:
    return bytes([0x76, 0xA9, 0x14]) + hash160(pubkey) + bytes([0x88, 0xAC])


def p2sh_p2wpkh_script(pubkey: bytes) -> bytes:
    return bytes([0xA9, 0x14]) + hash160(p2wpkh_script(pubkey)) + bytes([0x87])


def pubkey_to_address(
    pubkey: bytes,
    script_type: ScriptType,
    network: NetworkType = NetworkType.MAINNET,
) -> str:
    """Encode the address of a compressed public key for a spendable script kind."""
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")

    mainnet = network == NetworkType.MAINNET
    if script_type == ScriptType.NATIVE_SEGWIT:
        address = bech32.encode(get_bech32_hrp(network), 0, hash160(pubkey))
        if address is None:
            raise ValueError("Failed to encode P2WPKH address")
        return address
    if script_type == ScriptType.WRAPPED_SEGWIT:
        version = 0x05 if mainnet else 0xC4
        return base58.b58encode_check(bytes([version]) + hash160(p2wpkh_script(pubkey))).decode()
    if script_type == ScriptType.LEGACY:
        version = 0x00 if mainnet else 0x6F
        return base58.b58encode_check(bytes([version]) + hash160(pubkey)).decode()

    raise ValueError(f"Cannot derive a {script_type.value} address from a bare pubkey")


def taproot_placeholder_address(network: NetworkType = NetworkType.MAINNET) -> str:
    """A syntactically valid P2TR address used to price outputs whose key is not known yet."""
    address = bech32.encode(get_bech32_hrp(network), 1, bytes(32))
    if address is None:
        raise ValueError("Failed to encode placeholder P2TR address")
    return address
