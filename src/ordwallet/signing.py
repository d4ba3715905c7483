"""
Bitcoin transaction serialization and input signing.

Supports P2SH-P2WPKH, P2WPKH (BIP143) and P2PKH (legacy sighash) inputs.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from dataclasses import dataclass, field

from coincurve import PrivateKey
from coincurve._libsecp256k1 import ffi

from ordwallet.errors import SigningError
from ordwallet.fees import round_up_vbytes
from ordwallet.scripts import ScriptType, p2pkh_script, p2wpkh_script

SIGHASH_ALL = 1

# nSequence signalling replace-by-fee
RBF_SEQUENCE = 0xFFFFFFFD


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        value = int.from_bytes(data[offset : offset + 2], "little")
        return value, offset + 2
    if first == 0xFE:
        value = int.from_bytes(data[offset : offset + 4], "little")
        return value, offset + 4
    value = int.from_bytes(data[offset : offset + 8], "little")
    return value, offset + 8


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def push_data(data: bytes) -> bytes:
    """Script push opcode(s) for data."""
    length = len(data)
    if length < 0x4C:
        return bytes([length]) + data
    if length <= 0xFF:
        return b"\x4c" + bytes([length]) + data
    if length <= 0xFFFF:
        return b"\x4d" + length.to_bytes(2, "little") + data
    return b"\x4e" + length.to_bytes(4, "little") + data


@dataclass
class TxInput:
    txid: str  # RPC (big-endian) hex
    vout: int
    script_sig: bytes = b""
    sequence: int = RBF_SEQUENCE
    witness: list[bytes] = field(default_factory=list)

    def serialize_outpoint(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + self.vout.to_bytes(4, "little")

    def serialize(self, script_sig: bytes | None = None) -> bytes:
        script = self.script_sig if script_sig is None else script_sig
        return (
            self.serialize_outpoint()
            + encode_varint(len(script))
            + script
            + self.sequence.to_bytes(4, "little")
        )


@dataclass
class TxOutput:
    value: int
    script: bytes

    def serialize(self) -> bytes:
        return self.value.to_bytes(8, "little") + encode_varint(len(self.script)) + self.script


@dataclass
class Transaction:
    """Decoded transaction handle."""

    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    version: int = 2
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize_without_witness(self) -> bytes:
        result = self.version.to_bytes(4, "little")
        result += encode_varint(len(self.inputs))
        result += b"".join(inp.serialize() for inp in self.inputs)
        result += encode_varint(len(self.outputs))
        result += b"".join(out.serialize() for out in self.outputs)
        result += self.locktime.to_bytes(4, "little")
        return result

    def serialize(self) -> bytes:
        if not self.has_witness:
            return self.serialize_without_witness()

        result = self.version.to_bytes(4, "little")
        result += bytes([0x00, 0x01])  # SegWit marker and flag
        result += encode_varint(len(self.inputs))
        result += b"".join(inp.serialize() for inp in self.inputs)
        result += encode_varint(len(self.outputs))
        result += b"".join(out.serialize() for out in self.outputs)
        for inp in self.inputs:
            result += encode_varint(len(inp.witness))
            for item in inp.witness:
                result += encode_varint(len(item)) + item
        result += self.locktime.to_bytes(4, "little")
        return result

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        """Double SHA256 of the non-witness serialization, RPC byte order."""
        return hash256(self.serialize_without_witness())[::-1].hex()

    @property
    def weight(self) -> int:
        base_size = len(self.serialize_without_witness())
        total_size = len(self.serialize())
        return base_size * 3 + total_size

    @property
    def vsize(self) -> int:
        return round_up_vbytes(self.weight)


def deserialize_transaction(tx_bytes: bytes) -> Transaction:
    try:
        offset = 0
        version = int.from_bytes(tx_bytes[offset : offset + 4], "little")
        offset += 4

        has_witness = False
        if tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
            has_witness = True
            offset += 2

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[TxInput] = []

        for _ in range(input_count):
            txid = tx_bytes[offset : offset + 32][::-1].hex()
            offset += 32

            vout = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            sequence = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            inputs.append(TxInput(txid, vout, script, sequence))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[TxOutput] = []

        for _ in range(output_count):
            value = int.from_bytes(tx_bytes[offset : offset + 8], "little")
            offset += 8

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            outputs.append(TxOutput(value, script))

        if has_witness:
            for inp in inputs:
                stack_count, offset = read_varint(tx_bytes, offset)
                for _ in range(stack_count):
                    item_len, offset = read_varint(tx_bytes, offset)
                    inp.witness.append(tx_bytes[offset : offset + item_len])
                    offset += item_len

        locktime = int.from_bytes(tx_bytes[offset : offset + 4], "little")
        if offset + 4 != len(tx_bytes):
            raise ValueError("trailing or missing bytes")
        return Transaction(inputs, outputs, version, locktime)

    except (IndexError, ValueError) as e:
        raise SigningError(f"Failed to parse transaction: {e}") from e


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """BIP143 signature hash for a segwit v0 input."""
    if input_index >= len(tx.inputs):
        raise SigningError("Input index out of range")

    hash_prevouts = hash256(b"".join(inp.serialize_outpoint() for inp in tx.inputs))
    hash_sequence = hash256(b"".join(inp.sequence.to_bytes(4, "little") for inp in tx.inputs))
    hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))

    target_input = tx.inputs[input_index]

    preimage = (
        tx.version.to_bytes(4, "little")
        + hash_prevouts
        + hash_sequence
        + target_input.serialize_outpoint()
        + encode_varint(len(script_code))
        + script_code
        + value.to_bytes(8, "little")
        + target_input.sequence.to_bytes(4, "little")
        + hash_outputs
        + tx.locktime.to_bytes(4, "little")
        + sighash_type.to_bytes(4, "little")
    )

    return hash256(preimage)


def compute_sighash_legacy(
    tx: Transaction,
    input_index: int,
    script_pubkey: bytes,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """Pre-segwit SIGHASH_ALL: the spent scriptPubKey replaces this input's scriptSig."""
    if input_index >= len(tx.inputs):
        raise SigningError("Input index out of range")

    data = tx.version.to_bytes(4, "little")
    data += encode_varint(len(tx.inputs))
    for i, inp in enumerate(tx.inputs):
        data += inp.serialize(script_pubkey if i == input_index else b"")
    data += encode_varint(len(tx.outputs))
    data += b"".join(out.serialize() for out in tx.outputs)
    data += tx.locktime.to_bytes(4, "little")
    data += sighash_type.to_bytes(4, "little")
    return hash256(data)


def _sign_digest(private_key: PrivateKey, digest: bytes, sighash_type: int) -> bytes:
    """
    ECDSA-sign a SHA256d digest, grinding the nonce until R is low.

    A low-R DER signature is at most 70 bytes, 71 with the sighash byte. Extra
    entropy for the RFC6979 nonce function is a little-endian counter.
    """
    signature = private_key.sign(digest, hasher=None)
    counter = 0
    # DER: 0x30 len 0x02 r_len r ...; a 33-byte r carries a 0x00 sign pad
    while signature[3] > 32:
        counter += 1
        extra_entropy = ffi.new("unsigned char[32]", counter.to_bytes(32, "little"))
        signature = private_key.sign(digest, hasher=None, custom_nonce=(ffi.NULL, extra_entropy))
    return signature + bytes([sighash_type])


def sign_p2wpkh_input(
    tx: Transaction,
    input_index: int,
    value: int,
    private_key: PrivateKey,
    sighash_type: int = SIGHASH_ALL,
) -> None:
    """Sign a native segwit input in place: empty scriptSig, [sig, pubkey] witness."""
    pubkey = private_key.public_key.format(compressed=True)
    sighash = compute_sighash_segwit(tx, input_index, p2pkh_script(pubkey), value, sighash_type)
    inp = tx.inputs[input_index]
    inp.script_sig = b""
    inp.witness = [_sign_digest(private_key, sighash, sighash_type), pubkey]


def sign_p2sh_p2wpkh_input(
    tx: Transaction,
    input_index: int,
    value: int,
    private_key: PrivateKey,
    sighash_type: int = SIGHASH_ALL,
) -> None:
    """Sign a wrapped segwit input in place: scriptSig pushes the P2WPKH redeem script."""
    pubkey = private_key.public_key.format(compressed=True)
    sighash = compute_sighash_segwit(tx, input_index, p2pkh_script(pubkey), value, sighash_type)
    inp = tx.inputs[input_index]
    inp.script_sig = push_data(p2wpkh_script(pubkey))
    inp.witness = [_sign_digest(private_key, sighash, sighash_type), pubkey]


def sign_p2pkh_input(
    tx: Transaction,
    input_index: int,
    value: int,
    private_key: PrivateKey,
    sighash_type: int = SIGHASH_ALL,
) -> None:
    """Sign a legacy input in place. value is unused by the legacy sighash."""
    pubkey = private_key.public_key.format(compressed=True)
    sighash = compute_sighash_legacy(tx, input_index, p2pkh_script(pubkey), sighash_type)
    inp = tx.inputs[input_index]
    inp.script_sig = push_data(_sign_digest(private_key, sighash, sighash_type)) + push_data(
        pubkey
    )
    inp.witness = []


InputSigner = Callable[[Transaction, int, int, PrivateKey, int], None]

INPUT_SIGNERS: dict[ScriptType, InputSigner] = {
    ScriptType.WRAPPED_SEGWIT: sign_p2sh_p2wpkh_input,
    ScriptType.NATIVE_SEGWIT: sign_p2wpkh_input,
    ScriptType.LEGACY: sign_p2pkh_input,
}


def sign_input(
    tx: Transaction,
    input_index: int,
    value: int,
    private_key: PrivateKey,
    script_type: ScriptType,
    sighash_type: int = SIGHASH_ALL,
) -> None:
    signer = INPUT_SIGNERS.get(script_type)
    if signer is None:
        raise SigningError(f"Signing {script_type.value} inputs is not supported")
    signer(tx, input_index, value, private_key, sighash_type)
