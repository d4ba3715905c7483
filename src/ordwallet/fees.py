"""
Fee model: transaction shape to virtual size, virtual size to satoshis.

Pure functions, no I/O.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from decimal import ROUND_CEILING, Decimal

from ordwallet.errors import MalformedInputError
from ordwallet.scripts import SCRIPT_CAPABILITIES, ScriptType

# version (4) + input count (1) + output count (1) + locktime (4);
# the segwit marker/flag half-vbyte fits in the quarter-vbyte each low-R signed
# segwit input weighs below its rounded-up estimate, given two or more inputs
TX_OVERHEAD_VBYTES = 10


def _varint_size(n: int) -> int:
    if n < 0xFD:
        return 1
    if n <= 0xFFFF:
        return 3
    if n <= 0xFFFFFFFF:
        return 5
    return 9


def input_vbytes(script_type: ScriptType) -> int:
    size = SCRIPT_CAPABILITIES[script_type].input_vbytes
    if size is None:
        raise MalformedInputError(f"Inputs of type {script_type.value} cannot be spent")
    return size


def output_vbytes(script_type: ScriptType) -> int:
    return SCRIPT_CAPABILITIES[script_type].output_vbytes


def estimate_vsize(
    input_count: int,
    output_types: Sequence[ScriptType],
    input_type: ScriptType = ScriptType.WRAPPED_SEGWIT,
    has_change: bool = False,
    change_type: ScriptType | None = None,
) -> int:
    """
    Estimate the virtual size of a transaction from its shape.

    Args:
        input_count: Number of inputs, all spent as input_type
        output_types: Script kind of every non-change output
        input_type: Script kind the inputs are spent with
        has_change: Whether a change output is added
        change_type: Script kind of the change output (defaults to input_type)

    Returns:
        Virtual size in vbytes
    """
    if input_count < 0:
        raise MalformedInputError(f"Negative input count: {input_count}")

    types = list(output_types)
    if has_change:
        types.append(change_type or input_type)

    vsize = TX_OVERHEAD_VBYTES
    vsize += _varint_size(input_count) - 1
    vsize += _varint_size(len(types)) - 1
    vsize += input_count * input_vbytes(input_type)
    vsize += sum(output_vbytes(t) for t in types)
    return vsize


def compute_fee(vsize: int, fee_rate: float | Decimal) -> int:
    """Fee in satoshis: ceil(vsize * fee_rate)."""
    rate = Decimal(str(fee_rate))
    if rate <= 0:
        raise MalformedInputError(f"Fee rate must be positive, got {fee_rate}")
    return int((Decimal(vsize) * rate).to_integral_value(rounding=ROUND_CEILING))


def marginal_input_fee(
    fee_rate: float | Decimal, input_type: ScriptType = ScriptType.WRAPPED_SEGWIT
) -> int:
    """Fee added by one more input of input_type at fee_rate."""
    return compute_fee(input_vbytes(input_type), fee_rate)


def estimate_fee(
    input_count: int,
    output_types: Sequence[ScriptType],
    fee_rate: float | Decimal,
    input_type: ScriptType = ScriptType.WRAPPED_SEGWIT,
    has_change: bool = False,
    change_type: ScriptType | None = None,
) -> int:
    vsize = estimate_vsize(input_count, output_types, input_type, has_change, change_type)
    return compute_fee(vsize, fee_rate)


def round_up_vbytes(weight: int) -> int:
    """Weight units to vbytes."""
    return math.ceil(weight / 4)
