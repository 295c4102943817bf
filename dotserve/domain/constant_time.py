"""Comparison primitives whose running time does not depend on the data."""

_UINT32_MASK = 0xFFFFFFFF
_UINT64_MASK = 0xFFFFFFFFFFFFFFFF


def constant_time_eq(x: int, y: int) -> int:
    """Return 1 when ``x == y`` and 0 otherwise, without branching on the values.

    Both arguments are treated as unsigned 32-bit integers.
    """
    difference = (x ^ y) & _UINT32_MASK
    return (((difference - 1) & _UINT64_MASK) >> 63) & 1


def constant_time_compare(left: bytes, right: bytes) -> int:
    """Return 1 when both byte strings are equal and 0 otherwise.

    Inputs of different length return 0 immediately; lengths are not treated
    as secret. For equal lengths every byte of both inputs is read and the
    differences are folded into one accumulator, so the position of the first
    mismatch does not change the amount of work done.
    """
    if len(left) != len(right):
        return 0

    accumulator = 0
    for left_byte, right_byte in zip(left, right):
        accumulator |= left_byte ^ right_byte
    return constant_time_eq(accumulator, 0)
