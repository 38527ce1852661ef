"""Bitfield and fixed-point helpers shared by the Nitro readers."""

from __future__ import annotations


def bits(x: int, lo: int, hi: int) -> int:
    """Bits [lo, hi) of x."""
    return (int(x) >> lo) & ((1 << (hi - lo)) - 1)


def fix(x: int, sign_bits: int, int_bits: int, frac_bits: int) -> float:
    width = sign_bits + int_bits + frac_bits
    v = bits(x, 0, width)
    if sign_bits and v & (1 << (int_bits + frac_bits)):
        v -= 1 << width
    return v / float(1 << frac_bits)


def fx16(x: int) -> float:
    return fix(x, 1, 3, 12)


def fx32(x: int) -> float:
    return fix(x, 1, 19, 12)


def rgb555(x: int) -> tuple:
    return (bits(x, 0, 5) / 31.0, bits(x, 5, 10) / 31.0, bits(x, 10, 15) / 31.0)
