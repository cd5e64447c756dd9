"""Selective ACK bitmask operations (BEP 29).

Bit 0 of byte 0 stands for ack_nr + 2, bit 7 of byte 0 for ack_nr + 9,
bit 0 of byte 1 for ack_nr + 10, and so on. Offsets are relative to
ack_nr + 2.
"""

from __future__ import annotations


def new_selective_ack(n: int) -> bytearray:
    """Return a zeroed bitmask for n offsets, sized to a multiple of 4 bytes."""
    if n <= 0:
        return bytearray(4)
    byte_count = (n + 7) // 8
    byte_count = ((byte_count + 3) // 4) * 4
    return bytearray(byte_count)


def set_bit(sack: bytearray, offset: int) -> None:
    """Mark the packet at offset as received; out-of-range offsets are ignored."""
    if 0 <= offset < len(sack) * 8:
        sack[offset // 8] |= 1 << (offset % 8)


def get_bit(sack: bytes, offset: int) -> bool:
    """Return whether the packet at offset is marked as received."""
    if not 0 <= offset < len(sack) * 8:
        return False
    return bool(sack[offset // 8] & (1 << (offset % 8)))


def acked_packets(sack: bytes) -> list[int]:
    """Return the offsets set in the bitmask, in ascending order."""
    return [offset for offset in range(len(sack) * 8) if get_bit(sack, offset)]