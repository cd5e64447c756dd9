"""uTP (BEP 29) packet header and packet codec."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

HEADER_SIZE = 20
VERSION = 1

_HEADER = struct.Struct(">BBHIIIHH")


class UtpError(ValueError):
    """Raised when a uTP packet cannot be decoded or encoded."""


class PacketType(IntEnum):
    """Packet types carried in the upper nibble of the first header byte."""

    DATA = 0
    FIN = 1
    STATE = 2
    RESET = 3
    SYN = 4


class ExtensionType(IntEnum):
    """Extension identifiers used in the extension chain."""

    NONE = 0
    SELECTIVE_ACK = 1


class ConnectionState(IntEnum):
    """States of a uTP connection."""

    IDLE = 0
    SYN_SENT = 1
    SYN_RECV = 2
    CONNECTED = 3
    FIN_SENT = 4
    DESTROY = 5


@dataclass
class Header:
    """A uTP v1 packet header."""

    packet_type: int = PacketType.DATA
    version: int = VERSION
    extension: int = ExtensionType.NONE
    conn_id: int = 0
    timestamp: int = 0
    time_diff: int = 0
    wnd_size: int = 0
    seq_nr: int = 0
    ack_nr: int = 0


@dataclass
class ExtensionHeader:
    """One entry of the extension chain."""

    type: int
    payload: bytes = b""


@dataclass
class Packet:
    """A parsed uTP packet: header, extensions and data payload."""

    header: Header = field(default_factory=Header)
    extensions: list[ExtensionHeader] = field(default_factory=list)
    payload: bytes = b""

    def encode(self) -> bytes:
        """Serialise header, extension chain and payload."""
        out = bytearray(encode_header(self.header))
        next_types = [ext.type for ext in self.extensions[1:]] + [ExtensionType.NONE]
        for ext, next_type in zip(self.extensions, next_types):
            if len(ext.payload) > 0xFF:
                raise UtpError(f"utp extension payload too long: {len(ext.payload)} bytes")
            out.append(next_type & 0xFF)
            out.append(len(ext.payload))
            out += ext.payload
        out += self.payload
        return bytes(out)


def encode_header(header: Header) -> bytes:
    """Return the 20-byte wire form of a header."""
    first = ((header.packet_type << 4) | (header.version & 0x0F)) & 0xFF
    return _HEADER.pack(
        first,
        header.extension,
        header.conn_id,
        header.timestamp,
        header.time_diff,
        header.wnd_size,
        header.seq_nr,
        header.ack_nr,
    )


def decode_header(data: bytes) -> Header:
    """Parse a 20-byte uTP v1 header from the start of data."""
    if len(data) < HEADER_SIZE:
        raise UtpError(f"utp header too short: {len(data)} bytes")
    first, ext, conn_id, ts, diff, wnd, seq, ack = _HEADER.unpack_from(data)
    header = Header(
        packet_type=(first >> 4) & 0x0F,
        version=first & 0x0F,
        extension=ext,
        conn_id=conn_id,
        timestamp=ts,
        time_diff=diff,
        wnd_size=wnd,
        seq_nr=seq,
        ack_nr=ack,
    )
    if header.version != VERSION:
        raise UtpError(f"unsupported utp version: {header.version}")
    return header


def decode_packet(data: bytes) -> Packet:
    """Parse a full uTP packet from raw bytes."""
    header = decode_header(data)
    packet = Packet(header=header)
    offset = HEADER_SIZE
    next_ext = header.extension
    while next_ext != ExtensionType.NONE:
        if offset + 2 > len(data):
            raise UtpError(f"utp extension header truncated at offset {offset}")
        ext_type = next_ext
        next_ext = data[offset]
        ext_len = data[offset + 1]
        offset += 2
        if offset + ext_len > len(data):
            raise UtpError(
                f"utp extension payload truncated: need {ext_len} at offset {offset}"
            )
        packet.extensions.append(
            ExtensionHeader(type=ext_type, payload=bytes(data[offset:offset + ext_len]))
        )
        offset += ext_len
    packet.payload = bytes(data[offset:])
    return packet


def type_string(packet_type: int) -> str:
    """Human-readable name of a packet type."""
    try:
        return "ST_" + PacketType(packet_type).name
    except ValueError:
        return f"ST_UNKNOWN({packet_type})"


def state_string(state: int) -> str:
    """Human-readable name of a connection state."""
    try:
        return "CS_" + ConnectionState(state).name
    except ValueError:
        return f"CS_UNKNOWN({state})"