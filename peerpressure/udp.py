"""UDP tracker protocol (BEP 15) with the URLData extension (BEP 41)."""

from __future__ import annotations

import re
import secrets
import socket
import struct
import urllib.parse
from enum import IntEnum

from peerpressure.tracker import AnnounceParams, Response, TrackerError, parse_compact_peers

PROTOCOL_ID = 0x41727101980
DEFAULT_PORT = "6969"
RETRY_TIMEOUTS = (2.0, 3.0, 4.0, 5.0)
MAX_RETRIES = len(RETRY_TIMEOUTS)
RECV_BUFFER = 4096

OPT_END_OF_OPTIONS = 0x00
OPT_NOP = 0x01
OPT_URL_DATA = 0x02

_CONNECT_REQUEST = struct.Struct(">QII")
_CONNECT_RESPONSE = struct.Struct(">IIQ")
_ANNOUNCE_REQUEST = struct.Struct(">QII20s20sQQQIIIIH")
_ANNOUNCE_HEADER = struct.Struct(">IIIII")
_ACTION_TXN = struct.Struct(">II")

_UINT64_MASK = 0xFFFFFFFFFFFFFFFF
_UINT32_MASK = 0xFFFFFFFF


class Action(IntEnum):
    """Action codes of the UDP tracker protocol."""

    CONNECT = 0
    ANNOUNCE = 1
    SCRAPE = 2
    ERROR = 3


class UdpEvent(IntEnum):
    """Numeric event codes sent to UDP trackers."""

    NONE = 0
    COMPLETED = 1
    STARTED = 2
    STOPPED = 3


_BRACKETED = re.compile(r"\[([^\[\]]*)\]:([^:\[\]]*)")
_PLAIN = re.compile(r"([^:\[\]]*):([^:\[\]]*)")


def _split_host_port(hostport: str) -> tuple[str, str]:
    """Split "host:port" or "[v6]:port"; raise ValueError without a port."""
    match = _BRACKETED.fullmatch(hostport) or _PLAIN.fullmatch(hostport)
    if match is None:
        raise ValueError(f"missing port in address {hostport!r}")
    return match.group(1), match.group(2)


def _join_host_port(host: str, port: str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def udp_parse_url(raw_url: str) -> tuple[str, str]:
    """Return (host:port, path+query) of a udp:// tracker URL."""
    try:
        parts = urllib.parse.urlsplit(raw_url)
    except ValueError as exc:
        raise TrackerError(f"parse URL: {exc}") from exc
    if parts.scheme != "udp":
        raise TrackerError(f"expected udp:// scheme, got {parts.scheme}://")

    host = parts.netloc.rpartition("@")[2]
    try:
        _split_host_port(host)
    except ValueError:
        host = _join_host_port(host, DEFAULT_PORT)

    path_query = urllib.parse.unquote(parts.path)
    if parts.query:
        path_query += "?" + parts.query
    return host, path_query


def encode_url_data_option(path_query: str) -> bytes:
    """Encode path+query as BEP 41 URLData options in chunks of at most 255 bytes."""
    data = path_query.encode("utf-8")
    if not data:
        return bytes([OPT_URL_DATA, 0x00])
    out = bytearray()
    for start in range(0, len(data), 255):
        chunk = data[start:start + 255]
        out += bytes([OPT_URL_DATA, len(chunk)])
        out += chunk
    return bytes(out)


def event_code(event: str) -> UdpEvent:
    """Map an HTTP event name to its UDP event code."""
    return {
        "completed": UdpEvent.COMPLETED,
        "started": UdpEvent.STARTED,
        "stopped": UdpEvent.STOPPED,
    }.get(event, UdpEvent.NONE)


def rand_uint32() -> int:
    """A cryptographically random 32-bit transaction identifier."""
    return secrets.randbits(32)


def _error_message(reply: bytes) -> str | None:
    if len(reply) >= 8 and _ACTION_TXN.unpack_from(reply)[0] == Action.ERROR:
        return reply[8:].decode("utf-8", errors="replace")
    return None


def udp_round_trip(sock: socket.socket, request: bytes, min_resp: int) -> bytes:
    """Send request on a connected socket and return the reply, retrying on timeouts."""
    for attempt, timeout in enumerate(RETRY_TIMEOUTS, start=1):
        try:
            sock.send(request)
        except OSError as exc:
            raise TrackerError(f"send: {exc}") from exc

        sock.settimeout(timeout)
        try:
            reply = sock.recv(RECV_BUFFER)
        except socket.timeout:
            continue
        except OSError as exc:
            raise TrackerError(f"read (attempt {attempt}): {exc}") from exc

        message = _error_message(reply)
        if message is not None:
            raise TrackerError(f"tracker error: {message}")
        if len(reply) < min_resp:
            raise TrackerError(
                f"response too short: got {len(reply)} bytes, need >= {min_resp}"
            )
        return reply

    raise TrackerError(f"no response after {MAX_RETRIES} attempts")


def udp_connect(sock: socket.socket) -> int:
    """Perform the connect handshake and return the connection id."""
    txn_id = rand_uint32()
    request = _CONNECT_REQUEST.pack(PROTOCOL_ID, Action.CONNECT, txn_id)
    reply = udp_round_trip(sock, request, _CONNECT_RESPONSE.size)

    action, reply_txn, conn_id = _CONNECT_RESPONSE.unpack_from(reply)
    if action != Action.CONNECT:
        raise TrackerError(f"expected action=connect(0), got {action}")
    if reply_txn != txn_id:
        raise TrackerError(f"transaction ID mismatch: sent {txn_id}, got {reply_txn}")
    return conn_id


def udp_announce(
    sock: socket.socket, conn_id: int, params: AnnounceParams, path_query: str
) -> Response:
    """Send an announce request and parse the peers in the reply."""
    txn_id = rand_uint32()
    num_want = params.num_want if params.num_want > 0 else -1
    request = _ANNOUNCE_REQUEST.pack(
        conn_id & _UINT64_MASK,
        Action.ANNOUNCE,
        txn_id,
        params.info_hash,
        params.peer_id,
        params.downloaded & _UINT64_MASK,
        params.left & _UINT64_MASK,
        params.uploaded & _UINT64_MASK,
        event_code(params.event),
        0,
        rand_uint32(),
        num_want & _UINT32_MASK,
        params.port & 0xFFFF,
    ) + encode_url_data_option(path_query)

    reply = udp_round_trip(sock, request, _ANNOUNCE_HEADER.size)

    action, reply_txn, interval, leechers, seeders = _ANNOUNCE_HEADER.unpack_from(reply)
    if action != Action.ANNOUNCE:
        raise TrackerError(f"expected action=announce(1), got {action}")
    if reply_txn != txn_id:
        raise TrackerError(f"transaction ID mismatch: sent {txn_id}, got {reply_txn}")

    try:
        peers = parse_compact_peers(reply[_ANNOUNCE_HEADER.size:])
    except TrackerError as exc:
        raise TrackerError(f"parse peers: {exc}") from exc

    return Response(interval=interval, peers=peers, complete=seeders, incomplete=leechers)


def _open_tracker_socket(hostport: str) -> socket.socket:
    """Resolve host:port and return a UDP socket connected to it."""
    try:
        host, port = _split_host_port(hostport)
        family, kind, proto, _, address = socket.getaddrinfo(
            host, port or 0, type=socket.SOCK_DGRAM
        )[0]
    except (OSError, ValueError) as exc:
        raise TrackerError(f"resolve tracker: {exc}") from exc

    sock = socket.socket(family, kind, proto)
    try:
        sock.connect(address)
    except OSError as exc:
        sock.close()
        raise TrackerError(f"dial tracker: {exc}") from exc
    return sock


def announce_udp(raw_url: str, params: AnnounceParams) -> Response:
    """Announce to a udp:// tracker: connect handshake, then announce."""
    hostport, path_query = udp_parse_url(raw_url)
    with _open_tracker_socket(hostport) as sock:
        try:
            conn_id = udp_connect(sock)
        except TrackerError as exc:
            raise TrackerError(f"udp connect: {exc}") from exc
        try:
            return udp_announce(sock, conn_id, params, path_query)
        except TrackerError as exc:
            raise TrackerError(f"udp announce: {exc}") from exc