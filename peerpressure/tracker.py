"""HTTP tracker announces and tracker response parsing (BEP 3, 7, 23, 24)."""

from __future__ import annotations

import ipaddress
import re
import struct
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
BencodeValue = Union[int, bytes, list, dict]

HTTP_TIMEOUT = 15.0

_COMPACT_PEER = struct.Struct(">4sH")
_COMPACT_PEER6 = struct.Struct(">16sH")
_INT_TEXT = re.compile(rb"-?(0|[1-9][0-9]*)")


class TrackerError(Exception):
    """Raised when a tracker request fails or its response is malformed."""


def _normalise_ip(ip: IPAddress) -> IPAddress:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _ip_from_packed(raw: bytes) -> IPAddress:
    return _normalise_ip(ipaddress.ip_address(bytes(raw)))


@dataclass(frozen=True)
class Peer:
    """A peer in the swarm."""

    ip: IPAddress
    port: int

    def __post_init__(self) -> None:
        if isinstance(self.ip, (str, bytes)):
            object.__setattr__(self, "ip", _normalise_ip(ipaddress.ip_address(self.ip)))

    def addr(self) -> str:
        """The peer as a host:port string, brackets around IPv6 hosts."""
        if self.ip.version == 6:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"

    def __str__(self) -> str:
        return self.addr()


@dataclass
class Response:
    """A tracker's answer to an announce request."""

    interval: int = 0
    peers: list[Peer] = field(default_factory=list)
    complete: int = 0
    incomplete: int = 0
    external_ip: IPAddress | None = None


@dataclass
class AnnounceParams:
    """Parameters of an announce request."""

    info_hash: bytes = bytes(20)
    peer_id: bytes = bytes(20)
    port: int = 0
    uploaded: int = 0
    downloaded: int = 0
    left: int = 0
    event: str = ""
    num_want: int = 0

    def __post_init__(self) -> None:
        for name in ("info_hash", "peer_id"):
            value = bytes(getattr(self, name))
            if len(value) != 20:
                raise ValueError(f"{name} must be 20 bytes, got {len(value)}")
            setattr(self, name, value)


def _decode_at(data: bytes, pos: int) -> tuple[BencodeValue, int]:
    if pos >= len(data):
        raise TrackerError("bencode: unexpected end of data")
    lead = data[pos:pos + 1]
    if lead == b"i":
        end = data.find(b"e", pos + 1)
        if end < 0:
            raise TrackerError("bencode: unterminated integer")
        text = data[pos + 1:end]
        if not _INT_TEXT.fullmatch(text) or text == b"-0":
            raise TrackerError(f"bencode: invalid integer {text!r}")
        return int(text), end + 1
    if lead == b"l":
        items: list[BencodeValue] = []
        pos += 1
        while data[pos:pos + 1] != b"e":
            item, pos = _decode_at(data, pos)
            items.append(item)
        return items, pos + 1
    if lead == b"d":
        mapping: dict[bytes, BencodeValue] = {}
        pos += 1
        while data[pos:pos + 1] != b"e":
            key, pos = _decode_at(data, pos)
            if not isinstance(key, bytes):
                raise TrackerError("bencode: dictionary key is not a string")
            mapping[key], pos = _decode_at(data, pos)
        return mapping, pos + 1
    if lead.isdigit():
        colon = data.find(b":", pos)
        if colon < 0:
            raise TrackerError("bencode: string length without ':'")
        length_text = data[pos:colon]
        if not length_text.isdigit():
            raise TrackerError(f"bencode: invalid string length {length_text!r}")
        start = colon + 1
        end = start + int(length_text)
        if end > len(data):
            raise TrackerError("bencode: string runs past end of data")
        return data[start:end], end
    raise TrackerError(f"bencode: unexpected byte {lead!r} at offset {pos}")


def decode_bencode(data: bytes) -> BencodeValue:
    """Decode one bencoded value; dictionaries have byte-string keys."""
    raw = bytes(data)
    try:
        value, end = _decode_at(raw, 0)
    except RecursionError as exc:
        raise TrackerError("bencode: nesting too deep") from exc
    if end != len(raw):
        raise TrackerError(f"bencode: trailing data at offset {end}")
    return value


def percent_encode_bytes(data: bytes) -> str:
    """Percent-encode raw bytes, leaving RFC 3986 unreserved characters as they are."""
    return urllib.parse.quote(bytes(data), safe="")


def build_announce_url(tracker_url: str, params: AnnounceParams) -> str:
    """Build the full HTTP announce URL for the given parameters."""
    try:
        parts = urllib.parse.urlsplit(tracker_url)
    except ValueError as exc:
        raise TrackerError(f"parse tracker URL: {exc}") from exc

    query: dict[str, list[str]] = {}
    for key, value in urllib.parse.parse_qsl(parts.query, keep_blank_values=True):
        query.setdefault(key, []).append(value)
    query["port"] = [str(params.port)]
    query["uploaded"] = [str(params.uploaded)]
    query["downloaded"] = [str(params.downloaded)]
    query["left"] = [str(params.left)]
    query["compact"] = ["1"]
    if params.event:
        query["event"] = [params.event]
    if params.num_want > 0:
        query["numwant"] = [str(params.num_want)]

    raw_query = (
        urllib.parse.urlencode(sorted(query.items()), doseq=True)
        + "&info_hash=" + percent_encode_bytes(params.info_hash)
        + "&peer_id=" + percent_encode_bytes(params.peer_id)
    )
    return urllib.parse.urlunsplit(parts._replace(query=raw_query))


def parse_compact_peers(data: bytes) -> list[Peer]:
    """Parse BEP 23 compact IPv4 peers: 4 address bytes and a 2-byte port each."""
    if len(data) % _COMPACT_PEER.size:
        raise TrackerError(
            f"compact peers length {len(data)} not a multiple of {_COMPACT_PEER.size}"
        )
    return [
        Peer(ipaddress.IPv4Address(raw), port)
        for raw, port in _COMPACT_PEER.iter_unpack(bytes(data))
    ]


def parse_compact_peers6(data: bytes) -> list[Peer]:
    """Parse BEP 7 compact IPv6 peers: 16 address bytes and a 2-byte port each."""
    if len(data) % _COMPACT_PEER6.size:
        raise TrackerError(
            f"compact peers6 length {len(data)} not a multiple of {_COMPACT_PEER6.size}"
        )
    return [
        Peer(_ip_from_packed(raw), port)
        for raw, port in _COMPACT_PEER6.iter_unpack(bytes(data))
    ]


def parse_dict_peers(items: list) -> list[Peer]:
    """Parse the original peer list: dictionaries with 'ip' and 'port' keys."""
    peers = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise TrackerError(f"peer[{index}] is not a dict")
        ip_value = item.get(b"ip")
        if not isinstance(ip_value, bytes):
            raise TrackerError(f"peer[{index}]: missing or invalid 'ip'")
        port_value = item.get(b"port")
        if not isinstance(port_value, int):
            raise TrackerError(f"peer[{index}]: missing or invalid 'port'")
        ip_text = ip_value.decode("utf-8", errors="replace")
        try:
            ip = _normalise_ip(ipaddress.ip_address(ip_text))
        except ValueError as exc:
            raise TrackerError(f"peer[{index}]: invalid IP {ip_text!r}") from exc
        peers.append(Peer(ip, port_value & 0xFFFF))
    return peers


def parse_response(data: bytes) -> Response:
    """Decode a bencoded announce response."""
    try:
        decoded = decode_bencode(data)
    except TrackerError as exc:
        raise TrackerError(f"decode tracker response: {exc}") from exc
    if not isinstance(decoded, dict):
        raise TrackerError("tracker response is not a dict")

    failure = decoded.get(b"failure reason")
    if isinstance(failure, bytes):
        raise TrackerError(f"tracker error: {failure.decode('utf-8', errors='replace')}")

    response = Response()
    for key, attr in ((b"interval", "interval"), (b"complete", "complete"),
                      (b"incomplete", "incomplete")):
        value = decoded.get(key)
        if isinstance(value, int):
            setattr(response, attr, value)

    external = decoded.get(b"external ip")
    if isinstance(external, bytes) and len(external) in (4, 16):
        response.external_ip = _ip_from_packed(external)

    if b"peers" not in decoded:
        return response
    peers = decoded[b"peers"]
    if isinstance(peers, bytes):
        try:
            response.peers = parse_compact_peers(peers)
        except TrackerError as exc:
            raise TrackerError(f"parse compact peers: {exc}") from exc
    elif isinstance(peers, list):
        try:
            response.peers = parse_dict_peers(peers)
        except TrackerError as exc:
            raise TrackerError(f"parse dict peers: {exc}") from exc
    else:
        raise TrackerError(f"unexpected type for 'peers': {type(peers).__name__}")

    peers6 = decoded.get(b"peers6")
    if isinstance(peers6, bytes):
        try:
            response.peers.extend(parse_compact_peers6(peers6))
        except TrackerError as exc:
            raise TrackerError(f"parse compact peers6: {exc}") from exc

    return response


def announce_http(tracker_url: str, params: AnnounceParams) -> Response:
    """Send an HTTP announce request and parse the tracker's reply."""
    try:
        request_url = build_announce_url(tracker_url, params)
    except TrackerError as exc:
        raise TrackerError(f"build announce URL: {exc}") from exc

    try:
        with urllib.request.urlopen(request_url, timeout=HTTP_TIMEOUT) as reply:
            if reply.status != 200:
                raise TrackerError(f"tracker returned HTTP {reply.status}")
            try:
                body = reply.read()
            except OSError as exc:
                raise TrackerError(f"read tracker response: {exc}") from exc
    except urllib.error.HTTPError as exc:
        raise TrackerError(f"tracker returned HTTP {exc.code}") from exc
    except (OSError, ValueError) as exc:
        raise TrackerError(f"tracker request: {exc}") from exc

    return parse_response(body)