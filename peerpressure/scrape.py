"""Tracker scrape requests over HTTP and UDP."""

from __future__ import annotations

import socket
import struct
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Sequence
from dataclasses import dataclass

from peerpressure.tracker import (
    HTTP_TIMEOUT,
    TrackerError,
    decode_bencode,
    percent_encode_bytes,
)
from peerpressure.udp import (
    Action,
    _open_tracker_socket,
    rand_uint32,
    udp_connect,
    udp_parse_url,
    udp_round_trip,
)

_SCRAPE_REQUEST_HEADER = struct.Struct(">QII")
_SCRAPE_REPLY_HEADER = struct.Struct(">II")
_SCRAPE_ENTRY = struct.Struct(">III")
_UINT64_MASK = 0xFFFFFFFFFFFFFFFF


@dataclass(frozen=True)
class ScrapeResult:
    """Statistics of one torrent from a scrape response."""

    info_hash: bytes
    complete: int = 0
    downloaded: int = 0
    incomplete: int = 0


def scrape(tracker_url: str, info_hashes: Sequence[bytes]) -> list[ScrapeResult]:
    """Query a tracker for torrent statistics without announcing."""
    if tracker_url.startswith("udp://"):
        return udp_scrape(tracker_url, info_hashes)
    return _scrape_http(tracker_url, info_hashes)


def scrape_url(announce_url: str) -> str:
    """Derive the scrape URL from an announce URL."""
    try:
        parts = urllib.parse.urlsplit(announce_url)
    except ValueError as exc:
        raise TrackerError(f"parse URL: {exc}") from exc

    index = parts.path.rfind("/announce")
    if index < 0:
        raise TrackerError(f"tracker URL does not contain /announce: {announce_url}")
    path = parts.path[:index] + "/scrape" + parts.path[index + len("/announce"):]
    return urllib.parse.urlunsplit(parts._replace(path=path))


def _scrape_http(tracker_url: str, info_hashes: Sequence[bytes]) -> list[ScrapeResult]:
    try:
        parts = urllib.parse.urlsplit(scrape_url(tracker_url))
    except ValueError as exc:
        raise TrackerError(f"parse scrape URL: {exc}") from exc

    fields = [parts.query] if parts.query else []
    fields.extend("info_hash=" + percent_encode_bytes(ih) for ih in info_hashes)
    request_url = urllib.parse.urlunsplit(parts._replace(query="&".join(fields)))

    try:
        with urllib.request.urlopen(request_url, timeout=HTTP_TIMEOUT) as reply:
            body = reply.read()
    except urllib.error.HTTPError as exc:
        # The status is not checked: the body is parsed whatever it is.
        try:
            body = exc.read()
        except OSError as read_exc:
            raise TrackerError(f"read scrape response: {read_exc}") from read_exc
    except (OSError, ValueError) as exc:
        raise TrackerError(f"scrape request: {exc}") from exc

    return parse_scrape_response(body, info_hashes)


def parse_scrape_response(data: bytes, info_hashes: Sequence[bytes]) -> list[ScrapeResult]:
    """Decode a bencoded scrape response into one result per requested hash."""
    try:
        decoded = decode_bencode(data)
    except TrackerError as exc:
        raise TrackerError(f"decode scrape response: {exc}") from exc
    if not isinstance(decoded, dict):
        raise TrackerError("scrape response is not a dict")

    failure = decoded.get(b"failure reason")
    if isinstance(failure, bytes):
        raise TrackerError(f"scrape error: {failure.decode('utf-8', errors='replace')}")

    if b"files" not in decoded:
        raise TrackerError("scrape response missing 'files' key")
    files = decoded[b"files"]
    if not isinstance(files, dict):
        raise TrackerError("scrape 'files' is not a dict")

    results = []
    for info_hash in info_hashes:
        key = bytes(info_hash)
        entry = files.get(key)
        if not isinstance(entry, dict):
            results.append(ScrapeResult(info_hash=key))
            continue
        stats = {
            name: value
            for name in ("complete", "downloaded", "incomplete")
            if isinstance(value := entry.get(name.encode()), int)
        }
        results.append(ScrapeResult(info_hash=key, **stats))
    return results


def _udp_scrape_request(
    sock: socket.socket, conn_id: int, info_hashes: Sequence[bytes]
) -> list[ScrapeResult]:
    txn_id = rand_uint32()
    hashes = [bytes(ih) for ih in info_hashes]
    request = _SCRAPE_REQUEST_HEADER.pack(
        conn_id & _UINT64_MASK, Action.SCRAPE, txn_id
    ) + b"".join(hashes)

    min_resp = _SCRAPE_REPLY_HEADER.size + _SCRAPE_ENTRY.size * len(hashes)
    reply = udp_round_trip(sock, request, min_resp)

    action, reply_txn = _SCRAPE_REPLY_HEADER.unpack_from(reply)
    if action != Action.SCRAPE:
        raise TrackerError(f"expected action=scrape(2), got {action}")
    if reply_txn != txn_id:
        raise TrackerError(f"transaction ID mismatch: sent {txn_id}, got {reply_txn}")

    entries = _SCRAPE_ENTRY.iter_unpack(
        reply[_SCRAPE_REPLY_HEADER.size:min_resp]
    )
    return [
        ScrapeResult(info_hash=ih, complete=seeders, downloaded=completed,
                     incomplete=leechers)
        for ih, (seeders, completed, leechers) in zip(hashes, entries)
    ]


def udp_scrape(raw_url: str, info_hashes: Sequence[bytes]) -> list[ScrapeResult]:
    """Scrape a udp:// tracker: connect handshake, then scrape."""
    hostport, _ = udp_parse_url(raw_url)
    with _open_tracker_socket(hostport) as sock:
        try:
            conn_id = udp_connect(sock)
        except TrackerError as exc:
            raise TrackerError(f"udp connect: {exc}") from exc
        return _udp_scrape_request(sock, conn_id, info_hashes)