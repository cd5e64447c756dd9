import ipaddress
import struct
import threading
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from peerpressure.tracker import (
    AnnounceParams,
    Peer,
    Response,
    TrackerError,
    announce_http,
    build_announce_url,
    decode_bencode,
    parse_compact_peers,
    parse_compact_peers6,
    parse_dict_peers,
    parse_response,
    percent_encode_bytes,
)


def _bencode(value):
    if isinstance(value, int):
        return b"i%de" % value
    if isinstance(value, str):
        value = value.encode()
    if isinstance(value, bytes):
        return b"%d:%s" % (len(value), value)
    if isinstance(value, list):
        return b"l" + b"".join(_bencode(v) for v in value) + b"e"
    if isinstance(value, dict):
        keys = sorted(k.encode() if isinstance(k, str) else k for k in value)
        lookup = {(k.encode() if isinstance(k, str) else k): v for k, v in value.items()}
        return b"d" + b"".join(_bencode(k) + _bencode(lookup[k]) for k in keys) + b"e"
    raise TypeError(value)


def _ip(text):
    return ipaddress.ip_address(text)


def _v6(text):
    return ipaddress.IPv6Address(text).packed


@pytest.fixture
def http_tracker():
    servers = []

    def start(status=200, body=b""):
        paths = []

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                paths.append(self.path)
                self.send_response(status)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, *args):
                pass

        server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return f"http://127.0.0.1:{server.server_address[1]}", paths

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


# --- bencode ---

def test_decode_bencode_nested():
    assert decode_bencode(b"d3:fooi42e4:listl1:ai-3eee") == {
        b"foo": 42,
        b"list": [b"a", -3],
    }


@pytest.mark.parametrize("data", [b"i42", b"5:ab", b"i1ee", b"x", b"i-0e", b"di1ei2ee", b""])
def test_decode_bencode_invalid(data):
    with pytest.raises(TrackerError):
        decode_bencode(data)


# --- compact peers ---

def test_parse_compact_peers():
    data = bytes([192, 168, 1, 100]) + struct.pack(">H", 6881)
    data += bytes([10, 0, 0, 1]) + struct.pack(">H", 8080)
    peers = parse_compact_peers(data)
    assert len(peers) == 2
    assert peers[0].ip == _ip("192.168.1.100")
    assert peers[0].port == 6881
    assert peers[1].ip == _ip("10.0.0.1")
    assert peers[1].port == 8080


def test_parse_compact_peers_empty():
    assert parse_compact_peers(b"") == []


def test_parse_compact_peers_bad_length():
    with pytest.raises(TrackerError):
        parse_compact_peers(bytes(7))


# --- dict peers ---

def test_parse_dict_peers():
    items = [
        {b"ip": b"192.168.1.100", b"port": 6881},
        {b"ip": b"10.0.0.1", b"port": 8080},
    ]
    peers = parse_dict_peers(items)
    assert len(peers) == 2
    assert peers[0].port == 6881
    assert peers[1].addr() == "10.0.0.1:8080"


@pytest.mark.parametrize(
    "items",
    [
        [b"not a dict"],
        [{b"port": 1}],
        [{b"ip": b"10.0.0.1"}],
        [{b"ip": b"not-an-ip", b"port": 1}],
    ],
)
def test_parse_dict_peers_invalid(items):
    with pytest.raises(TrackerError, match=r"peer\[0\]"):
        parse_dict_peers(items)


# --- response parsing ---

def test_parse_response_compact():
    peer_data = bytes([127, 0, 0, 1]) + struct.pack(">H", 9999)
    data = _bencode({"complete": 10, "incomplete": 5, "interval": 900, "peers": peer_data})
    r = parse_response(data)
    assert r.interval == 900
    assert r.complete == 10
    assert r.incomplete == 5
    assert len(r.peers) == 1
    assert r.peers[0].ip == _ip("127.0.0.1")
    assert r.peers[0].port == 9999


def test_parse_response_dict_peers():
    data = _bencode({"interval": 60, "peers": [{"ip": "10.0.0.2", "port": 51413}]})
    r = parse_response(data)
    assert r.peers == [Peer(_ip("10.0.0.2"), 51413)]


def test_parse_response_failure():
    with pytest.raises(TrackerError, match="torrent not found"):
        parse_response(_bencode({"failure reason": "torrent not found"}))


def test_parse_response_not_a_dict():
    with pytest.raises(TrackerError, match="not a dict"):
        parse_response(_bencode([1, 2]))


def test_parse_response_peers_wrong_type():
    with pytest.raises(TrackerError, match="unexpected type"):
        parse_response(_bencode({"interval": 1, "peers": 5}))


def test_parse_response_without_peers():
    r = parse_response(_bencode({"interval": 30}))
    assert r == Response(interval=30)


# --- percent encoding ---

def test_percent_encode_bytes():
    assert percent_encode_bytes(bytes([0x12, ord("a"), 0xFF, ord("5"), 0x00])) == "%12a%FF5%00"


def test_percent_encode_bytes_all_unreserved():
    assert percent_encode_bytes(b"hello-world_2.0~") == "hello-world_2.0~"


# --- URL building ---

def test_build_announce_url_keeps_existing_query():
    url = build_announce_url(
        "http://t.example.com/announce?passkey=abc",
        AnnounceParams(port=6881, left=100),
    )
    assert url == (
        "http://t.example.com/announce?compact=1&downloaded=0&left=100"
        "&passkey=abc&port=6881&uploaded=0"
        "&info_hash=" + "%00" * 20 + "&peer_id=" + "%00" * 20
    )


def test_build_announce_url_event_and_numwant():
    url = build_announce_url(
        "http://t.example.com/announce",
        AnnounceParams(event="started", num_want=50),
    )
    query = urllib.parse.parse_qs(urllib.parse.urlsplit(url).query)
    assert query["event"] == ["started"]
    assert query["numwant"] == ["50"]


def test_announce_params_rejects_wrong_length():
    with pytest.raises(ValueError):
        AnnounceParams(info_hash=b"short")


# --- Peer formatting ---

def test_peer_string():
    p = Peer(_ip("10.0.0.1"), 6881)
    assert str(p) == "10.0.0.1:6881"
    assert p.addr() == "10.0.0.1:6881"


def test_peer_addr_ipv6():
    assert Peer(_ip("2001:db8::1"), 6881).addr() == "[2001:db8::1]:6881"


def test_peer_string_ipv6():
    assert str(Peer(_ip("::1"), 8080)) == "[::1]:8080"


# --- HTTP announce against a local tracker ---

def test_announce_with_mock_tracker(http_tracker):
    peer_data = bytes([1, 2, 3, 4]) + struct.pack(">H", 5555)
    base, paths = http_tracker(body=_bencode({"interval": 1800, "peers": peer_data}))
    params = AnnounceParams(
        info_hash=bytes([1, 2, 3]) + bytes(17),
        peer_id=b"-PP0001-" + bytes(12),
        port=6881,
        left=1000000,
    )
    resp = announce_http(base + "/announce", params)

    assert resp.interval == 1800
    assert len(resp.peers) == 1
    assert resp.peers[0].ip == _ip("1.2.3.4")
    assert resp.peers[0].port == 5555

    raw_query = urllib.parse.urlsplit(paths[0]).query
    query = urllib.parse.parse_qs(raw_query)
    assert query["port"] == ["6881"]
    assert query["compact"] == ["1"]
    assert query["left"] == ["1000000"]
    assert "info_hash=" in raw_query
    assert "peer_id=" in raw_query


def test_announce_tracker_error(http_tracker):
    base, _ = http_tracker(body=_bencode({"failure reason": "info_hash not found"}))
    with pytest.raises(TrackerError, match="info_hash not found"):
        announce_http(base, AnnounceParams())


def test_announce_http_error(http_tracker):
    base, _ = http_tracker(status=500)
    with pytest.raises(TrackerError, match="HTTP 500"):
        announce_http(base, AnnounceParams())


def test_announce_http_peers6(http_tracker):
    v6 = _v6("2001:db8::99") + struct.pack(">H", 5555)
    base, _ = http_tracker(body=_bencode({"interval": 900, "peers": b"", "peers6": v6}))
    resp = announce_http(
        base + "/announce",
        AnnounceParams(info_hash=b"\x01" + bytes(19), peer_id=b"\x02" + bytes(19), port=6881),
    )
    assert len(resp.peers) == 1
    assert resp.peers[0].ip == _ip("2001:db8::99")
    assert resp.peers[0].port == 5555


# --- BEP 24: external IP ---

def _response_with(extra):
    d = {"interval": 900, "peers": b""}
    d.update(extra)
    return _bencode(d)


def test_external_ipv4():
    r = parse_response(_response_with({"external ip": bytes([203, 0, 113, 42])}))
    assert r.external_ip == _ip("203.0.113.42")


def test_external_ipv6():
    r = parse_response(_response_with({"external ip": _v6("2001:db8::1")}))
    assert r.external_ip == _ip("2001:db8::1")


def test_external_ip_missing():
    assert parse_response(_response_with({})).external_ip is None


def test_external_ip_invalid_length():
    r = parse_response(_response_with({"external ip": bytes([1, 2, 3, 4, 5, 6, 7])}))
    assert r.external_ip is None


def test_external_ip_empty_string():
    assert parse_response(_response_with({"external ip": b""})).external_ip is None


def test_external_ip_not_string():
    assert parse_response(_response_with({"external ip": 42})).external_ip is None


def test_external_ip_with_peers():
    data = _bencode({
        "interval": 900,
        "peers": bytes([192, 168, 1, 1, 0x1A, 0xE1]),
        "external ip": bytes([10, 0, 0, 1]),
    })
    r = parse_response(data)
    assert len(r.peers) == 1
    assert r.peers[0].ip == _ip("192.168.1.1")
    assert r.peers[0].port == 6881
    assert r.external_ip == _ip("10.0.0.1")


def test_external_ip_loopback():
    r = parse_response(_response_with({"external ip": bytes([127, 0, 0, 1])}))
    assert r.external_ip == _ip("127.0.0.1")


# --- BEP 7: IPv6 peers ---

def test_parse_compact_peers6():
    data = _v6("2001:db8::1") + struct.pack(">H", 6881)
    data += _v6("::1") + struct.pack(">H", 8080)
    peers = parse_compact_peers6(data)
    assert len(peers) == 2
    assert peers[0].ip == _ip("2001:db8::1")
    assert peers[0].port == 6881
    assert peers[1].ip == _ip("::1")
    assert peers[1].port == 8080


def test_parse_compact_peers6_empty():
    assert parse_compact_peers6(b"") == []


def test_parse_compact_peers6_bad_length():
    with pytest.raises(TrackerError):
        parse_compact_peers6(bytes(19))


def test_parse_response_peers6():
    v4 = bytes([192, 168, 1, 1]) + struct.pack(">H", 6881)
    v6 = _v6("2001:db8::42") + struct.pack(">H", 7000)
    r = parse_response(_bencode({"interval": 900, "peers": v4, "peers6": v6}))
    assert len(r.peers) == 2
    assert r.peers[0].ip == _ip("192.168.1.1")
    assert r.peers[1].ip == _ip("2001:db8::42")
    assert r.peers[1].port == 7000


def test_parse_response_peers6_only():
    v6 = _v6("fe80::1") + struct.pack(">H", 9999)
    r = parse_response(_bencode({"interval": 900, "peers": b"", "peers6": v6}))
    assert len(r.peers) == 1
    assert r.peers[0].ip == _ip("fe80::1")


def test_parse_response_peers6_bad_length():
    with pytest.raises(TrackerError, match="peers6"):
        parse_response(_bencode({"interval": 900, "peers": b"", "peers6": bytes(19)}))