# peerpressure

Building blocks for a BitTorrent client, in pure Python with no dependencies:

- **Tracker announces** over HTTP (BEP 3, compact peers per BEP 23, IPv6 peers
  per BEP 7, external IP per BEP 24) and UDP (BEP 15, with BEP 41 URL data).
- **Scrape** requests over HTTP and UDP.
- **Multi-tracker tiers** (BEP 12). Trackers are shuffled within each tier and
  tried in order, tier by tier. A tracker that answers is moved to the front
  of its tier.
- **uTP** (BEP 29): packet header and extension encoding and decoding,
  selective-ACK bitmasks, and a LEDBAT congestion controller.

## Install

```
pip install .
```

## Announcing to a tracker

```python
from peerpressure.tracker import AnnounceParams
from peerpressure.announce import announce, TieredAnnouncer

params = AnnounceParams(
    info_hash=bytes(20),
    peer_id=b"-PP0001-" + bytes(12),
    port=6881,
    left=1_000_000,
    event="started",
)

# The URL scheme decides between UDP (udp://) and HTTP (anything else).
response = announce("udp://tracker.example.com:6969/announce", params)
print(response.interval, response.complete, response.incomplete)
for peer in response.peers:
    print(peer.addr())  # "1.2.3.4:6881" or "[2001:db8::1]:6881"

announcer = TieredAnnouncer(
    [["http://tracker.example.com/announce", "udp://tracker.example.com:6969"]],
    "",
)
response = announcer.announce(params)
print(announcer.tiers())
```

`AnnounceParams` requires `info_hash` and `peer_id` to be exactly 20 bytes.
`TieredAnnouncer(None, "http://tracker.example.com/announce")` uses the single
announce URL as its only tier when no tiers are given.

A UDP tracker URL without a port gets port 6969. UDP requests are retried up
to four times, waiting 2, 3, 4 and 5 seconds for a reply; HTTP requests time
out after 15 seconds.

If a tracker reports a failure, cannot be reached, or sends a response that
cannot be parsed, `peerpressure.tracker.TrackerError` is raised.

The lower-level pieces are public too: `peerpressure.tracker.build_announce_url`,
`parse_response`, `parse_compact_peers`, `parse_compact_peers6`,
`parse_dict_peers`, `percent_encode_bytes` and `decode_bencode` (a bencode
decoder whose dictionaries have byte-string keys), and in `peerpressure.udp`
`udp_parse_url`, `encode_url_data_option`, `event_code`, `udp_connect`,
`udp_announce` and `udp_round_trip`.

## Scraping

```python
from peerpressure.scrape import scrape, scrape_url

print(scrape_url("http://tracker.example.com/announce?passkey=secret"))
# http://tracker.example.com/scrape?passkey=secret

for result in scrape("http://tracker.example.com/announce", [bytes(20)]):
    print(result.info_hash.hex(), result.complete, result.downloaded, result.incomplete)
```

One `ScrapeResult` is returned per requested hash, in the order given; a hash
the tracker does not report gets zero counts.

## uTP primitives

```python
from datetime import timedelta

from peerpressure.utp import Header, Packet, ExtensionHeader, PacketType, ExtensionType, decode_packet, type_string
from peerpressure.sack import new_selective_ack, set_bit, acked_packets
from peerpressure.congestion import CongestionController

sack = new_selective_ack(32)
set_bit(sack, 3)
print(acked_packets(sack))  # [3]

packet = Packet(
    header=Header(packet_type=PacketType.STATE, extension=ExtensionType.SELECTIVE_ACK, ack_nr=10),
    extensions=[ExtensionHeader(type=ExtensionType.SELECTIVE_ACK, payload=bytes(sack))],
)
decoded = decode_packet(packet.encode())
print(type_string(decoded.header.packet_type))  # ST_STATE

cc = CongestionController()
cc.on_ack(timedelta(milliseconds=100))
cc.on_delay_sample(20_000)  # one-way delay in microseconds
print(cc.rtt(), cc.timeout, cc.can_send(1400, 65535))
```

Malformed uTP packets raise `peerpressure.utp.UtpError`.

## What it does not do

This is a library of parts, not a client. There is no command-line program,
no peer wire protocol, no torrent file handling and no bencode encoder. The
uTP modules encode and decode packets and track congestion state, but there
is no uTP socket or connection that sends or receives packets.

## Tests

```
pip install ".[test]"
pytest
```