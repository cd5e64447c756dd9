"""BitTorrent tracker clients (HTTP, UDP, scrape, tiers) and uTP packet, selective-ACK and congestion primitives."""

__version__ = "0.1.0"