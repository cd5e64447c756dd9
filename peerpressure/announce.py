"""Announce dispatch and multi-tracker tiers (BEP 12)."""

from __future__ import annotations

import random
import threading
from collections.abc import Iterable, Sequence

from peerpressure.tracker import AnnounceParams, Response, TrackerError, announce_http
from peerpressure.udp import announce_udp


def announce(tracker_url: str, params: AnnounceParams) -> Response:
    """Announce to a tracker, over UDP for udp:// URLs and HTTP otherwise."""
    if tracker_url.startswith("udp://"):
        return announce_udp(tracker_url, params)
    return announce_http(tracker_url, params)


class TieredAnnouncer:
    """Tries trackers tier by tier and promotes the ones that answer.

    Each tier is shuffled on creation. With no tiers, a non-empty
    announce URL forms a single tier on its own.
    """

    def __init__(
        self,
        tiers: Iterable[Sequence[str]] | None = None,
        announce_url: str = "",
    ) -> None:
        self._lock = threading.Lock()
        self._tiers: list[list[str]] = []
        tier_list = list(tiers) if tiers else []
        if tier_list:
            for tier in tier_list:
                copied = list(tier)
                random.shuffle(copied)
                if copied:
                    self._tiers.append(copied)
        elif announce_url:
            self._tiers = [[announce_url]]

    def announce(self, params: AnnounceParams) -> Response:
        """Return the first successful response, trying tiers in order."""
        with self._lock:
            snapshot = [list(tier) for tier in self._tiers]

        last_error: TrackerError | None = None
        for tier_index, tier in enumerate(snapshot):
            for tracker_index, url in enumerate(tier):
                try:
                    response = announce(url, params)
                except TrackerError as exc:
                    last_error = TrackerError(f"tier {tier_index} tracker {url}: {exc}")
                    last_error.__cause__ = exc
                    continue
                with self._lock:
                    self._promote(tier_index, tracker_index)
                return response

        if last_error is not None:
            raise TrackerError(f"all trackers failed, last: {last_error}") from last_error
        raise TrackerError("no trackers available")

    def _promote(self, tier_index: int, tracker_index: int) -> None:
        if tier_index >= len(self._tiers) or tracker_index <= 0:
            return
        tier = self._tiers[tier_index]
        if tracker_index >= len(tier):
            return
        tier.insert(0, tier.pop(tracker_index))

    def tiers(self) -> list[list[str]]:
        """A copy of the current tiers."""
        with self._lock:
            return [list(tier) for tier in self._tiers]