"""Delay-based (LEDBAT) congestion control for uTP (BEP 29)."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import timedelta

TARGET_DELAY = timedelta(milliseconds=100)
MIN_TIMEOUT = timedelta(milliseconds=500)
INIT_TIMEOUT = timedelta(milliseconds=1000)
MIN_PACKET_SIZE = 150
MAX_GAIN = 3000
BASE_DELAY_WINDOW = timedelta(minutes=2)

_UINT32_MASK = 0xFFFFFFFF
_MICROSECOND = timedelta(microseconds=1)


def _to_us(value: timedelta) -> int:
    us = value // _MICROSECOND
    # timedelta floor-divides; truncate toward zero for negative values.
    if us < 0 and value % _MICROSECOND:
        us += 1
    return us


def _div_trunc(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


class CongestionController:
    """Tracks RTT, timeout and the send window of one uTP connection."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_window = 3 * 1400
        self.cur_window = 0
        self.timeout = INIT_TIMEOUT
        self._rtt_us = 0
        self._rtt_var_us = 0
        self._base_delay_us: int | None = None
        self._base_delay_time = 0.0
        self._our_delay_us = 0
        self._clock = clock

    def on_ack(self, packet_rtt: timedelta) -> None:
        """Update the smoothed RTT and the retransmit timeout."""
        rtt_us = _to_us(packet_rtt)
        if self._rtt_us == 0:
            self._rtt_us = rtt_us
            self._rtt_var_us = _div_trunc(rtt_us, 2)
        else:
            delta = abs(self._rtt_us - rtt_us)
            self._rtt_var_us += _div_trunc(delta - self._rtt_var_us, 4)
            self._rtt_us += _div_trunc(rtt_us - self._rtt_us, 8)
        timeout = timedelta(microseconds=self._rtt_us + self._rtt_var_us * 4)
        self.timeout = max(timeout, MIN_TIMEOUT)

    def on_delay_sample(self, delay_us: int) -> None:
        """Process a one-way delay sample in microseconds and adjust the window."""
        now = self._clock()
        window_expired = now - self._base_delay_time > BASE_DELAY_WINDOW.total_seconds()
        if self._base_delay_us is None or window_expired or delay_us < self._base_delay_us:
            self._base_delay_us = delay_us
            self._base_delay_time = now

        self._our_delay_us = delay_us - self._base_delay_us

        target_us = _to_us(TARGET_DELAY)
        off_target = target_us - self._our_delay_us
        delay_factor = off_target / target_us if target_us else 0.0
        window_factor = self.cur_window / self.max_window if self.max_window else 0.0

        scaled_gain = MAX_GAIN * delay_factor * window_factor
        new_window = max(self.max_window + int(scaled_gain), 0)
        self.max_window = new_window & _UINT32_MASK

    def on_timeout(self) -> None:
        """Collapse the window to the minimum and double the timeout."""
        self.max_window = MIN_PACKET_SIZE
        self.timeout *= 2

    def on_packet_loss(self) -> None:
        """Halve the window, never below the minimum packet size."""
        self.max_window = max(self.max_window // 2, MIN_PACKET_SIZE)

    def can_send(self, packet_size: int, peer_wnd_size: int) -> bool:
        """Whether packet_size more bytes fit in both our and the peer's window."""
        effective = min(self.max_window, peer_wnd_size)
        return self.cur_window + packet_size <= effective

    def rtt(self) -> timedelta:
        """The smoothed round-trip time."""
        return timedelta(microseconds=self._rtt_us)

    def our_delay(self) -> timedelta:
        """The current buffering delay estimate."""
        return timedelta(microseconds=self._our_delay_us)