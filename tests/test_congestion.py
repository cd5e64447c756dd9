from datetime import timedelta

from peerpressure.congestion import (
    INIT_TIMEOUT,
    MIN_PACKET_SIZE,
    MIN_TIMEOUT,
    CongestionController,
)


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_initial_state():
    cc = CongestionController()
    assert cc.max_window > 0
    assert cc.timeout == INIT_TIMEOUT


def test_on_ack_updates_rtt():
    cc = CongestionController()
    cc.on_ack(timedelta(milliseconds=100))
    rtt = cc.rtt()
    assert timedelta(milliseconds=50) <= rtt <= timedelta(milliseconds=150)

    cc.on_ack(timedelta(milliseconds=80))
    rtt2 = cc.rtt()
    assert timedelta(milliseconds=70) <= rtt2 <= timedelta(milliseconds=110)
    assert rtt2 < rtt


def test_timeout_minimum():
    cc = CongestionController()
    cc.on_ack(timedelta(milliseconds=1))
    assert cc.timeout >= MIN_TIMEOUT


def test_delay_sample_grows_window():
    cc = CongestionController()
    cc.cur_window = 1000
    initial = cc.max_window
    cc.on_delay_sample(0)
    assert cc.max_window > initial


def test_delay_sample_shrinks_window():
    cc = CongestionController()
    cc.max_window = 100000
    cc.cur_window = 80000
    cc.on_delay_sample(1000)
    before = cc.max_window
    cc.on_delay_sample(201000)
    assert cc.max_window < before


def test_on_timeout():
    cc = CongestionController()
    cc.max_window = 50000
    previous = cc.timeout
    cc.on_timeout()
    assert cc.max_window == MIN_PACKET_SIZE
    assert cc.timeout == previous * 2


def test_on_packet_loss():
    cc = CongestionController()
    cc.max_window = 10000
    cc.on_packet_loss()
    assert cc.max_window == 5000
    for _ in range(20):
        cc.on_packet_loss()
    assert cc.max_window == MIN_PACKET_SIZE


def test_can_send():
    cc = CongestionController()
    cc.max_window = 5000
    cc.cur_window = 4000
    assert cc.can_send(1000, 10000)
    assert not cc.can_send(1001, 10000)


def test_can_send_peer_window():
    cc = CongestionController()
    cc.max_window = 10000
    cc.cur_window = 0
    assert not cc.can_send(3000, 2000)
    assert cc.can_send(2000, 2000)


def test_base_delay_reset():
    cc = CongestionController()
    cc.cur_window = 1000
    cc.on_delay_sample(50000)
    assert cc.our_delay() == timedelta(0)
    cc.on_delay_sample(30000)
    assert cc.our_delay() == timedelta(0)
    cc.on_delay_sample(80000)
    assert cc.our_delay() == timedelta(milliseconds=50)


def test_base_delay_window_expiry():
    clock = _FakeClock()
    cc = CongestionController(clock=clock)
    cc.on_delay_sample(10000)
    clock.now += 60
    cc.on_delay_sample(40000)
    assert cc.our_delay() == timedelta(milliseconds=30)
    clock.now += 200
    cc.on_delay_sample(40000)
    assert cc.our_delay() == timedelta(0)