from dataclasses import dataclass

import pytest

from hysteria.congestion.brutal import (
    DEFAULT_CONGESTION_WINDOW,
    MIN_ACK_RATE,
    BrutalSender,
)
from hysteria.congestion.pacer import INIT_MAX_DATAGRAM_SIZE

SECOND = 1_000_000_000


@dataclass
class FakeRTT:
    latest: int = 0
    smoothed: int = 0

    def latest_rtt(self):
        return self.latest

    def smoothed_rtt(self):
        return self.smoothed


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def make(bps=1_000_000, now=1000 * SECOND, rtt=None):
    clock = Clock(now)
    sender = BrutalSender(bps, clock=clock)
    sender.set_rtt_stats_provider(rtt or FakeRTT())
    return sender, clock


def test_window_without_rtt_is_default():
    sender, _ = make()
    assert sender.get_congestion_window() == DEFAULT_CONGESTION_WINDOW


def test_window_uses_larger_rtt():
    sender, _ = make(rtt=FakeRTT(latest=100_000_000, smoothed=50_000_000))
    assert sender.get_congestion_window() == 150_000


def test_can_send_below_window():
    sender, _ = make()
    assert sender.can_send(DEFAULT_CONGESTION_WINDOW - 1)
    assert not sender.can_send(DEFAULT_CONGESTION_WINDOW)


def test_missing_rtt_provider_raises():
    sender = BrutalSender(1_000_000)
    with pytest.raises(RuntimeError):
        sender.get_congestion_window()


def test_never_in_slow_start_or_recovery():
    sender, _ = make()
    sender.maybe_exit_slow_start()
    sender.on_retransmission_timeout(True)
    assert sender.in_slow_start() is False
    assert sender.in_recovery() is False


def test_few_samples_keep_full_rate():
    sender, clock = make()
    for n in range(10):
        sender.on_packet_acked(n, 1000, 0, clock.now)
    for n in range(5):
        sender.on_packet_lost(n, 1000, 0)
    assert sender.ack_rate == 1.0


def test_heavy_loss_clamped_to_min_rate():
    sender, clock = make()
    for n in range(40):
        sender.on_packet_acked(n, 1000, 0, clock.now)
    for n in range(60):
        sender.on_packet_lost(n, 1000, 0)
    assert sender.ack_rate == MIN_ACK_RATE
    # bandwidth and window both grow as the ack rate falls
    assert sender.pacer._get_bandwidth() == int(1_000_000 / MIN_ACK_RATE)


def test_moderate_loss_sets_rate():
    sender, clock = make()
    for n in range(90):
        sender.on_packet_acked(n, 1000, 0, clock.now)
    for n in range(10):
        sender.on_packet_lost(n, 1000, 0)
    assert sender.ack_rate == pytest.approx(90 / 100)


def test_stale_slots_are_ignored():
    sender, clock = make()
    for n in range(100):
        sender.on_packet_lost(n, 1000, 0)
    assert sender.ack_rate == MIN_ACK_RATE
    later = clock.now + 10 * SECOND
    for n in range(60):
        sender.on_packet_acked(n, 1000, 0, later)
    assert sender.ack_rate == 1.0


def test_window_grows_with_loss():
    rtt = FakeRTT(latest=100_000_000)
    sender, clock = make(rtt=rtt)
    before = sender.get_congestion_window()
    for n in range(40):
        sender.on_packet_acked(n, 1000, 0, clock.now)
    for n in range(60):
        sender.on_packet_lost(n, 1000, 0)
    assert sender.get_congestion_window() > before


def test_pacing_budget_and_time_until_send():
    sender, clock = make()
    assert sender.has_pacing_budget()
    assert sender.time_until_send(0) is None
    sender.on_packet_sent(clock.now, 0, 1, 10**6, True)
    assert not sender.has_pacing_budget()
    assert sender.time_until_send(0) > clock.now


def test_set_max_datagram_size_propagates():
    sender, _ = make()
    sender.set_max_datagram_size(INIT_MAX_DATAGRAM_SIZE + 100)
    assert sender.max_datagram_size == INIT_MAX_DATAGRAM_SIZE + 100
    assert sender.pacer.max_datagram_size == INIT_MAX_DATAGRAM_SIZE + 100