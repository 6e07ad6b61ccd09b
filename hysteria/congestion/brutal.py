"""A congestion controller that sends at a fixed rate, scaled by the ack rate."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from .pacer import INIT_MAX_DATAGRAM_SIZE, Pacer

PKT_INFO_SLOT_COUNT = 4
MIN_SAMPLE_COUNT = 50
MIN_ACK_RATE = 0.8

DEFAULT_CONGESTION_WINDOW = 10240

_NS_PER_SECOND = 1_000_000_000


class RTTStatsProvider(Protocol):
    """Source of round-trip time measurements, in nanoseconds."""

    def latest_rtt(self) -> int: ...

    def smoothed_rtt(self) -> int: ...


@dataclass
class _PktInfo:
    timestamp: int = 0
    ack_count: int = 0
    loss_count: int = 0


class BrutalSender:
    """Sends at ``bps`` bytes per second, compensating for observed loss.

    Times are integer nanoseconds since the epoch; ``clock`` supplies the
    current time where the caller does not.
    """

    def __init__(self, bps: int, clock: Callable[[], int] = time.time_ns) -> None:
        self.bps = bps
        self.max_datagram_size = INIT_MAX_DATAGRAM_SIZE
        self.retransmission_timeouts = 0
        self._clock = clock
        self._rtt_stats: RTTStatsProvider | None = None
        self._slots = [_PktInfo() for _ in range(PKT_INFO_SLOT_COUNT)]
        self._ack_rate = 1.0
        self.pacer = Pacer(self._bandwidth)

    @property
    def ack_rate(self) -> float:
        return self._ack_rate

    def _bandwidth(self) -> int:
        return int(self.bps / self._ack_rate)

    def set_rtt_stats_provider(self, rtt_stats: RTTStatsProvider) -> None:
        self._rtt_stats = rtt_stats

    def time_until_send(self, bytes_in_flight: int) -> int | None:
        return self.pacer.time_until_send()

    def has_pacing_budget(self) -> bool:
        return self.pacer.budget(self._clock()) >= self.max_datagram_size

    def can_send(self, bytes_in_flight: int) -> bool:
        return bytes_in_flight < self.get_congestion_window()

    def get_congestion_window(self) -> int:
        if self._rtt_stats is None:
            raise RuntimeError("no RTT stats provider set")
        rtt = max(self._rtt_stats.latest_rtt(), self._rtt_stats.smoothed_rtt())
        if rtt <= 0:
            return DEFAULT_CONGESTION_WINDOW
        return int(self.bps * (rtt / _NS_PER_SECOND) * 1.5 / self._ack_rate)

    def on_packet_sent(
        self,
        sent_time: int,
        bytes_in_flight: int,
        packet_number: int,
        size: int,
        is_retransmittable: bool,
    ) -> None:
        self.pacer.sent_packet(sent_time, size)

    def on_packet_acked(
        self, number: int, acked_bytes: int, prior_in_flight: int, event_time: int
    ) -> None:
        self._record(event_time // _NS_PER_SECOND, acked=True)

    def on_packet_lost(self, number: int, lost_bytes: int, prior_in_flight: int) -> None:
        self._record(self._clock() // _NS_PER_SECOND, acked=False)

    def _record(self, timestamp: int, acked: bool) -> None:
        info = self._slots[timestamp % PKT_INFO_SLOT_COUNT]
        if info.timestamp != timestamp:
            # Unused or stale slot: start it over for this second.
            info.timestamp, info.ack_count, info.loss_count = timestamp, 0, 0
        if acked:
            info.ack_count += 1
        else:
            info.loss_count += 1
        self._update_ack_rate(timestamp)

    def _update_ack_rate(self, timestamp: int) -> None:
        oldest = timestamp - PKT_INFO_SLOT_COUNT
        recent = [info for info in self._slots if info.timestamp >= oldest]
        acks = sum(info.ack_count for info in recent)
        losses = sum(info.loss_count for info in recent)
        if acks + losses < MIN_SAMPLE_COUNT:
            self._ack_rate = 1.0
            return
        self._ack_rate = max(acks / (acks + losses), MIN_ACK_RATE)

    def set_max_datagram_size(self, size: int) -> None:
        self.max_datagram_size = size
        self.pacer.set_max_datagram_size(size)

    def in_slow_start(self) -> bool:
        return False

    def in_recovery(self) -> bool:
        return False

    def maybe_exit_slow_start(self) -> bool:
        """Return whether the sender is still in slow start, which it never is."""
        return self.in_slow_start()

    def on_retransmission_timeout(self, packets_retransmitted: bool) -> None:
        """Count the timeout; the sending rate is left unchanged."""
        self.retransmission_timeouts += 1