"""Token-bucket pacing of outgoing packets.

Times are integer nanoseconds since the epoch, as returned by
``time.time_ns()``; bandwidth is in bytes per second.
"""

from __future__ import annotations

import math
from collections.abc import Callable

INIT_MAX_DATAGRAM_SIZE = 1252
MAX_BURST_PACKETS = 10
MIN_PACING_DELAY_NS = 1_000_000

_NS_PER_SECOND = 1_000_000_000
_INT64_MAX = (1 << 63) - 1


def _scale(bandwidth: int, nanoseconds: int) -> int:
    """Bytes sent at ``bandwidth`` over ``nanoseconds``, truncated toward zero."""
    product = bandwidth * nanoseconds
    quotient = abs(product) // _NS_PER_SECOND
    return quotient if product >= 0 else -quotient


class Pacer:
    """A token-bucket pacer whose rate is read from a callable on every use."""

    def __init__(self, get_bandwidth: Callable[[], int]) -> None:
        self._get_bandwidth = get_bandwidth
        self.budget_at_last_sent = MAX_BURST_PACKETS * INIT_MAX_DATAGRAM_SIZE
        self.max_datagram_size = INIT_MAX_DATAGRAM_SIZE
        self.last_sent_time: int | None = None

    def sent_packet(self, send_time: int, size: int) -> None:
        """Record that ``size`` bytes were sent at ``send_time``."""
        budget = self.budget(send_time)
        self.budget_at_last_sent = 0 if size > budget else budget - size
        self.last_sent_time = send_time

    def budget(self, now: int) -> int:
        """Return how many bytes may be sent at ``now``."""
        if self.last_sent_time is None:
            return self._max_burst_size()
        elapsed = now - self.last_sent_time
        budget = self.budget_at_last_sent + _scale(self._get_bandwidth(), elapsed)
        return min(self._max_burst_size(), budget)

    def _max_burst_size(self) -> int:
        return max(
            _scale(self._get_bandwidth(), MIN_PACING_DELAY_NS + 1_000_000),
            MAX_BURST_PACKETS * self.max_datagram_size,
        )

    def time_until_send(self) -> int | None:
        """Return when the next packet may be sent, or ``None`` for right away."""
        if self.budget_at_last_sent >= self.max_datagram_size:
            return None
        bandwidth = self._get_bandwidth()
        missing = self.max_datagram_size - self.budget_at_last_sent
        if bandwidth > 0:
            delay = math.ceil(missing * 1e9 / float(bandwidth))
        else:
            delay = _INT64_MAX
        last = self.last_sent_time if self.last_sent_time is not None else 0
        return last + max(MIN_PACING_DELAY_NS, delay)

    def set_max_datagram_size(self, size: int) -> None:
        self.max_datagram_size = size