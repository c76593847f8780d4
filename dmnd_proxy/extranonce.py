"""Extranonce layout shared between the pool, the proxy and the miners, plus small helpers."""

from __future__ import annotations

from collections.abc import Sequence
from itertools import pairwise

from dmnd_proxy.protocol import ProxyError

MAX_EXTRANONCE_LEN = 32


def _check_ranges(range_0: range, range_1: range, range_2: range) -> None:
    for r in (range_0, range_1, range_2):
        if r.step != 1 or r.stop < r.start:
            raise ProxyError(f"invalid extranonce range {r!r}")
    if range_0.start != 0:
        raise ProxyError("the upstream extranonce range must start at 0")
    if range_0.stop != range_1.start or range_1.stop != range_2.start:
        raise ProxyError(
            f"extranonce ranges are not contiguous: {range_0!r} {range_1!r} {range_2!r}"
        )
    if range_2.stop > MAX_EXTRANONCE_LEN:
        raise ProxyError(
            f"extranonce of {range_2.stop} bytes exceeds {MAX_EXTRANONCE_LEN} bytes"
        )


class ExtendedExtranonce:
    """Full extranonce split into three contiguous parts.

    range_0 is the extranonce1 given by the upstream, range_1 is the part the
    proxy rolls for each downstream, range_2 is the extranonce2 rolled by the
    miner. range_0 and range_1 together form the extranonce1 sent to a miner.
    """

    def __init__(self, range_0: range, range_1: range, range_2: range) -> None:
        _check_ranges(range_0, range_1, range_2)
        self.range_0 = range_0
        self.range_1 = range_1
        self.range_2 = range_2
        self._inner = bytearray(range_2.stop)

    @classmethod
    def from_upstream_extranonce(
        cls, extranonce: bytes, range_0: range, range_1: range, range_2: range
    ) -> ExtendedExtranonce:
        """Build the layout around the extranonce1 received from the upstream."""
        extranonce = bytes(extranonce)
        if len(extranonce) != len(range_0):
            raise ProxyError(
                f"upstream extranonce of {len(extranonce)} bytes does not fit range {range_0!r}"
            )
        extended = cls(range_0, range_1, range_2)
        extended._inner[range_0.start:range_0.stop] = extranonce
        return extended

    @property
    def upstream_prefix(self) -> bytes:
        return bytes(self._inner[self.range_0.start:self.range_0.stop])

    @property
    def extranonce2_len(self) -> int:
        return len(self.range_2)

    def __len__(self) -> int:
        return self.range_2.stop

    def next_prefix(self) -> bytes:
        """Advance the proxy part big-endian and return the new extranonce1 for a miner."""
        start, stop = self.range_1.start, self.range_1.stop
        for index in reversed(range(start, stop)):
            if self._inner[index] < 0xFF:
                self._inner[index] += 1
                self._inner[index + 1:stop] = bytes(stop - index - 1)
                return bytes(self._inner[: self.range_2.start])
        raise ProxyError("extranonce space exhausted: no more prefixes available")


def proxy_extranonce1_len(channel_extranonce2_size: int, downstream_extranonce2_len: int) -> int:
    """Bytes of extranonce the proxy keeps for itself out of the channel's extranonce2."""
    remaining = channel_extranonce2_size - downstream_extranonce2_len
    if remaining < 0:
        raise ValueError(
            f"downstream extranonce2 of {downstream_extranonce2_len} bytes exceeds "
            f"channel extranonce2 of {channel_extranonce2_size} bytes"
        )
    return remaining


def u256_max() -> bytes:
    """The largest 256-bit target."""
    return b"\xff" * 32


def avg_seconds_between(instants: Sequence[float]) -> float:
    """Mean gap in seconds between consecutive monotonic instants; 0.0 for fewer than two."""
    if len(instants) < 2:
        return 0.0
    total = sum(max(0.0, later - earlier) for earlier, later in pairwise(instants))
    return total / (len(instants) - 1)