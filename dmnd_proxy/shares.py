"""Share rate limiting, per-connection share counting and share validation."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import struct
import time
from collections import deque
from collections.abc import Awaitable, Callable, Sequence

from dmnd_proxy.protocol import Notify, Submit

logger = logging.getLogger(__name__)

SHARE_RATE_LIMIT = 70
SHARE_WINDOW_SECONDS = 60.0
DEFAULT_VERSION_ROLLING_MASK = 0x1FFFE000
_LIMITED_TICKS_BEFORE_UPDATE = 5
_MIN_SECONDS_BETWEEN_UPDATES = 2.0
_TICK_SECONDS = 1.0


class ShareRateLimiter:
    """Caps shares sent upstream to `limit` per sliding `window` seconds."""

    def __init__(
        self,
        limit: int = SHARE_RATE_LIMIT,
        window: float = SHARE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window = window
        self._clock = clock
        self._timestamps: deque[float] = deque()
        self.is_rate_limited = False
        self._hit_count = 0
        self._last_update = clock()

    def allow_submit_share(self) -> bool:
        """Record a share and return True, or return False while rate limited."""
        if self.is_rate_limited:
            return False
        self._timestamps.append(self._clock())
        return True

    def tick(self) -> bool:
        """Refresh the limit state; return True when the difficulty should be raised."""
        now = self._clock()
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()
        self.is_rate_limited = len(self._timestamps) >= self.limit
        self._hit_count = self._hit_count + 1 if self.is_rate_limited else 0

        if (
            self._hit_count >= _LIMITED_TICKS_BEFORE_UPDATE
            and now - self._last_update >= _MIN_SECONDS_BETWEEN_UPDATES
        ):
            self._last_update = now
            self.is_rate_limited = False
            self._hit_count = 0
            return True
        return False

    async def run(self, update_difficulty: Callable[[], Awaitable[object]]) -> None:
        """Tick once a second forever, calling update_difficulty when limited too long."""
        while True:
            if self.tick():
                logger.debug("Rate limited. Updating difficulty")
                try:
                    await update_difficulty()
                except Exception as exc:  # keep the limiter alive
                    logger.error("Failed to update difficulty: %s", exc)
            await asyncio.sleep(_TICK_SECONDS)


class ShareCounter:
    """Counts shares per connection within a rolling window."""

    def __init__(
        self,
        window: float = SHARE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window = window
        self._clock = clock
        self._counts: dict[int, tuple[int, float]] = {}

    def update(self, connection_id: int) -> None:
        now = self._clock()
        entry = self._counts.get(connection_id)
        if entry is not None and now - entry[1] < self.window:
            self._counts[connection_id] = (entry[0] + 1, entry[1])
        else:
            self._counts[connection_id] = (1, now)

    def get(self, connection_id: int) -> float:
        """Shares in the current window, or 0.0 if the window has lapsed."""
        entry = self._counts.get(connection_id)
        if entry is None or self._clock() - entry[1] >= self.window:
            return 0.0
        return float(entry[0])


def sha256d(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def get_hash(
    nonce: int,
    version: int,
    ntime: int,
    extranonce: bytes,
    job: Notify,
    prev_hash: bytes,
    merkle_path: Sequence[bytes],
) -> bytes:
    """Block header hash, in internal byte order, for a share on `job`."""
    if len(prev_hash) != 32:
        raise ValueError("previous block hash must be 32 bytes")
    if not 0 <= version < 2**31:
        raise ValueError(f"block version {version:#x} does not fit a signed 32-bit value")
    merkle_root = sha256d(job.coin_base1 + extranonce + job.coin_base2)
    for node in merkle_path:
        merkle_root = sha256d(merkle_root + node)
    header = (
        struct.pack("<i", version)
        + prev_hash
        + merkle_root
        + struct.pack("<III", ntime, job.bits, nonce)
    )
    return sha256d(header)


def validate_share(
    request: Submit,
    job: Notify,
    difficulties: Sequence[float],
    extranonce1: bytes,
    version_rolling_mask: int | None,
    difficulty_to_target: Callable[[float], bytes],
) -> float | None:
    """Return the most recent difficulty the share meets, or None if it meets none."""
    logger.info("Validating share from request %s and job %s", request.id, request.job_id)
    prev_hash = bytes(job.prev_hash)
    if len(prev_hash) != 32:
        logger.error("Share rejected: Invalid previous hash of %d bytes", len(prev_hash))
        return None

    request_version = job.version if request.version_bits is None else request.version_bits
    mask = DEFAULT_VERSION_ROLLING_MASK if version_rolling_mask is None else version_rolling_mask
    version = ((job.version & ~mask) | (request_version & mask)) & 0xFFFFFFFF

    block_hash = get_hash(
        request.nonce,
        version,
        request.time,
        bytes(extranonce1) + bytes(request.extra_nonce2),
        job,
        prev_hash,
        job.merkle_branch,
    )[::-1]
    logger.info("Share Hash: %s", block_hash.hex())

    for difficulty in reversed(difficulties):
        target = bytes(difficulty_to_target(difficulty))
        logger.debug("Checking difficulty: %s, Target: %s", difficulty, target.hex())
        if block_hash <= target:
            logger.info("Share met Target: %s", target.hex())
            return difficulty

    logger.error("Share rejected: Does not meet any difficulty")
    return None