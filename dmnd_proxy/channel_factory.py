"""Extended channels opened by the proxy for its SV1 miners on top of one upstream channel."""

from __future__ import annotations

import dataclasses
import enum
import logging
import struct
from collections import deque
from dataclasses import dataclass

from dmnd_proxy.extranonce import ExtendedExtranonce
from dmnd_proxy.protocol import (
    NewExtendedMiningJob,
    OpenExtendedMiningChannelSuccess,
    OpenMiningChannelError,
    ProxyError,
    SetNewPrevHash,
    SubmitSharesError,
    SubmitSharesExtended,
)
from dmnd_proxy.shares import sha256d

logger = logging.getLogger(__name__)

MAX_TARGET = b"\xff" * 32
VALID_JOBS_KEPT = 3
DIFFICULTY_TOO_LOW = "difficulty-too-low"
UNSUPPORTED_MIN_EXTRANONCE_SIZE = "unsupported-min-extranonce-size"


class ChannelFactoryError(ProxyError):
    """A channel factory operation failed; `kind` tells which failure it was."""

    NO_VALID_JOB = "no_valid_job"
    SHARE_DO_NOT_MATCH_ANY_JOB = "share_do_not_match_any_job"
    JOB_IS_NOT_FUTURE_BUT_PREV_HASH_NOT_PRESENT = "job_is_not_future_but_prev_hash_not_present"
    NOT_FOUND_CHANNEL_ID = "not_found_channel_id"
    INVALID_HASH_RATE = "invalid_hash_rate"

    def __init__(self, kind: str, message: str | None = None) -> None:
        super().__init__(message or kind.replace("_", " "))
        self.kind = kind


class ShareOutcome(enum.Enum):
    """What the proxy should do with a share submitted by a miner."""

    SEND_ERROR_DOWNSTREAM = "send_error_downstream"
    SEND_SUBMIT_SHARE_UPSTREAM = "send_submit_share_upstream"
    SHARE_MEET_DOWNSTREAM_TARGET = "share_meet_downstream_target"


@dataclass
class _Channel:
    target: bytes
    extranonce_prefix: bytes


def _target_value(target: bytes) -> int:
    return int.from_bytes(bytes(target), "little")


def target_from_hash_rate(hash_rate: float, share_per_min: float) -> bytes:
    """Target (little-endian, 32 bytes) at which `hash_rate` yields `share_per_min` shares."""
    if share_per_min <= 0:
        raise ChannelFactoryError(
            ChannelFactoryError.INVALID_HASH_RATE, "shares per minute must be positive"
        )
    if hash_rate < 0:
        raise ChannelFactoryError(
            ChannelFactoryError.INVALID_HASH_RATE, f"negative hash rate {hash_rate}"
        )
    hashes_per_share = int(hash_rate * 60.0 / share_per_min)
    target = ((1 << 256) - hashes_per_share) // (hashes_per_share + 1)
    target = max(0, min(target, (1 << 256) - 1))
    return target.to_bytes(32, "little")


class ProxyExtendedChannelFactory:
    """Opens downstream extended channels and checks their shares against two targets."""

    def __init__(
        self,
        extranonces: ExtendedExtranonce,
        share_per_min: float,
        upstream_target: bytes,
        channel_id: int,
    ) -> None:
        self.extranonces = extranonces
        self.share_per_min = share_per_min
        self.upstream_target = bytes(upstream_target)
        self.channel_id = channel_id
        self._channels: dict[int, _Channel] = {}
        self._next_channel_id = 1
        self._future_jobs: list[NewExtendedMiningJob] = []
        self._valid_jobs: deque[NewExtendedMiningJob] = deque(maxlen=VALID_JOBS_KEPT)
        self._last_prev_hash: SetNewPrevHash | None = None

    def new_extended_channel(
        self, request_id: int, hash_rate: float, min_extranonce_size: int
    ) -> list:
        """Open a channel; return the success (or error) message and the current work."""
        if min_extranonce_size > self.extranonces.extranonce2_len:
            return [OpenMiningChannelError(request_id, UNSUPPORTED_MIN_EXTRANONCE_SIZE)]
        target = target_from_hash_rate(hash_rate, self.share_per_min)
        prefix = self.extranonces.next_prefix()
        channel_id = self._next_channel_id
        self._next_channel_id += 1
        self._channels[channel_id] = _Channel(target, prefix)
        messages: list = [
            OpenExtendedMiningChannelSuccess(
                request_id=request_id,
                channel_id=channel_id,
                target=target,
                extranonce_size=self.extranonces.extranonce2_len,
                extranonce_prefix=prefix,
            )
        ]
        if self._last_prev_hash is not None and self._valid_jobs:
            messages.append(dataclasses.replace(self._valid_jobs[-1], channel_id=channel_id))
            messages.append(dataclasses.replace(self._last_prev_hash, channel_id=channel_id))
        return messages

    def on_new_prev_hash(self, m: SetNewPrevHash) -> None:
        """Activate the future job the new prev hash refers to, dropping stale work."""
        self._valid_jobs.clear()
        matched = next((job for job in self._future_jobs if job.job_id == m.job_id), None)
        if matched is not None:
            self._valid_jobs.append(dataclasses.replace(matched, min_ntime=m.min_ntime))
        self._future_jobs = []
        self._last_prev_hash = m

    def on_new_extended_mining_job(self, m: NewExtendedMiningJob) -> None:
        """Store a future job, or make a current job the latest valid one."""
        if m.is_future():
            self._future_jobs.append(m)
            return
        if self._last_prev_hash is None:
            raise ChannelFactoryError(ChannelFactoryError.JOB_IS_NOT_FUTURE_BUT_PREV_HASH_NOT_PRESENT)
        self._valid_jobs.append(m)

    def job(self, job_id: int) -> NewExtendedMiningJob | None:
        """One of the last valid jobs with this id, if any."""
        return next((job for job in reversed(self._valid_jobs) if job.job_id == job_id), None)

    def last_valid_job_version(self) -> int | None:
        return self._valid_jobs[-1].version if self._valid_jobs else None

    def update_target_for_channel(self, channel_id: int, new_target: bytes) -> bool:
        """Change a downstream channel's target; False if the channel is unknown."""
        channel = self._channels.get(channel_id)
        if channel is None:
            return False
        channel.target = bytes(new_target)
        return True

    def set_target(self, target: bytes) -> None:
        """Replace the upstream target shares must meet to be sent to the pool."""
        self.upstream_target = bytes(target)

    def get_extranonce_len(self) -> int:
        return len(self.extranonces)

    def on_submit_shares_extended(
        self, m: SubmitSharesExtended
    ) -> tuple[ShareOutcome, SubmitSharesExtended | SubmitSharesError | None]:
        """Check a share against the upstream and downstream targets."""
        channel = self._channels.get(m.channel_id)
        if channel is None:
            raise ChannelFactoryError(
                ChannelFactoryError.NOT_FOUND_CHANNEL_ID, f"channel {m.channel_id} not found"
            )
        job = self.job(m.job_id)
        if job is None or self._last_prev_hash is None:
            raise ChannelFactoryError(ChannelFactoryError.SHARE_DO_NOT_MATCH_ANY_JOB)

        coinbase = (
            bytes(job.coinbase_tx_prefix)
            + channel.extranonce_prefix
            + bytes(m.extranonce)
            + bytes(job.coinbase_tx_suffix)
        )
        merkle_root = sha256d(coinbase)
        for node in job.merkle_path:
            merkle_root = sha256d(merkle_root + bytes(node))
        header = (
            struct.pack("<I", m.version & 0xFFFFFFFF)
            + bytes(self._last_prev_hash.prev_hash)
            + merkle_root
            + struct.pack("<III", m.ntime, self._last_prev_hash.nbits, m.nonce)
        )
        hash_value = int.from_bytes(sha256d(header), "little")

        if hash_value <= _target_value(self.upstream_target):
            return ShareOutcome.SEND_SUBMIT_SHARE_UPSTREAM, m
        if hash_value <= _target_value(channel.target):
            return ShareOutcome.SHARE_MEET_DOWNSTREAM_TARGET, None
        logger.debug("Share on channel %s does not meet the downstream target", m.channel_id)
        return ShareOutcome.SEND_ERROR_DOWNSTREAM, SubmitSharesError(
            channel_id=m.channel_id,
            sequence_number=m.sequence_number,
            error_code=DIFFICULTY_TOO_LOW,
        )