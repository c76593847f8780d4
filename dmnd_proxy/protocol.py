"""Mining protocol messages used by the translator and SV2 to SV1 job translation."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class ProxyError(Exception):
    """Raised when the translator cannot carry on with a message or a state change."""


@dataclass
class SetNewPrevHash:
    channel_id: int
    job_id: int
    prev_hash: bytes
    min_ntime: int
    nbits: int


@dataclass
class NewExtendedMiningJob:
    channel_id: int
    job_id: int
    min_ntime: int | None
    version: int
    version_rolling_allowed: bool
    merkle_path: list[bytes]
    coinbase_tx_prefix: bytes
    coinbase_tx_suffix: bytes

    def is_future(self) -> bool:
        """A job without min_ntime waits for a later SetNewPrevHash."""
        return self.min_ntime is None


@dataclass
class SubmitSharesExtended:
    channel_id: int
    sequence_number: int
    job_id: int
    nonce: int
    ntime: int
    version: int
    extranonce: bytes


@dataclass
class OpenExtendedMiningChannel:
    request_id: int
    user_identity: str
    nominal_hash_rate: float
    max_target: bytes
    min_extranonce_size: int


@dataclass
class OpenExtendedMiningChannelSuccess:
    request_id: int
    channel_id: int
    target: bytes
    extranonce_size: int
    extranonce_prefix: bytes


@dataclass
class OpenMiningChannelError:
    request_id: int
    error_code: str


@dataclass
class UpdateChannel:
    channel_id: int
    nominal_hash_rate: float
    maximum_target: bytes


@dataclass
class UpdateChannelError:
    channel_id: int
    error_code: str


@dataclass
class CloseChannel:
    channel_id: int
    reason_code: str


@dataclass
class SetTarget:
    channel_id: int
    maximum_target: bytes


@dataclass
class SubmitSharesSuccess:
    channel_id: int
    last_sequence_number: int
    new_submits_accepted_count: int
    new_shares_sum: int


@dataclass
class SubmitSharesError:
    channel_id: int
    sequence_number: int
    error_code: str


@dataclass
class SetCustomMiningJobSuccess:
    channel_id: int
    request_id: int
    job_id: int


@dataclass
class Submit:
    """SV1 mining.submit request."""

    user_name: str
    job_id: str
    extra_nonce2: bytes
    time: int
    nonce: int
    version_bits: int | None = None
    id: int = 0


@dataclass
class Notify:
    """SV1 mining.notify message."""

    job_id: str
    prev_hash: bytes
    coin_base1: bytes
    coin_base2: bytes
    merkle_branch: list[bytes] = field(default_factory=list)
    version: int = 0
    bits: int = 0
    time: int = 0
    clean_jobs: bool = True


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def take(self, size: int) -> bytes:
        end = self.pos + size
        if end > len(self.data):
            raise ProxyError("invalid coinbase: unexpected end of transaction")
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def varint(self) -> int:
        first = self.take(1)[0]
        widths = {0xFD: 2, 0xFE: 4, 0xFF: 8}
        if first in widths:
            return int.from_bytes(self.take(widths[first]), "little")
        return first


def _varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def extended_job_to_non_segwit(job: NewExtendedMiningJob, extranonce_len: int) -> NewExtendedMiningJob:
    """Rewrite the job's coinbase halves without witness data.

    The extranonce sits at the end of the coinbase script_sig; the returned prefix
    stops right before it and the suffix starts right after it.
    """
    raw = job.coinbase_tx_prefix + bytes(extranonce_len) + job.coinbase_tx_suffix
    reader = _Reader(raw)
    version = reader.take(4)
    segwit = raw[4:6] == b"\x00\x01"
    if segwit:
        reader.take(2)
    if reader.varint() != 1:
        raise ProxyError("invalid coinbase: expected exactly one input")
    prev_out = reader.take(36)
    script_sig = reader.take(reader.varint())
    sequence = reader.take(4)
    outputs_start = reader.pos
    for _ in range(reader.varint()):
        reader.take(8)
        reader.take(reader.varint())
    outputs = raw[outputs_start:reader.pos]
    if segwit:
        for _ in range(reader.varint()):
            reader.take(reader.varint())
    lock_time = reader.take(4)
    if reader.pos != len(raw):
        raise ProxyError("invalid coinbase: trailing data")
    if len(script_sig) < extranonce_len:
        raise ProxyError("invalid coinbase: script_sig shorter than extranonce")

    script_head = script_sig[: len(script_sig) - extranonce_len]
    prefix = version + b"\x01" + prev_out + _varint(len(script_sig)) + script_head
    suffix = sequence + outputs + lock_time
    return dataclasses.replace(job, coinbase_tx_prefix=prefix, coinbase_tx_suffix=suffix)


def create_notify(
    new_prev_hash: SetNewPrevHash,
    new_job: NewExtendedMiningJob,
    clean_jobs: bool,
    extranonce_len: int,
) -> Notify:
    """Build an SV1 mining.notify from a SetNewPrevHash and its NewExtendedMiningJob."""
    job = extended_job_to_non_segwit(new_job, extranonce_len)
    time = new_prev_hash.min_ntime if job.is_future() else job.min_ntime
    notify = Notify(
        job_id=str(job.job_id),
        prev_hash=bytes(new_prev_hash.prev_hash),
        coin_base1=job.coinbase_tx_prefix,
        coin_base2=job.coinbase_tx_suffix,
        merkle_branch=[bytes(node) for node in job.merkle_path],
        version=job.version,
        bits=new_prev_hash.nbits,
        time=time,
        clean_jobs=clean_jobs,
    )
    logger.info(
        "NextMiningNotify created for channel id: %s, Job id: %s, PrevHash: %s version: %s, "
        "bits: %s, time: %s, clean_jobs: %s",
        job.channel_id,
        notify.job_id,
        notify.prev_hash[::-1].hex(),
        notify.version,
        notify.bits,
        notify.time,
        notify.clean_jobs,
    )
    return notify