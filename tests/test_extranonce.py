import pytest

from dmnd_proxy.extranonce import (
    MAX_EXTRANONCE_LEN,
    ExtendedExtranonce,
    avg_seconds_between,
    proxy_extranonce1_len,
    u256_max,
)
from dmnd_proxy.protocol import ProxyError


def test_u256_max_is_all_ones():
    assert u256_max() == b"\xff" * 32


def test_proxy_extranonce1_len_subtracts():
    assert proxy_extranonce1_len(16, 8) == 8
    assert proxy_extranonce1_len(8, 8) == 0


def test_proxy_extranonce1_len_underflow_raises():
    with pytest.raises(ValueError):
        proxy_extranonce1_len(4, 8)


def test_avg_seconds_between_short_inputs():
    assert avg_seconds_between([]) == 0.0
    assert avg_seconds_between([5.0]) == 0.0


def test_avg_seconds_between_even_spacing():
    step = 2.5
    instants = [10.0 + step * i for i in range(6)]
    assert avg_seconds_between(instants) == pytest.approx(step)


def test_avg_seconds_between_uneven():
    assert avg_seconds_between([0.0, 1.0, 3.0]) == pytest.approx(1.5)


def test_from_upstream_keeps_prefix_and_length():
    upstream = b"\x01\x02\x03\x04"
    ext = ExtendedExtranonce.from_upstream_extranonce(
        upstream, range(0, 4), range(4, 6), range(6, 14)
    )
    assert ext.upstream_prefix == upstream
    assert len(ext) == 14
    assert ext.extranonce2_len == 8


def test_first_prefix_starts_from_one():
    upstream = b"\x01\x02"
    ext = ExtendedExtranonce.from_upstream_extranonce(
        upstream, range(0, 2), range(2, 4), range(4, 8)
    )
    assert ext.next_prefix() == upstream + b"\x00\x01"


def test_prefixes_increase_and_keep_upstream_part():
    upstream = b"\xaa\xbb\xcc"
    ext = ExtendedExtranonce.from_upstream_extranonce(
        upstream, range(0, 3), range(3, 5), range(5, 9)
    )
    prefixes = [ext.next_prefix() for _ in range(300)]
    assert all(p.startswith(upstream) for p in prefixes)
    assert all(len(p) == 5 for p in prefixes)
    assert prefixes == sorted(prefixes)
    assert len(set(prefixes)) == len(prefixes)


def test_prefix_carries_across_bytes():
    ext = ExtendedExtranonce(range(0, 0), range(0, 2), range(2, 4))
    prefixes = [ext.next_prefix() for _ in range(256)]
    assert prefixes[254] == b"\x00\xff"
    assert prefixes[255] == b"\x01\x00"


def test_prefix_space_exhausted():
    ext = ExtendedExtranonce(range(0, 2), range(2, 3), range(3, 8))
    for _ in range(255):
        ext.next_prefix()
    with pytest.raises(ProxyError):
        ext.next_prefix()


def test_empty_proxy_range_has_no_prefixes():
    ext = ExtendedExtranonce(range(0, 4), range(4, 4), range(4, 8))
    with pytest.raises(ProxyError):
        ext.next_prefix()


def test_upstream_length_mismatch_raises():
    with pytest.raises(ProxyError):
        ExtendedExtranonce.from_upstream_extranonce(
            b"\x01\x02\x03", range(0, 4), range(4, 6), range(6, 10)
        )


@pytest.mark.parametrize(
    "ranges",
    [
        (range(1, 4), range(4, 6), range(6, 10)),
        (range(0, 4), range(5, 6), range(6, 10)),
        (range(0, 4), range(4, 6), range(7, 10)),
        (range(0, 4), range(4, 6), range(6, MAX_EXTRANONCE_LEN + 1)),
    ],
)
def test_invalid_ranges_raise(ranges):
    with pytest.raises(ProxyError):
        ExtendedExtranonce(*ranges)