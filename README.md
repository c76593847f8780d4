# dmnd_proxy

Building blocks for a proxy that sits between Stratum V1 mining devices and a
Stratum V2 pool. The package holds the message types for both sides, turns a
V2 `SetNewPrevHash` plus `NewExtendedMiningJob` into a V1 `mining.notify`,
lays out extranonces, opens extended channels for miners and checks their
shares against downstream and upstream targets. It has no dependencies beyond
the standard library.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `dmnd_proxy.protocol`: dataclasses for the messages (`SetNewPrevHash`,
  `NewExtendedMiningJob`, `SubmitSharesExtended`, `OpenExtendedMiningChannel`,
  `OpenExtendedMiningChannelSuccess`, `SetTarget`, the V1 `Submit` and `Notify`,
  and others), the `ProxyError` exception, `extended_job_to_non_segwit`, which
  rewrites a job's coinbase halves without witness data, and `create_notify`,
  which builds a `Notify` from a prev hash and a job.
- `dmnd_proxy.extranonce`: `ExtendedExtranonce`, which splits the full
  extranonce into the upstream part, the part the proxy rolls per miner and
  the miner's extranonce2; `next_prefix()` hands out the next extranonce1 for a
  miner. Also `proxy_extranonce1_len`, `u256_max` and `avg_seconds_between`.
- `dmnd_proxy.channel_factory`: `ProxyExtendedChannelFactory`, which opens
  downstream channels, keeps the last three valid jobs and the pending future
  jobs, and classifies a submitted share as a `ShareOutcome`
  (send upstream, meets the downstream target, or error downstream).
  `target_from_hash_rate` gives the target for a hash rate and a number of
  shares per minute. Failures raise `ChannelFactoryError`, whose `kind` says
  which failure it was.
- `dmnd_proxy.shares`: `validate_share` and `get_hash` for checking a V1 share
  against a list of difficulties, `sha256d`, the sliding-window
  `ShareRateLimiter` (70 shares per 60 seconds by default) and the per-connection
  `ShareCounter`.
- `dmnd_proxy.task_manager`: `TaskManager`, which keeps a group of asyncio tasks
  and aborts them all when its own task is stopped, `AbortHandle`, `TaskKind`,
  and `Broadcast`, a fan-out channel that drops the oldest item of a full
  subscriber queue.

## Example

```python
from dmnd_proxy.channel_factory import ProxyExtendedChannelFactory
from dmnd_proxy.extranonce import ExtendedExtranonce

extranonces = ExtendedExtranonce(range(0, 6), range(6, 8), range(8, 16))
factory = ProxyExtendedChannelFactory(
    extranonces, share_per_min=10.0, upstream_target=b"\xff" * 32, channel_id=1
)
success = factory.new_extended_channel(0, 1e12, 0)[0]
print(success.channel_id, success.extranonce_prefix.hex(), success.extranonce_size)
```

## What the package does not do

The package does not connect to a pool or listen for miners. There is no
command to run, no network server and no task that reads pool messages,
translates them and forwards shares: the pieces above have to be wired to
sockets and queues by the program that uses them.