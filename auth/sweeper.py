"""
auth/sweeper.py -- Periodic cleanup of expired refresh tokens.

sweep_loop() runs for the lifetime of the API process as an asyncio task
started in the lifespan (api/main.py). Every interval it:
  1. deletes refresh tokens whose expires_at has passed (revoked or not);
  2. drops rate-limiter buckets that have been idle for a while.

The blocking store call runs in a worker thread so the event loop keeps
serving requests. A failed pass is logged and the loop carries on; only
task.cancel() at shutdown ends it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from auth.context import QueryContext
from auth.rate_limiter import IPRateLimiter
from auth.refresh_tokens import RefreshTokenStore

logger = logging.getLogger("pimpmypack.auth")

# Upper bound on a single sweep statement.
_SWEEP_TIMEOUT_SECONDS = 60.0


@dataclass
class SweepResult:
    tokens_deleted: int
    buckets_evicted: int


def run_sweep_once(
    store: RefreshTokenStore,
    limiter: Optional[IPRateLimiter] = None,
    idle_windows: int = 10,
    timeout: float = _SWEEP_TIMEOUT_SECONDS,
) -> SweepResult:
    """One cleanup pass. Store errors propagate to the caller."""
    deleted = store.sweep(QueryContext(timeout=timeout))
    evicted = 0
    if limiter is not None:
        # Never evict a bucket that could still be below capacity.
        refill_time = limiter.capacity / limiter.refill_rate
        evicted = limiter.evict_idle(max(idle_windows * limiter.window_seconds, refill_time))
    return SweepResult(tokens_deleted=deleted, buckets_evicted=evicted)


async def sweep_loop(
    store: RefreshTokenStore,
    limiter: Optional[IPRateLimiter],
    interval_seconds: float,
    idle_windows: int = 10,
) -> None:
    """Run run_sweep_once() every interval_seconds until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            result = await asyncio.to_thread(run_sweep_once, store, limiter, idle_windows)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001 -- a failed sweep must not kill the task
            logger.exception("Refresh token cleanup failed")
            continue
        if result.tokens_deleted or result.buckets_evicted:
            logger.info(
                "Cleanup removed %d expired refresh tokens and %d idle rate-limit buckets",
                result.tokens_deleted,
                result.buckets_evicted,
            )
