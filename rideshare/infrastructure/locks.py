"""
Redis lease lock for the out-of-band sweep.

Several worker processes may run the sweeper; the lease makes sure only one
of them retries tickets and flags stale holds in a given interval.  Seat
reservation never goes through here -- it is a conditional UPDATE in the
database.

Acquire is ``SET key token NX EX ttl``; release deletes the key only while
it still holds our token, so an expired lease taken over by another worker
is left alone.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class LockNotAcquiredError(RuntimeError):
    pass


class DistributedLock:
    def __init__(self, client: aioredis.Redis, name: str, ttl_seconds: int = 30):
        self.redis = client
        self.key = f"rideshare:lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        return bool(await self.redis.set(self.key, self.token, nx=True, ex=self.ttl))

    async def release(self) -> bool:
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquiredError(f"Lock already held: {self.key}")
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
