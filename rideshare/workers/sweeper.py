"""
Background Booking Sweeper
==========================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default 60 s).

Per cycle
---------
1. Mint tickets for paid bookings whose ticket could not be signed at
   booking time.
2. Flag payment holds that never received an outcome (request abandoned,
   process crashed) so they show up for reconciliation.

A Redis lease (``DistributedLock``) keeps concurrent worker processes from
running the same cycle twice.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import redis.asyncio as aioredis

from rideshare.config import settings
from rideshare.infrastructure.locks import DistributedLock
from rideshare.services.booking import BookingOrchestrator

logger = logging.getLogger(__name__)

LOCK_NAME = "booking_sweep"

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


@dataclass
class SweepResult:
    tickets_issued: int = 0
    holds_flagged: int = 0
    skipped: bool = False


# ── Public API ────────────────────────────────────────────────────────


async def start_sweep_loop(
    orchestrator: BookingOrchestrator, redis: aioredis.Redis
) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(orchestrator, redis))
    logger.info("Sweeper started (interval=%ds)", settings.sweep_interval_seconds)


async def stop_sweep_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(orchestrator: BookingOrchestrator, redis: aioredis.Redis) -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle(orchestrator, redis)
        except Exception:
            logger.exception("Unhandled error in sweep cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_sweep_cycle(
    orchestrator: BookingOrchestrator, redis: aioredis.Redis
) -> SweepResult:
    lock = DistributedLock(redis, LOCK_NAME, ttl_seconds=settings.sweep_interval_seconds)
    if not await lock.acquire():
        logger.debug("Sweep lock held by another worker; skipping cycle")
        return SweepResult(skipped=True)

    try:
        result = SweepResult(
            tickets_issued=await orchestrator.retry_pending_tickets(),
            holds_flagged=await orchestrator.flag_stale_holds(),
        )
    finally:
        await lock.release()

    if result.tickets_issued or result.holds_flagged:
        logger.info(
            "Sweep cycle: %d ticket(s) issued, %d hold(s) flagged",
            result.tickets_issued,
            result.holds_flagged,
        )
    return result
