"""
Named locks shared by every worker through the metadata store.

A lock is a lease row in ``lsif_locks``: whoever owns an unexpired row
for a name holds the lock. Workers run as separate processes, possibly on
separate hosts, so an in-process mutex would not do. While the critical
section runs, a heartbeat keeps extending the lease.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from ..db import Database, now
from ..faults import LockLostFault, LockTimeoutFault, QueryFault

logger = logging.getLogger("codeintel.store.locks")

T = TypeVar("T")

DEFAULT_TTL = 300.0
DEFAULT_TIMEOUT = 600.0
DEFAULT_POLL_INTERVAL = 0.5


async def try_acquire(db: Database, name: str, owner: str, ttl: float = DEFAULT_TTL) -> bool:
    """Take the lease if it is free or expired. Returns whether ``owner`` holds it."""
    current = now()
    await db.execute(
        "INSERT INTO lsif_locks (name, owner, expires_at) VALUES (?, ?, ?) "
        "ON CONFLICT (name) DO UPDATE SET owner = excluded.owner, expires_at = excluded.expires_at "
        "WHERE lsif_locks.expires_at < ?",
        [name, owner, current + ttl, current],
    )
    holder = await db.fetch_val("SELECT owner FROM lsif_locks WHERE name = ?", [name])
    return holder == owner


async def release(db: Database, name: str, owner: str) -> bool:
    """Drop the lease if ``owner`` still holds it."""
    result = await db.execute(
        "DELETE FROM lsif_locks WHERE name = ? AND owner = ?",
        [name, owner],
    )
    return db.rowcount(result) > 0


@dataclass
class Lease:
    """A held lock. ``lost`` is set once the lease can no longer be renewed."""

    name: str
    owner: str
    lost: asyncio.Event = field(default_factory=asyncio.Event)


async def _heartbeat(db: Database, lease: Lease, ttl: float, expires_at: float) -> None:
    """
    Keep extending the lease until cancelled.

    A failed renewal is retried on the next beat while the current lease
    is still valid. Sets ``lease.lost`` and returns once the row belongs
    to someone else or the lease ran out.
    """
    while True:
        await asyncio.sleep(ttl / 3)
        renewed = now() + ttl
        try:
            result = await db.execute(
                "UPDATE lsif_locks SET expires_at = ? WHERE name = ? AND owner = ?",
                [renewed, lease.name, lease.owner],
            )
        except QueryFault as exc:
            if now() < expires_at:
                logger.warning(f"Failed to renew lease on lock '{lease.name}', retrying: {exc}")
                continue
            logger.warning(f"Lease on lock '{lease.name}' expired while renewal kept failing: {exc}")
            lease.lost.set()
            return

        if db.rowcount(result) == 0:
            logger.warning(f"Lost lease on lock '{lease.name}'")
            lease.lost.set()
            return
        expires_at = renewed


@asynccontextmanager
async def hold_lock(
    db: Database,
    name: str,
    *,
    ttl: float = DEFAULT_TTL,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> AsyncIterator[Lease]:
    """
    Hold the named lock for the duration of the ``async with`` block.

    Polls until the lease is obtained or ``timeout`` seconds elapse
    (``None`` waits forever). The block should stop work once
    ``lease.lost`` is set; ``with_lock`` does that by cancelling it.

    Raises:
        LockTimeoutFault: When the lock could not be acquired in time.
    """
    lease = Lease(name, uuid.uuid4().hex)
    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout

    while True:
        expires_at = now() + ttl
        if await try_acquire(db, name, lease.owner, ttl):
            break
        if deadline is not None and loop.time() >= deadline:
            raise LockTimeoutFault(name, timeout)
        await asyncio.sleep(poll_interval)

    logger.debug(f"Acquired lock '{name}' as {lease.owner}")
    heartbeat = asyncio.create_task(_heartbeat(db, lease, ttl, expires_at))
    try:
        yield lease
    finally:
        heartbeat.cancel()
        with suppress(asyncio.CancelledError):
            await heartbeat
        try:
            await release(db, name, lease.owner)
        except QueryFault as exc:
            # the lease still expires on its own
            logger.warning(f"Failed to release lock '{name}': {exc}")
        else:
            logger.debug(f"Released lock '{name}'")


async def with_lock(
    db: Database,
    name: str,
    critical_section: Callable[[], Awaitable[T]],
    **options,
) -> T:
    """
    Run ``critical_section`` while holding the named lock.

    The section is cancelled if the lease is lost before it finishes.

    Raises:
        LockTimeoutFault: When the lock could not be acquired in time.
        LockLostFault: When the lease was lost and the section cancelled.
    """
    async with hold_lock(db, name, **options) as lease:
        section = asyncio.ensure_future(critical_section())
        lost = asyncio.ensure_future(lease.lost.wait())
        try:
            await asyncio.wait([section, lost], return_when=asyncio.FIRST_COMPLETED)
        finally:
            lost.cancel()
            if not section.done():
                section.cancel()
                with suppress(asyncio.CancelledError):
                    await section

        if section.cancelled():
            raise LockLostFault(name)
        return section.result()
