"""
NoteGuard — Periodic Sweep
===========================

What:  Evicts expired entries from every store on a timer.
How:   Stores already prune on each write; the sweep covers stores that go
       quiet (no writes → no pruning). run_periodic_sweep() is an asyncio
       task the host starts next to its server and cancels on shutdown.
"""

import asyncio
import logging
from typing import Dict, Protocol

logger = logging.getLogger(__name__)


class Prunable(Protocol):
    def prune(self) -> int:
        ...


def sweep_once(stores: Dict[str, Prunable]) -> Dict[str, int]:
    """Prune each store once. Returns removed counts keyed by store name."""
    removed = {name: store.prune() for name, store in stores.items()}
    total = sum(removed.values())
    if total:
        logger.info("Sweep removed %d expired entries: %s", total, removed)
    return removed


async def run_periodic_sweep(
    stores: Dict[str, Prunable],
    interval_seconds: float,
) -> None:
    """Sweep every `interval_seconds` until cancelled."""
    logger.info("Periodic sweep started (every %ss)", interval_seconds)
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            sweep_once(stores)
    except asyncio.CancelledError:
        logger.info("Periodic sweep stopped")
        raise
