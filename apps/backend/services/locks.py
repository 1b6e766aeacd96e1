"""Per-customer single-writer sections for bonus state mutations."""

import asyncio
import weakref
from contextlib import asynccontextmanager

# One registry per event loop; asyncio.Lock binds to the loop it first waits on.
_registries: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, weakref.WeakValueDictionary]" = (
    weakref.WeakKeyDictionary()
)


def _lock_for(customer_id: int) -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    registry = _registries.get(loop)
    if registry is None:
        registry = weakref.WeakValueDictionary()
        _registries[loop] = registry
    lock = registry.get(customer_id)
    if lock is None:
        lock = asyncio.Lock()
        registry[customer_id] = lock
    return lock


@asynccontextmanager
async def customer_lock(customer_id: int):
    """
    Serialize writers for one customer within this process.

    Group membership, the unassigned pool and the draft are read-then-written
    across several purchases, so every mutation for a customer runs here.
    Not reentrant: code already holding the lock calls the `_locked` variants.
    """
    lock = _lock_for(customer_id)
    async with lock:
        yield
