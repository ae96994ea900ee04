"""
core/concurrency.py -- Run blocking store and hashing calls off the event loop.

The stores use synchronous SQLAlchemy Core and bcrypt is CPU-bound. Calling
either directly from an async route would stall every other request on the
loop, so the auth core funnels all of that work through run_blocking():

  * asyncio.to_thread moves the call onto the default worker pool.
  * asyncio.wait_for enforces the caller's deadline.
  * A timeout becomes InternalError(retryable=True), never AuthError.
  * SQLAlchemyError becomes InternalError -- the store is unavailable and the
    request fails; nothing falls back to an unauthenticated mode.

Note that wait_for cannot interrupt the worker thread itself; it stops the
request from waiting on it. The thread finishes in the background.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from core.errors import InternalError

logger = logging.getLogger("devhub.concurrency")

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args: Any, timeout: Optional[float], **kwargs: Any) -> T:
    """Execute func(*args, **kwargs) on a worker thread within timeout seconds."""
    name = getattr(func, "__qualname__", repr(func))
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("%s exceeded its %.2fs deadline", name, timeout or 0)
        raise InternalError("The operation timed out. Please retry.", retryable=True) from exc
    except SQLAlchemyError as exc:
        logger.error("Store failure in %s: %s", name, exc)
        raise InternalError("The credential store is unavailable.") from exc
