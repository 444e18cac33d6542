"""
Bounded execution of store calls.

No store call may hang: each one runs under ``asyncio.wait_for`` and both a
timeout and a lost database connection surface as ``Unavailable`` (or the
subclass passed in).
"""
import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError

from app.core import config
from app.core.errors import Unavailable
from app.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")


async def run_bounded(
    awaitable: Awaitable[T],
    *,
    what: str,
    timeout: float | None = None,
    error_cls: type[Unavailable] = Unavailable,
) -> T:
    """
    Await ``awaitable`` for at most ``timeout`` seconds.

    Args:
        awaitable: The store operation
        what: Short description used in logs and the error message
        timeout: Seconds; defaults to STORE_TIMEOUT_SECONDS
        error_cls: Error raised on expiry or connection failure

    Raises:
        Unavailable: (or error_cls) on timeout or when the database is unreachable
    """
    limit = config.STORE_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        return await asyncio.wait_for(awaitable, timeout=limit)
    except asyncio.TimeoutError:
        log.error("%s timed out after %.1fs", what, limit)
        raise error_cls(f"{what} timed out")
    except (OperationalError, InterfaceError) as e:
        log.error("%s failed, database unreachable: %s", what, e)
        raise error_cls(f"{what} failed: database unreachable")
