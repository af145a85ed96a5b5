# ABOUTME: LNbits session management with caching and retry logic
# ABOUTME: Provides a lock-guarded session factory for tools

import asyncio
import functools
import logging
from typing import Any, Callable, TypeVar

from zapfeed.auth import LNbitsSession
from zapfeed.config import Settings
from zapfeed.exceptions import AuthError, CredentialsNotFoundError, FetchError

logger = logging.getLogger(__name__)

# Module-level session cache with lock for concurrent tool calls
_session: LNbitsSession | None = None
_session_lock = asyncio.Lock()

F = TypeVar("F", bound=Callable[..., Any])


async def get_client() -> LNbitsSession:
    """
    Get or create the shared LNbits session.

    Creates the session on first call from environment settings and returns
    the cached session on subsequent calls.

    Returns:
        LNbitsSession instance
    """
    global _session

    async with _session_lock:
        if _session is None:
            logger.info("Creating new LNbits session")
            _session = LNbitsSession(Settings.from_env())
        return _session


async def invalidate_client() -> None:
    """
    Invalidate the cached session (e.g., on auth failure).

    Drops the cached bearer token along with the HTTP client.
    """
    global _session

    async with _session_lock:
        if _session:
            _session.invalidate_token()
            await _session.close()
            _session = None
        logger.info("Invalidated LNbits session")


def _is_auth_error(exc: Exception) -> bool:
    """
    Check if an exception indicates an authentication failure.

    Args:
        exc: The exception to check

    Returns:
        True if this looks like an auth error
    """
    if isinstance(exc, CredentialsNotFoundError):
        return False
    if isinstance(exc, AuthError):
        return True
    if isinstance(exc, FetchError):
        return exc.status_code in (401, 403)
    return False


def with_auth_retry(func: F) -> F:
    """
    Decorator that retries on authentication failures.

    If a function fails with an auth error, this will:
    1. Invalidate the current session
    2. Retry the function once with a fresh session

    Usage:
        @with_auth_retry
        async def my_tool_function(...):
            session = await get_client()
            # ... use session
    """

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except Exception as exc:
            if _is_auth_error(exc):
                logger.warning(f"Auth error in {func.__name__}, retrying with fresh session")
                await invalidate_client()
                return await func(*args, **kwargs)
            raise

    return wrapper  # type: ignore
