# timing_decorator.py
import functools
import inspect
import time
from typing import Any, Callable, Optional, TypeVar, cast

from app_logger import logger

F = TypeVar("F", bound=Callable[..., Any])


def _log_elapsed(tag: str, start: float) -> None:
    elapsed = time.perf_counter() - start
    logger.debug("[%(tag)s] took %(elapsed).4f s", {"tag": tag, "elapsed": elapsed})


def timed(label: Optional[str] = None) -> Callable[[F], F]:
    """
    Decorator that measures execution time and logs it at DEBUG level.
    Works for plain functions and for coroutines (the session handshake and
    the history download are timed the same way as the batch passes).
    """
    def decorator(func: F) -> F:
        tag = label or func.__qualname__

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                start = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    _log_elapsed(tag, start)
            return cast(F, async_wrapper)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                _log_elapsed(tag, start)
        return cast(F, wrapper)
    return decorator
