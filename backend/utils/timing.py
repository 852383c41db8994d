import time
import inspect
import functools
import logging
from typing import Optional

logger = logging.getLogger("seo_analytics.timing")


def _report(name: str, elapsed_ms: float, slow_ms: Optional[float]) -> None:
    if slow_ms is not None and elapsed_ms > slow_ms:
        logger.warning(f"[timing] {name} took {elapsed_ms:.2f} ms (slow, limit {slow_ms:.0f} ms)")
    else:
        logger.info(f"[timing] {name} took {elapsed_ms:.2f} ms")


def timeit(label: Optional[str] = None, slow_ms: Optional[float] = None):
    """
    Decorator to log execution time for a function (sync or async).

    Usage:
        @timeit()
        def foo():
            ...

        @timeit("aggregate", slow_ms=5000)
        async def bar():
            await ...
    """

    def _decorate(func):
        name = label or getattr(func, "__qualname__", getattr(func, "__name__", "function"))

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def _aw(*args, **kwargs):
                start = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    _report(name, (time.perf_counter() - start) * 1000.0, slow_ms)

            return _aw

        @functools.wraps(func)
        def _w(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                _report(name, (time.perf_counter() - start) * 1000.0, slow_ms)

        return _w

    return _decorate
