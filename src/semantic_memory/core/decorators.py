"""Decorators for engine entry points and datastore methods"""

import inspect
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar, cast

from .base import ApplicationError, ErrorLevel
from .error_context import ErrorContextManager
from .logging import get_logger

logger = get_logger(__name__)
P = ParamSpec("P")
T = TypeVar("T")


def _report(func_name: str, error: Exception, fallback: ErrorLevel, context: dict[str, Any]) -> None:
    level = error.level if isinstance(error, ApplicationError) else fallback
    logger.log(
        level.logging_level,
        f"{func_name} failed: {error!s}",
        extra={"error_context": context},
        exc_info=level in (ErrorLevel.ERROR, ErrorLevel.CRITICAL),
    )


def with_error_handling(
    error_level: ErrorLevel = ErrorLevel.ERROR,
    reraise: bool = True,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Log whatever escapes the wrapped function, with its captured context.

    Engine errors keep their own severity; ``error_level`` applies to
    everything else. With ``reraise=False`` the wrapper returns ``None``
    instead, which is what background jobs want.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        name = func.__name__

        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                try:
                    return await cast("Callable[P, Awaitable[T]]", func)(*args, **kwargs)
                except Exception as e:
                    async with ErrorContextManager(e, function=name) as ctx:
                        _report(name, e, error_level, ctx.to_dict())
                    if reraise:
                        raise
                    return cast("T", None)

            async_wrapper.__signature__ = inspect.signature(func)  # type: ignore[attr-defined]
            return cast("Callable[P, T]", async_wrapper)

        @wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                with ErrorContextManager(e, function=name) as ctx:
                    _report(name, e, error_level, ctx.to_dict())
                if reraise:
                    raise
                return cast("T", None)

        return sync_wrapper

    return decorator


def with_session(driver_attr: str = "driver") -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Open a Neo4j session around a store method and pass it in after ``self``.

    The session targets ``self.database`` when the store sets one.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
            driver = getattr(self, driver_attr, None)
            if driver is None:
                raise AttributeError(f"{type(self).__name__}.{driver_attr} is not set; cannot open a session")

            database = getattr(self, "database", None)
            session_kwargs = {"database": database} if database else {}
            async with driver.session(**session_kwargs) as session:
                return await func(self, session, *args, **kwargs)

        return wrapper

    return decorator
