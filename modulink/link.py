"""
Link - A single unit of business logic in a chain.

Any callable taking a context and returning a mapping (or an awaitable of
one) is a link. The Link base class is for links that carry configuration.
"""

import inspect
from collections.abc import Mapping

from .context import Context
from .errors import LinkResultError


class Link:
    """
    Base class for class-based links.

    Links should be stateless - all state flows through the Context. The
    execute() method may be a plain method or a coroutine function.
    """

    name = None

    def execute(self, ctx):
        """
        Execute the link logic.

        Args:
            ctx: Context containing shared state

        Returns:
            A mapping (usually a new Context) or an awaitable of one

        Raises:
            NotImplementedError: This method must be implemented by subclasses
        """
        raise NotImplementedError(f"{self.__class__.__name__} must implement execute()")

    def __call__(self, ctx):
        return self.execute(ctx)

    def __repr__(self):
        return f"{self.__class__.__name__}()"

    def __str__(self):
        return self.name or self.__class__.__name__


def link_name(fn, index=None):
    """
    Return a debug name for a link or middleware.

    Uses the `name` attribute, then __name__, then the class name. Lambdas
    are named after their position when an index is given.
    """
    name = getattr(fn, 'name', None)
    if isinstance(name, str) and name:
        return name
    name = getattr(fn, '__name__', None)
    if name and name != '<lambda>':
        return name
    if name == '<lambda>':
        return f"link_{index}" if index is not None else 'lambda'
    return fn.__class__.__name__


def is_async_callable(fn):
    """Return True if calling fn produces a coroutine."""
    if inspect.iscoroutinefunction(fn):
        return True
    execute = getattr(fn, 'execute', None)
    if execute is not None and inspect.iscoroutinefunction(execute):
        return True
    call = getattr(fn, '__call__', None)
    return inspect.iscoroutinefunction(call)


async def invoke(fn, ctx):
    """
    Call a link or middleware and await the result if needed.

    Returns:
        The result coerced to a Context

    Raises:
        LinkResultError: If the result is not a mapping
    """
    result = fn(ctx)
    if inspect.isawaitable(result):
        result = await result
    return coerce_result(result, fn)


def coerce_result(result, fn):
    if isinstance(result, Context):
        return result
    if isinstance(result, Mapping):
        return Context(result)
    raise LinkResultError(
        f"{link_name(fn)} returned {type(result).__name__}, expected a mapping"
    )


def introduced_error(before, after):
    """
    Return the error carried by `after` that `before` did not carry.

    A link that returns a context with a new error (for example a nested
    chain that failed) has failed, even though it did not raise.
    """
    error = after.get('error')
    if error is not None and error is not before.get('error'):
        return error
    return None
