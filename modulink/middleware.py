"""
Middleware - Cross-cutting steps positioned around the links of a chain.

A middleware has the same shape as a link: it takes a context and returns a
context. What makes it middleware is where it is registered:

    chain(...).on_input(mw)    # before each link
    chain(...).on_output(mw)   # after each link
    chain(...).use(mw)         # once per invocation

This module provides the Middleware base class and the built-in middleware:
- ErrorHandler: recover from a failure recorded in the context
- TimingMiddleware: named timing marks
- LoggingMiddleware: log progress through the chain
- PerformanceTracker: per-link statistics across invocations
- TransformMiddleware: merge computed keys into the context
- ParallelMiddleware: run several middleware concurrently
- DebounceMiddleware / ThrottleMiddleware: pace invocations
"""

import asyncio
import inspect
import logging
import time

from .combinators import parallel
from .link import coerce_result, link_name
from .triggers import get_current_timestamp

logger = logging.getLogger(__name__)


def _elapsed_since_start(ctx):
    start = (ctx.get('_metadata') or {}).get('start_time')
    if start is None:
        return 0.0
    return (time.time() - start) * 1000


class Middleware:
    """
    Base class for class-based middleware.

    Middleware provides cross-cutting concerns like logging, timing, error
    handling, etc. execute() may be a plain method or a coroutine function.
    """

    name = None

    def execute(self, ctx):
        """
        Execute the middleware logic.

        Args:
            ctx: Context containing shared state

        Returns:
            A mapping (usually a new Context) or an awaitable of one

        Example:
            class StampMiddleware(Middleware):
                def execute(self, ctx):
                    return ctx.set('stamped', True)
        """
        raise NotImplementedError(f"{self.__class__.__name__} must implement execute()")

    def __call__(self, ctx):
        return self.execute(ctx)

    def __repr__(self):
        return f"{self.__class__.__name__}()"

    def __str__(self):
        return self.name or self.__class__.__name__


class ErrorHandler(Middleware):
    """
    Recover from a failure recorded in the context.

    Register it as global middleware (chain.use) so it runs after a failed
    link. Without a handler the error is logged and the context passes
    through unchanged.
    """

    def __init__(self, handler=None):
        """
        Args:
            handler: Optional callable (error, ctx) -> context, may be async
        """
        self.handler = handler

    async def execute(self, ctx):
        error = ctx.get('error')
        if error is None:
            return ctx
        if self.handler is None:
            logger.error("Unhandled chain error: %s", error)
            return ctx
        result = self.handler(error, ctx)
        if inspect.isawaitable(result):
            result = await result
        return result


class TimingMiddleware(Middleware):
    """
    Record a named timing mark.

    Writes timings[label] = {timestamp, elapsed} where elapsed is the number
    of milliseconds since the chain invocation started.
    """

    def __init__(self, label='chain'):
        self.label = label

    def execute(self, ctx):
        timings = dict(ctx.get('timings') or {})
        timings[self.label] = {
            'timestamp': get_current_timestamp(),
            'elapsed': _elapsed_since_start(ctx),
        }
        return ctx.set('timings', timings)

    def __repr__(self):
        return f"TimingMiddleware(label={self.label!r})"


class LoggingMiddleware(Middleware):
    """
    Log progress through a chain with the standard logging module.

    Logs the link being executed (from _current_link) and any recorded error,
    and counts entries in the _logging_metrics key.
    """

    def __init__(self, level=logging.INFO, logger=None, log_keys=False):
        """
        Args:
            level: Log level for normal entries (errors use at least WARNING)
            logger: Logger to write to (default: 'modulink.trace')
            log_keys: Whether to include the public context keys in each entry
        """
        self.level = level
        self.logger = logger or logging.getLogger('modulink.trace')
        self.log_keys = log_keys

    def execute(self, ctx):
        current = ctx.get('_current_link')
        if current:
            where = f"{current['name']} ({current['index'] + 1}/{current['length']})"
        else:
            where = 'chain'

        error = ctx.get('error')
        if error is not None:
            self.logger.log(max(self.level, logging.WARNING), "%s: %s", where, error)
        elif self.log_keys:
            keys = sorted(key for key in ctx if not key.startswith('_'))
            self.logger.log(self.level, "%s: ok keys=%s", where, keys)
        else:
            self.logger.log(self.level, "%s: ok", where)

        metrics = dict(ctx.get('_logging_metrics') or {})
        metrics['entries'] = metrics.get('entries', 0) + 1
        metrics['last_entry'] = get_current_timestamp()
        return ctx.set('_logging_metrics', metrics)


class PerformanceTracker(Middleware):
    """
    Track how far into the chain each link is reached, across invocations.

    Tracks, per link name:
    - Milliseconds since the invocation started when the link was observed
      (min, max, avg)
    - Number of observations

    Register it as output middleware to observe each completed link.
    """

    def __init__(self):
        self.timings = {}
        self.call_counts = {}

    def execute(self, ctx):
        current = ctx.get('_current_link') or {}
        name = current.get('name', 'chain')
        elapsed = _elapsed_since_start(ctx)

        if name not in self.timings:
            self.timings[name] = []
            self.call_counts[name] = 0
        self.timings[name].append(elapsed)
        self.call_counts[name] += 1

        metrics = dict(ctx.get('_performance_metrics') or {})
        metrics[name] = {'calls': self.call_counts[name], 'elapsed_ms': elapsed}
        return ctx.set('_performance_metrics', metrics)

    def get_report(self):
        """Generate a performance report."""
        report = []
        for name, times in sorted(self.timings.items()):
            report.append({
                'link': name,
                'avg_ms': sum(times) / len(times),
                'min_ms': min(times),
                'max_ms': max(times),
                'calls': self.call_counts[name],
            })
        return report

    def print_report(self):
        """Print a formatted performance report."""
        print("\n" + "=" * 72)
        print("Performance Report")
        print("=" * 72)
        print(f"{'Link':<30} {'Avg (ms)':>10} {'Min (ms)':>10} {'Max (ms)':>10} {'Calls':>8}")
        print("-" * 72)
        for entry in self.get_report():
            print(f"{entry['link']:<30} "
                  f"{entry['avg_ms']:>10.2f} "
                  f"{entry['min_ms']:>10.2f} "
                  f"{entry['max_ms']:>10.2f} "
                  f"{entry['calls']:>8}")
        print("=" * 72)

    def reset(self):
        """Reset all timing data."""
        self.timings.clear()
        self.call_counts.clear()


class TransformMiddleware(Middleware):
    """Merge the mapping returned by fn(ctx) into the context."""

    def __init__(self, fn):
        self.fn = fn

    def execute(self, ctx):
        return ctx.merge(coerce_result(self.fn(ctx), self.fn))

    def __repr__(self):
        return f"TransformMiddleware({link_name(self.fn)})"


class ParallelMiddleware(Middleware):
    """
    Run several middleware concurrently on the same context.

    Results are merged the way parallel() merges link results: in
    registration order, last one wins.
    """

    def __init__(self, *middleware):
        self.middleware = middleware
        self._run = parallel(*middleware)

    async def execute(self, ctx):
        return await self._run(ctx)

    def __repr__(self):
        return f"ParallelMiddleware({', '.join(link_name(mw) for mw in self.middleware)})"


class DebounceMiddleware(Middleware):
    """
    Delay each pass by `delay_ms`; only the latest pass of a burst is clean.

    A pass superseded by a newer one during its delay is marked
    debounced=True so downstream links can skip work.
    """

    def __init__(self, delay_ms):
        self.delay_ms = delay_ms
        self._generation = 0

    async def execute(self, ctx):
        self._generation += 1
        generation = self._generation
        await asyncio.sleep(self.delay_ms / 1000)
        if generation != self._generation:
            return ctx.set('debounced', True)
        return ctx


class ThrottleMiddleware(Middleware):
    """Ensure at least `interval_ms` between consecutive passes."""

    def __init__(self, interval_ms):
        self.interval_ms = interval_ms
        self._next_slot = 0.0

    async def execute(self, ctx):
        now = time.monotonic()
        slot = max(now, self._next_slot)
        # Reserve the slot before sleeping so concurrent passes queue up.
        self._next_slot = slot + self.interval_ms / 1000
        if slot > now:
            await asyncio.sleep(slot - now)
        return ctx


def error_handler(handler=None):
    """Create an ErrorHandler middleware."""
    return ErrorHandler(handler)


def timing(label='chain'):
    """Create a TimingMiddleware."""
    return TimingMiddleware(label)


def logging_middleware(level=logging.INFO, logger=None, log_keys=False):
    """Create a LoggingMiddleware."""
    return LoggingMiddleware(level=level, logger=logger, log_keys=log_keys)


def performance_tracker():
    """Create a PerformanceTracker."""
    return PerformanceTracker()


def transform_middleware(fn):
    """Create a TransformMiddleware."""
    return TransformMiddleware(fn)


def parallel_middleware(*middleware):
    """Create a ParallelMiddleware."""
    return ParallelMiddleware(*middleware)


def debounce(delay_ms):
    """Create a DebounceMiddleware."""
    return DebounceMiddleware(delay_ms)


def throttle(interval_ms):
    """Create a ThrottleMiddleware."""
    return ThrottleMiddleware(interval_ms)
