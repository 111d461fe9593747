"""
Chain - Orchestrates sequential execution of links through positional middleware.
"""

import asyncio
import logging
import time
import uuid

from .context import as_context
from .errors import ChainConfigurationError, ErrorRecord
from .link import introduced_error, invoke, is_async_callable, link_name

logger = logging.getLogger(__name__)


class MiddlewarePosition:
    """Enumeration of middleware positions."""
    INPUT = "input"     # Runs before each link
    OUTPUT = "output"   # Runs after each link
    GLOBAL = "global"   # Runs once per invocation


class GlobalPhase:
    """Enumeration of the phases a global middleware can run in."""
    BEFORE = "before"   # Once, before the first link
    AFTER = "after"     # Once, after the last link or after a failure


POSITIONS = (MiddlewarePosition.INPUT, MiddlewarePosition.OUTPUT, MiddlewarePosition.GLOBAL)


class _Invocation:
    """Telemetry for one chain invocation."""

    def __init__(self, chain):
        self.chain = chain
        self.start_time = time.time()
        self.started = time.perf_counter()
        self.end_time = None
        self.total_duration = None
        self.timings = {position: [] for position in POSITIONS}
        self.current_link = None

    def record(self, position, started):
        self.timings[position].append((time.perf_counter() - started) * 1000)

    def metadata(self):
        metadata = {
            'chain_id': self.chain.chain_id,
            'start_time': self.start_time,
            'performance': {
                'input_middleware_timings': list(self.timings[MiddlewarePosition.INPUT]),
                'output_middleware_timings': list(self.timings[MiddlewarePosition.OUTPUT]),
                'global_middleware_timings': list(self.timings[MiddlewarePosition.GLOBAL]),
            },
            'middleware_counts': self.chain.middleware_counts(),
        }
        if self.end_time is not None:
            metadata['end_time'] = self.end_time
            metadata['total_duration'] = self.total_duration
        return metadata

    def stamp(self, ctx):
        """Write the current telemetry into the context."""
        ctx = ctx.set('_metadata', self.metadata())
        if self.current_link is not None and ctx.get('_current_link') != self.current_link:
            ctx = ctx.set('_current_link', dict(self.current_link))
        return ctx

    def finish(self, ctx):
        self.end_time = time.time()
        self.total_duration = (time.perf_counter() - self.started) * 1000
        return self.stamp(ctx)


class _PerformanceStats:
    """Aggregated middleware timings across all invocations of a chain."""

    def __init__(self):
        self.invocations = 0
        self.failures = 0
        self.last_duration_ms = None
        self.buckets = {position: {'calls': 0, 'total_ms': 0.0, 'max_ms': 0.0}
                        for position in POSITIONS}

    def add(self, run, failed):
        self.invocations += 1
        if failed:
            self.failures += 1
        self.last_duration_ms = run.total_duration
        for position, durations in run.timings.items():
            bucket = self.buckets[position]
            bucket['calls'] += len(durations)
            bucket['total_ms'] += sum(durations)
            if durations:
                bucket['max_ms'] = max(bucket['max_ms'], max(durations))

    def snapshot(self):
        report = {
            'invocations': self.invocations,
            'failures': self.failures,
            'last_duration_ms': self.last_duration_ms,
        }
        for position, bucket in self.buckets.items():
            calls = bucket['calls']
            report[f'{position}_middleware'] = {
                'calls': calls,
                'total_ms': bucket['total_ms'],
                'avg_ms': bucket['total_ms'] / calls if calls else 0.0,
                'max_ms': bucket['max_ms'],
            }
        return report


class Chain:
    """
    Executes an ordered sequence of links against a context.

    The chain manages:
    - Sequential link execution (each link awaited before the next)
    - Input middleware (before each link) and output middleware (after each link)
    - Global middleware (once per invocation, before or after the links)
    - Failure capture: a failing link stops the chain and its error is stored
      in the returned context instead of being raised

    Middleware can be added until the chain is first invoked. Calling the
    chain returns a coroutine resolving to the final Context.
    """

    def __init__(self, *links, name=None):
        """
        Initialize a Chain.

        Args:
            *links: Callables taking a context and returning a mapping
            name: Optional debug name (default: 'chain')

        Raises:
            ChainConfigurationError: If a link is not callable
        """
        for index, link in enumerate(links):
            if not callable(link):
                raise ChainConfigurationError(f"Link at index {index} is not callable: {link!r}")
        self._links = tuple(links)
        self._link_names = tuple(link_name(link, index) for index, link in enumerate(links))
        self._input_middleware = []
        self._output_middleware = []
        self._before_middleware = []
        self._after_middleware = []
        self._frozen = False
        self._core = None
        self._stats = _PerformanceStats()
        self.name = name or 'chain'
        self.chain_id = uuid.uuid4().hex[:8]

    def use(self, *middleware, phase=GlobalPhase.AFTER):
        """
        Add global middleware, run once per invocation.

        Args:
            *middleware: Middleware callables
            phase: GlobalPhase.AFTER (default) runs them after the last link,
                even when a link failed; GlobalPhase.BEFORE runs them before
                the first link

        Returns:
            self (for method chaining)
        """
        if phase == GlobalPhase.BEFORE:
            target = self._before_middleware
        elif phase == GlobalPhase.AFTER:
            target = self._after_middleware
        else:
            raise ChainConfigurationError(f"Unknown global middleware phase: {phase!r}")
        return self._register(target, middleware)

    def on_input(self, *middleware):
        """Add middleware that runs before each link. Returns self."""
        return self._register(self._input_middleware, middleware)

    def on_output(self, *middleware):
        """Add middleware that runs after each successful link. Returns self."""
        return self._register(self._output_middleware, middleware)

    def _register(self, target, middleware):
        if self._frozen:
            raise ChainConfigurationError(
                f"Chain '{self.name}' has already been invoked; middleware can no longer be added"
            )
        for mw in middleware:
            if not callable(mw):
                raise ChainConfigurationError(f"Middleware is not callable: {mw!r}")
        target.extend(middleware)
        return self

    @property
    def core_execution(self):
        """
        A chain with the same links and no middleware.

        Embed it as a link in another chain to reuse the business logic
        without this chain's cross-cutting behavior.
        """
        if self._core is None:
            self._core = Chain(*self._links, name=f"{self.name}.core")
        return self._core

    @property
    def links(self):
        return self._links

    async def __call__(self, ctx):
        """
        Execute the chain.

        Args:
            ctx: Initial context (any mapping)

        Returns:
            The final Context. On failure its 'error' key holds an ErrorRecord.

        Raises:
            TypeError: If ctx is not a mapping
        """
        ctx = as_context(ctx)
        self._frozen = True
        if not self.has_middleware():
            ctx, _ = await self._execute_links(ctx)
            return ctx
        return await self._execute_with_middleware(ctx)

    def run(self, ctx):
        """Execute the chain synchronously (starts a new event loop)."""
        return asyncio.run(self(ctx))

    async def _execute_links(self, ctx):
        for index, link in enumerate(self._links):
            ctx, failed = await self._run_link(link, index, ctx)
            if failed:
                return ctx, True
        return ctx, False

    async def _execute_with_middleware(self, ctx):
        run = _Invocation(self)
        ctx = run.stamp(ctx)
        failed = False

        for mw in self._before_middleware:
            ctx, failed = await self._run_middleware(mw, ctx, run, MiddlewarePosition.GLOBAL)
            if failed:
                break

        if not failed:
            for index, link in enumerate(self._links):
                run.current_link = {
                    'name': self._link_names[index],
                    'index': index,
                    'length': len(self._links),
                    'is_async': is_async_callable(link),
                }
                ctx, failed = await self._run_step(link, index, ctx, run)
                if failed:
                    break

        for mw in self._after_middleware:
            ctx, after_failed = await self._run_middleware(mw, ctx, run, MiddlewarePosition.GLOBAL)
            if after_failed:
                break

        ctx = run.finish(ctx)
        self._stats.add(run, ctx.get('error') is not None)
        logger.debug("Chain '%s' finished in %.2fms", self.name, run.total_duration)
        return ctx

    async def _run_step(self, link, index, ctx, run):
        ctx = run.stamp(ctx)
        for mw in self._input_middleware:
            ctx, failed = await self._run_middleware(mw, ctx, run, MiddlewarePosition.INPUT)
            if failed:
                return ctx, True

        ctx, failed = await self._run_link(link, index, ctx)
        ctx = run.stamp(ctx)
        if failed:
            return ctx, True

        for mw in self._output_middleware:
            ctx, failed = await self._run_middleware(mw, ctx, run, MiddlewarePosition.OUTPUT)
            if failed:
                return ctx, True
        return ctx, False

    async def _run_link(self, link, index, ctx):
        name = self._link_names[index]
        logger.debug("Chain '%s': running link %s (%d/%d)", self.name, name, index + 1, len(self._links))
        try:
            result = await invoke(link, ctx)
        except Exception as exc:
            return self._capture(ctx, exc, name), True
        error = introduced_error(ctx, result)
        if error is not None:
            logger.warning("Chain '%s': link %s returned an error: %s", self.name, name, error)
            return result, True
        return result, False

    async def _run_middleware(self, mw, ctx, run, position):
        started = time.perf_counter()
        try:
            result = await invoke(mw, ctx)
        except Exception as exc:
            run.record(position, started)
            return self._capture(ctx, exc, link_name(mw)), True
        run.record(position, started)
        result = run.stamp(result)
        return result, introduced_error(ctx, result) is not None

    def _capture(self, ctx, exc, name):
        logger.warning("Chain '%s': %s failed: %s: %s", self.name, name, type(exc).__name__, exc)
        return ctx.set('error', ErrorRecord.from_exception(exc))

    def has_middleware(self):
        return bool(self._input_middleware or self._output_middleware
                    or self._before_middleware or self._after_middleware)

    def middleware_counts(self):
        """Return the number of middleware per position."""
        return {
            MiddlewarePosition.INPUT: len(self._input_middleware),
            MiddlewarePosition.OUTPUT: len(self._output_middleware),
            MiddlewarePosition.GLOBAL: len(self._before_middleware) + len(self._after_middleware),
        }

    def link_count(self):
        """Return the number of links in the chain."""
        return len(self._links)

    def middleware_count(self):
        """Return the total number of middleware in the chain."""
        return sum(self.middleware_counts().values())

    def debug_info(self):
        """
        Return a read-only diagnostic view of the chain.

        Returns:
            Dict with link names, middleware counts per position and an
            aggregated performance snapshot across invocations
        """
        return {
            'name': self.name,
            'chain_id': self.chain_id,
            'link_count': len(self._links),
            'link_names': list(self._link_names),
            'middleware_counts': self.middleware_counts(),
            'frozen': self._frozen,
            'performance': self._stats.snapshot(),
        }

    def __repr__(self):
        return (f"Chain(name={self.name!r}, links={len(self._links)}, "
                f"middleware={self.middleware_counts()})")


def chain(*links, name=None):
    """
    Create a chain from links.

    Example:
        pipeline = chain(fetch_user, enrich_user).on_input(log_link)
        ctx = await pipeline({'user_id': 7})
    """
    return Chain(*links, name=name)
