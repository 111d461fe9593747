"""
Combinators - Higher-order constructors that build a single link from links.

None of the combinators mutate the links or contexts they are given. The
returned links can be used anywhere a link can, including inside other
combinators.
"""

import asyncio
import logging
import time

from .context import as_context
from .errors import ChainConfigurationError, ErrorRecord, ValidationError
from .link import coerce_result, introduced_error, invoke, link_name

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_CACHE_TTL_MS = 60000


def _named(fn, name):
    fn.__name__ = name
    fn.__qualname__ = name
    return fn


def _require_callables(links, combinator):
    for index, link in enumerate(links):
        if not callable(link):
            raise ChainConfigurationError(
                f"{combinator}(): argument {index} is not callable: {link!r}"
            )


def _as_keys(keys):
    if isinstance(keys, str):
        return (keys,)
    return tuple(keys)


def contributions(base, result):
    """
    Return the keys of `result` that a link added or replaced relative to `base`.

    Unchanged values are shared by identity between a context and the
    contexts derived from it, so identity is the change test. A key set back
    to the very object it held in `base` is not a contribution.
    """
    return {key: value for key, value in result.items()
            if key not in base or base[key] is not value}


def when(predicate, link):
    """
    Run `link` only if `predicate(ctx)` is true.

    Returns:
        Link returning link(ctx) when the predicate holds, ctx unchanged otherwise
    """
    _require_callables((predicate, link), 'when')

    async def conditional(ctx):
        ctx = as_context(ctx)
        if predicate(ctx):
            return await invoke(link, ctx)
        return ctx

    return _named(conditional, f"when({link_name(link)})")


def validate(validator, link):
    """
    Run `link` only if `validator(ctx)` accepts the context.

    The validator returns True to accept, or a string to reject with that
    string as the message. Anything else, including other truthy values,
    rejects with a generic message.

    Raises (from the returned link):
        ValidationError: When the validator rejects the context
    """
    _require_callables((validator, link), 'validate')

    async def validated(ctx):
        ctx = as_context(ctx)
        outcome = validator(ctx)
        if isinstance(outcome, str):
            raise ValidationError(outcome or "Validation failed")
        if outcome is not True:
            raise ValidationError()
        return await invoke(link, ctx)

    return _named(validated, f"validate({link_name(link)})")


def retry(link, max_retries=DEFAULT_MAX_RETRIES, delay_ms=DEFAULT_RETRY_DELAY_MS):
    """
    Retry a failing link with a fixed delay between attempts.

    Args:
        link: The link to run
        max_retries: Total number of attempts (at least 1)
        delay_ms: Milliseconds to wait between attempts

    Returns:
        Link whose result carries retry_info = {attempts, successful, max_retries}.
        After the last failed attempt it returns the input context with the
        last error recorded, so a chain stops at this link.
    """
    _require_callables((link,), 'retry')
    if max_retries < 1:
        raise ChainConfigurationError(f"retry(): max_retries must be at least 1, got {max_retries}")
    if delay_ms < 0:
        raise ChainConfigurationError(f"retry(): delay_ms must not be negative, got {delay_ms}")
    name = link_name(link)

    async def retrying(ctx):
        ctx = as_context(ctx)
        last_error = None
        for attempt in range(1, max_retries + 1):
            try:
                result = await invoke(link, ctx)
            except Exception as exc:
                last_error = ErrorRecord.from_exception(exc)
            else:
                last_error = introduced_error(ctx, result)
                if last_error is None:
                    return result.set('retry_info', {
                        'attempts': attempt,
                        'successful': True,
                        'max_retries': max_retries,
                    })
            logger.debug("%s attempt %d/%d failed: %s", name, attempt, max_retries, last_error.message)
            if attempt < max_retries and delay_ms:
                await asyncio.sleep(delay_ms / 1000)

        logger.info("%s failed after %d attempts", name, max_retries)
        return ctx.merge(error=last_error, retry_info={
            'attempts': max_retries,
            'successful': False,
            'max_retries': max_retries,
        })

    return _named(retrying, f"retry({name})")


def transform(fn):
    """
    Reshape the context synchronously.

    `fn(ctx)` returns a mapping (partial or complete) that is merged into the
    context.
    """
    _require_callables((fn,), 'transform')

    def transformed(ctx):
        ctx = as_context(ctx)
        return ctx.merge(coerce_result(fn(ctx), fn))

    return _named(transformed, f"transform({link_name(fn)})")


def add_data(data):
    """Return a link that shallow-merges a fixed mapping into the context."""
    data = dict(data)

    def adding(ctx):
        return as_context(ctx).merge(data)

    return _named(adding, 'add_data')


def pick(keys):
    """Return a link that keeps only the listed keys (reserved keys included)."""
    keys = _as_keys(keys)

    def picking(ctx):
        return as_context(ctx).only(*keys)

    return _named(picking, 'pick')


def omit(keys):
    """Return a link that removes the listed keys."""
    keys = _as_keys(keys)

    def omitting(ctx):
        return as_context(ctx).without(*keys)

    return _named(omitting, 'omit')


def parallel(*links):
    """
    Run links concurrently against the same context and merge their results.

    Each link's added or changed keys are merged in the order the links were
    given, so when two links change the same key the last one listed wins.
    Writing back the value a key already held in the input is not a change:
    it cannot override another link's change to that key.
    If any link fails the whole combinator fails: the first exception is
    re-raised and links still running are cancelled.
    """
    _require_callables(links, 'parallel')

    async def run_parallel(ctx):
        ctx = as_context(ctx)
        tasks = [asyncio.ensure_future(invoke(link, ctx)) for link in links]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        merged = ctx
        for result in results:
            error = introduced_error(ctx, result)
            if error is not None:
                return ctx.set('error', error)
            merged = merged.merge(contributions(ctx, result))
        return merged

    return _named(run_parallel, f"parallel({', '.join(link_name(link) for link in links)})")


def race(*links):
    """
    Run links concurrently and return the first successful result.

    Links that are still running when a winner is found are cancelled and
    their results discarded. If every link fails, the first failure to settle
    is raised.
    """
    if not links:
        raise ChainConfigurationError("race() needs at least one link")
    _require_callables(links, 'race')

    async def run_race(ctx):
        ctx = as_context(ctx)
        tasks = [asyncio.ensure_future(invoke(link, ctx)) for link in links]
        order = {task: index for index, task in enumerate(tasks)}
        pending = set(tasks)
        failure = None
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=order.get):
                    exc = task.exception()
                    if exc is not None:
                        if failure is None:
                            failure = exc
                        continue
                    result = task.result()
                    if introduced_error(ctx, result) is not None:
                        if failure is None:
                            failure = result
                        continue
                    return result
        finally:
            for task in pending:
                task.cancel()
            for task in tasks:
                if task.done() and not task.cancelled():
                    task.exception()

        if isinstance(failure, BaseException):
            raise failure
        return failure

    return _named(run_race, f"race({', '.join(link_name(link) for link in links)})")


def pipe(*links):
    """Compose links left to right into a single link."""
    _require_callables(links, 'pipe')

    async def piped(ctx):
        ctx = as_context(ctx)
        for link in links:
            result = await invoke(link, ctx)
            if introduced_error(ctx, result) is not None:
                return result
            ctx = result
        return ctx

    return _named(piped, f"pipe({', '.join(link_name(link) for link in links)})")


def compose(*links):
    """Compose links right to left: compose(f, g)(ctx) == f(g(ctx))."""
    return _named(pipe(*reversed(links)), f"compose({', '.join(link_name(link) for link in links)})")


class TTLCache:
    """
    In-memory store whose entries expire after a fixed time to live.
    """

    def __init__(self, ttl_ms=DEFAULT_CACHE_TTL_MS):
        self.ttl_ms = ttl_ms
        self._entries = {}

    def get(self, key):
        """Return the stored value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if time.monotonic() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key, value):
        """Store a value, dropping every entry that has already expired."""
        now = time.monotonic()
        self._purge(now)
        self._entries.pop(key, None)
        self._entries[key] = (now + self.ttl_ms / 1000, value)

    def _purge(self, now):
        # Entries are kept in expiry order, oldest first.
        while self._entries:
            key = next(iter(self._entries))
            if self._entries[key][0] > now:
                break
            del self._entries[key]

    def clear(self):
        self._entries.clear()

    def __len__(self):
        return len(self._entries)

    def __repr__(self):
        return f"TTLCache(ttl_ms={self.ttl_ms}, entries={len(self._entries)})"


def cache(link, key_fn, ttl_ms=DEFAULT_CACHE_TTL_MS, store=None):
    """
    Memoize the keys a link contributes, per `key_fn(ctx)`, for `ttl_ms`.

    A hit merges the stored keys into the current context and sets
    cached=True without running the link; a miss runs the link and sets
    cached=False. Failed results are not stored.

    Args:
        link: The link to memoize
        key_fn: Callable deriving the cache key from the context
        ttl_ms: Time to live of each entry in milliseconds
        store: Optional store with get/set (default: a new TTLCache)
    """
    _require_callables((link, key_fn), 'cache')
    store = store if store is not None else TTLCache(ttl_ms)

    async def caching(ctx):
        ctx = as_context(ctx)
        key = key_fn(ctx)
        hit = store.get(key)
        if hit is not None:
            return ctx.merge(hit, cached=True)
        result = await invoke(link, ctx)
        if introduced_error(ctx, result) is None:
            added = contributions(ctx, result)
            added.pop('cached', None)
            store.set(key, added)
        return result.set('cached', False)

    caching.store = store
    return _named(caching, f"cache({link_name(link)})")
