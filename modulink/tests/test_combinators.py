"""
Tests for combinators: when, validate, retry, transform, add_data, pick, omit,
parallel, race, pipe, compose, cache
"""

import asyncio
import gc
import logging
import time
import unittest

from modulink import (
    ChainConfigurationError, Context, TTLCache, ValidationError, add_data, cache,
    chain, compose, omit, parallel, pick, pipe, race, retry, transform, validate, when,
)


def run(coro):
    return asyncio.run(coro)


def mark(key, delay=0.0, value=True):
    """Link that sets `key` after an optional delay in seconds."""
    async def marker(ctx):
        if delay:
            await asyncio.sleep(delay)
        return {**ctx, key: value}
    marker.__name__ = f"mark_{key}"
    return marker


class FlakyLink:
    """Link that fails a fixed number of times before succeeding."""

    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    def __call__(self, ctx):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return {**ctx, 'fetched': True}


class TestWhen(unittest.TestCase):
    """Test conditional execution."""

    def setUp(self):
        self.link = when(lambda ctx: ctx.get('should_execute') is True, mark('executed'))

    def test_runs_link_when_predicate_holds(self):
        result = run(self.link({'should_execute': True}))
        self.assertTrue(result['executed'])

    def test_passes_context_through_otherwise(self):
        initial = Context({'should_execute': False})
        result = run(self.link(initial))
        self.assertIs(result, initial)
        self.assertNotIn('executed', result)


class TestValidate(unittest.TestCase):
    """Test validation before a link."""

    def test_valid_context_runs_link(self):
        link = validate(lambda ctx: True, mark('processed'))
        self.assertTrue(run(link({}))['processed'])

    def test_string_result_is_the_error_message(self):
        link = validate(lambda ctx: 'email is required', mark('processed'))
        with self.assertRaises(ValidationError) as caught:
            run(link({}))
        self.assertEqual(str(caught.exception), 'email is required')

    def test_false_result_raises_generic_error(self):
        link = validate(lambda ctx: False, mark('processed'))
        with self.assertRaises(ValidationError) as caught:
            run(link({}))
        self.assertEqual(caught.exception.message, 'Validation failed')

    def test_truthy_non_true_result_is_rejected(self):
        for outcome in (1, ['reason'], {'ok': True}):
            link = validate(lambda ctx, outcome=outcome: outcome, mark('processed'))
            with self.assertRaises(ValidationError) as caught:
                run(link({}))
            self.assertEqual(caught.exception.message, 'Validation failed')

    def test_failure_inside_chain_is_recorded(self):
        pipeline = chain(validate(lambda ctx: 'bad input', mark('processed')), mark('after'))
        result = run(pipeline({}))
        self.assertEqual(result['error'].message, 'bad input')
        self.assertEqual(result['error'].name, 'ValidationError')
        self.assertNotIn('after', result)


class TestRetry(unittest.TestCase):
    """Test retry attempt accounting."""

    def test_succeeds_after_failures(self):
        flaky = FlakyLink(failures=2)
        result = run(retry(flaky, max_retries=3, delay_ms=1)({}))

        self.assertTrue(result['fetched'])
        self.assertEqual(flaky.calls, 3)
        self.assertEqual(result['retry_info'], {'attempts': 3, 'successful': True, 'max_retries': 3})

    def test_first_attempt_success(self):
        result = run(retry(FlakyLink(failures=0), max_retries=5, delay_ms=0)({}))
        self.assertEqual(result['retry_info']['attempts'], 1)

    def test_exhaustion_fails_the_chain(self):
        flaky = FlakyLink(failures=10)
        pipeline = chain(retry(flaky, max_retries=3, delay_ms=1), mark('after'))
        result = run(pipeline({}))

        self.assertEqual(flaky.calls, 3)
        self.assertEqual(result['retry_info'], {'attempts': 3, 'successful': False, 'max_retries': 3})
        self.assertEqual(result['error'].message, 'attempt 3 failed')
        self.assertEqual(result['error'].name, 'ConnectionError')
        self.assertNotIn('after', result)

    def test_fixed_delay_between_attempts(self):
        start = time.perf_counter()
        run(retry(FlakyLink(failures=2), max_retries=3, delay_ms=50)({}))
        elapsed = time.perf_counter() - start
        self.assertGreaterEqual(elapsed, 0.09)

    def test_invalid_configuration(self):
        with self.assertRaises(ChainConfigurationError):
            retry(mark('x'), max_retries=0)
        with self.assertRaises(ChainConfigurationError):
            retry(mark('x'), delay_ms=-1)


class TestDataLinks(unittest.TestCase):
    """Test transform, add_data, pick and omit."""

    def test_transform_add_data_pick(self):
        pipeline = chain(
            transform(lambda ctx: {'transformed': f"processed-{ctx['data']}"}),
            add_data({'added': 'new-value'}),
            pick(['data', 'added', 'transformed']),
        )
        result = run(pipeline({'data': 'test', 'extra': 'remove'}))

        self.assertEqual(dict(result), {
            'data': 'test',
            'added': 'new-value',
            'transformed': 'processed-test',
        })

    def test_transform_accepts_full_replacement(self):
        link = transform(lambda ctx: {**ctx, 'value': ctx['value'] * 10})
        self.assertEqual(dict(link({'value': 2, 'keep': 1})), {'value': 20, 'keep': 1})

    def test_add_data_later_keys_win(self):
        self.assertEqual(add_data({'a': 2})({'a': 1})['a'], 2)

    def test_pick_does_not_preserve_reserved_keys(self):
        result = pick(['value'])({'value': 1, 'trigger': 'http', 'timestamp': 'now'})
        self.assertEqual(dict(result), {'value': 1})

    def test_omit(self):
        result = omit(['secret', 'trigger'])({'secret': 'x', 'trigger': 'cli', 'value': 1})
        self.assertEqual(dict(result), {'value': 1})


class TestParallel(unittest.TestCase):
    """Test concurrent execution with merged results."""

    def test_merges_all_fields_concurrently(self):
        link = parallel(mark('result_a', 0.1), mark('result_b', 0.1), mark('result_c', 0.1))

        start = time.perf_counter()
        result = run(chain(link)({'value': 1}))
        elapsed = time.perf_counter() - start

        self.assertTrue(result['result_a'])
        self.assertTrue(result['result_b'])
        self.assertTrue(result['result_c'])
        self.assertEqual(result['value'], 1)
        self.assertLess(elapsed, 0.25)

    def test_last_listed_link_wins_conflicts(self):
        link = parallel(mark('winner', 0.02, 'first'), mark('winner', 0.0, 'second'))
        self.assertEqual(run(link({}))['winner'], 'second')

    def test_unchanged_keys_do_not_overwrite_changes(self):
        link = parallel(mark('value', 0.0, 42), mark('other'))
        result = run(link({'value': 1}))
        self.assertEqual(result['value'], 42)
        self.assertTrue(result['other'])

    def test_writing_back_the_input_value_is_not_a_change(self):
        link = parallel(mark('flag', 0.0, True), lambda ctx: {**ctx, 'flag': ctx['flag']})
        self.assertIs(run(link({'flag': False}))['flag'], True)

    def test_any_failure_fails_the_combinator(self):
        async def broken(ctx):
            raise RuntimeError('parallel failure')

        pipeline = chain(parallel(mark('a'), broken), mark('after'))
        result = run(pipeline({}))

        self.assertEqual(result['error'].message, 'parallel failure')
        self.assertNotIn('a', result)
        self.assertNotIn('after', result)

    def test_failure_cancels_pending_links(self):
        finished = []

        async def slow(ctx):
            await asyncio.sleep(0.2)
            finished.append('slow')
            return ctx

        def broken(ctx):
            raise RuntimeError('fail fast')

        async def scenario():
            with self.assertRaises(RuntimeError):
                await parallel(slow, broken)({})
            await asyncio.sleep(0.25)

        run(scenario())
        self.assertEqual(finished, [])


class TestRace(unittest.TestCase):
    """Test first-settled-wins execution."""

    def test_fast_link_wins(self):
        link = race(mark('fast', 0.05, 'fast'), mark('slow', 0.2, 'slow'))

        start = time.perf_counter()
        result = run(chain(link)({}))
        elapsed = time.perf_counter() - start

        self.assertEqual(result['fast'], 'fast')
        self.assertNotIn('slow', result)
        self.assertLess(elapsed, 0.15)

    def test_failures_are_skipped(self):
        async def broken(ctx):
            raise RuntimeError('fast failure')

        result = run(race(broken, mark('slow', 0.02))({}))
        self.assertTrue(result['slow'])

    def test_all_failures_raise_first(self):
        async def first(ctx):
            raise RuntimeError('first')

        async def second(ctx):
            await asyncio.sleep(0.02)
            raise RuntimeError('second')

        with self.assertRaises(RuntimeError) as caught:
            run(race(first, second)({}))
        self.assertEqual(str(caught.exception), 'first')

    def test_requires_links(self):
        with self.assertRaises(ChainConfigurationError):
            race()

    def test_failures_settled_with_the_winner_are_retrieved(self):
        records = []

        class Collector(logging.Handler):
            def emit(self, record):
                records.append(record)

        def broken(ctx):
            raise RuntimeError('settled with the winner')

        handler = Collector(level=logging.ERROR)
        asyncio_logger = logging.getLogger('asyncio')
        asyncio_logger.addHandler(handler)
        try:
            result = run(race(mark('winner'), broken)({}))
            gc.collect()
        finally:
            asyncio_logger.removeHandler(handler)

        self.assertTrue(result['winner'])
        self.assertEqual(records, [])


class TestComposition(unittest.TestCase):
    """Test pipe and compose."""

    def test_pipe_runs_left_to_right(self):
        link = pipe(lambda ctx: {**ctx, 'v': ctx['v'] + 1}, lambda ctx: {**ctx, 'v': ctx['v'] * 3})
        self.assertEqual(run(link({'v': 1}))['v'], 6)

    def test_compose_runs_right_to_left(self):
        link = compose(lambda ctx: {**ctx, 'v': ctx['v'] + 1}, lambda ctx: {**ctx, 'v': ctx['v'] * 3})
        self.assertEqual(run(link({'v': 1}))['v'], 4)


class TestCache(unittest.TestCase):
    """Test TTL memoization of link results."""

    def test_hit_skips_link(self):
        calls = []

        def lookup(ctx):
            calls.append(ctx['user_id'])
            return {**ctx, 'user': f"user-{ctx['user_id']}"}

        link = cache(lookup, lambda ctx: ctx['user_id'], ttl_ms=1000)

        first = run(link({'user_id': 1}))
        second = run(link({'user_id': 1, 'request': 'b'}))

        self.assertFalse(first['cached'])
        self.assertTrue(second['cached'])
        self.assertEqual(second['user'], 'user-1')
        self.assertEqual(second['request'], 'b')
        self.assertEqual(calls, [1])

    def test_entries_expire(self):
        store = TTLCache(ttl_ms=10)
        store.set('key', {'value': 1})
        self.assertEqual(store.get('key'), {'value': 1})
        time.sleep(0.02)
        self.assertIsNone(store.get('key'))
        self.assertEqual(len(store), 0)

    def test_set_drops_expired_entries(self):
        store = TTLCache(ttl_ms=1)
        for index in range(1000):
            store.set(index, {'value': index})
        time.sleep(0.01)
        store.set('fresh', {'value': 'fresh'})

        self.assertEqual(len(store), 1)
        self.assertEqual(store.get('fresh'), {'value': 'fresh'})

    def test_resetting_a_key_renews_its_expiry(self):
        store = TTLCache(ttl_ms=100)
        store.set('a', 1)
        store.set('b', 2)
        time.sleep(0.06)
        store.set('a', 3)
        time.sleep(0.06)
        store.set('c', 4)

        self.assertIsNone(store.get('b'))
        self.assertEqual(store.get('a'), 3)
        self.assertEqual(len(store), 2)

    def test_failures_are_not_cached(self):
        flaky = FlakyLink(failures=1)
        link = cache(flaky, lambda ctx: 'key')

        with self.assertRaises(ConnectionError):
            run(link({}))
        result = run(link({}))

        self.assertFalse(result['cached'])
        self.assertEqual(flaky.calls, 2)


if __name__ == '__main__':
    unittest.main()
