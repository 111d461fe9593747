"""
ModuLink - Composable Function Chains with Multi-Level Middleware

ModuLink is a pattern for building workflows out of small functions.
It provides a structured approach where:
- Links are single units of business logic (context in, context out)
- Context is an immutable mapping that carries state between links
- Middleware adds reusable behavior before each link, after each link,
  or once around the whole chain
- Chain awaits each link in order and records failures in the context
- Combinators (when, retry, parallel, race, ...) build new links from links

Example:
    import asyncio
    from modulink import chain

    def add_one(ctx):
        return {**ctx, 'value': ctx['value'] + 1}

    def double(ctx):
        return {**ctx, 'value': ctx['value'] * 2}

    result = asyncio.run(chain(add_one, double)({'value': 5}))
    print(result['value'])  # 12
"""

import logging

__version__ = "1.0.0"
__author__ = "ModuLink Contributors"

from .chain import Chain, GlobalPhase, MiddlewarePosition, chain
from .combinators import (
    TTLCache,
    add_data,
    cache,
    compose,
    omit,
    parallel,
    pick,
    pipe,
    race,
    retry,
    transform,
    validate,
    when,
)
from .context import Context
from .errors import (
    ChainConfigurationError,
    ErrorRecord,
    LinkResultError,
    ModuLinkError,
    ValidationError,
)
from .link import Link
from .middleware import (
    DebounceMiddleware,
    ErrorHandler,
    LoggingMiddleware,
    Middleware,
    ParallelMiddleware,
    PerformanceTracker,
    ThrottleMiddleware,
    TimingMiddleware,
    TransformMiddleware,
    debounce,
    error_handler,
    logging_middleware,
    parallel_middleware,
    performance_tracker,
    throttle,
    timing,
    transform_middleware,
)
from .registry import ModuLink, create_modulink
from .triggers import (
    TriggerType,
    create_cli_context,
    create_context,
    create_cron_context,
    create_error_context,
    create_http_context,
    create_message_context,
    get_current_timestamp,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Core
    'Chain',
    'chain',
    'Context',
    'Link',
    'Middleware',
    'MiddlewarePosition',
    'GlobalPhase',
    'ModuLink',
    'create_modulink',

    # Errors
    'ModuLinkError',
    'ChainConfigurationError',
    'ValidationError',
    'LinkResultError',
    'ErrorRecord',

    # Combinators
    'when',
    'validate',
    'retry',
    'transform',
    'add_data',
    'pick',
    'omit',
    'parallel',
    'race',
    'pipe',
    'compose',
    'cache',
    'TTLCache',

    # Middleware
    'ErrorHandler',
    'TimingMiddleware',
    'LoggingMiddleware',
    'PerformanceTracker',
    'TransformMiddleware',
    'ParallelMiddleware',
    'DebounceMiddleware',
    'ThrottleMiddleware',
    'error_handler',
    'timing',
    'logging_middleware',
    'performance_tracker',
    'transform_middleware',
    'parallel_middleware',
    'debounce',
    'throttle',

    # Contexts
    'TriggerType',
    'create_context',
    'create_http_context',
    'create_cron_context',
    'create_cli_context',
    'create_message_context',
    'create_error_context',
    'get_current_timestamp',
]
