"""
Context factories for the events that start a chain.

Each factory sets the `trigger` discriminator, a `timestamp`, and the fields
specific to its trigger type. Any extra keyword argument is kept as-is.
"""

import datetime

from .context import Context
from .errors import ErrorRecord


class TriggerType:
    """Enumeration of built-in trigger types. Custom strings are also allowed."""
    HTTP = "http"
    CRON = "cron"
    CLI = "cli"
    MESSAGE = "message"
    ERROR = "error"


def get_current_timestamp():
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def create_context(data=None, /, **fields):
    """
    Create a context stamped with the current time.

    Args:
        data: Mapping of initial data (optional)
        **fields: Additional keys

    Returns:
        Context with a 'timestamp' key unless one was given
    """
    ctx = Context(data, **fields)
    if ctx.get('timestamp') is None:
        ctx = ctx.set('timestamp', get_current_timestamp())
    return ctx


def _create(trigger, data, fields, **defaults):
    values = defaults
    if data is not None:
        values.update(data)
    values.update(fields)
    values['trigger'] = trigger
    return create_context(values)


def create_http_context(data=None, /, **fields):
    """
    Create a context for an HTTP request.

    Known fields: method, url, headers, body, params, query, request, response.
    """
    return _create(TriggerType.HTTP, data, fields, method='GET', url='/', headers={},
                   body={}, params={}, query={}, request=None, response=None)


def create_cron_context(data=None, /, **fields):
    """
    Create a context for a scheduled job run.

    Known fields: cron_expression, scheduled_time, actual_time (both times
    default to now).
    """
    now = get_current_timestamp()
    return _create(TriggerType.CRON, data, fields, cron_expression=None,
                   scheduled_time=now, actual_time=now)


def create_cli_context(data=None, /, **fields):
    """Create a context for a command line invocation (args, options, command)."""
    return _create(TriggerType.CLI, data, fields, args=[], options={}, command=None)


def create_message_context(data=None, /, **fields):
    """Create a context for a consumed message (message, topic, source, message_id)."""
    return _create(TriggerType.MESSAGE, data, fields, message=None, topic=None,
                   source=None, message_id=None)


def create_error_context(exc, /, **fields):
    """
    Create a context describing an error.

    Args:
        exc: An exception, or an ErrorRecord
        **fields: Additional keys

    Returns:
        Context with trigger='error' and the error record
    """
    error = exc if isinstance(exc, ErrorRecord) else ErrorRecord.from_exception(exc)
    return _create(TriggerType.ERROR, None, fields, error=error)
