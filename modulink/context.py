"""
Context - Immutable data carrier that flows through a chain.
"""

from collections.abc import Mapping


class Context(Mapping):
    """
    An immutable mapping of string keys to values threaded through every link.

    Links never modify the context they receive. Every "modification" method
    returns a new Context that shares the unchanged values with the original.
    Because Context is a Mapping, links can also build their result with
    plain dict syntax:

        def add_one(ctx):
            return {**ctx, 'value': ctx['value'] + 1}

    Reserved keys (all optional): trigger, timestamp, error, cached,
    retry_info, timings, _metadata, _current_link.
    """

    __slots__ = ('_data',)

    def __init__(self, data=None, /, **fields):
        """
        Initialize the Context with optional initial data.

        Args:
            data: Mapping of initial context data (optional)
            **fields: Additional keys, applied after data
        """
        merged = dict(data) if data is not None else {}
        merged.update(fields)
        self._data = merged

    def __getitem__(self, key):
        return self._data[key]

    def __iter__(self):
        return iter(self._data)

    def __len__(self):
        return len(self._data)

    def has(self, key):
        """Return True if the key exists in the context."""
        return key in self._data

    def set(self, key, value):
        """
        Return a new context with one key set.

        Args:
            key: The key to set
            value: The value to store

        Returns:
            New Context; the receiver is unchanged
        """
        data = dict(self._data)
        data[key] = value
        return Context(data)

    def merge(self, other=None, /, **fields):
        """
        Return a new context with the given keys merged in (later keys win).

        Args:
            other: Mapping to merge (optional)
            **fields: Additional keys, applied after other

        Returns:
            New Context
        """
        data = dict(self._data)
        if other is not None:
            data.update(other)
        data.update(fields)
        return Context(data)

    def without(self, *keys):
        """Return a new context with the listed keys removed."""
        return Context({k: v for k, v in self._data.items() if k not in keys})

    def only(self, *keys):
        """Return a new context restricted to the listed keys."""
        return Context({k: v for k, v in self._data.items() if k in keys})

    def to_dict(self):
        """Return a shallow copy of the data as a plain dict."""
        return self._data.copy()

    @property
    def trigger(self):
        return self._data.get('trigger')

    @property
    def timestamp(self):
        return self._data.get('timestamp')

    @property
    def error(self):
        """The ErrorRecord of the failure carried by this context, if any."""
        return self._data.get('error')

    @property
    def failed(self):
        """True when the context carries an error."""
        return self._data.get('error') is not None

    def __repr__(self):
        return f"Context({self._data})"

    def __str__(self):
        return str(self._data)


def as_context(value):
    """
    Coerce a mapping into a Context.

    Raises:
        TypeError: If value is not a mapping
    """
    if isinstance(value, Context):
        return value
    if isinstance(value, Mapping):
        return Context(value)
    raise TypeError(f"Expected a mapping, got {type(value).__name__}")
