"""
ModuLink - Application-wide registry of links and instance middleware.
"""

import inspect
import logging

from . import triggers
from .chain import Chain, GlobalPhase
from .errors import ChainConfigurationError

logger = logging.getLogger(__name__)


class ModuLink:
    """
    Application-level convenience layer over chains.

    Keeps named links so chains can be assembled by name, and applies
    instance-level middleware to every chain it creates.

    Example:
        app = create_modulink()
        app.register_link('load', load_user).register_link('greet', greet_user)
        greet = app.create_chain_from_links('load', 'greet')
    """

    def __init__(self, app=None):
        """
        Args:
            app: Optional application object (web framework, scheduler, ...)
                handed to functions passed to connect()
        """
        self.app = app
        self._links = {}
        self._middleware = []

    def use(self, *middleware, phase=GlobalPhase.AFTER):
        """
        Add instance-level middleware applied as global middleware to every
        chain created afterwards.

        Returns:
            self (for method chaining)
        """
        for mw in middleware:
            if not callable(mw):
                raise ChainConfigurationError(f"Middleware is not callable: {mw!r}")
            self._middleware.append((mw, phase))
        return self

    def register_link(self, name, link):
        """
        Register a reusable link under a name.

        Returns:
            self (for method chaining)
        """
        if not callable(link):
            raise ChainConfigurationError(f"Link '{name}' is not callable: {link!r}")
        if name in self._links:
            logger.debug("Replacing registered link '%s'", name)
        self._links[name] = link
        return self

    def get_link(self, name):
        """Return a registered link or raise ChainConfigurationError."""
        try:
            return self._links[name]
        except KeyError:
            raise ChainConfigurationError(f"No link registered under '{name}'") from None

    def create_chain(self, *links, name=None):
        """Create a chain from links with the instance middleware applied."""
        new_chain = Chain(*links, name=name)
        for mw, phase in self._middleware:
            new_chain.use(mw, phase=phase)
        return new_chain

    def create_chain_from_links(self, *names, name=None):
        """Create a chain from registered link names, in the given order."""
        links = [self.get_link(link_name) for link_name in names]
        return self.create_chain(*links, name=name or ' -> '.join(names))

    def connect(self, fn):
        """
        Hand this instance (and the app) to a setup function.

        fn is called as fn(app, modulink) when it accepts two positional
        parameters, and as fn(modulink) otherwise.

        Returns:
            Whatever fn returns
        """
        try:
            params = inspect.signature(fn).parameters.values()
        except (TypeError, ValueError):
            return fn(self)
        positional = [p for p in params
                      if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)]
        if len(positional) >= 2:
            return fn(self.app, self)
        return fn(self)

    def registered_links(self):
        """Return the registered link names in registration order."""
        return list(self._links)

    def middleware_count(self):
        return len(self._middleware)

    create_context = staticmethod(triggers.create_context)
    create_http_context = staticmethod(triggers.create_http_context)
    create_cron_context = staticmethod(triggers.create_cron_context)
    create_cli_context = staticmethod(triggers.create_cli_context)
    create_message_context = staticmethod(triggers.create_message_context)
    create_error_context = staticmethod(triggers.create_error_context)

    def __repr__(self):
        return (f"ModuLink(links={len(self._links)}, "
                f"middleware={len(self._middleware)})")


def create_modulink(app=None):
    """Create a ModuLink instance."""
    return ModuLink(app)
