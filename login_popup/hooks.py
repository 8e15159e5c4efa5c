"""
Extension points for the login popup.

Other parts of a site can adjust how the popup behaves without touching its
code. There are two kinds of extension point:

- **filters** transform a value. Each registered callback receives the
  current value (plus any context arguments) and returns the new value. The
  callbacks are applied in registration order, each receiving the result of
  the previous one.
- **actions** notify. Each registered callback is called with the event
  arguments, in registration order. Actions cannot change the outcome of the
  operation that fires them: an exception raised by a listener is logged
  and the remaining listeners still run.

The set of extension points is fixed. Registering a callback for a name that
is not in :data:`FILTERS` or :data:`ACTIONS` raises :class:`UnknownHook`.

Example
-------

.. code-block:: python

   hooks = HookRegistry()
   hooks.add_filter('max_attempts', lambda n: 10)
   hooks.add_action('login_succeeded', lambda user: audit.log(user.user_id))

"""

from typing import Any, Callable, Dict, List
from collections import defaultdict
import logging

logger = logging.getLogger(__name__)

Filter = Callable[..., Any]
Action = Callable[..., None]

FILTERS = frozenset([
    'credentials',              # Credentials -> Credentials
    'error_message',            # str, error -> str
    'redirect_url',             # str, current_url -> str
    'max_attempts',             # int -> int
    'rate_limit_window',        # int -> int
    'enable_rate_limiting',     # bool -> bool
    'skip_challenge',           # bool, identity -> bool
    'suppress_loading_state',   # bool -> bool
    'client_ip',                # str -> str
    'popup_title',              # str -> str
    'username_label',
    'password_label',
    'remember_label',
    'submit_label',
    'button_bg_color',          # str -> str
    'button_hover_bg_color',
    'button_text_color',
    'form_start',               # str (HTML) -> str
    'form_middle',
    'form_end',
    'after_title',
])
"""Names of value filters."""

ACTIONS = frozenset([
    'before_authenticate',      # login
    'after_authenticate',       # User or exception, Credentials
    'login_succeeded',          # User
    'challenge_succeeded',      # login
    'challenge_failed',         # login
])
"""Names of notification actions."""


class UnknownHook(KeyError):
    """No extension point with this name exists."""


class HookRegistry(object):
    """Ordered callbacks for each named extension point."""

    def __init__(self) -> None:
        self._filters: Dict[str, List[Filter]] = defaultdict(list)
        self._actions: Dict[str, List[Action]] = defaultdict(list)

    def add_filter(self, name: str, callback: Filter) -> Filter:
        """Register a filter callback. Returns the callback, for decorators."""
        if name not in FILTERS:
            raise UnknownHook(name)
        self._filters[name].append(callback)
        return callback

    def add_action(self, name: str, callback: Action) -> Action:
        """Register an action listener. Returns the callback, for decorators."""
        if name not in ACTIONS:
            raise UnknownHook(name)
        self._actions[name].append(callback)
        return callback

    def filter(self, name: str) -> Callable[[Filter], Filter]:
        """Decorator form of :meth:`add_filter`."""
        return lambda callback: self.add_filter(name, callback)

    def action(self, name: str) -> Callable[[Action], Action]:
        """Decorator form of :meth:`add_action`."""
        return lambda callback: self.add_action(name, callback)

    def apply_filters(self, name: str, value: Any, *args: Any) -> Any:
        """
        Pass ``value`` through the filters registered for ``name``.

        Parameters
        ----------
        name : str
            Name of the extension point.
        value : Any
            Initial value.
        args
            Extra context passed to each filter after the value.

        Returns
        -------
        Any
            The value returned by the last filter, or ``value`` if no filters
            are registered.

        """
        if name not in FILTERS:
            raise UnknownHook(name)
        for callback in self._filters.get(name, []):
            value = callback(value, *args)
        return value

    def do_action(self, name: str, *args: Any) -> None:
        """Notify every listener registered for ``name``."""
        if name not in ACTIONS:
            raise UnknownHook(name)
        for callback in self._actions.get(name, []):
            try:
                callback(*args)
            except Exception:
                logger.exception('Listener for %s failed', name)

    def has(self, name: str) -> bool:
        """Whether any callback is registered for ``name``."""
        return bool(self._filters.get(name) or self._actions.get(name))
