"""
Status check for the popup.

When a page is opened with the login trigger, the client asks whether the
visitor is already logged in. If so, the popup says so and closes. If not,
the response carries everything the client needs to show the form: the
form HTML, a fresh anti-forgery token, and where to send the user after
logging in.

The check looks at the session cookie of the request, so responses must
never be cached; see :data:`NO_CACHE_HEADERS`.
"""

from typing import Any, Callable, Dict, Iterable, Optional, Pattern, Tuple, \
    Union
from http import HTTPStatus as status
import re
import time

from flask import render_template

from ..hooks import HookRegistry
from ..next_page import good_redirect, strip_trigger_params
from ..services.nonces import NonceStore
from ..services.sessions import SessionStore
from ..services.turnstile import TurnstileGate
from .forms import LoginForm

import logging

logger = logging.getLogger(__name__)

ResponseData = Tuple[dict, int, dict]

NO_CACHE_HEADERS = {
    'Cache-Control': 'no-store, no-cache, must-revalidate, private',
    'Pragma': 'no-cache',
    'Vary': 'Cookie'
}

TEMPLATE = 'login_popup/popup.html'

DEFAULT_COLORS = {
    'button_bg_color': '#0073aa',
    'button_hover_bg_color': '#005a87',
    'button_text_color': '#ffffff',
}

DEFAULT_LABELS = {
    'popup_title': 'Log In',
    'username_label': 'Username or Email Address',
    'password_label': 'Password',
    'remember_label': 'Remember Me',
    'submit_label': 'Log In',
}

_hex_color = re.compile(r'^#(?:[0-9a-fA-F]{3}){1,2}$')


def valid_color(value: Any, default: str) -> str:
    """``value`` if it is a hex colour like ``#fff`` or ``#0073aa``."""
    if isinstance(value, str) and _hex_color.match(value):
        return value
    return default


class PopupStatus(object):
    """
    Answers the status check.

    Parameters
    ----------
    sessions : :class:`.SessionStore`
    nonces : :class:`.NonceStore`
        Anti-forgery tokens; one is issued with every form.
    hooks : :class:`.HookRegistry`
    home_url : str
        Redirect target of last resort.
    redirect_pattern : str or compiled pattern
        Redirect targets must match this.
    challenge : :class:`.TurnstileGate`
        If active, its widget is rendered in the form.
    trigger_params : iterable
        Query parameters that open the popup.
    status_delay : float
        Seconds to pause before showing the form, so the loading message can
        be read. Clamped to ``max_status_delay``.
    suppress_loading_state : bool
    render : callable
        Template renderer, :func:`flask.render_template` by default.
    sleep : callable

    """

    def __init__(self, sessions: SessionStore, nonces: NonceStore,
                 hooks: HookRegistry, home_url: str,
                 redirect_pattern: Union[str, Pattern],
                 challenge: Optional[TurnstileGate] = None,
                 trigger_params: Iterable[str] = ('sl', 'show_login'),
                 status_delay: float = 1,
                 max_status_delay: float = 3,
                 suppress_loading_state: bool = False,
                 render: Callable[..., str] = render_template,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self.sessions = sessions
        self.nonces = nonces
        self.hooks = hooks
        self.home_url = home_url
        self.redirect_pattern = redirect_pattern
        self.challenge = challenge
        self.trigger_params = tuple(trigger_params)
        self.status_delay = min(max(float(status_delay), 0), max_status_delay)
        self._suppress_loading_state = suppress_loading_state
        self._render = render
        self._sleep = sleep

    @property
    def suppress_loading_state(self) -> bool:
        return bool(self.hooks.apply_filters('suppress_loading_state',
                                             self._suppress_loading_state))

    def redirect_target(self, current_url: str) -> str:
        """Where to go after logging in from ``current_url``."""
        target = strip_trigger_params(current_url or '', self.trigger_params)
        target = self.hooks.apply_filters('redirect_url', target, current_url)
        return good_redirect(target, self.home_url, self.redirect_pattern)

    def check_status(self, session_cookie: Optional[str],
                     current_url: str) -> ResponseData:
        """
        Tell the client whether to show the login form.

        Parameters
        ----------
        session_cookie : str or None
            Value of the authenticated session cookie, if the browser sent one.
        current_url : str
            The page the popup was opened on.

        Returns
        -------
        dict
            Response data.
        int
            HTTP status code.
        dict
            Headers to add to the response.

        Raises
        ------
        :class:`.StoreUnavailable`
            No anti-forgery token could be issued, so the form can't be used.

        """
        suppress = self.suppress_loading_state
        if self.sessions.is_authenticated(session_cookie):
            logger.debug('Visitor is already logged in')
            data = {
                'show': False,
                'reason': 'already_logged_in',
                'suppressLoading': suppress
            }
            return {'success': True, 'data': data}, status.OK, \
                dict(NO_CACHE_HEADERS)

        if not suppress and self.status_delay > 0:
            self._sleep(self.status_delay)

        token = self.nonces.issue()
        data = {
            'show': True,
            'html': self.render_form(),
            'sessionToken': token,
            'redirectTarget': self.redirect_target(current_url),
            'suppressLoading': suppress
        }
        return {'success': True, 'data': data}, status.OK, \
            dict(NO_CACHE_HEADERS)

    def render_form(self) -> str:
        """Render the popup form, with extension point slots filled in."""
        labels = {name: self.hooks.apply_filters(name, default)
                  for name, default in DEFAULT_LABELS.items()}
        colors = {name: valid_color(self.hooks.apply_filters(name, default),
                                    default)
                  for name, default in DEFAULT_COLORS.items()}
        form_middle = ''
        if self.challenge is not None and self.challenge.is_active:
            form_middle = self.challenge.render_widget()
        slots: Dict[str, str] = {
            'after_title': self.hooks.apply_filters('after_title', ''),
            'form_start': self.hooks.apply_filters('form_start', ''),
            'form_middle': self.hooks.apply_filters('form_middle',
                                                    form_middle),
            'form_end': self.hooks.apply_filters('form_end', ''),
        }
        return self._render(TEMPLATE, form=LoginForm(), labels=labels,
                            colors=colors, slots=slots)
