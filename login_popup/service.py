"""
The login popup, assembled from configuration.

:class:`LoginPopup` owns one instance of each collaborator and is stored on
the Flask application, so that every request shares the same redis client
and the same extension points.

.. code-block:: python

   app = create_web_app()
   popup = LoginPopup.current()
   popup.hooks.add_filter('max_attempts', lambda n: 10)

"""

from typing import Any, Mapping, Optional

import redis
from flask import Flask, current_app

from .hooks import HookRegistry
from .next_page import good_redirect
from .services import directory
from .services.store import get_redis
from .services.rate_limiter import RateLimiter
from .services.nonces import NonceStore
from .services.sessions import SessionStore
from .services.turnstile import TurnstileGate
from .services.two_factor import TwoFactor
from .controllers.authentication import Authenticator
from .controllers.popup import PopupStatus

import logging

logger = logging.getLogger(__name__)

EXTENSION = 'login_popup'


class LoginPopup(object):
    """
    Everything the popup needs to answer requests.

    Parameters
    ----------
    config : Mapping
        Application configuration; see :mod:`login_popup.config`.
    r : :class:`redis.Redis`
        Shared key-value store. Created from ``config`` if not given.
    hooks : :class:`.HookRegistry`
    user_directory
        Anything with ``authenticate`` and ``is_two_factor_enabled``; the
        :mod:`.services.directory` module by default.

    """

    def __init__(self, config: Mapping[str, Any],
                 r: Optional[redis.Redis] = None,
                 hooks: Optional[HookRegistry] = None,
                 user_directory: Any = directory) -> None:
        self.config = config
        self.r = r if r is not None else get_redis(config)
        self.hooks = hooks if hooks is not None else HookRegistry()
        self.directory = user_directory
        secret = config['JWT_SECRET']

        self.rate_limiter = RateLimiter(
            self.r,
            max_attempts=int(config.get('MAX_ATTEMPTS', 5)),
            window=int(config.get('RATE_LIMIT_WINDOW', 60)),
            hooks=self.hooks
        )
        self.nonces = NonceStore(self.r, secret, 'popup',
                                 int(config.get('NONCE_DURATION', 1800)))
        self.sessions = SessionStore(
            self.r, secret,
            duration=int(config.get('SESSION_DURATION', 172800)),
            remember_duration=int(config.get('REMEMBER_DURATION', 1209600))
        )
        self.challenge = TurnstileGate(
            config.get('TURNSTILE_SITE_KEY', ''),
            config.get('TURNSTILE_SECRET', ''),
            allowlist=config.get('TURNSTILE_ALLOWLIST', []),
            verify_url=config['TURNSTILE_VERIFY_URL']
        )
        second_factor_tokens = NonceStore(
            self.r, secret, '2fa',
            int(config.get('TWO_FACTOR_TOKEN_DURATION', 600))
        )
        self.two_factor = TwoFactor(second_factor_tokens,
                                    config['TWO_FACTOR_LOGIN_URL'],
                                    self.directory.is_two_factor_enabled)
        self.authenticator = Authenticator(
            self.rate_limiter, self.nonces, self.sessions, self.directory,
            self.hooks,
            challenge=self.challenge,
            two_factor=self.two_factor,
            validate_redirect=self.validate_redirect,
            rate_limiting_enabled=bool(config.get('RATE_LIMITING_ENABLED',
                                                  True))
        )
        self.status = PopupStatus(
            self.sessions, self.nonces, self.hooks,
            home_url=config['HOME_URL'],
            redirect_pattern=config['LOGIN_REDIRECT_REGEX'],
            challenge=self.challenge,
            trigger_params=config.get('TRIGGER_PARAMS', ('sl', 'show_login')),
            status_delay=float(config.get('STATUS_DELAY', 1)),
            max_status_delay=float(config.get('MAX_STATUS_DELAY', 3)),
            suppress_loading_state=bool(config.get('SUPPRESS_LOADING_STATE',
                                                   False))
        )

    def validate_redirect(self, url: str) -> str:
        """``url`` if it is a safe redirect target, otherwise the home page."""
        return good_redirect(url, self.config['HOME_URL'],
                             self.config['LOGIN_REDIRECT_REGEX'])

    @classmethod
    def init_app(cls, app: Flask, **kwargs: Any) -> 'LoginPopup':
        """Create the popup for ``app`` and attach it."""
        popup = cls(app.config, **kwargs)
        app.extensions[EXTENSION] = popup
        logger.debug('Login popup attached to %s', app.name)
        return popup

    @classmethod
    def current(cls) -> 'LoginPopup':
        """The popup of the current application."""
        popup: LoginPopup = current_app.extensions[EXTENSION]
        return popup
