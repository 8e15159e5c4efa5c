"""Flask configuration."""
import secrets
import os
import re

#################### General config for app ####################
BASE_SERVER = os.environ.get('BASE_SERVER', 'example.org')
"""Sets base server for use when doman name is needed.

The default configs for `HOME_URL`, `LOGIN_REDIRECT_REGEX` and
`AUTH_SESSION_COOKIE_DOMAIN` will use this. They can be independently
configured if needed.
"""

HOME_URL = os.environ.get('HOME_URL', f'https://{BASE_SERVER}/')
"""Where the user goes after login if the page they came from can't be
trusted as a redirect target."""

_relative_urls = r"(^\/(?:[^\/]+\/)*[^\/]*$)"
_absolute_urls = rf"(^https?://([a-zA-Z0-9\-.]+\.)?{re.escape(BASE_SERVER.lower())}(:\d+)?(/.*)?$)"
LOGIN_REDIRECT_REGEX = os.environ.get('LOGIN_REDIRECT_REGEX',
                                      f"{_relative_urls}|{_absolute_urls}")
"""Regex to check the redirect target of the popup.

Only redirect targets that match this regex will be allowed. All others
will go to the `HOME_URL`. The default value for this allows relative URLs
and URLs on the BASE_SERVER and its subdomains.
"""

login_redirect_pattern = re.compile(LOGIN_REDIRECT_REGEX)

TRIGGER_PARAMS = ('sl', 'show_login')
"""Query parameters that open the popup. Stripped from redirect targets."""


#################### Redis ####################
REDIS_HOST = os.environ.get('REDIS_HOST', 'localhost')
REDIS_PORT = os.environ.get('REDIS_PORT', '6379')
REDIS_DATABASE = os.environ.get('REDIS_DATABASE', '0')
REDIS_TOKEN = os.environ.get('REDIS_TOKEN', None)
"""This is the token used in the AUTH procedure."""

REDIS_FAKE = bool(int(os.environ.get('REDIS_FAKE', '0')))
"""Use the FakeRedis library instead of a redis service.

Useful for testing, dev, beta."""


#################### Sessions and tokens ####################
JWT_SECRET = os.environ.get('JWT_SECRET', secrets.token_urlsafe(16))
"""Secret used to sign session cookies, popup nonces and second-factor
tokens."""

AUTH_SESSION_COOKIE_NAME = os.environ.get('AUTH_SESSION_COOKIE_NAME',
                                          'login_popup_session')
AUTH_SESSION_COOKIE_DOMAIN = os.environ.get('AUTH_SESSION_COOKIE_DOMAIN',
                                            f'.{BASE_SERVER}')
AUTH_SESSION_COOKIE_SECURE = bool(int(os.environ.get('AUTH_SESSION_COOKIE_SECURE', '1')))

SESSION_DURATION = os.environ.get('SESSION_DURATION', '172800')
"""Lifetime in seconds of a session when "Remember Me" is not checked."""

REMEMBER_DURATION = os.environ.get('REMEMBER_DURATION', '1209600')
"""Lifetime in seconds of a session when "Remember Me" is checked."""

NONCE_DURATION = os.environ.get('NONCE_DURATION', '1800')
"""Lifetime in seconds of the anti-forgery token issued with a popup."""

TWO_FACTOR_TOKEN_DURATION = os.environ.get('TWO_FACTOR_TOKEN_DURATION', '600')


#################### Rate limiting ####################
RATE_LIMITING_ENABLED = bool(int(os.environ.get('RATE_LIMITING_ENABLED', '1')))

MAX_ATTEMPTS = os.environ.get('MAX_ATTEMPTS', '5')
"""Failed attempts allowed per client within one window."""

RATE_LIMIT_WINDOW = os.environ.get('RATE_LIMIT_WINDOW', '60')
"""Length in seconds of the fixed rate limit window.

The window starts at the first failed attempt and is not extended by later
failures."""


#################### Popup ####################
STATUS_DELAY = os.environ.get('STATUS_DELAY', '1')
"""Seconds to pause the status check so the loading message doesn't flash.

Only applied while status messages are shown, and never longer than
`MAX_STATUS_DELAY`."""

MAX_STATUS_DELAY = 3

SUPPRESS_LOADING_STATE = bool(int(os.environ.get('SUPPRESS_LOADING_STATE', '0')))
"""Keep the popup hidden until the status check says the user is logged
out, instead of showing a loading spinner and status messages."""


#################### Bot challenge ####################
TURNSTILE_SITE_KEY = os.environ.get('TURNSTILE_SITE_KEY', '')
TURNSTILE_SECRET = os.environ.get('TURNSTILE_SECRET', '')
"""The challenge is only enforced when both the site key and the secret are
set."""

TURNSTILE_VERIFY_URL = os.environ.get(
    'TURNSTILE_VERIFY_URL',
    'https://challenges.cloudflare.com/turnstile/v0/siteverify'
)
TURNSTILE_ALLOWLIST = [
    entry.strip() for entry
    in os.environ.get('TURNSTILE_ALLOWLIST', '').split(',') if entry.strip()
]
"""IP addresses or networks (CIDR) that skip the challenge."""


#################### Two factor ####################
TWO_FACTOR_LOGIN_URL = os.environ.get('TWO_FACTOR_LOGIN_URL',
                                      f'https://{BASE_SERVER}/login')
"""Page of the separate second-factor flow. Users with two factors enabled
are sent here after their password checks out."""


#################### User directory ####################
DIRECTORY_DATABASE_URI = os.environ.get('DIRECTORY_DATABASE_URI',
                                        'sqlite:///directory.db')

SQLALCHEMY_DATABASE_URI = DIRECTORY_DATABASE_URI

SQLALCHEMY_TRACK_MODIFICATIONS = False

CREATE_DB = bool(int(os.environ.get('CREATE_DB', 0)))


#################### Minor configs ##############################
SECRET_KEY = os.environ.get('SECRET_KEY', secrets.token_urlsafe(16))
"""Sets the `Flask` secret key used for sessions. Not directly used here."""

LOGLEVEL = int(os.environ.get('LOGLEVEL', 20))

LOG_JSON = bool(int(os.environ.get('LOG_JSON', '1')))
"""Write log records as JSON lines to stderr."""

VERSION = '1.0.0'
APP_VERSION = '1.0.0'
"""The application version."""

APPLICATION_ROOT = os.environ.get('APPLICATION_ROOT', '/')
