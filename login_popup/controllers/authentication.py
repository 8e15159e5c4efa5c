"""
Login controller for the popup.

The popup submits credentials with an asynchronous request. Handling that
request is a sequence of checks, each of which may end it:

1. the client must not be rate limited;
2. the anti-forgery token issued with the popup must be valid and unused;
3. a login and a password must be present;
4. the bot challenge, if one is configured, must be passed;
5. the user directory must accept the credentials;
6. users with a second factor are handed off to the second-factor page
   instead of being logged in.

The order matters. Nothing about the credentials is looked at before the
token is checked, and nothing is asked of the directory before the bot
challenge is passed, so that a failed challenge never reveals whether a
login exists. The second factor is only considered once the password has
checked out.

Every response after the token has been used up carries a fresh token, and
every unsuccessful response tells the client to reset its challenge widget,
since challenge tokens can only be verified once.
"""

from typing import Any, Callable, Dict, NamedTuple, Optional, Tuple
from http import HTTPStatus as status
import math
import re

from werkzeug.datastructures import MultiDict
from retry import retry

from ..domain import ClientIdentity, Credentials, User, Session, \
    AuthResult, Success, Failure, TwoFactorRequired, FailureKind
from ..hooks import HookRegistry
from ..services.rate_limiter import RateLimiter
from ..services.nonces import NonceStore
from ..services.sessions import SessionStore
from ..services.turnstile import TurnstileGate, RESPONSE_FIELD
from ..services.two_factor import TwoFactor
from ..services.exceptions import AuthenticationFailed, IDENTITY_ERRORS, \
    DirectoryUnavailable, InvalidToken, StoreUnavailable, \
    ChallengeUnavailable, SessionCreationFailed, SessionDeletionFailed, \
    SecondFactorIssuanceFailed
from .forms import LoginForm

import logging

logger = logging.getLogger(__name__)

ResponseData = Tuple[dict, int, dict]

GENERIC_ERROR = '<strong>Error:</strong> Invalid username or password.'
MISSING_FIELDS = 'Please enter both username and password.'
INVALID_SESSION = 'Your session has expired. Please reload the page and try' \
    ' again.'
CHALLENGE_FAILED = 'Please verify you are human.'
CHALLENGE_UNAVAILABLE = 'Human verification is not available right now.' \
    ' Please try again later.'
SECOND_FACTOR_UNAVAILABLE = 'Failed to create two-factor authentication token.'
SESSION_UNAVAILABLE = 'We could not log you in right now. Please try again.'
UNEXPECTED_ERROR = 'An error occurred. Please try again.'
SUCCESS = 'Login successful! Redirecting...'
TWO_FACTOR_REDIRECT = 'Redirecting to two-factor authentication...'

_account_reference = re.compile(
    r'<strong>[^<]+</strong>\s*(is not registered|was not found)',
    re.IGNORECASE
)


class Attempt(NamedTuple):
    """Everything the HTTP layer needs to answer a login request."""

    result: AuthResult
    status_code: int
    session: Optional[Session] = None
    """The new session, if the user is now logged in."""
    nonce: Optional[str] = None
    """Replacement anti-forgery token, if the submitted one was used up."""
    retry_after: int = 0


def rate_limited_message(retry_after: int) -> str:
    """Tell the user how many minutes to wait."""
    minutes = max(1, math.ceil(retry_after / 60))
    unit = 'minute' if minutes == 1 else 'minutes'
    return f'Too many login attempts. Please try again in {minutes} {unit}.'


def sanitize_login_error(error: AuthenticationFailed) -> str:
    """
    Turn a directory error into a message that is safe to show.

    Errors meaning "wrong login or password" all get the same message, so
    that nobody can find out which logins exist. Other errors keep their
    message, minus any reference to the account they are about.
    """
    if error.code in IDENTITY_ERRORS:
        return GENERIC_ERROR
    return _account_reference.sub('the username or email', str(error))


# Broken out to add retry logic.
@retry(DirectoryUnavailable, tries=3, delay=0.5, backoff=2)
def _do_authn(directory: Any, login: str, password: str) -> User:
    user: User = directory.authenticate(login, password)
    return user


class Authenticator(object):
    """
    Runs a login attempt from the popup.

    Parameters
    ----------
    rate_limiter : :class:`.RateLimiter`
    nonces : :class:`.NonceStore`
        Anti-forgery tokens issued with the popup.
    sessions : :class:`.SessionStore`
    directory
        Anything with ``authenticate(login, password) -> User``; usually the
        :mod:`.services.directory` module.
    hooks : :class:`.HookRegistry`
    challenge : :class:`.TurnstileGate`
        Optional bot challenge.
    two_factor : :class:`.TwoFactor`
        Optional second-factor hand-off.
    validate_redirect : callable
        Returns its argument if it is an internal URL, a safe default
        otherwise.
    rate_limiting_enabled : bool

    """

    def __init__(self, rate_limiter: RateLimiter, nonces: NonceStore,
                 sessions: SessionStore, directory: Any,
                 hooks: HookRegistry,
                 challenge: Optional[TurnstileGate] = None,
                 two_factor: Optional[TwoFactor] = None,
                 validate_redirect: Callable[[str], str] = lambda url: url,
                 rate_limiting_enabled: bool = True) -> None:
        self.rate_limiter = rate_limiter
        self.nonces = nonces
        self.sessions = sessions
        self.directory = directory
        self.hooks = hooks
        self.challenge = challenge
        self.two_factor = two_factor
        self.validate_redirect = validate_redirect
        self._rate_limiting_enabled = rate_limiting_enabled

    @property
    def rate_limiting_enabled(self) -> bool:
        return bool(self.hooks.apply_filters('enable_rate_limiting',
                                             self._rate_limiting_enabled))

    def authenticate(self, form_data: MultiDict, identity: ClientIdentity,
                     destination: str = '') -> Attempt:
        """
        Handle a login submission.

        Parameters
        ----------
        form_data : MultiDict
            Should include ``sessionToken``, ``login``, ``password``, and
            optionally ``remember`` and the challenge response.
        identity : str
            The client IP address.
        destination : str
            Where the user wants to go after logging in.

        Returns
        -------
        :class:`.Attempt`

        """
        if self.rate_limiting_enabled:
            limit = self.rate_limiter.is_limited(identity)
            if limit.limited:
                return Attempt(
                    Failure(FailureKind.RATE_LIMITED,
                            rate_limited_message(limit.retry_after)),
                    status.TOO_MANY_REQUESTS,
                    retry_after=limit.retry_after
                )

        try:
            self.nonces.consume(form_data.get('sessionToken'))
        except (InvalidToken, StoreUnavailable) as e:
            logger.debug('Rejected anti-forgery token: %s', e)
            return Attempt(Failure(FailureKind.INVALID_SESSION,
                                   INVALID_SESSION),
                           status.FORBIDDEN)

        # From here on the submitted token is used up.
        try:
            attempt = self._authenticate(form_data, identity, destination)
        except Exception:
            logger.exception('Unexpected error during authentication')
            attempt = Attempt(Failure(FailureKind.UNEXPECTED_ERROR,
                                      UNEXPECTED_ERROR),
                              status.INTERNAL_SERVER_ERROR)
        if isinstance(attempt.result, Success):
            return attempt
        return attempt._replace(nonce=self._fresh_nonce())

    def _fresh_nonce(self) -> Optional[str]:
        try:
            return self.nonces.issue()
        except StoreUnavailable as e:
            logger.error('Could not issue replacement token: %s', e)
            return None

    def _get_credentials(self, form_data: MultiDict) -> Optional[Credentials]:
        form = LoginForm(form_data)
        if not form.validate():
            logger.debug('Form data is not valid')
            return None
        return Credentials(login=form.login.data,
                           password=form.password.data,
                           remember=bool(form.remember.data))

    def _authenticate(self, form_data: MultiDict, identity: ClientIdentity,
                      destination: str) -> Attempt:
        credentials = self._get_credentials(form_data)
        if credentials is None:
            return Attempt(Failure(FailureKind.MISSING_FIELDS,
                                   MISSING_FIELDS),
                           status.BAD_REQUEST)

        credentials = self.hooks.apply_filters('credentials', credentials)
        self.hooks.do_action('before_authenticate', credentials.login)

        rejected = self._check_challenge(form_data, identity,
                                         credentials.login)
        if rejected is not None:
            return rejected

        try:    # Attempt to authenticate the user with the credentials provided.
            user = _do_authn(self.directory, credentials.login,
                             credentials.password)
        except AuthenticationFailed as e:
            logger.debug('Authentication failed for %s: %s',
                         credentials.login, e.code)
            self.hooks.do_action('after_authenticate', e, credentials)
            return self._login_failed(e, identity)
        except DirectoryUnavailable as e:
            logger.exception('Error during Authentication for %s',
                             credentials.login)
            self.hooks.do_action('after_authenticate', e, credentials)
            # To the perspective of the attacker, same as AuthenticationFailed.
            message = self.hooks.apply_filters('error_message', GENERIC_ERROR,
                                               e)
            return Attempt(Failure(FailureKind.IDENTITY_INVALID, message),
                           status.OK)

        try:    # Create a session in the distributed session store.
            session = self.sessions.create(user, identity,
                                           remember=credentials.remember)
            logger.debug('Created session: %s', session.session_id)
        except SessionCreationFailed as e:
            logger.error('Could not create session: %s', e)
            self.hooks.do_action('after_authenticate', e, credentials)
            return Attempt(Failure(FailureKind.SESSION_UNAVAILABLE,
                                   SESSION_UNAVAILABLE),
                           status.INTERNAL_SERVER_ERROR)

        self.hooks.do_action('after_authenticate', user, credentials)

        if self.two_factor is not None:
            try:
                second_factor = \
                    self.two_factor.is_second_factor_enabled(user.user_id)
            except DirectoryUnavailable as e:
                logger.error('Could not look up second factor: %s', e)
                return self._abandon(session)
            if second_factor:
                return self._hand_off(user, session, destination)

        self.rate_limiter.clear(identity)
        self.hooks.do_action('login_succeeded', user)
        return Attempt(Success(user.user_id), status.OK, session=session)

    def _check_challenge(self, form_data: MultiDict,
                         identity: ClientIdentity,
                         login: str) -> Optional[Attempt]:
        """Verify the bot challenge. Returns an attempt only on rejection."""
        if self.challenge is None or not self.challenge.is_active:
            return None
        if self.challenge.is_exempt(identity):
            logger.debug('Client is on the challenge allow-list')
            return None
        if self.hooks.apply_filters('skip_challenge', False, identity):
            return None

        token = form_data.get('challengeResponse') \
            or form_data.get(RESPONSE_FIELD)
        if not token:
            self.hooks.do_action('challenge_failed', login)
            return Attempt(Failure(FailureKind.CHALLENGE_FAILED,
                                   CHALLENGE_FAILED),
                           status.FORBIDDEN)
        try:
            verdict = self.challenge.verify(token, identity)
        except ChallengeUnavailable as e:
            logger.error('Challenge could not be verified: %s', e)
            return Attempt(Failure(FailureKind.CHALLENGE_UNAVAILABLE,
                                   CHALLENGE_UNAVAILABLE),
                           status.INTERNAL_SERVER_ERROR)
        if not verdict.success:
            logger.debug('Challenge failed: %s', verdict.error_codes)
            self.hooks.do_action('challenge_failed', login)
            return Attempt(Failure(FailureKind.CHALLENGE_FAILED,
                                   CHALLENGE_FAILED),
                           status.FORBIDDEN)
        self.hooks.do_action('challenge_succeeded', login)
        return None

    def _login_failed(self, error: AuthenticationFailed,
                      identity: ClientIdentity) -> Attempt:
        self.rate_limiter.record_failure(identity)
        kind = FailureKind.IDENTITY_INVALID if error.code in IDENTITY_ERRORS \
            else FailureKind.ACCOUNT_ERROR
        message = self.hooks.apply_filters('error_message',
                                           sanitize_login_error(error), error)
        return Attempt(Failure(kind, message), status.OK)

    def _abandon(self, session: Session) -> Attempt:
        """Drop a session that must not be used, and report the failure."""
        try:
            self.sessions.delete_by_id(session.session_id)
        except SessionDeletionFailed as e:
            logger.error('Could not remove session %s: %s',
                         session.session_id, e)
        return Attempt(Failure(FailureKind.SECOND_FACTOR_UNAVAILABLE,
                               SECOND_FACTOR_UNAVAILABLE),
                       status.INTERNAL_SERVER_ERROR)

    def _hand_off(self, user: User, session: Session,
                  destination: str) -> Attempt:
        """Replace the new session with a second-factor redirect."""
        assert self.two_factor is not None
        try:
            self.sessions.delete_by_id(session.session_id)
        except SessionDeletionFailed as e:
            logger.error('Could not remove session before second factor: %s',
                         e)
            return Attempt(Failure(FailureKind.SECOND_FACTOR_UNAVAILABLE,
                                   SECOND_FACTOR_UNAVAILABLE),
                           status.INTERNAL_SERVER_ERROR)
        try:
            token = self.two_factor.issue_second_factor_challenge(user.user_id)
        except SecondFactorIssuanceFailed as e:
            logger.error('Could not issue second-factor token: %s', e)
            return Attempt(Failure(FailureKind.SECOND_FACTOR_UNAVAILABLE,
                                   SECOND_FACTOR_UNAVAILABLE),
                           status.INTERNAL_SERVER_ERROR)
        target = self.two_factor.build_challenge_redirect(
            user.user_id, token, self.validate_redirect(destination)
        )
        logger.debug('User %s must complete a second factor', user.user_id)
        return Attempt(TwoFactorRequired(target), status.OK)


def login_response(attempt: Attempt,
                   generate_cookie: Callable[[Session], str]) -> ResponseData:
    """
    Build the JSON envelope for a login attempt.

    Returns
    -------
    dict
        Response body. A ``cookies`` key, if present, holds the cookies to set
        and must be removed before serializing.
    int
        Status code.
    dict
        Headers to add to the response.

    """
    headers: Dict[str, str] = {}
    result = attempt.result
    if isinstance(result, Success):
        session = attempt.session
        assert session is not None
        return {
            'success': True,
            'data': {'message': SUCCESS, 'userId': result.user_id},
            'cookies': {
                'auth_session_cookie': (generate_cookie(session),
                                        session.expires)
            }
        }, attempt.status_code, headers

    data: Dict[str, Any] = {'refreshChallenge': True}
    response: Dict[str, Any] = {'success': False, 'data': data}
    if isinstance(result, TwoFactorRequired):
        data.update({
            'message': TWO_FACTOR_REDIRECT,
            'twoFactorRequired': True,
            'redirectUrl': result.redirect_target
        })
        # The browser must not hold a session until the second factor is done.
        response['cookies'] = {'auth_session_cookie': ('', 0)}
        return response, attempt.status_code, headers

    data.update({'message': result.message, 'kind': result.kind.value})
    if result.kind is FailureKind.SECOND_FACTOR_UNAVAILABLE:
        response['cookies'] = {'auth_session_cookie': ('', 0)}
    if attempt.nonce:
        data['sessionToken'] = attempt.nonce
    if result.kind is FailureKind.RATE_LIMITED:
        data['retryAfter'] = attempt.retry_after
        headers['Retry-After'] = str(attempt.retry_after)
    return response, attempt.status_code, headers
