"""
Client side of the login popup.

:class:`PopupController` is the state machine the browser script runs,
written against a :class:`Transport` so that it can drive the service from
Python (for instance in end-to-end checks of a deployment) as well as be
tested without a browser.

::

    Idle --trigger--> Loading --logged in--> ShowMessage --1s--> Closed
                      Loading --logged out--> ShowMessage --1s--> FormVisible
    FormVisible --submit--> AwaitingChallenge --token or 3s--> Submitting
    Submitting --success / second factor--> Redirecting
    Submitting --failure--> Error (form still showing, challenge reset)
    Error --submit--> AwaitingChallenge or Submitting
    any visible state --close, Escape, overlay click--> Closed

"""

from typing import Any, Callable, Dict, Mapping, Optional, Set, Protocol
from enum import Enum
from urllib.parse import urlsplit, parse_qs
import asyncio

import requests

from .domain import FailureKind

import logging

logger = logging.getLogger(__name__)

CHECKING = 'Checking login status...'
ALREADY_LOGGED_IN = "You're already logged in!"
NOT_LOGGED_IN = "You're not logged in"
MISSING_FIELDS = 'Please enter both username and password.'
GENERIC_ERROR = 'An error occurred. Please try again.'
LOGIN_FAILED = 'Login failed. Please try again.'

MESSAGE_DELAY = 1.0
"""Seconds a status message stays up before the next state."""

CHALLENGE_TIMEOUT = 3.0
CHALLENGE_POLL_INTERVAL = 0.1


class PopupState(Enum):
    IDLE = 'idle'
    LOADING = 'loading'
    SHOW_MESSAGE = 'show_message'
    FORM_VISIBLE = 'form_visible'
    AWAITING_CHALLENGE = 'awaiting_challenge'
    SUBMITTING = 'submitting'
    ERROR = 'error'
    REDIRECTING = 'redirecting'
    CLOSED = 'closed'


VISIBLE = frozenset([PopupState.LOADING, PopupState.SHOW_MESSAGE,
                     PopupState.FORM_VISIBLE, PopupState.AWAITING_CHALLENGE,
                     PopupState.SUBMITTING, PopupState.ERROR])


class TransportError(IOError):
    """The service could not be reached, or didn't answer with JSON."""


class Transport(Protocol):
    """How the controller talks to the service."""

    async def check_status(self, current_url: str) -> Mapping[str, Any]:
        ...

    async def authenticate(self, fields: Mapping[str, str]) \
            -> Mapping[str, Any]:
        ...


class RequestsTransport(object):
    """
    Talks to the service over HTTP with :mod:`requests`.

    The session keeps cookies between calls, like a browser would. Calls run
    in the default executor so that they don't block the event loop.
    """

    def __init__(self, base_url: str,
                 session: Optional[requests.Session] = None,
                 timeout: float = 10) -> None:
        self.ajax_url = base_url.rstrip('/') + '/login-popup/ajax'
        self.session = session or requests.Session()
        self.timeout = timeout

    def _post(self, data: Mapping[str, str]) -> Mapping[str, Any]:
        try:
            response = self.session.post(self.ajax_url, data=data,
                                         timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f'Request failed: {e}') from e
        try:
            body = response.json()
        except ValueError as e:
            raise TransportError('Response is not JSON') from e
        if not isinstance(body, dict):
            raise TransportError('Response is not an envelope')
        return body

    async def _call(self, data: Mapping[str, str]) -> Mapping[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._post, data)

    async def check_status(self, current_url: str) -> Mapping[str, Any]:
        return await self._call({'action': 'login_popup_check',
                                 'current_url': current_url})

    async def authenticate(self, fields: Mapping[str, str]) \
            -> Mapping[str, Any]:
        return await self._call(dict(fields,
                                     action='login_popup_authenticate'))


def trigger_present(url: str) -> bool:
    """Whether the page URL asks for the popup: ``sl=true`` or
    ``show_login=true`` (or ``1``)."""
    params = parse_qs(urlsplit(url).query, keep_blank_values=True)
    if 'true' in params.get('sl', []):
        return True
    return any(value in ('true', '1') for value in params.get('show_login', []))


class PopupController(object):
    """
    Drives one popup on one page.

    Parameters
    ----------
    transport : :class:`Transport`
    navigate : callable
        Called with the URL to go to after logging in.
    on_change : callable
        Called with the controller whenever its state or message changes.
    suppress_loading : bool
        Skip the loading and status messages; show the form (or nothing)
        directly.
    message_delay : float
    challenge_timeout : float
        Longest wait for the challenge widget to produce a token before
        submitting anyway.

    """

    def __init__(self, transport: Transport,
                 navigate: Callable[[str], None],
                 on_change: Optional[Callable[['PopupController'], None]] = None,
                 suppress_loading: bool = False,
                 message_delay: float = MESSAGE_DELAY,
                 challenge_timeout: float = CHALLENGE_TIMEOUT,
                 challenge_poll_interval: float = CHALLENGE_POLL_INTERVAL) \
            -> None:
        self.transport = transport
        self.navigate = navigate
        self.on_change = on_change
        self.suppress_loading = suppress_loading
        self.message_delay = message_delay
        self.challenge_timeout = challenge_timeout
        self.challenge_poll_interval = challenge_poll_interval

        self.state = PopupState.IDLE
        self.message = ''
        self.error = ''
        self.error_kind: Optional[str] = None
        self.html = ''
        self.session_token: Optional[str] = None
        self.redirect_target = ''
        self.challenge_token: Optional[str] = None
        self.challenge_resets = 0
        self._polling = False
        self._submitting = False
        self._timers: Set[asyncio.Task] = set()

    @property
    def challenge_required(self) -> bool:
        """Whether the form carries a challenge widget."""
        return 'cf-turnstile' in self.html

    def _set(self, state: PopupState, message: str = '',
             error: str = '') -> None:
        logger.debug('Popup %s -> %s', self.state.value, state.value)
        self.state = state
        self.message = message
        self.error = error
        if state is not PopupState.ERROR:
            self.error_kind = None
        if self.on_change is not None:
            self.on_change(self)

    def _after(self, delay: float, callback: Callable[[], None]) -> None:
        async def _timer() -> None:
            await asyncio.sleep(delay)
            callback()

        task = asyncio.get_running_loop().create_task(_timer())
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    async def open(self, current_url: str) -> None:
        """Check the login status and show the popup accordingly."""
        if self.state in VISIBLE or self._polling:
            return None
        self._set(PopupState.LOADING,
                  '' if self.suppress_loading else CHECKING)
        self._polling = True
        try:
            envelope = await self.transport.check_status(current_url)
        except TransportError as e:
            logger.debug('Status check failed: %s', e)
            self.close()
            return None
        finally:
            self._polling = False
        if self.state is not PopupState.LOADING:
            return None     # Closed while the check was in flight.

        data = envelope.get('data')
        if not envelope.get('success') or not isinstance(data, dict):
            self.close()
            return None

        suppress = self.suppress_loading or bool(data.get('suppressLoading'))
        if not data.get('show'):
            if suppress:
                self.close()
                return None
            self._set(PopupState.SHOW_MESSAGE, ALREADY_LOGGED_IN)
            self._after(self.message_delay, self.close)
            return None

        self.html = data.get('html') or ''
        self.session_token = data.get('sessionToken')
        self.redirect_target = data.get('redirectTarget') or current_url
        if suppress:
            self._show_form()
        else:
            self._set(PopupState.SHOW_MESSAGE, NOT_LOGGED_IN)
            self._after(self.message_delay, self._show_form)

    def _show_form(self) -> None:
        if self.state in (PopupState.CLOSED, PopupState.REDIRECTING):
            return None
        self._set(PopupState.FORM_VISIBLE)

    def set_challenge_token(self, token: Optional[str]) -> None:
        """Called by the challenge widget when it has produced a token."""
        self.challenge_token = token or None

    def reset_challenge(self) -> None:
        """Challenge tokens can only be verified once; ask for a new one."""
        self.challenge_token = None
        self.challenge_resets += 1

    async def _wait_for_challenge(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.challenge_timeout
        while self.challenge_token is None and loop.time() < deadline:
            await asyncio.sleep(self.challenge_poll_interval)
        if self.challenge_token is None:
            logger.debug('No challenge token after %s seconds',
                         self.challenge_timeout)

    async def submit(self, login: str, password: str,
                     remember: bool = False) -> bool:
        """
        Submit the form.

        Returns
        -------
        bool
            Whether a request was sent. Nothing is sent unless the form is
            showing and no other request is in flight.

        """
        if self.state not in (PopupState.FORM_VISIBLE, PopupState.ERROR) \
                or self._polling or self._submitting:
            return False
        if not login or not password:
            self._failed(MISSING_FIELDS, FailureKind.MISSING_FIELDS.value)
            return False

        self._submitting = True
        try:
            if self.challenge_required:
                self._set(PopupState.AWAITING_CHALLENGE)
                await self._wait_for_challenge()
                if self.state is PopupState.CLOSED:
                    return False
            self._set(PopupState.SUBMITTING)
            fields: Dict[str, str] = {
                'sessionToken': self.session_token or '',
                'login': login,
                'password': password,
                'remember': '1' if remember else '0',
                'redirect_to': self.redirect_target,
            }
            if self.challenge_token:
                fields['challengeResponse'] = self.challenge_token
            try:
                envelope = await self.transport.authenticate(fields)
            except TransportError as e:
                logger.debug('Login request failed: %s', e)
                self.reset_challenge()
                self._failed(GENERIC_ERROR)
                return True
        finally:
            self._submitting = False

        if self.state is PopupState.CLOSED:
            return True
        self._handle_result(envelope)
        return True

    def _handle_result(self, envelope: Mapping[str, Any]) -> None:
        data = envelope.get('data')
        if not isinstance(data, dict):
            self.reset_challenge()
            self._failed(GENERIC_ERROR)
            return None
        if envelope.get('success'):
            self._redirect(self.redirect_target)
            return None
        if data.get('twoFactorRequired') and data.get('redirectUrl'):
            self._redirect(data['redirectUrl'])
            return None

        if data.get('sessionToken'):
            self.session_token = data['sessionToken']
        if data.get('refreshChallenge'):
            self.reset_challenge()
        self._failed(data.get('message') or LOGIN_FAILED, data.get('kind'))

    def _failed(self, message: str, kind: Optional[str] = None) -> None:
        """Show the form again, with the error above it."""
        self.error_kind = kind or FailureKind.NETWORK_OR_FORMAT.value
        logger.debug('Login failed: %s', self.error_kind)
        self._set(PopupState.ERROR, error=message)

    def _redirect(self, url: str) -> None:
        self._set(PopupState.REDIRECTING)
        self.navigate(url)

    def handle_key(self, key: str) -> None:
        """Escape closes the popup."""
        if key == 'Escape':
            self.close()

    def overlay_clicked(self) -> None:
        """A click on the overlay, outside the form, closes the popup."""
        self.close()

    def close(self) -> None:
        """Hide the popup and cancel anything it was waiting for."""
        for task in list(self._timers):
            task.cancel()
        self._timers.clear()
        if self.state is PopupState.REDIRECTING:
            return None
        self._set(PopupState.CLOSED)
