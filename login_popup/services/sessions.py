"""
Authenticated sessions in the distributed session store.

A session is stored in redis under a random session ID, and the browser gets
a cookie: a signed JWT carrying the session ID, the user ID, and a nonce
that must match the stored session. Deleting the stored session logs the
user out even if the browser keeps the cookie.
"""

from typing import Optional
from datetime import datetime, timedelta
import json
import random
import uuid

from pytz import UTC
import dateutil.parser
import jwt
import redis
from redis.exceptions import RedisError

from .. import domain
from .exceptions import SessionCreationFailed, SessionDeletionFailed, \
    UnknownSession, InvalidToken, ExpiredToken

import logging

logger = logging.getLogger(__name__)


def _generate_nonce(length: int = 8) -> str:
    return ''.join([str(random.randint(0, 9)) for i in range(length)])


class SessionStore(object):
    """
    Manages sessions in redis.

    The redis client is thread safe and connections are attached at the time
    a command is executed. This class simply provides a container for
    configuration.
    """

    prefix = 'login_popup:session:'

    def __init__(self, r: redis.Redis, secret: str, duration: int = 172800,
                 remember_duration: int = 1209600) -> None:
        self.r = r
        self._secret = secret
        self._duration = duration
        self._remember_duration = remember_duration

    def create(self, user: domain.User, ip_address: str,
               remember: bool = False) -> domain.Session:
        """
        Create a new session.

        Parameters
        ----------
        user : :class:`domain.User`
        ip_address : str
        remember : bool
            Longer-lived session if True.

        Returns
        -------
        :class:`.Session`

        Raises
        ------
        :class:`.SessionCreationFailed`

        """
        session_id = str(uuid.uuid4())
        duration = self._remember_duration if remember else self._duration
        start_time = datetime.now(tz=UTC)
        session = domain.Session(
            session_id=session_id,
            user=user,
            start_time=start_time,
            end_time=start_time + timedelta(seconds=duration),
            ip_address=ip_address,
            remember=remember,
            nonce=_generate_nonce()
        )
        try:
            self.r.set(self.prefix + session_id,
                       json.dumps(domain.to_dict(session)), ex=duration)
        except RedisError as e:
            raise SessionCreationFailed(f'Failed to create: {e}') from e
        return session

    def generate_cookie(self, session: domain.Session) -> str:
        """Generate a cookie from a :class:`domain.Session`."""
        return jwt.encode({
            'user_id': session.user.user_id,
            'session_id': session.session_id,
            'nonce': session.nonce,
            'expires': session.end_time.isoformat()
        }, self._secret, algorithm='HS256')

    def load(self, cookie: str) -> domain.Session:
        """
        Load a session using a session cookie.

        Raises
        ------
        :class:`.InvalidToken`
            The cookie is malformed or doesn't match the stored session.
        :class:`.ExpiredToken`
        :class:`.UnknownSession`
            No such session, or the store is unavailable.

        """
        cookie_data = self._unpack_cookie(cookie)
        try:
            expires = dateutil.parser.parse(cookie_data['expires'])
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise InvalidToken('Session cookie payload malformed') from e
        if expires <= datetime.now(tz=UTC):
            raise ExpiredToken('Session has expired')

        session = self.load_by_id(cookie_data['session_id'])
        if session.expired:
            raise ExpiredToken('Session has expired')
        if cookie_data.get('nonce') != session.nonce \
                or cookie_data.get('user_id') != session.user.user_id:
            raise InvalidToken('Invalid session cookie; likely a forgery')
        return session

    def load_by_id(self, session_id: str) -> domain.Session:
        """Get session data by session ID."""
        try:
            raw = self.r.get(self.prefix + session_id)
        except RedisError as e:
            raise UnknownSession(f'Could not load session: {e}') from e
        if not raw:
            logger.debug('No such session: %s', session_id)
            raise UnknownSession(f'Failed to find session {session_id}')
        return domain.from_dict(json.loads(raw))

    def is_authenticated(self, cookie: Optional[str]) -> bool:
        """Whether ``cookie`` belongs to a live session."""
        if not cookie:
            return False
        try:
            self.load(cookie)
        except (InvalidToken, UnknownSession) as e:
            logger.debug('Not an authenticated session: %s', e)
            return False
        return True

    def delete(self, cookie: str) -> None:
        """
        Delete a session.

        Parameters
        ----------
        cookie : str

        """
        cookie_data = self._unpack_cookie(cookie)
        self.delete_by_id(cookie_data['session_id'])

    def delete_by_id(self, session_id: str) -> None:
        """
        Delete a session in the key-value store by ID.

        Parameters
        ----------
        session_id : str

        """
        try:
            self.r.delete(self.prefix + session_id)
        except RedisError as e:
            raise SessionDeletionFailed(f'Failed to delete: {e}') from e

    def _unpack_cookie(self, cookie: str) -> dict:
        try:
            data = dict(jwt.decode(cookie, self._secret, algorithms=['HS256']))
        except jwt.exceptions.InvalidTokenError as e:
            raise InvalidToken('Session cookie is malformed') from e
        if 'session_id' not in data:
            raise InvalidToken('Session cookie payload malformed')
        return data
