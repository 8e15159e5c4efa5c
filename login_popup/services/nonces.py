"""
Single-use, short-lived tokens.

A token is a signed JWT that carries a random ID (``jti``), the purpose it
was minted for, an optional subject, and an expiration. The ID is registered
in redis with the same lifetime. Consuming a token deletes the ID; since
``DEL`` reports how many keys it removed, only one of several concurrent
requests presenting the same token can succeed.

The popup uses these as its anti-forgery token (one per rendered form), and
the second-factor flow uses them as its login nonce.
"""

from typing import Optional, Mapping, Any
from datetime import datetime, timedelta
import secrets

from pytz import UTC
import dateutil.parser
import jwt
import redis
from redis.exceptions import RedisError

from .exceptions import InvalidToken, ExpiredToken, StoreUnavailable

import logging

logger = logging.getLogger(__name__)


class NonceStore(object):
    """Mints and consumes single-use tokens for one purpose."""

    def __init__(self, r: redis.Redis, secret: str, purpose: str,
                 duration: int = 1800) -> None:
        self.r = r
        self._secret = secret
        self._purpose = purpose
        self._duration = duration

    def _key(self, jti: str) -> str:
        return f'login_popup:{self._purpose}:{jti}'

    def issue(self, subject: Optional[str] = None) -> str:
        """
        Mint a new token.

        Parameters
        ----------
        subject : str
            If given, the token can only be consumed for this subject (e.g.
            a user ID).

        Returns
        -------
        str

        Raises
        ------
        :class:`.StoreUnavailable`
            The token could not be registered.

        """
        jti = secrets.token_urlsafe(24)
        expires = datetime.now(tz=UTC) + timedelta(seconds=self._duration)
        try:
            self.r.set(self._key(jti), subject or '', ex=self._duration)
        except RedisError as e:
            raise StoreUnavailable(f'Could not register token: {e}') from e
        claims = {
            'jti': jti,
            'purpose': self._purpose,
            'subject': subject or '',
            'expires': expires.isoformat()
        }
        return jwt.encode(claims, self._secret, algorithm='HS256')

    def consume(self, token: Optional[str],
                subject: Optional[str] = None) -> Mapping[str, Any]:
        """
        Check a token and use it up.

        Parameters
        ----------
        token : str
        subject : str
            If given, must match the subject the token was minted for.

        Returns
        -------
        dict
            The token claims.

        Raises
        ------
        :class:`.InvalidToken`
            The token is missing, malformed, forged, for another purpose or
            subject, or has already been used.
        :class:`.ExpiredToken`
            The token has expired.
        :class:`.StoreUnavailable`
            Could not check whether the token was used. Callers must treat
            this as a failure.

        """
        if not token:
            raise InvalidToken('No token')
        claims = self._unpack(token)
        if claims.get('purpose') != self._purpose:
            raise InvalidToken('Token was minted for something else')
        if subject is not None and claims.get('subject') != subject:
            raise InvalidToken('Token was minted for someone else')
        try:
            expires = dateutil.parser.parse(claims['expires'])
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise InvalidToken('Token payload malformed') from e
        if expires <= datetime.now(tz=UTC):
            raise ExpiredToken('Token has expired')

        try:
            deleted = self.r.delete(self._key(claims['jti']))
        except RedisError as e:
            raise StoreUnavailable(f'Could not consume token: {e}') from e
        if deleted != 1:
            logger.debug('Token %s already used or expired', claims['jti'])
            raise InvalidToken('Token has already been used')
        return claims

    def _unpack(self, token: str) -> Mapping[str, Any]:
        try:
            claims: Mapping[str, Any] = jwt.decode(token, self._secret,
                                                   algorithms=['HS256'])
        except jwt.exceptions.InvalidTokenError as e:
            raise InvalidToken('Token is malformed') from e
        if 'jti' not in claims:
            raise InvalidToken('Token payload malformed')
        return claims
