"""
Per-client limit on failed login attempts.

Failures are counted per client IP address in a fixed window. The window
starts with the first failure and is not extended by later ones; when it
expires the count is gone and the next failure starts a new window. A
successful login clears the count.

If redis is unavailable, the limiter fails open: the client is reported as
not limited and failures are not recorded. An outage of the key-value store
must not lock every user out of the site.
"""

from typing import Mapping, Optional
from datetime import datetime, timedelta
import hashlib
import ipaddress

from pytz import UTC
import redis
from redis.exceptions import RedisError

from ..domain import ClientIdentity, AttemptRecord, RateLimitStatus
from ..hooks import HookRegistry

import logging

logger = logging.getLogger(__name__)

IP_HEADERS = (
    'CF-Connecting-IP',     # Cloudflare edge.
    'X-Real-IP',
    'X-Forwarded-For',
)
"""Request headers that may carry the client address, most reliable first."""


def client_identity(headers: Mapping[str, str],
                    remote_addr: Optional[str],
                    hooks: Optional[HookRegistry] = None) -> ClientIdentity:
    """
    Determine the client IP address for a request.

    Proxy headers are checked in the order of :data:`IP_HEADERS`, then the
    address of the connection itself. If a header holds a chain of addresses
    the first one is used. Values that are not IP addresses are skipped.

    Parameters
    ----------
    headers : Mapping
        Request headers.
    remote_addr : str or None
        Address of the connecting peer.
    hooks : :class:`.HookRegistry`
        If given, the ``client_ip`` filter is applied to the result.

    Returns
    -------
    str

    """
    candidates = [headers.get(name) for name in IP_HEADERS] + [remote_addr]
    ip = ''
    for value in candidates:
        if not value:
            continue
        value = value.split(',')[0].strip()
        try:
            ipaddress.ip_address(value)
        except ValueError:
            logger.debug('Not an IP address: %s', value)
            continue
        ip = value
        break
    if hooks is not None:
        ip = hooks.apply_filters('client_ip', ip)
    return ClientIdentity(ip)


class RateLimiter(object):
    """Counts failed attempts in redis."""

    prefix = 'login_popup:attempts:'

    def __init__(self, r: redis.Redis, max_attempts: int = 5,
                 window: int = 60, hooks: Optional[HookRegistry] = None) \
            -> None:
        self.r = r
        self._max_attempts = max_attempts
        self._window = window
        self._hooks = hooks if hooks is not None else HookRegistry()

    @property
    def max_attempts(self) -> int:
        """Failed attempts allowed in one window."""
        return int(self._hooks.apply_filters('max_attempts',
                                             self._max_attempts))

    @property
    def window(self) -> int:
        """Length of the window in seconds."""
        return int(self._hooks.apply_filters('rate_limit_window',
                                             self._window))

    def _key(self, identity: ClientIdentity) -> str:
        digest = hashlib.sha256(identity.encode('utf-8')).hexdigest()
        return f'{self.prefix}{digest}'

    def get_record(self, identity: ClientIdentity) -> Optional[AttemptRecord]:
        """
        Get the attempt record for a client, if there is one.

        Raises
        ------
        :class:`redis.exceptions.RedisError`
            Unlike the other methods, store errors are not swallowed here.

        """
        pipe = self.r.pipeline(transaction=True)
        pipe.get(self._key(identity))
        pipe.ttl(self._key(identity))
        count, ttl = pipe.execute()
        if count is None:
            return None
        expires_at = datetime.now(tz=UTC) + timedelta(seconds=max(ttl, 0))
        return AttemptRecord(identity=identity, count=int(count),
                             window_expires_at=expires_at)

    def is_limited(self, identity: ClientIdentity) -> RateLimitStatus:
        """
        Check whether a client has used up its attempts.

        Parameters
        ----------
        identity : str
            The client IP address.

        Returns
        -------
        :class:`.RateLimitStatus`
            ``retry_after`` is the number of seconds until the window
            expires, never negative.

        """
        try:
            record = self.get_record(identity)
        except RedisError as e:
            logger.error('Rate limit store unavailable, failing open: %s', e)
            return RateLimitStatus(limited=False)
        if record is None or record.count < self.max_attempts:
            return RateLimitStatus(limited=False)

        remaining = (record.window_expires_at - datetime.now(tz=UTC))
        retry_after = max(0, int(round(remaining.total_seconds())))
        logger.debug('Client is rate limited for another %i seconds',
                     retry_after)
        return RateLimitStatus(limited=True, retry_after=retry_after)

    def record_failure(self, identity: ClientIdentity) -> int:
        """
        Count a failed attempt.

        The counter is created with the window as its expiry only if it does
        not already exist, and incremented in the same transaction, so
        concurrent failures from one client are all counted and the window
        is never extended.

        Returns
        -------
        int
            Failures so far in this window, or 0 if the store is unavailable.

        """
        key = self._key(identity)
        try:
            pipe = self.r.pipeline(transaction=True)
            pipe.set(key, 0, ex=self.window, nx=True)
            pipe.incr(key)
            _, count = pipe.execute()
        except RedisError as e:
            logger.error('Could not record failed attempt: %s', e)
            return 0
        logger.debug('Failed attempt %i of %i', count, self.max_attempts)
        return int(count)

    def clear(self, identity: ClientIdentity) -> None:
        """Forget the failed attempts of a client."""
        try:
            self.r.delete(self._key(identity))
        except RedisError as e:
            logger.error('Could not clear failed attempts: %s', e)
