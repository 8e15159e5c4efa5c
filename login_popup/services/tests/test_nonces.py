"""Tests for :mod:`login_popup.services.nonces`."""

from unittest import TestCase, mock
from datetime import datetime, timedelta

from pytz import UTC
import fakeredis
import jwt
from redis.exceptions import ConnectionError

from login_popup.services.nonces import NonceStore
from login_popup.services.exceptions import InvalidToken, ExpiredToken, \
    StoreUnavailable


class TestNonceStore(TestCase):
    """Single-use tokens."""

    def setUp(self):
        self.secret = 'foosecret'
        self.r = fakeredis.FakeStrictRedis(decode_responses=True)
        self.nonces = NonceStore(self.r, self.secret, 'popup', 1800)

    def test_issue_and_consume(self):
        """A fresh token can be consumed once."""
        token = self.nonces.issue()
        claims = self.nonces.consume(token)
        self.assertEqual(claims['purpose'], 'popup')
        with self.assertRaises(InvalidToken):
            self.nonces.consume(token)

    def test_registered_with_lifetime(self):
        """The token ID lives in the store no longer than the token."""
        token = self.nonces.issue()
        claims = jwt.decode(token, self.secret, algorithms=['HS256'])
        ttl = self.r.ttl(f'login_popup:popup:{claims["jti"]}')
        self.assertGreater(ttl, 0)
        self.assertLessEqual(ttl, 1800)

    def test_missing_token(self):
        """No token is not a valid token."""
        with self.assertRaises(InvalidToken):
            self.nonces.consume(None)
        with self.assertRaises(InvalidToken):
            self.nonces.consume('')

    def test_forged_token(self):
        """A token signed with another secret is rejected."""
        forger = NonceStore(self.r, 'othersecret', 'popup')
        with self.assertRaises(InvalidToken):
            self.nonces.consume(forger.issue())

    def test_garbage(self):
        """Something that isn't a JWT is rejected."""
        with self.assertRaises(InvalidToken):
            self.nonces.consume('not-a-token')

    def test_other_purpose(self):
        """A second-factor token is not a popup token."""
        other = NonceStore(self.r, self.secret, '2fa')
        with self.assertRaises(InvalidToken):
            self.nonces.consume(other.issue())

    def test_subject(self):
        """A token minted for one subject can't be used for another."""
        token = self.nonces.issue(subject='1')
        with self.assertRaises(InvalidToken):
            self.nonces.consume(token, subject='2')
        self.assertEqual(self.nonces.consume(token, subject='1')['subject'],
                         '1')

    def test_expired(self):
        """An expired token is rejected, even if it is still registered."""
        expires = datetime.now(tz=UTC) - timedelta(seconds=10)
        token = jwt.encode({'jti': 'abc', 'purpose': 'popup', 'subject': '',
                            'expires': expires.isoformat()},
                           self.secret, algorithm='HS256')
        self.r.set('login_popup:popup:abc', '')
        with self.assertRaises(ExpiredToken):
            self.nonces.consume(token)

    def test_unregistered(self):
        """A well-signed token that was never registered is rejected."""
        expires = datetime.now(tz=UTC) + timedelta(seconds=100)
        token = jwt.encode({'jti': 'abc', 'purpose': 'popup', 'subject': '',
                            'expires': expires.isoformat()},
                           self.secret, algorithm='HS256')
        with self.assertRaises(InvalidToken):
            self.nonces.consume(token)

    def test_store_unavailable(self):
        """Store errors are never taken as a valid token."""
        token = self.nonces.issue()
        self.nonces.r = mock.MagicMock()
        self.nonces.r.delete.side_effect = ConnectionError('no redis')
        with self.assertRaises(StoreUnavailable):
            self.nonces.consume(token)

    def test_issue_store_unavailable(self):
        """No token is handed out if it can't be registered."""
        self.nonces.r = mock.MagicMock()
        self.nonces.r.set.side_effect = ConnectionError('no redis')
        with self.assertRaises(StoreUnavailable):
            self.nonces.issue()
