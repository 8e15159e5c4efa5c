"""Defines the core data structures for the login popup service."""

from typing import NamedTuple, NewType, Union, Any, Dict
from datetime import datetime
from enum import Enum

from pytz import UTC
import dateutil.parser


ClientIdentity = NewType('ClientIdentity', str)
"""The client IP address used to key the rate limiter."""


class AttemptRecord(NamedTuple):
    """Failed login attempts from one client within the current window."""

    identity: ClientIdentity
    count: int
    window_expires_at: datetime


class RateLimitStatus(NamedTuple):
    """Whether a client is locked out, and for how long."""

    limited: bool
    retry_after: int = 0
    """Seconds until the window expires. Zero if not limited."""


class Credentials(NamedTuple):
    """Credentials submitted with the popup form."""

    login: str
    """Username or e-mail address."""

    password: str
    """Password (as entered). Never logged, never stored."""

    remember: bool = False

    def __repr__(self) -> str:
        return (f'Credentials(login={self.login!r}, password=\'********\', '
                f'remember={self.remember!r})')


class User(NamedTuple):
    """An identity resolved by the user directory."""

    user_id: str
    username: str
    email: str
    two_factor_enabled: bool = False


class Session(NamedTuple):
    """An authenticated session in the session store."""

    session_id: str
    user: User
    start_time: datetime
    end_time: datetime
    ip_address: str = ''
    remember: bool = False
    nonce: str = ''

    @property
    def expired(self) -> bool:
        """Expired sessions are not valid."""
        return self.end_time <= datetime.now(tz=UTC)

    @property
    def expires(self) -> int:
        """Seconds until the session ends."""
        return max(0, int((self.end_time - datetime.now(tz=UTC)).total_seconds()))


class FailureKind(Enum):
    """Reasons an authentication attempt did not succeed."""

    RATE_LIMITED = 'rate_limited'
    INVALID_SESSION = 'invalid_session'
    MISSING_FIELDS = 'missing_fields'
    CHALLENGE_FAILED = 'challenge_failed'
    CHALLENGE_UNAVAILABLE = 'challenge_unavailable'
    IDENTITY_INVALID = 'identity_invalid'
    ACCOUNT_ERROR = 'account_error'
    SECOND_FACTOR_UNAVAILABLE = 'second_factor_unavailable'
    SESSION_UNAVAILABLE = 'session_unavailable'
    UNEXPECTED_ERROR = 'unexpected_error'
    NETWORK_OR_FORMAT = 'network_or_format'
    """Only produced on the client side."""


class Success(NamedTuple):
    """The user is logged in."""

    user_id: str


class Failure(NamedTuple):
    """The user is not logged in."""

    kind: FailureKind
    message: str


class TwoFactorRequired(NamedTuple):
    """Password checked out, but the user must complete a second factor."""

    redirect_target: str


AuthResult = Union[Success, Failure, TwoFactorRequired]


def to_dict(session: Session) -> Dict[str, Any]:
    """Serialize a :class:`.Session` for the session store."""
    return {
        'session_id': session.session_id,
        'user': session.user._asdict(),
        'start_time': session.start_time.isoformat(),
        'end_time': session.end_time.isoformat(),
        'ip_address': session.ip_address,
        'remember': session.remember,
        'nonce': session.nonce
    }


def from_dict(data: Dict[str, Any]) -> Session:
    """Load a :class:`.Session` from its serialized form."""
    return Session(
        session_id=data['session_id'],
        user=User(**data['user']),
        start_time=dateutil.parser.parse(data['start_time']),
        end_time=dateutil.parser.parse(data['end_time']),
        ip_address=data.get('ip_address', ''),
        remember=bool(data.get('remember', False)),
        nonce=data.get('nonce', '')
    )
