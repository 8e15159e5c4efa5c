"""
Provide an API for user authentication using the user directory.

The popup does not own user accounts. It asks the directory whether a
login and password belong to an account, and whether that account uses a
second factor. Failures are reported as :class:`.AuthenticationFailed` with
an error code; see :data:`.exceptions.IDENTITY_ERRORS`.
"""

from typing import Generator, Optional, Any
from contextlib import contextmanager

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import generate_password_hash, check_password_hash

from .. import domain
from .models import db, DBUser
from .exceptions import AuthenticationFailed, DirectoryUnavailable

import logging

logger = logging.getLogger(__name__)


@contextmanager
def transaction() -> Generator:
    """Context manager for database transaction."""
    try:
        yield db.session
        # The caller may have explicitly committed already, in order to
        # implement exception handling logic. We only want to commit here if
        # there is anything remaining that is not flushed.
        if db.session.new or db.session.dirty or db.session.deleted:
            db.session.commit()
    except SQLAlchemyError as e:
        logger.error('Commit failed, rolling back: %s', str(e))
        db.session.rollback()
        raise DirectoryUnavailable(f'Directory query failed: {e}') from e
    except Exception as e:
        logger.error('Commit failed, rolling back: %s', str(e))
        db.session.rollback()
        raise


def init_app(app: Any) -> None:
    """Attach the database session to the application."""
    db.init_app(app)


def create_all() -> None:
    """Create all tables in the database."""
    db.create_all()


def drop_all() -> None:
    """Drop all tables in the database."""
    db.drop_all()


def hash_password(password: str) -> str:
    """Generate a secure hash of a password."""
    return generate_password_hash(password)


def _to_domain(db_user: DBUser) -> domain.User:
    return domain.User(
        user_id=str(db_user.user_id),
        username=db_user.username,
        email=db_user.email,
        two_factor_enabled=bool(db_user.flag_two_factor)
    )


def _get_user(username_or_email: str) -> Optional[DBUser]:
    return db.session.query(DBUser) \
        .filter(or_(DBUser.username == username_or_email,
                    DBUser.email == username_or_email)) \
        .filter(DBUser.flag_deleted == 0) \
        .first()


def authenticate(username_or_email: str, password: str) -> domain.User:
    """
    Validate username/password. If successful, retrieve user details.

    Parameters
    ----------
    username_or_email : str
        Users may log in with either their username or their email address.
    password : str
        Password (as entered). Danger, Will Robinson!

    Returns
    -------
    :class:`domain.User`

    Raises
    ------
    :class:`AuthenticationFailed`
        Failed to authenticate user with provided credentials, or the account
        can't be used to log in.
    :class:`DirectoryUnavailable`
        The directory database could not be queried.

    """
    try:
        db_user = _get_user(username_or_email)
    except SQLAlchemyError as e:
        raise DirectoryUnavailable(f'Directory query failed: {e}') from e
    if db_user is None:
        logger.debug('No such user')
        code = 'invalid_email' if '@' in username_or_email \
            else 'invalid_username'
        raise AuthenticationFailed('Unknown username or email', code=code)
    logger.debug('Got user with user_id: %s', db_user.user_id)
    if not db_user.password_enc \
            or not check_password_hash(db_user.password_enc, password):
        logger.debug('Password check failed for user_id %s', db_user.user_id)
        raise AuthenticationFailed('Incorrect password',
                                   code='incorrect_password')
    if db_user.flag_banned:
        raise AuthenticationFailed(
            '<strong>Error:</strong> This account has been locked. Please'
            ' contact the site administrator.',
            code='account_locked'
        )
    if not db_user.flag_email_verified:
        raise AuthenticationFailed(
            '<strong>Error:</strong> This account has not been activated yet.'
            ' Please check your e-mail for the activation link.',
            code='email_not_verified'
        )
    return _to_domain(db_user)


def is_two_factor_enabled(user_id: str) -> bool:
    """Whether the user must complete a second factor after their password."""
    try:
        db_user = db.session.query(DBUser) \
            .filter(DBUser.user_id == int(user_id)) \
            .first()
    except SQLAlchemyError as e:
        raise DirectoryUnavailable(f'Directory query failed: {e}') from e
    return bool(db_user is not None and db_user.flag_two_factor)


def add_user(username: str, email: str, password: str,
             verified: bool = True, two_factor: bool = False) -> domain.User:
    """Create an account in the directory."""
    with transaction() as session:
        db_user = DBUser(
            username=username,
            email=email,
            password_enc=hash_password(password),
            flag_email_verified=int(verified),
            flag_two_factor=int(two_factor)
        )
        session.add(db_user)
        session.commit()
        return _to_domain(db_user)
