"""Provides exceptions occurring with external services."""


class StoreUnavailable(RuntimeError):
    """The key-value store could not be reached."""


class SessionCreationFailed(RuntimeError):
    """Failed to create a session in the session store."""


class SessionDeletionFailed(RuntimeError):
    """Failed to delete a session in the session store."""


class UnknownSession(RuntimeError):
    """Failed to locate a session in the session store."""


class InvalidToken(ValueError):
    """A token was passed that is either corrupted or a forgery."""


class ExpiredToken(InvalidToken):
    """A token was passed that has expired."""


class AuthenticationFailed(RuntimeError):
    """
    Failed to authenticate user with provided credentials.

    ``code`` says why, using the user directory's error codes. The codes in
    :data:`IDENTITY_ERRORS` mean the login or password is wrong; anything
    else is a problem with the account itself.
    """

    def __init__(self, message: str, code: str = 'invalidcombo') -> None:
        super(AuthenticationFailed, self).__init__(message)
        self.code = code


IDENTITY_ERRORS = frozenset([
    'invalid_username',
    'invalid_email',
    'incorrect_password',
    'invalidcombo',
])


class DirectoryUnavailable(RuntimeError):
    """The user directory could not be reached."""


class ChallengeUnavailable(RuntimeError):
    """The bot-challenge service could not evaluate a token."""


class SecondFactorIssuanceFailed(RuntimeError):
    """Could not mint a second-factor challenge token."""
