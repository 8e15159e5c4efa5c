"""
Second factor hand-off.

The popup only checks passwords. Users who have a second factor enabled are
sent to the site's second-factor page with a single-use login nonce, and
finish logging in there. The popup must not leave them with an
authenticated session in the meantime.
"""

from typing import Any, Callable, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

from .nonces import NonceStore
from .exceptions import StoreUnavailable, SecondFactorIssuanceFailed

import logging

logger = logging.getLogger(__name__)


class TwoFactor(object):
    """
    Detects second-factor users and builds their hand-off.

    Parameters
    ----------
    tokens : :class:`.NonceStore`
        Store for second-factor login nonces.
    login_url : str
        The second-factor page.
    is_enabled : callable
        Takes a user ID, returns whether that user has a second factor.
        Usually :func:`.directory.is_two_factor_enabled`.

    """

    def __init__(self, tokens: NonceStore, login_url: str,
                 is_enabled: Callable[[str], bool]) -> None:
        self._tokens = tokens
        self._login_url = login_url
        self._is_enabled = is_enabled

    def is_second_factor_enabled(self, user_id: str) -> bool:
        """Whether the user must complete a second factor."""
        return bool(self._is_enabled(user_id))

    def issue_second_factor_challenge(self, user_id: str) -> str:
        """
        Mint a single-use login nonce for the second-factor page.

        Raises
        ------
        :class:`.SecondFactorIssuanceFailed`

        """
        try:
            token = self._tokens.issue(subject=user_id)
        except StoreUnavailable as e:
            raise SecondFactorIssuanceFailed(str(e)) from e
        logger.debug('Issued second-factor nonce for user %s', user_id)
        return token

    def build_challenge_redirect(self, user_id: str, token: str,
                                 destination: str) -> str:
        """URL of the second-factor page, carrying the nonce and destination."""
        scheme, netloc, path, query, fragment = urlsplit(self._login_url)
        params = parse_qsl(query, keep_blank_values=True)
        params += [
            ('action', 'validate_2fa'),
            ('auth_id', user_id),
            ('auth_nonce', token),
            ('redirect_to', destination),
        ]
        return urlunsplit((scheme, netloc, path, urlencode(params), fragment))

    def consume_second_factor_challenge(self, user_id: str,
                                        token: Optional[str]) -> Any:
        """
        Use up a login nonce presented to the second-factor page.

        Raises
        ------
        :class:`.InvalidToken`
            Wrong user, expired, forged or already used.
        :class:`.StoreUnavailable`

        """
        return self._tokens.consume(token, subject=user_id)
