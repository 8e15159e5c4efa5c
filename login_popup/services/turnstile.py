"""
Cloudflare Turnstile bot challenge.

When a site key and secret are configured, the popup form carries the
Turnstile widget and every login submission must include the token the
widget produced. Tokens are single use: Cloudflare rejects a token that has
already been verified, so the client must reset the widget after every
submission that didn't log the user in.

Clients on the allow-list skip the challenge entirely.
"""

from typing import Iterable, List, NamedTuple, Optional, Tuple, Union
import ipaddress

import requests
from markupsafe import escape

from .exceptions import ChallengeUnavailable

import logging

logger = logging.getLogger(__name__)

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

VERIFY_URL = 'https://challenges.cloudflare.com/turnstile/v0/siteverify'
TIMEOUT = 10
RESPONSE_FIELD = 'cf-turnstile-response'
"""Form field holding the widget token."""


class ChallengeVerdict(NamedTuple):
    """What the challenge service said about a token."""

    success: bool
    error_codes: Tuple[str, ...] = ()


def _parse_allowlist(entries: Iterable[str]) -> List[Network]:
    networks = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.error('Ignoring bad allow-list entry: %s', entry)
    return networks


class TurnstileGate(object):
    """Verifies Turnstile tokens with Cloudflare."""

    def __init__(self, site_key: str, secret: str,
                 allowlist: Iterable[str] = (),
                 verify_url: str = VERIFY_URL,
                 session: Optional[requests.Session] = None) -> None:
        self.site_key = site_key
        self._secret = secret
        self._allowlist = _parse_allowlist(allowlist)
        self._verify_url = verify_url
        self._session = session or requests.Session()

    @property
    def is_active(self) -> bool:
        """The challenge is enforced only if it is fully configured."""
        return bool(self.site_key and self._secret)

    def is_exempt(self, ip_address: str) -> bool:
        """Whether a client on the allow-list is making the request."""
        try:
            address = ipaddress.ip_address(ip_address)
        except ValueError:
            return False
        return any(address in network for network in self._allowlist)

    def verify(self, token: str, remote_ip: Optional[str] = None) \
            -> ChallengeVerdict:
        """
        Ask Cloudflare whether a widget token is valid.

        Parameters
        ----------
        token : str
            Value of the ``cf-turnstile-response`` form field.
        remote_ip : str
            Client IP address, passed along as a hint.

        Returns
        -------
        :class:`.ChallengeVerdict`

        Raises
        ------
        :class:`.ChallengeUnavailable`
            Cloudflare could not be reached or returned something that isn't
            a verdict.

        """
        payload = {'secret': self._secret, 'response': token}
        if remote_ip:
            payload['remoteip'] = remote_ip
        try:
            response = self._session.post(self._verify_url, data=payload,
                                          timeout=TIMEOUT)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise ChallengeUnavailable(f'Verification failed: {e}') from e
        except ValueError as e:
            raise ChallengeUnavailable('Verification response is not JSON') \
                from e
        if not isinstance(data, dict) or 'success' not in data:
            raise ChallengeUnavailable('Verification response is malformed')
        codes = data.get('error-codes') or ()
        verdict = ChallengeVerdict(success=data['success'] is True,
                                   error_codes=tuple(codes))
        logger.debug('Challenge verdict: %s', verdict)
        return verdict

    def render_widget(self) -> str:
        """HTML placeholder for the widget, inserted in the popup form."""
        return (
            '<div class="login-popup-field login-popup-turnstile">'
            f'<div class="cf-turnstile" data-sitekey="{escape(self.site_key)}"'
            ' data-callback="loginPopupTurnstileCallback"'
            ' data-response-field-name="cf-turnstile-response"></div>'
            '</div>'
        )
