"""Tests for :mod:`login_popup.services.turnstile`."""

from unittest import TestCase, mock

import requests

from login_popup.services.turnstile import TurnstileGate, ChallengeVerdict
from login_popup.services.exceptions import ChallengeUnavailable


def _response(body=None, status_code=200, json_error=False):
    response = mock.MagicMock(status_code=status_code)
    if json_error:
        response.json.side_effect = ValueError('no json')
    else:
        response.json.return_value = body
    if status_code >= 400:
        response.raise_for_status.side_effect = \
            requests.exceptions.HTTPError(f'{status_code}')
    return response


class TestTurnstileGate(TestCase):
    """Verify challenge tokens."""

    def setUp(self):
        self.session = mock.MagicMock(spec=requests.Session)
        self.gate = TurnstileGate('sitekey', 'secret',
                                  allowlist=['10.0.0.0/8', '192.0.2.5',
                                             'bogus'],
                                  session=self.session)

    def test_active(self):
        """The gate is only active with both a site key and a secret."""
        self.assertTrue(self.gate.is_active)
        self.assertFalse(TurnstileGate('sitekey', '').is_active)
        self.assertFalse(TurnstileGate('', 'secret').is_active)

    def test_allowlist(self):
        """Addresses and networks on the allow-list are exempt."""
        self.assertTrue(self.gate.is_exempt('10.1.2.3'))
        self.assertTrue(self.gate.is_exempt('192.0.2.5'))
        self.assertFalse(self.gate.is_exempt('192.0.2.6'))
        self.assertFalse(self.gate.is_exempt('not-an-ip'))

    def test_success(self):
        """A good token passes."""
        self.session.post.return_value = _response({'success': True})
        verdict = self.gate.verify('token', '192.0.2.6')
        self.assertTrue(verdict.success)
        self.assertEqual(verdict.error_codes, ())
        _, kwargs = self.session.post.call_args
        self.assertEqual(kwargs['data'], {'secret': 'secret',
                                          'response': 'token',
                                          'remoteip': '192.0.2.6'})

    def test_failure(self):
        """A bad token fails, with the reasons."""
        self.session.post.return_value = _response({
            'success': False,
            'error-codes': ['timeout-or-duplicate']
        })
        verdict = self.gate.verify('token')
        self.assertFalse(verdict.success)
        self.assertEqual(verdict.error_codes, ('timeout-or-duplicate',))

    def test_network_error(self):
        """Cloudflare can't be reached."""
        self.session.post.side_effect = \
            requests.exceptions.ConnectionError('nope')
        with self.assertRaises(ChallengeUnavailable):
            self.gate.verify('token')

    def test_server_error(self):
        """Cloudflare has a bad day."""
        self.session.post.return_value = _response(status_code=502)
        with self.assertRaises(ChallengeUnavailable):
            self.gate.verify('token')

    def test_not_json(self):
        """The answer isn't JSON."""
        self.session.post.return_value = _response(json_error=True)
        with self.assertRaises(ChallengeUnavailable):
            self.gate.verify('token')

    def test_malformed(self):
        """The answer isn't a verdict."""
        self.session.post.return_value = _response(['success'])
        with self.assertRaises(ChallengeUnavailable):
            self.gate.verify('token')

    def test_widget(self):
        """The widget carries the site key, escaped."""
        gate = TurnstileGate('<key>', 'secret')
        html = gate.render_widget()
        self.assertIn('cf-turnstile', html)
        self.assertIn('&lt;key&gt;', html)


class TestChallengeVerdict(TestCase):
    """Verdicts don't share their error codes."""

    def test_default_error_codes(self):
        first, second = ChallengeVerdict(True), ChallengeVerdict(False)
        self.assertEqual(first.error_codes, ())
        self.assertIsInstance(second.error_codes, tuple)
