"""Tests for :mod:`login_popup.controllers.popup`."""

from unittest import TestCase, mock
from http import HTTPStatus as status

import fakeredis

from login_popup import domain
from login_popup.hooks import HookRegistry
from login_popup.services.nonces import NonceStore
from login_popup.services.sessions import SessionStore
from login_popup.services.turnstile import TurnstileGate
from login_popup.controllers.popup import PopupStatus, valid_color, \
    NO_CACHE_HEADERS

PATTERN = r'(^\/(?:[^\/]+\/)*[^\/]*$)|(^https://example\.org(/.*)?$)'
HOME = 'https://example.org/'


class TestCheckStatus(TestCase):
    """Decide whether to show the form."""

    def setUp(self):
        self.r = fakeredis.FakeStrictRedis(decode_responses=True)
        self.hooks = HookRegistry()
        self.nonces = NonceStore(self.r, 'foosecret', 'popup')
        self.sessions = SessionStore(self.r, 'foosecret')
        self.render = mock.MagicMock(return_value='<form></form>')
        self.sleep = mock.MagicMock()
        self.popup = PopupStatus(self.sessions, self.nonces, self.hooks,
                                 HOME, PATTERN, status_delay=1,
                                 render=self.render, sleep=self.sleep)

    def logged_in_cookie(self):
        user = domain.User(user_id='1', username='alice',
                           email='alice@example.org')
        session = self.sessions.create(user, '10.0.0.1')
        return self.sessions.generate_cookie(session)

    def test_logged_out(self):
        """Visitors without a session get the form and a token."""
        data, code, headers = self.popup.check_status(
            None, 'https://example.org/page?sl=true&x=1'
        )
        self.assertEqual(code, status.OK)
        self.assertTrue(data['success'])
        self.assertTrue(data['data']['show'])
        self.assertEqual(data['data']['html'], '<form></form>')
        self.assertEqual(data['data']['redirectTarget'],
                         'https://example.org/page?x=1')
        self.assertFalse(data['data']['suppressLoading'])
        self.nonces.consume(data['data']['sessionToken'])
        self.sleep.assert_called_once_with(1)
        self.assertEqual(headers, NO_CACHE_HEADERS)

    def test_logged_in(self):
        """Logged-in visitors are told so, without delay."""
        data, code, headers = self.popup.check_status(
            self.logged_in_cookie(), 'https://example.org/'
        )
        self.assertEqual(data['data'], {'show': False,
                                        'reason': 'already_logged_in',
                                        'suppressLoading': False})
        self.sleep.assert_not_called()
        self.render.assert_not_called()
        self.assertEqual(headers['Cache-Control'],
                         'no-store, no-cache, must-revalidate, private')
        self.assertEqual(headers['Vary'], 'Cookie')

    def test_stale_cookie(self):
        """A cookie for a deleted session doesn't count."""
        cookie = self.logged_in_cookie()
        self.sessions.delete(cookie)
        data, _, _ = self.popup.check_status(cookie, '/')
        self.assertTrue(data['data']['show'])

    def test_suppress_loading(self):
        """With loading messages suppressed there is no delay."""
        self.hooks.add_filter('suppress_loading_state', lambda value: True)
        data, _, _ = self.popup.check_status(None, '/')
        self.assertTrue(data['data']['suppressLoading'])
        self.sleep.assert_not_called()

    def test_delay_is_clamped(self):
        """The delay never exceeds three seconds."""
        popup = PopupStatus(self.sessions, self.nonces, self.hooks, HOME,
                            PATTERN, status_delay=30, render=self.render,
                            sleep=self.sleep)
        popup.check_status(None, '/')
        self.sleep.assert_called_once_with(3)

    def test_external_redirect(self):
        """Off-site pages are not trusted as redirect targets."""
        data, _, _ = self.popup.check_status(None, 'https://evil.com/?sl=true')
        self.assertEqual(data['data']['redirectTarget'], HOME)

    def test_redirect_filter(self):
        """The ``redirect_url`` filter runs before validation."""
        self.hooks.add_filter('redirect_url',
                              lambda url, current: '/dashboard')
        data, _, _ = self.popup.check_status(None, '/page?sl=true')
        self.assertEqual(data['data']['redirectTarget'], '/dashboard')

        self.hooks.add_filter('redirect_url',
                              lambda url, current: 'https://evil.com/')
        data, _, _ = self.popup.check_status(None, '/page?sl=true')
        self.assertEqual(data['data']['redirectTarget'], HOME)


class TestRenderForm(TestCase):
    """Labels, colours and slots reach the template."""

    def setUp(self):
        self.r = fakeredis.FakeStrictRedis(decode_responses=True)
        self.hooks = HookRegistry()
        self.render = mock.MagicMock(return_value='<form></form>')
        self.popup = PopupStatus(SessionStore(self.r, 'foosecret'),
                                 NonceStore(self.r, 'foosecret', 'popup'),
                                 self.hooks, HOME, PATTERN,
                                 render=self.render)

    def test_defaults(self):
        self.popup.render_form()
        template, = self.render.call_args[0]
        context = self.render.call_args[1]
        self.assertEqual(template, 'login_popup/popup.html')
        self.assertEqual(context['labels']['popup_title'], 'Log In')
        self.assertEqual(context['colors']['button_bg_color'], '#0073aa')
        self.assertEqual(context['slots']['form_middle'], '')

    def test_filters(self):
        self.hooks.add_filter('submit_label', lambda label: 'Sign in')
        self.hooks.add_filter('button_text_color', lambda color: '#000')
        self.hooks.add_filter('button_bg_color',
                              lambda color: 'red; background: url(x)')
        self.hooks.add_filter('form_end', lambda html: html + '<p>hi</p>')
        self.popup.render_form()
        context = self.render.call_args[1]
        self.assertEqual(context['labels']['submit_label'], 'Sign in')
        self.assertEqual(context['colors']['button_text_color'], '#000')
        self.assertEqual(context['colors']['button_bg_color'], '#0073aa')
        self.assertEqual(context['slots']['form_end'], '<p>hi</p>')

    def test_challenge_widget(self):
        """An active challenge puts its widget in the middle slot."""
        self.popup.challenge = TurnstileGate('sitekey', 'secret')
        self.popup.render_form()
        context = self.render.call_args[1]
        self.assertIn('cf-turnstile', context['slots']['form_middle'])

    def test_valid_color(self):
        self.assertEqual(valid_color('#abc', '#fff'), '#abc')
        self.assertEqual(valid_color('#A0B1C2', '#fff'), '#A0B1C2')
        self.assertEqual(valid_color('#abcd', '#fff'), '#fff')
        self.assertEqual(valid_color(None, '#fff'), '#fff')
