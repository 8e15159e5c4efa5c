"""Tests for :mod:`login_popup.services.directory`."""

from unittest import TestCase, mock

from flask import Flask
from sqlalchemy.exc import OperationalError

from login_popup.services import directory
from login_popup.services.models import db, DBUser
from login_popup.services.exceptions import AuthenticationFailed, \
    DirectoryUnavailable


class TestAuthenticate(TestCase):
    """Check credentials against the directory."""

    def setUp(self):
        self.app = Flask('test')
        self.app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite://'
        self.app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
        directory.init_app(self.app)
        self.ctx = self.app.app_context()
        self.ctx.push()
        directory.create_all()
        self.alice = directory.add_user('alice', 'alice@example.org',
                                        'thepassword')
        directory.add_user('bob', 'bob@example.org', 'bobpassword',
                           verified=False)
        directory.add_user('carol', 'carol@example.org', 'carolpassword',
                           two_factor=True)

    def tearDown(self):
        directory.drop_all()
        db.session.remove()
        self.ctx.pop()

    def test_username(self):
        """Users can log in with their username."""
        user = directory.authenticate('alice', 'thepassword')
        self.assertEqual(user.user_id, self.alice.user_id)
        self.assertEqual(user.email, 'alice@example.org')
        self.assertFalse(user.two_factor_enabled)

    def test_email(self):
        """Users can log in with their e-mail address."""
        user = directory.authenticate('alice@example.org', 'thepassword')
        self.assertEqual(user.username, 'alice')

    def test_wrong_password(self):
        """A wrong password is reported as such."""
        with self.assertRaises(AuthenticationFailed) as ctx:
            directory.authenticate('alice', 'wrong')
        self.assertEqual(ctx.exception.code, 'incorrect_password')

    def test_unknown_user(self):
        """Unknown logins are reported as such."""
        with self.assertRaises(AuthenticationFailed) as ctx:
            directory.authenticate('mallory', 'whatever')
        self.assertEqual(ctx.exception.code, 'invalid_username')
        with self.assertRaises(AuthenticationFailed) as ctx:
            directory.authenticate('mallory@example.org', 'whatever')
        self.assertEqual(ctx.exception.code, 'invalid_email')

    def test_unverified(self):
        """Accounts that were never activated can't log in."""
        with self.assertRaises(AuthenticationFailed) as ctx:
            directory.authenticate('bob', 'bobpassword')
        self.assertEqual(ctx.exception.code, 'email_not_verified')

    def test_banned(self):
        """Locked accounts can't log in."""
        db.session.query(DBUser).filter(DBUser.username == 'alice') \
            .update({'flag_banned': 1})
        db.session.commit()
        with self.assertRaises(AuthenticationFailed) as ctx:
            directory.authenticate('alice', 'thepassword')
        self.assertEqual(ctx.exception.code, 'account_locked')

    def test_two_factor(self):
        """The directory knows who has a second factor."""
        carol = directory.authenticate('carol', 'carolpassword')
        self.assertTrue(carol.two_factor_enabled)
        self.assertTrue(directory.is_two_factor_enabled(carol.user_id))
        self.assertFalse(directory.is_two_factor_enabled(self.alice.user_id))

    @mock.patch(f'{directory.__name__}._get_user')
    def test_database_unavailable(self, mock_get_user):
        """Database errors are not taken for wrong credentials."""
        mock_get_user.side_effect = OperationalError('SELECT', {}, None)
        with self.assertRaises(DirectoryUnavailable):
            directory.authenticate('alice', 'thepassword')
