import os

import pytest

from login_popup import factory
from login_popup.services import directory

TEST_ENVIRON = {
    'REDIS_FAKE': '1',
    'JWT_SECRET': 'foosecret',
    'DIRECTORY_DATABASE_URI': 'sqlite://',
    'CREATE_DB': '1',
    'AUTH_SESSION_COOKIE_SECURE': '0',
    'AUTH_SESSION_COOKIE_DOMAIN': '',
    'STATUS_DELAY': '0',
    'TURNSTILE_SITE_KEY': '',
    'TURNSTILE_SECRET': '',
    'LOG_JSON': '0',
}


@pytest.fixture()
def app():
    for key, value in TEST_ENVIRON.items():
        os.environ[key] = value
    app = factory.create_web_app()
    with app.app_context():
        app.extensions['login_popup'].r.flushall()
        directory.add_user('alice', 'alice@example.org', 'thepassword')
        directory.add_user('carol', 'carol@example.org', 'carolpass',
                           two_factor=True)
    yield app
    with app.app_context():
        directory.drop_all()


@pytest.fixture()
def client(app):
    client = app.test_client()
    client.environ_base['REMOTE_ADDR'] = '192.0.2.10'
    return client
