"""Tests for :mod:`login_popup.routes.ui`."""

from http import HTTPStatus as status
from unittest import mock

from login_popup.services.exceptions import StoreUnavailable


def test_health(client):
    response = client.get('/login-popup/status')
    assert response.status_code == status.OK
    assert response.data == b'OK'


def test_unknown_action(client):
    response = client.post('/login-popup/ajax', data={'action': 'nope'})
    assert response.status_code == status.BAD_REQUEST
    assert response.get_json()['success'] is False


def test_no_action(client):
    response = client.post('/login-popup/ajax', data={})
    assert response.status_code == status.BAD_REQUEST


def test_no_cache(client):
    response = client.post('/login-popup/ajax',
                           data={'action': 'login_popup_check'})
    assert response.headers['Cache-Control'] \
        == 'no-store, no-cache, must-revalidate, private'
    assert response.headers['Pragma'] == 'no-cache'
    assert response.headers['Vary'] == 'Cookie'


def test_check(client):
    response = client.post('/login-popup/ajax', data={
        'action': 'login_popup_check',
        'current_url': '/page?sl=true'
    })
    assert response.status_code == status.OK
    data = response.get_json()['data']
    assert data['show'] is True
    assert data['redirectTarget'] == '/page'
    assert 'login-popup-form' in data['html']
    assert data['sessionToken']


def test_unexpected_error(app, client):
    """Anything unexpected becomes a generic error envelope."""
    popup = app.extensions['login_popup']
    with mock.patch.object(popup.authenticator, 'authenticate') as auth:
        auth.side_effect = KeyError('boom')
        response = client.post('/login-popup/ajax', data={
            'action': 'login_popup_authenticate'
        })
    assert response.status_code == status.INTERNAL_SERVER_ERROR
    body = response.get_json()
    assert body['success'] is False
    assert 'boom' not in body['data']['message']


def test_check_store_unavailable(app, client):
    """No token, no form."""
    popup = app.extensions['login_popup']
    with mock.patch.object(popup.nonces, 'issue') as issue:
        issue.side_effect = StoreUnavailable('no redis')
        response = client.post('/login-popup/ajax',
                               data={'action': 'login_popup_check'})
    assert response.status_code == status.INTERNAL_SERVER_ERROR


def test_authentication_error_keeps_token(app, client):
    """A failing filter still hands the client a token it can use."""
    popup = app.extensions['login_popup']
    failing = {'on': True}

    @popup.hooks.filter('credentials')
    def credentials(value):
        if failing['on']:
            raise RuntimeError('broken filter')
        return value

    check = client.post('/login-popup/ajax',
                        data={'action': 'login_popup_check'})
    token = check.get_json()['data']['sessionToken']
    form = {'action': 'login_popup_authenticate', 'sessionToken': token,
            'login': 'alice', 'password': 'thepassword'}
    response = client.post('/login-popup/ajax', data=form)
    assert response.status_code == status.INTERNAL_SERVER_ERROR
    data = response.get_json()['data']
    assert data['kind'] == 'unexpected_error'
    assert data['sessionToken'] and data['sessionToken'] != token

    failing['on'] = False
    form['sessionToken'] = data['sessionToken']
    response = client.post('/login-popup/ajax', data=form)
    assert response.status_code == status.OK
    assert response.get_json()['success'] is True
