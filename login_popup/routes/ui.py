"""Provides Flask integration for the login popup."""

from typing import Any, Dict
from datetime import timedelta
from http import HTTPStatus as status

from flask import Blueprint, request, current_app, make_response, jsonify, \
    Response

from ..service import LoginPopup
from ..services.rate_limiter import client_identity
from ..services.exceptions import StoreUnavailable
from ..controllers.authentication import login_response
from ..controllers.popup import NO_CACHE_HEADERS

import logging

logger = logging.getLogger(__name__)
blueprint = Blueprint('login_popup', __name__, url_prefix='/login-popup')

CHECK = 'login_popup_check'
AUTHENTICATE = 'login_popup_authenticate'

GENERIC_ERROR = 'An error occurred. Please try again.'


def set_cookies(response: Response, data: dict) -> None:
    """
    Update a :class:`.Response` with cookies in controller data.

    Contollers seeking to update cookies must include a 'cookies' key
    in their response data.
    """
    cookies = data.pop('cookies', None)
    if cookies is None:
        return None
    for cookie_key, (cookie_value, expires) in cookies.items():
        cookie_name = current_app.config[f'{cookie_key.upper()}_NAME']
        max_age = timedelta(seconds=expires)
        logger.debug('Set cookie %s, max_age %s', cookie_name, max_age)
        params: Dict[str, Any] = dict(httponly=True)
        domain = current_app.config.get('AUTH_SESSION_COOKIE_DOMAIN')
        if domain:
            params['domain'] = domain
        if current_app.config['AUTH_SESSION_COOKIE_SECURE']:
            # Setting samesite to lax, to allow reasonable links to
            # authenticated views using GET requests.
            params.update({'secure': True, 'samesite': 'lax'})
        response.set_cookie(cookie_name, cookie_value, max_age=max_age,
                            **params)


@blueprint.after_request
def apply_response_headers(response: Response) -> Response:
    """Keep status checks and login results out of every cache."""
    for name, value in NO_CACHE_HEADERS.items():
        response.headers[name] = value
    return response


def _failure(message: str, code: int) -> Response:
    response = make_response(jsonify({
        'success': False,
        'data': {'message': message, 'refreshChallenge': True}
    }), code)
    return response


def check() -> Response:
    """Whether the visitor should see the login form."""
    popup = LoginPopup.current()
    cookie_name = current_app.config['AUTH_SESSION_COOKIE_NAME']
    session_cookie = request.cookies.get(cookie_name, None)
    current_url = request.form.get('current_url') or request.referrer or ''
    try:
        data, code, headers = popup.status.check_status(session_cookie,
                                                        current_url)
    except StoreUnavailable as e:
        logger.error('Could not issue popup token: %s', e)
        return _failure(GENERIC_ERROR, status.INTERNAL_SERVER_ERROR)
    return make_response(jsonify(data), code, headers)


def authenticate() -> Response:
    """Log in with the credentials submitted from the popup."""
    popup = LoginPopup.current()
    identity = client_identity(request.headers, request.remote_addr,
                               popup.hooks)
    destination = request.form.get('redirect_to', '')
    logger.debug('Request to log in from the popup')
    attempt = popup.authenticator.authenticate(request.form, identity,
                                               destination)
    data, code, headers = login_response(attempt,
                                         popup.sessions.generate_cookie)
    # Flask puts cookie-setting methods on the response, so we do that here
    # instead of in the controller.
    cookies = {'cookies': data.pop('cookies', None)}
    response = make_response(jsonify(data), code, headers)
    set_cookies(response, cookies)
    return response


ACTIONS = {
    CHECK: check,
    AUTHENTICATE: authenticate,
}


@blueprint.route('/ajax', methods=['POST'])
def ajax() -> Response:
    """Dispatch an asynchronous popup request on its ``action``."""
    handler = ACTIONS.get(request.form.get('action', ''))
    if handler is None:
        return _failure('Unknown action.', status.BAD_REQUEST)
    try:
        return handler()
    except Exception:
        logger.exception('Unhandled error in %s', request.form.get('action'))
        return _failure(GENERIC_ERROR, status.INTERNAL_SERVER_ERROR)


@blueprint.route('/status', methods=['GET'])
def popup_status() -> Response:
    """Get if the app is running."""
    return make_response("OK")
