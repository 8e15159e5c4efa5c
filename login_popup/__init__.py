"""
Login popup service.

Shows a modal login form on any page of a site when the page is opened with
``?sl=true`` or ``?show_login=true``, and logs the visitor in with an
asynchronous request instead of a trip to the login page.

The service answers two requests on ``/login-popup/ajax``:

``login_popup_check``
    Is the visitor logged in? If not, here is the form and a single-use
    anti-forgery token. See :mod:`.controllers.popup`.
``login_popup_authenticate``
    Check the submitted credentials: rate limit, token, bot challenge, user
    directory, second factor. See :mod:`.controllers.authentication`.

:mod:`.client` holds the state machine that drives the popup on the page.
"""
