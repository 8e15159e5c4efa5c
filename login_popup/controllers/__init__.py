"""
Request controllers for the login popup.

Controllers take plain request data and return ``(data, status, headers)``
or an outcome object; they don't touch the Flask request or response, which
are the business of :mod:`login_popup.routes`.
"""
