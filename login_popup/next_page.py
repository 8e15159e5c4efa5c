"""Redirect target handling."""
from typing import Iterable, Pattern, Union
from urllib.parse import urlsplit, urlunsplit, unquote_plus
import re


def strip_trigger_params(url: str, params: Iterable[str]) -> str:
    """
    Remove the popup trigger parameters from the query of ``url``.

    The rest of the query is left as it was, segment for segment, so that
    parameters without a value (``?preview``) survive unchanged.
    """
    scheme, netloc, path, query, fragment = urlsplit(url)
    params = set(params)
    kept = [segment for segment in query.split('&')
            if segment and unquote_plus(segment.split('=', 1)[0]) not in params]
    return urlunsplit((scheme, netloc, path, '&'.join(kept), fragment))


def good_next_page(next_page: str, pattern: Union[str, Pattern]) -> bool:
    """
    True if ``next_page`` is an internal URL.

    Only the scheme, host and path are checked against ``pattern``; the query
    and fragment don't change where the browser goes. Host names are compared
    in lower case.
    """
    if not next_page or len(next_page) >= 2000:
        return False
    if '\\' in next_page or any(ord(c) < 0x20 for c in next_page):
        return False
    try:
        scheme, netloc, path, _, _ = urlsplit(next_page)
    except ValueError:
        return False
    if not scheme and not netloc and not path.startswith('/'):
        return False
    target = urlunsplit((scheme, netloc.lower(), path, '', ''))
    return bool(re.match(pattern, target))


def good_redirect(next_page: str, default: str,
                  pattern: Union[str, Pattern]) -> str:
    """Checks if a next_page is good and returns it.

    If not good, it will return the default.
    """
    return next_page if good_next_page(next_page, pattern) else default
