"""HTML pages returned to the user agent.

All interpolated values are HTML-escaped.
"""

from __future__ import annotations

from html import escape
from string import Template

_REDIRECT_PAGE = Template(
    """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="referrer" content="no-referrer">
<meta http-equiv="refresh" content="0; url=$url">
<title>Redirecting to the service provider</title>
</head>
<body>
<p>Redirecting to the service provider. If nothing happens, <a id="redirect" href="$url">click here</a>.</p>
</body>
</html>
"""
)

_MESSAGE_PAGE = Template(
    """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>$title</title>
</head>
<body>
<h1>$title</h1>
<p>$message</p>
</body>
</html>
"""
)


def redirect_page(url: str) -> str:
    """Page sending the user agent to `url` without an HTTP redirect."""
    return _REDIRECT_PAGE.substitute(url=escape(url, quote=True))


def message_page(title: str, message: str) -> str:
    return _MESSAGE_PAGE.substitute(title=escape(title), message=escape(message))


def success_page() -> str:
    return message_page(
        "Authentication successful",
        "The token was stored. You can close this window.",
    )
