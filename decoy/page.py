from __future__ import annotations

from .filler import pick_fragment

BODY_END = "</body>"

LANDING_PAGE = """<!DOCTYPE html>
<html>
<head>
<title>Welcome to nginx!</title>
<style>
    body {
        width: 35em;
        margin: 0 auto;
        font-family: Tahoma, Verdana, Arial, sans-serif;
    }
</style>
</head>
<body>
<h1>Welcome to nginx!</h1>
<p>If you see this page, the nginx web server is successfully installed and
working. Further configuration is required.</p>

<p>For online documentation and support please refer to
<a href="http://nginx.org/">nginx.org</a>.<br/>
Commercial support is available at
<a href="http://nginx.com/">nginx.com</a>.</p>

<p><em>Thank you for using nginx.</em></p>
</body>
</html>"""


def splice_before_body_end(page: str, insert: str) -> str:
    """Insert ``insert`` right before the first ``</body>``.

    Pages without a closing body tag get the insert appended at the end.
    """
    pos = page.find(BODY_END)
    if pos == -1:
        pos = len(page)
    return page[:pos] + insert + page[pos:]


def render_padding(fragment: str) -> str:
    return f"<p>Padding: {len(fragment)} bytes</p>\n<p>{fragment}</p>\n"


def render_landing(filler: str, template: str = LANDING_PAGE) -> tuple[str, int]:
    """Build one landing page response body.

    Returns the HTML and the number of filler bytes embedded in it.
    """
    fragment = pick_fragment(filler)
    return splice_before_body_end(template, render_padding(fragment)), len(fragment)
