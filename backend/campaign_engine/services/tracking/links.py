"""Open/Click Tracking links - pixel markup, link rewriting and tracking ids."""
import re
import secrets
import urllib.parse
from typing import Optional

from campaign_engine.core.config import settings

PIXEL_PATH = "/tracking/pixel"
CLICK_PATH = "/tracking/click"
UNSUBSCRIBE_PATH = "/tracking/unsubscribe"

_HREF_RE = re.compile(r"""href=(["'])([^"']+)\1""", re.IGNORECASE)

_HTML_SHELL = (
    "<!DOCTYPE html>\n<html>\n<head>\n"
    '<meta charset="UTF-8">\n'
    '<meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
    "</head>\n<body>\n{content}\n</body>\n</html>"
)


def generate_tracking_id() -> str:
    """Opaque 64-char token, independent of any database id."""
    return secrets.token_hex(32)


def _base(base_url: Optional[str]) -> str:
    return (base_url or settings.TRACKING_BASE_URL).rstrip("/")


def generate_tracking_pixel_url(tracking_id: str, base_url: str = None) -> str:
    return f"{_base(base_url)}{PIXEL_PATH}/{tracking_id}"


def generate_tracked_link(tracking_id: str, original_url: str, base_url: str = None) -> str:
    encoded = urllib.parse.quote(original_url, safe="")
    return f"{_base(base_url)}{CLICK_PATH}/{tracking_id}?url={encoded}"


def generate_unsubscribe_url(tracking_id: str, base_url: str = None) -> str:
    return f"{_base(base_url)}{UNSUBSCRIBE_PATH}/{tracking_id}"


def add_tracking_pixel(html_body: str, tracking_id: str, base_url: str = None) -> str:
    pixel_url = generate_tracking_pixel_url(tracking_id, base_url)
    pixel_tag = f'<img src="{pixel_url}" width="1" height="1" border="0" style="display:block;width:1px;height:1px;border:0;" alt="" />'

    if not html_body or not html_body.strip():
        return _HTML_SHELL.format(content=pixel_tag)
    if "</body>" in html_body:
        return html_body.replace("</body>", f"{pixel_tag}</body>", 1)
    if "</html>" in html_body:
        return html_body.replace("</html>", f"{pixel_tag}</html>", 1)
    return _HTML_SHELL.format(content=f"{html_body}\n{pixel_tag}")


def _should_rewrite(url: str, base_url: str) -> bool:
    lowered = url.strip().lower()
    if lowered.startswith(("mailto:", "tel:", "#")):
        return False
    # Already a tracking link (click, unsubscribe or pixel)
    if url.startswith(f"{base_url}/tracking/") or "/tracking/click/" in url:
        return False
    return True


def add_click_tracking(html_body: str, tracking_id: str, base_url: str = None) -> str:
    base = _base(base_url)

    def _replace(match: re.Match) -> str:
        url = match.group(2)
        if not _should_rewrite(url, base):
            return match.group(0)
        return f'href="{generate_tracked_link(tracking_id, url, base)}"'

    return _HREF_RE.sub(_replace, html_body or "")


def add_unsubscribe_footer(html_body: str, tracking_id: str, base_url: str = None) -> str:
    footer = (
        '<p style="font-size:11px;color:#888888;margin-top:24px;">'
        f'<a href="{generate_unsubscribe_url(tracking_id, base_url)}" style="color:#888888;">Unsubscribe</a>'
        "</p>"
    )
    if "</body>" in (html_body or ""):
        return html_body.replace("</body>", f"{footer}</body>", 1)
    return (html_body or "") + footer


def inject_tracking(
    html_body: str,
    tracking_id: str,
    track_opens: bool = True,
    track_clicks: bool = True,
    base_url: str = None,
) -> str:
    """Prepare outbound html: rewrite links, add unsubscribe footer and pixel.

    Links are rewritten before the footer and pixel are added so neither of
    those is ever wrapped in a click redirect.
    """
    html = html_body or ""
    if track_clicks:
        html = add_click_tracking(html, tracking_id, base_url)
    html = add_unsubscribe_footer(html, tracking_id, base_url)
    if track_opens:
        html = add_tracking_pixel(html, tracking_id, base_url)
    return html
