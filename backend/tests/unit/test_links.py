"""Unit tests for tracking link generation and injection."""
from urllib.parse import unquote
from campaign_engine.services.tracking.links import (
    add_click_tracking,
    add_tracking_pixel,
    generate_tracked_link,
    generate_tracking_id,
    inject_tracking,
)

BASE = "https://track.example.com"


class TestTrackingIds:
    """Tests for tracking id generation."""

    def test_ids_are_opaque_and_unique(self):
        ids = {generate_tracking_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i) == 64 for i in ids)


class TestTrackingPixel:
    """Tests for pixel placement."""

    def test_inserted_before_body_close(self):
        html = add_tracking_pixel("<html><body><p>Hi</p></body></html>", "tid", BASE)
        assert f'src="{BASE}/tracking/pixel/tid"' in html
        assert html.index("/tracking/pixel/tid") < html.index("</body>")

    def test_inserted_before_html_close_without_body(self):
        html = add_tracking_pixel("<html><p>Hi</p></html>", "tid", BASE)
        assert html.index("/tracking/pixel/tid") < html.index("</html>")

    def test_bare_content_is_wrapped(self):
        html = add_tracking_pixel("<p>Hi</p>", "tid", BASE)
        assert html.startswith("<!DOCTYPE html>")
        assert "<p>Hi</p>" in html
        assert "/tracking/pixel/tid" in html


class TestClickTracking:
    """Tests for link rewriting."""

    def test_http_links_are_rewritten(self):
        html = add_click_tracking('<a href="https://example.com/a?b=1">x</a>', "tid", BASE)
        assert f"{BASE}/tracking/click/tid?url=" in html
        encoded = html.split("url=")[1].split('"')[0]
        assert unquote(encoded) == "https://example.com/a?b=1"

    def test_mailto_and_tel_are_skipped(self):
        source = '<a href="mailto:a@example.com">m</a><a href="tel:+15551234">t</a><a href="#top">h</a>'
        assert add_click_tracking(source, "tid", BASE) == source

    def test_already_tracked_links_are_skipped(self):
        tracked = generate_tracked_link("tid", "https://example.com", BASE)
        source = f'<a href="{tracked}">x</a>'
        assert add_click_tracking(source, "tid", BASE) == source

    def test_single_quoted_href(self):
        html = add_click_tracking("<a href='https://example.com'>x</a>", "tid", BASE)
        assert "/tracking/click/tid" in html


class TestInjectTracking:
    """Tests for full outbound html preparation."""

    def test_pixel_and_unsubscribe_not_click_wrapped(self):
        html = inject_tracking('<html><body><a href="https://example.com">x</a></body></html>', "tid", base_url=BASE)
        assert html.count("/tracking/click/tid") == 1
        assert f"{BASE}/tracking/unsubscribe/tid" in html
        assert f"{BASE}/tracking/pixel/tid" in html

    def test_switches_disable_tracking(self):
        html = inject_tracking(
            '<html><body><a href="https://example.com">x</a></body></html>', "tid",
            track_opens=False, track_clicks=False, base_url=BASE,
        )
        assert "/tracking/click/" not in html
        assert "/tracking/pixel/" not in html
        assert "/tracking/unsubscribe/tid" in html
