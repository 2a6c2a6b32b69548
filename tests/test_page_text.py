"""Tests for page text extraction."""

from reverse_image.crawl.page_text import (
    BODY_TEXT_LIMIT,
    PAGE_TEXT_LIMIT,
    extract_page_text,
    snippet,
)

HTML = """
<html>
  <head>
    <title>  Red Mug
      Store </title>
    <meta name="Description" content="Buy   the best mugs">
    <style>body { color: red; }</style>
  </head>
  <body>
    <h1>Mugs</h1>
    <script>var tracking = 1;</script>
    <p>Free shipping
       on all orders.</p>
  </body>
</html>
"""


class TestExtractPageText:
    def test_title_description_and_body(self):
        text = extract_page_text(HTML)
        title, description, body = text.split("\n")
        assert title == "Red Mug Store"
        assert description == "Buy the best mugs"
        assert body == "Mugs Free shipping on all orders."

    def test_scripts_and_styles_are_dropped(self):
        text = extract_page_text(HTML)
        assert "tracking" not in text
        assert "color" not in text

    def test_empty_html(self):
        assert extract_page_text(None) == ""
        assert extract_page_text("") == ""

    def test_missing_parts(self):
        assert extract_page_text("<html><body>only body</body></html>") == "\n\nonly body"

    def test_body_is_capped(self):
        html = "<html><body>" + "word " * 5000 + "</body></html>"
        text = extract_page_text(html)
        assert len(text) <= PAGE_TEXT_LIMIT
        assert len(text.split("\n")[2]) == BODY_TEXT_LIMIT

    def test_total_is_capped(self):
        html = f"<html><head><title>{'t' * 6000}</title></head><body>{'b ' * 4000}</body></html>"
        assert len(extract_page_text(html)) == PAGE_TEXT_LIMIT


def test_snippet_truncates():
    assert snippet("a" * 900) == "a" * 500
    assert snippet("") == ""
