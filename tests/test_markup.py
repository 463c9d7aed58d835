"""Tests for HTML to BBCode conversion."""
from bs4 import BeautifulSoup

from punparse.extraction.markup import contains_smilies, to_bbcode


def _message(inner: str):
    soup = BeautifulSoup(f'<div class="postmsg">{inner}</div>', "html.parser")
    return soup.select_one(".postmsg")


class TestToBBCode:
    """Test conversion of each supported element."""

    def test_plain_paragraph(self):
        assert to_bbcode(_message("<p>Hello   world</p>")) == "Hello world"

    def test_paragraphs_are_separated_by_blank_line(self):
        assert to_bbcode(_message("<p>One</p><p>Two</p>")) == "One\n\nTwo"

    def test_line_break(self):
        assert to_bbcode(_message("<p>One<br />Two</p>")) == "One\nTwo"

    def test_bold_italic_underline(self):
        html = '<p><strong>b</strong> <em>i</em> <span class="bbu">u</span></p>'
        assert to_bbcode(_message(html)) == "[b]b[/b] [i]i[/i] [u]u[/u]"

    def test_link(self):
        html = '<p><a href="http://example.com/">site</a></p>'
        assert to_bbcode(_message(html)) == "[url=http://example.com/]site[/url]"

    def test_post_image(self):
        html = '<p><img class="postimg" src="http://example.com/a.png" alt="a" /></p>'
        assert to_bbcode(_message(html)) == "[img]http://example.com/a.png[/img]"

    def test_smiley_becomes_its_alt_text(self):
        html = '<p>Hi <img src="img/smilies/smile.png" alt=":)" /></p>'
        assert to_bbcode(_message(html)) == "Hi :)"

    def test_quote_with_author(self):
        html = ('<blockquote><div class="incqbox"><h4>Alice wrote:</h4>'
                '<p>quoted text</p></div></blockquote><p>reply</p>')
        assert to_bbcode(_message(html)) == "[quote=Alice]quoted text[/quote]reply"

    def test_quote_without_author(self):
        html = '<blockquote><div class="incqbox"><p>quoted</p></div></blockquote>'
        assert to_bbcode(_message(html)) == "[quote]quoted[/quote]"

    def test_code_box_keeps_whitespace(self):
        html = ('<div class="codebox"><div class="incqbox"><h4>Code:</h4>'
                '<div class="scrollbox"><pre>if x:\n    y()</pre></div></div></div>')
        assert to_bbcode(_message(html)) == "[code]if x:\n    y()[/code]"

    def test_comments_are_dropped(self):
        assert to_bbcode(_message("<p>a<!-- hidden -->b</p>")) == "ab"

    def test_nested_formatting(self):
        html = '<p><strong>bold <em>and italic</em></strong></p>'
        assert to_bbcode(_message(html)) == "[b]bold [i]and italic[/i][/b]"


class TestContainsSmilies:
    """Test smiley detection."""

    def test_smiley_found(self):
        assert contains_smilies(_message('<p><img src="img/smilies/wink.png" alt=";)" /></p>'))

    def test_post_and_signature_images_are_not_smilies(self):
        html = ('<p><img class="postimg" src="a.png" alt="" />'
                '<img class="sigimage" src="b.png" alt="" /></p>')
        assert not contains_smilies(_message(html))

    def test_no_images(self):
        assert not contains_smilies(_message("<p>text</p>"))
