"""Tests for HTML, link and diagram-directive sanitization."""

from diagram_forge.config import SanitizerConfig
from diagram_forge.content.models import CandidateContent
from diagram_forge.content.sanitizer import (
    LINK_PLACEHOLDER,
    Sanitizer,
    sanitize_text,
    strip_diagram_directives,
    strip_html,
    strip_urls,
)


def test_strip_html_removes_script_with_contents():
    assert strip_html("<script>alert('xss')</script>Hello") == "Hello"
    assert strip_html("<SCRIPT type='text/javascript'>x()</SCRIPT >Hi") == "Hi"


def test_strip_html_removes_style_with_contents():
    assert strip_html("<style>body { color: red }</style>Diagram") == "Diagram"


def test_strip_html_keeps_inner_text():
    assert strip_html("<p>Hello <b>world</b></p>") == "Hello world"
    assert strip_html("<!-- hidden --><div>Flow</div>") == "Flow"


def test_strip_html_handles_spliced_tags():
    assert strip_html("<<b>b>bold") == "bold"
    assert strip_html("<scr<script>x</script>ipt>alert(1)</script>") == ""


def test_strip_html_leaves_comparisons_alone():
    assert strip_html("a < b and c > d") == "a < b and c > d"


def test_strip_html_none_and_empty():
    assert strip_html(None) is None
    assert strip_html("") == ""


def test_strip_urls_replaces_and_reports():
    text, urls = strip_urls("Check out https://spam.com for deals! http://x.io/a?b=1")
    assert text == f"Check out {LINK_PLACEHOLDER} for deals! {LINK_PLACEHOLDER}"
    assert urls == ["https://spam.com", "http://x.io/a?b=1"]


def test_strip_urls_none():
    assert strip_urls(None) == (None, [])


def test_sanitize_text_combines_both():
    assert sanitize_text('<a href="https://evil.com">click</a> see https://evil.com') == (
        f"click see {LINK_PLACEHOLDER}"
    )


def test_sanitize_text_is_idempotent():
    samples = [
        "Plain text",
        "  padded  ",
        "<b>Bold</b> https://a.com/x",
        "<<b>b>https://b.com",
        "a <https://c.com b",
        "Visit http://x.io and <script>https://y.io</script> now",
        LINK_PLACEHOLDER,
        "",
        None,
    ]
    for sample in samples:
        once = sanitize_text(sample)
        assert sanitize_text(once) == once, sample


def test_placeholder_is_not_a_url():
    assert strip_urls(LINK_PLACEHOLDER) == (LINK_PLACEHOLDER, [])


def test_strip_diagram_directives():
    source = (
        "%%{init: {'theme': 'dark'}}%%\n"
        "graph TD\n"
        "  A-->B\n"
        '  click A href "https://evil.com"\n'
        "  click B call doEvil()\n"
        '  callback C "doEvil"\n'
    )
    cleaned = strip_diagram_directives(source)
    assert "graph TD" in cleaned
    assert "A-->B" in cleaned
    assert "click" not in cleaned
    assert "%%{" not in cleaned
    assert "callback" not in cleaned
    assert "evil" not in cleaned


def test_sanitizer_disabled_is_identity():
    sanitizer = Sanitizer(SanitizerConfig(enabled=False))
    assert sanitizer.sanitize_field("<b>x</b> https://a.com") == "<b>x</b> https://a.com"


def test_sanitizer_without_url_stripping():
    sanitizer = Sanitizer(SanitizerConfig(strip_urls=False))
    assert sanitizer.sanitize_field("<b>x</b> https://a.com") == "x https://a.com"
    assert Sanitizer().sanitize_field("https://a.com", strip_urls=False) == "https://a.com"


def test_sanitize_content_returns_clean_copy():
    content = CandidateContent(
        id="c1",
        title="<i>Login</i> flow",
        summary="See https://docs.example.com",
        source_text='graph TD\n  A-->B\n  click A href "https://x.com"',
    )
    cleaned = Sanitizer().sanitize_content(content)

    assert cleaned.id == "c1"
    assert cleaned.title == "Login flow"
    assert cleaned.summary == f"See {LINK_PLACEHOLDER}"
    assert cleaned.source_text == "graph TD\n  A-->B"
    # input is untouched
    assert content.title == "<i>Login</i> flow"


def test_sanitize_content_source_sanitizer_disabled():
    source = 'graph TD\n  click A href "https://x.com"'
    content = CandidateContent(id="c1", title="t", source_text=source)
    cleaned = Sanitizer(SanitizerConfig(diagram_source_enabled=False)).sanitize_content(content)
    assert cleaned.source_text == source
