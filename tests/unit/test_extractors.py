"""Tests for the pdf, text, url, youtube and image extraction adapters."""
import io

import httpx
import pypdf
import pytest
from youtube_transcript_api import TranscriptsDisabled

from papertrail.errors import ExtractionError, FetchError, InvalidUrlError, NoTranscriptError
from papertrail.extract import (
    describe_image,
    extract_pdf,
    extract_text,
    extract_video_id,
    fetch_transcript,
    read_page,
    scrape_url,
)
from papertrail.extract import youtube
from papertrail.extract.web import parse_page
from tests.fakes import FakeModel

ARTICLE_HTML = """
<html>
<head>
  <title>Coral Reefs Under Pressure</title>
  <meta name="description" content="How warming seas bleach reefs.">
  <meta property="og:image" content="/media/hero.jpg">
  <script>var tracking = true;</script>
</head>
<body>
  <nav>Home | About</nav>
  <article>
    <h1>Coral Reefs</h1>
    <p>Reefs   cover less than one percent of the ocean floor.</p>
    <img src="https://cdn.example.org/reef.png">
    <img src="/img/icon.png" width="32" height="32">
    <img src="https://ads.example.org/pixel.gif">
    <img src="data:image/png;base64,AAAA">
    <img src="/img/chart.png" width="640">
  </article>
  <footer>Copyright</footer>
</body>
</html>
"""


class TestParsePage:
    def test_extracts_title_description_and_main_text(self):
        page = parse_page(ARTICLE_HTML, "https://news.example.org/reefs")

        assert page.title == "Coral Reefs Under Pressure"
        assert page.description == "How warming seas bleach reefs."
        assert page.content == "Coral Reefs Reefs cover less than one percent of the ocean floor."

    def test_featured_images_are_absolute_and_filtered(self):
        page = parse_page(ARTICLE_HTML, "https://news.example.org/reefs")

        assert page.image_urls == [
            "https://news.example.org/media/hero.jpg",
            "https://cdn.example.org/reef.png",
            "https://news.example.org/img/chart.png",
        ]

    def test_script_only_page_has_no_text(self):
        html = "<html><head><style>body {}</style></head><body><script>run()</script></body></html>"
        page = parse_page(html, "https://example.org/app")

        assert page.content == ""
        assert page.title == "https://example.org/app"

    def test_falls_back_to_body_and_truncates(self):
        html = "<html><body><div>" + "lorem ipsum " * 100 + "</div></body></html>"
        page = parse_page(html, "https://example.org", max_chars=50)
        assert len(page.content) == 50

    def test_image_list_is_capped(self):
        images = "".join(f'<img src="/photo-{i}.jpg">' for i in range(10))
        page = parse_page(f"<html><body><main>text {images}</main></body></html>", "https://example.org")
        assert len(page.image_urls) == 5

    def test_malformed_image_url_is_skipped(self):
        html = (
            '<html><head><meta property="og:image" content="http://[broken/hero.png"></head>'
            '<body><main>Reef text <img src="/ok.png"></main></body></html>'
        )

        page = parse_page(html, "https://example.org/reefs")

        assert page.content == "Reef text"
        assert page.image_urls == ["https://example.org/ok.png"]


class TestScrapeUrl:
    async def test_fetches_and_parses(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, text=ARTICLE_HTML, headers={"content-type": "text/html"})
        )
        page = await scrape_url("https://news.example.org/reefs", transport=transport)
        assert page.title == "Coral Reefs Under Pressure"

    async def test_read_page_bounds_text(self):
        html = "<html><body><article>" + "word " * 4000 + "</article></body></html>"
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=html))
        page = await read_page("https://example.org/long", transport=transport)
        assert len(page.content) == 8000

    async def test_http_error_raises_fetch_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        with pytest.raises(FetchError, match="404"):
            await scrape_url("https://example.org/missing", transport=transport)

    async def test_rejects_non_http_urls(self):
        with pytest.raises(InvalidUrlError):
            await scrape_url("ftp://example.org/file")


class TestYoutube:
    @pytest.mark.parametrize("url", [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ?t=42",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "https://www.youtube.com/v/dQw4w9WgXcQ",
    ])
    def test_extracts_video_id(self, url):
        assert extract_video_id(url) == "dQw4w9WgXcQ"

    def test_non_youtube_url_has_no_id(self):
        assert extract_video_id("https://example.com/not-youtube") is None

    async def test_invalid_url_is_an_extraction_error(self):
        with pytest.raises(ExtractionError, match="Could not extract video ID"):
            await fetch_transcript("https://example.com/not-youtube")

    async def test_joins_transcript(self, monkeypatch):
        monkeypatch.setattr(youtube, "_fetch_snippets", lambda video_id: "hello there world")
        assert await fetch_transcript("https://youtu.be/dQw4w9WgXcQ") == "hello there world"

    async def test_missing_transcript(self, monkeypatch):
        def disabled(video_id):
            raise TranscriptsDisabled(video_id)

        monkeypatch.setattr(youtube, "_fetch_snippets", disabled)
        with pytest.raises(NoTranscriptError, match="No transcript available"):
            await fetch_transcript("https://youtu.be/dQw4w9WgXcQ")

    async def test_blank_transcript(self, monkeypatch):
        monkeypatch.setattr(youtube, "_fetch_snippets", lambda video_id: "   ")
        with pytest.raises(NoTranscriptError):
            await fetch_transcript("https://youtu.be/dQw4w9WgXcQ")


class TestPdfAndText:
    def test_invalid_pdf_raises(self):
        with pytest.raises(ExtractionError, match="Failed to parse PDF"):
            extract_pdf(b"this is not a pdf")

    def test_blank_pdf_has_no_text(self):
        writer = pypdf.PdfWriter()
        writer.add_blank_page(width=200, height=200)
        buffer = io.BytesIO()
        writer.write(buffer)

        assert extract_pdf(buffer.getvalue()) == ""

    def test_text_replaces_undecodable_bytes(self):
        assert extract_text("café".encode("utf-8") + b"\xff") == "café�"


async def test_describe_image_sends_vision_request():
    model = FakeModel(completion="## Extracted Text\nSTOP\n\n## Description\nA road sign.")

    text = await describe_image("http://files.test/sources/p1/sign.png", model)

    assert text.startswith("## Extracted Text")
    call = model.complete_calls[0]
    assert call["max_tokens"] == 2000
    content = call["messages"][0]["content"]
    assert content[1] == {"type": "image_url", "image_url": {"url": "http://files.test/sources/p1/sign.png"}}
    assert "Extract ALL text" in content[0]["text"]
