from datetime import datetime

from inkpress.feeds import (
    FeedRegistry,
    RSSGenerator,
    SitemapGenerator,
    create_default_feed_registry,
)

CONFIG = {
    "title": "Notes & Co",
    "description": "A <blog>",
    "url": "https://ex.org",
    "baseurl": "",
}


class FakePage:
    def __init__(
        self, title, url, date, kind="post", hidden=False, description="", dated=True
    ):
        self.title = title
        self.url = url
        self.date = date
        self.kind = kind
        self.hidden = hidden
        self.description = description
        self.dated = dated
        self.slug = url.strip("/").split("/")[-1] or "index"

    @property
    def is_post(self):
        return self.kind in ("post", "draft")


def _pages():
    return [
        FakePage("Old", "/2024/01/01/old/", datetime(2024, 1, 1)),
        FakePage("New & shiny", "/2024/02/01/new/", datetime(2024, 2, 1, 8, 30)),
        FakePage("Secret", "/2024/03/01/secret/", datetime(2024, 3, 1), hidden=True),
        FakePage("About", "/about/", datetime(2023, 6, 1), kind="page", description="Me"),
    ]


def test_sitemap_lists_visible_items_sorted_by_url():
    xml = SitemapGenerator().generate(_pages(), CONFIG)
    assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>\n<urlset')
    assert xml.count("<url>") == 3
    assert "secret" not in xml
    locs = [line for line in xml.splitlines() if "<loc>" in line]
    assert locs[0] == (
        "  <url><loc>https://ex.org/2024/01/01/old/</loc>"
        "<lastmod>2024-01-01</lastmod></url>"
    )
    assert "<loc>https://ex.org/about/</loc>" in locs[-1]


def test_rss_lists_visible_posts_newest_first():
    xml = RSSGenerator().generate(_pages(), CONFIG)
    assert "<title>Notes &amp; Co</title>" in xml
    assert "<description>A &lt;blog&gt;</description>" in xml
    assert "<link>https://ex.org/</link>" in xml
    # Newest visible post, not the hidden one and not the build time
    assert "<lastBuildDate>Thu, 01 Feb 2024 08:30:00 +0000</lastBuildDate>" in xml
    assert xml.index("New &amp; shiny") < xml.index("<title>Old</title>")
    assert "Secret" not in xml
    assert "About" not in xml
    # Description falls back to the title
    assert "<description>Old</description>" in xml


def test_feeds_include_base_path():
    config = {**CONFIG, "baseurl": "/blog"}
    xml = RSSGenerator().generate(_pages(), config)
    assert "<link>https://ex.org/blog/</link>" in xml
    assert "<guid>https://ex.org/blog/2024/01/01/old/</guid>" in xml


def test_rss_without_posts_has_no_build_date():
    xml = RSSGenerator().generate([], CONFIG)
    assert "lastBuildDate" not in xml
    assert xml.endswith("</channel></rss>\n")


def test_feeds_disabled_without_site_url(tmp_path):
    config = {"title": "T", "url": "", "baseurl": "/blog"}
    for generator in create_default_feed_registry():
        assert not generator.enabled(config)
        assert generator.generate(_pages(), config) is None
    assert create_default_feed_registry().generate_all(tmp_path, _pages(), config) == []
    assert list(tmp_path.iterdir()) == []


def test_generate_all_writes_files(tmp_path):
    generated = create_default_feed_registry().generate_all(tmp_path, iter(_pages()), CONFIG)
    assert generated == ["sitemap.xml", "feed.xml"]
    assert (tmp_path / "sitemap.xml").read_text(encoding="utf-8").count("<url>") == 3
    assert "<item>" in (tmp_path / "feed.xml").read_text(encoding="utf-8")


def test_custom_registry():
    registry = FeedRegistry()
    assert list(registry) == []
    registry.register(SitemapGenerator())
    assert [g.filename for g in registry] == ["sitemap.xml"]


def test_feeds_omit_dates_taken_from_file_mtime():
    pages = [
        FakePage("Draft", "/drafts/idea/", datetime(2030, 5, 5), kind="draft", dated=False),
        FakePage("Old", "/2024/01/01/old/", datetime(2024, 1, 1)),
        FakePage("Contact", "/contact/", datetime(2030, 5, 5), kind="page", dated=False),
    ]
    sitemap = SitemapGenerator().generate(pages, CONFIG)
    assert "  <url><loc>https://ex.org/contact/</loc></url>" in sitemap
    assert "2030" not in sitemap

    rss = RSSGenerator().generate(pages, CONFIG)
    assert "<lastBuildDate>Mon, 01 Jan 2024 00:00:00 +0000</lastBuildDate>" in rss
    assert rss.count("<pubDate>") == 1
    assert "2030" not in rss
