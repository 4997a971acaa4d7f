"""
Unit tests for page metadata generation.
"""
from urllib.parse import parse_qs, urlparse

from ogforge.services.metadata_service import render_meta_tags

TWITTERBOT = "Twitterbot/1.0"
DESKTOP = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


class TestPageMetadata:
    """Test Open Graph / Twitter tag generation."""

    def test_core_tags(self, metadata_service):
        # Act
        tags = metadata_service.page_metadata("/blog/hello", "Hello", description="A post")

        # Assert
        assert tags["og:title"] == "Hello"
        assert tags["og:description"] == "A post"
        assert tags["og:url"] == "https://og.example.com/blog/hello"
        assert tags["og:image:width"] == "1200"
        assert tags["og:image:height"] == "630"
        assert tags["twitter:card"] == "summary_large_image"

    def test_image_url_points_at_render_endpoint(self, metadata_service):
        tags = metadata_service.page_metadata("/blog/hello", "Hello", description="A post")

        url = urlparse(tags["og:image"])
        assert url.path == "/og/image/simple"
        assert parse_qs(url.query) == {"title": ["Hello"], "description": ["A post"]}

    def test_path_is_normalized(self, metadata_service):
        tags = metadata_service.page_metadata("about", "About")
        assert tags["og:url"] == "https://og.example.com/about"

    def test_optional_tags_omitted(self, metadata_service):
        tags = metadata_service.page_metadata("/", "Home")
        assert "og:description" not in tags
        assert "og:site_name" not in tags

    def test_article_template_passes_site_name(self, metadata_service):
        tags = metadata_service.page_metadata("/", "Home", template="article", site_name="Acme")

        assert tags["og:site_name"] == "Acme"
        assert parse_qs(urlparse(tags["og:image"]).query)["site_name"] == ["Acme"]

    def test_bots_get_image_alt(self, metadata_service):
        assert metadata_service.page_metadata("/", "Home", user_agent=TWITTERBOT)["og:image:alt"] == "Home"
        assert "og:image:alt" not in metadata_service.page_metadata("/", "Home", user_agent=DESKTOP)


class TestMetadataCaching:
    """Test metadata cache keying."""

    def test_repeat_is_cached(self, metadata_service):
        first = metadata_service.page_metadata("/", "Home", user_agent=DESKTOP)
        second = metadata_service.page_metadata("/", "Home", user_agent=DESKTOP)

        assert first == second
        assert metadata_service.cache.stats().hits == 1

    def test_callers_cannot_mutate_cached_tags(self, metadata_service):
        first = metadata_service.page_metadata("/", "Home")
        first["og:title"] = "Tampered"

        assert metadata_service.page_metadata("/", "Home")["og:title"] == "Home"

    def test_user_agent_class_splits_entries(self, metadata_service):
        metadata_service.page_metadata("/", "Home", user_agent=DESKTOP)
        metadata_service.page_metadata("/", "Home", user_agent=TWITTERBOT)

        assert len(metadata_service.cache) == 2


class TestRenderMetaTags:
    """Test HTML rendering of tags."""

    def test_property_and_name_attributes(self):
        html = render_meta_tags({"title": "Home", "og:title": "Home", "twitter:card": "summary_large_image"})

        assert "<title>Home</title>" in html
        assert '<meta property="og:title" content="Home">' in html
        assert '<meta name="twitter:card" content="summary_large_image">' in html

    def test_content_is_escaped(self):
        html = render_meta_tags({"og:title": '"><script>'})
        assert "<script>" not in html
        assert "&quot;&gt;&lt;script&gt;" in html
