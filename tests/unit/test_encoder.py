"""
Unit tests for artifact encoders.
"""
import io
import xml.etree.ElementTree as ET

import pytest
from unittest.mock import Mock, patch
from playwright.sync_api import Error as PlaywrightError
from PIL import Image

from ogforge.core.errors import EncodingFailed, GeometryOutOfBounds
from ogforge.core.models import ImageFormat
from ogforge.core.render_tree import Box, Ellipse, Gradient, ImageRef, Line, RenderTree, Shadow, TextRun
from ogforge.services.encoder import (
    EncodeOptions, PillowEncoder, PlaywrightEncoder, SvgEncoder, validate_geometry,
)
from ogforge.services.template_renderer import TemplateRenderer

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def simple_tree(**params):
    return TemplateRenderer().render("simple", {"title": "Hello", **params})


class TestGeometry:
    """Test canvas bounds validation."""

    @pytest.mark.parametrize("width, height", [(5000, 630), (1200, 0), (0, 0), (4097, 4097)])
    def test_out_of_bounds(self, width, height):
        with pytest.raises(GeometryOutOfBounds):
            validate_geometry(RenderTree(width=width, height=height))

    @pytest.mark.parametrize("width, height", [(1, 1), (4096, 4096), (1200, 630)])
    def test_in_bounds(self, width, height):
        validate_geometry(RenderTree(width=width, height=height))

    @pytest.mark.parametrize("node", [
        ImageRef(href="data:image/png;base64,AAAA", x=0, y=0, width=50000, height=50000),
        Box(0, 0, 100, 9000, fill="#000000"),
        Ellipse(50, 50, 5000, 10),
        Line(0, 0, 10, 10, stroke_width=10000),
        TextRun(lines=("Huge",), x=0, y=0, font_size=50000),
        TextRun(lines=("Blurry",), x=0, y=0, font_size=20, shadow=Shadow(blur=100000)),
    ])
    def test_oversized_nodes_fail_before_allocation(self, node):
        tree = RenderTree(width=100, height=100, nodes=(node,))
        with pytest.raises(GeometryOutOfBounds):
            PillowEncoder().encode(tree, EncodeOptions())

    def test_nodes_larger_than_canvas_but_in_bounds_are_clipped(self):
        tree = RenderTree(width=10, height=10, nodes=(Box(-50, -50, 4096, 4096, fill="#ff0000"),))
        image = PillowEncoder().rasterize(tree)
        assert image.getpixel((5, 5)) == (255, 0, 0, 255)

    def test_oversized_template_render_fails_encoding(self):
        tree = simple_tree(width=5000)
        with pytest.raises(EncodingFailed):
            PillowEncoder().encode(tree, EncodeOptions(ImageFormat.PNG))


class TestPillowEncoder:
    """Test raster output."""

    def test_png_output(self):
        # Act
        data = PillowEncoder().encode(simple_tree(), EncodeOptions(ImageFormat.PNG))

        # Assert
        assert data.startswith(PNG_SIGNATURE)
        with Image.open(io.BytesIO(data)) as image:
            assert image.size == (1200, 630)

    def test_jpeg_output(self):
        data = PillowEncoder().encode(simple_tree(description="JPEG"), EncodeOptions(ImageFormat.JPEG, quality=80))
        assert data[:2] == b"\xff\xd8"

    def test_svg_output_is_well_formed(self):
        data = PillowEncoder().encode(simple_tree(title="Tom & Jerry"), EncodeOptions(ImageFormat.SVG))

        root = ET.fromstring(data)
        assert root.tag.endswith("svg")
        assert root.get("width") == "1200"
        assert b"Tom &amp; Jerry" in data

    def test_encoding_is_deterministic(self):
        encoder = PillowEncoder()
        tree = simple_tree(description="Same bytes")
        assert encoder.encode(tree, EncodeOptions()) == encoder.encode(tree, EncodeOptions())

    def test_background_fill(self):
        image = PillowEncoder().rasterize(RenderTree(width=10, height=10, background="#ff0000"))
        assert image.getpixel((5, 5)) == (255, 0, 0, 255)

    def test_invalid_color(self):
        tree = RenderTree(width=10, height=10, nodes=(Box(0, 0, 5, 5, fill="not-a-color"),))
        with pytest.raises(EncodingFailed):
            PillowEncoder().encode(tree, EncodeOptions())

    def test_linear_gradient_runs_left_to_right(self):
        gradient = Gradient(colors=("#ff0000", "#0000ff"), kind="linear", start=(0, 0), end=(1, 0))
        tree = RenderTree(width=100, height=10, nodes=(Box(0, 0, 100, 10, gradient=gradient),))

        image = PillowEncoder().rasterize(tree)

        left, right = image.getpixel((1, 5)), image.getpixel((98, 5))
        assert left[0] > left[2]
        assert right[2] > right[0]

    def test_text_is_drawn(self):
        tree = RenderTree(width=200, height=60, background="#ffffff", nodes=(
            TextRun(lines=("Ink",), x=10, y=45, font_size=40, fill="#000000"),
        ))
        image = PillowEncoder().rasterize(tree).convert("L")
        assert image.getextrema()[0] < 128

    def test_inline_image(self, red_png_data_uri):
        tree = RenderTree(width=40, height=40, background="#ffffff", nodes=(
            ImageRef(href=red_png_data_uri, x=10, y=10, width=20, height=20),
        ))
        image = PillowEncoder().rasterize(tree)
        assert image.getpixel((20, 20)) == (255, 0, 0, 255)
        assert image.getpixel((2, 2)) == (255, 255, 255, 255)

    def test_inline_image_must_be_base64(self):
        tree = RenderTree(width=40, height=40, nodes=(
            ImageRef(href="data:image/png,rawbytes", x=0, y=0, width=10, height=10),
        ))
        with pytest.raises(EncodingFailed):
            PillowEncoder().encode(tree, EncodeOptions())

    def test_undecodable_image(self):
        tree = RenderTree(width=40, height=40, nodes=(
            ImageRef(href="data:image/png;base64,aGVsbG8=", x=0, y=0, width=10, height=10),
        ))
        with pytest.raises(EncodingFailed):
            PillowEncoder().encode(tree, EncodeOptions())

    def test_remote_image_without_loader_draws_placeholder(self):
        tree = RenderTree(width=40, height=40, nodes=(
            ImageRef(href="https://cdn.example.com/logo.png", x=0, y=0, width=20, height=20),
        ))
        assert PillowEncoder().encode(tree, EncodeOptions()).startswith(PNG_SIGNATURE)

    def test_remote_image_uses_asset_loader(self):
        # Arrange
        png = PillowEncoder().encode(RenderTree(width=4, height=4, background="#ff0000"), EncodeOptions())
        loader = Mock(return_value=png)
        tree = RenderTree(width=40, height=40, nodes=(
            ImageRef(href="https://cdn.example.com/logo.png", x=0, y=0, width=20, height=20),
        ))

        # Act
        image = PillowEncoder(asset_loader=loader).rasterize(tree)

        # Assert
        loader.assert_called_once_with("https://cdn.example.com/logo.png")
        assert image.getpixel((10, 10)) == (255, 0, 0, 255)

    def test_webp_unavailable(self):
        with patch('ogforge.services.encoder.features.check', return_value=False):
            with pytest.raises(EncodingFailed, match="WebP"):
                PillowEncoder().encode(simple_tree(), EncodeOptions(ImageFormat.WEBP))


class TestSvgEncoder:
    """Test SVG serialization of render trees."""

    def test_gradients_become_defs(self):
        gradient = Gradient(colors=("#ff0000", "#0000ff"))
        tree = RenderTree(width=10, height=10, nodes=(Box(0, 0, 10, 10, gradient=gradient),))

        markup = SvgEncoder().to_markup(tree)

        assert "<linearGradient" in markup
        assert 'fill="url(#g0)"' in markup

    def test_geometry_checked(self):
        with pytest.raises(GeometryOutOfBounds):
            SvgEncoder().encode(RenderTree(width=0, height=10))


class TestPlaywrightEncoder:
    """Test the headless browser encoder with Playwright mocked out."""

    def test_screenshot_png(self, mock_playwright):
        # Act
        data = PlaywrightEncoder(settle_ms=0).encode(simple_tree(), EncodeOptions(ImageFormat.PNG))

        # Assert
        assert data == mock_playwright['screenshot']
        page = mock_playwright['page']
        page.set_viewport_size.assert_called_once_with({"width": 1200, "height": 630})
        assert "<svg" in page.set_content.call_args[0][0]
        page.screenshot.assert_called_once_with(type="png", full_page=False)
        mock_playwright['browser'].close.assert_called_once()

    def test_screenshot_jpeg_quality(self, mock_playwright):
        PlaywrightEncoder().encode(simple_tree(), EncodeOptions(ImageFormat.JPEG, quality=70))
        mock_playwright['page'].screenshot.assert_called_once_with(type="jpeg", full_page=False, quality=70)

    def test_browser_errors_become_encoding_failures(self, mock_playwright):
        mock_playwright['page'].screenshot.side_effect = PlaywrightError("Target closed")

        with pytest.raises(EncodingFailed, match="Target closed"):
            PlaywrightEncoder().encode(simple_tree(), EncodeOptions(ImageFormat.PNG))
        mock_playwright['browser'].close.assert_called_once()

    def test_geometry_checked_before_launch(self, mock_playwright):
        with pytest.raises(GeometryOutOfBounds):
            PlaywrightEncoder().encode(simple_tree(width=5000), EncodeOptions(ImageFormat.PNG))
        mock_playwright['playwright'].assert_not_called()

    def test_webp_not_supported(self, mock_playwright):
        with pytest.raises(EncodingFailed):
            PlaywrightEncoder().encode(simple_tree(), EncodeOptions(ImageFormat.WEBP))

    def test_svg_skips_browser(self, mock_playwright):
        data = PlaywrightEncoder().encode(simple_tree(), EncodeOptions(ImageFormat.SVG))
        assert data.startswith(b"<svg")
        mock_playwright['playwright'].assert_not_called()
