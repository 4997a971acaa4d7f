"""
Pytest configuration and fixtures for OG Service tests.
Follows Single Responsibility Principle - handles only test configuration.
"""
import base64
import io
import threading
import time

import pytest
from unittest.mock import MagicMock, patch
from fastapi.testclient import TestClient
from PIL import Image

from ogforge.main import create_app
from ogforge.services.artifact_cache import ArtifactCache
from ogforge.services.metadata_service import MetadataService
from ogforge.services.og_service import OGService
from ogforge.services.offload import InlineOffload
from ogforge.services.template_renderer import TemplateRenderer

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingRenderer(TemplateRenderer):
    """TemplateRenderer that counts invocations, optionally slow or failing."""

    def __init__(self, delay: float = 0.0, failures: int = 0, error=None):
        super().__init__()
        self.calls = 0
        self.delay = delay
        self.failures = failures
        self.error = error
        self._lock = threading.Lock()

    def render(self, template_id, params):
        with self._lock:
            self.calls += 1
            call = self.calls
        if self.delay:
            time.sleep(self.delay)
        if call <= self.failures:
            raise self.error
        return super().render(template_id, params)


@pytest.fixture
def fake_clock():
    """Controllable clock for cache expiry."""
    return FakeClock()


@pytest.fixture
def counting_renderer():
    """Factory for renderers that count their invocations."""
    return CountingRenderer


@pytest.fixture
def og_service():
    """Isolated engine: inline offload and a fresh cache."""
    service = OGService(cache=ArtifactCache(capacity=16, default_ttl=3600), offload=InlineOffload(), image_ttl=3600)
    yield service
    service.shutdown()


@pytest.fixture
def metadata_service():
    """Metadata service with its own cache."""
    return MetadataService(cache=ArtifactCache(capacity=16, default_ttl=300), base_url="https://og.example.com", ttl=300)


@pytest.fixture
def client(og_service, metadata_service):
    """Test client for FastAPI application."""
    return TestClient(create_app(og_service=og_service, metadata_service=metadata_service))


@pytest.fixture
def sample_og_params():
    """Sample parameters for the simple template."""
    return {
        "title": "Shipping faster with render caches",
        "description": "How we stopped re-rendering the same preview image",
        "accent_color": "#16a34a",
    }


@pytest.fixture
def sample_layers_request():
    """Sample POST body for the layered template."""
    return {
        "template": "layered",
        "format": "png",
        "params": {
            "width": 600,
            "height": 315,
            "background_color": "#0f172a",
            "layers": [
                {
                    "type": "shape",
                    "shape_type": "rectangle",
                    "x": 0, "y": 0, "width": 600, "height": 20,
                    "fill_color": "#6366f1",
                    "z_index": 1,
                },
                {
                    "type": "text",
                    "content": "Layered preview",
                    "x": 40, "y": 160,
                    "font_size": 40,
                    "color": "#ffffff",
                    "z_index": 2,
                },
            ],
        },
    }


@pytest.fixture
def red_png_data_uri():
    """A 4x4 opaque red PNG as a base64 data URI."""
    buffer = io.BytesIO()
    Image.new("RGBA", (4, 4), (255, 0, 0, 255)).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


@pytest.fixture
def mock_playwright():
    """Mock Playwright for testing."""
    with patch('ogforge.services.encoder.sync_playwright') as mock_playwright:
        mock_browser = MagicMock()
        mock_page = MagicMock()
        mock_screenshot = PNG_SIGNATURE + b"fake screenshot"

        mock_page.screenshot.return_value = mock_screenshot
        mock_browser.new_page.return_value = mock_page

        mock_playwright.return_value.__enter__.return_value.chromium.launch.return_value = mock_browser

        yield {
            'playwright': mock_playwright,
            'browser': mock_browser,
            'page': mock_page,
            'screenshot': mock_screenshot
        }
