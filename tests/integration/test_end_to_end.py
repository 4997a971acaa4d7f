"""
End-to-end tests: settings -> app -> render -> cache, with real templates and encoders.
"""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch

from ogforge.core.config import Settings
from ogforge import main
from ogforge.main import create_app
from ogforge.services.artifact_cache import NullArtifactCache
from ogforge.services.encoder import PillowEncoder, PlaywrightEncoder
from ogforge.services.offload import ThreadOffload
from ogforge.services.og_service import OGService

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


@pytest.fixture
def settings(monkeypatch, tmp_path):
    """Settings built from a controlled environment."""
    (tmp_path / "promo.svg").write_text(
        '<svg width="{{ width | default: 800 }}" height="400" data-background="#111111">'
        '<text x="40" y="200" font-size="48" fill="#ffffff">{{ title | upper }}</text>'
        '</svg>'
    )
    monkeypatch.setenv("OG_TEMPLATES_DIR", str(tmp_path))
    monkeypatch.setenv("OG_CACHE_CAPACITY", "8")
    monkeypatch.setenv("OG_IMAGE_TTL_SECONDS", "120")
    monkeypatch.setenv("OG_WORKER_POOL_SIZE", "2")
    monkeypatch.setenv("OG_ENCODER_BACKEND", "pillow")
    monkeypatch.setenv("OG_CACHE_MAX_IDLE_SECONDS", "600")
    return Settings()


class TestServiceFromSettings:
    """Test wiring the engine from environment configuration."""

    def test_from_settings(self, settings):
        service = OGService.from_settings(settings)
        try:
            assert isinstance(service.encoder, PillowEncoder)
            assert isinstance(service.offload, ThreadOffload)
            assert service.offload.max_workers == 2
            assert service.cache.capacity == 8
            assert service.image_ttl == 120
            assert service.cache.max_idle == 600
            assert "promo" in service.templates()
        finally:
            service.shutdown()

    def test_idle_expiry_can_be_disabled(self, settings):
        settings.OG_CACHE_MAX_IDLE_SECONDS = 0
        service = OGService.from_settings(settings)
        try:
            assert service.cache.max_idle is None
        finally:
            service.shutdown()

    def test_browser_backend(self, settings):
        settings.OG_ENCODER_BACKEND = "playwright"
        service = OGService.from_settings(settings)
        try:
            assert isinstance(service.encoder, PlaywrightEncoder)
        finally:
            service.shutdown()

    def test_cache_can_be_disabled(self, settings):
        settings.OG_CACHE_ENABLED = False
        service = OGService.from_settings(settings)
        try:
            assert isinstance(service.cache, NullArtifactCache)
        finally:
            service.shutdown()


class TestEndToEnd:
    """Test full request flow through a settings-built app."""

    def test_custom_template_renders_and_caches(self, settings):
        # Arrange
        service = OGService.from_settings(settings)
        client = TestClient(create_app(og_service=service))

        try:
            # Act
            first = client.get("/og/image/promo", params={"title": "launch"})
            second = client.get("/og/image/promo", params={"title": "launch"})
        finally:
            service.shutdown()

        # Assert
        assert first.status_code == 200
        assert first.content.startswith(PNG_SIGNATURE)
        assert first.content == second.content
        assert first.headers["cache-control"] == "public, max-age=120, immutable"
        assert service.get_metrics().total_generations == 1

    def test_builtin_simple_twice(self, settings):
        service = OGService.from_settings(settings)
        client = TestClient(create_app(og_service=service))

        try:
            responses = [client.get("/og/image/simple", params={"title": "Hello", "description": "World"})
                         for _ in range(2)]
        finally:
            service.shutdown()

        assert [r.status_code for r in responses] == [200, 200]
        assert responses[0].content == responses[1].content
        assert service.get_metrics().total_generations == 1
        assert service.cache_stats().hits == 1


class TestServerEntryPoint:
    """Test the uvicorn launcher."""

    def test_run_serves_the_app(self):
        with patch('ogforge.main.uvicorn.run') as mock_run:
            main.run()

        mock_run.assert_called_once()
        args, kwargs = mock_run.call_args
        assert args[0] is main.app
        assert kwargs["host"] == main.settings.HOST
        assert kwargs["port"] == main.settings.PORT
