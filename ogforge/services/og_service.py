"""
Open Graph (OG) Image Generation Service.
Renders templates to images on demand and serves repeats from a TTL cache,
coalescing concurrent requests for the same image into a single render.
"""
import asyncio
import dataclasses
from pathlib import Path
from typing import List, Optional

from ..core.errors import EncodingFailed, OGImageError, RenderCancelled
from ..core.models import Artifact, ImageFormat, RenderRequest
from ..utils.assets import make_http_asset_loader
from ..utils.debug import print_step
from .artifact_cache import ArtifactCache, CacheStats, NullArtifactCache
from .encoder import ArtifactEncoder, PillowEncoder, PlaywrightEncoder
from .key_deriver import derive
from .metrics import GenerationMetrics, MetricsCollector
from .offload import InlineOffload, ThreadOffload
from .pipeline import RenderPipeline
from .single_flight import SingleFlightCoordinator
from .template_renderer import (
    ChainTemplateSource, DirectoryTemplateSource, TemplateRegistry, TemplateRenderer, builtin_source,
)


class OGService:
    """Service for generating Open Graph images for social media sharing."""

    def __init__(
        self,
        renderer: Optional[TemplateRenderer] = None,
        encoder: Optional[ArtifactEncoder] = None,
        cache: Optional[ArtifactCache] = None,
        offload=None,
        image_ttl: Optional[float] = None,
        render_timeout: Optional[float] = None,
        quality: int = 90,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.renderer = renderer or TemplateRenderer()
        self.encoder = encoder or PillowEncoder()
        self.cache = cache if cache is not None else ArtifactCache()
        self.offload = offload or InlineOffload()
        self.image_ttl = image_ttl
        self.render_timeout = render_timeout
        self.metrics = metrics or MetricsCollector()
        self.coordinator = SingleFlightCoordinator()
        self.pipeline = RenderPipeline(self.renderer, self.encoder, quality=quality, metrics=self.metrics)

    @classmethod
    def from_settings(cls, settings) -> "OGService":
        source = builtin_source()
        if settings.OG_TEMPLATES_DIR:
            source = ChainTemplateSource(DirectoryTemplateSource(Path(settings.OG_TEMPLATES_DIR)), source)

        if settings.OG_ENCODER_BACKEND == "playwright":
            encoder = PlaywrightEncoder()
        else:
            loader = None
            if settings.OG_FETCH_REMOTE_ASSETS:
                loader = make_http_asset_loader(timeout=settings.OG_ASSET_TIMEOUT_SECONDS)
            encoder = PillowEncoder(asset_loader=loader)

        if settings.OG_CACHE_ENABLED:
            cache = ArtifactCache(
                capacity=settings.OG_CACHE_CAPACITY,
                default_ttl=settings.OG_IMAGE_TTL_SECONDS,
                max_idle=settings.OG_CACHE_MAX_IDLE_SECONDS or None,
            )
        else:
            cache = NullArtifactCache(default_ttl=settings.OG_IMAGE_TTL_SECONDS)

        return cls(
            renderer=TemplateRenderer(TemplateRegistry(source)),
            encoder=encoder,
            cache=cache,
            offload=ThreadOffload(max_workers=settings.OG_WORKER_POOL_SIZE),
            image_ttl=settings.OG_IMAGE_TTL_SECONDS,
            render_timeout=settings.OG_RENDER_TIMEOUT_SECONDS,
            quality=settings.OG_JPEG_QUALITY,
        )

    async def get_or_render(self, request: RenderRequest) -> Artifact:
        """
        Return the artifact for a request, rendering it at most once per key.

        Args:
            request: The render request

        Returns:
            The encoded artifact (cached or freshly rendered)

        Raises:
            OGImageError: Typed failure shared by every caller of the same key
        """
        key = derive(request)
        print_step("OG Image Request", {
            "key": key,
            "template": request.template,
            "format": request.format.value,
        }, "input")

        cached = self.cache.lookup(key)
        if cached is not None:
            self.metrics.record_cache_hit()
            print_step("OG Image Cache Hit", {"key": key, "bytes": cached.byte_size}, "output")
            return cached
        self.metrics.record_cache_miss()

        async with self.coordinator.flight(key) as flight:
            if not flight.is_leader:
                self.metrics.record_coalesced_wait()
                return await flight.wait()

            # A previous leader may have published between our lookup and acquire
            cached = self.cache.peek(key)
            if cached is not None:
                flight.complete(cached)
                return cached

            try:
                artifact = await asyncio.wait_for(
                    self.offload.run(self.pipeline.run, request),
                    timeout=self.render_timeout,
                )
            except asyncio.TimeoutError:
                self.metrics.record_error()
                print_step("OG Image Render Timeout", {"key": key, "timeout": self.render_timeout}, "error")
                raise RenderCancelled(f"Render for '{key}' timed out after {self.render_timeout}s", key=key)
            except Exception as e:
                self.metrics.record_error()
                print_step("OG Image Generation Error", str(e), "error")
                if isinstance(e, OGImageError) and e.key is None:
                    e.key = key
                raise

            self.cache.insert(key, artifact, self.image_ttl)
            flight.complete(artifact)

        print_step("OG Image Generated", {
            "key": key,
            "image_size_bytes": artifact.byte_size,
            "size": f"{artifact.width}x{artifact.height}",
        }, "output")
        return artifact

    async def get_or_render_with_fallback(self, request: RenderRequest) -> Artifact:
        """Like get_or_render, but retries a failed WebP encode as PNG."""
        try:
            return await self.get_or_render(request)
        except EncodingFailed:
            if request.format is not ImageFormat.WEBP:
                raise
            self.metrics.record_webp_fallback()
            print_step("WebP Fallback", {"template": request.template}, "info")
            return await self.get_or_render(dataclasses.replace(request, format=ImageFormat.PNG))

    async def generate_simple(self, title: str, description: Optional[str] = None,
                              width: int = None, height: int = None) -> Artifact:
        """Generate an image from the built-in `simple` template."""
        return await self.get_or_render(RenderRequest.simple(title, description, width, height))

    def templates(self) -> List[str]:
        return self.renderer.registry.template_ids()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_metrics(self) -> GenerationMetrics:
        return self.metrics.snapshot()

    def shutdown(self) -> None:
        self.offload.shutdown(wait=False)
