"""
Render pipeline: template render followed by encode, as one unit of work.
"""
from typing import Optional

from ..core.errors import EncodingFailed
from ..core.models import Artifact, RenderRequest
from .encoder import ArtifactEncoder, EncodeOptions
from .metrics import MetricsCollector
from .template_renderer import TemplateRenderer


class RenderPipeline:
    def __init__(self, renderer: TemplateRenderer, encoder: ArtifactEncoder,
                 quality: int = 90, metrics: Optional[MetricsCollector] = None):
        self.renderer = renderer
        self.encoder = encoder
        self.quality = quality
        self.metrics = metrics or MetricsCollector()

    def run(self, request: RenderRequest) -> Artifact:
        """Render and encode synchronously. Intended to run on a worker thread."""
        if not self.encoder.supports(request.format):
            raise EncodingFailed(f"{type(self.encoder).__name__} cannot produce {request.format.value}")

        with self.metrics.time_generation():
            tree = self.renderer.render(request.template, request.params)
            data = self.encoder.encode(tree, EncodeOptions(format=request.format, quality=self.quality))
        return Artifact(data=data, format=request.format, width=tree.width, height=tree.height)
